"""PostgreSQL implementation of EnrollmentRepo."""

from __future__ import annotations

import logging
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from enrollment_service.db.tables import EnrollmentRow
from enrollment_service.models.enrollment import (
    Attempt,
    AttemptAnswer,
    ContentProgress,
    Enrollment,
    SectionProgress,
)
from enrollment_service.services.errors import (
    ConcurrentUpdateError,
    ConflictError,
    NotFoundError,
    StorageError,
)

logger = logging.getLogger(__name__)


class PgEnrollmentRepo:
    """Satisfies the EnrollmentRepo Protocol using SQLAlchemy.

    Duplicate enrollments are rejected by the unique constraint on
    (user_id, course_id); updates only apply when the stored version still
    matches the one the caller read.
    """

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get(self, enrollment_id: UUID) -> Enrollment | None:
        stmt = select(EnrollmentRow).where(EnrollmentRow.id == enrollment_id)
        return await self._one_or_none(stmt)

    async def get_by_user_course(
        self, user_id: str, course_id: str
    ) -> Enrollment | None:
        stmt = select(EnrollmentRow).where(
            EnrollmentRow.user_id == user_id, EnrollmentRow.course_id == course_id
        )
        return await self._one_or_none(stmt)

    async def list_for_user(
        self, user_id: str, course_id: str | None = None
    ) -> list[Enrollment]:
        stmt = select(EnrollmentRow).where(EnrollmentRow.user_id == user_id)
        if course_id is not None:
            stmt = stmt.where(EnrollmentRow.course_id == course_id)
        stmt = stmt.order_by(EnrollmentRow.started_at).execution_options(
            populate_existing=True
        )
        try:
            rows = (await self._session.execute(stmt)).scalars().all()
        except SQLAlchemyError as e:
            raise StorageError(f"failed to list enrollments: {e}") from e
        return [_row_to_enrollment(row) for row in rows]

    async def add(self, enrollment: Enrollment) -> None:
        row = EnrollmentRow(
            id=enrollment.id,
            user_id=enrollment.user_id,
            course_id=enrollment.course_id,
            version=enrollment.version,
            **_mutable_columns(enrollment),
        )
        self._session.add(row)
        try:
            await self._session.flush()
        except IntegrityError as e:
            await self._session.rollback()
            if _is_duplicate_enrollment(e):
                raise ConflictError(
                    "user is already enrolled in this course",
                    enrollment_id=enrollment.id,
                ) from None
            raise StorageError(
                f"enrollment violates a table constraint: {e.orig}",
                enrollment_id=enrollment.id,
            ) from e
        except SQLAlchemyError as e:
            await self._session.rollback()
            raise StorageError(
                f"failed to create enrollment: {e}", enrollment_id=enrollment.id
            ) from e

    async def update(self, enrollment: Enrollment, expected_version: int) -> Enrollment:
        stmt = (
            update(EnrollmentRow)
            .where(
                EnrollmentRow.id == enrollment.id,
                EnrollmentRow.version == expected_version,
            )
            .values(version=expected_version + 1, **_mutable_columns(enrollment))
        )
        try:
            result = await self._session.execute(stmt)
        except SQLAlchemyError as e:
            raise StorageError(
                f"failed to update enrollment: {e}", enrollment_id=enrollment.id
            ) from e

        if result.rowcount == 0:
            if await self.get(enrollment.id) is None:
                raise NotFoundError("enrollment not found", enrollment_id=enrollment.id)
            logger.warning(
                "Version check failed enrollment=%s expected_version=%d",
                enrollment.id,
                expected_version,
            )
            raise ConcurrentUpdateError(
                "enrollment was modified concurrently", enrollment_id=enrollment.id
            )

        stored = await self.get(enrollment.id)
        if stored is None:
            raise NotFoundError("enrollment not found", enrollment_id=enrollment.id)
        return stored

    async def _one_or_none(self, stmt) -> Enrollment | None:
        stmt = stmt.execution_options(populate_existing=True)
        try:
            row = (await self._session.execute(stmt)).scalar_one_or_none()
        except SQLAlchemyError as e:
            raise StorageError(f"failed to load enrollment: {e}") from e
        if row is None:
            return None
        return _row_to_enrollment(row)


# How each backend names the (user_id, course_id) unique violation:
# Postgres reports the constraint, SQLite lists its columns.
_DUPLICATE_ENROLLMENT_MARKERS = (
    "uq_enrollments_user_course",
    "enrollments.user_id, enrollments.course_id",
)


def _is_duplicate_enrollment(exc: IntegrityError) -> bool:
    message = str(exc.orig)
    return any(marker in message for marker in _DUPLICATE_ENROLLMENT_MARKERS)


def _mutable_columns(enrollment: Enrollment) -> dict:
    return {
        "live_run_id": enrollment.live_run_id,
        "base_price": enrollment.base_price,
        "final_price": enrollment.final_price,
        "discounts_applied": list(enrollment.discounts_applied),
        "status": enrollment.status,
        "progress": enrollment.progress,
        "started_at": enrollment.started_at,
        "completed_at": enrollment.completed_at,
        "last_accessed_at": enrollment.last_accessed_at,
        "sections": [_section_to_json(s) for s in enrollment.sections],
    }


def _section_to_json(section: SectionProgress) -> dict:
    return {
        "section_id": section.section_id,
        "contents": [
            {
                "content_id": c.content_id,
                "type": c.type,
                "completed": c.completed,
                "score": c.score,
                "passed": c.passed,
                "attempts": [
                    {
                        "attempt_number": a.attempt_number,
                        "submitted_at": a.submitted_at,
                        "answers": [
                            {
                                "question_id": ans.question_id,
                                "answer": ans.answer,
                                "correct": ans.correct,
                            }
                            for ans in a.answers
                        ],
                        "submitted_files": list(a.submitted_files),
                        "score": a.score,
                        "passed": a.passed,
                        "feedback": a.feedback,
                        "reviewed_by": a.reviewed_by,
                        "reviewed_at": a.reviewed_at,
                    }
                    for a in c.attempts
                ],
            }
            for c in section.contents
        ],
    }


def _section_from_json(data: dict) -> SectionProgress:
    return SectionProgress(
        section_id=data["section_id"],
        contents=tuple(
            ContentProgress(
                content_id=c["content_id"],
                type=c["type"],
                completed=c["completed"],
                score=c.get("score"),
                passed=c.get("passed"),
                attempts=tuple(
                    Attempt(
                        attempt_number=a["attempt_number"],
                        submitted_at=a["submitted_at"],
                        answers=tuple(AttemptAnswer(**ans) for ans in a["answers"]),
                        submitted_files=tuple(a["submitted_files"]),
                        score=a.get("score"),
                        passed=a.get("passed"),
                        feedback=a.get("feedback"),
                        reviewed_by=a.get("reviewed_by"),
                        reviewed_at=a.get("reviewed_at"),
                    )
                    for a in c["attempts"]
                ),
            )
            for c in data["contents"]
        ),
    )


def _row_to_enrollment(row: EnrollmentRow) -> Enrollment:
    return Enrollment(
        id=row.id,
        user_id=row.user_id,
        course_id=row.course_id,
        live_run_id=row.live_run_id,
        base_price=Decimal(row.base_price),
        final_price=Decimal(row.final_price),
        discounts_applied=tuple(row.discounts_applied or ()),
        status=row.status,  # type: ignore[arg-type]
        progress=row.progress,
        started_at=row.started_at,
        completed_at=row.completed_at,
        last_accessed_at=row.last_accessed_at,
        sections=tuple(_section_from_json(s) for s in row.sections or ()),
        version=row.version,
    )
