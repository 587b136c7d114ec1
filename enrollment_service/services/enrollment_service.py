"""Enrollment workflow: checkout, attempts, reviews, completion.

Every mutating operation is one read-modify-write of a single
enrollment:

    load → pure transition (progress.py / lifecycle.py) → versioned write

The write is a compare-and-swap on ``Enrollment.version``, so two
submissions racing on the same enrollment cannot both be numbered
``n + 1``; the loser gets ConcurrentUpdateError and nothing is stored.
"""

from __future__ import annotations

import datetime
import logging
from collections.abc import Callable, Iterable, Sequence
from decimal import Decimal
from typing import Protocol
from uuid import UUID

from enrollment_service.core.metrics import (
    ATTEMPTS_SUBMITTED,
    CHECKOUT_CONFLICTS,
    CONCURRENT_UPDATE_CONFLICTS,
    ENROLLMENTS_COMPLETED,
    ENROLLMENTS_CREATED,
    REVIEWS_APPLIED,
)
from enrollment_service.models.course import Course
from enrollment_service.models.enrollment import (
    Attempt,
    AttemptAnswer,
    CompletionReport,
    Enrollment,
    EnrollmentListing,
)
from enrollment_service.repos.catalog_repo import CatalogRepo
from enrollment_service.repos.enrollment_repo import EnrollmentRepo
from enrollment_service.services import lifecycle, pricing, progress
from enrollment_service.services.errors import (
    ConcurrentUpdateError,
    ConflictError,
    NotFoundError,
)

logger = logging.getLogger(__name__)

Clock = Callable[[], int]


def _utc_now() -> int:
    return int(datetime.datetime.now(datetime.UTC).timestamp())


class DiscountUsageHook(Protocol):
    """Called with each new enrollment so the catalog owner can count usage.

    Runs after the enrollment is stored.  Exceptions are logged and
    swallowed; the checkout still succeeds.
    """

    async def __call__(self, enrollment: Enrollment) -> None: ...


class EnrollmentService:
    def __init__(
        self,
        enrollments: EnrollmentRepo,
        catalog: CatalogRepo,
        *,
        clock: Clock = _utc_now,
        usage_hook: DiscountUsageHook | None = None,
    ) -> None:
        self._enrollments = enrollments
        self._catalog = catalog
        self._clock = clock
        self._usage_hook = usage_hook

    # -- checkout ----------------------------------------------------------

    async def checkout(
        self,
        user_id: str,
        course_id: str,
        *,
        live_run_id: str | None = None,
        discount_ids: Sequence[str] = (),
    ) -> Enrollment:
        course = await self._catalog.get_course(course_id)
        if course is None:
            raise NotFoundError(f"course {course_id!r} not found")

        now = self._clock()
        candidate_ids = pricing.select_discount_ids(course, discount_ids)
        catalog_discounts = await self._catalog.get_discounts(candidate_ids)
        discounts = pricing.applicable_discounts(
            course, candidate_ids, catalog_discounts, now
        )
        final_price = pricing.compute_final_price(course.price, discounts)

        enrollment = Enrollment.new(
            user_id=user_id,
            course_id=course.id,
            live_run_id=live_run_id,
            base_price=course.price,
            final_price=final_price,
            discounts_applied=tuple(d.id for d in discounts),
            started_at=now,
            sections=progress.initialize_progress(course),
        )
        try:
            await self._enrollments.add(enrollment)
        except ConflictError:
            CHECKOUT_CONFLICTS.inc()
            logger.warning(
                "Rejected duplicate enrollment user=%s course=%s",
                user_id,
                course_id,
                extra={"user_id": user_id},
            )
            raise

        ENROLLMENTS_CREATED.inc()
        logger.info(
            "Created enrollment id=%s user=%s course=%s base=%s final=%s discounts=%s",
            enrollment.id,
            user_id,
            course_id,
            enrollment.base_price,
            enrollment.final_price,
            ",".join(enrollment.discounts_applied) or "-",
            extra={"user_id": user_id, "enrollment_id": str(enrollment.id)},
        )
        if self._usage_hook is not None and enrollment.discounts_applied:
            # The enrollment is already stored; a usage-accounting failure
            # must not turn a successful checkout into an error.
            try:
                await self._usage_hook(enrollment)
            except Exception:
                logger.exception(
                    "Discount usage hook failed enrollment=%s discounts=%s",
                    enrollment.id,
                    ",".join(enrollment.discounts_applied),
                    extra={"enrollment_id": str(enrollment.id)},
                )
        return enrollment

    # -- reads -------------------------------------------------------------

    async def get_enrollment(self, enrollment_id: UUID) -> Enrollment:
        enrollment = await self._enrollments.get(enrollment_id)
        if enrollment is None:
            raise NotFoundError("enrollment not found", enrollment_id=enrollment_id)
        return enrollment

    async def get_enrollment_by_course(
        self, user_id: str, course_id: str
    ) -> Enrollment:
        enrollment = await self._enrollments.get_by_user_course(user_id, course_id)
        if enrollment is None:
            raise NotFoundError(f"no enrollment for course {course_id!r}")
        return enrollment

    async def get_assessment_files(
        self, enrollment_id: UUID, section_id: str, content_id: str
    ) -> list[str]:
        enrollment = await self.get_enrollment(enrollment_id)
        content = progress.find_content(enrollment, section_id, content_id)
        return [f for attempt in content.attempts for f in attempt.submitted_files]

    async def list_enrollments(
        self, user_id: str, course_id: str | None = None
    ) -> list[EnrollmentListing]:
        """Enrollments with each course's price as the catalog shows it today.

        The display price is recomputed from the course's current page
        discounts; it is independent of the ``final_price`` frozen at
        checkout.
        """
        enrollments = await self._enrollments.list_for_user(user_id, course_id)
        prices = await self.course_display_prices(e.course_id for e in enrollments)
        listings = []
        for enrollment in enrollments:
            priced = prices[enrollment.course_id]
            if priced is None:
                listings.append(EnrollmentListing(enrollment, None, None, None))
                continue
            course, final_price = priced
            listings.append(
                EnrollmentListing(
                    enrollment=enrollment,
                    course_title=course.title,
                    course_base_price=course.price,
                    course_final_price=final_price,
                )
            )
        return listings

    async def course_display_prices(
        self, course_ids: Iterable[str]
    ) -> dict[str, tuple[Course, Decimal] | None]:
        """Current catalog entry and display price per course id.

        None marks a course that is no longer in the catalog.  Never
        cached: page discounts can start or expire at any moment.
        """
        now = self._clock()
        prices: dict[str, tuple[Course, Decimal] | None] = {}
        for course_id in course_ids:
            if course_id in prices:
                continue
            course = await self._catalog.get_course(course_id)
            if course is None:
                prices[course_id] = None
            else:
                prices[course_id] = (course, await self._display_price(course, now))
        return prices

    async def list_courses(self) -> list[tuple[Course, Decimal]]:
        now = self._clock()
        return [
            (course, await self._display_price(course, now))
            for course in await self._catalog.list_courses()
        ]

    async def _display_price(self, course: Course, now: int) -> Decimal:
        discounts = await self._catalog.get_discounts(course.page_discount_ids)
        return pricing.display_price(course, discounts, now)

    # -- attempts & reviews ------------------------------------------------

    async def submit_attempt(
        self,
        enrollment_id: UUID,
        section_id: str,
        content_id: str,
        *,
        answers: Iterable[AttemptAnswer] = (),
        files: Iterable[str] = (),
    ) -> tuple[Attempt, ...]:
        enrollment = await self.get_enrollment(enrollment_id)
        lifecycle.ensure_accepts_work(enrollment)

        now = self._clock()
        updated = progress.record_attempt(
            enrollment, section_id, content_id, answers=answers, files=files, now=now
        )
        updated = progress.recalculate_progress(updated, now)
        stored = await self._save(enrollment, updated)

        content = progress.find_content(stored, section_id, content_id)
        ATTEMPTS_SUBMITTED.labels(content_type=content.type).inc()
        logger.info(
            "Attempt %d submitted enrollment=%s section=%s content=%s progress=%d",
            len(content.attempts),
            enrollment_id,
            section_id,
            content_id,
            stored.progress,
            extra={"enrollment_id": str(enrollment_id)},
        )
        return content.attempts

    async def review_assessment(
        self,
        enrollment_id: UUID,
        section_id: str,
        content_id: str,
        attempt_index: int,
        *,
        score: int,
        passed: bool,
        instructor_id: str,
        feedback: str | None = None,
    ) -> Enrollment:
        enrollment = await self.get_enrollment(enrollment_id)
        lifecycle.ensure_accepts_work(enrollment)

        now = self._clock()
        updated = progress.apply_review(
            enrollment,
            section_id,
            content_id,
            attempt_index,
            score=score,
            passed=passed,
            reviewer_id=instructor_id,
            now=now,
            feedback=feedback,
        )
        updated = progress.recalculate_progress(updated, now)
        stored = await self._save(enrollment, updated)

        REVIEWS_APPLIED.labels(outcome="passed" if passed else "failed").inc()
        logger.info(
            "Reviewed attempt index=%d enrollment=%s content=%s score=%d passed=%s "
            "by=%s progress=%d",
            attempt_index,
            enrollment_id,
            content_id,
            score,
            passed,
            instructor_id,
            stored.progress,
            extra={"enrollment_id": str(enrollment_id), "user_id": instructor_id},
        )
        return stored

    # -- completion --------------------------------------------------------

    async def complete_enrollment(
        self, enrollment_id: UUID
    ) -> Enrollment | CompletionReport:
        enrollment = await self.get_enrollment(enrollment_id)
        result = lifecycle.complete(enrollment, self._clock())
        if isinstance(result, CompletionReport):
            logger.info(
                "Enrollment %s not complete: %d item(s) pending",
                enrollment_id,
                len(result.pending),
                extra={"enrollment_id": str(enrollment_id)},
            )
            return result
        if result is enrollment:
            return enrollment
        return await self._save(enrollment, result)

    # -- persistence -------------------------------------------------------

    async def _save(self, original: Enrollment, updated: Enrollment) -> Enrollment:
        progress.validate_attempt_sequence(updated)
        try:
            stored = await self._enrollments.update(updated, original.version)
        except ConcurrentUpdateError:
            CONCURRENT_UPDATE_CONFLICTS.inc()
            raise
        if stored.status == "completed" and original.status != "completed":
            ENROLLMENTS_COMPLETED.inc()
            logger.info(
                "Enrollment %s completed at=%s",
                stored.id,
                stored.completed_at,
                extra={"enrollment_id": str(stored.id)},
            )
        return stored
