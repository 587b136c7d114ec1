from __future__ import annotations

from dataclasses import replace
from typing import Protocol
from uuid import UUID

from enrollment_service.models.enrollment import Enrollment
from enrollment_service.services.errors import (
    ConcurrentUpdateError,
    ConflictError,
    NotFoundError,
)


class EnrollmentRepo(Protocol):
    async def get(self, enrollment_id: UUID) -> Enrollment | None: ...
    async def get_by_user_course(
        self, user_id: str, course_id: str
    ) -> Enrollment | None: ...
    async def list_for_user(
        self, user_id: str, course_id: str | None = None
    ) -> list[Enrollment]: ...
    async def add(self, enrollment: Enrollment) -> None: ...
    async def update(
        self, enrollment: Enrollment, expected_version: int
    ) -> Enrollment: ...


class InMemoryEnrollmentRepo:
    """Dict-backed repo.

    ``add`` checks and inserts the (user, course) key without yielding to
    the event loop, so two concurrent checkouts cannot both succeed.
    ``update`` is a compare-and-swap on ``version``.
    """

    def __init__(self) -> None:
        self._by_id: dict[UUID, Enrollment] = {}
        self._by_user_course: dict[tuple[str, str], UUID] = {}

    async def get(self, enrollment_id: UUID) -> Enrollment | None:
        return self._by_id.get(enrollment_id)

    async def get_by_user_course(
        self, user_id: str, course_id: str
    ) -> Enrollment | None:
        enrollment_id = self._by_user_course.get((user_id, course_id))
        if enrollment_id is None:
            return None
        return self._by_id.get(enrollment_id)

    async def list_for_user(
        self, user_id: str, course_id: str | None = None
    ) -> list[Enrollment]:
        return [
            e
            for e in self._by_id.values()
            if e.user_id == user_id and (course_id is None or e.course_id == course_id)
        ]

    async def add(self, enrollment: Enrollment) -> None:
        key = (enrollment.user_id, enrollment.course_id)
        if key in self._by_user_course:
            raise ConflictError(
                "user is already enrolled in this course",
                enrollment_id=self._by_user_course[key],
            )
        self._by_id[enrollment.id] = enrollment
        self._by_user_course[key] = enrollment.id

    async def update(self, enrollment: Enrollment, expected_version: int) -> Enrollment:
        current = self._by_id.get(enrollment.id)
        if current is None:
            raise NotFoundError("enrollment not found", enrollment_id=enrollment.id)
        if current.version != expected_version:
            raise ConcurrentUpdateError(
                "enrollment was modified concurrently", enrollment_id=enrollment.id
            )
        stored = replace(enrollment, version=expected_version + 1)
        self._by_id[enrollment.id] = stored
        return stored
