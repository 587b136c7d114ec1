"""Read-only access to the course catalog.

The catalog (courses, curricula, discounts) is owned by another service.
This module only defines what the enrollment engine reads from it, plus an
in-memory implementation seeded with a sample course for dev and tests.
"""

from __future__ import annotations

from collections.abc import Iterable
from decimal import Decimal
from typing import Protocol

from enrollment_service.models.course import (
    Course,
    CurriculumContent,
    CurriculumSection,
)
from enrollment_service.models.discount import Discount


class CatalogRepo(Protocol):
    async def get_course(self, course_id: str) -> Course | None: ...
    async def list_courses(self) -> list[Course]: ...
    async def get_discounts(
        self, discount_ids: Iterable[str]
    ) -> dict[str, Discount]: ...


class InMemoryCatalogRepo:
    def __init__(self) -> None:
        self._courses: dict[str, Course] = {}
        self._discounts: dict[str, Discount] = {}

    async def get_course(self, course_id: str) -> Course | None:
        return self._courses.get(course_id)

    async def list_courses(self) -> list[Course]:
        return list(self._courses.values())

    async def get_discounts(self, discount_ids: Iterable[str]) -> dict[str, Discount]:
        return {i: self._discounts[i] for i in discount_ids if i in self._discounts}

    def add_course(self, course: Course) -> None:
        self._courses[course.id] = course

    def add_discount(self, discount: Discount) -> None:
        self._discounts[discount.id] = discount

    def clear(self) -> None:
        self._courses.clear()
        self._discounts.clear()


def seed_sample_catalog(repo: InMemoryCatalogRepo) -> None:
    """Seed a sample course for development/testing."""
    repo.add_discount(
        Discount(id="launch-10", code="LAUNCH10", type="percentage", value=Decimal(10))
    )
    repo.add_discount(
        Discount(id="welcome-20", code="WELCOME20", type="fixed", value=Decimal(20))
    )
    repo.add_course(
        Course(
            id="intro-to-python",
            title="Introduction to Python",
            price=Decimal("100.00"),
            curriculum=(
                CurriculumSection(
                    id="basics",
                    title="Basics",
                    contents=(CurriculumContent(id="welcome", type="session"),),
                ),
                CurriculumSection(
                    id="final",
                    title="Final project",
                    contents=(CurriculumContent(id="project", type="assessment"),),
                ),
            ),
            discount_ids=("welcome-20",),
            page_discount_ids=("launch-10",),
        )
    )
