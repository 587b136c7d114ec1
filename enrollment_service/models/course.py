from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Literal

ContentType = Literal["session", "quiz", "assessment"]


@dataclass(frozen=True, slots=True)
class CurriculumContent:
    id: str
    type: ContentType


@dataclass(frozen=True, slots=True)
class CurriculumSection:
    id: str
    title: str = ""
    contents: tuple[CurriculumContent, ...] = ()


@dataclass(frozen=True, slots=True)
class Course:
    """Catalog view of a course, as supplied by the catalog store.

    ``discount_ids`` lists the discounts a learner may request at checkout;
    ``page_discount_ids`` are always applied, requested or not.
    """

    id: str
    title: str
    price: Decimal
    curriculum: tuple[CurriculumSection, ...] = ()
    discount_ids: tuple[str, ...] = ()
    page_discount_ids: tuple[str, ...] = ()
    status: str = "published"  # draft|published|retired

    @property
    def content_count(self) -> int:
        return sum(len(s.contents) for s in self.curriculum)
