from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Literal

DiscountType = Literal["percentage", "fixed"]


@dataclass(frozen=True, slots=True)
class Discount:
    id: str
    code: str
    type: DiscountType
    value: Decimal
    starts_at: int | None = None
    ends_at: int | None = None
    usage_limit: int | None = None  # None = unlimited
    used_count: int = 0
    course_ids: tuple[str, ...] = ()  # empty = applies to every course
    active: bool = True

    def applies_to(self, course_id: str, now: int) -> bool:
        """True when this discount may be applied to ``course_id`` at ``now``.

        Usage counters are not consulted; accounting belongs to the
        catalog owner.
        """
        if not self.active:
            return False
        if self.starts_at is not None and now < self.starts_at:
            return False
        if self.ends_at is not None and now > self.ends_at:
            return False
        if self.course_ids and course_id not in self.course_ids:
            return False
        return True
