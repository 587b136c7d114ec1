"""Discount stacking for checkout and catalog display.

Discounts stack sequentially: a percentage is taken of the running price,
so application order matters.  A fixed discount never drives the running
price below zero, which keeps a later percentage from acting on a
negative amount.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from decimal import ROUND_HALF_UP, Decimal

from enrollment_service.models.course import Course
from enrollment_service.models.discount import Discount

_ZERO = Decimal("0")
_CENTS = Decimal("0.01")
_HUNDRED = Decimal("100")


def compute_final_price(base_price: Decimal, discounts: Iterable[Discount]) -> Decimal:
    final_price = Decimal(base_price)
    for discount in discounts:
        if discount.type == "percentage":
            final_price -= final_price * discount.value / _HUNDRED
        elif discount.type == "fixed":
            final_price = max(final_price - discount.value, _ZERO)
        else:
            raise ValueError(f"unknown discount type {discount.type!r}")
    final_price = max(final_price, _ZERO)
    return final_price.quantize(_CENTS, rounding=ROUND_HALF_UP)


def select_discount_ids(course: Course, requested_ids: Sequence[str]) -> list[str]:
    """Order in which discounts are considered for ``course``.

    Requested ids on the course allow-list come first, in request order,
    followed by the course's page discounts in catalog order.  Each id
    appears once.
    """
    allowed = set(course.discount_ids)
    selected: list[str] = []
    for discount_id in requested_ids:
        if discount_id in allowed and discount_id not in selected:
            selected.append(discount_id)
    for discount_id in course.page_discount_ids:
        if discount_id not in selected:
            selected.append(discount_id)
    return selected


def applicable_discounts(
    course: Course,
    candidate_ids: Sequence[str],
    catalog: Mapping[str, Discount],
    now: int,
) -> list[Discount]:
    """Resolve ``candidate_ids`` against the catalog, keeping order.

    Unknown ids and discounts that are inactive, expired or restricted to
    other courses are dropped.
    """
    resolved = []
    for discount_id in candidate_ids:
        discount = catalog.get(discount_id)
        if discount is not None and discount.applies_to(course.id, now):
            resolved.append(discount)
    return resolved


def display_price(
    course: Course, catalog: Mapping[str, Discount], now: int
) -> Decimal:
    """Price shown in listings: base price less the current page discounts."""
    discounts = applicable_discounts(course, course.page_discount_ids, catalog, now)
    return compute_final_price(course.price, discounts)
