"""Enrollment endpoints.

Checkout, attempt submission, instructor review, submitted files,
completion and listing.  Handlers translate between JSON and the
EnrollmentService; every business rule lives in the service.

A learner's enrollments are cached for listings and invalidated whenever
one of them changes.  Course display prices are never cached: they are
recomputed from the catalog on every listing request.
"""

from __future__ import annotations

import json
import logging
from decimal import Decimal
from typing import Annotated, Any, Literal
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, ConfigDict, Field

from enrollment_service.api.dependencies import (
    get_enrollment_service,
    require_role,
    require_user,
)
from enrollment_service.core.metrics import CACHE_OPERATIONS
from enrollment_service.models.course import Course
from enrollment_service.models.enrollment import (
    AttemptAnswer,
    CompletionReport,
    Enrollment,
    EnrollmentListing,
)
from enrollment_service.models.principal import Principal
from enrollment_service.services.cache import cache_service
from enrollment_service.services.enrollment_service import EnrollmentService
from enrollment_service.services.errors import (
    ConflictError,
    EnrollmentError,
    InvalidOperationError,
    NotFoundError,
    StorageError,
    ValidationFailureError,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/enrollments", tags=["enrollments"])

# Bounds staleness when an enrollment changes through a worker whose
# invalidation did not reach this cache (in-memory cache, multi-process).
_LISTING_CACHE_TTL = 60

# Roles that may act on enrollments other than their own.
_STAFF_ROLES = {"instructor", "admin"}

Service = Annotated[EnrollmentService, Depends(get_enrollment_service)]


# ---------------------------------------------------------------------------
# Schemas
# ---------------------------------------------------------------------------


class _FromAttributes(BaseModel):
    model_config = ConfigDict(from_attributes=True)


class AnswerIn(_FromAttributes):
    question_id: str
    answer: Any
    correct: bool = False


class AttemptOut(_FromAttributes):
    attempt_number: int
    submitted_at: int
    answers: list[AnswerIn]
    submitted_files: list[str]
    score: int | None = None
    passed: bool | None = None
    feedback: str | None = None
    reviewed_by: str | None = None
    reviewed_at: int | None = None
    is_reviewed: bool = False


class ContentProgressOut(_FromAttributes):
    content_id: str
    type: str
    completed: bool
    score: int | None = None
    passed: bool | None = None
    attempts: list[AttemptOut]


class SectionProgressOut(_FromAttributes):
    section_id: str
    contents: list[ContentProgressOut]


class EnrollmentOut(_FromAttributes):
    id: UUID
    user_id: str
    course_id: str
    live_run_id: str | None = None
    base_price: Decimal
    final_price: Decimal
    discounts_applied: list[str]
    status: str
    progress: int
    started_at: int
    completed_at: int | None = None
    last_accessed_at: int | None = None
    sections: list[SectionProgressOut]


class CheckoutIn(BaseModel):
    course_id: str
    live_run_id: str | None = None
    discount_ids: list[str] = Field(default_factory=list)


class AttemptIn(BaseModel):
    answers: list[AnswerIn] = Field(default_factory=list)
    files: list[str] = Field(default_factory=list)  # storage references


class ReviewIn(BaseModel):
    score: int = Field(ge=0, le=100)
    passed: bool
    feedback: str | None = Field(default=None, max_length=1000)


class PendingItemOut(_FromAttributes):
    section_id: str
    content_id: str
    type: str
    status: Literal["not attempted", "awaiting review"]


class CompletionOut(BaseModel):
    completed: bool
    message: str | None = None
    enrollment: EnrollmentOut
    pending: list[PendingItemOut] = Field(default_factory=list)


class CourseSummaryOut(BaseModel):
    title: str
    base_price: Decimal
    final_price: Decimal


class EnrollmentListingOut(BaseModel):
    enrollment: EnrollmentOut
    course: CourseSummaryOut | None = None


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

_STATUS_FOR_ERROR: tuple[tuple[type[EnrollmentError], int], ...] = (
    (NotFoundError, 404),
    (ConflictError, 409),
    (InvalidOperationError, 409),
    (ValidationFailureError, 422),
    (StorageError, 503),
)


def _http_error(exc: EnrollmentError) -> HTTPException:
    code = next((c for t, c in _STATUS_FOR_ERROR if isinstance(exc, t)), 500)
    if code >= 500:
        logger.error("Enrollment storage failure: %s %s", exc.message, exc.context())
    else:
        logger.warning("Enrollment request rejected (%d): %s", code, exc.message)
    return HTTPException(
        status_code=code, detail={"message": exc.message, **exc.context()}
    )


def _enrollment_out(enrollment: Enrollment) -> EnrollmentOut:
    return EnrollmentOut.model_validate(enrollment)


def _listing_out(listing: EnrollmentListing) -> EnrollmentListingOut:
    course = None
    if listing.course_title is not None:
        course = CourseSummaryOut(
            title=listing.course_title,
            base_price=listing.course_base_price,
            final_price=listing.course_final_price,
        )
    return EnrollmentListingOut(
        enrollment=_enrollment_out(listing.enrollment), course=course
    )


def _course_summary(
    priced: tuple[Course, Decimal] | None,
) -> CourseSummaryOut | None:
    if priced is None:
        return None
    course, final_price = priced
    return CourseSummaryOut(
        title=course.title, base_price=course.price, final_price=final_price
    )


async def _invalidate_listings(user_id: str) -> None:
    await cache_service.delete_pattern(f"enrollments:{user_id}:*")


async def _load_owned(
    service: EnrollmentService, enrollment_id: UUID, principal: Principal
) -> Enrollment:
    """Load an enrollment the caller may act on (its learner or staff)."""
    try:
        enrollment = await service.get_enrollment(enrollment_id)
    except EnrollmentError as e:
        raise _http_error(e) from None
    if enrollment.user_id != principal.user_id and not principal.has_any_role(
        _STAFF_ROLES
    ):
        logger.warning(
            "Access denied: user=%s does not own enrollment=%s",
            principal.user_id,
            enrollment_id,
        )
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Not your enrollment",
        )
    return enrollment


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@router.post(
    "/checkout",
    response_model=EnrollmentOut,
    status_code=status.HTTP_201_CREATED,
)
async def checkout(
    payload: CheckoutIn,
    principal: Annotated[Principal, Depends(require_user)],
    service: Service,
) -> EnrollmentOut:
    try:
        enrollment = await service.checkout(
            principal.user_id,
            payload.course_id,
            live_run_id=payload.live_run_id,
            discount_ids=payload.discount_ids,
        )
    except EnrollmentError as e:
        raise _http_error(e) from None
    await _invalidate_listings(principal.user_id)
    return _enrollment_out(enrollment)


@router.get("", response_model=list[EnrollmentListingOut])
async def list_enrollments(
    principal: Annotated[Principal, Depends(require_user)],
    service: Service,
    course_id: str | None = None,
) -> list[EnrollmentListingOut]:
    cache_key = f"enrollments:{principal.user_id}:{course_id or '*all*'}"

    cached = await cache_service.get(cache_key)
    if cached is not None:
        CACHE_OPERATIONS.labels(operation="hit").inc()
        enrollments = [EnrollmentOut.model_validate(e) for e in json.loads(cached)]
        try:
            prices = await service.course_display_prices(
                e.course_id for e in enrollments
            )
        except EnrollmentError as e:
            raise _http_error(e) from None
        return [
            EnrollmentListingOut(
                enrollment=e, course=_course_summary(prices[e.course_id])
            )
            for e in enrollments
        ]

    CACHE_OPERATIONS.labels(operation="miss").inc()
    try:
        listings = await service.list_enrollments(principal.user_id, course_id)
    except EnrollmentError as e:
        raise _http_error(e) from None
    out = [_listing_out(listing) for listing in listings]

    # Only the enrollments are cached; prices are attached per request.
    await cache_service.set(
        cache_key,
        json.dumps([o.enrollment.model_dump(mode="json") for o in out]),
        _LISTING_CACHE_TTL,
    )
    return out


@router.get("/by-course/{course_id}", response_model=EnrollmentOut)
async def get_enrollment_by_course(
    course_id: str,
    principal: Annotated[Principal, Depends(require_user)],
    service: Service,
) -> EnrollmentOut:
    try:
        enrollment = await service.get_enrollment_by_course(
            principal.user_id, course_id
        )
    except EnrollmentError as e:
        raise _http_error(e) from None
    return _enrollment_out(enrollment)


@router.get("/{enrollment_id}", response_model=EnrollmentOut)
async def get_enrollment(
    enrollment_id: UUID,
    principal: Annotated[Principal, Depends(require_user)],
    service: Service,
) -> EnrollmentOut:
    return _enrollment_out(await _load_owned(service, enrollment_id, principal))


@router.post(
    "/{enrollment_id}/sections/{section_id}/contents/{content_id}/attempts",
    response_model=list[AttemptOut],
)
async def submit_attempt(
    enrollment_id: UUID,
    section_id: str,
    content_id: str,
    payload: AttemptIn,
    principal: Annotated[Principal, Depends(require_user)],
    service: Service,
) -> list[AttemptOut]:
    enrollment = await _load_owned(service, enrollment_id, principal)
    answers = [
        AttemptAnswer(question_id=a.question_id, answer=a.answer, correct=a.correct)
        for a in payload.answers
    ]
    try:
        attempts = await service.submit_attempt(
            enrollment_id, section_id, content_id, answers=answers, files=payload.files
        )
    except EnrollmentError as e:
        raise _http_error(e) from None
    await _invalidate_listings(enrollment.user_id)
    return [AttemptOut.model_validate(a) for a in attempts]


@router.post(
    "/{enrollment_id}/sections/{section_id}/contents/{content_id}"
    "/attempts/{attempt_index}/review",
    response_model=EnrollmentOut,
)
async def review_assessment(
    enrollment_id: UUID,
    section_id: str,
    content_id: str,
    attempt_index: int,
    payload: ReviewIn,
    principal: Annotated[Principal, Depends(require_role("instructor"))],
    service: Service,
) -> EnrollmentOut:
    try:
        enrollment = await service.review_assessment(
            enrollment_id,
            section_id,
            content_id,
            attempt_index,
            score=payload.score,
            passed=payload.passed,
            instructor_id=principal.user_id,
            feedback=payload.feedback,
        )
    except EnrollmentError as e:
        raise _http_error(e) from None
    await _invalidate_listings(enrollment.user_id)
    return _enrollment_out(enrollment)


@router.get(
    "/{enrollment_id}/sections/{section_id}/contents/{content_id}/files",
    response_model=list[str],
)
async def get_assessment_files(
    enrollment_id: UUID,
    section_id: str,
    content_id: str,
    principal: Annotated[Principal, Depends(require_user)],
    service: Service,
) -> list[str]:
    await _load_owned(service, enrollment_id, principal)
    try:
        return await service.get_assessment_files(enrollment_id, section_id, content_id)
    except EnrollmentError as e:
        raise _http_error(e) from None


@router.post("/{enrollment_id}/complete", response_model=CompletionOut)
async def complete_enrollment(
    enrollment_id: UUID,
    principal: Annotated[Principal, Depends(require_user)],
    service: Service,
) -> CompletionOut:
    await _load_owned(service, enrollment_id, principal)
    try:
        result = await service.complete_enrollment(enrollment_id)
    except EnrollmentError as e:
        raise _http_error(e) from None

    if isinstance(result, CompletionReport):
        return CompletionOut(
            completed=False,
            message=result.message,
            enrollment=_enrollment_out(result.enrollment),
            pending=[PendingItemOut.model_validate(p) for p in result.pending],
        )
    await _invalidate_listings(result.user_id)
    return CompletionOut(completed=True, enrollment=_enrollment_out(result))
