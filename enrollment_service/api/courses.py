"""Catalog listing with display prices.

The catalog is owned elsewhere; this endpoint only shows what a learner
would pay today once the course's page discounts are applied.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Annotated

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from enrollment_service.api.dependencies import get_enrollment_service, require_user
from enrollment_service.models.principal import Principal
from enrollment_service.services.enrollment_service import EnrollmentService

router = APIRouter(prefix="/v1/courses", tags=["courses"])


class CourseOut(BaseModel):
    id: str
    title: str
    status: str
    base_price: Decimal
    final_price: Decimal
    content_count: int


@router.get("", response_model=list[CourseOut])
async def list_courses(
    _principal: Annotated[Principal, Depends(require_user)],
    service: Annotated[EnrollmentService, Depends(get_enrollment_service)],
) -> list[CourseOut]:
    return [
        CourseOut(
            id=course.id,
            title=course.title,
            status=course.status,
            base_price=course.price,
            final_price=final_price,
            content_count=course.content_count,
        )
        for course, final_price in await service.list_courses()
    ]
