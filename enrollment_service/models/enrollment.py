from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Literal
from uuid import UUID, uuid4

from enrollment_service.models.course import ContentType

EnrollmentStatus = Literal["in_progress", "completed", "dropped"]


@dataclass(frozen=True, slots=True)
class AttemptAnswer:
    question_id: str
    answer: Any  # text, choice id, list of choices...
    correct: bool = False


@dataclass(frozen=True, slots=True)
class Attempt:
    """One submission for a content item.

    Review fields stay ``None`` until an instructor grades the attempt.
    """

    attempt_number: int
    submitted_at: int
    answers: tuple[AttemptAnswer, ...] = ()
    submitted_files: tuple[str, ...] = ()
    score: int | None = None
    passed: bool | None = None
    feedback: str | None = None
    reviewed_by: str | None = None
    reviewed_at: int | None = None

    @property
    def is_reviewed(self) -> bool:
        return self.reviewed_at is not None


@dataclass(frozen=True, slots=True)
class ContentProgress:
    content_id: str
    type: ContentType
    completed: bool = False
    score: int | None = None
    passed: bool | None = None
    attempts: tuple[Attempt, ...] = ()

    @property
    def counts_toward_completion(self) -> bool:
        # Only assessments need a pass; quizzes and sessions count once completed.
        if self.type == "assessment":
            return self.completed and self.passed is True
        return self.completed


@dataclass(frozen=True, slots=True)
class SectionProgress:
    section_id: str
    contents: tuple[ContentProgress, ...] = ()


@dataclass(frozen=True, slots=True)
class Enrollment:
    """One learner's enrollment in one course.

    Pricing fields are a snapshot taken at checkout.  ``progress``,
    ``status`` and ``completed_at`` are derived from ``sections`` by the
    progress tracker and are never written by clients.  ``version`` is
    bumped by the repo on every successful write.
    """

    id: UUID
    user_id: str
    course_id: str
    base_price: Decimal
    final_price: Decimal
    started_at: int
    live_run_id: str | None = None
    discounts_applied: tuple[str, ...] = ()
    status: EnrollmentStatus = "in_progress"
    completed_at: int | None = None
    progress: int = 0
    sections: tuple[SectionProgress, ...] = ()
    last_accessed_at: int | None = None
    version: int = 1

    @staticmethod
    def new(
        *,
        user_id: str,
        course_id: str,
        base_price: Decimal,
        final_price: Decimal,
        started_at: int,
        sections: tuple[SectionProgress, ...],
        live_run_id: str | None = None,
        discounts_applied: tuple[str, ...] = (),
    ) -> Enrollment:
        return Enrollment(
            id=uuid4(),
            user_id=user_id,
            course_id=course_id,
            base_price=base_price,
            final_price=final_price,
            started_at=started_at,
            live_run_id=live_run_id,
            discounts_applied=discounts_applied,
            sections=sections,
        )

    def iter_contents(self):
        for section in self.sections:
            for content in section.contents:
                yield section, content


@dataclass(frozen=True, slots=True)
class PendingItem:
    section_id: str
    content_id: str
    type: ContentType
    status: str  # "not attempted" | "awaiting review"


@dataclass(frozen=True, slots=True)
class CompletionReport:
    """Returned by complete_enrollment when the course is not finished yet."""

    enrollment: Enrollment
    pending: tuple[PendingItem, ...]
    message: str = "Course not fully completed yet"


@dataclass(frozen=True, slots=True)
class EnrollmentListing:
    """An enrollment paired with the course's current display pricing."""

    enrollment: Enrollment
    # None when the course has since been removed from the catalog
    course_title: str | None
    course_base_price: Decimal | None
    course_final_price: Decimal | None
