"""Progress tracker: per-content attempt state and aggregate progress.

All functions are pure.  They take an Enrollment and return a new one,
leaving persistence to the caller, so a failed write never leaves a
half-applied change behind.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import replace

from enrollment_service.models.course import Course
from enrollment_service.models.enrollment import (
    Attempt,
    AttemptAnswer,
    ContentProgress,
    Enrollment,
    SectionProgress,
)
from enrollment_service.services import lifecycle
from enrollment_service.services.errors import (
    InvalidOperationError,
    NotFoundError,
    ValidationFailureError,
)

MAX_FEEDBACK_LENGTH = 1000


def initialize_progress(course: Course) -> tuple[SectionProgress, ...]:
    """Freeze the course curriculum into empty progress records."""
    return tuple(
        SectionProgress(
            section_id=section.id,
            contents=tuple(
                ContentProgress(content_id=item.id, type=item.type)
                for item in section.contents
            ),
        )
        for section in course.curriculum
    )


def _locate(
    enrollment: Enrollment, section_id: str, content_id: str
) -> tuple[int, int]:
    for si, section in enumerate(enrollment.sections):
        if section.section_id != section_id:
            continue
        for ci, content in enumerate(section.contents):
            if content.content_id == content_id:
                return si, ci
        raise NotFoundError(
            "content not found in enrollment",
            enrollment_id=enrollment.id,
            section_id=section_id,
            content_id=content_id,
        )
    raise NotFoundError(
        "section not found in enrollment",
        enrollment_id=enrollment.id,
        section_id=section_id,
    )


def find_content(
    enrollment: Enrollment, section_id: str, content_id: str
) -> ContentProgress:
    si, ci = _locate(enrollment, section_id, content_id)
    return enrollment.sections[si].contents[ci]


def _replace_content(
    enrollment: Enrollment, si: int, ci: int, content: ContentProgress
) -> Enrollment:
    section = enrollment.sections[si]
    contents = section.contents[:ci] + (content,) + section.contents[ci + 1 :]
    sections = (
        enrollment.sections[:si]
        + (replace(section, contents=contents),)
        + enrollment.sections[si + 1 :]
    )
    return replace(enrollment, sections=sections)


def record_attempt(
    enrollment: Enrollment,
    section_id: str,
    content_id: str,
    *,
    answers: Iterable[AttemptAnswer] = (),
    files: Iterable[str] = (),
    now: int,
) -> Enrollment:
    """Append the next attempt; sessions complete on their first attempt."""
    si, ci = _locate(enrollment, section_id, content_id)
    content = enrollment.sections[si].contents[ci]

    attempt = Attempt(
        attempt_number=len(content.attempts) + 1,
        submitted_at=now,
        answers=tuple(answers),
        submitted_files=tuple(files),
    )
    updated = replace(content, attempts=content.attempts + (attempt,))
    if updated.type == "session":
        updated = replace(updated, completed=True)

    enrollment = _replace_content(enrollment, si, ci, updated)
    return replace(enrollment, last_accessed_at=now)


def apply_review(
    enrollment: Enrollment,
    section_id: str,
    content_id: str,
    attempt_index: int,
    *,
    score: int,
    passed: bool,
    reviewer_id: str,
    now: int,
    feedback: str | None = None,
) -> Enrollment:
    """Grade one attempt and copy its result onto the content.

    A reviewed content is completed whether or not it passed; whether it
    counts toward progress is decided by ``counts_toward_completion``.
    """
    si, ci = _locate(enrollment, section_id, content_id)
    content = enrollment.sections[si].contents[ci]
    ctx = {
        "enrollment_id": enrollment.id,
        "section_id": section_id,
        "content_id": content_id,
    }

    if content.type == "session":
        raise InvalidOperationError("sessions are not reviewable", **ctx)
    if not 0 <= attempt_index < len(content.attempts):
        raise NotFoundError(f"attempt {attempt_index} not found", **ctx)
    if not 0 <= score <= 100:
        raise ValidationFailureError("score must be between 0 and 100", **ctx)
    if feedback is not None and len(feedback) > MAX_FEEDBACK_LENGTH:
        raise ValidationFailureError(
            f"feedback must be at most {MAX_FEEDBACK_LENGTH} characters", **ctx
        )

    attempts = list(content.attempts)
    attempts[attempt_index] = replace(
        attempts[attempt_index],
        score=score,
        passed=passed,
        feedback=feedback,
        reviewed_by=reviewer_id,
        reviewed_at=now,
    )
    updated = replace(
        content,
        attempts=tuple(attempts),
        completed=True,
        score=score,
        passed=passed,
    )
    enrollment = _replace_content(enrollment, si, ci, updated)
    return replace(enrollment, last_accessed_at=now)


def calculate_progress(sections: Iterable[SectionProgress]) -> int:
    total = 0
    done = 0
    for section in sections:
        for content in section.contents:
            total += 1
            if content.counts_toward_completion:
                done += 1
    if total == 0:
        return 0
    # round half up: 1 of 8 -> 13, not banker's 12
    return (200 * done + total) // (2 * total)


def recalculate_progress(enrollment: Enrollment, now: int) -> Enrollment:
    progress = calculate_progress(enrollment.sections)
    return lifecycle.apply_progress(enrollment, progress, now)


def validate_attempt_sequence(enrollment: Enrollment) -> None:
    """Raise if any content's attempts are not numbered 1..n."""
    for section, content in enrollment.iter_contents():
        for i, attempt in enumerate(content.attempts):
            if attempt.attempt_number != i + 1:
                raise ValidationFailureError(
                    "attempt numbers must be sequential",
                    enrollment_id=enrollment.id,
                    section_id=section.section_id,
                    content_id=content.content_id,
                )
