"""Enrollment status transitions.

    in_progress ──(progress reaches 100 / explicit completion)──▶ completed
    in_progress ──(external drop action)──────────────────────▶ dropped

Both targets are terminal.  ``completed_at`` is written once, the first
time the enrollment completes.
"""

from __future__ import annotations

from dataclasses import replace

from enrollment_service.models.enrollment import (
    CompletionReport,
    Enrollment,
    PendingItem,
)
from enrollment_service.services.errors import InvalidOperationError


def ensure_accepts_work(enrollment: Enrollment) -> None:
    """Reject submissions and reviews on a dropped enrollment."""
    if enrollment.status == "dropped":
        raise InvalidOperationError(
            "enrollment has been dropped", enrollment_id=enrollment.id
        )


def mark_completed(enrollment: Enrollment, now: int) -> Enrollment:
    if enrollment.status == "completed" and enrollment.completed_at is not None:
        return enrollment
    completed_at = enrollment.completed_at
    if completed_at is None:
        completed_at = now
    return replace(enrollment, status="completed", completed_at=completed_at)


def apply_progress(enrollment: Enrollment, progress: int, now: int) -> Enrollment:
    """Store a freshly computed progress value and advance the status."""
    updated = replace(enrollment, progress=progress)
    if progress == 100 and updated.status == "in_progress":
        updated = mark_completed(updated, now)
    return updated


def pending_items(enrollment: Enrollment) -> tuple[PendingItem, ...]:
    return tuple(
        PendingItem(
            section_id=section.section_id,
            content_id=content.content_id,
            type=content.type,
            status="awaiting review" if content.attempts else "not attempted",
        )
        for section, content in enrollment.iter_contents()
        if not content.counts_toward_completion
    )


def complete(enrollment: Enrollment, now: int) -> Enrollment | CompletionReport:
    """Finish the enrollment if its progress allows it, else report what is left.

    Never marks content as done: an unfinished enrollment comes back
    unchanged inside the report.
    """
    if enrollment.status == "completed":
        return enrollment
    if enrollment.progress == 100 and enrollment.status == "in_progress":
        return mark_completed(enrollment, now)
    return CompletionReport(enrollment=enrollment, pending=pending_items(enrollment))
