"""Typed failures raised by the enrollment engine.

Every error carries whatever identifiers were known when it was raised
(enrollment, section, content) so the API layer can report them and log
lines can be correlated.
"""

from __future__ import annotations


class EnrollmentError(Exception):
    def __init__(
        self,
        message: str,
        *,
        enrollment_id: object | None = None,
        section_id: str | None = None,
        content_id: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.enrollment_id = str(enrollment_id) if enrollment_id is not None else None
        self.section_id = section_id
        self.content_id = content_id

    def context(self) -> dict[str, str]:
        ctx = {
            "enrollment_id": self.enrollment_id,
            "section_id": self.section_id,
            "content_id": self.content_id,
        }
        return {k: v for k, v in ctx.items() if v is not None}


class NotFoundError(EnrollmentError):
    """Enrollment, course, section, content or attempt is absent."""


class ConflictError(EnrollmentError):
    """The learner is already enrolled in the course."""


class ConcurrentUpdateError(ConflictError):
    """The enrollment changed between read and write."""


class InvalidOperationError(EnrollmentError):
    """The operation is not allowed for this content type or state."""


class ValidationFailureError(EnrollmentError):
    """Input or stored progress breaks an invariant."""


class StorageError(EnrollmentError):
    """The storage layer failed; not retried here."""
