"""SQLAlchemy table definitions.

These map to the frozen dataclass domain models in
enrollment_service/models/.  Repos convert between rows and dataclasses.

The per-section progress tree is stored as one JSON document on the
enrollment row: it is always read and written whole, together with the
derived progress/status columns, in a single versioned UPDATE.
"""

from __future__ import annotations

import uuid
from decimal import Decimal

from sqlalchemy import (
    JSON,
    CheckConstraint,
    Index,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from enrollment_service.db.engine import Base

_JSON = JSON().with_variant(JSONB(), "postgresql")


class EnrollmentRow(Base):
    __tablename__ = "enrollments"
    __table_args__ = (
        # One enrollment per learner and course; closes the checkout race.
        UniqueConstraint("user_id", "course_id", name="uq_enrollments_user_course"),
        Index("ix_enrollments_course_status", "course_id", "status"),
        Index("ix_enrollments_user_status", "user_id", "status"),
        CheckConstraint(
            "progress >= 0 AND progress <= 100", name="ck_enrollments_progress"
        ),
        CheckConstraint("final_price >= 0", name="ck_enrollments_final_price"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    course_id: Mapped[str] = mapped_column(String(64), nullable=False)
    live_run_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    base_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    final_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    discounts_applied: Mapped[list[str]] = mapped_column(
        _JSON, nullable=False, default=list
    )
    status: Mapped[str] = mapped_column(
        String(16), nullable=False, default="in_progress"
    )  # in_progress|completed|dropped
    progress: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    started_at: Mapped[int] = mapped_column(Integer, nullable=False)
    completed_at: Mapped[int | None] = mapped_column(Integer, nullable=True)
    last_accessed_at: Mapped[int | None] = mapped_column(Integer, nullable=True)
    sections: Mapped[list[dict]] = mapped_column(_JSON, nullable=False, default=list)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
