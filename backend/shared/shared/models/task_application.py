"""Task application model: one tasker's bid on one task."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Index,
    String,
    Text,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from shared.models.base import Base


class TaskApplicationRecord(Base):
    __tablename__ = "task_applications"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    task_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("tasks.id", ondelete="CASCADE"), index=True
    )
    applicant_uid: Mapped[str] = mapped_column(String, index=True)

    proposed_amount: Mapped[float] = mapped_column(Float)
    proposed_currency: Mapped[str] = mapped_column(String(8), default="INR")
    proposed_negotiable: Mapped[bool] = mapped_column(Boolean, default=True)
    proposed_start: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), default=None
    )
    proposed_end: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), default=None
    )
    estimated_hours: Mapped[float | None] = mapped_column(Float, default=None)
    schedule_flexible: Mapped[bool] = mapped_column(Boolean, default=True)
    cover_letter: Mapped[str] = mapped_column(Text, default="")

    # pending → accepted | rejected | withdrawn
    status: Mapped[str] = mapped_column(String, default="pending")
    responded_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), default=None
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        Index("ix_task_applications_task_status", "task_id", "status"),
        # One live application per (task, applicant); withdrawn ones don't count
        Index(
            "uq_task_applications_live",
            "task_id",
            "applicant_uid",
            unique=True,
            postgresql_where=text("status <> 'withdrawn'"),
            sqlite_where=text("status <> 'withdrawn'"),
        ),
    )
