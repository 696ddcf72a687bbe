"""Task model: the unit of work brokered between poster and tasker."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import JSON, Boolean, DateTime, Float, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from shared.models.base import Base


class TaskRecord(Base):
    __tablename__ = "tasks"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    creator_uid: Mapped[str] = mapped_column(String, index=True)
    # Non-null iff status in (assigned, in_progress, completed)
    assignee_uid: Mapped[str | None] = mapped_column(String, default=None, index=True)

    type: Mapped[str] = mapped_column(String)
    title: Mapped[str] = mapped_column(String(200))
    description: Mapped[str] = mapped_column(Text)

    budget_amount: Mapped[float] = mapped_column(Float)
    budget_currency: Mapped[str] = mapped_column(String(8), default="INR")
    budget_negotiable: Mapped[bool] = mapped_column(Boolean, default=True)

    skills_required: Mapped[list] = mapped_column(JSON, default=list)

    latitude: Mapped[float | None] = mapped_column(Float, default=None)
    longitude: Mapped[float | None] = mapped_column(Float, default=None)
    address: Mapped[dict | None] = mapped_column(JSON, default=None)

    urgency: Mapped[str] = mapped_column(String, default="medium")
    priority: Mapped[str] = mapped_column(String, default="medium")

    # Lifecycle: open → assigned → in_progress → completed | cancelled | expired
    status: Mapped[str] = mapped_column(String, default="open")

    # Populated on transition into completed
    completion_proofs: Mapped[list | None] = mapped_column(JSON, default=None)
    completion_comment: Mapped[str | None] = mapped_column(Text, default=None)
    completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), default=None
    )

    # Advisory only
    view_count: Mapped[int] = mapped_column(Integer, default=0)
    application_count: Mapped[int] = mapped_column(Integer, default=0)

    expires_at: Mapped[datetime | None] = mapped_column(
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
        Index("ix_tasks_status_created_at", "status", "created_at"),
        Index("ix_tasks_status_expires_at", "status", "expires_at"),
    )
