"""Initial marketplace schema: profiles, tasks, applications, messages.

Revision ID: 001
Revises: None
Create Date: 2026-10-17
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Profiles
    op.create_table(
        "profiles",
        sa.Column("uid", sa.String(), primary_key=True),
        sa.Column("name", sa.String(), nullable=False, server_default=""),
        sa.Column("photo_url", sa.String(), nullable=True),
        sa.Column("roles", sa.JSON(), nullable=False),
        sa.Column("skills", sa.JSON(), nullable=False),
        sa.Column("latitude", sa.Float(), nullable=True),
        sa.Column("longitude", sa.Float(), nullable=True),
        sa.Column("address", sa.JSON(), nullable=True),
        sa.Column("rating", sa.Float(), nullable=False, server_default="0"),
        sa.Column("review_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_tasks", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("completed_tasks", sa.Integer(), nullable=False, server_default="0"),
        sa.Column(
            "created_at", sa.DateTime(timezone=True), nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at", sa.DateTime(timezone=True), nullable=False,
            server_default=sa.func.now(),
        ),
    )

    # Tasks
    op.create_table(
        "tasks",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("creator_uid", sa.String(), nullable=False),
        sa.Column("assignee_uid", sa.String(), nullable=True),
        sa.Column("type", sa.String(), nullable=False),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("budget_amount", sa.Float(), nullable=False),
        sa.Column("budget_currency", sa.String(8), nullable=False, server_default="INR"),
        sa.Column("budget_negotiable", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("skills_required", sa.JSON(), nullable=False),
        sa.Column("latitude", sa.Float(), nullable=True),
        sa.Column("longitude", sa.Float(), nullable=True),
        sa.Column("address", sa.JSON(), nullable=True),
        sa.Column("urgency", sa.String(), nullable=False, server_default="medium"),
        sa.Column("priority", sa.String(), nullable=False, server_default="medium"),
        sa.Column("status", sa.String(), nullable=False, server_default="open"),
        sa.Column("completion_proofs", sa.JSON(), nullable=True),
        sa.Column("completion_comment", sa.Text(), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("view_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("application_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "created_at", sa.DateTime(timezone=True), nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at", sa.DateTime(timezone=True), nullable=False,
            server_default=sa.func.now(),
        ),
    )
    op.create_index("ix_tasks_creator_uid", "tasks", ["creator_uid"])
    op.create_index("ix_tasks_assignee_uid", "tasks", ["assignee_uid"])
    op.create_index("ix_tasks_status_created_at", "tasks", ["status", "created_at"])
    op.create_index("ix_tasks_status_expires_at", "tasks", ["status", "expires_at"])

    # Task applications
    op.create_table(
        "task_applications",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "task_id", sa.Uuid(),
            sa.ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("applicant_uid", sa.String(), nullable=False),
        sa.Column("proposed_amount", sa.Float(), nullable=False),
        sa.Column("proposed_currency", sa.String(8), nullable=False, server_default="INR"),
        sa.Column("proposed_negotiable", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("proposed_start", sa.DateTime(timezone=True), nullable=True),
        sa.Column("proposed_end", sa.DateTime(timezone=True), nullable=True),
        sa.Column("estimated_hours", sa.Float(), nullable=True),
        sa.Column("schedule_flexible", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("cover_letter", sa.Text(), nullable=False, server_default=""),
        sa.Column("status", sa.String(), nullable=False, server_default="pending"),
        sa.Column("responded_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "created_at", sa.DateTime(timezone=True), nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at", sa.DateTime(timezone=True), nullable=False,
            server_default=sa.func.now(),
        ),
    )
    op.create_index("ix_task_applications_task_id", "task_applications", ["task_id"])
    op.create_index("ix_task_applications_applicant_uid", "task_applications", ["applicant_uid"])
    op.create_index("ix_task_applications_task_status", "task_applications", ["task_id", "status"])
    # One live application per (task, applicant)
    op.create_index(
        "uq_task_applications_live",
        "task_applications",
        ["task_id", "applicant_uid"],
        unique=True,
        postgresql_where=sa.text("status <> 'withdrawn'"),
    )

    # Application messages
    op.create_table(
        "application_messages",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "application_id", sa.Uuid(),
            sa.ForeignKey("task_applications.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("sender_uid", sa.String(), nullable=False),
        sa.Column("text", sa.Text(), nullable=False),
        sa.Column(
            "created_at", sa.DateTime(timezone=True), nullable=False,
            server_default=sa.func.now(),
        ),
    )
    op.create_index(
        "ix_application_messages_application_id", "application_messages", ["application_id"]
    )


def downgrade() -> None:
    op.drop_table("application_messages")
    op.drop_table("task_applications")
    op.drop_table("tasks")
    op.drop_table("profiles")
