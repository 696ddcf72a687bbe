"""Persistence contract consumed by the marketplace core.

Each backend (SQL database, in-memory) implements this interface so the
lifecycle, workflow and matching layers stay storage-agnostic.  Every method
returns plain records from ``shared.schemas.marketplace``: a single record,
``None`` when nothing matched, or a list.

Update methods take a ``values`` mapping keyed by record field names
(``status``, ``assignee_uid``, ``completion``, ``title``, ...).
"""

from __future__ import annotations

import uuid
from abc import ABC, abstractmethod
from collections.abc import Collection
from datetime import datetime

from shared.schemas.marketplace import (
    ApplicationMessage,
    ApplicationStatus,
    Profile,
    Task,
    TaskApplication,
    TaskSort,
    TaskStatus,
)


class TaskStore(ABC):
    """Abstract base class for marketplace persistence backends."""

    # True when accept_application() is a single atomic unit. Backends that
    # cannot offer this get the two-phase accept in ApplicationWorkflow.
    transactional: bool = True

    @staticmethod
    def new_id() -> str:
        """Generate an identifier for a new task or application."""
        return str(uuid.uuid4())

    # --- Profiles ---

    @abstractmethod
    async def get_profile(self, uid: str) -> Profile | None:
        """Point read of a profile."""

    @abstractmethod
    async def save_profile(self, profile: Profile) -> Profile:
        """Insert or replace a profile."""

    @abstractmethod
    async def list_taskers(
        self, skills_any: Collection[str] | None = None, limit: int = 200
    ) -> list[Profile]:
        """Profiles with role tasker or both.

        When ``skills_any`` is non-empty only profiles sharing at least one
        of those skills are returned.
        """

    @abstractmethod
    async def increment_profile_counter(self, uid: str, field: str, by: int = 1) -> None:
        """Best-effort counter bump (``total_tasks``, ``completed_tasks``)."""

    # --- Tasks ---

    @abstractmethod
    async def create_task(self, task: Task) -> Task:
        """Persist a new task."""

    @abstractmethod
    async def get_task(self, task_id: str) -> Task | None:
        """Point read of a task."""

    @abstractmethod
    async def list_tasks(
        self,
        *,
        status: TaskStatus | None = None,
        task_type: str | None = None,
        skills_any: Collection[str] | None = None,
        creator_uid: str | None = None,
        assignee_uid: str | None = None,
        party_uid: str | None = None,
        min_budget: float | None = None,
        max_budget: float | None = None,
        sort: TaskSort = TaskSort.NEWEST,
        offset: int = 0,
        limit: int = 20,
    ) -> tuple[list[Task], int]:
        """Filtered, sorted tasks plus the total matching count.

        ``party_uid`` matches either the creator or the assignee; budget
        bounds are inclusive on ``budget.amount``.  Every ordering falls back
        to newest first.
        """

    @abstractmethod
    async def update_task_if(
        self,
        task_id: str,
        expected: Collection[TaskStatus],
        values: dict,
    ) -> Task | None:
        """Atomic conditional update.

        Applies ``values`` only if the task's current status is in
        ``expected``; returns the updated task, or ``None`` when the task is
        missing or the precondition no longer holds.
        """

    @abstractmethod
    async def increment_task_counter(self, task_id: str, field: str, by: int = 1) -> None:
        """Best-effort counter bump (``view_count``, ``application_count``)."""

    @abstractmethod
    async def list_expirable_tasks(self, now: datetime, limit: int = 500) -> list[Task]:
        """Open tasks whose ``expires_at`` is at or before ``now``."""

    # --- Applications ---

    @abstractmethod
    async def create_application(self, application: TaskApplication) -> TaskApplication:
        """Persist a new application.

        Raises ``Conflict`` if the applicant already holds a non-withdrawn
        application for the same task.
        """

    @abstractmethod
    async def get_application(self, application_id: str) -> TaskApplication | None:
        """Point read of an application with its messages."""

    @abstractmethod
    async def find_live_application(
        self, task_id: str, applicant_uid: str
    ) -> TaskApplication | None:
        """The applicant's non-withdrawn application for a task, if any."""

    @abstractmethod
    async def list_applications(
        self,
        *,
        task_id: str | None = None,
        applicant_uid: str | None = None,
        status: ApplicationStatus | None = None,
        offset: int = 0,
        limit: int = 20,
    ) -> tuple[list[TaskApplication], int]:
        """Filtered applications, newest first, plus the total count."""

    @abstractmethod
    async def update_application_if(
        self,
        application_id: str,
        expected: Collection[ApplicationStatus],
        values: dict,
    ) -> TaskApplication | None:
        """Atomic conditional update of an application's fields."""

    @abstractmethod
    async def reject_pending_siblings(
        self, task_id: str, except_application_id: str | None, now: datetime
    ) -> int:
        """Mark every other pending application on the task rejected.

        With ``except_application_id`` of ``None`` every pending application
        on the task is rejected.
        """

    @abstractmethod
    async def append_message(
        self, application_id: str, message: ApplicationMessage
    ) -> TaskApplication | None:
        """Append to the application's message thread."""

    @abstractmethod
    async def accept_application(
        self,
        application_id: str,
        task_id: str,
        assignee_uid: str,
        now: datetime,
    ) -> tuple[TaskApplication, Task] | None:
        """Accept one application as a single unit.

        Assigns the task (guarded on status open), marks the application
        accepted (guarded on status pending) and rejects pending siblings.
        Returns ``None`` and changes nothing if either guard fails.
        """
