"""In-memory store for local development and tests.

No method awaits anything, so each call runs to completion without yielding
to the event loop.  That makes every conditional update, and the compound
accept, atomic with respect to concurrent requests in the same process.
"""

from __future__ import annotations

from collections.abc import Collection
from datetime import datetime

import structlog

from modules.marketplace.store.base import TaskStore
from shared.errors import Conflict
from shared.schemas.marketplace import (
    URGENCY_RANK,
    ApplicationMessage,
    ApplicationStatus,
    Profile,
    Task,
    TaskApplication,
    TaskSort,
    TaskStatus,
)

logger = structlog.get_logger()


class InMemoryTaskStore(TaskStore):
    """Dict-backed TaskStore. Records are copied in and out."""

    transactional = True

    def __init__(self) -> None:
        self._profiles: dict[str, Profile] = {}
        self._tasks: dict[str, Task] = {}
        self._applications: dict[str, TaskApplication] = {}

    # --- Profiles ---

    async def get_profile(self, uid: str) -> Profile | None:
        profile = self._profiles.get(uid)
        return profile.model_copy(deep=True) if profile else None

    async def save_profile(self, profile: Profile) -> Profile:
        self._profiles[profile.uid] = profile.model_copy(deep=True)
        return profile.model_copy(deep=True)

    async def list_taskers(
        self, skills_any: Collection[str] | None = None, limit: int = 200
    ) -> list[Profile]:
        wanted = set(skills_any or ())
        results = []
        for profile in self._profiles.values():
            if not profile.is_tasker:
                continue
            if wanted and not wanted.intersection(profile.skills):
                continue
            results.append(profile.model_copy(deep=True))
            if len(results) >= limit:
                break
        return results

    async def increment_profile_counter(self, uid: str, field: str, by: int = 1) -> None:
        profile = self._profiles.get(uid)
        if profile is None:
            return
        self._profiles[uid] = profile.model_copy(
            update={field: getattr(profile, field) + by}
        )

    # --- Tasks ---

    async def create_task(self, task: Task) -> Task:
        self._tasks[task.id] = task.model_copy(deep=True)
        return task.model_copy(deep=True)

    async def get_task(self, task_id: str) -> Task | None:
        task = self._tasks.get(task_id)
        return task.model_copy(deep=True) if task else None

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
        wanted = set(skills_any or ())
        matched = [
            t
            for t in self._tasks.values()
            if (status is None or t.status == status)
            and (task_type is None or t.type == task_type)
            and (creator_uid is None or t.creator_uid == creator_uid)
            and (assignee_uid is None or t.assignee_uid == assignee_uid)
            and (party_uid is None or party_uid in (t.creator_uid, t.assignee_uid))
            and (min_budget is None or t.budget.amount >= min_budget)
            and (max_budget is None or t.budget.amount <= max_budget)
            and (not wanted or wanted.intersection(t.skills_required))
        ]
        # Stable sorts: newest first, then the primary key on top
        matched.sort(key=lambda t: t.created_at, reverse=True)
        if sort == TaskSort.BUDGET_ASC:
            matched.sort(key=lambda t: t.budget.amount)
        elif sort == TaskSort.BUDGET_DESC:
            matched.sort(key=lambda t: t.budget.amount, reverse=True)
        elif sort == TaskSort.URGENT:
            matched.sort(key=lambda t: URGENCY_RANK[t.urgency], reverse=True)
        page = matched[offset : offset + limit]
        return [t.model_copy(deep=True) for t in page], len(matched)

    async def update_task_if(
        self,
        task_id: str,
        expected: Collection[TaskStatus],
        values: dict,
    ) -> Task | None:
        current = self._tasks.get(task_id)
        if current is None or current.status not in expected:
            return None
        updated = current.model_copy(update=values, deep=True)
        self._tasks[task_id] = updated
        return updated.model_copy(deep=True)

    async def increment_task_counter(self, task_id: str, field: str, by: int = 1) -> None:
        task = self._tasks.get(task_id)
        if task is None:
            return
        self._tasks[task_id] = task.model_copy(update={field: getattr(task, field) + by})

    async def list_expirable_tasks(self, now: datetime, limit: int = 500) -> list[Task]:
        due = [
            t
            for t in self._tasks.values()
            if t.status == TaskStatus.OPEN and t.expires_at is not None and t.expires_at <= now
        ]
        due.sort(key=lambda t: t.expires_at)
        return [t.model_copy(deep=True) for t in due[:limit]]

    # --- Applications ---

    async def create_application(self, application: TaskApplication) -> TaskApplication:
        for existing in self._applications.values():
            if (
                existing.task_id == application.task_id
                and existing.applicant_uid == application.applicant_uid
                and existing.status != ApplicationStatus.WITHDRAWN
            ):
                raise Conflict(
                    "You have already applied to this task",
                    application_id=existing.id,
                )
        self._applications[application.id] = application.model_copy(deep=True)
        return application.model_copy(deep=True)

    async def get_application(self, application_id: str) -> TaskApplication | None:
        app = self._applications.get(application_id)
        return app.model_copy(deep=True) if app else None

    async def find_live_application(
        self, task_id: str, applicant_uid: str
    ) -> TaskApplication | None:
        for app in self._applications.values():
            if (
                app.task_id == task_id
                and app.applicant_uid == applicant_uid
                and app.status != ApplicationStatus.WITHDRAWN
            ):
                return app.model_copy(deep=True)
        return None

    async def list_applications(
        self,
        *,
        task_id: str | None = None,
        applicant_uid: str | None = None,
        status: ApplicationStatus | None = None,
        offset: int = 0,
        limit: int = 20,
    ) -> tuple[list[TaskApplication], int]:
        matched = [
            a
            for a in self._applications.values()
            if (task_id is None or a.task_id == task_id)
            and (applicant_uid is None or a.applicant_uid == applicant_uid)
            and (status is None or a.status == status)
        ]
        matched.sort(key=lambda a: a.created_at, reverse=True)
        page = matched[offset : offset + limit]
        return [a.model_copy(deep=True) for a in page], len(matched)

    async def update_application_if(
        self,
        application_id: str,
        expected: Collection[ApplicationStatus],
        values: dict,
    ) -> TaskApplication | None:
        current = self._applications.get(application_id)
        if current is None or current.status not in expected:
            return None
        updated = current.model_copy(update=values, deep=True)
        self._applications[application_id] = updated
        return updated.model_copy(deep=True)

    async def reject_pending_siblings(
        self, task_id: str, except_application_id: str | None, now: datetime
    ) -> int:
        return self._reject_siblings(task_id, except_application_id, now)

    async def append_message(
        self, application_id: str, message: ApplicationMessage
    ) -> TaskApplication | None:
        current = self._applications.get(application_id)
        if current is None:
            return None
        updated = current.model_copy(
            update={"messages": [*current.messages, message], "updated_at": message.created_at},
            deep=True,
        )
        self._applications[application_id] = updated
        return updated.model_copy(deep=True)

    async def accept_application(
        self,
        application_id: str,
        task_id: str,
        assignee_uid: str,
        now: datetime,
    ) -> tuple[TaskApplication, Task] | None:
        task = self._tasks.get(task_id)
        app = self._applications.get(application_id)
        if task is None or app is None:
            return None
        if task.status != TaskStatus.OPEN or app.status != ApplicationStatus.PENDING:
            return None

        task = task.model_copy(
            update={
                "status": TaskStatus.ASSIGNED,
                "assignee_uid": assignee_uid,
                "updated_at": now,
            }
        )
        app = app.model_copy(
            update={
                "status": ApplicationStatus.ACCEPTED,
                "responded_at": now,
                "updated_at": now,
            }
        )
        self._tasks[task_id] = task
        self._applications[application_id] = app
        rejected = self._reject_siblings(task_id, application_id, now)
        logger.debug("memory_store_accept", task_id=task_id, rejected=rejected)
        return app.model_copy(deep=True), task.model_copy(deep=True)

    def _reject_siblings(
        self, task_id: str, except_application_id: str | None, now: datetime
    ) -> int:
        count = 0
        for app_id, app in list(self._applications.items()):
            if (
                app.task_id == task_id
                and app_id != except_application_id
                and app.status == ApplicationStatus.PENDING
            ):
                self._applications[app_id] = app.model_copy(
                    update={
                        "status": ApplicationStatus.REJECTED,
                        "responded_at": now,
                        "updated_at": now,
                    }
                )
                count += 1
        return count
