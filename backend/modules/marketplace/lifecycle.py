"""Task lifecycle: the status state machine and its guarded transitions.

    open ──► assigned ──► in_progress ──► completed
      │          └───────────────────────►┘
      ├──► cancelled
      └──► expired

Every transition is written through ``TaskStore.update_task_if`` guarded on
the status the guard checks were made against.  If another request moved the
task in between, the write matches nothing and the caller gets ``Conflict``
instead of a silent overwrite.
"""

from __future__ import annotations

import math
from collections.abc import Awaitable, Callable, Collection
from datetime import datetime, timedelta, timezone

import structlog

from modules.marketplace.store.base import TaskStore
from modules.marketplace.validation import normalize_skills, require_text
from shared.config import Settings
from shared.errors import (
    Conflict,
    Forbidden,
    InvalidState,
    InvalidTransition,
    NotFound,
    StoreUnavailable,
    ValidationError,
)
from shared.schemas.marketplace import (
    Address,
    Budget,
    Completion,
    GeoPoint,
    Pagination,
    Priority,
    Task,
    TaskSort,
    TaskStatus,
    Urgency,
)

logger = structlog.get_logger()

TRANSITIONS: dict[TaskStatus, frozenset[TaskStatus]] = {
    TaskStatus.OPEN: frozenset(
        {TaskStatus.ASSIGNED, TaskStatus.CANCELLED, TaskStatus.EXPIRED}
    ),
    TaskStatus.ASSIGNED: frozenset({TaskStatus.IN_PROGRESS, TaskStatus.COMPLETED}),
    TaskStatus.IN_PROGRESS: frozenset({TaskStatus.COMPLETED}),
    TaskStatus.COMPLETED: frozenset(),
    TaskStatus.CANCELLED: frozenset(),
    TaskStatus.EXPIRED: frozenset(),
}

TERMINAL_STATUSES = frozenset(s for s, targets in TRANSITIONS.items() if not targets)

# Fields a creator may edit while the task is open
EDITABLE_FIELDS = frozenset(
    {
        "type",
        "title",
        "description",
        "budget",
        "skills_required",
        "location",
        "address",
        "urgency",
        "priority",
    }
)

TITLE_MAX = 200
DESCRIPTION_MAX = 2000
MAX_PAGE_SIZE = 100


def can_transition(source: TaskStatus, target: TaskStatus) -> bool:
    return target in TRANSITIONS[source]


def ensure_transition(source: TaskStatus, target: TaskStatus) -> None:
    """Raise InvalidTransition unless ``source -> target`` is an edge."""
    if not can_transition(source, target):
        raise InvalidTransition(
            f"Cannot move task from {source.value} to {target.value}",
            source=source.value,
            target=target.value,
        )


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


async def bump_counter(pending: Awaitable, counter: str, **context) -> bool:
    """Await an advisory counter write; a store outage is logged, not raised."""
    try:
        await pending
    except StoreUnavailable as e:
        logger.warning("counter_bump_failed", counter=counter, error=str(e), **context)
        return False
    return True


def paginate(page: int, page_size: int, total: int) -> Pagination:
    return Pagination(
        page=page,
        page_size=page_size,
        total=total,
        total_pages=math.ceil(total / page_size) if page_size else 0,
    )


class TaskLifecycle:
    """Creates tasks and drives them through the state machine."""

    def __init__(
        self,
        store: TaskStore,
        settings: Settings,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.settings = settings
        self.clock = clock

    # --- reads ---

    async def load(self, task_id: str) -> Task:
        task = await self.store.get_task(task_id)
        if task is None:
            raise NotFound("Task not found", task_id=task_id)
        return task

    async def get_task(self, task_id: str, count_view: bool = True) -> Task:
        task = await self.load(task_id)
        if count_view and await bump_counter(
            self.store.increment_task_counter(task_id, "view_count"),
            "view_count",
            task_id=task_id,
        ):
            task.view_count += 1
        return task

    async def list_tasks(
        self,
        *,
        status: TaskStatus | None = None,
        task_type: str | None = None,
        skills: Collection[str] | None = None,
        creator_uid: str | None = None,
        assignee_uid: str | None = None,
        party_uid: str | None = None,
        min_budget: float | None = None,
        max_budget: float | None = None,
        sort: TaskSort = TaskSort.NEWEST,
        page: int = 1,
        page_size: int = 20,
    ) -> tuple[list[Task], Pagination]:
        """Filtered, sorted page of tasks.

        ``party_uid`` matches tasks where that user is the creator or the
        assignee.  The budget bounds are inclusive.
        """
        if min_budget is not None and max_budget is not None and min_budget > max_budget:
            raise ValidationError("min_budget cannot exceed max_budget")
        page = max(page, 1)
        page_size = min(max(page_size, 1), MAX_PAGE_SIZE)
        wanted = normalize_skills(skills, self.settings.max_task_skills) if skills else None
        tasks, total = await self.store.list_tasks(
            status=status,
            task_type=task_type,
            skills_any=wanted,
            creator_uid=creator_uid,
            assignee_uid=assignee_uid,
            party_uid=party_uid,
            min_budget=min_budget,
            max_budget=max_budget,
            sort=sort,
            offset=(page - 1) * page_size,
            limit=page_size,
        )
        return tasks, paginate(page, page_size, total)

    # --- creation and edits ---

    async def create_task(
        self,
        creator_uid: str,
        *,
        type: str,
        title: str,
        description: str,
        budget: Budget,
        location: GeoPoint | None,
        address: Address | None = None,
        skills_required: Collection[str] | None = None,
        urgency: Urgency = Urgency.MEDIUM,
        priority: Priority = Priority.MEDIUM,
    ) -> Task:
        if location is None:
            raise ValidationError("Task location coordinates are required")
        now = self.clock()
        task = Task(
            id=self.store.new_id(),
            creator_uid=creator_uid,
            type=require_text(type, "type", 50).lower(),
            title=require_text(title, "title", TITLE_MAX),
            description=require_text(description, "description", DESCRIPTION_MAX),
            budget=budget,
            skills_required=normalize_skills(skills_required, self.settings.max_task_skills),
            location=location,
            address=address,
            urgency=urgency,
            priority=priority,
            status=TaskStatus.OPEN,
            expires_at=now + timedelta(days=self.settings.task_expiry_days),
            created_at=now,
            updated_at=now,
        )
        created = await self.store.create_task(task)
        await bump_counter(
            self.store.increment_profile_counter(creator_uid, "total_tasks"),
            "total_tasks",
            uid=creator_uid,
        )
        logger.info("task_created", task_id=created.id, creator_uid=creator_uid)
        return created

    async def update_task(self, task_id: str, actor_uid: str, values: dict) -> Task:
        task = await self.load(task_id)
        if task.creator_uid != actor_uid:
            raise Forbidden("Not authorized to update this task", task_id=task_id)
        if task.status != TaskStatus.OPEN:
            raise InvalidState("Cannot update task that is not open", status=task.status.value)

        unknown = set(values) - EDITABLE_FIELDS
        if unknown:
            raise ValidationError(f"Fields cannot be updated: {', '.join(sorted(unknown))}")

        changes = dict(values)
        if "title" in changes:
            changes["title"] = require_text(changes["title"], "title", TITLE_MAX)
        if "description" in changes:
            changes["description"] = require_text(
                changes["description"], "description", DESCRIPTION_MAX
            )
        if "type" in changes:
            changes["type"] = require_text(changes["type"], "type", 50).lower()
        if "skills_required" in changes:
            changes["skills_required"] = normalize_skills(
                changes["skills_required"], self.settings.max_task_skills
            )
        if "location" in changes and changes["location"] is None:
            raise ValidationError("Task location coordinates are required")
        changes["updated_at"] = self.clock()

        updated = await self.store.update_task_if(task_id, {TaskStatus.OPEN}, changes)
        if updated is None:
            raise Conflict("Task changed while it was being updated", task_id=task_id)
        logger.info("task_updated", task_id=task_id, fields=sorted(values))
        return updated

    # --- transitions ---

    def check_assignable(self, task: Task, assignee_uid: str) -> None:
        """Guards for ``open -> assigned``; shared with the application workflow."""
        if task.status != TaskStatus.OPEN:
            raise InvalidState(
                "Task is not available for assignment",
                task_id=task.id,
                status=task.status.value,
            )
        if task.creator_uid == assignee_uid:
            raise Forbidden("Cannot accept your own task", task_id=task.id)

    async def assign_if_open(self, task_id: str, assignee_uid: str) -> Task | None:
        """The conditional ``open -> assigned`` write. ``None`` if the task left open."""
        return await self._write(
            task_id,
            TaskStatus.OPEN,
            TaskStatus.ASSIGNED,
            {"assignee_uid": assignee_uid},
        )

    async def accept(self, task_id: str, actor_uid: str) -> Task:
        """Direct accept by a tasker, for tasks not taking applications."""
        task = await self.load(task_id)
        self.check_assignable(task, actor_uid)

        _, application_count = await self.store.list_applications(task_id=task_id, limit=1)
        if application_count:
            raise InvalidState(
                "This task takes applications; apply and wait for the poster to accept",
                task_id=task_id,
            )

        assigned = await self.assign_if_open(task_id, actor_uid)
        if assigned is None:
            raise Conflict("Task was taken or cancelled by another request", task_id=task_id)

        await self._reject_late_applications(task_id)
        await bump_counter(
            self.store.increment_profile_counter(actor_uid, "total_tasks"),
            "total_tasks",
            uid=actor_uid,
        )
        logger.info("task_assigned", task_id=task_id, assignee_uid=actor_uid, path="direct")
        return assigned

    async def _reject_late_applications(self, task_id: str) -> None:
        """Reject applications submitted between the emptiness check and the assign.

        The assignment is already durable, so a store outage here is logged
        and the leftovers stay pending behind a task that is no longer open.
        """
        try:
            rejected = await self.store.reject_pending_siblings(task_id, None, self.clock())
        except StoreUnavailable as e:
            logger.warning("late_applications_not_rejected", task_id=task_id, error=str(e))
            return
        if rejected:
            logger.info("late_applications_rejected", task_id=task_id, count=rejected)

    async def start(self, task_id: str, actor_uid: str) -> Task:
        task = await self.load(task_id)
        if task.status != TaskStatus.ASSIGNED:
            raise InvalidState("Task is not assigned", status=task.status.value)
        if task.assignee_uid != actor_uid:
            raise Forbidden("Only the assignee can start this task", task_id=task_id)

        started = await self._write(task_id, TaskStatus.ASSIGNED, TaskStatus.IN_PROGRESS, {})
        if started is None:
            raise Conflict("Task changed while it was being started", task_id=task_id)
        logger.info("task_started", task_id=task_id)
        return started

    async def complete(
        self,
        task_id: str,
        actor_uid: str,
        proofs: Collection[str] | None = None,
        comment: str | None = None,
    ) -> Task:
        task = await self.load(task_id)
        if task.status not in (TaskStatus.ASSIGNED, TaskStatus.IN_PROGRESS):
            raise InvalidState("Task is not in progress", status=task.status.value)
        if task.assignee_uid != actor_uid:
            raise Forbidden("Not authorized to complete this task", task_id=task_id)

        completion = Completion(
            proofs=list(proofs or [])[: self.settings.max_proofs],
            comment=(comment or "").strip() or None,
            completed_at=self.clock(),
        )
        completed = await self._write(
            task_id, task.status, TaskStatus.COMPLETED, {"completion": completion}
        )
        if completed is None:
            raise Conflict("Task changed while it was being completed", task_id=task_id)

        await bump_counter(
            self.store.increment_profile_counter(actor_uid, "completed_tasks"),
            "completed_tasks",
            uid=actor_uid,
        )
        logger.info("task_completed", task_id=task_id, assignee_uid=actor_uid)
        return completed

    async def cancel(self, task_id: str, actor_uid: str) -> Task:
        task = await self.load(task_id)
        if task.creator_uid != actor_uid:
            raise Forbidden("Not authorized to cancel this task", task_id=task_id)
        if task.status != TaskStatus.OPEN:
            raise InvalidState("Cannot cancel task that is not open", status=task.status.value)

        cancelled = await self._write(task_id, TaskStatus.OPEN, TaskStatus.CANCELLED, {})
        if cancelled is None:
            raise Conflict("Task was assigned or cancelled concurrently", task_id=task_id)
        logger.info("task_cancelled", task_id=task_id)
        return cancelled

    async def move(self, task_id: str, actor_uid: str, target: TaskStatus, **kwargs) -> Task:
        """Generic status change: validates the edge, then runs its operation."""
        task = await self.load(task_id)
        ensure_transition(task.status, target)
        if target == TaskStatus.ASSIGNED:
            return await self.accept(task_id, actor_uid)
        if target == TaskStatus.IN_PROGRESS:
            return await self.start(task_id, actor_uid)
        if target == TaskStatus.COMPLETED:
            return await self.complete(
                task_id, actor_uid, kwargs.get("proofs"), kwargs.get("comment")
            )
        if target == TaskStatus.CANCELLED:
            return await self.cancel(task_id, actor_uid)
        raise Forbidden("Expiry is applied by the system, not by users", task_id=task_id)

    async def expire(self, task_id: str) -> Task | None:
        """``open -> expired``; ``None`` if the task is no longer open."""
        expired = await self._write(task_id, TaskStatus.OPEN, TaskStatus.EXPIRED, {})
        if expired is not None:
            logger.info("task_expired", task_id=task_id)
        return expired

    async def expire_overdue(self, now: datetime | None = None) -> list[Task]:
        """Expire every open task whose ``expires_at`` has passed."""
        now = now or self.clock()
        expired = []
        for task in await self.store.list_expirable_tasks(now):
            result = await self.expire(task.id)
            if result is not None:
                expired.append(result)
        logger.info("overdue_tasks_expired", count=len(expired))
        return expired

    async def _write(
        self,
        task_id: str,
        source: TaskStatus,
        target: TaskStatus,
        values: dict,
    ) -> Task | None:
        ensure_transition(source, target)
        return await self.store.update_task_if(
            task_id,
            {source},
            {**values, "status": target, "updated_at": self.clock()},
        )
