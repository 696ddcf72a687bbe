"""Application workflow: bids on tasks and the accept-one-reject-the-rest step.

Accepting an application assigns the task, marks the application accepted
and rejects every other pending application on the task.  With a
transactional store that is one atomic store call.  Without one, the task
assignment is written first (guarded on ``status = open``) and is
authoritative; sibling rejection then retries until it converges and never
turns into a user-visible error once the assignment is durable.
"""

from __future__ import annotations

import asyncio

import structlog

from modules.marketplace.lifecycle import (
    MAX_PAGE_SIZE,
    TaskLifecycle,
    bump_counter,
    paginate,
)
from modules.marketplace.store.base import TaskStore
from shared.config import Settings
from shared.errors import (
    Conflict,
    Forbidden,
    InvalidState,
    NotFound,
    StoreUnavailable,
    ValidationError,
)
from shared.schemas.marketplace import (
    ApplicationMessage,
    ApplicationStatus,
    ApplicationTerms,
    Decision,
    Pagination,
    Task,
    TaskApplication,
    TaskStatus,
)

logger = structlog.get_logger()


class ApplicationWorkflow:
    """Submit, decide, withdraw and message task applications."""

    def __init__(self, store: TaskStore, lifecycle: TaskLifecycle, settings: Settings):
        self.store = store
        self.lifecycle = lifecycle
        self.settings = settings

    @property
    def clock(self):
        return self.lifecycle.clock

    async def _load(self, application_id: str) -> TaskApplication:
        application = await self.store.get_application(application_id)
        if application is None:
            raise NotFound("Application not found", application_id=application_id)
        return application

    async def _load_with_task(self, application_id: str) -> tuple[TaskApplication, Task]:
        application = await self._load(application_id)
        task = await self.store.get_task(application.task_id)
        if task is None:
            raise NotFound("Task not found", task_id=application.task_id)
        return application, task

    # --- submit ---

    async def submit(
        self, task_id: str, applicant_uid: str, terms: ApplicationTerms
    ) -> TaskApplication:
        task = await self.lifecycle.load(task_id)
        if task.status != TaskStatus.OPEN:
            raise InvalidState(
                "Task is not open for applications", task_id=task_id, status=task.status.value
            )
        if task.creator_uid == applicant_uid:
            raise Forbidden("Cannot apply to your own task", task_id=task_id)

        existing = await self.store.find_live_application(task_id, applicant_uid)
        if existing is not None:
            raise Conflict(
                "You have already applied to this task", application_id=existing.id
            )

        now = self.clock()
        application = await self.store.create_application(
            TaskApplication(
                id=self.store.new_id(),
                task_id=task_id,
                applicant_uid=applicant_uid,
                terms=terms,
                status=ApplicationStatus.PENDING,
                created_at=now,
                updated_at=now,
            )
        )
        # Advisory counter; not used for any invariant
        await bump_counter(
            self.store.increment_task_counter(task_id, "application_count"),
            "application_count",
            task_id=task_id,
        )
        logger.info(
            "application_submitted",
            application_id=application.id,
            task_id=task_id,
            applicant_uid=applicant_uid,
        )
        return application

    # --- decide ---

    async def decide(
        self,
        application_id: str,
        acting_uid: str,
        decision: Decision,
        message: str | None = None,
    ) -> TaskApplication:
        application, task = await self._load_with_task(application_id)
        if task.creator_uid != acting_uid:
            raise Forbidden(
                "Not authorized to update this application", application_id=application_id
            )
        if decision == Decision.ACCEPT and task.status != TaskStatus.OPEN:
            # Another accept or a cancellation got there first
            raise Conflict(
                "Task is no longer open",
                task_id=task.id,
                status=task.status.value,
            )
        if application.status != ApplicationStatus.PENDING:
            raise InvalidState(
                "Application has already been decided",
                application_id=application_id,
                status=application.status.value,
            )
        # Validated before any write; the append itself runs after the commit
        note = self._clean_message(message) if message is not None else None

        if decision == Decision.ACCEPT:
            decided = await self._accept(application, task)
        else:
            decided = await self._reject(application)

        if note is None:
            return decided
        try:
            updated = await self.store.append_message(
                application_id,
                ApplicationMessage(sender_uid=acting_uid, text=note, created_at=self.clock()),
            )
        except StoreUnavailable as e:
            logger.warning(
                "decision_message_failed", application_id=application_id, error=str(e)
            )
            return decided
        return updated or decided

    def _clean_message(self, text: str | None) -> str:
        body = (text or "").strip()
        if not body:
            raise ValidationError("Message is required")
        if len(body) > self.settings.max_message_chars:
            raise ValidationError(
                f"Message must be at most {self.settings.max_message_chars} characters"
            )
        return body

    async def _reject(self, application: TaskApplication) -> TaskApplication:
        now = self.clock()
        rejected = await self.store.update_application_if(
            application.id,
            {ApplicationStatus.PENDING},
            {"status": ApplicationStatus.REJECTED, "responded_at": now, "updated_at": now},
        )
        if rejected is None:
            raise Conflict(
                "Application changed while it was being rejected",
                application_id=application.id,
            )
        logger.info("application_rejected", application_id=application.id)
        return rejected

    async def _accept(self, application: TaskApplication, task: Task) -> TaskApplication:
        self.lifecycle.check_assignable(task, application.applicant_uid)

        if self.store.transactional:
            outcome = await self.store.accept_application(
                application.id, task.id, application.applicant_uid, self.clock()
            )
            if outcome is None:
                raise Conflict(
                    "Task was assigned or cancelled by another request",
                    task_id=task.id,
                    application_id=application.id,
                )
            accepted, _ = outcome
        else:
            accepted = await self._accept_two_phase(application, task)

        await bump_counter(
            self.store.increment_profile_counter(application.applicant_uid, "total_tasks"),
            "total_tasks",
            uid=application.applicant_uid,
        )
        logger.info(
            "task_assigned",
            task_id=task.id,
            assignee_uid=application.applicant_uid,
            application_id=application.id,
            path="application",
        )
        return accepted

    async def _accept_two_phase(
        self, application: TaskApplication, task: Task
    ) -> TaskApplication:
        # Phase one: the task assignment is the commit point
        assigned = await self.lifecycle.assign_if_open(task.id, application.applicant_uid)
        if assigned is None:
            raise Conflict(
                "Task was assigned or cancelled by another request",
                task_id=task.id,
                application_id=application.id,
            )

        # Phase two: converge the applications onto the assignment
        now = self.clock()
        accepted = await self._converge(
            "accept_application",
            lambda: self.store.update_application_if(
                application.id,
                {ApplicationStatus.PENDING, ApplicationStatus.ACCEPTED},
                {"status": ApplicationStatus.ACCEPTED, "responded_at": now, "updated_at": now},
            ),
            task_id=task.id,
        )
        await self._converge(
            "reject_siblings",
            lambda: self.store.reject_pending_siblings(task.id, application.id, now),
            task_id=task.id,
        )
        if accepted is None:
            # Withdrawn in the window between the guard check and the write; the
            # task assignment stands and the stored record is reported as is.
            logger.warning(
                "accepted_application_changed", application_id=application.id, task_id=task.id
            )
            return await self._load(application.id)
        return accepted

    async def _converge(self, step: str, operation, **context):
        """Retry a post-commit step with doubling backoff.

        Gives up quietly after ``sibling_reject_max_attempts``: the task's
        status is authoritative and leftover pending applications are ignored
        by any client that respects it.
        """
        delay = self.settings.sibling_reject_backoff_seconds
        attempts = self.settings.sibling_reject_max_attempts
        for attempt in range(1, attempts + 1):
            try:
                return await operation()
            except StoreUnavailable as e:
                logger.warning(
                    "accept_step_retry", step=step, attempt=attempt, error=str(e), **context
                )
                if attempt < attempts:
                    await asyncio.sleep(delay)
                    delay *= 2
        logger.error("accept_step_abandoned", step=step, attempts=attempts, **context)
        return None

    # --- withdraw ---

    async def withdraw(self, application_id: str, acting_uid: str) -> TaskApplication:
        application = await self._load(application_id)
        if application.applicant_uid != acting_uid:
            raise Forbidden(
                "Not authorized to withdraw this application", application_id=application_id
            )
        if application.status != ApplicationStatus.PENDING:
            raise InvalidState(
                "Cannot withdraw non-pending application",
                application_id=application_id,
                status=application.status.value,
            )

        now = self.clock()
        withdrawn = await self.store.update_application_if(
            application_id,
            {ApplicationStatus.PENDING},
            {"status": ApplicationStatus.WITHDRAWN, "updated_at": now},
        )
        if withdrawn is None:
            raise InvalidState(
                "Cannot withdraw non-pending application", application_id=application_id
            )
        logger.info("application_withdrawn", application_id=application_id)
        return withdrawn

    # --- messages ---

    async def add_message(
        self, application_id: str, sender_uid: str, text: str
    ) -> TaskApplication:
        application, task = await self._load_with_task(application_id)
        if sender_uid not in (task.creator_uid, application.applicant_uid):
            raise Forbidden(
                "Not authorized to message this application", application_id=application_id
            )

        body = self._clean_message(text)
        updated = await self.store.append_message(
            application_id,
            ApplicationMessage(sender_uid=sender_uid, text=body, created_at=self.clock()),
        )
        if updated is None:
            raise NotFound("Application not found", application_id=application_id)
        logger.info("application_message_added", application_id=application_id)
        return updated

    # --- reads ---

    async def get(self, application_id: str, acting_uid: str) -> TaskApplication:
        application, task = await self._load_with_task(application_id)
        if acting_uid not in (task.creator_uid, application.applicant_uid):
            raise Forbidden(
                "Not authorized to view this application", application_id=application_id
            )
        return application

    async def list_applications(
        self,
        acting_uid: str,
        *,
        task_id: str | None = None,
        mine: bool = False,
        status: ApplicationStatus | None = None,
        page: int = 1,
        page_size: int = 20,
    ) -> tuple[list[TaskApplication], Pagination]:
        if task_id is None and not mine:
            raise ValidationError("Filter by task_id or set mine=true")
        if task_id is not None:
            task = await self.lifecycle.load(task_id)
            if task.creator_uid != acting_uid and not mine:
                raise Forbidden(
                    "Not authorized to view applications for this task", task_id=task_id
                )

        page = max(page, 1)
        page_size = min(max(page_size, 1), MAX_PAGE_SIZE)
        applications, total = await self.store.list_applications(
            task_id=task_id,
            applicant_uid=acting_uid if mine else None,
            status=status,
            offset=(page - 1) * page_size,
            limit=page_size,
        )
        return applications, paginate(page, page_size, total)
