"""SQL store backed by async SQLAlchemy.

Conditional transitions are single ``UPDATE ... WHERE id = :id AND status IN
(...)`` statements; the row count tells whether the precondition still held
when the write landed.  The compound accept runs all of its statements in one
transaction, so readers see either none or all of it.
"""

from __future__ import annotations

import uuid
from collections.abc import AsyncIterator, Collection
from contextlib import asynccontextmanager
from datetime import datetime

import structlog
from sqlalchemy import String, case, cast, func, or_, select, update
from sqlalchemy.exc import IntegrityError, InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from modules.marketplace.store.base import TaskStore
from shared.errors import Conflict, StoreUnavailable
from shared.models.application_message import ApplicationMessageRecord
from shared.models.profile import ProfileRecord
from shared.models.task import TaskRecord
from shared.models.task_application import TaskApplicationRecord
from shared.schemas.marketplace import (
    URGENCY_RANK,
    Address,
    ApplicationMessage,
    ApplicationStatus,
    ApplicationTerms,
    Budget,
    Completion,
    GeoPoint,
    Priority,
    Profile,
    ProposedSchedule,
    Role,
    Task,
    TaskApplication,
    TaskSort,
    TaskStatus,
    Urgency,
)

logger = structlog.get_logger()

_PROFILE_COUNTERS = frozenset({"total_tasks", "completed_tasks"})
_TASK_COUNTERS = frozenset({"view_count", "application_count"})
_TASKER_BATCH = 200
_PLAIN_TASK_FIELDS = frozenset(
    {"type", "title", "description", "skills_required", "assignee_uid", "expires_at", "updated_at"}
)


def _parse_id(value: str) -> uuid.UUID | None:
    try:
        return uuid.UUID(value)
    except (ValueError, AttributeError, TypeError):
        return None


# --- record <-> schema conversion ---


def _point(lat: float | None, lng: float | None) -> GeoPoint | None:
    if lat is None or lng is None:
        return None
    return GeoPoint(lat=lat, lng=lng)


def profile_from_record(r: ProfileRecord) -> Profile:
    return Profile(
        uid=r.uid,
        name=r.name or "",
        photo_url=r.photo_url,
        roles=[Role(role) for role in (r.roles or [])],
        location=_point(r.latitude, r.longitude),
        address=Address(**r.address) if r.address else None,
        skills=list(r.skills or []),
        rating=r.rating or 0.0,
        review_count=r.review_count or 0,
        total_tasks=r.total_tasks or 0,
        completed_tasks=r.completed_tasks or 0,
        created_at=r.created_at,
        updated_at=r.updated_at,
    )


def task_from_record(r: TaskRecord) -> Task:
    completion = None
    if r.completed_at is not None:
        completion = Completion(
            proofs=list(r.completion_proofs or []),
            comment=r.completion_comment,
            completed_at=r.completed_at,
        )
    return Task(
        id=str(r.id),
        creator_uid=r.creator_uid,
        assignee_uid=r.assignee_uid,
        type=r.type,
        title=r.title,
        description=r.description,
        budget=Budget(
            amount=r.budget_amount,
            currency=r.budget_currency,
            negotiable=r.budget_negotiable,
        ),
        skills_required=list(r.skills_required or []),
        location=_point(r.latitude, r.longitude),
        address=Address(**r.address) if r.address else None,
        urgency=Urgency(r.urgency),
        priority=Priority(r.priority),
        status=TaskStatus(r.status),
        completion=completion,
        view_count=r.view_count or 0,
        application_count=r.application_count or 0,
        expires_at=r.expires_at,
        created_at=r.created_at,
        updated_at=r.updated_at,
    )


def application_from_record(
    r: TaskApplicationRecord, messages: list[ApplicationMessageRecord]
) -> TaskApplication:
    return TaskApplication(
        id=str(r.id),
        task_id=str(r.task_id),
        applicant_uid=r.applicant_uid,
        terms=ApplicationTerms(
            budget=Budget(
                amount=r.proposed_amount,
                currency=r.proposed_currency,
                negotiable=r.proposed_negotiable,
            ),
            schedule=ProposedSchedule(
                start=r.proposed_start,
                end=r.proposed_end,
                estimated_hours=r.estimated_hours,
                flexible=r.schedule_flexible,
            ),
            cover_letter=r.cover_letter or "",
        ),
        status=ApplicationStatus(r.status),
        messages=[
            ApplicationMessage(sender_uid=m.sender_uid, text=m.text, created_at=m.created_at)
            for m in messages
        ],
        responded_at=r.responded_at,
        created_at=r.created_at,
        updated_at=r.updated_at,
    )


def _task_order(sort: TaskSort) -> list:
    newest = TaskRecord.created_at.desc()
    if sort == TaskSort.BUDGET_ASC:
        return [TaskRecord.budget_amount.asc(), newest]
    if sort == TaskSort.BUDGET_DESC:
        return [TaskRecord.budget_amount.desc(), newest]
    if sort == TaskSort.URGENT:
        rank = case(
            {level.value: value for level, value in URGENCY_RANK.items()},
            value=TaskRecord.urgency,
            else_=0,
        )
        return [rank.desc(), newest]
    return [newest]


def task_columns(values: dict) -> dict:
    """Translate record-level update values into TaskRecord columns."""
    cols: dict = {}
    for key, value in values.items():
        if key == "status":
            cols["status"] = TaskStatus(value).value
        elif key in ("urgency", "priority"):
            cols[key] = value.value if hasattr(value, "value") else value
        elif key == "budget":
            cols["budget_amount"] = value.amount
            cols["budget_currency"] = value.currency
            cols["budget_negotiable"] = value.negotiable
        elif key == "location":
            cols["latitude"] = value.lat if value else None
            cols["longitude"] = value.lng if value else None
        elif key == "address":
            cols["address"] = value.model_dump() if value else None
        elif key == "completion":
            cols["completion_proofs"] = list(value.proofs) if value else None
            cols["completion_comment"] = value.comment if value else None
            cols["completed_at"] = value.completed_at if value else None
        elif key in _PLAIN_TASK_FIELDS:
            cols[key] = value
        else:
            raise KeyError(f"Unsupported task field: {key}")
    return cols


def application_columns(values: dict) -> dict:
    """Translate record-level update values into TaskApplicationRecord columns."""
    cols: dict = {}
    for key, value in values.items():
        if key == "status":
            cols["status"] = ApplicationStatus(value).value
        elif key == "terms":
            cols.update(_terms_columns(value))
        elif key in ("responded_at", "updated_at"):
            cols[key] = value
        else:
            raise KeyError(f"Unsupported application field: {key}")
    return cols


def _terms_columns(terms: ApplicationTerms) -> dict:
    return {
        "proposed_amount": terms.budget.amount,
        "proposed_currency": terms.budget.currency,
        "proposed_negotiable": terms.budget.negotiable,
        "proposed_start": terms.schedule.start,
        "proposed_end": terms.schedule.end,
        "estimated_hours": terms.schedule.estimated_hours,
        "schedule_flexible": terms.schedule.flexible,
        "cover_letter": terms.cover_letter,
    }


class SqlTaskStore(TaskStore):
    """TaskStore over a relational database via async SQLAlchemy."""

    transactional = True

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[AsyncSession]:
        """Open a session, reporting connectivity failures as StoreUnavailable."""
        try:
            async with self.session_factory() as session:
                yield session
        except (OperationalError, InterfaceError, OSError) as e:
            logger.warning("store_unavailable", error=str(e))
            raise StoreUnavailable("The task store is unavailable") from e

    # --- Profiles ---

    async def get_profile(self, uid: str) -> Profile | None:
        async with self._session() as session:
            record = await session.get(ProfileRecord, uid)
            return profile_from_record(record) if record else None

    async def save_profile(self, profile: Profile) -> Profile:
        async with self._session() as session:
            record = await session.get(ProfileRecord, profile.uid)
            if record is None:
                record = ProfileRecord(uid=profile.uid, created_at=profile.created_at)
                session.add(record)
            record.name = profile.name
            record.photo_url = profile.photo_url
            record.roles = [role.value for role in profile.roles]
            record.skills = list(profile.skills)
            record.latitude = profile.location.lat if profile.location else None
            record.longitude = profile.location.lng if profile.location else None
            record.address = profile.address.model_dump() if profile.address else None
            record.rating = profile.rating
            record.review_count = profile.review_count
            record.updated_at = profile.updated_at
            await session.commit()
            await session.refresh(record)
            return profile_from_record(record)

    async def list_taskers(
        self, skills_any: Collection[str] | None = None, limit: int = 200
    ) -> list[Profile]:
        wanted = set(skills_any or ())
        # Text match on the serialized array narrows the rows; the exact role
        # check below guards against a substring hit
        roles_text = cast(ProfileRecord.roles, String)
        query = (
            select(ProfileRecord)
            .where(
                or_(
                    roles_text.like(f'%"{Role.TASKER.value}"%'),
                    roles_text.like(f'%"{Role.BOTH.value}"%'),
                )
            )
            .order_by(ProfileRecord.updated_at.desc(), ProfileRecord.uid)
        )
        batch = max(limit, _TASKER_BATCH)
        profiles: list[Profile] = []
        async with self._session() as session:
            offset = 0
            while len(profiles) < limit:
                records = list(await session.scalars(query.offset(offset).limit(batch)))
                for record in records:
                    if not set(record.roles or []) & {Role.TASKER.value, Role.BOTH.value}:
                        continue
                    if wanted and not wanted.intersection(record.skills or []):
                        continue
                    profiles.append(profile_from_record(record))
                    if len(profiles) >= limit:
                        break
                if len(records) < batch:
                    break
                offset += batch
        return profiles

    async def increment_profile_counter(self, uid: str, field: str, by: int = 1) -> None:
        if field not in _PROFILE_COUNTERS:
            raise KeyError(f"Unsupported profile counter: {field}")
        column = getattr(ProfileRecord, field)
        async with self._session() as session:
            await session.execute(
                update(ProfileRecord)
                .where(ProfileRecord.uid == uid)
                .values({field: column + by})
                .execution_options(synchronize_session=False)
            )
            await session.commit()

    # --- Tasks ---

    async def create_task(self, task: Task) -> Task:
        record = TaskRecord(
            id=uuid.UUID(task.id),
            creator_uid=task.creator_uid,
            assignee_uid=task.assignee_uid,
            view_count=task.view_count,
            application_count=task.application_count,
            created_at=task.created_at,
            **task_columns(
                {
                    "type": task.type,
                    "title": task.title,
                    "description": task.description,
                    "budget": task.budget,
                    "skills_required": task.skills_required,
                    "location": task.location,
                    "address": task.address,
                    "urgency": task.urgency,
                    "priority": task.priority,
                    "status": task.status,
                    "completion": task.completion,
                    "expires_at": task.expires_at,
                    "updated_at": task.updated_at,
                }
            ),
        )
        async with self._session() as session:
            session.add(record)
            await session.commit()
            await session.refresh(record)
            return task_from_record(record)

    async def get_task(self, task_id: str) -> Task | None:
        tid = _parse_id(task_id)
        if tid is None:
            return None
        async with self._session() as session:
            record = await session.get(TaskRecord, tid)
            return task_from_record(record) if record else None

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
        conditions = []
        if status is not None:
            conditions.append(TaskRecord.status == status.value)
        if task_type is not None:
            conditions.append(TaskRecord.type == task_type)
        if creator_uid is not None:
            conditions.append(TaskRecord.creator_uid == creator_uid)
        if assignee_uid is not None:
            conditions.append(TaskRecord.assignee_uid == assignee_uid)
        if party_uid is not None:
            conditions.append(
                or_(TaskRecord.creator_uid == party_uid, TaskRecord.assignee_uid == party_uid)
            )
        if min_budget is not None:
            conditions.append(TaskRecord.budget_amount >= min_budget)
        if max_budget is not None:
            conditions.append(TaskRecord.budget_amount <= max_budget)

        query = select(TaskRecord).where(*conditions).order_by(*_task_order(sort))
        wanted = set(skills_any or ())

        async with self._session() as session:
            if wanted:
                # JSON array membership is not portable; filter in Python
                result = await session.scalars(query)
                matched = [r for r in result if wanted.intersection(r.skills_required or [])]
                page = matched[offset : offset + limit]
                return [task_from_record(r) for r in page], len(matched)

            total = await session.scalar(
                select(func.count()).select_from(TaskRecord).where(*conditions)
            )
            result = await session.scalars(query.offset(offset).limit(limit))
            return [task_from_record(r) for r in result], total or 0

    async def update_task_if(
        self,
        task_id: str,
        expected: Collection[TaskStatus],
        values: dict,
    ) -> Task | None:
        tid = _parse_id(task_id)
        if tid is None:
            return None
        async with self._session() as session:
            result = await session.execute(
                update(TaskRecord)
                .where(
                    TaskRecord.id == tid,
                    TaskRecord.status.in_([s.value for s in expected]),
                )
                .values(**task_columns(values))
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                await session.rollback()
                return None
            await session.commit()
            record = await session.get(TaskRecord, tid, populate_existing=True)
            return task_from_record(record)

    async def increment_task_counter(self, task_id: str, field: str, by: int = 1) -> None:
        if field not in _TASK_COUNTERS:
            raise KeyError(f"Unsupported task counter: {field}")
        tid = _parse_id(task_id)
        if tid is None:
            return
        column = getattr(TaskRecord, field)
        async with self._session() as session:
            await session.execute(
                update(TaskRecord)
                .where(TaskRecord.id == tid)
                .values({field: column + by})
                .execution_options(synchronize_session=False)
            )
            await session.commit()

    async def list_expirable_tasks(self, now: datetime, limit: int = 500) -> list[Task]:
        async with self._session() as session:
            result = await session.scalars(
                select(TaskRecord)
                .where(
                    TaskRecord.status == TaskStatus.OPEN.value,
                    TaskRecord.expires_at.is_not(None),
                    TaskRecord.expires_at <= now,
                )
                .order_by(TaskRecord.expires_at)
                .limit(limit)
            )
            return [task_from_record(r) for r in result]

    # --- Applications ---

    async def _load_application(
        self, session: AsyncSession, aid: uuid.UUID
    ) -> TaskApplication | None:
        record = await session.get(TaskApplicationRecord, aid, populate_existing=True)
        if record is None:
            return None
        messages = await session.scalars(
            select(ApplicationMessageRecord)
            .where(ApplicationMessageRecord.application_id == aid)
            .order_by(ApplicationMessageRecord.created_at)
        )
        return application_from_record(record, list(messages))

    async def create_application(self, application: TaskApplication) -> TaskApplication:
        aid = uuid.UUID(application.id)
        record = TaskApplicationRecord(
            id=aid,
            task_id=uuid.UUID(application.task_id),
            applicant_uid=application.applicant_uid,
            status=application.status.value,
            created_at=application.created_at,
            updated_at=application.updated_at,
            **_terms_columns(application.terms),
        )
        async with self._session() as session:
            session.add(record)
            try:
                await session.commit()
            except IntegrityError as e:
                await session.rollback()
                raise Conflict("You have already applied to this task") from e
            return await self._load_application(session, aid)

    async def get_application(self, application_id: str) -> TaskApplication | None:
        aid = _parse_id(application_id)
        if aid is None:
            return None
        async with self._session() as session:
            return await self._load_application(session, aid)

    async def find_live_application(
        self, task_id: str, applicant_uid: str
    ) -> TaskApplication | None:
        tid = _parse_id(task_id)
        if tid is None:
            return None
        async with self._session() as session:
            record = await session.scalar(
                select(TaskApplicationRecord).where(
                    TaskApplicationRecord.task_id == tid,
                    TaskApplicationRecord.applicant_uid == applicant_uid,
                    TaskApplicationRecord.status != ApplicationStatus.WITHDRAWN.value,
                )
            )
            if record is None:
                return None
            return await self._load_application(session, record.id)

    async def list_applications(
        self,
        *,
        task_id: str | None = None,
        applicant_uid: str | None = None,
        status: ApplicationStatus | None = None,
        offset: int = 0,
        limit: int = 20,
    ) -> tuple[list[TaskApplication], int]:
        conditions = []
        if task_id is not None:
            tid = _parse_id(task_id)
            if tid is None:
                return [], 0
            conditions.append(TaskApplicationRecord.task_id == tid)
        if applicant_uid is not None:
            conditions.append(TaskApplicationRecord.applicant_uid == applicant_uid)
        if status is not None:
            conditions.append(TaskApplicationRecord.status == status.value)

        async with self._session() as session:
            total = await session.scalar(
                select(func.count()).select_from(TaskApplicationRecord).where(*conditions)
            )
            result = await session.scalars(
                select(TaskApplicationRecord.id)
                .where(*conditions)
                .order_by(TaskApplicationRecord.created_at.desc())
                .offset(offset)
                .limit(limit)
            )
            ids = list(result)
            applications = [await self._load_application(session, aid) for aid in ids]
            return [a for a in applications if a is not None], total or 0

    async def update_application_if(
        self,
        application_id: str,
        expected: Collection[ApplicationStatus],
        values: dict,
    ) -> TaskApplication | None:
        aid = _parse_id(application_id)
        if aid is None:
            return None
        async with self._session() as session:
            result = await session.execute(
                update(TaskApplicationRecord)
                .where(
                    TaskApplicationRecord.id == aid,
                    TaskApplicationRecord.status.in_([s.value for s in expected]),
                )
                .values(**application_columns(values))
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                await session.rollback()
                return None
            await session.commit()
            return await self._load_application(session, aid)

    async def reject_pending_siblings(
        self, task_id: str, except_application_id: str | None, now: datetime
    ) -> int:
        tid = _parse_id(task_id)
        if tid is None:
            return 0
        aid = None
        if except_application_id is not None:
            aid = _parse_id(except_application_id)
            if aid is None:
                return 0
        async with self._session() as session:
            result = await session.execute(self._reject_siblings_stmt(tid, aid, now))
            await session.commit()
            return result.rowcount

    @staticmethod
    def _reject_siblings_stmt(tid: uuid.UUID, aid: uuid.UUID | None, now: datetime):
        conditions = [
            TaskApplicationRecord.task_id == tid,
            TaskApplicationRecord.status == ApplicationStatus.PENDING.value,
        ]
        if aid is not None:
            conditions.append(TaskApplicationRecord.id != aid)
        return (
            update(TaskApplicationRecord)
            .where(*conditions)
            .values(
                status=ApplicationStatus.REJECTED.value,
                responded_at=now,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )

    async def append_message(
        self, application_id: str, message: ApplicationMessage
    ) -> TaskApplication | None:
        aid = _parse_id(application_id)
        if aid is None:
            return None
        async with self._session() as session:
            record = await session.get(TaskApplicationRecord, aid)
            if record is None:
                return None
            session.add(
                ApplicationMessageRecord(
                    application_id=aid,
                    sender_uid=message.sender_uid,
                    text=message.text,
                    created_at=message.created_at,
                )
            )
            record.updated_at = message.created_at
            await session.commit()
            return await self._load_application(session, aid)

    async def accept_application(
        self,
        application_id: str,
        task_id: str,
        assignee_uid: str,
        now: datetime,
    ) -> tuple[TaskApplication, Task] | None:
        tid = _parse_id(task_id)
        aid = _parse_id(application_id)
        if tid is None or aid is None:
            return None

        async with self._session() as session:
            assigned = await session.execute(
                update(TaskRecord)
                .where(TaskRecord.id == tid, TaskRecord.status == TaskStatus.OPEN.value)
                .values(
                    status=TaskStatus.ASSIGNED.value,
                    assignee_uid=assignee_uid,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            if assigned.rowcount != 1:
                await session.rollback()
                return None

            accepted = await session.execute(
                update(TaskApplicationRecord)
                .where(
                    TaskApplicationRecord.id == aid,
                    TaskApplicationRecord.task_id == tid,
                    TaskApplicationRecord.status == ApplicationStatus.PENDING.value,
                )
                .values(
                    status=ApplicationStatus.ACCEPTED.value,
                    responded_at=now,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            if accepted.rowcount != 1:
                await session.rollback()
                return None

            rejected = await session.execute(self._reject_siblings_stmt(tid, aid, now))
            await session.commit()
            logger.debug("sql_store_accept", task_id=task_id, rejected=rejected.rowcount)

            task_record = await session.get(TaskRecord, tid, populate_existing=True)
            application = await self._load_application(session, aid)
            return application, task_from_record(task_record)
