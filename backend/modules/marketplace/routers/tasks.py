"""Task endpoints: create, browse, edit and drive through the lifecycle."""

from __future__ import annotations

import structlog
from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from modules.marketplace.services import MarketplaceServices, get_services
from shared.auth import AuthenticatedUser, require_user
from shared.schemas.marketplace import (
    Address,
    Budget,
    GeoPoint,
    Priority,
    Task,
    TaskParty,
    TaskSort,
    TaskStatus,
    Urgency,
)

logger = structlog.get_logger()

router = APIRouter(prefix="/api/v1/tasks", tags=["tasks"])


# ── Request Models ─────────────────────────────────────────────────


class CreateTaskRequest(BaseModel):
    type: str
    title: str
    description: str
    budget: Budget
    location: GeoPoint | None = None
    address: Address | None = None
    skills_required: list[str] = Field(default_factory=list)
    urgency: Urgency = Urgency.MEDIUM
    priority: Priority = Priority.MEDIUM


class UpdateTaskRequest(BaseModel):
    type: str | None = None
    title: str | None = None
    description: str | None = None
    budget: Budget | None = None
    location: GeoPoint | None = None
    address: Address | None = None
    skills_required: list[str] | None = None
    urgency: Urgency | None = None
    priority: Priority | None = None


class CompleteTaskRequest(BaseModel):
    proofs: list[str] = Field(default_factory=list)
    comment: str | None = None


class ChangeStatusRequest(BaseModel):
    status: TaskStatus
    proofs: list[str] | None = None
    comment: str | None = None


# ── Endpoints ──────────────────────────────────────────────────────


@router.post("", response_model=Task)
async def create_task(
    request: CreateTaskRequest,
    user: AuthenticatedUser = Depends(require_user),
    services: MarketplaceServices = Depends(get_services),
) -> Task:
    """Post a new task."""
    return await services.lifecycle.create_task(
        user.uid,
        type=request.type,
        title=request.title,
        description=request.description,
        budget=request.budget,
        location=request.location,
        address=request.address,
        skills_required=request.skills_required,
        urgency=request.urgency,
        priority=request.priority,
    )


@router.get("")
async def list_tasks(
    status: TaskStatus | None = Query(None),
    type: str | None = Query(None),
    skills: list[str] | None = Query(None),
    mine: TaskParty | None = Query(None),
    min_budget: float | None = Query(None, ge=0),
    max_budget: float | None = Query(None, ge=0),
    sort_by: TaskSort = Query(TaskSort.NEWEST),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    user: AuthenticatedUser = Depends(require_user),
    services: MarketplaceServices = Depends(get_services),
) -> dict:
    """Browse tasks, newest first unless ``sort_by`` says otherwise.

    ``mine`` narrows to tasks the caller posted (``creator``), was assigned
    (``assignee``), or both (``all``).
    """
    tasks, pagination = await services.lifecycle.list_tasks(
        status=status,
        task_type=type.lower() if type else None,
        skills=skills,
        creator_uid=user.uid if mine == TaskParty.CREATOR else None,
        assignee_uid=user.uid if mine == TaskParty.ASSIGNEE else None,
        party_uid=user.uid if mine == TaskParty.ALL else None,
        min_budget=min_budget,
        max_budget=max_budget,
        sort=sort_by,
        page=page,
        page_size=page_size,
    )
    return {
        "tasks": [t.model_dump(mode="json") for t in tasks],
        "pagination": pagination.model_dump(),
    }


@router.get("/{task_id}", response_model=Task)
async def get_task(
    task_id: str,
    user: AuthenticatedUser = Depends(require_user),
    services: MarketplaceServices = Depends(get_services),
) -> Task:
    """Full details for a single task."""
    return await services.lifecycle.get_task(task_id)


@router.put("/{task_id}", response_model=Task)
async def update_task(
    task_id: str,
    request: UpdateTaskRequest,
    user: AuthenticatedUser = Depends(require_user),
    services: MarketplaceServices = Depends(get_services),
) -> Task:
    """Edit an open task (creator only)."""
    values = request.model_dump(exclude_unset=True)
    # Keep nested values as records rather than plain dicts
    for key in ("budget", "location", "address"):
        if key in values:
            values[key] = getattr(request, key)
    return await services.lifecycle.update_task(task_id, user.uid, values)


@router.delete("/{task_id}", response_model=Task)
async def cancel_task(
    task_id: str,
    user: AuthenticatedUser = Depends(require_user),
    services: MarketplaceServices = Depends(get_services),
) -> Task:
    """Cancel an open task (creator only)."""
    return await services.lifecycle.cancel(task_id, user.uid)


@router.post("/{task_id}/accept", response_model=Task)
async def accept_task(
    task_id: str,
    user: AuthenticatedUser = Depends(require_user),
    services: MarketplaceServices = Depends(get_services),
) -> Task:
    """Take an open task directly (tasks without applications)."""
    return await services.lifecycle.accept(task_id, user.uid)


@router.post("/{task_id}/start", response_model=Task)
async def start_task(
    task_id: str,
    user: AuthenticatedUser = Depends(require_user),
    services: MarketplaceServices = Depends(get_services),
) -> Task:
    """Mark an assigned task as in progress (assignee only)."""
    return await services.lifecycle.start(task_id, user.uid)


@router.post("/{task_id}/complete", response_model=Task)
async def complete_task(
    task_id: str,
    request: CompleteTaskRequest,
    user: AuthenticatedUser = Depends(require_user),
    services: MarketplaceServices = Depends(get_services),
) -> Task:
    """Complete an assigned task with proofs (assignee only)."""
    return await services.lifecycle.complete(
        task_id, user.uid, proofs=request.proofs, comment=request.comment
    )


@router.post("/{task_id}/status", response_model=Task)
async def change_status(
    task_id: str,
    request: ChangeStatusRequest,
    user: AuthenticatedUser = Depends(require_user),
    services: MarketplaceServices = Depends(get_services),
) -> Task:
    """Move a task to ``status`` if the state machine allows it."""
    return await services.lifecycle.move(
        task_id, user.uid, request.status, proofs=request.proofs, comment=request.comment
    )
