"""Application endpoints: apply, decide, withdraw, message."""

from __future__ import annotations

import structlog
from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from modules.marketplace.services import MarketplaceServices, get_services
from shared.auth import AuthenticatedUser, require_user
from shared.schemas.marketplace import (
    ApplicationStatus,
    ApplicationTerms,
    Budget,
    Decision,
    ProposedSchedule,
    TaskApplication,
)

logger = structlog.get_logger()

router = APIRouter(prefix="/api/v1/applications", tags=["applications"])


# ── Request Models ─────────────────────────────────────────────────


class SubmitApplicationRequest(BaseModel):
    task_id: str
    proposed_budget: Budget
    proposed_schedule: ProposedSchedule = Field(default_factory=ProposedSchedule)
    cover_letter: str = Field(default="", max_length=1000)


class DecideApplicationRequest(BaseModel):
    decision: Decision
    message: str | None = None


class MessageRequest(BaseModel):
    message: str


# ── Endpoints ──────────────────────────────────────────────────────


@router.post("", response_model=TaskApplication)
async def submit_application(
    request: SubmitApplicationRequest,
    user: AuthenticatedUser = Depends(require_user),
    services: MarketplaceServices = Depends(get_services),
) -> TaskApplication:
    """Apply to an open task."""
    terms = ApplicationTerms(
        budget=request.proposed_budget,
        schedule=request.proposed_schedule,
        cover_letter=request.cover_letter,
    )
    return await services.applications.submit(request.task_id, user.uid, terms)


@router.get("")
async def list_applications(
    task_id: str | None = Query(None),
    mine: bool = Query(False),
    status: ApplicationStatus | None = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    user: AuthenticatedUser = Depends(require_user),
    services: MarketplaceServices = Depends(get_services),
) -> dict:
    """Applications on one of my tasks, or my own applications."""
    applications, pagination = await services.applications.list_applications(
        user.uid,
        task_id=task_id,
        mine=mine,
        status=status,
        page=page,
        page_size=page_size,
    )
    return {
        "applications": [a.model_dump(mode="json") for a in applications],
        "pagination": pagination.model_dump(),
    }


@router.get("/{application_id}", response_model=TaskApplication)
async def get_application(
    application_id: str,
    user: AuthenticatedUser = Depends(require_user),
    services: MarketplaceServices = Depends(get_services),
) -> TaskApplication:
    """A single application (task creator or applicant only)."""
    return await services.applications.get(application_id, user.uid)


@router.put("/{application_id}", response_model=TaskApplication)
async def decide_application(
    application_id: str,
    request: DecideApplicationRequest,
    user: AuthenticatedUser = Depends(require_user),
    services: MarketplaceServices = Depends(get_services),
) -> TaskApplication:
    """Accept or reject an application (task creator only)."""
    return await services.applications.decide(
        application_id, user.uid, request.decision, message=request.message
    )


@router.delete("/{application_id}", response_model=TaskApplication)
async def withdraw_application(
    application_id: str,
    user: AuthenticatedUser = Depends(require_user),
    services: MarketplaceServices = Depends(get_services),
) -> TaskApplication:
    """Withdraw a pending application (applicant only)."""
    return await services.applications.withdraw(application_id, user.uid)


@router.post("/{application_id}/messages", response_model=TaskApplication)
async def add_message(
    application_id: str,
    request: MessageRequest,
    user: AuthenticatedUser = Depends(require_user),
    services: MarketplaceServices = Depends(get_services),
) -> TaskApplication:
    """Post to the application's thread (task creator or applicant)."""
    return await services.applications.add_message(application_id, user.uid, request.message)
