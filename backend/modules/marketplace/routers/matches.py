"""Matching endpoints: candidates for a task, recommended tasks for me."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from modules.marketplace.services import MarketplaceServices, get_services
from shared.auth import AuthenticatedUser, require_user
from shared.errors import ValidationError
from shared.schemas.marketplace import GeoPoint, MatchCandidate, TaskMatch

router = APIRouter(prefix="/api/v1/matches", tags=["matches"])


def _origin(lat: float | None, lng: float | None) -> GeoPoint | None:
    if lat is None and lng is None:
        return None
    if lat is None or lng is None:
        raise ValidationError("lat and lng must be given together")
    try:
        return GeoPoint(lat=lat, lng=lng)
    except ValueError as e:
        raise ValidationError("lat/lng out of range") from e


@router.get("/tasks/{task_id}/candidates", response_model=list[MatchCandidate])
async def list_candidates(
    task_id: str,
    lat: float | None = Query(None),
    lng: float | None = Query(None),
    radius_km: float | None = Query(None, gt=0),
    limit: int | None = Query(None, ge=1, le=200),
    user: AuthenticatedUser = Depends(require_user),
    services: MarketplaceServices = Depends(get_services),
) -> list[MatchCandidate]:
    """Taskers ranked by skill overlap and proximity to the task."""
    return await services.matches.candidates_for_task(
        task_id, origin=_origin(lat, lng), radius_km=radius_km, limit=limit
    )


@router.get("/recommended-tasks", response_model=list[TaskMatch])
async def list_recommended_tasks(
    lat: float | None = Query(None),
    lng: float | None = Query(None),
    radius_km: float | None = Query(None, gt=0),
    limit: int | None = Query(None, ge=1, le=200),
    user: AuthenticatedUser = Depends(require_user),
    services: MarketplaceServices = Depends(get_services),
) -> list[TaskMatch]:
    """Open tasks ranked for the calling tasker."""
    return await services.matches.tasks_for_profile(
        user.uid, origin=_origin(lat, lng), radius_km=radius_km, limit=limit
    )
