"""Profile endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from modules.marketplace.services import MarketplaceServices, get_services
from shared.auth import AuthenticatedUser, require_user
from shared.schemas.marketplace import Address, GeoPoint, Profile, Role

router = APIRouter(prefix="/api/v1/profiles", tags=["profiles"])


class SaveProfileRequest(BaseModel):
    name: str | None = None
    photo_url: str | None = None
    roles: list[Role] | None = None
    location: GeoPoint | None = None
    address: Address | None = None
    skills: list[str] | None = None


@router.put("/me", response_model=Profile)
async def save_my_profile(
    request: SaveProfileRequest,
    user: AuthenticatedUser = Depends(require_user),
    services: MarketplaceServices = Depends(get_services),
) -> Profile:
    """Create or update the caller's profile."""
    # Omitted keeps the stored value; explicit null clears it
    optional = {
        k: getattr(request, k)
        for k in ("location", "address")
        if k in request.model_fields_set
    }
    return await services.profiles.save(
        user.uid,
        name=request.name,
        photo_url=request.photo_url,
        roles=request.roles,
        skills=request.skills,
        **optional,
    )


@router.get("/{uid}", response_model=Profile)
async def get_profile(
    uid: str,
    user: AuthenticatedUser = Depends(require_user),
    services: MarketplaceServices = Depends(get_services),
) -> Profile:
    return await services.profiles.get(uid)
