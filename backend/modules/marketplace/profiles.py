"""Profile save/load: the tasker data the match engine reads."""

from __future__ import annotations

import structlog

from modules.marketplace.lifecycle import utcnow
from modules.marketplace.store.base import TaskStore
from modules.marketplace.validation import normalize_skills
from shared.config import Settings
from shared.errors import NotFound, ValidationError
from shared.schemas.marketplace import Address, GeoPoint, Profile, Role

logger = structlog.get_logger()

_UNSET = object()


class ProfileService:
    def __init__(self, store: TaskStore, settings: Settings, clock=utcnow):
        self.store = store
        self.settings = settings
        self.clock = clock

    async def get(self, uid: str) -> Profile:
        profile = await self.store.get_profile(uid)
        if profile is None:
            raise NotFound("Profile not found", uid=uid)
        return profile

    async def save(
        self,
        uid: str,
        *,
        name: str | None = None,
        photo_url: str | None = None,
        roles: list[Role] | None = None,
        location: GeoPoint | None | object = _UNSET,
        address: Address | None | object = _UNSET,
        skills: list[str] | None = None,
    ) -> Profile:
        """Create the profile on first save, otherwise update the given fields."""
        now = self.clock()
        profile = await self.store.get_profile(uid)
        created = profile is None
        if profile is None:
            profile = Profile(uid=uid, created_at=now, updated_at=now)

        changes: dict = {"updated_at": now}
        if name is not None:
            changes["name"] = name.strip()
        if photo_url is not None:
            changes["photo_url"] = photo_url or None
        if roles is not None:
            if not roles:
                raise ValidationError("At least one role is required")
            changes["roles"] = list(dict.fromkeys(roles))
        if location is not _UNSET:
            changes["location"] = location
        if address is not _UNSET:
            changes["address"] = address
        if skills is not None:
            changes["skills"] = normalize_skills(skills, self.settings.max_profile_skills)

        saved = await self.store.save_profile(profile.model_copy(update=changes))
        logger.info("profile_saved", uid=uid, created=created)
        return saved
