"""Match engine: ranks taskers for a task and tasks for a tasker.

Both directions share one pipeline: pull a bounded pool from the store,
drop entries without a location, measure distance from the origin, drop
anything beyond the radius, score, sort, truncate.

Ordering is score descending, then distance ascending, then most recently
created first, then id, so equal scores always come back in the same order.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime

import structlog

from modules.marketplace.geo import distance_between, match_score, skill_overlap
from modules.marketplace.store.base import TaskStore
from shared.config import Settings
from shared.errors import NotFound, ValidationError
from shared.schemas.marketplace import (
    GeoPoint,
    MatchCandidate,
    Task,
    TaskMatch,
    TaskStatus,
)

logger = structlog.get_logger()


@dataclass
class _Scored:
    """Intermediate ranking row."""

    item: object
    key_id: str
    created_at: datetime
    distance_km: float | None
    skill_overlap: int
    score: float

    def sort_key(self) -> tuple:
        distance = self.distance_km if self.distance_km is not None else math.inf
        return (-self.score, distance, -self.created_at.timestamp(), self.key_id)


class MatchEngine:
    """Read-only ranking over TaskStore snapshots."""

    def __init__(self, store: TaskStore, settings: Settings):
        self.store = store
        self.settings = settings

    def _bounds(self, radius_km: float | None, limit: int | None) -> tuple[float, int]:
        radius = self.settings.match_default_radius_km if radius_km is None else radius_km
        if not radius > 0:
            raise ValidationError("radius_km must be positive")
        size = self.settings.match_default_limit if limit is None else limit
        if size < 1:
            raise ValidationError("limit must be at least 1")
        return radius, min(size, self.settings.match_candidate_pool)

    def _rank(
        self,
        rows: list[tuple[object, str, datetime, GeoPoint | None, int]],
        origin: GeoPoint | None,
        radius: float,
        limit: int,
    ) -> list[_Scored]:
        """Score ``(item, id, created_at, location, overlap)`` rows around ``origin``.

        With no origin the ``match_missing_origin`` policy decides: ``exclude``
        returns nothing, ``unfiltered`` keeps every located row with an
        unknown distance.
        """
        if origin is None and self.settings.match_missing_origin == "exclude":
            return []

        scored = []
        for item, key_id, created_at, location, overlap in rows:
            if location is None:
                continue
            if origin is None:
                distance = None
            else:
                distance = distance_between(origin, location)
                if distance > radius:
                    continue
            scored.append(
                _Scored(
                    item=item,
                    key_id=key_id,
                    created_at=created_at,
                    distance_km=distance,
                    skill_overlap=overlap,
                    score=match_score(distance, overlap),
                )
            )
        scored.sort(key=_Scored.sort_key)
        return scored[:limit]

    async def candidates_for_task(
        self,
        task_id: str,
        origin: GeoPoint | None = None,
        radius_km: float | None = None,
        limit: int | None = None,
    ) -> list[MatchCandidate]:
        radius, size = self._bounds(radius_km, limit)
        task = await self.store.get_task(task_id)
        if task is None:
            raise NotFound("Task not found", task_id=task_id)

        origin = origin or task.location
        if origin is None:
            logger.info("match_origin_missing", task_id=task_id)

        profiles = await self.store.list_taskers(limit=self.settings.match_candidate_pool)
        rows = [
            (
                p,
                p.uid,
                p.created_at,
                p.location,
                skill_overlap(p.skills, task.skills_required),
            )
            for p in profiles
            if p.uid != task.creator_uid
        ]
        ranked = self._rank(rows, origin, radius, size)
        logger.info(
            "candidates_ranked",
            task_id=task_id,
            pool=len(profiles),
            returned=len(ranked),
            radius_km=radius,
        )
        return [
            MatchCandidate(
                uid=r.item.uid,
                name=r.item.name,
                photo_url=r.item.photo_url,
                distance_km=r.distance_km,
                skill_overlap=r.skill_overlap,
                score=r.score,
            )
            for r in ranked
        ]

    async def tasks_for_profile(
        self,
        uid: str,
        origin: GeoPoint | None = None,
        radius_km: float | None = None,
        limit: int | None = None,
    ) -> list[TaskMatch]:
        radius, size = self._bounds(radius_km, limit)
        profile = await self.store.get_profile(uid)
        skills = profile.skills if profile else []
        origin = origin or (profile.location if profile else None)
        if origin is None:
            logger.info("match_origin_missing", uid=uid)

        tasks, _ = await self.store.list_tasks(
            status=TaskStatus.OPEN,
            skills_any=skills or None,
            limit=self.settings.match_candidate_pool,
        )
        rows: list[tuple[Task, str, datetime, GeoPoint | None, int]] = [
            (t, t.id, t.created_at, t.location, skill_overlap(skills, t.skills_required))
            for t in tasks
            if t.creator_uid != uid
        ]
        ranked = self._rank(rows, origin, radius, size)
        logger.info(
            "tasks_ranked",
            uid=uid,
            pool=len(tasks),
            returned=len(ranked),
            radius_km=radius,
        )
        return [
            TaskMatch(
                task=r.item,
                distance_km=r.distance_km,
                skill_overlap=r.skill_overlap,
                score=r.score,
            )
            for r in ranked
        ]
