"""Geo distance and match scoring."""

from __future__ import annotations

import math
from collections.abc import Iterable

from shared.schemas.marketplace import GeoPoint

EARTH_RADIUS_KM = 6371.0

# Points per required skill the candidate has
SKILL_WEIGHT = 10
# Proximity contributes up to this many points, decaying 1 point per km
PROXIMITY_CEILING_KM = 50.0


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Haversine distance in kilometers between two lat/lng points."""
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    dphi = math.radians(lat2 - lat1)
    dlam = math.radians(lon2 - lon1)
    a = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlam / 2) ** 2
    # Rounding can push a a hair outside [0, 1] for antipodal points
    a = min(1.0, max(0.0, a))
    return EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def distance_between(a: GeoPoint | None, b: GeoPoint | None) -> float:
    """Distance between two optional points; ``inf`` when either is unknown."""
    if a is None or b is None:
        return math.inf
    return haversine_km(a.lat, a.lng, b.lat, b.lng)


def skill_overlap(candidate_skills: Iterable[str], required_skills: Iterable[str]) -> int:
    """Count of required skills present in the candidate's skill set."""
    have = {s.strip().lower() for s in candidate_skills}
    need = {s.strip().lower() for s in required_skills}
    return len(need & have)


def match_score(distance_km: float | None, overlap: int) -> float:
    """``overlap * 10 + max(0, 50 - distance_km)``.

    An unknown distance (``None``) contributes no proximity points.
    """
    proximity = 0.0
    if distance_km is not None:
        proximity = max(0.0, PROXIMITY_CEILING_KM - distance_km)
    return overlap * SKILL_WEIGHT + proximity
