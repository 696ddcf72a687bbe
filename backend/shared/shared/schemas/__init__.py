"""Pydantic schemas for the task marketplace."""

from shared.schemas.common import HealthResponse
from shared.schemas.marketplace import (
    ApplicationMessage,
    ApplicationStatus,
    ApplicationTerms,
    Budget,
    Decision,
    GeoPoint,
    MatchCandidate,
    Profile,
    Role,
    Task,
    TaskApplication,
    TaskMatch,
    TaskParty,
    TaskSort,
    TaskStatus,
)

__all__ = [
    "ApplicationMessage",
    "ApplicationStatus",
    "ApplicationTerms",
    "Budget",
    "Decision",
    "GeoPoint",
    "HealthResponse",
    "MatchCandidate",
    "Profile",
    "Role",
    "Task",
    "TaskApplication",
    "TaskMatch",
    "TaskParty",
    "TaskSort",
    "TaskStatus",
]
