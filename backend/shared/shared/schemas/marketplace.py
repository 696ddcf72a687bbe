"""Marketplace records and enumerations.

These are the plain typed values that cross the store boundary.  Stores
return them directly (a single record, ``None``, or a list); no ORM object
or query builder escapes the persistence layer.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field


class Role(str, Enum):
    POSTER = "poster"
    TASKER = "tasker"
    BOTH = "both"


class TaskStatus(str, Enum):
    OPEN = "open"
    ASSIGNED = "assigned"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


class ApplicationStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    WITHDRAWN = "withdrawn"


class Decision(str, Enum):
    ACCEPT = "accept"
    REJECT = "reject"


class Urgency(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class Priority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class TaskSort(str, Enum):
    NEWEST = "newest"
    BUDGET_ASC = "budget_asc"
    BUDGET_DESC = "budget_desc"
    URGENT = "urgent"


class TaskParty(str, Enum):
    """Which side of a task the caller is on when listing their own."""

    CREATOR = "creator"
    ASSIGNEE = "assignee"
    ALL = "all"


# Higher ranks first under TaskSort.URGENT
URGENCY_RANK = {Urgency.URGENT: 3, Urgency.HIGH: 2, Urgency.MEDIUM: 1, Urgency.LOW: 0}

# Statuses in which a task must carry an assignee
ASSIGNED_STATUSES = frozenset(
    {TaskStatus.ASSIGNED, TaskStatus.IN_PROGRESS, TaskStatus.COMPLETED}
)


class GeoPoint(BaseModel):
    lat: float = Field(ge=-90, le=90)
    lng: float = Field(ge=-180, le=180)


class Address(BaseModel):
    line: str | None = None
    area: str | None = None
    city: str | None = None
    state: str | None = None
    postal_code: str | None = None
    country: str | None = None


class Budget(BaseModel):
    amount: float = Field(ge=0)
    currency: str = "INR"
    negotiable: bool = True


class Profile(BaseModel):
    uid: str
    name: str = ""
    photo_url: str | None = None
    roles: list[Role] = Field(default_factory=lambda: [Role.BOTH])
    location: GeoPoint | None = None
    address: Address | None = None
    skills: list[str] = Field(default_factory=list)
    rating: float = Field(default=0.0, ge=0, le=5)
    review_count: int = 0
    total_tasks: int = 0
    completed_tasks: int = 0
    created_at: datetime
    updated_at: datetime

    @property
    def is_tasker(self) -> bool:
        return Role.TASKER in self.roles or Role.BOTH in self.roles


class Completion(BaseModel):
    proofs: list[str] = Field(default_factory=list)
    comment: str | None = None
    completed_at: datetime


class Task(BaseModel):
    id: str
    creator_uid: str
    assignee_uid: str | None = None
    type: str
    title: str
    description: str
    budget: Budget
    skills_required: list[str] = Field(default_factory=list)
    location: GeoPoint | None = None
    address: Address | None = None
    urgency: Urgency = Urgency.MEDIUM
    priority: Priority = Priority.MEDIUM
    status: TaskStatus = TaskStatus.OPEN
    completion: Completion | None = None
    view_count: int = 0
    application_count: int = 0
    expires_at: datetime | None = None
    created_at: datetime
    updated_at: datetime


class ProposedSchedule(BaseModel):
    start: datetime | None = None
    end: datetime | None = None
    estimated_hours: float | None = Field(default=None, ge=0)
    flexible: bool = True


class ApplicationTerms(BaseModel):
    budget: Budget
    schedule: ProposedSchedule = Field(default_factory=ProposedSchedule)
    cover_letter: str = Field(default="", max_length=1000)


class ApplicationMessage(BaseModel):
    sender_uid: str
    text: str
    created_at: datetime


class TaskApplication(BaseModel):
    id: str
    task_id: str
    applicant_uid: str
    terms: ApplicationTerms
    status: ApplicationStatus = ApplicationStatus.PENDING
    messages: list[ApplicationMessage] = Field(default_factory=list)
    responded_at: datetime | None = None
    created_at: datetime
    updated_at: datetime


class MatchCandidate(BaseModel):
    """A tasker ranked against a task."""

    uid: str
    name: str
    photo_url: str | None = None
    distance_km: float | None
    skill_overlap: int
    score: float


class TaskMatch(BaseModel):
    """A task ranked for a tasker."""

    task: Task
    distance_km: float | None
    skill_overlap: int
    score: float


class Pagination(BaseModel):
    page: int
    page_size: int
    total: int
    total_pages: int
