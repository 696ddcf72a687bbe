"""SQLAlchemy models."""

from shared.models.application_message import ApplicationMessageRecord
from shared.models.base import Base
from shared.models.profile import ProfileRecord
from shared.models.task import TaskRecord
from shared.models.task_application import TaskApplicationRecord

__all__ = [
    "ApplicationMessageRecord",
    "Base",
    "ProfileRecord",
    "TaskApplicationRecord",
    "TaskRecord",
]
