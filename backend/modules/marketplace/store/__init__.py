"""Task store backends, selected once at startup."""

from __future__ import annotations

import structlog

from modules.marketplace.store.base import TaskStore
from modules.marketplace.store.memory import InMemoryTaskStore
from modules.marketplace.store.sql import SqlTaskStore
from shared.config import Settings

logger = structlog.get_logger()


def build_store(settings: Settings, session_factory=None) -> TaskStore:
    """Construct the configured TaskStore."""
    if settings.store_backend == "memory":
        logger.info("task_store_selected", backend="memory")
        return InMemoryTaskStore()

    if session_factory is None:
        from shared.database import get_session_factory

        session_factory = get_session_factory()
    logger.info("task_store_selected", backend="sql")
    return SqlTaskStore(session_factory)


__all__ = ["InMemoryTaskStore", "SqlTaskStore", "TaskStore", "build_store"]
