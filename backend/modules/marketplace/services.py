"""Service container wired once at startup and injected into routers."""

from __future__ import annotations

from dataclasses import dataclass

from fastapi import HTTPException

from modules.marketplace.applications import ApplicationWorkflow
from modules.marketplace.lifecycle import TaskLifecycle, utcnow
from modules.marketplace.matching import MatchEngine
from modules.marketplace.profiles import ProfileService
from modules.marketplace.store.base import TaskStore
from shared.config import Settings


@dataclass
class MarketplaceServices:
    store: TaskStore
    lifecycle: TaskLifecycle
    applications: ApplicationWorkflow
    matches: MatchEngine
    profiles: ProfileService

    @classmethod
    def build(cls, store: TaskStore, settings: Settings, clock=utcnow) -> MarketplaceServices:
        lifecycle = TaskLifecycle(store, settings, clock)
        return cls(
            store=store,
            lifecycle=lifecycle,
            applications=ApplicationWorkflow(store, lifecycle, settings),
            matches=MatchEngine(store, settings),
            profiles=ProfileService(store, settings, clock),
        )


_services: MarketplaceServices | None = None


def set_services(services: MarketplaceServices | None) -> None:
    global _services
    _services = services


def get_services() -> MarketplaceServices:
    """FastAPI dependency returning the wired services."""
    if _services is None:
        raise HTTPException(status_code=503, detail="Service not ready")
    return _services
