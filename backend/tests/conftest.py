"""Shared test fixtures for the marketplace test suite.

Provides an in-memory store, a deterministic clock, wired services, record
factories and mock database sessions so tests run without Postgres.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from modules.marketplace.services import MarketplaceServices
from modules.marketplace.store.memory import InMemoryTaskStore
from shared.config import Settings
from shared.schemas.marketplace import (
    ApplicationTerms,
    Budget,
    GeoPoint,
    Profile,
    Role,
    Urgency,
)

# Hyderabad, the reference point used across matching tests
HYDERABAD = GeoPoint(lat=17.3850, lng=78.4741)


# ---------------------------------------------------------------------------
# Clock and settings
# ---------------------------------------------------------------------------


class FakeClock:
    """Monotonic clock that ticks one second per reading."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        self.now += timedelta(seconds=1)
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def settings():
    return Settings(
        store_backend="memory",
        auth_jwt_secret="marketplace-test-secret-0123456789abcdef",
        sibling_reject_backoff_seconds=0,
        _env_file=None,
    )


# ---------------------------------------------------------------------------
# Store and services
# ---------------------------------------------------------------------------


@pytest.fixture
def store():
    return InMemoryTaskStore()


@pytest.fixture
def services(store, settings, clock):
    return MarketplaceServices.build(store, settings, clock)


@pytest.fixture
def make_profile(store, clock):
    """Factory that saves a profile straight into the store."""

    async def _make(
        uid: str,
        *,
        name: str | None = None,
        skills: list[str] | None = None,
        location: GeoPoint | None = HYDERABAD,
        roles: list[Role] | None = None,
    ) -> Profile:
        now = clock()
        return await store.save_profile(
            Profile(
                uid=uid,
                name=name or uid.title(),
                skills=skills or [],
                location=location,
                roles=roles or [Role.TASKER],
                created_at=now,
                updated_at=now,
            )
        )

    return _make


@pytest.fixture
def make_task(services):
    """Factory that creates an open task through the lifecycle."""

    async def _make(
        creator_uid: str = "poster",
        *,
        title: str = "Replace a kitchen tap",
        skills: list[str] | None = None,
        location: GeoPoint | None = HYDERABAD,
        amount: float = 1200,
        urgency: Urgency = Urgency.MEDIUM,
    ):
        return await services.lifecycle.create_task(
            creator_uid,
            type="repair",
            title=title,
            description="The old tap leaks and needs replacing.",
            budget=Budget(amount=amount),
            location=location,
            skills_required=["plumbing"] if skills is None else skills,
            urgency=urgency,
        )

    return _make


@pytest.fixture
def terms():
    return ApplicationTerms(budget=Budget(amount=1000), cover_letter="Ten years of plumbing.")


# ---------------------------------------------------------------------------
# Database mocks
# ---------------------------------------------------------------------------


@pytest.fixture
def mock_db_session():
    """Mock async SQLAlchemy session.

    Supports the common patterns used in store code:
        session.execute(stmt) -> result
        session.get(Model, key)
        session.add(obj)
        session.commit()
    """
    session = AsyncMock()
    default_result = MagicMock()
    default_result.scalar_one_or_none.return_value = None
    default_result.scalars.return_value.all.return_value = []
    default_result.rowcount = 0
    session.execute = AsyncMock(return_value=default_result)
    session.get = AsyncMock(return_value=None)
    session.add = MagicMock()
    return session


@pytest.fixture
def mock_session_factory(mock_db_session):
    """Mock async session factory compatible with ``async with factory() as session:``."""

    @asynccontextmanager
    async def _session_ctx():
        yield mock_db_session

    factory = MagicMock(side_effect=lambda: _session_ctx())
    return factory
