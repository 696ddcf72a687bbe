"""Schemas shared by every marketplace endpoint."""

from __future__ import annotations

from pydantic import BaseModel


class HealthResponse(BaseModel):
    """Liveness plus the store backend chosen at startup."""

    status: str = "ok"
    store_backend: str | None = None
