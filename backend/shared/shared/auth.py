"""Bearer-token identity verification.

The marketplace trusts a single identity provider that issues HS256 JWTs.
The ``sub`` claim is the stable, opaque user id used as the acting principal
for every authorization check.

Usage in a FastAPI router::

    from shared.auth import AuthenticatedUser, require_user

    @router.post("/tasks")
    async def create_task(body: CreateTaskRequest, user: AuthenticatedUser = Depends(require_user)):
        ...
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

import jwt
import structlog
from fastapi import Header, HTTPException

from shared.config import get_settings

logger = structlog.get_logger()

JWT_ALGORITHM = "HS256"


@dataclass
class AuthenticatedUser:
    """Acting principal resolved from the bearer credential."""

    uid: str


def verify_bearer(token: str) -> str:
    """Decode and validate a JWT, returning the user id from ``sub``."""
    settings = get_settings()
    if not settings.auth_jwt_secret:
        raise HTTPException(status_code=503, detail="Auth not configured")

    options = {"require": ["sub", "exp"]}
    try:
        if settings.auth_jwt_audience:
            payload = jwt.decode(
                token,
                settings.auth_jwt_secret,
                algorithms=[JWT_ALGORITHM],
                audience=settings.auth_jwt_audience,
                options=options,
            )
        else:
            payload = jwt.decode(
                token,
                settings.auth_jwt_secret,
                algorithms=[JWT_ALGORITHM],
                options={**options, "verify_aud": False},
            )
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")
    except jwt.InvalidTokenError:
        logger.info("auth_token_rejected")
        raise HTTPException(status_code=401, detail="Invalid token")

    uid = str(payload["sub"]).strip()
    if not uid:
        raise HTTPException(status_code=401, detail="Invalid token")
    return uid


def issue_token(uid: str, ttl_minutes: int | None = None) -> str:
    """Sign a bearer token for ``uid`` (development and tests)."""
    settings = get_settings()
    if not settings.auth_jwt_secret:
        raise RuntimeError("AUTH_JWT_SECRET is not set")
    now = datetime.now(timezone.utc)
    ttl = ttl_minutes if ttl_minutes is not None else settings.auth_token_ttl_minutes
    claims: dict = {"sub": uid, "iat": now, "exp": now + timedelta(minutes=ttl)}
    if settings.auth_jwt_audience:
        claims["aud"] = settings.auth_jwt_audience
    return jwt.encode(claims, settings.auth_jwt_secret, algorithm=JWT_ALGORITHM)


async def require_user(authorization: str = Header(default="")) -> AuthenticatedUser:
    """FastAPI dependency: extract and validate the bearer token.

    Expects: Authorization: Bearer <jwt>
    """
    if not authorization.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Missing Bearer token")
    return AuthenticatedUser(uid=verify_bearer(authorization[7:]))
