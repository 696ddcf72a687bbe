"""Marketplace service: FastAPI app over the task lifecycle and matching core."""

from __future__ import annotations

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from modules.marketplace.routers import applications, matches, profiles, tasks
from modules.marketplace.services import MarketplaceServices, set_services
from modules.marketplace.store import build_store
from shared.config import get_settings
from shared.database import dispose_engine
from shared.errors import MarketplaceError
from shared.schemas.common import HealthResponse

structlog.configure(
    processors=[
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.JSONRenderer(),
    ],
)

logger = structlog.get_logger()
app = FastAPI(title="Marketplace Service", version="1.0.0")

app.include_router(profiles.router)
app.include_router(tasks.router)
app.include_router(applications.router)
app.include_router(matches.router)


@app.on_event("startup")
async def startup():
    settings = get_settings()
    store = build_store(settings)
    set_services(MarketplaceServices.build(store, settings))
    logger.info("marketplace_ready", store_backend=settings.store_backend)


@app.on_event("shutdown")
async def shutdown():
    set_services(None)
    await dispose_engine()


@app.exception_handler(MarketplaceError)
async def marketplace_error_handler(request: Request, exc: MarketplaceError) -> JSONResponse:
    log = logger.error if exc.status_code >= 500 else logger.info
    log(
        "request_failed",
        path=request.url.path,
        kind=exc.kind,
        detail=exc.message,
        **{k: str(v) for k, v in exc.context.items()},
    )
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.get("/health", response_model=HealthResponse)
async def health():
    return HealthResponse(status="ok", store_backend=get_settings().store_backend)
