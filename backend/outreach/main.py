"""FastAPI application entry point."""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from outreach.api import callers, campaigns, health, ivr, realtime_ws, webhooks
from outreach.api.deps import close_clients
from outreach.core.config import settings
from outreach.core.errors import OutreachError, ScriptValidationError
from outreach.core.logging import configure_logging
from outreach.db.redis import close_redis
from outreach.monitoring.metrics import get_metrics_router

logger = structlog.get_logger()


def outreach_error_handler(request: Request, exc: OutreachError) -> JSONResponse:
    """Map domain errors to their HTTP status with a structured body."""
    content: dict[str, object] = {
        "error": type(exc).__name__,
        "message": exc.message,
    }
    if isinstance(exc, ScriptValidationError):
        content["errors"] = exc.errors
        content["warnings"] = exc.warnings
    if exc.status_code >= 500:
        logger.error("request_failed", path=request.url.path, error=exc.message)
    return JSONResponse(status_code=exc.status_code, content=content)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager."""
    configure_logging(level=settings.LOG_LEVEL, json_output=not settings.DEBUG)
    logger.info("outreach_starting", version=settings.APP_VERSION, scheduler=settings.ENABLE_SCHEDULER)

    yield

    await close_clients()
    await close_redis()
    logger.info("outreach_stopped")


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    debug=settings.DEBUG,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_exception_handler(OutreachError, outreach_error_handler)  # type: ignore[arg-type]

app.include_router(health.router)
app.include_router(campaigns.router, prefix=settings.API_V1_PREFIX)
app.include_router(callers.router, prefix=settings.API_V1_PREFIX)
app.include_router(ivr.router, prefix=settings.API_V1_PREFIX)
app.include_router(webhooks.router, prefix=settings.API_V1_PREFIX)
app.include_router(realtime_ws.router)

if settings.ENABLE_PROMETHEUS_METRICS:
    app.include_router(get_metrics_router())
