"""Health probes.

- /health: process is up, with app name and version
- /health/live: liveness, never touches a dependency
- /health/db, /health/redis: one dependency each
- /health/ready: readiness, database and Redis plus dialer circuit state
"""

from typing import Any

import structlog
from fastapi import APIRouter, Depends, Response, status
from redis.asyncio import Redis
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from outreach.core.config import settings
from outreach.db.redis import get_redis
from outreach.db.session import get_db
from outreach.services.call_registry import get_call_count
from outreach.services.outbound import get_circuit_state

logger = structlog.get_logger()

router = APIRouter(tags=["health"])


async def _database_error(db: AsyncSession) -> str | None:
    """Run a trivial query. Returns the failure text, or None when reachable."""
    try:
        (await db.execute(text("SELECT 1"))).scalar()
    except Exception as e:
        logger.warning("health_dependency_down", dependency="database", exc_info=True)
        return str(e)
    return None


async def _redis_error(redis: Redis) -> str | None:
    try:
        await redis.ping()  # type: ignore[misc]
    except Exception as e:
        logger.warning("health_dependency_down", dependency="redis", exc_info=True)
        return str(e)
    return None


@router.get("/health")
async def health_check() -> dict[str, str]:
    return {"status": "healthy", "app": settings.APP_NAME, "version": settings.APP_VERSION}


@router.get("/health/live")
async def liveness_probe() -> dict[str, str]:
    return {"status": "alive"}


@router.get("/health/db")
async def health_check_db(response: Response, db: AsyncSession = Depends(get_db)) -> dict[str, str]:
    error = await _database_error(db)
    if error is not None:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return {"status": "unhealthy", "database": error}
    return {"status": "healthy", "database": "connected"}


@router.get("/health/redis")
async def health_check_redis(response: Response, redis: Redis = Depends(get_redis)) -> dict[str, str]:
    error = await _redis_error(redis)
    if error is not None:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return {"status": "unhealthy", "redis": error}
    return {"status": "healthy", "redis": "connected"}


@router.get("/health/ready")
async def readiness_probe(
    response: Response,
    db: AsyncSession = Depends(get_db),
    redis: Redis = Depends(get_redis),
) -> dict[str, Any]:
    """Readiness probe.

    Returns 503 while the database or Redis is unreachable. An open dialer
    circuit is reported but does not fail readiness.
    """
    for dependency, error in (("database", await _database_error(db)), ("redis", await _redis_error(redis))):
        if error is not None:
            response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
            return {"status": "not_ready", "reason": f"{dependency}: {error}"}

    ready: dict[str, Any] = {"status": "ready", "dialer": get_circuit_state()}
    if settings.ENABLE_CALL_REGISTRY:
        ready["active_calls"] = await get_call_count()
    return ready
