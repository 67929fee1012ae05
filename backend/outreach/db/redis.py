"""Redis connection management."""

from __future__ import annotations

import structlog
from redis.asyncio import ConnectionPool, Redis

from outreach.core.config import settings

logger = structlog.get_logger()

redis_pool: ConnectionPool | None = None
redis_client: Redis | None = None


async def get_redis() -> Redis:
    """Get the shared async Redis client, creating the pool on first use."""
    global redis_pool, redis_client

    if redis_client is None:
        redis_pool = ConnectionPool.from_url(
            str(settings.REDIS_URL),
            decode_responses=True,
            max_connections=50,
        )
        redis_client = Redis(connection_pool=redis_pool)
        logger.info("redis_pool_created", url=str(settings.REDIS_URL))

    return redis_client


async def close_redis() -> None:
    """Close the shared Redis client and its pool."""
    global redis_pool, redis_client

    if redis_client is not None:
        await redis_client.aclose()
        redis_client = None
    if redis_pool is not None:
        await redis_pool.disconnect()
        redis_pool = None
    logger.info("redis_pool_closed")
