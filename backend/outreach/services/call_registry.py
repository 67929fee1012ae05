"""Active call registry.

Redis-backed record of the live call each caller is on, per campaign.
Lets a hangup request find the provider sid and lets a leaving caller
clean up after itself.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING

import structlog

from outreach.core.config import settings
from outreach.db.redis import get_redis

if TYPE_CHECKING:
    from redis.asyncio import Redis

logger = structlog.get_logger()

# Redis key prefix for call registry
CALL_REGISTRY_PREFIX = "outreach:callers:"

_registry_lock = asyncio.Lock()


def _key(campaign_id: int, caller_id: str) -> str:
    return f"{CALL_REGISTRY_PREFIX}{campaign_id}:{caller_id}"


@dataclass
class ActiveCall:
    """Live call of one caller."""

    campaign_id: int
    caller_id: str
    call_sid: str
    started_at: float
    contact_id: int | None = None
    queue_id: int | None = None


async def register_call(
    campaign_id: int,
    caller_id: str,
    call_sid: str,
    contact_id: int | None = None,
    queue_id: int | None = None,
) -> bool:
    """Record the caller's live call.

    Args:
        campaign_id: Campaign being dialed.
        caller_id: Caller on the call.
        call_sid: Provider call id.
        contact_id: Contact being called.
        queue_id: Queue item the contact was claimed from.

    Returns:
        True if registered successfully, False otherwise.
    """
    if not settings.ENABLE_CALL_REGISTRY:
        return True

    try:
        redis: Redis = await get_redis()
        key = _key(campaign_id, caller_id)

        call_data = {
            "campaign_id": str(campaign_id),
            "caller_id": caller_id,
            "call_sid": call_sid,
            "started_at": str(time.time()),
            "contact_id": str(contact_id) if contact_id is not None else "",
            "queue_id": str(queue_id) if queue_id is not None else "",
        }

        async with _registry_lock:
            await redis.delete(key)
            await redis.hset(key, mapping=call_data)  # type: ignore[misc]
            await redis.expire(key, settings.CALL_REGISTRY_TTL)

        logger.info(
            "call_registered",
            campaign_id=campaign_id,
            caller_id=caller_id,
            call_sid=call_sid,
            ttl=settings.CALL_REGISTRY_TTL,
        )
        return True

    except Exception:
        logger.exception("call_register_failed", call_sid=call_sid)
        return False


async def unregister_call(campaign_id: int, caller_id: str) -> bool:
    """Forget the caller's live call.

    Returns:
        True if the registry no longer holds a call for the caller.
    """
    if not settings.ENABLE_CALL_REGISTRY:
        return True

    try:
        redis: Redis = await get_redis()

        async with _registry_lock:
            deleted = await redis.delete(_key(campaign_id, caller_id))

        if deleted:
            logger.info("call_unregistered", campaign_id=campaign_id, caller_id=caller_id)
        else:
            logger.debug("call_not_registered", campaign_id=campaign_id, caller_id=caller_id)

        return True

    except Exception:
        logger.exception("call_unregister_failed", campaign_id=campaign_id, caller_id=caller_id)
        return False


def _parse(data: dict[str, str]) -> ActiveCall:
    return ActiveCall(
        campaign_id=int(data.get("campaign_id", 0)),
        caller_id=data.get("caller_id", ""),
        call_sid=data.get("call_sid", ""),
        started_at=float(data.get("started_at", 0)),
        contact_id=int(data["contact_id"]) if data.get("contact_id") else None,
        queue_id=int(data["queue_id"]) if data.get("queue_id") else None,
    )


async def get_active_call(campaign_id: int, caller_id: str) -> ActiveCall | None:
    """Live call of a caller, if any."""
    if not settings.ENABLE_CALL_REGISTRY:
        return None

    try:
        redis: Redis = await get_redis()
        data = await redis.hgetall(_key(campaign_id, caller_id))  # type: ignore[misc]
        return _parse(data) if data else None

    except Exception:
        logger.exception("get_active_call_failed", campaign_id=campaign_id, caller_id=caller_id)
        return None


async def get_active_calls(campaign_id: int | None = None) -> list[ActiveCall]:
    """All live calls, optionally for one campaign."""
    if not settings.ENABLE_CALL_REGISTRY:
        return []

    try:
        redis: Redis = await get_redis()
        pattern = f"{CALL_REGISTRY_PREFIX}{campaign_id if campaign_id is not None else '*'}:*"

        calls: list[ActiveCall] = []
        async for key in redis.scan_iter(match=pattern):
            data = await redis.hgetall(key)  # type: ignore[misc]
            if data:
                calls.append(_parse(data))

        return calls

    except Exception:
        logger.exception("get_active_calls_failed")
        return []


async def get_call_count() -> int:
    """Number of live calls across all campaigns."""
    return len(await get_active_calls())


__all__ = [
    "ActiveCall",
    "get_active_call",
    "get_active_calls",
    "get_call_count",
    "register_call",
    "unregister_call",
]
