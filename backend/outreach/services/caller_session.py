"""Lifetime of one caller inside a live campaign.

Entering the session loads the caller's queue view and starts consuming
the campaign change feed. Leaving it, normally or on disconnect, returns
every contact the caller still holds to the queue.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from outreach.core.errors import NotFoundError
from outreach.models.campaign import Campaign, QueueStatus
from outreach.monitoring.metrics import record_caller_joined, record_caller_left
from outreach.services import call_registry
from outreach.services.dequeue import load_queue, release_claims
from outreach.services.queue_store import QueueStore
from outreach.services.realtime import ChangeFeed, RealtimeSyncBridge

logger = structlog.get_logger()


async def load_store(session: AsyncSession, campaign: Campaign, caller_id: str) -> QueueStore:
    """Build a caller's queue view from the database."""
    store = QueueStore(campaign_id=campaign.id, caller_id=caller_id, predictive=campaign.is_predictive)
    store.load(await load_queue(session, campaign.id, statuses=(QueueStatus.QUEUED, caller_id)))
    return store


async def leave_campaign(session: AsyncSession, campaign_id: int, caller_id: str) -> int:
    """Release a caller's claims and forget their active call.

    Returns:
        Number of queue items returned to the queue.
    """
    released = await release_claims(session, campaign_id, caller_id)
    await session.commit()
    await call_registry.unregister_call(campaign_id, caller_id)
    logger.info("caller_left_campaign", campaign_id=campaign_id, caller_id=caller_id, released=released)
    return released


@asynccontextmanager
async def caller_session(
    session: AsyncSession,
    feed: ChangeFeed,
    campaign_id: int,
    caller_id: str,
    debounce_ms: int | None = None,
) -> AsyncIterator[RealtimeSyncBridge]:
    """Join a campaign as a caller.

    Args:
        session: Database session used for the snapshot and the release.
        feed: Change feed of the campaign.
        campaign_id: Campaign to join.
        caller_id: Joining caller.
        debounce_ms: Override of the realtime debounce window.

    Yields:
        The running bridge; ``bridge.store`` is the live queue view.

    Raises:
        NotFoundError: If the campaign does not exist.
    """
    campaign = await session.get(Campaign, campaign_id)
    if campaign is None:
        raise NotFoundError(f"Campaign {campaign_id} not found")

    async with feed.subscribe(campaign_id) as events:
        store = await load_store(session, campaign, caller_id)
        bridge = RealtimeSyncBridge(store, debounce_ms=debounce_ms)
        task = asyncio.create_task(bridge.run(events))
        record_caller_joined()
        logger.info(
            "caller_joined_campaign",
            campaign_id=campaign_id,
            caller_id=caller_id,
            queued=len(store),
        )
        try:
            yield bridge
        finally:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
            except Exception:
                logger.exception("caller_bridge_failed", campaign_id=campaign_id, caller_id=caller_id)
            await bridge.aclose()
            try:
                await leave_campaign(session, campaign_id, caller_id)
            finally:
                record_caller_left()


__all__ = ["caller_session", "leave_campaign", "load_store"]
