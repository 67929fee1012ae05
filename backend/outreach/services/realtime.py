"""Realtime sync: change feed transport and the per-caller bridge.

``ChangeFeed`` carries row-level change events over Redis pub/sub, one
channel per campaign. ``RealtimeSyncBridge`` consumes them for a single
caller: it drops events for other campaigns or other callers' attempts,
discards exact duplicates, and debounces bursts per entity while always
applying the last event of a burst.
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from dataclasses import replace
from typing import Any, Literal

import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from redis.asyncio import Redis
from sqlalchemy.ext.asyncio import AsyncSession

from outreach.core.config import settings
from outreach.models.call import Call
from outreach.models.outreach_attempt import OutreachAttempt
from outreach.services.dequeue import get_queue_item
from outreach.services.queue_store import QueueItem, QueueStore

logger = structlog.get_logger()

TableName = Literal["campaign_queue", "call", "outreach_attempt"]
EventType = Literal["INSERT", "UPDATE", "DELETE"]


class ChangeEvent(BaseModel):
    """One row-level mutation."""

    model_config = ConfigDict(populate_by_name=True)

    table: TableName
    event_type: EventType = Field(alias="eventType")
    new: dict[str, Any] = Field(default_factory=dict)
    old: dict[str, Any] = Field(default_factory=dict)

    @property
    def row(self) -> dict[str, Any]:
        return self.new or self.old

    @property
    def entity_key(self) -> tuple[str, str]:
        row = self.row
        ident = row.get("sid") if self.table == "call" else row.get("id")
        return self.table, str(ident if ident is not None else row.get("id"))

    def fingerprint(self) -> str:
        return self.model_dump_json(by_alias=True)


class ChangeFeed:
    """Redis pub/sub transport for change events."""

    def __init__(self, redis: Redis, prefix: str | None = None) -> None:
        self.redis = redis
        self.prefix = prefix or settings.REALTIME_CHANNEL_PREFIX

    def channel(self, campaign_id: int) -> str:
        return f"{self.prefix}{campaign_id}"

    async def publish(self, campaign_id: int, event: ChangeEvent) -> int:
        """Publish an event. Returns the number of receiving subscribers."""
        receivers = await self.redis.publish(self.channel(campaign_id), event.fingerprint())
        logger.debug(
            "change_published",
            campaign_id=campaign_id,
            table=event.table,
            event_type=event.event_type,
            receivers=receivers,
        )
        return int(receivers)

    @asynccontextmanager
    async def subscribe(self, campaign_id: int) -> AsyncIterator[AsyncIterator[ChangeEvent]]:
        """Subscribe to a campaign's channel for the duration of the block."""
        channel = self.channel(campaign_id)
        pubsub = self.redis.pubsub()
        await pubsub.subscribe(channel)
        logger.info("change_feed_subscribed", channel=channel)

        async def events() -> AsyncIterator[ChangeEvent]:
            async for message in pubsub.listen():
                if message["type"] != "message":
                    continue
                try:
                    yield ChangeEvent.model_validate(json.loads(message["data"]))
                except (ValidationError, ValueError):
                    logger.warning("change_event_rejected", channel=channel, data=str(message["data"])[:200])

        try:
            yield events()
        finally:
            await pubsub.unsubscribe(channel)
            await pubsub.aclose()
            logger.info("change_feed_unsubscribed", channel=channel)


Listener = Callable[[ChangeEvent], Awaitable[None]]


class RealtimeSyncBridge:
    """Drives one caller's queue view from the change feed.

    Args:
        store: Caller's queue store.
        debounce_ms: Quiet period per entity before an update is applied.
            Zero applies every accepted event immediately.
    """

    def __init__(self, store: QueueStore, debounce_ms: int | None = None) -> None:
        self.store = store
        self.debounce = (settings.REALTIME_DEBOUNCE_MS if debounce_ms is None else debounce_ms) / 1000
        self.attempts: dict[int, dict[str, Any]] = {}
        self.calls: dict[str, dict[str, Any]] = {}
        self._pending: dict[tuple[str, str], ChangeEvent] = {}
        self._timers: dict[tuple[str, str], asyncio.Task[None]] = {}
        self._applied: dict[tuple[str, str], str] = {}
        self._listeners: list[Listener] = []

    def add_listener(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def accepts(self, event: ChangeEvent) -> bool:
        """Campaign and ownership filter."""
        row = event.row
        campaign_id = row.get("campaign_id")
        if campaign_id is not None and str(campaign_id) != str(self.store.campaign_id):
            return False
        if event.table == "outreach_attempt":
            return str(row.get("user_id")) == self.store.caller_id
        return True

    async def handle(self, event: ChangeEvent) -> bool:
        """Accept an event for application.

        Returns:
            False if the event was filtered out or is a duplicate.
        """
        if not self.accepts(event):
            return False

        key = event.entity_key
        fingerprint = event.fingerprint()
        pending = self._pending.get(key)
        if pending is not None and pending.fingerprint() == fingerprint:
            return False
        if pending is None and self._applied.get(key) == fingerprint:
            return False

        if self.debounce <= 0:
            await self._apply(event)
            return True

        self._pending[key] = event
        if key not in self._timers:
            self._timers[key] = asyncio.create_task(self._flush_later(key))
        return True

    async def _flush_later(self, key: tuple[str, str]) -> None:
        await asyncio.sleep(self.debounce)
        self._timers.pop(key, None)
        event = self._pending.pop(key, None)
        if event is not None:
            await self._apply(event)

    async def flush(self) -> None:
        """Apply every pending event now."""
        timers, self._timers = self._timers, {}
        for task in timers.values():
            task.cancel()
        pending, self._pending = self._pending, {}
        for event in pending.values():
            await self._apply(event)

    async def run(self, events: AsyncIterator[ChangeEvent]) -> None:
        """Consume a subscription until it ends or the task is cancelled."""
        async for event in events:
            await self.handle(event)

    async def aclose(self) -> None:
        await self.flush()

    async def _apply(self, event: ChangeEvent) -> None:
        self._applied[event.entity_key] = event.fingerprint()

        try:
            if event.table == "campaign_queue":
                self._apply_queue(event)
            elif event.table == "outreach_attempt":
                if event.event_type == "DELETE":
                    self.attempts.pop(int(event.row["id"]), None)
                else:
                    self.attempts[int(event.new["id"])] = event.new
            else:
                self._apply_call(event)
        except (KeyError, TypeError, ValueError):
            logger.warning(
                "change_event_malformed", table=event.table, event_type=event.event_type, row=event.row
            )
            return

        for listener in self._listeners:
            try:
                await listener(event)
            except Exception:
                logger.exception("realtime_listener_failed", table=event.table)

    def _apply_queue(self, event: ChangeEvent) -> None:
        if event.event_type == "DELETE":
            self.store.remove(int(event.row["id"]))
            return
        item = QueueItem.from_dict(event.new)
        if item.contact is None:
            existing = self.store.get(item.id)
            if existing is not None:
                item = replace(item, contact=existing.contact)
        self.store.apply(item)

    def _apply_call(self, event: ChangeEvent) -> None:
        row = event.row
        sid = row.get("sid")
        if not sid:
            return
        if event.event_type == "DELETE":
            self.calls.pop(sid, None)
            return
        self.calls[sid] = event.new
        attempt_id = row.get("attempt_id")
        contact_id = row.get("contact_id")
        if attempt_id is not None and int(attempt_id) in self.attempts and contact_id is not None:
            self.store.on_call_linked(int(contact_id))


def _row_dict(obj: Call | OutreachAttempt) -> dict[str, Any]:
    return {column.key: getattr(obj, column.key) for column in obj.__table__.columns}


async def emit_changes(
    session: AsyncSession,
    feed: ChangeFeed,
    campaign_id: int,
    touched: list[tuple[str, int]],
) -> int:
    """Publish UPDATE events for committed rows.

    Failures are logged and never propagate into the request that made
    the change.

    Returns:
        Number of events published.
    """
    published = 0
    for table, row_id in touched:
        try:
            new: dict[str, Any] | None = None
            if table == "campaign_queue":
                item = await get_queue_item(session, row_id)
                new = item.to_dict() if item else None
            elif table == "call":
                call = await session.get(Call, row_id, populate_existing=True)
                new = _row_dict(call) if call else None
            elif table == "outreach_attempt":
                attempt = await session.get(OutreachAttempt, row_id, populate_existing=True)
                new = _row_dict(attempt) if attempt else None
            if new is None:
                continue
            await feed.publish(
                campaign_id, ChangeEvent(table=table, event_type="UPDATE", new=new)  # type: ignore[arg-type]
            )
            published += 1
        except Exception:
            logger.exception("change_publish_failed", campaign_id=campaign_id, table=table, row_id=row_id)
    return published


__all__ = [
    "ChangeEvent",
    "ChangeFeed",
    "RealtimeSyncBridge",
    "emit_changes",
]
