"""Caller queue WebSocket.

A caller's client connects once per campaign. It receives the queue
snapshot on connect and a fresh snapshot after every applied change.
Disconnecting releases the caller's claimed contacts.
"""

import asyncio
import contextlib
from typing import Any

import structlog
from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from outreach.api.deps import get_feed, get_session_factory
from outreach.core.errors import NotFoundError
from outreach.services.caller_session import caller_session
from outreach.services.realtime import ChangeEvent, ChangeFeed, RealtimeSyncBridge

router = APIRouter(prefix="/ws", tags=["realtime-ws"])
logger = structlog.get_logger()


def _snapshot_message(bridge: RealtimeSyncBridge, kind: str, event: ChangeEvent | None = None) -> dict[str, Any]:
    message: dict[str, Any] = {"type": kind, "queue": bridge.store.snapshot()}
    if event is not None:
        message["table"] = event.table
        message["event_type"] = event.event_type
    return message


async def _receive_until_closed(websocket: WebSocket) -> None:
    """Read client frames until the client disconnects."""
    with contextlib.suppress(WebSocketDisconnect):
        while True:
            await websocket.receive_text()


@router.websocket("/campaigns/{campaign_id}/callers/{caller_id}")
async def caller_queue_stream(
    websocket: WebSocket,
    campaign_id: int,
    caller_id: str,
    factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    feed: ChangeFeed = Depends(get_feed),
) -> None:
    """Stream one caller's queue view."""
    await websocket.accept()
    log = logger.bind(campaign_id=campaign_id, caller_id=caller_id)
    updates: asyncio.Queue[ChangeEvent] = asyncio.Queue()

    async with factory() as session:
        try:
            async with caller_session(session, feed, campaign_id, caller_id) as bridge:
                bridge.add_listener(updates.put)
                await websocket.send_json(_snapshot_message(bridge, "snapshot"))

                receiver = asyncio.create_task(_receive_until_closed(websocket))
                try:
                    while True:
                        getter = asyncio.create_task(updates.get())
                        done, _ = await asyncio.wait(
                            {getter, receiver}, return_when=asyncio.FIRST_COMPLETED
                        )
                        if getter not in done:
                            getter.cancel()
                            break
                        await websocket.send_json(_snapshot_message(bridge, "change", getter.result()))
                finally:
                    receiver.cancel()
                    with contextlib.suppress(asyncio.CancelledError):
                        await receiver
        except NotFoundError:
            log.warning("caller_stream_campaign_not_found")
            await websocket.close(code=4404)
            return
        except WebSocketDisconnect:
            log.info("caller_stream_disconnected")

    log.info("caller_stream_closed")
