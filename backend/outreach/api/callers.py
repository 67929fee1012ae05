"""Caller actions inside a live campaign: queue view, next, dial, hangup, leave."""

from __future__ import annotations

from typing import Any

import structlog
from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from outreach.api.deps import get_feed, get_outbound, get_session_factory, get_telephony
from outreach.core.errors import NotFoundError
from outreach.db.session import get_db
from outreach.models.campaign import Campaign
from outreach.services import call_registry
from outreach.services.caller_session import leave_campaign, load_store
from outreach.services.dequeue import SelectionStatus, claim_next, load_queue, release_claims
from outreach.services.followups import publish
from outreach.services.outbound import OutboundClient
from outreach.services.realtime import ChangeFeed
from outreach.services.scheduler import SchedulerTrigger
from outreach.services.telephony import TelephonyGateway

router = APIRouter(prefix="/campaigns/{campaign_id}/callers/{caller_id}", tags=["callers"])
logger = structlog.get_logger()


# =============================================================================
# Pydantic Schemas
# =============================================================================


class NextContactRequest(BaseModel):
    """Request the next contact for a caller."""

    current_contact_id: int | None = None
    skip_household: bool = False


class NextContactResponse(BaseModel):
    status: str
    conflicts: int = 0
    item: dict[str, Any] | None = None


class DialResponse(BaseModel):
    status: str
    sid: str | None = None
    attempt_id: int | None = None
    contact_id: int | None = None
    queue_id: int | None = None
    failures: int = 0


class HangupRequest(BaseModel):
    call_sid: str | None = None


class HangupResponse(BaseModel):
    call_sid: str | None
    hung_up: bool


class LeaveResponse(BaseModel):
    released: int


async def _get_campaign(db: AsyncSession, campaign_id: int) -> Campaign:
    campaign = await db.get(Campaign, campaign_id)
    if campaign is None:
        raise NotFoundError(f"Campaign {campaign_id} not found")
    return campaign


# =============================================================================
# Routes
# =============================================================================


@router.get("/queue")
async def get_queue(
    campaign_id: int, caller_id: str, db: AsyncSession = Depends(get_db)
) -> dict[str, Any]:
    """Current queue view of a caller: queued items plus the caller's claims."""
    campaign = await _get_campaign(db, campaign_id)
    store = await load_store(db, campaign, caller_id)
    return store.snapshot()


@router.post("/next", response_model=NextContactResponse)
async def next_contact(
    campaign_id: int,
    caller_id: str,
    request: NextContactRequest,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
    factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    feed: ChangeFeed = Depends(get_feed),
) -> NextContactResponse:
    """Claim the next contact for a power dial caller.

    Raises 409 when other callers won every candidate.
    """
    campaign = await _get_campaign(db, campaign_id)
    held = [item.id for item in await load_queue(db, campaign_id, statuses=(caller_id,))]
    if held:
        await release_claims(db, campaign_id, caller_id)

    selection = await claim_next(
        db,
        campaign,
        caller_id,
        current_contact_id=request.current_contact_id,
        skip_household=request.skip_household,
    )
    touched = [("campaign_queue", item_id) for item_id in held]
    if selection.status == SelectionStatus.CLAIMED and selection.item is not None:
        touched.append(("campaign_queue", selection.item.id))
    await db.commit()
    background_tasks.add_task(publish, factory, feed, campaign_id, touched)
    return NextContactResponse(
        status=selection.status,
        conflicts=selection.conflicts,
        item=selection.item.to_dict() if selection.item else None,
    )


@router.post("/dial", response_model=DialResponse)
async def dial(
    campaign_id: int,
    caller_id: str,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
    factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    feed: ChangeFeed = Depends(get_feed),
    outbound: OutboundClient = Depends(get_outbound),
) -> DialResponse:
    """Place the caller's claimed contact, claiming one first if needed."""
    await _get_campaign(db, campaign_id)
    outcome = await SchedulerTrigger(db, outbound).dial_claimed(campaign_id, caller_id)
    background_tasks.add_task(publish, factory, feed, campaign_id, outcome.touched)
    return DialResponse(
        status=outcome.status,
        sid=outcome.sid,
        attempt_id=outcome.attempt_id,
        contact_id=outcome.contact_id,
        queue_id=outcome.queue_id,
        failures=outcome.failures,
    )


@router.post("/hangup", response_model=HangupResponse)
async def hangup(
    campaign_id: int,
    caller_id: str,
    request: HangupRequest,
    telephony: TelephonyGateway = Depends(get_telephony),
) -> HangupResponse:
    """End the caller's live call.

    The caller's active call is forgotten whether or not the provider
    accepted the hangup, so the caller can always move on.
    """
    call_sid = request.call_sid
    if call_sid is None:
        active = await call_registry.get_active_call(campaign_id, caller_id)
        call_sid = active.call_sid if active else None
    if call_sid is None:
        raise HTTPException(status_code=404, detail="No active call for caller")

    try:
        hung_up = await telephony.hangup(call_sid)
    except ValueError:
        logger.exception("hangup_unavailable", campaign_id=campaign_id, caller_id=caller_id)
        hung_up = False
    finally:
        await call_registry.unregister_call(campaign_id, caller_id)

    logger.info("caller_hangup", campaign_id=campaign_id, caller_id=caller_id, call_sid=call_sid, hung_up=hung_up)
    return HangupResponse(call_sid=call_sid, hung_up=hung_up)


@router.post("/leave", response_model=LeaveResponse)
async def leave(
    campaign_id: int, caller_id: str, db: AsyncSession = Depends(get_db)
) -> LeaveResponse:
    """Release every contact the caller still holds."""
    await _get_campaign(db, campaign_id)
    return LeaveResponse(released=await leave_campaign(db, campaign_id, caller_id))
