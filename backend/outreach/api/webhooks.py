"""Provider status callbacks for calls, IVR calls and messages.

Each callback is reconciled and committed inside the request. Billing,
voicemail redirects, change fan-out and scheduling of the next contact
run afterwards as background tasks with their own sessions.
"""

from __future__ import annotations

from typing import Any

import structlog
from fastapi import APIRouter, BackgroundTasks, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from outreach.api.deps import (
    get_billing,
    get_feed,
    get_outbound,
    get_session_factory,
    get_telephony,
    verify_twilio_signature,
)
from outreach.db.session import get_db
from outreach.services.billing import BillingClient
from outreach.services.followups import settle_outcome
from outreach.services.outbound import OutboundClient
from outreach.services.realtime import ChangeFeed
from outreach.services.reconciler import LifecycleReconciler, ReconcileOutcome, StatusEvent
from outreach.services.telephony import TelephonyGateway

router = APIRouter(
    prefix="/webhooks",
    tags=["webhooks"],
    dependencies=[Depends(verify_twilio_signature)],
)
logger = structlog.get_logger()


async def _callback_params(request: Request) -> dict[str, Any]:
    """Query string and form body merged; the form wins on conflicts."""
    params: dict[str, Any] = dict(request.query_params)
    form = await request.form()
    params.update({key: str(value) for key, value in form.items()})
    return params


def _response(outcome: ReconcileOutcome) -> dict[str, Any]:
    return {
        "success": True,
        "sid": outcome.sid,
        "disposition": outcome.disposition.value if outcome.disposition else None,
        "applied": bool(outcome.transition and outcome.transition.applied),
        "unknown_status": outcome.unknown_status,
    }


@router.post("/call-status")
async def call_status(
    request: Request,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
    factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    feed: ChangeFeed = Depends(get_feed),
    outbound: OutboundClient = Depends(get_outbound),
    billing: BillingClient = Depends(get_billing),
    telephony: TelephonyGateway = Depends(get_telephony),
) -> dict[str, Any]:
    """Status callback for live and predictive calls."""
    event = StatusEvent.from_call_form(await _callback_params(request))
    outcome = await LifecycleReconciler(db).handle_call_status(event)
    await db.commit()

    background_tasks.add_task(settle_outcome, factory, feed, outcome, outbound, billing, telephony)
    return _response(outcome)


@router.post("/ivr-status")
async def ivr_status(
    request: Request,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
    factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    feed: ChangeFeed = Depends(get_feed),
    outbound: OutboundClient = Depends(get_outbound),
    billing: BillingClient = Depends(get_billing),
    telephony: TelephonyGateway = Depends(get_telephony),
) -> dict[str, Any]:
    """Status callback for automated (robocall) calls.

    Same reconciliation as live calls. The scheduler then places the next
    contact because no caller pulls the queue for these campaigns.
    """
    event = StatusEvent.from_call_form(await _callback_params(request))
    outcome = await LifecycleReconciler(db).handle_call_status(event)
    await db.commit()

    background_tasks.add_task(settle_outcome, factory, feed, outcome, outbound, billing, telephony)
    return _response(outcome)


@router.post("/sms-status")
async def sms_status(
    request: Request,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
    factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    feed: ChangeFeed = Depends(get_feed),
    outbound: OutboundClient = Depends(get_outbound),
    billing: BillingClient = Depends(get_billing),
    telephony: TelephonyGateway = Depends(get_telephony),
) -> dict[str, Any]:
    """Status callback for outbound messages."""
    event = StatusEvent.from_message_form(await _callback_params(request))
    outcome = await LifecycleReconciler(db).handle_message_status(event)
    await db.commit()

    background_tasks.add_task(settle_outcome, factory, feed, outcome, outbound, billing, telephony)
    return _response(outcome)
