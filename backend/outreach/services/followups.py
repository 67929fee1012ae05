"""Work that runs after a webhook or caller action has committed.

Each step opens its own session from the supplied factory, so a slow
billing service or dialer never holds the request's transaction open.
"""

from __future__ import annotations

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from outreach.core.config import settings
from outreach.models.campaign import Campaign, CampaignType
from outreach.services.billing import BillingClient
from outreach.services.outbound import OutboundClient
from outreach.services.realtime import ChangeFeed, emit_changes
from outreach.services.reconciler import ReconcileOutcome
from outreach.services.scheduler import SchedulerTrigger, TriggerOutcome
from outreach.services.telephony import TelephonyGateway

logger = structlog.get_logger()


def should_trigger(campaign: Campaign) -> bool:
    """Whether the system, not a caller, pulls the next contact."""
    return campaign.is_predictive or campaign.type != CampaignType.LIVE_CALL


async def publish(
    factory: async_sessionmaker[AsyncSession],
    feed: ChangeFeed,
    campaign_id: int | None,
    touched: list[tuple[str, int]],
) -> int:
    if campaign_id is None or not touched:
        return 0
    async with factory() as session:
        return await emit_changes(session, feed, campaign_id, touched)


async def trigger_next(
    factory: async_sessionmaker[AsyncSession],
    feed: ChangeFeed,
    outbound: OutboundClient,
    campaign_id: int,
    caller_id: str,
) -> TriggerOutcome | None:
    """Run the scheduler for a caller and publish what it changed."""
    async with factory() as session:
        try:
            outcome = await SchedulerTrigger(session, outbound).request_next(campaign_id, caller_id)
        except Exception:
            await session.rollback()
            logger.exception("scheduler_trigger_failed", campaign_id=campaign_id, caller_id=caller_id)
            return None
        await emit_changes(session, feed, campaign_id, outcome.touched)
    return outcome


async def settle_outcome(
    factory: async_sessionmaker[AsyncSession],
    feed: ChangeFeed,
    outcome: ReconcileOutcome,
    outbound: OutboundClient,
    billing: BillingClient,
    telephony: TelephonyGateway,
) -> None:
    """Finish a reconciled callback: debit, voicemail, fan-out and scheduling.

    Args:
        factory: Session factory for fresh sessions.
        feed: Change feed for the campaign.
        outcome: Result of the committed reconciliation.
        outbound: Dialer/messenger client for the scheduler.
        billing: Billing client for the debit.
        telephony: Provider gateway for the voicemail redirect.
    """
    log = logger.bind(sid=outcome.sid, campaign_id=outcome.campaign_id)

    if outcome.debit is not None:
        delivered = await billing.debit(outcome.debit)
        if not delivered:
            log.error("billing_debit_undelivered", amount=outcome.debit.amount, note=outcome.debit.note)

    if outcome.voicemail_twiml is not None:
        try:
            await telephony.redirect(outcome.sid, outcome.voicemail_twiml)
        except Exception:
            log.exception("voicemail_redirect_failed")

    await publish(factory, feed, outcome.campaign_id, outcome.touched)

    if not (settings.ENABLE_SCHEDULER and outcome.concluded):
        return
    if outcome.campaign_id is None or outcome.caller_id is None:
        return

    async with factory() as session:
        campaign = await session.get(Campaign, outcome.campaign_id)
        if campaign is None or not should_trigger(campaign):
            return

    await trigger_next(factory, feed, outbound, outcome.campaign_id, outcome.caller_id)


__all__ = ["publish", "settle_outcome", "should_trigger", "trigger_next"]
