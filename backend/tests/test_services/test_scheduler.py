"""Tests for the scheduler trigger and post-callback follow-ups."""

from __future__ import annotations

from typing import Any

import httpx
import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from outreach.core.errors import PlacementError
from outreach.models.campaign import (
    Campaign,
    CampaignQueueItem,
    CampaignStatus,
    CampaignType,
    DialType,
    QueueStatus,
)
from outreach.models.outreach_attempt import OutreachAttempt
from outreach.services import call_registry
from outreach.services.dispositions import Disposition
from outreach.services.followups import settle_outcome, should_trigger, trigger_next
from outreach.services.outbound import OutboundClient, PlacementResult, reset_circuit_breaker
from outreach.services.realtime import ChangeFeed
from outreach.services.reconciler import LifecycleReconciler, StatusEvent
from outreach.services.scheduler import SchedulerTrigger, TriggerStatus

OWNER = "system"


async def _queue_statuses(session: AsyncSession, campaign_id: int) -> list[str]:
    result = await session.execute(
        select(CampaignQueueItem.status)
        .where(CampaignQueueItem.campaign_id == campaign_id)
        .order_by(CampaignQueueItem.queue_order)
    )
    return list(result.scalars())


class TestRequestNext:
    """Tests for SchedulerTrigger.request_next."""

    @pytest.mark.asyncio
    async def test_places_queue_head(
        self, test_session: AsyncSession, make_campaign: Any, make_queue: Any, outbound: Any
    ) -> None:
        campaign = await make_campaign()
        items = await make_queue(campaign, [{"phone": "+15551112222"}, {}])

        outcome = await SchedulerTrigger(test_session, outbound).request_next(campaign.id, OWNER)

        assert outcome.status == TriggerStatus.PLACED
        assert outcome.sid == "CA0001"
        assert outcome.queue_id == items[0].id
        request = outbound.place_call.await_args.args[0]
        assert request.to == "+15551112222"
        assert request.from_ == campaign.caller_id
        assert request.attempt_id == outcome.attempt_id
        assert await _queue_statuses(test_session, campaign.id) == [QueueStatus.DEQUEUED, QueueStatus.QUEUED]

    @pytest.mark.asyncio
    async def test_live_call_registers_active_call(
        self, test_session: AsyncSession, make_campaign: Any, make_queue: Any, outbound: Any
    ) -> None:
        campaign = await make_campaign()
        items = await make_queue(campaign, [{}])

        await SchedulerTrigger(test_session, outbound).request_next(campaign.id, "caller-1")

        active = await call_registry.get_active_call(campaign.id, "caller-1")
        assert active is not None
        assert active.call_sid == "CA0001"
        assert active.queue_id == items[0].id

    @pytest.mark.asyncio
    async def test_placement_failure_moves_to_next_contact(
        self, test_session: AsyncSession, make_campaign: Any, make_queue: Any, outbound: Any
    ) -> None:
        campaign = await make_campaign(type=CampaignType.ROBOCALL)
        items = await make_queue(campaign, [{}, {}])
        outbound.place_call.side_effect = [
            PlacementError("Placement rejected with status 400"),
            PlacementResult(sid="CA-ok"),
        ]

        outcome = await SchedulerTrigger(test_session, outbound).request_next(campaign.id, OWNER)

        assert outcome.status == TriggerStatus.PLACED
        assert outcome.failures == 1
        assert outcome.sid == "CA-ok"
        assert outcome.queue_id == items[1].id
        failed = (
            await test_session.execute(
                select(OutreachAttempt).where(OutreachAttempt.contact_id == items[0].contact_id)
            )
        ).scalar_one()
        assert failed.disposition == Disposition.FAILED
        await test_session.refresh(items[0])
        assert items[0].status == QueueStatus.DEQUEUED
        assert items[0].dequeued_reason == "placement_failed"

    @pytest.mark.asyncio
    async def test_unreadable_dialer_reply_moves_to_next_contact(
        self, test_session: AsyncSession, make_campaign: Any, make_queue: Any
    ) -> None:
        campaign = await make_campaign(type=CampaignType.ROBOCALL)
        items = await make_queue(campaign, [{}, {}])
        replies = iter([httpx.Response(200, text="OK"), httpx.Response(200, json={"sid": "CA-ok"})])
        client = OutboundClient(httpx.AsyncClient(transport=httpx.MockTransport(lambda request: next(replies))))
        reset_circuit_breaker()

        try:
            outcome = await SchedulerTrigger(test_session, client).request_next(campaign.id, OWNER)
        finally:
            await client.aclose()
            reset_circuit_breaker()

        assert outcome.status == TriggerStatus.PLACED
        assert outcome.failures == 1
        assert outcome.queue_id == items[1].id
        failed = (
            await test_session.execute(
                select(OutreachAttempt).where(OutreachAttempt.contact_id == items[0].contact_id)
            )
        ).scalar_one()
        assert failed.disposition == Disposition.FAILED
        await test_session.refresh(items[0])
        assert items[0].status == QueueStatus.DEQUEUED
        assert items[0].dequeued_reason == "placement_failed"

    @pytest.mark.asyncio
    async def test_phoneless_head_does_not_complete_campaign(
        self, test_session: AsyncSession, make_campaign: Any, make_queue: Any, outbound: Any
    ) -> None:
        campaign = await make_campaign(type=CampaignType.ROBOCALL)
        items = await make_queue(campaign, [{"phone": None}] * 8 + [{}])

        outcome = await SchedulerTrigger(test_session, outbound).request_next(campaign.id, OWNER)

        assert outcome.status == TriggerStatus.PLACED
        assert outcome.queue_id == items[-1].id
        await test_session.refresh(campaign)
        assert campaign.status != CampaignStatus.COMPLETE

    @pytest.mark.asyncio
    async def test_empty_queue_completes_campaign(
        self, test_session: AsyncSession, make_campaign: Any, outbound: Any
    ) -> None:
        campaign = await make_campaign(type=CampaignType.ROBOCALL)

        outcome = await SchedulerTrigger(test_session, outbound).request_next(campaign.id, OWNER)

        assert outcome.status == TriggerStatus.EMPTY
        await test_session.refresh(campaign)
        assert campaign.status == CampaignStatus.COMPLETE
        outbound.place_call.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_paused_campaign_stops(
        self, test_session: AsyncSession, make_campaign: Any, make_queue: Any, outbound: Any
    ) -> None:
        campaign = await make_campaign(is_active=False, status=CampaignStatus.PAUSED)
        await make_queue(campaign, [{}])

        outcome = await SchedulerTrigger(test_session, outbound).request_next(campaign.id, OWNER)

        assert outcome.status == TriggerStatus.STOPPED
        assert await _queue_statuses(test_session, campaign.id) == [QueueStatus.QUEUED]

    @pytest.mark.asyncio
    async def test_message_campaign_sends_body(
        self, test_session: AsyncSession, make_campaign: Any, make_queue: Any, outbound: Any
    ) -> None:
        campaign = await make_campaign(type=CampaignType.MESSAGE, body_text="Polls open at 7")
        await make_queue(campaign, [{}])

        outcome = await SchedulerTrigger(test_session, outbound).request_next(campaign.id, OWNER)

        assert outcome.placed
        request = outbound.send_message.await_args.args[0]
        assert request.body == "Polls open at 7"
        outbound.place_call.assert_not_awaited()
        attempt = await test_session.get(OutreachAttempt, outcome.attempt_id)
        assert attempt is not None
        assert attempt.disposition == Disposition.QUEUED


class TestDialClaimed:
    @pytest.mark.asyncio
    async def test_places_held_claim(
        self, test_session: AsyncSession, make_campaign: Any, make_queue: Any, outbound: Any
    ) -> None:
        campaign = await make_campaign()
        items = await make_queue(campaign, [{}, {"status": "caller-1"}])

        outcome = await SchedulerTrigger(test_session, outbound).dial_claimed(campaign.id, "caller-1")

        assert outcome.placed
        assert outcome.queue_id == items[1].id
        assert await _queue_statuses(test_session, campaign.id) == [QueueStatus.QUEUED, QueueStatus.DEQUEUED]

    @pytest.mark.asyncio
    async def test_claims_when_nothing_held(
        self, test_session: AsyncSession, make_campaign: Any, make_queue: Any, outbound: Any
    ) -> None:
        campaign = await make_campaign()
        items = await make_queue(campaign, [{}])

        outcome = await SchedulerTrigger(test_session, outbound).dial_claimed(campaign.id, "caller-1")

        assert outcome.placed
        assert outcome.queue_id == items[0].id


class TestShouldTrigger:
    @pytest.mark.parametrize(
        ("campaign_type", "dial_type", "expected"),
        [
            (CampaignType.LIVE_CALL, DialType.POWER, False),
            (CampaignType.LIVE_CALL, DialType.PREDICTIVE, True),
            (CampaignType.ROBOCALL, DialType.POWER, True),
            (CampaignType.MESSAGE, DialType.POWER, True),
        ],
    )
    def test_should_trigger(self, campaign_type: str, dial_type: str, expected: bool) -> None:
        assert should_trigger(Campaign(type=campaign_type, dial_type=dial_type)) is expected


class TestAutomatedCampaignRun:
    """A robocall campaign drains its queue one concluded call at a time."""

    @pytest.mark.asyncio
    async def test_campaign_runs_to_completion(
        self,
        test_session: AsyncSession,
        session_factory: async_sessionmaker[AsyncSession],
        test_redis: Any,
        make_campaign: Any,
        make_queue: Any,
        outbound: Any,
        billing: Any,
        telephony: Any,
    ) -> None:
        campaign = await make_campaign(type=CampaignType.ROBOCALL)
        await make_queue(campaign, [{}, {}, {}])
        feed = ChangeFeed(test_redis)

        first = await trigger_next(session_factory, feed, outbound, campaign.id, OWNER)
        assert first is not None and first.placed

        for n in range(1, 4):
            async with session_factory() as session:
                outcome = await LifecycleReconciler(session).handle_call_status(
                    StatusEvent.from_call_form({"CallSid": f"CA{n:04d}", "CallStatus": "completed"})
                )
                await session.commit()
            assert outcome.concluded
            await settle_outcome(session_factory, feed, outcome, outbound, billing, telephony)

        assert outbound.place_call.await_count == 3
        assert billing.debit.await_count == 3
        await test_session.refresh(campaign)
        assert campaign.status == CampaignStatus.COMPLETE
        assert await _queue_statuses(test_session, campaign.id) == [QueueStatus.COMPLETED] * 3

    @pytest.mark.asyncio
    async def test_power_dial_waits_for_caller(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        test_redis: Any,
        make_campaign: Any,
        make_queue: Any,
        outbound: Any,
        billing: Any,
        telephony: Any,
    ) -> None:
        campaign = await make_campaign()
        await make_queue(campaign, [{}, {}])
        feed = ChangeFeed(test_redis)

        async with session_factory() as session:
            await SchedulerTrigger(session, outbound).request_next(campaign.id, "caller-1")
            outcome = await LifecycleReconciler(session).handle_call_status(
                StatusEvent.from_call_form({"CallSid": "CA0001", "CallStatus": "completed"})
            )
            await session.commit()
        await settle_outcome(session_factory, feed, outcome, outbound, billing, telephony)

        assert outbound.place_call.await_count == 1


class TestSettleOutcome:
    @pytest.mark.asyncio
    async def test_failed_redirect_still_schedules_next(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        test_redis: Any,
        make_campaign: Any,
        make_queue: Any,
        outbound: Any,
        billing: Any,
        telephony: Any,
    ) -> None:
        campaign = await make_campaign(type=CampaignType.ROBOCALL)
        await make_queue(campaign, [{}, {}])
        feed = ChangeFeed(test_redis)
        telephony.redirect.side_effect = RuntimeError("provider unreachable")

        await trigger_next(session_factory, feed, outbound, campaign.id, OWNER)
        async with session_factory() as session:
            outcome = await LifecycleReconciler(session).handle_call_status(
                StatusEvent.from_call_form({"CallSid": "CA0001", "CallStatus": "completed"})
            )
            await session.commit()
        outcome.voicemail_twiml = "<Response><Hangup/></Response>"

        await settle_outcome(session_factory, feed, outcome, outbound, billing, telephony)

        telephony.redirect.assert_awaited_once()
        billing.debit.assert_awaited_once()
        assert outbound.place_call.await_count == 2
