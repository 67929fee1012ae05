"""Scheduler trigger: keeps predictive and automated queues moving.

Invoked after a contact is dequeued or an attempt concludes. Each request
claims the next contact, opens an attempt and hands it to the dialer or
messenger. A placement failure is recorded as a ``failed`` attempt and the
trigger immediately moves on to the following contact instead of retrying.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

import structlog
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from outreach.core.config import settings
from outreach.core.errors import ClaimConflictError, NotFoundError, PlacementError
from outreach.db.upsert import insert_ignore
from outreach.models.call import Call, Message
from outreach.models.campaign import Campaign, CampaignStatus, CampaignType
from outreach.monitoring.metrics import record_call_placed, record_placement_failure
from outreach.services import call_registry
from outreach.services.attempts import AttemptTracker
from outreach.services.dequeue import (
    SelectionStatus,
    claim_next,
    count_queued,
    dequeue_contact,
    load_queue,
)
from outreach.services.dispositions import Disposition
from outreach.services.outbound import OutboundClient, PlacementRequest
from outreach.services.queue_store import QueueItem

logger = structlog.get_logger()

_LINK_FIELDS = ("attempt_id", "campaign_id", "contact_id", "workspace_id")


class TriggerStatus(StrEnum):
    PLACED = "placed"
    FAILED = "failed"
    EMPTY = "empty"
    CAMPAIGN_COMPLETE = "campaign_complete"
    STOPPED = "stopped"
    CONFLICT = "conflict"
    EXHAUSTED = "exhausted"


@dataclass
class TriggerOutcome:
    """Result of one scheduler request."""

    status: TriggerStatus
    campaign_id: int
    caller_id: str
    sid: str | None = None
    attempt_id: int | None = None
    contact_id: int | None = None
    queue_id: int | None = None
    failures: int = 0
    touched: list[tuple[str, int]] = field(default_factory=list)

    @property
    def placed(self) -> bool:
        return self.status == TriggerStatus.PLACED


class SchedulerTrigger:
    """Selects and places the next contact for a caller."""

    def __init__(self, session: AsyncSession, outbound: OutboundClient) -> None:
        self.session = session
        self.outbound = outbound
        self.attempts = AttemptTracker(session)

    async def _fresh_campaign(self, campaign_id: int) -> Campaign:
        campaign = await self.session.get(Campaign, campaign_id, populate_existing=True)
        if campaign is None:
            raise NotFoundError(f"Campaign {campaign_id} not found")
        return campaign

    async def request_next(self, campaign_id: int, caller_id: str) -> TriggerOutcome:
        """Place the next contact of a campaign for a caller.

        Args:
            campaign_id: Campaign to dial.
            caller_id: Caller (or automation owner) the contact is assigned to.

        Returns:
            TriggerOutcome. ``EMPTY`` also marks the campaign complete.
        """
        log = logger.bind(campaign_id=campaign_id, caller_id=caller_id)
        outcome = TriggerOutcome(TriggerStatus.STOPPED, campaign_id, caller_id)

        for _ in range(settings.SCHEDULER_MAX_PLACEMENTS):
            campaign = await self._fresh_campaign(campaign_id)
            if not campaign.is_active or campaign.has_ended():
                log.info("scheduler_stopped", is_active=campaign.is_active, status=campaign.status)
                outcome.status = TriggerStatus.STOPPED
                return outcome

            try:
                selection = await claim_next(self.session, campaign, caller_id)
            except ClaimConflictError:
                log.warning("scheduler_claim_conflict")
                outcome.status = TriggerStatus.CONFLICT
                return outcome

            if selection.status == SelectionStatus.CAMPAIGN_COMPLETE:
                outcome.status = TriggerStatus.CAMPAIGN_COMPLETE
                return outcome

            if selection.status == SelectionStatus.EMPTY or selection.item is None:
                await self._complete_campaign(campaign)
                log.info("scheduler_queue_empty")
                outcome.status = TriggerStatus.EMPTY
                return outcome

            await self.place(campaign, selection.item, caller_id, outcome)
            if outcome.placed:
                return outcome

        log.warning("scheduler_failure_budget_exhausted", failures=outcome.failures)
        outcome.status = TriggerStatus.EXHAUSTED
        return outcome

    async def dial_claimed(self, campaign_id: int, caller_id: str) -> TriggerOutcome:
        """Place the contact a caller already holds, or claim one first.

        Used by power dial, where the caller previews the claimed contact
        before dialing it. A placement failure is returned to the caller
        instead of moving on.
        """
        campaign = await self._fresh_campaign(campaign_id)
        held = await load_queue(self.session, campaign_id, statuses=(caller_id,), limit=1)
        if not held:
            return await self.request_next(campaign_id, caller_id)

        outcome = TriggerOutcome(TriggerStatus.STOPPED, campaign_id, caller_id)
        if not campaign.is_active or campaign.has_ended():
            return outcome
        await self.place(campaign, held[0], caller_id, outcome)
        return outcome

    async def place(
        self,
        campaign: Campaign,
        item: QueueItem,
        caller_id: str,
        outcome: TriggerOutcome,
    ) -> None:
        """Open an attempt for a claimed item and hand it to the dialer.

        Fills ``outcome`` with PLACED or FAILED. Either way the item is
        dequeued and the transaction committed.
        """
        log = logger.bind(campaign_id=campaign.id, caller_id=caller_id)
        phone = item.contact.phone if item.contact else None
        outcome.contact_id = item.contact_id
        outcome.queue_id = item.id
        outcome.touched.append(("campaign_queue", item.id))

        is_message = campaign.type == CampaignType.MESSAGE
        attempt = await self.attempts.create_attempt(
            campaign,
            item.contact_id,
            caller_id,
            disposition=Disposition.QUEUED if is_message else Disposition.INITIATED,
        )
        outcome.attempt_id = attempt.id
        outcome.touched.append(("outreach_attempt", attempt.id))

        request = PlacementRequest(
            to=str(phone),
            from_=campaign.caller_id,
            campaign_id=campaign.id,
            workspace_id=campaign.workspace_id,
            contact_id=item.contact_id,
            queue_id=item.id,
            caller_id=caller_id,
            attempt_id=attempt.id,
            body=campaign.body_text if is_message else None,
        )
        is_last = await count_queued(self.session, campaign.id) == 0
        channel = "message" if is_message else "call"

        try:
            if is_message:
                result = await self.outbound.send_message(request)
            else:
                result = await self.outbound.place_call(request)
        except PlacementError as e:
            outcome.failures += 1
            outcome.status = TriggerStatus.FAILED
            record_placement_failure(str(campaign.id), channel)
            log.warning(
                "placement_failed_skipping_contact",
                contact_id=item.contact_id,
                attempt_id=attempt.id,
                error=e.message,
                retryable=e.retryable,
            )
            await self.attempts.apply_disposition(attempt.id, Disposition.FAILED)
            await dequeue_contact(self.session, item.id, caller_id, reason="placement_failed")
            await self.session.commit()
            return

        now = datetime.now(UTC)
        values = {
            "sid": result.sid,
            "attempt_id": attempt.id,
            "campaign_id": campaign.id,
            "contact_id": item.contact_id,
            "workspace_id": campaign.workspace_id,
            "from_number": campaign.caller_id,
            "to_number": phone,
            "created_at": now,
            "updated_at": now,
        }
        if is_message:
            model: type[Call] | type[Message] = Message
            values.update(body=campaign.body_text, status=result.status or Disposition.QUEUED.value)
        else:
            model = Call
            values.update(
                queue_id=item.id,
                direction="outbound-api",
                status=Disposition.INITIATED.value,
                is_last=is_last,
                start_time=now,
            )
        record_id = await self._record_placement(model, values)
        await dequeue_contact(self.session, item.id, caller_id, reason="dialed")
        await self.session.commit()

        if not is_message:
            outcome.touched.append(("call", record_id))
            if campaign.type == CampaignType.LIVE_CALL:
                await call_registry.register_call(
                    campaign.id, caller_id, result.sid, item.contact_id, item.id
                )

        record_call_placed(str(campaign.id), channel)
        log.info(
            "contact_placed",
            sid=result.sid,
            contact_id=item.contact_id,
            attempt_id=attempt.id,
            is_last=is_last,
        )
        outcome.status = TriggerStatus.PLACED
        outcome.sid = result.sid

    async def _record_placement(
        self, model: type[Call] | type[Message], values: dict[str, Any]
    ) -> int:
        """Insert the call/message row, or link the one a fast callback created."""
        inserted = await insert_ignore(self.session, model, values, ["sid"])
        if not inserted:
            link = {key: values[key] for key in _LINK_FIELDS if key in values}
            if model is Call:
                link.update(queue_id=values["queue_id"], is_last=values["is_last"])
            await self.session.execute(
                update(model)
                .where(model.sid == values["sid"], model.attempt_id.is_(None))
                .values(**link)
                .execution_options(synchronize_session=False)
            )
            logger.info("placement_linked_existing_record", sid=values["sid"])
        result = await self.session.execute(select(model.id).where(model.sid == values["sid"]))
        return result.scalar_one()

    async def _complete_campaign(self, campaign: Campaign) -> None:
        if campaign.status == CampaignStatus.COMPLETE:
            return
        campaign.status = CampaignStatus.COMPLETE
        await self.session.commit()
        logger.info("campaign_completed", campaign_id=campaign.id, reason="queue_empty")


__all__ = ["SchedulerTrigger", "TriggerOutcome", "TriggerStatus"]
