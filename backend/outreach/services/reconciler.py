"""Call and message lifecycle reconciler.

Consumes provider status callbacks, which may arrive late, duplicated or
out of order. Every callback:

1. upserts the Call/Message row keyed by provider sid, omitting fields the
   callback did not carry,
2. normalizes the provider status and forwards it to the attempt tracker
   when the call is linked to an attempt,
3. cancels still-queued items once the campaign end date has passed,
4. emits one ledger debit per billable sid (guarded by ``billing_debits``).

Slow follow-up work (the debit request, the voicemail redirect, selecting
the next contact) is returned to the caller in ``ReconcileOutcome`` so the
webhook can be acknowledged first.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, TypeVar

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from outreach.core.errors import InvalidInputError
from outreach.db.upsert import insert_ignore
from outreach.models.billing import BillingDebit
from outreach.models.call import Call, Message
from outreach.models.campaign import Campaign, CampaignStatus
from outreach.models.outreach_attempt import OutreachAttempt
from outreach.models.script import Script as ScriptRecord
from outreach.services.attempts import AttemptTracker, TransitionResult
from outreach.services.billing import (
    DebitRequest,
    call_debit_note,
    call_units,
    message_debit_note,
)
from outreach.services.dequeue import cancel_queued, complete_item
from outreach.services.dispositions import (
    CALL_BILLABLE,
    MESSAGE_BILLABLE,
    TERMINAL,
    Disposition,
    can_transition,
    normalize_provider_status,
    parse_disposition,
)
from outreach.services.ivr.script import parse_script
from outreach.services.ivr.twiml import render_voicemail

logger = structlog.get_logger()

RecordT = TypeVar("RecordT", Call, Message)

# Fields a terminal call may still receive
_LATE_CALL_FIELDS = frozenset(
    {"duration", "call_duration", "recording_sid", "recording_url", "recording_duration"}
)


def _int_or_none(value: Any) -> int | None:
    if value in (None, ""):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def is_machine_answer(answered_by: str | None, status: str | None) -> bool:
    """Answering machine detected while the call is still live."""
    if not answered_by:
        return False
    label = answered_by.lower()
    return "machine" in label and "other" not in label and (status or "").lower() != "completed"


@dataclass(frozen=True)
class StatusEvent:
    """Normalized view of one provider status callback."""

    sid: str
    status: str | None = None
    parent_call_sid: str | None = None
    attempt_id: int | None = None
    answered_by: str | None = None
    direction: str | None = None
    from_number: str | None = None
    to_number: str | None = None
    duration: int | None = None
    call_duration: int | None = None
    recording_sid: str | None = None
    recording_url: str | None = None
    recording_duration: int | None = None
    body: str | None = None

    @classmethod
    def from_call_form(cls, form: Mapping[str, Any]) -> StatusEvent:
        """Build an event from a form-encoded call status callback.

        Raises:
            InvalidInputError: If the callback has no CallSid.
        """
        sid = form.get("CallSid")
        if not sid:
            raise InvalidInputError("CallSid is required")
        return cls(
            sid=str(sid),
            status=form.get("CallStatus"),
            parent_call_sid=form.get("ParentCallSid") or None,
            attempt_id=_int_or_none(form.get("outreach_attempt_id")),
            answered_by=form.get("AnsweredBy") or None,
            direction=form.get("Direction") or None,
            from_number=form.get("From") or None,
            to_number=form.get("To") or None,
            duration=_int_or_none(form.get("Duration")),
            call_duration=_int_or_none(form.get("CallDuration")),
            recording_sid=form.get("RecordingSid") or None,
            recording_url=form.get("RecordingUrl") or None,
            recording_duration=_int_or_none(form.get("RecordingDuration")),
        )

    @classmethod
    def from_message_form(cls, form: Mapping[str, Any]) -> StatusEvent:
        """Build an event from a form-encoded message status callback.

        Raises:
            InvalidInputError: If the callback has no MessageSid.
        """
        sid = form.get("MessageSid") or form.get("SmsSid")
        if not sid:
            raise InvalidInputError("MessageSid is required")
        return cls(
            sid=str(sid),
            status=form.get("MessageStatus") or form.get("SmsStatus"),
            attempt_id=_int_or_none(form.get("outreach_attempt_id")),
            from_number=form.get("From") or None,
            to_number=form.get("To") or None,
            body=form.get("Body") or None,
        )

    def call_fields(self) -> dict[str, Any]:
        """Call columns carried by this event, without the missing ones."""
        fields = {
            "parent_call_sid": self.parent_call_sid,
            "answered_by": self.answered_by,
            "direction": self.direction,
            "from_number": self.from_number,
            "to_number": self.to_number,
            "duration": self.duration,
            "call_duration": self.call_duration,
            "recording_sid": self.recording_sid,
            "recording_url": self.recording_url,
            "recording_duration": self.recording_duration,
        }
        return {key: value for key, value in fields.items() if value is not None}


@dataclass
class ReconcileOutcome:
    """What a callback changed and what the webhook must do next."""

    sid: str
    disposition: Disposition | None = None
    unknown_status: bool = False
    attempt_id: int | None = None
    campaign_id: int | None = None
    caller_id: str | None = None
    transition: TransitionResult | None = None
    debit: DebitRequest | None = None
    voicemail: bool = False
    voicemail_twiml: str | None = None
    campaign_completed: bool = False
    cancelled: int = 0
    touched: list[tuple[str, int]] = field(default_factory=list)

    @property
    def concluded(self) -> bool:
        """True when this callback moved the attempt into a terminal state."""
        return self.transition is not None and self.transition.concluded


class LifecycleReconciler:
    """Applies provider status callbacks to calls, messages and attempts."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session
        self.attempts = AttemptTracker(session)

    async def _get_or_create(self, model: type[RecordT], sid: str) -> RecordT:
        await insert_ignore(
            self.session,
            model,
            {"sid": sid, "created_at": datetime.now(UTC), "updated_at": datetime.now(UTC)},
            ["sid"],
        )
        result = await self.session.execute(
            select(model).where(model.sid == sid).execution_options(populate_existing=True)
        )
        return result.scalar_one()

    async def _link_parent(self, call: Call) -> None:
        if call.attempt_id is not None or not call.parent_call_sid:
            return
        result = await self.session.execute(select(Call).where(Call.sid == call.parent_call_sid))
        parent = result.scalar_one_or_none()
        if parent is None or parent.attempt_id is None:
            return
        call.attempt_id = parent.attempt_id
        call.campaign_id = call.campaign_id or parent.campaign_id
        call.contact_id = call.contact_id or parent.contact_id
        call.workspace_id = call.workspace_id or parent.workspace_id
        logger.info("call_linked_to_parent", sid=call.sid, parent_sid=parent.sid, attempt_id=parent.attempt_id)

    async def _link_attempt(self, record: Call | Message, attempt_id: int | None) -> None:
        if record.attempt_id is not None or attempt_id is None:
            return
        attempt = await self.session.get(OutreachAttempt, attempt_id)
        if attempt is None:
            logger.warning("attempt_link_unknown", sid=record.sid, attempt_id=attempt_id)
            return
        record.attempt_id = attempt.id
        record.campaign_id = record.campaign_id or attempt.campaign_id
        record.contact_id = record.contact_id or attempt.contact_id
        record.workspace_id = record.workspace_id or attempt.workspace_id

    async def _conclude(self, outcome: ReconcileOutcome, record: Call | Message) -> Campaign | None:
        """Shared follow-up once the record is linked and the attempt updated."""
        campaign = None
        if record.campaign_id is not None:
            campaign = await self.session.get(Campaign, record.campaign_id)
        outcome.campaign_id = record.campaign_id

        if outcome.concluded and record.campaign_id and record.contact_id:
            queue_id = await complete_item(self.session, record.campaign_id, record.contact_id)
            if queue_id is not None:
                outcome.touched.append(("campaign_queue", queue_id))

        terminal = outcome.disposition in TERMINAL
        if terminal and campaign is not None and campaign.has_ended():
            outcome.cancelled = await cancel_queued(self.session, campaign.id)
            logger.info("campaign_ended_queue_cancelled", campaign_id=campaign.id, cancelled=outcome.cancelled)
        return campaign

    async def _guard_debit(
        self, kind: str, sid: str, workspace_id: Any, amount: int, note: str
    ) -> DebitRequest | None:
        inserted = await insert_ignore(
            self.session,
            BillingDebit,
            {
                "kind": kind,
                "sid": sid,
                "workspace_id": workspace_id,
                "amount": amount,
                "note": note,
                "created_at": datetime.now(UTC),
            },
            ["kind", "sid"],
        )
        if not inserted:
            logger.info("billing_debit_already_recorded", kind=kind, sid=sid)
            return None
        return DebitRequest(workspace=workspace_id, amount=amount, note=note, kind=kind)

    async def handle_call_status(self, event: StatusEvent) -> ReconcileOutcome:
        """Apply one call status callback.

        Args:
            event: Parsed callback.

        Returns:
            ReconcileOutcome describing applied changes and follow-up work.
        """
        log = logger.bind(sid=event.sid, status=event.status)
        outcome = ReconcileOutcome(sid=event.sid)

        disposition = normalize_provider_status(event.status)
        if disposition is None and event.status:
            outcome.unknown_status = True
            log.warning("provider_status_unknown")
        outcome.disposition = disposition

        call = await self._get_or_create(Call, event.sid)
        current = parse_disposition(call.status)
        fields = event.call_fields()

        if current in TERMINAL:
            late = {key: value for key, value in fields.items() if key in _LATE_CALL_FIELDS}
            for key, value in late.items():
                setattr(call, key, value)
            if disposition is not None:
                log.info("call_status_ignored_terminal", current=current)
        else:
            for key, value in fields.items():
                setattr(call, key, value)
            if disposition is not None and can_transition(current, disposition):
                call.status = disposition.value
                if disposition == Disposition.IN_PROGRESS and call.start_time is None:
                    call.start_time = datetime.now(UTC)
                if disposition in TERMINAL:
                    call.end_time = datetime.now(UTC)
        call.updated_at = datetime.now(UTC)

        await self._link_attempt(call, event.attempt_id)
        await self._link_parent(call)
        await self.session.flush()
        outcome.touched.append(("call", call.id))

        attempt_disposition = disposition
        if is_machine_answer(event.answered_by, event.status):
            attempt_disposition = Disposition.VOICEMAIL
            outcome.voicemail = True
            log.info("answering_machine_detected", answered_by=event.answered_by)

        if call.attempt_id is not None:
            outcome.attempt_id = call.attempt_id
            attempt = await self.session.get(OutreachAttempt, call.attempt_id)
            outcome.caller_id = attempt.user_id if attempt else None
            if attempt_disposition is not None:
                outcome.transition = await self.attempts.apply_disposition(
                    call.attempt_id, attempt_disposition
                )
                if outcome.transition.applied:
                    outcome.touched.append(("outreach_attempt", call.attempt_id))

        campaign = await self._conclude(outcome, call)

        if outcome.voicemail and campaign is not None:
            outcome.voicemail_twiml = await self.voicemail_twiml(campaign)

        if disposition in CALL_BILLABLE and call.workspace_id is not None:
            outcome.debit = await self._guard_debit(
                "call",
                call.sid,
                call.workspace_id,
                call_units(call.duration, call.call_duration),
                call_debit_note(call.sid, call.contact_id, call.attempt_id),
            )

        if call.is_last and disposition in TERMINAL and campaign is not None:
            if campaign.status != CampaignStatus.COMPLETE:
                campaign.status = CampaignStatus.COMPLETE
                outcome.campaign_completed = True
                log.info("campaign_completed", campaign_id=campaign.id, reason="last_call")

        await self.session.flush()
        log.info(
            "call_status_reconciled",
            attempt_id=outcome.attempt_id,
            applied=bool(outcome.transition and outcome.transition.applied),
            debit=outcome.debit is not None,
        )
        return outcome

    async def handle_message_status(self, event: StatusEvent) -> ReconcileOutcome:
        """Apply one message status callback."""
        log = logger.bind(sid=event.sid, status=event.status)
        outcome = ReconcileOutcome(sid=event.sid)

        disposition = normalize_provider_status(event.status)
        if disposition is None and event.status:
            outcome.unknown_status = True
            log.warning("provider_status_unknown")
        outcome.disposition = disposition

        message = await self._get_or_create(Message, event.sid)
        current = parse_disposition(message.status)
        if event.from_number:
            message.from_number = event.from_number
        if event.to_number:
            message.to_number = event.to_number
        if event.body:
            message.body = event.body
        if disposition is not None and can_transition(current, disposition):
            message.status = disposition.value
        elif disposition is not None:
            log.info("message_status_ignored", current=current)
        message.updated_at = datetime.now(UTC)

        await self._link_attempt(message, event.attempt_id)
        await self.session.flush()

        if message.attempt_id is not None:
            outcome.attempt_id = message.attempt_id
            attempt = await self.session.get(OutreachAttempt, message.attempt_id)
            outcome.caller_id = attempt.user_id if attempt else None
            if disposition is not None:
                outcome.transition = await self.attempts.apply_disposition(
                    message.attempt_id, disposition
                )
                if outcome.transition.applied:
                    outcome.touched.append(("outreach_attempt", message.attempt_id))

        await self._conclude(outcome, message)

        if disposition in MESSAGE_BILLABLE and message.workspace_id is not None:
            outcome.debit = await self._guard_debit(
                "message",
                message.sid,
                message.workspace_id,
                1,
                message_debit_note(message.sid, message.contact_id, message.attempt_id),
            )

        await self.session.flush()
        log.info("message_status_reconciled", attempt_id=outcome.attempt_id, debit=outcome.debit is not None)
        return outcome

    async def voicemail_twiml(self, campaign: Campaign) -> str:
        """TwiML for the voicemail branch of a campaign's script."""
        page = None
        if campaign.script_id is not None:
            record = await self.session.get(ScriptRecord, campaign.script_id)
            if record is not None and record.steps:
                found = parse_script(record.steps).find_page_by_title("voicemail")
                page = found[1] if found else None
        return str(render_voicemail(page, campaign.voicemail_file, campaign.workspace_id))


__all__ = [
    "LifecycleReconciler",
    "ReconcileOutcome",
    "StatusEvent",
    "is_machine_answer",
]
