"""Attempt tracker: outreach attempt records and their disposition.

Disposition changes are written with a conditional UPDATE whose WHERE
clause only matches stored dispositions that may legally precede the new
one. Two webhooks racing on the same attempt therefore cannot both win,
and a late callback can never overwrite a terminal outcome.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

import structlog
from sqlalchemy import func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from outreach.core.errors import NotFoundError
from outreach.models.campaign import Campaign
from outreach.models.outreach_attempt import OutreachAttempt
from outreach.monitoring.metrics import record_disposition
from outreach.services.dispositions import (
    ANSWERED,
    IN_FLIGHT,
    TERMINAL,
    Disposition,
    can_transition,
    parse_disposition,
    predecessors,
)

logger = structlog.get_logger()


@dataclass(frozen=True)
class TransitionResult:
    """Outcome of a disposition update."""

    attempt_id: int
    disposition: Disposition
    previous: Disposition | None
    applied: bool

    @property
    def concluded(self) -> bool:
        """True when this update moved the attempt into a terminal state."""
        return self.applied and self.disposition in TERMINAL


def merge_block_result(
    result: dict[str, Any] | None,
    page_id: str,
    block_key: str,
    value: Any,
) -> dict[str, Any]:
    """Merge one IVR answer into an attempt result.

    Other pages and other blocks of the same page are preserved.

    Args:
        result: Existing result map, may be None.
        page_id: Page the block belongs to.
        block_key: Block title, or the block id when it has no title.
        value: Caller input.

    Returns:
        A new result dict, the input is not modified.
    """
    current = dict(result or {})
    page = dict(current.get(page_id) or {})
    page[block_key] = value
    current[page_id] = page
    return current


class AttemptTracker:
    """Creates attempts and moves them through the disposition table."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, attempt_id: int) -> OutreachAttempt:
        attempt = await self.session.get(OutreachAttempt, attempt_id)
        if attempt is None:
            raise NotFoundError(f"Outreach attempt {attempt_id} not found")
        return attempt

    async def current_attempt(
        self, campaign_id: int, contact_id: int, caller_id: str
    ) -> OutreachAttempt | None:
        """Return the in-flight attempt for an engagement, if any."""
        in_flight = [state.value for state in IN_FLIGHT]
        result = await self.session.execute(
            select(OutreachAttempt)
            .where(
                OutreachAttempt.campaign_id == campaign_id,
                OutreachAttempt.contact_id == contact_id,
                OutreachAttempt.user_id == caller_id,
                or_(
                    OutreachAttempt.disposition.is_(None),
                    OutreachAttempt.disposition.in_(in_flight),
                ),
            )
            .order_by(OutreachAttempt.id.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def create_attempt(
        self,
        campaign: Campaign,
        contact_id: int,
        caller_id: str,
        disposition: Disposition | None = Disposition.INITIATED,
    ) -> OutreachAttempt:
        """Start an engagement, reusing the one still in flight.

        Args:
            campaign: Campaign the contact was claimed from.
            contact_id: Claimed contact.
            caller_id: Caller that owns the engagement.
            disposition: Initial disposition for a new attempt.

        Returns:
            The current attempt for (campaign, contact, caller).
        """
        existing = await self.current_attempt(campaign.id, contact_id, caller_id)
        if existing is not None:
            logger.info(
                "attempt_reused",
                attempt_id=existing.id,
                campaign_id=campaign.id,
                contact_id=contact_id,
            )
            return existing

        attempt = OutreachAttempt(
            campaign_id=campaign.id,
            contact_id=contact_id,
            workspace_id=campaign.workspace_id,
            user_id=caller_id,
            disposition=disposition.value if disposition else None,
            result={},
        )
        self.session.add(attempt)
        await self.session.flush()
        logger.info(
            "attempt_created",
            attempt_id=attempt.id,
            campaign_id=campaign.id,
            contact_id=contact_id,
            caller_id=caller_id,
        )
        return attempt

    async def apply_disposition(
        self,
        attempt_id: int,
        disposition: Disposition,
        at: datetime | None = None,
    ) -> TransitionResult:
        """Move an attempt to a new disposition if the table allows it.

        ``answered_at`` and ``ended_at`` are only ever filled once. A
        rejected update is logged and reported, never raised.
        """
        now = at or datetime.now(UTC)
        stored = await self.session.execute(
            select(OutreachAttempt.disposition).where(OutreachAttempt.id == attempt_id)
        )
        row = stored.first()
        if row is None:
            raise NotFoundError(f"Outreach attempt {attempt_id} not found")
        previous = parse_disposition(row[0])

        if not can_transition(previous, disposition):
            logger.info(
                "disposition_transition_ignored",
                attempt_id=attempt_id,
                current=previous,
                requested=disposition,
            )
            record_disposition(disposition.value, applied=False)
            return TransitionResult(attempt_id, disposition, previous, applied=False)

        values: dict[str, Any] = {"disposition": disposition.value}
        if disposition in ANSWERED:
            values["answered_at"] = func.coalesce(OutreachAttempt.answered_at, now)
        if disposition in TERMINAL:
            values["ended_at"] = func.coalesce(OutreachAttempt.ended_at, now)

        allowed = [state.value for state in predecessors(disposition)]
        result = await self.session.execute(
            update(OutreachAttempt)
            .where(
                OutreachAttempt.id == attempt_id,
                or_(
                    OutreachAttempt.disposition.is_(None),
                    OutreachAttempt.disposition.in_(allowed),
                ),
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        applied = result.rowcount == 1
        record_disposition(disposition.value, applied=applied)

        if applied:
            logger.info(
                "disposition_applied",
                attempt_id=attempt_id,
                previous=previous,
                disposition=disposition,
            )
        else:
            logger.info(
                "disposition_transition_ignored",
                attempt_id=attempt_id,
                current=previous,
                requested=disposition,
                reason="concurrent_update",
            )
        return TransitionResult(attempt_id, disposition, previous, applied)

    async def record_answer(
        self,
        attempt_id: int,
        page_id: str,
        block_key: str,
        value: Any,
    ) -> dict[str, Any]:
        """Store one IVR answer in the attempt result."""
        attempt = await self.get(attempt_id)
        attempt.result = merge_block_result(attempt.result, page_id, block_key, value)
        await self.session.flush()
        logger.debug("attempt_result_updated", attempt_id=attempt_id, page_id=page_id, block=block_key)
        return attempt.result


__all__ = ["AttemptTracker", "TransitionResult", "merge_block_result"]
