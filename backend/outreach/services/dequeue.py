"""Dequeue selection and the conditional claim protocol.

``select_next`` is the pure ordering rule (queue head, household
continuation, household skip). ``claim_next`` applies it to the database
and claims the chosen row with a single conditional UPDATE::

    UPDATE campaign_queue SET status = :caller
    WHERE id = :id AND status = 'queued'

Only the caller whose UPDATE reports one affected row owns the contact.
Losers re-select transparently. Power and predictive dial both go through
this path, so no two callers can ever hold the same contact.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import StrEnum

import structlog
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from outreach.core.config import settings
from outreach.core.errors import ClaimConflictError
from outreach.models.campaign import Campaign, CampaignQueueItem, QueueStatus
from outreach.models.contact import Contact
from outreach.monitoring.metrics import record_claim_conflict
from outreach.services.household import household_key
from outreach.services.queue_store import QueueContact, QueueItem

logger = structlog.get_logger()


class SelectionStatus(StrEnum):
    CLAIMED = "claimed"
    EMPTY = "empty"
    CAMPAIGN_COMPLETE = "campaign_complete"


@dataclass(frozen=True)
class SelectionResult:
    """Outcome of a claim request."""

    status: SelectionStatus
    item: QueueItem | None = None
    conflicts: int = 0

    @property
    def claimed(self) -> bool:
        return self.status == SelectionStatus.CLAIMED


def select_next(
    items: Sequence[QueueItem],
    current: QueueItem | None = None,
    group_by_household: bool = False,
    skip_household: bool = False,
) -> QueueItem | None:
    """Pick the next recipient from an already sorted queue.

    Args:
        items: Candidate items in queue order.
        current: Recipient the caller just finished, if any.
        group_by_household: Prefer remaining unattempted members of the
            current recipient's household before the queue head.
        skip_household: Jump past every member of the current household.

    Returns:
        The chosen item, or None when nothing is left.
    """
    candidates = [item for item in items if current is None or item.contact_id != current.contact_id]
    if not candidates:
        return None

    current_key = household_key(current) if current is not None else None
    if current_key is None:
        return candidates[0]

    if skip_household:
        return next((item for item in candidates if household_key(item) != current_key), None)

    if group_by_household:
        mate = next(
            (
                item
                for item in candidates
                if item.attempts == 0 and household_key(item) == current_key
            ),
            None,
        )
        if mate is not None:
            return mate

    return candidates[0]


def _to_queue_item(row: CampaignQueueItem, contact: Contact) -> QueueItem:
    return QueueItem(
        id=row.id,
        campaign_id=row.campaign_id,
        contact_id=row.contact_id,
        status=row.status,
        attempts=row.attempts,
        queue_order=row.queue_order,
        contact=QueueContact(
            id=contact.id,
            phone=contact.phone,
            address=contact.address,
            firstname=contact.firstname,
            surname=contact.surname,
        ),
    )


async def load_queue(
    session: AsyncSession,
    campaign_id: int,
    statuses: Sequence[str] = (QueueStatus.QUEUED,),
    limit: int | None = None,
) -> list[QueueItem]:
    """Load dialable queue items with their contacts in queue order.

    Contacts without a phone number are filtered here so that ``limit``
    counts only rows a caller could actually dial.
    """
    stmt = (
        select(CampaignQueueItem, Contact)
        .join(Contact, Contact.id == CampaignQueueItem.contact_id)
        .where(
            CampaignQueueItem.campaign_id == campaign_id,
            CampaignQueueItem.status.in_(list(statuses)),
            Contact.phone.is_not(None),
            Contact.phone != "",
        )
        .order_by(
            CampaignQueueItem.attempts.asc(),
            CampaignQueueItem.queue_order.asc(),
            CampaignQueueItem.id.asc(),
        )
    )
    if limit is not None:
        stmt = stmt.limit(limit)
    result = await session.execute(stmt)
    return [_to_queue_item(row, contact) for row, contact in result.all()]


async def get_queue_item(session: AsyncSession, queue_id: int) -> QueueItem | None:
    """Load one queue item with its contact."""
    result = await session.execute(
        select(CampaignQueueItem, Contact)
        .join(Contact, Contact.id == CampaignQueueItem.contact_id)
        .where(CampaignQueueItem.id == queue_id)
    )
    row = result.first()
    return _to_queue_item(row[0], row[1]) if row else None


async def _load_current(
    session: AsyncSession, campaign_id: int, contact_id: int
) -> QueueItem | None:
    result = await session.execute(
        select(CampaignQueueItem, Contact)
        .join(Contact, Contact.id == CampaignQueueItem.contact_id)
        .where(
            CampaignQueueItem.campaign_id == campaign_id,
            CampaignQueueItem.contact_id == contact_id,
        )
    )
    row = result.first()
    return _to_queue_item(row[0], row[1]) if row else None


async def try_claim(session: AsyncSession, item_id: int, caller_id: str) -> bool:
    """Claim one queue row if it is still unclaimed.

    The transaction is committed immediately so the claim is visible to
    every other caller before the contact is dialed.
    """
    result = await session.execute(
        update(CampaignQueueItem)
        .where(CampaignQueueItem.id == item_id, CampaignQueueItem.status == QueueStatus.QUEUED)
        .values(status=caller_id)
        .execution_options(synchronize_session=False)
    )
    await session.commit()
    return result.rowcount == 1


async def claim_next(
    session: AsyncSession,
    campaign: Campaign,
    caller_id: str,
    current_contact_id: int | None = None,
    skip_household: bool = False,
) -> SelectionResult:
    """Select and atomically claim the next contact for a caller.

    Args:
        session: Database session. Commits after each claim attempt.
        campaign: Campaign being dialed.
        caller_id: Caller (user id, or the automation owner) claiming.
        current_contact_id: Contact the caller just finished, used for
            household continuation.
        skip_household: Skip the rest of the current household.

    Returns:
        SelectionResult with the claimed item, EMPTY when nothing is
        queued, or CAMPAIGN_COMPLETE when the campaign may not dial.

    Raises:
        ClaimConflictError: If every round of candidates was claimed by
            other callers first.
    """
    log = logger.bind(campaign_id=campaign.id, caller_id=caller_id)

    if not campaign.is_active or campaign.has_ended():
        log.info("claim_refused_campaign_inactive", is_active=campaign.is_active)
        return SelectionResult(SelectionStatus.CAMPAIGN_COMPLETE)

    current = None
    if current_contact_id is not None:
        current = await _load_current(session, campaign.id, current_contact_id)

    needs_full_queue = current is not None and (campaign.group_household_queue or skip_household)
    batch = None if needs_full_queue else settings.CLAIM_MAX_RETRIES + 1

    conflicts = 0
    for round_number in range(settings.CLAIM_MAX_RETRIES):
        candidates = [
            item
            for item in await load_queue(session, campaign.id, limit=batch)
            if item.is_dialable
        ]
        if not candidates:
            log.info("claim_queue_empty", conflicts=conflicts)
            return SelectionResult(SelectionStatus.EMPTY, conflicts=conflicts)

        while candidates:
            choice = select_next(
                candidates,
                current=current,
                group_by_household=campaign.group_household_queue,
                skip_household=skip_household,
            )
            if choice is None:
                log.info("claim_queue_empty", conflicts=conflicts)
                return SelectionResult(SelectionStatus.EMPTY, conflicts=conflicts)
            if await try_claim(session, choice.id, caller_id):
                claimed = QueueItem(
                    id=choice.id,
                    campaign_id=choice.campaign_id,
                    contact_id=choice.contact_id,
                    status=caller_id,
                    attempts=choice.attempts,
                    queue_order=choice.queue_order,
                    contact=choice.contact,
                )
                log.info(
                    "contact_claimed",
                    queue_id=choice.id,
                    contact_id=choice.contact_id,
                    conflicts=conflicts,
                )
                return SelectionResult(SelectionStatus.CLAIMED, claimed, conflicts)

            conflicts += 1
            record_claim_conflict(str(campaign.id))
            log.debug("claim_conflict", queue_id=choice.id, round=round_number)
            candidates = [item for item in candidates if item.id != choice.id]

    log.warning("claim_conflict_exhausted", conflicts=conflicts)
    raise ClaimConflictError(f"Could not claim a contact after {conflicts} conflicts")


async def release_claims(session: AsyncSession, campaign_id: int, caller_id: str) -> int:
    """Return every item still checked out by a caller to the queue."""
    result = await session.execute(
        update(CampaignQueueItem)
        .where(
            CampaignQueueItem.campaign_id == campaign_id,
            CampaignQueueItem.status == caller_id,
        )
        .values(status=QueueStatus.QUEUED)
        .execution_options(synchronize_session=False)
    )
    released = result.rowcount or 0
    if released:
        logger.info("claims_released", campaign_id=campaign_id, caller_id=caller_id, count=released)
    return released


async def dequeue_contact(
    session: AsyncSession,
    queue_id: int,
    caller_id: str,
    reason: str = "dialed",
) -> bool:
    """Mark a claimed item as dialed and count the attempt."""
    result = await session.execute(
        update(CampaignQueueItem)
        .where(
            CampaignQueueItem.id == queue_id,
            CampaignQueueItem.status.in_([caller_id, QueueStatus.QUEUED]),
        )
        .values(
            status=QueueStatus.DEQUEUED,
            dequeued_by=caller_id,
            dequeued_reason=reason,
            dequeued_at=datetime.now(UTC),
            attempts=CampaignQueueItem.attempts + 1,
        )
        .execution_options(synchronize_session=False)
    )
    dequeued = result.rowcount == 1
    logger.info("contact_dequeued", queue_id=queue_id, caller_id=caller_id, reason=reason, applied=dequeued)
    return dequeued


async def complete_item(session: AsyncSession, campaign_id: int, contact_id: int) -> int | None:
    """Mark a dequeued item completed once its attempt concluded.

    Returns:
        The queue item id, or None when no dequeued item matched.
    """
    found = await session.execute(
        select(CampaignQueueItem.id).where(
            CampaignQueueItem.campaign_id == campaign_id,
            CampaignQueueItem.contact_id == contact_id,
        )
    )
    queue_id = found.scalar_one_or_none()
    if queue_id is None:
        return None
    result = await session.execute(
        update(CampaignQueueItem)
        .where(
            CampaignQueueItem.id == queue_id,
            CampaignQueueItem.status == QueueStatus.DEQUEUED,
        )
        .values(status=QueueStatus.COMPLETED)
        .execution_options(synchronize_session=False)
    )
    return queue_id if result.rowcount == 1 else None


async def cancel_queued(session: AsyncSession, campaign_id: int) -> int:
    """Cancel all still-queued items of a campaign."""
    result = await session.execute(
        update(CampaignQueueItem)
        .where(
            CampaignQueueItem.campaign_id == campaign_id,
            CampaignQueueItem.status == QueueStatus.QUEUED,
        )
        .values(status=QueueStatus.CANCELLED)
        .execution_options(synchronize_session=False)
    )
    cancelled = result.rowcount or 0
    logger.info("queued_items_cancelled", campaign_id=campaign_id, count=cancelled)
    return cancelled


async def count_queued(session: AsyncSession, campaign_id: int) -> int:
    result = await session.execute(
        select(func.count())
        .select_from(CampaignQueueItem)
        .where(
            CampaignQueueItem.campaign_id == campaign_id,
            CampaignQueueItem.status == QueueStatus.QUEUED,
        )
    )
    return int(result.scalar_one())


__all__ = [
    "SelectionResult",
    "SelectionStatus",
    "cancel_queued",
    "claim_next",
    "complete_item",
    "count_queued",
    "dequeue_contact",
    "get_queue_item",
    "load_queue",
    "release_claims",
    "select_next",
    "try_claim",
]
