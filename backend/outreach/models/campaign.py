"""Campaign and campaign queue models."""

import uuid
from datetime import UTC, datetime

from sqlalchemy import (
    BigInteger,
    Boolean,
    DateTime,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column

from outreach.db.base import Base, BigIntPK


class CampaignType:
    """Campaign types."""

    LIVE_CALL = "live_call"  # Human callers, power or predictive dial
    ROBOCALL = "robocall"  # Automated IVR script, no human caller
    MESSAGE = "message"  # SMS


class DialType:
    """Dial modes for live call campaigns."""

    POWER = "call"
    PREDICTIVE = "predictive"


class CampaignStatus:
    """Campaign lifecycle statuses."""

    DRAFT = "draft"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETE = "complete"


class QueueStatus:
    """Fixed queue item statuses.

    A claimed item stores the claiming caller's id as its status instead.
    """

    QUEUED = "queued"
    DEQUEUED = "dequeued"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    FIXED = frozenset({QUEUED, DEQUEUED, COMPLETED, CANCELLED})


def ensure_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes read back from the database."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=UTC)


class Campaign(Base):
    """Outbound outreach campaign."""

    __tablename__ = "campaigns"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    workspace_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("workspaces.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False, comment="Campaign name")
    type: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=CampaignType.LIVE_CALL,
        comment="live_call, robocall or message",
    )
    dial_type: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=DialType.POWER,
        comment="call (power) or predictive",
    )
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=CampaignStatus.DRAFT,
        index=True,
        comment="draft, running, paused or complete",
    )
    is_active: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, comment="Dialing allowed"
    )
    group_household_queue: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, comment="Dial households together"
    )
    caller_id: Mapped[str] = mapped_column(
        String(50), nullable=False, comment="Number calls and messages are sent from"
    )
    voicemail_file: Mapped[str | None] = mapped_column(
        String(500), nullable=True, comment="Stored audio left on answering machines"
    )
    body_text: Mapped[str | None] = mapped_column(
        String(1600), nullable=True, comment="Message body for message campaigns"
    )
    script_id: Mapped[int | None] = mapped_column(
        BigInteger, ForeignKey("scripts.id", ondelete="SET NULL"), nullable=True
    )

    start_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    end_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
    )

    @property
    def is_predictive(self) -> bool:
        return self.dial_type == DialType.PREDICTIVE

    def has_ended(self, now: datetime | None = None) -> bool:
        """Check whether the campaign end date has passed."""
        end = ensure_utc(self.end_date)
        if end is None:
            return False
        return end < (now or datetime.now(UTC))

    def __repr__(self) -> str:
        return f"<Campaign(id={self.id}, title={self.title}, status={self.status})>"


class CampaignQueueItem(Base):
    """A contact enrolled in a campaign's dialing queue.

    ``status`` is ``queued``, the id of the caller that has claimed the item,
    ``dequeued``, ``completed`` or ``cancelled``.
    """

    __tablename__ = "campaign_queue"
    __table_args__ = (UniqueConstraint("campaign_id", "contact_id", name="uq_campaign_queue_contact"),)

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    campaign_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("campaigns.id", ondelete="CASCADE"), nullable=False, index=True
    )
    contact_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("contacts.id", ondelete="CASCADE"), nullable=False, index=True
    )
    status: Mapped[str] = mapped_column(
        String(64), nullable=False, default=QueueStatus.QUEUED, index=True
    )
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    queue_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    dequeued_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    dequeued_reason: Mapped[str | None] = mapped_column(String(100), nullable=True)
    dequeued_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )

    def __repr__(self) -> str:
        return f"<CampaignQueueItem(id={self.id}, contact_id={self.contact_id}, status={self.status})>"
