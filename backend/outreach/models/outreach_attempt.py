"""Outreach attempt model."""

import uuid
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import JSON, BigInteger, DateTime, ForeignKey, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from outreach.db.base import Base, BigIntPK


class OutreachAttempt(Base):
    """One engagement of a contact by a caller within a campaign.

    Attempts are append-only history. ``disposition`` only moves forward
    through the transition table in ``outreach.services.dispositions``.
    """

    __tablename__ = "outreach_attempts"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    campaign_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("campaigns.id", ondelete="CASCADE"), nullable=False, index=True
    )
    contact_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("contacts.id", ondelete="CASCADE"), nullable=False, index=True
    )
    workspace_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("workspaces.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[str] = mapped_column(
        String(64), nullable=False, index=True, comment="Caller that owns the attempt"
    )
    disposition: Mapped[str | None] = mapped_column(
        String(32), nullable=True, index=True, comment="Current or terminal outcome"
    )
    result: Mapped[dict[str, Any]] = mapped_column(
        JSON, nullable=False, default=dict, comment="IVR answers keyed by page then block"
    )

    answered_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    ended_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )

    def __repr__(self) -> str:
        return f"<OutreachAttempt(id={self.id}, contact_id={self.contact_id}, disposition={self.disposition})>"
