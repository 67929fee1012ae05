"""Billing debit guard model."""

import uuid
from datetime import UTC, datetime

from sqlalchemy import DateTime, Integer, String, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from outreach.db.base import Base, BigIntPK


class BillingDebit(Base):
    """One row per billed call or message.

    The unique ``(kind, sid)`` pair makes debit emission exactly-once: a
    second terminal callback for the same sid fails the insert and is
    not billed again.
    """

    __tablename__ = "billing_debits"
    __table_args__ = (UniqueConstraint("kind", "sid", name="uq_billing_debits_kind_sid"),)

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    kind: Mapped[str] = mapped_column(String(16), nullable=False, comment="call or message")
    sid: Mapped[str] = mapped_column(String(64), nullable=False)
    workspace_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), nullable=False, index=True)
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    note: Mapped[str] = mapped_column(Text, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )

    def __repr__(self) -> str:
        return f"<BillingDebit(kind={self.kind}, sid={self.sid}, amount={self.amount})>"
