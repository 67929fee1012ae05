"""IVR script model."""

import uuid
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import JSON, DateTime, ForeignKey, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from outreach.db.base import Base, BigIntPK


class Script(Base):
    """Persisted IVR script document.

    ``steps`` holds the raw ``{"pages": {...}, "blocks": {...}}`` graph. It is
    parsed and validated by ``outreach.services.ivr`` before use.
    """

    __tablename__ = "scripts"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    workspace_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("workspaces.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    steps: Mapped[dict[str, Any]] = mapped_column(
        JSON, nullable=False, default=dict, comment="Page/block graph"
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
    )

    def __repr__(self) -> str:
        return f"<Script(id={self.id}, name={self.name})>"
