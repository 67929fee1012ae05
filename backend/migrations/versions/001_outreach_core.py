"""Create outreach core tables.

Revision ID: 001_outreach_core
Revises:
Create Date: 2026-10-19
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001_outreach_core"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _timestamps(updated: bool = True) -> list[sa.Column]:
    columns = [
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        )
    ]
    if updated:
        columns.append(
            sa.Column(
                "updated_at",
                sa.DateTime(timezone=True),
                nullable=False,
                server_default=sa.text("now()"),
            )
        )
    return columns


def upgrade() -> None:
    """Create workspaces, contacts, scripts, campaigns, queue, attempts, calls, messages and debits."""
    op.create_table(
        "workspaces",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("name", sa.String(200), nullable=False, comment="Workspace name"),
        *_timestamps(updated=False),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "contacts",
        sa.Column("id", sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column("workspace_id", sa.Uuid(), nullable=False),
        sa.Column("firstname", sa.String(100), nullable=True),
        sa.Column("surname", sa.String(100), nullable=True),
        sa.Column("phone", sa.String(50), nullable=True, comment="Dialable number (E.164)"),
        sa.Column(
            "address",
            sa.Text(),
            nullable=True,
            comment="Street address used for household grouping",
        ),
        sa.Column("city", sa.String(100), nullable=True),
        sa.Column("external_id", sa.String(100), nullable=True),
        *_timestamps(updated=False),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["workspace_id"], ["workspaces.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_contacts_workspace_id", "contacts", ["workspace_id"])

    op.create_table(
        "scripts",
        sa.Column("id", sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column("workspace_id", sa.Uuid(), nullable=False),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("steps", sa.JSON(), nullable=False, comment="Page/block graph"),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["workspace_id"], ["workspaces.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_scripts_workspace_id", "scripts", ["workspace_id"])

    op.create_table(
        "campaigns",
        sa.Column("id", sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column("workspace_id", sa.Uuid(), nullable=False),
        sa.Column("title", sa.String(255), nullable=False, comment="Campaign name"),
        sa.Column(
            "type",
            sa.String(20),
            nullable=False,
            server_default="live_call",
            comment="live_call, robocall or message",
        ),
        sa.Column(
            "dial_type",
            sa.String(20),
            nullable=False,
            server_default="call",
            comment="call (power) or predictive",
        ),
        sa.Column(
            "status",
            sa.String(20),
            nullable=False,
            server_default="draft",
            comment="draft, running, paused or complete",
        ),
        sa.Column(
            "is_active",
            sa.Boolean(),
            nullable=False,
            server_default=sa.false(),
            comment="Dialing allowed",
        ),
        sa.Column(
            "group_household_queue",
            sa.Boolean(),
            nullable=False,
            server_default=sa.false(),
            comment="Dial households together",
        ),
        sa.Column(
            "caller_id",
            sa.String(50),
            nullable=False,
            comment="Number calls and messages are sent from",
        ),
        sa.Column(
            "voicemail_file",
            sa.String(500),
            nullable=True,
            comment="Stored audio left on answering machines",
        ),
        sa.Column(
            "body_text",
            sa.String(1600),
            nullable=True,
            comment="Message body for message campaigns",
        ),
        sa.Column("script_id", sa.BigInteger(), nullable=True),
        sa.Column("start_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("end_date", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["workspace_id"], ["workspaces.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["script_id"], ["scripts.id"], ondelete="SET NULL"),
    )
    op.create_index("ix_campaigns_workspace_id", "campaigns", ["workspace_id"])
    op.create_index("ix_campaigns_status", "campaigns", ["status"])

    op.create_table(
        "campaign_queue",
        sa.Column("id", sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column("campaign_id", sa.BigInteger(), nullable=False),
        sa.Column("contact_id", sa.BigInteger(), nullable=False),
        sa.Column(
            "status",
            sa.String(64),
            nullable=False,
            server_default="queued",
            comment="queued, claiming caller id, dequeued, completed or cancelled",
        ),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("queue_order", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("dequeued_by", sa.String(64), nullable=True),
        sa.Column("dequeued_reason", sa.String(100), nullable=True),
        sa.Column("dequeued_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(updated=False),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["campaign_id"], ["campaigns.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["contact_id"], ["contacts.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("campaign_id", "contact_id", name="uq_campaign_queue_contact"),
    )
    op.create_index("ix_campaign_queue_campaign_id", "campaign_queue", ["campaign_id"])
    op.create_index("ix_campaign_queue_contact_id", "campaign_queue", ["contact_id"])
    op.create_index("ix_campaign_queue_status", "campaign_queue", ["status"])
    op.create_index(
        "ix_campaign_queue_selection",
        "campaign_queue",
        ["campaign_id", "status", "attempts", "queue_order"],
    )

    op.create_table(
        "outreach_attempts",
        sa.Column("id", sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column("campaign_id", sa.BigInteger(), nullable=False),
        sa.Column("contact_id", sa.BigInteger(), nullable=False),
        sa.Column("workspace_id", sa.Uuid(), nullable=False),
        sa.Column(
            "user_id",
            sa.String(64),
            nullable=False,
            comment="Caller that owns the attempt",
        ),
        sa.Column(
            "disposition",
            sa.String(32),
            nullable=True,
            comment="Current or terminal outcome",
        ),
        sa.Column(
            "result",
            sa.JSON(),
            nullable=False,
            comment="IVR answers keyed by page then block",
        ),
        sa.Column("answered_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("ended_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(updated=False),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["campaign_id"], ["campaigns.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["contact_id"], ["contacts.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["workspace_id"], ["workspaces.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_outreach_attempts_campaign_id", "outreach_attempts", ["campaign_id"])
    op.create_index("ix_outreach_attempts_contact_id", "outreach_attempts", ["contact_id"])
    op.create_index("ix_outreach_attempts_user_id", "outreach_attempts", ["user_id"])
    op.create_index("ix_outreach_attempts_disposition", "outreach_attempts", ["disposition"])

    op.create_table(
        "calls",
        sa.Column("id", sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column("sid", sa.String(64), nullable=False, comment="Provider call id"),
        sa.Column("parent_call_sid", sa.String(64), nullable=True),
        sa.Column("attempt_id", sa.BigInteger(), nullable=True),
        sa.Column("campaign_id", sa.BigInteger(), nullable=True),
        sa.Column("contact_id", sa.BigInteger(), nullable=True),
        sa.Column("queue_id", sa.BigInteger(), nullable=True),
        sa.Column("workspace_id", sa.Uuid(), nullable=True),
        sa.Column("direction", sa.String(32), nullable=True),
        sa.Column("from_number", sa.String(50), nullable=True),
        sa.Column("to_number", sa.String(50), nullable=True),
        sa.Column("status", sa.String(32), nullable=True, comment="Provider status vocabulary"),
        sa.Column("answered_by", sa.String(32), nullable=True),
        sa.Column(
            "is_last",
            sa.Boolean(),
            nullable=False,
            server_default=sa.false(),
            comment="Final call of the campaign queue",
        ),
        sa.Column("start_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("end_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("duration", sa.Integer(), nullable=True),
        sa.Column("call_duration", sa.Integer(), nullable=True),
        sa.Column("recording_sid", sa.String(64), nullable=True),
        sa.Column("recording_url", sa.Text(), nullable=True),
        sa.Column("recording_duration", sa.Integer(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("sid", name="uq_calls_sid"),
        sa.ForeignKeyConstraint(["attempt_id"], ["outreach_attempts.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["campaign_id"], ["campaigns.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["contact_id"], ["contacts.id"], ondelete="SET NULL"),
    )
    op.create_index("ix_calls_parent_call_sid", "calls", ["parent_call_sid"])
    op.create_index("ix_calls_attempt_id", "calls", ["attempt_id"])
    op.create_index("ix_calls_campaign_id", "calls", ["campaign_id"])

    op.create_table(
        "messages",
        sa.Column("id", sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column("sid", sa.String(64), nullable=False, comment="Provider message id"),
        sa.Column("attempt_id", sa.BigInteger(), nullable=True),
        sa.Column("campaign_id", sa.BigInteger(), nullable=True),
        sa.Column("contact_id", sa.BigInteger(), nullable=True),
        sa.Column("workspace_id", sa.Uuid(), nullable=True),
        sa.Column("from_number", sa.String(50), nullable=True),
        sa.Column("to_number", sa.String(50), nullable=True),
        sa.Column("body", sa.Text(), nullable=True),
        sa.Column("status", sa.String(32), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("sid", name="uq_messages_sid"),
        sa.ForeignKeyConstraint(["attempt_id"], ["outreach_attempts.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["campaign_id"], ["campaigns.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["contact_id"], ["contacts.id"], ondelete="SET NULL"),
    )
    op.create_index("ix_messages_attempt_id", "messages", ["attempt_id"])
    op.create_index("ix_messages_campaign_id", "messages", ["campaign_id"])

    op.create_table(
        "billing_debits",
        sa.Column("id", sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column("kind", sa.String(16), nullable=False, comment="call or message"),
        sa.Column("sid", sa.String(64), nullable=False),
        sa.Column("workspace_id", sa.Uuid(), nullable=False),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("note", sa.Text(), nullable=False),
        *_timestamps(updated=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("kind", "sid", name="uq_billing_debits_kind_sid"),
    )
    op.create_index("ix_billing_debits_workspace_id", "billing_debits", ["workspace_id"])


def downgrade() -> None:
    """Drop outreach core tables."""
    op.drop_index("ix_billing_debits_workspace_id", "billing_debits")
    op.drop_table("billing_debits")
    op.drop_index("ix_messages_campaign_id", "messages")
    op.drop_index("ix_messages_attempt_id", "messages")
    op.drop_table("messages")
    op.drop_index("ix_calls_campaign_id", "calls")
    op.drop_index("ix_calls_attempt_id", "calls")
    op.drop_index("ix_calls_parent_call_sid", "calls")
    op.drop_table("calls")
    op.drop_index("ix_outreach_attempts_disposition", "outreach_attempts")
    op.drop_index("ix_outreach_attempts_user_id", "outreach_attempts")
    op.drop_index("ix_outreach_attempts_contact_id", "outreach_attempts")
    op.drop_index("ix_outreach_attempts_campaign_id", "outreach_attempts")
    op.drop_table("outreach_attempts")
    op.drop_index("ix_campaign_queue_selection", "campaign_queue")
    op.drop_index("ix_campaign_queue_status", "campaign_queue")
    op.drop_index("ix_campaign_queue_contact_id", "campaign_queue")
    op.drop_index("ix_campaign_queue_campaign_id", "campaign_queue")
    op.drop_table("campaign_queue")
    op.drop_index("ix_campaigns_status", "campaigns")
    op.drop_index("ix_campaigns_workspace_id", "campaigns")
    op.drop_table("campaigns")
    op.drop_index("ix_scripts_workspace_id", "scripts")
    op.drop_table("scripts")
    op.drop_index("ix_contacts_workspace_id", "contacts")
    op.drop_table("contacts")
    op.drop_table("workspaces")
