"""Create users, support_tickets and chat_messages tables.

Revision ID: 001_chat_tables
Revises:
Create Date: 2026-10-19

Rollback: alembic downgrade -1
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision = "001_chat_tables"
down_revision = None
branch_labels = None
depends_on = None

_UUID = postgresql.UUID(as_uuid=False)
_NOW = sa.text("now()")
_GEN_UUID = sa.text("gen_random_uuid()")


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("email", sa.String(320), nullable=False),
        sa.Column("display_name", sa.String(255), nullable=True),
        sa.Column("is_admin", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=_NOW),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    op.create_table(
        "support_tickets",
        sa.Column("id", _UUID, primary_key=True, server_default=_GEN_UUID),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("priority", sa.String(16), nullable=False, server_default="medium"),
        sa.Column(
            "status",
            sa.String(16),
            nullable=False,
            server_default="open",
            comment="open | resolved (terminal)",
        ),
        sa.Column("opened_at", sa.DateTime(timezone=True), nullable=False, server_default=_NOW),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint("status IN ('open', 'resolved')", name="ck_support_tickets_status"),
        sa.CheckConstraint(
            "priority IN ('low', 'medium', 'high')",
            name="ck_support_tickets_priority",
        ),
    )
    op.create_index("ix_support_tickets_user_status", "support_tickets", ["user_id", "status"])
    op.create_index("ix_support_tickets_opened_at", "support_tickets", ["opened_at"])

    op.create_table(
        "chat_messages",
        sa.Column("id", _UUID, primary_key=True, server_default=_GEN_UUID),
        sa.Column(
            "user_id",
            sa.String(64),
            nullable=False,
            comment="Owning customer of the conversation",
        ),
        sa.Column("chat_category", sa.String(16), nullable=False, comment="sales | support"),
        sa.Column(
            "ticket_id",
            _UUID,
            sa.ForeignKey("support_tickets.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("body", sa.Text(), nullable=False),
        sa.Column("sender_role", sa.String(16), nullable=False),
        sa.Column(
            "attachments",
            postgresql.JSONB,
            nullable=False,
            server_default=sa.text("'[]'::jsonb"),
        ),
        sa.Column("read", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=_NOW),
        sa.CheckConstraint(
            "chat_category = 'support' OR ticket_id IS NULL",
            name="ck_chat_messages_sales_without_ticket",
        ),
    )
    op.create_index(
        "ix_chat_messages_user_category",
        "chat_messages",
        ["user_id", "chat_category", "created_at"],
    )
    op.create_index("ix_chat_messages_ticket_id", "chat_messages", ["ticket_id"])


def downgrade() -> None:
    op.drop_index("ix_chat_messages_ticket_id", table_name="chat_messages")
    op.drop_index("ix_chat_messages_user_category", table_name="chat_messages")
    op.drop_table("chat_messages")
    op.drop_index("ix_support_tickets_opened_at", table_name="support_tickets")
    op.drop_index("ix_support_tickets_user_status", table_name="support_tickets")
    op.drop_table("support_tickets")
    op.drop_index("ix_users_email", table_name="users")
    op.drop_table("users")
