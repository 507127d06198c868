"""SQLAlchemy ORM models for the Back Coffee chat backend.

Maps to migration DDL in migrations/versions/:
  001_create_chat_tables.py -> User, SupportTicketModel, ChatMessageModel

These models live in the Infrastructure layer and back the Pg* store
adapters. The relay core MUST NOT import this module directly.

User ids are opaque strings issued by the identity provider; message and
ticket ids are UUIDs surfaced as strings (``as_uuid=False``).
"""

from __future__ import annotations

from datetime import datetime  # noqa: TC003 -- SQLAlchemy resolves Mapped[] annotations at runtime
from typing import Any

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

_UUID = postgresql.UUID(as_uuid=False)
_NOW = sa.text("now()")
_GEN_UUID = sa.text("gen_random_uuid()")


class Base(DeclarativeBase):
    """Declarative base for all ORM models."""


class User(Base):
    """Shop user as seen by the chat (profile fields only)."""

    __tablename__ = "users"

    id: Mapped[str] = mapped_column(sa.String(64), primary_key=True)
    email: Mapped[str] = mapped_column(sa.String(320), nullable=False, unique=True)
    display_name: Mapped[str | None] = mapped_column(sa.String(255), nullable=True)
    is_admin: Mapped[bool] = mapped_column(
        sa.Boolean(),
        nullable=False,
        server_default=sa.text("false"),
    )
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True),
        nullable=False,
        server_default=_NOW,
    )

    __table_args__ = (sa.Index("ix_users_email", "email", unique=True),)


class SupportTicketModel(Base):
    """Support ticket ("asunto").

    See: 001_create_chat_tables migration
    """

    __tablename__ = "support_tickets"

    id: Mapped[str] = mapped_column(_UUID, primary_key=True, server_default=_GEN_UUID)
    user_id: Mapped[str] = mapped_column(sa.String(64), nullable=False)
    title: Mapped[str] = mapped_column(sa.String(255), nullable=False)
    description: Mapped[str] = mapped_column(sa.Text(), nullable=False)
    priority: Mapped[str] = mapped_column(
        sa.String(16),
        nullable=False,
        server_default="medium",
    )
    status: Mapped[str] = mapped_column(
        sa.String(16),
        nullable=False,
        server_default="open",
        comment="open | resolved (terminal)",
    )
    opened_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True),
        nullable=False,
        server_default=_NOW,
    )
    resolved_at: Mapped[datetime | None] = mapped_column(
        sa.DateTime(timezone=True),
        nullable=True,
    )

    __table_args__ = (
        sa.Index("ix_support_tickets_user_status", "user_id", "status"),
        sa.Index("ix_support_tickets_opened_at", "opened_at"),
    )


class ChatMessageModel(Base):
    """Chat message in the sales or support stream.

    See: 001_create_chat_tables migration
    """

    __tablename__ = "chat_messages"

    id: Mapped[str] = mapped_column(_UUID, primary_key=True, server_default=_GEN_UUID)
    user_id: Mapped[str] = mapped_column(
        sa.String(64),
        nullable=False,
        comment="Owning customer of the conversation",
    )
    chat_category: Mapped[str] = mapped_column(
        sa.String(16),
        nullable=False,
        comment="sales | support",
    )
    ticket_id: Mapped[str | None] = mapped_column(
        _UUID,
        sa.ForeignKey("support_tickets.id", ondelete="SET NULL"),
        nullable=True,
    )
    body: Mapped[str] = mapped_column(sa.Text(), nullable=False)
    sender_role: Mapped[str] = mapped_column(sa.String(16), nullable=False)
    attachments: Mapped[list[dict[str, Any]]] = mapped_column(
        postgresql.JSONB,
        nullable=False,
        server_default=sa.text("'[]'::jsonb"),
    )
    read: Mapped[bool] = mapped_column(
        sa.Boolean(),
        nullable=False,
        server_default=sa.text("false"),
    )
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True),
        nullable=False,
        server_default=_NOW,
    )

    __table_args__ = (
        sa.CheckConstraint(
            "chat_category = 'support' OR ticket_id IS NULL",
            name="ck_chat_messages_sales_without_ticket",
        ),
        sa.Index("ix_chat_messages_user_category", "user_id", "chat_category", "created_at"),
        sa.Index("ix_chat_messages_ticket_id", "ticket_id"),
    )
