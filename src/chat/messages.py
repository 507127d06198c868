"""Chat message store adapters.

Provides:
- InMemoryMessageStore: dict-backed store (tests / single-process dev)
- PgMessageStore: SQLAlchemy async store over the chat_messages table

Both normalize attachments at ingress and never attach a ticket id to a
``sales`` message.
"""

from __future__ import annotations

import dataclasses
import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any
from uuid import UUID, uuid4

import sqlalchemy as sa

from src.chat.attachments import normalize_attachment
from src.infra.models import ChatMessageModel
from src.ports.message_store_port import MessageStorePort
from src.shared.errors import ValidationError
from src.shared.types import ChatCategory, ChatMessage, PartyRole

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from src.shared.types import Attachment

logger = logging.getLogger(__name__)


def _check_category(chat_category: str) -> None:
    if chat_category not in ChatCategory.ALL:
        msg = f"Unknown chat category: {chat_category!r}"
        raise ValidationError(msg, field="chatCategory")


def _scoped_ticket(chat_category: str, ticket_id: str | None) -> str | None:
    """Sales messages never carry a ticket id."""
    return ticket_id if chat_category == ChatCategory.SUPPORT else None


def _is_uuid(value: str) -> bool:
    try:
        UUID(value)
    except (TypeError, ValueError):
        return False
    return True


class InMemoryMessageStore(MessageStorePort):
    """In-memory message store.

    Messages are kept in insertion order, which doubles as time order.
    """

    def __init__(self) -> None:
        self._messages: dict[str, ChatMessage] = {}

    def _matching(
        self,
        user_id: str,
        chat_category: str,
        ticket_id: str | None = None,
        sender_role: str | None = None,
    ) -> list[ChatMessage]:
        ticket_id = _scoped_ticket(chat_category, ticket_id)
        return [
            m
            for m in self._messages.values()
            if m.user_id == user_id
            and m.chat_category == chat_category
            and (ticket_id is None or m.ticket_id == ticket_id)
            and (sender_role is None or m.sender_role == sender_role)
        ]

    async def append(
        self,
        *,
        user_id: str,
        chat_category: str,
        body: str,
        sender_role: str,
        ticket_id: str | None = None,
        attachments: Sequence[Attachment | Mapping[str, Any]] | None = None,
    ) -> ChatMessage:
        _check_category(chat_category)
        message = ChatMessage(
            id=str(uuid4()),
            user_id=user_id,
            chat_category=chat_category,
            body=body,
            sender_role=sender_role,
            created_at=datetime.now(UTC),
            ticket_id=_scoped_ticket(chat_category, ticket_id),
            attachments=tuple(normalize_attachment(a) for a in attachments or ()),
        )
        self._messages[message.id] = message
        return message

    async def query(
        self,
        user_id: str,
        chat_category: str,
        ticket_id: str | None = None,
    ) -> list[ChatMessage]:
        return self._matching(user_id, chat_category, ticket_id)

    async def get(self, message_id: str) -> ChatMessage | None:
        return self._messages.get(message_id)

    async def mark_read(
        self,
        user_id: str,
        chat_category: str,
        ticket_id: str | None = None,
        *,
        sender_role: str | None = None,
    ) -> int:
        count = 0
        for message in self._matching(user_id, chat_category, ticket_id, sender_role):
            if not message.read:
                self._messages[message.id] = dataclasses.replace(message, read=True)
                count += 1
        return count

    async def count_unread(
        self,
        user_id: str,
        chat_category: str,
        ticket_id: str | None = None,
        *,
        sender_role: str | None = None,
    ) -> int:
        matching = self._matching(user_id, chat_category, ticket_id, sender_role)
        return sum(1 for m in matching if not m.read)

    async def delete_all(self, user_id: str, chat_category: str | None = None) -> int:
        doomed = [
            m.id
            for m in self._messages.values()
            if m.user_id == user_id and (chat_category is None or m.chat_category == chat_category)
        ]
        for message_id in doomed:
            del self._messages[message_id]
        return len(doomed)

    async def distinct_users(self, chat_category: str) -> list[str]:
        seen: dict[str, None] = {}
        for m in self._messages.values():
            if m.chat_category == chat_category:
                seen.setdefault(m.user_id, None)
        return list(seen)

    async def remove_attachment(self, message_id: str, public_id: str) -> bool:
        message = self._messages.get(message_id)
        if message is None:
            return False
        kept = tuple(a for a in message.attachments if a.public_id != public_id)
        if len(kept) == len(message.attachments):
            return False
        self._messages[message_id] = dataclasses.replace(message, attachments=kept)
        return True


class PgMessageStore(MessageStorePort):
    """PostgreSQL-backed message store using SQLAlchemy.

    Attachments are stored as a JSONB array of canonical attachment dicts.
    Ids that are not valid UUIDs never match a row.
    """

    def __init__(self, *, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    def _scope(
        self,
        user_id: str,
        chat_category: str,
        ticket_id: str | None = None,
        sender_role: str | None = None,
    ) -> list[Any]:
        clauses: list[Any] = [
            ChatMessageModel.user_id == user_id,
            ChatMessageModel.chat_category == chat_category,
        ]
        ticket_id = _scoped_ticket(chat_category, ticket_id)
        if ticket_id is not None:
            clauses.append(ChatMessageModel.ticket_id == ticket_id)
        if sender_role is not None:
            clauses.append(ChatMessageModel.sender_role == sender_role)
        return clauses

    async def append(
        self,
        *,
        user_id: str,
        chat_category: str,
        body: str,
        sender_role: str,
        ticket_id: str | None = None,
        attachments: Sequence[Attachment | Mapping[str, Any]] | None = None,
    ) -> ChatMessage:
        _check_category(chat_category)
        normalized = tuple(normalize_attachment(a) for a in attachments or ())
        message = ChatMessage(
            id=str(uuid4()),
            user_id=user_id,
            chat_category=chat_category,
            body=body,
            sender_role=sender_role,
            created_at=datetime.now(UTC),
            ticket_id=_scoped_ticket(chat_category, ticket_id),
            attachments=normalized,
        )
        model = ChatMessageModel(
            id=message.id,
            user_id=message.user_id,
            chat_category=message.chat_category,
            ticket_id=message.ticket_id,
            body=message.body,
            sender_role=message.sender_role,
            attachments=[a.to_dict() for a in normalized],
            read=False,
            created_at=message.created_at,
        )
        async with self._session_factory() as session:
            session.add(model)
            await session.commit()
        return message

    async def query(
        self,
        user_id: str,
        chat_category: str,
        ticket_id: str | None = None,
    ) -> list[ChatMessage]:
        if ticket_id is not None and chat_category == ChatCategory.SUPPORT and not _is_uuid(ticket_id):
            return []
        stmt = (
            sa.select(ChatMessageModel)
            .where(*self._scope(user_id, chat_category, ticket_id))
            .order_by(ChatMessageModel.created_at)
        )
        async with self._session_factory() as session:
            result = await session.scalars(stmt)
            rows = result.all()
        return [_row_to_message(row) for row in rows]

    async def get(self, message_id: str) -> ChatMessage | None:
        if not _is_uuid(message_id):
            return None
        stmt = sa.select(ChatMessageModel).where(ChatMessageModel.id == message_id)
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            row = result.scalar_one_or_none()
        if row is None:
            return None
        return _row_to_message(row)

    async def mark_read(
        self,
        user_id: str,
        chat_category: str,
        ticket_id: str | None = None,
        *,
        sender_role: str | None = None,
    ) -> int:
        if ticket_id is not None and chat_category == ChatCategory.SUPPORT and not _is_uuid(ticket_id):
            return 0
        stmt = (
            sa.update(ChatMessageModel)
            .where(
                *self._scope(user_id, chat_category, ticket_id, sender_role),
                ChatMessageModel.read.is_(False),
            )
            .values(read=True)
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            await session.commit()
            count: int = result.rowcount  # type: ignore[attr-defined]
            return count

    async def count_unread(
        self,
        user_id: str,
        chat_category: str,
        ticket_id: str | None = None,
        *,
        sender_role: str | None = None,
    ) -> int:
        if ticket_id is not None and chat_category == ChatCategory.SUPPORT and not _is_uuid(ticket_id):
            return 0
        stmt = sa.select(sa.func.count()).where(
            *self._scope(user_id, chat_category, ticket_id, sender_role),
            ChatMessageModel.read.is_(False),
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return result.scalar_one()

    async def delete_all(self, user_id: str, chat_category: str | None = None) -> int:
        stmt = sa.delete(ChatMessageModel).where(ChatMessageModel.user_id == user_id)
        if chat_category is not None:
            stmt = stmt.where(ChatMessageModel.chat_category == chat_category)
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            await session.commit()
            count: int = result.rowcount  # type: ignore[attr-defined]
        logger.info("Deleted %d messages for user=%s category=%s", count, user_id, chat_category)
        return count

    async def distinct_users(self, chat_category: str) -> list[str]:
        stmt = (
            sa.select(ChatMessageModel.user_id)
            .where(ChatMessageModel.chat_category == chat_category)
            .distinct()
        )
        async with self._session_factory() as session:
            result = await session.scalars(stmt)
            return list(result.all())

    async def remove_attachment(self, message_id: str, public_id: str) -> bool:
        if not _is_uuid(message_id):
            return False
        stmt = sa.select(ChatMessageModel).where(ChatMessageModel.id == message_id)
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            row = result.scalar_one_or_none()
            if row is None:
                return False
            kept = [a for a in row.attachments if normalize_attachment(a).public_id != public_id]
            if len(kept) == len(row.attachments):
                return False
            row.attachments = kept
            await session.commit()
        return True


def _row_to_message(row: ChatMessageModel) -> ChatMessage:
    """Convert an ORM row to domain ChatMessage."""
    return ChatMessage(
        id=str(row.id),
        user_id=row.user_id,
        chat_category=row.chat_category,
        body=row.body,
        sender_role=row.sender_role or PartyRole.CUSTOMER,
        created_at=row.created_at,
        ticket_id=str(row.ticket_id) if row.ticket_id is not None else None,
        attachments=tuple(normalize_attachment(a) for a in row.attachments or ()),
        read=row.read,
    )
