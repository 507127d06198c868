"""MessageStorePort - Chat message persistence interface.

The relay appends messages, queries history and flips read flags through
this port; the conversation read model aggregates over it. Implementations
own their own consistency and must keep per-user operations sequentially
consistent.

Implementations:
    InMemoryMessageStore - tests / single-process dev (src.chat.messages)
    PgMessageStore       - PostgreSQL via SQLAlchemy async (src.chat.messages)
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

    from src.shared.types import Attachment, ChatMessage


class MessageStorePort(ABC):
    """Port: chat message append / query / read-flag operations."""

    @abstractmethod
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
        """Persist a new message and return it with id and timestamp.

        Args:
            user_id: Owning customer of the conversation.
            chat_category: ``sales`` or ``support``.
            body: Message text.
            sender_role: ``customer`` or ``admin``.
            ticket_id: Support ticket the message belongs to. Ignored for
                ``sales`` messages, which never carry one.
            attachments: Attachment records, canonical or in any legacy
                shape; normalized before storage.
        """

    @abstractmethod
    async def query(
        self,
        user_id: str,
        chat_category: str,
        ticket_id: str | None = None,
    ) -> list[ChatMessage]:
        """Return the user's messages in a category, oldest first.

        With ``ticket_id`` only that ticket's messages are returned.
        """

    @abstractmethod
    async def get(self, message_id: str) -> ChatMessage | None:
        """Return a single message by id."""

    @abstractmethod
    async def mark_read(
        self,
        user_id: str,
        chat_category: str,
        ticket_id: str | None = None,
        *,
        sender_role: str | None = None,
    ) -> int:
        """Flip unread messages to read. Returns the number flipped.

        ``sender_role`` restricts the update to messages sent by that role
        (the reader marks the counterpart's messages).
        """

    @abstractmethod
    async def count_unread(
        self,
        user_id: str,
        chat_category: str,
        ticket_id: str | None = None,
        *,
        sender_role: str | None = None,
    ) -> int:
        """Count unread messages in scope."""

    @abstractmethod
    async def delete_all(self, user_id: str, chat_category: str | None = None) -> int:
        """Bulk-delete a user's history (one category or all). Returns count."""

    @abstractmethod
    async def distinct_users(self, chat_category: str) -> list[str]:
        """Return user ids that have at least one message in the category."""

    @abstractmethod
    async def remove_attachment(self, message_id: str, public_id: str) -> bool:
        """Drop one attachment reference from a message.

        Returns False when the message or the attachment does not exist.
        """
