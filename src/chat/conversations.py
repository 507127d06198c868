"""Conversation read model.

Derived, never persisted: joins users, categories, tickets and message
streams into the summaries admins browse. Unread counts are taken from the
admin's point of view (customer-sent messages not yet read) in summaries,
and from the customer's point of view in per-user statistics.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from src.shared.errors import NotFoundError, ValidationError
from src.shared.types import (
    ChatCategory,
    Conversation,
    ConversationSummary,
    PartyRole,
    TicketStatus,
    UserChatStats,
)

if TYPE_CHECKING:
    from datetime import datetime

    from src.ports.message_store_port import MessageStorePort
    from src.ports.ticket_store_port import TicketStorePort
    from src.ports.user_directory_port import UserDirectoryPort
    from src.shared.types import SupportTicket, UserProfile

logger = logging.getLogger(__name__)

ALL_CATEGORIES = "all"


def _last_activity(summary: ConversationSummary) -> datetime | None:
    if summary.last_message is not None:
        return summary.last_message.created_at
    if summary.ticket is not None:
        return summary.ticket.opened_at
    return None


class ConversationService:
    """Read-only queries over the message and ticket stores."""

    def __init__(
        self,
        *,
        messages: MessageStorePort,
        tickets: TicketStorePort,
        users: UserDirectoryPort | None = None,
    ) -> None:
        self._messages = messages
        self._tickets = tickets
        self._users = users

    async def profile(self, user_id: str) -> UserProfile | None:
        """Best-effort profile lookup; a directory failure yields None."""
        if self._users is None:
            return None
        try:
            return await self._users.get_profile(user_id)
        except Exception:
            logger.warning("Profile lookup failed for user=%s", user_id, exc_info=True)
            return None

    async def _sales_summary(self, user_id: str) -> ConversationSummary | None:
        messages = await self._messages.query(user_id, ChatCategory.SALES)
        if not messages:
            return None
        unread = await self._messages.count_unread(
            user_id,
            ChatCategory.SALES,
            sender_role=PartyRole.CUSTOMER,
        )
        return ConversationSummary(
            user_id=user_id,
            chat_category=ChatCategory.SALES,
            total_count=len(messages),
            unread_count=unread,
            last_message=messages[-1],
            user_profile=await self.profile(user_id),
        )

    async def _ticket_summary(self, ticket: SupportTicket) -> ConversationSummary:
        messages = await self._messages.query(ticket.user_id, ChatCategory.SUPPORT, ticket.id)
        unread = await self._messages.count_unread(
            ticket.user_id,
            ChatCategory.SUPPORT,
            ticket.id,
            sender_role=PartyRole.CUSTOMER,
        )
        return ConversationSummary(
            user_id=ticket.user_id,
            chat_category=ChatCategory.SUPPORT,
            total_count=len(messages),
            unread_count=unread,
            ticket=ticket,
            last_message=messages[-1] if messages else None,
            user_profile=await self.profile(ticket.user_id),
        )

    async def active_conversations(self, chat_category: str = ALL_CATEGORIES) -> list[ConversationSummary]:
        """Summaries of live conversations, most recent activity first.

        ``sales`` yields one summary per user with sales messages;
        ``support`` yields one summary per open ticket; ``all`` both.
        """
        if chat_category not in ChatCategory.ALL and chat_category != ALL_CATEGORIES:
            msg = f"Unknown chat category: {chat_category!r}"
            raise ValidationError(msg, field="chatCategory")

        summaries: list[ConversationSummary] = []
        if chat_category in (ChatCategory.SALES, ALL_CATEGORIES):
            for user_id in await self._messages.distinct_users(ChatCategory.SALES):
                summary = await self._sales_summary(user_id)
                if summary is not None:
                    summaries.append(summary)
        if chat_category in (ChatCategory.SUPPORT, ALL_CATEGORIES):
            for ticket in await self._tickets.list_all_open():
                summaries.append(await self._ticket_summary(ticket))

        dated = [s for s in summaries if _last_activity(s) is not None]
        undated = [s for s in summaries if _last_activity(s) is None]
        dated.sort(key=_last_activity, reverse=True)  # type: ignore[arg-type]
        return dated + undated

    async def pending_tickets(self) -> list[ConversationSummary]:
        """Open tickets across all users, oldest first."""
        return [await self._ticket_summary(t) for t in await self._tickets.list_all_open()]

    async def conversation_detail(
        self,
        user_id: str,
        chat_category: str,
        ticket_id: str | None = None,
    ) -> Conversation:
        """Full message stream of one conversation.

        For ``support`` the ticket defaults to the user's active one; with no
        ticket at all every support message of the user is returned.

        Raises:
            ValidationError: Unknown category.
            NotFoundError: ``ticket_id`` does not exist or belongs to someone else.
        """
        if chat_category not in ChatCategory.ALL:
            msg = f"Unknown chat category: {chat_category!r}"
            raise ValidationError(msg, field="chatCategory")

        ticket = None
        if chat_category == ChatCategory.SUPPORT:
            if ticket_id is not None:
                ticket = await self._tickets.get(ticket_id)
                if ticket is None or ticket.user_id != user_id:
                    raise NotFoundError("ticket", ticket_id)
            else:
                ticket = await self._tickets.find_active_open(user_id)

        messages = await self._messages.query(user_id, chat_category, ticket.id if ticket else None)
        unread = sum(1 for m in messages if not m.read and m.sender_role == PartyRole.CUSTOMER)
        summary = ConversationSummary(
            user_id=user_id,
            chat_category=chat_category,
            total_count=len(messages),
            unread_count=unread,
            ticket=ticket,
            last_message=messages[-1] if messages else None,
            user_profile=await self.profile(user_id),
        )
        return Conversation(summary=summary, messages=messages)

    async def user_stats(self, user_id: str) -> UserChatStats:
        sales = await self._messages.query(user_id, ChatCategory.SALES)
        support = await self._messages.query(user_id, ChatCategory.SUPPORT)
        tickets = await self._tickets.list(user_id)
        return UserChatStats(
            user_id=user_id,
            sales_messages=len(sales),
            support_messages=len(support),
            unread_sales=await self._messages.count_unread(
                user_id, ChatCategory.SALES, sender_role=PartyRole.ADMIN
            ),
            unread_support=await self._messages.count_unread(
                user_id, ChatCategory.SUPPORT, sender_role=PartyRole.ADMIN
            ),
            open_tickets=sum(1 for t in tickets if t.status == TicketStatus.OPEN),
            resolved_tickets=sum(1 for t in tickets if t.status == TicketStatus.RESOLVED),
        )
