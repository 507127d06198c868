"""Shared domain types used across layers.

These types flow through Port interfaces and out over the wire, so their
``to_dict()`` shapes (camelCase keys, ISO-8601 timestamps) are part of the
relay protocol and the HTTP API. Change them only in an additive way.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from datetime import datetime


class PartyRole:
    """Role a user acts in on the chat."""

    CUSTOMER = "customer"
    ADMIN = "admin"

    ALL = frozenset({CUSTOMER, ADMIN})


class ChatCategory:
    """Message stream partition."""

    SALES = "sales"
    SUPPORT = "support"

    ALL = frozenset({SALES, SUPPORT})


class TicketStatus:
    OPEN = "open"
    RESOLVED = "resolved"

    ALL = frozenset({OPEN, RESOLVED})


class TicketPriority:
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    ALL = frozenset({LOW, MEDIUM, HIGH})


class AttachmentKind:
    IMAGE = "image"
    VIDEO = "video"

    ALL = frozenset({IMAGE, VIDEO})


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


# -- Chat records --


@dataclass(frozen=True)
class Attachment:
    """Canonical attachment record stored on a chat message."""

    url: str
    public_id: str
    kind: str  # image | video
    original_name: str = ""
    size: int = 0
    duration: float | None = None
    dimensions: str | None = None  # "WxH"

    def to_dict(self) -> dict[str, Any]:
        return {
            "url": self.url,
            "publicId": self.public_id,
            "kind": self.kind,
            "originalName": self.original_name,
            "size": self.size,
            "duration": self.duration,
            "dimensions": self.dimensions,
        }


@dataclass(frozen=True)
class ChatMessage:
    """A persisted chat message.

    ``ticket_id`` is set only for support messages; sales messages never
    carry one.
    """

    id: str
    user_id: str
    chat_category: str  # sales | support
    body: str
    sender_role: str  # customer | admin
    created_at: datetime
    ticket_id: str | None = None
    attachments: tuple[Attachment, ...] = ()
    read: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "userId": self.user_id,
            "chatCategory": self.chat_category,
            "ticketId": self.ticket_id,
            "body": self.body,
            "senderRole": self.sender_role,
            "attachments": [a.to_dict() for a in self.attachments],
            "read": self.read,
            "createdAt": _iso(self.created_at),
        }


@dataclass(frozen=True)
class SupportTicket:
    """A customer-support issue ("asunto") with an open/resolved lifecycle."""

    id: str
    user_id: str
    title: str
    description: str
    opened_at: datetime
    priority: str = TicketPriority.MEDIUM
    status: str = TicketStatus.OPEN
    resolved_at: datetime | None = None

    @property
    def is_open(self) -> bool:
        return self.status == TicketStatus.OPEN

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "userId": self.user_id,
            "title": self.title,
            "description": self.description,
            "priority": self.priority,
            "status": self.status,
            "openedAt": _iso(self.opened_at),
            "resolvedAt": _iso(self.resolved_at),
        }


# -- Collaborator types --


@dataclass(frozen=True)
class UserProfile:
    """Public profile of a user, shown to admins next to their messages."""

    user_id: str
    name: str
    email: str = ""
    is_admin: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.user_id,
            "name": self.name,
            "email": self.email,
            "isAdmin": self.is_admin,
        }


@dataclass(frozen=True)
class UploadedMedia:
    """Durable reference returned by the media host after an upload."""

    url: str
    public_id: str
    size: int
    kind: str
    original_name: str = ""
    duration: float | None = None
    dimensions: str | None = None

    def to_attachment(self) -> Attachment:
        return Attachment(
            url=self.url,
            public_id=self.public_id,
            kind=self.kind,
            original_name=self.original_name,
            size=self.size,
            duration=self.duration,
            dimensions=self.dimensions,
        )

    def to_dict(self) -> dict[str, Any]:
        return self.to_attachment().to_dict()


# -- Read models --


@dataclass(frozen=True)
class ConversationSummary:
    """Admin-facing summary of one conversation stream."""

    user_id: str
    chat_category: str
    total_count: int
    unread_count: int
    ticket: SupportTicket | None = None
    last_message: ChatMessage | None = None
    user_profile: UserProfile | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "userId": self.user_id,
            "chatCategory": self.chat_category,
            "ticketId": self.ticket.id if self.ticket else None,
            "ticket": self.ticket.to_dict() if self.ticket else None,
            "userProfile": self.user_profile.to_dict() if self.user_profile else None,
            "lastMessage": self.last_message.to_dict() if self.last_message else None,
            "unreadCount": self.unread_count,
            "totalCount": self.total_count,
        }


@dataclass(frozen=True)
class Conversation:
    """Full conversation view: summary fields plus the message stream."""

    summary: ConversationSummary
    messages: list[ChatMessage] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        data = self.summary.to_dict()
        data["messages"] = [m.to_dict() for m in self.messages]
        return data


@dataclass(frozen=True)
class UserChatStats:
    """Per-user chat statistics."""

    user_id: str
    sales_messages: int = 0
    support_messages: int = 0
    unread_sales: int = 0
    unread_support: int = 0
    open_tickets: int = 0
    resolved_tickets: int = 0

    @property
    def total_tickets(self) -> int:
        return self.open_tickets + self.resolved_tickets

    def to_dict(self) -> dict[str, Any]:
        return {
            "userId": self.user_id,
            "salesMessages": self.sales_messages,
            "supportMessages": self.support_messages,
            "unreadSales": self.unread_sales,
            "unreadSupport": self.unread_support,
            "openTickets": self.open_tickets,
            "resolvedTickets": self.resolved_tickets,
            "totalTickets": self.total_tickets,
        }


__all__ = [
    "Attachment",
    "AttachmentKind",
    "ChatCategory",
    "ChatMessage",
    "Conversation",
    "ConversationSummary",
    "PartyRole",
    "SupportTicket",
    "TicketPriority",
    "TicketStatus",
    "UploadedMedia",
    "UserChatStats",
    "UserProfile",
]
