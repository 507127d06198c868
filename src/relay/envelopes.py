"""Relay wire envelopes.

Inbound frames are JSON objects tagged by ``type`` (``tipo`` is accepted as
an alias). They are parsed into a closed set of pydantic models, one per
envelope kind, joined in the ``InboundEnvelope`` discriminated union.
Field names on the wire are camelCase; the field names, type tags and role
/ category values used by older clients are accepted as well.

Outbound envelopes are plain dicts built by the functions at the bottom of
this module; every one carries ``type`` and an ISO-8601 ``timestamp``.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import TYPE_CHECKING, Annotated, Any, Literal, get_args

import pydantic
from pydantic import (
    AliasChoices,
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Field,
    StringConstraints,
    TypeAdapter,
    field_validator,
    model_validator,
)

from src.shared.errors import ProtocolError
from src.shared.types import ChatCategory, PartyRole, TicketPriority

if TYPE_CHECKING:
    from collections.abc import Iterable

    from src.shared.types import ChatMessage, ConversationSummary, SupportTicket, UserProfile

_LEGACY_TYPES = {
    "conectar": "connect",
    "enviar_mensaje": "send_message",
    "solicitar_historial": "request_history",
    "crear_asunto": "create_ticket",
    "resolver_asunto": "resolve_ticket",
    "marcar_leido": "mark_read",
    "solicitar_conversaciones_activas": "request_active_conversations",
    "marcar_pedido_completado": "complete_order",
}
_LEGACY_ROLES = {"cliente": PartyRole.CUSTOMER}
_LEGACY_CATEGORIES = {"ventas": ChatCategory.SALES, "atencion_cliente": ChatCategory.SUPPORT}
_LEGACY_PRIORITIES = {"baja": TicketPriority.LOW, "media": TicketPriority.MEDIUM, "alta": TicketPriority.HIGH}

ALL_CATEGORIES = "all"


def _coerce_id(value: Any) -> Any:
    if isinstance(value, int) and not isinstance(value, bool):
        return str(value)
    return value


def _normalize_role(value: Any) -> str:
    role = _LEGACY_ROLES.get(value, value) if isinstance(value, str) else value
    if role not in PartyRole.ALL:
        msg = "role must be 'customer' or 'admin'"
        raise ValueError(msg)
    return role


def _normalize_category(value: Any) -> str:
    category = _LEGACY_CATEGORIES.get(value, value) if isinstance(value, str) else value
    if category not in ChatCategory.ALL:
        msg = "chatCategory must be 'sales' or 'support'"
        raise ValueError(msg)
    return category


UserId = Annotated[str, BeforeValidator(_coerce_id), StringConstraints(strip_whitespace=True, min_length=1)]
EntityId = Annotated[str, BeforeValidator(_coerce_id), StringConstraints(strip_whitespace=True, min_length=1)]
Role = Annotated[str, BeforeValidator(_normalize_role)]
Category = Annotated[str, BeforeValidator(_normalize_category)]
Text = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]

_USER_ID = AliasChoices("userId", "usuarioId", "user_id")
_CATEGORY = AliasChoices("chatCategory", "tipoChat", "chat_category")
_TICKET_ID = AliasChoices("ticketId", "asuntoId", "ticket_id")
_ROLE = AliasChoices("role", "tipoUsuario")


class _Envelope(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)


class ConnectEnvelope(_Envelope):
    type: Literal["connect"]
    user_id: UserId = Field(validation_alias=_USER_ID)
    role: Role = Field(validation_alias=_ROLE)


class SendMessageEnvelope(_Envelope):
    type: Literal["send_message"]
    user_id: UserId = Field(validation_alias=_USER_ID)
    chat_category: Category = Field(validation_alias=_CATEGORY)
    body: str = Field(default="", validation_alias=AliasChoices("body", "contenido", "content"))
    ticket_id: EntityId | None = Field(default=None, validation_alias=_TICKET_ID)
    role: Role | None = Field(default=None, validation_alias=_ROLE)
    attachments: list[dict[str, Any]] = Field(
        default_factory=list,
        validation_alias=AliasChoices("attachments", "archivos"),
    )

    @model_validator(mode="after")
    def _require_content(self) -> SendMessageEnvelope:
        if not self.body.strip() and not self.attachments:
            msg = "body is required"
            raise ValueError(msg)
        return self


class RequestHistoryEnvelope(_Envelope):
    type: Literal["request_history"]
    user_id: UserId = Field(validation_alias=_USER_ID)
    chat_category: Category = Field(validation_alias=_CATEGORY)
    ticket_id: EntityId | None = Field(default=None, validation_alias=_TICKET_ID)


class CreateTicketEnvelope(_Envelope):
    type: Literal["create_ticket"]
    user_id: UserId = Field(validation_alias=_USER_ID)
    title: Text = Field(validation_alias=AliasChoices("title", "titulo"))
    description: Text = Field(validation_alias=AliasChoices("description", "descripcion"))
    priority: str = Field(
        default=TicketPriority.MEDIUM,
        validation_alias=AliasChoices("priority", "prioridad"),
    )

    @field_validator("priority", mode="before")
    @classmethod
    def validate_priority(cls, v: Any) -> str:
        if v is None:
            return TicketPriority.MEDIUM
        priority = _LEGACY_PRIORITIES.get(v, v) if isinstance(v, str) else v
        if priority not in TicketPriority.ALL:
            msg = f"priority must be one of {sorted(TicketPriority.ALL)}"
            raise ValueError(msg)
        return priority


class ResolveTicketEnvelope(_Envelope):
    type: Literal["resolve_ticket"]
    user_id: UserId = Field(validation_alias=_USER_ID)
    ticket_id: EntityId = Field(validation_alias=_TICKET_ID)


class MarkReadEnvelope(_Envelope):
    type: Literal["mark_read"]
    user_id: UserId = Field(validation_alias=_USER_ID)
    chat_category: Category = Field(validation_alias=_CATEGORY)
    ticket_id: EntityId | None = Field(default=None, validation_alias=_TICKET_ID)


class RequestActiveConversationsEnvelope(_Envelope):
    type: Literal["request_active_conversations"]
    chat_category: str = Field(default=ALL_CATEGORIES, validation_alias=_CATEGORY)

    @field_validator("chat_category", mode="before")
    @classmethod
    def validate_chat_category(cls, v: Any) -> str:
        if v is None or v == ALL_CATEGORIES:
            return ALL_CATEGORIES
        return _normalize_category(v)


class CompleteOrderEnvelope(_Envelope):
    type: Literal["complete_order"]
    user_id: UserId = Field(validation_alias=_USER_ID)
    order_id: EntityId = Field(validation_alias=AliasChoices("orderId", "pedidoId", "order_id"))


class PongEnvelope(_Envelope):
    type: Literal["pong"]


InboundEnvelope = Annotated[
    ConnectEnvelope
    | SendMessageEnvelope
    | RequestHistoryEnvelope
    | CreateTicketEnvelope
    | ResolveTicketEnvelope
    | MarkReadEnvelope
    | RequestActiveConversationsEnvelope
    | CompleteOrderEnvelope
    | PongEnvelope,
    Field(discriminator="type"),
]

INBOUND_ENVELOPES: tuple[type[_Envelope], ...] = get_args(get_args(InboundEnvelope)[0])

ENVELOPE_TYPES: dict[str, type[_Envelope]] = {
    get_args(cls.model_fields["type"].annotation)[0]: cls for cls in INBOUND_ENVELOPES
}

_ADAPTER: TypeAdapter[Any] = TypeAdapter(InboundEnvelope)


def _describe(exc: pydantic.ValidationError, envelope_type: str) -> str:
    err = exc.errors()[0]
    loc = [str(part) for part in err.get("loc", ()) if part != envelope_type]
    where = f"{'.'.join(loc)}: " if loc else ""
    return f"Invalid {envelope_type} envelope: {where}{err.get('msg', 'invalid value')}"


def parse_envelope(raw: Any) -> Any:
    """Parse one decoded JSON frame into its envelope model.

    Raises:
        ProtocolError: Not an object, unknown type, or invalid fields.
    """
    if not isinstance(raw, dict):
        msg = "Envelope must be a JSON object"
        raise ProtocolError(msg)

    tag = raw.get("type") or raw.get("tipo")
    if not isinstance(tag, str) or not tag:
        msg = "Envelope is missing its type"
        raise ProtocolError(msg)

    envelope_type = _LEGACY_TYPES.get(tag, tag)
    if envelope_type not in ENVELOPE_TYPES:
        msg = f"Unknown envelope type: {tag}"
        raise ProtocolError(msg, envelope_type=tag)

    data = {k: v for k, v in raw.items() if k != "tipo"}
    data["type"] = envelope_type
    try:
        return _ADAPTER.validate_python(data)
    except pydantic.ValidationError as exc:
        raise ProtocolError(_describe(exc, envelope_type), envelope_type=envelope_type) from exc


# -- Outbound envelopes --


def now_iso() -> str:
    return datetime.now(UTC).isoformat()


def connection_ack(user_id: str, role: str) -> dict[str, Any]:
    return {
        "type": "connection_ack",
        "userId": user_id,
        "role": role,
        "message": f"Connected as {role}",
        "timestamp": now_iso(),
    }


def message_ack(message: ChatMessage) -> dict[str, Any]:
    return {"type": "message_ack", "messageId": message.id, "timestamp": now_iso()}


def new_message(message: ChatMessage, sender_profile: UserProfile | None = None) -> dict[str, Any]:
    envelope: dict[str, Any] = {
        "type": "new_message",
        "message": message.to_dict(),
        "timestamp": now_iso(),
    }
    if sender_profile is not None:
        envelope["senderProfile"] = sender_profile.to_dict()
    return envelope


def history(
    user_id: str,
    chat_category: str,
    ticket_id: str | None,
    messages: Iterable[ChatMessage],
) -> dict[str, Any]:
    items = [m.to_dict() for m in messages]
    return {
        "type": "history",
        "userId": user_id,
        "chatCategory": chat_category,
        "ticketId": ticket_id,
        "messages": items,
        "count": len(items),
        "timestamp": now_iso(),
    }


def ticket_ack(ticket: SupportTicket) -> dict[str, Any]:
    return {"type": "ticket_ack", "ticket": ticket.to_dict(), "timestamp": now_iso()}


def new_ticket(ticket: SupportTicket, user_profile: UserProfile | None) -> dict[str, Any]:
    return {
        "type": "new_ticket",
        "ticket": ticket.to_dict(),
        "userProfile": user_profile.to_dict() if user_profile else None,
        "timestamp": now_iso(),
    }


def resolution_ack(ticket_id: str) -> dict[str, Any]:
    return {"type": "resolution_ack", "success": True, "ticketId": ticket_id, "timestamp": now_iso()}


def ticket_resolved(ticket_id: str) -> dict[str, Any]:
    return {"type": "ticket_resolved", "ticketId": ticket_id, "timestamp": now_iso()}


def mark_read_ack(count: int) -> dict[str, Any]:
    return {"type": "mark_read_ack", "success": True, "count": count, "timestamp": now_iso()}


def active_conversations(
    chat_category: str,
    conversations: Iterable[ConversationSummary],
) -> dict[str, Any]:
    items = [c.to_dict() for c in conversations]
    return {
        "type": "active_conversations",
        "chatCategory": chat_category,
        "count": len(items),
        "conversations": items,
        "timestamp": now_iso(),
    }


def order_completed_ack(order_id: str) -> dict[str, Any]:
    return {"type": "order_completed_ack", "success": True, "orderId": order_id, "timestamp": now_iso()}


def order_completed(order_id: str) -> dict[str, Any]:
    return {"type": "order_completed", "orderId": order_id, "timestamp": now_iso()}


def error(message: str, code: str = "VALIDATION") -> dict[str, Any]:
    return {"type": "error", "message": message, "code": code, "timestamp": now_iso()}


def ping() -> dict[str, Any]:
    return {"type": "ping", "timestamp": now_iso()}
