"""Chat relay protocol engine.

Receives decoded frames from live connections, parses them into envelope
models, enforces the per-connection state machine and role permissions,
persists through the store ports and routes outbound envelopes to the live
parties found in the connection registry.

Per connection: UNREGISTERED -> REGISTERED -> CLOSED. Only ``connect``
registers; anything but ``connect`` / ``pong`` before that is answered with
an ``error`` envelope and the connection stays open.

Routing:
- customer -> admins: ``new_message`` fans out to every registered admin
- admin -> customer: delivered to the one target connection, dropped if the
  customer is offline (the message is persisted either way)
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from src.chat.conversations import ConversationService
from src.relay import envelopes, metrics
from src.relay.envelopes import (
    INBOUND_ENVELOPES,
    CompleteOrderEnvelope,
    ConnectEnvelope,
    CreateTicketEnvelope,
    MarkReadEnvelope,
    PongEnvelope,
    RequestActiveConversationsEnvelope,
    RequestHistoryEnvelope,
    ResolveTicketEnvelope,
    SendMessageEnvelope,
    parse_envelope,
)
from src.relay.registry import ConnectionState
from src.shared.errors import (
    AuthorizationError,
    ConflictError,
    NotFoundError,
    ProtocolError,
    ValidationError,
)
from src.shared.logging.error_handler import log_structured_error
from src.shared.types import ChatCategory, PartyRole

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from src.ports.connection_port import ChatConnection
    from src.ports.message_store_port import MessageStorePort
    from src.ports.ticket_store_port import TicketStorePort
    from src.ports.user_directory_port import UserDirectoryPort
    from src.relay.registry import ConnectionEntry, ConnectionRegistry

    Handler = Callable[[ConnectionEntry, Any], Awaitable[None]]

logger = logging.getLogger(__name__)

PERSISTENCE_ERROR = "PERSISTENCE"

# Errors answered to the sender as-is; anything else is a persistence failure.
_REJECTIONS = (ValidationError, AuthorizationError, NotFoundError, ConflictError)


class ChatRelay:
    """Single-loop dispatcher for relay envelopes.

    Args:
        registry: Shared connection registry.
        messages: Message store port.
        tickets: Ticket store port.
        users: Optional profile directory for admin-facing envelopes.
        conversations: Read model; built from the stores when omitted.
    """

    def __init__(
        self,
        *,
        registry: ConnectionRegistry,
        messages: MessageStorePort,
        tickets: TicketStorePort,
        users: UserDirectoryPort | None = None,
        conversations: ConversationService | None = None,
    ) -> None:
        self._registry = registry
        self._messages = messages
        self._tickets = tickets
        self._conversations = conversations or ConversationService(
            messages=messages,
            tickets=tickets,
            users=users,
        )
        self._handlers: dict[type, Handler] = {
            ConnectEnvelope: self._on_connect,
            SendMessageEnvelope: self._on_send_message,
            RequestHistoryEnvelope: self._on_request_history,
            CreateTicketEnvelope: self._on_create_ticket,
            ResolveTicketEnvelope: self._on_resolve_ticket,
            MarkReadEnvelope: self._on_mark_read,
            RequestActiveConversationsEnvelope: self._on_request_active_conversations,
            CompleteOrderEnvelope: self._on_complete_order,
            PongEnvelope: self._on_pong,
        }
        missing = set(INBOUND_ENVELOPES) - set(self._handlers)
        unknown = set(self._handlers) - set(INBOUND_ENVELOPES)
        if missing or unknown:
            msg = (
                "Envelope handler table out of sync: "
                f"missing={sorted(c.__name__ for c in missing)} "
                f"unknown={sorted(c.__name__ for c in unknown)}"
            )
            raise RuntimeError(msg)

    @property
    def registry(self) -> ConnectionRegistry:
        return self._registry

    # -- Connection lifecycle --

    def open(
        self,
        connection: ChatConnection,
        *,
        verified_user_id: str | None = None,
        verified_role: str | None = None,
    ) -> ConnectionEntry:
        """Track an accepted connection (state UNREGISTERED)."""
        entry = self._registry.attach(
            connection,
            verified_user_id=verified_user_id,
            verified_role=verified_role,
        )
        logger.info(
            "Relay connection opened id=%s verified_user=%s",
            connection.connection_id,
            verified_user_id,
        )
        return entry

    def close(self, connection_id: str) -> None:
        """Forget a connection after its transport closed. Idempotent."""
        if self._registry.unregister(connection_id):
            logger.info("Relay connection closed id=%s", connection_id)

    # -- Dispatch --

    async def handle(self, connection_id: str, raw: Any) -> None:
        """Process one inbound frame to completion."""
        entry = self._registry.entry(connection_id)
        if entry is None:
            logger.warning("Frame from unknown or closed connection id=%s", connection_id)
            return

        try:
            envelope = parse_envelope(raw)
        except ProtocolError as exc:
            metrics.ENVELOPES_TOTAL.labels(
                type=exc.envelope_type or "unknown",
                outcome=metrics.OUTCOME_REJECTED,
            ).inc()
            await self._send(entry.connection, envelopes.error(str(exc), exc.code))
            return

        envelope_type = envelope.type
        if entry.state is not ConnectionState.REGISTERED and not isinstance(
            envelope, (ConnectEnvelope, PongEnvelope)
        ):
            metrics.ENVELOPES_TOTAL.labels(type=envelope_type, outcome=metrics.OUTCOME_REJECTED).inc()
            rejection = ProtocolError("Connection is not registered; send connect first", envelope_type)
            await self._send(entry.connection, envelopes.error(str(rejection), rejection.code))
            return

        handler = self._handlers[type(envelope)]
        try:
            await handler(entry, envelope)
        except _REJECTIONS as exc:
            metrics.ENVELOPES_TOTAL.labels(type=envelope_type, outcome=metrics.OUTCOME_REJECTED).inc()
            logger.info(
                "Envelope rejected type=%s connection=%s code=%s: %s",
                envelope_type,
                connection_id,
                exc.code,
                exc,
            )
            await self._send(entry.connection, envelopes.error(str(exc), exc.code))
        except Exception as exc:
            metrics.ENVELOPES_TOTAL.labels(type=envelope_type, outcome=metrics.OUTCOME_FAILED).inc()
            log_structured_error(
                logger,
                exc,
                error_code=PERSISTENCE_ERROR,
                connection_id=connection_id,
                envelope_type=envelope_type,
                user_id=entry.user_id or "",
            )
            await self._send(
                entry.connection,
                envelopes.error(f"Could not process {envelope_type}, please retry", PERSISTENCE_ERROR),
            )
        else:
            metrics.ENVELOPES_TOTAL.labels(type=envelope_type, outcome=metrics.OUTCOME_OK).inc()

    # -- Delivery --

    async def _send(self, connection: ChatConnection, data: dict[str, Any]) -> bool:
        """Send one envelope; a dead peer is a no-op."""
        try:
            await connection.send(data)
        except Exception as exc:
            logger.info(
                "Dropped %s for closed connection id=%s (%s)",
                data.get("type"),
                connection.connection_id,
                type(exc).__name__,
            )
            return False
        return True

    async def _broadcast(self, role: str, data: dict[str, Any], *, exclude: str | None = None) -> int:
        delivered = 0
        for party in self._registry.parties_by_role(role):
            if party.connection_id == exclude:
                continue
            if await self._send(party.connection, data):
                delivered += 1
        return delivered

    # -- Identity helpers --

    def _role_of(self, entry: ConnectionEntry, claimed: str | None = None) -> str | None:
        """Registry role, then verified identity, then the envelope's claim."""
        owner = self._registry.resolve_user_by_connection(entry.connection_id)
        if owner is not None:
            party = self._registry.resolve_by_user(owner)
            if party is not None:
                return party.role
        if entry.verified_role is not None:
            return entry.verified_role
        return claimed

    def _acting_user(self, entry: ConnectionEntry) -> str | None:
        return (
            self._registry.resolve_user_by_connection(entry.connection_id)
            or entry.verified_user_id
            or entry.user_id
        )

    def _require_admin(self, entry: ConnectionEntry, action: str) -> None:
        if self._role_of(entry) != PartyRole.ADMIN:
            msg = f"{action} requires admin role"
            raise AuthorizationError(msg)

    def _require_owner_or_admin(self, entry: ConnectionEntry, role: str | None, user_id: str) -> None:
        if role != PartyRole.ADMIN and user_id != self._acting_user(entry):
            msg = f"conversation of user {user_id}"
            raise AuthorizationError(msg)

    # -- Handlers --

    async def _on_connect(self, entry: ConnectionEntry, env: ConnectEnvelope) -> None:
        if entry.is_verified and (
            env.user_id != entry.verified_user_id or env.role != entry.verified_role
        ):
            msg = "connect identity does not match the authenticated user"
            raise AuthorizationError(msg)
        self._registry.register(env.user_id, env.role, entry.connection)
        logger.info(
            "Party registered user=%s role=%s connection=%s",
            env.user_id,
            env.role,
            entry.connection_id,
        )
        await self._send(entry.connection, envelopes.connection_ack(env.user_id, env.role))

    async def _on_send_message(self, entry: ConnectionEntry, env: SendMessageEnvelope) -> None:
        role = self._role_of(entry, claimed=env.role)
        if role is None:
            msg = "Sender role could not be determined"
            raise ValidationError(msg, field="role")
        self._require_owner_or_admin(entry, role, env.user_id)

        ticket_id = None
        if env.chat_category == ChatCategory.SUPPORT:
            active = await self._tickets.find_active_open(env.user_id)
            if active is None:
                msg = f"No open support ticket for user {env.user_id}"
                raise ConflictError(msg)
            if env.ticket_id is not None and env.ticket_id != active.id:
                msg = f"Ticket {env.ticket_id} is not the active open ticket"
                raise ConflictError(msg)
            ticket_id = active.id

        message = await self._messages.append(
            user_id=env.user_id,
            chat_category=env.chat_category,
            body=env.body,
            sender_role=role,
            ticket_id=ticket_id,
            attachments=env.attachments,
        )
        await self._send(entry.connection, envelopes.message_ack(message))

        if role == PartyRole.CUSTOMER:
            profile = await self._conversations.profile(env.user_id)
            await self._broadcast(
                PartyRole.ADMIN,
                envelopes.new_message(message, profile),
                exclude=entry.connection_id,
            )
            return

        target = self._registry.resolve_by_user(env.user_id)
        if target is None or target.connection_id == entry.connection_id:
            logger.debug("User %s offline; message %s left for history", env.user_id, message.id)
            return
        await self._send(target.connection, envelopes.new_message(message))

    async def _on_request_history(self, entry: ConnectionEntry, env: RequestHistoryEnvelope) -> None:
        role = self._role_of(entry)
        self._require_owner_or_admin(entry, role, env.user_id)

        ticket_id = None
        if env.chat_category == ChatCategory.SALES:
            messages = await self._messages.query(env.user_id, ChatCategory.SALES)
        elif env.ticket_id is not None:
            ticket = await self._tickets.get(env.ticket_id)
            if ticket is None or ticket.user_id != env.user_id:
                raise NotFoundError("ticket", env.ticket_id)
            ticket_id = ticket.id
            messages = await self._messages.query(env.user_id, ChatCategory.SUPPORT, ticket_id)
        elif role == PartyRole.ADMIN:
            messages = await self._messages.query(env.user_id, ChatCategory.SUPPORT)
        else:
            active = await self._tickets.find_active_open(env.user_id)
            if active is None:
                messages = []
            else:
                ticket_id = active.id
                messages = await self._messages.query(env.user_id, ChatCategory.SUPPORT, ticket_id)

        await self._send(
            entry.connection,
            envelopes.history(env.user_id, env.chat_category, ticket_id, messages),
        )

    async def _on_create_ticket(self, entry: ConnectionEntry, env: CreateTicketEnvelope) -> None:
        self._require_owner_or_admin(entry, self._role_of(entry), env.user_id)
        ticket = await self._tickets.create(
            user_id=env.user_id,
            title=env.title,
            description=env.description,
            priority=env.priority,
        )
        await self._send(entry.connection, envelopes.ticket_ack(ticket))
        profile = await self._conversations.profile(env.user_id)
        await self._broadcast(
            PartyRole.ADMIN,
            envelopes.new_ticket(ticket, profile),
            exclude=entry.connection_id,
        )

    async def _on_resolve_ticket(self, entry: ConnectionEntry, env: ResolveTicketEnvelope) -> None:
        self._require_admin(entry, "resolve_ticket")
        resolved = await self._tickets.resolve(env.ticket_id, env.user_id)
        if resolved is None:
            existing = await self._tickets.get(env.ticket_id)
            if existing is None or existing.user_id != env.user_id:
                raise NotFoundError("ticket", env.ticket_id)
            msg = f"Ticket {env.ticket_id} is already resolved"
            raise ConflictError(msg)

        await self._send(entry.connection, envelopes.resolution_ack(resolved.id))
        owner = self._registry.resolve_by_user(env.user_id)
        if owner is not None and owner.connection_id != entry.connection_id:
            await self._send(owner.connection, envelopes.ticket_resolved(resolved.id))

    async def _on_mark_read(self, entry: ConnectionEntry, env: MarkReadEnvelope) -> None:
        role = self._role_of(entry)
        self._require_owner_or_admin(entry, role, env.user_id)
        counterpart = PartyRole.CUSTOMER if role == PartyRole.ADMIN else PartyRole.ADMIN
        count = await self._messages.mark_read(
            env.user_id,
            env.chat_category,
            env.ticket_id,
            sender_role=counterpart,
        )
        await self._send(entry.connection, envelopes.mark_read_ack(count))

    async def _on_request_active_conversations(
        self,
        entry: ConnectionEntry,
        env: RequestActiveConversationsEnvelope,
    ) -> None:
        self._require_admin(entry, "request_active_conversations")
        summaries = await self._conversations.active_conversations(env.chat_category)
        await self._send(
            entry.connection,
            envelopes.active_conversations(env.chat_category, summaries),
        )

    async def _on_complete_order(self, entry: ConnectionEntry, env: CompleteOrderEnvelope) -> None:
        self._require_admin(entry, "complete_order")
        await self._send(entry.connection, envelopes.order_completed_ack(env.order_id))
        customer = self._registry.resolve_by_user(env.user_id)
        if customer is not None and customer.connection_id != entry.connection_id:
            await self._send(customer.connection, envelopes.order_completed(env.order_id))

    async def _on_pong(self, entry: ConnectionEntry, env: PongEnvelope) -> None:
        self._registry.mark_answered(entry.connection_id)
