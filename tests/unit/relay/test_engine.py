"""Chat relay engine tests.

Drives ChatRelay with FakeConnection peers and the in-memory stores.

Validates:
- connection state machine (connect before anything else)
- customer -> all admins fan-out, admin -> one customer delivery
- support messages bound to the active open ticket
- ticket lifecycle, read receipts, order completion
- rejections answered with error envelopes; the connection stays open
- store failures answered with PERSISTENCE errors
- a dead peer never breaks delivery to the others
"""

from __future__ import annotations

from typing import Any

import pytest

from src.chat.messages import InMemoryMessageStore
from src.chat.tickets import InMemoryTicketStore
from src.infra.users import InMemoryUserDirectory
from src.relay.engine import ChatRelay
from src.relay.envelopes import INBOUND_ENVELOPES, PongEnvelope
from src.relay.registry import ConnectionRegistry, ConnectionState
from src.shared.types import ChatCategory, PartyRole, TicketStatus
from tests.fakes import FakeConnection

CUSTOMER = PartyRole.CUSTOMER
ADMIN = PartyRole.ADMIN


class FailingMessageStore(InMemoryMessageStore):
    """Message store whose writes fail, like a database that went away."""

    async def append(self, **kwargs: Any) -> Any:
        msg = "connection refused"
        raise OSError(msg)


@pytest.fixture()
def registry() -> ConnectionRegistry:
    return ConnectionRegistry()


@pytest.fixture()
def relay(
    registry: ConnectionRegistry,
    message_store: InMemoryMessageStore,
    ticket_store: InMemoryTicketStore,
    user_directory: InMemoryUserDirectory,
) -> ChatRelay:
    return ChatRelay(
        registry=registry,
        messages=message_store,
        tickets=ticket_store,
        users=user_directory,
    )


async def _connect(relay: ChatRelay, connection_id: str, user_id: str, role: str) -> FakeConnection:
    conn = FakeConnection(connection_id)
    relay.open(conn, verified_user_id=user_id, verified_role=role)
    await relay.handle(connection_id, {"type": "connect", "userId": user_id, "role": role})
    assert conn.of_type("connection_ack"), conn.sent
    conn.clear()
    return conn


def _error(conn: FakeConnection) -> dict[str, Any]:
    errors = conn.of_type("error")
    assert errors, f"expected an error envelope, got {conn.sent}"
    return errors[-1]


@pytest.mark.unit
class TestHandlerTable:
    def test_builds_without_user_directory(
        self,
        registry: ConnectionRegistry,
        message_store: InMemoryMessageStore,
        ticket_store: InMemoryTicketStore,
    ) -> None:
        relay = ChatRelay(registry=registry, messages=message_store, tickets=ticket_store)
        assert relay.registry is registry

    def test_handler_table_out_of_sync_fails_fast(
        self,
        monkeypatch: pytest.MonkeyPatch,
        message_store: InMemoryMessageStore,
        ticket_store: InMemoryTicketStore,
    ) -> None:
        class TypingEnvelope(PongEnvelope):
            pass

        monkeypatch.setattr("src.relay.engine.INBOUND_ENVELOPES", (*INBOUND_ENVELOPES, TypingEnvelope))
        with pytest.raises(RuntimeError, match="TypingEnvelope"):
            ChatRelay(registry=ConnectionRegistry(), messages=message_store, tickets=ticket_store)


@pytest.mark.unit
class TestConnectionLifecycle:
    async def test_connect_registers_and_acks(self, relay: ChatRelay, registry: ConnectionRegistry) -> None:
        conn = FakeConnection("c-1")
        relay.open(conn, verified_user_id="cust-1", verified_role=CUSTOMER)
        await relay.handle("c-1", {"type": "connect", "userId": "cust-1", "role": "customer"})

        ack = conn.of_type("connection_ack")[0]
        assert ack["userId"] == "cust-1"
        assert ack["role"] == "customer"
        assert registry.state_of("c-1") is ConnectionState.REGISTERED
        assert registry.resolve_user_by_connection("c-1") == "cust-1"

    async def test_legacy_connect(self, relay: ChatRelay, registry: ConnectionRegistry) -> None:
        conn = FakeConnection("c-1")
        relay.open(conn, verified_user_id="cust-1", verified_role=CUSTOMER)
        await relay.handle("c-1", {"tipo": "conectar", "usuarioId": "cust-1", "tipoUsuario": "cliente"})
        assert conn.of_type("connection_ack")
        assert registry.list_by_role(CUSTOMER) == {"cust-1"}

    async def test_envelope_before_connect_rejected(
        self,
        relay: ChatRelay,
        registry: ConnectionRegistry,
        message_store: InMemoryMessageStore,
    ) -> None:
        conn = FakeConnection("c-1")
        relay.open(conn, verified_user_id="cust-1", verified_role=CUSTOMER)
        await relay.handle(
            "c-1",
            {"type": "send_message", "userId": "cust-1", "chatCategory": "sales", "body": "hi"},
        )

        err = _error(conn)
        assert "not registered" in err["message"]
        assert err["code"] == "VALIDATION"
        assert registry.state_of("c-1") is ConnectionState.UNREGISTERED
        assert await message_store.query("cust-1", ChatCategory.SALES) == []

    async def test_pong_before_connect_accepted(self, relay: ChatRelay, registry: ConnectionRegistry) -> None:
        conn = FakeConnection("c-1")
        entry = relay.open(conn)
        entry.answered = False
        await relay.handle("c-1", {"type": "pong"})
        assert conn.sent == []
        assert entry.answered is True

    async def test_connect_must_match_token_identity(self, relay: ChatRelay, registry: ConnectionRegistry) -> None:
        conn = FakeConnection("c-1")
        relay.open(conn, verified_user_id="cust-1", verified_role=CUSTOMER)
        await relay.handle("c-1", {"type": "connect", "userId": "admin-1", "role": "admin"})

        assert _error(conn)["code"] == "AUTH_DENIED"
        assert registry.state_of("c-1") is ConnectionState.UNREGISTERED
        assert registry.list_by_role(ADMIN) == set()

    async def test_customer_cannot_claim_admin_role(self, relay: ChatRelay, registry: ConnectionRegistry) -> None:
        conn = FakeConnection("c-1")
        relay.open(conn, verified_user_id="cust-1", verified_role=CUSTOMER)
        await relay.handle("c-1", {"type": "connect", "userId": "cust-1", "role": "admin"})
        assert _error(conn)["code"] == "AUTH_DENIED"
        assert registry.list_by_role(ADMIN) == set()

    async def test_unverified_connection_registers_claimed_identity(
        self,
        relay: ChatRelay,
        registry: ConnectionRegistry,
    ) -> None:
        conn = FakeConnection("c-1")
        relay.open(conn)
        await relay.handle("c-1", {"type": "connect", "userId": "cust-9", "role": "customer"})
        assert registry.resolve_user_by_connection("c-1") == "cust-9"

    async def test_malformed_frame_keeps_connection(self, relay: ChatRelay, registry: ConnectionRegistry) -> None:
        conn = await _connect(relay, "c-1", "cust-1", CUSTOMER)
        await relay.handle("c-1", {"type": "typing"})
        await relay.handle("c-1", "not-an-object")

        errors = conn.of_type("error")
        assert len(errors) == 2
        assert errors[0]["message"] == "Unknown envelope type: typing"
        assert registry.state_of("c-1") is ConnectionState.REGISTERED
        assert not conn.closed

    async def test_frame_from_unknown_connection_ignored(self, relay: ChatRelay) -> None:
        await relay.handle("ghost", {"type": "pong"})

    async def test_close_unregisters_idempotently(self, relay: ChatRelay, registry: ConnectionRegistry) -> None:
        await _connect(relay, "c-1", "cust-1", CUSTOMER)
        relay.close("c-1")
        relay.close("c-1")
        assert registry.resolve_by_user("cust-1") is None
        assert registry.state_of("c-1") is ConnectionState.CLOSED

    async def test_frame_after_close_ignored(self, relay: ChatRelay) -> None:
        conn = await _connect(relay, "c-1", "cust-1", CUSTOMER)
        relay.close("c-1")
        await relay.handle("c-1", {"type": "request_history", "userId": "cust-1", "chatCategory": "sales"})
        assert conn.sent == []


@pytest.mark.unit
class TestSalesRouting:
    async def test_customer_message_fans_out_to_all_admins(
        self,
        relay: ChatRelay,
        message_store: InMemoryMessageStore,
    ) -> None:
        admin_a = await _connect(relay, "a-1", "admin-1", ADMIN)
        admin_b = await _connect(relay, "a-2", "admin-2", ADMIN)
        customer = await _connect(relay, "c-1", "cust-1", CUSTOMER)
        other_customer = await _connect(relay, "c-2", "cust-2", CUSTOMER)

        await relay.handle(
            "c-1",
            {"type": "send_message", "userId": "cust-1", "chatCategory": "sales", "body": "Beans in stock?"},
        )

        stored = await message_store.query("cust-1", ChatCategory.SALES)
        assert len(stored) == 1
        assert stored[0].sender_role == CUSTOMER
        assert stored[0].ticket_id is None

        ack = customer.of_type("message_ack")[0]
        assert ack["messageId"] == stored[0].id
        for admin in (admin_a, admin_b):
            delivered = admin.of_type("new_message")
            assert len(delivered) == 1
            assert delivered[0]["message"]["body"] == "Beans in stock?"
            assert delivered[0]["senderProfile"]["name"] == "Ana"
        assert customer.of_type("new_message") == []
        assert other_customer.sent == []

    async def test_message_without_admins_is_persisted(
        self,
        relay: ChatRelay,
        message_store: InMemoryMessageStore,
    ) -> None:
        customer = await _connect(relay, "c-1", "cust-1", CUSTOMER)
        await relay.handle(
            "c-1",
            {"type": "send_message", "userId": "cust-1", "chatCategory": "sales", "body": "Anyone?"},
        )
        assert customer.of_type("message_ack")
        assert len(await message_store.query("cust-1", ChatCategory.SALES)) == 1

    async def test_admin_reply_reaches_only_target_customer(
        self,
        relay: ChatRelay,
        message_store: InMemoryMessageStore,
    ) -> None:
        admin = await _connect(relay, "a-1", "admin-1", ADMIN)
        other_admin = await _connect(relay, "a-2", "admin-2", ADMIN)
        customer = await _connect(relay, "c-1", "cust-1", CUSTOMER)
        bystander = await _connect(relay, "c-2", "cust-2", CUSTOMER)

        await relay.handle(
            "a-1",
            {"type": "send_message", "userId": "cust-1", "chatCategory": "sales", "body": "Yes, all roasts."},
        )

        delivered = customer.of_type("new_message")
        assert len(delivered) == 1
        assert delivered[0]["message"]["senderRole"] == "admin"
        assert "senderProfile" not in delivered[0]
        assert admin.of_type("message_ack")
        assert other_admin.sent == []
        assert bystander.sent == []
        stored = await message_store.query("cust-1", ChatCategory.SALES)
        assert stored[0].sender_role == ADMIN

    async def test_admin_reply_to_offline_customer_is_kept(
        self,
        relay: ChatRelay,
        message_store: InMemoryMessageStore,
    ) -> None:
        admin = await _connect(relay, "a-1", "admin-1", ADMIN)
        await relay.handle(
            "a-1",
            {"type": "send_message", "userId": "cust-1", "chatCategory": "sales", "body": "Shipped today"},
        )
        assert admin.of_type("message_ack")
        assert admin.of_type("error") == []
        assert len(await message_store.query("cust-1", ChatCategory.SALES)) == 1

    async def test_sales_message_never_carries_ticket(
        self,
        relay: ChatRelay,
        message_store: InMemoryMessageStore,
        ticket_store: InMemoryTicketStore,
    ) -> None:
        ticket = await ticket_store.create(user_id="cust-1", title="t", description="d")
        await _connect(relay, "c-1", "cust-1", CUSTOMER)
        await relay.handle(
            "c-1",
            {
                "type": "send_message",
                "userId": "cust-1",
                "chatCategory": "sales",
                "body": "Price list?",
                "ticketId": ticket.id,
            },
        )
        stored = await message_store.query("cust-1", ChatCategory.SALES)
        assert stored[0].ticket_id is None

    async def test_customer_cannot_post_for_someone_else(
        self,
        relay: ChatRelay,
        message_store: InMemoryMessageStore,
    ) -> None:
        customer = await _connect(relay, "c-1", "cust-1", CUSTOMER)
        await relay.handle(
            "c-1",
            {"type": "send_message", "userId": "cust-2", "chatCategory": "sales", "body": "spoof"},
        )
        assert _error(customer)["code"] == "AUTH_DENIED"
        assert await message_store.query("cust-2", ChatCategory.SALES) == []

    async def test_superseded_connection_no_longer_receives(self, relay: ChatRelay) -> None:
        admin = await _connect(relay, "a-1", "admin-1", ADMIN)
        old_tab = await _connect(relay, "c-old", "cust-1", CUSTOMER)
        new_tab = await _connect(relay, "c-new", "cust-1", CUSTOMER)

        await relay.handle(
            "a-1",
            {"type": "send_message", "userId": "cust-1", "chatCategory": "sales", "body": "Hello"},
        )
        assert len(new_tab.of_type("new_message")) == 1
        assert old_tab.of_type("new_message") == []
        assert admin.of_type("message_ack")

    async def test_attachments_are_normalized(
        self,
        relay: ChatRelay,
        message_store: InMemoryMessageStore,
    ) -> None:
        await _connect(relay, "c-1", "cust-1", CUSTOMER)
        await relay.handle(
            "c-1",
            {
                "type": "send_message",
                "userId": "cust-1",
                "chatCategory": "sales",
                "attachments": [
                    {
                        "urlCloudinary": "https://cdn.example.com/chat/image/a.png",
                        "publicId": "chat/image/a.png",
                        "tipo": "imagen",
                        "nombreOriginal": "receipt.png",
                    }
                ],
            },
        )
        stored = (await message_store.query("cust-1", ChatCategory.SALES))[0]
        assert stored.body == ""
        assert stored.attachments[0].kind == "image"
        assert stored.attachments[0].original_name == "receipt.png"

    async def test_bad_attachment_rejected(
        self,
        relay: ChatRelay,
        message_store: InMemoryMessageStore,
    ) -> None:
        customer = await _connect(relay, "c-1", "cust-1", CUSTOMER)
        await relay.handle(
            "c-1",
            {
                "type": "send_message",
                "userId": "cust-1",
                "chatCategory": "sales",
                "body": "see file",
                "attachments": [{"url": "https://cdn.example.com/x"}],
            },
        )
        assert _error(customer)["code"] == "VALIDATION"
        assert await message_store.query("cust-1", ChatCategory.SALES) == []

        customer.clear()
        await relay.handle(
            "c-1",
            {
                "type": "send_message",
                "userId": "cust-1",
                "chatCategory": "sales",
                "body": "see file",
                "attachments": [
                    {"url": "https://cdn.example.com/x", "publicId": "p", "kind": "image", "size": "big"},
                ],
            },
        )
        assert _error(customer)["code"] == "VALIDATION"
        assert await message_store.query("cust-1", ChatCategory.SALES) == []


@pytest.mark.unit
class TestSupportRouting:
    async def test_support_message_requires_open_ticket(
        self,
        relay: ChatRelay,
        message_store: InMemoryMessageStore,
    ) -> None:
        customer = await _connect(relay, "c-1", "cust-1", CUSTOMER)
        await relay.handle(
            "c-1",
            {"type": "send_message", "userId": "cust-1", "chatCategory": "support", "body": "Help"},
        )
        err = _error(customer)
        assert err["code"] == "CONFLICT"
        assert "No open support ticket" in err["message"]
        assert await message_store.query("cust-1", ChatCategory.SUPPORT) == []

    async def test_support_message_bound_to_active_ticket(
        self,
        relay: ChatRelay,
        message_store: InMemoryMessageStore,
        ticket_store: InMemoryTicketStore,
    ) -> None:
        ticket = await ticket_store.create(user_id="cust-1", title="Late", description="Order 12")
        admin = await _connect(relay, "a-1", "admin-1", ADMIN)
        await _connect(relay, "c-1", "cust-1", CUSTOMER)

        await relay.handle(
            "c-1",
            {"type": "send_message", "userId": "cust-1", "chatCategory": "support", "body": "Any news?"},
        )

        stored = await message_store.query("cust-1", ChatCategory.SUPPORT)
        assert stored[0].ticket_id == ticket.id
        assert admin.of_type("new_message")[0]["message"]["ticketId"] == ticket.id

    async def test_stale_ticket_id_rejected(
        self,
        relay: ChatRelay,
        message_store: InMemoryMessageStore,
        ticket_store: InMemoryTicketStore,
    ) -> None:
        old = await ticket_store.create(user_id="cust-1", title="Old", description="d")
        await ticket_store.resolve(old.id, "cust-1")
        await ticket_store.create(user_id="cust-1", title="New", description="d")
        customer = await _connect(relay, "c-1", "cust-1", CUSTOMER)

        await relay.handle(
            "c-1",
            {
                "type": "send_message",
                "userId": "cust-1",
                "chatCategory": "support",
                "body": "about the old one",
                "ticketId": old.id,
            },
        )
        assert _error(customer)["code"] == "CONFLICT"
        assert await message_store.query("cust-1", ChatCategory.SUPPORT) == []

    async def test_create_ticket_acks_and_notifies_admins(
        self,
        relay: ChatRelay,
        ticket_store: InMemoryTicketStore,
    ) -> None:
        admin = await _connect(relay, "a-1", "admin-1", ADMIN)
        customer = await _connect(relay, "c-1", "cust-1", CUSTOMER)

        await relay.handle(
            "c-1",
            {
                "type": "create_ticket",
                "userId": "cust-1",
                "title": "Grinder broken",
                "description": "Makes a noise",
                "priority": "high",
            },
        )

        ack = customer.of_type("ticket_ack")[0]
        assert ack["ticket"]["status"] == "open"
        assert ack["ticket"]["priority"] == "high"
        notice = admin.of_type("new_ticket")[0]
        assert notice["ticket"]["id"] == ack["ticket"]["id"]
        assert notice["userProfile"]["name"] == "Ana"
        active = await ticket_store.find_active_open("cust-1")
        assert active is not None
        assert active.id == ack["ticket"]["id"]

    async def test_resolve_requires_admin(
        self,
        relay: ChatRelay,
        ticket_store: InMemoryTicketStore,
    ) -> None:
        ticket = await ticket_store.create(user_id="cust-1", title="t", description="d")
        customer = await _connect(relay, "c-1", "cust-1", CUSTOMER)

        await relay.handle("c-1", {"type": "resolve_ticket", "userId": "cust-1", "ticketId": ticket.id})

        assert _error(customer)["code"] == "AUTH_DENIED"
        stored = await ticket_store.get(ticket.id)
        assert stored is not None
        assert stored.status == TicketStatus.OPEN

    async def test_resolve_notifies_customer(
        self,
        relay: ChatRelay,
        ticket_store: InMemoryTicketStore,
    ) -> None:
        ticket = await ticket_store.create(user_id="cust-1", title="t", description="d")
        admin = await _connect(relay, "a-1", "admin-1", ADMIN)
        customer = await _connect(relay, "c-1", "cust-1", CUSTOMER)

        await relay.handle("a-1", {"type": "resolve_ticket", "userId": "cust-1", "ticketId": ticket.id})

        ack = admin.of_type("resolution_ack")[0]
        assert ack["success"] is True
        assert ack["ticketId"] == ticket.id
        assert customer.of_type("ticket_resolved")[0]["ticketId"] == ticket.id
        assert await ticket_store.find_active_open("cust-1") is None

    async def test_resolve_twice_conflicts(
        self,
        relay: ChatRelay,
        ticket_store: InMemoryTicketStore,
    ) -> None:
        ticket = await ticket_store.create(user_id="cust-1", title="t", description="d")
        admin = await _connect(relay, "a-1", "admin-1", ADMIN)

        await relay.handle("a-1", {"type": "resolve_ticket", "userId": "cust-1", "ticketId": ticket.id})
        await relay.handle("a-1", {"type": "resolve_ticket", "userId": "cust-1", "ticketId": ticket.id})

        assert len(admin.of_type("resolution_ack")) == 1
        assert _error(admin)["code"] == "CONFLICT"

    async def test_resolve_foreign_ticket_not_found(
        self,
        relay: ChatRelay,
        ticket_store: InMemoryTicketStore,
    ) -> None:
        ticket = await ticket_store.create(user_id="cust-2", title="t", description="d")
        admin = await _connect(relay, "a-1", "admin-1", ADMIN)

        await relay.handle("a-1", {"type": "resolve_ticket", "userId": "cust-1", "ticketId": ticket.id})

        assert _error(admin)["code"] == "NOT_FOUND"
        stored = await ticket_store.get(ticket.id)
        assert stored is not None
        assert stored.is_open

    async def test_message_after_resolution_rejected(
        self,
        relay: ChatRelay,
        ticket_store: InMemoryTicketStore,
    ) -> None:
        ticket = await ticket_store.create(user_id="cust-1", title="t", description="d")
        await _connect(relay, "a-1", "admin-1", ADMIN)
        customer = await _connect(relay, "c-1", "cust-1", CUSTOMER)
        await relay.handle("a-1", {"type": "resolve_ticket", "userId": "cust-1", "ticketId": ticket.id})
        customer.clear()

        await relay.handle(
            "c-1",
            {"type": "send_message", "userId": "cust-1", "chatCategory": "support", "body": "thanks"},
        )
        assert _error(customer)["code"] == "CONFLICT"


@pytest.mark.unit
class TestHistory:
    async def test_sales_history_in_order(
        self,
        relay: ChatRelay,
        message_store: InMemoryMessageStore,
    ) -> None:
        for body in ("one", "two", "three"):
            await message_store.append(
                user_id="cust-1",
                chat_category=ChatCategory.SALES,
                body=body,
                sender_role=CUSTOMER,
            )
        customer = await _connect(relay, "c-1", "cust-1", CUSTOMER)

        await relay.handle("c-1", {"type": "request_history", "userId": "cust-1", "chatCategory": "sales"})

        history = customer.of_type("history")[0]
        assert [m["body"] for m in history["messages"]] == ["one", "two", "three"]
        assert history["count"] == 3
        assert history["ticketId"] is None

    async def test_customer_support_history_uses_active_ticket(
        self,
        relay: ChatRelay,
        message_store: InMemoryMessageStore,
        ticket_store: InMemoryTicketStore,
    ) -> None:
        old = await ticket_store.create(user_id="cust-1", title="old", description="d")
        await message_store.append(
            user_id="cust-1",
            chat_category=ChatCategory.SUPPORT,
            body="old issue",
            sender_role=CUSTOMER,
            ticket_id=old.id,
        )
        await ticket_store.resolve(old.id, "cust-1")
        current = await ticket_store.create(user_id="cust-1", title="new", description="d")
        await message_store.append(
            user_id="cust-1",
            chat_category=ChatCategory.SUPPORT,
            body="new issue",
            sender_role=CUSTOMER,
            ticket_id=current.id,
        )
        customer = await _connect(relay, "c-1", "cust-1", CUSTOMER)

        await relay.handle("c-1", {"type": "request_history", "userId": "cust-1", "chatCategory": "support"})

        history = customer.of_type("history")[0]
        assert history["ticketId"] == current.id
        assert [m["body"] for m in history["messages"]] == ["new issue"]

    async def test_customer_support_history_without_ticket_is_empty(self, relay: ChatRelay) -> None:
        customer = await _connect(relay, "c-1", "cust-1", CUSTOMER)
        await relay.handle("c-1", {"type": "request_history", "userId": "cust-1", "chatCategory": "support"})
        history = customer.of_type("history")[0]
        assert history["messages"] == []
        assert history["ticketId"] is None

    async def test_admin_support_history_spans_tickets(
        self,
        relay: ChatRelay,
        message_store: InMemoryMessageStore,
        ticket_store: InMemoryTicketStore,
    ) -> None:
        first = await ticket_store.create(user_id="cust-1", title="a", description="d")
        second = await ticket_store.create(user_id="cust-1", title="b", description="d")
        for ticket in (first, second):
            await message_store.append(
                user_id="cust-1",
                chat_category=ChatCategory.SUPPORT,
                body=ticket.title,
                sender_role=CUSTOMER,
                ticket_id=ticket.id,
            )
        admin = await _connect(relay, "a-1", "admin-1", ADMIN)

        await relay.handle("a-1", {"type": "request_history", "userId": "cust-1", "chatCategory": "support"})

        assert admin.of_type("history")[0]["count"] == 2

    async def test_history_of_foreign_ticket_not_found(
        self,
        relay: ChatRelay,
        ticket_store: InMemoryTicketStore,
    ) -> None:
        foreign = await ticket_store.create(user_id="cust-2", title="t", description="d")
        customer = await _connect(relay, "c-1", "cust-1", CUSTOMER)

        await relay.handle(
            "c-1",
            {
                "type": "request_history",
                "userId": "cust-1",
                "chatCategory": "support",
                "ticketId": foreign.id,
            },
        )
        assert _error(customer)["code"] == "NOT_FOUND"

    async def test_customer_cannot_read_other_history(self, relay: ChatRelay) -> None:
        customer = await _connect(relay, "c-1", "cust-1", CUSTOMER)
        await relay.handle("c-1", {"type": "request_history", "userId": "cust-2", "chatCategory": "sales"})
        assert _error(customer)["code"] == "AUTH_DENIED"


@pytest.mark.unit
class TestReadReceipts:
    async def test_admin_marks_customer_messages(
        self,
        relay: ChatRelay,
        message_store: InMemoryMessageStore,
    ) -> None:
        for _ in range(2):
            await message_store.append(
                user_id="cust-1",
                chat_category=ChatCategory.SALES,
                body="hello?",
                sender_role=CUSTOMER,
            )
        await message_store.append(
            user_id="cust-1",
            chat_category=ChatCategory.SALES,
            body="hi!",
            sender_role=ADMIN,
        )
        admin = await _connect(relay, "a-1", "admin-1", ADMIN)

        await relay.handle("a-1", {"type": "mark_read", "userId": "cust-1", "chatCategory": "sales"})

        assert admin.of_type("mark_read_ack")[0]["count"] == 2
        assert await message_store.count_unread("cust-1", ChatCategory.SALES, sender_role=CUSTOMER) == 0
        assert await message_store.count_unread("cust-1", ChatCategory.SALES, sender_role=ADMIN) == 1

    async def test_customer_marks_admin_messages(
        self,
        relay: ChatRelay,
        message_store: InMemoryMessageStore,
    ) -> None:
        await message_store.append(
            user_id="cust-1",
            chat_category=ChatCategory.SALES,
            body="Your order shipped",
            sender_role=ADMIN,
        )
        customer = await _connect(relay, "c-1", "cust-1", CUSTOMER)

        await relay.handle("c-1", {"type": "mark_read", "userId": "cust-1", "chatCategory": "sales"})

        assert customer.of_type("mark_read_ack")[0]["count"] == 1

    async def test_mark_read_twice_counts_zero(
        self,
        relay: ChatRelay,
        message_store: InMemoryMessageStore,
    ) -> None:
        await message_store.append(
            user_id="cust-1",
            chat_category=ChatCategory.SALES,
            body="hello?",
            sender_role=CUSTOMER,
        )
        admin = await _connect(relay, "a-1", "admin-1", ADMIN)
        await relay.handle("a-1", {"type": "mark_read", "userId": "cust-1", "chatCategory": "sales"})
        await relay.handle("a-1", {"type": "mark_read", "userId": "cust-1", "chatCategory": "sales"})
        counts = [ack["count"] for ack in admin.of_type("mark_read_ack")]
        assert counts == [1, 0]


@pytest.mark.unit
class TestAdminOperations:
    async def test_active_conversations(
        self,
        relay: ChatRelay,
        message_store: InMemoryMessageStore,
        ticket_store: InMemoryTicketStore,
    ) -> None:
        await message_store.append(
            user_id="cust-1",
            chat_category=ChatCategory.SALES,
            body="hi",
            sender_role=CUSTOMER,
        )
        await ticket_store.create(user_id="cust-2", title="t", description="d")
        admin = await _connect(relay, "a-1", "admin-1", ADMIN)

        await relay.handle("a-1", {"type": "request_active_conversations"})

        env = admin.of_type("active_conversations")[0]
        assert env["chatCategory"] == "all"
        assert env["count"] == 2
        pairs = {(c["userId"], c["chatCategory"]) for c in env["conversations"]}
        assert pairs == {("cust-1", "sales"), ("cust-2", "support")}

    async def test_active_conversations_by_category(
        self,
        relay: ChatRelay,
        message_store: InMemoryMessageStore,
        ticket_store: InMemoryTicketStore,
    ) -> None:
        await message_store.append(
            user_id="cust-1",
            chat_category=ChatCategory.SALES,
            body="hi",
            sender_role=CUSTOMER,
        )
        await ticket_store.create(user_id="cust-2", title="t", description="d")
        admin = await _connect(relay, "a-1", "admin-1", ADMIN)

        await relay.handle("a-1", {"type": "request_active_conversations", "chatCategory": "support"})

        env = admin.of_type("active_conversations")[0]
        assert [c["userId"] for c in env["conversations"]] == ["cust-2"]

    async def test_active_conversations_requires_admin(self, relay: ChatRelay) -> None:
        customer = await _connect(relay, "c-1", "cust-1", CUSTOMER)
        await relay.handle("c-1", {"type": "request_active_conversations"})
        assert _error(customer)["code"] == "AUTH_DENIED"

    async def test_complete_order_notifies_customer(self, relay: ChatRelay) -> None:
        admin = await _connect(relay, "a-1", "admin-1", ADMIN)
        customer = await _connect(relay, "c-1", "cust-1", CUSTOMER)

        await relay.handle("a-1", {"type": "complete_order", "userId": "cust-1", "orderId": "o-77"})

        assert admin.of_type("order_completed_ack")[0]["orderId"] == "o-77"
        assert customer.of_type("order_completed")[0]["orderId"] == "o-77"

    async def test_complete_order_for_offline_customer(self, relay: ChatRelay) -> None:
        admin = await _connect(relay, "a-1", "admin-1", ADMIN)
        await relay.handle("a-1", {"type": "complete_order", "userId": "cust-1", "orderId": "o-77"})
        assert admin.of_type("order_completed_ack")
        assert admin.of_type("error") == []

    async def test_complete_order_requires_admin(self, relay: ChatRelay) -> None:
        customer = await _connect(relay, "c-1", "cust-1", CUSTOMER)
        await relay.handle("c-1", {"type": "complete_order", "userId": "cust-1", "orderId": "o-1"})
        assert _error(customer)["code"] == "AUTH_DENIED"


@pytest.mark.unit
class TestFailureIsolation:
    async def test_dead_admin_does_not_block_others(self, relay: ChatRelay) -> None:
        dead = await _connect(relay, "a-dead", "admin-1", ADMIN)
        live = await _connect(relay, "a-live", "admin-2", ADMIN)
        customer = await _connect(relay, "c-1", "cust-1", CUSTOMER)
        dead.fail_send = True

        await relay.handle(
            "c-1",
            {"type": "send_message", "userId": "cust-1", "chatCategory": "sales", "body": "hello"},
        )

        assert customer.of_type("message_ack")
        assert len(live.of_type("new_message")) == 1

    async def test_dead_sender_does_not_raise(
        self,
        relay: ChatRelay,
        message_store: InMemoryMessageStore,
    ) -> None:
        customer = await _connect(relay, "c-1", "cust-1", CUSTOMER)
        customer.fail_send = True
        await relay.handle(
            "c-1",
            {"type": "send_message", "userId": "cust-1", "chatCategory": "sales", "body": "bye"},
        )
        assert len(await message_store.query("cust-1", ChatCategory.SALES)) == 1

    async def test_store_failure_answered_with_persistence_error(
        self,
        registry: ConnectionRegistry,
        ticket_store: InMemoryTicketStore,
    ) -> None:
        relay = ChatRelay(registry=registry, messages=FailingMessageStore(), tickets=ticket_store)
        admin = await _connect(relay, "a-1", "admin-1", ADMIN)
        customer = await _connect(relay, "c-1", "cust-1", CUSTOMER)

        await relay.handle(
            "c-1",
            {"type": "send_message", "userId": "cust-1", "chatCategory": "sales", "body": "hello"},
        )

        err = _error(customer)
        assert err["code"] == "PERSISTENCE"
        assert "send_message" in err["message"]
        assert customer.of_type("message_ack") == []
        assert admin.sent == []
        assert registry.state_of("c-1") is ConnectionState.REGISTERED
