"""In-memory ticket store tests.

Validates:
- create opens a ticket with a validated priority
- find_active_open returns the most recently opened open ticket
- resolve is ownership-checked and terminal
- list ordering (newest first) and list_all_open ordering (oldest first)
"""

from __future__ import annotations

import pytest

from src.chat.tickets import InMemoryTicketStore
from src.shared.errors import ValidationError
from src.shared.types import TicketPriority, TicketStatus


@pytest.mark.unit
class TestCreate:
    async def test_opens_ticket(self, ticket_store: InMemoryTicketStore) -> None:
        ticket = await ticket_store.create(user_id="cust-1", title="Late", description="Order 5")
        assert ticket.status == TicketStatus.OPEN
        assert ticket.priority == TicketPriority.MEDIUM
        assert ticket.resolved_at is None
        assert await ticket_store.get(ticket.id) == ticket

    async def test_priority(self, ticket_store: InMemoryTicketStore) -> None:
        ticket = await ticket_store.create(
            user_id="cust-1", title="t", description="d", priority=TicketPriority.HIGH
        )
        assert ticket.priority == "high"

    async def test_bad_priority(self, ticket_store: InMemoryTicketStore) -> None:
        with pytest.raises(ValidationError, match="priority"):
            await ticket_store.create(user_id="cust-1", title="t", description="d", priority="urgent")


@pytest.mark.unit
class TestActiveTicket:
    async def test_none_without_tickets(self, ticket_store: InMemoryTicketStore) -> None:
        assert await ticket_store.find_active_open("cust-1") is None

    async def test_newest_open_wins(self, ticket_store: InMemoryTicketStore) -> None:
        await ticket_store.create(user_id="cust-1", title="first", description="d")
        second = await ticket_store.create(user_id="cust-1", title="second", description="d")
        active = await ticket_store.find_active_open("cust-1")
        assert active is not None
        assert active.id == second.id

    async def test_resolved_not_active(self, ticket_store: InMemoryTicketStore) -> None:
        first = await ticket_store.create(user_id="cust-1", title="first", description="d")
        second = await ticket_store.create(user_id="cust-1", title="second", description="d")
        await ticket_store.resolve(second.id, "cust-1")
        active = await ticket_store.find_active_open("cust-1")
        assert active is not None
        assert active.id == first.id

    async def test_other_users_ignored(self, ticket_store: InMemoryTicketStore) -> None:
        await ticket_store.create(user_id="cust-2", title="t", description="d")
        assert await ticket_store.find_active_open("cust-1") is None


@pytest.mark.unit
class TestResolve:
    async def test_resolve(self, ticket_store: InMemoryTicketStore) -> None:
        ticket = await ticket_store.create(user_id="cust-1", title="t", description="d")
        resolved = await ticket_store.resolve(ticket.id, "cust-1")
        assert resolved is not None
        assert resolved.status == TicketStatus.RESOLVED
        assert resolved.resolved_at is not None
        assert resolved.resolved_at >= ticket.opened_at

    async def test_resolve_is_terminal(self, ticket_store: InMemoryTicketStore) -> None:
        ticket = await ticket_store.create(user_id="cust-1", title="t", description="d")
        await ticket_store.resolve(ticket.id, "cust-1")
        assert await ticket_store.resolve(ticket.id, "cust-1") is None

    async def test_resolve_checks_owner(self, ticket_store: InMemoryTicketStore) -> None:
        ticket = await ticket_store.create(user_id="cust-1", title="t", description="d")
        assert await ticket_store.resolve(ticket.id, "cust-2") is None
        stored = await ticket_store.get(ticket.id)
        assert stored is not None
        assert stored.is_open

    async def test_resolve_missing(self, ticket_store: InMemoryTicketStore) -> None:
        assert await ticket_store.resolve("nope", "cust-1") is None


@pytest.mark.unit
class TestListing:
    async def test_list_newest_first(self, ticket_store: InMemoryTicketStore) -> None:
        first = await ticket_store.create(user_id="cust-1", title="a", description="d")
        second = await ticket_store.create(user_id="cust-1", title="b", description="d")
        listed = await ticket_store.list("cust-1")
        assert [t.id for t in listed] == [second.id, first.id]

    async def test_list_by_status(self, ticket_store: InMemoryTicketStore) -> None:
        first = await ticket_store.create(user_id="cust-1", title="a", description="d")
        await ticket_store.create(user_id="cust-1", title="b", description="d")
        await ticket_store.resolve(first.id, "cust-1")

        resolved = await ticket_store.list("cust-1", TicketStatus.RESOLVED)
        assert [t.id for t in resolved] == [first.id]
        assert len(await ticket_store.list("cust-1", TicketStatus.OPEN)) == 1

    async def test_list_all_open_oldest_first(self, ticket_store: InMemoryTicketStore) -> None:
        a = await ticket_store.create(user_id="cust-1", title="a", description="d")
        b = await ticket_store.create(user_id="cust-2", title="b", description="d")
        c = await ticket_store.create(user_id="cust-3", title="c", description="d")
        await ticket_store.resolve(b.id, "cust-2")

        assert [t.id for t in await ticket_store.list_all_open()] == [a.id, c.id]
