"""Support ticket ("asunto") store adapters.

Provides:
- InMemoryTicketStore: dict-backed store (tests / single-process dev)
- PgTicketStore: SQLAlchemy async store over the support_tickets table

Lifecycle: open -> resolved. ``resolved`` is terminal; resolving is
ownership-checked and a second resolve returns None.
"""

from __future__ import annotations

import dataclasses
import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING
from uuid import UUID, uuid4

import sqlalchemy as sa

from src.infra.models import SupportTicketModel
from src.ports.ticket_store_port import TicketStorePort
from src.shared.errors import ValidationError
from src.shared.types import SupportTicket, TicketPriority, TicketStatus

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

logger = logging.getLogger(__name__)


def _check_priority(priority: str) -> None:
    if priority not in TicketPriority.ALL:
        msg = f"Unknown ticket priority: {priority!r}"
        raise ValidationError(msg, field="priority")


def _is_uuid(value: str) -> bool:
    try:
        UUID(value)
    except (TypeError, ValueError):
        return False
    return True


class InMemoryTicketStore(TicketStorePort):
    """In-memory ticket store.

    A per-store sequence number breaks ties between tickets opened within
    the same clock tick.
    """

    def __init__(self) -> None:
        self._tickets: dict[str, SupportTicket] = {}
        self._order: dict[str, int] = {}

    def _by_recency(self, tickets: list[SupportTicket], *, newest_first: bool) -> list[SupportTicket]:
        return sorted(
            tickets,
            key=lambda t: (t.opened_at, self._order[t.id]),
            reverse=newest_first,
        )

    async def create(
        self,
        *,
        user_id: str,
        title: str,
        description: str,
        priority: str = TicketPriority.MEDIUM,
    ) -> SupportTicket:
        _check_priority(priority)
        ticket = SupportTicket(
            id=str(uuid4()),
            user_id=user_id,
            title=title,
            description=description,
            opened_at=datetime.now(UTC),
            priority=priority,
        )
        self._tickets[ticket.id] = ticket
        self._order[ticket.id] = len(self._order)
        return ticket

    async def get(self, ticket_id: str) -> SupportTicket | None:
        return self._tickets.get(ticket_id)

    async def find_active_open(self, user_id: str) -> SupportTicket | None:
        open_tickets = [t for t in self._tickets.values() if t.user_id == user_id and t.is_open]
        if not open_tickets:
            return None
        return self._by_recency(open_tickets, newest_first=True)[0]

    async def resolve(self, ticket_id: str, user_id: str) -> SupportTicket | None:
        ticket = self._tickets.get(ticket_id)
        if ticket is None or ticket.user_id != user_id or not ticket.is_open:
            return None
        resolved = dataclasses.replace(
            ticket,
            status=TicketStatus.RESOLVED,
            resolved_at=datetime.now(UTC),
        )
        self._tickets[ticket_id] = resolved
        return resolved

    async def list(self, user_id: str, status: str | None = None) -> list[SupportTicket]:
        tickets = [
            t
            for t in self._tickets.values()
            if t.user_id == user_id and (status is None or t.status == status)
        ]
        return self._by_recency(tickets, newest_first=True)

    async def list_all_open(self) -> list[SupportTicket]:
        return self._by_recency(
            [t for t in self._tickets.values() if t.is_open],
            newest_first=False,
        )


class PgTicketStore(TicketStorePort):
    """PostgreSQL-backed ticket store using SQLAlchemy.

    ``resolve`` is a single conditional UPDATE so two admins resolving the
    same ticket cannot both succeed.
    """

    def __init__(self, *, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def create(
        self,
        *,
        user_id: str,
        title: str,
        description: str,
        priority: str = TicketPriority.MEDIUM,
    ) -> SupportTicket:
        _check_priority(priority)
        ticket = SupportTicket(
            id=str(uuid4()),
            user_id=user_id,
            title=title,
            description=description,
            opened_at=datetime.now(UTC),
            priority=priority,
        )
        model = SupportTicketModel(
            id=ticket.id,
            user_id=ticket.user_id,
            title=ticket.title,
            description=ticket.description,
            priority=ticket.priority,
            status=ticket.status,
            opened_at=ticket.opened_at,
        )
        async with self._session_factory() as session:
            session.add(model)
            await session.commit()
        logger.info("Ticket opened: id=%s user=%s priority=%s", ticket.id, user_id, priority)
        return ticket

    async def get(self, ticket_id: str) -> SupportTicket | None:
        if not _is_uuid(ticket_id):
            return None
        stmt = sa.select(SupportTicketModel).where(SupportTicketModel.id == ticket_id)
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            row = result.scalar_one_or_none()
        if row is None:
            return None
        return _row_to_ticket(row)

    async def find_active_open(self, user_id: str) -> SupportTicket | None:
        stmt = (
            sa.select(SupportTicketModel)
            .where(
                SupportTicketModel.user_id == user_id,
                SupportTicketModel.status == TicketStatus.OPEN,
            )
            .order_by(SupportTicketModel.opened_at.desc())
            .limit(1)
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            row = result.scalar_one_or_none()
        if row is None:
            return None
        return _row_to_ticket(row)

    async def resolve(self, ticket_id: str, user_id: str) -> SupportTicket | None:
        if not _is_uuid(ticket_id):
            return None
        stmt = (
            sa.update(SupportTicketModel)
            .where(
                SupportTicketModel.id == ticket_id,
                SupportTicketModel.user_id == user_id,
                SupportTicketModel.status == TicketStatus.OPEN,
            )
            .values(status=TicketStatus.RESOLVED, resolved_at=datetime.now(UTC))
            .returning(SupportTicketModel)
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            row = result.scalar_one_or_none()
            await session.commit()
        if row is None:
            return None
        logger.info("Ticket resolved: id=%s user=%s", ticket_id, user_id)
        return _row_to_ticket(row)

    async def list(self, user_id: str, status: str | None = None) -> list[SupportTicket]:
        stmt = sa.select(SupportTicketModel).where(SupportTicketModel.user_id == user_id)
        if status is not None:
            stmt = stmt.where(SupportTicketModel.status == status)
        stmt = stmt.order_by(SupportTicketModel.opened_at.desc())
        async with self._session_factory() as session:
            result = await session.scalars(stmt)
            rows = result.all()
        return [_row_to_ticket(row) for row in rows]

    async def list_all_open(self) -> list[SupportTicket]:
        stmt = (
            sa.select(SupportTicketModel)
            .where(SupportTicketModel.status == TicketStatus.OPEN)
            .order_by(SupportTicketModel.opened_at)
        )
        async with self._session_factory() as session:
            result = await session.scalars(stmt)
            rows = result.all()
        return [_row_to_ticket(row) for row in rows]


def _row_to_ticket(row: SupportTicketModel) -> SupportTicket:
    """Convert an ORM row to domain SupportTicket."""
    return SupportTicket(
        id=str(row.id),
        user_id=row.user_id,
        title=row.title,
        description=row.description,
        opened_at=row.opened_at,
        priority=row.priority,
        status=row.status,
        resolved_at=row.resolved_at,
    )
