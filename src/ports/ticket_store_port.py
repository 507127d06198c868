"""TicketStorePort - Support ticket ("asunto") persistence interface.

Tickets are created open by customers and resolved by admins; ``resolved``
is terminal. A user's active ticket is the most recently opened open one.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

from src.shared.types import TicketPriority

if TYPE_CHECKING:
    from src.shared.types import SupportTicket


class TicketStorePort(ABC):
    """Port: support ticket lifecycle operations."""

    @abstractmethod
    async def create(
        self,
        *,
        user_id: str,
        title: str,
        description: str,
        priority: str = TicketPriority.MEDIUM,
    ) -> SupportTicket:
        """Persist a new open ticket."""

    @abstractmethod
    async def get(self, ticket_id: str) -> SupportTicket | None:
        """Return a ticket by id."""

    @abstractmethod
    async def find_active_open(self, user_id: str) -> SupportTicket | None:
        """Return the user's most recently opened open ticket, if any."""

    @abstractmethod
    async def resolve(self, ticket_id: str, user_id: str) -> SupportTicket | None:
        """Transition an open ticket owned by ``user_id`` to resolved.

        Returns the resolved ticket, or None when the ticket does not exist,
        belongs to another user, or is already resolved.
        """

    @abstractmethod
    async def list(self, user_id: str, status: str | None = None) -> list[SupportTicket]:
        """List a user's tickets, newest first, optionally by status."""

    @abstractmethod
    async def list_all_open(self) -> list[SupportTicket]:
        """List every open ticket across users, oldest first."""
