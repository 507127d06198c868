"""Connection registry for the chat relay.

Tracks every accepted connection and, for registered ones, which user they
speak for. Three maps are kept in step:

  connections : connection_id -> ConnectionEntry (all open connections)
  parties     : user_id       -> RegisteredParty (one live slot per user)
  owners      : connection_id -> user_id         (reverse of parties)

A later register() for the same user takes over the slot (last write wins);
the superseded connection stays open but is no longer resolvable. Mutated
only from the event loop, so no locking.

Connection states: UNREGISTERED -> REGISTERED -> CLOSED
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from src.relay import metrics
from src.shared.types import PartyRole

if TYPE_CHECKING:
    from src.ports.connection_port import ChatConnection

logger = logging.getLogger(__name__)


class ConnectionState(enum.Enum):
    UNREGISTERED = "unregistered"
    REGISTERED = "registered"
    CLOSED = "closed"


@dataclass
class ConnectionEntry:
    """Mutable per-connection bookkeeping."""

    connection: ChatConnection
    state: ConnectionState = ConnectionState.UNREGISTERED
    answered: bool = True
    verified_user_id: str | None = None
    verified_role: str | None = None
    # Identity claimed by the last accepted connect; kept after supersession.
    user_id: str | None = None
    role: str | None = None

    @property
    def connection_id(self) -> str:
        return self.connection.connection_id

    @property
    def is_verified(self) -> bool:
        return self.verified_user_id is not None


@dataclass(frozen=True)
class RegisteredParty:
    user_id: str
    role: str
    connection: ChatConnection

    @property
    def connection_id(self) -> str:
        return self.connection.connection_id


class ConnectionRegistry:
    """In-memory registry of live connections and registered parties."""

    def __init__(self) -> None:
        self._connections: dict[str, ConnectionEntry] = {}
        self._parties: dict[str, RegisteredParty] = {}
        self._owners: dict[str, str] = {}

    def __len__(self) -> int:
        return len(self._connections)

    def attach(
        self,
        connection: ChatConnection,
        *,
        verified_user_id: str | None = None,
        verified_role: str | None = None,
    ) -> ConnectionEntry:
        """Track a freshly accepted connection as UNREGISTERED."""
        entry = ConnectionEntry(
            connection=connection,
            verified_user_id=verified_user_id,
            verified_role=verified_role,
        )
        self._connections[connection.connection_id] = entry
        self._refresh_gauges()
        return entry

    def register(self, user_id: str, role: str, connection: ChatConnection) -> RegisteredParty:
        """Bind ``user_id`` to ``connection``, superseding any earlier binding."""
        connection_id = connection.connection_id
        entry = self._connections.get(connection_id)
        if entry is None:
            entry = self.attach(connection)

        # Same connection re-registering as someone else: release its old slot.
        previous_user = self._owners.get(connection_id)
        if previous_user is not None and previous_user != user_id:
            self._release_slot(previous_user, connection_id)

        existing = self._parties.get(user_id)
        if existing is not None and existing.connection_id != connection_id:
            self._owners.pop(existing.connection_id, None)
            logger.info(
                "Registry slot superseded user=%s old=%s new=%s",
                user_id,
                existing.connection_id,
                connection_id,
            )

        party = RegisteredParty(user_id=user_id, role=role, connection=connection)
        self._parties[user_id] = party
        self._owners[connection_id] = user_id
        entry.state = ConnectionState.REGISTERED
        entry.user_id = user_id
        entry.role = role
        self._refresh_gauges()
        return party

    def resolve_by_user(self, user_id: str) -> RegisteredParty | None:
        return self._parties.get(user_id)

    def resolve_user_by_connection(self, connection_id: str) -> str | None:
        return self._owners.get(connection_id)

    def unregister(self, connection_id: str) -> bool:
        """Forget a connection and its slot. Idempotent.

        Returns True if anything was removed. A slot already taken over by
        a newer connection is left alone.
        """
        entry = self._connections.pop(connection_id, None)
        user_id = self._owners.pop(connection_id, None)
        if user_id is not None:
            self._release_slot(user_id, connection_id)
        if entry is not None:
            entry.state = ConnectionState.CLOSED
        removed = entry is not None or user_id is not None
        if removed:
            self._refresh_gauges()
        return removed

    def list_by_role(self, role: str) -> set[str]:
        return {p.user_id for p in self._parties.values() if p.role == role}

    def parties_by_role(self, role: str) -> list[RegisteredParty]:
        return [p for p in self._parties.values() if p.role == role]

    def entry(self, connection_id: str) -> ConnectionEntry | None:
        return self._connections.get(connection_id)

    def open_entries(self) -> list[ConnectionEntry]:
        """Snapshot of open connections, safe to iterate while mutating."""
        return list(self._connections.values())

    def state_of(self, connection_id: str) -> ConnectionState:
        entry = self._connections.get(connection_id)
        return entry.state if entry is not None else ConnectionState.CLOSED

    def mark_answered(self, connection_id: str) -> None:
        entry = self._connections.get(connection_id)
        if entry is not None:
            entry.answered = True

    def _release_slot(self, user_id: str, connection_id: str) -> None:
        party = self._parties.get(user_id)
        if party is not None and party.connection_id == connection_id:
            del self._parties[user_id]

    def _refresh_gauges(self) -> None:
        metrics.OPEN_CONNECTIONS.set(len(self._connections))
        for role in PartyRole.ALL:
            metrics.REGISTERED_PARTIES.labels(role=role).set(len(self.list_by_role(role)))
