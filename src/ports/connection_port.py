"""ChatConnection - Transport-facing duplex connection interface.

The relay core never touches a WebSocket directly. The gateway wraps each
accepted socket in an object satisfying this protocol; tests use plain
Python fakes.
"""

from __future__ import annotations

from typing import Any, Protocol


class ChatConnection(Protocol):
    """Protocol for one live duplex connection."""

    @property
    def connection_id(self) -> str:
        """Opaque identity generated when the connection was accepted."""
        ...

    async def send(self, data: dict[str, Any]) -> None:
        """Send one envelope. May raise if the peer is gone."""
        ...

    async def close(self, code: int = 1000, reason: str = "") -> None:
        """Close the connection from the server side."""
        ...
