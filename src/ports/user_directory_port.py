"""UserDirectoryPort - Read-only lookup of user profiles.

Admin-facing envelopes carry the customer's profile next to new messages
and tickets. Lookups are best-effort: callers treat a failure as "no
profile" and still deliver the envelope.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from src.shared.types import UserProfile


class UserDirectoryPort(ABC):
    """Port: user profile lookup."""

    @abstractmethod
    async def get_profile(self, user_id: str) -> UserProfile | None:
        """Return the profile for a user id, or None if unknown."""
