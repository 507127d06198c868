"""User directory adapters.

Provides:
- InMemoryUserDirectory: dict-backed directory (tests / dev seeding)
- PgUserDirectory: reads the users table via SQLAlchemy async
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import sqlalchemy as sa

from src.infra.models import User
from src.ports.user_directory_port import UserDirectoryPort
from src.shared.types import UserProfile

if TYPE_CHECKING:
    from collections.abc import Iterable

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker


class InMemoryUserDirectory(UserDirectoryPort):
    def __init__(self, profiles: Iterable[UserProfile] = ()) -> None:
        self._profiles = {p.user_id: p for p in profiles}

    def add(self, profile: UserProfile) -> None:
        self._profiles[profile.user_id] = profile

    async def get_profile(self, user_id: str) -> UserProfile | None:
        return self._profiles.get(user_id)


class PgUserDirectory(UserDirectoryPort):
    """Profile lookup over the users table."""

    def __init__(self, *, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def get_profile(self, user_id: str) -> UserProfile | None:
        stmt = sa.select(User).where(User.id == user_id)
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            row = result.scalar_one_or_none()
        if row is None:
            return None
        return UserProfile(
            user_id=row.id,
            name=row.display_name or row.email.split("@", 1)[0],
            email=row.email,
            is_admin=row.is_admin,
        )
