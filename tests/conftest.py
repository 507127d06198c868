"""Root conftest - shared fixtures for all test layers.

Markers:
    @pytest.mark.unit        - No external deps
    @pytest.mark.integration - Needs running services (or builds the full app)
"""

from __future__ import annotations

from uuid import uuid4

import pytest

from src.chat.messages import InMemoryMessageStore
from src.chat.tickets import InMemoryTicketStore
from src.infra.users import InMemoryUserDirectory
from src.shared.types import UserProfile


@pytest.fixture
def sample_user_id() -> str:
    return f"user-{uuid4().hex[:8]}"


@pytest.fixture
def message_store() -> InMemoryMessageStore:
    return InMemoryMessageStore()


@pytest.fixture
def ticket_store() -> InMemoryTicketStore:
    return InMemoryTicketStore()


@pytest.fixture
def user_directory() -> InMemoryUserDirectory:
    return InMemoryUserDirectory(
        [
            UserProfile(user_id="cust-1", name="Ana", email="ana@example.com"),
            UserProfile(user_id="cust-2", name="Bruno", email="bruno@example.com"),
            UserProfile(user_id="admin-1", name="Barista", email="staff@example.com", is_admin=True),
        ]
    )
