"""Shared Fake adapters for testing without unittest.mock.

All Fake implementations follow the Port DI adapter pattern:
real Python classes with preset return values, no AsyncMock/MagicMock.
"""

from tests.fakes.connection import FakeConnection
from tests.fakes.session import (
    FakeAsyncSession,
    FakeOrmRow,
    FakeResult,
    FakeScalarsResult,
    FakeSessionFactory,
    compiled_sql,
)

__all__ = [
    "FakeAsyncSession",
    "FakeConnection",
    "FakeOrmRow",
    "FakeResult",
    "FakeScalarsResult",
    "FakeSessionFactory",
    "compiled_sql",
]
