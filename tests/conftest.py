"""
Pytest configuration and shared fixtures for MDB_WRAPPER tests.

This module provides:
- A fake connection handle with scripted connect failures
- Mock transports and sessions
- An engine builder with fast (non-sleeping) reconnection
"""

import asyncio
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from mdb_wrapper.config import RetrySettings
from mdb_wrapper.database.collection import CollectionWrapper
from mdb_wrapper.database.connection import ReconnectionCoordinator
from mdb_wrapper.database.engine import ExecutionEngine
from mdb_wrapper.database.errors import ErrorClassifier, ErrorSanitizer

# ============================================================================
# CONNECTION FIXTURES
# ============================================================================


class FakeHandle:
    """Connection handle whose connect() can be scripted to fail."""

    name = "fake"

    def __init__(self, failures: list[BaseException] | None = None, connect_delay: float = 0.0):
        self.failures = list(failures or [])
        self.connect_delay = connect_delay
        self.connect_calls = 0
        self.close_calls = 0
        self.connected = True
        self.on_connect = None

    async def connect(self) -> None:
        self.connect_calls += 1
        if self.connect_delay:
            await asyncio.sleep(self.connect_delay)
        if self.failures:
            raise self.failures.pop(0)
        self.connected = True
        if self.on_connect is not None:
            self.on_connect()

    async def close(self) -> None:
        self.close_calls += 1
        self.connected = False


@pytest.fixture
def handle_factory():
    """Factory for fake handles with scripted failures."""
    return FakeHandle


@pytest.fixture
def fake_handle() -> FakeHandle:
    """Provide a healthy fake connection handle."""
    return FakeHandle()


@pytest.fixture
def fast_sleep() -> AsyncMock:
    """Replacement for asyncio.sleep that records delays without waiting."""
    return AsyncMock()


@pytest.fixture
def coordinator(fast_sleep) -> ReconnectionCoordinator:
    """Coordinator with default settings and no real backoff sleeps."""
    return ReconnectionCoordinator(RetrySettings(), sleep=fast_sleep)


# ============================================================================
# ENGINE FIXTURES
# ============================================================================


@pytest.fixture
def on_error() -> AsyncMock:
    return AsyncMock()


@pytest.fixture
def make_engine(fake_handle, coordinator, on_error):
    """Factory building an ExecutionEngine around the shared fakes."""

    def _make(collection: str = "users", **overrides: Any) -> ExecutionEngine:
        classifier = overrides.pop("classifier", ErrorClassifier())
        values = {
            "collection": collection,
            "database": "test_db",
            "handle": fake_handle,
            "coordinator": coordinator,
            "classifier": classifier,
            "sanitizer": ErrorSanitizer(collection, "test_db", classifier, on_error=on_error),
        }
        values.update(overrides)
        return ExecutionEngine(**values)

    return _make


# ============================================================================
# TRANSPORT FIXTURES
# ============================================================================


@pytest.fixture
def mock_transport() -> MagicMock:
    """Transport double with session support and async operations."""
    transport = MagicMock()
    transport.name = "driver"
    transport.supports_sessions = True
    for method in (
        "find_one",
        "find",
        "count",
        "distinct",
        "aggregate",
        "insert_one",
        "insert_many",
        "update_one",
        "update_many",
        "delete_one",
        "delete_many",
        "find_one_and_update",
        "bulk_write",
        "get_collection",
        "start_session",
    ):
        setattr(transport, method, AsyncMock())
    transport.find_one.return_value = None
    transport.find.return_value = []
    return transport


@pytest.fixture
def mock_session() -> MagicMock:
    """Client session double in transaction-capable state."""
    session = MagicMock()
    session.start_transaction = MagicMock()
    session.commit_transaction = AsyncMock()
    session.abort_transaction = AsyncMock()
    session.end_session = AsyncMock()
    session.in_transaction = True
    return session


@pytest.fixture
def make_collection(mock_transport, make_engine):
    """Factory building CollectionWrapper instances on the mock transport."""

    def _make(name: str = "users", engine: ExecutionEngine | None = None, **kwargs: Any):
        def sibling(other: str) -> CollectionWrapper:
            return CollectionWrapper(
                other, mock_transport, make_engine(other), sibling_factory=sibling
            )

        kwargs.setdefault("sibling_factory", sibling)
        return CollectionWrapper(name, mock_transport, engine or make_engine(name), **kwargs)

    return _make
