"""
Unit tests for connection handles and the ReconnectionCoordinator.

Tests single-flight reconnection, backoff delays, exhaustion and the
driver / Data API handles.
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest
from pymongo.errors import AutoReconnect, ConnectionFailure

from mdb_wrapper.config import RetrySettings
from mdb_wrapper.database.connection import (
    HttpConnectionHandle,
    MotorConnectionHandle,
    ReconnectionCoordinator,
    with_driver_options,
)
from mdb_wrapper.exceptions import ReconnectionError


class TestReconnectionCoordinator:
    """Test reconnection attempts and backoff."""

    @pytest.mark.asyncio
    async def test_first_attempt_succeeds(self, coordinator, fake_handle, fast_sleep):
        await coordinator.reconnect(fake_handle)

        assert fake_handle.close_calls == 1
        assert fake_handle.connect_calls == 1
        fast_sleep.assert_not_awaited()
        assert not coordinator.in_flight(fake_handle)

    @pytest.mark.asyncio
    async def test_backoff_delays(self, fast_sleep, handle_factory):
        settings = RetrySettings(
            max_retries=3, initial_delay_ms=100, max_delay_ms=5000, backoff_multiplier=2.0
        )
        coordinator = ReconnectionCoordinator(settings, sleep=fast_sleep)
        handle = handle_factory(failures=[AutoReconnect(str(i)) for i in range(3)])

        await coordinator.reconnect(handle)

        assert handle.connect_calls == 4
        delays = [call.args[0] for call in fast_sleep.await_args_list]
        assert delays == pytest.approx([0.1, 0.2, 0.4])

    @pytest.mark.asyncio
    async def test_backoff_is_capped(self, fast_sleep, handle_factory):
        settings = RetrySettings(
            max_retries=3, initial_delay_ms=1000, max_delay_ms=1500, backoff_multiplier=2.0
        )
        coordinator = ReconnectionCoordinator(settings, sleep=fast_sleep)
        handle = handle_factory(failures=[AutoReconnect(str(i)) for i in range(3)])

        await coordinator.reconnect(handle)

        delays = [call.args[0] for call in fast_sleep.await_args_list]
        assert delays == pytest.approx([1.0, 1.5, 1.5])

    @pytest.mark.asyncio
    async def test_exhaustion_raises_reconnection_error(self, fast_sleep, handle_factory):
        settings = RetrySettings(max_retries=2, initial_delay_ms=10, max_delay_ms=100)
        coordinator = ReconnectionCoordinator(settings, sleep=fast_sleep)
        handle = handle_factory(failures=[ConnectionFailure(f"down {i}") for i in range(3)])

        with pytest.raises(ReconnectionError) as exc_info:
            await coordinator.reconnect(handle)

        assert handle.connect_calls == 3
        assert exc_info.value.attempts == 3
        assert "down 2" in str(exc_info.value)
        assert not coordinator.in_flight(handle)

    @pytest.mark.asyncio
    async def test_zero_retries_means_one_attempt(self, fast_sleep, handle_factory):
        coordinator = ReconnectionCoordinator(
            RetrySettings(max_retries=0, initial_delay_ms=0, max_delay_ms=0), sleep=fast_sleep
        )
        handle = handle_factory(failures=[ConnectionFailure("down")])

        with pytest.raises(ReconnectionError):
            await coordinator.reconnect(handle)

        assert handle.connect_calls == 1
        fast_sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_close_failures_are_ignored(self, coordinator, handle_factory):
        handle = handle_factory()
        handle.close = AsyncMock(side_effect=ConnectionFailure("already closed"))

        await coordinator.reconnect(handle)

        assert handle.connect_calls == 1

    @pytest.mark.asyncio
    async def test_unexpected_close_errors_are_ignored(self, coordinator, handle_factory):
        handle = handle_factory()
        handle.close = AsyncMock(side_effect=ValueError("client in unexpected state"))

        await coordinator.reconnect(handle)

        assert handle.connect_calls == 1
        handle.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_concurrent_callers_share_one_reconnection(self, coordinator, handle_factory):
        handle = handle_factory(connect_delay=0.01)

        await asyncio.gather(*(coordinator.reconnect(handle) for _ in range(5)))

        assert handle.connect_calls == 1
        assert handle.close_calls == 1
        assert not coordinator.in_flight(handle)

    @pytest.mark.asyncio
    async def test_concurrent_callers_share_failure(self, fast_sleep, handle_factory):
        coordinator = ReconnectionCoordinator(
            RetrySettings(max_retries=0, initial_delay_ms=0, max_delay_ms=0), sleep=fast_sleep
        )
        handle = handle_factory(failures=[ConnectionFailure("down")], connect_delay=0.01)

        results = await asyncio.gather(
            *(coordinator.reconnect(handle) for _ in range(3)), return_exceptions=True
        )

        assert all(isinstance(result, ReconnectionError) for result in results)
        assert handle.connect_calls == 1

    @pytest.mark.asyncio
    async def test_new_reconnection_after_previous_resolved(self, coordinator, handle_factory):
        handle = handle_factory()

        await coordinator.reconnect(handle)
        await coordinator.reconnect(handle)

        assert handle.connect_calls == 2


class TestDriverOptions:
    """Test connection string options."""

    def test_appends_with_question_mark(self):
        assert (
            with_driver_options("mongodb://localhost:27017")
            == "mongodb://localhost:27017?retryWrites=true&w=majority"
        )

    def test_appends_with_ampersand(self):
        assert (
            with_driver_options("mongodb://localhost:27017/?appName=x")
            == "mongodb://localhost:27017/?appName=x&retryWrites=true&w=majority"
        )


class TestMotorConnectionHandle:
    """Test the driver connection handle."""

    @pytest.mark.asyncio
    async def test_connect_pings_server(self):
        client = MagicMock()
        client.admin.command = AsyncMock(return_value={"ok": 1})
        factory = MagicMock(return_value=client)
        handle = MotorConnectionHandle("mongodb://localhost:27017", client_factory=factory)

        assert await handle.get_client() is client

        factory.assert_called_once_with(
            "mongodb://localhost:27017?retryWrites=true&w=majority",
            serverSelectionTimeoutMS=5000,
            appname="MDB_WRAPPER",
        )
        client.admin.command.assert_awaited_once_with("ping")
        assert handle.connected

    @pytest.mark.asyncio
    async def test_connect_failure_closes_client(self):
        client = MagicMock()
        client.admin.command = AsyncMock(side_effect=ConnectionFailure("unreachable"))
        handle = MotorConnectionHandle(
            "mongodb://localhost:27017", client_factory=MagicMock(return_value=client)
        )

        with pytest.raises(ConnectionFailure):
            await handle.connect()

        client.close.assert_called_once()
        assert not handle.connected

    @pytest.mark.asyncio
    async def test_get_client_connects_once(self):
        client = MagicMock()
        client.admin.command = AsyncMock(return_value={"ok": 1})
        factory = MagicMock(return_value=client)
        handle = MotorConnectionHandle("mongodb://localhost:27017", client_factory=factory)

        await asyncio.gather(handle.get_client(), handle.get_client())

        factory.assert_called_once()

    @pytest.mark.asyncio
    async def test_close(self):
        client = MagicMock()
        client.admin.command = AsyncMock(return_value={"ok": 1})
        handle = MotorConnectionHandle(
            "mongodb://localhost:27017", client_factory=MagicMock(return_value=client)
        )
        await handle.connect()

        await handle.close()
        await handle.close()

        client.close.assert_called_once()
        assert not handle.connected


class TestHttpConnectionHandle:
    """Test the Data API connection handle."""

    @pytest.mark.asyncio
    async def test_client_sends_api_key(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["api_key"] = request.headers.get("api-key")
            seen["url"] = str(request.url)
            return httpx.Response(200, json={})

        handle = HttpConnectionHandle(
            "https://data.example.com/app/v1/",
            api_key="secret",
            transport=httpx.MockTransport(handler),
        )

        client = await handle.get_client()
        await client.post("/action/find", content="{}")

        assert seen == {
            "api_key": "secret",
            "url": "https://data.example.com/app/v1/action/find",
        }
        await handle.close()
        assert not handle.connected
