"""
Connection handles and single-flight reconnection.

A connection handle owns the client object of one transport and is shared by
every collection created from the same ``create_db`` factory. It is only
closed and reopened by the ``ReconnectionCoordinator``.

The coordinator keeps a small registry mapping handle -> in-flight
reconnection task. Concurrent callers that hit a retryable failure at the
same moment await the same task instead of each tearing down and rebuilding
the connection.

This module is part of MDB_WRAPPER.
"""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from typing import Any, Protocol

import httpx
from motor.motor_asyncio import AsyncIOMotorClient
from pymongo.errors import ConnectionFailure, ServerSelectionTimeoutError
from tenacity import (
    AsyncRetrying,
    RetryError,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from ..config import RetrySettings
from ..constants import DEFAULT_HTTP_TIMEOUT_S, DEFAULT_SERVER_SELECTION_TIMEOUT_MS, DRIVER_URI_OPTIONS
from ..exceptions import ReconnectionError
from ..observability import get_logger as get_contextual_logger

logger = logging.getLogger(__name__)
contextual_logger = get_contextual_logger(__name__)


class ConnectionHandle(Protocol):
    """A shared, reconnectable client of one transport."""

    name: str

    @property
    def connected(self) -> bool: ...

    async def connect(self) -> None: ...

    async def close(self) -> None: ...


def with_driver_options(connection_string: str) -> str:
    """Append the write-safety options to a connection string."""
    separator = "&" if "?" in connection_string else "?"
    return f"{connection_string}{separator}{DRIVER_URI_OPTIONS}"


class MotorConnectionHandle:
    """
    Owns the ``AsyncIOMotorClient`` used by the driver transport.

    The client is created lazily on first use and verified with a ping.
    """

    name = "driver"

    def __init__(
        self,
        connection_string: str,
        server_selection_timeout_ms: int = DEFAULT_SERVER_SELECTION_TIMEOUT_MS,
        client_factory: Callable[..., Any] = AsyncIOMotorClient,
    ) -> None:
        self.connection_string = connection_string
        self.server_selection_timeout_ms = server_selection_timeout_ms
        self._client_factory = client_factory
        self._client: Any = None
        self._lock = asyncio.Lock()

    @property
    def connected(self) -> bool:
        return self._client is not None

    async def connect(self) -> None:
        """
        Create a new client and verify it with a ping.

        Raises:
            ConnectionFailure: If the server cannot be reached
        """
        client = self._client_factory(
            with_driver_options(self.connection_string),
            serverSelectionTimeoutMS=self.server_selection_timeout_ms,
            appname="MDB_WRAPPER",
        )
        try:
            await client.admin.command("ping")
        except (ConnectionFailure, ServerSelectionTimeoutError):
            client.close()
            raise
        self._client = client
        logger.info("MongoDB client connected")

    async def close(self) -> None:
        """Close the current client. Safe to call when already closed."""
        client, self._client = self._client, None
        if client is not None:
            client.close()
            logger.info("MongoDB client closed")

    async def get_client(self) -> Any:
        """Return the connected client, connecting on first use."""
        if self._client is None:
            async with self._lock:
                if self._client is None:
                    await self.connect()
        return self._client

    async def start_session(self) -> Any:
        """Start a client session on the shared client."""
        client = await self.get_client()
        return await client.start_session()


class HttpConnectionHandle:
    """
    Owns the ``httpx.AsyncClient`` used by the Data API transport.

    The endpoint is stateless, so connecting only builds a new client.
    """

    name = "data_api"

    def __init__(
        self,
        api_url: str,
        api_key: str | None = None,
        timeout_s: float = DEFAULT_HTTP_TIMEOUT_S,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.api_url = api_url.rstrip("/")
        self.api_key = api_key
        self.timeout_s = timeout_s
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    @property
    def connected(self) -> bool:
        return self._client is not None

    async def connect(self) -> None:
        headers = {
            "content-type": "application/ejson",
            "accept": "application/ejson",
            "access-control-request-headers": "*",
        }
        if self.api_key:
            headers["api-key"] = self.api_key
        self._client = httpx.AsyncClient(
            base_url=self.api_url,
            headers=headers,
            timeout=self.timeout_s,
            transport=self._transport,
        )

    async def close(self) -> None:
        client, self._client = self._client, None
        if client is not None:
            await client.aclose()

    async def get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            await self.connect()
        return self._client


class ReconnectionCoordinator:
    """
    Single-flight, exponential-backoff reconnection of connection handles.

    Procedure (up to ``max_retries + 1`` attempts): close the handle, ignoring
    close failures, then connect. Attempts after the first are preceded by a
    delay of ``initial_delay * backoff_multiplier ** (n - 1)`` where ``n`` is
    the number of failed attempts so far, capped at ``max_delay``.

    Example:
        coordinator = ReconnectionCoordinator(RetrySettings(max_retries=3))
        await coordinator.reconnect(handle)
    """

    def __init__(
        self,
        settings: RetrySettings | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.settings = settings or RetrySettings()
        self._sleep = sleep
        self._in_flight: dict[ConnectionHandle, asyncio.Task] = {}

    def in_flight(self, handle: ConnectionHandle) -> bool:
        """Return True if a reconnection is currently running for ``handle``."""
        return handle in self._in_flight

    async def reconnect(self, handle: ConnectionHandle) -> None:
        """
        Reconnect ``handle``, sharing any reconnection already in flight.

        Raises:
            ReconnectionError: If every attempt failed
        """
        task = self._in_flight.get(handle)
        if task is None:
            task = asyncio.ensure_future(self._reconnect(handle))
            self._in_flight[handle] = task
            task.add_done_callback(lambda done: self._forget(handle, done))
        else:
            logger.debug(f"Joining in-flight reconnection of {handle.name} handle")

        # One cancelled waiter must not cancel the shared reconnection
        await asyncio.shield(task)

    def _forget(self, handle: ConnectionHandle, task: asyncio.Task) -> None:
        if self._in_flight.get(handle) is task:
            del self._in_flight[handle]
        if not task.cancelled():
            # Mark the exception retrieved; waiters re-raise it themselves
            task.exception()

    async def _close_quietly(self, handle: ConnectionHandle) -> None:
        try:
            await handle.close()
        except Exception as e:
            # It may already be closed
            logger.debug(f"Ignoring close failure on {handle.name} handle: {e}")

    async def _attempt(self, handle: ConnectionHandle) -> None:
        await self._close_quietly(handle)
        await handle.connect()

    async def _reconnect(self, handle: ConnectionHandle) -> None:
        settings = self.settings
        attempts = settings.max_retries + 1
        start_time = time.time()

        contextual_logger.warning(
            "Reconnecting connection handle",
            extra={"handle": handle.name, "max_attempts": attempts},
        )

        retrying = AsyncRetrying(
            stop=stop_after_attempt(attempts),
            wait=wait_exponential(
                multiplier=settings.initial_delay_ms / 1000,
                exp_base=settings.backoff_multiplier,
                max=settings.max_delay_ms / 1000,
            ),
            retry=retry_if_exception_type(Exception),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            sleep=self._sleep,
            reraise=False,
        )

        try:
            async for attempt in retrying:
                with attempt:
                    await self._attempt(handle)
        except RetryError as e:
            last_error = e.last_attempt.exception()
            contextual_logger.error(
                "Reconnection failed",
                extra={
                    "handle": handle.name,
                    "attempts": attempts,
                    "error_type": type(last_error).__name__,
                    "duration_ms": round((time.time() - start_time) * 1000, 2),
                },
            )
            raise ReconnectionError(attempts, last_error) from last_error

        contextual_logger.info(
            "Reconnection succeeded",
            extra={
                "handle": handle.name,
                "duration_ms": round((time.time() - start_time) * 1000, 2),
            },
        )
