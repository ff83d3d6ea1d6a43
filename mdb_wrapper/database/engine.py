"""
Execution engine.

Every collection operation funnels through ``ExecutionEngine.execute``. The
engine decides whether a read is served through the cache primitive, runs
the operation, notifies on successful mutations and, on failure, decides
between a single reconnect-and-retry and a sanitized terminal error.

Flow of one call:

    DISPATCH -> SUCCESS
    DISPATCH -> FAILURE -> CLASSIFY -> RECONNECT -> DISPATCH(retry) -> ...
                                    -> TERMINAL FAILURE

The retry transition is taken at most once per original call.
"""

import logging
import time
from collections.abc import Awaitable, Callable, Sequence
from typing import Any

from ..exceptions import ReconnectionError, WrapperValidationError
from ..observability import get_logger as get_contextual_logger
from ..observability import log_operation, operation_context
from ..types import CacheFunction, OnMutation, ShouldRevalidate, maybe_await
from ..utils.mongo import encode_cache_arg, from_transport, to_transport
from .connection import ConnectionHandle, ReconnectionCoordinator
from .errors import ErrorClassifier, ErrorSanitizer

logger = logging.getLogger(__name__)
contextual_logger = get_contextual_logger(__name__)

Operation = Callable[[], Awaitable[Any]]


class ExecutionEngine:
    """
    Cache, retry and sanitization policy for one collection.

    Engines are cheap; ``bound_to(session)`` returns a copy whose operations
    run inside a transaction. A session-bound engine never reads through the
    cache and never reconnects.
    """

    def __init__(
        self,
        collection: str,
        database: str,
        handle: ConnectionHandle,
        coordinator: ReconnectionCoordinator,
        classifier: ErrorClassifier,
        sanitizer: ErrorSanitizer,
        cache: CacheFunction | None = None,
        on_mutation: OnMutation | None = None,
        should_revalidate: ShouldRevalidate | None = None,
        debug: bool = False,
        session: Any = None,
        pending_mutations: list[tuple["ExecutionEngine", str]] | None = None,
    ) -> None:
        self.collection = collection
        self.database = database
        self.handle = handle
        self.coordinator = coordinator
        self.classifier = classifier
        self.sanitizer = sanitizer
        self.cache = cache
        self.on_mutation = on_mutation
        self.should_revalidate = should_revalidate
        self.debug = debug
        self.session = session
        self.pending_mutations = pending_mutations

    @property
    def in_transaction(self) -> bool:
        return self.session is not None

    def bound_to(
        self,
        session: Any,
        pending_mutations: list[tuple["ExecutionEngine", str]] | None = None,
    ) -> "ExecutionEngine":
        """
        Return an engine with the same collaborators, bound to ``session``.

        Mutation notifications of the bound engine are appended to
        ``pending_mutations`` instead of being sent, so they can be sent once
        the transaction commits.
        """
        return ExecutionEngine(
            collection=self.collection,
            database=self.database,
            handle=self.handle,
            coordinator=self.coordinator,
            classifier=self.classifier,
            sanitizer=self.sanitizer,
            cache=self.cache,
            on_mutation=self.on_mutation,
            should_revalidate=self.should_revalidate,
            debug=self.debug,
            session=session,
            pending_mutations=pending_mutations,
        )

    async def _bypass_cache(self, options: dict[str, Any], is_mutation: bool) -> bool:
        if self.in_transaction or is_mutation or self.cache is None:
            return True
        if options.get("cache") is False:
            return True
        if self.should_revalidate is not None:
            return bool(await maybe_await(self.should_revalidate(self.collection)))
        return False

    async def notify_mutation(self, method: str) -> None:
        """Send ``on_mutation(collection, method)`` if a callback is configured."""
        if self.on_mutation is not None:
            await maybe_await(self.on_mutation(self.collection, method))

    def cache_key(self, method: str, args: Sequence[Any]) -> list[str]:
        """Build ``[method, collection, *encoded_args]``."""
        return [method, self.collection, *(encode_cache_arg(arg) for arg in args)]

    async def _dispatch(
        self,
        method: str,
        operation: Operation,
        args: Sequence[Any],
        options: dict[str, Any],
        is_mutation: bool,
    ) -> Any:
        if await self._bypass_cache(options, is_mutation):
            return await operation()

        async def serialized() -> str:
            return to_transport(await operation())

        cached = self.cache(serialized, self.cache_key(method, args), tags=[self.collection])
        return from_transport(await cached())

    def _log(self, method: str, start_time: float, args: Sequence[Any], outcome: str) -> None:
        if not self.debug:
            return
        log_operation(
            contextual_logger,
            self.collection,
            method,
            outcome,
            (time.time() - start_time) * 1000,
            arguments=list(args),
        )

    async def execute(
        self,
        method: str,
        operation: Operation,
        args: Sequence[Any],
        options: dict[str, Any] | None = None,
        is_mutation: bool = False,
        *,
        retry: bool = False,
    ) -> Any:
        """
        Run ``operation`` under the cache, retry and sanitization policy.

        Args:
            method: Operation name, used for cache keys and notifications
            operation: Zero-argument coroutine factory performing the call
            args: Call arguments (cache key material and error metadata)
            options: Per-call options; ``{"cache": False}`` skips the cache
            is_mutation: True for writes (never cached, triggers on_mutation)
            retry: True on the single retry after a reconnection

        Returns:
            The operation result (deserialized from the cache on the cache path)

        Raises:
            WrapperValidationError: Caller misuse, surfaced unchanged
            DataLayerError: Any store failure (sanitized)
        """
        with operation_context(collection=self.collection, database=self.database):
            return await self._execute(method, operation, args, options or {}, is_mutation, retry)

    async def _execute(
        self,
        method: str,
        operation: Operation,
        args: Sequence[Any],
        options: dict[str, Any],
        is_mutation: bool,
        retry: bool,
    ) -> Any:
        start_time = time.time()

        try:
            result = await self._dispatch(method, operation, args, options, is_mutation)
        except WrapperValidationError:
            self._log(method, start_time, args, "rejected")
            raise
        except Exception as e:
            if not retry and self.classifier.is_retryable(e, self.in_transaction):
                self._log(method, start_time, args, "reconnecting")
                try:
                    await self.coordinator.reconnect(self.handle)
                except ReconnectionError as reconnect_error:
                    raise await self.sanitizer.sanitize(
                        reconnect_error, action=method, arguments=list(args)
                    ) from None
                return await self._execute(method, operation, args, options, is_mutation, True)

            self._log(method, start_time, args, "failure")
            raise await self.sanitizer.sanitize(e, action=method, arguments=list(args)) from None

        self._log(method, start_time, args, "success")

        if is_mutation:
            if self.pending_mutations is not None:
                self.pending_mutations.append((self, method))
            else:
                await self.notify_mutation(method)

        return result
