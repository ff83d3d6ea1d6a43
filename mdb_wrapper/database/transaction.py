"""
Transaction scope for the driver transport.

``TransactionScope.run`` opens one client session, starts a transaction,
hands a session-bound copy of the collection to the callback and then
commits (on success) or aborts (on any exception). The session is always
ended.

Writes made inside the transaction are announced to ``on_mutation`` only
after the commit succeeds; an aborted transaction announces nothing.

Operations on the session-bound collection skip the cache and are never
retried after a reconnection, since reconnecting would invalidate the
session.
"""

import logging
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any, TypeVar

from pymongo.errors import PyMongoError

from ..exceptions import TransactionMisuseError
from ..types import maybe_await

if TYPE_CHECKING:
    from .collection import CollectionWrapper

logger = logging.getLogger(__name__)

T = TypeVar("T")


class TransactionScope:
    """Runs one callback inside one transaction on ``wrapper``'s transport."""

    def __init__(self, wrapper: "CollectionWrapper", enabled: bool = True) -> None:
        self.wrapper = wrapper
        self.enabled = enabled

    def _check_allowed(self) -> None:
        wrapper = self.wrapper
        context = {"collection": wrapper.name, "transport": wrapper.transport.name}
        if wrapper.in_transaction:
            raise TransactionMisuseError("Nested transactions are not supported", context=context)
        if not self.enabled:
            raise TransactionMisuseError("Transactions are disabled", context=context)
        if not wrapper.transport.supports_sessions:
            raise TransactionMisuseError(
                "Transactions require a transport with session support", context=context
            )

    async def _abort(self, session: Any) -> None:
        try:
            await session.abort_transaction()
        except PyMongoError as e:
            # The callback's error is what the caller needs to see
            logger.warning(f"Failed to abort transaction on '{self.wrapper.name}': {e}")

    async def _end(self, session: Any) -> None:
        try:
            await session.end_session()
        except PyMongoError as e:
            logger.warning(f"Failed to end session on '{self.wrapper.name}': {e}")

    async def run(self, callback: Callable[["CollectionWrapper"], Awaitable[T] | T]) -> T:
        """
        Run ``callback(child)`` in a transaction and return its result.

        Raises:
            TransactionMisuseError: For nested or unsupported transactions
            DataLayerError: If the session cannot be started or the commit fails
        """
        self._check_allowed()
        wrapper = self.wrapper
        engine = wrapper.engine

        session = await engine.execute(
            "start_session", wrapper.transport.start_session, [], {"cache": False}
        )
        try:
            try:
                session.start_transaction()
            except PyMongoError as e:
                raise await engine.sanitizer.sanitize(e, action="start_transaction") from None

            pending: list[tuple[Any, str]] = []
            child = wrapper.bound_to(session, pending)
            try:
                result = await maybe_await(callback(child))
            except BaseException:
                if session.in_transaction:
                    await self._abort(session)
                raise

            try:
                await session.commit_transaction()
            except PyMongoError as e:
                raise await engine.sanitizer.sanitize(e, action="commit_transaction") from None

            logger.debug(f"Committed transaction on '{wrapper.name}'")
            for bound, method in pending:
                await bound.notify_mutation(method)
            return result
        finally:
            await self._end(session)
