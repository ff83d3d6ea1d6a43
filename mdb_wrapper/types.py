"""
Type definitions for MDB_WRAPPER collaborators.

The collaborator protocols describe what ``create_db`` accepts: the cache
primitive, mutation and error callbacks, and the write-default hooks. Hooks
and callbacks may be plain functions or coroutine functions.
"""

import inspect
from collections.abc import Awaitable, Callable, Mapping
from typing import Any, Protocol, TypeVar

T = TypeVar("T")

Document = dict[str, Any]


class CacheFunction(Protocol):
    """
    Cache primitive contract.

    ``cache(fn, key_parts, tags=[...])`` returns a callable; awaiting its
    result yields either the stored value for ``key_parts`` or the result of
    ``fn()``, which is then stored and associated with ``tags``.
    """

    def __call__(
        self,
        fn: Callable[[], Awaitable[T]],
        key_parts: list[str],
        *,
        tags: list[str],
    ) -> Callable[[], Awaitable[T]]: ...


OnMutation = Callable[[str, str], Awaitable[None] | None]
"""``on_mutation(collection, action)``; invoked once per successful mutation."""

OnError = Callable[[BaseException, dict[str, Any]], Awaitable[None] | None]
"""``on_error(error, metadata)``; receives every error before it is sanitized."""

WriteHook = Callable[[str, Any], Awaitable[Mapping[str, Any] | None] | Mapping[str, Any] | None]
"""``hook(collection, payload)`` returning default fields or None."""

ShouldRevalidate = Callable[[str], Awaitable[bool] | bool]
"""``should_revalidate(collection)``; True forces a fresh read."""


async def maybe_await(value: Any) -> Any:
    """Await ``value`` if it is awaitable, otherwise return it unchanged."""
    if inspect.isawaitable(value):
        return await value
    return value
