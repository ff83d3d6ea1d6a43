"""
In-process cache primitive.

``MemoryCache`` implements the cache contract expected by ``create_db``:
``cache(fn, key_parts, tags=[...])`` returns an async callable that serves a
stored value or runs ``fn`` and stores its result. Entries are evicted
least-recently-used first and dropped by tag when a mutation notification
arrives.

Example:
    cache = MemoryCache(max_entries=5000)
    db = create_db(
        WrapperOptions(database="shop", api_url=url, cache=cache, on_mutation=cache.on_mutation)
    )
"""

import logging
import threading
import time
from collections import OrderedDict
from collections.abc import Awaitable, Callable, Iterable
from typing import Any, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

_MISSING = object()


class MemoryCache:
    """
    Tag-aware LRU cache with an optional time-to-live.

    A value computed while one of its tags was invalidated is returned to its
    caller but not stored, so a read racing a write never repopulates the
    cache with stale data.
    """

    def __init__(self, max_entries: int = 1000, ttl_s: float | None = None):
        """
        Initialize the cache.

        Args:
            max_entries: Maximum number of entries before evicting oldest (LRU)
            ttl_s: Optional lifetime of an entry in seconds
        """
        self._entries: OrderedDict[tuple[str, ...], tuple[Any, float | None]] = OrderedDict()
        self._tags: dict[str, set[tuple[str, ...]]] = {}
        self._generations: dict[str, int] = {}
        self._lock = threading.Lock()
        self._max_entries = max_entries
        self._ttl_s = ttl_s
        self.hits = 0
        self.misses = 0

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __call__(
        self,
        fn: Callable[[], Awaitable[T]],
        key_parts: list[str],
        *,
        tags: list[str],
    ) -> Callable[[], Awaitable[T]]:
        key = tuple(key_parts)

        async def cached() -> T:
            value = self.get(key)
            if value is not _MISSING:
                return value

            generations = self._snapshot(tags)
            value = await fn()
            self.set(key, value, tags, expected_generations=generations)
            return value

        return cached

    def _snapshot(self, tags: Iterable[str]) -> dict[str, int]:
        with self._lock:
            return {tag: self._generations.get(tag, 0) for tag in tags}

    def get(self, key: tuple[str, ...]) -> Any:
        """Return the stored value for ``key`` or the ``_MISSING`` sentinel."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self.misses += 1
                return _MISSING

            value, expires_at = entry
            if expires_at is not None and expires_at <= time.monotonic():
                self._remove(key)
                self.misses += 1
                return _MISSING

            self._entries.move_to_end(key)
            self.hits += 1
            return value

    def set(
        self,
        key: tuple[str, ...],
        value: Any,
        tags: Iterable[str],
        expected_generations: dict[str, int] | None = None,
    ) -> bool:
        """
        Store ``value`` under ``key``, associated with ``tags``.

        Returns:
            False if a tag was invalidated since ``expected_generations`` was
            taken (the value is then not stored)
        """
        tags = list(tags)
        with self._lock:
            if expected_generations is not None and any(
                self._generations.get(tag, 0) != generation
                for tag, generation in expected_generations.items()
            ):
                return False

            if key not in self._entries and len(self._entries) >= self._max_entries:
                oldest, _ = self._entries.popitem(last=False)
                self._untag(oldest)

            expires_at = time.monotonic() + self._ttl_s if self._ttl_s is not None else None
            self._entries[key] = (value, expires_at)
            self._entries.move_to_end(key)
            for tag in tags:
                self._tags.setdefault(tag, set()).add(key)
            return True

    def _untag(self, key: tuple[str, ...]) -> None:
        for keys in self._tags.values():
            keys.discard(key)

    def _remove(self, key: tuple[str, ...]) -> None:
        self._entries.pop(key, None)
        self._untag(key)

    def invalidate_tag(self, tag: str) -> int:
        """
        Drop every entry associated with ``tag``.

        Returns:
            Number of entries removed
        """
        with self._lock:
            self._generations[tag] = self._generations.get(tag, 0) + 1
            keys = self._tags.pop(tag, set())
            for key in keys:
                self._remove(key)

        if keys:
            logger.debug(f"Invalidated {len(keys)} cache entries tagged '{tag}'")
        return len(keys)

    def clear(self) -> None:
        with self._lock:
            for tag in self._tags:
                self._generations[tag] = self._generations.get(tag, 0) + 1
            self._entries.clear()
            self._tags.clear()

    async def on_mutation(self, collection: str, action: str) -> None:
        """Mutation callback: invalidate the mutated collection's entries."""
        self.invalidate_tag(collection)
