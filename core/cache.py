from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Generic, Hashable, Optional, TypeVar

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


@dataclass(frozen=True)
class CacheEntry(Generic[V]):
    data: V
    timestamp: float            # seconds, from the cache clock


class TTLCache(Generic[K, V]):
    """
    In-memory cache shared by the token list, the balance fetchers and the
    Bitcoin proxy. An entry is fresh while now - timestamp < ttl.

    Expired entries are kept (see entry()) so callers can fall back to the
    last good value when a refresh fails.
    """

    def __init__(self, ttl_seconds: float, clock: Callable[[], float] = time.time):
        self.ttl = float(ttl_seconds)
        self.clock = clock
        self._entries: Dict[K, CacheEntry[V]] = {}
        self._inflight: Dict[K, "asyncio.Task[V]"] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def is_fresh(self, entry: CacheEntry[V]) -> bool:
        return (self.clock() - entry.timestamp) < self.ttl

    def entry(self, key: K) -> Optional[CacheEntry[V]]:
        """Latest entry for key, fresh or not."""
        return self._entries.get(key)

    def get(self, key: K) -> Optional[V]:
        item = self._entries.get(key)
        if item is None or not self.is_fresh(item):
            return None
        return item.data

    def set(self, key: K, val: V) -> None:
        self._entries[key] = CacheEntry(data=val, timestamp=self.clock())

    def invalidate(self, key: K) -> None:
        self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()

    def prune(self, max_age: float) -> int:
        """Drop entries older than max_age seconds. Returns how many went."""
        now = self.clock()
        old = [k for k, e in self._entries.items() if now - e.timestamp >= max_age]
        for k in old:
            del self._entries[k]
        return len(old)

    def pending(self, key: K) -> bool:
        """True while a get_or_fetch() for key is in flight."""
        return key in self._inflight

    async def get_or_fetch(self, key: K, fetch: Callable[[], Awaitable[V]]) -> V:
        """
        Fresh value if cached, otherwise run fetch() once and store its result.
        Concurrent callers for the same key share the in-flight fetch, which
        runs as its own task so a cancelled caller never cancels the others.
        A failing fetch stores nothing and re-raises to every waiter.
        """
        item = self._entries.get(key)
        if item is not None and self.is_fresh(item):
            return item.data

        task = self._inflight.get(key)
        if task is None:
            task = asyncio.get_running_loop().create_task(self._load(key, fetch))
            self._inflight[key] = task
            task.add_done_callback(_consume_exception)
        return await asyncio.shield(task)

    async def _load(self, key: K, fetch: Callable[[], Awaitable[V]]) -> V:
        try:
            val = await fetch()
            self.set(key, val)
            return val
        finally:
            self._inflight.pop(key, None)


def _consume_exception(task: "asyncio.Task") -> None:
    # a fetch whose waiters all went away must not log "exception never retrieved"
    if not task.cancelled():
        task.exception()
