"""Process-wide keyed cache with single-flight fetches and TTL eviction.

Every read of a remote entity list goes through :meth:`GlobalCache.get`.
For a given key at most one fetch is in flight; concurrent callers await
the same future and observe the same result or the same exception.  A
failed refresh never discards the data of a previous successful fetch.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 30.0
DEFAULT_EVICTION_INTERVAL_SECONDS = 60.0

DataList = list[Any]
Fetcher = Callable[[], Awaitable[DataList]]
Subscriber = Callable[[str, DataList], None]


@dataclass
class CacheEntry:
    """State held for one cache key."""

    data: DataList | None = None
    timestamp: float | None = None
    pending: asyncio.Future[DataList] | None = field(default=None, repr=False)

    def age(self, now: float) -> float | None:
        if self.timestamp is None:
            return None
        return now - self.timestamp


class GlobalCache:
    """Keyed cache of fetched entity lists.

    The cache never knows the shape of the query behind a key: callers hand
    in an async *fetcher* returning the list.  Freshness is evaluated when
    a key is read; the background sweep started by :meth:`start` only bounds
    memory growth in long-lived processes.
    """

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        eviction_interval_seconds: float = DEFAULT_EVICTION_INTERVAL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self.eviction_interval_seconds = eviction_interval_seconds
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}
        self._subscribers: list[Subscriber] = []
        self._sweeper: asyncio.Task[None] | None = None
        self._hits = 0
        self._misses = 0
        self._coalesced = 0
        self._failures = 0
        self._evictions = 0

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def _is_fresh(self, entry: CacheEntry | None, now: float) -> bool:
        if entry is None or entry.data is None:
            return False
        age = entry.age(now)
        return age is not None and age < self.ttl_seconds

    async def get(self, key: str, fetcher: Fetcher, *, force: bool = False) -> DataList:
        """Return the data for *key*, fetching it at most once at a time.

        With *force* the freshness check is skipped, but an in-flight fetch
        is still shared and previous data is still kept on failure.  The
        fetch runs in its own task: cancelling one waiter never cancels the
        fetch the other waiters depend on.
        """
        entry = self._entries.get(key)
        now = self._clock()

        if not force and self._is_fresh(entry, now):
            logger.debug("Cache hit for %s", key)
            self._hits += 1
            return entry.data  # type: ignore[union-attr, return-value]

        if entry is not None and entry.pending is not None:
            logger.debug("Waiting for in-flight fetch of %s", key)
            self._coalesced += 1
            return await asyncio.shield(entry.pending)

        logger.debug("Cache miss, fetching %s", key)
        self._misses += 1
        if entry is None:
            entry = CacheEntry()
            self._entries[key] = entry
        task = asyncio.get_running_loop().create_task(self._fetch(key, entry, fetcher))
        task.add_done_callback(_retrieve_exception)
        entry.pending = task
        return await asyncio.shield(task)

    async def _fetch(self, key: str, entry: CacheEntry, fetcher: Fetcher) -> DataList:
        try:
            data = await fetcher()
        except Exception as exc:
            self._failures += 1
            logger.warning("Fetch for %s failed: %s", key, exc)
            raise
        finally:
            entry.pending = None

        if self._entries.get(key) is entry:
            entry.data = data
            entry.timestamp = self._clock()
            self._notify(key, data)
        else:
            logger.debug("Not storing result for %s: invalidated during fetch", key)
        return data

    def has(self, key: str) -> bool:
        """Return True when *key* holds data younger than the TTL."""
        return self._is_fresh(self._entries.get(key), self._clock())

    def peek(self, key: str, *, allow_stale: bool = False) -> DataList | None:
        """Best-effort read of *key* that never triggers a fetch."""
        entry = self._entries.get(key)
        if entry is None or entry.data is None:
            return None
        if allow_stale or self._is_fresh(entry, self._clock()):
            return entry.data
        return None

    def is_pending(self, key: str) -> bool:
        entry = self._entries.get(key)
        return entry is not None and entry.pending is not None

    def keys(self) -> list[str]:
        return list(self._entries)

    # ------------------------------------------------------------------
    # Invalidation & eviction
    # ------------------------------------------------------------------

    def invalidate(self, key: str | None = None) -> None:
        """Drop one entry, or the whole cache when *key* is ``None``."""
        if key is None:
            self._entries.clear()
        else:
            self._entries.pop(key, None)
        logger.info("Cache invalidated for %s", key or "all")

    def invalidate_namespace(self, namespace: str) -> int:
        """Drop every entry whose key starts with ``"{namespace}:"``."""
        prefix = f"{namespace}:"
        doomed = [k for k in self._entries if k.startswith(prefix)]
        for k in doomed:
            del self._entries[k]
        if doomed:
            logger.info("Cache invalidated %d entries in namespace %s", len(doomed), namespace)
        return len(doomed)

    def evict_expired(self) -> int:
        """Remove entries past the TTL that have no fetch in flight."""
        now = self._clock()
        expired = [
            key
            for key, entry in self._entries.items()
            if entry.pending is None and not self._is_fresh(entry, now)
        ]
        for key in expired:
            del self._entries[key]
            logger.debug("Evicted expired cache entry %s", key)
        self._evictions += len(expired)
        return len(expired)

    async def _sweep_forever(self) -> None:
        while True:
            await asyncio.sleep(self.eviction_interval_seconds)
            try:
                self.evict_expired()
            except Exception:
                logger.exception("Cache eviction sweep failed")

    def start(self) -> None:
        """Start the background eviction sweep on the running loop."""
        if self._sweeper is not None and not self._sweeper.done():
            return
        self._sweeper = asyncio.get_running_loop().create_task(self._sweep_forever())

    async def close(self) -> None:
        """Stop the eviction sweep."""
        if self._sweeper is None:
            return
        self._sweeper.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._sweeper
        self._sweeper = None

    @property
    def running(self) -> bool:
        return self._sweeper is not None and not self._sweeper.done()

    # ------------------------------------------------------------------
    # Subscribers
    # ------------------------------------------------------------------

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register *callback* for every refresh; returns an unsubscribe function."""
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            with contextlib.suppress(ValueError):
                self._subscribers.remove(callback)

        return unsubscribe

    def _notify(self, key: str, data: DataList) -> None:
        for callback in list(self._subscribers):
            try:
                callback(key, data)
            except Exception:
                logger.exception("Cache subscriber failed for %s", key)

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def stats(self) -> dict[str, Any]:
        return {
            "size": len(self._entries),
            "ttlSeconds": self.ttl_seconds,
            "hits": self._hits,
            "misses": self._misses,
            "coalesced": self._coalesced,
            "failures": self._failures,
            "evictions": self._evictions,
            "inFlight": sum(1 for e in self._entries.values() if e.pending is not None),
        }

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries


def _retrieve_exception(task: asyncio.Task[DataList]) -> None:
    # Marks a failed fetch as observed even if every waiter was cancelled.
    if not task.cancelled():
        task.exception()
