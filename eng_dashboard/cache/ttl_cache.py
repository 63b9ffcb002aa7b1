"""
In-memory TTL cache

Usage:
    cache = TTLCache(sweep_interval=300)
    cache.start()                      # background sweep of expired entries
    cache.set("stats:null", stats, ttl_seconds=300)
    cache.get("stats:null")
    cache.delete_by_prefix("leaderboard:")
    cache.close()

    # or
    async with TTLCache() as cache:
        ...
"""

import asyncio
import threading
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from eng_dashboard.core.logging_config import get_logger
from eng_dashboard.utils.concurrency import SingleFlight

logger = get_logger(__name__)

DEFAULT_TTL_SECONDS = 60
DEFAULT_SWEEP_INTERVAL = 5 * 60


@dataclass
class CacheEntry:
    key: str
    value: Any
    expires_at: float


class TTLCache:
    """
    Key/value store with per-entry expiry.

    Entries expire lazily on read and are also evicted by a periodic sweep
    (started with start()) so memory stays bounded without reads. The backing
    dict is lock-guarded so the instance can be shared with worker threads.
    """

    def __init__(
        self,
        sweep_interval: float = DEFAULT_SWEEP_INTERVAL,
        clock: Callable[[], float] = time.time,
    ):
        """
        Args:
            sweep_interval: Seconds between background sweeps (default: 300)
            clock: Time source in seconds, injectable for tests
        """
        self.sweep_interval = sweep_interval
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}
        self._lock = threading.RLock()
        self._single_flight = SingleFlight()
        self._sweep_task: asyncio.Task | None = None

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def get(self, key: str) -> Any | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if self._clock() > entry.expires_at:
                del self._entries[key]
                return None
            return entry.value

    def set(self, key: str, value: Any, ttl_seconds: float = DEFAULT_TTL_SECONDS) -> None:
        with self._lock:
            self._entries[key] = CacheEntry(key, value, self._clock() + ttl_seconds)

    def delete(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def delete_by_prefix(self, prefix: str) -> int:
        """
        Delete every key starting with ``prefix``.

        Returns:
            Number of entries removed
        """
        with self._lock:
            doomed = [key for key in self._entries if key.startswith(prefix)]
            for key in doomed:
                del self._entries[key]
        if doomed:
            logger.debug(f"Deleted {len(doomed)} cache entries with prefix {prefix!r}")
        return len(doomed)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def cleanup(self) -> int:
        """
        Evict expired entries.

        Returns:
            Number of entries evicted
        """
        now = self._clock()
        with self._lock:
            expired = [key for key, entry in self._entries.items() if now > entry.expires_at]
            for key in expired:
                del self._entries[key]
        return len(expired)

    async def get_or_fetch(self, key: str, fetch: Callable[[], Awaitable[Any]], ttl_seconds: float) -> Any:
        """
        Read-through with single-flight loading.

        Concurrent callers for the same uncached key share one ``fetch()``.
        The fetched value is cached unless it is None.
        """
        cached = self.get(key)
        if cached is not None:
            return cached

        async def load() -> Any:
            value = await fetch()
            if value is not None:
                self.set(key, value, ttl_seconds)
            return value

        return await self._single_flight.run(key, load)

    # Lifecycle

    def start(self) -> None:
        """Start the background sweep on the running event loop."""
        if self._sweep_task is not None and not self._sweep_task.done():
            return
        self._sweep_task = asyncio.get_running_loop().create_task(self._sweep_forever())

    async def _sweep_forever(self) -> None:
        while True:
            await asyncio.sleep(self.sweep_interval)
            evicted = self.cleanup()
            if evicted:
                logger.debug(f"Cache sweep evicted {evicted} expired entries")

    def close(self) -> None:
        """Stop the background sweep. Entries are kept."""
        if self._sweep_task is not None:
            self._sweep_task.cancel()
            self._sweep_task = None

    async def __aenter__(self) -> "TTLCache":
        self.start()
        return self

    async def __aexit__(self, *args) -> None:
        self.close()
