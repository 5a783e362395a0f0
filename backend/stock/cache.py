"""
Snapshot Cache — TTL cache with single-flight recomputation.

Keys are SKUs, plus ALL_PRODUCTS_KEY for the full catalog list. On a miss the
first caller starts one computation task for the key; concurrent callers
await the same task. Waiters go through ``asyncio.shield`` so a caller that
gives up never cancels the shared computation.

Failures are not cached: every waiter of a failed computation sees the same
exception and the next call starts a fresh computation.

The cache is bound to a single event loop and is not thread-safe.
"""

import asyncio
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

import structlog

logger = structlog.get_logger()

# Not a valid SKU, so it can never collide with a per-product key.
ALL_PRODUCTS_KEY = "*"


@dataclass(frozen=True)
class CacheEntry:
    key: str
    payload: Any
    inserted_at: float
    fresh_until: float

    def is_fresh(self, now: float) -> bool:
        return now < self.fresh_until


@dataclass
class CacheStats:
    hits: int = 0
    misses: int = 0
    coalesced: int = 0
    failures: int = 0
    evictions: int = 0


def _consume_result(task: asyncio.Task) -> None:
    # Failures are re-raised to waiters; this only silences
    # "exception was never retrieved" when every waiter has left.
    if not task.cancelled():
        task.exception()


class SnapshotCache:
    def __init__(self, max_entries: int = 10_000, clock: Callable[[], float] = time.monotonic):
        self.max_entries = max_entries
        self.clock = clock
        self.stats = CacheStats()
        self._entries: dict[str, CacheEntry] = {}
        self._inflight: dict[str, asyncio.Task] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def peek(self, key: str) -> CacheEntry | None:
        """Return the stored entry for key, fresh or not, without computing."""
        return self._entries.get(key)

    async def get_or_compute(
        self,
        key: str,
        ttl: float,
        compute_fn: Callable[[], Awaitable[Any]],
    ) -> Any:
        """Return the fresh cached payload for key, computing it at most once."""
        entry = self._entries.get(key)
        if entry is not None and entry.is_fresh(self.clock()):
            self.stats.hits += 1
            return entry.payload

        task = self._inflight.get(key)
        if task is None:
            self.stats.misses += 1
            logger.debug("stock.cache.miss", key=key)
            task = asyncio.get_running_loop().create_task(self._fill(key, ttl, compute_fn))
            task.add_done_callback(_consume_result)
            self._inflight[key] = task
        else:
            self.stats.coalesced += 1
            logger.debug("stock.cache.coalesced", key=key)

        return await asyncio.shield(task)

    async def _fill(self, key: str, ttl: float, compute_fn: Callable[[], Awaitable[Any]]) -> Any:
        task = asyncio.current_task()
        try:
            payload = await compute_fn()
        except Exception as e:
            self.stats.failures += 1
            logger.warning("stock.cache.compute_failed", key=key, error_type=type(e).__name__)
            raise
        else:
            # Skip the store if the key was invalidated while computing.
            if self._inflight.get(key) is task and ttl > 0:
                self._store(key, payload, ttl)
            return payload
        finally:
            if self._inflight.get(key) is task:
                del self._inflight[key]

    def _store(self, key: str, payload: Any, ttl: float) -> None:
        now = self.clock()
        if key not in self._entries and len(self._entries) >= self.max_entries:
            self._evict(now)
        self._entries[key] = CacheEntry(key=key, payload=payload, inserted_at=now, fresh_until=now + ttl)

    def _evict(self, now: float) -> None:
        expired = [k for k, entry in self._entries.items() if not entry.is_fresh(now)]
        for k in expired:
            del self._entries[k]
        self.stats.evictions += len(expired)
        if len(self._entries) >= self.max_entries:
            oldest = min(self._entries.values(), key=lambda entry: entry.inserted_at)
            del self._entries[oldest.key]
            self.stats.evictions += 1

    def invalidate(self, key: str) -> bool:
        """Drop key early. A computation already running for it will not be stored."""
        removed = self._entries.pop(key, None) is not None
        detached = self._inflight.pop(key, None) is not None
        if removed or detached:
            logger.info("stock.cache.invalidated", key=key)
        return removed

    def clear(self) -> None:
        self._entries.clear()
        self._inflight.clear()
        logger.info("stock.cache.cleared")
