"""
Rate Governor — Fixed-window request limits per client identity.

Two stores:
  - RateGovernor: in-process counters, one lock per client
  - RedisRateGovernor: INCR/EXPIRE per (client, window) key, shared across workers

Both answer ``admit(client_id, now)`` with a RateDecision. A rejected
decision carries retry_after in (0, window_seconds].
"""

import math
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass

import structlog
from redis import exceptions as redis_exceptions

logger = structlog.get_logger()


@dataclass(frozen=True)
class RateDecision:
    admitted: bool
    limit: int
    remaining: int
    retry_after: float = 0.0


class _Counter:
    __slots__ = ("lock", "window_start", "count", "last_seen", "evicted")

    def __init__(self, now: float):
        self.lock = threading.Lock()
        self.window_start = now
        self.count = 0
        self.last_seen = now
        self.evicted = False


def _clamp_retry_after(value: float, window_seconds: float) -> float:
    return min(max(value, 0.001), window_seconds)


class RateGovernor:
    """In-memory fixed-window limiter.

    Counters idle for ``idle_windows`` windows are swept lazily, once per idle
    horizon, or once per window while the table holds more than
    ``max_clients`` counters.
    """

    def __init__(
        self,
        limit: int = 100,
        window_seconds: float = 60.0,
        idle_windows: int = 5,
        max_clients: int = 10_000,
        clock: Callable[[], float] = time.time,
    ):
        if limit < 1 or window_seconds <= 0:
            raise ValueError("limit and window_seconds must be positive")
        self.limit = limit
        self.window_seconds = window_seconds
        self.idle_seconds = window_seconds * max(1, idle_windows)
        self.max_clients = max_clients
        self.clock = clock
        self._counters: dict[str, _Counter] = {}
        self._last_sweep = clock()

    def __len__(self) -> int:
        return len(self._counters)

    async def admit(self, client_id: str, now: float | None = None) -> RateDecision:
        return self.check(client_id, now)

    def check(self, client_id: str, now: float | None = None) -> RateDecision:
        now = self.clock() if now is None else now
        self._maybe_sweep(now)

        while True:
            counter = self._counters.get(client_id)
            if counter is None:
                counter = self._counters.setdefault(client_id, _Counter(now))
            with counter.lock:
                if counter.evicted:
                    continue
                if now >= counter.window_start + self.window_seconds:
                    counter.window_start = now
                    counter.count = 0
                counter.last_seen = max(counter.last_seen, now)

                if counter.count < self.limit:
                    counter.count += 1
                    return RateDecision(True, self.limit, self.limit - counter.count)

                retry_after = counter.window_start + self.window_seconds - now
                return RateDecision(
                    False,
                    self.limit,
                    0,
                    _clamp_retry_after(retry_after, self.window_seconds),
                )

    def _maybe_sweep(self, now: float) -> None:
        since_last = now - self._last_sweep
        if since_last >= self.idle_seconds:
            self._sweep(now)
        elif len(self._counters) > self.max_clients and since_last >= self.window_seconds:
            # An over-full table of active clients is rescanned at most once per window.
            self._sweep(now)

    def _sweep(self, now: float) -> None:
        self._last_sweep = now
        evicted = 0
        for client_id, counter in list(self._counters.items()):
            with counter.lock:
                if now - counter.last_seen < self.idle_seconds:
                    continue
                counter.evicted = True
                if self._counters.get(client_id) is counter:
                    del self._counters[client_id]
                    evicted += 1
        if evicted:
            logger.debug("stock.rate_limit.swept", evicted=evicted, tracked=len(self._counters))
        if len(self._counters) > self.max_clients:
            logger.warning("stock.rate_limit.client_table_full", tracked=len(self._counters))


class RedisRateGovernor:
    """Fixed-window limiter backed by Redis.

    Windows are aligned to multiples of window_seconds. Each key expires after
    two windows, so Redis memory is bounded by recently active clients. If
    Redis cannot be reached the request is admitted and a warning is logged.
    """

    def __init__(
        self,
        redis_client,
        limit: int = 100,
        window_seconds: float = 60.0,
        key_prefix: str = "stock:ratelimit",
        clock: Callable[[], float] = time.time,
    ):
        if limit < 1 or window_seconds <= 0:
            raise ValueError("limit and window_seconds must be positive")
        self.redis = redis_client
        self.limit = limit
        self.window_seconds = window_seconds
        self.key_prefix = key_prefix
        self.clock = clock
        self._key_ttl = max(1, math.ceil(window_seconds * 2))

    async def admit(self, client_id: str, now: float | None = None) -> RateDecision:
        now = self.clock() if now is None else now
        window_index = int(now // self.window_seconds)
        key = f"{self.key_prefix}:{client_id}:{window_index}"

        try:
            count = int(await self.redis.incr(key))
            if count == 1:
                await self.redis.expire(key, self._key_ttl)
        except (redis_exceptions.ConnectionError, redis_exceptions.TimeoutError) as e:
            logger.warning("stock.rate_limit.redis_unavailable", error=str(e))
            return RateDecision(True, self.limit, self.limit)

        if count <= self.limit:
            return RateDecision(True, self.limit, self.limit - count)

        window_end = (window_index + 1) * self.window_seconds
        return RateDecision(
            False,
            self.limit,
            0,
            _clamp_retry_after(window_end - now, self.window_seconds),
        )
