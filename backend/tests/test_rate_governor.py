"""
Rate Governor Tests — per-client fixed windows, retry-after, memory bounds.
"""

import threading

import pytest
from redis import exceptions as redis_exceptions

from stock.governor import RateGovernor, RedisRateGovernor


class TestRateGovernor:
    def test_admits_up_to_limit_then_rejects(self):
        governor = RateGovernor(limit=100, window_seconds=60)
        decisions = [governor.check("client-a", now=1000.0 + i * 0.1) for i in range(101)]

        assert all(d.admitted for d in decisions[:100])
        assert decisions[99].remaining == 0
        rejected = decisions[100]
        assert not rejected.admitted
        assert rejected.retry_after > 0
        assert rejected.retry_after == pytest.approx(50.0)

    def test_window_rollover_admits_again(self):
        governor = RateGovernor(limit=2, window_seconds=60)
        assert governor.check("c", now=0.0).admitted
        assert governor.check("c", now=1.0).admitted
        assert not governor.check("c", now=59.9).admitted

        after = governor.check("c", now=60.0)
        assert after.admitted
        assert after.remaining == 1

    def test_clients_are_independent(self):
        governor = RateGovernor(limit=1, window_seconds=60)
        assert governor.check("a", now=0.0).admitted
        assert not governor.check("a", now=1.0).admitted
        assert governor.check("b", now=1.0).admitted

    def test_retry_after_is_bounded(self):
        governor = RateGovernor(limit=1, window_seconds=60)
        governor.check("c", now=100.0)
        # Clock stepping backwards must not produce an oversized hint.
        decision = governor.check("c", now=10.0)
        assert not decision.admitted
        assert 0 < decision.retry_after <= 60

    def test_rejections_do_not_extend_window(self):
        governor = RateGovernor(limit=1, window_seconds=10)
        governor.check("c", now=0.0)
        for t in (1.0, 5.0, 9.0):
            assert not governor.check("c", now=t).admitted
        assert governor.check("c", now=10.0).admitted

    def test_concurrent_threads_never_exceed_limit(self):
        governor = RateGovernor(limit=50, window_seconds=60)
        admitted = []
        lock = threading.Lock()

        def worker():
            for _ in range(20):
                decision = governor.check("shared", now=5.0)
                if decision.admitted:
                    with lock:
                        admitted.append(1)

        threads = [threading.Thread(target=worker) for _ in range(10)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(admitted) == 50

    def test_idle_counters_are_swept(self):
        governor = RateGovernor(limit=5, window_seconds=10, idle_windows=2, max_clients=3, clock=lambda: 0.0)
        for i in range(4):
            governor.check(f"client-{i}", now=0.0)
        assert len(governor) == 4

        # Past the idle horizon (20s) the next call sweeps stale counters.
        governor.check("fresh", now=25.0)
        assert len(governor) == 1

    def test_swept_client_starts_a_new_window(self):
        governor = RateGovernor(limit=1, window_seconds=10, idle_windows=1, clock=lambda: 0.0)
        governor.check("c", now=0.0)
        assert governor.check("c", now=15.0).admitted

    def test_full_table_of_active_clients_is_not_rescanned_every_request(self, monkeypatch):
        governor = RateGovernor(limit=1000, window_seconds=10, idle_windows=5, max_clients=100, clock=lambda: 0.0)
        for i in range(101):
            governor.check(f"c{i}", now=0.0)

        sweeps = []
        real_sweep = governor._sweep
        monkeypatch.setattr(governor, "_sweep", lambda now: (sweeps.append(now), real_sweep(now)))

        for step in range(50):
            governor.check("c0", now=1.0 + step * 0.1)
        assert sweeps == []

        governor.check("c0", now=10.0)
        for step in range(50):
            governor.check("c0", now=10.5 + step * 0.1)
        assert sweeps == [10.0]
        # Nothing is idle yet, so every client keeps its budget.
        assert len(governor) == 101

    def test_existing_counter_is_reused(self):
        governor = RateGovernor(limit=5, window_seconds=10, clock=lambda: 0.0)
        governor.check("c", now=0.0)
        counter = governor._counters["c"]
        governor.check("c", now=1.0)
        assert governor._counters["c"] is counter
        assert counter.count == 2

    def test_invalid_configuration(self):
        with pytest.raises(ValueError):
            RateGovernor(limit=0)
        with pytest.raises(ValueError):
            RateGovernor(window_seconds=0)

    @pytest.mark.asyncio
    async def test_async_admit_uses_clock(self):
        governor = RateGovernor(limit=1, window_seconds=60, clock=lambda: 42.0)
        assert (await governor.admit("c")).admitted
        rejected = await governor.admit("c")
        assert not rejected.admitted
        assert rejected.retry_after == pytest.approx(60.0)


class FakeRedis:
    """In-process stand-in exposing the INCR/EXPIRE subset the governor uses."""

    def __init__(self):
        self.values: dict[str, int] = {}
        self.ttls: dict[str, int] = {}

    async def incr(self, key):
        self.values[key] = self.values.get(key, 0) + 1
        return self.values[key]

    async def expire(self, key, seconds):
        self.ttls[key] = seconds
        return True


class DownRedis:
    async def incr(self, key):
        raise redis_exceptions.ConnectionError("connection refused")


@pytest.mark.asyncio
class TestRedisRateGovernor:
    async def test_limit_and_retry_after(self):
        redis = FakeRedis()
        governor = RedisRateGovernor(redis, limit=3, window_seconds=60)

        for i in range(3):
            assert (await governor.admit("c", now=120.0 + i)).admitted
        rejected = await governor.admit("c", now=130.0)
        assert not rejected.admitted
        assert rejected.retry_after == pytest.approx(50.0)

    async def test_key_expiry_set_once_per_window(self):
        redis = FakeRedis()
        governor = RedisRateGovernor(redis, limit=10, window_seconds=60, key_prefix="rl")

        await governor.admit("c", now=0.0)
        await governor.admit("c", now=1.0)
        assert redis.ttls == {"rl:c:0": 120}

    async def test_next_window_uses_new_key(self):
        redis = FakeRedis()
        governor = RedisRateGovernor(redis, limit=1, window_seconds=60)

        assert (await governor.admit("c", now=59.0)).admitted
        assert not (await governor.admit("c", now=59.5)).admitted
        assert (await governor.admit("c", now=60.0)).admitted

    async def test_clients_are_independent(self):
        governor = RedisRateGovernor(FakeRedis(), limit=1, window_seconds=60)
        assert (await governor.admit("a", now=0.0)).admitted
        assert (await governor.admit("b", now=0.0)).admitted
        assert not (await governor.admit("a", now=1.0)).admitted

    async def test_redis_down_fails_open(self):
        governor = RedisRateGovernor(DownRedis(), limit=1, window_seconds=60)
        decision = await governor.admit("c", now=0.0)
        assert decision.admitted
