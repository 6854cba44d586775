"""トークンバケットとレジストリのテスト。"""

from __future__ import annotations

import asyncio
import time
from concurrent.futures import ThreadPoolExecutor

import pytest

from saasgate.config import DEFAULT_LIMITER_CONFIG, PROVIDER_LIMITS, LimiterConfig
from saasgate.errors import SaasConfigError
from saasgate.limiter import LimiterStats, TokenBucketLimiter
from saasgate.registry import LimiterRegistry, get_registry

_OPEN = LimiterConfig(
    max_concurrent=0,
    min_time_ms=0,
    reservoir=1000,
    reservoir_refresh_amount=1000,
    reservoir_refresh_interval_ms=1000,
)


def test_sixth_call_waits_for_reservoir_refill() -> None:
    config = LimiterConfig(
        max_concurrent=5,
        min_time_ms=0,
        reservoir=5,
        reservoir_refresh_amount=5,
        reservoir_refresh_interval_ms=300,
    )
    started: list[float] = []

    async def work() -> None:
        started.append(time.monotonic())

    async def run() -> tuple[float, LimiterStats]:
        t0 = time.monotonic()
        limiter = TokenBucketLimiter(config, name="semrush-like")
        tasks = [asyncio.create_task(limiter.schedule(work)) for _ in range(6)]
        await asyncio.sleep(0.05)
        mid = limiter.stats()
        await asyncio.gather(*tasks)
        return t0, mid

    t0, mid = asyncio.run(run())

    assert len(started) == 6
    assert all(ts - t0 < 0.2 for ts in started[:5])
    assert started[5] - t0 >= 0.29
    assert mid.queued == 1
    assert mid.running == 0
    assert mid.reservoir_remaining == 0
    assert mid.done == 5


def test_reservoir_refill_never_exceeds_capacity() -> None:
    config = LimiterConfig(
        max_concurrent=0,
        min_time_ms=0,
        reservoir=3,
        reservoir_refresh_amount=3,
        reservoir_refresh_interval_ms=20,
    )

    async def noop() -> None:
        return None

    async def run() -> int:
        limiter = TokenBucketLimiter(config)
        await limiter.schedule(noop)
        await asyncio.sleep(0.1)
        return limiter.stats().reservoir_remaining

    assert asyncio.run(run()) == 3


def test_min_time_spaces_dispatches() -> None:
    config = LimiterConfig(
        max_concurrent=0,
        min_time_ms=50,
        reservoir=10,
        reservoir_refresh_amount=10,
        reservoir_refresh_interval_ms=1000,
    )
    started: list[float] = []

    async def work() -> None:
        started.append(time.monotonic())

    async def run() -> None:
        limiter = TokenBucketLimiter(config)
        await asyncio.gather(*(limiter.schedule(work) for _ in range(3)))

    asyncio.run(run())

    gaps = [b - a for a, b in zip(started, started[1:])]
    assert len(gaps) == 2
    assert all(gap >= 0.04 for gap in gaps)


def test_max_concurrent_and_fifo_order() -> None:
    config = LimiterConfig(
        max_concurrent=1,
        min_time_ms=0,
        reservoir=100,
        reservoir_refresh_amount=100,
        reservoir_refresh_interval_ms=1000,
    )
    order: list[int] = []
    state = {"current": 0, "peak": 0}

    def make(i: int):
        async def work() -> int:
            state["current"] += 1
            state["peak"] = max(state["peak"], state["current"])
            order.append(i)
            await asyncio.sleep(0.005)
            state["current"] -= 1
            return i

        return work

    async def run() -> list[int]:
        limiter = TokenBucketLimiter(config)
        return await asyncio.gather(*(limiter.schedule(make(i)) for i in range(5)))

    results = asyncio.run(run())

    assert results == [0, 1, 2, 3, 4]
    assert order == [0, 1, 2, 3, 4]
    assert state["peak"] == 1


def test_task_exception_propagates_and_releases_slot() -> None:
    async def boom() -> None:
        raise RuntimeError("boom")

    async def run() -> TokenBucketLimiter:
        limiter = TokenBucketLimiter(_OPEN)
        with pytest.raises(RuntimeError):
            await limiter.schedule(boom)
        return limiter

    limiter = asyncio.run(run())
    stats = limiter.stats()

    assert stats.running == 0
    assert stats.done == 1


def test_cancellation_does_not_corrupt_counters() -> None:
    config = LimiterConfig(
        max_concurrent=1,
        min_time_ms=0,
        reservoir=100,
        reservoir_refresh_amount=100,
        reservoir_refresh_interval_ms=1000,
    )

    async def run() -> None:
        limiter = TokenBucketLimiter(config)
        gate = asyncio.Event()

        async def blocker() -> None:
            await gate.wait()

        async def answer() -> int:
            return 42

        first = asyncio.create_task(limiter.schedule(blocker))
        second = asyncio.create_task(limiter.schedule(blocker))
        await asyncio.sleep(0)
        await asyncio.sleep(0)
        stats = limiter.stats()
        assert (stats.running, stats.queued) == (1, 1)

        second.cancel()
        with pytest.raises(asyncio.CancelledError):
            await second
        assert limiter.stats().queued == 0
        assert limiter.stats().reservoir_remaining == 99

        first.cancel()
        with pytest.raises(asyncio.CancelledError):
            await first
        assert limiter.stats().running == 0

        assert await limiter.schedule(answer) == 42
        assert limiter.stats().running == 0

    asyncio.run(run())


def test_negative_config_is_rejected_at_construction() -> None:
    with pytest.raises(SaasConfigError):
        TokenBucketLimiter(LimiterConfig(max_concurrent=-1))
    with pytest.raises(ValueError):
        TokenBucketLimiter(LimiterConfig(reservoir_refresh_interval_ms=-5))
    with pytest.raises(SaasConfigError):
        LimiterRegistry(provider_limits={"hubspot": LimiterConfig(min_time_ms=-1)})


def test_registry_returns_same_provider_limiter() -> None:
    registry = LimiterRegistry()

    hubspot = registry.get_limiter("hubspot")

    assert registry.get_limiter("hubspot") is hubspot
    assert registry.get_limiter("HubSpot") is hubspot
    assert hubspot.chained is registry.global_limiter
    assert hubspot.config == PROVIDER_LIMITS["hubspot"]
    assert registry.get_limiter() is registry.global_limiter
    assert registry.get_limiter("") is registry.global_limiter
    assert registry.global_limiter.chained is None


def test_registry_defaults_table_and_fallback() -> None:
    registry = LimiterRegistry()

    semrush = registry.config_for("semrush")
    assert (semrush.max_concurrent, semrush.min_time_ms, semrush.reservoir) == (5, 200, 5)
    assert registry.config_for("hubspot").reservoir_refresh_interval_ms == 10_000
    assert registry.config_for("meta").reservoir == 10
    assert registry.config_for("unknown-crm") == DEFAULT_LIMITER_CONFIG
    assert registry.config_for(None) == DEFAULT_LIMITER_CONFIG


def test_registry_memoization_is_race_safe() -> None:
    registry = LimiterRegistry()

    with ThreadPoolExecutor(max_workers=8) as pool:
        limiters = list(pool.map(lambda _: registry.get_limiter("meta"), range(32)))

    assert len({id(limiter) for limiter in limiters}) == 1
    assert registry.providers() == ["meta"]


def test_get_stats_has_no_side_effects() -> None:
    registry = LimiterRegistry()

    stats = registry.get_stats("semrush")

    assert (stats.queued, stats.running, stats.reservoir_remaining) == (0, 0, 5)
    assert registry.providers() == []


def test_global_limiter_caps_aggregate_concurrency() -> None:
    shared = LimiterConfig(
        max_concurrent=5,
        min_time_ms=0,
        reservoir=100,
        reservoir_refresh_amount=100,
        reservoir_refresh_interval_ms=1000,
    )
    registry = LimiterRegistry(
        global_config=shared,
        provider_limits={"alpha": shared, "beta": shared},
    )
    state = {"current": 0, "peak": 0}

    async def work() -> None:
        state["current"] += 1
        state["peak"] = max(state["peak"], state["current"])
        await asyncio.sleep(0.02)
        state["current"] -= 1

    async def run() -> None:
        await asyncio.gather(
            *(registry.execute(work, provider) for provider in ("alpha", "beta") for _ in range(5))
        )

    asyncio.run(run())

    assert state["peak"] == 5
    assert registry.get_stats().done == 10
    assert registry.get_stats("alpha").done == 5
    assert registry.get_stats("beta").done == 5


def test_provider_limit_is_stricter_than_global() -> None:
    narrow = LimiterConfig(
        max_concurrent=2,
        min_time_ms=0,
        reservoir=100,
        reservoir_refresh_amount=100,
        reservoir_refresh_interval_ms=1000,
    )
    registry = LimiterRegistry(global_config=_OPEN, provider_limits={"alpha": narrow})
    state = {"current": 0, "peak": 0}

    async def work() -> None:
        state["current"] += 1
        state["peak"] = max(state["peak"], state["current"])
        await asyncio.sleep(0.01)
        state["current"] -= 1

    async def run() -> None:
        await asyncio.gather(*(registry.execute(work, "alpha") for _ in range(6)))

    asyncio.run(run())

    assert state["peak"] == 2


def test_process_registry_is_memoized() -> None:
    assert get_registry() is get_registry()
