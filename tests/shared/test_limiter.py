"""Tests for the rate limiter and retrying executor."""

import asyncio

import pytest

from postforge.errors import RateLimitExceeded
from postforge.shared.limiter import (
    RateLimitedRetryExecutor,
    RateLimiter,
    RetryPolicy,
    is_rate_limited,
    limiter_for,
)


class FakeClock:
    """Manual clock whose sleep advances time."""

    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


def _flaky(failures: int, exc: Exception | None = None):
    """Operation that fails ``failures`` times before returning "ok"."""
    calls = {"n": 0}

    async def operation() -> str:
        calls["n"] += 1
        if calls["n"] <= failures:
            raise exc or RateLimitExceeded("429 Too Many Requests")
        return "ok"

    return operation, calls


class TestRetryPolicy:
    def test_delay_doubles_and_caps(self):
        policy = RetryPolicy(base_delay=1.0, max_delay=5.0)
        assert [policy.delay_for(i, 0.0) for i in range(5)] == [1.0, 2.0, 4.0, 5.0, 5.0]

    def test_jitter_is_multiplicative(self):
        policy = RetryPolicy(base_delay=2.0, max_delay=60.0)
        assert policy.delay_for(1, 0.25) == pytest.approx(5.0)


class TestExecutor:
    def test_retries_until_success(self):
        clock = FakeClock()
        executor = RateLimitedRetryExecutor(
            RateLimiter(3, 0.0, clock=clock, sleep=clock.sleep),
            RetryPolicy(max_attempts=6, base_delay=1.0, max_delay=60.0),
            sleep=clock.sleep,
            rng=lambda: 0.5,
        )
        operation, calls = _flaky(3)

        assert asyncio.run(executor.run(operation)) == "ok"
        assert calls["n"] == 4
        assert clock.sleeps == pytest.approx([1.15, 2.3, 4.6])

    def test_delays_non_decreasing_and_capped(self):
        clock = FakeClock()
        jitters = iter([0.9, 0.0, 0.5, 0.1])
        executor = RateLimitedRetryExecutor(
            RateLimiter(3, 0.0, clock=clock, sleep=clock.sleep),
            RetryPolicy(max_attempts=4, base_delay=2.0, max_delay=5.0),
            sleep=clock.sleep,
            rng=lambda: next(jitters),
        )
        operation, calls = _flaky(3)

        asyncio.run(executor.run(operation))

        assert calls["n"] == 4
        assert len(clock.sleeps) == 3
        assert clock.sleeps == sorted(clock.sleeps)
        assert all(d <= 5.0 for d in clock.sleeps)

    def test_raises_last_error_after_max_attempts(self):
        clock = FakeClock()
        executor = RateLimitedRetryExecutor(
            RateLimiter(3, 0.0, clock=clock, sleep=clock.sleep),
            RetryPolicy(max_attempts=3),
            sleep=clock.sleep,
            rng=lambda: 0.0,
        )
        operation, calls = _flaky(10, ValueError("still broken"))

        with pytest.raises(ValueError, match="still broken"):
            asyncio.run(executor.run(operation))
        assert calls["n"] == 3
        assert len(clock.sleeps) == 2

    def test_on_retry_hook_sees_each_retry(self):
        clock = FakeClock()
        executor = RateLimitedRetryExecutor(
            RateLimiter(3, 0.0, clock=clock, sleep=clock.sleep),
            RetryPolicy(max_attempts=5),
            sleep=clock.sleep,
            rng=lambda: 0.0,
        )
        seen: list[tuple[int, float]] = []

        async def hook(attempt: int, delay: float, exc: BaseException) -> None:
            seen.append((attempt, delay))

        operation, _ = _flaky(2)
        asyncio.run(executor.run(operation, on_retry=hook))
        assert seen == [(1, 1.0), (2, 2.0)]

    def test_backoff_sleep_does_not_hold_slot(self):
        """While one call waits to retry, another can use the only slot."""
        limiter = RateLimiter(1, 0.0)
        order: list[str] = []

        async def slow_sleep(seconds: float) -> None:
            order.append("sleeping")
            await asyncio.sleep(0.01)

        executor = RateLimitedRetryExecutor(
            limiter, RetryPolicy(max_attempts=2), sleep=slow_sleep, rng=lambda: 0.0
        )
        operation, _ = _flaky(1)

        async def other() -> str:
            async with limiter:
                order.append("other")
            return "done"

        async def scenario() -> None:
            first = asyncio.create_task(executor.run(operation))
            await asyncio.sleep(0)
            await asyncio.sleep(0)
            assert await asyncio.wait_for(other(), timeout=1) == "done"
            assert await first == "ok"

        asyncio.run(scenario())
        assert order.index("sleeping") < order.index("other")


class TestRateLimiter:
    def test_spaces_start_times(self):
        clock = FakeClock()
        limiter = RateLimiter(5, 2.0, clock=clock, sleep=clock.sleep)
        starts: list[float] = []

        async def scenario() -> None:
            for _ in range(3):
                async with limiter:
                    starts.append(clock.now)

        asyncio.run(scenario())
        assert starts == [0.0, 2.0, 4.0]

    def test_bounds_concurrency(self):
        limiter = RateLimiter(2, 0.0)
        active = 0
        peak = 0

        async def work() -> None:
            nonlocal active, peak
            async with limiter:
                active += 1
                peak = max(peak, active)
                await asyncio.sleep(0.01)
                active -= 1

        async def scenario() -> None:
            await asyncio.gather(*(work() for _ in range(6)))

        asyncio.run(scenario())
        assert peak == 2

    def test_rejects_zero_concurrency(self):
        with pytest.raises(ValueError):
            RateLimiter(0)

    def test_limiter_for_is_shared(self):
        assert limiter_for("test-shared") is limiter_for("test-shared")
        assert limiter_for("test-shared") is not limiter_for("test-other")


class TestIsRateLimited:
    def test_recognizes_markers(self):
        assert is_rate_limited(RateLimitExceeded("quota"))
        assert is_rate_limited(RuntimeError("429 RESOURCE_EXHAUSTED"))
        assert not is_rate_limited(RuntimeError("connection reset"))
