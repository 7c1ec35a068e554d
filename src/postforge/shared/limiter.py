"""Admission control and retry for calls to rate-limited backends.

A ``RateLimiter`` bounds how many calls are in flight and spaces their
start times. A ``RateLimitedRetryExecutor`` runs an operation under a
limiter and retries failures with capped exponential backoff plus
jitter. Backoff sleeps happen outside the limiter so a waiting retry
does not hold a slot.
"""

from __future__ import annotations

import asyncio
import logging
import random
import time
from collections.abc import Awaitable, Callable
from typing import TypeVar

from pydantic import BaseModel, Field

from postforge.errors import RateLimitExceeded

logger = logging.getLogger(__name__)

T = TypeVar("T")

RetryHook = Callable[[int, float, BaseException], Awaitable[None] | None]


# ---------------------------------------------------------------------------
# Admission gate
# ---------------------------------------------------------------------------


class RateLimiter:
    """At most ``max_concurrent`` holders, starts spaced ``min_interval`` apart."""

    def __init__(
        self,
        max_concurrent: int = 3,
        min_interval: float = 1.0,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")
        self.max_concurrent = max_concurrent
        self.min_interval = min_interval
        self._clock = clock
        self._sleep = sleep
        self._semaphore = asyncio.Semaphore(max_concurrent)
        self._lock = asyncio.Lock()
        self._next_start = 0.0

    async def acquire(self) -> None:
        await self._semaphore.acquire()
        try:
            async with self._lock:
                now = self._clock()
                wait = self._next_start - now
                if wait > 0:
                    await self._sleep(wait)
                    now = self._clock()
                self._next_start = max(now, self._next_start) + self.min_interval
        except BaseException:
            self._semaphore.release()
            raise

    def release(self) -> None:
        self._semaphore.release()

    async def __aenter__(self) -> RateLimiter:
        await self.acquire()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        self.release()


_LIMITERS: dict[str, RateLimiter] = {}


def limiter_for(name: str, max_concurrent: int = 3, min_interval: float = 1.0) -> RateLimiter:
    """Return the process-wide limiter for a resource class, creating it once."""
    limiter = _LIMITERS.get(name)
    if limiter is None:
        limiter = RateLimiter(max_concurrent, min_interval)
        _LIMITERS[name] = limiter
    return limiter


# ---------------------------------------------------------------------------
# Retry policy
# ---------------------------------------------------------------------------


class RetryPolicy(BaseModel):
    """Capped exponential backoff with multiplicative jitter."""

    max_attempts: int = Field(default=6, ge=1)
    base_delay: float = 1.0
    max_delay: float = 60.0
    jitter: float = 0.3

    def delay_for(self, attempt_index: int, jitter_value: float) -> float:
        """Delay before retry number ``attempt_index`` (0-based).

        ``jitter_value`` is expected in ``[0, jitter)``.
        """
        return min(self.base_delay * (2**attempt_index) * (1 + jitter_value), self.max_delay)


_RATE_LIMIT_MARKERS = ("429", "RESOURCE_EXHAUSTED", "rate limit", "quota")


def is_rate_limited(exc: BaseException) -> bool:
    """Best-effort check for quota/429 errors across client libraries."""
    if isinstance(exc, RateLimitExceeded):
        return True
    for attr in ("status", "status_code", "code"):
        if getattr(exc, attr, None) == 429:
            return True
    response = getattr(exc, "response", None)
    if getattr(response, "status_code", None) == 429:
        return True
    message = str(exc)
    return any(marker.lower() in message.lower() for marker in _RATE_LIMIT_MARKERS)


# ---------------------------------------------------------------------------
# Executor
# ---------------------------------------------------------------------------


class RateLimitedRetryExecutor:
    """Run async operations under a limiter, retrying with backoff."""

    def __init__(
        self,
        limiter: RateLimiter,
        policy: RetryPolicy | None = None,
        *,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        rng: Callable[[], float] = random.random,
        label: str = "call",
    ) -> None:
        self.limiter = limiter
        self.policy = policy or RetryPolicy()
        self._sleep = sleep
        self._rng = rng
        self.label = label

    async def run(
        self,
        operation: Callable[[], Awaitable[T]],
        *,
        on_retry: RetryHook | None = None,
    ) -> T:
        """Call ``operation`` until it succeeds or attempts run out.

        Args:
            operation: Zero-arg coroutine factory; called once per attempt.
            on_retry: Optional hook called with (attempt, delay, error)
                before each backoff sleep.

        Returns:
            The operation's result.

        Raises:
            The last error once ``max_attempts`` attempts have failed.
        """
        attempts = self.policy.max_attempts
        for attempt in range(attempts):
            try:
                async with self.limiter:
                    return await operation()
            except Exception as exc:
                if attempt + 1 >= attempts:
                    logger.error(
                        "%s failed after %d attempt(s): %s", self.label, attempts, exc
                    )
                    raise
                delay = self.policy.delay_for(attempt, self._rng() * self.policy.jitter)
                kind = "rate limited" if is_rate_limited(exc) else "error"
                logger.warning(
                    "%s %s (attempt %d/%d), retrying in %.1fs: %s",
                    self.label, kind, attempt + 1, attempts, delay, exc,
                )
                if on_retry is not None:
                    hook_result = on_retry(attempt + 1, delay, exc)
                    if asyncio.iscoroutine(hook_result):
                        await hook_result
                await self._sleep(delay)
        raise AssertionError("unreachable")
