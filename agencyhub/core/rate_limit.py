"""
Fixed-window rate limiting.

Implementations:
- InMemoryRateLimiter: process-local counter table behind one lock
- RedisRateLimiter: shared counters for multi-process deployments

Both expose the same async ``check`` so callers never care which one
they were given. A denial is a normal result, not an exception; the
HTTP layer turns it into a 429.
"""

from __future__ import annotations

import logging
import math
import threading
import time
from dataclasses import dataclass
from typing import Callable, Protocol

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from agencyhub.core.metrics import rate_limit_decisions_total
from agencyhub.core.redis_client import build_key

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitResult:
    """Outcome of one check-and-increment."""

    allowed: bool
    limit: int
    remaining: int
    retry_after_seconds: int | None = None


@dataclass
class RateLimitCounter:
    """Requests seen in the current window for one subject."""

    count: int
    window_reset_at: float  # timer() value at which the window ends


class RateLimiter(Protocol):
    """Anything that can gate a subject with a fixed window."""

    async def check(
        self,
        subject: str,
        max_count: int,
        window_seconds: float,
    ) -> RateLimitResult:
        ...


def _limit_label(subject: str) -> str:
    # "key-creation:<user id>" -> "key-creation"; keeps metric cardinality low
    return subject.split(":", 1)[0]


def _record(
    subject: str,
    result: RateLimitResult,
    decision: str | None = None,
) -> RateLimitResult:
    if decision is None:
        decision = "allowed" if result.allowed else "denied"
    rate_limit_decisions_total.labels(limit=_limit_label(subject), decision=decision).inc()
    return result


class InMemoryRateLimiter:
    """
    Process-local fixed-window limiter.

    A single lock guards the whole table, so comparison and increment are
    one step for both threads and asyncio tasks. Counters are a cache:
    losing them (restart, sweep) only ever restarts a window.
    """

    def __init__(self, timer: Callable[[], float] = time.monotonic) -> None:
        self._timer = timer
        self._counters: dict[str, RateLimitCounter] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._counters)

    def hit(self, subject: str, max_count: int, window_seconds: float) -> RateLimitResult:
        """Synchronous check-and-increment."""
        if max_count < 1:
            raise ValueError("max_count must be at least 1")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be positive")

        with self._lock:
            now = self._timer()
            counter = self._counters.get(subject)

            if counter is None or now >= counter.window_reset_at:
                self._counters[subject] = RateLimitCounter(
                    count=1,
                    window_reset_at=now + window_seconds,
                )
                return RateLimitResult(
                    allowed=True,
                    limit=max_count,
                    remaining=max_count - 1,
                )

            counter.count += 1

            if counter.count <= max_count:
                return RateLimitResult(
                    allowed=True,
                    limit=max_count,
                    remaining=max_count - counter.count,
                )

            retry_after = max(1, math.ceil(counter.window_reset_at - now))
            return RateLimitResult(
                allowed=False,
                limit=max_count,
                remaining=0,
                retry_after_seconds=retry_after,
            )

    async def check(
        self,
        subject: str,
        max_count: int,
        window_seconds: float,
    ) -> RateLimitResult:
        return _record(subject, self.hit(subject, max_count, window_seconds))

    def sweep(self) -> int:
        """Evict counters whose window has ended. Returns number removed."""
        with self._lock:
            now = self._timer()
            expired = [
                subject
                for subject, counter in self._counters.items()
                if now >= counter.window_reset_at
            ]
            for subject in expired:
                del self._counters[subject]

        if expired:
            logger.debug("Rate limit sweep evicted %d counters", len(expired))
        return len(expired)

    async def asweep(self) -> int:
        return self.sweep()

    def reset(self, subject: str) -> None:
        """Forget one subject."""
        with self._lock:
            self._counters.pop(subject, None)

    def clear(self) -> None:
        """Forget every subject."""
        with self._lock:
            self._counters.clear()


class RedisRateLimiter:
    """
    Fixed-window limiter backed by Redis.

    SET NX opens the window with its expiry, INCR counts, PTTL reports the
    remainder; the three run in one MULTI so concurrent callers across
    processes see a consistent count. If Redis is unreachable the request
    is allowed (fail open) and the error is logged.
    """

    def __init__(self, client: aioredis.Redis, namespace: str = "rl") -> None:
        self._client = client
        self._namespace = namespace

    async def check(
        self,
        subject: str,
        max_count: int,
        window_seconds: float,
    ) -> RateLimitResult:
        key = build_key(self._namespace, subject)
        window_ms = max(1, int(window_seconds * 1000))

        try:
            async with self._client.pipeline(transaction=True) as pipe:
                pipe.set(key, 0, px=window_ms, nx=True)
                pipe.incr(key)
                pipe.pttl(key)
                _, count, ttl_ms = await pipe.execute()
        except RedisError as e:
            logger.error("Rate limit check error for %s: %s", subject, e)
            return _record(
                subject,
                RateLimitResult(allowed=True, limit=max_count, remaining=max_count),
                decision="fail_open",
            )

        count = int(count)
        if count <= max_count:
            return _record(subject, RateLimitResult(
                allowed=True,
                limit=max_count,
                remaining=max_count - count,
            ))

        ttl_ms = int(ttl_ms) if ttl_ms and int(ttl_ms) > 0 else window_ms
        return _record(subject, RateLimitResult(
            allowed=False,
            limit=max_count,
            remaining=0,
            retry_after_seconds=max(1, math.ceil(ttl_ms / 1000)),
        ))
