"""
Token-bucket limiter used to keep image requests under the per-minute quota.
"""

from __future__ import annotations

import asyncio
import time
from typing import Awaitable, Callable

Clock = Callable[[], float]
SleepCallable = Callable[[float], Awaitable[None]]

# Absorbs float drift from refill arithmetic.
_EPSILON = 1e-9


class RateLimiter:
    """
    Token bucket holding ``capacity`` tokens that refill over ``period`` seconds.

    A full batch of ``capacity`` requests drains the bucket, so the next batch
    waits roughly one full period. ``clock`` and ``sleep`` are injectable so
    tests can drive time deterministically.
    """

    def __init__(
        self,
        *,
        capacity: int,
        period: float,
        clock: Clock = time.monotonic,
        sleep: SleepCallable = asyncio.sleep,
    ) -> None:
        if capacity < 1:
            raise ValueError("capacity must be at least 1.")
        if period <= 0:
            raise ValueError("period must be positive.")

        self._capacity = capacity
        self._rate = capacity / period
        self._clock = clock
        self._sleep = sleep
        self._tokens = float(capacity)
        self._updated_at = clock()
        self._lock = asyncio.Lock()

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def available(self) -> float:
        self._refill()
        return self._tokens

    async def acquire(self, tokens: int = 1) -> float:
        """
        Take ``tokens`` from the bucket, waiting for refills as needed.

        Returns the total number of seconds spent waiting.
        """
        if tokens < 1:
            raise ValueError("tokens must be at least 1.")
        if tokens > self._capacity:
            raise ValueError(
                f"Cannot acquire {tokens} tokens from a bucket of capacity {self._capacity}."
            )

        waited = 0.0
        async with self._lock:
            while True:
                self._refill()
                if self._tokens + _EPSILON >= tokens:
                    self._tokens -= tokens
                    return waited

                deficit = tokens - self._tokens
                wait_seconds = deficit / self._rate
                waited += wait_seconds
                await self._sleep(wait_seconds)

    def _refill(self) -> None:
        now = self._clock()
        elapsed = max(0.0, now - self._updated_at)
        self._updated_at = now
        self._tokens = min(float(self._capacity), self._tokens + elapsed * self._rate)
