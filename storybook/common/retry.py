"""
Bounded retry helper with pluggable delay schedules.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, TypeVar

T = TypeVar("T")

DelaySchedule = Callable[[int], float]
SleepCallable = Callable[[float], Awaitable[None]]
ErrorCallback = Callable[[int, Exception], None]

logger = logging.getLogger(__name__)


def linear_backoff(base_seconds: float) -> DelaySchedule:
    """Wait ``base * attempt`` seconds after the given failed attempt."""

    def _delay(attempt: int) -> float:
        return base_seconds * attempt

    return _delay


def exponential_backoff(base_seconds: float, factor: float = 2.0) -> DelaySchedule:
    """Wait ``base * factor ** (attempt - 1)`` seconds after the given failed attempt."""

    def _delay(attempt: int) -> float:
        return base_seconds * factor ** (attempt - 1)

    return _delay


async def retry_async(
    operation: Callable[[], Awaitable[T]],
    *,
    attempts: int,
    delay: DelaySchedule,
    sleep: SleepCallable = asyncio.sleep,
    on_error: ErrorCallback | None = None,
    retry_if: Callable[[Exception], bool] | None = None,
    label: str = "operation",
) -> T:
    """
    Run ``operation`` up to ``attempts`` times, sleeping ``delay(attempt)`` between tries.

    The last exception is re-raised once attempts are exhausted or ``retry_if``
    rejects it.
    """
    if attempts < 1:
        raise ValueError("attempts must be at least 1.")

    for attempt in range(1, attempts + 1):
        try:
            return await operation()
        except Exception as exc:
            if on_error is not None:
                on_error(attempt, exc)
            logger.warning("%s attempt %d/%d failed: %s", label, attempt, attempts, exc)

            if attempt >= attempts or (retry_if is not None and not retry_if(exc)):
                raise

            wait_seconds = delay(attempt)
            if wait_seconds > 0:
                logger.info("%s waiting %.1fs before retry", label, wait_seconds)
                await sleep(wait_seconds)

    raise RuntimeError("unreachable")  # pragma: no cover
