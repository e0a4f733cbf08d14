"""Token bucket rate limiting for outbound Amazon API calls."""

from __future__ import annotations

import asyncio
import logging
import math
import time
from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)


class RateLimiter:
    """In-process token bucket.

    State lives on the instance only. Separate worker processes each own a
    bucket, so the aggregate rate across N processes is N times ``refill_rate``.
    There is no lock: callers share the bucket cooperatively on one event loop.
    """

    def __init__(
        self,
        capacity: int = 5,
        refill_rate: float = 1.0,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleeper: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        if refill_rate <= 0:
            raise ValueError("refill_rate must be positive")
        self.capacity = capacity
        self.refill_rate = refill_rate
        self._clock = clock
        self._sleep = sleeper
        self.tokens = float(capacity)
        self.last_refill = clock()

    @property
    def backoff_seconds(self) -> float:
        return math.ceil(1000 / self.refill_rate) / 1000

    async def acquire(self) -> None:
        self._refill()
        if self.tokens >= 1:
            self.tokens -= 1
            return
        wait = self.backoff_seconds
        logger.debug("Rate limiter empty, waiting %.3fs", wait)
        await self._sleep(wait)
        self._refill()
        self.tokens = max(0.0, self.tokens - 1)

    def available_tokens(self) -> float:
        self._refill()
        return self.tokens

    def _refill(self) -> None:
        now = self._clock()
        elapsed = max(0.0, now - self.last_refill)
        self.tokens = min(float(self.capacity), self.tokens + elapsed * self.refill_rate)
        self.last_refill = now
