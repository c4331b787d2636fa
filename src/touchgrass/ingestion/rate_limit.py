"""
Write throttles for the persistence batch path.

Batches are written one item at a time with a small pause between writes,
a courtesy to the primary store rather than a correctness requirement. The
pause is a swappable policy object so it can be tuned or disabled (tests)
without touching storage code.
"""

import asyncio
import logging
import time
from abc import ABC, abstractmethod

logger = logging.getLogger(__name__)

DEFAULT_WRITE_DELAY_SECONDS = 0.1


class Throttle(ABC):
    """Backpressure policy awaited before each write."""

    @abstractmethod
    async def acquire(self) -> None:
        """Wait until the next write may proceed."""
        pass


class NoThrottle(Throttle):
    """Never waits."""

    async def acquire(self) -> None:
        return None


class FixedDelayThrottle(Throttle):
    """
    Keep at least `delay` seconds between successive writes.

    The first write goes through immediately; later writes sleep only for the
    part of the delay that has not already elapsed.
    """

    def __init__(self, delay: float = DEFAULT_WRITE_DELAY_SECONDS):
        if delay < 0:
            raise ValueError("delay must be non-negative")
        self.delay = delay
        self._last_write: float | None = None
        self._lock = asyncio.Lock()

    async def acquire(self) -> None:
        async with self._lock:
            if self._last_write is not None:
                wait_time = self.delay - (time.monotonic() - self._last_write)
                if wait_time > 0:
                    await asyncio.sleep(wait_time)
            self._last_write = time.monotonic()


class TokenBucketThrottle(Throttle):
    """
    Token bucket: bursts of up to `capacity` writes, refilled at
    `rate_per_second` tokens per second.
    """

    def __init__(self, rate_per_second: float, capacity: int = 1):
        if rate_per_second <= 0:
            raise ValueError("rate_per_second must be positive")
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self.rate_per_second = rate_per_second
        self.capacity = capacity
        self._tokens = float(capacity)
        self._updated_at = time.monotonic()
        self._lock = asyncio.Lock()

    @property
    def available_tokens(self) -> float:
        self._refill()
        return self._tokens

    async def acquire(self) -> None:
        async with self._lock:
            self._refill()
            if self._tokens < 1:
                wait_time = (1 - self._tokens) / self.rate_per_second
                logger.debug(f"Write throttled, waiting {wait_time:.3f}s")
                await asyncio.sleep(wait_time)
                self._refill()
            self._tokens = max(self._tokens - 1, 0.0)

    def _refill(self) -> None:
        now = time.monotonic()
        elapsed = now - self._updated_at
        self._updated_at = now
        self._tokens = min(self.capacity, self._tokens + elapsed * self.rate_per_second)


def build_throttle(delay_seconds: float) -> Throttle:
    """Fixed-delay throttle for a positive delay, otherwise no throttling."""
    if delay_seconds and delay_seconds > 0:
        return FixedDelayThrottle(delay_seconds)
    return NoThrottle()
