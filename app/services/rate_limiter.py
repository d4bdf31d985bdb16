"""Client-side limiter for outbound provider calls."""

import asyncio
import time
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager

from app.core.config import Settings


class RateLimiter:
    """Bound concurrent provider calls and space out their start times.

    At most ``max_concurrent`` calls are in flight, and two calls never
    start less than ``min_interval`` seconds apart. Excess callers wait.

    Example:
        async with limiter.slot():
            response = await client.get("/balance")
    """

    def __init__(
        self,
        max_concurrent: int = 5,
        min_interval: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")
        if min_interval < 0:
            raise ValueError("min_interval must not be negative")
        self.max_concurrent = max_concurrent
        self.min_interval = min_interval
        self._clock = clock
        self._sleep = sleep
        self._semaphore = asyncio.Semaphore(max_concurrent)
        self._spacing_lock = asyncio.Lock()
        self._last_start: float | None = None
        self.in_flight = 0

    @classmethod
    def from_settings(cls, settings: Settings) -> "RateLimiter":
        return cls(
            max_concurrent=settings.PROVIDER_MAX_CONCURRENCY,
            min_interval=settings.PROVIDER_MIN_INTERVAL_SECONDS,
        )

    async def _wait_for_turn(self) -> None:
        async with self._spacing_lock:
            now = self._clock()
            if self._last_start is not None:
                remaining = self.min_interval - (now - self._last_start)
                if remaining > 0:
                    await self._sleep(remaining)
                    now = self._clock()
            self._last_start = now

    @asynccontextmanager
    async def slot(self) -> AsyncIterator[None]:
        async with self._semaphore:
            await self._wait_for_turn()
            self.in_flight += 1
            try:
                yield
            finally:
                self.in_flight -= 1
