"""Unit tests for the outbound provider rate limiter."""

import asyncio

import pytest

from app.services.rate_limiter import RateLimiter


class FakeClock:
    """Monotonic clock that only moves when the limiter sleeps."""

    def __init__(self) -> None:
        self.now = 100.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, delay: float) -> None:
        self.sleeps.append(delay)
        self.now += delay


class TestSpacing:
    @pytest.mark.asyncio
    async def test_first_call_starts_immediately(self) -> None:
        clock = FakeClock()
        limiter = RateLimiter(max_concurrent=5, min_interval=1.0, clock=clock, sleep=clock.sleep)

        async with limiter.slot():
            pass

        assert clock.sleeps == []

    @pytest.mark.asyncio
    async def test_back_to_back_calls_are_spaced(self) -> None:
        clock = FakeClock()
        limiter = RateLimiter(max_concurrent=5, min_interval=1.0, clock=clock, sleep=clock.sleep)

        for _ in range(3):
            async with limiter.slot():
                pass

        assert clock.sleeps == [1.0, 1.0]

    @pytest.mark.asyncio
    async def test_elapsed_time_counts_towards_interval(self) -> None:
        clock = FakeClock()
        limiter = RateLimiter(max_concurrent=5, min_interval=1.0, clock=clock, sleep=clock.sleep)

        async with limiter.slot():
            pass
        clock.now += 0.75
        async with limiter.slot():
            pass

        assert clock.sleeps == [pytest.approx(0.25)]

    @pytest.mark.asyncio
    async def test_zero_interval_never_sleeps(self) -> None:
        clock = FakeClock()
        limiter = RateLimiter(max_concurrent=2, min_interval=0.0, clock=clock, sleep=clock.sleep)

        for _ in range(4):
            async with limiter.slot():
                pass

        assert clock.sleeps == []


class TestConcurrency:
    @pytest.mark.asyncio
    async def test_in_flight_never_exceeds_bound(self) -> None:
        limiter = RateLimiter(max_concurrent=2, min_interval=0.0)
        peak = 0

        async def call() -> None:
            nonlocal peak
            async with limiter.slot():
                peak = max(peak, limiter.in_flight)
                await asyncio.sleep(0.01)

        await asyncio.gather(*(call() for _ in range(6)))

        assert peak == 2
        assert limiter.in_flight == 0

    @pytest.mark.asyncio
    async def test_slot_is_released_when_call_fails(self) -> None:
        limiter = RateLimiter(max_concurrent=1, min_interval=0.0)

        with pytest.raises(RuntimeError):
            async with limiter.slot():
                raise RuntimeError("provider exploded")

        async with limiter.slot():
            assert limiter.in_flight == 1


class TestConstruction:
    def test_rejects_zero_concurrency(self) -> None:
        with pytest.raises(ValueError):
            RateLimiter(max_concurrent=0)

    def test_rejects_negative_interval(self) -> None:
        with pytest.raises(ValueError):
            RateLimiter(min_interval=-1)

    def test_from_settings(self, settings) -> None:
        limiter = RateLimiter.from_settings(settings)
        assert limiter.max_concurrent == settings.PROVIDER_MAX_CONCURRENCY
        assert limiter.min_interval == settings.PROVIDER_MIN_INTERVAL_SECONDS
