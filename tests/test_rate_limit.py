"""Tests for docmind/core/rate_limit.py"""

import pytest

from docmind.core.errors import RateLimited
from docmind.core.rate_limit import RateLimiter


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


class TestRateLimiter:
    """Sliding window per identity."""

    @pytest.mark.asyncio
    async def test_limit_then_reject(self):
        clock = FakeClock()
        limiter = RateLimiter(limit=2, window_seconds=60, clock=clock)

        first = await limiter.check("u")
        second = await limiter.check("u")
        assert (first.remaining, second.remaining) == (1, 0)

        clock.now += 10
        with pytest.raises(RateLimited) as exc_info:
            await limiter.check("u")
        assert exc_info.value.retry_after == 50
        assert exc_info.value.limit == 2

    @pytest.mark.asyncio
    async def test_window_slides(self):
        clock = FakeClock()
        limiter = RateLimiter(limit=1, window_seconds=60, clock=clock)
        await limiter.check("u")

        clock.now += 60
        state = await limiter.check("u")
        assert state.remaining == 0

    @pytest.mark.asyncio
    async def test_identities_independent(self):
        limiter = RateLimiter(limit=1, window_seconds=60, clock=FakeClock())
        await limiter.check("a")
        await limiter.check("b")
        with pytest.raises(RateLimited):
            await limiter.check("a")

    @pytest.mark.asyncio
    async def test_idle_identities_forgotten(self):
        """Identities silent for a full window do not stay in memory."""
        clock = FakeClock()
        limiter = RateLimiter(limit=5, window_seconds=60, clock=clock)
        for n in range(100):
            await limiter.check(f"user-{n}")

        clock.now += 30
        await limiter.check("active")
        assert len(limiter._hits) == 101

        clock.now += 45
        await limiter.check("newcomer")
        assert set(limiter._hits) == {"active", "newcomer"}
