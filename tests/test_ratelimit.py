"""Unit tests for ratelimit.py - Per-action client-side throttling."""

import asyncio

import pytest
from aiolimiter import AsyncLimiter

from ratelimit import ActionRateLimiter


class TestActionRateLimiter:
    """Tests for ActionRateLimiter."""

    def test_rate_for_uses_overrides(self):
        limiter = ActionRateLimiter(default_rate=20, overrides={"CreateInstance": 2})
        assert limiter.rate_for("CreateInstance") == 2
        assert limiter.rate_for("DescribeInstance") == 20

    def test_limiter_created_once_per_action(self):
        limiter = ActionRateLimiter()
        first = limiter.get_limiter("DescribeInstance")
        assert isinstance(first, AsyncLimiter)
        assert limiter.get_limiter("DescribeInstance") is first
        assert limiter.get_limiter("DeleteInstance") is not first

    def test_zero_rate_disables(self):
        limiter = ActionRateLimiter(default_rate=0)
        assert limiter.get_limiter("DescribeInstance") is None


@pytest.mark.asyncio
class TestAcquire:
    """Tests for ActionRateLimiter.acquire."""

    async def test_acquire_within_rate(self):
        limiter = ActionRateLimiter(default_rate=5, period=1.0)
        results = [await limiter.acquire("DescribeInstance") for _ in range(5)]
        assert results == [True] * 5

    async def test_unlimited_and_anonymous_actions(self):
        limiter = ActionRateLimiter(default_rate=0)
        assert await limiter.acquire("DescribeInstance") is True
        assert await limiter.acquire(None) is True
        assert limiter.get_limiter("DescribeInstance") is None

    async def test_times_out_when_exhausted(self):
        limiter = ActionRateLimiter(default_rate=1, period=30)
        assert await limiter.acquire("DescribeInstance") is True
        assert await limiter.acquire("DescribeInstance", timeout=0.05) is False
        assert await limiter.acquire("DescribeInstance", timeout=0) is False

    async def test_cancel_event_stops_wait(self):
        limiter = ActionRateLimiter(default_rate=1, period=30)
        await limiter.acquire("DescribeInstance")
        cancel = asyncio.Event()
        asyncio.get_running_loop().call_later(0.05, cancel.set)

        assert await limiter.acquire("DescribeInstance", cancel_event=cancel) is False

    async def test_cancel_event_already_set(self):
        limiter = ActionRateLimiter(default_rate=5)
        cancel = asyncio.Event()
        cancel.set()
        assert await limiter.acquire("DescribeInstance", cancel_event=cancel) is False

    async def test_actions_limited_independently(self):
        limiter = ActionRateLimiter(default_rate=1, period=30)
        assert await limiter.acquire("DescribeInstance") is True
        assert await limiter.acquire("DeleteInstance", timeout=0.05) is True
