"""Tests for per-source rate limiting."""

from __future__ import annotations

import asyncio

import pytest

from longbox.core.config import Settings
from longbox.core.ratelimit import RateLimiter, RateLimiterRegistry


class TestRateLimiter:
    """Test RateLimiter spacing and backoff."""

    async def test_first_request_does_not_wait(self, clock):
        """Test that the first request is allowed immediately."""
        limiter = RateLimiter("comicvine", 60, clock=clock, sleep=clock.sleep)

        await limiter.wait()

        assert clock.sleeps == []

    async def test_requests_are_spaced(self, clock):
        """Test that back-to-back requests wait for the base delay."""
        limiter = RateLimiter("comicvine", 60, clock=clock, sleep=clock.sleep)

        await limiter.wait()
        await limiter.wait()

        assert clock.sleeps == [pytest.approx(1.0)]

    async def test_elapsed_time_counts_toward_delay(self, clock):
        """Test that time already elapsed is subtracted from the wait."""
        limiter = RateLimiter("metron", 30, clock=clock, sleep=clock.sleep)

        await limiter.wait()
        clock.now += 1.5
        await limiter.wait()

        assert clock.sleeps == [pytest.approx(0.5)]

    async def test_failures_double_the_delay(self, clock):
        """Test exponential backoff after consecutive failures."""
        limiter = RateLimiter("comicvine", 60, clock=clock, sleep=clock.sleep)

        limiter.record_failure()
        assert limiter.current_delay == 2.0
        limiter.record_failure()
        assert limiter.current_delay == 4.0

        await limiter.wait()
        await limiter.wait()
        assert clock.sleeps == [pytest.approx(4.0)]

    async def test_backoff_is_capped(self):
        """Test that the backoff multiplier stops at 32."""
        limiter = RateLimiter("comicvine", 60)

        for _ in range(10):
            limiter.update(success=False)

        assert limiter.consecutive_errors == 10
        assert limiter.current_delay == 32.0

    async def test_success_resets_backoff(self):
        """Test that a success restores the base delay."""
        limiter = RateLimiter("comicvine", 60)
        limiter.record_failure()
        limiter.record_failure()

        limiter.update(success=True)

        assert limiter.consecutive_errors == 0
        assert limiter.current_delay == limiter.base_delay

    async def test_concurrent_callers_are_serialized(self, clock):
        """Test that concurrent waits each observe the previous caller's slot."""
        limiter = RateLimiter("comicvine", 60, clock=clock, sleep=clock.sleep)

        await asyncio.gather(limiter.wait(), limiter.wait(), limiter.wait())

        assert clock.sleeps == [pytest.approx(1.0), pytest.approx(1.0)]

    def test_rejects_non_positive_rate(self):
        """Test that a zero rate is rejected."""
        with pytest.raises(ValueError):
            RateLimiter("comicvine", 0)


class TestRateLimiterRegistry:
    """Test RateLimiterRegistry."""

    def test_one_limiter_per_source(self):
        """Test that the same limiter is returned for a source regardless of case."""
        registry = RateLimiterRegistry({"ComicVine": 60}, default_requests_per_minute=10)

        limiter = registry.get("comicvine")

        assert registry.get("COMICVINE") is limiter
        assert limiter.requests_per_minute == 60
        assert "comicvine" in registry

    def test_default_rate(self):
        """Test that unknown sources get the default rate."""
        registry = RateLimiterRegistry(default_requests_per_minute=10)

        assert registry.get("gcd").requests_per_minute == 10
        assert "metron" not in registry

    def test_from_settings(self):
        """Test that configured per-source and default rates are used."""
        settings = Settings(rate_limits={"metron": 20}, default_rate_limit=5)

        registry = RateLimiterRegistry.from_settings(settings)

        assert registry.get("Metron").requests_per_minute == 20
        assert registry.get("gcd").requests_per_minute == 5
