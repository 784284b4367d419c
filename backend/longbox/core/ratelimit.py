"""Per-source request throttling with exponential backoff."""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable

import structlog

from longbox.core.config import Settings, get_settings
from longbox.core.metrics import rate_limiter_backoff_level

logger = structlog.get_logger("longbox.ratelimit")

MAX_BACKOFF_EXPONENT = 5


class RateLimiter:
    """Throttle for a single external source.

    Requests are spaced by ``60 / requests_per_minute`` seconds. Each
    consecutive failure doubles the spacing, up to ``2 ** 5`` times the base
    delay; the next success resets it. Callers share one instance per source
    so independent call sites spend the same budget.
    """

    def __init__(
        self,
        source: str,
        requests_per_minute: int,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if requests_per_minute <= 0:
            raise ValueError("requests_per_minute must be positive")
        self.source = source
        self.requests_per_minute = requests_per_minute
        self._clock = clock
        self._sleep = sleep
        self._lock = asyncio.Lock()
        self._last_request_at: float | None = None
        self._consecutive_errors = 0

    @property
    def base_delay(self) -> float:
        return 60.0 / self.requests_per_minute

    @property
    def consecutive_errors(self) -> int:
        return self._consecutive_errors

    @property
    def current_delay(self) -> float:
        """Minimum spacing between requests given the current failure streak."""
        exponent = min(self._consecutive_errors, MAX_BACKOFF_EXPONENT)
        return self.base_delay * (2**exponent)

    async def wait(self) -> None:
        """Wait until the next request is allowed, then claim the slot.

        Concurrent callers are serialized by a lock so each one observes the
        slot claimed by the previous caller.
        """
        async with self._lock:
            now = self._clock()
            if self._last_request_at is not None:
                wait_time = self._last_request_at + self.current_delay - now
                if wait_time > 0:
                    logger.debug(
                        "Rate limit reached, waiting",
                        source=self.source,
                        wait_seconds=round(wait_time, 3),
                        consecutive_errors=self._consecutive_errors,
                    )
                    await self._sleep(wait_time)
                    now = self._clock()
            self._last_request_at = now

    def record_success(self) -> None:
        if self._consecutive_errors:
            logger.debug("Rate limiter backoff reset", source=self.source)
        self._consecutive_errors = 0
        rate_limiter_backoff_level.labels(source=self.source).set(0)

    def record_failure(self) -> None:
        self._consecutive_errors += 1
        rate_limiter_backoff_level.labels(source=self.source).set(self._consecutive_errors)
        logger.warning(
            "External request failed, backing off",
            source=self.source,
            consecutive_errors=self._consecutive_errors,
            next_delay_seconds=round(self.current_delay, 3),
        )

    def update(self, success: bool) -> None:
        """Feed the outcome of a request into the backoff state."""
        if success:
            self.record_success()
        else:
            self.record_failure()


class RateLimiterRegistry:
    """Hands out exactly one RateLimiter per source name."""

    def __init__(
        self,
        limits: dict[str, int] | None = None,
        default_requests_per_minute: int = 30,
    ) -> None:
        self._limits = {k.lower(): v for k, v in (limits or {}).items()}
        self._default = default_requests_per_minute
        self._limiters: dict[str, RateLimiter] = {}

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> RateLimiterRegistry:
        """Registry using the configured per-source and default request rates."""
        settings = settings or get_settings()
        return cls(settings.rate_limits, settings.default_rate_limit)

    def get(self, source: str) -> RateLimiter:
        key = source.lower()
        limiter = self._limiters.get(key)
        if limiter is None:
            limiter = RateLimiter(key, self._limits.get(key, self._default))
            self._limiters[key] = limiter
        return limiter

    def __contains__(self, source: str) -> bool:
        return source.lower() in self._limiters
