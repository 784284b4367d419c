"""HTTP fetcher shared by external metadata lookups."""

from __future__ import annotations

import asyncio
import random
from collections.abc import Awaitable, Callable
from typing import Any

import httpx
import structlog

from longbox.core.config import Settings, get_settings
from longbox.core.errors import TransportError
from longbox.core.metrics import external_requests_total
from longbox.core.ratelimit import RateLimiter

logger = structlog.get_logger("longbox.http")

RETRYABLE_STATUS_CODES = (420, 429)


class HttpFetcher:
    """Rate-limited GET requests with retry on throttling and network errors.

    Every attempt goes through the source's RateLimiter, and every outcome is
    fed back into it: non-2xx responses and network errors count as failures.
    """

    def __init__(
        self,
        user_agent: str,
        timeout: float = 30.0,
        max_retries: int = 3,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.user_agent = user_agent
        self.timeout = timeout
        self.max_retries = max_retries
        self._transport = transport
        self._sleep = sleep

    @classmethod
    def from_settings(
        cls,
        settings: Settings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> HttpFetcher:
        """Fetcher using the configured user agent, timeout and retry count."""
        settings = settings or get_settings()
        return cls(
            settings.http_user_agent,
            timeout=settings.http_timeout,
            max_retries=settings.http_max_retries,
            transport=transport,
        )

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self.timeout,
            transport=self._transport,
            follow_redirects=True,
            headers={"User-Agent": self.user_agent},
        )

    async def get(
        self,
        url: str,
        limiter: RateLimiter,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> httpx.Response:
        """Fetch ``url`` and return the successful response.

        Raises:
            TransportError: the request failed after all retries or returned a
                non-retryable error status.
        """
        source = limiter.source
        last_error: Exception | None = None

        for attempt in range(self.max_retries + 1):
            await limiter.wait()
            try:
                async with self._client() as client:
                    response = await client.get(url, params=params, headers=headers)
                    response.raise_for_status()
            except httpx.HTTPStatusError as e:
                last_error = e
                limiter.record_failure()
                external_requests_total.labels(source=source, outcome="failure").inc()
                status_code = e.response.status_code
                if status_code in RETRYABLE_STATUS_CODES and attempt < self.max_retries:
                    # Exponential backoff with jitter to avoid thundering herd
                    base_wait = 2**attempt
                    wait_time = base_wait + random.uniform(0, base_wait * 0.5)
                    logger.warning(
                        "Rate limited by source, retrying",
                        source=source,
                        status_code=status_code,
                        attempt=attempt + 1,
                        wait_seconds=round(wait_time, 2),
                    )
                    await self._sleep(wait_time)
                    continue
                raise TransportError(source, f"HTTP {status_code} for {url}", status_code) from e
            except httpx.RequestError as e:
                last_error = e
                limiter.record_failure()
                external_requests_total.labels(source=source, outcome="failure").inc()
                if attempt < self.max_retries:
                    wait_time = 2**attempt
                    logger.warning(
                        "Network error, retrying",
                        source=source,
                        error=str(e),
                        attempt=attempt + 1,
                        wait_seconds=wait_time,
                    )
                    await self._sleep(wait_time)
                    continue
                raise TransportError(source, f"Network error for {url}: {e}") from e

            limiter.record_success()
            external_requests_total.labels(source=source, outcome="success").inc()
            return response

        raise TransportError(source, f"Request failed for {url}: {last_error}")

    async def get_text(self, url: str, limiter: RateLimiter, **kwargs: Any) -> str:
        response = await self.get(url, limiter, **kwargs)
        return response.text

    async def get_json(self, url: str, limiter: RateLimiter, **kwargs: Any) -> Any:
        response = await self.get(url, limiter, **kwargs)
        try:
            return response.json()
        except ValueError as e:
            limiter.record_failure()
            raise TransportError(limiter.source, f"Malformed JSON from {url}") from e
