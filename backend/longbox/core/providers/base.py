"""Base abstract class for metadata source providers."""

from __future__ import annotations

import hashlib
import json
from abc import ABC, abstractmethod
from typing import Any

import structlog

from longbox.core.cache import Cache
from longbox.core.http import HttpFetcher
from longbox.core.matching.models import IssueMetadata, SeriesMetadata
from longbox.core.ratelimit import RateLimiter

DEFAULT_RESPONSE_TTL = 24 * 60 * 60


class MetadataProvider(ABC):
    """Abstract base class for metadata sources.

    Every request goes through the source's shared RateLimiter. Responses
    are cached when a cache is supplied; cache failures fall back to a
    direct fetch.
    """

    def __init__(
        self,
        name: str,
        fetcher: HttpFetcher,
        limiter: RateLimiter,
        cache: Cache | None = None,
        cache_ttl: float = DEFAULT_RESPONSE_TTL,
    ) -> None:
        """Initialize provider.

        Args:
            name: Source name (e.g. "comicvine"); also the matcher's status key
            fetcher: Shared HTTP fetcher
            limiter: The source's shared rate limiter
            cache: Optional response cache
            cache_ttl: Seconds a cached response stays valid
        """
        self.name = name
        self.fetcher = fetcher
        self.limiter = limiter
        self.cache = cache
        self.cache_ttl = cache_ttl
        self.logger = structlog.get_logger(f"longbox.providers.{name.lower()}")

    def _cache_key(self, url: str, params: dict[str, Any]) -> str:
        payload = f"{url}:{json.dumps(sorted(params.items()), sort_keys=True)}"
        return f"{self.name}:{hashlib.sha256(payload.encode()).hexdigest()}"

    async def _fetch_json(
        self,
        url: str,
        params: dict[str, Any] | None = None,
        use_cache: bool = True,
    ) -> Any:
        """GET ``url`` as JSON.

        Raises:
            TransportError: The request failed.
        """
        params = params or {}
        key = self._cache_key(url, params)
        if use_cache and self.cache is not None:
            try:
                cached = await self.cache.get(key)
            except Exception as e:
                self.logger.warning("Cache read failed, fetching directly", error=str(e))
                cached = None
            if cached is not None:
                self.logger.debug("Using cached response", url=url, cache_key=key[-8:])
                return cached

        data = await self.fetcher.get_json(
            url, self.limiter, params=params, headers={"Accept": "application/json"}
        )

        if use_cache and self.cache is not None:
            try:
                await self.cache.set(key, data, self.cache_ttl)
            except Exception as e:
                self.logger.warning("Cache write failed", error=str(e))
        return data

    async def check_availability(self) -> bool:
        """Whether the source is configured and usable."""
        return True

    @abstractmethod
    async def search_series(
        self,
        name: str,
        year: int | None = None,
        publisher: str | None = None,
        limit: int = 10,
    ) -> list[SeriesMetadata]:
        """Search the source for series named ``name``.

        Raises:
            TransportError: The source could not be queried.
        """

    @abstractmethod
    async def list_issues(self, series_id: str, limit: int = 200) -> list[IssueMetadata]:
        """Issues of one series in this source.

        Raises:
            TransportError: The source could not be queried.
        """
