"""Local series index built from Comic Book Roundup's public sitemaps.

The sitemaps list every review page, so the index covers every series the
site knows about without scraping search results. Series pages look like
``/comic-books/reviews/{publisher}/{series-slug}`` and issue pages add one
more path segment; both contribute the same series entry.
"""

from __future__ import annotations

import re
import time
from collections.abc import Callable, Iterable
from dataclasses import asdict, dataclass
from typing import Any

import structlog
from bs4 import BeautifulSoup

from longbox.core.cache import Cache, MemoryCache
from longbox.core.config import DEFAULT_SITEMAP_URLS, Settings, get_settings
from longbox.core.errors import TransportError
from longbox.core.http import HttpFetcher
from longbox.core.matching.config import MatchingConfig, get_matching_config
from longbox.core.matching.publishers import is_known_imprint
from longbox.core.matching.titles import tiered_similarity
from longbox.core.ratelimit import RateLimiter, RateLimiterRegistry

logger = structlog.get_logger("longbox.sitemap")

SITEMAP_SOURCE = "comicbookroundup"
SITEMAP_CACHE_KEY = "comicbookroundup:sitemap-series-index"
SITEMAP_CACHE_TTL = 14 * 24 * 60 * 60
SITEMAP_FAILURE_TTL = 5 * 60

REVIEW_URL_PATTERN = re.compile(
    r"comicbookroundup\.com/comic-books/reviews/([^/]+)/([^/]+)(?:/[^/]+)?$"
)

_CAMEL_CASE = re.compile(r"([a-z])([A-Z])")
_NON_ALPHANUMERIC = re.compile(r"[^a-z0-9]+")


@dataclass(frozen=True)
class SitemapSeriesEntry:
    source_id: str  # "{publisher}/{series_slug}"
    publisher: str
    series_slug: str
    series_name: str


@dataclass(frozen=True)
class SitemapMatch:
    source_id: str
    confidence: float
    matched_name: str
    match_method: str = "sitemap"


def parse_sitemap_urls(xml: str) -> list[str]:
    """Extract every ``<url><loc>`` value from a sitemap document."""
    soup = BeautifulSoup(xml, "html.parser")
    urls = []
    for loc in soup.select("url loc"):
        url = loc.get_text(strip=True)
        if url:
            urls.append(url)
    return urls


def slug_to_name(slug: str) -> str:
    """Turn a series slug into a display name.

    Examples:
        >>> slug_to_name("helen-of-wyndhorn-(2024)")
        'Helen Of Wyndhorn (2024)'
    """
    name = slug.replace("-", " ")
    name = re.sub(r"\(\s*", "(", name)
    name = re.sub(r"\s*\)", ")", name)
    name = re.sub(r"\b\w", lambda m: m.group(0).upper(), name)
    return name.strip()


def extract_series_from_urls(urls: Iterable[str]) -> list[SitemapSeriesEntry]:
    """One entry per (publisher, series slug) found among review URLs."""
    entries: dict[str, SitemapSeriesEntry] = {}
    for url in urls:
        match = REVIEW_URL_PATTERN.search(url)
        if not match:
            continue
        publisher, slug = match.groups()
        source_id = f"{publisher}/{slug}"
        if source_id in entries:
            continue
        entries[source_id] = SitemapSeriesEntry(
            source_id=source_id,
            publisher=publisher,
            series_slug=slug,
            series_name=slug_to_name(slug),
        )
    return list(entries.values())


def normalize_sitemap_text(text: str) -> str:
    """Lowercase, split camelCase ("SelfMadeHero" -> "self made hero"), collapse punctuation."""
    text = _CAMEL_CASE.sub(r"\1 \2", text)
    return _NON_ALPHANUMERIC.sub(" ", text.lower()).strip()


def _publishers_overlap(entry_publisher: str, query_publisher: str) -> bool:
    entry = normalize_sitemap_text(entry_publisher)
    query = normalize_sitemap_text(query_publisher)
    if not entry or not query:
        return False
    return entry == query or query in entry or entry in query


def score_entry(
    entry: SitemapSeriesEntry,
    series_name: str,
    publisher: str | None = None,
    config: MatchingConfig | None = None,
) -> float:
    """Weighted score where the name dominates and the publisher breaks ties."""
    config = config or get_matching_config()
    name_score = tiered_similarity(
        normalize_sitemap_text(series_name),
        normalize_sitemap_text(entry.series_name),
        config,
    )

    publisher_bonus = 0.0
    if publisher:
        if _publishers_overlap(entry.publisher, publisher):
            publisher_bonus = 1.0
        elif is_known_imprint(entry.publisher, publisher):
            publisher_bonus = config.sitemap_imprint_bonus

    return (
        name_score * config.sitemap_name_weight
        + publisher_bonus * config.sitemap_publisher_weight
    )


def search_series_index(
    series_name: str,
    index: list[SitemapSeriesEntry],
    publisher: str | None = None,
    config: MatchingConfig | None = None,
) -> SitemapMatch | None:
    """Best-scoring entry for ``series_name``, or None below the confidence floor.

    Ties keep the entry that appears first in the index.
    """
    config = config or get_matching_config()
    if not normalize_sitemap_text(series_name):
        return None

    best: SitemapMatch | None = None
    for entry in index:
        score = score_entry(entry, series_name, publisher, config)
        if best is None or score > best.confidence:
            best = SitemapMatch(
                source_id=entry.source_id,
                confidence=score,
                matched_name=entry.series_name,
            )

    if best is None or best.confidence < config.sitemap_min_confidence:
        return None
    return best


class SitemapSeriesIndex:
    """Builds, caches and searches the sitemap series index.

    The whole index is cached as one entry: for ``cache_ttl`` seconds after
    a successful build and ``failure_ttl`` seconds after a build that
    produced nothing, so a failing site is not hammered on every lookup.
    """

    def __init__(
        self,
        fetcher: HttpFetcher,
        limiter: RateLimiter,
        cache: Cache | None = None,
        sitemap_urls: list[str] | None = None,
        cache_ttl: float = SITEMAP_CACHE_TTL,
        failure_ttl: float = SITEMAP_FAILURE_TTL,
        config: MatchingConfig | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.fetcher = fetcher
        self.limiter = limiter
        self.cache = cache if cache is not None else MemoryCache(max_entries=4, name="sitemap")
        self.sitemap_urls = list(sitemap_urls or DEFAULT_SITEMAP_URLS)
        self.cache_ttl = cache_ttl
        self.failure_ttl = failure_ttl
        self.config = config
        self._clock = clock

    @classmethod
    def from_settings(
        cls,
        fetcher: HttpFetcher,
        limiters: RateLimiterRegistry,
        cache: Cache | None = None,
        settings: Settings | None = None,
    ) -> SitemapSeriesIndex:
        """Index over the configured sitemap URLs and cache lifetimes.

        The limiter is the registry's shared one for the sitemap source.
        """
        settings = settings or get_settings()
        return cls(
            fetcher,
            limiters.get(SITEMAP_SOURCE),
            cache=cache,
            sitemap_urls=settings.sitemap_urls,
            cache_ttl=settings.sitemap_cache_ttl,
            failure_ttl=settings.sitemap_failure_ttl,
        )

    async def _fetch_sitemap(self, url: str) -> str | None:
        logger.debug("Fetching sitemap", url=url)
        try:
            return await self.fetcher.get_text(
                url,
                self.limiter,
                headers={"Accept": "application/xml,text/xml,*/*"},
            )
        except TransportError as e:
            logger.warning("Failed to fetch sitemap", url=url, error=str(e))
            return None

    async def build_index(self) -> list[SitemapSeriesEntry]:
        """Fetch every sitemap and extract series entries. Returns [] when nothing could be fetched."""
        logger.info("Building sitemap series index", sitemaps=len(self.sitemap_urls))
        urls: list[str] = []
        fetched = 0
        for sitemap_url in self.sitemap_urls:
            xml = await self._fetch_sitemap(sitemap_url)
            if xml is None:
                continue
            fetched += 1
            urls.extend(parse_sitemap_urls(xml))

        if not fetched:
            logger.warning("Failed to fetch any sitemaps")
            return []

        entries = extract_series_from_urls(urls)
        logger.info("Built sitemap series index", urls=len(urls), series=len(entries))
        return entries

    async def _read_cached(self) -> dict[str, Any] | None:
        try:
            cached = await self.cache.get(SITEMAP_CACHE_KEY)
        except Exception as e:
            logger.warning("Sitemap cache read failed", error=str(e))
            return None
        if not isinstance(cached, dict) or "entries" not in cached:
            return None
        return cached

    async def get_index(self) -> list[SitemapSeriesEntry]:
        """The cached index, rebuilt when missing or stale."""
        cached = await self._read_cached()
        if cached is not None and self._clock() < cached["expires_at"]:
            logger.debug("Using cached sitemap index", series=len(cached["entries"]))
            return [SitemapSeriesEntry(**e) for e in cached["entries"]]

        entries = await self.build_index()
        # Empty results are cached too, for a shorter time
        ttl = self.cache_ttl if entries else self.failure_ttl
        now = self._clock()
        payload = {
            "entries": [asdict(e) for e in entries],
            "created_at": now,
            "expires_at": now + ttl,
        }
        try:
            await self.cache.set(SITEMAP_CACHE_KEY, payload, ttl)
        except Exception as e:
            logger.warning("Sitemap cache write failed", error=str(e))
        return entries

    async def refresh(self) -> dict[str, Any]:
        """Drop the cached index and rebuild it."""
        logger.info("Refreshing sitemap index")
        try:
            await self.cache.delete(SITEMAP_CACHE_KEY)
        except Exception as e:
            logger.warning("Sitemap cache delete failed", error=str(e))
        entries = await self.get_index()
        result = {
            "success": bool(entries),
            "series_count": len(entries),
            "error": None if entries else "Failed to fetch sitemaps",
        }
        logger.info("Sitemap index refresh complete", **result)
        return result

    async def status(self) -> dict[str, Any]:
        cached = await self._read_cached()
        if cached is None:
            return {
                "cached": False,
                "series_count": 0,
                "created_at": None,
                "expires_at": None,
                "is_stale": True,
                "sitemap_urls": list(self.sitemap_urls),
            }
        return {
            "cached": True,
            "series_count": len(cached["entries"]),
            "created_at": cached["created_at"],
            "expires_at": cached["expires_at"],
            "is_stale": self._clock() >= cached["expires_at"],
            "sitemap_urls": list(self.sitemap_urls),
        }

    async def search(self, series_name: str, publisher: str | None = None) -> SitemapMatch | None:
        """Look up a series by name. Never raises; failures are logged and return None."""
        try:
            index = await self.get_index()
            if not index:
                logger.warning("Sitemap index is empty, cannot search")
                return None
            match = search_series_index(series_name, index, publisher, self.config)
        except Exception as e:
            logger.error(
                "Error searching sitemap index",
                series_name=series_name,
                publisher=publisher,
                error=str(e),
            )
            return None

        if match:
            logger.debug(
                "Found series via sitemap index",
                series_name=series_name,
                source_id=match.source_id,
                confidence=round(match.confidence, 3),
            )
        return match
