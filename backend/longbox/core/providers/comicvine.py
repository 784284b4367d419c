"""ComicVine metadata provider."""

from __future__ import annotations

from typing import Any

from longbox.core.cache import Cache
from longbox.core.errors import TransportError
from longbox.core.http import HttpFetcher
from longbox.core.matching.models import IssueMetadata, SeriesMetadata
from longbox.core.ratelimit import RateLimiter

from .base import MetadataProvider

COMICVINE_BASE_URL = "https://comicvine.gamespot.com/api"
VOLUME_FIELDS = "id,name,publisher,start_year,count_of_issues,aliases,site_detail_url"
ISSUE_FIELDS = "id,issue_number,name,cover_date,volume"
# ComicVine caps page size at 100
MAX_PAGE_SIZE = 100


def _to_int(value: Any) -> int | None:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def normalize_volume(volume: dict[str, Any]) -> SeriesMetadata:
    """Turn a ComicVine volume payload into SeriesMetadata."""
    publisher = volume.get("publisher")
    aliases = volume.get("aliases") or ""
    return SeriesMetadata(
        source="comicvine",
        source_id=str(volume["id"]),
        name=volume.get("name") or "",
        publisher=publisher.get("name") if isinstance(publisher, dict) else publisher,
        start_year=_to_int(volume.get("start_year")),
        issue_count=_to_int(volume.get("count_of_issues")),
        # Aliases come back as one newline-separated string
        aliases=[a.strip() for a in aliases.splitlines() if a.strip()],
        extra={"site_detail_url": volume.get("site_detail_url")},
    )


def normalize_issue(issue: dict[str, Any]) -> IssueMetadata:
    volume = issue.get("volume")
    return IssueMetadata(
        source="comicvine",
        source_id=str(issue["id"]),
        number=issue.get("issue_number"),
        title=issue.get("name"),
        cover_date=issue.get("cover_date"),
        series_id=str(volume["id"]) if isinstance(volume, dict) and volume.get("id") else None,
    )


class ComicVineProvider(MetadataProvider):
    """Volume search and issue listing against the ComicVine API."""

    def __init__(
        self,
        api_key: str,
        fetcher: HttpFetcher,
        limiter: RateLimiter,
        cache: Cache | None = None,
        base_url: str = COMICVINE_BASE_URL,
    ) -> None:
        super().__init__("comicvine", fetcher, limiter, cache)
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")

    async def check_availability(self) -> bool:
        return bool(self.api_key)

    async def _call(self, endpoint: str, params: dict[str, Any]) -> dict[str, Any]:
        url = f"{self.base_url}/{endpoint.strip('/')}/"
        payload = await self._fetch_json(
            url, {"api_key": self.api_key, "format": "json", **params}
        )
        if not isinstance(payload, dict):
            raise TransportError(self.name, f"Unexpected response from {endpoint}")
        # status_code 1 is OK; anything else is an API-level error
        if payload.get("status_code", 1) != 1:
            raise TransportError(self.name, payload.get("error") or f"API error on {endpoint}")
        return payload

    async def search_series(
        self,
        name: str,
        year: int | None = None,
        publisher: str | None = None,
        limit: int = 10,
    ) -> list[SeriesMetadata]:
        payload = await self._call(
            "search",
            {
                "query": name,
                "resources": "volume",
                "field_list": VOLUME_FIELDS,
                "limit": min(limit, MAX_PAGE_SIZE),
            },
        )
        results = [normalize_volume(v) for v in payload.get("results") or [] if v.get("id")]
        self.logger.debug("Volume search", query=name, year=year, results=len(results))
        return results[:limit]

    async def list_issues(self, series_id: str, limit: int = 200) -> list[IssueMetadata]:
        issues: list[IssueMetadata] = []
        offset = 0
        while len(issues) < limit:
            payload = await self._call(
                "issues",
                {
                    "filter": f"volume:{series_id}",
                    "field_list": ISSUE_FIELDS,
                    "limit": MAX_PAGE_SIZE,
                    "offset": offset,
                },
            )
            page = payload.get("results") or []
            issues.extend(normalize_issue(i) for i in page if i.get("id"))
            offset += len(page)
            total = _to_int(payload.get("number_of_total_results")) or 0
            if not page or offset >= total:
                break
        return issues[:limit]
