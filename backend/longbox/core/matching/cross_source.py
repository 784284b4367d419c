"""Matching the same series across independent metadata sources.

Each secondary source is searched for the primary series' name and every
candidate is scored on weighted factors (title, publisher, start year,
issue count, creators and aliases). Confirmed links are persisted as
mappings through the Store so later lookups skip the search.
"""

from __future__ import annotations

import asyncio
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any

import structlog

from longbox.core.errors import TransportError
from longbox.core.metrics import cross_source_matches_total
from longbox.core.providers.base import MetadataProvider
from longbox.core.store.base import Store

from .config import MatchingConfig, get_matching_config
from .issues import find_matching_issue
from .models import (
    CrossMatchFactors,
    CrossSourceMapping,
    CrossSourceMatch,
    CrossSourceResult,
    IssueCrossMatch,
    IssueMetadata,
    SeriesMetadata,
    SourceStatus,
    YearMatch,
)
from .publishers import publishers_match
from .titles import fuzzy_title_similarity, normalize_title

logger = structlog.get_logger("longbox.matching.cross_source")

SEARCH_LIMIT = 10
ISSUE_LIST_LIMIT = 200


@dataclass(frozen=True)
class MappedSource:
    """A mapping seen from the side of the queried series."""

    source: str
    source_id: str
    confidence: float
    verified: bool = False


def year_match(a: int | None, b: int | None, config: MatchingConfig | None = None) -> YearMatch:
    config = config or get_matching_config()
    if not a or not b:
        return "none"
    if a == b:
        return "exact"
    if abs(a - b) <= config.cross_close_year_difference:
        return "close"
    return "none"


def issue_counts_match(a: int | None, b: int | None, config: MatchingConfig | None = None) -> bool:
    """True when both counts are known and within 10% of the larger one."""
    config = config or get_matching_config()
    if not a or not b:
        return False
    return abs(a - b) <= max(a, b) * config.cross_issue_count_tolerance


def creator_overlap(primary: SeriesMetadata, candidate: SeriesMetadata) -> list[str]:
    primary_creators = {c.lower().strip() for c in primary.creators if c.strip()}
    overlap: list[str] = []
    for creator in candidate.creators:
        name = creator.lower().strip()
        if name in primary_creators and name not in overlap:
            overlap.append(name)
    return overlap


def aliases_match(aliases: Iterable[str], target_name: str) -> bool:
    target = normalize_title(target_name)
    return bool(target) and any(normalize_title(alias) == target for alias in aliases)


def calculate_match_confidence(
    primary: SeriesMetadata,
    candidate: SeriesMetadata,
    config: MatchingConfig | None = None,
) -> tuple[float, CrossMatchFactors]:
    """Weighted confidence that ``candidate`` is the same series as ``primary``, capped at 1."""
    config = config or get_matching_config()
    factors = CrossMatchFactors(
        title_similarity=fuzzy_title_similarity(primary.name, candidate.name),
        publisher_match=publishers_match(primary.publisher, candidate.publisher),
        year_match=year_match(primary.start_year, candidate.start_year, config),
        issue_count_match=issue_counts_match(primary.issue_count, candidate.issue_count, config),
        creator_overlap=creator_overlap(primary, candidate),
        alias_match=aliases_match(candidate.aliases, primary.name)
        or aliases_match(primary.aliases, candidate.name),
    )

    confidence = factors.title_similarity * config.cross_title_weight
    if factors.publisher_match:
        confidence += config.cross_publisher_weight
    if factors.year_match == "exact":
        confidence += config.cross_year_weight
    elif factors.year_match == "close":
        confidence += config.cross_year_weight * config.cross_close_year_credit
    if factors.issue_count_match:
        confidence += config.cross_issue_count_weight
    if factors.creator_overlap:
        creator_score = min(len(factors.creator_overlap) / config.cross_creator_saturation, 1.0)
        confidence += creator_score * config.cross_creator_weight
    if factors.alias_match:
        confidence += config.cross_alias_weight

    return min(confidence, 1.0), factors


def _years_too_far_apart(a: int | None, b: int | None, config: MatchingConfig) -> bool:
    # Batman (2011) and Batman (2016) share a name but not an identity
    if not a or not b:
        return False
    return abs(a - b) > config.cross_max_year_difference


def best_candidate(
    primary: SeriesMetadata,
    candidates: Iterable[SeriesMetadata],
    source: str,
    auto_match_threshold: float,
    config: MatchingConfig | None = None,
) -> CrossSourceMatch | None:
    """Highest-confidence candidate; ties keep the earlier one."""
    config = config or get_matching_config()
    best: CrossSourceMatch | None = None
    for candidate in candidates:
        if _years_too_far_apart(primary.start_year, candidate.start_year, config):
            continue
        confidence, factors = calculate_match_confidence(primary, candidate, config)
        if best is None or confidence > best.confidence:
            best = CrossSourceMatch(
                source=source,
                source_id=candidate.source_id,
                confidence=confidence,
                match_factors=factors,
                is_auto_match_candidate=confidence >= auto_match_threshold,
                series_data=candidate,
            )
    return best


class CrossSourceMatcher:
    """Finds and remembers the same series across metadata sources."""

    def __init__(
        self,
        store: Store,
        providers: Mapping[str, MetadataProvider] | Iterable[MetadataProvider],
        enabled_sources: list[str] | None = None,
        config: MatchingConfig | None = None,
    ) -> None:
        self.store = store
        if isinstance(providers, Mapping):
            self.providers = dict(providers)
        else:
            self.providers = {p.name: p for p in providers}
        self.enabled_sources = (
            list(enabled_sources) if enabled_sources is not None else list(self.providers)
        )
        self.config = config

    @property
    def _config(self) -> MatchingConfig:
        return self.config or get_matching_config()

    async def find_cross_source_matches(
        self,
        primary: SeriesMetadata,
        target_sources: list[str] | None = None,
        auto_match_threshold: float | None = None,
        raise_on_transport_error: bool = False,
    ) -> CrossSourceResult:
        """Search every other enabled source for ``primary`` concurrently.

        Each enabled source gets a status: ``matched``, ``no_match``,
        ``error`` (search failed or source unavailable) or ``skipped``
        (the primary source itself, not targeted, or no provider).
        Matches are ordered by confidence, highest first.

        Raises:
            TransportError: A source failed and ``raise_on_transport_error`` is set.
        """
        config = self._config
        threshold = (
            auto_match_threshold if auto_match_threshold is not None else config.auto_match_threshold
        )
        targets = (
            list(target_sources)
            if target_sources is not None
            else [s for s in self.enabled_sources if s != primary.source]
        )

        status: dict[str, SourceStatus] = {}
        for source in self.enabled_sources:
            status[source] = "skipped"

        async def search_source(source: str) -> CrossSourceMatch | None:
            provider = self.providers.get(source)
            if source == primary.source or provider is None:
                status[source] = "skipped"
                return None
            try:
                if not await provider.check_availability():
                    status[source] = "error"
                    return None
                candidates = await provider.search_series(
                    primary.name,
                    year=primary.start_year,
                    publisher=primary.publisher,
                    limit=SEARCH_LIMIT,
                )
            except TransportError as e:
                logger.warning("Cross-source search failed", source=source, error=str(e))
                status[source] = "error"
                if raise_on_transport_error:
                    raise
                return None
            except Exception as e:
                logger.error(
                    "Cross-source search failed", source=source, error=str(e), exc_info=True
                )
                status[source] = "error"
                return None

            match = best_candidate(primary, candidates, source, threshold, config)
            status[source] = "matched" if match else "no_match"
            return match

        results = await asyncio.gather(*(search_source(s) for s in targets))
        matches = sorted((m for m in results if m is not None), key=lambda m: -m.confidence)

        for source, source_status in status.items():
            cross_source_matches_total.labels(source=source, status=source_status).inc()

        logger.info(
            "Cross-source matching complete",
            primary_source=primary.source,
            primary_source_id=primary.source_id,
            matched=len(matches),
            status=status,
        )
        return CrossSourceResult(
            primary_source=primary.source,
            primary_source_id=primary.source_id,
            matches=matches,
            status=status,
        )

    async def get_cached_mappings(self, source: str, source_id: str) -> list[MappedSource]:
        """Stored mappings for a series, seen from its side whichever way they were saved."""
        mapped: list[MappedSource] = []
        for m in await self.store.list_mappings(source, source_id):
            if (m.primary_source, m.primary_source_id) == (source, source_id):
                mapped.append(MappedSource(m.matched_source, m.matched_source_id, m.confidence, m.verified))
            else:
                mapped.append(MappedSource(m.primary_source, m.primary_source_id, m.confidence, m.verified))
        return mapped

    async def save_mapping(
        self,
        primary_source: str,
        primary_source_id: str,
        matched_source: str,
        matched_source_id: str,
        confidence: float,
        match_method: str = "auto",
        match_factors: CrossMatchFactors | dict[str, Any] | None = None,
    ) -> CrossSourceMapping:
        """Insert or update a mapping.

        User mappings are stored as verified. An automatic save never
        replaces a verified mapping for the same pair of sources.
        """
        existing = next(
            (
                m
                for m in await self.store.list_mappings(primary_source, primary_source_id)
                if m.primary_source == primary_source
                and m.primary_source_id == primary_source_id
                and m.matched_source == matched_source
            ),
            None,
        )
        if existing is not None and existing.verified and match_method != "user":
            logger.debug(
                "Keeping verified mapping",
                primary_source=primary_source,
                primary_source_id=primary_source_id,
                matched_source=matched_source,
            )
            return existing

        if isinstance(match_factors, CrossMatchFactors):
            match_factors = match_factors.model_dump()
        mapping = CrossSourceMapping(
            primary_source=primary_source,
            primary_source_id=primary_source_id,
            matched_source=matched_source,
            matched_source_id=matched_source_id,
            confidence=confidence,
            match_method="user" if match_method == "user" else "auto",
            verified=match_method == "user",
            match_factors=match_factors or {},
        )
        return await self.store.save_mapping(mapping)

    async def save_match(self, primary: SeriesMetadata, match: CrossSourceMatch) -> CrossSourceMapping:
        return await self.save_mapping(
            primary.source,
            primary.source_id,
            match.source,
            match.source_id,
            match.confidence,
            "auto",
            match.match_factors,
        )

    async def invalidate_mappings(self, source: str, source_id: str) -> int:
        """Delete every mapping touching the series, in both directions."""
        count = await self.store.delete_mappings(source, source_id)
        logger.info("Invalidated cross-source mappings", source=source, source_id=source_id, count=count)
        return count

    async def has_cached_mappings_for_all_sources(self, source: str, source_id: str) -> bool:
        others = [s for s in self.enabled_sources if s != source]
        if not others:
            return True
        mapped = {m.source for m in await self.get_cached_mappings(source, source_id)}
        return all(s in mapped for s in others)

    async def find_issue_cross_matches(
        self,
        primary_issue: IssueMetadata,
        series_mappings: Iterable[tuple[str, str]] | None = None,
        threshold: float | None = None,
    ) -> list[IssueCrossMatch]:
        """Find ``primary_issue`` in every source its series is mapped to.

        ``series_mappings`` is a list of ``(source, series_id)`` pairs; when
        omitted, the stored mappings of the issue's series are used.
        Failures for one source are logged and skipped.
        """
        if series_mappings is None:
            if not primary_issue.series_id:
                return []
            series_mappings = [
                (m.source, m.source_id)
                for m in await self.get_cached_mappings(primary_issue.source, primary_issue.series_id)
            ]

        matches: list[IssueCrossMatch] = []
        for source, series_id in series_mappings:
            if source == primary_issue.source:
                continue
            provider = self.providers.get(source)
            if provider is None:
                continue
            try:
                candidates = await provider.list_issues(series_id, limit=ISSUE_LIST_LIMIT)
            except Exception as e:
                logger.warning(
                    "Failed to list issues for cross-source match",
                    source=source,
                    series_id=series_id,
                    error=str(e),
                )
                continue
            match = find_matching_issue(primary_issue, candidates, threshold, self._config)
            if match:
                matches.append(match)

        matches.sort(key=lambda m: -m.confidence)
        return matches
