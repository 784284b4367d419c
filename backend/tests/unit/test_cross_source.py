"""Tests for cross-source series and issue matching."""

from __future__ import annotations

import pytest

from longbox.core.errors import TransportError
from longbox.core.http import HttpFetcher
from longbox.core.matching.cross_source import (
    CrossSourceMatcher,
    best_candidate,
    calculate_match_confidence,
    issue_counts_match,
    year_match,
)
from longbox.core.matching.models import IssueMetadata, SeriesMetadata
from longbox.core.providers.base import MetadataProvider
from longbox.core.ratelimit import RateLimiter

SOURCES = ["comicvine", "metron", "gcd", "anilist"]


class FakeProvider(MetadataProvider):
    """Provider returning canned results."""

    def __init__(
        self,
        name: str,
        series: list[SeriesMetadata] | None = None,
        issues: list[IssueMetadata] | None = None,
        error: Exception | None = None,
        available: bool = True,
    ) -> None:
        super().__init__(name, HttpFetcher("longbox-tests"), RateLimiter(name, 60))
        self.series = series or []
        self.issues = issues or []
        self.error = error
        self.available = available
        self.searches: list[str] = []

    async def check_availability(self) -> bool:
        return self.available

    async def search_series(self, name, year=None, publisher=None, limit=10):
        self.searches.append(name)
        if self.error:
            raise self.error
        return self.series

    async def list_issues(self, series_id, limit=200):
        if self.error:
            raise self.error
        return self.issues


def _series(source: str, source_id: str, name: str = "Batman", **kwargs) -> SeriesMetadata:
    kwargs.setdefault("publisher", "DC Comics")
    kwargs.setdefault("start_year", 2016)
    kwargs.setdefault("issue_count", 158)
    return SeriesMetadata(source=source, source_id=source_id, name=name, **kwargs)


PRIMARY = _series("comicvine", "91273", publisher="DC")


class TestScoringHelpers:
    """Test the individual scoring factors."""

    def test_year_match(self):
        """Test exact, close and distant years."""
        assert year_match(2016, 2016) == "exact"
        assert year_match(2016, 2017) == "close"
        assert year_match(2016, 2018) == "none"
        assert year_match(None, 2016) == "none"

    def test_issue_counts_within_tolerance(self):
        """Test the 10% issue count tolerance."""
        assert issue_counts_match(100, 91) is True
        assert issue_counts_match(100, 89) is False
        assert issue_counts_match(None, 10) is False

    def test_calculate_match_confidence(self):
        """Test the weighted sum for a strong candidate."""
        candidate = _series("metron", "m-1", issue_count=150)

        confidence, factors = calculate_match_confidence(PRIMARY, candidate)

        assert confidence == pytest.approx(0.35 + 0.20 + 0.20 + 0.10)
        assert factors.publisher_match is True
        assert factors.year_match == "exact"
        assert factors.issue_count_match is True
        assert factors.creator_overlap == []

    def test_creators_and_aliases(self):
        """Test creator overlap and alias credit."""
        primary = _series("comicvine", "1", name="Batman Rebirth", creators=["Tom King", "David Finch"])
        candidate = _series(
            "metron",
            "m-1",
            name="Batman",
            creators=["tom king", "Mikel Janin"],
            aliases=["Batman Rebirth"],
            issue_count=None,
        )

        confidence, factors = calculate_match_confidence(primary, candidate)

        assert factors.creator_overlap == ["tom king"]
        assert factors.alias_match is True
        title = factors.title_similarity * 0.35
        assert confidence == pytest.approx(title + 0.20 + 0.20 + 0.10 / 3 + 0.05)

    def test_distant_years_are_excluded(self):
        """Test that candidates more than two years apart are never chosen."""
        candidates = [_series("metron", "old", start_year=2011), _series("metron", "new", start_year=2017)]

        match = best_candidate(PRIMARY, candidates, "metron", auto_match_threshold=0.95)

        assert match is not None
        assert match.source_id == "new"
        assert match.match_factors.year_match == "close"

    def test_ties_keep_first_candidate(self):
        """Test that equally scored candidates resolve to the first."""
        candidates = [_series("metron", "first"), _series("metron", "second")]

        match = best_candidate(PRIMARY, candidates, "metron", auto_match_threshold=0.95)

        assert match is not None
        assert match.source_id == "first"


class TestFindCrossSourceMatches:
    """Test CrossSourceMatcher.find_cross_source_matches."""

    async def test_status_per_source(self, store):
        """Test matched, error and skipped statuses across sources."""
        providers = [
            FakeProvider("metron", series=[_series("metron", "m-1", issue_count=150)]),
            FakeProvider("gcd", error=TransportError("gcd", "HTTP 503", 503)),
            FakeProvider("anilist", available=False),
        ]
        matcher = CrossSourceMatcher(store, providers, enabled_sources=SOURCES)

        result = await matcher.find_cross_source_matches(PRIMARY)

        assert result.status == {
            "comicvine": "skipped",
            "metron": "matched",
            "gcd": "error",
            "anilist": "error",
        }
        assert [m.source_id for m in result.matches] == ["m-1"]
        assert result.matches[0].is_auto_match_candidate is False

    async def test_no_match_when_nothing_found(self, store):
        """Test that a source without candidates reports no_match."""
        matcher = CrossSourceMatcher(store, [FakeProvider("metron")], enabled_sources=["comicvine", "metron"])

        result = await matcher.find_cross_source_matches(PRIMARY)

        assert result.status["metron"] == "no_match"
        assert result.matches == []

    async def test_matches_sorted_by_confidence(self, store):
        """Test that matches are ordered with the strongest first."""
        providers = [
            FakeProvider("metron", series=[_series("metron", "weak", publisher="Marvel", issue_count=None)]),
            FakeProvider("gcd", series=[_series("gcd", "strong")]),
        ]
        matcher = CrossSourceMatcher(store, providers)

        result = await matcher.find_cross_source_matches(PRIMARY)

        assert [m.source for m in result.matches] == ["gcd", "metron"]

    async def test_auto_match_threshold(self, store):
        """Test that matches at or above the threshold are flagged."""
        matcher = CrossSourceMatcher(store, [FakeProvider("metron", series=[_series("metron", "m-1")])])

        result = await matcher.find_cross_source_matches(PRIMARY, auto_match_threshold=0.8)

        assert result.matches[0].is_auto_match_candidate is True

    async def test_target_sources(self, store):
        """Test that only targeted sources are searched."""
        metron = FakeProvider("metron")
        gcd = FakeProvider("gcd")
        matcher = CrossSourceMatcher(store, [metron, gcd])

        result = await matcher.find_cross_source_matches(PRIMARY, target_sources=["metron"])

        assert metron.searches == ["Batman"]
        assert gcd.searches == []
        assert result.status["gcd"] == "skipped"

    async def test_raise_on_transport_error(self, store):
        """Test that transport errors propagate when requested."""
        matcher = CrossSourceMatcher(store, [FakeProvider("gcd", error=TransportError("gcd", "down"))])

        with pytest.raises(TransportError):
            await matcher.find_cross_source_matches(PRIMARY, raise_on_transport_error=True)

    async def test_unexpected_error_is_contained(self, store):
        """Test that other provider failures become an error status."""
        matcher = CrossSourceMatcher(store, [FakeProvider("gcd", error=RuntimeError("bug"))])

        result = await matcher.find_cross_source_matches(PRIMARY, raise_on_transport_error=True)

        assert result.status["gcd"] == "error"


class TestMappings:
    """Test mapping persistence through the matcher."""

    async def test_save_and_read_both_directions(self, store):
        """Test that a mapping is visible from either series."""
        matcher = CrossSourceMatcher(store, [], enabled_sources=["comicvine", "metron"])

        await matcher.save_mapping("comicvine", "91273", "metron", "m-1", 0.9)

        from_primary = await matcher.get_cached_mappings("comicvine", "91273")
        from_matched = await matcher.get_cached_mappings("metron", "m-1")

        assert [(m.source, m.source_id) for m in from_primary] == [("metron", "m-1")]
        assert [(m.source, m.source_id) for m in from_matched] == [("comicvine", "91273")]
        assert await matcher.has_cached_mappings_for_all_sources("comicvine", "91273") is True

    async def test_auto_save_keeps_verified_mapping(self, store):
        """Test that a user mapping survives a later automatic match."""
        matcher = CrossSourceMatcher(store, [])

        user = await matcher.save_mapping("comicvine", "91273", "metron", "m-1", 1.0, match_method="user")
        kept = await matcher.save_mapping("comicvine", "91273", "metron", "m-2", 0.97)

        assert user.verified is True
        assert kept.matched_source_id == "m-1"
        mappings = await matcher.get_cached_mappings("comicvine", "91273")
        assert [m.source_id for m in mappings] == ["m-1"]

    async def test_auto_save_replaces_auto_mapping(self, store):
        """Test that one mapping exists per pair of sources."""
        matcher = CrossSourceMatcher(store, [])

        await matcher.save_mapping("comicvine", "91273", "metron", "m-1", 0.9)
        await matcher.save_mapping("comicvine", "91273", "metron", "m-2", 0.96)

        mappings = await matcher.get_cached_mappings("comicvine", "91273")
        assert [(m.source_id, m.confidence) for m in mappings] == [("m-2", 0.96)]

    async def test_save_match_and_invalidate(self, store):
        """Test saving a found match and invalidating it."""
        matcher = CrossSourceMatcher(store, [FakeProvider("metron", series=[_series("metron", "m-1")])])
        result = await matcher.find_cross_source_matches(PRIMARY)

        mapping = await matcher.save_match(PRIMARY, result.matches[0])

        assert mapping.match_factors["publisher_match"] is True
        assert await matcher.invalidate_mappings("metron", "m-1") == 1
        assert await matcher.get_cached_mappings("comicvine", "91273") == []

    async def test_missing_sources_reported(self, store):
        """Test that coverage requires a mapping for every other source."""
        matcher = CrossSourceMatcher(store, [], enabled_sources=["comicvine", "metron", "gcd"])
        await matcher.save_mapping("comicvine", "91273", "metron", "m-1", 0.9)

        assert await matcher.has_cached_mappings_for_all_sources("comicvine", "91273") is False


class TestIssueCrossMatches:
    """Test CrossSourceMatcher.find_issue_cross_matches."""

    async def test_uses_stored_series_mappings(self, store):
        """Test issue matching across mapped series."""
        metron_issues = [
            IssueMetadata(source="metron", source_id="mi-2", number="2", cover_date="2016-09"),
            IssueMetadata(source="metron", source_id="mi-1", number="1", cover_date="2016-08"),
        ]
        matcher = CrossSourceMatcher(
            store,
            [FakeProvider("metron", issues=metron_issues), FakeProvider("gcd", error=TransportError("gcd", "down"))],
        )
        await matcher.save_mapping("comicvine", "91273", "metron", "m-1", 0.9)
        await matcher.save_mapping("comicvine", "91273", "gcd", "g-1", 0.9)
        primary = IssueMetadata(
            source="comicvine", source_id="cv-i-1", number="1", cover_date="2016-08", series_id="91273"
        )

        matches = await matcher.find_issue_cross_matches(primary)

        assert [m.issue.source_id for m in matches] == ["mi-1"]

    async def test_explicit_series_mappings(self, store):
        """Test issue matching with caller-supplied series pairs."""
        issues = [IssueMetadata(source="metron", source_id="mi-1", number="1", cover_date="2016-08")]
        matcher = CrossSourceMatcher(store, [FakeProvider("metron", issues=issues)])
        primary = IssueMetadata(source="comicvine", source_id="cv-i-1", number="001", cover_date="2016-08")

        matches = await matcher.find_issue_cross_matches(primary, [("metron", "m-1"), ("comicvine", "91273")])

        assert len(matches) == 1
        assert matches[0].source == "metron"

    async def test_no_series_id(self, store):
        """Test that an issue without a series and no mappings matches nothing."""
        matcher = CrossSourceMatcher(store, [])
        primary = IssueMetadata(source="comicvine", source_id="cv-i-1", number="1")

        assert await matcher.find_issue_cross_matches(primary) == []
