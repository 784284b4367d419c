"""Tests for issue number normalization and issue matching."""

from __future__ import annotations

import pytest

from longbox.core.matching.issues import (
    find_matching_issue,
    issue_numbers_match,
    normalize_issue_number,
    parse_cover_date,
    parse_issue_number,
    sort_issue_numbers,
)
from longbox.core.matching.models import IssueMetadata


def _issue(source: str, source_id: str, number: str | None, title: str | None = None, cover_date: str | None = None) -> IssueMetadata:
    return IssueMetadata(source=source, source_id=source_id, number=number, title=title, cover_date=cover_date)


class TestNormalizeIssueNumber:
    """Test normalize_issue_number function."""

    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            ("001", 1.0),
            ("1.5", 1.5),
            ("½", 0.5),
            ("1/2", 0.5),
            ("¾", 0.75),
            ("1½", 1.5),
            ("0", 0.0),
            ("-1", -1.0),
            ("1a", 1.0),
            ("25 variant", 25.0),
            ("Annual 2", 2.0),
        ],
    )
    def test_numeric_values(self, raw, expected):
        """Test numeric and partially numeric issue numbers."""
        assert normalize_issue_number(raw) == expected

    def test_non_numeric(self):
        """Test that purely textual numbers have no numeric key."""
        assert normalize_issue_number("Special") is None
        assert normalize_issue_number("") is None
        assert normalize_issue_number(None) is None

    def test_parse_preserves_raw_text(self):
        """Test that parse_issue_number keeps the original text."""
        parsed = parse_issue_number("001")
        assert parsed.raw == "001"
        assert parsed.sort_key == 1.0
        assert parsed.is_numeric
        assert str(parsed) == "001"


class TestSortIssueNumbers:
    """Test sort_issue_numbers function."""

    def test_numeric_first_then_text(self):
        """Test numeric ordering followed by alphabetical non-numeric issues."""
        result = sort_issue_numbers(["10", "2", "Special", "1", "Annual", "0"])
        assert [n.raw for n in result] == ["0", "1", "2", "10", "Annual", "Special"]


class TestIssueNumbersMatch:
    """Test issue_numbers_match function."""

    def test_leading_zeros(self):
        """Test that zero-padded numbers match."""
        assert issue_numbers_match("001", "1") is True

    def test_different_numbers(self):
        """Test that different numbers do not match."""
        assert issue_numbers_match("1", "2") is False

    def test_text_numbers(self):
        """Test that textual numbers match case-insensitively."""
        assert issue_numbers_match("Special", "special") is True
        assert issue_numbers_match("1", "Special") is False
        assert issue_numbers_match(None, "1") is False


class TestParseCoverDate:
    """Test parse_cover_date function."""

    def test_formats(self):
        """Test the accepted cover date formats."""
        assert parse_cover_date("2016-06") == (2016, 6)
        assert parse_cover_date("2016-06-15") == (2016, 6)
        assert parse_cover_date("June 2016") == (2016, 6)

    def test_rejects_invalid(self):
        """Test that unparseable or out-of-range dates are rejected."""
        assert parse_cover_date("1850-01") is None
        assert parse_cover_date("garbage") is None
        assert parse_cover_date(None) is None


class TestFindMatchingIssue:
    """Test find_matching_issue function."""

    def test_full_match(self):
        """Test that number, date and title all contribute."""
        primary = _issue("comicvine", "cv-1", "1", "Rebirth", "2016-08")
        candidates = [
            _issue("metron", "m-2", "2", "Rebirth", "2016-08"),
            _issue("metron", "m-1", "001", "Rebirth", "2016-08"),
        ]

        match = find_matching_issue(primary, candidates)

        assert match is not None
        assert match.issue.source_id == "m-1"
        assert match.source == "metron"
        assert match.confidence == pytest.approx(0.9)
        assert match.match_factors.number_match is True
        assert match.match_factors.cover_date_match == "exact"

    def test_close_cover_date_gets_half_credit(self):
        """Test that a one-month difference in the same year earns half the date weight."""
        primary = _issue("comicvine", "cv-1", "1", "Rebirth", "2016-08")
        match = find_matching_issue(primary, [_issue("metron", "m-1", "1", "Rebirth", "2016-07")])

        assert match is not None
        assert match.match_factors.cover_date_match == "close"
        assert match.confidence == pytest.approx(0.775)

    def test_number_required(self):
        """Test that a candidate with a different number never matches."""
        primary = _issue("comicvine", "cv-1", "1", "Rebirth", "2016-08")
        assert find_matching_issue(primary, [_issue("metron", "m-2", "2", "Rebirth", "2016-08")]) is None

    def test_threshold_is_inclusive(self):
        """Test that a confidence equal to the threshold is accepted."""
        primary = _issue("comicvine", "cv-1", "1")
        candidate = _issue("metron", "m-1", "1")

        # number (0.50) + both untitled (0.15 * 0.5)
        match = find_matching_issue(primary, [candidate], threshold=0.575)

        assert match is not None
        assert match.confidence == 0.575

    def test_below_threshold(self):
        """Test that weak matches are rejected at the default threshold."""
        primary = _issue("comicvine", "cv-1", "1", "Rebirth")
        assert find_matching_issue(primary, [_issue("metron", "m-1", "1", "Zzzz")]) is None

    def test_ties_keep_earlier_candidate(self):
        """Test that the first of equally scored candidates wins."""
        primary = _issue("comicvine", "cv-1", "5", "Zero Year", "2013-11")
        candidates = [
            _issue("metron", "first", "5", "Zero Year", "2013-11"),
            _issue("metron", "second", "5", "Zero Year", "2013-11"),
        ]

        match = find_matching_issue(primary, candidates)

        assert match is not None
        assert match.issue.source_id == "first"
