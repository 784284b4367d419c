"""Issue number normalization and issue-level matching."""

from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass

from .config import MatchingConfig, get_matching_config
from .models import IssueCrossMatch, IssueMatchFactors, IssueMetadata, YearMatch
from .titles import fuzzy_title_similarity

_HALF_TOKENS = {"½", "1/2", ".5", "0.5"}
_FRACTION_VALUES = {"½": 0.5, "¼": 0.25, "¾": 0.75}
_FRACTION = re.compile(r"(\d*)\s*([½¼¾])")
# A minus sign only counts at the start of a token ("-1", "#-1"), not inside "X-1"
_NUMBER = re.compile(r"(?:^|(?<=[\s#]))(-?\d+(?:\.\d+)?)|(\d+(?:\.\d+)?)")

_MONTHS = {
    "january": 1, "jan": 1, "february": 2, "feb": 2, "march": 3, "mar": 3,
    "april": 4, "apr": 4, "may": 5, "june": 6, "jun": 6, "july": 7, "jul": 7,
    "august": 8, "aug": 8, "september": 9, "sep": 9, "sept": 9, "october": 10,
    "oct": 10, "november": 11, "nov": 11, "december": 12, "dec": 12,
}  # fmt: skip
_ISO_DATE = re.compile(r"^(\d{4})-(\d{1,2})")
_MONTH_YEAR = re.compile(r"^([a-z]+)\.?\s+(\d{4})", re.IGNORECASE)


def normalize_issue_number(value: str | None) -> float | None:
    """Convert a raw issue number to a numeric sort key.

    Handles fractional issue numbers (½, 1/2), leading zeros ("001"),
    suffixed values ("1a", "25 variant") and prefixed values ("Annual 1").
    Negative numbers and zero are valid.

    Returns:
        The sort key, or None for purely non-numeric text such as "Special".
    """
    if value is None:
        return None
    text = value.strip().lower()
    if not text:
        return None
    if text in _HALF_TOKENS:
        return 0.5
    text = _FRACTION.sub(
        lambda m: str(int(m.group(1) or 0) + _FRACTION_VALUES[m.group(2)]), text
    )
    text = text.replace(",", ".")

    match = _NUMBER.search(text)
    if match is None:
        return None
    return float(match.group(1) or match.group(2))


@dataclass(frozen=True)
class IssueNumber:
    """Issue number with its original text kept for display and exact matching."""

    raw: str
    sort_key: float | None

    @property
    def is_numeric(self) -> bool:
        return self.sort_key is not None

    def __str__(self) -> str:
        return self.raw


def parse_issue_number(raw: str) -> IssueNumber:
    return IssueNumber(raw=raw, sort_key=normalize_issue_number(raw))


def issue_sort_key(value: str | None) -> tuple[int, float, str]:
    """Sort key placing numeric issues first in numeric order, then the rest by text."""
    key = normalize_issue_number(value)
    text = (value or "").strip().lower()
    if key is None:
        return (1, 0.0, text)
    return (0, key, text)


def sort_issue_numbers(values: Iterable[str]) -> list[IssueNumber]:
    """Sort raw issue numbers, preserving their original text."""
    return [parse_issue_number(v) for v in sorted(values, key=issue_sort_key)]


def issue_numbers_match(a: str | None, b: str | None) -> bool:
    """Numeric keys are compared when both parse, otherwise the trimmed text."""
    if a is None or b is None:
        return False
    key_a = normalize_issue_number(a)
    key_b = normalize_issue_number(b)
    if key_a is not None and key_b is not None:
        return key_a == key_b
    if key_a is None and key_b is None:
        return a.strip().lower() == b.strip().lower() != ""
    return False


def parse_cover_date(value: str | None) -> tuple[int, int] | None:
    """Parse a cover date into ``(year, month)``; month is 0 when unknown.

    Accepts "YYYY-MM", "YYYY-MM-DD" and "Month YYYY". Years outside
    1900-2100 are rejected.
    """
    if not value:
        return None
    text = value.strip()

    iso = _ISO_DATE.match(text)
    if iso:
        year, month = int(iso.group(1)), int(iso.group(2))
    else:
        named = _MONTH_YEAR.match(text)
        if not named:
            return None
        year = int(named.group(2))
        month = _MONTHS.get(named.group(1).lower(), 0)

    if 1900 < year < 2100:
        return year, month
    return None


def _cover_date_match(primary: str | None, candidate: str | None) -> YearMatch:
    primary_date = parse_cover_date(primary)
    candidate_date = parse_cover_date(candidate)
    if primary_date is None or candidate_date is None:
        return "none"
    if primary_date == candidate_date:
        return "exact"
    if primary_date[0] == candidate_date[0] and abs(primary_date[1] - candidate_date[1]) <= 1:
        return "close"
    return "none"


def score_issue_candidate(
    primary: IssueMetadata,
    candidate: IssueMetadata,
    config: MatchingConfig | None = None,
) -> tuple[float, IssueMatchFactors]:
    """Confidence that ``candidate`` is the same issue as ``primary``."""
    config = config or get_matching_config()
    confidence = 0.0

    number_match = issue_numbers_match(primary.number, candidate.number)
    if number_match:
        confidence += config.issue_number_weight

    date_match = _cover_date_match(primary.cover_date, candidate.cover_date)
    if date_match == "exact":
        confidence += config.issue_cover_date_weight
    elif date_match == "close":
        confidence += config.issue_cover_date_weight * config.issue_close_date_credit

    title_score = 0.0
    if primary.title and candidate.title:
        title_score = fuzzy_title_similarity(primary.title, candidate.title)
        confidence += title_score * config.issue_title_weight
    elif not primary.title and not candidate.title:
        # Neither side is titled, which is common for single issues
        title_score = config.issue_untitled_credit
        confidence += config.issue_title_weight * config.issue_untitled_credit

    factors = IssueMatchFactors(
        number_match=number_match,
        cover_date_match=date_match,
        title_similarity=title_score,
    )
    return round(min(confidence, 1.0), 6), factors


def find_matching_issue(
    primary: IssueMetadata,
    candidates: Iterable[IssueMetadata],
    threshold: float | None = None,
    config: MatchingConfig | None = None,
) -> IssueCrossMatch | None:
    """Pick the best candidate for ``primary``.

    Candidates whose issue number differs are skipped outright. The best
    remaining candidate is returned when its confidence is at or above
    ``threshold`` (default 0.7); ties keep the earlier candidate.
    """
    config = config or get_matching_config()
    if threshold is None:
        threshold = config.issue_match_threshold

    best: IssueCrossMatch | None = None
    for candidate in candidates:
        confidence, factors = score_issue_candidate(primary, candidate, config)
        if not factors.number_match:
            continue
        if confidence < threshold:
            continue
        if best is None or confidence > best.confidence:
            best = IssueCrossMatch(
                source=candidate.source,
                issue=candidate,
                confidence=confidence,
                match_factors=factors,
            )
    return best
