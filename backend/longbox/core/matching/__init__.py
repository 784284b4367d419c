"""Normalization and fuzzy matching for series, publishers and issues.

Cross-source matching lives in ``longbox.core.matching.cross_source``; it
depends on the Store and providers and is not re-exported here.
"""

from .config import DEFAULT_CONFIG, MatchingConfig, get_matching_config, reload_matching_config
from .issues import (
    IssueNumber,
    find_matching_issue,
    normalize_issue_number,
    parse_issue_number,
    sort_issue_numbers,
)
from .publishers import is_known_imprint, normalize_publisher, publishers_match
from .titles import (
    fuzzy_title_similarity,
    name_only_key,
    normalize_title,
    series_identity_key,
    title_similarity,
)

__all__ = [
    "DEFAULT_CONFIG",
    "IssueNumber",
    "MatchingConfig",
    "find_matching_issue",
    "fuzzy_title_similarity",
    "get_matching_config",
    "is_known_imprint",
    "name_only_key",
    "normalize_issue_number",
    "normalize_publisher",
    "normalize_title",
    "parse_issue_number",
    "publishers_match",
    "reload_matching_config",
    "series_identity_key",
    "sort_issue_numbers",
    "title_similarity",
]
