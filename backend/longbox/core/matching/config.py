"""Matching configuration - scoring weights and thresholds."""

from __future__ import annotations

import json
from dataclasses import dataclass, fields

import structlog

from longbox.core.config import settings_file_path

logger = structlog.get_logger("longbox.matching.config")


@dataclass
class MatchingConfig:
    """Scoring weights and thresholds for every fuzzy matcher.

    These values are tuned empirically. Change them only with data.
    """

    # Title similarity tiers
    title_exact_score: float = 1.0
    title_substring_score: float = 0.85

    # Sitemap index search
    sitemap_name_weight: float = 0.95
    sitemap_publisher_weight: float = 0.05
    sitemap_imprint_bonus: float = 0.8
    sitemap_min_confidence: float = 0.6

    # Cross-source series matching
    cross_title_weight: float = 0.35
    cross_publisher_weight: float = 0.20
    cross_year_weight: float = 0.20
    cross_issue_count_weight: float = 0.10
    cross_creator_weight: float = 0.10
    cross_alias_weight: float = 0.05
    cross_close_year_credit: float = 0.5
    cross_max_year_difference: int = 2
    cross_close_year_difference: int = 1
    cross_issue_count_tolerance: float = 0.10
    cross_creator_saturation: int = 3
    auto_match_threshold: float = 0.95

    # Issue matching
    issue_number_weight: float = 0.50
    issue_cover_date_weight: float = 0.25
    issue_title_weight: float = 0.15
    issue_close_date_credit: float = 0.5
    issue_untitled_credit: float = 0.5
    issue_match_threshold: float = 0.7


DEFAULT_CONFIG = MatchingConfig()

_cached_config: MatchingConfig | None = None


def get_matching_config() -> MatchingConfig:
    """Get the current matching configuration.

    Loads the ``matching`` section of settings.json if present, otherwise
    returns defaults. Unknown keys in the file are ignored.
    """
    global _cached_config

    if _cached_config is not None:
        return _cached_config

    settings_file = settings_file_path()
    if settings_file.exists():
        try:
            with settings_file.open("r") as f:
                matching_settings = json.load(f).get("matching")
        except (OSError, ValueError, AttributeError) as e:
            logger.warning("Failed to read matching settings", error=str(e))
            matching_settings = None

        if isinstance(matching_settings, dict):
            known = {f.name for f in fields(MatchingConfig)}
            _cached_config = MatchingConfig(
                **{k: v for k, v in matching_settings.items() if k in known}
            )
            return _cached_config

    _cached_config = DEFAULT_CONFIG
    return _cached_config


def reload_matching_config() -> MatchingConfig:
    """Drop the cached configuration and load it again."""
    global _cached_config
    _cached_config = None
    return get_matching_config()
