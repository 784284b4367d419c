"""Prometheus metrics for scanning, resolution and external lookups."""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

# Scanning
scan_files_discovered_total = Counter(
    "longbox_scan_files_discovered_total",
    "Total number of comic files discovered on disk",
)
scan_errors_total = Counter(
    "longbox_scan_errors_total",
    "Total number of per-path errors during directory walks",
)
scan_changes_total = Counter(
    "longbox_scan_changes_total",
    "Classified file changes found by library scans",
    ["change"],  # new, moved, orphaned, unchanged
)
scan_duration_seconds = Histogram(
    "longbox_scan_duration_seconds",
    "Duration of library scans in seconds",
    buckets=(0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0),
)

# Series resolution and linking
series_resolved_total = Counter(
    "longbox_series_resolved_total",
    "Series names processed by the resolver",
    ["outcome"],  # created, existing, error
)
series_race_recoveries_total = Counter(
    "longbox_series_race_recoveries_total",
    "Duplicate identity conflicts recovered as existing series",
)
files_linked_total = Counter(
    "longbox_files_linked_total",
    "Files linked to a series",
    ["outcome"],  # linked, unresolved, error
)

# External sources
external_requests_total = Counter(
    "longbox_external_requests_total",
    "Requests made to external metadata sources",
    ["source", "outcome"],  # outcome: success, failure
)
rate_limiter_backoff_level = Gauge(
    "longbox_rate_limiter_backoff_level",
    "Consecutive error count driving the backoff multiplier",
    ["source"],
)
cross_source_matches_total = Counter(
    "longbox_cross_source_matches_total",
    "Cross-source lookups by resulting status",
    ["source", "status"],  # matched, no_match, error, skipped
)

# Caching
cache_events_total = Counter(
    "longbox_cache_events_total",
    "Cache lookups and evictions",
    ["cache", "event"],  # hit, miss, eviction, error
)

# Database retry operation metrics
db_retry_attempts_total = Counter(
    "longbox_db_retry_attempts_total",
    "Total number of database operation retry attempts",
    ["operation_type"],
)
db_retries_failed_total = Counter(
    "longbox_db_retries_failed_total",
    "Total number of database operations that failed after all retries",
    ["operation_type"],
)
