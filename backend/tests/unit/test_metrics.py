"""Tests for Prometheus metrics recorded by the engine."""

from __future__ import annotations

from prometheus_client import REGISTRY

from longbox.core.cache import MemoryCache
from longbox.core.ratelimit import RateLimiter
from longbox.core.scanning.linker import FileLinker
from longbox.core.scanning.scanner import FileSystemScanner
from longbox.core.store import SeriesRecord


def _sample(name: str, labels: dict[str, str] | None = None) -> float:
    return REGISTRY.get_sample_value(name, labels or {}) or 0.0


async def test_scan_metrics(store, library, make_comic):
    """Test that discovered files and classified changes are counted."""
    make_comic("Batman/Batman 001.cbz")
    make_comic("Batman/Batman 002.cbz")
    discovered = _sample("longbox_scan_files_discovered_total")
    new = _sample("longbox_scan_changes_total", {"change": "new"})

    await FileSystemScanner(store).scan_library(library.id)

    assert _sample("longbox_scan_files_discovered_total") - discovered == 2
    assert _sample("longbox_scan_changes_total", {"change": "new"}) - new == 2


async def test_link_metrics(store, library, make_comic):
    """Test that link outcomes are counted per file."""
    make_comic("Batman/Batman 001.cbz")
    make_comic("Saga/Saga 001.cbz")
    scanner = FileSystemScanner(store)
    await scanner.apply_scan_results(await scanner.scan_library(library.id))
    await store.create_series(SeriesRecord(name="Batman"))
    linked = _sample("longbox_files_linked_total", {"outcome": "linked"})
    unresolved = _sample("longbox_files_linked_total", {"outcome": "unresolved"})

    await FileLinker(store).link_files_to_series(library.id)

    assert _sample("longbox_files_linked_total", {"outcome": "linked"}) - linked == 1
    assert _sample("longbox_files_linked_total", {"outcome": "unresolved"}) - unresolved == 1


async def test_cache_metrics():
    """Test that cache hits and misses are labelled by cache name."""
    cache = MemoryCache(name="metrics-test")
    hits = _sample("longbox_cache_events_total", {"cache": "metrics-test", "event": "hit"})
    misses = _sample("longbox_cache_events_total", {"cache": "metrics-test", "event": "miss"})

    await cache.get("missing")
    await cache.set("key", "value", ttl=60)
    await cache.get("key")

    assert _sample("longbox_cache_events_total", {"cache": "metrics-test", "event": "hit"}) - hits == 1
    assert _sample("longbox_cache_events_total", {"cache": "metrics-test", "event": "miss"}) - misses == 1


def test_backoff_level_gauge():
    """Test that the backoff gauge follows the failure streak."""
    limiter = RateLimiter("metrics-source", requests_per_minute=60)

    limiter.record_failure()
    limiter.record_failure()
    assert _sample("longbox_rate_limiter_backoff_level", {"source": "metrics-source"}) == 2

    limiter.record_success()
    assert _sample("longbox_rate_limiter_backoff_level", {"source": "metrics-source"}) == 0
