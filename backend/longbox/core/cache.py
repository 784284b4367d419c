"""Best-effort caches for the sitemap index and external API responses."""

from __future__ import annotations

import fnmatch
import hashlib
import json
import time
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol

import structlog

from longbox.core.config import Settings, get_settings
from longbox.core.metrics import cache_events_total

logger = structlog.get_logger("longbox.cache")

EvictionCallback = Callable[[str, Any, str], None]


class Cache(Protocol):
    """Key/value cache with per-entry TTL in seconds."""

    async def get(self, key: str) -> Any | None: ...

    async def set(self, key: str, value: Any, ttl: float) -> None: ...

    async def delete(self, key: str) -> None: ...


@dataclass
class CacheStats:
    hits: int = 0
    misses: int = 0
    evictions: int = 0
    invalidations: int = 0
    size: int = 0


@dataclass
class _Entry:
    value: Any
    expires_at: float
    created_at: float


class MemoryCache:
    """Fixed-capacity LRU cache with per-entry TTL.

    Entries are kept in access order; the least recently used entry is
    evicted when capacity is exceeded. ``on_evict(key, value, reason)`` is
    called synchronously for capacity evictions (reason ``"capacity"``) and
    for expired entries discovered on access (reason ``"expired"``).
    """

    def __init__(
        self,
        max_entries: int = 1000,
        on_evict: EvictionCallback | None = None,
        clock: Callable[[], float] = time.monotonic,
        name: str = "memory",
    ) -> None:
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self.max_entries = max_entries
        self.name = name
        self._on_evict = on_evict
        self._clock = clock
        self._entries: OrderedDict[str, _Entry] = OrderedDict()
        self.stats = CacheStats()

    @classmethod
    def from_settings(
        cls,
        settings: Settings | None = None,
        name: str = "memory",
        on_evict: EvictionCallback | None = None,
    ) -> MemoryCache:
        settings = settings or get_settings()
        return cls(max_entries=settings.memory_cache_max_entries, on_evict=on_evict, name=name)

    def __len__(self) -> int:
        return len(self._entries)

    def _evict(self, key: str, reason: str) -> None:
        entry = self._entries.pop(key)
        self.stats.evictions += 1
        self.stats.size = len(self._entries)
        cache_events_total.labels(cache=self.name, event="eviction").inc()
        logger.debug("Cache entry evicted", cache=self.name, key=key, reason=reason)
        if self._on_evict is not None:
            self._on_evict(key, entry.value, reason)

    def get_sync(self, key: str) -> Any | None:
        entry = self._entries.get(key)
        if entry is None:
            self.stats.misses += 1
            cache_events_total.labels(cache=self.name, event="miss").inc()
            return None
        if self._clock() >= entry.expires_at:
            self._evict(key, "expired")
            self.stats.misses += 1
            cache_events_total.labels(cache=self.name, event="miss").inc()
            return None
        self._entries.move_to_end(key)
        self.stats.hits += 1
        cache_events_total.labels(cache=self.name, event="hit").inc()
        return entry.value

    def set_sync(self, key: str, value: Any, ttl: float) -> None:
        now = self._clock()
        if key in self._entries:
            del self._entries[key]
        self._entries[key] = _Entry(value=value, expires_at=now + ttl, created_at=now)
        while len(self._entries) > self.max_entries:
            oldest = next(iter(self._entries))
            self._evict(oldest, "capacity")
        self.stats.size = len(self._entries)

    def has(self, key: str) -> bool:
        entry = self._entries.get(key)
        if entry is None:
            return False
        if self._clock() >= entry.expires_at:
            self._evict(key, "expired")
            return False
        return True

    def delete_sync(self, key: str) -> bool:
        if self._entries.pop(key, None) is None:
            return False
        self.stats.invalidations += 1
        self.stats.size = len(self._entries)
        return True

    def invalidate_pattern(self, pattern: str) -> int:
        """Remove every key matching a glob ``pattern``. Returns the count removed."""
        keys = [k for k in self._entries if fnmatch.fnmatchcase(k, pattern)]
        for key in keys:
            del self._entries[key]
        self.stats.invalidations += len(keys)
        self.stats.size = len(self._entries)
        return len(keys)

    def clear(self) -> None:
        self.stats.invalidations += len(self._entries)
        self._entries.clear()
        self.stats.size = 0

    async def get(self, key: str) -> Any | None:
        return self.get_sync(key)

    async def set(self, key: str, value: Any, ttl: float) -> None:
        self.set_sync(key, value, ttl)

    async def delete(self, key: str) -> None:
        self.delete_sync(key)


class FileCache:
    """JSON file cache keyed by a hash of the cache key.

    Each entry is stored as ``{"value": ..., "expires_at": ...}`` under
    ``cache_dir``. Values must be JSON-serializable. Read and write failures
    are logged and treated as a miss.
    """

    def __init__(
        self,
        cache_dir: Path,
        clock: Callable[[], float] = time.time,
        name: str = "file",
    ) -> None:
        self.cache_dir = cache_dir
        self.name = name
        self._clock = clock
        self.cache_dir.mkdir(parents=True, exist_ok=True)

    def _get_cache_path(self, key: str) -> Path:
        digest = hashlib.sha256(key.encode()).hexdigest()
        return self.cache_dir / f"{digest}.json"

    async def get(self, key: str) -> Any | None:
        cache_path = self._get_cache_path(key)
        if not cache_path.exists():
            cache_events_total.labels(cache=self.name, event="miss").inc()
            return None

        try:
            with cache_path.open("r", encoding="utf-8") as f:
                data = json.load(f)
            if self._clock() >= data["expires_at"]:
                cache_path.unlink(missing_ok=True)
                cache_events_total.labels(cache=self.name, event="miss").inc()
                return None
        except (OSError, ValueError, KeyError, TypeError) as e:
            logger.warning("Failed to read cache", key=key, error=str(e))
            cache_events_total.labels(cache=self.name, event="error").inc()
            return None

        cache_events_total.labels(cache=self.name, event="hit").inc()
        return data["value"]

    async def set(self, key: str, value: Any, ttl: float) -> None:
        cache_path = self._get_cache_path(key)
        tmp_path = cache_path.with_suffix(".tmp")
        try:
            with tmp_path.open("w", encoding="utf-8") as f:
                json.dump({"value": value, "expires_at": self._clock() + ttl}, f)
            # Full replace so readers never see a partial entry
            tmp_path.replace(cache_path)
        except (OSError, TypeError, ValueError) as e:
            logger.warning("Failed to write cache", key=key, error=str(e))
            cache_events_total.labels(cache=self.name, event="error").inc()

    async def delete(self, key: str) -> None:
        try:
            self._get_cache_path(key).unlink(missing_ok=True)
        except OSError as e:
            logger.warning("Failed to delete cache entry", key=key, error=str(e))
