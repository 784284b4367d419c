"""Engine configuration using Pydantic Settings."""

from __future__ import annotations

import json
import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Literal

from pydantic import Field
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)

DEFAULT_SITEMAP_URLS = [
    "https://comicbookroundup.com/sitemap_ssl.xml",
    "https://comicbookroundup.com/sitemap2_ssl.xml",
]

DEFAULT_RATE_LIMITS = {
    "comicvine": 60,
    "metron": 30,
    "gcd": 60,
    "anilist": 90,
    "comicbookroundup": 30,
}


def _default_data_dir() -> Path:
    if Path("/config").exists():
        # Container environment
        return Path("/config")
    # __file__ is backend/longbox/core/config.py, so go up to backend/ and add data
    return Path(__file__).parent.parent.parent / "data"


def settings_file_path() -> Path:
    """Location of the optional settings.json file."""
    data_dir_env = os.environ.get("LONGBOX_DATA_DIR", "")
    if data_dir_env and Path(data_dir_env).exists():
        data_dir = Path(data_dir_env)
    else:
        data_dir = _default_data_dir()
    return data_dir / "config" / "settings.json"


def json_config_settings_source(
    settings: BaseSettings | None = None,
) -> dict[str, Any]:
    """Load settings from settings.json file.

    This source has lowest priority - env vars will override JSON values.
    The ``matching`` section belongs to MatchingConfig and is skipped here.

    Returns:
        Dictionary with setting keys (lowercase) and values from JSON file.
    """
    settings_file = settings_file_path()
    if not settings_file.exists():
        return {}

    try:
        with settings_file.open("r") as f:
            data = json.load(f)
    except (OSError, ValueError):
        return {}

    if not isinstance(data, dict):
        return {}
    return {k.lower(): v for k, v in data.items() if k != "matching"}


class Settings(BaseSettings):
    """Engine settings.

    Settings are loaded from:
    1. JSON file (settings.json in config directory) - lowest priority
    2. .env file
    3. Environment variables - highest priority (override JSON/.env)

    All settings are prefixed with LONGBOX_ (e.g., LONGBOX_SCAN_BATCH_SIZE=200).
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="LONGBOX_",
        case_sensitive=False,
        extra="ignore",
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """Priority: JSON (lowest) -> .env -> env vars -> init_settings (highest)."""
        return (  # type: ignore[return-value]
            json_config_settings_source,
            dotenv_settings,
            env_settings,
            init_settings,
        )

    env: Literal["development", "production", "testing"] = Field(
        default="development",
        description="Runtime environment (development, production, testing)",
    )

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )

    data_dir: Path = Field(
        default_factory=lambda: _default_data_dir().resolve(),
        description="Base directory for engine data (config, database, cache, logs)",
    )

    # Scanning
    scan_batch_size: int = Field(
        default=100,
        ge=1,
        description="Number of unlinked files fetched per linking batch",
    )
    link_concurrency: int = Field(
        default=8,
        ge=1,
        le=64,
        description="Maximum number of files linked concurrently",
    )
    hash_sample_bytes: int = Field(
        default=64 * 1024,
        ge=1024,
        description="Bytes read from head, middle and tail when fingerprinting a file",
    )

    # External sources
    http_user_agent: str = Field(
        default="Longbox/0.1 (+https://github.com/longbox/longbox)",
        description="User-Agent header sent to external sources",
    )
    http_timeout: float = Field(
        default=30.0,
        gt=0,
        description="Timeout in seconds for external HTTP requests",
    )
    http_max_retries: int = Field(
        default=3,
        ge=0,
        description="Retries for rate-limited or failed network requests",
    )
    rate_limits: dict[str, int] = Field(
        default_factory=lambda: dict(DEFAULT_RATE_LIMITS),
        description="Requests per minute allowed for each external source",
    )
    default_rate_limit: int = Field(
        default=30,
        ge=1,
        description="Requests per minute for sources without an explicit limit",
    )
    enabled_sources: list[str] = Field(
        default_factory=lambda: ["comicvine", "metron", "gcd", "anilist"],
        description="Metadata sources consulted for cross-source matching",
    )

    # Sitemap index
    sitemap_urls: list[str] = Field(
        default_factory=lambda: list(DEFAULT_SITEMAP_URLS),
        description="Sitemap documents crawled to build the series index",
    )
    sitemap_cache_ttl: int = Field(
        default=14 * 24 * 60 * 60,
        ge=0,
        description="Seconds a successfully built sitemap index stays cached",
    )
    sitemap_failure_ttl: int = Field(
        default=5 * 60,
        ge=0,
        description="Seconds an empty index is cached after a failed build",
    )

    # Caching
    memory_cache_max_entries: int = Field(
        default=1000,
        ge=1,
        description="Capacity of the in-memory LRU cache",
    )

    @property
    def config_dir(self) -> Path:
        """Directory for configuration files (settings.json)."""
        return self.data_dir / "config"

    @property
    def database_dir(self) -> Path:
        """Directory for database files."""
        return self.data_dir / "database"

    @property
    def cache_dir(self) -> Path:
        """Directory for file cache entries."""
        return self.data_dir / "cache"

    @property
    def logs_dir(self) -> Path:
        """Directory for log files (if file logging is enabled)."""
        return self.data_dir / "logs"

    @property
    def database_file(self) -> Path:
        return self.database_dir / "longbox.db"

    @property
    def is_debug(self) -> bool:
        """Check if running in debug/development mode."""
        return self.env == "development"

    @property
    def is_testing(self) -> bool:
        return self.env == "testing"

    def model_post_init(self, __context: object) -> None:
        """Post-initialization: create data directories if they don't exist."""
        self.data_dir = self.data_dir.resolve()

        self.data_dir.mkdir(parents=True, exist_ok=True)
        self.config_dir.mkdir(parents=True, exist_ok=True)
        self.database_dir.mkdir(parents=True, exist_ok=True)
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        self.logs_dir.mkdir(parents=True, exist_ok=True)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get the cached settings instance.

    The cache is cleared when reload_settings() is called.
    """
    return Settings()


def reload_settings() -> Settings:
    """Reload settings from all sources (JSON, .env, env vars).

    Returns:
        New Settings instance
    """
    get_settings.cache_clear()
    return get_settings()
