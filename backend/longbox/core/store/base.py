"""Persistence contract consumed by the scanner, resolver, linker and matcher."""

from __future__ import annotations

import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Literal

from longbox.core.matching.models import CrossSourceMapping

FileStatus = Literal["pending", "indexed", "orphaned", "quarantined"]
FILE_STATUSES: tuple[FileStatus, ...] = ("pending", "indexed", "orphaned", "quarantined")
# Statuses the resolver and linker work through; quarantined and orphaned files wait
LINKABLE_STATUSES: tuple[FileStatus, ...] = ("pending", "indexed")


@dataclass
class LibraryRecord:
    id: str
    name: str
    root_path: str


@dataclass
class FileRecord:
    """A comic file known to the registry.

    Metadata fields (series_name, publisher, year...) arrive already
    extracted from the archive; the engine never parses archives itself.
    """

    library_id: str
    path: str
    relative_path: str
    filename: str
    extension: str
    size: int = 0
    modified_at: float = 0.0
    hash: str | None = None
    status: FileStatus = "pending"
    series_id: str | None = None
    series_name: str | None = None
    publisher: str | None = None
    year: int | None = None
    issue_number: str | None = None
    title: str | None = None
    genres: list[str] = field(default_factory=list)
    tags: list[str] = field(default_factory=list)
    id: str = ""
    created_at: int = field(default_factory=lambda: int(time.time()))


@dataclass
class SeriesRecord:
    name: str
    publisher: str | None = None
    start_year: int | None = None
    aliases: list[str] = field(default_factory=list)
    genres: list[str] = field(default_factory=list)
    tags: list[str] = field(default_factory=list)
    summary: str | None = None
    library_id: str | None = None
    issue_count: int = 0
    identity_key: str = ""
    id: str = ""


@dataclass
class FileFilter:
    """Selection applied by Store.list_files.

    ``unlinked`` limits results to files without a series; ``statuses``
    limits them to the given statuses. Results are ordered by path so
    ``offset``/``limit`` paging is stable.
    """

    statuses: tuple[FileStatus, ...] | None = None
    unlinked: bool = False
    series_id: str | None = None
    offset: int = 0
    limit: int | None = None


class Store(ABC):
    """Abstract persistence for libraries, files, series and source mappings.

    ``create_series`` must raise DuplicateIdentityError when a series with
    the same identity key already exists, so callers can recover from races.
    """

    @abstractmethod
    async def find_library(self, library_id: str) -> LibraryRecord | None: ...

    @abstractmethod
    async def list_files(
        self, library_id: str, file_filter: FileFilter | None = None
    ) -> list[FileRecord]: ...

    @abstractmethod
    async def create_file(self, file: FileRecord) -> FileRecord: ...

    @abstractmethod
    async def update_file(self, file_id: str, **changes: Any) -> FileRecord: ...

    @abstractmethod
    async def delete_file(self, file_id: str) -> None: ...

    @abstractmethod
    async def count_pending(self, library_id: str) -> int:
        """Number of files in the library not yet linked to a series.

        Only files in LINKABLE_STATUSES count, so the total matches what the
        linker pages through.
        """

    @abstractmethod
    async def find_series_by_identity(
        self, name: str, publisher: str | None = None
    ) -> SeriesRecord | None:
        """Case-insensitive lookup by series identity key."""

    @abstractmethod
    async def list_series(self, library_id: str | None = None) -> list[SeriesRecord]: ...

    @abstractmethod
    async def create_series(self, series: SeriesRecord) -> SeriesRecord: ...

    @abstractmethod
    async def update_series(self, series_id: str, **changes: Any) -> SeriesRecord: ...

    @abstractmethod
    async def recalculate_series_progress(self, series_id: str) -> None:
        """Refresh aggregate fields (issue count) from the files linked to a series."""

    @abstractmethod
    async def save_mapping(self, mapping: CrossSourceMapping) -> CrossSourceMapping:
        """Insert or update the mapping keyed by (primary source, primary id, matched source)."""

    @abstractmethod
    async def list_mappings(self, source: str, source_id: str) -> list[CrossSourceMapping]:
        """Mappings referencing ``(source, source_id)`` on either side."""

    @abstractmethod
    async def delete_mappings(self, source: str, source_id: str) -> int:
        """Delete mappings referencing ``(source, source_id)`` on either side."""
