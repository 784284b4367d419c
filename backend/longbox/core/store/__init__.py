"""Store contract and bundled adapters."""

from .base import (
    FILE_STATUSES,
    LINKABLE_STATUSES,
    FileFilter,
    FileRecord,
    FileStatus,
    LibraryRecord,
    SeriesRecord,
    Store,
)
from .memory import InMemoryStore

__all__ = [
    "FILE_STATUSES",
    "LINKABLE_STATUSES",
    "FileFilter",
    "FileRecord",
    "FileStatus",
    "InMemoryStore",
    "LibraryRecord",
    "SeriesRecord",
    "Store",
]
