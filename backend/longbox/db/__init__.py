"""Database models.

Importing this package registers every table on ``metadata``.
"""

from __future__ import annotations

from longbox.db.models import ComicFile, CrossSourceMappingRow, Library, Series, metadata

__all__ = [
    "ComicFile",
    "CrossSourceMappingRow",
    "Library",
    "Series",
    "metadata",
]
