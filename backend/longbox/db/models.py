"""Database models for Longbox.

Models follow these patterns:
- Use singular nouns: Library, ComicFile
- Table names use plural, snake_case: libraries, comic_files
- Use uuid.uuid4().hex for IDs (32 character hex strings)
- Integer unix timestamps for created_at/updated_at
"""

from __future__ import annotations

import time
import uuid
from typing import Any

from sqlalchemy import JSON, Column, Index, UniqueConstraint
from sqlmodel import Field, SQLModel

metadata = SQLModel.metadata


class Library(SQLModel, table=True):
    """A root folder of comic files."""

    __tablename__ = "libraries"  # type: ignore[assignment]

    id: str = Field(default_factory=lambda: uuid.uuid4().hex, primary_key=True)
    name: str
    root_path: str
    created_at: int = Field(default_factory=lambda: int(time.time()))


class ComicFile(SQLModel, table=True):
    """A comic archive registered in a library."""

    __tablename__ = "comic_files"  # type: ignore[assignment]

    id: str = Field(default_factory=lambda: uuid.uuid4().hex, primary_key=True)
    library_id: str = Field(foreign_key="libraries.id")
    path: str
    relative_path: str
    filename: str
    extension: str
    size: int = 0
    modified_at: float = 0.0
    hash: str | None = None
    status: str = Field(default="pending")  # pending, indexed, orphaned, quarantined
    series_id: str | None = Field(default=None, foreign_key="series.id")

    # Metadata extracted from the archive before it reaches the engine
    series_name: str | None = None
    publisher: str | None = None
    year: int | None = None
    issue_number: str | None = None
    title: str | None = None
    genres: list[str] = Field(default_factory=list, sa_column=Column(JSON))
    tags: list[str] = Field(default_factory=list, sa_column=Column(JSON))

    created_at: int = Field(default_factory=lambda: int(time.time()))
    updated_at: int = Field(default_factory=lambda: int(time.time()))

    __table_args__ = (
        Index("idx_comic_files_library", "library_id"),
        Index("idx_comic_files_path", "path"),
        Index("idx_comic_files_hash", "hash"),
        Index("idx_comic_files_series", "series_id"),
        Index("idx_comic_files_status", "library_id", "status"),
    )


class Series(SQLModel, table=True):
    """A canonical series, unique by identity key."""

    __tablename__ = "series"  # type: ignore[assignment]

    id: str = Field(default_factory=lambda: uuid.uuid4().hex, primary_key=True)
    name: str
    publisher: str | None = None
    start_year: int | None = None
    aliases: list[str] = Field(default_factory=list, sa_column=Column(JSON))
    genres: list[str] = Field(default_factory=list, sa_column=Column(JSON))
    tags: list[str] = Field(default_factory=list, sa_column=Column(JSON))
    summary: str | None = None
    library_id: str | None = Field(default=None, foreign_key="libraries.id")
    issue_count: int = 0
    identity_key: str

    created_at: int = Field(default_factory=lambda: int(time.time()))
    updated_at: int = Field(default_factory=lambda: int(time.time()))

    __table_args__ = (
        UniqueConstraint("identity_key", name="uq_series_identity_key"),
        Index("idx_series_library", "library_id"),
    )


class CrossSourceMappingRow(SQLModel, table=True):
    """Stored link between one series in two metadata sources."""

    __tablename__ = "cross_source_mappings"  # type: ignore[assignment]

    id: str = Field(default_factory=lambda: uuid.uuid4().hex, primary_key=True)
    primary_source: str
    primary_source_id: str
    matched_source: str
    matched_source_id: str
    confidence: float = 0.0
    match_method: str = "auto"  # auto, user
    verified: bool = False
    match_factors: dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON))
    created_at: int = Field(default_factory=lambda: int(time.time()))
    updated_at: int = Field(default_factory=lambda: int(time.time()))

    __table_args__ = (
        UniqueConstraint(
            "primary_source",
            "primary_source_id",
            "matched_source",
            name="uq_cross_source_mapping",
        ),
        Index("idx_mapping_primary", "primary_source", "primary_source_id"),
        Index("idx_mapping_matched", "matched_source", "matched_source_id"),
    )
