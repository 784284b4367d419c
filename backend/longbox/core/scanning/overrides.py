"""Folder-level series definitions read from series.json files.

Two formats are accepted:

- v1, a single series: ``{"seriesName": "Batman", "publisher": "DC", ...}``
- v2, several series in one folder: ``{"series": [{"name": "Batman", ...}, ...]}``
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Literal, Protocol

import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from longbox.core.errors import FolderDefinitionError
from longbox.core.matching.titles import fuzzy_title_similarity, normalize_title

logger = structlog.get_logger("longbox.scanning.overrides")

SERIES_JSON = "series.json"
FUZZY_FOLDER_MATCH_THRESHOLD = 0.8


class SeriesDefinition(BaseModel):
    """One series declared by a folder definition."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    name: str = Field(..., min_length=1)
    aliases: list[str] = Field(default_factory=list)
    publisher: str | None = None
    start_year: int | None = None
    end_year: int | None = None
    issue_count: int | None = None
    summary: str | None = None
    genres: list[str] = Field(default_factory=list)
    tags: list[str] = Field(default_factory=list)


class _FolderDefinitionFile(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    series: list[SeriesDefinition] | None = None
    series_name: str | None = None
    aliases: list[str] = Field(default_factory=list)
    publisher: str | None = None
    start_year: int | None = None
    end_year: int | None = None
    issue_count: int | None = None
    summary: str | None = None
    genres: list[str] = Field(default_factory=list)
    tags: list[str] = Field(default_factory=list)


def parse_folder_definition(data: object) -> list[SeriesDefinition]:
    """Turn a decoded series.json document into series definitions.

    Raises:
        ValueError: The document is not an object or fails validation.
    """
    if not isinstance(data, dict):
        raise ValueError("series.json must contain a JSON object")
    document = _FolderDefinitionFile.model_validate(data)
    if document.series:
        return list(document.series)
    if document.series_name:
        return [
            SeriesDefinition(
                name=document.series_name,
                aliases=document.aliases,
                publisher=document.publisher,
                start_year=document.start_year,
                end_year=document.end_year,
                issue_count=document.issue_count,
                summary=document.summary,
                genres=document.genres,
                tags=document.tags,
            )
        ]
    return []


class SeriesOverrideProvider(Protocol):
    def read_folder_definition(self, folder: Path) -> list[SeriesDefinition] | None:
        """Definitions declared for ``folder``, or None when it has none."""
        ...


class JsonSeriesOverrideProvider:
    """Reads ``series.json`` from the folder itself."""

    def __init__(self, filename: str = SERIES_JSON) -> None:
        self.filename = filename

    def read_folder_definition(self, folder: Path) -> list[SeriesDefinition] | None:
        path = folder / self.filename
        if not path.is_file():
            return None
        try:
            with path.open("r", encoding="utf-8") as f:
                data = json.load(f)
            definitions = parse_folder_definition(data)
        except (OSError, ValueError, ValidationError) as e:
            raise FolderDefinitionError(str(path), str(e)) from e
        return definitions or None


@dataclass(frozen=True)
class FolderSeriesEntry:
    folder: str
    definition: SeriesDefinition
    normalized_name: str
    normalized_aliases: tuple[str, ...]


@dataclass(frozen=True)
class FolderMatch:
    entry: FolderSeriesEntry | None
    confidence: float
    match_type: Literal["exact-name", "exact-alias", "fuzzy-name", "fuzzy-alias", "none"]


class FolderSeriesRegistry:
    """Folder -> definitions map built from one scan's discovered series.json files.

    Also acts as a SeriesOverrideProvider so the resolver does not read the
    same files twice.
    """

    def __init__(self) -> None:
        self._entries: dict[str, list[FolderSeriesEntry]] = {}

    @classmethod
    def build(cls, definitions: Mapping[str, list[SeriesDefinition]]) -> FolderSeriesRegistry:
        registry = cls()
        for folder, defs in definitions.items():
            registry.add(folder, defs)
        return registry

    def add(self, folder: Path | str, definitions: list[SeriesDefinition]) -> None:
        if not definitions:
            return
        self._entries[str(folder)] = [
            FolderSeriesEntry(
                folder=str(folder),
                definition=d,
                normalized_name=normalize_title(d.name),
                normalized_aliases=tuple(a for a in map(normalize_title, d.aliases) if a),
            )
            for d in definitions
        ]
        logger.debug(
            "Registered folder series",
            folder=str(folder),
            series=[d.name for d in definitions],
        )

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, folder: object) -> bool:
        return str(folder) in self._entries

    def read_folder_definition(self, folder: Path) -> list[SeriesDefinition] | None:
        entries = self._entries.get(str(folder))
        if not entries:
            return None
        return [e.definition for e in entries]

    def find_in_folder(self, folder: Path | str, series_name: str) -> FolderMatch:
        """Match a raw series name against the definitions of one folder.

        Priority: exact name, exact alias, then the best fuzzy name or alias
        match scoring at least 0.8.
        """
        entries = self._entries.get(str(folder))
        if not entries:
            return FolderMatch(entry=None, confidence=0.0, match_type="none")

        normalized = normalize_title(series_name)
        for entry in entries:
            if entry.normalized_name == normalized:
                return FolderMatch(entry=entry, confidence=1.0, match_type="exact-name")
        for entry in entries:
            if normalized in entry.normalized_aliases:
                return FolderMatch(entry=entry, confidence=1.0, match_type="exact-alias")

        best: FolderMatch = FolderMatch(entry=None, confidence=0.0, match_type="none")
        for entry in entries:
            name_score = fuzzy_title_similarity(normalized, entry.normalized_name)
            alias_score = max(
                (fuzzy_title_similarity(normalized, a) for a in entry.normalized_aliases),
                default=0.0,
            )
            score = max(name_score, alias_score)
            if score >= FUZZY_FOLDER_MATCH_THRESHOLD and score > best.confidence:
                match_type = "fuzzy-name" if name_score >= alias_score else "fuzzy-alias"
                best = FolderMatch(entry=entry, confidence=score, match_type=match_type)
        return best
