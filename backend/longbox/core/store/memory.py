"""In-process Store used by tests and by callers that embed the engine."""

from __future__ import annotations

import copy
import dataclasses
import uuid
from typing import Any

from longbox.core.errors import DuplicateIdentityError, NotFoundError
from longbox.core.matching.models import CrossSourceMapping
from longbox.core.matching.titles import series_identity_key

from .base import LINKABLE_STATUSES, FileFilter, FileRecord, LibraryRecord, SeriesRecord, Store


def _mapping_key(mapping: CrossSourceMapping) -> tuple[str, str, str]:
    return (mapping.primary_source, mapping.primary_source_id, mapping.matched_source)


class InMemoryStore(Store):
    """Dictionary-backed Store enforcing a unique series identity key.

    Returned records are copies, so callers cannot mutate stored state
    without going through the update methods.
    """

    def __init__(self) -> None:
        self.libraries: dict[str, LibraryRecord] = {}
        self.files: dict[str, FileRecord] = {}
        self.series: dict[str, SeriesRecord] = {}
        self._series_by_identity: dict[str, str] = {}
        self.mappings: dict[tuple[str, str, str], CrossSourceMapping] = {}

    async def create_library(self, name: str, root_path: str, library_id: str | None = None) -> LibraryRecord:
        library = LibraryRecord(id=library_id or uuid.uuid4().hex, name=name, root_path=root_path)
        self.libraries[library.id] = library
        return copy.deepcopy(library)

    async def find_library(self, library_id: str) -> LibraryRecord | None:
        library = self.libraries.get(library_id)
        return copy.deepcopy(library) if library else None

    async def list_files(
        self, library_id: str, file_filter: FileFilter | None = None
    ) -> list[FileRecord]:
        file_filter = file_filter or FileFilter()
        selected = [
            f
            for f in self.files.values()
            if f.library_id == library_id
            and (file_filter.statuses is None or f.status in file_filter.statuses)
            and (not file_filter.unlinked or f.series_id is None)
            and (file_filter.series_id is None or f.series_id == file_filter.series_id)
        ]
        selected.sort(key=lambda f: f.path)
        end = None if file_filter.limit is None else file_filter.offset + file_filter.limit
        return [copy.deepcopy(f) for f in selected[file_filter.offset : end]]

    async def create_file(self, file: FileRecord) -> FileRecord:
        stored = dataclasses.replace(file, id=file.id or uuid.uuid4().hex)
        self.files[stored.id] = stored
        return copy.deepcopy(stored)

    async def update_file(self, file_id: str, **changes: Any) -> FileRecord:
        if file_id not in self.files:
            raise NotFoundError("File", file_id)
        self.files[file_id] = dataclasses.replace(self.files[file_id], **changes)
        return copy.deepcopy(self.files[file_id])

    async def delete_file(self, file_id: str) -> None:
        if self.files.pop(file_id, None) is None:
            raise NotFoundError("File", file_id)

    async def count_pending(self, library_id: str) -> int:
        return sum(
            1
            for f in self.files.values()
            if f.library_id == library_id and f.series_id is None and f.status in LINKABLE_STATUSES
        )

    async def find_series_by_identity(
        self, name: str, publisher: str | None = None
    ) -> SeriesRecord | None:
        series_id = self._series_by_identity.get(series_identity_key(name, publisher))
        if series_id is None:
            return None
        return copy.deepcopy(self.series[series_id])

    async def list_series(self, library_id: str | None = None) -> list[SeriesRecord]:
        return [
            copy.deepcopy(s)
            for s in self.series.values()
            if library_id is None or s.library_id in (None, library_id)
        ]

    async def create_series(self, series: SeriesRecord) -> SeriesRecord:
        key = series_identity_key(series.name, series.publisher)
        if key in self._series_by_identity:
            raise DuplicateIdentityError(key)
        stored = dataclasses.replace(series, id=series.id or uuid.uuid4().hex, identity_key=key)
        self.series[stored.id] = stored
        self._series_by_identity[key] = stored.id
        return copy.deepcopy(stored)

    async def update_series(self, series_id: str, **changes: Any) -> SeriesRecord:
        current = self.series.get(series_id)
        if current is None:
            raise NotFoundError("Series", series_id)
        updated = dataclasses.replace(current, **changes)
        key = series_identity_key(updated.name, updated.publisher)
        if key != current.identity_key:
            owner = self._series_by_identity.get(key)
            if owner is not None and owner != series_id:
                raise DuplicateIdentityError(key)
            del self._series_by_identity[current.identity_key]
            self._series_by_identity[key] = series_id
            updated = dataclasses.replace(updated, identity_key=key)
        self.series[series_id] = updated
        return copy.deepcopy(updated)

    async def recalculate_series_progress(self, series_id: str) -> None:
        if series_id not in self.series:
            raise NotFoundError("Series", series_id)
        count = sum(1 for f in self.files.values() if f.series_id == series_id)
        self.series[series_id].issue_count = count

    async def save_mapping(self, mapping: CrossSourceMapping) -> CrossSourceMapping:
        self.mappings[_mapping_key(mapping)] = mapping.model_copy(deep=True)
        return mapping.model_copy(deep=True)

    async def list_mappings(self, source: str, source_id: str) -> list[CrossSourceMapping]:
        return [
            m.model_copy(deep=True)
            for m in self.mappings.values()
            if (m.primary_source, m.primary_source_id) == (source, source_id)
            or (m.matched_source, m.matched_source_id) == (source, source_id)
        ]

    async def delete_mappings(self, source: str, source_id: str) -> int:
        doomed = [
            key
            for key, m in self.mappings.items()
            if (m.primary_source, m.primary_source_id) == (source, source_id)
            or (m.matched_source, m.matched_source_id) == (source, source_id)
        ]
        for key in doomed:
            del self.mappings[key]
        return len(doomed)
