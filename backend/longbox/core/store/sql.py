"""SQLModel-backed Store."""

from __future__ import annotations

import time
from dataclasses import fields
from typing import Any

import structlog
from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import async_sessionmaker
from sqlmodel import col, select
from sqlmodel.ext.asyncio.session import AsyncSession as SQLModelAsyncSession

from longbox.core.database import retry_db_operation
from longbox.core.errors import DuplicateIdentityError, NotFoundError
from longbox.core.matching.models import CrossSourceMapping
from longbox.core.matching.titles import series_identity_key
from longbox.db.models import ComicFile, CrossSourceMappingRow, Library, Series

from .base import LINKABLE_STATUSES, FileFilter, FileRecord, LibraryRecord, SeriesRecord, Store

logger = structlog.get_logger("longbox.store.sql")

_FILE_FIELDS = [f.name for f in fields(FileRecord)]
_SERIES_FIELDS = [f.name for f in fields(SeriesRecord)]


def _file_record(row: ComicFile) -> FileRecord:
    return FileRecord(**{name: getattr(row, name) for name in _FILE_FIELDS})


def _series_record(row: Series) -> SeriesRecord:
    return SeriesRecord(**{name: getattr(row, name) for name in _SERIES_FIELDS})


def _mapping_model(row: CrossSourceMappingRow) -> CrossSourceMapping:
    return CrossSourceMapping(
        primary_source=row.primary_source,
        primary_source_id=row.primary_source_id,
        matched_source=row.matched_source,
        matched_source_id=row.matched_source_id,
        confidence=row.confidence,
        match_method=row.match_method,  # type: ignore[arg-type]
        verified=row.verified,
        match_factors=row.match_factors or {},
    )


def _references(source: str, source_id: str) -> Any:
    return or_(
        (col(CrossSourceMappingRow.primary_source) == source)
        & (col(CrossSourceMappingRow.primary_source_id) == source_id),
        (col(CrossSourceMappingRow.matched_source) == source)
        & (col(CrossSourceMappingRow.matched_source_id) == source_id),
    )


class SqlStore(Store):
    """Store on an async SQLite database.

    Each call opens its own session so concurrent linker workers never
    share one. A unique index on ``series.identity_key`` turns duplicate
    series creation into DuplicateIdentityError.
    """

    def __init__(self, session_factory: async_sessionmaker[SQLModelAsyncSession]) -> None:
        self.session_factory = session_factory

    async def create_library(self, name: str, root_path: str) -> LibraryRecord:
        async with self.session_factory() as session:
            row = Library(name=name, root_path=root_path)
            session.add(row)
            await retry_db_operation(session.commit, session=session, operation_type="insert")
            return LibraryRecord(id=row.id, name=row.name, root_path=row.root_path)

    async def find_library(self, library_id: str) -> LibraryRecord | None:
        async with self.session_factory() as session:
            row = await session.get(Library, library_id)
            if row is None:
                return None
            return LibraryRecord(id=row.id, name=row.name, root_path=row.root_path)

    async def list_files(
        self, library_id: str, file_filter: FileFilter | None = None
    ) -> list[FileRecord]:
        file_filter = file_filter or FileFilter()
        statement = select(ComicFile).where(ComicFile.library_id == library_id)
        if file_filter.statuses is not None:
            statement = statement.where(col(ComicFile.status).in_(file_filter.statuses))
        if file_filter.unlinked:
            statement = statement.where(col(ComicFile.series_id).is_(None))
        if file_filter.series_id is not None:
            statement = statement.where(ComicFile.series_id == file_filter.series_id)
        statement = statement.order_by(col(ComicFile.path)).offset(file_filter.offset)
        if file_filter.limit is not None:
            statement = statement.limit(file_filter.limit)

        async with self.session_factory() as session:
            result = await retry_db_operation(
                lambda: session.exec(statement), session=session, operation_type="query"
            )
            return [_file_record(row) for row in result.all()]

    async def create_file(self, file: FileRecord) -> FileRecord:
        values = {name: getattr(file, name) for name in _FILE_FIELDS}
        if not values["id"]:
            del values["id"]
        async with self.session_factory() as session:
            row = ComicFile(**values)
            session.add(row)
            await retry_db_operation(session.commit, session=session, operation_type="insert")
            return _file_record(row)

    async def update_file(self, file_id: str, **changes: Any) -> FileRecord:
        async with self.session_factory() as session:
            row = await session.get(ComicFile, file_id)
            if row is None:
                raise NotFoundError("File", file_id)
            for key, value in changes.items():
                setattr(row, key, value)
            row.updated_at = int(time.time())
            session.add(row)
            await retry_db_operation(session.commit, session=session, operation_type="update")
            return _file_record(row)

    async def delete_file(self, file_id: str) -> None:
        async with self.session_factory() as session:
            row = await session.get(ComicFile, file_id)
            if row is None:
                raise NotFoundError("File", file_id)
            await session.delete(row)
            await retry_db_operation(session.commit, session=session, operation_type="delete")

    async def count_pending(self, library_id: str) -> int:
        statement = (
            select(func.count())
            .select_from(ComicFile)
            .where(
                ComicFile.library_id == library_id,
                col(ComicFile.series_id).is_(None),
                col(ComicFile.status).in_(LINKABLE_STATUSES),
            )
        )
        async with self.session_factory() as session:
            result = await session.exec(statement)
            return int(result.one())

    async def find_series_by_identity(
        self, name: str, publisher: str | None = None
    ) -> SeriesRecord | None:
        key = series_identity_key(name, publisher)
        async with self.session_factory() as session:
            result = await session.exec(select(Series).where(Series.identity_key == key))
            row = result.first()
            return _series_record(row) if row else None

    async def list_series(self, library_id: str | None = None) -> list[SeriesRecord]:
        statement = select(Series)
        if library_id is not None:
            statement = statement.where(
                or_(col(Series.library_id).is_(None), Series.library_id == library_id)
            )
        async with self.session_factory() as session:
            result = await session.exec(statement.order_by(col(Series.name)))
            return [_series_record(row) for row in result.all()]

    async def create_series(self, series: SeriesRecord) -> SeriesRecord:
        key = series_identity_key(series.name, series.publisher)
        values = {name: getattr(series, name) for name in _SERIES_FIELDS}
        values["identity_key"] = key
        if not values["id"]:
            del values["id"]

        async with self.session_factory() as session:
            row = Series(**values)
            session.add(row)
            try:
                await retry_db_operation(session.commit, session=session, operation_type="insert")
            except IntegrityError as exc:
                await session.rollback()
                if "identity_key" in str(exc.orig) or "uq_series_identity_key" in str(exc.orig):
                    raise DuplicateIdentityError(key) from exc
                raise
            return _series_record(row)

    async def update_series(self, series_id: str, **changes: Any) -> SeriesRecord:
        async with self.session_factory() as session:
            row = await session.get(Series, series_id)
            if row is None:
                raise NotFoundError("Series", series_id)
            for key, value in changes.items():
                setattr(row, key, value)
            row.identity_key = series_identity_key(row.name, row.publisher)
            row.updated_at = int(time.time())
            session.add(row)
            try:
                await retry_db_operation(session.commit, session=session, operation_type="update")
            except IntegrityError as exc:
                await session.rollback()
                raise DuplicateIdentityError(row.identity_key) from exc
            return _series_record(row)

    async def recalculate_series_progress(self, series_id: str) -> None:
        async with self.session_factory() as session:
            row = await session.get(Series, series_id)
            if row is None:
                raise NotFoundError("Series", series_id)
            result = await session.exec(
                select(func.count()).select_from(ComicFile).where(ComicFile.series_id == series_id)
            )
            row.issue_count = int(result.one())
            row.updated_at = int(time.time())
            session.add(row)
            await retry_db_operation(session.commit, session=session, operation_type="update")

    async def save_mapping(self, mapping: CrossSourceMapping) -> CrossSourceMapping:
        async with self.session_factory() as session:
            result = await session.exec(
                select(CrossSourceMappingRow).where(
                    CrossSourceMappingRow.primary_source == mapping.primary_source,
                    CrossSourceMappingRow.primary_source_id == mapping.primary_source_id,
                    CrossSourceMappingRow.matched_source == mapping.matched_source,
                )
            )
            row = result.first()
            if row is None:
                row = CrossSourceMappingRow(
                    primary_source=mapping.primary_source,
                    primary_source_id=mapping.primary_source_id,
                    matched_source=mapping.matched_source,
                    matched_source_id=mapping.matched_source_id,
                )
            row.matched_source_id = mapping.matched_source_id
            row.confidence = mapping.confidence
            row.match_method = mapping.match_method
            row.verified = mapping.verified
            row.match_factors = dict(mapping.match_factors)
            row.updated_at = int(time.time())
            session.add(row)
            await retry_db_operation(session.commit, session=session, operation_type="upsert")
            return _mapping_model(row)

    async def list_mappings(self, source: str, source_id: str) -> list[CrossSourceMapping]:
        async with self.session_factory() as session:
            result = await session.exec(
                select(CrossSourceMappingRow).where(_references(source, source_id))
            )
            return [_mapping_model(row) for row in result.all()]

    async def delete_mappings(self, source: str, source_id: str) -> int:
        async with self.session_factory() as session:
            result = await session.exec(
                select(CrossSourceMappingRow).where(_references(source, source_id))
            )
            rows = result.all()
            for row in rows:
                await session.delete(row)
            await retry_db_operation(session.commit, session=session, operation_type="delete")
            logger.debug("Deleted cross-source mappings", source=source, source_id=source_id, count=len(rows))
            return len(rows)
