"""Parallel linking of unlinked files to already-resolved series."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from pathlib import Path

import structlog

from longbox.core.errors import NotFoundError
from longbox.core.matching.titles import name_only_key, series_identity_key
from longbox.core.metrics import files_linked_total
from longbox.core.store.base import LINKABLE_STATUSES, FileFilter, FileRecord, Store

from .naming import raw_series_name, split_trailing_year
from .overrides import FolderSeriesRegistry
from .progress import CancelCheck, ProgressCallback, is_cancelled, report_progress

logger = structlog.get_logger("longbox.scanning.linker")

DEFAULT_BATCH_SIZE = 100
DEFAULT_CONCURRENCY = 8


@dataclass
class LinkResult:
    linked: int = 0
    unresolved: int = 0
    errors: int = 0
    cancelled: bool = False
    affected_series_ids: set[str] = field(default_factory=set)


@dataclass
class SeriesLookup:
    """Identity key and name-only key maps built once per linking pass."""

    exact: dict[str, str] = field(default_factory=dict)
    by_name: dict[str, str] = field(default_factory=dict)

    def add(self, name: str, publisher: str | None, series_id: str) -> None:
        self.exact.setdefault(series_identity_key(name, publisher), series_id)
        self.by_name.setdefault(name_only_key(name), series_id)

    def find(self, name: str, publisher: str | None) -> str | None:
        return self.exact.get(series_identity_key(name, publisher)) or self.by_name.get(
            name_only_key(name)
        )


class FileLinker:
    """Links unlinked files to series with a bounded pool of workers.

    By the time linking runs every series exists, so workers only read the
    lookup maps and update independent file rows.
    """

    def __init__(
        self,
        store: Store,
        folders: FolderSeriesRegistry | None = None,
        batch_size: int = DEFAULT_BATCH_SIZE,
        concurrency: int = DEFAULT_CONCURRENCY,
    ) -> None:
        self.store = store
        self.folders = folders
        self.batch_size = batch_size
        self.concurrency = concurrency

    async def build_lookup(self, library_id: str) -> SeriesLookup:
        lookup = SeriesLookup()
        for series in await self.store.list_series(library_id):
            lookup.add(series.name, series.publisher, series.id)
            for alias in series.aliases:
                lookup.add(alias, series.publisher, series.id)
        return lookup

    def _series_for(self, file: FileRecord, lookup: SeriesLookup) -> str | None:
        raw = raw_series_name(file.series_name, file.relative_path)
        if not raw:
            return None
        name, _ = split_trailing_year(raw)

        if self.folders is not None:
            match = self.folders.find_in_folder(Path(file.path).parent, name)
            if match.entry is not None:
                definition = match.entry.definition
                series_id = lookup.find(definition.name, definition.publisher)
                if series_id:
                    return series_id

        return lookup.find(name or raw, file.publisher)

    async def link_files_to_series(
        self,
        library_id: str,
        should_cancel: CancelCheck | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> LinkResult:
        """Link the library's unlinked files to their series.

        Each file is matched by identity key, then by name alone; files
        matching neither are counted as unresolved and left unlinked.

        Raises:
            NotFoundError: The library does not exist.
        """
        if await self.store.find_library(library_id) is None:
            raise NotFoundError("Library", library_id)

        result = LinkResult()
        lookup = await self.build_lookup(library_id)
        total = await self.store.count_pending(library_id)
        semaphore = asyncio.Semaphore(self.concurrency)
        processed = 0
        # Linked files leave the unlinked selection; only the ones left
        # behind shift the next page
        skipped = 0

        logger.info(
            "Linking files",
            library_id=library_id,
            pending=total,
            series=len(lookup.exact),
        )

        async def link_file(file: FileRecord) -> tuple[str, str | None]:
            async with semaphore:
                series_id = self._series_for(file, lookup)
                if series_id is None:
                    logger.warning(
                        "No series found for file",
                        path=file.path,
                        series_name=file.series_name,
                    )
                    return ("unresolved", None)
                try:
                    await self.store.update_file(file.id, series_id=series_id, status="indexed")
                except Exception as e:
                    logger.error("Failed to link file", path=file.path, error=str(e))
                    return ("error", None)
                return ("linked", series_id)

        while True:
            if is_cancelled(should_cancel):
                logger.info("File linking cancelled", library_id=library_id, processed=processed)
                result.cancelled = True
                break

            batch = await self.store.list_files(
                library_id,
                FileFilter(
                    statuses=LINKABLE_STATUSES,
                    unlinked=True,
                    offset=skipped,
                    limit=self.batch_size,
                ),
            )
            if not batch:
                break

            for coro in asyncio.as_completed([link_file(f) for f in batch]):
                outcome, series_id = await coro
                files_linked_total.labels(outcome=outcome).inc()
                if outcome == "linked" and series_id:
                    result.linked += 1
                    result.affected_series_ids.add(series_id)
                elif outcome == "unresolved":
                    result.unresolved += 1
                    skipped += 1
                else:
                    result.errors += 1
                    skipped += 1

            processed += len(batch)
            report_progress(on_progress, processed, total)

            if len(batch) < self.batch_size:
                break

        for series_id in sorted(result.affected_series_ids):
            try:
                await self.store.recalculate_series_progress(series_id)
            except Exception as e:
                logger.warning(
                    "Failed to recalculate series progress", series_id=series_id, error=str(e)
                )

        logger.info(
            "File linking complete",
            library_id=library_id,
            linked=result.linked,
            unresolved=result.unresolved,
            errors=result.errors,
            series=len(result.affected_series_ids),
            cancelled=result.cancelled,
        )
        return result
