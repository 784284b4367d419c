"""Sequential series resolution.

Resolution is a check-then-create sequence per series name. Running it one
name at a time under a per-library lock keeps a single scan from racing
itself; conflicts with other writers surface as DuplicateIdentityError and
are recovered as ``existing``.
"""

from __future__ import annotations

import asyncio
from collections import defaultdict
from dataclasses import dataclass, field
from pathlib import Path

import structlog

from longbox.core.errors import DuplicateIdentityError, FolderDefinitionError, NotFoundError
from longbox.core.matching.publishers import normalize_publisher
from longbox.core.matching.titles import name_only_key, series_identity_key
from longbox.core.metrics import series_race_recoveries_total, series_resolved_total
from longbox.core.store.base import LINKABLE_STATUSES, FileFilter, FileRecord, SeriesRecord, Store

from .naming import raw_series_name, split_trailing_year
from .overrides import FolderSeriesRegistry, SeriesDefinition, SeriesOverrideProvider
from .progress import CancelCheck, ProgressCallback, is_cancelled, report_progress

logger = structlog.get_logger("longbox.scanning.resolver")


@dataclass
class ResolveResult:
    created: int = 0
    existing: int = 0
    errors: int = 0
    cancelled: bool = False
    error_messages: list[str] = field(default_factory=list)


@dataclass
class _SeriesSeed:
    name: str
    publisher: str | None
    start_year: int | None
    genres: list[str]
    tags: list[str]
    folder: str


def seed_from_files(raw_name: str, files: list[FileRecord]) -> _SeriesSeed:
    """Series fields for ``raw_name`` taken from the first file of its group.

    Fields the first file lacks are filled from the next file that has them.
    A trailing "(YYYY)" on the raw name becomes the start year.
    """
    name, name_year = split_trailing_year(raw_name)
    return _SeriesSeed(
        name=name or raw_name,
        publisher=next((f.publisher for f in files if f.publisher), None),
        start_year=name_year or next((f.year for f in files if f.year), None),
        genres=list(next((f.genres for f in files if f.genres), [])),
        tags=list(next((f.tags for f in files if f.tags), [])),
        folder=str(Path(files[0].path).parent),
    )


def group_pending_files(files: list[FileRecord]) -> dict[str, list[FileRecord]]:
    groups: dict[str, list[FileRecord]] = defaultdict(list)
    for file in files:
        raw = raw_series_name(file.series_name, file.relative_path)
        if raw:
            groups[raw].append(file)
    return dict(groups)


class SeriesResolver:
    """Creates or finds one Series per distinct raw series name of a library's unlinked files."""

    def __init__(
        self,
        store: Store,
        overrides: SeriesOverrideProvider | None = None,
        batch_size: int = 100,
    ) -> None:
        self.store = store
        self.overrides = overrides
        self.batch_size = batch_size
        self._locks: dict[str, asyncio.Lock] = {}

    def _library_lock(self, library_id: str) -> asyncio.Lock:
        lock = self._locks.get(library_id)
        if lock is None:
            lock = self._locks[library_id] = asyncio.Lock()
        return lock

    async def _pending_files(self, library_id: str) -> list[FileRecord]:
        files: list[FileRecord] = []
        offset = 0
        while True:
            page = await self.store.list_files(
                library_id,
                FileFilter(
                    statuses=LINKABLE_STATUSES,
                    unlinked=True,
                    offset=offset,
                    limit=self.batch_size,
                ),
            )
            files.extend(page)
            if len(page) < self.batch_size:
                return files
            offset += len(page)

    async def create_series_from_files(
        self,
        library_id: str,
        should_cancel: CancelCheck | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> ResolveResult:
        """Resolve every distinct raw series name of the library's unlinked files.

        Names are processed one at a time in case-insensitive order. For
        each name the folder definition of its folder is applied first (once
        per folder); a name covered by that definition needs no further work.
        Otherwise the identity is looked up and, when missing, created.

        Raises:
            NotFoundError: The library does not exist.
        """
        if await self.store.find_library(library_id) is None:
            raise NotFoundError("Library", library_id)

        async with self._library_lock(library_id):
            return await self._resolve(library_id, should_cancel, on_progress)

    async def _resolve(
        self,
        library_id: str,
        should_cancel: CancelCheck | None,
        on_progress: ProgressCallback | None,
    ) -> ResolveResult:
        result = ResolveResult()
        groups = group_pending_files(await self._pending_files(library_id))
        names = sorted(groups, key=lambda n: (n.casefold(), n))
        total = len(names)

        by_name: dict[str, SeriesRecord] = {}
        for series in await self.store.list_series(library_id):
            by_name.setdefault(name_only_key(series.name), series)

        registry = FolderSeriesRegistry()
        consulted: set[str] = set()

        logger.info("Resolving series", library_id=library_id, names=total)

        for index, raw_name in enumerate(names):
            if is_cancelled(should_cancel):
                logger.info("Series resolution cancelled", library_id=library_id, processed=index)
                result.cancelled = True
                break

            seed = seed_from_files(raw_name, groups[raw_name])

            if seed.folder not in consulted:
                consulted.add(seed.folder)
                definitions = self._read_definitions(seed.folder)
                if definitions:
                    registry.add(seed.folder, definitions)
                    for definition in definitions:
                        await self._apply_definition(definition, library_id, by_name, result)

            if registry.find_in_folder(seed.folder, seed.name).entry is not None:
                report_progress(on_progress, index + 1, total)
                continue

            await self._resolve_name(seed, library_id, by_name, result)
            report_progress(on_progress, index + 1, total)

        logger.info(
            "Series resolution complete",
            library_id=library_id,
            created=result.created,
            existing=result.existing,
            errors=result.errors,
            cancelled=result.cancelled,
        )
        return result

    def _read_definitions(self, folder: str) -> list[SeriesDefinition] | None:
        if self.overrides is None:
            return None
        try:
            return self.overrides.read_folder_definition(Path(folder))
        except FolderDefinitionError as e:
            logger.warning("Ignoring invalid folder definition", folder=folder, error=str(e))
            return None

    async def _apply_definition(
        self,
        definition: SeriesDefinition,
        library_id: str,
        by_name: dict[str, SeriesRecord],
        result: ResolveResult,
    ) -> None:
        """Create the series a folder definition declares, or sync its fields onto the existing one."""
        try:
            existing = await self.store.find_series_by_identity(definition.name, definition.publisher)
            if existing is not None:
                changes: dict[str, object] = {
                    "aliases": sorted(set(existing.aliases) | set(definition.aliases)),
                }
                if definition.start_year and not existing.start_year:
                    changes["start_year"] = definition.start_year
                if definition.summary:
                    changes["summary"] = definition.summary
                if definition.genres:
                    changes["genres"] = list(definition.genres)
                if definition.tags:
                    changes["tags"] = list(definition.tags)
                await self.store.update_series(existing.id, **changes)
                self._count(result, "existing")
                logger.debug("Synced series from folder definition", series=definition.name)
                return

            created = await self.store.create_series(
                SeriesRecord(
                    name=definition.name,
                    publisher=definition.publisher,
                    start_year=definition.start_year,
                    aliases=list(definition.aliases),
                    genres=list(definition.genres),
                    tags=list(definition.tags),
                    summary=definition.summary,
                    library_id=library_id,
                )
            )
            by_name.setdefault(name_only_key(created.name), created)
            self._count(result, "created")
            logger.info("Created series from folder definition", series=definition.name)
        except DuplicateIdentityError:
            series_race_recoveries_total.inc()
            self._count(result, "existing")
        except Exception as e:
            logger.error(
                "Failed to apply folder definition", series=definition.name, error=str(e)
            )
            self._count(result, "error", f"{definition.name}: {e}")

    async def _resolve_name(
        self,
        seed: _SeriesSeed,
        library_id: str,
        by_name: dict[str, SeriesRecord],
        result: ResolveResult,
    ) -> None:
        try:
            existing = await self.store.find_series_by_identity(seed.name, seed.publisher)
            if existing is None and not normalize_publisher(seed.publisher):
                existing = by_name.get(name_only_key(seed.name))
            if existing is not None:
                self._count(result, "existing")
                return

            created = await self.store.create_series(
                SeriesRecord(
                    name=seed.name,
                    publisher=seed.publisher,
                    start_year=seed.start_year,
                    genres=seed.genres,
                    tags=seed.tags,
                    library_id=library_id,
                )
            )
        except DuplicateIdentityError as e:
            # Another writer created this identity between lookup and create
            series_race_recoveries_total.inc()
            logger.info(
                "Series created concurrently, using existing",
                series=seed.name,
                identity_key=e.identity_key,
            )
            self._count(result, "existing")
            return
        except Exception as e:
            logger.error("Failed to resolve series", series=seed.name, error=str(e))
            self._count(result, "error", f"{seed.name}: {e}")
            return

        by_name.setdefault(name_only_key(created.name), created)
        self._count(result, "created")
        logger.info(
            "Created series",
            series=created.name,
            publisher=created.publisher,
            identity_key=series_identity_key(created.name, created.publisher),
        )

    @staticmethod
    def _count(result: ResolveResult, outcome: str, message: str | None = None) -> None:
        if outcome == "created":
            result.created += 1
        elif outcome == "existing":
            result.existing += 1
        else:
            result.errors += 1
            if message:
                result.error_messages.append(message)
        series_resolved_total.labels(outcome=outcome).inc()
