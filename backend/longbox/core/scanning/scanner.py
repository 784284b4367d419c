"""Directory walking and change detection against the file registry."""

from __future__ import annotations

import asyncio
import dataclasses
import os
import time
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType

import structlog

from longbox.core.errors import FolderDefinitionError, InvalidRootPathError, NotFoundError
from longbox.core.metrics import (
    scan_changes_total,
    scan_duration_seconds,
    scan_errors_total,
    scan_files_discovered_total,
)
from longbox.core.store.base import FILE_STATUSES, FileFilter, FileRecord, FileStatus, Store

from .fileinfo import FileInfoProvider, LocalFileInfoProvider
from .naming import parse_filename
from .overrides import SeriesDefinition, SeriesOverrideProvider

logger = structlog.get_logger("longbox.scanning.scanner")

COMIC_EXTENSIONS = frozenset({".cbz", ".cbr", ".cb7", ".cbt"})


@dataclass(frozen=True)
class ScannedFile:
    path: str
    relative_path: str
    filename: str
    extension: str  # lowercase, without the dot
    size: int
    modified_at: float
    hash: str | None = None


@dataclass(frozen=True)
class ScanError:
    path: str
    message: str


@dataclass(frozen=True)
class DiscoveryResult:
    """Snapshot of one directory walk."""

    files: tuple[ScannedFile, ...]
    errors: tuple[ScanError, ...]
    folder_definitions: Mapping[str, list[SeriesDefinition]] = field(
        default_factory=lambda: MappingProxyType({})
    )


@dataclass(frozen=True)
class MovedFile:
    old_path: str
    new_path: str
    file_id: str
    series_id: str | None = None


@dataclass(frozen=True)
class OrphanedFile:
    path: str
    file_id: str
    series_id: str | None = None


@dataclass
class ScanDiff:
    library_id: str
    library_path: str
    new_files: list[ScannedFile] = field(default_factory=list)
    moved_files: list[MovedFile] = field(default_factory=list)
    orphaned_files: list[OrphanedFile] = field(default_factory=list)
    unchanged_count: int = 0
    errors: list[ScanError] = field(default_factory=list)
    scan_duration: float = 0.0
    total_files_scanned: int = 0
    existing_orphaned_count: int = 0
    folder_definitions: Mapping[str, list[SeriesDefinition]] = field(default_factory=dict)


@dataclass
class ApplyResult:
    added: int = 0
    moved: int = 0
    orphaned: int = 0
    removed_orphans: int = 0
    errors: list[ScanError] = field(default_factory=list)
    affected_series_ids: set[str] = field(default_factory=set)


@dataclass(frozen=True)
class LibraryPathCheck:
    valid: bool
    error: str | None = None
    is_directory: bool | None = None


@dataclass(frozen=True)
class LibraryStats:
    total: int
    pending: int
    indexed: int
    orphaned: int
    quarantined: int


class FileSystemScanner:
    """Finds comic archives on disk and classifies them against the Store.

    Classification of each discovered file:

    - unchanged: a record exists at the same path
    - moved: no record at this path, but its fingerprint matches a record
      whose path is gone from disk (hash, or size+mtime when either side
      has no hash)
    - new: anything else

    Records whose path is gone, that were not moved and are not already
    flagged ``orphaned`` are reported as orphaned.
    """

    def __init__(
        self,
        store: Store,
        file_info: FileInfoProvider | None = None,
        overrides: SeriesOverrideProvider | None = None,
        extensions: frozenset[str] = COMIC_EXTENSIONS,
    ) -> None:
        self.store = store
        self.file_info = file_info or LocalFileInfoProvider()
        self.overrides = overrides
        self.extensions = frozenset(e.lower() for e in extensions)

    async def discover_files(self, root_path: str | Path) -> DiscoveryResult:
        """Walk ``root_path`` recursively.

        Raises:
            InvalidRootPathError: ``root_path`` is not an existing directory.
        """
        root = Path(root_path)
        if not root.is_dir():
            raise InvalidRootPathError(str(root), "not a directory" if root.exists() else "does not exist")

        result = await asyncio.to_thread(self._walk, root)
        scan_files_discovered_total.inc(len(result.files))
        scan_errors_total.inc(len(result.errors))
        logger.info(
            "Discovered comic files",
            root=str(root),
            files=len(result.files),
            errors=len(result.errors),
            folder_definitions=len(result.folder_definitions),
        )
        return result

    def _walk(self, root: Path) -> DiscoveryResult:
        files: list[ScannedFile] = []
        errors: list[ScanError] = []
        definitions: dict[str, list[SeriesDefinition]] = {}
        pending = [root]

        while pending:
            directory = pending.pop()
            try:
                with os.scandir(directory) as it:
                    entries = sorted(it, key=lambda e: e.name)
            except OSError as e:
                logger.warning("Error scanning folder", folder=str(directory), error=str(e))
                errors.append(ScanError(str(directory), str(e)))
                continue

            if self.overrides is not None:
                try:
                    folder_defs = self.overrides.read_folder_definition(directory)
                except FolderDefinitionError as e:
                    errors.append(ScanError(e.path, str(e)))
                else:
                    if folder_defs:
                        definitions[str(directory)] = folder_defs

            subdirectories: list[Path] = []
            for entry in entries:
                if entry.name.startswith("."):
                    continue
                try:
                    if entry.is_dir(follow_symlinks=False):
                        subdirectories.append(Path(entry.path))
                        continue
                    if not entry.is_file():
                        continue
                except OSError as e:
                    errors.append(ScanError(entry.path, str(e)))
                    continue

                extension = os.path.splitext(entry.name)[1].lower()
                if extension not in self.extensions:
                    continue
                try:
                    info = self.file_info.stat(Path(entry.path))
                except OSError as e:
                    errors.append(ScanError(entry.path, str(e)))
                    continue
                files.append(
                    ScannedFile(
                        path=entry.path,
                        relative_path=os.path.relpath(entry.path, root),
                        filename=entry.name,
                        extension=extension.lstrip("."),
                        size=info.size,
                        modified_at=info.modified_at,
                    )
                )

            # Reversed so the stack pops subdirectories in name order
            pending.extend(reversed(subdirectories))

        files.sort(key=lambda f: f.path)
        return DiscoveryResult(
            files=tuple(files),
            errors=tuple(errors),
            folder_definitions=MappingProxyType(definitions),
        )

    async def _hash(self, path: str) -> str | None:
        try:
            return await asyncio.to_thread(self.file_info.hash, Path(path))
        except OSError as e:
            logger.warning("Failed to fingerprint file", path=path, error=str(e))
            return None

    async def scan_library(self, library_id: str) -> ScanDiff:
        """Diff the library's directory tree against its registered files.

        Raises:
            NotFoundError: The library does not exist.
            InvalidRootPathError: The library root is not a directory.
        """
        start = time.perf_counter()
        library = await self.store.find_library(library_id)
        if library is None:
            raise NotFoundError("Library", library_id)

        existing = await self.store.list_files(library_id)
        discovery = await self.discover_files(library.root_path)

        discovered_paths = {f.path for f in discovery.files}
        existing_paths = {r.path for r in existing}
        # Only records whose file is gone can be the source of a move
        gone = [r for r in existing if r.path not in discovered_paths]
        gone_by_hash = {r.hash: r for r in gone if r.hash}
        claimed: set[str] = set()

        diff = ScanDiff(
            library_id=library_id,
            library_path=library.root_path,
            errors=list(discovery.errors),
            total_files_scanned=len(discovery.files),
            folder_definitions=dict(discovery.folder_definitions),
        )

        for scanned in discovery.files:
            if scanned.path in existing_paths:
                diff.unchanged_count += 1
                continue

            fingerprint = await self._hash(scanned.path)
            scanned = dataclasses.replace(scanned, hash=fingerprint)
            source = self._find_move_source(scanned, gone, gone_by_hash, claimed)
            if source is not None:
                claimed.add(source.id)
                diff.moved_files.append(
                    MovedFile(
                        old_path=source.path,
                        new_path=scanned.path,
                        file_id=source.id,
                        series_id=source.series_id,
                    )
                )
            else:
                diff.new_files.append(scanned)

        for record in gone:
            if record.status == "orphaned" or record.id in claimed:
                continue
            diff.orphaned_files.append(
                OrphanedFile(path=record.path, file_id=record.id, series_id=record.series_id)
            )

        diff.existing_orphaned_count = sum(1 for r in existing if r.status == "orphaned")
        diff.scan_duration = time.perf_counter() - start

        scan_duration_seconds.observe(diff.scan_duration)
        scan_changes_total.labels(change="new").inc(len(diff.new_files))
        scan_changes_total.labels(change="moved").inc(len(diff.moved_files))
        scan_changes_total.labels(change="orphaned").inc(len(diff.orphaned_files))
        scan_changes_total.labels(change="unchanged").inc(diff.unchanged_count)

        logger.info(
            "Library scan complete",
            library_id=library_id,
            scanned=diff.total_files_scanned,
            new=len(diff.new_files),
            moved=len(diff.moved_files),
            orphaned=len(diff.orphaned_files),
            unchanged=diff.unchanged_count,
            errors=len(diff.errors),
            duration_seconds=round(diff.scan_duration, 3),
        )
        return diff

    @staticmethod
    def _find_move_source(
        scanned: ScannedFile,
        gone: list[FileRecord],
        gone_by_hash: dict[str, FileRecord],
        claimed: set[str],
    ) -> FileRecord | None:
        if scanned.hash:
            match = gone_by_hash.get(scanned.hash)
            if match is not None and match.id not in claimed:
                return match
        for record in gone:
            if record.id in claimed:
                continue
            if scanned.hash and record.hash:
                continue
            if record.size == scanned.size and record.modified_at == scanned.modified_at:
                return record
        return None

    async def apply_scan_results(self, diff: ScanDiff) -> ApplyResult:
        """Persist a ScanDiff.

        New files are registered as ``pending`` with issue number and year
        parsed from the filename, moved records get their new location,
        orphaned records and records previously flagged ``orphaned`` are
        deleted. Series that lost files get their progress recalculated.
        """
        result = ApplyResult()

        for scanned in diff.new_files:
            fingerprint = scanned.hash or await self._hash(scanned.path)
            parsed = parse_filename(scanned.filename)
            try:
                await self.store.create_file(
                    FileRecord(
                        library_id=diff.library_id,
                        path=scanned.path,
                        relative_path=scanned.relative_path,
                        filename=scanned.filename,
                        extension=scanned.extension,
                        size=scanned.size,
                        modified_at=scanned.modified_at,
                        hash=fingerprint,
                        status="pending",
                        issue_number=parsed.issue_number,
                        year=parsed.year,
                    )
                )
            except Exception as e:
                logger.error("Failed to register file", path=scanned.path, error=str(e))
                result.errors.append(ScanError(scanned.path, str(e)))
                continue
            result.added += 1

        for move in diff.moved_files:
            try:
                await self.store.update_file(
                    move.file_id,
                    path=move.new_path,
                    relative_path=os.path.relpath(move.new_path, diff.library_path),
                    filename=os.path.basename(move.new_path),
                    # A record flagged orphaned by an earlier scan is live again
                    status="indexed" if move.series_id else "pending",
                )
            except Exception as e:
                logger.error("Failed to record move", file_id=move.file_id, error=str(e))
                result.errors.append(ScanError(move.new_path, str(e)))
                continue
            result.moved += 1

        for orphan in diff.orphaned_files:
            try:
                await self.store.delete_file(orphan.file_id)
            except Exception as e:
                logger.error("Failed to remove orphaned file", file_id=orphan.file_id, error=str(e))
                result.errors.append(ScanError(orphan.path, str(e)))
                continue
            if orphan.series_id:
                result.affected_series_ids.add(orphan.series_id)
            result.orphaned += 1

        previously_orphaned = await self.store.list_files(
            diff.library_id, FileFilter(statuses=("orphaned",))
        )
        if previously_orphaned:
            logger.info(
                "Cleaning up previously orphaned files",
                library_id=diff.library_id,
                count=len(previously_orphaned),
            )
        for record in previously_orphaned:
            try:
                await self.store.delete_file(record.id)
            except Exception as e:
                logger.error("Failed to remove orphaned file", file_id=record.id, error=str(e))
                result.errors.append(ScanError(record.path, str(e)))
                continue
            if record.series_id:
                result.affected_series_ids.add(record.series_id)
            result.removed_orphans += 1

        for series_id in sorted(result.affected_series_ids):
            try:
                await self.store.recalculate_series_progress(series_id)
            except Exception as e:
                logger.warning(
                    "Failed to recalculate series progress", series_id=series_id, error=str(e)
                )

        logger.info(
            "Applied scan results",
            library_id=diff.library_id,
            added=result.added,
            moved=result.moved,
            orphaned=result.orphaned,
            removed_orphans=result.removed_orphans,
            errors=len(result.errors),
        )
        return result

    async def get_library_stats(self, library_id: str) -> LibraryStats:
        """Count the library's files by status.

        Raises:
            NotFoundError: The library does not exist.
        """
        if await self.store.find_library(library_id) is None:
            raise NotFoundError("Library", library_id)
        files = await self.store.list_files(library_id)
        counts: dict[FileStatus, int] = dict.fromkeys(FILE_STATUSES, 0)
        for record in files:
            counts[record.status] += 1
        return LibraryStats(total=len(files), **counts)


def verify_library_path(path: str | Path) -> LibraryPathCheck:
    """Check that ``path`` exists, is a directory and can be listed."""
    target = Path(path)
    if not target.exists():
        return LibraryPathCheck(valid=False, error="Path does not exist")
    if not target.is_dir():
        return LibraryPathCheck(valid=False, error="Path is not a directory", is_directory=False)
    if not os.access(target, os.R_OK | os.X_OK):
        return LibraryPathCheck(valid=False, error="Path is not readable", is_directory=True)
    return LibraryPathCheck(valid=True, is_directory=True)
