"""Two-stage library scan: change detection, then series resolution and linking."""

from __future__ import annotations

import functools
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

import structlog

from longbox.core.config import get_settings
from longbox.core.store.base import Store

from .fileinfo import LocalFileInfoProvider
from .linker import FileLinker, LinkResult
from .overrides import FolderSeriesRegistry, JsonSeriesOverrideProvider
from .progress import CancelCheck, is_cancelled, report_progress
from .resolver import ResolveResult, SeriesResolver
from .scanner import ApplyResult, FileSystemScanner, ScanDiff

logger = structlog.get_logger("longbox.scanning.pipeline")

StageProgressCallback = Callable[[str, int, int], Awaitable[None] | None]

STAGES = ("scanning", "applying", "resolving", "linking")


@dataclass
class LibraryScanReport:
    library_id: str
    diff: ScanDiff
    applied: ApplyResult | None = None
    resolved: ResolveResult | None = None
    linked: LinkResult | None = None
    cancelled: bool = False
    duration: float = 0.0


def _stage_reporter(on_progress: StageProgressCallback | None, stage: str):
    if on_progress is None:
        return None
    return functools.partial(on_progress, stage)


async def run_library_scan(
    store: Store,
    library_id: str,
    *,
    scanner: FileSystemScanner | None = None,
    resolver: SeriesResolver | None = None,
    linker: FileLinker | None = None,
    should_cancel: CancelCheck | None = None,
    on_progress: StageProgressCallback | None = None,
) -> LibraryScanReport:
    """Scan a library and bring its series links up to date.

    Stages run in order: scan the directory tree, persist the diff, resolve
    series names one at a time, then link files in parallel. Cancellation
    is checked between stages and inside the resolve and link loops.

    Args:
        store: Persistence backend.
        library_id: Library to scan.
        scanner: Scanner to use; built from settings when omitted.
        resolver: Resolver to use. When omitted one is built over the
            folder definitions found by this scan.
        linker: Linker to use. When omitted one is built over the same
            folder definitions.
        should_cancel: Polled between batches; returning True stops the scan.
        on_progress: Called as ``on_progress(stage, current, total)``
            without being awaited.

    Raises:
        NotFoundError: The library does not exist.
        InvalidRootPathError: The library root is not a directory.
    """
    start = time.perf_counter()
    settings = get_settings()
    scanner = scanner or FileSystemScanner(
        store,
        file_info=LocalFileInfoProvider(settings.hash_sample_bytes),
        overrides=JsonSeriesOverrideProvider(),
    )

    report_progress(_stage_reporter(on_progress, "scanning"), 0, 1)
    diff = await scanner.scan_library(library_id)
    report = LibraryScanReport(library_id=library_id, diff=diff)
    report_progress(_stage_reporter(on_progress, "scanning"), 1, 1)

    def finish() -> LibraryScanReport:
        report.duration = time.perf_counter() - start
        logger.info(
            "Library scan pipeline finished",
            library_id=library_id,
            cancelled=report.cancelled,
            duration_seconds=round(report.duration, 3),
        )
        return report

    if is_cancelled(should_cancel):
        report.cancelled = True
        return finish()

    report.applied = await scanner.apply_scan_results(diff)
    report_progress(_stage_reporter(on_progress, "applying"), 1, 1)

    if is_cancelled(should_cancel):
        report.cancelled = True
        return finish()

    folders = FolderSeriesRegistry.build(diff.folder_definitions)
    resolver = resolver or SeriesResolver(store, overrides=folders, batch_size=settings.scan_batch_size)
    report.resolved = await resolver.create_series_from_files(
        library_id,
        should_cancel=should_cancel,
        on_progress=_stage_reporter(on_progress, "resolving"),
    )
    if report.resolved.cancelled:
        report.cancelled = True
        return finish()

    linker = linker or FileLinker(
        store,
        folders=folders,
        batch_size=settings.scan_batch_size,
        concurrency=settings.link_concurrency,
    )
    report.linked = await linker.link_files_to_series(
        library_id,
        should_cancel=should_cancel,
        on_progress=_stage_reporter(on_progress, "linking"),
    )
    report.cancelled = report.linked.cancelled
    return finish()
