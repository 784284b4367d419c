"""Library scanning: change detection, series resolution and file linking."""

from .linker import FileLinker, LinkResult
from .overrides import (
    FolderSeriesRegistry,
    JsonSeriesOverrideProvider,
    SeriesDefinition,
    SeriesOverrideProvider,
)
from .pipeline import LibraryScanReport, run_library_scan
from .resolver import ResolveResult, SeriesResolver
from .scanner import (
    COMIC_EXTENSIONS,
    DiscoveryResult,
    FileSystemScanner,
    ScanDiff,
    ScannedFile,
    verify_library_path,
)

__all__ = [
    "COMIC_EXTENSIONS",
    "DiscoveryResult",
    "FileLinker",
    "FileSystemScanner",
    "FolderSeriesRegistry",
    "JsonSeriesOverrideProvider",
    "LibraryScanReport",
    "LinkResult",
    "ResolveResult",
    "ScanDiff",
    "ScannedFile",
    "SeriesDefinition",
    "SeriesOverrideProvider",
    "SeriesResolver",
    "run_library_scan",
    "verify_library_path",
]
