"""Series name fallbacks derived from file and folder names."""

from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import PurePath

_ISSUE_PATTERNS = (
    re.compile(r"#(-?\d+(?:\.\d+)?)"),  # #001, #1.5
    re.compile(r"\bIssue\s+(\d+(?:\.\d+)?)", re.IGNORECASE),  # Issue 001
    re.compile(r"(?:^|\s)(\d{1,4}(?:\.\d{1,2})?)(?=\s|$)"),  # 001 as its own word
)
_VOLUME_PATTERNS = (
    re.compile(r"\bv(\d{4})\b", re.IGNORECASE),  # v2022
    re.compile(r"\bvol(?:ume)?\.?\s*(\d+)\b", re.IGNORECASE),  # Vol. 2, Volume 2022
)
_YEAR = re.compile(r"\b(19|20)\d{2}\b")
_TRAILING_YEAR = re.compile(r"\s*\(((?:19|20)\d{2})\)\s*$")


@dataclass(frozen=True)
class ParsedFilename:
    series_name: str | None
    issue_number: str | None
    year: int | None
    volume: str | None


def parse_filename(filename: str) -> ParsedFilename:
    """Pull series name, issue number, year and volume out of a comic filename.

    Examples:
        >>> parse_filename("Batman 001 (2016).cbz").series_name
        'Batman'
    """
    stem = PurePath(filename).stem
    # Parentheticals hold years and scan-group tags, never issue numbers
    bare = re.sub(r"\([^)]*\)", " ", stem).strip()

    volume = None
    for pattern in _VOLUME_PATTERNS:
        match = pattern.search(bare)
        if match:
            volume = match.group(1)
            bare = bare[: match.start()] + " " + bare[match.end() :]
            break

    year = None
    year_match = _YEAR.search(stem)
    if year_match and year_match.group(0) != volume:
        year = int(year_match.group(0))
        bare = _YEAR.sub(" ", bare)

    issue_number = None
    for pattern in _ISSUE_PATTERNS:
        match = pattern.search(bare)
        if match:
            issue_number = match.group(1)
            bare = bare[: match.start()] + " " + bare[match.end() :]
            break

    series_name = re.sub(r"\s*[-_]\s*", " ", bare)
    series_name = " ".join(series_name.split())
    if len(series_name) < 2:
        return ParsedFilename(None, issue_number, year, volume)
    return ParsedFilename(series_name, issue_number, year, volume)


def split_trailing_year(name: str) -> tuple[str, int | None]:
    """Split "Batman (2016)" into ("Batman", 2016); other names pass through."""
    match = _TRAILING_YEAR.search(name)
    if not match:
        return name.strip(), None
    return name[: match.start()].strip(), int(match.group(1))


def raw_series_name(
    series_name: str | None,
    relative_path: str,
) -> str | None:
    """Raw series name for a file: metadata first, then folder, then filename.

    Files directly under the library root have no series folder, so the
    filename is parsed instead.
    """
    if series_name and series_name.strip():
        return series_name.strip()
    path = PurePath(relative_path)
    if len(path.parts) > 1:
        return path.parent.name
    return parse_filename(path.name).series_name
