"""File size, modification time and content fingerprints."""

from __future__ import annotations

import hashlib
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

DEFAULT_SAMPLE_BYTES = 64 * 1024


@dataclass(frozen=True)
class FileStat:
    size: int
    modified_at: float


class FileInfoProvider(Protocol):
    def stat(self, path: Path) -> FileStat: ...

    def hash(self, path: Path) -> str:
        """Content fingerprint; may be sampled for large files."""
        ...


class LocalFileInfoProvider:
    """Reads file information from the local filesystem.

    Files larger than three samples are fingerprinted from their head,
    middle and tail chunks plus their size, so hashing a multi-gigabyte
    archive reads at most ``3 * sample_bytes``.
    """

    def __init__(self, sample_bytes: int = DEFAULT_SAMPLE_BYTES) -> None:
        self.sample_bytes = sample_bytes

    def stat(self, path: Path) -> FileStat:
        result = os.stat(path)
        return FileStat(size=result.st_size, modified_at=result.st_mtime)

    def hash(self, path: Path) -> str:
        digest = hashlib.sha256()
        size = os.stat(path).st_size
        digest.update(str(size).encode())
        with open(path, "rb") as f:
            if size <= self.sample_bytes * 3:
                for chunk in iter(lambda: f.read(1024 * 1024), b""):
                    digest.update(chunk)
            else:
                for offset in (0, (size - self.sample_bytes) // 2, size - self.sample_bytes):
                    f.seek(offset)
                    digest.update(f.read(self.sample_bytes))
        return digest.hexdigest()
