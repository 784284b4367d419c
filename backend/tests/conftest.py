"""Pytest configuration and shared fixtures."""

from __future__ import annotations

import shutil
import tempfile
from collections.abc import AsyncIterator, Callable, Iterator
from pathlib import Path

import pytest

from longbox.core.config import reload_settings
from longbox.core.database import create_database_engine, create_session_factory, init_database
from longbox.core.matching.config import reload_matching_config
from longbox.core.store import InMemoryStore, LibraryRecord
from longbox.core.store.sql import SqlStore


@pytest.fixture(autouse=True)
def isolated_settings(tmp_path_factory: pytest.TempPathFactory, monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    """Point settings at a throwaway data directory so tests never touch backend/data."""
    data_dir = tmp_path_factory.mktemp("data")
    monkeypatch.setenv("LONGBOX_DATA_DIR", str(data_dir))
    reload_settings()
    reload_matching_config()
    yield
    monkeypatch.delenv("LONGBOX_DATA_DIR", raising=False)
    reload_matching_config()


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def library_root(tmp_path: Path) -> Path:
    root = tmp_path / "comics"
    root.mkdir()
    return root


@pytest.fixture
async def library(store: InMemoryStore, library_root: Path) -> LibraryRecord:
    """Create a test library rooted at a temporary directory."""
    return await store.create_library("Test Library", str(library_root), library_id="lib-1")


@pytest.fixture
def make_comic(library_root: Path) -> Callable[..., Path]:
    """Write a fake comic archive under the library root."""

    def _make(relative_path: str, content: bytes | None = None) -> Path:
        path = library_root / relative_path
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(content if content is not None else f"archive:{relative_path}".encode())
        return path

    return _make


@pytest.fixture
async def sql_store() -> AsyncIterator[SqlStore]:
    """SqlStore on a temporary SQLite database."""
    temp_dir = Path(tempfile.mkdtemp())
    db_path = temp_dir / "test.db"

    try:
        engine = create_database_engine(db_path, echo=False)
        await init_database(engine)
        yield SqlStore(create_session_factory(engine))
        await engine.dispose()
    finally:
        shutil.rmtree(temp_dir, ignore_errors=True)


class FakeClock:
    """Manually advanced clock with a matching async sleep."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()
