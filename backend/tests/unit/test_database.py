"""Tests for database setup and lock retries."""

from __future__ import annotations

from pathlib import Path

import pytest
from prometheus_client import REGISTRY
from sqlalchemy import text
from sqlalchemy.exc import OperationalError

from longbox.core.database import create_database_engine, init_database, retry_db_operation


def _sample(name: str, operation_type: str) -> float:
    return REGISTRY.get_sample_value(name, {"operation_type": operation_type}) or 0.0


@pytest.fixture
async def temp_db_engine(tmp_path: Path):
    """Create a temporary database engine for testing."""
    engine = create_database_engine(tmp_path / "test.db", echo=False)
    yield engine
    await engine.dispose()


async def test_engine_uses_wal_and_creates_tables(temp_db_engine):
    """Test that connections run in WAL mode and all tables are created."""
    await init_database(temp_db_engine)

    async with temp_db_engine.connect() as conn:
        mode = (await conn.execute(text("PRAGMA journal_mode"))).scalar()
        tables = {
            row[0]
            for row in await conn.execute(text("SELECT name FROM sqlite_master WHERE type = 'table'"))
        }

    assert mode == "wal"
    assert {"libraries", "comic_files", "series", "cross_source_mappings"} <= tables


async def test_retry_operation_success_first_try():
    """Test that a successful operation runs once and records no retries."""
    call_count = 0
    before = _sample("longbox_db_retry_attempts_total", "test_ok")

    async def successful_operation() -> str:
        nonlocal call_count
        call_count += 1
        return "success"

    result = await retry_db_operation(successful_operation, operation_type="test_ok")

    assert result == "success"
    assert call_count == 1
    assert _sample("longbox_db_retry_attempts_total", "test_ok") == before


async def test_retry_operation_recovers_from_lock():
    """Test that lock errors are retried and counted."""
    call_count = 0
    before = _sample("longbox_db_retry_attempts_total", "test_lock")

    async def flaky_operation() -> str:
        nonlocal call_count
        call_count += 1
        if call_count < 2:
            raise OperationalError("statement", "parameters", Exception("database is locked"))
        return "success"

    result = await retry_db_operation(flaky_operation, max_retries=3, retry_delay=0.01, operation_type="test_lock")

    assert result == "success"
    assert call_count == 2
    assert _sample("longbox_db_retry_attempts_total", "test_lock") - before == 1


async def test_retry_operation_gives_up():
    """Test that persistent lock errors are raised after the last attempt."""
    call_count = 0
    before = _sample("longbox_db_retries_failed_total", "test_failed")

    async def always_locked() -> str:
        nonlocal call_count
        call_count += 1
        raise OperationalError("statement", "parameters", Exception("database is locked"))

    with pytest.raises(OperationalError):
        await retry_db_operation(always_locked, max_retries=2, retry_delay=0.01, operation_type="test_failed")

    assert call_count == 2
    assert _sample("longbox_db_retries_failed_total", "test_failed") - before == 1


async def test_retry_operation_does_not_retry_other_errors():
    """Test that non-lock operational errors fail immediately."""
    call_count = 0

    async def broken() -> str:
        nonlocal call_count
        call_count += 1
        raise OperationalError("statement", "parameters", Exception("no such table: series"))

    with pytest.raises(OperationalError):
        await retry_db_operation(broken, max_retries=5, retry_delay=0.01, operation_type="test_other")

    assert call_count == 1
