"""Async SQLite setup for the SQL-backed store.

- WAL mode for concurrent reads while the linker writes
- Lock timeout plus retry with exponential backoff
- Session factory handed to SqlStore
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Any, TypeVar

import structlog
from sqlalchemy import event
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
from sqlmodel.ext.asyncio.session import AsyncSession as SQLModelAsyncSession

from longbox.core.metrics import db_retries_failed_total, db_retry_attempts_total

logger = structlog.get_logger("longbox.database")

T = TypeVar("T")


def create_database_engine(database_file: Path | str, echo: bool = False) -> AsyncEngine:
    """Create an async SQLite engine configured for concurrent access.

    Args:
        database_file: Path to the SQLite database file.
        echo: If True, log all SQL statements.
    """
    database_url = f"sqlite+aiosqlite:///{database_file}"

    engine = create_async_engine(
        database_url,
        echo=echo,
        # Wait up to 30 seconds for locks to be released
        connect_args={"timeout": 30.0},
        pool_pre_ping=True,
        pool_size=10,
        max_overflow=20,
    )

    @event.listens_for(engine.sync_engine, "connect")
    def set_sqlite_pragma(dbapi_conn: Any, connection_record: Any) -> None:
        cursor = dbapi_conn.cursor()
        try:
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute("PRAGMA synchronous=NORMAL")
            cursor.execute("PRAGMA foreign_keys=ON")
        finally:
            cursor.close()

    logger.info("Database engine created", database_file=str(database_file), echo=echo)
    return engine


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[SQLModelAsyncSession]:
    """Session factory using SQLModel's AsyncSession.

    expire_on_commit=False keeps returned rows readable after commit.
    """
    return async_sessionmaker(
        engine,
        class_=SQLModelAsyncSession,
        expire_on_commit=False,
    )


async def init_database(engine: AsyncEngine) -> None:
    """Create all tables that do not exist yet."""
    from longbox.db.models import metadata

    async with engine.begin() as conn:
        await conn.run_sync(metadata.create_all)


async def retry_db_operation(
    operation: Callable[[], Awaitable[T]],
    session: SQLModelAsyncSession | None = None,
    max_retries: int = 5,
    retry_delay: float = 0.1,
    operation_type: str = "unknown",
) -> T:
    """Retry a database operation on SQLite lock errors with exponential backoff.

    Args:
        operation: Callable returning a fresh awaitable on each attempt.
        session: Optional session to roll back between attempts.
        max_retries: Maximum number of attempts.
        retry_delay: Initial delay in seconds, doubled after each attempt.
        operation_type: Label for metrics ("query", "insert", "update"...).

    Raises:
        OperationalError: When the error is not a lock error or retries run out.
    """
    for attempt in range(max_retries):
        try:
            return await operation()
        except OperationalError as exc:
            if "locked" not in str(exc).lower() or attempt >= max_retries - 1:
                db_retries_failed_total.labels(operation_type=operation_type).inc()
                logger.error(
                    "Database operation failed",
                    attempt=attempt + 1,
                    max_retries=max_retries,
                    operation_type=operation_type,
                    error=str(exc)[:200],
                )
                raise

            db_retry_attempts_total.labels(operation_type=operation_type).inc()
            logger.debug(
                "Database lock detected, retrying",
                attempt=attempt + 1,
                max_retries=max_retries,
                operation_type=operation_type,
            )
            if session is not None:
                await session.rollback()
            await asyncio.sleep(retry_delay * (2**attempt))

    raise RuntimeError(f"Operation failed after {max_retries} retries")
