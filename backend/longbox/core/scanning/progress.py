"""Fire-and-forget progress reporting for long-running phases."""

from __future__ import annotations

import asyncio
import inspect
from collections.abc import Awaitable, Callable
from typing import Any

import structlog

logger = structlog.get_logger("longbox.scanning.progress")

ProgressCallback = Callable[[int, int], Awaitable[None] | None]
CancelCheck = Callable[[], bool]

# Strong references so pending callback tasks are not garbage collected
_pending: set[asyncio.Task[Any]] = set()


def _log_failure(task: asyncio.Task[Any]) -> None:
    _pending.discard(task)
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.warning("Progress callback failed", error=str(exc))


def report_progress(callback: ProgressCallback | None, current: int, total: int) -> None:
    """Invoke ``callback(current, total)`` without waiting on it.

    Coroutine callbacks are scheduled as tasks. Failures are logged and
    never reach the caller.
    """
    if callback is None:
        return
    try:
        outcome = callback(current, total)
    except Exception as e:
        logger.warning("Progress callback failed", error=str(e))
        return
    if inspect.isawaitable(outcome):
        task = asyncio.ensure_future(outcome)
        _pending.add(task)
        task.add_done_callback(_log_failure)


def is_cancelled(should_cancel: CancelCheck | None) -> bool:
    if should_cancel is None:
        return False
    try:
        return bool(should_cancel())
    except Exception as e:
        logger.warning("Cancellation check failed", error=str(e))
        return False


async def drain_progress() -> None:
    """Wait for scheduled progress callbacks; used by tests and shutdown."""
    while _pending:
        await asyncio.gather(*list(_pending), return_exceptions=True)
