"""Tests for progress callbacks and cancellation checks."""

from __future__ import annotations

import asyncio

from longbox.core.scanning.progress import drain_progress, is_cancelled, report_progress


async def test_sync_callback_called_immediately():
    """Test that plain callbacks run inline."""
    calls: list[tuple[int, int]] = []

    report_progress(lambda current, total: calls.append((current, total)), 3, 10)

    assert calls == [(3, 10)]


async def test_async_callback_is_not_awaited_by_caller():
    """Test that coroutine callbacks are scheduled rather than awaited."""
    started = asyncio.Event()
    release = asyncio.Event()
    finished: list[int] = []

    async def slow(current: int, total: int) -> None:
        started.set()
        await release.wait()
        finished.append(current)

    report_progress(slow, 1, 2)
    assert finished == []

    await started.wait()
    release.set()
    await drain_progress()

    assert finished == [1]


async def test_failing_callbacks_are_contained():
    """Test that callback failures never reach the caller."""

    def broken_sync(current: int, total: int) -> None:
        raise RuntimeError("sync failure")

    async def broken_async(current: int, total: int) -> None:
        raise RuntimeError("async failure")

    report_progress(broken_sync, 1, 1)
    report_progress(broken_async, 1, 1)
    await drain_progress()


async def test_no_callback():
    """Test that a missing callback is a no-op."""
    report_progress(None, 1, 1)
    await drain_progress()


def test_is_cancelled():
    """Test cancellation checks, including a failing check."""

    def broken() -> bool:
        raise RuntimeError("boom")

    assert is_cancelled(None) is False
    assert is_cancelled(lambda: True) is True
    assert is_cancelled(lambda: False) is False
    assert is_cancelled(broken) is False
