"""Regression tests for timeout and background-task helpers."""

from __future__ import annotations

import asyncio
import gc
import warnings

import pytest

from snippet_forge.utils.concurrency import BackgroundTasks, CancellationToken, run_with_timeout


async def _value(result: int, delay: float = 0.0) -> int:
    await asyncio.sleep(delay)
    return result


async def _explode() -> None:
    await asyncio.sleep(0)
    raise RuntimeError("boom")


async def test_run_with_timeout_returns_result() -> None:
    assert await run_with_timeout(_value(7), 1.0) == 7


async def test_run_with_timeout_raises_on_timeout() -> None:
    with pytest.raises(TimeoutError, match="timed out"):
        await run_with_timeout(_value(1, delay=0.5), 0.01)


async def test_run_with_timeout_rejects_pre_cancelled_token_without_leaking() -> None:
    token = CancellationToken()
    token.cancel()

    with warnings.catch_warnings():
        warnings.simplefilter("error", RuntimeWarning)
        with pytest.raises(asyncio.CancelledError):
            await run_with_timeout(_value(1), 1.0, token)
        gc.collect()


async def test_run_with_timeout_cancels_when_token_fires() -> None:
    token = CancellationToken()
    asyncio.get_running_loop().call_later(0.01, token.cancel)

    with pytest.raises(asyncio.CancelledError):
        await run_with_timeout(_value(1, delay=1.0), 5.0, token)


async def test_run_with_timeout_rejects_non_positive_timeout() -> None:
    with pytest.raises(ValueError, match="timeout_seconds"):
        await run_with_timeout(_value(1), 0)


async def test_background_tasks_drain_waits_for_nested_spawns() -> None:
    tasks = BackgroundTasks()
    finished: list[str] = []

    async def child() -> None:
        await asyncio.sleep(0.01)
        finished.append("child")

    async def parent() -> None:
        tasks.spawn(child(), name="child")
        finished.append("parent")

    tasks.spawn(parent(), name="parent")
    await tasks.drain()

    assert finished == ["parent", "child"]
    assert len(tasks) == 0


async def test_background_tasks_report_failures() -> None:
    errors: list[BaseException] = []
    tasks = BackgroundTasks(on_error=errors.append)

    tasks.spawn(_explode())
    await tasks.drain()

    assert [str(exc) for exc in errors] == ["boom"]
