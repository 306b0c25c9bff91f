"""
Tests for async_utils module.

Covers run_sync, run_sync_limited and init_semaphore.
"""

import asyncio
import threading
import time

import pytest

import beads_sync.core.async_utils as mod
from beads_sync.core.async_utils import (
    init_semaphore,
    run_sync,
    run_sync_limited,
)


@pytest.fixture
def restore_semaphore():
    original = mod._semaphore
    yield
    mod._semaphore = original


def _sync_add(a: int, b: int) -> int:
    return a + b


async def test_run_sync_calls_function():
    """run_sync delegates to a worker thread with correct args."""
    assert await run_sync(_sync_add, 3, 4) == 7


async def test_run_sync_passes_kwargs():
    def _kw_func(*, name: str) -> str:
        return f"hello {name}"

    assert await run_sync(_kw_func, name="world") == "hello world"


async def test_run_sync_runs_off_the_event_loop_thread():
    loop_thread = threading.get_ident()
    worker_thread = await run_sync(threading.get_ident)
    assert worker_thread != loop_thread


async def test_run_sync_propagates_exceptions():
    def _boom():
        raise ValueError("bad")

    with pytest.raises(ValueError, match="bad"):
        await run_sync(_boom)


async def test_run_sync_limited_without_semaphore(restore_semaphore):
    """Without init_semaphore, calls run unbounded."""
    mod._semaphore = None
    assert await run_sync_limited(_sync_add, 1, 2) == 3


async def test_init_semaphore_sets_value(restore_semaphore):
    init_semaphore(5)
    assert isinstance(mod._semaphore, asyncio.Semaphore)
    assert mod._semaphore._value == 5


async def test_run_sync_limited_concurrency_bound(restore_semaphore):
    """No more than max_parallel calls run at once."""
    init_semaphore(2)
    lock = threading.Lock()
    active = 0
    peak = 0

    def _work():
        nonlocal active, peak
        with lock:
            active += 1
            peak = max(peak, active)
        time.sleep(0.02)
        with lock:
            active -= 1
        return True

    results = await asyncio.gather(*(run_sync_limited(_work) for _ in range(6)))

    assert all(results)
    assert peak <= 2
