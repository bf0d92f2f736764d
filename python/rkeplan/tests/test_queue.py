"""Unit tests for the keyed work queue and the backoff schedule."""
from __future__ import annotations

import asyncio

import pytest

from rkeplan.runtime.queue import QueueShutDown, WorkQueue
from rkeplan.utils.async_retry import backoff_delay


def test_backoff_schedule_doubles_and_caps() -> None:
    assert backoff_delay(1, 0.005, 300.0) == pytest.approx(0.005)
    assert backoff_delay(2, 0.005, 300.0) == pytest.approx(0.01)
    assert backoff_delay(5, 0.005, 300.0) == pytest.approx(0.08)
    assert backoff_delay(30, 0.005, 300.0) == 300.0
    assert backoff_delay(10_000, 0.005, 300.0) == 300.0
    assert backoff_delay(0, 0.005, 300.0) == pytest.approx(0.005)


def test_adds_before_processing_coalesce() -> None:
    async def scenario() -> None:
        queue: WorkQueue[str] = WorkQueue()
        queue.add("a")
        queue.add("a")
        queue.add("b")
        assert len(queue) == 2

        assert await queue.get() == "a"
        assert await queue.get() == "b"
        queue.done("a")
        queue.done("b")
        assert queue.idle

    asyncio.run(scenario())


def test_key_added_while_processing_is_requeued_after_done() -> None:
    """A key is never handed out twice concurrently, and no add is lost."""

    async def scenario() -> None:
        queue: WorkQueue[str] = WorkQueue()
        queue.add("a")
        key = await queue.get()

        queue.add("a")
        queue.add("a")
        with pytest.raises(asyncio.TimeoutError):
            await asyncio.wait_for(queue.get(), timeout=0.05)

        queue.done(key)
        assert await asyncio.wait_for(queue.get(), timeout=1) == "a"
        queue.done("a")
        assert queue.idle

    asyncio.run(scenario())


def test_rate_limited_adds_back_off_per_key() -> None:
    async def scenario() -> None:
        queue: WorkQueue[str] = WorkQueue(base_delay=0.01, max_delay=0.04)

        assert queue.add_rate_limited("a") == pytest.approx(0.01)
        assert queue.add_rate_limited("a") == pytest.approx(0.02)
        assert queue.add_rate_limited("a") == pytest.approx(0.04)
        assert queue.add_rate_limited("a") == pytest.approx(0.04)
        assert queue.failures("a") == 4
        assert queue.next_delay("b") == pytest.approx(0.01)

        assert await asyncio.wait_for(queue.get(), timeout=1) == "a"
        queue.done("a")
        queue.forget("a")
        assert queue.failures("a") == 0
        assert queue.next_delay("a") == pytest.approx(0.01)
        queue.shutdown()

    asyncio.run(scenario())


def test_shutdown_wakes_waiters_and_drops_timers() -> None:
    async def scenario() -> None:
        queue: WorkQueue[str] = WorkQueue()
        queue.add_after("late", 10.0)
        waiter = asyncio.create_task(queue.get())
        await asyncio.sleep(0)

        queue.shutdown(workers=1)

        with pytest.raises(QueueShutDown):
            await waiter
        queue.add("a")
        assert len(queue) == 0
        with pytest.raises(QueueShutDown):
            await queue.get()

    asyncio.run(scenario())
