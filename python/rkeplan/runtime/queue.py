"""
rkeplan/runtime/queue.py

A keyed asyncio work queue with the guarantees the controller relies on:

  - coalescing: a key added several times before a worker takes it is
    processed once;
  - per-key serialisation: a key is never handed to two workers at once; if
    it is added while being processed it is queued again once the current
    pass calls done();
  - per-key exponential backoff: add_rate_limited() re-adds a key after
    backoff_delay(failures), and forget() resets the failure count.
"""

from __future__ import annotations

import asyncio
from typing import Dict, Generic, Hashable, Optional, Set, TypeVar

from rkeplan.utils.async_retry import backoff_delay

T = TypeVar("T", bound=Hashable)


class QueueShutDown(Exception):
    """Raised by get() once the queue has been shut down."""


class WorkQueue(Generic[T]):
    """
    Args:
        base_delay: Backoff for a key's first failure, in seconds.
        max_delay: Upper bound on any backoff, in seconds.
    """

    def __init__(self, base_delay: float = 0.005, max_delay: float = 300.0) -> None:
        self._base_delay = base_delay
        self._max_delay = max_delay
        self._queue: "asyncio.Queue[Optional[T]]" = asyncio.Queue()
        self._dirty: Set[T] = set()
        self._processing: Set[T] = set()
        self._failures: Dict[T, int] = {}
        self._timers: Set[asyncio.TimerHandle] = set()
        self._shutting_down = False

    def __len__(self) -> int:
        return len(self._dirty)

    @property
    def idle(self) -> bool:
        """True when no key is waiting or being processed."""
        return not self._dirty and not self._processing

    @property
    def shutting_down(self) -> bool:
        return self._shutting_down

    def add(self, key: T) -> None:
        """Queue key unless it is already waiting."""
        if self._shutting_down or key in self._dirty:
            return
        self._dirty.add(key)
        if key not in self._processing:
            self._queue.put_nowait(key)

    async def get(self) -> T:
        """
        Wait for the next key and mark it as processing. The caller must call
        done(key) when finished.

        Raises:
            QueueShutDown: If the queue was shut down.
        """
        while True:
            if self._shutting_down:
                raise QueueShutDown()
            key = await self._queue.get()
            if key is None:
                raise QueueShutDown()
            if key not in self._dirty:
                continue
            self._dirty.discard(key)
            self._processing.add(key)
            return key

    def done(self, key: T) -> None:
        """Finish processing key; re-queue it if it was added meanwhile."""
        self._processing.discard(key)
        if key in self._dirty and not self._shutting_down:
            self._queue.put_nowait(key)

    def failures(self, key: T) -> int:
        return self._failures.get(key, 0)

    def next_delay(self, key: T) -> float:
        """The backoff add_rate_limited() would use for key right now."""
        return backoff_delay(self.failures(key) + 1, self._base_delay, self._max_delay)

    def add_rate_limited(self, key: T) -> float:
        """Re-add key after its backoff delay; returns the delay used."""
        delay = self.next_delay(key)
        self._failures[key] = self.failures(key) + 1
        self.add_after(key, delay)
        return delay

    def add_after(self, key: T, delay: float) -> None:
        if self._shutting_down:
            return
        if delay <= 0:
            self.add(key)
            return
        loop = asyncio.get_running_loop()
        handle: asyncio.TimerHandle

        def _fire() -> None:
            self._timers.discard(handle)
            self.add(key)

        handle = loop.call_later(delay, _fire)
        self._timers.add(handle)

    def forget(self, key: T) -> None:
        """Reset key's failure count after a successful pass."""
        self._failures.pop(key, None)

    def shutdown(self, workers: int = 1) -> None:
        """Stop accepting keys, cancel pending re-adds and wake `workers` waiters."""
        self._shutting_down = True
        for handle in self._timers:
            handle.cancel()
        self._timers.clear()
        for _ in range(workers):
            self._queue.put_nowait(None)
