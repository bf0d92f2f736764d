"""
rkeplan/runtime/controller.py

A generating controller: runs a handler that maps one primary object to its
desired object set, and converges that set through an ApplyEngine.

Events come from InMemoryStore subscriptions. Changes to the primary type
queue the object's own key; changes to related types go through a resolver
that names the primary keys to queue. A pool of asyncio workers drains the
WorkQueue; a failed pass (exception or timeout) is logged and re-queued with
backoff, and nothing else retries.
"""

from __future__ import annotations

import asyncio
import logging
from typing import (
    Any,
    Awaitable,
    Callable,
    Generic,
    List,
    Optional,
    Sequence,
    Tuple,
    Type,
    TypeVar,
)

from rkeplan.models.k8s import KubeObject, NamespacedName
from rkeplan.models.settings import ControllerSettings
from rkeplan.runtime.apply import ApplyEngine, ApplyResult
from rkeplan.runtime.queue import QueueShutDown, WorkQueue
from rkeplan.runtime.store import InMemoryStore, NotFoundError, ObjectClient

logger = logging.getLogger(__name__)

P = TypeVar("P", bound=KubeObject)

Handler = Callable[[P, Any], Awaitable[Tuple[Sequence[KubeObject], Any]]]
Resolver = Callable[[str, str, Optional[KubeObject]], List[NamespacedName]]


class GeneratingController(Generic[P]):
    """
    Args:
        name: Used in log lines; also the apply engine's set id by convention.
        primary_type: The model whose objects drive reconciliation.
        cache: Source of primary/related objects and of change events.
        client: Used to write the primary's status when the handler changes it.
        engine: Converges each primary's desired objects.
        handler: async (obj, status) -> (desired objects, new status).
        settings: Worker count, timeout and backoff bounds.
    """

    def __init__(
        self,
        *,
        name: str,
        primary_type: Type[P],
        cache: InMemoryStore,
        client: ObjectClient,
        engine: ApplyEngine,
        handler: Handler[P],
        settings: ControllerSettings,
    ) -> None:
        self.name = name
        self._primary_type = primary_type
        self._cache = cache
        self._client = client
        self._engine = engine
        self._handler = handler
        self._settings = settings
        self.queue: WorkQueue[NamespacedName] = WorkQueue(
            base_delay=settings.retry_base_delay_seconds,
            max_delay=settings.retry_max_delay_seconds,
        )
        self._workers: List[asyncio.Task[None]] = []
        cache.subscribe(primary_type, self._on_primary_event)

    @property
    def engine(self) -> ApplyEngine:
        return self._engine

    def enqueue(self, key: NamespacedName) -> None:
        self.queue.add(key)

    def watch_related(
        self, related_type: Type[KubeObject], trigger_name: str, resolver: Resolver
    ) -> None:
        """Queue the primary keys `resolver` returns for every related_type event."""

        def _on_related(obj: KubeObject, deleted: bool) -> None:
            try:
                keys = resolver(obj.namespace, obj.name, obj)
            except Exception:
                logger.exception("[%s] resolver failed for %s", trigger_name, obj.key)
                return
            for key in keys:
                logger.debug("[%s] %s => %s", trigger_name, obj.key, key)
                self.enqueue(key)

        self._cache.subscribe(related_type, _on_related)

    def _on_primary_event(self, obj: KubeObject, deleted: bool) -> None:
        self.enqueue(obj.namespaced_name)

    async def reconcile(self, key: NamespacedName) -> ApplyResult:
        """
        Run one pass for key. A primary that no longer exists gets an empty
        desired set, which prunes everything previously generated for it.
        """
        try:
            obj = await self._cache.get(self._primary_type, key.namespace, key.name)
        except NotFoundError:
            return await self._engine.apply(key, [])

        status = getattr(obj, "status", None)
        objects, new_status = await self._handler(obj, status)
        result = await self._engine.apply(key, objects)

        if new_status is not None and new_status != status:
            updated = obj.model_copy(update={"status": new_status})
            await self._client.update_status(updated)
        return result

    async def process_next(self) -> bool:
        """
        Take one key from the queue and reconcile it. Returns False once the
        queue is shut down.
        """
        try:
            key = await self.queue.get()
        except QueueShutDown:
            return False

        try:
            await asyncio.wait_for(
                self.reconcile(key), timeout=self._settings.reconcile_timeout_seconds
            )
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            delay = self.queue.add_rate_limited(key)
            logger.error(
                "[%s] reconcile %s failed (retry in %.3fs): %s",
                self.name,
                key,
                delay,
                exc,
                exc_info=not isinstance(exc, asyncio.TimeoutError),
            )
        else:
            self.queue.forget(key)
        finally:
            self.queue.done(key)
        return True

    async def _worker(self) -> None:
        while await self.process_next():
            pass

    def start(self) -> None:
        """Spawn settings.workers worker tasks on the running loop."""
        if self._workers:
            return
        self._workers = [
            asyncio.create_task(self._worker(), name=f"{self.name}-worker-{i}")
            for i in range(self._settings.workers)
        ]
        logger.info("[%s] started %d workers", self.name, len(self._workers))

    async def stop(self) -> None:
        """Shut the queue down and wait for in-flight passes to finish."""
        self.queue.shutdown(workers=len(self._workers))
        if self._workers:
            await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []

    async def wait_idle(self, poll_interval: float = 0.01) -> None:
        """Wait until no key is queued or being processed."""
        while not self.queue.idle:
            await asyncio.sleep(poll_interval)
