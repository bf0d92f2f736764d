"""
rkeplan/daemon.py

The machine controller daemon:
  1) Loads ControllerSettings from the environment (RKEPLAN_*).
  2) Builds a KubectlStore (writes, listings) and an InMemoryStore cache.
  3) Registers the machine controller against the cache.
  4) Fills the cache once, rebuilds the apply engine's ownership index from
     it, then starts the workers.
  5) Each loop iteration:
       - Lists every watched kind through kubectl into the cache; changed
         objects raise events, which queue machines.
       - Sleeps resync_interval_seconds => repeat.

A failed listing is logged and retried on the next iteration; it never stops
the daemon. Cancellation (SIGINT/SIGTERM via asyncio.run) stops the workers
after their in-flight passes.
"""

from __future__ import annotations

import asyncio
import logging
import sys
from typing import List, Type

from rkeplan.controllers.machine import OWNED_TYPES, register
from rkeplan.models.capi import Cluster, Machine
from rkeplan.models.k8s import KubeObject, Role, RoleBinding, Secret, ServiceAccount, Setting
from rkeplan.models.rke import RKEBootstrap
from rkeplan.models.settings import ControllerSettings
from rkeplan.runtime.store import InMemoryStore, StoreError
from rkeplan.secrets.bootstrap import CachedSettings
from rkeplan.utils.k8s import KubectlStore

logger = logging.getLogger(__name__)

# Everything the handler reads or the apply engine owns. Related kinds come
# first so a machine's first pass sees its cluster, accounts and secrets.
WATCHED_TYPES: List[Type[KubeObject]] = [
    Setting,
    Cluster,
    RKEBootstrap,
    Secret,
    ServiceAccount,
    Role,
    RoleBinding,
    Machine,
]


async def sync_cache(remote: KubectlStore, cache: InMemoryStore) -> int:
    """
    List every watched kind from the cluster into the cache.

    Returns:
        The number of objects added, changed or removed.

    Raises:
        StoreError: If any listing fails; kinds listed before it stay synced.
    """
    changes = 0
    for model_type in WATCHED_TYPES:
        objects = await remote.list(model_type)
        changes += cache.replace_all(model_type, objects)
    return changes


async def main() -> None:
    """Main daemon logic; runs until cancelled."""
    settings = ControllerSettings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    print("rkeplan daemon starting...")

    remote = KubectlStore(
        context=settings.kubectl_context, field_manager=settings.field_manager
    )
    cache = InMemoryStore()
    controller = register(
        cache=cache,
        client=remote,
        settings_reader=CachedSettings(cache),
        settings=settings,
    )

    # 1) Initial sync must succeed or we exit => restarted by the supervisor.
    try:
        await sync_cache(remote, cache)
    except StoreError as ex:
        print(f"Initial sync failed => exit: {ex}", file=sys.stderr)
        sys.exit(1)

    indexed = await controller.engine.load_index(OWNED_TYPES)
    print(f"Cache filled; {indexed} previously applied objects indexed.")

    controller.start()
    try:
        while True:
            await asyncio.sleep(settings.resync_interval_seconds)
            try:
                changes = await sync_cache(remote, cache)
            except StoreError as ex:
                logger.warning("Resync failed, will retry: %s", ex)
                continue
            if changes:
                logger.info("Resync: %d object(s) changed", changes)
    except asyncio.CancelledError:
        print("Daemon shutting down (cancelled).")
    finally:
        await controller.stop()
        print("Workers stopped.")


def run() -> None:
    """Console entry point."""
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    run()
