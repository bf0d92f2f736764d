#!/usr/bin/env python3
"""
rkeplan/cli/render.py

Offline dry run of the machine controller. Loads a multi-document YAML file
of Machines, Clusters, RKEBootstraps, ServiceAccounts and Secrets into an
in-memory store, reconciles every Machine, and prints the desired objects as
YAML (one document per object, grouped by machine).

Usage:
  rkeplanctl render --file manifests.yaml --server-url https://rancher.example.com
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from typing import Dict, List, Optional

import aiofiles
import yaml

from rkeplan.controllers.machine import MachineHandler
from rkeplan.models.capi import Machine
from rkeplan.models.k8s import KubeObject, NamespacedName
from rkeplan.models.validator import parse_manifest
from rkeplan.runtime.store import InMemoryStore, StoreError
from rkeplan.secrets.bootstrap import (
    CA_CERTS_SETTING,
    SERVER_URL_SETTING,
    ScriptBootstrapProvider,
    StaticSettings,
)


async def load_manifests(path: str) -> List[KubeObject]:
    """
    Read and parse every document in a YAML file.

    Raises:
        OSError: If the file cannot be read.
        ValueError: If a document is not a supported, valid manifest.
    """
    async with aiofiles.open(path, mode="r", encoding="utf-8") as f:
        raw = await f.read()
    docs = [doc for doc in yaml.safe_load_all(raw) if doc]
    return [parse_manifest(doc) for doc in docs]


async def render_desired(
    objects: List[KubeObject], settings: StaticSettings
) -> Dict[NamespacedName, List[KubeObject]]:
    """Reconcile every Machine among `objects`; returns machine key => desired set."""
    store = InMemoryStore()
    for obj in objects:
        store.put(obj)

    handler = MachineHandler(
        cache=store,
        client=store,
        bootstrap_content=ScriptBootstrapProvider(settings),
    )
    desired: Dict[NamespacedName, List[KubeObject]] = {}
    for machine in await store.list(Machine):
        objs, _ = await handler.on_change(machine, machine.status)
        desired[machine.namespaced_name] = list(objs)
    return desired


async def run_render(args: argparse.Namespace) -> None:
    values: Dict[str, str] = {}
    if args.server_url:
        values[SERVER_URL_SETTING] = args.server_url
    if args.cacerts_file:
        async with aiofiles.open(args.cacerts_file, mode="r", encoding="utf-8") as f:
            values[CA_CERTS_SETTING] = await f.read()

    try:
        objects = await load_manifests(args.file)
        desired = await render_desired(objects, StaticSettings(values))
    except (OSError, ValueError, StoreError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(1)

    manifests = [
        obj.to_manifest()
        for key in sorted(desired, key=str)
        for obj in desired[key]
    ]
    print(yaml.safe_dump_all(manifests, sort_keys=False), end="")


def main(argv: Optional[List[str]] = None) -> None:
    parser = argparse.ArgumentParser(
        prog="rkeplanctl render",
        description="Print the objects the machine controller would apply.",
    )
    parser.add_argument("--file", required=True, help="Multi-document YAML input.")
    parser.add_argument("--server-url", default=None, help="Value of server-url.")
    parser.add_argument(
        "--cacerts-file", default=None, help="PEM bundle used as the cacerts setting."
    )
    args = parser.parse_args(argv)
    asyncio.run(run_render(args))


if __name__ == "__main__":
    main()
