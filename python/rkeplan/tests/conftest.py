"""Shared builders and fixtures for the rkeplan test suite."""
from __future__ import annotations

from typing import List, Optional

import pytest

from rkeplan.controllers.machine import MachineHandler
from rkeplan.models.capi import (
    Bootstrap,
    Cluster,
    ClusterSpec,
    Machine,
    MachineSpec,
    MachineStatus,
)
from rkeplan.models.k8s import KubeObject, ObjectMeta, ObjectReference, Secret, ServiceAccount
from rkeplan.models.rke import RKE_API_VERSION, RKEBootstrap
from rkeplan.runtime.store import InMemoryStore
from rkeplan.secrets.bootstrap import (
    SERVER_URL_SETTING,
    ScriptBootstrapProvider,
    StaticSettings,
)

SERVER_URL = "https://rancher.example.com"


class RecordingStore(InMemoryStore):
    """InMemoryStore that records every write made through the client API."""

    def __init__(self) -> None:
        super().__init__()
        self.status_updates: List[KubeObject] = []
        self.applied: List[KubeObject] = []
        self.deleted: List[object] = []

    async def update_status(self, obj: KubeObject) -> None:
        self.status_updates.append(obj)
        await super().update_status(obj)

    async def apply(self, obj: KubeObject) -> None:
        self.applied.append(obj)
        await super().apply(obj)

    async def delete(self, key) -> None:  # type: ignore[no-untyped-def]
        self.deleted.append(key)
        await super().delete(key)


def make_cluster(
    name: str = "c1",
    namespace: str = "ns1",
    api_version: str = RKE_API_VERSION,
    kind: str = "RKECluster",
) -> Cluster:
    return Cluster(
        metadata=ObjectMeta(name=name, namespace=namespace),
        spec=ClusterSpec(
            infrastructure_ref=ObjectReference(
                api_version=api_version, kind=kind, name=name, namespace=namespace
            )
        ),
    )


def make_machine(
    name: str = "m1",
    namespace: str = "ns1",
    cluster: str = "c1",
    phase: Optional[str] = "Provisioning",
    bootstrap_name: Optional[str] = "bs1",
    bootstrap_kind: str = "RKEBootstrap",
    bootstrap_api_version: str = RKE_API_VERSION,
) -> Machine:
    config_ref = None
    if bootstrap_name is not None:
        config_ref = ObjectReference(
            api_version=bootstrap_api_version,
            kind=bootstrap_kind,
            name=bootstrap_name,
            namespace=namespace,
        )
    return Machine(
        metadata=ObjectMeta(name=name, namespace=namespace),
        spec=MachineSpec(cluster_name=cluster, bootstrap=Bootstrap(config_ref=config_ref)),
        status=MachineStatus(phase=phase),
    )


def make_rke_bootstrap(
    name: str = "bs1", namespace: str = "ns1", data_secret_name: Optional[str] = None
) -> RKEBootstrap:
    bootstrap = RKEBootstrap(metadata=ObjectMeta(name=name, namespace=namespace))
    bootstrap.status.data_secret_name = data_secret_name
    return bootstrap


def attach_token(
    store: InMemoryStore,
    sa_name: str,
    namespace: str = "ns1",
    token: Optional[bytes] = b"join-token",
    secret_name: Optional[str] = None,
    labels: Optional[dict] = None,
) -> None:
    """Create a ServiceAccount with one token secret, as Kubernetes would."""
    secret_name = secret_name or f"{sa_name}-token-abcde"
    data = Secret.encode_data({"token": token}) if token is not None else {"ca.crt": "Y2E="}
    store.put(
        Secret(
            metadata=ObjectMeta(name=secret_name, namespace=namespace),
            type="kubernetes.io/service-account-token",
            data=data,
        )
    )
    store.put(
        ServiceAccount(
            metadata=ObjectMeta(name=sa_name, namespace=namespace, labels=labels or {}),
            secrets=[ObjectReference(name=secret_name)],
        )
    )


@pytest.fixture
def store() -> RecordingStore:
    return RecordingStore()


@pytest.fixture
def settings() -> StaticSettings:
    return StaticSettings({SERVER_URL_SETTING: SERVER_URL})


@pytest.fixture
def handler(store: RecordingStore, settings: StaticSettings) -> MachineHandler:
    return MachineHandler(
        cache=store,
        client=store,
        bootstrap_content=ScriptBootstrapProvider(settings),
    )
