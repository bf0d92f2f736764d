"""
rkeplan/models/capi.py

Defines Pydantic models for the Cluster API objects the machine controller
reads: Machine and Cluster (cluster.x-k8s.io/v1alpha4). Only the fields the
controller consumes are modelled; anything else in the manifest is ignored.
"""

from __future__ import annotations

from enum import Enum
from typing import ClassVar, Optional

from pydantic import Field

from rkeplan.models.k8s import K8sModel, KubeObject, ObjectReference, register_kind

CAPI_GROUP = "cluster.x-k8s.io"
CAPI_VERSION = "v1alpha4"


class MachinePhase(str, Enum):
    """Machine lifecycle phases as reported in Machine.status.phase."""

    PENDING = "Pending"
    PROVISIONING = "Provisioning"
    PROVISIONED = "Provisioned"
    RUNNING = "Running"
    DELETING = "Deleting"
    DELETED = "Deleted"
    FAILED = "Failed"
    UNKNOWN = "Unknown"


class Bootstrap(K8sModel):
    config_ref: Optional[ObjectReference] = None
    data_secret_name: Optional[str] = None


class MachineSpec(K8sModel):
    cluster_name: str
    bootstrap: Bootstrap = Field(default_factory=Bootstrap)
    infrastructure_ref: Optional[ObjectReference] = None
    version: Optional[str] = None
    provider_id: Optional[str] = Field(None, alias="providerID")


class MachineStatus(K8sModel):
    """
    Observed machine state. The controller never mutates it; it is handed
    back unchanged from each reconciliation pass.
    """

    phase: Optional[str] = None
    bootstrap_ready: Optional[bool] = None
    infrastructure_ready: Optional[bool] = None
    failure_reason: Optional[str] = None
    failure_message: Optional[str] = None


@register_kind
class Machine(KubeObject):
    API_VERSION: ClassVar[str] = f"{CAPI_GROUP}/{CAPI_VERSION}"
    KIND: ClassVar[str] = "Machine"
    RESOURCE: ClassVar[str] = "machines.cluster.x-k8s.io"

    spec: MachineSpec
    status: MachineStatus = Field(default_factory=MachineStatus)


class ClusterSpec(K8sModel):
    infrastructure_ref: Optional[ObjectReference] = None
    control_plane_ref: Optional[ObjectReference] = None
    paused: Optional[bool] = None


@register_kind
class Cluster(KubeObject):
    API_VERSION: ClassVar[str] = f"{CAPI_GROUP}/{CAPI_VERSION}"
    KIND: ClassVar[str] = "Cluster"
    RESOURCE: ClassVar[str] = "clusters.cluster.x-k8s.io"

    spec: ClusterSpec = Field(default_factory=ClusterSpec)
