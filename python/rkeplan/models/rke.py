"""
rkeplan/models/rke.py

Defines Pydantic models for the rke.cattle.io/v1 types consumed here:
 - RKEBootstrap: the bootstrap-config resource whose status points at the
   bootstrap secret serving a machine.
 - RKECluster: the managed infrastructure cluster kind. Its spec is carried
   opaquely (only the kind matters to the controller, and the planner keeps a
   snapshot of it inside a Plan).
"""

from __future__ import annotations

from typing import Any, ClassVar, Dict, Optional

from pydantic import Field

from rkeplan.models.k8s import K8sModel, KubeObject, register_kind

RKE_GROUP = "rke.cattle.io"
RKE_VERSION = "v1"
RKE_API_VERSION = f"{RKE_GROUP}/{RKE_VERSION}"

RKE_CLUSTER_KIND = "RKECluster"
RKE_BOOTSTRAP_KIND = "RKEBootstrap"


class RKEBootstrapStatus(K8sModel):
    data_secret_name: Optional[str] = None
    ready: bool = False


@register_kind
class RKEBootstrap(KubeObject):
    API_VERSION: ClassVar[str] = RKE_API_VERSION
    KIND: ClassVar[str] = RKE_BOOTSTRAP_KIND
    RESOURCE: ClassVar[str] = "rkebootstraps.rke.cattle.io"

    spec: Dict[str, Any] = Field(default_factory=dict)
    status: RKEBootstrapStatus = Field(default_factory=RKEBootstrapStatus)


@register_kind
class RKECluster(KubeObject):
    API_VERSION: ClassVar[str] = RKE_API_VERSION
    KIND: ClassVar[str] = RKE_CLUSTER_KIND
    RESOURCE: ClassVar[str] = "rkeclusters.rke.cattle.io"

    spec: Dict[str, Any] = Field(default_factory=dict)
    status: Dict[str, Any] = Field(default_factory=dict)
