"""
rkeplan/models/k8s.py

Defines Pydantic models representing core Kubernetes objects used by the
machine controller: ServiceAccounts, Secrets, RBAC Roles/RoleBindings and
the management Setting type, plus the identity types (ObjectKey,
NamespacedName) used to index them.

All objects serialise with camelCase aliases and without None fields, so
to_manifest() returns something 'kubectl apply -f -' accepts.
"""

from __future__ import annotations

import base64
from typing import Any, ClassVar, Dict, List, Optional, Tuple, Type, TypeVar

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

RBAC_GROUP = "rbac.authorization.k8s.io"

K = TypeVar("K", bound="KubeObject")

_KIND_REGISTRY: Dict[Tuple[str, str], Type["KubeObject"]] = {}


class K8sModel(BaseModel):
    """Base for all wire models: camelCase aliases, populate by field name."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


class NamespacedName(BaseModel):
    """Represents a namespace/name pair, used as the work-queue key."""

    namespace: str = Field("", description="Kubernetes namespace.")
    name: str = Field(..., description="Kubernetes object name.")

    model_config = ConfigDict(frozen=True)

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}" if self.namespace else self.name


class ObjectKey(BaseModel):
    """Identifies one object of one kind: apiVersion, kind, namespace, name."""

    api_version: str
    kind: str
    namespace: str = ""
    name: str

    model_config = ConfigDict(frozen=True)

    def __str__(self) -> str:
        return f"{self.kind} {self.namespace}/{self.name}"


class ObjectMeta(K8sModel):
    name: str
    namespace: Optional[str] = None
    labels: Dict[str, str] = Field(default_factory=dict)
    annotations: Dict[str, str] = Field(default_factory=dict)
    resource_version: Optional[str] = None
    uid: Optional[str] = None


class ObjectReference(K8sModel):
    """A (partial) reference to another object, as found in spec fields."""

    api_version: Optional[str] = None
    kind: Optional[str] = None
    name: str
    namespace: Optional[str] = None


class KubeObject(K8sModel):
    """
    Common shape of every top-level Kubernetes object.

    Subclasses set API_VERSION, KIND and RESOURCE (the name kubectl uses for
    the collection) and are registered with @register_kind so that an
    ObjectKey can be mapped back to its model type.
    """

    API_VERSION: ClassVar[str] = ""
    KIND: ClassVar[str] = ""
    RESOURCE: ClassVar[str] = ""
    NAMESPACED: ClassVar[bool] = True

    api_version: str = ""
    kind: str = ""
    metadata: ObjectMeta

    def model_post_init(self, __context: Any) -> None:
        if not self.api_version:
            self.api_version = self.API_VERSION
        if not self.kind:
            self.kind = self.KIND

    @property
    def name(self) -> str:
        return self.metadata.name

    @property
    def namespace(self) -> str:
        return self.metadata.namespace or ""

    @property
    def labels(self) -> Dict[str, str]:
        return self.metadata.labels

    @property
    def key(self) -> ObjectKey:
        return ObjectKey(
            api_version=self.api_version,
            kind=self.kind,
            namespace=self.namespace,
            name=self.name,
        )

    @property
    def namespaced_name(self) -> NamespacedName:
        return NamespacedName(namespace=self.namespace, name=self.name)

    def to_manifest(self) -> Dict[str, Any]:
        """Return the JSON-ready manifest (camelCase, no None fields)."""
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


def register_kind(cls: Type[K]) -> Type[K]:
    """Class decorator recording cls under its (apiVersion, kind)."""
    _KIND_REGISTRY[(cls.API_VERSION, cls.KIND)] = cls
    return cls


def model_for_key(key: ObjectKey) -> Type[KubeObject]:
    """
    Return the registered model type for a key.

    Raises:
        KeyError: If no model is registered for the key's apiVersion/kind.
    """
    try:
        return _KIND_REGISTRY[(key.api_version, key.kind)]
    except KeyError:
        raise KeyError(f"No model registered for {key.api_version}/{key.kind}")


def object_key(
    model_type: Type[KubeObject], namespace: str, name: str
) -> ObjectKey:
    """Build the ObjectKey for an object of model_type."""
    return ObjectKey(
        api_version=model_type.API_VERSION,
        kind=model_type.KIND,
        namespace=namespace if model_type.NAMESPACED else "",
        name=name,
    )


# ----------------------------------------------------------------------
# core/v1
# ----------------------------------------------------------------------


@register_kind
class ServiceAccount(KubeObject):
    """A principal; `secrets` lists the credential-secrets attached to it."""

    API_VERSION: ClassVar[str] = "v1"
    KIND: ClassVar[str] = "ServiceAccount"
    RESOURCE: ClassVar[str] = "serviceaccounts"

    secrets: Optional[List[ObjectReference]] = None


@register_kind
class Secret(KubeObject):
    """
    A Secret, with `data` kept base64-encoded exactly as on the wire.

    Use encode_data() to build `data` from raw bytes and get_bytes() to read
    a single decoded value.
    """

    API_VERSION: ClassVar[str] = "v1"
    KIND: ClassVar[str] = "Secret"
    RESOURCE: ClassVar[str] = "secrets"

    type: Optional[str] = None
    data: Optional[Dict[str, str]] = None

    def get_bytes(self, key: str) -> Optional[bytes]:
        """Return the decoded value for key, or None if absent."""
        if not self.data or key not in self.data:
            return None
        return base64.b64decode(self.data[key])

    @staticmethod
    def encode_data(raw: Dict[str, bytes]) -> Dict[str, str]:
        return {k: base64.b64encode(v).decode("ascii") for k, v in raw.items()}


# ----------------------------------------------------------------------
# rbac.authorization.k8s.io/v1
# ----------------------------------------------------------------------


class PolicyRule(K8sModel):
    verbs: List[str]
    api_groups: List[str] = Field(default_factory=list)
    resources: List[str] = Field(default_factory=list)
    resource_names: List[str] = Field(default_factory=list)


class Subject(K8sModel):
    kind: str
    name: str
    namespace: Optional[str] = None
    api_group: Optional[str] = None


class RoleRef(K8sModel):
    api_group: str
    kind: str
    name: str


@register_kind
class Role(KubeObject):
    API_VERSION: ClassVar[str] = f"{RBAC_GROUP}/v1"
    KIND: ClassVar[str] = "Role"
    RESOURCE: ClassVar[str] = "roles.rbac.authorization.k8s.io"

    rules: List[PolicyRule] = Field(default_factory=list)


@register_kind
class RoleBinding(KubeObject):
    API_VERSION: ClassVar[str] = f"{RBAC_GROUP}/v1"
    KIND: ClassVar[str] = "RoleBinding"
    RESOURCE: ClassVar[str] = "rolebindings.rbac.authorization.k8s.io"

    subjects: List[Subject] = Field(default_factory=list)
    role_ref: RoleRef


# ----------------------------------------------------------------------
# management.cattle.io/v3
# ----------------------------------------------------------------------


@register_kind
class Setting(KubeObject):
    """A cluster-scoped management setting; `value` overrides `default`."""

    API_VERSION: ClassVar[str] = "management.cattle.io/v3"
    KIND: ClassVar[str] = "Setting"
    RESOURCE: ClassVar[str] = "settings.management.cattle.io"
    NAMESPACED: ClassVar[bool] = False

    value: Optional[str] = None
    default: Optional[str] = None

    @property
    def effective_value(self) -> Optional[str]:
        return self.value or self.default or None
