"""
rkeplan/runtime/store.py

The object-store seam between the controller and the cluster:

 - ObjectCache:   async read side (get/list), possibly lagging the real store.
 - ObjectClient:  async write side (apply/delete/update_status).
 - InMemoryStore: both sides in process. The daemon uses it as the
                  read-through cache fed by periodic kubectl listings, and the
                  tests use it as the whole cluster.

Subscribers registered with InMemoryStore.subscribe() are called synchronously
for every add/update/delete of their type; they must not block.
"""

from __future__ import annotations

import copy
import logging
from abc import ABC, abstractmethod
from typing import Callable, Dict, Iterable, List, Optional, Type, TypeVar

from rkeplan.models.k8s import KubeObject, ObjectKey, model_for_key, object_key

logger = logging.getLogger(__name__)

K = TypeVar("K", bound=KubeObject)

Listener = Callable[[KubeObject, bool], None]


class StoreError(Exception):
    """Represents a failure reading from or writing to the object store."""


class NotFoundError(StoreError):
    """Raised when a requested object does not exist."""

    def __init__(self, key: ObjectKey) -> None:
        super().__init__(f"{key} not found")
        self.key = key


class ObjectCache(ABC):
    """Read access to namespaced objects keyed by namespace+name."""

    @abstractmethod
    async def get(self, model_type: Type[K], namespace: str, name: str) -> K:
        """
        Return the object, or raise NotFoundError if it does not exist.
        Callers must not mutate the returned object; take a deep copy first.
        """

    @abstractmethod
    async def list(
        self, model_type: Type[K], namespace: Optional[str] = None
    ) -> List[K]:
        """Return all objects of model_type, optionally limited to a namespace."""


class ObjectClient(ABC):
    """Write access used by the apply engine and the status writer."""

    @abstractmethod
    async def apply(self, obj: KubeObject) -> None:
        """Create or update obj. Fields obj does not set are left untouched."""

    @abstractmethod
    async def delete(self, key: ObjectKey) -> None:
        """Delete the object; deleting a missing object is not an error."""

    @abstractmethod
    async def update_status(self, obj: KubeObject) -> None:
        """
        Replace only the status of an existing object.

        Raises:
            NotFoundError: If the object does not exist.
        """


class InMemoryStore(ObjectCache, ObjectClient):
    """
    A dict-backed store. Each write bumps a store-wide resourceVersion, and
    reads hand out deep copies so callers cannot alter stored state.
    """

    def __init__(self) -> None:
        self._objects: Dict[ObjectKey, KubeObject] = {}
        self._listeners: Dict[str, List[Listener]] = {}
        self._version = 0

    # ------------------------------------------------------------------
    # subscriptions
    # ------------------------------------------------------------------

    def subscribe(self, model_type: Type[KubeObject], listener: Listener) -> None:
        """Call listener(obj, deleted) on every change to objects of model_type."""
        self._listeners.setdefault(_type_id(model_type), []).append(listener)

    def _notify(self, obj: KubeObject, deleted: bool) -> None:
        for listener in self._listeners.get(f"{obj.api_version}/{obj.kind}", []):
            listener(obj.model_copy(deep=True), deleted)

    # ------------------------------------------------------------------
    # ObjectCache
    # ------------------------------------------------------------------

    async def get(self, model_type: Type[K], namespace: str, name: str) -> K:
        key = object_key(model_type, namespace, name)
        obj = self._objects.get(key)
        if obj is None:
            raise NotFoundError(key)
        return obj.model_copy(deep=True)  # type: ignore[return-value]

    async def list(
        self, model_type: Type[K], namespace: Optional[str] = None
    ) -> List[K]:
        type_id = _type_id(model_type)
        return [
            obj.model_copy(deep=True)  # type: ignore[misc]
            for key, obj in sorted(self._objects.items(), key=lambda kv: str(kv[0]))
            if f"{key.api_version}/{key.kind}" == type_id
            and (namespace is None or key.namespace == namespace)
        ]

    # ------------------------------------------------------------------
    # ObjectClient
    # ------------------------------------------------------------------

    async def apply(self, obj: KubeObject) -> None:
        key = obj.key
        existing = self._objects.get(key)
        manifest = obj.to_manifest()
        if existing is not None:
            merged = existing.to_manifest()
            merged.update(manifest)
            manifest = merged
        self._store(key, manifest)

    async def delete(self, key: ObjectKey) -> None:
        obj = self._objects.pop(key, None)
        if obj is not None:
            logger.debug("Deleted %s", key)
            self._notify(obj, True)

    async def update_status(self, obj: KubeObject) -> None:
        key = obj.key
        existing = self._objects.get(key)
        if existing is None:
            raise NotFoundError(key)
        manifest = existing.to_manifest()
        status = obj.to_manifest().get("status")
        if status is None:
            manifest.pop("status", None)
        else:
            manifest["status"] = status
        self._store(key, manifest)

    # ------------------------------------------------------------------
    # seeding and syncing
    # ------------------------------------------------------------------

    def put(self, obj: KubeObject) -> None:
        """Insert or fully replace obj (no merge), as an external writer would."""
        self._store(obj.key, obj.to_manifest())

    def replace_all(
        self, model_type: Type[KubeObject], objects: Iterable[KubeObject]
    ) -> int:
        """
        Make the stored objects of model_type exactly `objects`, notifying only
        for objects that were added, changed (by resourceVersion, or by content
        when no version is set) or removed. Returns the number of changes.
        """
        type_id = _type_id(model_type)
        incoming = {obj.key: obj for obj in objects}
        changes = 0

        for key in [
            k for k in self._objects if f"{k.api_version}/{k.kind}" == type_id
        ]:
            if key not in incoming:
                removed = self._objects.pop(key)
                self._notify(removed, True)
                changes += 1

        for key, obj in incoming.items():
            current = self._objects.get(key)
            if current is not None and _same_revision(current, obj):
                continue
            self._objects[key] = obj.model_copy(deep=True)
            self._notify(obj, False)
            changes += 1

        return changes

    def _store(self, key: ObjectKey, manifest: Dict[str, object]) -> None:
        self._version += 1
        manifest = copy.deepcopy(manifest)
        metadata = manifest.setdefault("metadata", {})
        assert isinstance(metadata, dict)
        metadata["resourceVersion"] = str(self._version)
        obj = model_for_key(key).model_validate(manifest)
        self._objects[key] = obj
        self._notify(obj, False)


def _type_id(model_type: Type[KubeObject]) -> str:
    return f"{model_type.API_VERSION}/{model_type.KIND}"


def _same_revision(current: KubeObject, incoming: KubeObject) -> bool:
    current_rv = current.metadata.resource_version
    incoming_rv = incoming.metadata.resource_version
    if current_rv and incoming_rv:
        return current_rv == incoming_rv
    return current.to_manifest() == incoming.to_manifest()
