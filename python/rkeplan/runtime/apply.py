"""
rkeplan/runtime/apply.py

The apply engine: converges a desired object set for one owner.

Each generating controller owns one ApplyEngine under a set id. For every
owner (e.g. a Machine) the engine remembers which object keys it applied and
the hash of what it applied (the ownership index). apply(owner, objects):

  - writes objects whose content hash changed since the last apply,
  - re-reads objects whose hash is unchanged and rewrites them when the live
    copy is gone, carries another hash, or no longer matches the fields we
    set; otherwise skips them, so an unchanged desired set costs no writes,
  - deletes objects the owner previously had but no longer declares.

Applied objects are annotated with the set id, owner and hash, so after a
restart load_index() can rebuild the index from the store and orphans are
still pruned. The same annotations let owners() map an event on an applied
object back to the owner that generated it.

The live read goes through the cache, which may lag the store. A stale read
only costs a redundant (idempotent) write.
"""

from __future__ import annotations

import hashlib
import json
import logging
from typing import Any, Dict, Iterable, List, Optional, Sequence, Type

from pydantic import BaseModel, Field

from rkeplan.models.k8s import KubeObject, NamespacedName, ObjectKey
from rkeplan.runtime.store import NotFoundError, ObjectCache, ObjectClient

logger = logging.getLogger(__name__)

ANNOTATION_PREFIX = "objectset.rke.cattle.io"
SET_ID_ANNOTATION = f"{ANNOTATION_PREFIX}/id"
OWNER_NAMESPACE_ANNOTATION = f"{ANNOTATION_PREFIX}/owner-namespace"
OWNER_NAME_ANNOTATION = f"{ANNOTATION_PREFIX}/owner-name"
HASH_ANNOTATION = f"{ANNOTATION_PREFIX}/hash"


class ApplyError(Exception):
    """Raised when a desired object set is inconsistent."""


class ApplyResult(BaseModel):
    """Keys written, skipped as unchanged, and deleted by one apply() call."""

    applied: List[ObjectKey] = Field(default_factory=list)
    unchanged: List[ObjectKey] = Field(default_factory=list)
    deleted: List[ObjectKey] = Field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.applied or self.deleted)


def object_hash(obj: KubeObject) -> str:
    """SHA-256 over the canonical JSON manifest of obj."""
    canonical = json.dumps(obj.to_manifest(), sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


class ApplyEngine:
    """
    Converges desired object sets through an ObjectClient.

    Args:
        client: Where objects are written and deleted.
        cache: Where the live copies of applied objects are read back from.
        set_id: Identifies the generating controller; recorded on every object.
    """

    def __init__(self, client: ObjectClient, cache: ObjectCache, set_id: str) -> None:
        self._client = client
        self._cache = cache
        self._set_id = set_id
        self._index: Dict[NamespacedName, Dict[ObjectKey, str]] = {}

    @property
    def set_id(self) -> str:
        return self._set_id

    def owned(self, owner: NamespacedName) -> Dict[ObjectKey, str]:
        """Return a copy of owner's key => hash entries."""
        return dict(self._index.get(owner, {}))

    def owners(
        self, namespace: str, name: str, obj: Optional[KubeObject]
    ) -> List[NamespacedName]:
        """
        Map an event on an object this engine applied to its owner; objects
        of other sets, or without owner annotations, map to nothing.
        """
        if obj is None:
            return []
        annotations = obj.metadata.annotations
        owner_name = annotations.get(OWNER_NAME_ANNOTATION)
        if annotations.get(SET_ID_ANNOTATION) != self._set_id or not owner_name:
            return []
        return [
            NamespacedName(
                namespace=annotations.get(OWNER_NAMESPACE_ANNOTATION, ""),
                name=owner_name,
            )
        ]

    async def apply(
        self, owner: NamespacedName, objects: Sequence[KubeObject]
    ) -> ApplyResult:
        """
        Make owner's objects exactly `objects`.

        An object whose hash matches the index is still compared against its
        live copy, so one deleted or edited behind our back is written again.
        The index entry for a key is updated only after its write succeeds,
        so a failed pass is simply redone by the next one.

        Raises:
            ApplyError: If `objects` contains the same key twice.
            StoreError: If a read (other than not-found), write or delete fails.
        """
        desired: Dict[ObjectKey, KubeObject] = {}
        for obj in objects:
            if obj.key in desired:
                raise ApplyError(f"Duplicate object {obj.key} for owner {owner}")
            desired[obj.key] = obj

        current = self._index.setdefault(owner, {})
        result = ApplyResult()

        for key, obj in desired.items():
            digest = object_hash(obj)
            if current.get(key) == digest and await self._live_matches(obj, digest):
                result.unchanged.append(key)
                continue
            await self._client.apply(self._annotate(owner, obj, digest))
            current[key] = digest
            result.applied.append(key)

        for key in sorted(set(current) - set(desired), key=str):
            await self._client.delete(key)
            del current[key]
            result.deleted.append(key)

        if not current:
            del self._index[owner]

        if result.changed:
            logger.info(
                "[%s] %s: applied %d, deleted %d, unchanged %d",
                self._set_id,
                owner,
                len(result.applied),
                len(result.deleted),
                len(result.unchanged),
            )
        return result

    async def load_index(self, model_types: Iterable[Type[KubeObject]]) -> int:
        """
        Rebuild the ownership index from cached objects annotated with this
        set id. Returns the number of objects indexed.
        """
        count = 0
        for model_type in model_types:
            for obj in await self._cache.list(model_type):
                owners = self.owners(obj.namespace, obj.name, obj)
                if not owners:
                    continue
                self._index.setdefault(owners[0], {})[obj.key] = (
                    obj.metadata.annotations.get(HASH_ANNOTATION, "")
                )
                count += 1
        return count

    async def _live_matches(self, obj: KubeObject, digest: str) -> bool:
        """
        True iff the live copy of obj exists, carries our hash and still has
        every field obj sets. Fields obj leaves unset (a plan secret's payload,
        token references added by Kubernetes) are not compared, and labels may
        be a superset of ours.
        """
        try:
            live = await self._cache.get(type(obj), obj.namespace, obj.name)
        except NotFoundError:
            logger.info("[%s] %s is gone, recreating", self._set_id, obj.key)
            return False

        if live.metadata.annotations.get(HASH_ANNOTATION) != digest:
            return False

        want = obj.to_manifest()
        have = live.to_manifest()
        want_labels: Dict[str, Any] = want.pop("metadata", {}).get("labels", {})
        have_labels: Dict[str, Any] = have.pop("metadata", {}).get("labels", {})
        if any(have_labels.get(k) != v for k, v in want_labels.items()):
            return False
        drifted = [field for field, value in want.items() if have.get(field) != value]
        if drifted:
            logger.warning(
                "[%s] %s drifted in %s, reverting", self._set_id, obj.key, drifted
            )
            return False
        return True

    def _annotate(
        self, owner: NamespacedName, obj: KubeObject, digest: str
    ) -> KubeObject:
        annotated = obj.model_copy(deep=True)
        annotated.metadata.annotations.update(
            {
                SET_ID_ANNOTATION: self._set_id,
                OWNER_NAMESPACE_ANNOTATION: owner.namespace,
                OWNER_NAME_ANNOTATION: owner.name,
                HASH_ANNOTATION: digest,
            }
        )
        return annotated
