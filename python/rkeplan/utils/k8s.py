"""
rkeplan/utils/k8s.py

A kubectl-backed implementation of the ObjectCache/ObjectClient seam:
reading objects, listing a kind, applying manifests, deleting objects and
patching the status subresource, all through 'kubectl' subprocess calls.

A missing object is recognised from the API server's "Error from server
(NotFound)" stderr line through the command runner's error_parser, so
detection also works for sensitive calls whose output is withheld from the
error message.
"""

from __future__ import annotations

import json
from typing import Any, Dict, List, Optional, Type, TypeVar

from rkeplan.models.k8s import KubeObject, ObjectKey, Secret, model_for_key, object_key
from rkeplan.models.validator import validate_type
from rkeplan.runtime.store import NotFoundError, ObjectCache, ObjectClient, StoreError
from rkeplan.utils.async_command_runner import CommandError, run_command

K = TypeVar("K", bound=KubeObject)

NOT_FOUND = "NotFound"
SERVER_NOT_FOUND = "Error from server (NotFound)"


def _not_found_parser(stderr_str: str) -> Optional[str]:
    """Return a short NotFound message if the API server reported a missing object.

    Only the server's own NotFound status counts; client-side failures such as
    an unknown context or resource type are left for the generic error.
    """
    if SERVER_NOT_FOUND in stderr_str:
        return NOT_FOUND
    return None


class KubectlStore(ObjectCache, ObjectClient):
    """
    Talks to the cluster through 'kubectl'. Every call is a single attempt:
    retrying is the controller's job, not the store's.
    """

    def __init__(
        self,
        *,
        context: Optional[str] = None,
        field_manager: str = "rkeplan",
        kubectl: str = "kubectl",
    ) -> None:
        self._context = context
        self._field_manager = field_manager
        self._kubectl = kubectl

    def _base(self) -> List[str]:
        base = [self._kubectl]
        if self._context:
            base += ["--context", self._context]
        return base

    @staticmethod
    def _scope(model_type: Type[KubeObject], namespace: Optional[str]) -> List[str]:
        if not model_type.NAMESPACED:
            return []
        if namespace is None:
            return ["--all-namespaces"]
        return ["-n", namespace]

    async def _run(
        self,
        cmd: List[str],
        key: Optional[ObjectKey],
        *,
        sensitive: bool,
        input_data: Optional[str] = None,
    ) -> str:
        try:
            return await run_command(
                command=cmd,
                sensitive=sensitive,
                input_data=input_data,
                retries=0,
                error_parser=_not_found_parser,
            )
        except CommandError as ex:
            if key is not None and str(ex) == NOT_FOUND:
                raise NotFoundError(key) from ex
            raise StoreError(f"kubectl {cmd[len(self._base())]} failed: {ex}") from ex

    async def get(self, model_type: Type[K], namespace: str, name: str) -> K:
        """
        Retrieve one object via 'kubectl get <resource> <name> -o json'.

        Raises:
            NotFoundError: If kubectl reports the object as missing.
            StoreError: For any other kubectl failure or an unparsable object.
        """
        key = object_key(model_type, namespace, name)
        cmd = (
            self._base()
            + ["get", model_type.RESOURCE, name]
            + self._scope(model_type, namespace)
            + ["-o", "json"]
        )
        raw_json = await self._run(cmd, key, sensitive=model_type is Secret)
        return _parse(json.loads(raw_json), model_type)

    async def list(
        self, model_type: Type[K], namespace: Optional[str] = None
    ) -> List[K]:
        cmd = (
            self._base()
            + ["get", model_type.RESOURCE]
            + self._scope(model_type, namespace)
            + ["-o", "json"]
        )
        raw_json = await self._run(cmd, None, sensitive=model_type is Secret)
        items = json.loads(raw_json).get("items", [])
        return [_parse(item, model_type) for item in items]

    async def apply(self, obj: KubeObject) -> None:
        """
        Create or update obj with 'kubectl apply -f -' (client-side three-way
        merge), so fields obj leaves unset, such as a plan secret's payload,
        are kept.
        """
        manifest_json = json.dumps(obj.to_manifest(), indent=2, sort_keys=True)
        cmd = self._base() + [
            "apply",
            "--field-manager",
            self._field_manager,
            "-f",
            "-",
        ]
        await self._run(
            cmd, None, sensitive=isinstance(obj, Secret), input_data=manifest_json
        )

    async def delete(self, key: ObjectKey) -> None:
        model_type = model_for_key(key)
        cmd = (
            self._base()
            + ["delete", model_type.RESOURCE, key.name, "--ignore-not-found"]
            + self._scope(model_type, key.namespace)
        )
        await self._run(cmd, key, sensitive=False)

    async def update_status(self, obj: KubeObject) -> None:
        """Merge-patch the status subresource with obj's status."""
        status: Dict[str, Any] = obj.to_manifest().get("status", {})
        model_type = type(obj)
        cmd = (
            self._base()
            + [
                "patch",
                model_type.RESOURCE,
                obj.name,
                "--subresource=status",
                "--type=merge",
                "-p",
                json.dumps({"status": status}, sort_keys=True),
            ]
            + self._scope(model_type, obj.namespace)
        )
        await self._run(cmd, obj.key, sensitive=False)


def _parse(item: Dict[str, Any], model_type: Type[K]) -> K:
    try:
        return validate_type(item, model_type)
    except ValueError as ex:
        raise StoreError(f"Unparsable {model_type.KIND}: {ex}") from ex
