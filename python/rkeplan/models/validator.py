"""
rkeplan/models/validator.py

Utilities for validating raw Python objects (parsed JSON/YAML) against
pydantic-based types, and for turning an arbitrary manifest into the
registered KubeObject model for its apiVersion/kind.
"""

from typing import Any, Dict, Type, TypeVar

from pydantic import TypeAdapter, ValidationError

from rkeplan.models import capi, rke  # noqa: F401  registers kinds
from rkeplan.models.k8s import KubeObject, ObjectKey, model_for_key

T = TypeVar("T")


def validate_type(obj: Any, expected_type: Type[T]) -> T:
    """
    Validates that a given Python object conforms to the expected pydantic-based type.

    Args:
        obj (Any): The object to validate.
        expected_type (Type[T]): The type (pydantic or otherwise) to validate against.

    Returns:
        T: The validated object, cast to the expected type.

    Raises:
        ValueError: If validation fails.
    """
    try:
        adapter = TypeAdapter(expected_type)
        return adapter.validate_python(obj)
    except ValidationError as e:
        raise ValueError(f"Validation failed for type {expected_type}: {e}") from e


def parse_manifest(manifest: Dict[str, Any]) -> KubeObject:
    """
    Parse a single manifest into its registered model.

    Args:
        manifest: A decoded Kubernetes manifest with apiVersion, kind and metadata.

    Returns:
        The KubeObject subclass instance matching apiVersion/kind.

    Raises:
        ValueError: If the kind is not registered or the manifest is invalid.
    """
    meta = manifest.get("metadata") or {}
    key = ObjectKey(
        api_version=str(manifest.get("apiVersion", "")),
        kind=str(manifest.get("kind", "")),
        namespace=str(meta.get("namespace") or ""),
        name=str(meta.get("name", "")),
    )
    try:
        model_type = model_for_key(key)
    except KeyError as ex:
        raise ValueError(f"Unsupported manifest {key}: {ex}") from ex
    return validate_type(manifest, model_type)
