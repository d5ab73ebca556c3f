"""Data model for declarative objects tracked by the library."""

from __future__ import annotations

import copy
from dataclasses import dataclass
from typing import Any, Mapping, Optional

DEFAULT_OWNER_LABEL: str = "gitopsmgr.io/target"
SYNC_WAVE_ANNOTATION: str = "gitopsmgr.io/sync-wave"

CLUSTER_SCOPED_KINDS: frozenset[str] = frozenset(
    {
        "Namespace",
        "CustomResourceDefinition",
        "ClusterRole",
        "ClusterRoleBinding",
        "PersistentVolume",
        "StorageClass",
        "IngressClass",
        "PriorityClass",
        "APIService",
        "MutatingWebhookConfiguration",
        "ValidatingWebhookConfiguration",
    }
)


@dataclass(slots=True, frozen=True, order=True)
class ObjectIdentity:
    """Identity of an object: kind + namespace + name."""

    kind: str
    namespace: str
    name: str

    def __str__(self) -> str:
        if not self.namespace:
            return f"{self.kind}/{self.name}"
        return f"{self.kind}/{self.namespace}/{self.name}"

    def to_dict(self) -> dict[str, str]:
        return {"kind": self.kind, "namespace": self.namespace, "name": self.name}


class ManifestObject:
    """
    One declarative object (desired or live).

    Notes:
        - body is deep-copied on construction; callers must treat it as
          read-only. Use `to_dict()` to get a mutable copy.
        - resource_version/generation come from metadata and are only
          meaningful for live objects.
    """

    __slots__ = ("body", "identity")

    def __init__(self, body: Mapping[str, Any]) -> None:
        if not isinstance(body, Mapping):
            raise TypeError("ManifestObject body must be a mapping")
        self.body: dict[str, Any] = copy.deepcopy(dict(body))
        self.identity: ObjectIdentity = identity_of(self.body)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ManifestObject):
            return NotImplemented
        return self.body == other.body

    __hash__ = None  # type: ignore[assignment]

    def __repr__(self) -> str:
        return f"ManifestObject({self.identity})"

    @property
    def kind(self) -> str:
        return self.identity.kind

    @property
    def name(self) -> str:
        return self.identity.name

    @property
    def namespace(self) -> str:
        return self.identity.namespace

    @property
    def metadata(self) -> dict[str, Any]:
        meta = self.body.get("metadata")
        return meta if isinstance(meta, dict) else {}

    @property
    def labels(self) -> dict[str, str]:
        labels = self.metadata.get("labels")
        return dict(labels) if isinstance(labels, dict) else {}

    @property
    def annotations(self) -> dict[str, str]:
        annotations = self.metadata.get("annotations")
        return dict(annotations) if isinstance(annotations, dict) else {}

    @property
    def resource_version(self) -> Optional[str]:
        value = self.metadata.get("resourceVersion")
        return str(value) if value is not None else None

    @property
    def generation(self) -> Optional[int]:
        value = self.metadata.get("generation")
        if isinstance(value, bool):
            return None
        if isinstance(value, int):
            return value
        if isinstance(value, str) and value.isdigit():
            return int(value)
        return None

    def is_owned_by(self, label_key: str, owner: str) -> bool:
        return self.labels.get(label_key) == owner

    def to_dict(self) -> dict[str, Any]:
        return copy.deepcopy(self.body)


def identity_of(body: Mapping[str, Any]) -> ObjectIdentity:
    """
    Build identity from a raw object.

    Raises:
        ValueError: if kind or metadata.name is missing.
    """
    kind = body.get("kind")
    if not isinstance(kind, str) or not kind.strip():
        raise ValueError("Object is missing 'kind'")

    meta = body.get("metadata")
    if not isinstance(meta, Mapping):
        raise ValueError(f"{kind} object is missing 'metadata'")

    name = meta.get("name")
    if not isinstance(name, str) or not name.strip():
        raise ValueError(f"{kind} object is missing 'metadata.name'")

    namespace = meta.get("namespace") or ""
    if not isinstance(namespace, str):
        raise ValueError(f"{kind}/{name} has a non-string namespace")

    return ObjectIdentity(kind=kind, namespace=namespace, name=name)


def is_cluster_scoped(kind: str) -> bool:
    return kind in CLUSTER_SCOPED_KINDS
