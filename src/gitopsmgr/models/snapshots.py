"""Desired and live state snapshots."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, Iterator, Optional

from .objects import ManifestObject, ObjectIdentity


@dataclass(slots=True, frozen=True)
class _Snapshot:
    target_name: str
    objects: tuple[ManifestObject, ...]
    by_identity: dict[ObjectIdentity, ManifestObject] = field(
        init=False, repr=False, compare=False, hash=False
    )

    def __post_init__(self) -> None:
        index: dict[ObjectIdentity, ManifestObject] = {}
        for obj in self.objects:
            index[obj.identity] = obj
        object.__setattr__(self, "by_identity", index)

    def __iter__(self) -> Iterator[ManifestObject]:
        return iter(self.objects)

    def __len__(self) -> int:
        return len(self.objects)

    def has(self, identity: ObjectIdentity) -> bool:
        return identity in self.by_identity

    def get(self, identity: ObjectIdentity) -> Optional[ManifestObject]:
        return self.by_identity.get(identity)

    def identities(self) -> list[ObjectIdentity]:
        return sorted(self.by_identity)


@dataclass(slots=True, frozen=True)
class DesiredStateSnapshot(_Snapshot):
    """
    Ordered objects rendered from a target at one resolved revision.

    content_id is the immutable id (e.g., commit hash) the revision label
    resolved to; two snapshots with the same content_id came from identical
    render inputs.
    """

    revision: str = ""
    content_id: str = ""
    fetched_at: Optional[datetime] = None

    @classmethod
    def build(
        cls,
        target_name: str,
        objects: Iterable[ManifestObject],
        *,
        revision: str,
        content_id: str,
        fetched_at: Optional[datetime] = None,
    ) -> "DesiredStateSnapshot":
        return cls(
            target_name=target_name,
            objects=tuple(objects),
            revision=revision,
            content_id=content_id,
            fetched_at=fetched_at,
        )


@dataclass(slots=True, frozen=True)
class LiveStateSnapshot(_Snapshot):
    """Objects observed at the destination for a target."""

    observed_at: Optional[datetime] = None

    @classmethod
    def build(
        cls,
        target_name: str,
        objects: Iterable[ManifestObject],
        *,
        observed_at: Optional[datetime] = None,
    ) -> "LiveStateSnapshot":
        return cls(target_name=target_name, objects=tuple(objects), observed_at=observed_at)
