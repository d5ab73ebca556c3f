"""Destination collaborator protocol (runtime platform API)."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterator, Optional, Protocol

from gitopsmgr.models import ManifestObject, ObjectIdentity


@dataclass(slots=True, frozen=True)
class Selector:
    """
    Ownership selector for live objects.

    namespace narrows the query when set ("" means all namespaces plus
    cluster-scoped objects). identity turns it into a point read of a single
    object, returned whether or not it carries the ownership label.
    """

    label_key: str
    owner: str
    namespace: str = ""
    identity: Optional[ObjectIdentity] = None

    def for_identity(self, identity: ObjectIdentity) -> "Selector":
        return Selector(
            label_key=self.label_key,
            owner=self.owner,
            namespace=identity.namespace,
            identity=identity,
        )

    def matches(self, obj: ManifestObject, *, check_owner: bool = True) -> bool:
        if self.identity is not None:
            if obj.identity != self.identity:
                return False
        elif self.namespace and obj.namespace not in ("", self.namespace):
            return False
        if self.identity is None and check_owner and not obj.is_owned_by(self.label_key, self.owner):
            return False
        return True


class WatchEventType(str, Enum):
    ADDED = "ADDED"
    MODIFIED = "MODIFIED"
    DELETED = "DELETED"


@dataclass(slots=True, frozen=True)
class WatchEvent:
    type: WatchEventType
    identity: ObjectIdentity
    resource_version: Optional[str] = None


class WatchStream(Protocol):
    """Iterable of change events that can be closed from another thread."""

    def __iter__(self) -> Iterator[WatchEvent]:
        ...

    def close(self) -> None:
        ...


class DestinationClient(Protocol):
    """
    Narrow interface to the runtime platform.

    Implementations raise gitopsmgr errors where they can classify a failure
    (see errors.map_http_error); anything else is classified by the caller.
    """

    def get(self, selector: Selector) -> list[dict[str, Any]]:
        """Return objects matching selector (with resourceVersion/generation)."""
        ...

    def apply(self, obj: dict[str, Any]) -> dict[str, Any]:
        """Create or update obj; return the stored object."""
        ...

    def delete(self, identity: ObjectIdentity) -> None:
        """Delete an object; NotFoundError if it does not exist."""
        ...

    def watch(self, selector: Selector) -> WatchStream:
        """Stream change events for objects matching selector."""
        ...
