"""Diff result model."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterator, Optional

from gitopsmgr.models import ManifestObject, ObjectIdentity
from gitopsmgr.util.hashing import sha256_of


class _Missing:
    """Marker for a field absent on one side of a comparison."""

    _instance: Optional["_Missing"] = None

    def __new__(cls) -> "_Missing":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "<missing>"

    def __bool__(self) -> bool:
        return False


MISSING: Any = _Missing()


class DiffStatus(str, Enum):
    IN_SYNC = "InSync"
    OUT_OF_SYNC = "OutOfSync"
    MISSING_IN_LIVE = "MissingInLive"
    MISSING_IN_DESIRED = "MissingInDesired"


@dataclass(slots=True, frozen=True)
class FieldDelta:
    """One differing field: `live` -> `desired` (either may be MISSING)."""

    path: str
    live: Any
    desired: Any

    def to_dict(self) -> dict[str, Any]:
        return {
            "path": self.path,
            "live": _encode(self.live),
            "desired": _encode(self.desired),
        }

    def __str__(self) -> str:
        return f"{self.path}: {self.live!r} -> {self.desired!r}"


@dataclass(slots=True, frozen=True)
class DiffEntry:
    """
    Classification of one object identity.

    Notes:
        - `ignored` holds deltas suppressed by ignore rules; they never make
          an entry OUT_OF_SYNC.
        - `settling` marks objects applied by the previous run that are not
          yet visible (or visible at an older generation) in live state.
    """

    identity: ObjectIdentity
    status: DiffStatus
    deltas: tuple[FieldDelta, ...] = ()
    ignored: tuple[FieldDelta, ...] = ()
    settling: bool = False
    desired: Optional[ManifestObject] = field(default=None, compare=False)
    live: Optional[ManifestObject] = field(default=None, compare=False)

    @property
    def actionable(self) -> bool:
        return self.status is not DiffStatus.IN_SYNC and not self.settling

    def to_dict(self) -> dict[str, Any]:
        return {
            "identity": str(self.identity),
            "status": self.status.value,
            "settling": self.settling,
            "deltas": [d.to_dict() for d in self.deltas],
            "ignored": [d.path for d in self.ignored],
        }


@dataclass(slots=True, frozen=True)
class Diff:
    """Identity-keyed classification of desired vs live state (sorted by identity)."""

    target_name: str
    entries: tuple[DiffEntry, ...]

    def __iter__(self) -> Iterator[DiffEntry]:
        return iter(self.entries)

    def __len__(self) -> int:
        return len(self.entries)

    def get(self, identity: ObjectIdentity) -> Optional[DiffEntry]:
        for entry in self.entries:
            if entry.identity == identity:
                return entry
        return None

    def by_status(self, status: DiffStatus) -> list[DiffEntry]:
        return [e for e in self.entries if e.status is status]

    def actionable(self) -> list[DiffEntry]:
        return [e for e in self.entries if e.actionable]

    def drifted(self) -> list[DiffEntry]:
        """Entries that are not IN_SYNC (actionable or settling)."""
        return [e for e in self.entries if e.status is not DiffStatus.IN_SYNC]

    @property
    def in_sync(self) -> bool:
        return not self.drifted()

    def counts(self) -> dict[str, int]:
        counts = {s.value: 0 for s in DiffStatus}
        for entry in self.entries:
            counts[entry.status.value] += 1
        counts["Settling"] = sum(1 for e in self.entries if e.settling)
        return counts

    def digest(self) -> str:
        """Stable hash of the classification and deltas (idempotency checks)."""
        return sha256_of([e.to_dict() for e in self.entries])


def _encode(value: Any) -> Any:
    if value is MISSING:
        return {"$missing": True}
    return value
