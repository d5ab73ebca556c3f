"""Result models for plan execution."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from gitopsmgr.util.time import to_rfc3339

from .objects import ObjectIdentity


class OperationStatus(str, Enum):
    APPLIED = "Applied"
    FAILED = "Failed"
    SKIPPED = "Skipped"


class SyncStatus(str, Enum):
    SUCCEEDED = "Succeeded"
    PARTIALLY_SUCCEEDED = "PartiallySucceeded"
    FAILED = "Failed"
    ABORTED = "Aborted"


@dataclass(slots=True)
class OperationResult:
    """Result for a single operation (PlanOperation)."""

    op_id: str
    seq: int
    wave: int
    action: str
    identity: ObjectIdentity
    status: OperationStatus

    attempts: int = 0
    error_type: Optional[str] = None
    error_message: Optional[str] = None
    error_details: Optional[dict[str, Any]] = None

    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    applied_generation: Optional[int] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "op_id": self.op_id,
            "seq": self.seq,
            "wave": self.wave,
            "action": self.action,
            "identity": str(self.identity),
            "status": self.status.value,
            "attempts": self.attempts,
            "error_type": self.error_type,
            "error_message": self.error_message,
        }


@dataclass(slots=True)
class SyncResult:
    """Aggregate result of executing a SyncPlan."""

    plan_id: str
    target_name: str
    status: SyncStatus
    results: list[OperationResult]
    started_at: datetime
    finished_at: datetime
    diff_hash: str

    summary: dict[str, int] = field(default_factory=dict)
    abort_reason: Optional[str] = None

    @property
    def applied_versions(self) -> dict[ObjectIdentity, Optional[int]]:
        """Generation written by each applied create/update (for read-after-write)."""
        return {
            r.identity: r.applied_generation
            for r in self.results
            if r.status is OperationStatus.APPLIED and r.action != "Delete"
        }

    def failed(self) -> list[OperationResult]:
        return [r for r in self.results if r.status is OperationStatus.FAILED]

    def to_dict(self) -> dict[str, Any]:
        return {
            "plan_id": self.plan_id,
            "target": self.target_name,
            "status": self.status.value,
            "started_at": to_rfc3339(self.started_at),
            "finished_at": to_rfc3339(self.finished_at),
            "diff_hash": self.diff_hash,
            "summary": dict(self.summary),
            "abort_reason": self.abort_reason,
            "results": [r.to_dict() for r in self.results],
        }


def summarize_results(results: list[OperationResult]) -> dict[str, int]:
    summary: dict[str, int] = {s.value: 0 for s in OperationStatus}
    for r in results:
        summary[r.status.value] = summary.get(r.status.value, 0) + 1
    return summary
