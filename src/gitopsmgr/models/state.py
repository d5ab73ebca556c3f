"""Per-target reconciliation state (owned by the scheduler)."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from .results import SyncResult


class Phase(str, Enum):
    IDLE = "Idle"
    FETCHING = "Fetching"
    DIFFING = "Diffing"
    SYNCING = "Syncing"
    WAITING = "Waiting"
    ERROR = "Error"


class TargetSyncStatus(str, Enum):
    UNKNOWN = "Unknown"
    SYNCED = "Synced"
    OUT_OF_SYNC = "OutOfSync"


@dataclass(slots=True, frozen=True)
class ReconciliationState:
    """
    Immutable view of a target's reconciliation state.

    The scheduler replaces the whole value on every transition, so readers
    never observe a half-updated state.
    """

    target_name: str
    phase: Phase = Phase.IDLE
    sync_status: TargetSyncStatus = TargetSyncStatus.UNKNOWN
    last_synced_revision: Optional[str] = None
    last_content_id: Optional[str] = None
    consecutive_failures: int = 0
    next_eligible_at: Optional[datetime] = None
    last_error: Optional[str] = None
    last_error_kind: Optional[str] = None
    last_result: Optional[SyncResult] = None
    last_diff_counts: dict[str, int] = field(default_factory=dict, hash=False)
    last_run_reason: Optional[str] = None
    updated_at: Optional[datetime] = None

    def evolve(self, **changes: Any) -> "ReconciliationState":
        return replace(self, **changes)

    @property
    def in_error(self) -> bool:
        return self.last_error is not None
