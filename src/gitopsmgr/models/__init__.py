"""Public model exports for gitopsmgr."""

from __future__ import annotations

from .objects import (
    CLUSTER_SCOPED_KINDS,
    DEFAULT_OWNER_LABEL,
    SYNC_WAVE_ANNOTATION,
    ManifestObject,
    ObjectIdentity,
    identity_of,
    is_cluster_scoped,
)
from .results import (
    OperationResult,
    OperationStatus,
    SyncResult,
    SyncStatus,
    summarize_results,
)
from .snapshots import DesiredStateSnapshot, LiveStateSnapshot
from .state import Phase, ReconciliationState, TargetSyncStatus
from .target import Destination, IgnoreRule, RetryPolicy, SyncPolicy, Target

__all__ = [
    "CLUSTER_SCOPED_KINDS",
    "DEFAULT_OWNER_LABEL",
    "SYNC_WAVE_ANNOTATION",
    "ManifestObject",
    "ObjectIdentity",
    "identity_of",
    "is_cluster_scoped",
    "DesiredStateSnapshot",
    "LiveStateSnapshot",
    "OperationStatus",
    "SyncStatus",
    "OperationResult",
    "SyncResult",
    "summarize_results",
    "Phase",
    "TargetSyncStatus",
    "ReconciliationState",
    "Destination",
    "IgnoreRule",
    "RetryPolicy",
    "SyncPolicy",
    "Target",
]
