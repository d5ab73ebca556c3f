"""gitopsmgr public API."""

from __future__ import annotations

__version__ = "0.1.0"

from gitopsmgr.config import (
    ConfigError,
    ManagerSettings,
    load_config,
    load_settings,
    load_targets,
)
from gitopsmgr.destination import (
    DestinationClient,
    HealthStatus,
    Selector,
    WatchEvent,
    WatchEventType,
    WatchStream,
    assess_health,
)
from gitopsmgr.diff import Diff, DiffEntry, DiffStatus, FieldDelta, compute_diff
from gitopsmgr.errors import (
    ApplyRejectedError,
    DestinationUnreachableError,
    FetchError,
    GitOpsMgrError,
    HealthTimeoutError,
    HttpErrorInfo,
    InvalidArgumentError,
    InvalidStateError,
    NotFoundError,
    ObserveError,
    PermissionDeniedError,
    PhaseTimeoutError,
    PreconditionFailedError,
    RenderError,
    ResourceConflictError,
    RevisionNotFoundError,
    RunCancelledError,
    SourceUnreachableError,
    SyncError,
    is_transient,
    map_http_error,
)
from gitopsmgr.local import InMemoryDestination, InMemorySource
from gitopsmgr.manager import GitOpsManager, Preview
from gitopsmgr.models import (
    DesiredStateSnapshot,
    Destination,
    IgnoreRule,
    LiveStateSnapshot,
    ManifestObject,
    ObjectIdentity,
    OperationResult,
    OperationStatus,
    Phase,
    ReconciliationState,
    RetryPolicy,
    SyncPolicy,
    SyncResult,
    SyncStatus,
    Target,
    TargetSyncStatus,
)
from gitopsmgr.plan import Action, NoopPlan, PlanOperation, SyncPlan, build_plan
from gitopsmgr.reconciler import Reconciler, RunOutcome
from gitopsmgr.scheduler import ReconciliationScheduler
from gitopsmgr.source import DesiredStateFetcher, SourceClient
from gitopsmgr.sync import SyncExecutor
from gitopsmgr.util.cancel import CancelToken

__all__ = [
    "__version__",
    # High-level
    "GitOpsManager",
    "Preview",
    "ReconciliationScheduler",
    "Reconciler",
    "RunOutcome",
    # Components
    "DesiredStateFetcher",
    "SyncExecutor",
    "compute_diff",
    "build_plan",
    "assess_health",
    "CancelToken",
    # Collaborators
    "SourceClient",
    "DestinationClient",
    "Selector",
    "WatchEvent",
    "WatchEventType",
    "WatchStream",
    "InMemorySource",
    "InMemoryDestination",
    # Config
    "ManagerSettings",
    "load_config",
    "load_settings",
    "load_targets",
    # Models
    "Target",
    "Destination",
    "SyncPolicy",
    "RetryPolicy",
    "IgnoreRule",
    "ManifestObject",
    "ObjectIdentity",
    "DesiredStateSnapshot",
    "LiveStateSnapshot",
    "Diff",
    "DiffEntry",
    "DiffStatus",
    "FieldDelta",
    "Action",
    "PlanOperation",
    "SyncPlan",
    "NoopPlan",
    "OperationResult",
    "OperationStatus",
    "SyncResult",
    "SyncStatus",
    "Phase",
    "TargetSyncStatus",
    "ReconciliationState",
    "HealthStatus",
    # Errors
    "GitOpsMgrError",
    "InvalidArgumentError",
    "InvalidStateError",
    "NotFoundError",
    "FetchError",
    "RevisionNotFoundError",
    "RenderError",
    "SourceUnreachableError",
    "ObserveError",
    "DestinationUnreachableError",
    "PermissionDeniedError",
    "SyncError",
    "ApplyRejectedError",
    "HealthTimeoutError",
    "ResourceConflictError",
    "PreconditionFailedError",
    "PhaseTimeoutError",
    "RunCancelledError",
    "ConfigError",
    "HttpErrorInfo",
    "is_transient",
    "map_http_error",
]
