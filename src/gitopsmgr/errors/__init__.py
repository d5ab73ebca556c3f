"""Public error exports for gitopsmgr."""

from __future__ import annotations

from .exceptions import (
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
    error_kind,
    is_transient,
    map_http_error,
)

__all__ = [
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
    "HttpErrorInfo",
    "error_kind",
    "is_transient",
    "map_http_error",
]
