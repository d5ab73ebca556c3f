"""Exception hierarchy and HTTP error mapping for gitopsmgr."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional


class GitOpsMgrError(Exception):
    """
    Base exception for gitopsmgr.

    Attributes:
        details: Optional structured information (e.g., HTTP status, identity).
        cause: Optional original exception that triggered this error.
    """

    kind: str = "Error"

    def __init__(
        self,
        message: str,
        *,
        details: Optional[dict[str, Any]] = None,
        cause: Optional[BaseException] = None,
    ) -> None:
        super().__init__(message)
        self.details = details or {}
        self.cause = cause


class InvalidArgumentError(GitOpsMgrError):
    """Raised when arguments are invalid (bad target, malformed plan, etc.)."""

    kind = "InvalidArgument"


class InvalidStateError(GitOpsMgrError):
    """Raised when the library is used in an invalid state (e.g., unknown target)."""

    kind = "InvalidState"


class NotFoundError(GitOpsMgrError):
    """Raised when a destination object does not exist (HTTP 404)."""

    kind = "NotFound"


# ----------------------------
# Fetch (source side)
# ----------------------------
class FetchError(GitOpsMgrError):
    """Base for failures while producing the desired state."""

    kind = "FetchError"


class RevisionNotFoundError(FetchError):
    """Raised when a revision reference cannot be resolved to a content id."""

    kind = "RevisionNotFound"


class RenderError(FetchError):
    """Raised when rendering manifests fails or yields malformed objects."""

    kind = "RenderError"


class SourceUnreachableError(FetchError):
    """Raised on transient network failures talking to the source."""

    kind = "SourceUnreachable"


# ----------------------------
# Observe (destination reads)
# ----------------------------
class ObserveError(GitOpsMgrError):
    """Base for failures while reading live state."""

    kind = "ObserveError"


class DestinationUnreachableError(ObserveError):
    """Raised on transient network failures talking to the destination."""

    kind = "DestinationUnreachable"


class PermissionDeniedError(ObserveError):
    """Raised when the destination refuses access (HTTP 401/403)."""

    kind = "PermissionDenied"


# ----------------------------
# Sync (destination writes)
# ----------------------------
class SyncError(GitOpsMgrError):
    """Base for failures while applying a plan."""

    kind = "SyncError"


class ApplyRejectedError(SyncError):
    """Raised when the destination rejects an object (validation, HTTP 400/422)."""

    kind = "ApplyRejected"


class HealthTimeoutError(SyncError):
    """Raised when an applied object does not become healthy in time."""

    kind = "HealthTimeout"


class ResourceConflictError(SyncError):
    """Raised on resource-version conflicts (HTTP 409)."""

    kind = "ResourceConflict"


class PreconditionFailedError(SyncError):
    """Raised when an object changed ownership between observe and apply."""

    kind = "PreconditionFailed"


# ----------------------------
# Run control
# ----------------------------
class PhaseTimeoutError(GitOpsMgrError):
    """Raised when a single phase (fetch/observe/sync) exceeds its timeout."""

    kind = "PhaseTimeout"

    def __init__(self, phase: str, timeout: float) -> None:
        super().__init__(
            f"{phase} phase timed out after {timeout:g}s",
            details={"phase": phase, "timeout": timeout},
        )
        self.phase = phase


class RunCancelledError(GitOpsMgrError):
    """Raised at a suspension checkpoint when the run has been cancelled."""

    kind = "Cancelled"


_TRANSIENT: tuple[type[GitOpsMgrError], ...] = (
    SourceUnreachableError,
    DestinationUnreachableError,
    ResourceConflictError,
)


def is_transient(exc: BaseException) -> bool:
    """Return True for error kinds that are retried locally before surfacing."""
    return isinstance(exc, _TRANSIENT)


def error_kind(exc: BaseException) -> str:
    """Stable kind label for an exception (used in states and results)."""
    if isinstance(exc, GitOpsMgrError):
        return exc.kind
    return exc.__class__.__name__


@dataclass(frozen=True)
class HttpErrorInfo:
    """Lightweight HTTP error information for mapping to gitopsmgr exceptions."""

    status_code: int
    reason: str | None = None
    message: str | None = None
    details: dict[str, Any] | None = None


def map_http_error(
    info: HttpErrorInfo,
    *,
    cause: Optional[BaseException] = None,
) -> GitOpsMgrError:
    """
    Map a destination HTTP error to a gitopsmgr exception.

    Policy:
        - 401/403 -> PermissionDeniedError
        - 404 -> NotFoundError
        - 409 -> ResourceConflictError
        - 400/422 -> ApplyRejectedError
        - 408/429/5xx -> DestinationUnreachableError
        - otherwise -> ApplyRejectedError
    """
    details: dict[str, Any] = {
        "status_code": info.status_code,
        "reason": info.reason,
    }
    if info.details:
        details.update(info.details)

    message = info.message or f"HTTP error {info.status_code}"

    if info.status_code in (401, 403):
        return PermissionDeniedError(message, details=details, cause=cause)
    if info.status_code == 404:
        return NotFoundError(message, details=details, cause=cause)
    if info.status_code == 409:
        return ResourceConflictError(message, details=details, cause=cause)
    if info.status_code in (400, 422):
        return ApplyRejectedError(message, details=details, cause=cause)
    if info.status_code in (408, 429) or 500 <= info.status_code <= 599:
        return DestinationUnreachableError(message, details=details, cause=cause)

    return ApplyRejectedError(message, details=details, cause=cause)
