"""Targets and the policy values consumed by the planner and executor."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Optional

from gitopsmgr.errors import InvalidArgumentError

FIELD_TYPES: frozenset[str] = frozenset({"int", "string", "bool", "number"})


@dataclass(slots=True, frozen=True)
class RetryPolicy:
    """
    Exponential backoff policy.

    attempt n (1-based) waits base_delay * factor**(n-1), capped at max_delay.
    `limit` is the number of retries after the first attempt.
    """

    limit: int = 5
    base_delay: float = 5.0
    factor: float = 2.0
    max_delay: float = 180.0

    def __post_init__(self) -> None:
        if self.limit < 0:
            raise InvalidArgumentError("retry.limit must be >= 0")
        if self.base_delay < 0 or self.max_delay < 0:
            raise InvalidArgumentError("retry delays must be >= 0")
        if self.factor < 1:
            raise InvalidArgumentError("retry.factor must be >= 1")

    def delay_for(self, attempt: int) -> float:
        if attempt <= 0:
            return 0.0
        return min(self.max_delay, self.base_delay * (self.factor ** (attempt - 1)))


@dataclass(slots=True, frozen=True)
class IgnoreRule:
    """
    Field-path matcher excluded from drift classification.

    path is dotted (`spec.replicas`, `metadata.annotations.*`); each segment is
    an fnmatch pattern and list indexes are plain numbers. kind/name/namespace
    optionally narrow the rule to some objects.
    """

    path: str
    kind: Optional[str] = None
    name: Optional[str] = None
    namespace: Optional[str] = None

    def __post_init__(self) -> None:
        if not isinstance(self.path, str) or not self.path.strip():
            raise InvalidArgumentError("IgnoreRule.path must be a non-empty string")


@dataclass(slots=True, frozen=True)
class SyncPolicy:
    """Sync options for one target."""

    automated: bool = True
    prune: bool = False
    prune_last: bool = True
    continue_on_error: bool = False
    prune_after_failure: bool = False
    wait_for_health: bool = False
    health_timeout: float = 300.0
    self_heal: bool = False
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    ignore_rules: tuple[IgnoreRule, ...] = ()
    field_types: dict[str, str] = field(default_factory=dict, hash=False)

    def __post_init__(self) -> None:
        if self.health_timeout <= 0:
            raise InvalidArgumentError("health_timeout must be > 0")
        for path, declared in self.field_types.items():
            if declared not in FIELD_TYPES:
                raise InvalidArgumentError(
                    f"Unsupported field type for {path}: {declared}",
                    details={"supported": sorted(FIELD_TYPES)},
                )


@dataclass(slots=True, frozen=True)
class Destination:
    """Where a target is synced to."""

    cluster: str
    namespace: str = ""

    def __str__(self) -> str:
        if not self.namespace:
            return self.cluster
        return f"{self.cluster}/{self.namespace}"


@dataclass(slots=True, frozen=True)
class Target:
    """
    A (source, revision, path) -> destination binding to reconcile.

    Identity is (repo_url, path, destination). Only revision, policy and
    interval may change while a target is registered.
    """

    name: str
    repo_url: str
    revision: str
    path: str
    destination: Destination
    policy: SyncPolicy = field(default_factory=SyncPolicy)
    interval: Optional[float] = None

    def __post_init__(self) -> None:
        for attr in ("name", "repo_url", "revision", "destination"):
            value = getattr(self, attr)
            if value is None or (isinstance(value, str) and not value.strip()):
                raise InvalidArgumentError(f"Target.{attr} is required")
        if self.interval is not None and self.interval <= 0:
            raise InvalidArgumentError("Target.interval must be > 0")

    @property
    def key(self) -> tuple[str, str, Destination]:
        return (self.repo_url, self.path, self.destination)

    def with_changes(self, **changes: Any) -> "Target":
        """
        Return a copy with mutable fields changed.

        Raises:
            InvalidArgumentError: if an identity field would change.
        """
        allowed = {"revision", "policy", "interval"}
        forbidden = set(changes) - allowed
        if forbidden:
            raise InvalidArgumentError(
                "Target identity is immutable",
                details={"fields": sorted(forbidden)},
            )
        return replace(self, **changes)
