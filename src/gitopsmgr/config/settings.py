"""Process-wide settings passed explicitly into each reconciliation run."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

from gitopsmgr.errors import InvalidArgumentError
from gitopsmgr.models import DEFAULT_OWNER_LABEL, RetryPolicy


@dataclass(slots=True, frozen=True)
class ManagerSettings:
    """
    Scheduler/executor settings.

    Notes:
        - backoff drives Error -> Waiting(backoff); its `limit` is unused.
        - A None timeout leaves that phase unbounded.
    """

    workers: int = 4
    operation_workers: int = 4
    default_interval: float = 180.0
    fetch_timeout: Optional[float] = 60.0
    observe_timeout: Optional[float] = 60.0
    sync_timeout: Optional[float] = 600.0
    health_poll_interval: float = 1.0
    label_key: str = DEFAULT_OWNER_LABEL
    backoff: RetryPolicy = field(
        default_factory=lambda: RetryPolicy(limit=0, base_delay=5.0, factor=2.0, max_delay=180.0)
    )

    def __post_init__(self) -> None:
        if self.workers < 1 or self.operation_workers < 1:
            raise InvalidArgumentError("workers must be >= 1")
        if self.default_interval <= 0:
            raise InvalidArgumentError("default_interval must be > 0")
        for name in ("fetch_timeout", "observe_timeout", "sync_timeout"):
            value = getattr(self, name)
            if value is not None and value <= 0:
                raise InvalidArgumentError(f"{name} must be > 0")
        if not self.label_key:
            raise InvalidArgumentError("label_key must be non-empty")
