"""Cooperative cancellation tokens with optional deadlines."""

from __future__ import annotations

import threading
import time
from typing import Optional

from gitopsmgr.errors import PhaseTimeoutError, RunCancelledError


class CancelToken:
    """
    Cancellation signal checked at every suspension checkpoint.

    A child token (see `child`) is cancelled when its parent is, and may carry
    its own deadline. Deadline expiry surfaces as PhaseTimeoutError for the
    phase that owns the child; parent cancellation surfaces as
    RunCancelledError.
    """

    def __init__(
        self,
        *,
        parent: Optional["CancelToken"] = None,
        timeout: Optional[float] = None,
        phase: Optional[str] = None,
    ) -> None:
        self._event = threading.Event()
        self._reason: Optional[str] = None
        self._parent = parent
        self._timeout = timeout
        self._phase = phase
        self._deadline = time.monotonic() + timeout if timeout is not None else None

    def child(self, *, phase: str, timeout: Optional[float] = None) -> "CancelToken":
        """Return a token for one phase of this run."""
        return CancelToken(parent=self, timeout=timeout, phase=phase)

    def cancel(self, reason: str = "cancelled") -> None:
        if self._reason is None:
            self._reason = reason
        self._event.set()

    @property
    def reason(self) -> Optional[str]:
        if self._event.is_set():
            return self._reason
        if self._parent is not None:
            return self._parent.reason
        return None

    @property
    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        return self._parent is not None and self._parent.cancelled

    @property
    def expired(self) -> bool:
        if self._deadline is not None and time.monotonic() >= self._deadline:
            return True
        return self._parent is not None and self._parent.expired

    def remaining(self) -> Optional[float]:
        """Seconds until the nearest deadline (None when unbounded)."""
        values: list[float] = []
        if self._deadline is not None:
            values.append(self._deadline - time.monotonic())
        if self._parent is not None:
            parent_remaining = self._parent.remaining()
            if parent_remaining is not None:
                values.append(parent_remaining)
        if not values:
            return None
        return max(0.0, min(values))

    def check(self) -> None:
        """
        Raise if the run was cancelled or a phase deadline passed.

        Raises:
            RunCancelledError: cancelled by the owner (de-registration, new revision).
            PhaseTimeoutError: the nearest enclosing phase deadline elapsed.
        """
        if self.cancelled:
            raise RunCancelledError(
                f"Run cancelled: {self.reason}",
                details={"reason": self.reason},
            )
        self._check_deadline()

    def sleep(self, seconds: float) -> None:
        """Sleep up to `seconds`, waking early (and raising) on cancellation."""
        end = time.monotonic() + max(0.0, seconds)
        while True:
            self.check()
            left = end - time.monotonic()
            if left <= 0:
                return
            step = min(left, 0.05)
            remaining = self.remaining()
            if remaining is not None:
                step = min(step, remaining) if remaining > 0 else 0.0
            # Parent cancellation is polled in short steps.
            self._event.wait(step)

    def _check_deadline(self) -> None:
        if self._parent is not None:
            self._parent._check_deadline()
        if self._deadline is not None and time.monotonic() >= self._deadline:
            raise PhaseTimeoutError(self._phase or "run", self._timeout or 0.0)
