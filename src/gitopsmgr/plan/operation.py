"""One write against the destination: create, update or delete of a single object."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

from gitopsmgr.models import ManifestObject, ObjectIdentity

from .actions import Action


@dataclass(slots=True)
class PlanOperation:
    """
    A single operation within a SyncPlan.

    obj is the desired object for CREATE/UPDATE and the live object for
    DELETE (kept for wave annotations and reporting).
    """

    op_id: str
    seq: int
    action: Action
    identity: ObjectIdentity

    wave: int = 0
    obj: Optional[ManifestObject] = None
    precondition: Optional[dict[str, Any]] = None
    note: Optional[str] = None

    def validate_required_fields(self) -> None:
        """Validate required fields according to action. Raises ValueError."""
        if self.action in (Action.CREATE, Action.UPDATE):
            if self.obj is None:
                raise ValueError(f"Missing required field: obj ({self.action.value})")
            if self.obj.identity != self.identity:
                raise ValueError("obj identity does not match operation identity")
            return

        if self.action is Action.DELETE:
            if not self.identity.name:
                raise ValueError("Missing required field: identity.name")
            return

        raise ValueError(f"Unsupported action: {self.action}")
