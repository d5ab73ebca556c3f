"""Precondition helpers (ownership marker only)."""

from __future__ import annotations

from typing import Any, Optional

from gitopsmgr.errors import PreconditionFailedError
from gitopsmgr.models import ManifestObject

from .actions import Action
from .operation import PlanOperation

PRECONDITION_ACTIONS: set[Action] = {Action.UPDATE, Action.DELETE}


def build_ownership_precondition(label_key: str, owner: str) -> dict[str, Any]:
    """Build an ownership-only precondition dict."""
    return {"label_key": label_key, "owner": owner}


def apply_default_preconditions(
    operations: list[PlanOperation],
    *,
    label_key: str,
    owner: str,
) -> None:
    """
    Apply default preconditions to operations in-place.

    UPDATE and DELETE only touch objects still carrying this target's
    ownership marker at execution time.
    """
    for op in operations:
        if op.action not in PRECONDITION_ACTIONS:
            continue
        op.precondition = build_ownership_precondition(label_key, owner)


def check_ownership_precondition(
    precondition: dict[str, Any],
    current: Optional[ManifestObject],
) -> None:
    """
    Check ownership precondition against the current live object.

    A missing object passes (UPDATE re-creates it, DELETE is a no-op).

    Raises:
        PreconditionFailedError: if the object exists without the marker.
    """
    label_key = precondition.get("label_key")
    owner = precondition.get("owner")
    if not isinstance(label_key, str) or not isinstance(owner, str):
        raise PreconditionFailedError("Invalid precondition: label_key/owner missing")

    if current is None:
        return

    if not current.is_owned_by(label_key, owner):
        raise PreconditionFailedError(
            "Precondition failed: object is no longer owned by this target",
            details={"identity": str(current.identity), "label_key": label_key},
        )
