"""Sync planner: Diff + SyncPolicy -> SyncPlan | NoopPlan."""

from __future__ import annotations

import logging

from gitopsmgr.diff import Diff, DiffEntry, DiffStatus
from gitopsmgr.models import SyncPolicy
from gitopsmgr.util.ids import new_op_id, new_plan_id
from gitopsmgr.util.time import now_utc

from .actions import Action
from .operation import PlanOperation
from .ordering import build_waves
from .preconditions import apply_default_preconditions
from .sync_plan import NoopPlan, PlanLike, SyncPlan

logger = logging.getLogger(__name__)

_ACTION_BY_STATUS: dict[DiffStatus, Action] = {
    DiffStatus.MISSING_IN_LIVE: Action.CREATE,
    DiffStatus.OUT_OF_SYNC: Action.UPDATE,
    DiffStatus.MISSING_IN_DESIRED: Action.DELETE,
}


def build_plan(
    diff: Diff,
    policy: SyncPolicy,
    *,
    target_name: str,
    label_key: str,
) -> PlanLike:
    """
    Build one operation per actionable diff entry.

    Notes:
        - MISSING_IN_DESIRED entries become DELETEs only with policy.prune;
          otherwise they are reported in `excluded` (drift without remediation).
        - Settling entries are not actionable and produce no operation.
        - Zero operations -> NoopPlan.
    """
    operations: list[PlanOperation] = []
    excluded: list[DiffEntry] = []

    for entry in diff.actionable():
        action = _ACTION_BY_STATUS[entry.status]
        if action is Action.DELETE and not policy.prune:
            excluded.append(entry)
            continue

        obj = entry.live if action is Action.DELETE else entry.desired
        operations.append(
            PlanOperation(
                op_id=new_op_id(),
                seq=len(operations),
                action=action,
                identity=entry.identity,
                obj=obj,
                note=_note_for(entry),
            )
        )

    diff_hash = diff.digest()
    if not operations:
        reason = "in sync"
        if excluded:
            reason = f"{len(excluded)} prune candidate(s) excluded (prune disabled)"
        elif any(e.settling for e in diff):
            reason = "waiting for applied objects to become visible"
        return NoopPlan(
            target_name=target_name,
            created_at=now_utc(),
            diff_hash=diff_hash,
            reason=reason,
            excluded=tuple(excluded),
        )

    apply_default_preconditions(operations, label_key=label_key, owner=target_name)
    waves = build_waves(operations, prune_last=policy.prune_last)

    logger.info(
        f"{target_name}: planned {len(operations)} operation(s) in {len(waves)} group(s)"
        + (f", {len(excluded)} excluded" if excluded else "")
    )

    return SyncPlan(
        plan_id=new_plan_id(),
        target_name=target_name,
        created_at=now_utc(),
        operations=operations,
        waves=waves,
        diff_hash=diff_hash,
        excluded=tuple(excluded),
    )


def _note_for(entry: DiffEntry) -> str:
    if entry.status is DiffStatus.OUT_OF_SYNC:
        paths = ", ".join(d.path for d in entry.deltas[:5])
        more = len(entry.deltas) - 5
        return f"drift: {paths}" + (f" (+{more} more)" if more > 0 else "")
    if entry.status is DiffStatus.MISSING_IN_LIVE:
        return "missing in live"
    return "not in desired state"
