"""SyncPlan and NoopPlan models."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Union

from gitopsmgr.diff import DiffEntry

from .operation import PlanOperation


@dataclass(slots=True)
class SyncPlan:
    """
    An ordered set of operations for one target.

    waves holds barrier groups of op_ids: every operation of a group reaches
    a terminal status before the next group starts.
    """

    plan_id: str
    target_name: str
    created_at: datetime
    operations: list[PlanOperation]
    waves: list[list[str]]
    diff_hash: str
    excluded: tuple[DiffEntry, ...] = ()

    is_noop = False

    def get(self, op_id: str) -> Optional[PlanOperation]:
        for op in self.operations:
            if op.op_id == op_id:
                return op
        return None

    @property
    def wave_count(self) -> int:
        return len({op.wave for op in self.operations})


@dataclass(slots=True)
class NoopPlan:
    """
    Nothing to do: the diff has zero actionable entries.

    Distinct from a SyncPlan with an empty operation list.
    """

    target_name: str
    created_at: datetime
    diff_hash: str
    reason: str = "in sync"
    excluded: tuple[DiffEntry, ...] = ()
    operations: list[PlanOperation] = field(default_factory=list)

    is_noop = True


PlanLike = Union[SyncPlan, NoopPlan]
