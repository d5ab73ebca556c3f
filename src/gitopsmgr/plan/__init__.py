"""Public plan exports for gitopsmgr."""

from __future__ import annotations

from .actions import Action
from .operation import PlanOperation
from .ordering import KIND_TIERS, UNKNOWN_KIND_TIER, build_waves, kind_tier, sync_wave_of
from .planner import build_plan
from .preconditions import (
    PRECONDITION_ACTIONS,
    apply_default_preconditions,
    build_ownership_precondition,
    check_ownership_precondition,
)
from .sync_plan import NoopPlan, PlanLike, SyncPlan

__all__ = [
    "Action",
    "PlanOperation",
    "SyncPlan",
    "NoopPlan",
    "PlanLike",
    "build_plan",
    "build_waves",
    "kind_tier",
    "sync_wave_of",
    "KIND_TIERS",
    "UNKNOWN_KIND_TIER",
    "PRECONDITION_ACTIONS",
    "apply_default_preconditions",
    "build_ownership_precondition",
    "check_ownership_precondition",
]
