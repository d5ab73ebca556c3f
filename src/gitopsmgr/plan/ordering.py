"""Wave assignment and barrier ordering for SyncPlan operations."""

from __future__ import annotations

import logging
from typing import Optional

from gitopsmgr.models import SYNC_WAVE_ANNOTATION, ManifestObject

from .actions import Action
from .operation import PlanOperation

logger = logging.getLogger(__name__)

# Static precedence: lower tiers sync first.
KIND_TIERS: dict[str, int] = {
    # Kinds other objects live in or are defined by.
    "Namespace": 0,
    "CustomResourceDefinition": 0,
    # Cluster/namespace configuration, RBAC, storage.
    "NetworkPolicy": 1,
    "ResourceQuota": 1,
    "LimitRange": 1,
    "PodDisruptionBudget": 1,
    "ServiceAccount": 1,
    "Secret": 1,
    "ConfigMap": 1,
    "StorageClass": 1,
    "PersistentVolume": 1,
    "PersistentVolumeClaim": 1,
    "ClusterRole": 1,
    "ClusterRoleBinding": 1,
    "Role": 1,
    "RoleBinding": 1,
    "PriorityClass": 1,
    # Services and workloads.
    "Service": 2,
    "DaemonSet": 2,
    "Pod": 2,
    "ReplicationController": 2,
    "ReplicaSet": 2,
    "Deployment": 2,
    "HorizontalPodAutoscaler": 2,
    "StatefulSet": 2,
    "Job": 2,
    "CronJob": 2,
    "IngressClass": 2,
    "Ingress": 2,
    "APIService": 2,
}
# Unknown kinds (usually custom resources) go after everything known.
UNKNOWN_KIND_TIER: int = 3


def kind_tier(kind: str) -> int:
    return KIND_TIERS.get(kind, UNKNOWN_KIND_TIER)


def sync_wave_of(obj: Optional[ManifestObject]) -> int:
    """Explicit sync-wave annotation (default 0; invalid values count as 0)."""
    if obj is None:
        return 0
    raw = obj.annotations.get(SYNC_WAVE_ANNOTATION)
    if raw is None:
        return 0
    try:
        return int(str(raw).strip())
    except ValueError:
        logger.warning(f"{obj.identity}: ignoring invalid {SYNC_WAVE_ANNOTATION}={raw!r}")
        return 0


def wave_key(op: PlanOperation) -> tuple[int, int]:
    return (sync_wave_of(op.obj), kind_tier(op.identity.kind))


def build_waves(
    operations: list[PlanOperation],
    *,
    prune_last: bool = True,
) -> list[list[str]]:
    """
    Assign op.wave in-place and return barrier groups of op_ids.

    Rules:
        - Wave key is (sync-wave annotation, kind tier); distinct keys are
          numbered 0..n in ascending order.
        - Within a wave, operations are ordered by seq and have no required
          ordering among themselves.
        - With prune_last, DELETEs of a wave form a trailing group that runs
          only after the wave's CREATE/UPDATE group finished.
    """
    keys = sorted({wave_key(op) for op in operations})
    index_by_key = {key: i for i, key in enumerate(keys)}

    by_wave: dict[int, list[PlanOperation]] = {}
    for op in operations:
        op.wave = index_by_key[wave_key(op)]
        by_wave.setdefault(op.wave, []).append(op)

    groups: list[list[str]] = []
    for wave in sorted(by_wave):
        ops = sorted(by_wave[wave], key=lambda o: o.seq)
        if not prune_last:
            groups.append([o.op_id for o in ops])
            continue
        applies = [o.op_id for o in ops if o.action is not Action.DELETE]
        deletes = [o.op_id for o in ops if o.action is Action.DELETE]
        if applies:
            groups.append(applies)
        if deletes:
            groups.append(deletes)

    return groups
