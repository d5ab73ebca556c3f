"""Health assessment of live objects (used by wait-for-health)."""

from __future__ import annotations

from enum import Enum
from typing import Any, Optional

from gitopsmgr.models import ManifestObject


class HealthStatus(str, Enum):
    HEALTHY = "Healthy"
    PROGRESSING = "Progressing"
    DEGRADED = "Degraded"
    MISSING = "Missing"


_READY_CONDITIONS: tuple[str, ...] = ("Ready", "Available")
_REPLICATED_KINDS: frozenset[str] = frozenset({"Deployment", "StatefulSet", "ReplicaSet"})


def assess_health(obj: Optional[ManifestObject]) -> HealthStatus:
    """
    Classify an object's health from its status.

    Rules:
        - absent -> MISSING
        - status.observedGeneration behind metadata.generation -> PROGRESSING
        - Deployment/StatefulSet/ReplicaSet: ready/available replicas vs spec
        - DaemonSet: numberReady vs desiredNumberScheduled
        - Job: Complete condition healthy, Failed condition degraded
        - generic: a Ready/Available condition decides
        - objects without status (ConfigMap, Secret, Namespace...) -> HEALTHY
    """
    if obj is None:
        return HealthStatus.MISSING

    status = obj.body.get("status")
    if not isinstance(status, dict) or not status:
        return HealthStatus.HEALTHY

    observed = status.get("observedGeneration")
    if isinstance(observed, int) and obj.generation is not None and observed < obj.generation:
        return HealthStatus.PROGRESSING

    if obj.kind in _REPLICATED_KINDS:
        return _replicated_health(obj.body, status)
    if obj.kind == "DaemonSet":
        desired = _int(status.get("desiredNumberScheduled"))
        ready = _int(status.get("numberReady"))
        return HealthStatus.HEALTHY if ready >= desired else HealthStatus.PROGRESSING

    conditions = _conditions(status)
    if obj.kind == "Job":
        if conditions.get("Failed") == "True":
            return HealthStatus.DEGRADED
        if conditions.get("Complete") == "True":
            return HealthStatus.HEALTHY
        return HealthStatus.PROGRESSING

    for name in _READY_CONDITIONS:
        if name in conditions:
            if conditions[name] == "True":
                return HealthStatus.HEALTHY
            return HealthStatus.PROGRESSING

    phase = status.get("phase")
    if phase in ("Failed",):
        return HealthStatus.DEGRADED
    if phase in ("Pending",):
        return HealthStatus.PROGRESSING
    return HealthStatus.HEALTHY


def _replicated_health(body: dict[str, Any], status: dict[str, Any]) -> HealthStatus:
    spec = body.get("spec") if isinstance(body.get("spec"), dict) else {}
    wanted = _int(spec.get("replicas"), default=1)
    ready = _int(status.get("readyReplicas"))
    available = _int(status.get("availableReplicas"), default=ready)
    updated = _int(status.get("updatedReplicas"), default=ready)

    conditions = _conditions(status)
    if conditions.get("ReplicaFailure") == "True":
        return HealthStatus.DEGRADED
    if ready >= wanted and available >= wanted and updated >= wanted:
        return HealthStatus.HEALTHY
    return HealthStatus.PROGRESSING


def _conditions(status: dict[str, Any]) -> dict[str, str]:
    out: dict[str, str] = {}
    for cond in status.get("conditions") or []:
        if isinstance(cond, dict) and isinstance(cond.get("type"), str):
            out[cond["type"]] = str(cond.get("status"))
    return out


def _int(value: Any, default: int = 0) -> int:
    if isinstance(value, bool):
        return default
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.isdigit():
        return int(value)
    return default
