"""One reconciliation run: fetch -> observe -> diff -> plan -> execute."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Mapping, Optional

from gitopsmgr.config.settings import ManagerSettings
from gitopsmgr.destination import DestinationClient, LiveStateObserver
from gitopsmgr.diff import Diff, compute_diff
from gitopsmgr.errors import (
    ApplyRejectedError,
    GitOpsMgrError,
    HealthTimeoutError,
    PhaseTimeoutError,
    ResourceConflictError,
    RunCancelledError,
    SyncError,
)
from gitopsmgr.models import (
    DesiredStateSnapshot,
    LiveStateSnapshot,
    ObjectIdentity,
    Phase,
    SyncResult,
    SyncStatus,
    Target,
    TargetSyncStatus,
)
from gitopsmgr.plan import NoopPlan, PlanLike, SyncPlan, build_plan
from gitopsmgr.source import DesiredStateFetcher, SourceClient
from gitopsmgr.sync import SyncExecutor
from gitopsmgr.util.cancel import CancelToken

logger = logging.getLogger(__name__)

_SYNC_ERRORS: dict[str, type[SyncError]] = {
    ApplyRejectedError.kind: ApplyRejectedError,
    HealthTimeoutError.kind: HealthTimeoutError,
    ResourceConflictError.kind: ResourceConflictError,
}


@dataclass(slots=True)
class RunOutcome:
    """Everything one run produced; published by the scheduler when terminal."""

    target_name: str
    revision: str
    content_id: Optional[str] = None
    diff: Optional[Diff] = None
    plan: Optional[PlanLike] = None
    result: Optional[SyncResult] = None
    error: Optional[GitOpsMgrError] = None
    sync_status: TargetSyncStatus = TargetSyncStatus.UNKNOWN
    synced: bool = False
    diff_counts: dict[str, int] = field(default_factory=dict)

    @property
    def succeeded(self) -> bool:
        return self.error is None


class Reconciler:
    """
    The {fetch, observe, diff, plan, execute} capability set.

    Alternative tool flavors subclass and override individual steps; `run`
    drives them in order and never raises gitopsmgr errors (they end up in
    RunOutcome.error).
    """

    def __init__(
        self,
        source: SourceClient,
        destination: DestinationClient,
        settings: Optional[ManagerSettings] = None,
    ) -> None:
        self.settings = settings or ManagerSettings()
        self.destination = destination
        self._fetcher = DesiredStateFetcher(source, label_key=self.settings.label_key)
        self._observer = LiveStateObserver(destination, label_key=self.settings.label_key)
        self._executor = SyncExecutor(
            destination,
            label_key=self.settings.label_key,
            max_workers=self.settings.operation_workers,
            health_poll_interval=self.settings.health_poll_interval,
        )

    # ----------------------------
    # Capabilities
    # ----------------------------
    def fetch(self, target: Target, token: CancelToken) -> DesiredStateSnapshot:
        return self._fetcher.fetch(target, token)

    def observe(self, target: Target, token: CancelToken) -> LiveStateSnapshot:
        return self._observer.observe(target, token)

    def diff(
        self,
        target: Target,
        desired: DesiredStateSnapshot,
        live: LiveStateSnapshot,
        applied_versions: Optional[Mapping[ObjectIdentity, Optional[int]]] = None,
    ) -> Diff:
        return compute_diff(
            desired,
            live,
            target.policy.ignore_rules,
            label_key=self.settings.label_key,
            owner=target.name,
            field_types=target.policy.field_types,
            applied_versions=applied_versions,
        )

    def plan(self, target: Target, diff: Diff) -> PlanLike:
        return build_plan(
            diff,
            target.policy,
            target_name=target.name,
            label_key=self.settings.label_key,
        )

    def execute(self, target: Target, plan: SyncPlan, token: CancelToken) -> SyncResult:
        return self._executor.execute(plan, target.policy, token)

    # ----------------------------
    # Run
    # ----------------------------
    def run(
        self,
        target: Target,
        token: CancelToken,
        *,
        on_phase: Optional[Callable[[Phase], None]] = None,
        applied_versions: Optional[Mapping[ObjectIdentity, Optional[int]]] = None,
        manual: bool = False,
    ) -> RunOutcome:
        """Run one reconciliation of target. Each phase has its own timeout."""
        notify = on_phase or (lambda phase: None)
        outcome = RunOutcome(target_name=target.name, revision=target.revision)
        settings = self.settings

        try:
            notify(Phase.FETCHING)
            desired = self.fetch(
                target, token.child(phase="fetch", timeout=settings.fetch_timeout)
            )
            outcome.content_id = desired.content_id
            live = self.observe(
                target, token.child(phase="observe", timeout=settings.observe_timeout)
            )

            notify(Phase.DIFFING)
            token.check()
            diff = self.diff(target, desired, live, applied_versions)
            outcome.diff = diff
            outcome.diff_counts = diff.counts()
            plan = self.plan(target, diff)
            outcome.plan = plan

            if isinstance(plan, NoopPlan):
                pending = plan.excluded or any(e.settling for e in diff)
                outcome.sync_status = (
                    TargetSyncStatus.OUT_OF_SYNC if pending else TargetSyncStatus.SYNCED
                )
                logger.info(f"{target.name}: no-op ({plan.reason})")
                return outcome

            outcome.sync_status = TargetSyncStatus.OUT_OF_SYNC
            if not (target.policy.automated or manual):
                logger.info(
                    f"{target.name}: drift detected, automated sync disabled "
                    f"({len(plan.operations)} pending operation(s))"
                )
                return outcome

            notify(Phase.SYNCING)
            sync_token = token.child(phase="sync", timeout=settings.sync_timeout)
            result = self.execute(target, plan, sync_token)
            outcome.result = result
            outcome.error = _error_from_result(result, token, settings)
            if outcome.error is None:
                outcome.synced = True
                outcome.sync_status = (
                    TargetSyncStatus.OUT_OF_SYNC if plan.excluded else TargetSyncStatus.SYNCED
                )
            return outcome

        except GitOpsMgrError as exc:
            logger.error(f"{target.name}: run failed ({exc.kind}): {exc}")
            outcome.error = exc
            return outcome


def _error_from_result(
    result: SyncResult,
    token: CancelToken,
    settings: ManagerSettings,
) -> Optional[GitOpsMgrError]:
    if result.status is SyncStatus.SUCCEEDED:
        return None
    if result.status is SyncStatus.ABORTED:
        if token.cancelled:
            return RunCancelledError(
                f"Sync aborted: {token.reason}",
                details={"plan_id": result.plan_id},
            )
        return PhaseTimeoutError("sync", settings.sync_timeout or 0.0)

    failed = result.failed()
    first = failed[0] if failed else None
    kind = first.error_type if first and first.error_type else SyncError.kind
    error_cls = _SYNC_ERRORS.get(kind, SyncError)
    message = f"{len(failed)} operation(s) failed"
    if first is not None:
        message += f"; first: {first.action} {first.identity}: {first.error_message}"
    return error_cls(
        message,
        details={"plan_id": result.plan_id, "status": result.status.value},
    )
