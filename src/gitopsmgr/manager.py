"""GitOpsManager: target registry + scheduler + read APIs."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from gitopsmgr.config import ManagerSettings, load_config, load_settings, load_targets
from gitopsmgr.destination import DestinationClient
from gitopsmgr.diff import Diff
from gitopsmgr.errors import InvalidArgumentError
from gitopsmgr.models import ReconciliationState, SyncResult, Target
from gitopsmgr.plan import PlanLike
from gitopsmgr.reconciler import Reconciler, RunOutcome
from gitopsmgr.scheduler import ReconciliationScheduler
from gitopsmgr.source import SourceClient
from gitopsmgr.util.cancel import CancelToken

logger = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class Preview:
    """Diff and plan for a target, computed without touching the destination."""

    target_name: str
    revision: str
    content_id: str
    diff: Diff
    plan: PlanLike


class GitOpsManager:
    """
    High-level manager for continuous reconciliation.

    Typical use:
        manager = GitOpsManager(source, destination)
        manager.add_target(target)
        with manager:          # start() / stop()
            ...
            manager.get_state("web")
    """

    def __init__(
        self,
        source: SourceClient,
        destination: DestinationClient,
        settings: Optional[ManagerSettings] = None,
    ) -> None:
        self._reconciler = Reconciler(source, destination, settings)
        self._scheduler = ReconciliationScheduler(self._reconciler, self._reconciler.settings)

    @classmethod
    def from_scheduler(cls, scheduler: ReconciliationScheduler) -> "GitOpsManager":
        """Create manager with an injected scheduler (useful for tests)."""
        obj = cls.__new__(cls)
        obj._scheduler = scheduler
        obj._reconciler = scheduler.reconciler
        return obj

    @classmethod
    def from_config(
        cls,
        source: SourceClient,
        destination: DestinationClient,
        *,
        defaults_path: str,
        local_path: Optional[str] = None,
    ) -> "GitOpsManager":
        """Build settings and targets from config files and register the targets."""
        config = load_config(defaults_path=defaults_path, local_path=local_path)
        manager = cls(source, destination, load_settings(config))
        targets = load_targets(config)
        for target in targets:
            manager.add_target(target)
        logger.info(f"Loaded {len(targets)} target(s) from {defaults_path}")
        return manager

    @property
    def settings(self) -> ManagerSettings:
        return self._reconciler.settings

    @property
    def scheduler(self) -> ReconciliationScheduler:
        return self._scheduler

    @property
    def reconciler(self) -> Reconciler:
        return self._reconciler

    # ----------------------------
    # Targets
    # ----------------------------
    def add_target(self, target: Target) -> None:
        self._scheduler.register(target)

    def update_target(self, target: Target) -> None:
        self._scheduler.update(target)

    def remove_target(self, name: str) -> None:
        self._scheduler.deregister(name)

    def set_revision(self, name: str, revision: str) -> Target:
        """Point a target at another revision (cancels an in-flight run)."""
        if not revision or not revision.strip():
            raise InvalidArgumentError("revision must be non-empty")
        current = self._find_target(name)
        updated = current.with_changes(revision=revision)
        self._scheduler.update(updated)
        return updated

    def targets(self) -> list[Target]:
        return self._scheduler.targets()

    # ----------------------------
    # Lifecycle
    # ----------------------------
    def start(self) -> None:
        self._scheduler.start()

    def stop(self, *, wait: bool = True) -> None:
        self._scheduler.stop(wait=wait)

    def __enter__(self) -> "GitOpsManager":
        self.start()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.stop()

    # ----------------------------
    # Triggers / queries
    # ----------------------------
    def request_sync(self, name: str, reason: str = "manual", *, manual: bool = False) -> None:
        self._scheduler.request_sync(name, reason, manual=manual)

    def sync_now(self, name: str, *, manual: bool = True) -> Optional[RunOutcome]:
        """
        Run a reconciliation in the calling thread.

        Returns None when a run of this target is already active (the request
        is coalesced into its pending re-run).
        """
        return self._scheduler.run_once(name, "sync_now", manual=manual)

    def preview(self, name: str) -> Preview:
        """
        Fetch, observe, diff and plan without executing anything.

        Raises gitopsmgr errors from fetch/observe directly.
        """
        target = self._find_target(name)
        token = CancelToken()
        settings = self.settings
        desired = self._reconciler.fetch(
            target, token.child(phase="fetch", timeout=settings.fetch_timeout)
        )
        live = self._reconciler.observe(
            target, token.child(phase="observe", timeout=settings.observe_timeout)
        )
        diff = self._reconciler.diff(target, desired, live)
        plan = self._reconciler.plan(target, diff)
        return Preview(
            target_name=target.name,
            revision=target.revision,
            content_id=desired.content_id,
            diff=diff,
            plan=plan,
        )

    def get_state(self, name: str) -> ReconciliationState:
        return self._scheduler.get_state(name)

    def get_last_result(self, name: str) -> Optional[SyncResult]:
        return self._scheduler.get_last_result(name)

    def list_states(self) -> list[ReconciliationState]:
        return self._scheduler.list_states()

    # ----------------------------
    # Internals
    # ----------------------------
    def _find_target(self, name: str) -> Target:
        return self._scheduler.get_target(name)
