"""Reconciliation scheduler: drives runs per target on a worker pool."""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Optional

from gitopsmgr.config.settings import ManagerSettings
from gitopsmgr.destination import WatchStream, selector_for
from gitopsmgr.errors import (
    GitOpsMgrError,
    InvalidArgumentError,
    InvalidStateError,
    RunCancelledError,
    error_kind,
)
from gitopsmgr.models import (
    ObjectIdentity,
    Phase,
    ReconciliationState,
    SyncResult,
    Target,
    TargetSyncStatus,
)
from gitopsmgr.reconciler import Reconciler, RunOutcome
from gitopsmgr.util.cancel import CancelToken
from gitopsmgr.util.ids import new_run_id
from gitopsmgr.util.time import after, now_utc

logger = logging.getLogger(__name__)

# Upper bound on how long stop(wait=True) waits for each watch thread.
WATCH_JOIN_TIMEOUT = 2.0


@dataclass(slots=True, frozen=True)
class _Trigger:
    reason: str
    manual: bool = False

    def merge(self, other: Optional["_Trigger"]) -> "_Trigger":
        if other is None:
            return self
        return _Trigger(reason=other.reason, manual=self.manual or other.manual)


@dataclass(slots=True)
class _Entry:
    target: Target
    state: ReconciliationState
    due: float
    lock: threading.Lock = field(default_factory=threading.Lock)
    token: Optional[CancelToken] = None
    pending: Optional[_Trigger] = None
    submitted: bool = False
    removed: bool = False
    applied_versions: dict[ObjectIdentity, Optional[int]] = field(default_factory=dict)
    watch: Optional[WatchStream] = None
    watch_thread: Optional[threading.Thread] = None


class ReconciliationScheduler:
    """
    Schedules reconciliation runs.

    Rules:
        - At most one run per target at any time (per-target lock).
        - Triggers arriving during a run coalesce into a single pending re-run
          that starts right after the current run.
        - Success waits the target interval; failure waits the backoff delay
          for the consecutive-failure count.
        - State is replaced atomically; the run's results are published only
          when the run is terminal.
    """

    def __init__(
        self,
        reconciler: Reconciler,
        settings: Optional[ManagerSettings] = None,
    ) -> None:
        self._reconciler = reconciler
        self._settings = settings or reconciler.settings
        self._lock = threading.RLock()
        self._cond = threading.Condition(self._lock)
        self._entries: dict[str, _Entry] = {}
        self._pool: Optional[ThreadPoolExecutor] = None
        self._dispatcher: Optional[threading.Thread] = None
        self._running = False

    # ----------------------------
    # Target registry
    # ----------------------------
    def register(self, target: Target) -> None:
        """
        Register a target; its first run is due immediately.

        Raises:
            InvalidStateError: a target with this name already exists.
            InvalidArgumentError: another target already binds the same
                source and destination.
        """
        with self._cond:
            if target.name in self._entries:
                raise InvalidStateError(
                    "Target already registered", details={"target": target.name}
                )
            for other in self._entries.values():
                if other.target.key == target.key:
                    raise InvalidArgumentError(
                        "Another target already binds this source and destination",
                        details={"target": target.name, "existing": other.target.name},
                    )
            entry = _Entry(
                target=target,
                state=ReconciliationState(target_name=target.name, updated_at=now_utc()),
                due=time.monotonic(),
                pending=_Trigger("registered"),
            )
            self._entries[target.name] = entry
            if self._running and target.policy.self_heal:
                self._start_watch(entry)
            self._cond.notify_all()
        logger.info(f"Registered target {target.name} ({target.repo_url} -> {target.destination})")

    def update(self, target: Target) -> None:
        """
        Replace a registered target's revision/policy/interval.

        A revision change cancels an in-flight run and schedules an immediate
        re-run.
        """
        with self._cond:
            entry = self._get_entry(target.name)
            if entry.target.key != target.key:
                raise InvalidArgumentError(
                    "Target identity is immutable",
                    details={"target": target.name},
                )
            previous = entry.target
            entry.target = target

            if previous.revision != target.revision:
                trigger = _Trigger(f"revision {previous.revision} -> {target.revision}")
                if entry.token is not None:
                    entry.token.cancel("revision superseded")
                entry.pending = trigger.merge(entry.pending)
                entry.due = time.monotonic()

            if self._running:
                if target.policy.self_heal and entry.watch is None:
                    self._start_watch(entry)
                elif not target.policy.self_heal and entry.watch is not None:
                    self._stop_watch(entry)
            self._cond.notify_all()
        logger.info(f"Updated target {target.name} (revision {target.revision})")

    def deregister(self, name: str) -> None:
        """Remove a target, cancelling its in-flight run."""
        with self._cond:
            entry = self._get_entry(name)
            entry.removed = True
            if entry.token is not None:
                entry.token.cancel("target deregistered")
            self._stop_watch(entry)
            del self._entries[name]
            self._cond.notify_all()
        logger.info(f"Deregistered target {name}")

    def get_target(self, name: str) -> Target:
        with self._lock:
            return self._get_entry(name).target

    def targets(self) -> list[Target]:
        with self._lock:
            return [e.target for e in sorted(self._entries.values(), key=lambda e: e.target.name)]

    # ----------------------------
    # Triggers
    # ----------------------------
    def request_sync(self, name: str, reason: str = "manual", *, manual: bool = False) -> None:
        """
        Ask for a run as soon as possible (webhook, poll, drift watch).

        While a run is active the request is coalesced into one pending re-run.
        """
        with self._cond:
            entry = self._get_entry(name)
            entry.pending = _Trigger(reason, manual).merge(entry.pending)
            if entry.token is None:
                entry.due = time.monotonic()
            self._cond.notify_all()
        logger.debug(f"{name}: sync requested ({reason})")

    def run_once(
        self,
        name: str,
        reason: str = "manual",
        *,
        manual: bool = True,
    ) -> Optional[RunOutcome]:
        """
        Run a reconciliation of name in the calling thread.

        Returns None when another run of this target is active; the request
        is then coalesced into its pending re-run.
        """
        with self._lock:
            entry = self._get_entry(name)
        if not entry.lock.acquire(blocking=False):
            self.request_sync(name, reason, manual=manual)
            return None
        try:
            if entry.removed:
                return None
            with self._lock:
                trigger = _Trigger(reason, manual).merge(entry.pending)
            return self._run(entry, trigger)
        finally:
            entry.lock.release()
            with self._cond:
                self._cond.notify_all()

    # ----------------------------
    # Queries
    # ----------------------------
    def get_state(self, name: str) -> ReconciliationState:
        with self._lock:
            return self._get_entry(name).state

    def get_last_result(self, name: str) -> Optional[SyncResult]:
        with self._lock:
            return self._get_entry(name).state.last_result

    def list_states(self) -> list[ReconciliationState]:
        with self._lock:
            return [self._entries[n].state for n in sorted(self._entries)]

    # ----------------------------
    # Lifecycle
    # ----------------------------
    @property
    def reconciler(self) -> Reconciler:
        return self._reconciler

    @property
    def running(self) -> bool:
        return self._running

    def start(self) -> None:
        with self._cond:
            if self._running:
                raise InvalidStateError("Scheduler already started")
            self._running = True
            self._pool = ThreadPoolExecutor(
                max_workers=self._settings.workers,
                thread_name_prefix="gitopsmgr-worker",
            )
            for entry in self._entries.values():
                if entry.target.policy.self_heal:
                    self._start_watch(entry)
            self._dispatcher = threading.Thread(
                target=self._dispatch_loop,
                name="gitopsmgr-dispatcher",
                daemon=True,
            )
            self._dispatcher.start()
        logger.info(f"Scheduler started with {self._settings.workers} worker(s)")

    def stop(self, *, wait: bool = True) -> None:
        with self._cond:
            if not self._running:
                return
            self._running = False
            watchers: list[threading.Thread] = []
            for entry in self._entries.values():
                if entry.token is not None:
                    entry.token.cancel("scheduler stopping")
                thread = self._stop_watch(entry)
                if thread is not None:
                    watchers.append(thread)
            self._cond.notify_all()
            dispatcher = self._dispatcher
            pool = self._pool
            self._dispatcher = None
            self._pool = None

        if dispatcher is not None and wait:
            dispatcher.join()
        if pool is not None:
            pool.shutdown(wait=wait)
        if wait:
            for thread in watchers:
                thread.join(WATCH_JOIN_TIMEOUT)
        logger.info("Scheduler stopped")

    # ----------------------------
    # Internals
    # ----------------------------
    def _get_entry(self, name: str) -> _Entry:
        entry = self._entries.get(name)
        if entry is None:
            raise InvalidStateError("Unknown target", details={"target": name})
        return entry

    def _dispatch_loop(self) -> None:
        with self._cond:
            while self._running:
                pool = self._pool
                if pool is None:
                    return
                now = time.monotonic()
                next_due: Optional[float] = None
                for name, entry in self._entries.items():
                    if entry.submitted or entry.token is not None:
                        continue
                    if entry.due <= now:
                        entry.submitted = True
                        pool.submit(self._worker, name, entry)
                    elif next_due is None or entry.due < next_due:
                        next_due = entry.due
                timeout = None if next_due is None else max(0.0, next_due - now)
                self._cond.wait(timeout)

    def _worker(self, name: str, entry: _Entry) -> None:
        try:
            if entry.removed:
                return
            if not entry.lock.acquire(blocking=False):
                # run_once holds the target; its finish re-notifies the dispatcher.
                with self._lock:
                    entry.due = time.monotonic() + 0.05
                return
            try:
                with self._lock:
                    trigger = entry.pending or _Trigger("interval")
                self._run(entry, trigger)
            finally:
                entry.lock.release()
        except Exception:
            logger.exception(f"{name}: worker crashed")
        finally:
            with self._cond:
                entry.submitted = False
                self._cond.notify_all()

    def _run(self, entry: _Entry, trigger: _Trigger) -> RunOutcome:
        """Run one reconciliation; the caller holds entry.lock."""
        with self._lock:
            token = CancelToken()
            entry.token = token
            entry.pending = None
            target = entry.target
            applied = dict(entry.applied_versions)

        run_id = new_run_id()
        logger.info(f"{target.name}: reconciling {target.revision} ({trigger.reason}) [{run_id}]")

        def on_phase(phase: Phase) -> None:
            with self._lock:
                if not entry.removed:
                    entry.state = entry.state.evolve(phase=phase, updated_at=now_utc())

        try:
            outcome = self._reconciler.run(
                target,
                token,
                on_phase=on_phase,
                applied_versions=applied,
                manual=trigger.manual,
            )
        except Exception as exc:
            logger.error(f"{target.name}: unexpected error during run {run_id}: {exc}", exc_info=True)
            outcome = RunOutcome(
                target_name=target.name,
                revision=target.revision,
                error=GitOpsMgrError(f"Unexpected error: {exc}", cause=exc),
            )

        with self._cond:
            entry.token = None
            if not entry.removed:
                self._publish(entry, target, outcome, trigger)
            self._cond.notify_all()
        return outcome

    def _publish(
        self,
        entry: _Entry,
        target: Target,
        outcome: RunOutcome,
        trigger: _Trigger,
    ) -> None:
        """Apply a terminal outcome to the entry (caller holds self._lock)."""
        state = entry.state
        interval = target.interval or self._settings.default_interval
        last_result = outcome.result or state.last_result
        now = now_utc()
        changes: dict = dict(
            sync_status=outcome.sync_status,
            last_result=last_result,
            last_diff_counts=dict(outcome.diff_counts) or state.last_diff_counts,
            last_run_reason=trigger.reason,
            last_content_id=outcome.content_id or state.last_content_id,
            updated_at=now,
        )

        # Settling lasts one run: only the writes of this run carry over.
        entry.applied_versions = outcome.result.applied_versions if outcome.result is not None else {}

        if outcome.error is None:
            delay = interval
            changes.update(
                phase=Phase.WAITING if outcome.synced else Phase.IDLE,
                consecutive_failures=0,
                last_error=None,
                last_error_kind=None,
            )
            if outcome.sync_status is TargetSyncStatus.SYNCED:
                changes["last_synced_revision"] = target.revision
            if outcome.diff is not None and any(e.settling for e in outcome.diff):
                delay = min(interval, self._settings.health_poll_interval)
        elif isinstance(outcome.error, RunCancelledError):
            delay = 0.0 if entry.pending is not None else interval
            changes.update(
                phase=Phase.IDLE,
                last_error=str(outcome.error),
                last_error_kind=error_kind(outcome.error),
            )
            logger.info(f"{target.name}: run cancelled ({outcome.error})")
        else:
            failures = state.consecutive_failures + 1
            delay = self._settings.backoff.delay_for(failures)
            changes.update(
                phase=Phase.ERROR,
                consecutive_failures=failures,
                last_error=str(outcome.error),
                last_error_kind=error_kind(outcome.error),
            )
            logger.warning(
                f"{target.name}: run failed ({error_kind(outcome.error)}), "
                f"failure #{failures}, retry in {delay:g}s"
            )

        if entry.pending is not None:
            delay = 0.0
        entry.due = time.monotonic() + delay
        changes["next_eligible_at"] = after(delay, start=now)
        entry.state = state.evolve(**changes)

    def _start_watch(self, entry: _Entry) -> None:
        selector = selector_for(entry.target, self._settings.label_key)
        name = entry.target.name
        stop = threading.Event()

        def loop() -> None:
            while not stop.is_set() and not entry.removed and self._running:
                try:
                    stream = self._reconciler.destination.watch(selector)
                except Exception as exc:
                    logger.warning(f"{name}: watch failed to start: {exc}")
                    stop.wait(1.0)
                    continue
                with self._lock:
                    if stop.is_set() or entry.removed:
                        stream.close()
                        return
                    entry.watch = stream
                try:
                    for event in stream:
                        if stop.is_set() or entry.removed:
                            break
                        try:
                            self.request_sync(
                                name, f"drift: {event.type.value} {event.identity}"
                            )
                        except InvalidStateError:
                            return
                except Exception as exc:
                    logger.warning(f"{name}: watch interrupted: {exc}")
                    stop.wait(1.0)
                finally:
                    stream.close()

        thread = threading.Thread(target=loop, name=f"gitopsmgr-watch-{name}", daemon=True)
        entry.watch_thread = thread
        thread.stop_event = stop  # type: ignore[attr-defined]
        thread.start()

    def _stop_watch(self, entry: _Entry) -> Optional[threading.Thread]:
        thread = entry.watch_thread
        if thread is not None:
            thread.stop_event.set()  # type: ignore[attr-defined]
        if entry.watch is not None:
            entry.watch.close()
        entry.watch = None
        entry.watch_thread = None
        return thread
