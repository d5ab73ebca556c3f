import threading
import time
import unittest
from datetime import timedelta

from gitopsmgr.config import ManagerSettings
from gitopsmgr.errors import (
    DestinationUnreachableError,
    InvalidArgumentError,
    InvalidStateError,
    RunCancelledError,
)
from gitopsmgr.local import InMemoryDestination, InMemorySource
from gitopsmgr.models import (
    Destination,
    ObjectIdentity,
    Phase,
    RetryPolicy,
    SyncPolicy,
    Target,
    TargetSyncStatus,
)
from gitopsmgr.reconciler import Reconciler, RunOutcome
from gitopsmgr.scheduler import ReconciliationScheduler

LABEL = "gitopsmgr.io/target"
REPO = "https://git.example.com/apps.git"
DEP_ID = ObjectIdentity("Deployment", "app", "web")
FAST_RETRY = RetryPolicy(limit=0, base_delay=0.0)


def _dep(replicas: int) -> dict:
    return {"kind": "Deployment", "metadata": {"name": "web"}, "spec": {"replicas": replicas}}


def _target(name: str = "web", revision: str = "main", path: str = "apps/web", **policy) -> Target:
    policy.setdefault("retry", FAST_RETRY)
    return Target(
        name=name,
        repo_url=REPO,
        revision=revision,
        path=path,
        destination=Destination(cluster="prod", namespace="app"),
        policy=SyncPolicy(**policy),
        interval=3600,
    )


def _wait_for(predicate, timeout: float = 5.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


def _watch_threads(name: str) -> list:
    return [t for t in threading.enumerate() if t.name == f"gitopsmgr-watch-{name}" and t.is_alive()]


class _FakeReconciler:
    """Stands in for Reconciler; `body` decides what each run does."""

    def __init__(self, body=None) -> None:
        self.settings = ManagerSettings(workers=4)
        self.destination = InMemoryDestination()
        self.body = body
        self.runs = 0
        self.active = 0
        self.max_active = 0
        self._lock = threading.Lock()

    def run(self, target, token, *, on_phase=None, applied_versions=None, manual=False):
        with self._lock:
            self.runs += 1
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        try:
            if on_phase is not None:
                on_phase(Phase.FETCHING)
            if self.body is not None:
                return self.body(target, token)
            return RunOutcome(
                target_name=target.name,
                revision=target.revision,
                sync_status=TargetSyncStatus.SYNCED,
            )
        finally:
            with self._lock:
                self.active -= 1


def _real_scheduler(**settings):
    source = InMemorySource()
    dest = InMemoryDestination()
    settings.setdefault("health_poll_interval", 0.02)
    settings.setdefault("backoff", RetryPolicy(limit=0, base_delay=5.0, factor=2.0))
    reconciler = Reconciler(source, dest, ManagerSettings(**settings))
    return source, dest, ReconciliationScheduler(reconciler)


class TestSchedulerRegistry(unittest.TestCase):
    def test_register_and_initial_state(self) -> None:
        scheduler = ReconciliationScheduler(_FakeReconciler())
        scheduler.register(_target())

        state = scheduler.get_state("web")
        self.assertEqual(state.phase, Phase.IDLE)
        self.assertEqual(state.sync_status, TargetSyncStatus.UNKNOWN)
        self.assertEqual(state.consecutive_failures, 0)
        self.assertIsNone(scheduler.get_last_result("web"))
        self.assertEqual([t.name for t in scheduler.targets()], ["web"])

    def test_register_duplicate_name(self) -> None:
        scheduler = ReconciliationScheduler(_FakeReconciler())
        scheduler.register(_target())
        with self.assertRaises(InvalidStateError):
            scheduler.register(_target(path="apps/other"))

    def test_register_duplicate_binding(self) -> None:
        scheduler = ReconciliationScheduler(_FakeReconciler())
        scheduler.register(_target())
        with self.assertRaises(InvalidArgumentError):
            scheduler.register(_target(name="web-copy"))

    def test_update_rejects_identity_change(self) -> None:
        scheduler = ReconciliationScheduler(_FakeReconciler())
        scheduler.register(_target())
        with self.assertRaises(InvalidArgumentError):
            scheduler.update(_target(path="apps/moved"))

    def test_deregister(self) -> None:
        scheduler = ReconciliationScheduler(_FakeReconciler())
        scheduler.register(_target())
        scheduler.deregister("web")

        self.assertEqual(scheduler.list_states(), [])
        with self.assertRaises(InvalidStateError):
            scheduler.get_state("web")
        with self.assertRaises(InvalidStateError):
            scheduler.request_sync("web")

    def test_list_states_sorted(self) -> None:
        scheduler = ReconciliationScheduler(_FakeReconciler())
        scheduler.register(_target(name="b", path="apps/b"))
        scheduler.register(_target(name="a", path="apps/a"))
        self.assertEqual([s.target_name for s in scheduler.list_states()], ["a", "b"])


class TestSchedulerRuns(unittest.TestCase):
    def test_run_once_success(self) -> None:
        source, dest, scheduler = _real_scheduler()
        source.push(REPO, "main", "apps/web", [_dep(3)])
        scheduler.register(_target())

        outcome = scheduler.run_once("web")

        self.assertTrue(outcome.synced)
        state = scheduler.get_state("web")
        self.assertEqual(state.phase, Phase.WAITING)
        self.assertEqual(state.sync_status, TargetSyncStatus.SYNCED)
        self.assertEqual(state.last_synced_revision, "main")
        self.assertEqual(state.consecutive_failures, 0)
        self.assertIsNone(state.last_error)
        self.assertEqual(state.next_eligible_at - state.updated_at, timedelta(seconds=3600))
        self.assertIs(scheduler.get_last_result("web"), outcome.result)
        self.assertEqual(dest.object(DEP_ID)["spec"]["replicas"], 3)

    def test_removed_object_is_recreated_after_one_settling_run(self) -> None:
        source, dest, scheduler = _real_scheduler()
        source.push(REPO, "main", "apps/web", [_dep(3)])
        scheduler.register(_target())
        scheduler.run_once("web")
        dest.remove(DEP_ID)

        grace = scheduler.run_once("web")
        state = scheduler.get_state("web")
        self.assertTrue(grace.diff.get(DEP_ID).settling)
        self.assertEqual(state.sync_status, TargetSyncStatus.OUT_OF_SYNC)
        self.assertEqual(state.next_eligible_at - state.updated_at, timedelta(seconds=0.02))

        outcome = scheduler.run_once("web")
        self.assertTrue(outcome.synced)
        self.assertFalse(outcome.diff.get(DEP_ID).settling)
        self.assertEqual(scheduler.get_state("web").sync_status, TargetSyncStatus.SYNCED)
        self.assertEqual(dest.object(DEP_ID)["spec"]["replicas"], 3)

    def test_settling_does_not_survive_a_failed_run(self) -> None:
        source, dest, scheduler = _real_scheduler()
        source.push(REPO, "main", "apps/web", [_dep(3)])
        scheduler.register(_target())
        scheduler.run_once("web")
        dest.remove(DEP_ID)
        dest.fail_get(DestinationUnreachableError("connection reset"))

        failed = scheduler.run_once("web")
        self.assertIsInstance(failed.error, DestinationUnreachableError)

        outcome = scheduler.run_once("web")
        self.assertTrue(outcome.synced)
        self.assertIsNotNone(dest.object(DEP_ID))

    def test_transient_observe_failures_are_retried(self) -> None:
        source, dest, scheduler = _real_scheduler()
        source.push(REPO, "main", "apps/web", [_dep(3)])
        scheduler.register(_target(retry=RetryPolicy(limit=5, base_delay=0.0)))
        dest.fail_get(DestinationUnreachableError("connection reset"), times=3)

        outcome = scheduler.run_once("web")

        self.assertIsNone(outcome.error)
        self.assertTrue(outcome.synced)
        state = scheduler.get_state("web")
        self.assertNotEqual(state.phase, Phase.ERROR)
        self.assertEqual(state.consecutive_failures, 0)
        self.assertIsNone(state.last_error)
        self.assertEqual(dest.object(DEP_ID)["spec"]["replicas"], 3)

    def test_failures_back_off_then_reset(self) -> None:
        source, _, scheduler = _real_scheduler()
        scheduler.register(_target())

        scheduler.run_once("web")
        state = scheduler.get_state("web")
        self.assertEqual(state.phase, Phase.ERROR)
        self.assertEqual(state.consecutive_failures, 1)
        self.assertEqual(state.last_error_kind, "RevisionNotFound")
        self.assertEqual(state.next_eligible_at - state.updated_at, timedelta(seconds=5))

        scheduler.run_once("web")
        state = scheduler.get_state("web")
        self.assertEqual(state.consecutive_failures, 2)
        self.assertEqual(state.next_eligible_at - state.updated_at, timedelta(seconds=10))

        source.push(REPO, "main", "apps/web", [_dep(1)])
        scheduler.run_once("web")
        state = scheduler.get_state("web")
        self.assertEqual(state.consecutive_failures, 0)
        self.assertIsNone(state.last_error)
        self.assertEqual(state.sync_status, TargetSyncStatus.SYNCED)

    def test_automated_disabled_waits_for_manual(self) -> None:
        source, dest, scheduler = _real_scheduler()
        source.push(REPO, "main", "apps/web", [_dep(1)])
        scheduler.register(_target(automated=False))

        scheduler.run_once("web", "poll", manual=False)
        state = scheduler.get_state("web")
        self.assertEqual(state.phase, Phase.IDLE)
        self.assertEqual(state.sync_status, TargetSyncStatus.OUT_OF_SYNC)
        self.assertIsNone(state.last_synced_revision)
        self.assertEqual(dest.calls, [])

        scheduler.run_once("web", "button", manual=True)
        state = scheduler.get_state("web")
        self.assertEqual(state.sync_status, TargetSyncStatus.SYNCED)
        self.assertEqual(state.last_run_reason, "button")

    def test_busy_target_coalesces(self) -> None:
        entered = threading.Event()
        release = threading.Event()

        def body(target, token):
            entered.set()
            release.wait(5)
            return RunOutcome(target.name, target.revision, sync_status=TargetSyncStatus.SYNCED)

        reconciler = _FakeReconciler(body)
        scheduler = ReconciliationScheduler(reconciler)
        scheduler.register(_target())

        worker = threading.Thread(target=scheduler.run_once, args=("web",))
        worker.start()
        self.assertTrue(entered.wait(5))

        self.assertIsNone(scheduler.run_once("web", "webhook"))
        self.assertIsNone(scheduler.run_once("web", "webhook"))
        self.assertEqual(scheduler.get_state("web").phase, Phase.FETCHING)

        release.set()
        worker.join(5)
        self.assertEqual(reconciler.runs, 1)
        # The coalesced request makes the target due again right away.
        state = scheduler.get_state("web")
        self.assertEqual(state.next_eligible_at, state.updated_at)

    def test_new_revision_cancels_in_flight_run(self) -> None:
        entered = threading.Event()

        def body(target, token):
            entered.set()
            try:
                token.sleep(5)
            except RunCancelledError as exc:
                return RunOutcome(target.name, target.revision, error=exc)
            return RunOutcome(target.name, target.revision, sync_status=TargetSyncStatus.SYNCED)

        scheduler = ReconciliationScheduler(_FakeReconciler(body))
        scheduler.register(_target())
        worker = threading.Thread(target=scheduler.run_once, args=("web",))
        worker.start()
        self.assertTrue(entered.wait(5))

        scheduler.update(_target(revision="v2"))
        worker.join(5)
        self.assertFalse(worker.is_alive())

        state = scheduler.get_state("web")
        self.assertEqual(state.phase, Phase.IDLE)
        self.assertEqual(state.last_error_kind, "Cancelled")
        self.assertEqual(state.consecutive_failures, 0)
        self.assertEqual(state.next_eligible_at, state.updated_at)
        self.assertEqual(scheduler.get_target("web").revision, "v2")

    def test_unexpected_exception_is_recorded(self) -> None:
        def body(target, token):
            raise RuntimeError("boom")

        scheduler = ReconciliationScheduler(_FakeReconciler(body))
        scheduler.register(_target())

        outcome = scheduler.run_once("web")

        self.assertIn("boom", str(outcome.error))
        state = scheduler.get_state("web")
        self.assertEqual(state.phase, Phase.ERROR)
        self.assertEqual(state.consecutive_failures, 1)


class TestSchedulerLoop(unittest.TestCase):
    def test_start_twice_raises(self) -> None:
        scheduler = ReconciliationScheduler(_FakeReconciler())
        scheduler.start()
        try:
            with self.assertRaises(InvalidStateError):
                scheduler.start()
        finally:
            scheduler.stop()
        self.assertFalse(scheduler.running)

    def test_registered_targets_reach_synced(self) -> None:
        source, dest, scheduler = _real_scheduler()
        source.push(REPO, "main", "apps/web", [_dep(2)])
        scheduler.register(_target())

        scheduler.start()
        try:
            ok = _wait_for(lambda: scheduler.get_state("web").sync_status is TargetSyncStatus.SYNCED)
        finally:
            scheduler.stop()

        self.assertTrue(ok)
        self.assertEqual(dest.object(DEP_ID)["spec"]["replicas"], 2)

    def test_request_sync_runs_promptly(self) -> None:
        reconciler = _FakeReconciler()
        scheduler = ReconciliationScheduler(reconciler)
        scheduler.register(_target())
        scheduler.start()
        try:
            self.assertTrue(_wait_for(lambda: reconciler.runs == 1))
            scheduler.request_sync("web", "webhook")
            self.assertTrue(_wait_for(lambda: reconciler.runs == 2))
            self.assertTrue(_wait_for(lambda: scheduler.get_state("web").last_run_reason == "webhook"))
        finally:
            scheduler.stop()

    def test_at_most_one_run_per_target(self) -> None:
        def body(target, token):
            time.sleep(0.02)
            return RunOutcome(target.name, target.revision, sync_status=TargetSyncStatus.SYNCED)

        reconciler = _FakeReconciler(body)
        scheduler = ReconciliationScheduler(reconciler)
        scheduler.register(_target())
        scheduler.start()
        try:
            threads = [
                threading.Thread(target=scheduler.request_sync, args=("web", f"hook-{i}"))
                for i in range(10)
            ]
            threads += [threading.Thread(target=scheduler.run_once, args=("web",)) for _ in range(3)]
            for t in threads:
                t.start()
            for t in threads:
                t.join(5)
            _wait_for(lambda: reconciler.active == 0 and reconciler.runs >= 2)
        finally:
            scheduler.stop()

        self.assertEqual(reconciler.max_active, 1)
        # Ten requests coalesce into far fewer runs.
        self.assertLess(reconciler.runs, 10)

    def test_self_heal_reverts_out_of_band_change(self) -> None:
        source, dest, scheduler = _real_scheduler()
        source.push(REPO, "main", "apps/web", [_dep(3)])
        scheduler.register(_target(self_heal=True))

        scheduler.start()
        try:
            self.assertTrue(
                _wait_for(lambda: scheduler.get_state("web").sync_status is TargetSyncStatus.SYNCED)
            )
            drifted = dest.object(DEP_ID)
            drifted["spec"]["replicas"] = 1
            dest.put(drifted)

            healed = _wait_for(lambda: (dest.object(DEP_ID) or {}).get("spec", {}).get("replicas") == 3)
        finally:
            scheduler.stop()

        self.assertTrue(healed)

    def test_self_heal_recreates_removed_object(self) -> None:
        source, dest, scheduler = _real_scheduler()
        source.push(REPO, "main", "apps/web", [_dep(3)])
        scheduler.register(_target(self_heal=True))

        scheduler.start()
        try:
            self.assertTrue(
                _wait_for(lambda: scheduler.get_state("web").sync_status is TargetSyncStatus.SYNCED)
            )
            dest.remove(DEP_ID)
            recreated = _wait_for(lambda: dest.object(DEP_ID) is not None)
        finally:
            scheduler.stop()

        self.assertTrue(recreated)

    def test_stop_joins_watch_threads(self) -> None:
        source, _, scheduler = _real_scheduler()
        source.push(REPO, "main", "apps/web", [_dep(1)])
        scheduler.register(_target(self_heal=True))

        scheduler.start()
        self.assertTrue(_wait_for(lambda: _watch_threads("web")))
        scheduler.stop()

        self.assertEqual(_watch_threads("web"), [])

    def test_deregister_while_running(self) -> None:
        entered = threading.Event()
        finished = threading.Event()

        def body(target, token):
            entered.set()
            try:
                token.sleep(5)
            except RunCancelledError as exc:
                finished.set()
                return RunOutcome(target.name, target.revision, error=exc)
            return RunOutcome(target.name, target.revision)

        scheduler = ReconciliationScheduler(_FakeReconciler(body))
        scheduler.register(_target())
        scheduler.start()
        try:
            self.assertTrue(entered.wait(5))
            scheduler.deregister("web")
            self.assertTrue(finished.wait(5))
        finally:
            scheduler.stop()
        self.assertEqual(scheduler.targets(), [])


if __name__ == "__main__":
    unittest.main()
