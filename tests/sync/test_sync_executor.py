import threading
import time
import unittest

from gitopsmgr.diff import compute_diff
from gitopsmgr.errors import DestinationUnreachableError, InvalidArgumentError
from gitopsmgr.local import InMemoryDestination
from gitopsmgr.models import (
    DesiredStateSnapshot,
    LiveStateSnapshot,
    ManifestObject,
    ObjectIdentity,
    OperationStatus,
    RetryPolicy,
    SyncPolicy,
    SyncStatus,
)
from gitopsmgr.plan import Action, PlanOperation, SyncPlan, build_plan
from gitopsmgr.sync import SyncExecutor
from gitopsmgr.util.cancel import CancelToken
from gitopsmgr.util.time import now_utc

LABEL = "gitopsmgr.io/target"
FAST_RETRY = RetryPolicy(limit=2, base_delay=0.0)


def _obj(kind: str, name: str, namespace: str = "app", owner: str = "web", **fields) -> ManifestObject:
    meta = {"name": name, "labels": {LABEL: owner}}
    if namespace:
        meta["namespace"] = namespace
    body = {"kind": kind, "metadata": meta}
    body.update(fields)
    return ManifestObject(body)


def _setup(desired, live, policy):
    dest = InMemoryDestination()
    for o in live:
        dest.put(o.to_dict())
    diff = compute_diff(
        DesiredStateSnapshot.build("web", desired, revision="main", content_id="c1"),
        LiveStateSnapshot.build("web", live),
        label_key=LABEL,
        owner="web",
    )
    plan = build_plan(diff, policy, target_name="web", label_key=LABEL)
    return dest, plan


def _executor(dest, **kwargs) -> SyncExecutor:
    kwargs.setdefault("health_poll_interval", 0.02)
    return SyncExecutor(dest, label_key=LABEL, **kwargs)


def _by_identity(result):
    return {r.identity: r for r in result.results}


class _HttpError(Exception):
    def __init__(self, status: int) -> None:
        super().__init__(f"HTTP {status}")
        self.status = status


class _TimedDestination(InMemoryDestination):
    """Records (identity, start, end) per apply."""

    def __init__(self) -> None:
        super().__init__(apply_delay=0.05)
        self.spans: list[tuple[ObjectIdentity, float, float]] = []
        self._spans_lock = threading.Lock()

    def apply(self, obj):
        start = time.monotonic()
        stored = super().apply(obj)
        end = time.monotonic()
        with self._spans_lock:
            self.spans.append((ManifestObject(obj).identity, start, end))
        return stored


class TestSyncExecutor(unittest.TestCase):
    def test_update_applies_desired_object(self) -> None:
        policy = SyncPolicy(retry=FAST_RETRY)
        dest, plan = _setup(
            [_obj("Deployment", "web", spec={"replicas": 3})],
            [_obj("Deployment", "web", spec={"replicas": 1})],
            policy,
        )
        result = _executor(dest).execute(plan, policy, CancelToken())

        self.assertEqual(result.status, SyncStatus.SUCCEEDED)
        self.assertEqual(result.plan_id, plan.plan_id)
        self.assertEqual(result.diff_hash, plan.diff_hash)
        op_result = result.results[0]
        self.assertEqual(op_result.status, OperationStatus.APPLIED)
        self.assertEqual(op_result.attempts, 1)
        self.assertEqual(op_result.applied_generation, 2)
        stored = dest.object(ObjectIdentity("Deployment", "app", "web"))
        self.assertEqual(stored["spec"]["replicas"], 3)
        self.assertEqual(result.summary["Applied"], 1)

    def test_groups_are_barriers(self) -> None:
        dest = _TimedDestination()
        desired = [
            _obj("Namespace", "app", namespace=""),
            _obj("ConfigMap", "a", data={"k": "1"}),
            _obj("ConfigMap", "b", data={"k": "2"}),
            _obj("Deployment", "web", spec={"replicas": 1}),
        ]
        policy = SyncPolicy(retry=FAST_RETRY)
        diff = compute_diff(
            DesiredStateSnapshot.build("web", desired, revision="main", content_id="c1"),
            LiveStateSnapshot.build("web", []),
            label_key=LABEL,
            owner="web",
        )
        plan = build_plan(diff, policy, target_name="web", label_key=LABEL)
        self.assertEqual([len(g) for g in plan.waves], [1, 2, 1])

        result = _executor(dest).execute(plan, policy, CancelToken())
        self.assertEqual(result.status, SyncStatus.SUCCEEDED)

        spans = {identity.kind + "/" + identity.name: (start, end) for identity, start, end in dest.spans}
        self.assertLessEqual(spans["Namespace/app"][1], spans["ConfigMap/a"][0])
        self.assertLessEqual(spans["Namespace/app"][1], spans["ConfigMap/b"][0])
        self.assertLessEqual(max(spans["ConfigMap/a"][1], spans["ConfigMap/b"][1]), spans["Deployment/web"][0])

    def test_deletes_run_after_writes(self) -> None:
        policy = SyncPolicy(prune=True, retry=FAST_RETRY)
        old = _obj("ConfigMap", "old", data={"k": "1"})
        new = _obj("ConfigMap", "new", data={"k": "1"})
        dest, plan = _setup([new], [old], policy)

        result = _executor(dest).execute(plan, policy, CancelToken())

        self.assertEqual(result.status, SyncStatus.SUCCEEDED)
        self.assertEqual(
            [c for c in dest.calls if c[0] in ("apply", "delete")],
            [("apply", new.identity), ("delete", old.identity)],
        )
        self.assertEqual(dest.identities(), [new.identity])

    def test_failure_blocks_later_waves(self) -> None:
        policy = SyncPolicy(retry=FAST_RETRY)
        cm = _obj("ConfigMap", "config", data={"k": "1"})
        dep = _obj("Deployment", "web", spec={"replicas": 1})
        dest, plan = _setup([cm, dep], [], policy)
        dest.reject(cm.identity, "bad data")

        result = _executor(dest).execute(plan, policy, CancelToken())

        self.assertEqual(result.status, SyncStatus.FAILED)
        by_id = _by_identity(result)
        self.assertEqual(by_id[cm.identity].status, OperationStatus.FAILED)
        self.assertEqual(by_id[cm.identity].error_type, "ApplyRejected")
        self.assertEqual(by_id[dep.identity].status, OperationStatus.SKIPPED)
        self.assertEqual(by_id[dep.identity].error_type, "Blocked")
        self.assertNotIn(("apply", dep.identity), dest.calls)

    def test_sibling_failure_does_not_stop_group(self) -> None:
        policy = SyncPolicy(retry=FAST_RETRY)
        a = _obj("ConfigMap", "a", data={"k": "1"})
        b = _obj("ConfigMap", "b", data={"k": "2"})
        dest, plan = _setup([a, b], [], policy)
        dest.reject(a.identity)

        result = _executor(dest).execute(plan, policy, CancelToken())

        by_id = _by_identity(result)
        self.assertEqual(by_id[a.identity].status, OperationStatus.FAILED)
        self.assertEqual(by_id[b.identity].status, OperationStatus.APPLIED)
        self.assertEqual(result.status, SyncStatus.FAILED)
        self.assertIsNotNone(dest.object(b.identity))

    def test_continue_on_error_runs_later_waves(self) -> None:
        policy = SyncPolicy(continue_on_error=True, retry=FAST_RETRY)
        cm = _obj("ConfigMap", "config", data={"k": "1"})
        dep = _obj("Deployment", "web", spec={"replicas": 1})
        dest, plan = _setup([cm, dep], [], policy)
        dest.reject(cm.identity)

        result = _executor(dest).execute(plan, policy, CancelToken())

        self.assertEqual(result.status, SyncStatus.PARTIALLY_SUCCEEDED)
        self.assertEqual(_by_identity(result)[dep.identity].status, OperationStatus.APPLIED)

    def test_prune_skipped_after_failure(self) -> None:
        policy = SyncPolicy(prune=True, continue_on_error=True, retry=FAST_RETRY)
        new = _obj("ConfigMap", "new", data={"k": "1"})
        old = _obj("ConfigMap", "old", data={"k": "1"})
        dest, plan = _setup([new], [old], policy)
        dest.reject(new.identity)

        result = _executor(dest).execute(plan, policy, CancelToken())

        delete_result = _by_identity(result)[old.identity]
        self.assertEqual(delete_result.status, OperationStatus.SKIPPED)
        self.assertEqual(delete_result.error_type, "Blocked")
        self.assertIsNotNone(dest.object(old.identity))

    def test_prune_after_failure_when_allowed(self) -> None:
        policy = SyncPolicy(
            prune=True,
            continue_on_error=True,
            prune_after_failure=True,
            retry=FAST_RETRY,
        )
        new = _obj("ConfigMap", "new", data={"k": "1"})
        old = _obj("ConfigMap", "old", data={"k": "1"})
        dest, plan = _setup([new], [old], policy)
        dest.reject(new.identity)

        result = _executor(dest).execute(plan, policy, CancelToken())

        self.assertEqual(_by_identity(result)[old.identity].status, OperationStatus.APPLIED)
        self.assertIsNone(dest.object(old.identity))
        self.assertEqual(result.status, SyncStatus.PARTIALLY_SUCCEEDED)

    def test_transient_failure_is_retried(self) -> None:
        policy = SyncPolicy(retry=FAST_RETRY)
        cm = _obj("ConfigMap", "config", data={"k": "1"})
        dest, plan = _setup([cm], [], policy)
        dest.fail_apply(cm.identity, DestinationUnreachableError("connection reset"))

        result = _executor(dest).execute(plan, policy, CancelToken())

        op_result = result.results[0]
        self.assertEqual(op_result.status, OperationStatus.APPLIED)
        self.assertEqual(op_result.attempts, 2)

    def test_transient_failure_exhausts_retries(self) -> None:
        policy = SyncPolicy(retry=RetryPolicy(limit=1, base_delay=0.0))
        cm = _obj("ConfigMap", "config", data={"k": "1"})
        dest, plan = _setup([cm], [], policy)
        dest.fail_apply(cm.identity, ConnectionResetError("reset"), times=5)

        result = _executor(dest).execute(plan, policy, CancelToken())

        op_result = result.results[0]
        self.assertEqual(op_result.status, OperationStatus.FAILED)
        self.assertEqual(op_result.error_type, "DestinationUnreachable")
        self.assertEqual(op_result.attempts, 2)

    def test_http_errors_are_classified(self) -> None:
        policy = SyncPolicy(retry=FAST_RETRY)
        a = _obj("ConfigMap", "a", data={"k": "1"})
        b = _obj("ConfigMap", "b", data={"k": "2"})
        dest, plan = _setup([a, b], [], policy)
        dest.fail_apply(a.identity, _HttpError(409))
        dest.fail_apply(b.identity, _HttpError(422), times=3)

        result = _executor(dest).execute(plan, policy, CancelToken())

        by_id = _by_identity(result)
        self.assertEqual(by_id[a.identity].status, OperationStatus.APPLIED)
        self.assertEqual(by_id[a.identity].attempts, 2)
        self.assertEqual(by_id[b.identity].status, OperationStatus.FAILED)
        self.assertEqual(by_id[b.identity].error_type, "ApplyRejected")
        self.assertEqual(by_id[b.identity].attempts, 1)

    def test_precondition_failure_skips(self) -> None:
        policy = SyncPolicy(retry=FAST_RETRY)
        live = _obj("Deployment", "web", spec={"replicas": 1})
        dest, plan = _setup([_obj("Deployment", "web", spec={"replicas": 3})], [live], policy)
        dest.put(_obj("Deployment", "web", owner="someone-else", spec={"replicas": 1}).to_dict())

        result = _executor(dest).execute(plan, policy, CancelToken())

        op_result = result.results[0]
        self.assertEqual(op_result.status, OperationStatus.SKIPPED)
        self.assertEqual(op_result.error_type, "PreconditionFailed")
        self.assertEqual(result.status, SyncStatus.SUCCEEDED)
        self.assertEqual(dest.object(live.identity)["spec"]["replicas"], 1)

    def test_delete_of_absent_object_is_applied(self) -> None:
        policy = SyncPolicy(prune=True, retry=FAST_RETRY)
        old = _obj("ConfigMap", "old", data={"k": "1"})
        dest, plan = _setup([], [old], policy)
        dest.remove(old.identity)

        result = _executor(dest).execute(plan, policy, CancelToken())

        self.assertEqual(result.results[0].action, Action.DELETE.value)
        self.assertEqual(result.results[0].status, OperationStatus.APPLIED)
        self.assertNotIn(("delete", old.identity), dest.calls)

    def test_wait_for_health(self) -> None:
        policy = SyncPolicy(wait_for_health=True, health_timeout=2.0, retry=FAST_RETRY)
        dep = _obj("Deployment", "web", spec={"replicas": 2})
        dest, plan = _setup([dep], [], policy)
        dest.hold_unready(dep.identity)
        timer = threading.Timer(0.1, dest.hold_unready, args=(dep.identity, False))
        timer.start()
        try:
            result = _executor(dest).execute(plan, policy, CancelToken())
        finally:
            timer.cancel()

        self.assertEqual(result.status, SyncStatus.SUCCEEDED)
        self.assertEqual(result.results[0].status, OperationStatus.APPLIED)

    def test_health_timeout_fails_and_blocks(self) -> None:
        policy = SyncPolicy(wait_for_health=True, health_timeout=0.2, retry=FAST_RETRY)
        dep = _obj("Deployment", "web", spec={"replicas": 2})
        ing = _obj("CustomThing", "edge", spec={"host": "x"})
        dest, plan = _setup([dep, ing], [], policy)
        dest.hold_unready(dep.identity)

        result = _executor(dest).execute(plan, policy, CancelToken())

        by_id = _by_identity(result)
        self.assertEqual(by_id[dep.identity].status, OperationStatus.FAILED)
        self.assertEqual(by_id[dep.identity].error_type, "HealthTimeout")
        self.assertEqual(by_id[ing.identity].error_type, "Blocked")
        self.assertEqual(result.status, SyncStatus.FAILED)
        # The object itself was written.
        self.assertIsNotNone(dest.object(dep.identity))

    def test_cancelled_token_aborts(self) -> None:
        policy = SyncPolicy(retry=FAST_RETRY)
        dest, plan = _setup([_obj("ConfigMap", "c", data={"k": "1"})], [], policy)
        token = CancelToken()
        token.cancel("target removed")

        result = _executor(dest).execute(plan, policy, token)

        self.assertEqual(result.status, SyncStatus.ABORTED)
        self.assertIn("target removed", result.abort_reason)
        self.assertTrue(all(r.status is OperationStatus.SKIPPED for r in result.results))
        self.assertEqual(dest.calls, [])

    def test_expired_deadline_aborts(self) -> None:
        policy = SyncPolicy(retry=FAST_RETRY)
        dest, plan = _setup([_obj("ConfigMap", "c", data={"k": "1"})], [], policy)
        token = CancelToken().child(phase="sync", timeout=0.0)

        result = _executor(dest).execute(plan, policy, token)

        self.assertEqual(result.status, SyncStatus.ABORTED)
        self.assertIn("PhaseTimeout", result.abort_reason)

    def test_malformed_plan_raises(self) -> None:
        cm = _obj("ConfigMap", "c", data={"k": "1"})
        op = PlanOperation(op_id="op_1", seq=0, action=Action.CREATE, identity=cm.identity, obj=cm)
        executor = _executor(InMemoryDestination())
        policy = SyncPolicy()

        unknown = SyncPlan("plan_1", "web", now_utc(), [op], [["op_1", "op_2"]], "h")
        with self.assertRaises(InvalidArgumentError):
            executor.execute(unknown, policy, CancelToken())

        missing = SyncPlan("plan_2", "web", now_utc(), [op], [], "h")
        with self.assertRaises(InvalidArgumentError):
            executor.execute(missing, policy, CancelToken())

        no_obj = PlanOperation(op_id="op_3", seq=0, action=Action.UPDATE, identity=cm.identity)
        broken = SyncPlan("plan_3", "web", now_utc(), [no_obj], [["op_3"]], "h")
        with self.assertRaises(InvalidArgumentError):
            executor.execute(broken, policy, CancelToken())

    def test_max_workers_must_be_positive(self) -> None:
        with self.assertRaises(InvalidArgumentError):
            SyncExecutor(InMemoryDestination(), max_workers=0)


if __name__ == "__main__":
    unittest.main()
