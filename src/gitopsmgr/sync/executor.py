"""Sync executor: runs a SyncPlan wave by wave against the destination."""

from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Optional

from gitopsmgr.destination import (
    DestinationClient,
    HealthStatus,
    Selector,
    assess_health,
    http_error_info,
    map_destination_exception,
)
from gitopsmgr.errors import (
    ApplyRejectedError,
    DestinationUnreachableError,
    GitOpsMgrError,
    HealthTimeoutError,
    InvalidArgumentError,
    InvalidStateError,
    NotFoundError,
    PhaseTimeoutError,
    PreconditionFailedError,
    RunCancelledError,
    map_http_error,
)
from gitopsmgr.models import (
    DEFAULT_OWNER_LABEL,
    ManifestObject,
    ObjectIdentity,
    OperationResult,
    OperationStatus,
    SyncPolicy,
    SyncResult,
    SyncStatus,
    summarize_results,
)
from gitopsmgr.plan import Action, PlanOperation, SyncPlan, check_ownership_precondition
from gitopsmgr.util.cancel import CancelToken
from gitopsmgr.util.retry import call_with_retry
from gitopsmgr.util.time import now_utc

logger = logging.getLogger(__name__)

_ABORT_KINDS: frozenset[str] = frozenset({RunCancelledError.kind, PhaseTimeoutError.kind})


@dataclass(frozen=True)
class _OpContext:
    plan: SyncPlan
    policy: SyncPolicy
    token: CancelToken


class SyncExecutor:
    """
    Execute plans wave by wave.

    Policy:
        - Groups (plan.waves) are strict barriers; operations inside a group
          run concurrently and independently.
        - Transient failures retry under policy.retry; other failures are
          terminal for that operation only.
        - A group with a failed operation blocks later groups unless
          policy.continue_on_error. Even then, DELETEs after a failure are
          skipped unless policy.prune_after_failure.
        - Fatal plan errors (malformed plan) raise InvalidArgumentError.
    """

    def __init__(
        self,
        destination: DestinationClient,
        *,
        label_key: str = DEFAULT_OWNER_LABEL,
        max_workers: int = 4,
        health_poll_interval: float = 1.0,
    ) -> None:
        if max_workers < 1:
            raise InvalidArgumentError("max_workers must be >= 1")
        self._destination = destination
        self._label_key = label_key
        self._max_workers = max_workers
        self._health_poll_interval = health_poll_interval

    def execute(self, plan: SyncPlan, policy: SyncPolicy, token: CancelToken) -> SyncResult:
        ops_by_id = _index_operations(plan.operations)
        _validate_waves(plan.waves, ops_by_id)
        for op in plan.operations:
            try:
                op.validate_required_fields()
            except ValueError as exc:
                raise InvalidArgumentError(
                    "Invalid operation: missing required fields",
                    details={"op_id": op.op_id, "action": op.action.value},
                    cause=exc,
                ) from exc

        ctx = _OpContext(plan=plan, policy=policy, token=token)
        started_at = now_utc()
        results: dict[str, OperationResult] = {}
        failed_before = False
        blocked = False
        abort_reason: Optional[str] = None

        for index, group in enumerate(plan.waves):
            if abort_reason is None:
                try:
                    token.check()
                except (RunCancelledError, PhaseTimeoutError) as exc:
                    abort_reason = f"{exc.kind}: {exc}"

            if abort_reason is not None or blocked:
                note = abort_reason or "blocked by failure in an earlier wave"
                for op_id in group:
                    results[op_id] = _skipped_result(ops_by_id[op_id], "Blocked", note)
                continue

            runnable: list[PlanOperation] = []
            for op_id in group:
                op = ops_by_id[op_id]
                if op.action is Action.DELETE and failed_before and not policy.prune_after_failure:
                    results[op_id] = _skipped_result(
                        op, "Blocked", "prune skipped after an earlier failure"
                    )
                    continue
                runnable.append(op)

            logger.info(
                f"{plan.target_name}: group {index + 1}/{len(plan.waves)} "
                f"running {len(runnable)} operation(s)"
            )
            for result in self._run_group(runnable, ctx):
                results[result.op_id] = result

            group_results = [results[op_id] for op_id in group]
            if any(r.error_type in _ABORT_KINDS for r in group_results):
                abort_reason = token.reason or "phase timeout"
            if any(r.status is OperationStatus.FAILED for r in group_results):
                failed_before = True
                if not policy.continue_on_error:
                    blocked = True
                    logger.error(
                        f"{plan.target_name}: group {index + 1} failed, "
                        "not advancing to later waves"
                    )

        ordered = sorted(results.values(), key=lambda r: r.seq)
        status = _overall_status(ordered, aborted=abort_reason is not None, blocked=blocked)
        result = SyncResult(
            plan_id=plan.plan_id,
            target_name=plan.target_name,
            status=status,
            results=ordered,
            started_at=started_at,
            finished_at=now_utc(),
            diff_hash=plan.diff_hash,
            summary=summarize_results(ordered),
            abort_reason=abort_reason,
        )
        logger.info(f"{plan.target_name}: sync {status.value} {result.summary}")
        return result

    # ----------------------------
    # Internals
    # ----------------------------
    def _run_group(self, ops: list[PlanOperation], ctx: _OpContext) -> list[OperationResult]:
        if not ops:
            return []
        if len(ops) == 1 or self._max_workers == 1:
            return [self._run_one(op, ctx) for op in ops]

        workers = min(self._max_workers, len(ops))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="gitopsmgr-op") as pool:
            futures = [pool.submit(self._run_one, op, ctx) for op in ops]
            return [f.result() for f in futures]

    def _run_one(self, op: PlanOperation, ctx: _OpContext) -> OperationResult:
        started_at = now_utc()
        attempts = [0]
        applied_generation: Optional[int] = None

        def counted(func: Any) -> Any:
            def wrapper() -> Any:
                attempts[0] += 1
                return func()

            return wrapper

        try:
            ctx.token.check()
            current: Optional[ManifestObject] = None
            if op.precondition:
                current = self._read_one(op.identity, ctx)
                check_ownership_precondition(op.precondition, current)

            if op.action is Action.DELETE:
                if op.precondition and current is None:
                    logger.info(f"{ctx.plan.target_name}: {op.identity} already absent")
                else:
                    self._delete(op.identity, ctx, counted)
            else:
                if op.obj is None:
                    raise InvalidStateError(
                        "Operation has no object to apply",
                        details={"op_id": op.op_id, "action": op.action.value},
                    )
                body = op.obj.to_dict()
                stored = call_with_retry(
                    counted(lambda: self._destination.apply(body)),
                    policy=ctx.policy.retry,
                    token=ctx.token,
                    map_exception=_map_write_exception,
                    what=f"{ctx.plan.target_name}: {op.action.value} {op.identity}",
                )
                applied_generation = _generation_of(stored)
                if ctx.policy.wait_for_health:
                    self._wait_for_health(op.identity, ctx)

        except PreconditionFailedError as exc:
            logger.warning(f"{ctx.plan.target_name}: skip {op.identity}: {exc}")
            return _skipped_result(op, exc.kind, str(exc), started_at=started_at)
        except (RunCancelledError, PhaseTimeoutError) as exc:
            return _skipped_result(op, exc.kind, str(exc), started_at=started_at)
        except GitOpsMgrError as exc:
            logger.error(f"{ctx.plan.target_name}: {op.action.value} {op.identity} failed: {exc}")
            return _failed_result(op, exc, attempts[0], started_at)

        logger.info(f"{ctx.plan.target_name}: {op.action.value} {op.identity} applied")
        return OperationResult(
            op_id=op.op_id,
            seq=op.seq,
            wave=op.wave,
            action=op.action.value,
            identity=op.identity,
            status=OperationStatus.APPLIED,
            attempts=attempts[0],
            started_at=started_at,
            finished_at=now_utc(),
            applied_generation=applied_generation,
        )

    def _delete(self, identity: ObjectIdentity, ctx: _OpContext, counted: Any) -> None:
        try:
            call_with_retry(
                counted(lambda: self._destination.delete(identity)),
                policy=ctx.policy.retry,
                token=ctx.token,
                map_exception=_map_write_exception,
                what=f"{ctx.plan.target_name}: Delete {identity}",
            )
        except NotFoundError:
            logger.info(f"{ctx.plan.target_name}: {identity} already deleted")

    def _read_one(self, identity: ObjectIdentity, ctx: _OpContext) -> Optional[ManifestObject]:
        selector = Selector(label_key=self._label_key, owner=ctx.plan.target_name)
        point = selector.for_identity(identity)
        raw_objects = call_with_retry(
            lambda: self._destination.get(point),
            policy=ctx.policy.retry,
            token=ctx.token,
            map_exception=map_destination_exception,
            what=f"{ctx.plan.target_name}: read {identity}",
        )
        for raw in raw_objects:
            obj = ManifestObject(raw)
            if obj.identity == identity:
                return obj
        return None

    def _wait_for_health(self, identity: ObjectIdentity, ctx: _OpContext) -> None:
        timeout = ctx.policy.health_timeout
        deadline = time.monotonic() + timeout
        health = HealthStatus.MISSING
        while True:
            health = assess_health(self._read_one(identity, ctx))
            if health is HealthStatus.HEALTHY:
                return
            left = deadline - time.monotonic()
            if left <= 0:
                raise HealthTimeoutError(
                    f"{identity} not healthy after {timeout:g}s (last: {health.value})",
                    details={"identity": str(identity), "health": health.value},
                )
            ctx.token.sleep(min(self._health_poll_interval, left))


def _generation_of(stored: Any) -> Optional[int]:
    if not isinstance(stored, dict):
        return None
    try:
        return ManifestObject(stored).generation
    except (TypeError, ValueError):
        return None


def _map_write_exception(exc: Exception) -> GitOpsMgrError:
    info = http_error_info(exc)
    if info is not None:
        return map_http_error(info, cause=exc)
    if isinstance(exc, (OSError, TimeoutError)):
        return DestinationUnreachableError("Destination unreachable", cause=exc)
    return ApplyRejectedError(f"Destination rejected the request: {exc}", cause=exc)


def _index_operations(operations: list[PlanOperation]) -> dict[str, PlanOperation]:
    ops_by_id: dict[str, PlanOperation] = {}
    for op in operations:
        if op.op_id in ops_by_id:
            raise InvalidArgumentError("Duplicate op_id in plan", details={"op_id": op.op_id})
        ops_by_id[op.op_id] = op
    return ops_by_id


def _validate_waves(waves: list[list[str]], ops_by_id: dict[str, PlanOperation]) -> None:
    seen: set[str] = set()
    for group in waves:
        for op_id in group:
            if op_id not in ops_by_id:
                raise InvalidArgumentError(
                    "waves contain unknown op_id",
                    details={"op_id": op_id},
                )
            if op_id in seen:
                raise InvalidArgumentError(
                    "waves list an op_id twice",
                    details={"op_id": op_id},
                )
            seen.add(op_id)
    missing = set(ops_by_id) - seen
    if missing:
        raise InvalidArgumentError(
            "operations missing from waves",
            details={"op_ids": sorted(missing)},
        )


def _overall_status(
    results: list[OperationResult],
    *,
    aborted: bool,
    blocked: bool,
) -> SyncStatus:
    if aborted:
        return SyncStatus.ABORTED
    failed = any(r.status is OperationStatus.FAILED for r in results)
    if not failed:
        return SyncStatus.SUCCEEDED
    applied = any(r.status is OperationStatus.APPLIED for r in results)
    if blocked or not applied:
        return SyncStatus.FAILED
    return SyncStatus.PARTIALLY_SUCCEEDED


def _skipped_result(
    op: PlanOperation,
    error_type: str,
    message: str,
    *,
    started_at: Any = None,
) -> OperationResult:
    return OperationResult(
        op_id=op.op_id,
        seq=op.seq,
        wave=op.wave,
        action=op.action.value,
        identity=op.identity,
        status=OperationStatus.SKIPPED,
        error_type=error_type,
        error_message=message,
        started_at=started_at,
        finished_at=now_utc(),
    )


def _failed_result(
    op: PlanOperation,
    exc: GitOpsMgrError,
    attempts: int,
    started_at: Any,
) -> OperationResult:
    return OperationResult(
        op_id=op.op_id,
        seq=op.seq,
        wave=op.wave,
        action=op.action.value,
        identity=op.identity,
        status=OperationStatus.FAILED,
        attempts=attempts,
        error_type=exc.kind,
        error_message=str(exc),
        error_details=getattr(exc, "details", None),
        started_at=started_at,
        finished_at=now_utc(),
    )
