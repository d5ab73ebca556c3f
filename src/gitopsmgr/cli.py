"""
CLI interface for gitopsmgr.

Commands:
    validate  load a config (defaults + local override) and list its targets
    diff      compare a desired manifest file with a live manifest file and
              print the diff and the wave plan that would converge them
"""

from __future__ import annotations

import copy
import json
import logging
from pathlib import Path
from typing import Any, Optional

import click
import yaml

from gitopsmgr import __version__
from gitopsmgr.config import (
    ConfigError,
    ManagerSettings,
    load_config,
    load_settings,
    load_targets,
    parse_ignore_rules,
)
from gitopsmgr.diff import Diff, DiffStatus
from gitopsmgr.errors import GitOpsMgrError
from gitopsmgr.local import InMemoryDestination, InMemorySource
from gitopsmgr.models import Destination, SyncPolicy, Target, is_cluster_scoped
from gitopsmgr.plan import PlanLike
from gitopsmgr.reconciler import Reconciler
from gitopsmgr.util.cancel import CancelToken

_STATUS_MARKS = {
    DiffStatus.IN_SYNC: "=",
    DiffStatus.OUT_OF_SYNC: "~",
    DiffStatus.MISSING_IN_LIVE: "+",
    DiffStatus.MISSING_IN_DESIRED: "-",
}


@click.group()
@click.version_option(version=__version__, prog_name="gitopsmgr")
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default="WARNING",
    show_default=True,
)
def main(log_level: str) -> None:
    """
    gitopsmgr - declarative state reconciliation.

    Converges a runtime destination to manifests held in a versioned source.
    """
    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@main.command("validate")
@click.argument("config", type=click.Path(dir_okay=False))
@click.option("--local", "local_path", type=click.Path(dir_okay=False), help="Local override file")
def validate(config: str, local_path: Optional[str]) -> None:
    """Validate CONFIG and list the targets it defines."""
    try:
        raw = load_config(defaults_path=config, local_path=local_path)
        settings = load_settings(raw)
        targets = load_targets(raw)
    except ConfigError as e:
        click.echo(f"✗ Invalid config: {e}", err=True)
        raise SystemExit(1)

    click.echo(f"✓ {config}: {len(targets)} target(s), {settings.workers} worker(s)")
    for target in targets:
        interval = target.interval or settings.default_interval
        flags = [
            name
            for name, on in (
                ("automated", target.policy.automated),
                ("prune", target.policy.prune),
                ("self-heal", target.policy.self_heal),
            )
            if on
        ]
        click.echo(
            f"  {target.name}: {target.repo_url}@{target.revision}/{target.path} -> "
            f"{target.destination} every {interval:g}s [{', '.join(flags) or 'manual'}]"
        )


@main.command("diff")
@click.option("--desired", "desired_path", required=True, type=click.Path(exists=True, dir_okay=False))
@click.option("--live", "live_path", required=True, type=click.Path(exists=True, dir_okay=False))
@click.option("--target", "target_name", default="cli", show_default=True, help="Owner name")
@click.option("--namespace", default="", help="Default namespace for namespaced objects")
@click.option("--prune", is_flag=True, help="Plan deletes for objects missing from desired")
@click.option("--ignore", "ignore_paths", multiple=True, help="Field path to ignore (repeatable)")
@click.option("--json", "as_json", is_flag=True, help="Print machine-readable output")
@click.option("--exit-code", is_flag=True, help="Exit with 1 when there are changes")
def diff_cmd(
    desired_path: str,
    live_path: str,
    target_name: str,
    namespace: str,
    prune: bool,
    ignore_paths: tuple[str, ...],
    as_json: bool,
    exit_code: bool,
) -> None:
    """
    Diff desired manifests against live manifests.

    Objects in the live file are treated as owned by --target.
    """
    try:
        policy = SyncPolicy(prune=prune, ignore_rules=parse_ignore_rules(list(ignore_paths)))
        target = Target(
            name=target_name,
            repo_url="file://" + str(Path(desired_path).resolve().parent),
            revision="local",
            path=Path(desired_path).name,
            destination=Destination(cluster="file", namespace=namespace),
            policy=policy,
        )
        diff, plan = _diff_files(target, _read_manifests(desired_path), _read_manifests(live_path))
    except (GitOpsMgrError, yaml.YAMLError) as e:
        click.echo(f"✗ {e}", err=True)
        raise SystemExit(2)

    if as_json:
        click.echo(json.dumps(_diff_payload(diff, plan), indent=2, sort_keys=True, default=str))
    else:
        _print_diff(diff, plan)

    if exit_code and not plan.is_noop:
        raise SystemExit(1)


# ----------------------------
# Helpers
# ----------------------------
def _read_manifests(path: str) -> list[dict[str, Any]]:
    """Read a YAML/JSON file holding one object, a list, or a multi-document stream."""
    text = Path(path).read_text(encoding="utf-8")
    objects: list[dict[str, Any]] = []
    for doc in yaml.safe_load_all(text):
        if doc is None:
            continue
        if isinstance(doc, list):
            objects.extend(doc)
        elif isinstance(doc, dict) and doc.get("kind") == "List" and isinstance(doc.get("items"), list):
            objects.extend(doc["items"])
        else:
            objects.append(doc)
    return objects


def _diff_files(
    target: Target,
    desired: list[dict[str, Any]],
    live: list[dict[str, Any]],
) -> tuple[Diff, PlanLike]:
    settings = ManagerSettings()
    source = InMemorySource()
    source.push(target.repo_url, target.revision, target.path, desired)

    destination = InMemoryDestination(auto_ready=False)
    for raw in live:
        if not isinstance(raw, dict):
            continue
        body = copy.deepcopy(raw)
        meta = body.setdefault("metadata", {})
        if not isinstance(meta, dict):
            continue
        namespace = target.destination.namespace
        if namespace and not meta.get("namespace") and not is_cluster_scoped(str(body.get("kind"))):
            meta["namespace"] = namespace
        labels = meta.get("labels") or {}
        labels[settings.label_key] = target.name
        meta["labels"] = labels
        destination.put(body)

    reconciler = Reconciler(source, destination, settings)
    token = CancelToken()
    desired_snap = reconciler.fetch(target, token)
    live_snap = reconciler.observe(target, token)
    diff = reconciler.diff(target, desired_snap, live_snap)
    return diff, reconciler.plan(target, diff)


def _print_diff(diff: Diff, plan: PlanLike) -> None:
    for entry in diff:
        if entry.status is DiffStatus.IN_SYNC and not entry.ignored:
            continue
        click.echo(f"{_STATUS_MARKS[entry.status]} {entry.identity} ({entry.status.value})")
        for delta in entry.deltas:
            click.echo(f"    {delta}")
        for delta in entry.ignored:
            click.echo(f"    (ignored) {delta}")

    counts = ", ".join(f"{k}={v}" for k, v in sorted(diff.counts().items()))
    click.echo(f"Summary: {counts}")

    if plan.is_noop:
        click.echo(f"Plan: no-op ({plan.reason})")
    else:
        click.echo(f"Plan: {len(plan.operations)} operation(s) in {len(plan.waves)} group(s)")
        for i, group in enumerate(plan.waves, start=1):
            ops = [plan.get(op_id) for op_id in group]
            click.echo(f"  group {i} (wave {ops[0].wave if ops and ops[0] else 0}):")
            for op in ops:
                if op is not None:
                    click.echo(f"    {op.action.value} {op.identity}")
    for entry in plan.excluded:
        click.echo(f"  skipped (prune disabled): {entry.identity}")


def _diff_payload(diff: Diff, plan: PlanLike) -> dict[str, Any]:
    waves: list[list[dict[str, Any]]] = []
    if not plan.is_noop:
        for group in plan.waves:
            waves.append(
                [
                    {"action": op.action.value, "identity": str(op.identity), "wave": op.wave}
                    for op in (plan.get(op_id) for op_id in group)
                    if op is not None
                ]
            )
    return {
        "target": diff.target_name,
        "counts": diff.counts(),
        "entries": [e.to_dict() for e in diff if e.status is not DiffStatus.IN_SYNC or e.ignored],
        "noop": plan.is_noop,
        "waves": waves,
        "excluded": [str(e.identity) for e in plan.excluded],
    }


if __name__ == "__main__":
    main()
