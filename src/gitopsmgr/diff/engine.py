"""Diff engine: desired vs live classification under ignore rules."""

from __future__ import annotations

import logging
from typing import Any, Iterable, Mapping, Optional, Sequence

from gitopsmgr.models import (
    DesiredStateSnapshot,
    IgnoreRule,
    LiveStateSnapshot,
    ManifestObject,
    ObjectIdentity,
)

from .equality import typed_equal
from .ignore import IgnoreMatcher, join_path, path_matches, split_path
from .models import MISSING, Diff, DiffEntry, DiffStatus, FieldDelta

logger = logging.getLogger(__name__)

# Fields written by the destination; never part of drift.
SERVER_MANAGED_PATHS: tuple[tuple[str, ...], ...] = (
    ("status",),
    ("metadata", "uid"),
    ("metadata", "resourceVersion"),
    ("metadata", "generation"),
    ("metadata", "creationTimestamp"),
    ("metadata", "managedFields"),
    ("metadata", "selfLink"),
)


def compute_diff(
    desired: DesiredStateSnapshot,
    live: LiveStateSnapshot,
    ignore_rules: Iterable[IgnoreRule] = (),
    *,
    label_key: str,
    owner: str,
    field_types: Optional[Mapping[str, str]] = None,
    applied_versions: Optional[Mapping[ObjectIdentity, Optional[int]]] = None,
) -> Diff:
    """
    Classify every identity present in either snapshot exactly once.

    Live objects without the ownership marker (label_key == owner) are
    excluded entirely: they are never diffed and never pruned.
    """
    rules = tuple(ignore_rules)
    typed = {split_path(p): t for p, t in (field_types or {}).items()}
    applied = applied_versions or {}

    desired_map: dict[ObjectIdentity, ManifestObject] = {o.identity: o for o in desired}
    live_map: dict[ObjectIdentity, ManifestObject] = {}
    unowned = 0
    for obj in live:
        if not obj.is_owned_by(label_key, owner):
            unowned += 1
            continue
        live_map[obj.identity] = obj

    if unowned:
        logger.debug(f"{owner}: excluded {unowned} unowned live object(s) from diff")

    entries: list[DiffEntry] = []
    for identity in sorted(set(desired_map) | set(live_map)):
        if identity not in live_map:
            d_obj = desired_map[identity]
            entries.append(
                DiffEntry(
                    identity=identity,
                    status=DiffStatus.MISSING_IN_LIVE,
                    deltas=tuple(_leaf_deltas(d_obj.body, desired_side=True)),
                    settling=identity in applied,
                    desired=d_obj,
                )
            )
            continue

        l_obj = live_map[identity]
        if identity not in desired_map:
            entries.append(
                DiffEntry(
                    identity=identity,
                    status=DiffStatus.MISSING_IN_DESIRED,
                    deltas=tuple(_leaf_deltas(l_obj.body, desired_side=False)),
                    live=l_obj,
                )
            )
            continue

        d_obj = desired_map[identity]
        matcher = IgnoreMatcher(rules, identity)
        deltas: list[FieldDelta] = []
        ignored: list[FieldDelta] = []
        _compare(d_obj.body, l_obj.body, (), deltas, ignored, matcher, typed)

        status = DiffStatus.OUT_OF_SYNC if deltas else DiffStatus.IN_SYNC
        entries.append(
            DiffEntry(
                identity=identity,
                status=status,
                deltas=tuple(deltas),
                ignored=tuple(ignored),
                settling=_is_settling(identity, l_obj, applied) and bool(deltas),
                desired=d_obj,
                live=l_obj,
            )
        )

    return Diff(target_name=owner, entries=tuple(entries))


def _is_settling(
    identity: ObjectIdentity,
    live: ManifestObject,
    applied: Mapping[ObjectIdentity, Optional[int]],
) -> bool:
    if identity not in applied:
        return False
    expected = applied[identity]
    observed = live.generation
    if expected is None or observed is None:
        return False
    return observed < expected


def _is_server_managed(path: Sequence[str]) -> bool:
    return any(tuple(path[: len(p)]) == p for p in SERVER_MANAGED_PATHS)


def _declared_type(
    path: Sequence[str],
    typed: Mapping[tuple[str, ...], str],
) -> Optional[str]:
    for pattern, field_type in typed.items():
        if len(pattern) == len(path) and path_matches(pattern, path):
            return field_type
    return None


def _record(
    path: tuple[str, ...],
    live: Any,
    desired: Any,
    deltas: list[FieldDelta],
    ignored: list[FieldDelta],
    matcher: IgnoreMatcher,
) -> None:
    delta = FieldDelta(path=join_path(path), live=live, desired=desired)
    if matcher and matcher.ignored(path):
        ignored.append(delta)
    else:
        deltas.append(delta)


def _compare(
    desired: Any,
    live: Any,
    path: tuple[str, ...],
    deltas: list[FieldDelta],
    ignored: list[FieldDelta],
    matcher: IgnoreMatcher,
    typed: Mapping[tuple[str, ...], str],
) -> None:
    """Walk the fields the desired object declares and record differences."""
    if path and _is_server_managed(path):
        return

    if isinstance(desired, dict):
        live_dict = live if isinstance(live, dict) else None
        if live is not MISSING and live_dict is None:
            _record(path, live, desired, deltas, ignored, matcher)
            return
        for key, d_val in desired.items():
            l_val = live_dict.get(key, MISSING) if live_dict is not None else MISSING
            _compare(d_val, l_val, path + (str(key),), deltas, ignored, matcher, typed)
        return

    if isinstance(desired, list):
        if not isinstance(live, list) or len(live) != len(desired):
            _record(path, live, desired, deltas, ignored, matcher)
            return
        for index, (d_item, l_item) in enumerate(zip(desired, live)):
            _compare(d_item, l_item, path + (str(index),), deltas, ignored, matcher, typed)
        return

    if live is MISSING or not typed_equal(desired, live, _declared_type(path, typed)):
        _record(path, live, desired, deltas, ignored, matcher)


def _leaf_deltas(body: Mapping[str, Any], *, desired_side: bool) -> list[FieldDelta]:
    out: list[FieldDelta] = []
    _walk_leaves(body, (), out, desired_side)
    return out


def _walk_leaves(
    value: Any,
    path: tuple[str, ...],
    out: list[FieldDelta],
    desired_side: bool,
) -> None:
    if path and _is_server_managed(path):
        return
    if isinstance(value, dict) and value:
        for key, child in value.items():
            _walk_leaves(child, path + (str(key),), out, desired_side)
        return
    joined = join_path(path)
    if desired_side:
        out.append(FieldDelta(path=joined, live=MISSING, desired=value))
    else:
        out.append(FieldDelta(path=joined, live=value, desired=MISSING))
