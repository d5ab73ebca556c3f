"""Ignore-rule matching for field paths."""

from __future__ import annotations

from fnmatch import fnmatchcase
from typing import Iterable, Sequence

from gitopsmgr.models import IgnoreRule, ObjectIdentity


def split_path(path: str) -> tuple[str, ...]:
    """Split a dotted path; `\\.` escapes a literal dot (label keys)."""
    parts: list[str] = []
    buf: list[str] = []
    i = 0
    while i < len(path):
        ch = path[i]
        if ch == "\\" and i + 1 < len(path) and path[i + 1] == ".":
            buf.append(".")
            i += 2
            continue
        if ch == ".":
            parts.append("".join(buf))
            buf = []
        else:
            buf.append(ch)
        i += 1
    parts.append("".join(buf))
    return tuple(parts)


def join_path(segments: Sequence[str]) -> str:
    return ".".join(s.replace(".", "\\.") for s in segments)


def rule_applies(rule: IgnoreRule, identity: ObjectIdentity) -> bool:
    if rule.kind is not None and not fnmatchcase(identity.kind, rule.kind):
        return False
    if rule.name is not None and not fnmatchcase(identity.name, rule.name):
        return False
    if rule.namespace is not None and not fnmatchcase(identity.namespace, rule.namespace):
        return False
    return True


def path_matches(pattern: Sequence[str], segments: Sequence[str]) -> bool:
    """
    True if segments fall under pattern.

    A pattern matches a path of equal length segment by segment, and also
    any path beneath it (ignoring `spec.template` ignores everything inside).
    """
    if len(segments) < len(pattern):
        return False
    return all(fnmatchcase(seg, pat) for seg, pat in zip(segments, pattern))


class IgnoreMatcher:
    """Pre-split ignore rules evaluated against one object's field paths."""

    def __init__(self, rules: Iterable[IgnoreRule], identity: ObjectIdentity) -> None:
        self._patterns = [split_path(r.path) for r in rules if rule_applies(r, identity)]

    def __bool__(self) -> bool:
        return bool(self._patterns)

    def ignored(self, segments: Sequence[str]) -> bool:
        return any(path_matches(p, segments) for p in self._patterns)
