"""Public diff exports for gitopsmgr."""

from __future__ import annotations

from .engine import SERVER_MANAGED_PATHS, compute_diff
from .equality import scalar_equal, typed_equal
from .ignore import IgnoreMatcher, join_path, split_path
from .models import MISSING, Diff, DiffEntry, DiffStatus, FieldDelta

__all__ = [
    "MISSING",
    "Diff",
    "DiffEntry",
    "DiffStatus",
    "FieldDelta",
    "IgnoreMatcher",
    "SERVER_MANAGED_PATHS",
    "compute_diff",
    "join_path",
    "scalar_equal",
    "split_path",
    "typed_equal",
]
