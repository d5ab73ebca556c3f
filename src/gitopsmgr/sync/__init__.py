"""Plan execution."""

from __future__ import annotations

from .executor import SyncExecutor

__all__ = ["SyncExecutor"]
