"""Desired-state side: source protocol and fetcher."""

from __future__ import annotations

from .client import SourceClient
from .fetcher import DesiredStateFetcher

__all__ = ["SourceClient", "DesiredStateFetcher"]
