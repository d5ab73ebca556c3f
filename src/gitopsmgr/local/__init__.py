"""In-memory collaborators (source repository, destination platform)."""

from __future__ import annotations

from .memory_destination import InMemoryDestination, MemoryWatchStream
from .memory_source import InMemorySource

__all__ = [
    "InMemoryDestination",
    "InMemorySource",
    "MemoryWatchStream",
]
