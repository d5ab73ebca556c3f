"""Source collaborator protocol (manifest repository + renderer)."""

from __future__ import annotations

from typing import Any, Protocol


class SourceClient(Protocol):
    """
    Narrow interface to a versioned manifest source.

    Implementations raise gitopsmgr errors where they can classify a failure
    (RevisionNotFoundError, RenderError, SourceUnreachableError); anything
    else is classified by the fetcher.
    """

    def resolve_revision(self, repo_url: str, ref: str) -> str:
        """Resolve a branch/tag/commit reference to an immutable content id."""
        ...

    def render(self, repo_url: str, content_id: str, path: str) -> list[dict[str, Any]]:
        """Return raw object definitions for path at content_id."""
        ...
