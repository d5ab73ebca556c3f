"""InMemorySource: a versioned manifest repository held in memory."""

from __future__ import annotations

import copy
import threading
from collections import deque
from typing import Any, Mapping, Optional

from gitopsmgr.errors import RenderError, RevisionNotFoundError
from gitopsmgr.util.hashing import sha256_of


class InMemorySource:
    """
    SourceClient implementation for tests, demos and the CLI.

    Each repo is a set of refs (branch/tag names) pointing at immutable
    content ids. `push` records a new content version under a ref, keeping
    the other paths of the previous version (like a commit on a branch).
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._refs: dict[tuple[str, str], str] = {}
        self._contents: dict[tuple[str, str], dict[str, list[dict[str, Any]]]] = {}
        self._faults: deque[BaseException] = deque()
        self.calls: list[tuple[str, str]] = []

    # ----------------------------
    # Repository edits
    # ----------------------------
    def push(
        self,
        repo_url: str,
        ref: str,
        path: str,
        objects: list[Mapping[str, Any]],
    ) -> str:
        """Store objects under path at ref; return the new content id."""
        key = _norm_path(path)
        with self._lock:
            base_id = self._refs.get((repo_url, ref))
            files = copy.deepcopy(self._contents.get((repo_url, base_id), {})) if base_id else {}
            files[key] = [copy.deepcopy(dict(o)) for o in objects]
            content_id = sha256_of({"repo": repo_url, "parent": base_id, "files": files})[:16]
            self._contents[(repo_url, content_id)] = files
            self._refs[(repo_url, ref)] = content_id
            return content_id

    def delete_ref(self, repo_url: str, ref: str) -> None:
        with self._lock:
            self._refs.pop((repo_url, ref), None)

    def fail_next(self, exc: BaseException, times: int = 1) -> None:
        """Make the next `times` calls raise exc."""
        with self._lock:
            self._faults.extend([exc] * times)

    # ----------------------------
    # SourceClient
    # ----------------------------
    def resolve_revision(self, repo_url: str, ref: str) -> str:
        with self._lock:
            self.calls.append(("resolve_revision", ref))
            self._raise_fault()
            if (repo_url, ref) in self._contents:
                return ref
            content_id = self._refs.get((repo_url, ref))
        if content_id is None:
            raise RevisionNotFoundError(
                f"Unknown revision {ref!r}",
                details={"repo_url": repo_url, "ref": ref},
            )
        return content_id

    def render(self, repo_url: str, content_id: str, path: str) -> list[dict[str, Any]]:
        key = _norm_path(path)
        with self._lock:
            self.calls.append(("render", content_id))
            self._raise_fault()
            files = self._contents.get((repo_url, content_id))
            if files is None:
                raise RevisionNotFoundError(
                    f"Unknown content id {content_id!r}",
                    details={"repo_url": repo_url},
                )
            matched = [
                objects
                for file_path, objects in sorted(files.items())
                if not key or file_path == key or file_path.startswith(key + "/")
            ]
        if not matched:
            raise RenderError(
                f"Path {path!r} not found",
                details={"repo_url": repo_url, "content_id": content_id},
            )
        return [copy.deepcopy(o) for objects in matched for o in objects]

    def _raise_fault(self) -> None:
        if self._faults:
            raise self._faults.popleft()


def _norm_path(path: Optional[str]) -> str:
    return (path or "").strip().strip("/")
