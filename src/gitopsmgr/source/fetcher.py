"""Desired-state fetcher."""

from __future__ import annotations

import logging
from typing import Any

from gitopsmgr.errors import (
    GitOpsMgrError,
    RenderError,
    RevisionNotFoundError,
    SourceUnreachableError,
)
from gitopsmgr.models import (
    DEFAULT_OWNER_LABEL,
    DesiredStateSnapshot,
    ManifestObject,
    ObjectIdentity,
    Target,
    is_cluster_scoped,
)
from gitopsmgr.util.cancel import CancelToken
from gitopsmgr.util.retry import call_with_retry
from gitopsmgr.util.time import now_utc

from .client import SourceClient

logger = logging.getLogger(__name__)


class DesiredStateFetcher:
    """Resolve a target's revision and render its desired objects."""

    def __init__(self, source: SourceClient, *, label_key: str = DEFAULT_OWNER_LABEL) -> None:
        self._source = source
        self._label_key = label_key

    def fetch(self, target: Target, token: CancelToken) -> DesiredStateSnapshot:
        """
        Produce a fresh DesiredStateSnapshot for target.

        The revision is resolved to a content id before rendering so that two
        fetches of the same label render identical inputs.

        Raises:
            RevisionNotFoundError: revision reference cannot be resolved.
            RenderError: rendering failed or produced malformed objects.
            SourceUnreachableError: source still unreachable after retries.
        """
        retry = target.policy.retry

        content_id = call_with_retry(
            lambda: self._source.resolve_revision(target.repo_url, target.revision),
            policy=retry,
            token=token,
            map_exception=_map_resolve_exception,
            what=f"{target.name}: resolve {target.revision}",
        )
        if not isinstance(content_id, str) or not content_id:
            raise RevisionNotFoundError(
                f"Revision {target.revision!r} resolved to an empty content id",
                details={"repo_url": target.repo_url, "revision": target.revision},
            )

        raw_objects = call_with_retry(
            lambda: self._source.render(target.repo_url, content_id, target.path),
            policy=retry,
            token=token,
            map_exception=_map_render_exception,
            what=f"{target.name}: render {target.path}@{content_id[:12]}",
        )
        token.check()

        objects = self._normalize(target, content_id, raw_objects)
        logger.info(
            f"{target.name}: fetched {len(objects)} object(s) "
            f"at {target.revision} ({content_id[:12]})"
        )
        return DesiredStateSnapshot.build(
            target.name,
            objects,
            revision=target.revision,
            content_id=content_id,
            fetched_at=now_utc(),
        )

    def _normalize(
        self,
        target: Target,
        content_id: str,
        raw_objects: Any,
    ) -> list[ManifestObject]:
        if not isinstance(raw_objects, (list, tuple)):
            raise RenderError(
                "Renderer must return a list of objects",
                details={"type": type(raw_objects).__name__},
            )

        objects: list[ManifestObject] = []
        seen: set[ObjectIdentity] = set()
        for index, raw in enumerate(raw_objects):
            if raw is None:
                continue
            if not isinstance(raw, dict):
                raise RenderError(
                    "Rendered object is not a mapping",
                    details={"index": index, "content_id": content_id},
                )
            body = self._stamp(target, raw)
            try:
                obj = ManifestObject(body)
            except ValueError as exc:
                raise RenderError(
                    f"Malformed object at index {index}: {exc}",
                    details={"index": index, "content_id": content_id},
                    cause=exc,
                ) from exc
            if obj.identity in seen:
                raise RenderError(
                    f"Duplicate object {obj.identity}",
                    details={"identity": str(obj.identity), "content_id": content_id},
                )
            seen.add(obj.identity)
            objects.append(obj)
        return objects

    def _stamp(self, target: Target, raw: dict[str, Any]) -> dict[str, Any]:
        """Default the namespace and add the ownership label (returns a new dict)."""
        body = dict(raw)
        meta = dict(body.get("metadata") or {})
        kind = body.get("kind")
        if (
            isinstance(kind, str)
            and not is_cluster_scoped(kind)
            and not meta.get("namespace")
            and target.destination.namespace
        ):
            meta["namespace"] = target.destination.namespace

        labels = dict(meta.get("labels") or {})
        labels[self._label_key] = target.name
        meta["labels"] = labels
        body["metadata"] = meta
        return body


def _map_resolve_exception(exc: Exception) -> GitOpsMgrError:
    if isinstance(exc, LookupError):
        return RevisionNotFoundError("Revision not found", cause=exc)
    if isinstance(exc, (OSError, TimeoutError)):
        return SourceUnreachableError("Source unreachable", cause=exc)
    return RevisionNotFoundError("Revision could not be resolved", cause=exc)


def _map_render_exception(exc: Exception) -> GitOpsMgrError:
    if isinstance(exc, (OSError, TimeoutError)):
        return SourceUnreachableError("Source unreachable", cause=exc)
    return RenderError(f"Render failed: {exc}", cause=exc)
