"""Live-state observer."""

from __future__ import annotations

import json
import logging
from typing import Any, Optional

from gitopsmgr.errors import (
    DestinationUnreachableError,
    GitOpsMgrError,
    HttpErrorInfo,
    ObserveError,
    map_http_error,
)
from gitopsmgr.models import (
    DEFAULT_OWNER_LABEL,
    LiveStateSnapshot,
    ManifestObject,
    Target,
)
from gitopsmgr.util.cancel import CancelToken
from gitopsmgr.util.retry import call_with_retry
from gitopsmgr.util.time import now_utc

from .client import DestinationClient, Selector

logger = logging.getLogger(__name__)


def selector_for(target: Target, label_key: str) -> Selector:
    return Selector(
        label_key=label_key,
        owner=target.name,
        namespace=target.destination.namespace,
    )


class LiveStateObserver:
    """Read the objects a target currently owns at its destination."""

    def __init__(
        self,
        destination: DestinationClient,
        *,
        label_key: str = DEFAULT_OWNER_LABEL,
    ) -> None:
        self._destination = destination
        self._label_key = label_key

    def observe(self, target: Target, token: CancelToken) -> LiveStateSnapshot:
        """
        Produce a fresh LiveStateSnapshot for target.

        Objects keep their resourceVersion/generation so the diff engine can
        tell "not yet visible" from "genuinely absent".

        Raises:
            DestinationUnreachableError: still unreachable after retries.
            PermissionDeniedError: destination refused the read.
        """
        selector = selector_for(target, self._label_key)
        raw_objects = call_with_retry(
            lambda: self._destination.get(selector),
            policy=target.policy.retry,
            token=token,
            map_exception=map_destination_exception,
            what=f"{target.name}: observe {target.destination}",
        )
        token.check()

        objects: list[ManifestObject] = []
        for raw in raw_objects:
            try:
                objects.append(ManifestObject(raw))
            except (TypeError, ValueError) as exc:
                logger.warning(f"{target.name}: skipping unreadable live object: {exc}")

        logger.debug(f"{target.name}: observed {len(objects)} live object(s)")
        return LiveStateSnapshot.build(target.name, objects, observed_at=now_utc())


def map_destination_exception(exc: Exception) -> GitOpsMgrError:
    info = http_error_info(exc)
    if info is not None:
        return map_http_error(info, cause=exc)
    if isinstance(exc, (OSError, TimeoutError)):
        return DestinationUnreachableError("Destination unreachable", cause=exc)
    return ObserveError(f"Destination read failed: {exc}", cause=exc)


def http_error_info(exc: Exception) -> Optional[HttpErrorInfo]:
    """
    Extract HTTP status information from a client exception.

    Understands exceptions exposing `status`/`status_code` and `reason`
    directly or on a `response` attribute, with an optional JSON `body`
    carrying a `message`. Returns None for anything else.
    """
    holder = exc
    status_code = _int_attr(exc, "status_code", "status")
    if status_code is None:
        holder = getattr(exc, "response", None)
        status_code = _int_attr(holder, "status_code", "status")
    if status_code is None:
        return None

    reason = getattr(holder, "reason", None)
    message = None
    details: dict[str, Any] = {}

    body = getattr(exc, "body", None)
    if isinstance(body, (bytes, bytearray)):
        body = body.decode("utf-8", errors="replace")
    if isinstance(body, str) and body:
        try:
            payload = json.loads(body)
        except ValueError:
            payload = None
        if isinstance(payload, dict):
            message = payload.get("message") or None
            if payload.get("reason"):
                details["api_reason"] = payload["reason"]

    return HttpErrorInfo(
        status_code=status_code,
        reason=reason if isinstance(reason, str) else None,
        message=message,
        details=details or None,
    )


def _int_attr(obj: Any, *names: str) -> Optional[int]:
    for name in names:
        value = getattr(obj, name, None)
        if isinstance(value, int) and not isinstance(value, bool):
            return value
    return None
