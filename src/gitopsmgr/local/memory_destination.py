"""InMemoryDestination: a runtime platform API held in memory."""

from __future__ import annotations

import copy
import queue
import threading
import time
from collections import deque
from typing import Any, Iterator, Mapping, Optional

from gitopsmgr.destination.client import Selector, WatchEvent, WatchEventType
from gitopsmgr.errors import ApplyRejectedError, NotFoundError
from gitopsmgr.models import ManifestObject, ObjectIdentity, identity_of
from gitopsmgr.util.ids import new_uuid

_REPLICATED_KINDS: frozenset[str] = frozenset({"Deployment", "StatefulSet", "ReplicaSet"})
_CLOSED = object()


class MemoryWatchStream:
    """Queue-backed watch stream; `close()` may be called from any thread."""

    def __init__(self, owner: "InMemoryDestination", selector: Selector) -> None:
        self.selector = selector
        self._owner = owner
        self._queue: "queue.Queue[Any]" = queue.Queue()
        self._closed = False

    def push(self, event: WatchEvent) -> None:
        if not self._closed:
            self._queue.put(event)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._owner._drop_watch(self)
        self._queue.put(_CLOSED)

    @property
    def closed(self) -> bool:
        return self._closed

    def __iter__(self) -> Iterator[WatchEvent]:
        while True:
            item = self._queue.get()
            if item is _CLOSED:
                return
            yield item


class InMemoryDestination:
    """
    DestinationClient implementation for tests, demos and the CLI.

    Server behavior:
        - apply stamps metadata.resourceVersion (global counter) and
          metadata.generation (bumped when anything outside metadata/status
          changes); an unchanged apply is a no-op.
        - with auto_ready, workloads get a ready status right away; targets
          listed by `hold_unready` stay Progressing.
        - delete raises NotFoundError for absent objects.
    """

    def __init__(self, *, auto_ready: bool = True, apply_delay: float = 0.0) -> None:
        self.auto_ready = auto_ready
        self.apply_delay = apply_delay
        self._lock = threading.RLock()
        self._objects: dict[ObjectIdentity, dict[str, Any]] = {}
        self._rv = 0
        self._watches: list[MemoryWatchStream] = []
        self._apply_faults: dict[ObjectIdentity, deque[BaseException]] = {}
        self._get_faults: deque[BaseException] = deque()
        self._rejected: dict[ObjectIdentity, str] = {}
        self._unready: set[ObjectIdentity] = set()
        self.calls: list[tuple[str, ObjectIdentity]] = []

    # ----------------------------
    # Fault injection / test helpers
    # ----------------------------
    def fail_apply(self, identity: ObjectIdentity, exc: BaseException, times: int = 1) -> None:
        with self._lock:
            self._apply_faults.setdefault(identity, deque()).extend([exc] * times)

    def fail_get(self, exc: BaseException, times: int = 1) -> None:
        with self._lock:
            self._get_faults.extend([exc] * times)

    def reject(self, identity: ObjectIdentity, message: str = "validation failed") -> None:
        """Reject every apply of identity."""
        with self._lock:
            self._rejected[identity] = message

    def hold_unready(self, identity: ObjectIdentity, hold: bool = True) -> None:
        with self._lock:
            if hold:
                self._unready.add(identity)
            else:
                self._unready.discard(identity)
                obj = self._objects.get(identity)
                if obj is not None:
                    self._store(identity, obj, status_only=True)

    def put(self, obj: Mapping[str, Any]) -> dict[str, Any]:
        """Write obj directly (an out-of-band change by another actor)."""
        return self._write(dict(obj), record=False)

    def remove(self, identity: ObjectIdentity) -> None:
        """Delete directly (an out-of-band change by another actor)."""
        with self._lock:
            old = self._objects.pop(identity, None)
            if old is not None:
                self._emit(WatchEventType.DELETED, identity, old)

    def object(self, identity: ObjectIdentity) -> Optional[dict[str, Any]]:
        with self._lock:
            obj = self._objects.get(identity)
            return copy.deepcopy(obj) if obj is not None else None

    def identities(self) -> list[ObjectIdentity]:
        with self._lock:
            return sorted(self._objects)

    # ----------------------------
    # DestinationClient
    # ----------------------------
    def get(self, selector: Selector) -> list[dict[str, Any]]:
        with self._lock:
            if self._get_faults:
                raise self._get_faults.popleft()
            out = []
            for identity in sorted(self._objects):
                body = self._objects[identity]
                if selector.matches(ManifestObject(body)):
                    out.append(copy.deepcopy(body))
            return out

    def apply(self, obj: dict[str, Any]) -> dict[str, Any]:
        if self.apply_delay:
            time.sleep(self.apply_delay)
        return self._write(obj, record=True)

    def delete(self, identity: ObjectIdentity) -> None:
        with self._lock:
            self.calls.append(("delete", identity))
            old = self._objects.pop(identity, None)
            if old is None:
                raise NotFoundError(
                    f"{identity} not found",
                    details={"identity": identity.to_dict()},
                )
            self._emit(WatchEventType.DELETED, identity, old)

    def watch(self, selector: Selector) -> MemoryWatchStream:
        stream = MemoryWatchStream(self, selector)
        with self._lock:
            self._watches.append(stream)
        return stream

    # ----------------------------
    # Internals
    # ----------------------------
    def _write(self, obj: dict[str, Any], *, record: bool) -> dict[str, Any]:
        try:
            identity = identity_of(obj)
        except ValueError as e:
            raise ApplyRejectedError(str(e), cause=e) from e

        with self._lock:
            if record:
                self.calls.append(("apply", identity))
                faults = self._apply_faults.get(identity)
                if faults:
                    raise faults.popleft()
                if identity in self._rejected:
                    raise ApplyRejectedError(
                        f"{identity} rejected: {self._rejected[identity]}",
                        details={"identity": identity.to_dict()},
                    )
            return self._store(identity, obj)

    def _store(
        self,
        identity: ObjectIdentity,
        obj: dict[str, Any],
        *,
        status_only: bool = False,
    ) -> dict[str, Any]:
        existing = self._objects.get(identity)
        body = copy.deepcopy(obj)
        meta = body.setdefault("metadata", {})

        if existing is not None:
            old_meta = existing.get("metadata", {})
            generation = old_meta.get("generation", 1)
            if not status_only and _spec_of(existing) != _spec_of(body):
                generation += 1
            meta["uid"] = old_meta.get("uid")
            meta["generation"] = generation
            if "status" not in body and "status" in existing:
                body["status"] = copy.deepcopy(existing["status"])
        else:
            meta["uid"] = new_uuid()
            meta["generation"] = 1
        meta.pop("resourceVersion", None)

        self._populate_status(identity, body)

        if existing is not None:
            previous = copy.deepcopy(existing)
            previous.get("metadata", {}).pop("resourceVersion", None)
            if previous == body:
                return copy.deepcopy(existing)

        self._rv += 1
        meta["resourceVersion"] = str(self._rv)
        self._objects[identity] = body
        event = WatchEventType.ADDED if existing is None else WatchEventType.MODIFIED
        self._emit(event, identity, body)
        return copy.deepcopy(body)

    def _populate_status(self, identity: ObjectIdentity, body: dict[str, Any]) -> None:
        if not self.auto_ready:
            return
        generation = body["metadata"]["generation"]
        ready = identity not in self._unready
        spec = body.get("spec") if isinstance(body.get("spec"), dict) else {}

        if identity.kind in _REPLICATED_KINDS:
            wanted = spec.get("replicas", 1)
            count = wanted if ready else 0
            body["status"] = {
                "observedGeneration": generation,
                "replicas": wanted,
                "readyReplicas": count,
                "availableReplicas": count,
                "updatedReplicas": count,
            }
        elif identity.kind == "DaemonSet":
            body["status"] = {
                "observedGeneration": generation,
                "desiredNumberScheduled": 1,
                "numberReady": 1 if ready else 0,
            }
        elif identity.kind == "Job":
            conditions = [{"type": "Complete", "status": "True"}] if ready else []
            body["status"] = {"conditions": conditions}

    def _emit(self, event_type: WatchEventType, identity: ObjectIdentity, body: dict[str, Any]) -> None:
        obj = ManifestObject(body)
        event = WatchEvent(
            type=event_type,
            identity=identity,
            resource_version=obj.resource_version,
        )
        for stream in list(self._watches):
            if stream.selector.matches(obj):
                stream.push(event)

    def _drop_watch(self, stream: MemoryWatchStream) -> None:
        with self._lock:
            if stream in self._watches:
                self._watches.remove(stream)


def _spec_of(body: Mapping[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in body.items() if k not in ("metadata", "status")}
