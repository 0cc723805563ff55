from __future__ import annotations

import json
import uuid
from datetime import datetime, timezone
from threading import Lock
from typing import Any, Protocol, TypeVar, cast

from .errors import LroError
from .models import ObjectRef, Resource, parse_object, to_wire

R = TypeVar("R", bound=Resource)


class StoreError(LroError):
    reason = "StoreError"

    def __init__(self, kind: str | None = None, ref: ObjectRef | None = None, message: str = ""):
        self.kind = kind
        self.ref = ref
        detail = message or self.reason
        if kind and ref:
            detail = f"{kind} {ref}: {detail}"
        super().__init__(detail)


class NotFound(StoreError):
    reason = "NotFound"


class AlreadyExists(StoreError):
    reason = "AlreadyExists"


class Conflict(StoreError):
    """The object was modified since it was read (stale resourceVersion)."""

    reason = "Conflict"
    retryable = True


class StoreUnavailable(StoreError):
    reason = "Unavailable"
    retryable = True


ERRORS_BY_REASON: dict[str, type[StoreError]] = {
    cls.reason: cls for cls in (NotFound, AlreadyExists, Conflict, StoreUnavailable)
}


class Store(Protocol):
    """Create/read/update object store the reconcilers run against."""

    def get(self, kind: type[R], ref: ObjectRef) -> R: ...

    def create(self, obj: R) -> R: ...

    def update(self, obj: R) -> R: ...

    def delete(self, kind: type[Resource], ref: ObjectRef) -> None: ...

    def list(self, kind: type[R], namespace: str | None = None) -> list[R]: ...


def utc_now() -> datetime:
    return datetime.now(timezone.utc).replace(microsecond=0)


def admit_create(obj: Resource, resource_version: int) -> dict[str, Any]:
    """Return the body to persist for a new object, with server-owned fields set."""
    body = to_wire(obj)
    meta = body["metadata"]
    meta["uid"] = str(uuid.uuid4())
    meta["resourceVersion"] = str(resource_version)
    meta["generation"] = 1
    meta["creationTimestamp"] = utc_now().isoformat()
    meta.pop("deletionTimestamp", None)
    return body


def admit_update(current: dict[str, Any], obj: Resource, resource_version: int) -> dict[str, Any]:
    """Return the body to persist for an update of ``current``.

    Raises Conflict when ``obj`` was read at an older resourceVersion.
    """
    cur_meta = current["metadata"]
    if obj.metadata.resource_version != cur_meta.get("resourceVersion"):
        raise Conflict(
            obj.kind,
            obj.ref,
            f"resourceVersion {obj.metadata.resource_version} is stale, current is {cur_meta.get('resourceVersion')}",
        )
    body = to_wire(obj)
    meta = body["metadata"]
    for key in ("uid", "creationTimestamp", "deletionTimestamp"):
        if key in cur_meta:
            meta[key] = cur_meta[key]
        else:
            meta.pop(key, None)
    generation = int(cur_meta.get("generation") or 1)
    if body.get("spec") != current.get("spec"):
        generation += 1
    meta["generation"] = generation
    meta["resourceVersion"] = str(resource_version)
    return body


def is_released(body: dict[str, Any]) -> bool:
    """True once a deleted object has no finalizers left holding it."""
    meta = body["metadata"]
    return bool(meta.get("deletionTimestamp")) and not meta.get("finalizers")


def owned_by(body: dict[str, Any], uid: str) -> bool:
    return any(o.get("uid") == uid for o in body["metadata"].get("ownerReferences", []))


class MemoryStore:
    """In-process store with optimistic concurrency and owner cascade.

    Objects are kept as JSON text so callers always get fresh copies and
    in-place mutation never leaks back into the store.
    """

    def __init__(self) -> None:
        self.lock = Lock()
        self._objects: dict[tuple[str, str, str], str] = {}
        self._rv = 0

    def _next_rv(self) -> int:
        self._rv += 1
        return self._rv

    def get(self, kind: type[R], ref: ObjectRef) -> R:
        with self.lock:
            raw = self._objects.get((kind.KIND, ref.namespace, ref.name))
        if raw is None:
            raise NotFound(kind.KIND, ref)
        return cast(R, parse_object(json.loads(raw)))

    def create(self, obj: R) -> R:
        key = (obj.kind, obj.metadata.namespace, obj.metadata.name)
        with self.lock:
            if key in self._objects:
                raise AlreadyExists(obj.kind, obj.ref)
            body = admit_create(obj, self._next_rv())
            self._objects[key] = json.dumps(body)
        return cast(R, parse_object(body))

    def update(self, obj: R) -> R:
        key = (obj.kind, obj.metadata.namespace, obj.metadata.name)
        with self.lock:
            raw = self._objects.get(key)
            if raw is None:
                raise NotFound(obj.kind, obj.ref)
            body = admit_update(json.loads(raw), obj, self._next_rv())
            if is_released(body):
                self._remove(key, body)
            else:
                self._objects[key] = json.dumps(body)
        return cast(R, parse_object(body))

    def delete(self, kind: type[Resource], ref: ObjectRef) -> None:
        key = (kind.KIND, ref.namespace, ref.name)
        with self.lock:
            raw = self._objects.get(key)
            if raw is None:
                raise NotFound(kind.KIND, ref)
            body = json.loads(raw)
            meta = body["metadata"]
            if meta.get("finalizers"):
                if not meta.get("deletionTimestamp"):
                    meta["deletionTimestamp"] = utc_now().isoformat()
                    meta["resourceVersion"] = str(self._next_rv())
                    self._objects[key] = json.dumps(body)
                return
            self._remove(key, body)

    def _remove(self, key: tuple[str, str, str], body: dict[str, Any]) -> None:
        # Caller holds the lock.
        del self._objects[key]
        uid = body["metadata"].get("uid")
        if not uid:
            return
        for child_key, raw in list(self._objects.items()):
            if child_key in self._objects and owned_by(json.loads(raw), uid):
                self._remove(child_key, json.loads(raw))

    def list(self, kind: type[R], namespace: str | None = None) -> list[R]:
        with self.lock:
            items = [
                raw
                for (k, ns, _), raw in sorted(self._objects.items())
                if k == kind.KIND and (namespace is None or ns == namespace)
            ]
        return [cast(R, parse_object(json.loads(raw))) for raw in items]
