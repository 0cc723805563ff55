from __future__ import annotations

import logging
import os as _os
import sys

import pytest

# Ensure project root is importable (so `import main` / `import cli` work without installing)
_project_root = _os.path.dirname(_os.path.dirname(__file__))
if _project_root not in sys.path:
    sys.path.insert(0, _project_root)

from lro.db import EventLogHandler  # noqa: E402
from lro.models import Limitador, LimitadorSpec, ObjectMeta, ObjectRef  # noqa: E402
from lro.store import MemoryStore  # noqa: E402


class RecordingStore:
    """Wraps a store, records every call and can inject failures per (op, kind)."""

    def __init__(self, inner):
        self.inner = inner
        self.calls: list[tuple[str, str, str]] = []
        self.fail: dict[tuple[str, str], Exception] = {}

    def _call(self, op: str, kind: str, name: str) -> None:
        self.calls.append((op, kind, name))
        err = self.fail.get((op, kind))
        if err is not None:
            raise err

    def get(self, kind, ref: ObjectRef):
        self._call("get", kind.KIND, ref.name)
        return self.inner.get(kind, ref)

    def create(self, obj):
        self._call("create", obj.kind, obj.metadata.name)
        return self.inner.create(obj)

    def update(self, obj):
        self._call("update", obj.kind, obj.metadata.name)
        return self.inner.update(obj)

    def delete(self, kind, ref: ObjectRef):
        self._call("delete", kind.KIND, ref.name)
        return self.inner.delete(kind, ref)

    def list(self, kind, namespace=None):
        self._call("list", kind.KIND, namespace or "")
        return self.inner.list(kind, namespace)

    def writes(self, kind: str | None = None) -> list[tuple[str, str, str]]:
        return [c for c in self.calls if c[0] in {"create", "update", "delete"} and (kind is None or c[1] == kind)]

    def reset(self) -> None:
        self.calls.clear()


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def recording(store) -> RecordingStore:
    return RecordingStore(store)


@pytest.fixture
def make_limitador(store):
    """Create a Limitador in the memory store and return the stored object."""

    def _make(name: str = "demo", namespace: str = "default", finalizers: list[str] | None = None, **spec) -> Limitador:
        obj = Limitador(
            metadata=ObjectMeta(name=name, namespace=namespace, finalizers=finalizers or []),
            spec=LimitadorSpec(**spec),
        )
        return store.create(obj)

    return _make


@pytest.fixture(autouse=True)
def _detach_event_handlers():
    yield
    logger = logging.getLogger("lro")
    for h in [h for h in logger.handlers if isinstance(h, EventLogHandler)]:
        logger.removeHandler(h)
