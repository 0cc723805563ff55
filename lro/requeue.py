from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from threading import Lock
from typing import Hashable


class RequeueKind(str, Enum):
    NONE = "none"
    IMMEDIATE = "immediate"
    AFTER = "after"
    BACKOFF = "backoff"


@dataclass(frozen=True)
class Requeue:
    """When the dispatcher should run the same reference again."""

    kind: RequeueKind = RequeueKind.NONE
    after_s: float = 0.0

    @classmethod
    def none(cls) -> Requeue:
        return cls()

    @classmethod
    def immediate(cls) -> Requeue:
        return cls(RequeueKind.IMMEDIATE)

    @classmethod
    def after(cls, seconds: float) -> Requeue:
        if seconds <= 0:
            return cls.immediate()
        return cls(RequeueKind.AFTER, float(seconds))

    @classmethod
    def backoff(cls) -> Requeue:
        return cls(RequeueKind.BACKOFF)


def decide(requeue: Requeue, error: BaseException | None) -> Requeue:
    """An error always means a backoff requeue, whatever the pass asked for."""
    if error is not None:
        return Requeue.backoff()
    return requeue


class BackoffPolicy:
    """Per-key exponential backoff: ``base_s * 2**failures``, capped at ``max_s``."""

    def __init__(self, base_s: float = 0.005, max_s: float = 1000.0):
        self.base_s = base_s
        self.max_s = max_s
        self._lock = Lock()
        self._failures: dict[Hashable, int] = {}

    def when(self, key: Hashable) -> float:
        """Record a failure for ``key`` and return how long to wait before retrying."""
        with self._lock:
            n = self._failures.get(key, 0)
            self._failures[key] = n + 1
        # keeps 2**n finite
        if n > 60:
            return self.max_s
        return min(self.base_s * (2**n), self.max_s)

    def failures(self, key: Hashable) -> int:
        with self._lock:
            return self._failures.get(key, 0)

    def forget(self, key: Hashable) -> None:
        with self._lock:
            self._failures.pop(key, None)
