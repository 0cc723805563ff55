from __future__ import annotations

import heapq
import itertools
import logging
import time
from collections import deque
from threading import Condition, Event, Thread
from typing import Hashable

from .models import ObjectRef, Resource
from .reconciler import LimitadorReconciler, Reconciler
from .requeue import BackoffPolicy, Requeue, RequeueKind, decide
from .settings import settings
from .store import Store

logger = logging.getLogger(__name__)


class WorkQueue:
    """De-duplicating work queue with delayed adds.

    A key is handed to at most one worker at a time: adding a key that is
    being processed marks it dirty, and ``done`` puts it back in line.
    """

    def __init__(self) -> None:
        self._cond = Condition()
        self._queue: deque[Hashable] = deque()
        self._dirty: set[Hashable] = set()
        self._processing: set[Hashable] = set()
        self._waiting: list[tuple[float, int, Hashable]] = []
        self._seq = itertools.count()
        self._shutdown = False

    def __len__(self) -> int:
        with self._cond:
            return len(self._queue)

    @property
    def shutting_down(self) -> bool:
        with self._cond:
            return self._shutdown

    def _add_locked(self, key: Hashable) -> None:
        if self._shutdown or key in self._dirty:
            return
        self._dirty.add(key)
        if key in self._processing:
            return
        self._queue.append(key)
        self._cond.notify()

    def add(self, key: Hashable) -> None:
        with self._cond:
            self._add_locked(key)

    def add_after(self, key: Hashable, delay_s: float) -> None:
        if delay_s <= 0:
            self.add(key)
            return
        with self._cond:
            if self._shutdown:
                return
            heapq.heappush(self._waiting, (time.monotonic() + delay_s, next(self._seq), key))
            self._cond.notify()

    def _promote_ready(self) -> None:
        now = time.monotonic()
        while self._waiting and self._waiting[0][0] <= now:
            _, _, key = heapq.heappop(self._waiting)
            self._add_locked(key)

    def get(self, block: bool = True) -> Hashable | None:
        """Next key to process, or None on shutdown (or when empty and not blocking)."""
        with self._cond:
            while True:
                self._promote_ready()
                if self._queue:
                    key = self._queue.popleft()
                    self._processing.add(key)
                    self._dirty.discard(key)
                    return key
                if self._shutdown or not block:
                    return None
                timeout = self._waiting[0][0] - time.monotonic() if self._waiting else None
                self._cond.wait(timeout)

    def done(self, key: Hashable) -> None:
        with self._cond:
            self._processing.discard(key)
            if key in self._dirty and not self._shutdown:
                self._queue.append(key)
                self._cond.notify()

    def shut_down(self) -> None:
        with self._cond:
            self._shutdown = True
            self._waiting.clear()
            self._cond.notify_all()


class Controller:
    """Runs reconcile passes on a pool of worker threads.

    Owner references are queued by ``enqueue`` (on writes) and by a periodic
    resync of every owner in the store. The requeue decision of each pass
    is applied here; the reconciler never sleeps or retries itself.
    """

    def __init__(
        self,
        store: Store,
        reconciler: Reconciler | None = None,
        workers: int = settings.workers,
        resync_interval_s: float = settings.resync_interval_s,
        backoff: BackoffPolicy | None = None,
    ):
        self.store = store
        self.stop_event = Event()
        self.reconciler = reconciler or LimitadorReconciler(store, cancel=self.stop_event)
        self.queue = WorkQueue()
        self.workers = max(1, int(workers))
        self.resync_interval_s = resync_interval_s
        self.backoff = backoff or BackoffPolicy(settings.backoff_base_s, settings.backoff_max_s)
        self._threads: list[Thread] = []

    def start(self) -> None:
        if any(t.is_alive() for t in self._threads):
            return
        # a stopped controller starts again with a fresh queue
        if self.queue.shutting_down:
            self.queue = WorkQueue()
        self.stop_event.clear()
        self._threads = [
            Thread(target=self._worker, name=f"lro-worker-{i}", daemon=True) for i in range(self.workers)
        ]
        if self.resync_interval_s > 0:
            self._threads.append(Thread(target=self._resync_loop, name="lro-resync", daemon=True))
        for t in self._threads:
            t.start()
        logger.info("Controller started with %d workers", self.workers)

    def stop(self, timeout_s: float = 5.0) -> None:
        self.stop_event.set()
        self.queue.shut_down()
        for t in self._threads:
            t.join(timeout_s)
        self._threads = []

    def enqueue(self, obj: Resource) -> ObjectRef | None:
        """Queue the owner affected by a change to ``obj``; returns the queued ref."""
        owner_kind = self.reconciler.owner_kind
        if isinstance(obj, owner_kind):
            ref = obj.ref
        else:
            owner = obj.controller_owner()
            if owner is None or owner.kind != owner_kind.KIND:
                return None
            ref = ObjectRef(obj.metadata.namespace, owner.name)
        self.queue.add(ref)
        return ref

    def resync(self) -> None:
        for obj in self.store.list(self.reconciler.owner_kind):
            self.queue.add(obj.ref)

    def process_next(self, block: bool = True) -> bool:
        ref = self.queue.get(block=block)
        if ref is None:
            return False
        try:
            self._handle(ref)
        finally:
            self.queue.done(ref)
        return True

    def _handle(self, ref: ObjectRef) -> None:
        try:
            result = self.reconciler.reconcile(ref, cancel=self.stop_event)
            requeue = decide(result.requeue, result.error)
        except Exception as e:
            logger.exception("Reconcile of %s panicked: %s", ref, e)
            requeue = Requeue.backoff()

        if requeue.kind == RequeueKind.BACKOFF:
            self.queue.add_after(ref, self.backoff.when(ref))
            return
        self.backoff.forget(ref)
        if requeue.kind == RequeueKind.IMMEDIATE:
            self.queue.add(ref)
        elif requeue.kind == RequeueKind.AFTER:
            self.queue.add_after(ref, requeue.after_s)

    def _worker(self) -> None:
        while self.process_next():
            pass

    def _resync_loop(self) -> None:
        while not self.stop_event.wait(self.resync_interval_s):
            try:
                self.resync()
            except Exception as e:
                logger.error("Resync failed: %s: %s", type(e).__name__, e)
