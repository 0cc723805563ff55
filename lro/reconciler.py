from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from threading import Event
from typing import Any, Callable, Sequence

from .builders import limitador_deployment, limitador_service, set_controller_reference
from .errors import ChildReconcileError, ContractViolation
from .models import Deployment, Limitador, ObjectRef, Resource, Service
from .mutators import CreateOnlyMutator, DeploymentMutator, Mutator
from .requeue import Requeue
from .store import NotFound, Store

logger = logging.getLogger(__name__)


class Outcome(str, Enum):
    NOOP = "noop"
    CREATED = "created"
    UPDATED = "updated"
    ERROR = "error"


def _log_ctx(kind: str, ref: ObjectRef) -> dict[str, str]:
    return {"kind": kind, "namespace": ref.namespace, "resource": ref.name}


def reconcile_child(store: Store, desired: Resource, mutator: Mutator | None = None) -> Outcome:
    """Fetch-or-create ``desired``; sync an existing child through ``mutator``.

    Without a mutator the child is only ever created. An update is issued
    only when the mutator reports a change. Every failure is raised as a
    ChildReconcileError naming the child.
    """
    kind = type(desired)
    ctx = _log_ctx(desired.kind, desired.ref)
    try:
        try:
            existing = store.get(kind, desired.ref)
        except NotFound:
            if desired.controller_owner() is None:
                raise ContractViolation(f"{desired.kind} {desired.ref} has no controller owner reference")
            store.create(desired)
            logger.info("Created %s %s", desired.kind, desired.ref, extra=ctx)
            return Outcome.CREATED

        if not isinstance(existing, kind):
            raise ContractViolation(f"{type(existing).__name__} is not a {kind.__name__}")
        if mutator is None or not mutator.mutate(existing, desired):
            return Outcome.NOOP

        store.update(existing)
        logger.info("Updated %s %s", desired.kind, desired.ref, extra=ctx)
        return Outcome.UPDATED
    except ChildReconcileError:
        raise
    except Exception as e:
        raise ChildReconcileError(desired.kind, desired.ref, e) from e


@dataclass(frozen=True)
class ChildRegistration:
    """One managed child kind: how to build it and how to keep it in sync."""

    kind: type[Resource]
    build: Callable[[Any], Resource]
    mutator: Mutator | None = None


@dataclass
class ReconcileResult:
    """Result of one reconciliation pass."""

    ref: ObjectRef
    requeue: Requeue = field(default_factory=Requeue.none)
    error: Exception | None = None
    outcomes: dict[str, Outcome] = field(default_factory=dict)

    @property
    def success(self) -> bool:
        return self.error is None


class Reconciler:
    """Level-triggered reconcile loop for one owner kind and its ordered children.

    Holds no state between passes: each pass recomputes the desired children
    from the owner as it is in the store. Children are reconciled in the
    registered order and the pass stops at the first failing child.
    """

    def __init__(
        self,
        store: Store,
        owner_kind: type[Resource],
        children: Sequence[ChildRegistration],
        cancel: Event | None = None,
    ):
        self.store = store
        self.owner_kind = owner_kind
        self.children = tuple(children)
        self.cancel = cancel

    def reconcile(self, ref: ObjectRef, cancel: Event | None = None) -> ReconcileResult:
        cancel = cancel or self.cancel
        owner_name = self.owner_kind.KIND
        ctx = _log_ctx(owner_name, ref)
        logger.debug("Reconciling %s %s", owner_name, ref, extra=ctx)
        result = ReconcileResult(ref)

        try:
            owner = self.store.get(self.owner_kind, ref)
        except NotFound:
            # Children carry an owner reference; the store cascades the deletion.
            logger.debug("%s %s not found", owner_name, ref, extra=ctx)
            return result
        except Exception as e:
            logger.error("Failed to get %s %s: %s", owner_name, ref, e, extra=ctx)
            result.error = e
            result.requeue = Requeue.backoff()
            return result

        if owner.metadata.deletion_timestamp is not None:
            logger.debug("%s %s marked to be deleted", owner_name, ref, extra=ctx)
            return result

        for child in self.children:
            if cancel is not None and cancel.is_set():
                logger.debug("Reconcile of %s %s cancelled", owner_name, ref, extra=ctx)
                result.requeue = Requeue.immediate()
                return result
            try:
                desired = child.build(owner)
                if not isinstance(desired, child.kind):
                    raise ContractViolation(
                        f"builder for {child.kind.__name__} returned {type(desired).__name__}"
                    )
                set_controller_reference(owner, desired)
                outcome = reconcile_child(self.store, desired, child.mutator)
            except Exception as e:
                err = e if isinstance(e, ChildReconcileError) else ChildReconcileError(child.kind.KIND, ref, e)
                logger.error("Reconcile %s of %s %s failed: %s", child.kind.KIND, owner_name, ref, err, extra=ctx)
                result.outcomes[child.kind.KIND] = Outcome.ERROR
                result.error = err
                result.requeue = Requeue.backoff()
                return result
            logger.debug("Reconcile %s: %s", child.kind.KIND, outcome.value, extra=ctx)
            result.outcomes[child.kind.KIND] = outcome

        return result


LIMITADOR_CHILDREN = (
    ChildRegistration(Service, limitador_service, CreateOnlyMutator(Service)),
    ChildRegistration(Deployment, limitador_deployment, DeploymentMutator()),
)


class LimitadorReconciler(Reconciler):
    """Reconciles a Limitador: its Service first, then its Deployment."""

    def __init__(self, store: Store, cancel: Event | None = None):
        super().__init__(store, Limitador, LIMITADOR_CHILDREN, cancel)
