from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .models import ObjectRef


class LroError(Exception):
    """Base class for controller errors."""

    retryable = False


class ContractViolation(LroError):
    """A caller broke a programming contract (wrong kind, missing owner, ...)."""


class MutatorError(LroError):
    """A mutator could not sync an existing child, e.g. it is malformed."""


class ChildReconcileError(LroError):
    """Failure while reconciling one child, with the child's kind and identity."""

    def __init__(self, kind: str, ref: ObjectRef, cause: Exception):
        super().__init__(f"{kind} {ref}: {type(cause).__name__}: {cause}")
        self.kind = kind
        self.ref = ref
        self.cause = cause

    @property
    def retryable(self) -> bool:  # type: ignore[override]
        return bool(getattr(self.cause, "retryable", False))
