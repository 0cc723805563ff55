from __future__ import annotations

import copy
from typing import Any

from .errors import ContractViolation, MutatorError
from .models import Deployment, Resource


class Mutator:
    """Decides whether an existing child needs an update and applies it in place.

    Subclasses implement ``sync``; ``mutate`` guards it with a kind check so a
    mutator registered for the wrong child fails loudly.
    """

    kind: type[Resource] = Resource

    def mutate(self, existing: Resource, desired: Resource) -> bool:
        for role, obj in (("existing", existing), ("desired", desired)):
            if not isinstance(obj, self.kind):
                raise ContractViolation(f"{role} {type(obj).__name__} is not a {self.kind.__name__}")
        return self.sync(existing, desired)

    def sync(self, existing: Any, desired: Any) -> bool:
        raise NotImplementedError

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.kind.__name__})"


class CreateOnlyMutator(Mutator):
    """Never reports a change: the child is created once and left alone."""

    def __init__(self, kind: type[Resource]):
        self.kind = kind

    def sync(self, existing: Any, desired: Any) -> bool:
        return False


def _split(path: str) -> list[str | int]:
    return [int(p) if p.isdigit() else p for p in path.split(".")]


def _resolve(obj: Any, parts: list[str | int]) -> Any:
    for p in parts:
        obj = obj[p] if isinstance(p, int) else getattr(obj, p)
    return obj


class FieldMutator(Mutator):
    """Copies a fixed set of fields from desired to existing.

    Paths are dotted attribute names; integer segments index lists, e.g.
    ``spec.template.spec.containers.0.image``. Fields outside the set are
    never touched.
    """

    def __init__(self, kind: type[Resource], *paths: str):
        self.kind = kind
        self.paths = tuple(paths)

    def sync(self, existing: Any, desired: Any) -> bool:
        updated = False
        for path in self.paths:
            *parent_parts, leaf = _split(path)
            try:
                target = _resolve(existing, parent_parts)
                want = _resolve(desired, parent_parts + [leaf])
                have = _resolve(target, [leaf])
            except (AttributeError, IndexError, KeyError) as e:
                raise MutatorError(f"{existing.kind} {existing.ref}: cannot resolve {path}: {e}") from e
            if have == want:
                continue
            if isinstance(leaf, int):
                target[leaf] = copy.deepcopy(want)
            else:
                setattr(target, leaf, copy.deepcopy(want))
            updated = True
        return updated


class DeploymentMutator(FieldMutator):
    """Keeps replica count and the primary container image in sync."""

    def __init__(self) -> None:
        super().__init__(Deployment, "spec.replicas", "spec.template.spec.containers.0.image")
