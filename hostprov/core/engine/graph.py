"""
Dependency graph — turns a step set into an ordered ExecutionPlan.

Validation happens in three passes, cheapest first:

    1. Duplicate names              → DuplicateStepError
    2. Dependencies outside the set → UnknownDependencyError
    3. Cycles (DFS, visiting/visited marks) → CycleError naming the cycle

Ordering is Kahn's algorithm with the ready set kept in declaration
order, so the earliest-declared ready step always goes next and the
same step set always yields the same plan.

Pure: no I/O, no probing.
"""

from __future__ import annotations

import heapq
from collections.abc import Iterator, Sequence
from dataclasses import dataclass
from typing import Any

from hostprov.core.errors import CycleError, DuplicateStepError, UnknownDependencyError
from hostprov.core.models.step import Step


@dataclass(frozen=True)
class ExecutionPlan:
    """An ordered, immutable sequence of steps.

    Every step appears after all of its dependencies.
    """

    steps: tuple[Step, ...] = ()

    def __iter__(self) -> Iterator[Step]:
        return iter(self.steps)

    def __len__(self) -> int:
        return len(self.steps)

    @property
    def names(self) -> list[str]:
        return [s.name for s in self.steps]

    def index(self, name: str) -> int:
        return self.names.index(name)

    def get(self, name: str) -> Step | None:
        for step in self.steps:
            if step.name == name:
                return step
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "total": len(self.steps),
            "steps": [
                {
                    "position": i + 1,
                    "name": s.name,
                    "description": s.description,
                    "depends_on": list(s.depends_on),
                    "criticality": s.criticality.value,
                    "tags": list(s.tags),
                    "actions": [
                        f"{a.adapter}:{a.operation}" for a in s.apply
                    ],
                    "rollback": (
                        [f"{a.adapter}:{a.operation}" for a in s.rollback]
                        if s.rollback is not None
                        else None
                    ),
                }
                for i, s in enumerate(self.steps)
            ],
        }


def _check_names(steps: Sequence[Step]) -> None:
    seen: set[str] = set()
    duplicates: list[str] = []
    for step in steps:
        if step.name in seen and step.name not in duplicates:
            duplicates.append(step.name)
        seen.add(step.name)
    if duplicates:
        raise DuplicateStepError(duplicates)

    for step in steps:
        for dep in step.depends_on:
            if dep not in seen:
                raise UnknownDependencyError(step.name, dep)


def find_cycle(steps: Sequence[Step]) -> list[str] | None:
    """Return one dependency cycle as a closed path, or None.

    The path starts and ends with the same step, following
    "depends on" edges: ``["a", "b", "a"]`` means a depends on b
    and b depends on a. Assumes every dependency is a declared step.
    """
    deps = {s.name: s.depends_on for s in steps}
    visited: set[str] = set()

    for root in steps:
        if root.name in visited:
            continue
        # Depth-first with an explicit stack; path holds the current chain
        path = [root.name]
        on_path = {root.name}
        pending = [iter(deps[root.name])]
        while pending:
            dep = next(pending[-1], None)
            if dep is None:
                pending.pop()
                done = path.pop()
                on_path.discard(done)
                visited.add(done)
            elif dep in on_path:
                return path[path.index(dep):] + [dep]
            elif dep not in visited:
                path.append(dep)
                on_path.add(dep)
                pending.append(iter(deps[dep]))
    return None


def build_plan(steps: Sequence[Step]) -> ExecutionPlan:
    """Order ``steps`` so every step follows its dependencies.

    Raises:
        DuplicateStepError: Two steps share a name.
        UnknownDependencyError: A dependency is not in ``steps``.
        CycleError: The dependency relation has a cycle.
    """
    _check_names(steps)

    cycle = find_cycle(steps)
    if cycle:
        raise CycleError(cycle)

    position = {s.name: i for i, s in enumerate(steps)}
    in_degree = {s.name: len(set(s.depends_on)) for s in steps}
    dependents: dict[str, list[str]] = {s.name: [] for s in steps}
    for step in steps:
        for dep in set(step.depends_on):
            dependents[dep].append(step.name)

    ready = [position[name] for name, deg in in_degree.items() if deg == 0]
    heapq.heapify(ready)

    ordered: list[Step] = []
    while ready:
        step = steps[heapq.heappop(ready)]
        ordered.append(step)
        for successor in dependents[step.name]:
            in_degree[successor] -= 1
            if in_degree[successor] == 0:
                heapq.heappush(ready, position[successor])

    return ExecutionPlan(steps=tuple(ordered))
