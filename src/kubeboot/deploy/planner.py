# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

from __future__ import annotations

from collections import deque
from typing import Dict, Iterable, List, Optional, Set

from ..inventory.models import Role
from .errors import CyclicDependencyError, DuplicateStepError, UnknownDependencyError
from .steps import Step

# Observer bits
from ..observers.dispatcher import EventBus
from ..observers.events import PlanComputed, PlanFailed, new_ctx


def _validate_steps(steps: List[Step]) -> None:
    names: Set[str] = set()
    for s in steps:
        if s.id in names:
            raise DuplicateStepError(f"Step id '{s.id}' is declared more than once")
        names.add(s.id)
    for s in steps:
        for d in s.depends_on:
            if d not in names:
                raise UnknownDependencyError(
                    f"Step '{s.id}' depends on unknown step '{d}'"
                )


def _toposort(steps: List[Step]) -> List[Step]:
    """
    Stable topological sort of steps based on 'depends_on'; among steps
    that are ready at the same time the alphabetical order wins.
    """
    by_id: Dict[str, Step] = {s.id: s for s in steps}
    indeg: Dict[str, int] = {s.id: len(set(s.depends_on)) for s in steps}
    graph: Dict[str, Set[str]] = {s.id: set(s.depends_on) for s in steps}

    queue = deque(sorted([n for n, deg in indeg.items() if deg == 0]))
    order: List[Step] = []

    while queue:
        n = queue.popleft()
        order.append(by_id[n])
        for m, deps in graph.items():
            if n in deps:
                indeg[m] -= 1
                if indeg[m] == 0:
                    queue.append(m)
                    queue = deque(sorted(queue))  # deterministic

    if len(order) != len(steps):
        stuck = sorted(n for n, deg in indeg.items() if deg > 0)
        raise CyclicDependencyError(f"Cyclic dependency detected among steps: {', '.join(stuck)}")
    return order


class StageGraph:
    """
    A DAG of steps for one role. Invalid graphs (duplicate ids, unknown
    dependencies, cycles) are rejected here, before anything runs.
    """

    def __init__(self, steps: Iterable[Step], name: str = "stage"):
        self.name = name
        steps = list(steps)
        _validate_steps(steps)
        self._order = _toposort(steps)
        self._by_id = {s.id: s for s in self._order}

    def __iter__(self):
        return iter(self._order)

    def __len__(self) -> int:
        return len(self._order)

    def __contains__(self, step_id: str) -> bool:
        return step_id in self._by_id

    @property
    def order(self) -> List[Step]:
        return list(self._order)

    @property
    def ids(self) -> List[str]:
        return [s.id for s in self._order]

    def get(self, step_id: str) -> Step:
        return self._by_id[step_id]

    def next_ready(self, completed: Set[str]) -> List[Step]:
        """Steps not yet completed whose dependencies all are, in plan order."""
        return [
            s for s in self._order
            if s.id not in completed and all(d in completed for d in s.depends_on)
        ]

    def for_role(self, role: Role) -> "StageGraph":
        """
        The sub-graph of steps applicable to *role*. Dependencies on steps
        the role doesn't run are an error: the catalogue must be closed
        per role.
        """
        return StageGraph([s for s in self._order if s.applies_to(role)], name=role.value)


def plan(
    steps: Iterable[Step],
    role: Role,
    bus: Optional[EventBus] = None,
    run_ctx: Optional[dict] = None,
) -> StageGraph:
    """
    Build the stage graph for *role* from a step catalogue.
    Emits PlanComputed / PlanFailed if an EventBus is provided.
    """
    ctx = run_ctx or new_ctx(env="dev", cluster=None)
    try:
        graph = StageGraph([s for s in steps if s.applies_to(role)], name=role.value)
        if bus:
            bus.emit(PlanComputed(role=role.value, order=graph.ids, **ctx))
        return graph

    except Exception as e:
        if bus:
            bus.emit(PlanFailed(role=role.value, error=str(e), **ctx))
        raise
