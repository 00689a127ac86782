# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kubeboot/deploy/steps.py

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, FrozenSet, Optional, Tuple

from ..config.models import RetrySpec
from ..inventory.models import Machine, Role
from ..state.models import ClusterToken, StepStatus
from ..state.store import StateStore
from ..utils.retry import backoff_delay
from .coordinator import ClusterPhase


class Readiness(str, Enum):
    SATISFIED = "Satisfied"
    NEEDS_RUN = "NeedsRun"


class StepKind(str, Enum):
    GENERIC = "generic"
    CONTROL_PLANE_INIT = "control-plane-init"    # publishes the join token
    WORKER_JOIN = "worker-join"                  # consumes the join token
    NETWORK_OVERLAY = "network-overlay"          # applied once workers settle


# The coordinator phase a step kind has to wait for before apply()
GATES = {
    StepKind.WORKER_JOIN: ClusterPhase.CONTROL_PLANE_READY,
    StepKind.NETWORK_OVERLAY: ClusterPhase.NETWORK_OVERLAY_PENDING,
}


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    base_delay: float = 2.0
    max_delay: float = 60.0

    def delay_for(self, attempt: int) -> float:
        return backoff_delay(attempt, self.base_delay, self.max_delay)

    @classmethod
    def from_spec(cls, spec: RetrySpec) -> "RetryPolicy":
        return cls(
            max_attempts=spec.max_attempts,
            base_delay=spec.base_delay_seconds,
            max_delay=spec.max_delay_seconds,
        )


@dataclass
class StepContext:
    """What a step's predicates and action get to see."""
    machine: Machine
    store: StateStore
    session: Any = None          # collaborators bound to this machine
    run_id: Optional[str] = None

    @property
    def token(self) -> Optional[ClusterToken]:
        return self.store.get_token(self.run_id)


Predicate = Callable[[StepContext], bool]
Action = Callable[[StepContext], Any]


@dataclass
class Step:
    """
    One idempotent unit of provisioning work on one machine.

    ``check`` is the precondition ("already satisfied?") and must be free of
    side effects. ``verify_fn`` is the postcondition checked after
    ``action``; it defaults to ``check``.
    """
    id: str
    action: Action
    check: Optional[Predicate] = None
    verify_fn: Optional[Predicate] = None
    roles: FrozenSet[Role] = frozenset(Role)
    depends_on: Tuple[str, ...] = ()
    kind: StepKind = StepKind.GENERIC
    retry: Optional[RetryPolicy] = None   # None -> the executor's default
    description: str = ""

    def __post_init__(self) -> None:
        self.roles = frozenset(self.roles)
        self.depends_on = tuple(self.depends_on)

    def applies_to(self, role: Role) -> bool:
        return role in self.roles

    @property
    def gate(self) -> Optional[ClusterPhase]:
        return GATES.get(self.kind)

    def evaluate(self, ctx: StepContext) -> Readiness:
        rec = ctx.store.get(ctx.machine.hostname, self.id)
        if rec is not None and rec.status == StepStatus.SUCCEEDED:
            return Readiness.SATISFIED
        if self.check is not None and self.check(ctx):
            return Readiness.SATISFIED
        return Readiness.NEEDS_RUN

    def apply(self, ctx: StepContext) -> Any:
        return self.action(ctx)

    def verify(self, ctx: StepContext) -> bool:
        fn = self.verify_fn or self.check
        if fn is None:
            return True
        return bool(fn(ctx))

    def __repr__(self) -> str:
        return f"Step({self.id!r}, kind={self.kind.value}, depends_on={list(self.depends_on)})"


def step(
    id: str,
    *,
    roles=frozenset(Role),
    depends_on=(),
    kind: StepKind = StepKind.GENERIC,
    check: Optional[Predicate] = None,
    verify: Optional[Predicate] = None,
    retry: Optional[RetryPolicy] = None,
):
    """Decorator form: the decorated function becomes the step's action."""
    def _wrap(fn: Action) -> Step:
        return Step(
            id=id,
            action=fn,
            check=check,
            verify_fn=verify,
            roles=frozenset(roles),
            depends_on=tuple(depends_on),
            kind=kind,
            retry=retry,
            description=(fn.__doc__ or "").strip().splitlines()[0] if fn.__doc__ else "",
        )
    return _wrap
