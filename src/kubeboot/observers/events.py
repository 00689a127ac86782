# src/kubeboot/observers/events.py

from __future__ import annotations
from dataclasses import dataclass, asdict
from typing import List, Dict, Any, Optional
from datetime import datetime, timezone
import uuid


# ---------------------------------------------------------------------
# Base context and helper
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class BaseEvent:
    ts: str           # ISO timestamp
    run_id: str       # correlates all events in a single bootstrap invocation
    env: str          # dev/staging/prod
    cluster: Optional[str]

    def dict(self) -> Dict[str, Any]:
        return asdict(self)


def new_ctx(env: str, cluster: Optional[str], run_id: Optional[str] = None) -> Dict[str, Any]:
    return {
        "ts": datetime.now(timezone.utc).isoformat(timespec="seconds"),
        "run_id": run_id or str(uuid.uuid4()),
        "env": env,
        "cluster": cluster,
    }


def refresh(ctx: Dict[str, Any]) -> Dict[str, Any]:
    """Same run context, current timestamp."""
    return {**ctx, "ts": datetime.now(timezone.utc).isoformat(timespec="seconds")}


# ---------------------------------------------------------------------
# Run
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class RunStarted(BaseEvent):
    machines: List[str]

@dataclass(frozen=True)
class RunSummary(BaseEvent):
    phase: str
    converged: int
    fatal: int
    degraded: int
    aborted: int


# ---------------------------------------------------------------------
# Planner
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class PlanComputed(BaseEvent):
    role: str
    order: List[str]

@dataclass(frozen=True)
class PlanFailed(BaseEvent):
    role: str
    error: str


# ---------------------------------------------------------------------
# Step lifecycle (per machine)
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class StepStarted(BaseEvent):
    machine: str
    step: str

@dataclass(frozen=True)
class StepSkipped(BaseEvent):
    machine: str
    step: str

@dataclass(frozen=True)
class StepAttempt(BaseEvent):
    machine: str
    step: str
    attempt: int

@dataclass(frozen=True)
class StepSucceeded(BaseEvent):
    machine: str
    step: str
    attempts: int
    duration_ms: int

@dataclass(frozen=True)
class StepFailed(BaseEvent):
    machine: str
    step: str
    attempts: int
    error: str
    fatal: bool

@dataclass(frozen=True)
class StepAborted(BaseEvent):
    machine: str
    step: str
    reason: str

@dataclass(frozen=True)
class MachineFinished(BaseEvent):
    machine: str
    status: str
    first_failure: Optional[str] = None


# ---------------------------------------------------------------------
# Coordinator
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class PhaseChanged(BaseEvent):
    previous: str
    phase: str
    reason: Optional[str] = None

@dataclass(frozen=True)
class TokenPublished(BaseEvent):
    machine: str
    fingerprint: str

@dataclass(frozen=True)
class LivenessChecked(BaseEvent):
    machine: str
    attempt: int
    ok: bool
    error: Optional[str] = None
