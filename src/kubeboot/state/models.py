# src/kubeboot/state/models.py

from __future__ import annotations

import hashlib
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds")


class StepStatus(str, Enum):
    PENDING = "Pending"
    RUNNING = "Running"
    SUCCEEDED = "Succeeded"
    FAILED = "Failed"
    SKIPPED = "Skipped"
    ABORTED = "Aborted"

    @property
    def done(self) -> bool:
        """Satisfied for dependency purposes."""
        return self in (StepStatus.SUCCEEDED, StepStatus.SKIPPED)


@dataclass(frozen=True)
class ClusterToken:
    """
    The join credential published by control-plane init. For kubeadm this
    is the full ``kubeadm join ...`` command line.
    """
    value: str

    @property
    def fingerprint(self) -> str:
        return hashlib.sha256(self.value.encode("utf-8")).hexdigest()[:12]

    def __repr__(self) -> str:
        return f"ClusterToken(sha256:{self.fingerprint})"

    __str__ = __repr__


@dataclass(frozen=True)
class ExecutionRecord:
    machine: str
    step: str
    status: StepStatus
    attempt: int = 0
    ts: str = field(default_factory=utc_now)
    run_id: Optional[str] = None
    reason: Optional[str] = None

    def dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["status"] = self.status.value
        return d

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "ExecutionRecord":
        return cls(
            machine=d["machine"],
            step=d["step"],
            status=StepStatus(d["status"]),
            attempt=int(d.get("attempt", 0)),
            ts=d.get("ts") or utc_now(),
            run_id=d.get("run_id"),
            reason=d.get("reason"),
        )
