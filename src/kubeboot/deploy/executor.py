# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kubeboot/deploy/executor.py

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Set

from ..collaborators.session import close_quietly
from ..config.models import ExecutionSpec
from ..inventory.models import Inventory, Machine, Role
from ..state.models import ClusterToken, StepStatus
from ..state.store import StateStore
from .coordinator import ClusterCoordinator, ClusterPhase
from .errors import (
    FATAL_ERRORS,
    ConfigurationError,
    ControlPlaneDegraded,
    RunCancelled,
    TokenConflict,
    VerificationFailed,
)
from .planner import StageGraph
from .steps import Readiness, RetryPolicy, Step, StepContext, StepKind

# Observer bits
from ..observers.dispatcher import EventBus
from ..observers.events import (
    MachineFinished,
    RunStarted,
    RunSummary,
    StepAborted,
    StepAttempt,
    StepFailed,
    StepSkipped,
    StepStarted,
    StepSucceeded,
    new_ctx,
    refresh,
)

log = logging.getLogger("kubeboot")


class MachineStatus(str, Enum):
    CONVERGED = "Converged"
    FATAL = "Fatal"
    DEGRADED = "Degraded"
    ABORTED = "Aborted"


@dataclass
class ExecutorOptions:
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    barrier_timeout: float = 1800.0
    max_parallel: Optional[int] = None

    @classmethod
    def from_spec(cls, spec: ExecutionSpec) -> "ExecutorOptions":
        return cls(
            retry=RetryPolicy.from_spec(spec.retry),
            barrier_timeout=spec.barrier_timeout_seconds,
            max_parallel=spec.max_parallel,
        )


@dataclass
class MachineReport:
    machine: str
    role: str
    status: MachineStatus = MachineStatus.CONVERGED
    steps: Dict[str, StepStatus] = field(default_factory=dict)
    first_failure: Optional[str] = None
    error: Optional[str] = None


@dataclass
class RunReport:
    run_id: str
    phase: ClusterPhase = ClusterPhase.PROVISIONING
    machines: List[MachineReport] = field(default_factory=list)
    degraded_reason: Optional[str] = None

    def add(self, report: MachineReport) -> None:
        self.machines.append(report)

    def get(self, hostname: str) -> MachineReport:
        for m in self.machines:
            if m.machine == hostname:
                return m
        raise KeyError(hostname)

    def count(self, status: MachineStatus) -> int:
        return sum(1 for m in self.machines if m.status == status)

    @property
    def ok(self) -> bool:
        return self.phase == ClusterPhase.CONVERGED and all(
            m.status == MachineStatus.CONVERGED for m in self.machines
        )

    @property
    def exit_code(self) -> int:
        return 0 if self.ok else 1

    def summary(self) -> str:
        return (
            f"phase={self.phase.value} "
            f"CONVERGED={self.count(MachineStatus.CONVERGED)} "
            f"FATAL={self.count(MachineStatus.FATAL)} "
            f"DEGRADED={self.count(MachineStatus.DEGRADED)} "
            f"ABORTED={self.count(MachineStatus.ABORTED)}"
        )


@dataclass
class _Outcome:
    status: StepStatus
    terminal: Optional[MachineStatus] = None    # set when the machine must stop here
    error: Optional[str] = None


def _as_token(result: Any) -> Optional[ClusterToken]:
    if isinstance(result, ClusterToken):
        return result
    if isinstance(result, str) and result.strip():
        return ClusterToken(result.strip())
    return None


class Executor:
    """
    Runs each machine's stage graph on its own thread.

    Steps of one machine run one at a time in plan order; machines run in
    parallel. Every status transition is journaled before it is acted on.
    A failure on a worker stops that worker only. A fatal control-plane
    init failure (or a control plane that never answers) degrades the run
    and releases the workers waiting at the barrier.
    """

    def __init__(
        self,
        inventory: Inventory,
        graphs: Dict[Role, StageGraph],
        store: StateStore,
        coordinator: ClusterCoordinator,
        session_factory: Optional[Callable[[Machine], Any]] = None,
        *,
        options: Optional[ExecutorOptions] = None,
        bus: Optional[EventBus] = None,
        run_ctx: Optional[dict] = None,
        sleep_until_cancelled: Optional[Callable[[float], bool]] = None,
    ):
        self.inventory = inventory
        self.graphs = graphs
        self.store = store
        self.coordinator = coordinator
        self.session_factory = session_factory
        self.options = options or ExecutorOptions()
        self.bus = bus or coordinator.bus
        self.run_ctx = run_ctx or coordinator.run_ctx or new_ctx(env="dev", cluster=None)
        self._cancel: threading.Event = coordinator.cancel_event
        # returns True when cancelled while waiting
        self._pause = sleep_until_cancelled or self._cancel.wait

    @property
    def run_id(self) -> str:
        return self.run_ctx["run_id"]

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    def cancel(self) -> None:
        """Stop scheduling new steps; in-flight ones finish or are marked Aborted."""
        if not self._cancel.is_set():
            log.warning("Cancellation requested; no new steps will be started")
        self._cancel.set()

    # ------------------ run ------------------

    def run(self) -> RunReport:
        machines = sorted(self.inventory.machines, key=lambda m: not m.is_control_plane)
        for m in machines:
            if m.role not in self.graphs:
                raise ConfigurationError(f"no stage graph for role {m.role.value}")

        self.bus.emit(RunStarted(machines=[m.hostname for m in machines], **refresh(self.run_ctx)))
        log.info("Bootstrapping %d machine(s), run %s", len(machines), self.run_id)

        # the control plane parks at the overlay gate while workers join, so
        # it always needs a second thread next to it
        size = self.options.max_parallel or len(machines)
        size = max(1, min(len(machines), max(size, 2)))

        results: Dict[str, MachineReport] = {}
        with ThreadPoolExecutor(max_workers=size, thread_name_prefix="kubeboot") as pool:
            # control plane first so it never queues behind waiting workers
            futures = {pool.submit(self._run_machine, m): m for m in machines}
            try:
                wait(futures)
            except KeyboardInterrupt:
                self.cancel()
                wait(futures)
            for fut, m in futures.items():
                results[m.hostname] = fut.result()

        report = RunReport(
            run_id=self.run_id,
            phase=self.coordinator.phase,
            degraded_reason=self.coordinator.degraded_reason,
        )
        for m in machines:
            report.add(results[m.hostname])

        self.bus.emit(
            RunSummary(
                phase=report.phase.value,
                converged=report.count(MachineStatus.CONVERGED),
                fatal=report.count(MachineStatus.FATAL),
                degraded=report.count(MachineStatus.DEGRADED),
                aborted=report.count(MachineStatus.ABORTED),
                **refresh(self.run_ctx),
            )
        )
        log.info("Run %s finished: %s", self.run_id, report.summary())
        return report

    # ------------------ one machine ------------------

    def _run_machine(self, machine: Machine) -> MachineReport:
        host = machine.hostname
        graph = self.graphs[machine.role]
        report = MachineReport(
            machine=host,
            role=machine.role.value,
            steps={s.id: StepStatus.PENDING for s in graph},
        )
        completed: Set[str] = set()
        session = None

        try:
            if self.cancelled:
                report.status = MachineStatus.ABORTED
                return report

            if self.session_factory is not None:
                try:
                    session = self.session_factory(machine)
                except Exception as e:
                    log.error("[%s] could not open a session: %s", host, e)
                    report.status = MachineStatus.FATAL
                    report.error = f"{type(e).__name__}: {e}"
                    return report

            ctx = StepContext(machine=machine, store=self.store, session=session, run_id=self.run_id)

            while True:
                if self.cancelled:
                    report.status = MachineStatus.ABORTED
                    break
                ready = graph.next_ready(completed)
                if not ready:
                    break
                current = ready[0]
                outcome = self._run_step(machine, current, ctx)
                report.steps[current.id] = outcome.status
                if outcome.status.done:
                    completed.add(current.id)
                if outcome.terminal is not None:
                    report.status = outcome.terminal
                    report.first_failure = current.id
                    report.error = outcome.error
                    break
            return report

        except Exception as e:
            # a bug in a step's predicate or in here; keep the other machines going
            log.exception("[%s] unexpected error", host)
            report.status = MachineStatus.FATAL
            report.error = f"{type(e).__name__}: {e}"
            return report

        finally:
            close_quietly(session)
            if machine.is_control_plane:
                self.coordinator.control_plane_stopped(host)
            else:
                self.coordinator.worker_settled(host)
            self.bus.emit(
                MachineFinished(
                    machine=host,
                    status=report.status.value,
                    first_failure=report.first_failure,
                    **refresh(self.run_ctx),
                )
            )
            log.info("[%s] finished: %s%s", host, report.status.value,
                     f" (first failure: {report.first_failure})" if report.first_failure else "")

    # ------------------ one step ------------------

    def _record(self, machine: str, step: Step, status: StepStatus, attempt: int = 0, reason: Optional[str] = None):
        return self.store.record(machine, step.id, status, attempt=attempt, reason=reason, run_id=self.run_id)

    def _abort(self, machine: str, step: Step, attempt: int, reason: str, terminal: MachineStatus) -> _Outcome:
        self._record(machine, step, StepStatus.ABORTED, attempt, reason)
        self.bus.emit(StepAborted(machine=machine, step=step.id, reason=reason, **refresh(self.run_ctx)))
        log.warning("[%s] %s aborted: %s", machine, step.id, reason)
        return _Outcome(StepStatus.ABORTED, terminal, reason)

    def _fail(
        self,
        machine: Machine,
        step: Step,
        attempt: int,
        error: str,
        terminal: Optional[MachineStatus] = None,
    ) -> _Outcome:
        host = machine.hostname
        self._record(host, step, StepStatus.FAILED, attempt, error)
        self.bus.emit(StepFailed(machine=host, step=step.id, attempts=attempt, error=error, fatal=True, **refresh(self.run_ctx)))
        log.error("[%s] %s failed after %d attempt(s): %s", host, step.id, attempt, error)
        if step.kind == StepKind.CONTROL_PLANE_INIT:
            self.coordinator.mark_degraded(f"control-plane init failed on {host}: {error}")
            return _Outcome(StepStatus.FAILED, terminal or MachineStatus.DEGRADED, error)
        return _Outcome(StepStatus.FAILED, terminal or MachineStatus.FATAL, error)

    def _token_source(self, ctx: StepContext):
        cp = getattr(ctx.session, "control_plane", None)
        return cp.join_token if cp is not None else None

    def _evaluate(self, machine: Machine, step: Step, ctx: StepContext, policy: RetryPolicy) -> Readiness:
        """The precondition probe is retried like the action."""
        for attempt in range(1, policy.max_attempts + 1):
            try:
                return step.evaluate(ctx)
            except FATAL_ERRORS:
                raise
            except Exception as e:
                if attempt == policy.max_attempts:
                    raise
                log.warning("[%s] %s: precondition check failed (%s), retrying", machine.hostname, step.id, e)
                if self._pause(policy.delay_for(attempt)):
                    raise
        raise AssertionError("unreachable")

    def _after_success(self, machine: Machine, step: Step, ctx: StepContext, token: Optional[ClusterToken]) -> Optional[_Outcome]:
        """Coordinator bookkeeping for Succeeded or Skipped steps; returns an outcome if the machine must stop."""
        host = machine.hostname
        if step.kind == StepKind.CONTROL_PLANE_INIT:
            try:
                self.coordinator.control_plane_initialized(host, token, token_source=self._token_source(ctx))
            except ControlPlaneDegraded as e:
                return _Outcome(StepStatus.SUCCEEDED, MachineStatus.DEGRADED, str(e))
            except RunCancelled as e:
                return _Outcome(StepStatus.SUCCEEDED, MachineStatus.ABORTED, str(e))
            except TokenConflict as e:
                self.coordinator.mark_degraded(str(e))
                return _Outcome(StepStatus.SUCCEEDED, MachineStatus.FATAL, str(e))
        elif step.kind == StepKind.WORKER_JOIN:
            self.coordinator.worker_settled(host)
        elif step.kind == StepKind.NETWORK_OVERLAY:
            self.coordinator.overlay_applied()
        return None

    def _run_step(self, machine: Machine, step: Step, ctx: StepContext) -> _Outcome:
        host = machine.hostname
        policy = step.retry or self.options.retry

        # 1) already satisfied?
        try:
            readiness = self._evaluate(machine, step, ctx, policy)
        except Exception as e:
            if self.cancelled:
                return self._abort(host, step, 0, "cancelled", MachineStatus.ABORTED)
            return self._fail(machine, step, 0, f"precondition check failed: {type(e).__name__}: {e}")

        if readiness == Readiness.SATISFIED:
            self._record(host, step, StepStatus.SKIPPED)
            self.bus.emit(StepSkipped(machine=host, step=step.id, **refresh(self.run_ctx)))
            log.info("[%s] %s already satisfied, skipping", host, step.id)
            stop = self._after_success(machine, step, ctx, None)
            if stop is not None:
                stop.status = StepStatus.SKIPPED
                return stop
            return _Outcome(StepStatus.SKIPPED)

        # 2) barrier
        gate = step.gate
        if gate is not None:
            log.info("[%s] %s waiting for %s", host, step.id, gate.value)
            if not self.coordinator.wait_for(gate, timeout=self.options.barrier_timeout):
                if self.coordinator.phase == ClusterPhase.DEGRADED:
                    reason = f"control plane degraded: {self.coordinator.degraded_reason}"
                    return self._abort(host, step, 0, reason, MachineStatus.DEGRADED)
                if self.cancelled:
                    return self._abort(host, step, 0, "cancelled while waiting", MachineStatus.ABORTED)
                return self._fail(
                    machine, step, 0,
                    f"timed out after {self.options.barrier_timeout:g}s waiting for {gate.value}",
                )

        if step.kind == StepKind.CONTROL_PLANE_INIT:
            self.coordinator.control_plane_initializing()
        elif step.kind == StepKind.WORKER_JOIN:
            self.coordinator.worker_joining(host)

        # 3) attempts
        self.bus.emit(StepStarted(machine=host, step=step.id, **refresh(self.run_ctx)))
        t0 = time.monotonic()
        for attempt in range(1, policy.max_attempts + 1):
            if self.cancelled:
                return self._abort(host, step, attempt - 1, "cancelled before next attempt", MachineStatus.ABORTED)

            self._record(host, step, StepStatus.RUNNING, attempt)
            self.bus.emit(StepAttempt(machine=host, step=step.id, attempt=attempt, **refresh(self.run_ctx)))
            log.info("[%s] %s (attempt %d/%d)", host, step.id, attempt, policy.max_attempts)

            token: Optional[ClusterToken] = None
            try:
                result = step.apply(ctx)
                if not step.verify(ctx):
                    raise VerificationFailed(step.id, host)
                if step.kind == StepKind.CONTROL_PLANE_INIT:
                    token = _as_token(result)
                    if token is not None:
                        # the token is durable before the step is
                        self.coordinator.publish_token(host, token)
            except FATAL_ERRORS as e:
                return self._fail(machine, step, attempt, f"{type(e).__name__}: {e}", MachineStatus.FATAL)
            except Exception as e:
                error = f"{type(e).__name__}: {e}"
                if self.cancelled:
                    return self._abort(host, step, attempt, f"cancelled; last attempt failed: {error}", MachineStatus.ABORTED)
                if attempt == policy.max_attempts:
                    return self._fail(machine, step, attempt, error)
                delay = policy.delay_for(attempt)
                self._record(host, step, StepStatus.FAILED, attempt, error)
                log.warning("[%s] %s attempt %d failed: %s; retrying in %.1fs", host, step.id, attempt, error, delay)
                if self._pause(delay):
                    return self._abort(host, step, attempt, "cancelled while backing off", MachineStatus.ABORTED)
                continue

            duration_ms = int((time.monotonic() - t0) * 1000)
            self._record(host, step, StepStatus.SUCCEEDED, attempt)
            self.bus.emit(StepSucceeded(machine=host, step=step.id, attempts=attempt, duration_ms=duration_ms, **refresh(self.run_ctx)))
            log.info("[%s] %s succeeded in %d ms", host, step.id, duration_ms)
            stop = self._after_success(machine, step, ctx, token)
            return stop or _Outcome(StepStatus.SUCCEEDED)

        raise AssertionError("unreachable")
