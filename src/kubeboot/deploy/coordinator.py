# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kubeboot/deploy/coordinator.py

from __future__ import annotations

import logging
import threading
import time
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Deque, Dict, Iterable, List, Optional, Set

from ..state.models import ClusterToken
from ..state.store import StateStore
from ..observers.dispatcher import EventBus
from ..observers.events import LivenessChecked, PhaseChanged, TokenPublished, new_ctx, refresh
from .errors import ControlPlaneDegraded, RunCancelled

log = logging.getLogger("kubeboot")


class ClusterPhase(str, Enum):
    PROVISIONING = "Provisioning"
    CONTROL_PLANE_INITIALIZING = "ControlPlaneInitializing"
    CONTROL_PLANE_READY = "ControlPlaneReady"
    WORKERS_JOINING = "WorkersJoining"
    NETWORK_OVERLAY_PENDING = "NetworkOverlayPending"
    CONVERGED = "Converged"
    DEGRADED = "Degraded"

    @property
    def rank(self) -> int:
        return _RANK[self]


_RANK: Dict[ClusterPhase, int] = {
    ClusterPhase.PROVISIONING: 0,
    ClusterPhase.CONTROL_PLANE_INITIALIZING: 1,
    ClusterPhase.CONTROL_PLANE_READY: 2,
    ClusterPhase.WORKERS_JOINING: 3,
    ClusterPhase.NETWORK_OVERLAY_PENDING: 4,
    ClusterPhase.CONVERGED: 5,
    ClusterPhase.DEGRADED: -1,
}

TERMINAL = (ClusterPhase.CONVERGED, ClusterPhase.DEGRADED)


@dataclass(frozen=True)
class Transition:
    previous: ClusterPhase
    phase: ClusterPhase
    at: float                  # time.monotonic()
    reason: Optional[str] = None


LivenessProbe = Callable[[], bool]
TokenSource = Callable[[], ClusterToken]


class ClusterCoordinator:
    """
    The run's state machine and its one barrier.

    Provisioning -> ControlPlaneInitializing -> ControlPlaneReady ->
    WorkersJoining -> NetworkOverlayPending -> Converged, with Degraded
    absorbing from any non-terminal phase.

    Only the control-plane machine's thread moves the run up to
    ControlPlaneReady and writes the token; worker threads block in
    ``wait_for`` until the phase they need is reached (or the run degrades).
    """

    def __init__(
        self,
        store: StateStore,
        workers: Iterable[str],
        *,
        probe: Optional[LivenessProbe] = None,
        probe_attempts: int = 10,
        probe_interval: float = 15.0,
        token_source: Optional[TokenSource] = None,
        bus: Optional[EventBus] = None,
        run_ctx: Optional[dict] = None,
        cancel_event: Optional[threading.Event] = None,
    ):
        self.store = store
        self.probe = probe
        self.probe_attempts = probe_attempts
        self.probe_interval = probe_interval
        self.token_source = token_source
        self.bus = bus or EventBus()
        self.run_ctx = run_ctx or new_ctx(env="dev", cluster=None)
        self.cancel_event = cancel_event or threading.Event()

        self._cond = threading.Condition()
        self._phase = ClusterPhase.PROVISIONING
        self._pending_workers: Set[str] = set(workers)
        self._transitions: List[Transition] = []
        self._degraded_reason: Optional[str] = None
        self._overlay_done = False
        self._outbox: Deque[PhaseChanged] = deque()
        self._emitting = threading.Lock()

    # ------------------ inspection ------------------

    @property
    def run_id(self) -> Optional[str]:
        return self.run_ctx.get("run_id")

    @property
    def phase(self) -> ClusterPhase:
        with self._cond:
            return self._phase

    @property
    def degraded_reason(self) -> Optional[str]:
        with self._cond:
            return self._degraded_reason

    @property
    def transitions(self) -> List[Transition]:
        with self._cond:
            return list(self._transitions)

    def reached_at(self, phase: ClusterPhase) -> Optional[float]:
        """Monotonic timestamp at which *phase* was entered, if it was."""
        for t in self.transitions:
            if t.phase == phase:
                return t.at
        return None

    def reached(self, phase: ClusterPhase) -> bool:
        with self._cond:
            return self._reached(phase)

    def _reached(self, phase: ClusterPhase) -> bool:
        if self._phase == ClusterPhase.DEGRADED:
            return phase == ClusterPhase.DEGRADED
        return self._phase.rank >= phase.rank

    # ------------------ transitions ------------------

    def _move(self, phase: ClusterPhase, reason: Optional[str] = None) -> None:
        # caller holds self._cond
        previous = self._phase
        if previous == phase or previous in TERMINAL:
            return
        self._phase = phase
        self._transitions.append(Transition(previous, phase, time.monotonic(), reason))
        log.info("[coordinator] %s -> %s%s", previous.value, phase.value, f" ({reason})" if reason else "")
        self._outbox.append(PhaseChanged(previous=previous.value, phase=phase.value, reason=reason, **refresh(self.run_ctx)))
        self._cond.notify_all()

    def _flush(self) -> None:
        """
        Emit queued phase events outside the condition so a slow observer
        never holds up barrier waiters. One thread drains at a time, which
        keeps events in transition order.
        """
        while True:
            if not self._emitting.acquire(blocking=False):
                return
            try:
                while True:
                    with self._cond:
                        if not self._outbox:
                            break
                        event = self._outbox.popleft()
                    self.bus.emit(event)
            finally:
                self._emitting.release()
            with self._cond:
                if not self._outbox:
                    return

    def _advance(self) -> None:
        # caller holds self._cond
        if self._phase.rank < ClusterPhase.CONTROL_PLANE_READY.rank or self._phase in TERMINAL:
            return
        if not self._pending_workers and self._phase.rank < ClusterPhase.NETWORK_OVERLAY_PENDING.rank:
            self._move(ClusterPhase.WORKERS_JOINING, "no workers left to join")
            self._move(ClusterPhase.NETWORK_OVERLAY_PENDING, "all workers settled")
        if self._overlay_done and self._phase == ClusterPhase.NETWORK_OVERLAY_PENDING:
            self._move(ClusterPhase.CONVERGED)

    def mark_degraded(self, reason: str) -> None:
        with self._cond:
            if self._phase not in TERMINAL:
                self._degraded_reason = reason
                self._move(ClusterPhase.DEGRADED, reason)
        self._flush()

    def control_plane_initializing(self) -> None:
        with self._cond:
            if self._phase == ClusterPhase.PROVISIONING:
                self._move(ClusterPhase.CONTROL_PLANE_INITIALIZING)
        self._flush()

    def publish_token(self, machine: str, token: ClusterToken) -> None:
        """Hand the init step's token to the store. TokenConflict propagates."""
        created = self.store.set_token(token, run_id=self.run_id)
        if created:
            log.info("[%s] published join token %r", machine, token)
            self.bus.emit(TokenPublished(machine=machine, fingerprint=token.fingerprint, **refresh(self.run_ctx)))

    def control_plane_initialized(
        self,
        machine: str,
        token: Optional[ClusterToken] = None,
        token_source: Optional[TokenSource] = None,
    ) -> None:
        """
        Called on the control-plane thread once init Succeeded (with its
        token) or was Skipped (token=None). Publishes the token, then polls
        the API until it answers. Raises ControlPlaneDegraded (after moving
        the run to Degraded) when the probe is exhausted.
        """
        self.control_plane_initializing()

        if token is not None:
            self.publish_token(machine, token)
        elif self.store.get_token(self.run_id) is None:
            # init was Skipped: this run needs its own join command, earlier ones may have expired
            source = token_source or self.token_source
            if source is not None:
                try:
                    fresh = source()
                except Exception as e:
                    reason = f"could not obtain a join token from {machine}: {e}"
                    self.mark_degraded(reason)
                    raise ControlPlaneDegraded(reason) from e
                self.publish_token(machine, fresh)
            else:
                previous = self.store.get_token()
                if previous is None:
                    self.mark_degraded("control plane initialized but no join token is available")
                    raise ControlPlaneDegraded("no join token available")
                log.warning("[%s] cannot mint a join token; reusing %r from an earlier run", machine, previous)
                self.publish_token(machine, previous)

        self.await_liveness(machine)

        with self._cond:
            self._move(ClusterPhase.CONTROL_PLANE_READY)
            self._advance()
        self._flush()

    def await_liveness(self, machine: str) -> None:
        if self.probe is None:
            return
        last_error: Optional[str] = None
        for attempt in range(1, self.probe_attempts + 1):
            if self.cancel_event.is_set():
                break
            ok = False
            try:
                ok = bool(self.probe())
                last_error = None if ok else "probe returned not-ready"
            except Exception as e:
                last_error = f"{type(e).__name__}: {e}"
            self.bus.emit(LivenessChecked(machine=machine, attempt=attempt, ok=ok, error=last_error, **refresh(self.run_ctx)))
            if ok:
                log.info("[%s] control-plane API is live (attempt %d/%d)", machine, attempt, self.probe_attempts)
                return
            log.info(
                "[%s] control-plane API not ready (attempt %d/%d): %s",
                machine, attempt, self.probe_attempts, last_error,
            )
            if attempt < self.probe_attempts and self.cancel_event.wait(self.probe_interval):
                break

        if self.cancel_event.is_set():
            raise RunCancelled("cancelled while waiting for the control-plane API")
        reason = f"control-plane API unreachable after {self.probe_attempts} attempts: {last_error}"
        self.mark_degraded(reason)
        raise ControlPlaneDegraded(reason)

    def worker_joining(self, machine: str) -> None:
        with self._cond:
            if self._phase == ClusterPhase.CONTROL_PLANE_READY:
                self._move(ClusterPhase.WORKERS_JOINING, f"{machine} joining")
        self._flush()

    def worker_settled(self, machine: str) -> None:
        """A worker's join finished one way or another; idempotent."""
        with self._cond:
            if machine in self._pending_workers:
                self._pending_workers.discard(machine)
                self._advance()
        self._flush()

    def overlay_applied(self) -> None:
        """May arrive before the last worker settles (a Skipped overlay); Converged waits for it."""
        with self._cond:
            self._overlay_done = True
            self._advance()
        self._flush()

    def control_plane_stopped(self, machine: str) -> None:
        """The control-plane thread is done; if it never got us Ready, nobody will."""
        with self._cond:
            if (
                not self.cancel_event.is_set()
                and self._phase.rank < ClusterPhase.CONTROL_PLANE_READY.rank
                and self._phase not in TERMINAL
            ):
                self._degraded_reason = f"{machine} stopped before the control plane was ready"
                self._move(ClusterPhase.DEGRADED, self._degraded_reason)
        self._flush()

    # ------------------ barrier ------------------

    def wait_for(self, phase: ClusterPhase, timeout: Optional[float] = None) -> bool:
        """
        Block until the run reaches *phase*. Returns False on Degraded,
        cancellation or timeout.
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        with self._cond:
            while True:
                if self._phase == ClusterPhase.DEGRADED:
                    return False
                if self._reached(phase):
                    return True
                if self.cancel_event.is_set():
                    return False
                remaining = None if deadline is None else deadline - time.monotonic()
                if remaining is not None and remaining <= 0:
                    return False
                # wake up periodically to notice cancellation
                self._cond.wait(timeout=0.5 if remaining is None else min(remaining, 0.5))
