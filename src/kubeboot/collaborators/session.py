# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kubeboot/collaborators/session.py

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional

from ..config.models import KubebootConfig
from ..inventory.models import Machine
from ..utils.ssh import open_ssh_with_retry
from .interface import ControlPlane, OverlayApplier, PackageInstaller, Transport
from .ssh import AptInstaller, KubeadmControlPlane, KubectlOverlayApplier, SftpTransport

log = logging.getLogger("kubeboot")


@dataclass
class MachineSession:
    """Every collaborator a step may touch, bound to one machine."""
    machine: Machine
    shell: Any
    installer: PackageInstaller
    control_plane: ControlPlane
    overlay: OverlayApplier
    transport: Transport

    def close(self) -> None:
        close = getattr(self.shell, "close", None)
        if close is not None:
            close()


SessionFactory = Callable[[Machine], MachineSession]


def ssh_session_factory(cfg: KubebootConfig) -> SessionFactory:
    """Sessions over paramiko, retrying the connect as *cfg* says."""
    ex = cfg.execution

    def _open(machine: Machine) -> MachineSession:
        shell = open_ssh_with_retry(
            machine,
            attempts=ex.ssh_connect_attempts,
            delay=ex.ssh_connect_delay_seconds,
            command_timeout=ex.command_timeout_seconds,
        )
        log.info("[%s] connected to %s@%s:%d", machine.hostname, machine.username, machine.address, machine.port)
        return MachineSession(
            machine=machine,
            shell=shell,
            installer=AptInstaller(shell),
            control_plane=KubeadmControlPlane(shell),
            overlay=KubectlOverlayApplier(shell, daemonset=cfg.cluster.overlay_daemonset),
            transport=SftpTransport(shell),
        )

    return _open


def close_quietly(session: Optional[MachineSession]) -> None:
    if session is None:
        return
    try:
        session.close()
    except Exception as e:
        log.debug("[%s] error closing session: %s", session.machine.hostname, e)
