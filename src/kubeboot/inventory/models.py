# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kubeboot/inventory/models.py

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterator, List, Optional

from ..deploy.errors import ConfigurationError


class Role(str, Enum):
    CONTROL_PLANE = "control-plane"
    WORKER = "worker"


@dataclass(frozen=True)
class Machine:
    """
    A server the orchestrator will SSH into.
    """
    hostname: str                 # logical name, unique in the inventory
    address: str                  # IP or DNS to connect
    role: Role
    username: str = "ubuntu"      # SSH username
    port: int = 22
    password: Optional[str] = None
    pkey_path: Optional[str] = None
    become_password: Optional[str] = None     # for sudo -S

    @property
    def is_control_plane(self) -> bool:
        return self.role == Role.CONTROL_PLANE

    def __str__(self) -> str:
        return self.hostname


class Inventory:
    """
    The fixed set of target machines. Exactly one control-plane machine is
    required: it is the single writer of the join token.
    """

    def __init__(self, machines: List[Machine]):
        seen: Dict[str, Machine] = {}
        for m in machines:
            if m.hostname in seen:
                raise ConfigurationError(f"Duplicate machine '{m.hostname}' in inventory")
            seen[m.hostname] = m

        control_planes = [m for m in machines if m.role == Role.CONTROL_PLANE]
        if not control_planes:
            raise ConfigurationError("Inventory has no control-plane machine")
        if len(control_planes) > 1:
            names = ", ".join(m.hostname for m in control_planes)
            raise ConfigurationError(f"Exactly one control-plane machine is supported, got: {names}")

        self._machines = tuple(machines)
        self._by_name = seen

    def __iter__(self) -> Iterator[Machine]:
        return iter(self._machines)

    def __len__(self) -> int:
        return len(self._machines)

    @property
    def machines(self) -> List[Machine]:
        return list(self._machines)

    @property
    def control_plane(self) -> Machine:
        return next(m for m in self._machines if m.role == Role.CONTROL_PLANE)

    @property
    def workers(self) -> List[Machine]:
        return [m for m in self._machines if m.role == Role.WORKER]

    def get(self, hostname: str) -> Machine:
        return self._by_name[hostname]
