# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kubeboot/collaborators/interface.py

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Protocol

from ..state.models import ClusterToken


@dataclass(frozen=True)
class InitConfig:
    advertise_address: str
    pod_network_cidr: str = "10.244.0.0/16"


@dataclass(frozen=True)
class JoinConfig:
    node_name: Optional[str] = None


class PackageInstaller(Protocol):
    """
    Package manager + service manager on one machine.
    Implementations raise InstallError / ServiceError on failure.
    """

    def install(self, names: List[str]) -> None: ...

    def hold(self, names: List[str]) -> None: ...

    def is_installed(self, names: List[str]) -> bool: ...

    def is_held(self, names: List[str]) -> bool: ...

    def ensure_running(self, service: str) -> None: ...

    def restart(self, service: str) -> None: ...

    def is_running(self, service: str) -> bool: ...


class ControlPlane(Protocol):
    """
    The cluster's init/join primitives. Idempotency of init/join themselves
    is the implementation's business; callers guard with is_initialized /
    is_joined before ever calling them.
    """

    def init(self, config: InitConfig) -> ClusterToken: ...

    def join(self, token: ClusterToken, config: JoinConfig) -> None: ...

    def join_token(self) -> ClusterToken: ...

    def is_initialized(self) -> bool: ...

    def is_joined(self) -> bool: ...


class OverlayApplier(Protocol):
    def apply(self, manifest_ref: str) -> None: ...

    def is_applied(self) -> bool: ...


class Transport(Protocol):
    """
    Moves small artifacts between a machine and the operator host.
    At-least-once: callers dedupe by content hash.
    """

    def fetch(self, remote_path: str, local_path: str) -> str: ...

    def push(self, content: str, remote_path: str, mode: int = 0o644) -> bool: ...

    def matches(self, remote_path: str, local_path: str) -> bool: ...
