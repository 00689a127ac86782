# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kubeboot/collaborators/ssh.py

from __future__ import annotations

import hashlib
import logging
import shlex
from pathlib import Path
from typing import List

from ..deploy.errors import (
    ApplyError,
    CommandError,
    InitError,
    InstallError,
    JoinError,
    ServiceError,
    TransferError,
)
from ..state.models import ClusterToken
from ..utils.ssh_runner import SSHRunner
from .interface import InitConfig, JoinConfig

log = logging.getLogger("kubeboot")

ADMIN_CONF = "/etc/kubernetes/admin.conf"
KUBELET_CONF = "/etc/kubernetes/kubelet.conf"


class AptInstaller:
    """apt + systemd, the way the node roles have always done it."""

    def __init__(self, shell: SSHRunner):
        self.shell = shell

    def install(self, names: List[str]) -> None:
        pkgs = " ".join(shlex.quote(n) for n in names)
        try:
            self.shell.check(
                f"apt-get update -y && DEBIAN_FRONTEND=noninteractive apt-get install -y {pkgs}"
            )
        except CommandError as e:
            raise InstallError(f"apt-get install {pkgs} failed: {e}") from e

    def hold(self, names: List[str]) -> None:
        pkgs = " ".join(shlex.quote(n) for n in names)
        try:
            self.shell.check(f"apt-mark hold {pkgs}")
        except CommandError as e:
            raise InstallError(f"apt-mark hold {pkgs} failed: {e}") from e

    def is_installed(self, names: List[str]) -> bool:
        return all(
            self.shell.test(
                f"dpkg-query -W -f='${{Status}}' {shlex.quote(n)} 2>/dev/null | grep -q 'install ok installed'",
                sudo=False,
            )
            for n in names
        )

    def is_held(self, names: List[str]) -> bool:
        rc, out, _ = self.shell.run("apt-mark showhold", sudo=False)
        if rc != 0:
            return False
        held = set(out.split())
        return all(n in held for n in names)

    def ensure_running(self, service: str) -> None:
        try:
            self.shell.check(f"systemctl enable --now {shlex.quote(service)}")
        except CommandError as e:
            raise ServiceError(f"could not enable/start {service}: {e}") from e

    def restart(self, service: str) -> None:
        try:
            self.shell.check(f"systemctl restart {shlex.quote(service)}")
        except CommandError as e:
            raise ServiceError(f"could not restart {service}: {e}") from e

    def is_running(self, service: str) -> bool:
        s = shlex.quote(service)
        return self.shell.test(f"systemctl is-active --quiet {s} && systemctl is-enabled --quiet {s}", sudo=False)


class KubeadmControlPlane:
    """kubeadm init / token / join over SSH."""

    def __init__(self, shell: SSHRunner, admin_conf: str = ADMIN_CONF, kubelet_conf: str = KUBELET_CONF):
        self.shell = shell
        self.admin_conf = admin_conf
        self.kubelet_conf = kubelet_conf

    def init(self, config: InitConfig) -> ClusterToken:
        cmd = (
            f"kubeadm init --pod-network-cidr={shlex.quote(config.pod_network_cidr)} "
            f"--apiserver-advertise-address={shlex.quote(config.advertise_address)}"
        )
        try:
            self.shell.check(cmd)
        except CommandError as e:
            raise InitError(f"kubeadm init failed: {e}") from e
        return self.join_token()

    def join_token(self) -> ClusterToken:
        try:
            out = self.shell.check("kubeadm token create --print-join-command")
        except CommandError as e:
            raise InitError(f"could not create a join token: {e}") from e
        cmd = out.strip().splitlines()[-1].strip() if out.strip() else ""
        if not cmd.startswith("kubeadm join "):
            raise InitError(f"unexpected join command output: {out!r}")
        return ClusterToken(cmd)

    def join(self, token: ClusterToken, config: JoinConfig) -> None:
        if not token.value.startswith("kubeadm join "):
            raise JoinError(f"refusing to run a join token that is not a kubeadm join command ({token!r})")
        cmd = token.value
        if config.node_name:
            cmd += f" --node-name {shlex.quote(config.node_name)}"
        try:
            self.shell.check(cmd)
        except CommandError as e:
            # CommandError carries the command line; don't let the token leak into logs
            raise JoinError(f"kubeadm join failed (rc={e.rc}) with {token!r}") from None

    def is_initialized(self) -> bool:
        return self.shell.test(f"test -f {self.admin_conf}")

    def is_joined(self) -> bool:
        return self.shell.test(f"test -f {self.kubelet_conf}")

    def api_healthy(self) -> bool:
        return self.shell.test("curl -ksf https://localhost:6443/healthz", sudo=False)


class KubectlOverlayApplier:
    """kubectl apply of the overlay manifest using the admin kubeconfig."""

    def __init__(
        self,
        shell: SSHRunner,
        *,
        daemonset: str = "calico-node",
        namespace: str = "kube-system",
        kubeconfig: str = ADMIN_CONF,
    ):
        self.shell = shell
        self.daemonset = daemonset
        self.namespace = namespace
        self.kubeconfig = kubeconfig

    def _kubectl(self, args: str) -> str:
        return f"KUBECONFIG={self.kubeconfig} kubectl {args}"

    def apply(self, manifest_ref: str) -> None:
        try:
            self.shell.check(self._kubectl(f"apply --validate=false -f {shlex.quote(manifest_ref)}"))
        except CommandError as e:
            raise ApplyError(f"kubectl apply {manifest_ref} failed: {e}") from e

    def is_applied(self) -> bool:
        return self.shell.test(
            self._kubectl(f"-n {shlex.quote(self.namespace)} get daemonset {shlex.quote(self.daemonset)}")
        )


class SftpTransport:
    """Artifacts to and from a machine, deduplicated by sha256."""

    def __init__(self, shell: SSHRunner):
        self.shell = shell

    def fetch(self, remote_path: str, local_path: str) -> str:
        try:
            digest = self.shell.fetch(remote_path, local_path)
        except CommandError as e:
            raise TransferError(f"could not fetch {remote_path}: {e}") from e
        log.info("[%s] fetched %s -> %s (sha256:%s)", self.shell.hostname, remote_path, local_path, digest[:12])
        return digest

    def push(self, content: str, remote_path: str, mode: int = 0o644) -> bool:
        """Returns False when the remote file already holds *content*."""
        digest = hashlib.sha256(content.encode("utf-8")).hexdigest()
        if self.shell.sha256(remote_path) == digest:
            return False
        try:
            self.shell.put_text(content, remote_path, mode=mode)
        except CommandError as e:
            raise TransferError(f"could not write {remote_path}: {e}") from e
        return True

    def matches(self, remote_path: str, local_path: str) -> bool:
        local = Path(local_path)
        if not local.is_file():
            return False
        local_digest = hashlib.sha256(local.read_bytes()).hexdigest()
        return self.shell.sha256(remote_path) == local_digest
