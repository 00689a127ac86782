# src/kubeboot/utils/ssh_runner.py

from __future__ import annotations

import hashlib
import itertools
import logging
import os
from pathlib import Path
from typing import Optional

import paramiko

from ..deploy.errors import CommandError

log = logging.getLogger("kubeboot")

_counter = itertools.count(1)


def shq(v: str) -> str:
    """Quote for bash -lc."""
    return "'" + v.replace("'", "'\"'\"'") + "'"


class SSHRunner:
    """
    Thin command/file layer over one paramiko connection.

    sudo commands run as ``sudo -S bash -lc '<cmd>'``; the become password,
    if any, is fed on stdin.
    """

    def __init__(
        self,
        client: paramiko.SSHClient,
        *,
        hostname: str = "",
        become_password: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        self.client = client
        self.hostname = hostname
        self.become_password = become_password
        self.timeout = timeout

    def run(
        self,
        cmd: str,
        *,
        sudo: bool = False,
        timeout: Optional[float] = None,
    ) -> tuple[int, str, str]:
        final_cmd = f"sudo -S bash -lc {shq(cmd)}" if sudo else f"bash -lc {shq(cmd)}"
        log.debug("(%s) $ %s", self.hostname, cmd)

        stdin, stdout, stderr = self.client.exec_command(final_cmd, timeout=timeout or self.timeout)
        if sudo and self.become_password:
            stdin.write(self.become_password + "\n")
        stdin.flush()
        out = stdout.read().decode("utf-8", errors="replace")
        err = stderr.read().decode("utf-8", errors="replace")
        rc = stdout.channel.recv_exit_status()

        log.debug("(%s) [exit %d]", self.hostname, rc)
        return rc, out, err

    def check(self, cmd: str, *, sudo: bool = True, timeout: Optional[float] = None) -> str:
        """Run and raise CommandError on a non-zero exit; returns stdout."""
        rc, out, err = self.run(cmd, sudo=sudo, timeout=timeout)
        if rc != 0:
            raise CommandError(cmd, rc, err)
        return out

    def test(self, cmd: str, *, sudo: bool = True) -> bool:
        """True when *cmd* exits 0."""
        rc, _, _ = self.run(cmd, sudo=sudo)
        return rc == 0

    def put_text(self, content: str, remote_path: str, *, mode: int = 0o644, sudo: bool = True) -> None:
        """
        Upload content to a temp path then install it with sudo so root-owned
        targets keep their ownership.
        """
        tmp = f"/tmp/.kubeboot_tmp_{os.getpid()}_{next(_counter)}"
        sftp = self.client.open_sftp()
        try:
            with sftp.file(tmp, "w") as f:
                f.write(content)
        finally:
            sftp.close()

        self.check(f"install -D -m {oct(mode)[2:]} {tmp} {remote_path} ; rc=$? ; rm -f {tmp} ; exit $rc", sudo=sudo)

    def read_text(self, remote_path: str, *, sudo: bool = True) -> str:
        return self.check(f"cat {remote_path}", sudo=sudo)

    def sha256(self, remote_path: str, *, sudo: bool = True) -> Optional[str]:
        rc, out, _ = self.run(f"sha256sum {remote_path}", sudo=sudo)
        if rc != 0 or not out.strip():
            return None
        return out.split()[0]

    def fetch(self, remote_path: str, local_path: str | Path, *, sudo: bool = True) -> str:
        """Copy a (possibly root-only) remote file to the operator host; returns its sha256."""
        content = self.read_text(remote_path, sudo=sudo)
        local = Path(local_path)
        local.parent.mkdir(parents=True, exist_ok=True)
        local.write_text(content)
        return hashlib.sha256(content.encode("utf-8")).hexdigest()

    def close(self) -> None:
        self.client.close()
