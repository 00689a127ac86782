# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

from __future__ import annotations

import logging
import os

import paramiko

from ..inventory.models import Machine
from .retry import retry
from .ssh_runner import SSHRunner

log = logging.getLogger("kubeboot")


def _load_pkey(path: str):
    path = os.path.expanduser(path)
    for key_cls in (
        paramiko.Ed25519Key,
        paramiko.RSAKey,
        paramiko.ECDSAKey,
    ):
        try:
            return key_cls.from_private_key_file(path)
        except paramiko.SSHException:
            continue
    raise paramiko.SSHException(f"Unsupported private key format for {path}")


def open_ssh(
    machine: Machine,
    *,
    connect_timeout: float = 20.0,
    command_timeout: float | None = None,
) -> SSHRunner:
    client = paramiko.SSHClient()
    client.set_missing_host_key_policy(paramiko.AutoAddPolicy())

    pkey = _load_pkey(machine.pkey_path) if machine.pkey_path else None

    client.connect(
        hostname=machine.address,
        port=machine.port,
        username=machine.username,
        password=machine.password if not pkey else None,
        pkey=pkey,
        timeout=connect_timeout,
        allow_agent=pkey is None,
        look_for_keys=pkey is None,
    )

    return SSHRunner(
        client,
        hostname=machine.hostname,
        become_password=machine.become_password or machine.password,
        timeout=command_timeout,
    )


def open_ssh_with_retry(
    machine: Machine,
    *,
    attempts: int = 30,
    delay: float = 20.0,
    command_timeout: float | None = None,
) -> SSHRunner:
    """Freshly provisioned machines may not accept SSH yet; keep knocking."""

    def _log_retry(attempt: int, exc: Exception) -> None:
        log.info(
            "[%s] SSH not ready (attempt %d/%d, %s: %s)",
            machine.hostname, attempt, attempts, type(exc).__name__, exc,
        )

    @retry(
        retries=attempts,
        delay=delay,
        retry_on=(paramiko.SSHException, OSError),
        on_retry=_log_retry,
    )
    def _connect() -> SSHRunner:
        return open_ssh(machine, command_timeout=command_timeout)

    return _connect()
