# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kubeboot/collaborators/probe.py

from __future__ import annotations

import logging
import warnings
from typing import Callable, Optional

import requests

from ..config.models import KubebootConfig
from ..inventory.models import Machine
from ..utils.ssh import open_ssh

log = logging.getLogger("kubeboot")


class HttpLivenessProbe:
    """GET the API server's /healthz from the operator host; 200 means live."""

    def __init__(self, url: str, *, verify: bool = False, timeout: float = 5.0, session: Optional[requests.Session] = None):
        self.url = url
        self.verify = verify
        self.timeout = timeout
        self.session = session or requests.Session()

    def __call__(self) -> bool:
        with warnings.catch_warnings():
            # kubeadm serves a self-signed cert until someone replaces it
            warnings.simplefilter("ignore")
            resp = self.session.get(self.url, verify=self.verify, timeout=self.timeout)
        log.debug("GET %s -> %d", self.url, resp.status_code)
        return resp.status_code == 200


class SshLivenessProbe:
    """curl the API server from the control-plane machine itself."""

    def __init__(self, machine: Machine, *, opener: Callable = open_ssh, timeout: float = 10.0):
        self.machine = machine
        self.opener = opener
        self.timeout = timeout

    def __call__(self) -> bool:
        shell = self.opener(self.machine, connect_timeout=self.timeout, command_timeout=self.timeout)
        try:
            return shell.test("curl -ksf https://localhost:6443/healthz", sudo=False)
        finally:
            shell.close()


def build_probe(cfg: KubebootConfig, control_plane: Machine) -> Callable[[], bool]:
    spec = cfg.execution.liveness
    if spec.mode == "ssh":
        return SshLivenessProbe(control_plane, timeout=spec.timeout_seconds)
    url = spec.url.format(address=control_plane.address, hostname=control_plane.hostname)
    return HttpLivenessProbe(url, verify=spec.verify_tls, timeout=spec.timeout_seconds)
