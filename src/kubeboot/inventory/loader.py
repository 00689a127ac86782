# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kubeboot/inventory/loader.py

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import yaml
from pydantic import BaseModel, Field, ValidationError

from ..deploy.errors import ConfigurationError
from .models import Inventory, Machine, Role

log = logging.getLogger("kubeboot")

CONTROL_PLANE_GROUPS = ("master-node", "control-plane", "control_plane", "controllers", "masters")
WORKER_GROUPS = ("worker-node", "workers", "worker", "computes", "nodes")


class MachineSpec(BaseModel):
    hostname: str
    address: str
    role: Role
    username: str = "ubuntu"
    port: int = 22
    password: Optional[str] = None
    pkey_path: Optional[str] = None
    become_password: Optional[str] = None

    def to_machine(self) -> Machine:
        return Machine(**self.model_dump())


class InventorySpec(BaseModel):
    machines: List[MachineSpec] = Field(default_factory=list)


def _role_for_group(group: str) -> Optional[Role]:
    if group in CONTROL_PLANE_GROUPS:
        return Role.CONTROL_PLANE
    if group in WORKER_GROUPS:
        return Role.WORKER
    return None


def _parse_host_vars(parts: List[str]) -> Dict[str, str]:
    out: Dict[str, str] = {}
    for p in parts:
        if "=" in p:
            k, v = p.split("=", 1)
            out[k.strip()] = v.strip().strip("'\"")
    return out


def _machine_from_vars(hostname: str, role: Role, hostvars: Dict[str, str]) -> Machine:
    address = hostvars.get("ansible_host", hostname)
    try:
        port = int(hostvars.get("ansible_port", 22))
    except ValueError as e:
        raise ConfigurationError(f"Invalid ansible_port for '{hostname}'") from e
    return Machine(
        hostname=hostname,
        address=address,
        role=role,
        username=hostvars.get("ansible_user", "ubuntu"),
        port=port,
        password=hostvars.get("ansible_password") or hostvars.get("ansible_ssh_pass"),
        pkey_path=hostvars.get("ansible_ssh_private_key_file"),
        become_password=hostvars.get("ansible_become_password") or hostvars.get("ansible_become_pass"),
    )


def read_ini_inventory(inv_path: Path) -> Inventory:
    """
    Parse an Ansible-style INI inventory, e.g.:

        [master-node]
        cp-1 ansible_host=10.0.0.10 ansible_user=ubuntu

        [worker-node]
        w-1 ansible_host=10.0.0.11

        [all:vars]
        ansible_ssh_private_key_file=~/.ssh/id_ed25519

    Group names decide roles; ``[<group>:vars]`` and ``[all:vars]`` apply
    defaults underneath per-host variables.
    """
    entries: List[Tuple[str, Role, Dict[str, str]]] = []
    group_vars: Dict[str, Dict[str, str]] = {}

    section: Optional[str] = None
    for raw in inv_path.read_text().splitlines():
        line = raw.strip()
        if not line or line.startswith("#") or line.startswith(";"):
            continue
        if line.startswith("[") and line.endswith("]"):
            section = line[1:-1].strip()
            continue
        if section is None:
            continue

        if section.endswith(":vars"):
            group = section[: -len(":vars")]
            group_vars.setdefault(group, {}).update(_parse_host_vars([line]))
            continue

        role = _role_for_group(section)
        if role is None:
            log.debug("Ignoring inventory group [%s]", section)
            continue

        parts = line.split()
        entries.append((parts[0], role, _parse_host_vars(parts[1:])))

    machines: List[Machine] = []
    for hostname, role, hostvars in entries:
        merged: Dict[str, str] = {}
        merged.update(group_vars.get("all", {}))
        for group, gv in group_vars.items():
            if _role_for_group(group) == role:
                merged.update(gv)
        merged.update(hostvars)
        machines.append(_machine_from_vars(hostname, role, merged))

    return Inventory(machines)


def read_yaml_inventory(inv_path: Path) -> Inventory:
    raw = os.path.expandvars(inv_path.read_text())
    try:
        data = yaml.safe_load(raw) or {}
    except yaml.YAMLError as e:
        raise ConfigurationError(f"{inv_path} is not valid YAML: {e}") from e
    try:
        spec = InventorySpec.model_validate(data)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid inventory {inv_path}: {e}") from e
    return Inventory([m.to_machine() for m in spec.machines])


def load_inventory(path: str | Path) -> Inventory:
    """
    Load an inventory file. ``.yaml``/``.yml`` files hold a ``machines:``
    list; anything else is read as an Ansible INI inventory.
    """
    path = Path(path).expanduser()
    if not path.is_file():
        raise ConfigurationError(f"Inventory file not found: {path}")

    if path.suffix in (".yaml", ".yml"):
        inv = read_yaml_inventory(path)
    else:
        inv = read_ini_inventory(path)

    log.debug(
        "Loaded inventory %s: control-plane=%s workers=%s",
        path, inv.control_plane.hostname, [w.hostname for w in inv.workers],
    )
    return inv
