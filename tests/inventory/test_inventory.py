from pathlib import Path
import textwrap

import pytest

from kubeboot.deploy.errors import ConfigurationError
from kubeboot.inventory.loader import load_inventory
from kubeboot.inventory.models import Inventory, Machine, Role


def test_ini_inventory_with_ansible_groups(tmp_path: Path):
    inv_file = tmp_path / "hosts.ini"
    inv_file.write_text(textwrap.dedent("""
        [master-node]
        cp-1 ansible_host=10.0.0.10 ansible_user=admin

        [worker-node]
        w-1 ansible_host=10.0.0.11
        w-2 ansible_host=10.0.0.12 ansible_port=2222

        [worker-node:vars]
        ansible_user=ops

        [all:vars]
        ansible_ssh_private_key_file=~/.ssh/id_ed25519
        ansible_become_password='s3cret'

        [bastion]
        jump ansible_host=10.0.0.1
    """))
    inv = load_inventory(inv_file)

    assert inv.control_plane == Machine(
        hostname="cp-1",
        address="10.0.0.10",
        role=Role.CONTROL_PLANE,
        username="admin",
        pkey_path="~/.ssh/id_ed25519",
        become_password="s3cret",
    )
    assert [w.hostname for w in inv.workers] == ["w-1", "w-2"]
    assert inv.get("w-2").port == 2222
    assert inv.get("w-1").username == "ops"
    assert len(inv) == 3          # the bastion group is not ours


def test_yaml_inventory(tmp_path: Path):
    inv_file = tmp_path / "inventory.yaml"
    inv_file.write_text(textwrap.dedent("""
        machines:
          - hostname: cp-1
            address: 10.0.0.10
            role: control-plane
          - hostname: w-1
            address: 10.0.0.11
            role: worker
            username: root
    """))
    inv = load_inventory(inv_file)
    assert inv.control_plane.hostname == "cp-1"
    assert inv.get("w-1").username == "root"


def test_yaml_inventory_rejects_unknown_role(tmp_path: Path):
    inv_file = tmp_path / "inventory.yaml"
    inv_file.write_text("machines:\n  - {hostname: a, address: 1.1.1.1, role: etcd}\n")
    with pytest.raises(ConfigurationError):
        load_inventory(inv_file)


def test_malformed_yaml_inventory_is_a_config_error(tmp_path: Path):
    inv_file = tmp_path / "inventory.yaml"
    inv_file.write_text("machines:\n  - hostname: a\n    address: [unclosed\n")
    with pytest.raises(ConfigurationError, match="not valid YAML"):
        load_inventory(inv_file)


def test_exactly_one_control_plane():
    with pytest.raises(ConfigurationError, match="no control-plane"):
        Inventory([Machine("w-1", "10.0.0.11", Role.WORKER)])
    with pytest.raises(ConfigurationError, match="Exactly one"):
        Inventory([
            Machine("cp-1", "10.0.0.10", Role.CONTROL_PLANE),
            Machine("cp-2", "10.0.0.11", Role.CONTROL_PLANE),
        ])


def test_duplicate_hostnames_rejected():
    with pytest.raises(ConfigurationError, match="Duplicate"):
        Inventory([
            Machine("cp-1", "10.0.0.10", Role.CONTROL_PLANE),
            Machine("cp-1", "10.0.0.11", Role.WORKER),
        ])


def test_missing_inventory(tmp_path: Path):
    with pytest.raises(ConfigurationError):
        load_inventory(tmp_path / "hosts.ini")
