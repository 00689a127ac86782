import logging
import textwrap

import pytest
from typer.testing import CliRunner

from kubeboot.cli import app as cli
from kubeboot.state.models import ClusterToken, StepStatus
from kubeboot.state.store import StateStore

runner = CliRunner()


@pytest.fixture(autouse=True)
def _home(tmp_path, monkeypatch):
    monkeypatch.setenv("HOME", str(tmp_path))
    monkeypatch.delenv("KUBEBOOT_SECRETS_FILE", raising=False)
    yield
    logger = logging.getLogger("kubeboot")
    for h in list(logger.handlers):
        h.close()
    logger.handlers.clear()
    logger.propagate = True


@pytest.fixture
def cluster(tmp_path):
    (tmp_path / "hosts.ini").write_text(textwrap.dedent("""
        [master-node]
        cp-1 ansible_host=10.0.0.10

        [worker-node]
        w-1 ansible_host=10.0.0.11
    """))
    cfg = tmp_path / "cluster.yaml"
    cfg.write_text("environment: test\ninventory: hosts.ini\n")
    return cfg


def test_plan_prints_both_roles(cluster):
    result = runner.invoke(cli.app, ["plan", str(cluster)])
    assert result.exit_code == 0, result.output
    assert "control-plane (14 steps)" in result.output
    assert "worker (11 steps)" in result.output
    assert "[waits for ControlPlaneReady]" in result.output
    assert "control plane: cp-1 (10.0.0.10)" in result.output
    assert "workers: w-1" in result.output


def test_bad_config_exits_with_config_code(tmp_path):
    bad = tmp_path / "cluster.yaml"
    bad.write_text("execution:\n  retry:\n    max_attempts: 0\n")
    result = runner.invoke(cli.app, ["plan", str(bad)])
    assert result.exit_code == cli.EXIT_CONFIG


def test_run_without_inventory_is_a_config_error(tmp_path):
    cfg = tmp_path / "cluster.yaml"
    cfg.write_text("environment: test\n")
    result = runner.invoke(cli.app, ["run", str(cfg)])
    assert result.exit_code == cli.EXIT_CONFIG


def test_run_reports_unreachable_machines(cluster, tmp_path, monkeypatch):
    def factory(cfg):
        def _open(machine):
            raise ConnectionError(f"{machine.address} unreachable")
        return _open

    monkeypatch.setattr(cli, "ssh_session_factory", factory)
    state = tmp_path / "state" / "journal.jsonl"
    result = runner.invoke(cli.app, ["run", str(cluster), "--state", str(state)])

    assert result.exit_code == 1
    assert "Fatal" in result.output
    assert "Degraded" in result.output


def test_status_without_journal(cluster, tmp_path):
    result = runner.invoke(cli.app, ["status", str(cluster), "--state", str(tmp_path / "none.jsonl")])
    assert result.exit_code == 0
    assert "No state journal" in result.output


def test_status_shows_records_and_token_fingerprint(cluster, tmp_path):
    path = tmp_path / "state.jsonl"
    store = StateStore(path)
    store.record("cp-1", "disable-swap", StepStatus.SUCCEEDED, attempt=1)
    store.record("w-1", "disable-swap", StepStatus.FAILED, attempt=3, reason="swapoff: permission denied")
    token = ClusterToken("kubeadm join 10.0.0.10:6443 --token secret.value")
    store.set_token(token)

    result = runner.invoke(cli.app, ["status", str(cluster), "--state", str(path)])
    assert result.exit_code == 0, result.output
    assert "Succeeded" in result.output
    assert "swapoff: permission denied" in result.output
    assert token.fingerprint in result.output
    assert "secret.value" not in result.output
