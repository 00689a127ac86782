import json

import pytest

from kubeboot.deploy.errors import TokenConflict
from kubeboot.state.models import ClusterToken, StepStatus
from kubeboot.state.store import StateStore


def test_records_survive_reopen(tmp_path):
    path = tmp_path / "state.jsonl"
    store = StateStore(path)
    store.record("w-1", "base-packages", StepStatus.RUNNING, attempt=1, run_id="r1")
    store.record("w-1", "base-packages", StepStatus.SUCCEEDED, attempt=1, run_id="r1")
    store.record("cp-1", "disable-swap", StepStatus.FAILED, attempt=3, reason="boom")

    reopened = StateStore(path)
    assert reopened.get("w-1", "base-packages").status == StepStatus.SUCCEEDED
    assert reopened.get("cp-1", "disable-swap").reason == "boom"
    assert [r.status for r in reopened.history("w-1", "base-packages")] == [
        StepStatus.RUNNING,
        StepStatus.SUCCEEDED,
    ]
    assert set(reopened.latest()) == {"w-1", "cp-1"}


def test_journal_is_append_only_json_lines(tmp_path):
    path = tmp_path / "state.jsonl"
    store = StateStore(path)
    store.record("w-1", "kubelet", StepStatus.SKIPPED)
    store.set_token(ClusterToken("kubeadm join x"))
    lines = [json.loads(line) for line in path.read_text().splitlines()]
    assert [l["kind"] for l in lines] == ["record", "token"]
    assert lines[0]["status"] == "Skipped"


def test_torn_last_line_is_ignored(tmp_path):
    path = tmp_path / "state.jsonl"
    store = StateStore(path)
    store.record("w-1", "sysctl", StepStatus.SUCCEEDED)
    with path.open("a") as f:
        f.write('{"kind": "record", "machine": "w-1", "st')

    reopened = StateStore(path)
    assert reopened.get("w-1", "sysctl").status == StepStatus.SUCCEEDED


def test_token_is_set_once(tmp_path):
    path = tmp_path / "state.jsonl"
    store = StateStore(path)
    token = ClusterToken("kubeadm join 10.0.0.10:6443 --token abc")

    assert store.get_token() is None
    assert store.set_token(token) is True
    assert store.set_token(ClusterToken(token.value)) is False

    with pytest.raises(TokenConflict):
        store.set_token(ClusterToken("kubeadm join 10.0.0.10:6443 --token other"))

    reopened = StateStore(path)
    assert reopened.get_token() == token
    with pytest.raises(TokenConflict):
        reopened.set_token(ClusterToken("kubeadm join elsewhere"))


def test_each_run_keeps_its_own_token(tmp_path):
    path = tmp_path / "state.jsonl"
    store = StateStore(path)
    first = ClusterToken("kubeadm join 10.0.0.10:6443 --token first")
    second = ClusterToken("kubeadm join 10.0.0.10:6443 --token second")

    assert store.set_token(first, run_id="run-1") is True
    assert store.get_token("run-2") is None
    assert store.set_token(second, run_id="run-2") is True
    with pytest.raises(TokenConflict):
        store.set_token(first, run_id="run-2")

    reopened = StateStore(path)
    assert reopened.get_token("run-1") == first
    assert reopened.get_token("run-2") == second
    assert reopened.get_token() == second


def test_token_never_shows_in_repr():
    token = ClusterToken("kubeadm join 10.0.0.10:6443 --token supersecret")
    assert "supersecret" not in repr(token)
    assert "supersecret" not in str(token)
    assert len(token.fingerprint) == 12


def test_memory_store_writes_nothing(tmp_path):
    store = StateStore()
    store.record("w-1", "kubelet", StepStatus.SUCCEEDED)
    assert store.get("w-1", "kubelet").status == StepStatus.SUCCEEDED
    assert list(tmp_path.iterdir()) == []


def test_done_statuses():
    assert StepStatus.SUCCEEDED.done and StepStatus.SKIPPED.done
    assert not any(s.done for s in (StepStatus.PENDING, StepStatus.RUNNING, StepStatus.FAILED, StepStatus.ABORTED))
