import threading
import time
import types

import pytest

from kubeboot.deploy.coordinator import ClusterCoordinator
from kubeboot.deploy.errors import TransientError
from kubeboot.deploy.executor import Executor, ExecutorOptions
from kubeboot.deploy.planner import plan
from kubeboot.deploy.steps import RetryPolicy, Step, StepKind
from kubeboot.inventory.models import Inventory, Machine, Role
from kubeboot.observers.dispatcher import EventBus
from kubeboot.observers.events import new_ctx
from kubeboot.state.models import ClusterToken

ALL = frozenset(Role)
CP = frozenset({Role.CONTROL_PLANE})
WORKERS = frozenset({Role.WORKER})

JOIN_CMD = "kubeadm join 10.0.0.10:6443 --token abcdef.0123456789abcdef --discovery-token-ca-cert-hash sha256:00"


class Capture:
    def __init__(self): self.events = []
    def notify(self, ev): self.events.append(ev)
    def of(self, kind): return [e for e in self.events if e.__class__.__name__ == kind]


# ----------------- Fakes for Paramiko -----------------

class _FakeChannel:
    def __init__(self, rc=0): self._rc = rc
    def recv_exit_status(self): return self._rc


class _Buf:
    def __init__(self, s=""): self._s = s
    def read(self): return self._s.encode()


class _FakeFile:
    def __init__(self, log, path):
        self._buf = []
        self.log = log
        self.path = path
    def write(self, data): self._buf.append(data)
    def __enter__(self): return self
    def __exit__(self, *exc):
        self.log.append(("sftp_write", self.path, "".join(self._buf)))
        return False


class FakeSFTP:
    def __init__(self, log): self.log = log
    def file(self, path, mode):
        self.log.append(("sftp_file", path, mode))
        return _FakeFile(self.log, path)
    def close(self): self.log.append(("sftp_close",))


class FakeSSHClient:
    """
    responses: list of (substring, (stdout, stderr, rc)); the first entry whose
    substring occurs in the command wins. Anything else exits 0 silently.
    """
    def __init__(self, responses=None):
        self.log = []
        self.stdin_writes = []
        self._sftp = FakeSFTP(self.log)
        self.responses = list(responses or [])

    def exec_command(self, cmd, timeout=None):
        self.log.append(("exec", cmd))
        out = ("", "", 0)
        for needle, resp in self.responses:
            if needle in cmd:
                out = resp
                break
        stdout = _Buf(out[0])
        stdout.channel = _FakeChannel(out[2])
        stdin = types.SimpleNamespace(write=self.stdin_writes.append, flush=lambda: None)
        return stdin, stdout, _Buf(out[1])

    def open_sftp(self):
        self.log.append(("open_sftp",))
        return self._sftp

    def close(self):
        self.log.append(("close",))

    @property
    def commands(self):
        return [e[1] for e in self.log if e[0] == "exec"]


@pytest.fixture
def fake_ssh_client():
    return FakeSSHClient


# ----------------- A fake fleet for executor tests -----------------

class FakeFleet:
    """
    Remote state of every machine, kept in memory. Steps are 'done' on a
    host once their action ran there; checks read that state back.
    """

    def __init__(self):
        self.lock = threading.Lock()
        self.done = {}             # host -> set(step ids)
        self.calls = []            # (host, step id, monotonic ts)
        self.failures = {}         # (host, step id) -> failures left (-1 = forever)
        self.unverifiable = set()  # (host, step id) whose action never sticks
        self.tokens_seen = {}      # host -> ClusterToken at join time
        self.on_call = {}          # (host, step id) -> callable(ctx)
        self.init_token = ClusterToken(JOIN_CMD)

    def fail(self, host, step_id, times=-1):
        self.failures[(host, step_id)] = times

    def calls_for(self, host=None, step_id=None):
        return [
            c for c in self.calls
            if (host is None or c[0] == host) and (step_id is None or c[1] == step_id)
        ]

    def _check(self, step_id):
        def check(ctx):
            with self.lock:
                return step_id in self.done.get(ctx.machine.hostname, set())
        return check

    def _action(self, step_id):
        def action(ctx):
            host = ctx.machine.hostname
            hook = self.on_call.get((host, step_id))
            if hook:
                hook(ctx)
            with self.lock:
                self.calls.append((host, step_id, time.monotonic()))
                left = self.failures.get((host, step_id), 0)
                if left:
                    if left > 0:
                        self.failures[(host, step_id)] = left - 1
                    raise TransientError(f"{step_id} blew up on {host}")
                if step_id == "join":
                    self.tokens_seen[host] = ctx.token
                if (host, step_id) not in self.unverifiable:
                    self.done.setdefault(host, set()).add(step_id)
            if step_id == "init":
                return self.init_token
            return None
        return action

    def step(self, step_id, roles=ALL, depends_on=(), kind=StepKind.GENERIC, retry=None):
        return Step(
            id=step_id,
            action=self._action(step_id),
            check=self._check(step_id),
            roles=roles,
            depends_on=depends_on,
            kind=kind,
            retry=retry,
        )

    def steps(self):
        return [
            self.step("prepare"),
            self.step("runtime", depends_on=("prepare",)),
            self.step("init", roles=CP, depends_on=("runtime",), kind=StepKind.CONTROL_PLANE_INIT),
            self.step("overlay", roles=CP, depends_on=("init",), kind=StepKind.NETWORK_OVERLAY),
            self.step("join", roles=WORKERS, depends_on=("runtime",), kind=StepKind.WORKER_JOIN),
        ]


def make_inventory(workers=2):
    machines = [Machine("cp-1", "10.0.0.10", Role.CONTROL_PLANE)]
    machines += [Machine(f"w-{i}", f"10.0.0.{20 + i}", Role.WORKER) for i in range(1, workers + 1)]
    return Inventory(machines)


@pytest.fixture
def fleet():
    return FakeFleet()


@pytest.fixture
def inventory():
    return make_inventory()


@pytest.fixture
def build_executor(fleet, inventory):
    """
    Returns a builder: build_executor(store, probe=..., ...) -> (executor, coordinator, capture)
    """

    def _build(
        store,
        *,
        probe=lambda: True,
        probe_attempts=3,
        inv=None,
        retry=RetryPolicy(max_attempts=3, base_delay=0.0, max_delay=0.0),
        barrier_timeout=10.0,
        steps=None,
        session_factory=None,
        max_parallel=None,
    ):
        inv = inv or inventory
        cap = Capture()
        bus = EventBus([cap])
        run_ctx = new_ctx(env="dev", cluster="test")
        catalogue = steps or fleet.steps()
        graphs = {role: plan(catalogue, role) for role in Role}
        coordinator = ClusterCoordinator(
            store,
            [m.hostname for m in inv.workers],
            probe=probe,
            probe_attempts=probe_attempts,
            probe_interval=0.0,
            bus=bus,
            run_ctx=run_ctx,
        )
        executor = Executor(
            inv,
            graphs,
            store,
            coordinator,
            session_factory,
            options=ExecutorOptions(retry=retry, barrier_timeout=barrier_timeout, max_parallel=max_parallel),
            bus=bus,
            run_ctx=run_ctx,
        )
        return executor, coordinator, cap

    return _build
