from kubeboot.config.models import RetrySpec
from kubeboot.deploy.coordinator import ClusterPhase
from kubeboot.deploy.steps import Readiness, RetryPolicy, StepContext, StepKind, step
from kubeboot.inventory.models import Machine, Role
from kubeboot.state.models import ClusterToken, StepStatus
from kubeboot.state.store import StateStore

MACHINE = Machine("w-1", "10.0.0.11", Role.WORKER)


def _ctx(store=None):
    return StepContext(machine=MACHINE, store=store or StateStore())


def test_decorator_builds_a_step():
    @step("kubelet", roles={Role.WORKER}, depends_on=("kubernetes-packages",))
    def kubelet(ctx):
        """Enable kubelet.

        Longer text that should not end up in the description.
        """

    assert kubelet.id == "kubelet"
    assert kubelet.depends_on == ("kubernetes-packages",)
    assert kubelet.applies_to(Role.WORKER)
    assert not kubelet.applies_to(Role.CONTROL_PLANE)
    assert kubelet.description == "Enable kubelet."
    assert kubelet.kind == StepKind.GENERIC
    assert kubelet.gate is None


def test_gates_by_kind():
    @step("join", kind=StepKind.WORKER_JOIN)
    def join(ctx): pass

    @step("overlay", kind=StepKind.NETWORK_OVERLAY)
    def overlay(ctx): pass

    assert join.gate == ClusterPhase.CONTROL_PLANE_READY
    assert overlay.gate == ClusterPhase.NETWORK_OVERLAY_PENDING


def test_evaluate_uses_check():
    state = {"done": False}

    @step("swap", check=lambda ctx: state["done"])
    def swap(ctx):
        state["done"] = True

    ctx = _ctx()
    assert swap.evaluate(ctx) == Readiness.NEEDS_RUN
    swap.apply(ctx)
    assert swap.evaluate(ctx) == Readiness.SATISFIED
    assert swap.verify(ctx) is True


def test_journal_success_short_circuits_check():
    calls = []

    @step("swap", check=lambda ctx: calls.append(1) or False)
    def swap(ctx): pass

    store = StateStore()
    store.record("w-1", "swap", StepStatus.SUCCEEDED, attempt=1)
    assert swap.evaluate(_ctx(store)) == Readiness.SATISFIED
    assert calls == []


def test_failed_record_does_not_satisfy():
    @step("swap", check=lambda ctx: False)
    def swap(ctx): pass

    store = StateStore()
    store.record("w-1", "swap", StepStatus.FAILED, attempt=3)
    assert swap.evaluate(_ctx(store)) == Readiness.NEEDS_RUN


def test_verify_prefers_its_own_predicate():
    @step("x", check=lambda ctx: False, verify=lambda ctx: True)
    def x(ctx): pass

    assert x.verify(_ctx()) is True


def test_step_without_predicates_always_runs_and_verifies():
    @step("x")
    def x(ctx): pass

    assert x.evaluate(_ctx()) == Readiness.NEEDS_RUN
    assert x.verify(_ctx()) is True


def test_retry_policy_backoff_is_bounded():
    policy = RetryPolicy(max_attempts=5, base_delay=2.0, max_delay=5.0)
    assert [policy.delay_for(a) for a in (1, 2, 3, 4)] == [2.0, 4.0, 5.0, 5.0]
    spec = RetryPolicy.from_spec(RetrySpec(max_attempts=4, base_delay_seconds=1.0, max_delay_seconds=8.0))
    assert spec == RetryPolicy(max_attempts=4, base_delay=1.0, max_delay=8.0)


def test_context_reads_token_from_store():
    store = StateStore()
    ctx = _ctx(store)
    assert ctx.token is None
    store.set_token(ClusterToken("kubeadm join x"))
    assert ctx.token.value == "kubeadm join x"
