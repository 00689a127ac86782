import pytest

from kubeboot.deploy.planner import StageGraph, plan
from kubeboot.deploy.errors import (
    ConfigurationError,
    CyclicDependencyError,
    DuplicateStepError,
    UnknownDependencyError,
)
from kubeboot.deploy.steps import Step
from kubeboot.inventory.models import Role
from kubeboot.observers.dispatcher import EventBus
from kubeboot.observers.events import PlanComputed, PlanFailed


class Capture:
    def __init__(self): self.events = []
    def notify(self, ev): self.events.append(ev)


def _noop(ctx):
    return None


def _s(step_id, depends_on=(), roles=frozenset(Role)):
    return Step(id=step_id, action=_noop, depends_on=depends_on, roles=roles)


def test_plan_orders_dependencies_and_emits_event():
    a = _s("a")
    b = _s("b", depends_on=("a",))
    c = _s("c", depends_on=("b",))
    cap = Capture()
    graph = plan([c, b, a], Role.WORKER, bus=EventBus([cap]))
    assert graph.ids == ["a", "b", "c"]
    pc = next(e for e in cap.events if isinstance(e, PlanComputed))
    assert pc.order == ["a", "b", "c"]
    assert pc.role == "worker"


def test_independent_steps_are_ordered_alphabetically():
    graph = StageGraph([_s("zeta"), _s("alpha"), _s("mid", depends_on=("zeta",))])
    assert graph.ids == ["alpha", "zeta", "mid"]


def test_plan_filters_by_role():
    cp_only = _s("init", depends_on=("base",), roles={Role.CONTROL_PLANE})
    worker_only = _s("join", depends_on=("base",), roles={Role.WORKER})
    graph = plan([_s("base"), cp_only, worker_only], Role.CONTROL_PLANE)
    assert graph.ids == ["base", "init"]
    assert "join" not in graph


def test_plan_unknown_dep_raises_and_emits_failure():
    cap = Capture()
    with pytest.raises(UnknownDependencyError):
        plan([_s("x", depends_on=("missing",))], Role.WORKER, bus=EventBus([cap]))
    pf = next(e for e in cap.events if isinstance(e, PlanFailed))
    assert "unknown step 'missing'" in pf.error


def test_dependency_on_other_roles_step_is_rejected():
    join = _s("join", depends_on=("init",), roles={Role.WORKER})
    init = _s("init", roles={Role.CONTROL_PLANE})
    with pytest.raises(UnknownDependencyError):
        plan([init, join], Role.WORKER)


def test_plan_cycle_detected_and_emits_failure():
    cap = Capture()
    with pytest.raises(CyclicDependencyError) as exc:
        plan([_s("a", depends_on=("b",)), _s("b", depends_on=("a",)), _s("c")], Role.WORKER, bus=EventBus([cap]))
    assert "a, b" in str(exc.value)
    assert any(isinstance(e, PlanFailed) for e in cap.events)


def test_duplicate_ids_rejected():
    with pytest.raises(DuplicateStepError):
        StageGraph([_s("a"), _s("a")])


def test_configuration_errors_share_a_base():
    assert issubclass(CyclicDependencyError, ConfigurationError)
    assert issubclass(UnknownDependencyError, ConfigurationError)


def test_next_ready_respects_completed():
    graph = StageGraph([
        _s("base"),
        _s("docker", depends_on=("base",)),
        _s("k8s", depends_on=("base",)),
        _s("kubelet", depends_on=("docker", "k8s")),
    ])
    assert [s.id for s in graph.next_ready(set())] == ["base"]
    assert [s.id for s in graph.next_ready({"base"})] == ["docker", "k8s"]
    assert [s.id for s in graph.next_ready({"base", "docker"})] == ["k8s"]
    assert [s.id for s in graph.next_ready({"base", "docker", "k8s"})] == ["kubelet"]
    assert graph.next_ready({"base", "docker", "k8s", "kubelet"}) == []


def test_for_role_narrows_graph():
    graph = StageGraph([_s("base"), _s("init", depends_on=("base",), roles={Role.CONTROL_PLANE})])
    assert graph.for_role(Role.WORKER).ids == ["base"]
