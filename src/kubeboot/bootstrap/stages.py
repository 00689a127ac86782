# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kubeboot/bootstrap/stages.py

from __future__ import annotations

import hashlib
import logging
import shlex
from typing import Dict, List, Optional

from ..config.models import ClusterSpec
from ..collaborators.interface import InitConfig, JoinConfig
from ..deploy.errors import JoinError
from ..deploy.planner import StageGraph, plan
from ..deploy.steps import RetryPolicy, Step, StepContext, StepKind, step
from ..inventory.models import Role
from ..observers.dispatcher import EventBus
from .template_renderer import TemplateRenderer

log = logging.getLogger("kubeboot")

ALL = frozenset(Role)
CONTROL_PLANE = frozenset({Role.CONTROL_PLANE})
WORKER = frozenset({Role.WORKER})

ADMIN_CONF = "/etc/kubernetes/admin.conf"
KEYRINGS = "/etc/apt/keyrings"
DOCKER_KEYRING = f"{KEYRINGS}/docker.asc"
K8S_KEYRING = f"{KEYRINGS}/kubernetes-apt-keyring.gpg"
DOCKER_LIST = "/etc/apt/sources.list.d/docker.list"
K8S_LIST = "/etc/apt/sources.list.d/kubernetes.list"
MODULES_CONF = "/etc/modules-load.d/k8s.conf"
SYSCTL_CONF = "/etc/sysctl.d/k8s.conf"
CONTAINERD_CONF = "/etc/containerd/config.toml"
SWAP_LINE = r"^\S+\s+\S+\s+swap\s+"


def _home(user: str) -> str:
    return "/root" if user == "root" else f"/home/{user}"


def _same_content(ctx: StepContext, remote_path: str, content: str) -> bool:
    digest = hashlib.sha256(content.encode("utf-8")).hexdigest()
    return ctx.session.shell.sha256(remote_path) == digest


def build_catalogue(cluster: ClusterSpec, renderer: Optional[TemplateRenderer] = None) -> List[Step]:
    """
    The steps that take a fresh Ubuntu machine to a Kubernetes node, as a
    DAG. Common steps apply to every machine; the rest are role specific.
    """
    renderer = renderer or TemplateRenderer()

    modules_conf = renderer.render("modules-load.conf.j2", {"modules": cluster.kernel_modules})
    sysctl_conf = renderer.render("sysctl.conf.j2", {"params": cluster.sysctl})
    k8s_list = renderer.render("kubernetes.list.j2", {"repo": cluster.kubernetes_repo})
    pause = f"registry.k8s.io/pause:{cluster.pause_image_version}"

    # ------------------ common ------------------

    def _swap_off(ctx: StepContext) -> bool:
        return ctx.session.shell.test(
            f'test -z "$(swapon --noheadings)" && ! grep -Eq {shlex.quote(SWAP_LINE)} /etc/fstab'
        )

    @step("disable-swap", roles=ALL, check=_swap_off)
    def disable_swap(ctx: StepContext):
        """Turn swap off now and on every boot."""
        ctx.session.shell.check(f"swapoff -a && sed -ri {shlex.quote('/' + SWAP_LINE + '/d')} /etc/fstab")

    def _modules_loaded(ctx: StepContext) -> bool:
        if not _same_content(ctx, MODULES_CONF, modules_conf):
            return False
        return all(
            ctx.session.shell.test(f"lsmod | grep -q '^{m} '", sudo=False) for m in cluster.kernel_modules
        )

    @step("kernel-modules", roles=ALL, check=_modules_loaded)
    def kernel_modules(ctx: StepContext):
        """Persist and load overlay and br_netfilter."""
        ctx.session.transport.push(modules_conf, MODULES_CONF)
        for m in cluster.kernel_modules:
            ctx.session.shell.check(f"modprobe {shlex.quote(m)}")

    def _sysctl_applied(ctx: StepContext) -> bool:
        if not _same_content(ctx, SYSCTL_CONF, sysctl_conf):
            return False
        for key, value in cluster.sysctl.items():
            rc, out, _ = ctx.session.shell.run(f"sysctl -n {shlex.quote(key)}", sudo=False)
            if rc != 0 or out.strip() != str(value):
                return False
        return True

    @step("sysctl", roles=ALL, depends_on=("kernel-modules",), check=_sysctl_applied)
    def sysctl(ctx: StepContext):
        """Bridge netfilter + IP forwarding."""
        ctx.session.transport.push(sysctl_conf, SYSCTL_CONF)
        ctx.session.shell.check("sysctl --system")

    @step(
        "base-packages",
        roles=ALL,
        check=lambda ctx: ctx.session.installer.is_installed(cluster.base_packages),
    )
    def base_packages(ctx: StepContext):
        ctx.session.installer.install(cluster.base_packages)

    def _docker_repo_present(ctx: StepContext) -> bool:
        return ctx.session.shell.test(f"test -s {DOCKER_KEYRING} && test -s {DOCKER_LIST}")

    @step("docker-repo", roles=ALL, depends_on=("base-packages",), check=_docker_repo_present)
    def docker_repo(ctx: StepContext):
        """Docker's apt key and source for this release."""
        shell = ctx.session.shell
        shell.check(
            f"install -d -m 0755 {KEYRINGS} && "
            f"curl -fsSL {shlex.quote(cluster.docker_gpg_key_url)} -o {DOCKER_KEYRING} && "
            f"chmod 0644 {DOCKER_KEYRING}"
        )
        arch = shell.check("dpkg --print-architecture", sudo=False).strip()
        codename = shell.check("lsb_release -cs", sudo=False).strip()
        listing = renderer.render(
            "docker.list.j2", {"arch": arch, "codename": codename, "keyring": DOCKER_KEYRING}
        )
        ctx.session.transport.push(listing, DOCKER_LIST)

    def _k8s_repo_present(ctx: StepContext) -> bool:
        return ctx.session.shell.test(f"test -s {K8S_KEYRING}") and _same_content(ctx, K8S_LIST, k8s_list)

    @step("kubernetes-repo", roles=ALL, depends_on=("base-packages",), check=_k8s_repo_present)
    def kubernetes_repo(ctx: StepContext):
        """pkgs.k8s.io key and source for the configured minor channel."""
        ctx.session.shell.check(
            f"install -d -m 0755 {KEYRINGS} && "
            f"curl -fsSL {shlex.quote(cluster.kubernetes_gpg_key_url)} -o /tmp/kubernetes-release.key && "
            f"gpg --batch --yes --dearmor -o {K8S_KEYRING} /tmp/kubernetes-release.key"
        )
        ctx.session.transport.push(k8s_list, K8S_LIST)

    def _runtime_ready(ctx: StepContext) -> bool:
        inst = ctx.session.installer
        user = shlex.quote(ctx.machine.username)
        return (
            inst.is_installed(cluster.runtime_packages)
            and inst.is_running("docker")
            and inst.is_running("containerd")
            and ctx.session.shell.test(f"id -nG {user} | grep -qw docker", sudo=False)
        )

    @step("container-runtime", roles=ALL, depends_on=("docker-repo",), check=_runtime_ready)
    def container_runtime(ctx: StepContext):
        """Docker engine + containerd, running, with the SSH user in the docker group."""
        inst = ctx.session.installer
        inst.install(cluster.runtime_packages)
        ctx.session.shell.check(f"usermod -aG docker {shlex.quote(ctx.machine.username)}")
        for service in ("docker", "containerd"):
            inst.ensure_running(service)

    def _containerd_configured(ctx: StepContext) -> bool:
        return ctx.session.shell.test(
            f"grep -q 'SystemdCgroup = true' {CONTAINERD_CONF} && "
            f"grep -qF {shlex.quote(pause)} {CONTAINERD_CONF}"
        )

    @step(
        "containerd-config",
        roles=ALL,
        depends_on=("container-runtime", "sysctl"),
        check=_containerd_configured,
    )
    def containerd_config(ctx: StepContext):
        """Default config with the systemd cgroup driver and the pinned pause image."""
        ctx.session.shell.check(
            "mkdir -p /etc/containerd && containerd config default"
            " | sed 's/SystemdCgroup = false/SystemdCgroup = true/'"
            f" | sed 's|sandbox_image = \"registry.k8s.io/pause:.*\"|sandbox_image = \"{pause}\"|'"
            f" > {CONTAINERD_CONF}"
        )
        ctx.session.installer.restart("containerd")

    def _k8s_packages_held(ctx: StepContext) -> bool:
        inst = ctx.session.installer
        return inst.is_installed(cluster.kubernetes_packages) and inst.is_held(cluster.kubernetes_packages)

    @step(
        "kubernetes-packages",
        roles=ALL,
        depends_on=("kubernetes-repo", "containerd-config"),
        check=_k8s_packages_held,
    )
    def kubernetes_packages(ctx: StepContext):
        """kubelet, kubeadm and kubectl, held at the installed version."""
        inst = ctx.session.installer
        inst.install(cluster.kubernetes_packages)
        inst.hold(cluster.kubernetes_packages)

    # kubelet crash-loops until init/join hands it a config, so "enabled" is all we can ask for
    @step(
        "kubelet",
        roles=ALL,
        depends_on=("kubernetes-packages",),
        check=lambda ctx: ctx.session.shell.test("systemctl is-enabled --quiet kubelet", sudo=False),
    )
    def kubelet(ctx: StepContext):
        ctx.session.installer.ensure_running("kubelet")

    # ------------------ control plane ------------------

    # kubeadm init is not re-runnable without a reset: one attempt only
    @step(
        "control-plane-init",
        roles=CONTROL_PLANE,
        depends_on=("kubelet",),
        kind=StepKind.CONTROL_PLANE_INIT,
        check=lambda ctx: ctx.session.control_plane.is_initialized(),
        retry=RetryPolicy(max_attempts=1),
    )
    def control_plane_init(ctx: StepContext):
        """kubeadm init; returns the join command workers will run."""
        return ctx.session.control_plane.init(
            InitConfig(advertise_address=ctx.machine.address, pod_network_cidr=cluster.pod_network_cidr)
        )

    def _user_kubeconfig_path(ctx: StepContext) -> str:
        return f"{_home(ctx.machine.username)}/.kube/config"

    @step(
        "user-kubeconfig",
        roles=CONTROL_PLANE,
        depends_on=("control-plane-init",),
        check=lambda ctx: ctx.session.shell.test(f"cmp -s {ADMIN_CONF} {_user_kubeconfig_path(ctx)}"),
    )
    def user_kubeconfig(ctx: StepContext):
        """admin.conf -> ~/.kube/config of the SSH user."""
        user = shlex.quote(ctx.machine.username)
        home = _home(ctx.machine.username)
        ctx.session.shell.check(
            f"install -d -m 0755 -o {user} -g {user} {home}/.kube && "
            f"install -m 0600 -o {user} -g {user} {ADMIN_CONF} {home}/.kube/config"
        )

    @step(
        "network-overlay",
        roles=CONTROL_PLANE,
        depends_on=("user-kubeconfig",),
        kind=StepKind.NETWORK_OVERLAY,
        check=lambda ctx: ctx.session.overlay.is_applied(),
    )
    def network_overlay(ctx: StepContext):
        """Calico, once every worker has settled."""
        ctx.session.overlay.apply(cluster.overlay_manifest)

    @step(
        "fetch-kubeconfig",
        roles=CONTROL_PLANE,
        depends_on=("network-overlay",),
        check=lambda ctx: ctx.session.transport.matches(ADMIN_CONF, cluster.kubeconfig_dest),
    )
    def fetch_kubeconfig(ctx: StepContext):
        """Copy admin.conf to the operator host."""
        ctx.session.transport.fetch(ADMIN_CONF, cluster.kubeconfig_dest)

    # ------------------ workers ------------------

    @step(
        "worker-join",
        roles=WORKER,
        depends_on=("kubelet",),
        kind=StepKind.WORKER_JOIN,
        check=lambda ctx: ctx.session.control_plane.is_joined(),
    )
    def worker_join(ctx: StepContext):
        """Run the published join command."""
        token = ctx.token
        if token is None:
            raise JoinError("no join token has been published")
        ctx.session.control_plane.join(token, JoinConfig())

    return [
        disable_swap,
        kernel_modules,
        sysctl,
        base_packages,
        docker_repo,
        kubernetes_repo,
        container_runtime,
        containerd_config,
        kubernetes_packages,
        kubelet,
        control_plane_init,
        user_kubeconfig,
        network_overlay,
        fetch_kubeconfig,
        worker_join,
    ]


def stage_graphs(
    steps: List[Step],
    roles=tuple(Role),
    bus: Optional[EventBus] = None,
    run_ctx: Optional[dict] = None,
) -> Dict[Role, StageGraph]:
    """One validated graph per role."""
    graphs = {role: plan(steps, role, bus=bus, run_ctx=run_ctx) for role in roles}
    for role, graph in graphs.items():
        log.debug("%s: %s", role.value, " -> ".join(graph.ids))
    return graphs
