# src/kubeboot/config/models.py

from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, Field, field_validator

CALICO_MANIFEST = "https://raw.githubusercontent.com/projectcalico/calico/v3.27.0/manifests/calico.yaml"


class RetrySpec(BaseModel):
    """Per-step retry policy: bounded exponential backoff."""
    max_attempts: int = Field(default=3, ge=1)
    base_delay_seconds: float = Field(default=2.0, ge=0)
    max_delay_seconds: float = Field(default=60.0, ge=0)


class LivenessSpec(BaseModel):
    """How long to wait for the control-plane API after init."""
    attempts: int = Field(default=10, ge=1)
    interval_seconds: float = Field(default=15.0, ge=0)
    # "http" probes from the operator host; "ssh" curls localhost on the control plane
    mode: Literal["http", "ssh"] = "http"
    url: str = "https://{address}:6443/healthz"
    verify_tls: bool = False
    timeout_seconds: float = 5.0


class ClusterSpec(BaseModel):
    """What the cluster should look like once bootstrapped."""
    name: str = "kubernetes"
    kubernetes_channel: str = "v1.31"
    pod_network_cidr: str = "10.244.0.0/16"
    pause_image_version: str = "3.10"
    docker_gpg_key_url: str = "https://download.docker.com/linux/ubuntu/gpg"
    base_packages: List[str] = Field(
        default_factory=lambda: ["apt-transport-https", "ca-certificates", "curl", "gnupg"]
    )
    runtime_packages: List[str] = Field(
        default_factory=lambda: [
            "docker-ce",
            "docker-ce-cli",
            "containerd.io",
            "docker-buildx-plugin",
            "docker-compose-plugin",
        ]
    )
    kubernetes_packages: List[str] = Field(default_factory=lambda: ["kubelet", "kubeadm", "kubectl"])
    kernel_modules: List[str] = Field(default_factory=lambda: ["overlay", "br_netfilter"])
    sysctl: Dict[str, str] = Field(
        default_factory=lambda: {
            "net.bridge.bridge-nf-call-ip6tables": "1",
            "net.bridge.bridge-nf-call-iptables": "1",
            "net.ipv4.ip_forward": "1",
        }
    )
    overlay_manifest: str = CALICO_MANIFEST
    overlay_daemonset: str = "calico-node"
    kubeconfig_dest: str = "./kubeconfig/k8s-admin.conf"

    @property
    def kubernetes_gpg_key_url(self) -> str:
        return f"https://pkgs.k8s.io/core:/stable:/{self.kubernetes_channel}/deb/Release.key"

    @property
    def kubernetes_repo(self) -> str:
        return (
            "deb [signed-by=/etc/apt/keyrings/kubernetes-apt-keyring.gpg] "
            f"https://pkgs.k8s.io/core:/stable:/{self.kubernetes_channel}/deb/ /"
        )


class ExecutionSpec(BaseModel):
    """How the orchestrator drives the fleet."""
    retry: RetrySpec = RetrySpec()
    liveness: LivenessSpec = LivenessSpec()
    barrier_timeout_seconds: float = Field(default=1800.0, gt=0)
    max_parallel: Optional[int] = Field(default=None, ge=1)
    state_path: str = ".kubeboot/state.jsonl"
    ssh_connect_attempts: int = Field(default=30, ge=1)
    ssh_connect_delay_seconds: float = Field(default=20.0, ge=0)
    command_timeout_seconds: float = Field(default=900.0, gt=0)


class KubebootConfig(BaseModel):
    environment: Literal["dev", "staging", "prod"] = "dev"
    inventory: Optional[str] = None      # path, relative to the config file
    cluster: ClusterSpec = ClusterSpec()
    execution: ExecutionSpec = ExecutionSpec()

    @field_validator("inventory")
    @classmethod
    def _strip(cls, v: Optional[str]) -> Optional[str]:
        return v.strip() if v else v
