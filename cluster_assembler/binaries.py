"""Installing Kubernetes binaries and the kubelet service on hosts."""

import base64
from pathlib import Path

from cluster_assembler.exceptions import ExecutionError
from cluster_assembler.executor import HostRunner, sudo
from cluster_assembler.logging_config import get_logger
from cluster_assembler.models.cluster import ClusterConfig
from cluster_assembler.state import NodeMembershipRegistry
from cluster_assembler.templates import render_kubelet_env, render_kubelet_service

logger = get_logger(__name__)

CNI_VERSION = "v0.8.6"
REMOTE_TMP_DIR = "/tmp/kubeassemble"


def binary_files(arch: str) -> list[str]:
    return ["kubeadm", "kubelet", "kubectl", "helm", f"cni-plugins-linux-{arch}-{CNI_VERSION}.tgz"]


def _run(runner: HostRunner, command: str, retries: int, error: str) -> None:
    try:
        runner.execute(sudo(command), retries=retries)
    except ExecutionError as e:
        raise ExecutionError(f"{error} on {runner.node.name}", e.format_message()) from e


def sync_kube_binaries(runner: HostRunner, config: ClusterConfig, sources_dir: str | Path) -> None:
    """Copy kubeadm, kubectl, helm and the CNI plugins onto a host and install them.

    Kubelet is copied but installed by :func:`set_kubelet`.
    """
    node = runner.node
    _run(
        runner,
        f"if [ -d {REMOTE_TMP_DIR} ]; then rm -rf {REMOTE_TMP_DIR} ;fi && mkdir -p {REMOTE_TMP_DIR}",
        1,
        "Failed to create tmp dir",
    )

    files_dir = Path(sources_dir) / config.kubernetes.version / node.arch
    commands = []
    for binary in binary_files(node.arch):
        local = files_dir / binary
        try:
            runner.copy_file(str(local), f"{REMOTE_TMP_DIR}/{binary}")
        except ExecutionError as e:
            raise ExecutionError(f"Failed to sync binaries to {node.name}", e.format_message()) from e

        if binary.startswith("cni-plugins-linux"):
            commands.append(f"mkdir -p /opt/cni/bin && tar -zxf {REMOTE_TMP_DIR}/{binary} -C /opt/cni/bin")
        elif binary == "kubelet":
            continue
        else:
            commands.append(
                f"cp -f {REMOTE_TMP_DIR}/{binary} /usr/local/bin/{binary} && chmod +x /usr/local/bin/{binary}"
            )

    _run(runner, " && ".join(commands), 2, "Failed to install kube binaries")


def set_kubelet(runner: HostRunner, config: ClusterConfig) -> None:
    """Install kubelet and its systemd unit and kubeadm drop-in."""
    _run(
        runner,
        f"cp -f {REMOTE_TMP_DIR}/kubelet /usr/local/bin/kubelet && chmod +x /usr/local/bin/kubelet",
        2,
        "Failed to install kubelet",
    )

    service = base64.b64encode(render_kubelet_service().encode()).decode()
    _run(
        runner,
        f"echo {service} | base64 -d > /etc/systemd/system/kubelet.service",
        5,
        "Failed to generate kubelet service",
    )
    _run(
        runner,
        "systemctl disable kubelet && systemctl enable kubelet && ln -snf /usr/local/bin/kubelet /usr/bin/kubelet",
        5,
        "Failed to enable kubelet service",
    )

    env = render_kubelet_env(runner.node, config.kubernetes.container_manager)
    env_b64 = base64.b64encode(env.encode()).decode()
    _run(
        runner,
        "mkdir -p /etc/systemd/system/kubelet.service.d && "
        f"echo {env_b64} | base64 -d > /etc/systemd/system/kubelet.service.d/10-kubeadm.conf",
        2,
        "Failed to generate kubelet env",
    )


def install_kube_binaries(
    runner: HostRunner,
    config: ClusterConfig,
    registry: NodeMembershipRegistry,
    sources_dir: str | Path,
) -> bool:
    """Install binaries and kubelet unless the host is already a cluster member.

    Returns:
        True if anything was installed
    """
    if registry.is_member(runner.node):
        logger.info(f"[{runner.node.name}] already in the cluster, skipping binary install")
        return False

    sync_kube_binaries(runner, config, sources_dir)
    set_kubelet(runner, config)
    logger.info(f"[{runner.node.name}] installed kube binaries")
    return True
