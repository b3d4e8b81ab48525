"""Cluster DNS deployment."""

from pathlib import Path

from cluster_assembler.exceptions import ConfigurationError, ExecutionError
from cluster_assembler.executor import HostRunner, sudo
from cluster_assembler.logging_config import get_logger
from cluster_assembler.models.cluster import ClusterConfig

logger = get_logger(__name__)

REMOTE_MANIFEST = "/etc/kubernetes/cluster-dns.yaml"


def apply_cluster_dns(runner: HostRunner, config: ClusterConfig) -> None:
    """Apply the configured DNS manifest, or keep the CoreDNS kubeadm installs."""
    manifest = config.network.dns_manifest
    if not manifest:
        logger.info("No DNS manifest configured, keeping the kubeadm CoreDNS deployment")
        return

    if not Path(manifest).is_file():
        raise ConfigurationError(f"DNS manifest not found: {manifest}")

    runner.copy_file(manifest, "/tmp/cluster-dns.yaml")
    try:
        runner.execute(
            sudo(
                f"mv -f /tmp/cluster-dns.yaml {REMOTE_MANIFEST} && "
                f"/usr/local/bin/kubectl apply -f {REMOTE_MANIFEST}"
            ),
            retries=5,
        )
    except ExecutionError as e:
        raise ExecutionError("Failed to apply cluster DNS manifest", e.format_message()) from e
    logger.info(f"Applied cluster DNS manifest {manifest}")
