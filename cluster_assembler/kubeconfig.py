"""Distribution of the cluster admin kubeconfig."""

import os
from pathlib import Path

from cluster_assembler.exceptions import ClusterAssemblerError, ExecutionError
from cluster_assembler.executor import HostRunner, sudo
from cluster_assembler.logging_config import get_logger
from cluster_assembler.models.cluster import ControlPlaneEndpoint
from cluster_assembler.state import ClusterAssemblyState

logger = get_logger(__name__)

ADMIN_CONF = "/etc/kubernetes/admin.conf"
ROOT_KUBECONFIG = "/root/.kube/config"
USER_KUBECONFIG = "$HOME/.kube/config"
KUBECONFIG_MODE = 0o644


def rewrite_server(kubeconfig: str, internal_host: str, external_host: str, port: int) -> str:
    """Point the ``server:`` line at an externally reachable address.

    Only the exact ``server: https://<internal_host>:<port>`` text is replaced.
    """
    old_server = f"server: https://{internal_host}:{port}"
    new_server = f"server: https://{external_host}:{port}"
    return kubeconfig.replace(old_server, new_server)


class KubeconfigDistributor:
    """Copies the admin kubeconfig to hosts and to the local work directory."""

    def __init__(self, endpoint: ControlPlaneEndpoint, work_dir: str | Path, cluster_name: str):
        self.endpoint = endpoint
        self.work_dir = Path(work_dir)
        self.cluster_name = cluster_name

    @property
    def local_path(self) -> Path:
        return self.work_dir / f"config-{self.cluster_name}"

    def distribute_admin(self, runner: HostRunner) -> None:
        """Copy admin.conf into the root and login user's kube config on a control-plane host."""
        command = " && ".join(
            [
                "mkdir -p /root/.kube && mkdir -p $HOME/.kube",
                f"cp -f {ADMIN_CONF} {ROOT_KUBECONFIG}",
                f"cp -f {ADMIN_CONF} {USER_KUBECONFIG}",
                f"chown $(id -u):$(id -g) {USER_KUBECONFIG}",
            ]
        )
        try:
            runner.execute(sudo(command), retries=2)
        except ExecutionError as e:
            raise ExecutionError(
                f"Failed to copy admin kubeconfig on {runner.node.name}", e.format_message()
            ) from e

    def sync_to_worker(self, runner: HostRunner, state: ClusterAssemblyState) -> None:
        """Write the cluster kubeconfig onto a worker, which has no admin.conf of its own."""
        encoded = state.kubeconfig
        try:
            runner.execute(sudo("mkdir -p /root/.kube && mkdir -p $HOME/.kube"), retries=1)
        except ExecutionError as e:
            raise ExecutionError(
                f"Failed to create kube dir on {runner.node.name}", e.format_message()
            ) from e

        user_command = (
            f"echo {encoded} | base64 -d > {USER_KUBECONFIG} && chown $(id -u):$(id -g) -R $HOME/.kube"
        )
        try:
            runner.execute(sudo(f"echo {encoded} | base64 -d > {ROOT_KUBECONFIG}"), retries=1)
            runner.execute(sudo(user_command), retries=1)
        except ExecutionError as e:
            raise ExecutionError(
                f"Failed to sync kube config on {runner.node.name}", e.format_message()
            ) from e

    def load_locally(self, state: ClusterAssemblyState) -> Path:
        """Write the admin kubeconfig to the work directory, addressed externally.

        Returns:
            Path of the written file

        Raises:
            ClusterAssemblerError: If the kubeconfig cannot be decoded or written
        """
        kubeconfig = rewrite_server(
            state.decoded_kubeconfig(),
            self.endpoint.domain,
            self.endpoint.address,
            self.endpoint.port,
        )
        path = self.local_path
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(kubeconfig, encoding="utf-8")
            os.chmod(path, KUBECONFIG_MODE)
        except OSError as e:
            raise ClusterAssemblerError(f"Failed to write kubeconfig to {path}", str(e)) from e

        logger.info(f"Wrote cluster kubeconfig to {path}")
        return path
