"""Cluster assembly: detect or initialize the control plane, then join nodes.

The driver host (first master in assembly order) detects an existing cluster
or runs ``kubeadm init``, then publishes the join commands, admin kubeconfig
and node membership into the shared :class:`ClusterAssemblyState`. Other hosts
may only call :meth:`ClusterAssembler.join_node` once that state is ready.
"""

import base64
import json
from collections.abc import Callable
from pathlib import Path

from cluster_assembler.dns import apply_cluster_dns
from cluster_assembler.exceptions import AssemblyStateError, ExecutionError
from cluster_assembler.executor import HostRunner, sudo, sudo_with_path
from cluster_assembler.kubeconfig import ADMIN_CONF, KubeconfigDistributor
from cluster_assembler.logging_config import get_logger
from cluster_assembler.models.cluster import ClusterConfig
from cluster_assembler.models.node import Node
from cluster_assembler.parsing import (
    MISSING_FILE_MARKER,
    extract_certificate_key,
    extract_join_arguments,
    parse_apiserver_version,
    parse_node_listing,
)
from cluster_assembler.retry import attempt_with_compensation, best_effort
from cluster_assembler.state import ClusterAssemblyState, NodeMembershipRegistry
from cluster_assembler.templates import render_kubeadm_config

logger = get_logger(__name__)

KUBEADM = "/usr/local/bin/kubeadm"
KUBECTL = "/usr/local/bin/kubectl"
KUBEADM_CONFIG_PATH = "/etc/kubernetes/kubeadm-config.yaml"

CLUSTER_EXISTS = "Cluster already exists"
CLUSTER_ABSENT = "Cluster will be created"
EXISTS_CHECK_COMMAND = (
    f"[ -f {ADMIN_CONF} ] && echo '{CLUSTER_EXISTS}.' || echo '{CLUSTER_ABSENT}.'"
)
VERSION_COMMAND = (
    "sudo cat /etc/kubernetes/manifests/kube-apiserver.yaml | grep 'image:' "
    "| awk -F '[:]' '{print $(NF-0)}'"
)
READ_KUBECONFIG_COMMAND = f"cat {ADMIN_CONF} | base64 --wrap=0"
INIT_COMMAND = (
    f"{KUBEADM} init --config={KUBEADM_CONFIG_PATH} --ignore-preflight-errors=FileExisting-crictl"
)
RESET_COMMAND = f"{KUBEADM} reset -f"
UPLOAD_CERTS_COMMAND = f"{KUBEADM} init phase upload-certs --upload-certs"
TOKEN_CREATE_COMMAND = f"{KUBEADM} token create --print-join-command"
NODE_LISTING_COMMAND = (
    f"{KUBECTL} --no-headers=true get nodes "
    "-o custom-columns=:metadata.name,:status.nodeInfo.kubeletVersion,:status.addresses"
)
EXTERNAL_ETCD_SECRET_FIELDS = ["external-etcd-ca.crt", "external-etcd.crt", "external-etcd.key"]
MASTER_TAINT = "node-role.kubernetes.io/master=:NoSchedule-"
WORKER_LABEL = "node-role.kubernetes.io/worker="

DnsInstaller = Callable[[HostRunner, ClusterConfig], None]


def patch_secret_command(field: str) -> str:
    body = json.dumps({"data": {field: ""}}).replace('"', '\\"')
    return f"{KUBECTL} patch -n kube-system secret kubeadm-certs -p '{body}'"


class ClusterAssembler:
    """Orchestrates control-plane initialization and node joins."""

    def __init__(
        self,
        config: ClusterConfig,
        state: ClusterAssemblyState,
        registry: NodeMembershipRegistry,
        kubeconfig: KubeconfigDistributor,
        work_dir: str | Path,
        dns_installer: DnsInstaller = apply_cluster_dns,
    ):
        self.config = config
        self.state = state
        self.registry = registry
        self.kubeconfig = kubeconfig
        self.work_dir = Path(work_dir)
        self.dns_installer = dns_installer

    def _require_driver(self, runner: HostRunner) -> None:
        if runner.node.name != self.state.driver:
            raise AssemblyStateError(
                f"Host '{runner.node.name}' is not the driver host",
                f"Cluster detection and initialization run on '{self.state.driver}' only",
            )

    @staticmethod
    def _step(runner: HostRunner, command: str, retries: int, error: str) -> str:
        """Run a fatal command, naming the failed step in the raised error."""
        try:
            return runner.execute(command, retries=retries)
        except ExecutionError as e:
            raise ExecutionError(
                f"{error} on {runner.node.name}",
                e.format_message(),
                command=e.command,
                exit_status=e.exit_status,
                output=e.output,
            ) from e

    def detect_existing_cluster(self, driver: HostRunner) -> bool:
        """Find out whether the driver host already runs a control plane.

        If it does, cluster version, kubeconfig, join commands and membership
        are read into the shared state.

        Returns:
            True if the cluster already exists
        """
        self._require_driver(driver)
        if self.state.node_listing:
            return self.state.exists

        output = driver.execute(sudo(EXISTS_CHECK_COMMAND), check=False)
        if CLUSTER_ABSENT in output:
            logger.info(f"No cluster found on {driver.node.name}, it will be created")
            return False
        if CLUSTER_EXISTS not in output:
            raise ExecutionError(
                f"Failed to find {ADMIN_CONF} on {driver.node.name}",
                output or "(empty output)",
                command=EXISTS_CHECK_COMMAND,
                output=output,
            )

        writer = driver.node.name
        try:
            version_output = driver.execute(VERSION_COMMAND)
        except ExecutionError as e:
            if MISSING_FILE_MARKER not in e.output:
                raise ExecutionError(
                    f"Failed to find current version on {writer}", e.format_message()
                ) from e
            version_output = e.output
        self.state.set_version(parse_apiserver_version(version_output), writer)
        logger.info(f"Found existing cluster on {writer}, version '{self.state.version or 'unknown'}'")

        encoded = self._step(driver, sudo(READ_KUBECONFIG_COMMAND), 1, "Failed to get cluster kubeconfig")
        self.state.set_kubeconfig(encoded, writer)
        self.state.mark_exists(writer)

        self.refresh_join_credentials(driver)
        self.load_kubeconfig_locally()
        self.state.mark_ready(writer)
        return True

    def _kubeadm_config(self, node: Node) -> str:
        """Base64 kubeadm configuration: the work-dir override if present, else generated."""
        override = self.work_dir / "kubeadm-config.yaml"
        if override.is_file():
            logger.info(f"Using custom kubeadm config {override}")
            return base64.b64encode(override.read_bytes()).decode()
        return base64.b64encode(render_kubeadm_config(self.config, node).encode()).decode()

    def initialize_control_plane(self, driver: HostRunner) -> bool:
        """Run kubeadm init on the driver host if no cluster exists yet.

        Returns:
            True if a new control plane was initialized

        Raises:
            RetryExhaustedError: If kubeadm init failed three times
        """
        self._require_driver(driver)
        if self.state.exists:
            logger.debug("Cluster already exists, skipping kubeadm init")
            return False

        writer = driver.node.name
        encoded = self._kubeadm_config(driver.node)
        self._step(
            driver,
            sudo(f"mkdir -p /etc/kubernetes && echo {encoded} | base64 -d > {KUBEADM_CONFIG_PATH}"),
            1,
            "Failed to generate kubeadm config",
        )

        logger.info(f"Initializing control plane on {writer}")
        attempt_with_compensation(
            lambda: driver.execute(sudo_with_path(INIT_COMMAND)),
            lambda: driver.execute(sudo(RESET_COMMAND)),
            "init kubernetes cluster",
        )

        self.kubeconfig.distribute_admin(driver)
        self.remove_master_taint(driver)
        self.add_worker_label(driver)
        self.dns_installer(driver, self.config)
        self.state.mark_exists(writer)

        self.refresh_join_credentials(driver)
        self.load_kubeconfig_locally()
        self.state.mark_ready(writer)
        logger.info(f"Control plane initialized on {writer}")
        return True

    def patch_kubeadm_secret(self, driver: HostRunner) -> None:
        """Blank the external etcd certificates in the kubeadm-certs secret."""
        for field in EXTERNAL_ETCD_SECRET_FIELDS:
            self._step(driver, sudo(patch_secret_command(field)), 5, "Failed to patch kubeadm secret")

    def refresh_join_credentials(self, driver: HostRunner) -> None:
        """Upload certs, build join commands and re-read membership and kubeconfig."""
        self._require_driver(driver)
        writer = driver.node.name

        output = self._step(driver, sudo(UPLOAD_CERTS_COMMAND), 5, "Failed to upload kubeadm certs")
        certificate_key = extract_certificate_key(output)
        self.patch_kubeadm_secret(driver)

        output = self._step(driver, sudo(TOKEN_CREATE_COMMAND), 5, "Failed to get join node cmd")
        self.state.set_join_commands(extract_join_arguments(output), certificate_key, writer)

        listing = self._step(driver, sudo(NODE_LISTING_COMMAND), 5, "Failed to get cluster info")
        self.state.set_node_listing(listing, writer)
        self.registry.record(parse_node_listing(listing))

        encoded = self._step(driver, sudo(READ_KUBECONFIG_COMMAND), 1, "Failed to get cluster kubeconfig")
        self.state.set_kubeconfig(encoded, writer)
        logger.debug(f"Refreshed join credentials, {len(self.registry)} membership entries")

    def load_kubeconfig_locally(self) -> Path:
        return self.kubeconfig.load_locally(self.state)

    def join_node(self, runner: HostRunner) -> bool:
        """Join a host as master or worker unless it is already a member.

        Returns:
            True if the host was joined, False if it was skipped
        """
        self.state.require_ready()
        node = runner.node
        if self.registry.is_member(node):
            logger.info(f"[{node.name}] already in the cluster, skipping join")
            return False

        if node.is_master:
            self.add_master(runner)
            self.remove_master_taint(runner)
            self.add_worker_label(runner)
        elif node.is_worker:
            self.add_worker(runner)
            self.add_worker_label(runner)

        self.registry.mark_joined(node)
        return True

    def _join(self, runner: HostRunner, command: str, role: str) -> None:
        logger.info(f"[{runner.node.name}] joining the cluster as {role}")
        attempt_with_compensation(
            lambda: runner.execute(sudo_with_path(command)),
            lambda: runner.execute(sudo_with_path(RESET_COMMAND)),
            f"add {role} to cluster",
        )

    def add_master(self, runner: HostRunner) -> None:
        self._join(runner, self.state.master_join_command, "master")
        self.kubeconfig.distribute_admin(runner)

    def add_worker(self, runner: HostRunner) -> None:
        self._join(runner, self.state.worker_join_command, "worker")
        self.kubeconfig.sync_to_worker(runner, self.state)

    def remove_master_taint(self, runner: HostRunner) -> None:
        """Let a dual-role master schedule workloads."""
        node = runner.node
        if not node.is_worker:
            return
        self._step(
            runner,
            sudo(f"{KUBECTL} taint nodes {node.name} {MASTER_TAINT}"),
            5,
            "Failed to remove master taint",
        )

    def add_worker_label(self, runner: HostRunner) -> None:
        node = runner.node
        if not node.is_worker:
            return
        best_effort(
            lambda: runner.execute(
                sudo(f"{KUBECTL} label --overwrite node {node.name} {WORKER_LABEL}"), retries=5
            ),
            f"label {node.name} as worker",
        )

    def add_labels(self, runner: HostRunner) -> None:
        """Apply the user-defined labels of a host. Failures are ignored."""
        node = runner.node
        for key, value in node.labels.items():
            best_effort(
                lambda key=key, value=value: runner.execute(
                    sudo(f"{KUBECTL} label --overwrite node {node.name} {key}={value}"), retries=5
                ),
                f"label {node.name} with {key}={value}",
            )
