"""Ordered assembly steps run across all hosts.

Each step finishes on every selected host before the next step starts. This is
what keeps joining hosts from reading cluster state the driver host has not
written yet.
"""

from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from cluster_assembler.assembler import ClusterAssembler, DnsInstaller
from cluster_assembler.binaries import install_kube_binaries
from cluster_assembler.dns import apply_cluster_dns
from cluster_assembler.exceptions import AssemblyError, ClusterAssemblerError
from cluster_assembler.executor import HostRunner
from cluster_assembler.images import images_for_cluster, pull_images
from cluster_assembler.kubeconfig import KubeconfigDistributor
from cluster_assembler.logging_config import get_logger
from cluster_assembler.models.cluster import ClusterConfig
from cluster_assembler.state import ClusterAssemblyState, NodeMembershipRegistry

logger = get_logger(__name__)


@dataclass
class Task:
    """One assembly step and the hosts it runs on."""

    name: str
    err_msg: str
    run: Callable[[HostRunner], Any]
    hosts: Callable[[], list[HostRunner]]


class AssemblyPipeline:
    """Builds the shared state and runs every assembly step in order."""

    def __init__(
        self,
        config: ClusterConfig,
        runners: list[HostRunner],
        work_dir: str | Path,
        sources_dir: str | Path,
        max_workers: int = 10,
        skip_pull_images: bool = False,
        dns_installer: DnsInstaller = apply_cluster_dns,
    ):
        self.config = config
        self.runners = runners
        self.sources_dir = Path(sources_dir)
        self.max_workers = max_workers
        self.skip_pull_images = skip_pull_images

        self.state = ClusterAssemblyState(driver=config.driver.name)
        self.registry = NodeMembershipRegistry()
        self.kubeconfig = KubeconfigDistributor(
            config.control_plane_endpoint, work_dir, config.name
        )
        self.assembler = ClusterAssembler(
            config,
            self.state,
            self.registry,
            self.kubeconfig,
            work_dir,
            dns_installer=dns_installer,
        )
        self.images = images_for_cluster(config)

    @property
    def driver(self) -> HostRunner:
        for runner in self.runners:
            if runner.node.name == self.state.driver:
                return runner
        raise AssemblyError(f"No runner for driver host '{self.state.driver}'")

    def _all(self) -> list[HostRunner]:
        return list(self.runners)

    def _driver_only(self) -> list[HostRunner]:
        return [self.driver]

    def _joiners(self) -> list[HostRunner]:
        return [r for r in self.runners if r.node.name != self.state.driver]

    def _pull_images(self, runner: HostRunner) -> None:
        pull_images(runner, self.images, self.config.kubernetes.container_manager)

    def _install_binaries(self, runner: HostRunner) -> None:
        install_kube_binaries(runner, self.config, self.registry, self.sources_dir)

    def tasks(self) -> list[Task]:
        tasks = []
        if not self.skip_pull_images:
            tasks.append(Task("pull images", "Failed to pre-pull images", self._pull_images, self._all))
        tasks.extend(
            [
                Task(
                    "detect cluster",
                    "Failed to get cluster status",
                    self.assembler.detect_existing_cluster,
                    self._driver_only,
                ),
                Task(
                    "install binaries",
                    "Failed to install kube binaries",
                    self._install_binaries,
                    self._all,
                ),
                Task(
                    "init control plane",
                    "Failed to init kubernetes cluster",
                    self.assembler.initialize_control_plane,
                    self._driver_only,
                ),
                Task("join nodes", "Failed to join node", self.assembler.join_node, self._joiners),
                Task(
                    "add labels", "Failed to add labels to nodes", self.assembler.add_labels, self._all
                ),
            ]
        )
        return tasks

    def run_task(self, task: Task) -> None:
        """Run a task on all its hosts concurrently and wait for every host.

        Raises:
            AssemblyError: If the task failed on any host
        """
        runners = task.hosts()
        if not runners:
            logger.debug(f"No hosts for step '{task.name}'")
            return

        logger.info(f"Running step '{task.name}' on {len(runners)} host(s)")
        failures: dict[str, ClusterAssemblerError] = {}
        with ThreadPoolExecutor(max_workers=min(self.max_workers, len(runners))) as pool:
            future_to_runner = {pool.submit(task.run, runner): runner for runner in runners}
            for future in as_completed(future_to_runner):
                name = future_to_runner[future].node.name
                try:
                    future.result()
                except ClusterAssemblerError as e:
                    logger.error(f"[{name}] {task.name} failed: {e.message}")
                    failures[name] = e

        if failures:
            details = "\n".join(f"{name}: {err.format_message()}" for name, err in failures.items())
            first = next(iter(failures.values()))
            raise AssemblyError(task.err_msg, details) from first

    def run(self) -> ClusterAssemblyState:
        """Run every step in order.

        Returns:
            The populated cluster state
        """
        for task in self.tasks():
            self.run_task(task)
        logger.info(f"Cluster '{self.config.name}' assembled")
        return self.state

    def detect(self) -> ClusterAssemblyState:
        """Run only cluster detection on the driver host."""
        self.assembler.detect_existing_cluster(self.driver)
        return self.state
