"""Pytest configuration and shared fixtures."""

import base64

import pytest
from hypothesis import Verbosity, settings

from cluster_assembler.executor import HostRunner
from cluster_assembler.kubeconfig import KubeconfigDistributor
from cluster_assembler.models.cluster import ClusterConfig
from cluster_assembler.state import ClusterAssemblyState, NodeMembershipRegistry

# Configure Hypothesis for property-based testing
settings.register_profile("default", max_examples=100, verbosity=Verbosity.normal)
settings.register_profile("ci", max_examples=1000, verbosity=Verbosity.verbose)
settings.register_profile("dev", max_examples=10, verbosity=Verbosity.verbose)

# Load the default profile
settings.load_profile("default")

CERTIFICATE_KEY = "0123456789abcdef" * 4
JOIN_ARGUMENTS = (
    "lb.kubesphere.local:6443 --token abcdef.0123456789abcdef "
    "--discovery-token-ca-cert-hash sha256:" + "e" * 64
)
ADMIN_KUBECONFIG = (
    "apiVersion: v1\n"
    "clusters:\n"
    "- cluster:\n"
    "    certificate-authority-data: ZmFrZQ==\n"
    "    server: https://lb.kubesphere.local:6443\n"
    "  name: cluster.local\n"
)
NODE_LISTING = (
    "node1   v1.18.6   [map[address:192.168.0.2 type:InternalIP] map[address:node1 type:Hostname]]\r\n"
    "node2   v1.18.6   [map[address:192.168.0.3 type:InternalIP] map[address:node2 type:Hostname]]"
)


class FakeRunner(HostRunner):
    """HostRunner that answers commands from scripted rules.

    Rules are checked in the order they were added; the first rule whose
    pattern is a substring of the command answers it. A rule with several
    results hands them out in order and then keeps repeating the last one.
    Unmatched commands succeed with empty output.
    """

    def __init__(self, node):
        super().__init__(node, retry_delay=0)
        self.rules: list[tuple[str, list[tuple[int, str]]]] = []
        self.commands: list[str] = []
        self.copies: list[tuple[str, str]] = []

    def respond(self, pattern: str, *results: tuple[int, str]) -> "FakeRunner":
        self.rules.append((pattern, list(results)))
        return self

    def _run(self, command):
        self.commands.append(command)
        for pattern, results in self.rules:
            if pattern in command:
                if len(results) > 1:
                    return results.pop(0)
                return results[0]
        return 0, ""

    def copy_file(self, local_path, remote_path):
        self.copies.append((local_path, remote_path))

    def count(self, pattern: str) -> int:
        return sum(1 for c in self.commands if pattern in c)


def script_control_plane(runner: FakeRunner, exists: bool) -> FakeRunner:
    """Script the kubeadm/kubectl answers of a healthy driver host."""
    sentinel = "Cluster already exists." if exists else "Cluster will be created."
    encoded = base64.b64encode(ADMIN_KUBECONFIG.encode()).decode()
    runner.respond("[ -f /etc/kubernetes/admin.conf ]", (0, sentinel + "\r\n"))
    runner.respond("kube-apiserver.yaml", (0, "v1.18.6\r\n"))
    runner.respond("upload-certs", (0, f"[upload-certs] Using certificate key:\r\n{CERTIFICATE_KEY}\r\n"))
    runner.respond("token create", (0, f"kubeadm join {JOIN_ARGUMENTS} \r\n"))
    runner.respond("get nodes", (0, NODE_LISTING))
    runner.respond("base64 --wrap=0", (0, encoded))
    return runner


@pytest.fixture
def sample_cluster_data():
    """Sample cluster definition for testing."""
    return {
        "name": "test-cluster",
        "hosts": [
            {
                "name": "node1",
                "address": "203.0.113.10",
                "internal_address": "192.168.0.2",
                "is_master": True,
                "is_worker": True,
            },
            {
                "name": "node2",
                "address": "203.0.113.11",
                "internal_address": "192.168.0.3",
                "is_master": True,
            },
            {
                "name": "node3",
                "address": "203.0.113.12",
                "internal_address": "192.168.0.4",
                "is_worker": True,
                "labels": {"tier": "backend"},
            },
        ],
        "control_plane_endpoint": {
            "domain": "lb.kubesphere.local",
            "address": "203.0.113.10",
            "port": 6443,
        },
        "kubernetes": {"version": "v1.18.6"},
        "network": {"plugin": "calico"},
    }


@pytest.fixture
def cluster_config(sample_cluster_data):
    return ClusterConfig(**sample_cluster_data)


@pytest.fixture
def make_runner():
    """Factory for scripted fake runners."""
    return FakeRunner


@pytest.fixture
def control_plane_script():
    return script_control_plane


@pytest.fixture
def kubeadm_outputs():
    """Canned values the scripted control plane hands out."""
    return {
        "certificate_key": CERTIFICATE_KEY,
        "join_arguments": JOIN_ARGUMENTS,
        "kubeconfig": ADMIN_KUBECONFIG,
        "node_listing": NODE_LISTING,
    }


@pytest.fixture
def assembly_state(cluster_config):
    return ClusterAssemblyState(driver=cluster_config.driver.name)


@pytest.fixture
def registry():
    return NodeMembershipRegistry()


@pytest.fixture
def distributor(cluster_config, tmp_path):
    return KubeconfigDistributor(cluster_config.control_plane_endpoint, tmp_path, cluster_config.name)
