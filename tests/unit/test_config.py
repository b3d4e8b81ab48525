"""Unit tests for cluster configuration models and loading."""

import pytest
import yaml
from pydantic import ValidationError

from cluster_assembler.exceptions import ConfigurationError
from cluster_assembler.models import ClusterConfig, KubernetesSpec, Node
from cluster_assembler.models.cluster import is_default_runtime


def test_cluster_roles(cluster_config):
    assert [n.name for n in cluster_config.masters] == ["node1", "node2"]
    assert [n.name for n in cluster_config.workers] == ["node1", "node3"]
    assert len(cluster_config.k8s_nodes) == 3
    assert cluster_config.driver.name == "node1"


def test_node_defaults():
    node = Node(name="node1", address="203.0.113.10", internal_address="192.168.0.2", is_worker=True)

    assert node.port == 22
    assert node.user == "root"
    assert node.arch == "amd64"
    assert node.labels == {}
    assert node.roles == ["worker"]


def test_node_requires_role():
    with pytest.raises(ValidationError) as exc_info:
        Node(name="node1", address="203.0.113.10", internal_address="192.168.0.2")

    assert "at least one role" in str(exc_info.value)


@pytest.mark.parametrize("name", ["", "-node", "node_1", "node1-"])
def test_node_invalid_name(name):
    with pytest.raises(ValidationError):
        Node(name=name, address="203.0.113.10", internal_address="192.168.0.2", is_master=True)


def test_node_invalid_internal_address():
    with pytest.raises(ValidationError):
        Node(name="node1", address="203.0.113.10", internal_address="not-an-ip", is_master=True)


def test_node_invalid_arch():
    with pytest.raises(ValidationError):
        Node(
            name="node1",
            address="203.0.113.10",
            internal_address="192.168.0.2",
            is_master=True,
            arch="s390x",
        )


@pytest.mark.parametrize("version", ["1.18.6", "v1.18", "latest"])
def test_invalid_kubernetes_version(version):
    with pytest.raises(ValidationError):
        KubernetesSpec(version=version)


@pytest.mark.parametrize(
    "container_manager, expected",
    [("", True), ("docker", True), ("containerd", False), ("crio", False), ("isula", False)],
)
def test_is_default_runtime(container_manager, expected):
    assert is_default_runtime(container_manager) is expected


def test_requires_master(sample_cluster_data):
    sample_cluster_data["hosts"] = [h for h in sample_cluster_data["hosts"] if not h.get("is_master")]

    with pytest.raises(ValidationError) as exc_info:
        ClusterConfig(**sample_cluster_data)

    assert "master" in str(exc_info.value)


def test_rejects_duplicate_hosts(sample_cluster_data):
    sample_cluster_data["hosts"].append(dict(sample_cluster_data["hosts"][2]))

    with pytest.raises(ValidationError) as exc_info:
        ClusterConfig(**sample_cluster_data)

    assert "node3" in str(exc_info.value)


def test_endpoint_address_defaults_to_first_master(sample_cluster_data):
    del sample_cluster_data["control_plane_endpoint"]

    config = ClusterConfig(**sample_cluster_data)

    assert config.control_plane_endpoint.address == "192.168.0.2"
    assert config.control_plane_endpoint.domain == "lb.kubesphere.local"
    assert config.control_plane_endpoint.port == 6443


def test_save_and_load(cluster_config, tmp_path):
    path = tmp_path / "cluster.yaml"
    cluster_config.save(path)

    loaded = ClusterConfig.load(path)

    assert loaded == cluster_config


def test_load_missing_file(tmp_path):
    with pytest.raises(ConfigurationError) as exc_info:
        ClusterConfig.load(tmp_path / "missing.yaml")

    assert "not found" in exc_info.value.message


def test_load_invalid_yaml(tmp_path):
    path = tmp_path / "cluster.yaml"
    path.write_text("hosts: [unclosed\n")

    with pytest.raises(ConfigurationError) as exc_info:
        ClusterConfig.load(path)

    assert "Invalid YAML" in exc_info.value.message


def test_load_empty_file(tmp_path):
    path = tmp_path / "cluster.yaml"
    path.write_text("")

    with pytest.raises(ConfigurationError):
        ClusterConfig.load(path)


def test_load_invalid_config(tmp_path, sample_cluster_data):
    sample_cluster_data["hosts"][0]["internal_address"] = "nope"
    path = tmp_path / "cluster.yaml"
    path.write_text(yaml.safe_dump(sample_cluster_data))

    with pytest.raises(ConfigurationError) as exc_info:
        ClusterConfig.load(path)

    assert "hosts.0.internal_address" in exc_info.value.details
