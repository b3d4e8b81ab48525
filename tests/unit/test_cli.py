"""Unit tests for the kubeassemble CLI."""

from unittest.mock import patch

import pytest
import yaml
from typer.testing import CliRunner

from cluster_assembler.cli import app

runner = CliRunner()


@pytest.fixture
def cluster_file(tmp_path, sample_cluster_data):
    path = tmp_path / "cluster.yaml"
    path.write_text(yaml.safe_dump(sample_cluster_data))
    return path


@pytest.fixture
def fake_ssh(make_runner, control_plane_script):
    """Patch SSHRunner with scripted runners; returns the created runners by host name."""
    created = {}

    def build(node, exists=False):
        fake = make_runner(node)
        if node.name == "node1":
            control_plane_script(fake, exists=exists)
        created[node.name] = fake
        return fake

    return created, build


def test_version():
    result = runner.invoke(app, ["version"])

    assert result.exit_code == 0
    assert "kubeassemble version 0.1.0" in result.stdout


def test_create_help():
    result = runner.invoke(app, ["create", "--help"])

    assert result.exit_code == 0
    assert "--filename" in result.stdout
    assert "--skip-pull-images" in result.stdout


def test_images(cluster_file):
    result = runner.invoke(app, ["images", "-f", str(cluster_file)], env={"COLUMNS": "200"})

    assert result.exit_code == 0
    assert "kube-apiserver" in result.stdout
    assert "provisioner-localpv" not in result.stdout


def test_images_all(cluster_file):
    result = runner.invoke(app, ["images", "-f", str(cluster_file), "--all"], env={"COLUMNS": "200"})

    assert result.exit_code == 0
    assert "provisioner-localpv" in result.stdout


def test_images_missing_file(tmp_path):
    result = runner.invoke(app, ["images", "-f", str(tmp_path / "missing.yaml")])

    assert result.exit_code == 1
    assert "not found" in result.stdout


def test_create_missing_file(tmp_path):
    result = runner.invoke(app, ["create", "-f", str(tmp_path / "missing.yaml")])

    assert result.exit_code == 1
    assert "Cluster configuration not found" in result.stdout


def test_create(cluster_file, tmp_path, fake_ssh):
    created, build = fake_ssh

    with patch("cluster_assembler.executor.SSHRunner", side_effect=build):
        result = runner.invoke(
            app,
            [
                "create",
                "-f",
                str(cluster_file),
                "--work-dir",
                str(tmp_path / "work"),
                "--skip-pull-images",
            ],
        )

    assert result.exit_code == 0, result.stdout
    assert "is ready" in result.stdout
    assert set(created) == {"node1", "node2", "node3"}
    assert created["node3"].count("kubeadm join") == 1
    assert (tmp_path / "work" / "config-test-cluster").exists()


def test_create_reports_failed_step(cluster_file, tmp_path, fake_ssh):
    created, build = fake_ssh

    def failing_build(node):
        fake = build(node)
        if node.name == "node1":
            fake.rules.insert(0, ("kubeadm init --config", [(1, "[ERROR] preflight")]))
        return fake

    with patch("cluster_assembler.executor.SSHRunner", side_effect=failing_build):
        result = runner.invoke(
            app,
            ["create", "-f", str(cluster_file), "-w", str(tmp_path / "work"), "--skip-pull-images"],
        )

    assert result.exit_code == 1
    assert "Failed to init kubernetes cluster" in result.stdout


def test_join_command(cluster_file, tmp_path, fake_ssh):
    created, build = fake_ssh

    with patch("cluster_assembler.executor.SSHRunner", side_effect=lambda node: build(node, exists=True)):
        result = runner.invoke(app, ["join-command", "-f", str(cluster_file), "-w", str(tmp_path)])

    assert result.exit_code == 0, result.stdout
    assert "--control-plane" in result.stdout
    assert "--certificate-key" in result.stdout
    assert list(created) == ["node1"]


def test_join_command_without_cluster(cluster_file, tmp_path, fake_ssh):
    created, build = fake_ssh

    with patch("cluster_assembler.executor.SSHRunner", side_effect=build):
        result = runner.invoke(app, ["join-command", "-f", str(cluster_file), "-w", str(tmp_path)])

    assert result.exit_code == 1
    assert "No cluster found" in result.stdout
