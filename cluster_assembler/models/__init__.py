"""Data models for cluster configuration."""

from cluster_assembler.models.cluster import (
    ClusterConfig,
    ControlPlaneEndpoint,
    KubernetesSpec,
    NetworkSpec,
    RegistrySpec,
)
from cluster_assembler.models.node import Node

__all__ = [
    "Node",
    "ClusterConfig",
    "ControlPlaneEndpoint",
    "KubernetesSpec",
    "NetworkSpec",
    "RegistrySpec",
]
