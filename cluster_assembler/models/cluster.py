"""Data models for cluster configuration."""

from pathlib import Path

from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from cluster_assembler.exceptions import ConfigurationError
from cluster_assembler.models.node import Node
from cluster_assembler.parsing import KUBE_VERSION_PATTERN

DEFAULT_CONTAINER_MANAGER = "docker"


def is_default_runtime(container_manager: str) -> bool:
    """True for docker, which is also assumed when no container manager is set."""
    return container_manager in ("", DEFAULT_CONTAINER_MANAGER)


class ControlPlaneEndpoint(BaseModel):
    """Address the cluster API server is reached at."""

    domain: str = "lb.kubesphere.local"
    address: str = ""
    port: int = 6443

    @field_validator("port")
    @classmethod
    def validate_port(cls, v: int) -> int:
        if not 0 < v < 65536:
            raise ValueError(f"port must be between 1 and 65535, got {v}")
        return v


class KubernetesSpec(BaseModel):
    """Kubernetes settings used for kubeadm and image selection."""

    version: str = "v1.18.6"
    cluster_name: str = "cluster.local"
    container_manager: str = DEFAULT_CONTAINER_MANAGER
    pod_subnet: str = "10.233.64.0/18"
    service_subnet: str = "10.233.0.0/18"

    @field_validator("version")
    @classmethod
    def validate_version(cls, v: str) -> str:
        """Validate version looks like v<major>.<minor>.<patch>."""
        if not KUBE_VERSION_PATTERN.match(v):
            raise ValueError(f"version '{v}' must follow semantic versioning (e.g., v1.18.6)")
        return v


class NetworkSpec(BaseModel):
    """Cluster network plugin settings."""

    plugin: str = "calico"
    dns_manifest: str | None = None


class RegistrySpec(BaseModel):
    """Container registry settings."""

    private_registry: str = ""


class ClusterConfig(BaseModel):
    """Cluster definition: hosts plus Kubernetes settings."""

    name: str
    hosts: list[Node]
    control_plane_endpoint: ControlPlaneEndpoint = Field(default_factory=ControlPlaneEndpoint)
    kubernetes: KubernetesSpec = Field(default_factory=KubernetesSpec)
    network: NetworkSpec = Field(default_factory=NetworkSpec)
    registry: RegistrySpec = Field(default_factory=RegistrySpec)

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        """Validate cluster name is not empty."""
        if not v:
            raise ValueError("name cannot be empty")
        return v

    @model_validator(mode="after")
    def validate_hosts(self) -> "ClusterConfig":
        """Require at least one master and unique host names."""
        names = [h.name for h in self.hosts]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            raise ValueError(f"duplicate host names: {', '.join(duplicates)}")
        if not any(h.is_master for h in self.hosts):
            raise ValueError("at least one master host is required")
        if not self.control_plane_endpoint.address:
            self.control_plane_endpoint.address = str(self.masters[0].internal_address)
        return self

    @property
    def masters(self) -> list[Node]:
        return [h for h in self.hosts if h.is_master]

    @property
    def workers(self) -> list[Node]:
        return [h for h in self.hosts if h.is_worker]

    @property
    def k8s_nodes(self) -> list[Node]:
        return [h for h in self.hosts if h.is_master or h.is_worker]

    @property
    def driver(self) -> Node:
        """The first master in assembly order; the only writer of cluster state."""
        return self.masters[0]

    def save(self, path: str | Path) -> None:
        """Save configuration to YAML file."""
        import yaml

        with open(path, "w") as f:
            yaml.safe_dump(self.model_dump(mode="json"), f, default_flow_style=False)

    @classmethod
    def load(cls, path: str | Path) -> "ClusterConfig":
        """Load configuration from YAML file.

        Raises:
            ConfigurationError: If the file is missing, unreadable or invalid
        """
        import yaml

        path = Path(path)
        if not path.exists():
            raise ConfigurationError(
                f"Cluster configuration not found: {path}",
                f"Expected location: {path.absolute()}",
            )
        try:
            with open(path) as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in {path}", str(e)) from e

        if not isinstance(data, dict):
            raise ConfigurationError(f"Cluster configuration is empty: {path}")

        try:
            return cls(**data)
        except ValidationError as e:
            problems = "\n".join(
                f"  - {'.'.join(str(x) for x in err['loc'])}: {err['msg']}" for err in e.errors()
            )
            raise ConfigurationError(f"Invalid cluster configuration: {path}", problems) from e
