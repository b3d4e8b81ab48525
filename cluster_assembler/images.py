"""Container images required by a cluster, and pre-pulling them onto hosts."""

import semantic_version
from pydantic import BaseModel

from cluster_assembler.exceptions import ConfigurationError, ExecutionError
from cluster_assembler.executor import HostRunner, sudo
from cluster_assembler.logging_config import get_logger
from cluster_assembler.models.cluster import ClusterConfig, is_default_runtime
from cluster_assembler.models.node import Node

logger = get_logger(__name__)

KUBE_IMAGE_NAMESPACE = "kubesphere"
ETCD_VERSION = "v3.4.13"
CALICO_VERSION = "v3.16.3"
FLANNEL_VERSION = "v0.12.0"
CILIUM_VERSION = "v1.8.3"
KUBEOVN_VERSION = "v1.5.0"
COREDNS_VERSION = "1.6.9"
NODE_LOCAL_DNS_VERSION = "1.15.12"
OPENEBS_VERSION = "2.9.0"

PAUSE_TAG_THRESHOLD = semantic_version.Version("1.18.0")
TYPHA_NODE_THRESHOLD = 50

GROUP_K8S = "k8s"
GROUP_MASTER = "master"
GROUP_WORKER = "worker"
GROUP_ETCD = "etcd"


class Image(BaseModel):
    """A container image and whether this cluster needs it."""

    name: str
    registry: str = ""
    namespace: str = ""
    repository: str
    tag: str
    group: str
    enabled: bool = True

    @property
    def reference(self) -> str:
        """Full image reference, e.g. ``registry/namespace/repository:tag``."""
        if self.registry:
            namespace = self.namespace or "library"
            prefix = f"{self.registry}/{namespace}/"
        elif self.namespace:
            prefix = f"{self.namespace}/"
        else:
            prefix = ""
        return f"{prefix}{self.repository}:{self.tag}"

    def applies_to(self, node: Node) -> bool:
        """Whether a host of this role should carry the image."""
        if self.group == GROUP_K8S:
            return True
        if self.group in (GROUP_MASTER, GROUP_ETCD):
            return node.is_master
        if self.group == GROUP_WORKER:
            return node.is_worker
        return False


def parse_kube_version(version: str) -> semantic_version.Version:
    """Parse a ``v``-prefixed Kubernetes version.

    Raises:
        ConfigurationError: If the version is not semantic
    """
    try:
        return semantic_version.Version(version.strip().lstrip("v"))
    except ValueError as e:
        raise ConfigurationError(
            f"Invalid Kubernetes version: '{version}'",
            "Expected a semantic version such as v1.18.6",
        ) from e


def pause_tag(version: str, container_manager: str) -> str:
    """Sandbox image tag: 3.2 from v1.18.0 on, or for any non-docker runtime."""
    if parse_kube_version(version) >= PAUSE_TAG_THRESHOLD or not is_default_runtime(container_manager):
        return "3.2"
    return "3.1"


def resolve_images(
    version: str,
    container_manager: str,
    network_plugin: str,
    node_count: int,
    private_registry: str = "",
) -> list[Image]:
    """Return the ordered image manifest for a cluster.

    Raises:
        ConfigurationError: If the version cannot be parsed
    """
    plugin = network_plugin.lower()
    calico = plugin == "calico"

    def image(name, namespace, repository, tag, group, enabled=True):
        return Image(
            name=name,
            registry=private_registry,
            namespace=namespace,
            repository=repository,
            tag=tag,
            group=group,
            enabled=enabled,
        )

    return [
        image("etcd", KUBE_IMAGE_NAMESPACE, "etcd", ETCD_VERSION, GROUP_ETCD),
        image("pause", KUBE_IMAGE_NAMESPACE, "pause", pause_tag(version, container_manager), GROUP_K8S),
        image("kube-apiserver", KUBE_IMAGE_NAMESPACE, "kube-apiserver", version, GROUP_MASTER),
        image(
            "kube-controller-manager",
            KUBE_IMAGE_NAMESPACE,
            "kube-controller-manager",
            version,
            GROUP_MASTER,
        ),
        image("kube-scheduler", KUBE_IMAGE_NAMESPACE, "kube-scheduler", version, GROUP_MASTER),
        image("kube-proxy", KUBE_IMAGE_NAMESPACE, "kube-proxy", version, GROUP_K8S),
        # network
        image("coredns", "coredns", "coredns", COREDNS_VERSION, GROUP_K8S),
        image(
            "k8s-dns-node-cache",
            KUBE_IMAGE_NAMESPACE,
            "k8s-dns-node-cache",
            NODE_LOCAL_DNS_VERSION,
            GROUP_K8S,
        ),
        image("calico-kube-controllers", "calico", "kube-controllers", CALICO_VERSION, GROUP_K8S, calico),
        image("calico-cni", "calico", "cni", CALICO_VERSION, GROUP_K8S, calico),
        image("calico-node", "calico", "node", CALICO_VERSION, GROUP_K8S, calico),
        image("calico-flexvol", "calico", "pod2daemon-flexvol", CALICO_VERSION, GROUP_K8S, calico),
        image(
            "calico-typha",
            "calico",
            "typha",
            CALICO_VERSION,
            GROUP_K8S,
            calico and node_count > TYPHA_NODE_THRESHOLD,
        ),
        image("cilium", "cilium", "cilium", CILIUM_VERSION, GROUP_K8S, plugin == "cilium"),
        image(
            "operator-generic",
            "cilium",
            "operator-generic",
            CILIUM_VERSION,
            GROUP_K8S,
            plugin == "cilium",
        ),
        image("flannel", KUBE_IMAGE_NAMESPACE, "flannel", FLANNEL_VERSION, GROUP_K8S, plugin == "flannel"),
        image("kubeovn", "kubeovn", "kube-ovn", KUBEOVN_VERSION, GROUP_K8S, plugin == "kubeovn"),
        # storage
        image("provisioner-localpv", "openebs", "provisioner-localpv", OPENEBS_VERSION, GROUP_WORKER, False),
        image("linux-utils", "openebs", "linux-utils", OPENEBS_VERSION, GROUP_WORKER, False),
    ]


def images_for_cluster(config: ClusterConfig) -> list[Image]:
    return resolve_images(
        config.kubernetes.version,
        config.kubernetes.container_manager,
        config.network.plugin,
        len(config.k8s_nodes),
        config.registry.private_registry,
    )


def pull_images(runner: HostRunner, images: list[Image], container_manager: str) -> list[str]:
    """Pull every enabled image that applies to the runner's host.

    Returns:
        References of the pulled images, in manifest order

    Raises:
        ExecutionError: If a pull still fails after retries
    """
    node = runner.node
    pull = "docker pull" if is_default_runtime(container_manager) else "crictl pull"
    pulled = []
    for image in images:
        if not image.enabled or not image.applies_to(node):
            continue
        logger.info(f"[{node.name}] pulling {image.reference}")
        try:
            runner.execute(sudo(f"env PATH=$PATH {pull} {image.reference}"), retries=2)
        except ExecutionError as e:
            raise ExecutionError(
                f"Failed to download image {image.reference} on {node.name}",
                e.format_message(),
                command=e.command,
                exit_status=e.exit_status,
                output=e.output,
            ) from e
        pulled.append(image.reference)
    return pulled
