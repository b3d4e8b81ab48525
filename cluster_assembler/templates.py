"""Jinja2 templates for kubelet unit files and the default kubeadm configuration."""

import textwrap

from jinja2 import Template

from cluster_assembler.images import COREDNS_VERSION, KUBE_IMAGE_NAMESPACE
from cluster_assembler.models.cluster import ClusterConfig, is_default_runtime
from cluster_assembler.models.node import Node

CRI_SOCKETS = {
    "containerd": "unix:///run/containerd/containerd.sock",
    "crio": "unix:///var/run/crio/crio.sock",
    "isula": "unix:///var/run/isulad.sock",
}

KUBELET_SERVICE = Template(
    textwrap.dedent(
        """\
        [Unit]
        Description=kubelet: The Kubernetes Node Agent
        Documentation=http://kubernetes.io/docs/

        [Service]
        ExecStart=/usr/local/bin/kubelet
        Restart=always
        StartLimitInterval=0
        RestartSec=10

        [Install]
        WantedBy=multi-user.target
        """
    )
)

KUBELET_ENV = Template(
    textwrap.dedent(
        """\
        # Note: This dropin only works with kubeadm and kubelet v1.11+
        [Service]
        Environment="KUBELET_KUBECONFIG_ARGS=--bootstrap-kubeconfig=/etc/kubernetes/bootstrap-kubelet.conf --kubeconfig=/etc/kubernetes/kubelet.conf"
        Environment="KUBELET_CONFIG_ARGS=--config=/var/lib/kubelet/config.yaml"
        # This is a file that "kubeadm init" and "kubeadm join" generate at runtime, populating the KUBELET_KUBEADM_ARGS variable dynamically
        EnvironmentFile=-/var/lib/kubelet/kubeadm-flags.env
        # This is a file that the user can use for overrides of the kubelet args as a last resort.
        EnvironmentFile=-/etc/default/kubelet
        Environment="KUBELET_EXTRA_ARGS=--node-ip={{ node_ip }} --hostname-override={{ hostname }}{% if remote_runtime %} --network-plugin=cni{% endif %}"
        ExecStart=
        ExecStart=/usr/local/bin/kubelet $KUBELET_KUBECONFIG_ARGS $KUBELET_CONFIG_ARGS $KUBELET_KUBEADM_ARGS $KUBELET_EXTRA_ARGS
        """
    )
)

KUBEADM_CONFIG = Template(
    textwrap.dedent(
        """\
        ---
        apiVersion: kubeadm.k8s.io/v1beta2
        kind: ClusterConfiguration
        etcd:
          local:
            dataDir: /var/lib/etcd
        dns:
          type: CoreDNS
          imageRepository: {{ dns_repository }}
          imageTag: {{ coredns_version }}
        imageRepository: {{ image_repository }}
        kubernetesVersion: {{ version }}
        certificatesDir: /etc/kubernetes/pki
        clusterName: {{ cluster_name }}
        controlPlaneEndpoint: {{ endpoint_domain }}:{{ endpoint_port }}
        networking:
          dnsDomain: {{ cluster_name }}
          podSubnet: {{ pod_subnet }}
          serviceSubnet: {{ service_subnet }}
        apiServer:
          certSANs:
        {%- for san in cert_sans %}
            - {{ san }}
        {%- endfor %}
        ---
        apiVersion: kubeadm.k8s.io/v1beta2
        kind: InitConfiguration
        localAPIEndpoint:
          advertiseAddress: {{ advertise_address }}
          bindPort: {{ endpoint_port }}
        nodeRegistration:
          name: {{ node_name }}
        {%- if cri_socket %}
          criSocket: {{ cri_socket }}
        {%- endif %}
          kubeletExtraArgs:
            cgroup-driver: systemd
        ---
        apiVersion: kubeproxy.config.k8s.io/v1alpha1
        kind: KubeProxyConfiguration
        mode: ipvs
        ---
        apiVersion: kubelet.config.k8s.io/v1beta1
        kind: KubeletConfiguration
        cgroupDriver: systemd
        """
    )
)


def render_kubelet_service() -> str:
    return KUBELET_SERVICE.render()


def render_kubelet_env(node: Node, container_manager: str) -> str:
    return KUBELET_ENV.render(
        node_ip=str(node.internal_address),
        hostname=node.name,
        remote_runtime=not is_default_runtime(container_manager),
    )


def render_kubeadm_config(config: ClusterConfig, node: Node) -> str:
    """Render the kubeadm init configuration for the driver host."""
    endpoint = config.control_plane_endpoint
    registry = config.registry.private_registry
    image_repository = f"{registry}/{KUBE_IMAGE_NAMESPACE}" if registry else KUBE_IMAGE_NAMESPACE
    dns_repository = f"{registry}/coredns" if registry else "coredns"

    cert_sans = [
        "kubernetes",
        "kubernetes.default",
        "kubernetes.default.svc",
        f"kubernetes.default.svc.{config.kubernetes.cluster_name}",
        "localhost",
        "127.0.0.1",
        endpoint.domain,
        endpoint.address,
    ]
    for master in config.masters:
        cert_sans.extend([master.name, str(master.internal_address)])
    # Keep first occurrence order
    cert_sans = list(dict.fromkeys(san for san in cert_sans if san))

    return KUBEADM_CONFIG.render(
        dns_repository=dns_repository,
        coredns_version=COREDNS_VERSION,
        image_repository=image_repository,
        version=config.kubernetes.version,
        cluster_name=config.kubernetes.cluster_name,
        endpoint_domain=endpoint.domain,
        endpoint_port=endpoint.port,
        pod_subnet=config.kubernetes.pod_subnet,
        service_subnet=config.kubernetes.service_subnet,
        cert_sans=cert_sans,
        advertise_address=str(node.internal_address),
        node_name=node.name,
        cri_socket=CRI_SOCKETS.get(config.kubernetes.container_manager),
    )
