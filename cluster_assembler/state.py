"""Shared cluster state produced by the driver host.

One ``ClusterAssemblyState`` and one ``NodeMembershipRegistry`` exist per
assembly run. The driver host writes them during detection or initialization,
then marks the state ready; every other host only reads them afterwards.
"""

import base64
import binascii
import threading

from cluster_assembler.exceptions import AssemblyStateError, ParseError
from cluster_assembler.logging_config import get_logger
from cluster_assembler.models.node import Node
from cluster_assembler.parsing import ListedNode

logger = get_logger(__name__)

CONTROL_PLANE_FLAG = "--control-plane"
CERTIFICATE_KEY_FLAG = "--certificate-key"


class NodeMembershipRegistry:
    """Node name/address to kubelet version, as seen in the node listing."""

    def __init__(self):
        self._entries: dict[str, str] = {}
        self._lock = threading.Lock()

    def record(self, nodes: list[ListedNode]) -> None:
        """Record listed nodes.

        Addresses are stored as both key and value so that listings whose
        node names are themselves addresses still match.
        """
        with self._lock:
            for node in nodes:
                if node.ipv4:
                    self._entries[node.ipv4] = node.ipv4
                if node.ipv6:
                    self._entries[node.ipv6] = node.ipv6
                self._entries[node.name] = node.version
        logger.debug(f"Membership registry now has {len(self._entries)} entries")

    def mark_joined(self, node: Node) -> None:
        """Record a host this run joined, so a repeated join skips it."""
        address = str(node.internal_address)
        with self._lock:
            self._entries[address] = address

    def is_member(self, node: Node) -> bool:
        """True if the name maps to a known version or the address is listed.

        Known looseness: an address that collides with another entry's key
        counts as membership.
        """
        with self._lock:
            has_version = bool(self._entries.get(node.name))
            has_address = str(node.internal_address) in self._entries
        return has_version or has_address

    def version_of(self, name: str) -> str | None:
        with self._lock:
            return self._entries.get(name)

    def __contains__(self, key: str) -> bool:
        with self._lock:
            return key in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class ClusterAssemblyState:
    """Cluster facts written once by the driver host and read by all hosts."""

    def __init__(self, driver: str):
        """Initialize empty state.

        Args:
            driver: Name of the only host allowed to write this state
        """
        self.driver = driver
        self.exists = False
        self.version = ""
        self.master_join_command = ""
        self.worker_join_command = ""
        self.kubeconfig = ""
        self.node_listing = ""
        self._lock = threading.RLock()
        self._ready = threading.Event()

    def _check_writer(self, writer: str) -> None:
        if writer != self.driver:
            raise AssemblyStateError(
                f"Host '{writer}' cannot write cluster state",
                f"Only the driver host '{self.driver}' may update it",
            )

    def mark_exists(self, writer: str) -> None:
        with self._lock:
            self._check_writer(writer)
            self.exists = True

    def set_version(self, version: str, writer: str) -> None:
        with self._lock:
            self._check_writer(writer)
            self.version = version

    def set_kubeconfig(self, encoded: str, writer: str) -> None:
        """Store the base64 admin kubeconfig."""
        with self._lock:
            self._check_writer(writer)
            self.kubeconfig = encoded.strip()

    def set_node_listing(self, listing: str, writer: str) -> None:
        with self._lock:
            self._check_writer(writer)
            self.node_listing = listing

    def set_join_commands(self, join_arguments: str, certificate_key: str, writer: str) -> None:
        """Build both join commands from one printed worker join command."""
        with self._lock:
            self._check_writer(writer)
            self.worker_join_command = f"/usr/local/bin/kubeadm join {join_arguments}"
            self.master_join_command = (
                f"{self.worker_join_command} {CONTROL_PLANE_FLAG} "
                f"{CERTIFICATE_KEY_FLAG} {certificate_key}"
            )

    def decoded_kubeconfig(self) -> str:
        """Return the admin kubeconfig as text.

        Raises:
            ParseError: If no kubeconfig is stored or it is not valid base64
        """
        with self._lock:
            encoded = self.kubeconfig
        if not encoded:
            raise ParseError("No kubeconfig has been read from the cluster")
        try:
            return base64.b64decode(encoded, validate=True).decode("utf-8")
        except (binascii.Error, UnicodeDecodeError) as e:
            raise ParseError("Stored kubeconfig is not valid base64", str(e)) from e

    def mark_ready(self, writer: str) -> None:
        """Open the barrier for joining hosts."""
        with self._lock:
            self._check_writer(writer)
        self._ready.set()

    @property
    def ready(self) -> bool:
        return self._ready.is_set()

    def wait_ready(self, timeout: float | None = None) -> bool:
        return self._ready.wait(timeout)

    def require_ready(self) -> None:
        """Raise unless the driver phase has completed."""
        if not self._ready.is_set():
            raise AssemblyStateError(
                "Cluster state is not ready",
                "The driver host must detect or initialize the cluster before nodes can join",
            )
