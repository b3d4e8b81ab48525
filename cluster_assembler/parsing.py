"""Parsers for kubeadm and kubectl text output.

Each parser takes raw command output and either returns structured data or
raises ParseError. Orchestration code never matches on command output itself.
"""

import re
from dataclasses import dataclass

from cluster_assembler.exceptions import ParseError

CERTIFICATE_KEY_PATTERN = re.compile(r"[0-9a-z]{64}")
IPV4_PATTERN = re.compile(r"\d+\.\d+\.\d+\.\d+")
IPV6_PATTERN = re.compile(
    r"[a-f0-9]{1,4}(:[a-f0-9]{1,4}){7}"
    r"|[a-f0-9]{1,4}(:[a-f0-9]{1,4}){0,7}::[a-f0-9]{0,4}(:[a-f0-9]{1,4}){0,7}"
)
KUBE_VERSION_PATTERN = re.compile(r"^v\d+\.\d+\.\d+([-+][0-9A-Za-z.+-]+)?$")
JOIN_VERB = "kubeadm join"
MISSING_FILE_MARKER = "No such file or directory"


@dataclass(frozen=True)
class ListedNode:
    """One line of the custom-column node listing."""

    name: str
    version: str
    ipv4: str | None = None
    ipv6: str | None = None


def extract_certificate_key(output: str) -> str:
    """Return the first 64-character certificate key in upload-certs output."""
    match = CERTIFICATE_KEY_PATTERN.search(output)
    if not match:
        raise ParseError(
            "No certificate key found in upload-certs output",
            output.strip() or "(empty output)",
        )
    return match.group(0)


def extract_join_arguments(output: str) -> str:
    """Return everything after the first 'kubeadm join' in a printed join command."""
    _, sep, tail = output.partition(JOIN_VERB)
    if not sep or not tail.strip():
        raise ParseError(
            "No join command found in token create output",
            output.strip() or "(empty output)",
        )
    return tail.strip()


def parse_apiserver_version(output: str) -> str:
    """Return the API server image tag, or "" when the manifest is missing.

    Raises:
        ParseError: If the output holds neither the missing-file marker nor a version tag
    """
    if MISSING_FILE_MARKER in output:
        return ""
    version = output.strip()
    if not KUBE_VERSION_PATTERN.match(version):
        raise ParseError(
            "No API server version found in kube-apiserver manifest",
            version or "(empty output)",
        )
    return version


def parse_node_listing(output: str) -> list[ListedNode]:
    """Parse `kubectl get nodes` custom-column output.

    Columns are name, kubelet version and the address list. The version is
    only trusted when the line splits into more than three fields; shorter
    lines record the name with an unknown ("") version.
    """
    nodes = []
    for line in output.splitlines():
        fields = line.split()
        if not fields:
            continue

        ipv4 = IPV4_PATTERN.search(line)
        ipv6 = IPV6_PATTERN.search(line)
        nodes.append(
            ListedNode(
                name=fields[0],
                version=fields[1] if len(fields) > 3 else "",
                ipv4=ipv4.group(0) if ipv4 else None,
                ipv6=ipv6.group(0) if ipv6 else None,
            )
        )
    return nodes
