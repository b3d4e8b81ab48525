"""Property-based tests for node membership and join commands.

A host is a member when its name maps to a known kubelet version or its
internal address appears in the node listing. Master join commands are always
the worker join command plus the control-plane flags.
"""

from hypothesis import given
from hypothesis import strategies as st

from cluster_assembler.models.node import Node
from cluster_assembler.parsing import ListedNode, parse_node_listing
from cluster_assembler.state import ClusterAssemblyState, NodeMembershipRegistry

ALPHANUM = "abcdefghijklmnopqrstuvwxyz0123456789"


@st.composite
def valid_hostname(draw):
    """Generate single-label RFC 1123 hostnames."""
    start = draw(st.sampled_from(ALPHANUM))
    rest = draw(st.text(alphabet=ALPHANUM + "-", max_size=10))
    end = draw(st.sampled_from(ALPHANUM))
    return start + rest + end


@st.composite
def private_ip(draw):
    octet3 = draw(st.integers(min_value=0, max_value=255))
    octet4 = draw(st.integers(min_value=1, max_value=254))
    return f"10.20.{octet3}.{octet4}"


versions = st.sampled_from(["", "v1.17.9", "v1.18.6", "v1.19.8"])


@st.composite
def listing(draw):
    names = draw(st.lists(valid_hostname(), unique=True, max_size=8))
    return [ListedNode(name=n, version=draw(versions), ipv4=draw(st.one_of(st.none(), private_ip()))) for n in names]


@given(nodes=listing(), name=valid_hostname(), address=private_ip())
def test_membership_is_name_version_or_address(nodes, name, address):
    registry = NodeMembershipRegistry()
    registry.record(nodes)
    node = Node(name=name, address=address, internal_address=address, is_worker=True)

    by_name = {n.name: n.version for n in nodes}
    addresses = {n.ipv4 for n in nodes if n.ipv4}
    # addresses and names share one key space
    expected = bool(by_name.get(name)) or address in addresses or address in by_name

    assert registry.is_member(node) == expected


@given(nodes=listing())
def test_every_listed_node_with_version_is_member(nodes):
    registry = NodeMembershipRegistry()
    registry.record(nodes)

    for listed in nodes:
        address = listed.ipv4 or "10.99.0.1"
        node = Node(name=listed.name, address=address, internal_address=address, is_master=True)
        if listed.version or listed.ipv4:
            assert registry.is_member(node)


@given(name=valid_hostname(), version=st.sampled_from(["v1.17.9", "v1.18.6"]), address=private_ip())
def test_listing_line_round_trip(name, version, address):
    line = f"{name}   {version}   [map[address:{address} type:InternalIP] map[address:{name} type:Hostname]]"

    (listed,) = parse_node_listing(line + "\r\n")

    assert listed.name == name
    assert listed.version == version
    assert listed.ipv4 == address


join_arguments = st.builds(
    lambda host, token, digest: f"{host}:6443 --token {token} --discovery-token-ca-cert-hash sha256:{digest}",
    valid_hostname(),
    st.text(alphabet=ALPHANUM, min_size=6, max_size=6).map(lambda t: f"{t}.0123456789abcdef"),
    st.text(alphabet="0123456789abcdef", min_size=64, max_size=64),
)


@given(arguments=join_arguments, key=st.text(alphabet="0123456789abcdef", min_size=64, max_size=64))
def test_master_join_command_extends_worker_command(arguments, key):
    state = ClusterAssemblyState(driver="node1")

    state.set_join_commands(arguments, key, "node1")

    assert state.worker_join_command == f"/usr/local/bin/kubeadm join {arguments}"
    assert state.master_join_command == (
        f"{state.worker_join_command} --control-plane --certificate-key {key}"
    )
