import pytest

from kubeshepherd.errors import TopologyError
from kubeshepherd.topology.address import parse_node_address
from kubeshepherd.topology.models import NodeRole, build_topology


def test_build_topology_from_csv():
    topo = build_topology("10.0.0.1,10.0.0.2", "10.0.0.3", default_principal="ubuntu")
    assert topo.primary.host == "10.0.0.1"
    assert [n.host for n in topo.secondary_control_planes] == ["10.0.0.2"]
    assert [n.host for n in topo.workers] == ["10.0.0.3"]
    assert topo.total == 3
    assert all(n.principal == "ubuntu" for n in topo.all_nodes)


def test_roles():
    topo = build_topology("a", "b")
    assert topo.role_of(topo.primary) is NodeRole.CONTROL_PLANE
    assert topo.role_of(topo.workers[0]) is NodeRole.WORKER


def test_empty_control_planes_rejected():
    with pytest.raises(TopologyError):
        build_topology("", "10.0.0.3")


def test_duplicate_hosts_rejected_across_roles():
    with pytest.raises(TopologyError, match="Duplicate"):
        build_topology("10.0.0.1", "root@10.0.0.1")


def test_find_accepts_bracketed_ipv6():
    topo = build_topology("[fd00::1]", "[fd00::2]")
    assert topo.find("[fd00::2]") == topo.workers[0]
    assert topo.find("fd00::2") == topo.workers[0]
    assert topo.find("fd00::9") is None


def test_without_drops_nodes():
    topo = build_topology("a,b", "c,d")
    smaller = topo.without([topo.workers[0]])
    assert smaller.total == 3
    assert [n.host for n in smaller.workers] == ["d"]


def test_removal_of_primary_rejected():
    topo = build_topology("a,b", "c")
    with pytest.raises(TopologyError, match="primary"):
        topo.validate_removal([parse_node_address("a")])
    with pytest.raises(TopologyError):
        topo.validate_removal([])
    topo.validate_removal([parse_node_address("b"), parse_node_address("c")])
