from .address import NodeAddress, parse_node_address, normalize_node_list
from .models import NodeRole, Topology, build_topology

__all__ = [
    "NodeAddress",
    "NodeRole",
    "Topology",
    "build_topology",
    "normalize_node_list",
    "parse_node_address",
]
