# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kubeshepherd/topology/models.py
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, List, Optional, Sequence, Tuple

from ..errors import TopologyError
from .address import NodeAddress, normalize_node_list, parse_node_address


class NodeRole(str, Enum):
    CONTROL_PLANE = "control-plane"
    WORKER = "worker"


@dataclass(frozen=True)
class Topology:
    """
    Control-plane and worker nodes taking part in one operation.

    The first control plane is the primary: cluster init and join token
    issuance only ever happen there.
    """

    control_planes: Tuple[NodeAddress, ...]
    workers: Tuple[NodeAddress, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        if not self.control_planes:
            raise TopologyError("At least one control-plane node is required")
        seen: set[str] = set()
        for node in (*self.control_planes, *self.workers):
            if node.host in seen:
                raise TopologyError(f"Duplicate node address: {node.host}")
            seen.add(node.host)

    @property
    def primary(self) -> NodeAddress:
        return self.control_planes[0]

    @property
    def secondary_control_planes(self) -> Tuple[NodeAddress, ...]:
        return self.control_planes[1:]

    @property
    def all_nodes(self) -> Tuple[NodeAddress, ...]:
        return (*self.control_planes, *self.workers)

    @property
    def total(self) -> int:
        return len(self.control_planes) + len(self.workers)

    def role_of(self, node: NodeAddress) -> NodeRole:
        if node in self.control_planes:
            return NodeRole.CONTROL_PLANE
        return NodeRole.WORKER

    def find(self, host: str) -> Optional[NodeAddress]:
        host = host.strip("[]")
        for node in self.all_nodes:
            if node.host == host:
                return node
        return None

    def without(self, nodes: Iterable[NodeAddress]) -> "Topology":
        drop = {n.host for n in nodes}
        return Topology(
            control_planes=tuple(n for n in self.control_planes if n.host not in drop),
            workers=tuple(n for n in self.workers if n.host not in drop),
        )

    def validate_removal(self, targets: Sequence[NodeAddress]) -> None:
        """The primary control plane must be torn down locally, never removed."""
        if not targets:
            raise TopologyError("No nodes given for removal")
        for target in targets:
            if target.host == self.primary.host:
                raise TopologyError(
                    f"Cannot remove the primary control-plane node {target.host}; "
                    "run a local cleanup on it instead"
                )


def build_topology(
    control_planes: str | Sequence[str],
    workers: str | Sequence[str] | None = None,
    *,
    default_principal: str = "root",
) -> Topology:
    """Build a Topology from CSV strings or lists of node specifiers."""

    def _parse(raw) -> List[NodeAddress]:
        if raw is None:
            return []
        items = normalize_node_list(raw) if isinstance(raw, str) else list(raw)
        return [parse_node_address(s, default_principal) for s in items]

    return Topology(
        control_planes=tuple(_parse(control_planes)),
        workers=tuple(_parse(workers)),
    )
