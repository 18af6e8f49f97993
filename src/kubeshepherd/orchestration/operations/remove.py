# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kubeshepherd/orchestration/operations/remove.py
from __future__ import annotations

import logging
from typing import List, Optional, Sequence

from ...errors import RemoteTaskError, TopologyError
from ...health.kubectl import KubectlRunner
from ...topology.address import NodeAddress
from ...transport.interface import sudo_prefix
from ..context import OperationContext
from ..phases import OperationReport, Phase, PhaseKind
from .base import OperationDriver

log = logging.getLogger("kubeshepherd")


class RemoveOperation(OperationDriver):
    """
    Drain, delete and reset nodes, all targets at once.

    kubectl runs on the primary control plane, ``kubeadm reset`` on the
    target itself. Only the reset decides whether a node failed.
    """

    name = "remove"
    needs_bundle = False

    def __init__(self, ctx: OperationContext, *, targets: Optional[Sequence[NodeAddress]] = None, **kw):
        super().__init__(ctx, **kw)
        topo = ctx.topology
        resolved: List[NodeAddress] = []
        for target in targets if targets is not None else topo.workers:
            member = topo.find(target.host)
            if member is None:
                raise TopologyError(f"Node {target.host} is not part of the cluster topology")
            resolved.append(member)
        self.targets = resolved

    def validate(self) -> None:
        self.ctx.topology.validate_removal(self.targets)

    def target_nodes(self) -> Sequence[NodeAddress]:
        return [self.control_node(), *self.targets]

    def expected_node_count(self) -> Optional[int]:
        return self.ctx.topology.without(self.targets).total

    def build_phases(self) -> List[Phase]:
        return [
            Phase(
                name="remove_nodes",
                kind=PhaseKind.PARALLEL,
                nodes=list(self.targets),
                action=self._remove,
                step=lambda node: f"remove_{node.label}",
                description="drain, delete node, kubeadm reset",
            )
        ]

    def _remove(self, ctx: OperationContext, node: NodeAddress) -> None:
        kubectl = KubectlRunner(ctx.transport, self.control_node())
        log.info("  [%s] Processing node removal...", node.label)

        name = kubectl.resolve_node_name(node)
        if not name:
            log.warning("  [%s] Could not resolve node name, using host as node name", node.label)
            name = node.host
        log.info("  [%s] Kubernetes node name: %s", node.label, name)

        log.info("  [%s] Draining node %s...", node.label, name)
        if not kubectl.drain(name, force=True).ok:
            log.warning(
                "  [%s] Drain failed (node may already be drained or not ready). Continuing...",
                node.label,
            )

        log.info("  [%s] Deleting node %s from cluster...", node.label, name)
        if not kubectl.delete_node(name).ok:
            log.warning("  [%s] Delete node failed. Continuing with reset...", node.label)

        log.info("  [%s] Running kubeadm reset on target node...", node.label)
        res = ctx.transport.execute(node, f"{sudo_prefix(node)}kubeadm reset -f")
        if not res.ok:
            raise RemoteTaskError(
                f"[{node.label}] kubeadm reset failed: {res.stderr.strip()}",
                node=node.label,
                exit_code=res.exit_code,
                log=res.stdout,
            )
        log.info("  [%s] Node removed successfully", node.label)

    def summarize(self, report: OperationReport) -> None:
        log.info("=== Remove Summary ===")
        log.info("Control-Plane: %s", self.control_node())
        failed = set(report.failed_nodes)
        removed = [n.label for n in self.targets if n.label in report.succeeded_nodes]
        if removed:
            log.info("Removed: %s", ", ".join(removed))
        if failed:
            log.error("Failed: %s", ", ".join(sorted(failed)))

    def audit_details(self, report: OperationReport) -> str:
        if report.failed_nodes:
            return f"failed={','.join(report.failed_nodes)}"
        return f"removed={','.join(n.label for n in self.targets)}"
