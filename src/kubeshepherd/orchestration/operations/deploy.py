# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kubeshepherd/orchestration/operations/deploy.py
from __future__ import annotations

import logging
import shlex
from typing import List, Optional

from ...errors import ShepherdError, TopologyError
from ...topology.address import NodeAddress
from ...transport.interface import sudo_prefix
from ..context import OperationContext
from ..join import JoinInfo, JoinInfoError, extract_join_info
from ..passthrough import PassthroughRole, filter_passthrough, flag_value
from ..phases import OperationReport, Phase, PhaseKind
from .base import OperationDriver

log = logging.getLogger("kubeshepherd")


def vip_rollback_command(node: NodeAddress, vip: str, iface: Optional[str]) -> str:
    """Remove a pre-added HA VIP if (and only if) it is still configured."""
    prefix = "128" if ":" in vip else "32"
    sudo = sudo_prefix(node)
    addr = shlex.quote(f"{vip}/{prefix}")
    if iface:
        dev = shlex.quote(iface)
        return (
            f"if ip -o addr show dev {dev} to {shlex.quote(vip)} | grep -q .; then "
            f"{sudo}ip addr del {addr} dev {dev}; fi"
        )
    return (
        f"dev=$(ip -o addr show to {shlex.quote(vip)} | awk '{{print $2; exit}}'); "
        f'if [ -n "$dev" ]; then {sudo}ip addr del {addr} dev "$dev"; fi'
    )


class DeployOperation(OperationDriver):
    """
    Cluster bring-up.

    init on the primary, join info, control-plane joins one at a time,
    then every worker at once.
    """

    name = "deploy"

    def __init__(self, ctx: OperationContext, **kw):
        super().__init__(ctx, **kw)
        self.join_info: Optional[JoinInfo] = None

    @property
    def ha(self) -> bool:
        return len(self.ctx.topology.control_planes) > 1

    @property
    def passthrough(self) -> List[str]:
        return list(self.ctx.options.passthrough)

    def expected_node_count(self) -> Optional[int]:
        return self.ctx.topology.total

    def validate(self) -> None:
        has_vip = flag_value(self.passthrough, "--ha-vip") is not None
        if self.ha and not has_vip:
            raise TopologyError("--ha-vip is required when using multiple control-plane nodes")
        if not self.ha and has_vip:
            raise TopologyError("--ha-vip requires multiple control-plane nodes (got 1)")

    def build_phases(self) -> List[Phase]:
        topo = self.ctx.topology
        return [
            Phase(
                name="init_cp",
                kind=PhaseKind.SEQUENTIAL,
                nodes=[topo.primary],
                action=self._init_cp,
                step=lambda node: "init_cp",
                description="kubeadm init",
            ),
            Phase(
                name="extract_join_info",
                kind=PhaseKind.SINGLE,
                nodes=[topo.primary],
                action=self._extract_join,
                description="kubeadm token create",
            ),
            Phase(
                name="join_control_planes",
                kind=PhaseKind.SEQUENTIAL,
                nodes=list(topo.secondary_control_planes),
                action=self._join_cp,
                step=lambda node: f"join_cp_{node.label}",
                description="join control-plane",
            ),
            Phase(
                name="join_workers",
                kind=PhaseKind.PARALLEL,
                nodes=list(topo.workers),
                action=self._join_worker,
                step=lambda node: f"join_worker_{node.label}",
                description="join worker",
            ),
        ]

    # ------------- node actions -------------

    def _init_cp(self, ctx: OperationContext, node: NodeAddress) -> None:
        args = (["--ha"] if self.ha else []) + self.passthrough
        cmd = self.bundle_command(node, "init", args)

        vip = flag_value(self.passthrough, "--ha-vip")
        handle = None
        if vip:
            rollback = vip_rollback_command(node, vip, flag_value(self.passthrough, "--ha-interface"))
            handle = ctx.cleanup.push(
                f"vip rollback {vip}", lambda: self._rollback_vip(ctx, node, rollback)
            )
        try:
            self.run_task(node, cmd, "kubeadm init")
        except ShepherdError:
            log.error("First control-plane initialization failed. Aborting.")
            if handle is not None:
                ctx.cleanup.release(handle)
            raise
        if handle is not None:
            ctx.cleanup.pop(handle)

    @staticmethod
    def _rollback_vip(ctx: OperationContext, node: NodeAddress, command: str) -> None:
        log.info("[%s] Rolling back pre-added VIP...", node.label)
        res = ctx.transport.execute(node, command)
        if not res.ok:
            log.warning("VIP rollback failed: %s", res.stderr.strip())

    def _extract_join(self, ctx: OperationContext, node: NodeAddress) -> None:
        log.info("[%s] Extracting join information...", node.label)
        ha = self.ha or flag_value(self.passthrough, "--ha-vip") is not None
        self.join_info = extract_join_info(ctx.transport, node, ha=ha)

    def _require_join_info(self) -> JoinInfo:
        if self.join_info is None:
            raise JoinInfoError("join information was not extracted")
        return self.join_info

    def _join_cp(self, ctx: OperationContext, node: NodeAddress) -> None:
        info = self._require_join_info()
        args = info.control_plane_args() + filter_passthrough(self.passthrough, PassthroughRole.CONTROL_PLANE)
        self.run_task(node, self.bundle_command(node, "join", args), "join control-plane")

    def _join_worker(self, ctx: OperationContext, node: NodeAddress) -> None:
        info = self._require_join_info()
        args = info.worker_args() + filter_passthrough(self.passthrough, PassthroughRole.WORKER)
        self.run_task(node, self.bundle_command(node, "join", args), "join worker")

    # ------------- summary -------------

    def summarize(self, report: OperationReport) -> None:
        topo = self.ctx.topology
        tctx = getattr(self.ctx.transport, "ctx", None)
        log.info("=== Deployment Summary ===")
        log.info("Control-Plane Nodes: %s", ", ".join(str(n) for n in topo.control_planes))
        if topo.workers:
            log.info("Worker Nodes: %s", ", ".join(str(n) for n in topo.workers))
        scp = "scp"
        if tctx is not None and tctx.port != 22:
            scp += f" -P {tctx.port}"
        if tctx is not None and tctx.private_key_path:
            scp += f" -i {tctx.private_key_path}"
        primary = topo.primary
        log.info("To access the cluster from this machine:")
        log.info("  %s %s@%s:/etc/kubernetes/admin.conf ~/.kube/config", scp, primary.principal, primary.copy_host)
        if report.failed_nodes:
            log.error("Some worker joins failed: %s", ", ".join(report.failed_nodes))

    def audit_details(self, report: OperationReport) -> str:
        topo = self.ctx.topology
        return f"cp={len(topo.control_planes)} workers={len(topo.workers)}"
