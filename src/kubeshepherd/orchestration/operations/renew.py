# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kubeshepherd/orchestration/operations/renew.py
from __future__ import annotations

import logging
from typing import List, Sequence

from ...errors import TopologyError
from ...topology.address import NodeAddress
from ..context import OperationContext
from ..phases import NodeStatus, OperationReport, Phase, PhaseKind
from .base import OperationDriver

log = logging.getLogger("kubeshepherd")

VALID_CERT_NAMES = (
    "apiserver",
    "apiserver-kubelet-client",
    "front-proxy-client",
    "apiserver-etcd-client",
    "etcd-healthcheck-client",
    "etcd-peer",
    "etcd-server",
    "admin.conf",
    "controller-manager.conf",
    "scheduler.conf",
    "super-admin.conf",
)


def validate_cert_names(certs: str) -> None:
    if certs == "all":
        return
    names = [c.strip() for c in certs.split(",") if c.strip()]
    if not names:
        raise TopologyError("--certs must be 'all' or a comma-separated list of certificate names")
    for name in names:
        if name not in VALID_CERT_NAMES:
            raise TopologyError(
                f"Unknown certificate name: {name!r} (valid: {', '.join(VALID_CERT_NAMES)})"
            )


class RenewOperation(OperationDriver):
    """Certificate renewal on every control plane, one node at a time."""

    name = "renew"

    def __init__(self, ctx: OperationContext, *, certs: str = "all", check_only: bool = False, **kw):
        super().__init__(ctx, **kw)
        self.certs = certs
        self.check_only = check_only

    def validate(self) -> None:
        validate_cert_names(self.certs)

    def target_nodes(self) -> Sequence[NodeAddress]:
        return self.ctx.topology.control_planes

    def renew_args(self) -> List[str]:
        args: List[str] = []
        if self.certs != "all":
            args += ["--certs", self.certs]
        if self.check_only:
            args.append("--check-only")
        return args + list(self.ctx.options.passthrough)

    def build_phases(self) -> List[Phase]:
        return [
            Phase(
                name="renew_certificates",
                kind=PhaseKind.SEQUENTIAL,
                nodes=list(self.ctx.topology.control_planes),
                action=self._renew,
                step=lambda node: f"renew_{node.label}",
                description="kubeadm certs check-expiration" if self.check_only else "kubeadm certs renew",
            )
        ]

    def _renew(self, ctx: OperationContext, node: NodeAddress) -> None:
        self.run_task(node, self.bundle_command(node, "renew", self.renew_args()), "cert renew")

    def summarize(self, report: OperationReport) -> None:
        outcomes = [o for p in report.phases for o in p.outcomes]
        ok = sum(1 for o in outcomes if o.status in (NodeStatus.DONE, NodeStatus.SKIPPED))
        failed = len(report.failed_nodes)
        log.info("=== Certificate Renewal Summary ===")
        log.info("  Total nodes: %d", len(self.ctx.topology.control_planes))
        log.info("  Succeeded: %d", ok)
        if failed:
            log.error("  Failed: %d", failed)
        else:
            log.info("  Failed: 0")

    def audit_details(self, report: OperationReport) -> str:
        return f"certs={self.certs} check_only={str(self.check_only).lower()}"
