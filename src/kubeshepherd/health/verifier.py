# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kubeshepherd/health/verifier.py
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional

from ..errors import ShepherdError, VerificationError
from ..observers.dispatcher import EventBus
from ..observers.events import HealthChecked, stamp
from ..topology.address import NodeAddress
from .kubectl import KubectlRunner

log = logging.getLogger("kubeshepherd")

_HEALTHY_POD_PHASES = ("Running", "Completed")


@dataclass
class NodesReady:
    total: int = 0
    not_ready_names: List[str] = field(default_factory=list)


@dataclass
class PodsHealthy:
    total: int = 0
    unhealthy_names: List[str] = field(default_factory=list)


@dataclass
class HealthReport:
    api_server_ready: bool = False
    nodes_ready: NodesReady = field(default_factory=NodesReady)
    etcd_healthy: bool = False
    core_pods_healthy: PodsHealthy = field(default_factory=PodsHealthy)
    warnings: int = 0

    @property
    def ok(self) -> bool:
        return self.warnings == 0


class HealthVerifier:
    """
    Read-only cluster checks run from one control-plane node.

    Never touches cluster or checkpoint state. Every check is
    independent: a failure counts a warning and the others still run.
    """

    def __init__(self, transport, *, bus: Optional[EventBus] = None, run_ctx: Optional[dict] = None):
        self.transport = transport
        self.bus = bus
        self.run_ctx = run_ctx

    def _kubectl(self, node: NodeAddress) -> KubectlRunner:
        return KubectlRunner(self.transport, node)

    def _api_server(self, k: KubectlRunner) -> bool:
        return k.run("get --raw /readyz").ok

    def _nodes(self, k: KubectlRunner) -> Optional[NodesReady]:
        res = k.run("get nodes --no-headers")
        if not res.ok:
            return None
        out = NodesReady()
        for line in res.stdout.splitlines():
            cols = line.split()
            if len(cols) < 2:
                continue
            out.total += 1
            if cols[1] != "Ready":
                out.not_ready_names.append(f"{cols[0]}({cols[1]})")
        return out

    def _etcd(self, k: KubectlRunner) -> bool:
        res = k.run("get --raw /healthz/etcd")
        return res.ok and res.stdout.strip() == "ok"

    def _core_pods(self, k: KubectlRunner) -> Optional[PodsHealthy]:
        res = k.run("get pods -n kube-system --no-headers")
        if not res.ok:
            return None
        out = PodsHealthy()
        for line in res.stdout.splitlines():
            cols = line.split()
            if len(cols) < 3:
                continue
            out.total += 1
            if cols[2] not in _HEALTHY_POD_PHASES:
                out.unhealthy_names.append(f"{cols[0]}({cols[2]})")
        return out

    def check(self, node: NodeAddress) -> HealthReport:
        k = self._kubectl(node)
        report = HealthReport()
        log.info("Running cluster health check via %s...", node.label)

        def _guard(name, fn):
            try:
                return fn(k)
            except ShepherdError as exc:
                log.warning("  %s check could not run: %s", name, exc)
                return None

        report.api_server_ready = bool(_guard("API server", self._api_server))
        if report.api_server_ready:
            log.info("  API server: ready")
        else:
            log.warning("  API server: not ready")
            report.warnings += 1

        nodes = _guard("node", self._nodes)
        if nodes is None:
            log.warning("  Nodes: unable to query")
            report.warnings += 1
        else:
            report.nodes_ready = nodes
            if nodes.not_ready_names:
                log.warning("  Nodes: %d not ready: %s", len(nodes.not_ready_names), " ".join(nodes.not_ready_names))
                report.warnings += 1
            else:
                log.info("  Nodes: %d/%d Ready", nodes.total, nodes.total)

        report.etcd_healthy = bool(_guard("etcd", self._etcd))
        if report.etcd_healthy:
            log.info("  etcd: healthy")
        else:
            log.warning("  etcd: unhealthy or unreachable")
            report.warnings += 1

        pods = _guard("kube-system pod", self._core_pods)
        if pods is None:
            log.warning("  kube-system pods: unable to query")
            report.warnings += 1
        else:
            report.core_pods_healthy = pods
            if pods.unhealthy_names:
                log.warning("  kube-system pods: %d unhealthy: %s", len(pods.unhealthy_names), " ".join(pods.unhealthy_names))
                report.warnings += 1
            else:
                log.info("  kube-system pods: %d healthy", pods.total)

        if report.warnings:
            log.warning("Health check completed with %d warning(s)", report.warnings)
        else:
            log.info("Health check passed")

        if self.bus is not None and self.run_ctx is not None:
            self.bus.emit(
                HealthChecked(
                    node=node.label,
                    api_server_ready=report.api_server_ready,
                    etcd_healthy=report.etcd_healthy,
                    not_ready_nodes=list(report.nodes_ready.not_ready_names),
                    unhealthy_pods=list(report.core_pods_healthy.unhealthy_names),
                    warnings=report.warnings,
                    **stamp(self.run_ctx),
                )
            )
        return report

    def verify_node_count(self, node: NodeAddress, expected: int) -> int:
        """Hard check: the cluster must report exactly *expected* nodes."""
        try:
            res = self._kubectl(node).run("get nodes --no-headers")
        except ShepherdError as exc:
            raise VerificationError(f"Could not count cluster nodes: {exc}") from exc
        if not res.ok:
            raise VerificationError(f"Could not count cluster nodes: {res.stderr.strip()}")
        actual = sum(1 for line in res.stdout.splitlines() if line.strip())
        if actual != expected:
            raise VerificationError(
                f"Node count mismatch: expected {expected}, found {actual}"
            )
        log.info("Node count verified: %d/%d", actual, expected)
        return actual
