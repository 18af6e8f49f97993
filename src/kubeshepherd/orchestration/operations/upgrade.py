# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kubeshepherd/orchestration/operations/upgrade.py
from __future__ import annotations

import logging
import shlex
from pathlib import Path
from typing import Callable, List, Optional

from ...errors import RemoteTaskError, ShepherdError, VersionError
from ...health.diagnostics import collect_diagnostics
from ...health.kubectl import ADMIN_KUBECONFIG, KubectlError, KubectlRunner
from ...topology.address import NodeAddress
from ...transport.interface import sudo_prefix
from ..context import OperationContext
from ..passthrough import PassthroughRole, filter_passthrough, quote_args
from ..phases import OperationReport, Phase, PhaseKind
from ..versions import KubeVersion, fetch_stable_patch, upgrade_path
from .base import OperationDriver

log = logging.getLogger("kubeshepherd")

ADMIN_CONF_NAME = "admin.conf"


class UpgradeOperation(OperationDriver):
    """
    Rolling Kubernetes upgrade.

    Control planes first (the first one runs ``kubeadm upgrade apply``),
    then workers, one node at a time. Each node is drained, upgraded and
    uncordoned; on failure it is rolled back to the version it had before.
    """

    name = "upgrade"

    def __init__(
        self,
        ctx: OperationContext,
        *,
        target_version: str,
        skip_drain: bool = False,
        auto_step: bool = False,
        rollback: bool = True,
        latest_patch: Callable[[int, int], KubeVersion] = fetch_stable_patch,
        **kw,
    ):
        super().__init__(ctx, **kw)
        self.target = KubeVersion.parse(target_version)
        self.skip_drain = skip_drain
        self.auto_step = auto_step
        self.rollback = rollback
        self.latest_patch = latest_patch
        self.current: Optional[KubeVersion] = None
        self.path: List[KubeVersion] = [self.target]

    @property
    def passthrough(self) -> List[str]:
        return filter_passthrough(self.ctx.options.passthrough, PassthroughRole.UPGRADE)

    def kubectl(self) -> KubectlRunner:
        return KubectlRunner(self.ctx.transport, self.control_node())

    # ------------- phases -------------

    def build_phases(self) -> List[Phase]:
        topo = self.ctx.topology
        phases: List[Phase] = []
        for version in self.path:
            phases.append(
                Phase(
                    name=f"upgrade_control_planes_{version}",
                    kind=PhaseKind.SEQUENTIAL,
                    nodes=list(topo.control_planes),
                    action=self._cp_action(version),
                    step=lambda node, v=version: f"upgrade_cp_{node.label}_{v}",
                    description=f"upgrade control-plane to v{version}",
                )
            )
            phases.append(
                Phase(
                    name=f"upgrade_workers_{version}",
                    kind=PhaseKind.SEQUENTIAL,
                    nodes=list(topo.workers),
                    action=self._worker_action(version),
                    step=lambda node, v=version: f"upgrade_worker_{node.label}_{v}",
                    description=f"upgrade worker to v{version}",
                )
            )
        return phases

    def _cp_action(self, version: KubeVersion):
        primary = self.ctx.topology.primary

        def action(ctx: OperationContext, node: NodeAddress) -> None:
            self.upgrade_node(node, version, first_control_plane=node == primary)

        return action

    def _worker_action(self, version: KubeVersion):
        def action(ctx: OperationContext, node: NodeAddress) -> None:
            self.upgrade_node(node, version, worker=True)

        return action

    # ------------- discovery -------------

    def read_version(self, node: NodeAddress) -> Optional[KubeVersion]:
        try:
            res = self.ctx.transport.execute(node, f"{sudo_prefix(node)}kubeadm version -o short")
        except ShepherdError as exc:
            log.debug("[%s] kubeadm version failed: %s", node.label, exc)
            return None
        if not res.ok:
            return None
        try:
            return KubeVersion.parse(res.stdout.strip())
        except VersionError:
            return None

    def before_phases(self) -> None:
        primary = self.control_node()
        self.current = self.read_version(primary)
        if self.current is None:
            raise VersionError(f"Failed to get current Kubernetes version from {primary.label}")
        log.info("Current cluster version: v%s", self.current)
        log.info("Target version: v%s", self.target)

        store = self.ctx.checkpoint
        planned = store.get("upgrade_path") if store.get("target_version") == str(self.target) else None
        if planned:
            # resumed: the primary may already be at the target
            self.path = [KubeVersion.parse(v) for v in planned.split(",")]
            log.info(
                "Resuming upgrade from v%s along the recorded path",
                store.get("pre_upgrade_version", "?"),
            )
        else:
            self.path = upgrade_path(
                self.current, self.target, auto_step=self.auto_step, latest_patch=self.latest_patch
            )
            store.set("pre_upgrade_version", str(self.current))
            store.set("upgrade_path", ",".join(str(v) for v in self.path))
        if len(self.path) > 1:
            log.info(
                "Auto-step-upgrade: %d step(s) to reach v%s: %s",
                len(self.path),
                self.target,
                " -> ".join(f"v{v}" for v in self.path),
            )
        self._phases = None
        store.set("target_version", str(self.target))

        self.health_check()

        res = self.ctx.transport.execute(primary, f"{sudo_prefix(primary)}kubeadm upgrade plan")
        log.info("kubeadm upgrade plan:\n%s", (res.stdout or res.stderr).rstrip())

    # ------------- per node -------------

    def _upgrade_command(
        self,
        node: NodeAddress,
        version: KubeVersion,
        *,
        first_control_plane: bool = False,
        admin_conf: Optional[str] = None,
    ) -> str:
        env = f"env UPGRADE_ADMIN_CONF={shlex.quote(admin_conf)} " if admin_conf else ""
        args = ["--kubernetes-version", str(version)]
        if first_control_plane:
            args.append("--first-control-plane")
        args += self.passthrough
        return f"{sudo_prefix(node)}{env}sh {self.ctx.bundle_path(node)} upgrade {quote_args(args)}"

    def _push_admin_conf(self, node: NodeAddress) -> str:
        """Copy the primary's admin.conf into *node*'s staging dir."""
        primary = self.control_node()
        res = self.ctx.transport.execute(primary, f"{sudo_prefix(primary)}cat {ADMIN_KUBECONFIG}")
        if not res.ok:
            raise RemoteTaskError(
                f"[{node.label}] Failed to download admin.conf from control-plane {primary.label}",
                node=node.label,
            )
        if not res.stdout.strip():
            raise RemoteTaskError(f"[{node.label}] Downloaded admin.conf is empty", node=node.label)
        remote = f"{self.ctx.staging_dirs[node].remote_path}/{ADMIN_CONF_NAME}"
        self.ctx.transport.put_text(node, res.stdout, remote, mode=0o600)
        return remote

    def _drop_admin_conf(self, node: NodeAddress, remote: str) -> None:
        try:
            self.ctx.transport.execute(node, f"rm -f {shlex.quote(remote)}")
        except ShepherdError as exc:
            log.warning("[%s] could not remove %s: %s", node.label, remote, exc)

    def _uncordon(self, kubectl: KubectlRunner, node: NodeAddress, name: str) -> None:
        log.info("  [%s] Uncordoning node...", name)
        res = kubectl.uncordon(name)
        if not res.ok:
            log.warning("Uncordon failed for %s. Continuing...", node.label)

    def _rollback(self, node: NodeAddress, pre_version: Optional[KubeVersion]) -> None:
        if pre_version is None:
            log.warning("  [%s] No pre-upgrade version recorded, cannot rollback", node.label)
            return
        log.warning("  [%s] Attempting rollback to v%s...", node.label, pre_version)
        result = self.ctx.task_runner().run(
            node, self._upgrade_command(node, pre_version), f"rollback to v{pre_version}"
        )
        if not result.ok:
            log.error("  [%s] Rollback failed. Manual intervention required.", node.label)
            return
        log.info("  [%s] Rollback to v%s succeeded", node.label, pre_version)
        sudo = sudo_prefix(node)
        try:
            self.ctx.transport.execute(node, f"{sudo}systemctl daemon-reload && {sudo}systemctl restart kubelet")
        except ShepherdError as exc:
            log.warning("  [%s] kubelet restart after rollback failed: %s", node.label, exc)

    def upgrade_node(
        self,
        node: NodeAddress,
        version: KubeVersion,
        *,
        first_control_plane: bool = False,
        worker: bool = False,
    ) -> None:
        kubectl = self.kubectl()
        name = kubectl.resolve_node_name(node)
        if not name:
            log.warning("Could not resolve node name for %s, using host as node name", node.label)
            name = node.host

        pre_version = self.read_version(node)
        if pre_version is not None:
            log.debug("  [%s] Pre-upgrade version: v%s", node.label, pre_version)

        if not self.skip_drain:
            log.info("  [%s] Draining node...", name)
            res = kubectl.drain(name)
            if not res.ok:
                raise KubectlError(f"Drain failed for {node.label}: {res.stderr.strip()}")
            log.info("  [%s] Node drained", name)

        admin_conf = self._push_admin_conf(node) if worker else None
        cmd = self._upgrade_command(
            node, version, first_control_plane=first_control_plane, admin_conf=admin_conf
        )
        try:
            self.run_task(node, cmd, f"upgrade to v{version}")
        except ShepherdError:
            log.error("Upgrade failed for %s.", node.label)
            diag_dir = self.ctx.options.diagnostics_dir
            if diag_dir is not None:
                collect_diagnostics(self.ctx.transport, node, Path(diag_dir) / f"upgrade-{version}-{node.host}")
            if self.rollback:
                self._rollback(node, pre_version)
                if not self.skip_drain:
                    self._uncordon(kubectl, node, name)
            raise
        finally:
            if admin_conf:
                self._drop_admin_conf(node, admin_conf)

        if not self.skip_drain:
            self._uncordon(kubectl, node, name)
        log.info("  [%s] upgrade to v%s complete", node.label, version)

    # ------------- summary -------------

    def _post_checks(self, report: OperationReport) -> None:
        res = self.kubectl().run("get nodes -o wide")
        log.info("%s", (res.stdout or res.stderr).rstrip())
        super()._post_checks(report)

    def summarize(self, report: OperationReport) -> None:
        topo = self.ctx.topology
        log.info("=== Upgrade Summary ===")
        log.info("Target Version: v%s", self.target)
        log.info("Control-Plane Nodes: %s", ", ".join(str(n) for n in topo.control_planes))
        if topo.workers:
            log.info("Worker Nodes: %s", ", ".join(str(n) for n in topo.workers))
        if not report.ok:
            log.error("Some nodes may be in mixed-version state (this is allowed by K8s skew policy).")

    def audit_details(self, report: OperationReport) -> str:
        topo = self.ctx.topology
        return f"target={self.target} cp={len(topo.control_planes)} workers={len(topo.workers)}"
