# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kubeshepherd/orchestration/operations/etcd.py
from __future__ import annotations

import logging
import shlex
from datetime import datetime
from pathlib import Path
from typing import List, Optional, Sequence

from ...errors import ShepherdError, TransferError, VerificationError
from ...topology.address import NodeAddress
from ..context import OperationContext
from ..phases import Phase, PhaseKind
from .base import OperationDriver

log = logging.getLogger("kubeshepherd")

REMOTE_SNAPSHOT_NAME = "etcd-snapshot.db"
MIN_SNAPSHOT_BYTES = 100


def default_snapshot_path(now: Optional[datetime] = None) -> Path:
    now = now or datetime.now()
    return Path(f"etcd-snapshot-{now:%Y%m%d-%H%M%S}.db")


class _EtcdOperation(OperationDriver):
    """Runs on the primary control plane only."""

    def __init__(self, ctx: OperationContext, *, snapshot_path: Path, **kw):
        super().__init__(ctx, **kw)
        self.snapshot_path = Path(snapshot_path)

    def target_nodes(self) -> Sequence[NodeAddress]:
        return [self.control_node()]

    def remote_snapshot(self, node: NodeAddress) -> str:
        return f"{self.ctx.staging_dirs[node].remote_path}/{REMOTE_SNAPSHOT_NAME}"

    def snapshot_args(self, node: NodeAddress) -> List[str]:
        return ["--snapshot-path", self.remote_snapshot(node), *self.ctx.options.passthrough]


class BackupOperation(_EtcdOperation):
    name = "backup"

    def build_phases(self) -> List[Phase]:
        return [
            Phase(
                name="etcd_backup",
                kind=PhaseKind.SINGLE,
                nodes=[self.control_node()],
                action=self._backup,
                description=f"etcd snapshot save, download to {self.snapshot_path}",
            )
        ]

    def _backup(self, ctx: OperationContext, node: NodeAddress) -> None:
        self.run_task(node, self.bundle_command(node, "backup", self.snapshot_args(node)), "etcd backup")

        remote = self.remote_snapshot(node)
        log.info("Downloading snapshot to %s...", self.snapshot_path)
        if not node.is_root:
            try:
                ctx.transport.execute(node, f"sudo -n chmod 644 {shlex.quote(remote)}")
            except ShepherdError as exc:
                log.debug("[%s] chmod on snapshot failed: %s", node.label, exc)
        try:
            self.snapshot_path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise TransferError(f"Cannot create snapshot directory {self.snapshot_path.parent}: {exc}") from exc
        ctx.transport.copy_from(node, remote, self.snapshot_path)

        try:
            size = self.snapshot_path.stat().st_size
        except OSError as exc:
            raise TransferError(f"Downloaded snapshot is missing: {self.snapshot_path}: {exc}") from exc
        if size < MIN_SNAPSHOT_BYTES:
            raise VerificationError(
                f"Downloaded snapshot is too small ({size} bytes), backup may have failed"
            )
        log.info("Snapshot downloaded: %s (%d bytes)", self.snapshot_path, size)

    def audit_details(self, report) -> str:
        return f"path={self.snapshot_path}"


class RestoreOperation(_EtcdOperation):
    name = "restore"

    def validate(self) -> None:
        if not self.snapshot_path.is_file():
            raise TransferError(f"Snapshot file not found: {self.snapshot_path}")

    def build_phases(self) -> List[Phase]:
        return [
            Phase(
                name="etcd_restore",
                kind=PhaseKind.SINGLE,
                nodes=[self.control_node()],
                action=self._restore,
                description=f"upload {self.snapshot_path}, etcd snapshot restore",
            )
        ]

    def _restore(self, ctx: OperationContext, node: NodeAddress) -> None:
        log.info("Uploading snapshot to %s...", node.label)
        ctx.transport.copy_to(node, self.snapshot_path, self.remote_snapshot(node))
        self.run_task(node, self.bundle_command(node, "restore", self.snapshot_args(node)), "etcd restore")

    def audit_details(self, report) -> str:
        return f"path={self.snapshot_path}"
