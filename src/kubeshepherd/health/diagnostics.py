# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kubeshepherd/health/diagnostics.py
from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Tuple

from ..errors import ShepherdError
from ..topology.address import NodeAddress
from ..transport.interface import sudo_prefix
from .kubectl import ADMIN_KUBECONFIG

log = logging.getLogger("kubeshepherd")


def _commands(node: NodeAddress) -> List[Tuple[str, List[str]]]:
    sudo = sudo_prefix(node)
    return [
        ("kubelet", [f"{sudo}journalctl -u kubelet --no-pager -n 100"]),
        ("containerd", [f"{sudo}journalctl -u containerd --no-pager -n 50"]),
        (
            "events",
            [
                f"{sudo}kubectl --kubeconfig={ADMIN_KUBECONFIG} get events -A "
                "--sort-by=.lastTimestamp 2>/dev/null | tail -50"
            ],
        ),
        ("system", ["df -h", "free -m"]),
    ]


def collect_diagnostics(transport, node: NodeAddress, output_dir: Path) -> List[Path]:
    """
    Save kubelet/containerd journals, recent events and disk/memory usage
    from *node* under *output_dir*, one file per source.

    Best effort: a source that cannot be read is skipped, never raised.
    """
    output_dir = Path(output_dir)
    log.info("Collecting diagnostics from %s...", node.label)
    try:
        output_dir.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        log.warning("Cannot create diagnostics directory %s: %s", output_dir, exc)
        return []

    saved: List[Path] = []
    for name, commands in _commands(node):
        chunks = []
        for command in commands:
            try:
                res = transport.execute(node, command)
            except ShepherdError as exc:
                log.debug("[%s] diagnostics '%s' failed: %s", node.label, command, exc)
                continue
            if res.stdout.strip():
                chunks.append(f"=== {command} ===\n{res.stdout.rstrip()}\n" if len(commands) > 1 else res.stdout)
        if not chunks:
            continue
        path = output_dir / f"{node.host}-{name}.log"
        try:
            path.write_text("\n".join(chunks))
        except OSError as exc:
            log.warning("Cannot write %s: %s", path, exc)
            continue
        log.info("  Saved %s: %s", name, path)
        saved.append(path)

    log.info("  Diagnostics collected for %s", node.label)
    return saved
