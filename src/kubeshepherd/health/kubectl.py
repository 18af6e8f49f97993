# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kubeshepherd/health/kubectl.py

from __future__ import annotations

import logging
import shlex
from typing import Dict, List, Optional

from ..errors import ShepherdError
from ..topology.address import NodeAddress, strip_brackets
from ..transport.interface import CommandResult, sudo_prefix

log = logging.getLogger("kubeshepherd")

ADMIN_KUBECONFIG = "/etc/kubernetes/admin.conf"


class KubectlError(ShepherdError):
    pass


class KubectlRunner:
    """
    kubectl executed on a control-plane node over SSH.
    """

    def __init__(
        self,
        transport,
        node: NodeAddress,
        *,
        kubeconfig: str = ADMIN_KUBECONFIG,
    ):
        self.transport = transport
        self.node = node
        self.kubeconfig = kubeconfig

    def command(self, args: str) -> str:
        return f"{sudo_prefix(self.node)}kubectl --kubeconfig={self.kubeconfig} {args}"

    def run(self, args: str) -> CommandResult:
        return self.transport.execute(self.node, self.command(args))

    def check(self, args: str) -> str:
        res = self.run(args)
        if not res.ok:
            raise KubectlError(
                f"[{self.node.label}] kubectl {args} failed (rc={res.exit_code}): {res.stderr.strip()}"
            )
        return res.stdout

    # ------------- node helpers -------------

    def node_addresses(self) -> Dict[str, List[str]]:
        """node name -> addresses reported in .status.addresses"""
        jsonpath = (
            '{range .items[*]}{.metadata.name}{" "}'
            '{range .status.addresses[*]}{.address}{" "}{end}{"\\n"}{end}'
        )
        out = self.check(f"get nodes -o jsonpath={shlex.quote(jsonpath)}")
        table: Dict[str, List[str]] = {}
        for line in out.splitlines():
            parts = line.split()
            if parts:
                table[parts[0]] = parts[1:]
        return table

    def resolve_node_name(self, target: NodeAddress) -> Optional[str]:
        """
        Kubernetes node name for *target*: match by address first, then by
        the target's own ``hostname``.
        """
        try:
            table = self.node_addresses()
        except ShepherdError as exc:
            log.warning("[%s] could not list node addresses: %s", self.node.label, exc)
            return None

        wanted = {target.endpoint, strip_brackets(target.endpoint)}
        for name, addrs in table.items():
            if wanted.intersection(addrs):
                return name

        try:
            res = self.transport.execute(target, "hostname")
        except ShepherdError as exc:
            log.warning("[%s] hostname lookup failed: %s", target.label, exc)
            return None
        hostname = res.stdout.strip()
        if res.ok and hostname in table:
            return hostname
        return None

    def drain(self, node_name: str, *, force: bool = False, timeout: str = "300s") -> CommandResult:
        flags = f"--ignore-daemonsets --delete-emptydir-data --timeout={timeout}"
        if force:
            flags += " --force"
        return self.run(f"drain {shlex.quote(node_name)} {flags}")

    def uncordon(self, node_name: str) -> CommandResult:
        return self.run(f"uncordon {shlex.quote(node_name)}")

    def delete_node(self, node_name: str) -> CommandResult:
        return self.run(f"delete node {shlex.quote(node_name)}")
