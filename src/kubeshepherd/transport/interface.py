# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from ..topology.address import NodeAddress


@dataclass(frozen=True)
class CommandResult:
    stdout: str
    stderr: str
    exit_code: int

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


class Transport(Protocol):
    def execute(self, node: NodeAddress, command: str, *, timeout: float | None = None) -> CommandResult: ...

    def copy_to(self, node: NodeAddress, local_path: Path, remote_path: str) -> None: ...

    def copy_from(self, node: NodeAddress, remote_path: str, local_path: Path) -> None: ...

    def put_text(self, node: NodeAddress, content: str, remote_path: str, mode: int = 0o600) -> None: ...

    def check_connectivity(self, node: NodeAddress) -> None: ...


def sudo_prefix(node: NodeAddress) -> str:
    return "" if node.is_root else "sudo -n "
