# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kubeshepherd/transport/context.py
from __future__ import annotations

import logging
import os
import shutil
import tempfile
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional

log = logging.getLogger("kubeshepherd")


class HostKeyPolicy(str, Enum):
    STRICT = "strict"
    ACCEPT_NEW = "accept-new"
    INSECURE = "insecure"


@dataclass
class TransportContext:
    """
    Connection parameters shared by every SSH call of one operation.

    ``known_hosts_path`` is the session file created by
    :func:`open_session_known_hosts`; it only lives as long as the
    operation does.
    """

    port: int = 22
    private_key_path: Optional[Path] = None
    password: Optional[str] = None
    host_key_policy: HostKeyPolicy = HostKeyPolicy.ACCEPT_NEW
    known_hosts_path: Optional[Path] = None
    seed_known_hosts_path: Optional[Path] = None
    persist_known_hosts_path: Optional[Path] = None
    connect_timeout: float = 10.0
    default_principal: str = "root"

    def __post_init__(self) -> None:
        if not 1 <= int(self.port) <= 65535:
            raise ValueError(f"Invalid SSH port: {self.port}")
        if self.seed_known_hosts_path and not Path(self.seed_known_hosts_path).is_file():
            raise ValueError(f"Known hosts file not found: {self.seed_known_hosts_path}")


def log_host_key_policy(ctx: TransportContext) -> None:
    if ctx.host_key_policy is HostKeyPolicy.ACCEPT_NEW:
        log.info("SSH host key check: accept-new (TOFU).")
    elif ctx.host_key_policy is HostKeyPolicy.STRICT and not ctx.seed_known_hosts_path:
        log.info("SSH strict host key checking is enabled.")
        log.info("Provide known_hosts with --ssh-known-hosts to proceed:")
        log.info("  ssh-keyscan -H <node-ip> >> known_hosts")
    elif ctx.host_key_policy is HostKeyPolicy.INSECURE:
        log.warning("SSH host key verification is disabled.")


def open_session_known_hosts(ctx: TransportContext, label: str = "session") -> Path:
    """Create the per-operation known_hosts file, seeded from the user's trust store."""
    fd, name = tempfile.mkstemp(prefix=f"{label}-known-hosts-")
    os.close(fd)
    path = Path(name)
    path.chmod(0o600)
    if ctx.seed_known_hosts_path and Path(ctx.seed_known_hosts_path).is_file():
        shutil.copyfile(ctx.seed_known_hosts_path, path)
    ctx.known_hosts_path = path
    return path


def close_session_known_hosts(ctx: TransportContext) -> None:
    """Persist the session known_hosts if requested, then delete it."""
    path = ctx.known_hosts_path
    if path is None:
        return
    if ctx.persist_known_hosts_path and path.is_file():
        dest = Path(ctx.persist_known_hosts_path)
        shutil.copyfile(path, dest)
        dest.chmod(0o600)
        log.info("Session known_hosts persisted to: %s", dest)
    path.unlink(missing_ok=True)
    ctx.known_hosts_path = None
