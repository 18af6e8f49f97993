# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kubeshepherd/config/models.py

from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from ..checkpoint.store import DEFAULT_STATE_DIR
from ..remote.task import DEFAULT_POLL_INTERVAL, DEFAULT_TIMEOUT
from ..transport.context import HostKeyPolicy


class SSHSettings(BaseModel):
    user: str = "root"
    port: int = 22
    key_path: Optional[Path] = None
    password_file: Optional[Path] = None
    host_key_policy: HostKeyPolicy = HostKeyPolicy.ACCEPT_NEW
    known_hosts: Optional[Path] = None
    persist_known_hosts: Optional[Path] = None
    connect_timeout: float = 10.0

    @field_validator("port")
    @classmethod
    def _port_range(cls, v: int) -> int:
        if not 1 <= v <= 65535:
            raise ValueError(f"SSH port must be between 1 and 65535 (got {v})")
        return v


class RemoteSettings(BaseModel):
    timeout: float = Field(default=DEFAULT_TIMEOUT, gt=0)
    poll_interval: float = Field(default=DEFAULT_POLL_INTERVAL, gt=0)


class ShepherdConfig(BaseModel):
    ssh: SSHSettings = Field(default_factory=SSHSettings)
    remote: RemoteSettings = Field(default_factory=RemoteSettings)
    state_dir: Path = DEFAULT_STATE_DIR
    # directory holding setup-k8s.sh, common/ and distros/
    bundle_root: Optional[Path] = None
    log_dir: Path = Path("~/.kubeshepherd/logs").expanduser()
