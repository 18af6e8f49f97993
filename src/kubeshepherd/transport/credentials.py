# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kubeshepherd/transport/credentials.py
from __future__ import annotations

import logging
import os
import stat
from pathlib import Path
from typing import Optional

log = logging.getLogger("kubeshepherd")

_KEY_NAMES = ("id_ed25519", "id_rsa", "id_ecdsa")
_PRIVATE_MODES = (0o600, 0o400)


def _ssh_home() -> Path:
    # under sudo, look at the invoking user's keys
    sudo_user = os.environ.get("SUDO_USER")
    if sudo_user:
        return Path("~" + sudo_user).expanduser()
    return Path.home()


def auto_discover_key(home: Optional[Path] = None) -> Optional[Path]:
    home = home or _ssh_home()
    for name in _KEY_NAMES:
        candidate = home / ".ssh" / name
        if candidate.is_file():
            log.info("SSH key auto-discovered: %s", candidate)
            return candidate
    return None


def _mode(path: Path) -> int:
    return stat.S_IMODE(path.stat().st_mode)


def check_key_permissions(path: Path) -> bool:
    """Warn (never fail) when a private key is readable by others."""
    mode = _mode(path)
    if mode not in _PRIVATE_MODES:
        log.warning("SSH key '%s' has permissions %o (recommend 600 or 400)", path, mode)
        return False
    return True


def load_password_file(path: Path) -> str:
    path = Path(path)
    if not path.is_file():
        raise ValueError(f"SSH password file not found: {path}")
    mode = _mode(path)
    if mode not in _PRIVATE_MODES:
        raise ValueError(
            f"SSH password file '{path}' has permissions {mode:o} (must be 600 or 400)"
        )
    password = path.read_text().rstrip("\n")
    if not password:
        raise ValueError(f"SSH password file '{path}' is empty")
    return password
