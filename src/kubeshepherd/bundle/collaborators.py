# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kubeshepherd/bundle/collaborators.py
from __future__ import annotations

import logging
import shlex
from enum import Enum
from typing import Dict, Tuple

from ..errors import CollaboratorNotFoundError
from ..topology.address import NodeAddress

log = logging.getLogger("kubeshepherd")


class PlatformFamily(str, Enum):
    ALPINE = "alpine"
    ARCH = "arch"
    DEBIAN = "debian"
    GENERIC = "generic"
    RHEL = "rhel"
    SUSE = "suse"


# order matters: later modules call into earlier ones
COMMON_MODULES: Tuple[str, ...] = (
    "variables",
    "logging",
    "detection",
    "validation",
    "helpers",
    "networking",
    "swap",
    "completion",
    "helm",
    "upgrade",
    "etcd",
    "status",
    "preflight",
    "bootstrap",
)

PLATFORM_MODULES: Tuple[str, ...] = (
    "cleanup",
    "containerd",
    "crio",
    "dependencies",
    "kubernetes",
)

# family -> directory under distros/
PLATFORM_DIRS: Dict[PlatformFamily, str] = {family: family.value for family in PlatformFamily}

_EXTRA_MODULES: Dict[PlatformFamily, Tuple[str, ...]] = {
    PlatformFamily.ARCH: ("aur",),
}

# /etc/os-release ID (or ID_LIKE entry) -> family
_OS_IDS: Dict[str, PlatformFamily] = {
    "ubuntu": PlatformFamily.DEBIAN,
    "debian": PlatformFamily.DEBIAN,
    "raspbian": PlatformFamily.DEBIAN,
    "centos": PlatformFamily.RHEL,
    "rhel": PlatformFamily.RHEL,
    "fedora": PlatformFamily.RHEL,
    "rocky": PlatformFamily.RHEL,
    "almalinux": PlatformFamily.RHEL,
    "ol": PlatformFamily.RHEL,
    "opensuse": PlatformFamily.SUSE,
    "opensuse-leap": PlatformFamily.SUSE,
    "opensuse-tumbleweed": PlatformFamily.SUSE,
    "sles": PlatformFamily.SUSE,
    "suse": PlatformFamily.SUSE,
    "arch": PlatformFamily.ARCH,
    "manjaro": PlatformFamily.ARCH,
    "alpine": PlatformFamily.ALPINE,
}


def platform_modules(family: PlatformFamily | str) -> Tuple[str, Tuple[str, ...]]:
    """Directory and module names for *family*; unknown families are an error."""
    try:
        family = PlatformFamily(family)
        directory = PLATFORM_DIRS[family]
    except (ValueError, KeyError) as exc:
        raise CollaboratorNotFoundError(f"No platform modules for family {family!r}") from exc
    return directory, PLATFORM_MODULES + _EXTRA_MODULES.get(family, ())


def family_from_os_release(text: str) -> PlatformFamily:
    fields: Dict[str, str] = {}
    for line in text.splitlines():
        if "=" in line:
            k, v = line.split("=", 1)
            fields[k.strip()] = v.strip().strip('"').strip("'")

    candidates = [fields.get("ID", "")] + fields.get("ID_LIKE", "").split()
    for os_id in candidates:
        family = _OS_IDS.get(os_id.lower())
        if family is not None:
            return family
    return PlatformFamily.GENERIC


def detect_platform(transport, node: NodeAddress) -> PlatformFamily:
    res = transport.execute(node, f"cat {shlex.quote('/etc/os-release')}")
    if not res.ok:
        log.warning("[%s] /etc/os-release unreadable; using generic modules", node.label)
        return PlatformFamily.GENERIC
    family = family_from_os_release(res.stdout)
    log.info("[%s] Detected platform family: %s", node.label, family.value)
    return family
