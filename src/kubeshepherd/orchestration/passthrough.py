# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kubeshepherd/orchestration/passthrough.py
from __future__ import annotations

import shlex
from enum import Enum
from typing import Dict, FrozenSet, List, Sequence

from ..errors import CollaboratorNotFoundError


class PassthroughRole(str, Enum):
    CONTROL_PLANE = "control-plane"
    WORKER = "worker"
    UPGRADE = "upgrade"


# flag -> takes a value
_FLAG_ARITY: Dict[str, bool] = {
    "--ha-vip": True,
    "--ha-interface": True,
    "--kubernetes-version": True,
    "--skip-drain": False,
}

EXCLUDED_FLAGS: Dict[PassthroughRole, FrozenSet[str]] = {
    PassthroughRole.CONTROL_PLANE: frozenset(),
    PassthroughRole.WORKER: frozenset({"--ha-vip", "--ha-interface"}),
    PassthroughRole.UPGRADE: frozenset({"--kubernetes-version", "--skip-drain"}),
}


def filter_passthrough(args: Sequence[str], role: PassthroughRole | str) -> List[str]:
    """
    Drop the flags *role* must not receive.

    Value flags lose their value too, in both ``--flag value`` and
    ``--flag=value`` form.
    """
    try:
        excluded = EXCLUDED_FLAGS[PassthroughRole(role)]
    except ValueError as exc:
        raise CollaboratorNotFoundError(f"No passthrough rules for role {role!r}") from exc

    out: List[str] = []
    skip_value = False
    for arg in args:
        if skip_value:
            skip_value = False
            continue
        name = arg.split("=", 1)[0]
        if name in excluded:
            if "=" not in arg and _FLAG_ARITY.get(name, False):
                skip_value = True
            continue
        out.append(arg)
    return out


def flag_value(args: Sequence[str], flag: str) -> str | None:
    for i, arg in enumerate(args):
        if arg == flag and i + 1 < len(args):
            return args[i + 1]
        if arg.startswith(flag + "="):
            return arg.split("=", 1)[1]
    return None


def quote_args(args: Sequence[str]) -> str:
    return " ".join(shlex.quote(a) for a in args)
