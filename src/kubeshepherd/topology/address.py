# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kubeshepherd/topology/address.py
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import List

from ..errors import AddressError

_PRINCIPAL_RE = re.compile(r"^[a-zA-Z0-9._-]+$")
_IPV6_INNER_RE = re.compile(r"^[a-fA-F0-9:]+$")
_HOSTNAME_RE = re.compile(r"^[a-zA-Z0-9]([a-zA-Z0-9._-]*[a-zA-Z0-9])?$")


def strip_brackets(host: str) -> str:
    if host.startswith("[") and host.endswith("]"):
        return host[1:-1]
    return host


def bracket_host(host: str) -> str:
    """Bracket an IPv6 literal for ``user@[host]:path`` style targets."""
    host = strip_brackets(host)
    if ":" in host:
        return f"[{host}]"
    return host


@dataclass(frozen=True)
class NodeAddress:
    principal: str
    endpoint: str  # as given, IPv6 literals keep their brackets

    @property
    def host(self) -> str:
        """Endpoint as the SSH connect / exec call wants it."""
        return strip_brackets(self.endpoint)

    @property
    def copy_host(self) -> str:
        return bracket_host(self.endpoint)

    @property
    def is_root(self) -> bool:
        return self.principal == "root"

    @property
    def label(self) -> str:
        return self.host

    def __str__(self) -> str:
        return f"{self.principal}@{self.endpoint}"


def _validate_host(host: str, spec: str) -> None:
    if not host:
        raise AddressError(f"Empty node address in {spec!r}")
    if host.startswith("[") and host.endswith("]"):
        if not _IPV6_INNER_RE.match(host[1:-1]):
            raise AddressError(f"Invalid IPv6 address: {host}")
        return
    if ":" in host:
        raise AddressError(
            f"IPv6 addresses must be enclosed in brackets, e.g., [{host}]"
        )
    if not _HOSTNAME_RE.match(host):
        raise AddressError(f"Invalid node address: {host}")


def parse_node_address(spec: str, default_principal: str = "root") -> NodeAddress:
    """
    Parse ``user@host`` or a bare ``host``.

    The principal falls back to *default_principal*. Bracketed IPv6
    literals are kept bracketed in ``endpoint``.
    """
    spec = spec.strip()
    if "@" in spec:
        principal, endpoint = spec.split("@", 1)
        if not principal:
            raise AddressError(f"Empty username in node address: {spec}")
        if principal.startswith("-"):
            raise AddressError(f"Invalid username (starts with '-'): {principal}")
        if not _PRINCIPAL_RE.match(principal):
            raise AddressError(f"Invalid username: {principal}")
    else:
        principal, endpoint = default_principal, spec

    _validate_host(endpoint, spec)
    return NodeAddress(principal=principal, endpoint=endpoint)


def normalize_node_list(raw: str | None) -> List[str]:
    """Split a comma separated node list, trimming blanks and empty tokens."""
    if not raw:
        return []
    return [t.strip() for t in raw.split(",") if t.strip()]
