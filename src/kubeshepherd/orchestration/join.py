# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kubeshepherd/orchestration/join.py
from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Optional

from ..errors import RemoteTaskError, ShepherdError
from ..topology.address import NodeAddress
from ..transport.interface import sudo_prefix
from ..utils.retry import RetryError, retry

log = logging.getLogger("kubeshepherd")

_TOKEN_RE = re.compile(r"^[a-z0-9]{6}\.[a-z0-9]{16}$")
_HASH_RE = re.compile(r"^sha256:[a-f0-9]{64}$")
_CERT_KEY_RE = re.compile(r"^[a-f0-9]{64}$")


class JoinInfoError(RemoteTaskError):
    pass


@dataclass(frozen=True)
class JoinInfo:
    address: str
    token: str
    ca_cert_hash: str
    certificate_key: Optional[str] = None

    def worker_args(self) -> list[str]:
        return [
            "--join-token", self.token,
            "--join-address", self.address,
            "--discovery-token-hash", self.ca_cert_hash,
        ]

    def control_plane_args(self) -> list[str]:
        if not self.certificate_key:
            raise JoinInfoError("control-plane join requires a certificate key")
        return self.worker_args() + ["--control-plane", "--certificate-key", self.certificate_key]


def parse_join_command(text: str) -> JoinInfo:
    """
    Parse ``kubeadm join <addr> --token <t> --discovery-token-ca-cert-hash <h>``.
    """
    line = next((l for l in text.splitlines() if "kubeadm join" in l), "")
    tokens = line.split()
    if "join" not in tokens:
        raise JoinInfoError(f"No join command in output: {text.strip()!r}")

    def _after(flag: str) -> str:
        try:
            return tokens[tokens.index(flag) + 1]
        except (ValueError, IndexError):
            return ""

    address = _after("join")
    token = _after("--token")
    ca_hash = _after("--discovery-token-ca-cert-hash")
    if not address or address.startswith("--"):
        raise JoinInfoError("Failed to parse join address")
    if not _TOKEN_RE.match(token):
        raise JoinInfoError(f"Join token has unexpected format: {token!r}")
    if not _HASH_RE.match(ca_hash):
        raise JoinInfoError(f"CA cert hash has unexpected format: {ca_hash!r}")
    return JoinInfo(address=address, token=token, ca_cert_hash=ca_hash)


def parse_certificate_key(text: str) -> str:
    lines = [l.strip() for l in text.splitlines() if l.strip()]
    key = lines[-1] if lines else ""
    if not _CERT_KEY_RE.match(key):
        raise JoinInfoError(f"Certificate key has unexpected format: {key!r}")
    return key


def extract_join_info(
    transport,
    primary: NodeAddress,
    *,
    ha: bool,
    attempts: int = 3,
    delay: float = 1.0,
) -> JoinInfo:
    """Issue a join token (and, for HA, upload certs) on the primary."""
    pfx = sudo_prefix(primary)

    @retry(
        retries=attempts,
        delay=delay,
        backoff=True,
        retry_on=(ShepherdError,),
        on_retry=lambda n, e: log.warning("join command attempt %d/%d failed: %s", n, attempts, e),
    )
    def _join_command() -> JoinInfo:
        res = transport.execute(primary, f"{pfx}kubeadm token create --print-join-command")
        if not res.ok:
            raise JoinInfoError(f"kubeadm token create failed: {res.stderr.strip()}")
        return parse_join_command(res.stdout)

    try:
        info = _join_command()
    except RetryError as exc:
        raise JoinInfoError(f"[{primary.label}] Failed to get join command: {exc.__cause__}") from exc

    if not ha:
        return info

    res = transport.execute(primary, f"{pfx}kubeadm init phase upload-certs --upload-certs")
    if not res.ok:
        raise JoinInfoError(f"[{primary.label}] upload-certs failed: {res.stderr.strip()}")
    key = parse_certificate_key(res.stdout)
    log.info("Join info extracted (HA, certificate key uploaded)")
    return JoinInfo(info.address, info.token, info.ca_cert_hash, certificate_key=key)
