# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kubeshepherd/transport/ssh.py
from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Dict, Iterable, Optional

import paramiko

from ..errors import ConnectivityError, TransferError
from ..topology.address import NodeAddress
from .context import HostKeyPolicy, TransportContext
from .interface import CommandResult

log = logging.getLogger("kubeshepherd")

_KEY_CLASSES = (
    paramiko.Ed25519Key,
    paramiko.RSAKey,
    paramiko.ECDSAKey,
)


def _known_hosts_name(host: str, port: int) -> str:
    if port == 22:
        return host
    return f"[{host}]:{port}"


class SSHTransport:
    """
    Short-lived paramiko connections, one per call.

    Nothing is kept open between calls: every execute / copy opens a
    fresh client and closes it before returning.
    """

    def __init__(self, ctx: TransportContext):
        self.ctx = ctx
        self._known_hosts_lock = threading.Lock()
        self._pkey: Optional[paramiko.PKey] = None
        self._pkey_loaded = False

    # ------------- connection helpers -------------

    def _load_pkey(self) -> Optional[paramiko.PKey]:
        if self._pkey_loaded:
            return self._pkey
        self._pkey_loaded = True
        path = self.ctx.private_key_path
        if not path:
            return None
        for key_cls in _KEY_CLASSES:
            try:
                self._pkey = key_cls.from_private_key_file(str(path))
                break
            except paramiko.SSHException:
                continue
        if self._pkey is None:
            log.warning("Could not load SSH key %s; falling back to agent/password", path)
        return self._pkey

    def _missing_key_policy(self) -> paramiko.MissingHostKeyPolicy:
        if self.ctx.host_key_policy is HostKeyPolicy.STRICT:
            return paramiko.RejectPolicy()
        return paramiko.AutoAddPolicy()

    def _remember_host_key(self, client: paramiko.SSHClient, node: NodeAddress) -> None:
        path = self.ctx.known_hosts_path
        if path is None:
            return
        key = client.get_transport().get_remote_server_key()
        name = _known_hosts_name(node.host, self.ctx.port)
        with self._known_hosts_lock:
            known = paramiko.HostKeys()
            if Path(path).exists():
                known.load(str(path))
            if known.lookup(name) is None:
                known.add(name, key.get_name(), key)
                known.save(str(path))

    def _connect(self, node: NodeAddress) -> paramiko.SSHClient:
        client = paramiko.SSHClient()
        kh = self.ctx.known_hosts_path
        if self.ctx.host_key_policy is not HostKeyPolicy.INSECURE and kh and Path(kh).exists():
            client.load_host_keys(str(kh))
        client.set_missing_host_key_policy(self._missing_key_policy())

        pkey = self._load_pkey()
        try:
            client.connect(
                hostname=node.host,
                port=self.ctx.port,
                username=node.principal,
                password=self.ctx.password if not pkey else None,
                pkey=pkey,
                timeout=self.ctx.connect_timeout,
                allow_agent=True,
                look_for_keys=True,
            )
        except (paramiko.SSHException, OSError) as exc:
            client.close()
            raise ConnectivityError(
                f"SSH connection failed ({node}:{self.ctx.port}): {exc}",
                {node.label: str(exc)},
            ) from exc

        if self.ctx.host_key_policy is HostKeyPolicy.ACCEPT_NEW:
            self._remember_host_key(client, node)
        return client

    # ------------- public API -------------

    def execute(
        self,
        node: NodeAddress,
        command: str,
        *,
        timeout: float | None = None,
    ) -> CommandResult:
        """
        Run *command* and block until it returns.

        A non-zero remote exit code is returned, not raised. Only a failure
        of the SSH call itself raises :class:`ConnectivityError`.
        """
        log.debug("[%s] $ %s", node.label, command)
        client = self._connect(node)
        try:
            _, stdout, stderr = client.exec_command(command, timeout=timeout)
            out = stdout.read().decode("utf-8", "replace")
            err = stderr.read().decode("utf-8", "replace")
            rc = stdout.channel.recv_exit_status()
        except (paramiko.SSHException, OSError) as exc:
            raise ConnectivityError(
                f"[{node.label}] command failed to run: {exc}", {node.label: str(exc)}
            ) from exc
        finally:
            client.close()
        return CommandResult(stdout=out, stderr=err, exit_code=rc)

    def copy_to(self, node: NodeAddress, local_path: Path, remote_path: str) -> None:
        client = self._connect(node)
        try:
            sftp = client.open_sftp()
            try:
                sftp.put(str(local_path), remote_path)
            finally:
                sftp.close()
        except (paramiko.SSHException, OSError) as exc:
            raise TransferError(
                f"[{node.label}] copy {local_path} -> {remote_path} failed: {exc}"
            ) from exc
        finally:
            client.close()

    def copy_from(self, node: NodeAddress, remote_path: str, local_path: Path) -> None:
        client = self._connect(node)
        try:
            sftp = client.open_sftp()
            try:
                sftp.get(remote_path, str(local_path))
            finally:
                sftp.close()
        except (paramiko.SSHException, OSError) as exc:
            raise TransferError(
                f"[{node.label}] copy {remote_path} -> {local_path} failed: {exc}"
            ) from exc
        finally:
            client.close()

    def put_text(self, node: NodeAddress, content: str, remote_path: str, mode: int = 0o600) -> None:
        client = self._connect(node)
        try:
            sftp = client.open_sftp()
            try:
                with sftp.open(remote_path, "w") as f:
                    f.write(content)
                sftp.chmod(remote_path, mode)
            finally:
                sftp.close()
        except (paramiko.SSHException, OSError) as exc:
            raise TransferError(f"[{node.label}] write {remote_path} failed: {exc}") from exc
        finally:
            client.close()

    def check_connectivity(self, node: NodeAddress) -> None:
        """
        ``echo ok`` on the node and, for non-root users, ``sudo -n true``.

        Missing passwordless sudo is reported here rather than half way
        through an operation.
        """
        res = self.execute(node, "echo ok")
        if not res.ok:
            raise ConnectivityError(
                f"[{node.label}] SSH check failed: {res.stderr.strip()}",
                {node.label: res.stderr.strip() or f"exit {res.exit_code}"},
            )
        if node.is_root:
            return
        res = self.execute(node, "sudo -n true")
        if not res.ok:
            msg = f"sudo -n failed, NOPASSWD sudo required for {node.principal}"
            detail = res.stderr.strip()
            raise ConnectivityError(
                f"[{node.label}] {msg}" + (f": {detail}" if detail else ""),
                {node.label: msg},
            )


def check_all(transport, nodes: Iterable[NodeAddress]) -> None:
    """
    Check every node and raise one ConnectivityError naming all failures.
    """
    failures: Dict[str, str] = {}
    for node in nodes:
        try:
            transport.check_connectivity(node)
            log.info("  [%s] SSH OK", node.label)
        except ConnectivityError as exc:
            log.error("  %s", exc)
            failures[node.label] = exc.failures.get(node.label, str(exc))
    if failures:
        raise ConnectivityError(
            "SSH connectivity check failed for: " + ", ".join(sorted(failures)),
            failures,
        )
