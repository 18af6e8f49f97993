# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kubeshepherd/cli/app.py
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, List, NoReturn, Optional

import typer

from kubeshepherd.bundle.builder import BundleBuilder
from kubeshepherd.checkpoint.store import CheckpointStore
from kubeshepherd.config.loader import load_config
from kubeshepherd.config.models import ShepherdConfig
from kubeshepherd.errors import ShepherdError
from kubeshepherd.logging.log import init_logging
from kubeshepherd.observers.console import ConsoleObserver
from kubeshepherd.observers.dispatcher import EventBus
from kubeshepherd.observers.jsonfile import JsonFileObserver
from kubeshepherd.observers.logger import LoggerObserver
from kubeshepherd.orchestration.context import OperationContext, OperationOptions
from kubeshepherd.orchestration.operations import (
    BackupOperation,
    DeployOperation,
    OperationDriver,
    RemoveOperation,
    RenewOperation,
    RestoreOperation,
    UpgradeOperation,
)
from kubeshepherd.orchestration.operations.etcd import default_snapshot_path
from kubeshepherd.topology.address import normalize_node_list, parse_node_address
from kubeshepherd.topology.models import build_topology
from kubeshepherd.transport.context import HostKeyPolicy, TransportContext
from kubeshepherd.transport.credentials import (
    auto_discover_key,
    check_key_permissions,
    load_password_file,
)
from kubeshepherd.transport.ssh import SSHTransport

# ------------------------------------------------------------------------------
# CLI setup
# ------------------------------------------------------------------------------

app = typer.Typer(help="kubeshepherd: agentless Kubernetes cluster orchestration over SSH")

# unknown trailing flags are forwarded to the remote setup-k8s bundle
PASSTHROUGH = {"allow_extra_args": True, "ignore_unknown_options": True}


@dataclass
class CommonOptions:
    control_planes: str
    workers: Optional[str] = None
    ssh_user: Optional[str] = None
    ssh_port: Optional[int] = None
    ssh_key: Optional[Path] = None
    ssh_password_file: Optional[Path] = None
    ssh_host_key_check: Optional[HostKeyPolicy] = None
    ssh_known_hosts: Optional[Path] = None
    persist_known_hosts: Optional[Path] = None
    remote_timeout: Optional[float] = None
    poll_interval: Optional[float] = None
    resume: bool = False
    dry_run: bool = False
    config: Optional[Path] = None
    bundle_root: Optional[Path] = None
    verbose: bool = False
    collect_diagnostics: bool = False
    passthrough: List[str] = field(default_factory=list)


# ------------------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------------------

def build_transport_context(cfg: ShepherdConfig, opts: CommonOptions) -> TransportContext:
    ssh = cfg.ssh
    key = opts.ssh_key or ssh.key_path or auto_discover_key()
    if key is not None:
        key = Path(key).expanduser()
        if key.is_file():
            check_key_permissions(key)

    password = None
    password_file = opts.ssh_password_file or ssh.password_file
    if password_file is not None:
        password = load_password_file(Path(password_file).expanduser())

    return TransportContext(
        port=opts.ssh_port or ssh.port,
        private_key_path=key,
        password=password,
        host_key_policy=opts.ssh_host_key_check or ssh.host_key_policy,
        seed_known_hosts_path=opts.ssh_known_hosts or ssh.known_hosts,
        persist_known_hosts_path=opts.persist_known_hosts or ssh.persist_known_hosts,
        connect_timeout=ssh.connect_timeout,
        default_principal=opts.ssh_user or ssh.user,
    )


def _fail(message: str) -> NoReturn:
    typer.secho(f"ERROR: {message}", fg=typer.colors.RED, err=True)
    raise typer.Exit(code=1)


def execute(
    operation: str,
    opts: CommonOptions,
    make_driver: Callable[..., OperationDriver],
    confirm: Optional[Callable[[OperationDriver], bool]] = None,
) -> None:
    """
    Shared wiring for every command: config, logging, observers, SSH
    context, topology, then the operation driver.

    *confirm* gates destructive operations; returning False cancels the
    run before anything touches a node.
    """
    try:
        cfg = load_config(opts.config)
        if opts.bundle_root is not None:
            cfg.bundle_root = opts.bundle_root

        tctx = build_transport_context(cfg, opts)
        topology = build_topology(
            opts.control_planes,
            opts.workers,
            default_principal=tctx.default_principal,
        )
    except (ShepherdError, ValueError, OSError) as exc:
        _fail(str(exc))

    options = OperationOptions(
        dry_run=opts.dry_run,
        resume=opts.resume,
        remote_timeout=opts.remote_timeout or cfg.remote.timeout,
        poll_interval=opts.poll_interval or cfg.remote.poll_interval,
        passthrough=list(opts.passthrough),
        diagnostics_dir=Path(cfg.log_dir).expanduser() / "diagnostics" if opts.collect_diagnostics else None,
    )

    logger, run_id, log_path = init_logging(base_dir=Path(cfg.log_dir).expanduser(), verbose=opts.verbose)
    logger.debug("topology: %s", topology)

    observers = [LoggerObserver(logger)]
    if not opts.dry_run:
        observers += [
            ConsoleObserver(),
            JsonFileObserver(Path(cfg.log_dir).expanduser() / f"{run_id}.jsonl"),
        ]
    bus = EventBus(observers=observers)

    builder = BundleBuilder(Path(cfg.bundle_root)) if cfg.bundle_root else None

    with OperationContext(
        operation,
        topology,
        SSHTransport(tctx),
        checkpoint=CheckpointStore(Path(cfg.state_dir)),
        bus=bus,
        run_id=run_id,
        options=options,
    ) as ctx:
        try:
            driver = make_driver(ctx, builder=builder)
            if opts.dry_run:
                driver.validate()
                typer.echo(driver.plan())
                typer.echo("=== End of dry-run (no changes made) ===")
                return
            if confirm is not None:
                driver.validate()
                if not confirm(driver):
                    typer.echo("Operation cancelled.")
                    return
            report = driver.run()
        except (ShepherdError, ValueError) as exc:
            _fail(str(exc))

    typer.echo(f"{operation}: {report.summary()}")
    typer.echo(f"  Logs: {log_path}")
    if not report.ok:
        if report.error:
            typer.secho(f"ERROR: {report.error}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)


def _common(ctx: typer.Context, **kw) -> CommonOptions:
    return CommonOptions(passthrough=list(ctx.args), **kw)


def confirm_removal(driver: RemoveOperation) -> bool:
    typer.secho(
        f"The following {len(driver.targets)} node(s) will be removed from the cluster:",
        fg=typer.colors.YELLOW,
    )
    for node in driver.targets:
        typer.secho(f"  - {node}", fg=typer.colors.YELLOW)
    return typer.confirm("Are you sure you want to continue?", default=False)


# ------------------------------------------------------------------------------
# Shared options
# ------------------------------------------------------------------------------

CONTROL_PLANES_OPT = typer.Option(
    ...,
    "--control-planes",
    help="Comma-separated control-plane nodes (user@host or host); the first is the primary",
)
WORKERS_OPT = typer.Option(None, "--workers", help="Comma-separated worker nodes")
SSH_USER_OPT = typer.Option(None, "--ssh-user", help="Default SSH user for nodes without user@")
SSH_PORT_OPT = typer.Option(None, "--ssh-port")
SSH_KEY_OPT = typer.Option(None, "--ssh-key", help="Private key (default: ~/.ssh/id_ed25519, id_rsa, id_ecdsa)")
SSH_PASSWORD_FILE_OPT = typer.Option(None, "--ssh-password-file", help="File holding the SSH password (mode 600)")
HOST_KEY_OPT = typer.Option(None, "--ssh-host-key-check", help="strict, accept-new or insecure")
KNOWN_HOSTS_OPT = typer.Option(None, "--ssh-known-hosts", help="Seed known_hosts file")
PERSIST_OPT = typer.Option(None, "--persist-known-hosts", help="Save learned host keys here")
REMOTE_TIMEOUT_OPT = typer.Option(None, "--remote-timeout", help="Seconds to wait for each remote task")
POLL_INTERVAL_OPT = typer.Option(None, "--poll-interval", help="Seconds between remote task polls")
RESUME_OPT = typer.Option(False, "--resume", help="Continue the last interrupted run of this operation")
DRY_RUN_OPT = typer.Option(False, "--dry-run", help="Show the phase plan and exit")
CONFIG_OPT = typer.Option(None, "--config", help="kubeshepherd YAML config")
BUNDLE_ROOT_OPT = typer.Option(None, "--bundle-root", help="Directory with setup-k8s.sh, common/ and distros/")
VERBOSE_OPT = typer.Option(False, "--verbose", "-v")


# ------------------------------------------------------------------------------
# Commands
# ------------------------------------------------------------------------------

@app.command(context_settings=PASSTHROUGH)
def deploy(
    ctx: typer.Context,
    control_planes: str = CONTROL_PLANES_OPT,
    workers: Optional[str] = WORKERS_OPT,
    ssh_user: Optional[str] = SSH_USER_OPT,
    ssh_port: Optional[int] = SSH_PORT_OPT,
    ssh_key: Optional[Path] = SSH_KEY_OPT,
    ssh_password_file: Optional[Path] = SSH_PASSWORD_FILE_OPT,
    ssh_host_key_check: Optional[HostKeyPolicy] = HOST_KEY_OPT,
    ssh_known_hosts: Optional[Path] = KNOWN_HOSTS_OPT,
    persist_known_hosts: Optional[Path] = PERSIST_OPT,
    remote_timeout: Optional[float] = REMOTE_TIMEOUT_OPT,
    poll_interval: Optional[float] = POLL_INTERVAL_OPT,
    resume: bool = RESUME_OPT,
    dry_run: bool = DRY_RUN_OPT,
    config: Optional[Path] = CONFIG_OPT,
    bundle_root: Optional[Path] = BUNDLE_ROOT_OPT,
    verbose: bool = VERBOSE_OPT,
):
    """Bootstrap a cluster: init, join control planes, join workers."""
    opts = _common(ctx, **{k: v for k, v in locals().items() if k != "ctx"})
    execute("deploy", opts, DeployOperation)


@app.command(context_settings=PASSTHROUGH)
def upgrade(
    ctx: typer.Context,
    kubernetes_version: str = typer.Option(..., "--kubernetes-version", help="Target version (MAJOR.MINOR.PATCH)"),
    skip_drain: bool = typer.Option(False, "--skip-drain"),
    auto_step: bool = typer.Option(False, "--auto-step", help="Step through intermediate minor versions"),
    no_rollback: bool = typer.Option(False, "--no-rollback", help="Leave failed nodes as they are"),
    collect_diagnostics: bool = typer.Option(
        False, "--collect-diagnostics", help="Save kubelet, containerd and event logs from a node whose upgrade fails"
    ),
    control_planes: str = CONTROL_PLANES_OPT,
    workers: Optional[str] = WORKERS_OPT,
    ssh_user: Optional[str] = SSH_USER_OPT,
    ssh_port: Optional[int] = SSH_PORT_OPT,
    ssh_key: Optional[Path] = SSH_KEY_OPT,
    ssh_password_file: Optional[Path] = SSH_PASSWORD_FILE_OPT,
    ssh_host_key_check: Optional[HostKeyPolicy] = HOST_KEY_OPT,
    ssh_known_hosts: Optional[Path] = KNOWN_HOSTS_OPT,
    persist_known_hosts: Optional[Path] = PERSIST_OPT,
    remote_timeout: Optional[float] = REMOTE_TIMEOUT_OPT,
    poll_interval: Optional[float] = POLL_INTERVAL_OPT,
    resume: bool = RESUME_OPT,
    dry_run: bool = DRY_RUN_OPT,
    config: Optional[Path] = CONFIG_OPT,
    bundle_root: Optional[Path] = BUNDLE_ROOT_OPT,
    verbose: bool = VERBOSE_OPT,
):
    """Rolling upgrade: control planes first, then workers, one node at a time."""
    opts = _common(
        ctx,
        **{
            k: v
            for k, v in locals().items()
            if k not in ("ctx", "kubernetes_version", "skip_drain", "auto_step", "no_rollback")
        },
    )

    def make(op_ctx, **kw):
        return UpgradeOperation(
            op_ctx,
            target_version=kubernetes_version,
            skip_drain=skip_drain,
            auto_step=auto_step,
            rollback=not no_rollback,
            **kw,
        )

    execute("upgrade", opts, make)


@app.command(context_settings=PASSTHROUGH)
def remove(
    ctx: typer.Context,
    nodes: Optional[str] = typer.Option(None, "--nodes", help="Nodes to remove (default: every worker)"),
    force: bool = typer.Option(False, "--force", help="Skip the confirmation prompt"),
    control_planes: str = CONTROL_PLANES_OPT,
    workers: Optional[str] = WORKERS_OPT,
    ssh_user: Optional[str] = SSH_USER_OPT,
    ssh_port: Optional[int] = SSH_PORT_OPT,
    ssh_key: Optional[Path] = SSH_KEY_OPT,
    ssh_password_file: Optional[Path] = SSH_PASSWORD_FILE_OPT,
    ssh_host_key_check: Optional[HostKeyPolicy] = HOST_KEY_OPT,
    ssh_known_hosts: Optional[Path] = KNOWN_HOSTS_OPT,
    persist_known_hosts: Optional[Path] = PERSIST_OPT,
    remote_timeout: Optional[float] = REMOTE_TIMEOUT_OPT,
    poll_interval: Optional[float] = POLL_INTERVAL_OPT,
    resume: bool = RESUME_OPT,
    dry_run: bool = DRY_RUN_OPT,
    config: Optional[Path] = CONFIG_OPT,
    bundle_root: Optional[Path] = BUNDLE_ROOT_OPT,
    verbose: bool = VERBOSE_OPT,
):
    """Drain, delete and reset nodes."""
    opts = _common(ctx, **{k: v for k, v in locals().items() if k not in ("ctx", "nodes", "force")})

    def make(op_ctx, **kw):
        targets = None
        if nodes:
            targets = [parse_node_address(n) for n in normalize_node_list(nodes)]
        return RemoveOperation(op_ctx, targets=targets, **kw)

    execute("remove", opts, make, confirm=None if force else confirm_removal)


@app.command(context_settings=PASSTHROUGH)
def renew(
    ctx: typer.Context,
    certs: str = typer.Option("all", "--certs", help="'all' or a comma-separated list of certificates"),
    check_only: bool = typer.Option(False, "--check-only", help="Only show certificate expiration"),
    control_planes: str = CONTROL_PLANES_OPT,
    ssh_user: Optional[str] = SSH_USER_OPT,
    ssh_port: Optional[int] = SSH_PORT_OPT,
    ssh_key: Optional[Path] = SSH_KEY_OPT,
    ssh_password_file: Optional[Path] = SSH_PASSWORD_FILE_OPT,
    ssh_host_key_check: Optional[HostKeyPolicy] = HOST_KEY_OPT,
    ssh_known_hosts: Optional[Path] = KNOWN_HOSTS_OPT,
    persist_known_hosts: Optional[Path] = PERSIST_OPT,
    remote_timeout: Optional[float] = REMOTE_TIMEOUT_OPT,
    poll_interval: Optional[float] = POLL_INTERVAL_OPT,
    resume: bool = RESUME_OPT,
    dry_run: bool = DRY_RUN_OPT,
    config: Optional[Path] = CONFIG_OPT,
    bundle_root: Optional[Path] = BUNDLE_ROOT_OPT,
    verbose: bool = VERBOSE_OPT,
):
    """Renew (or check) kubeadm certificates on every control plane."""
    opts = _common(ctx, **{k: v for k, v in locals().items() if k not in ("ctx", "certs", "check_only")})

    def make(op_ctx, **kw):
        return RenewOperation(op_ctx, certs=certs, check_only=check_only, **kw)

    execute("renew", opts, make)


@app.command(context_settings=PASSTHROUGH)
def backup(
    ctx: typer.Context,
    snapshot_path: Optional[Path] = typer.Option(None, "--snapshot-path", help="Local download path"),
    control_planes: str = CONTROL_PLANES_OPT,
    ssh_user: Optional[str] = SSH_USER_OPT,
    ssh_port: Optional[int] = SSH_PORT_OPT,
    ssh_key: Optional[Path] = SSH_KEY_OPT,
    ssh_password_file: Optional[Path] = SSH_PASSWORD_FILE_OPT,
    ssh_host_key_check: Optional[HostKeyPolicy] = HOST_KEY_OPT,
    ssh_known_hosts: Optional[Path] = KNOWN_HOSTS_OPT,
    persist_known_hosts: Optional[Path] = PERSIST_OPT,
    remote_timeout: Optional[float] = REMOTE_TIMEOUT_OPT,
    poll_interval: Optional[float] = POLL_INTERVAL_OPT,
    dry_run: bool = DRY_RUN_OPT,
    config: Optional[Path] = CONFIG_OPT,
    bundle_root: Optional[Path] = BUNDLE_ROOT_OPT,
    verbose: bool = VERBOSE_OPT,
):
    """etcd snapshot from the primary control plane, downloaded locally."""
    opts = _common(ctx, **{k: v for k, v in locals().items() if k not in ("ctx", "snapshot_path")})
    path = snapshot_path or default_snapshot_path()

    def make(op_ctx, **kw):
        return BackupOperation(op_ctx, snapshot_path=path, **kw)

    execute("backup", opts, make)


@app.command(context_settings=PASSTHROUGH)
def restore(
    ctx: typer.Context,
    snapshot_path: Path = typer.Option(..., "--snapshot-path", help="Local snapshot to upload and restore"),
    control_planes: str = CONTROL_PLANES_OPT,
    ssh_user: Optional[str] = SSH_USER_OPT,
    ssh_port: Optional[int] = SSH_PORT_OPT,
    ssh_key: Optional[Path] = SSH_KEY_OPT,
    ssh_password_file: Optional[Path] = SSH_PASSWORD_FILE_OPT,
    ssh_host_key_check: Optional[HostKeyPolicy] = HOST_KEY_OPT,
    ssh_known_hosts: Optional[Path] = KNOWN_HOSTS_OPT,
    persist_known_hosts: Optional[Path] = PERSIST_OPT,
    remote_timeout: Optional[float] = REMOTE_TIMEOUT_OPT,
    poll_interval: Optional[float] = POLL_INTERVAL_OPT,
    dry_run: bool = DRY_RUN_OPT,
    config: Optional[Path] = CONFIG_OPT,
    bundle_root: Optional[Path] = BUNDLE_ROOT_OPT,
    verbose: bool = VERBOSE_OPT,
):
    """Upload an etcd snapshot to the primary control plane and restore it."""
    opts = _common(ctx, **{k: v for k, v in locals().items() if k not in ("ctx", "snapshot_path")})

    def make(op_ctx, **kw):
        return RestoreOperation(op_ctx, snapshot_path=snapshot_path, **kw)

    execute("restore", opts, make)


if __name__ == "__main__":
    app()
