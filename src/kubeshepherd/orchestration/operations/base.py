# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kubeshepherd/orchestration/operations/base.py
from __future__ import annotations

import logging
from typing import List, Optional, Sequence

from ...bundle.builder import BundleBuilder, transfer
from ...bundle.collaborators import detect_platform
from ...errors import CheckpointError, CollaboratorNotFoundError, RemoteTaskError, ShepherdError
from ...health.verifier import HealthReport, HealthVerifier
from ...logging.log import audit
from ...observers.events import OperationStarted, OperationSummary
from ...topology.address import NodeAddress
from ...transport.context import log_host_key_policy
from ...transport.interface import sudo_prefix
from ...transport.ssh import check_all
from ..context import OperationContext
from ..passthrough import quote_args
from ..phases import OperationReport, Phase, PhaseSequencer, render_plan

log = logging.getLogger("kubeshepherd")


class OperationDriver:
    """
    Shared flow of every cluster operation.

    Subclasses declare :meth:`phases`; this class owns the rest:
    checkpoint init/resume, connectivity, bundle distribution, the
    sequencer, post checks, cleanup, summary and audit.
    """

    name: str = "operation"
    needs_bundle: bool = True

    def __init__(
        self,
        ctx: OperationContext,
        *,
        builder: Optional[BundleBuilder] = None,
        verifier: Optional[HealthVerifier] = None,
    ):
        self.ctx = ctx
        self.builder = builder
        self.verifier = verifier or HealthVerifier(ctx.transport, bus=ctx.bus, run_ctx=ctx.run_ctx)
        self._phases: Optional[List[Phase]] = None

    # ------------- hooks for subclasses -------------

    def build_phases(self) -> List[Phase]:
        raise NotImplementedError

    def target_nodes(self) -> Sequence[NodeAddress]:
        """Nodes that must be reachable (and receive the bundle)."""
        return self.ctx.topology.all_nodes

    def bundle_nodes(self) -> Sequence[NodeAddress]:
        return self.target_nodes()

    def control_node(self) -> NodeAddress:
        return self.ctx.topology.primary

    def expected_node_count(self) -> Optional[int]:
        """Hard post-check; None disables it."""
        return None

    def validate(self) -> None:
        """Reject bad option combinations before anything runs."""

    def before_phases(self) -> None:
        pass

    def summarize(self, report: OperationReport) -> None:
        pass

    def audit_details(self, report: OperationReport) -> str:
        return report.summary()

    # ------------- helpers for subclasses -------------

    @property
    def phases(self) -> List[Phase]:
        if self._phases is None:
            self._phases = self.build_phases()
        return self._phases

    def bundle_command(self, node: NodeAddress, subcommand: str, args: Sequence[str] = ()) -> str:
        cmd = f"{sudo_prefix(node)}sh {self.ctx.bundle_path(node)} {subcommand}"
        if args:
            cmd += " " + quote_args(args)
        return cmd

    def run_task(self, node: NodeAddress, command: str, description: str) -> None:
        self.ctx.task_runner().run(node, command, description).raise_for_status()

    def plan(self) -> str:
        return render_plan(self.name, self.phases)

    # ------------- flow -------------

    def _start_checkpoint(self) -> Optional[str]:
        store = self.ctx.checkpoint
        if self.ctx.options.resume:
            path = store.find_resumable(self.name)
            if path is not None:
                store.load(path)
                return str(path)
            log.info("No resumable %s checkpoint found; starting fresh", self.name)
        store.init(self.name)
        return None

    def _distribute_bundle(self) -> None:
        if not self.needs_bundle:
            return
        if self.builder is None:
            raise CollaboratorNotFoundError(
                f"{self.name} needs the setup-k8s bundle; set bundle_root or KUBESHEPHERD_BUNDLE_ROOT"
            )
        family = detect_platform(self.ctx.transport, self.ctx.topology.primary)
        bundle = self.builder.build(family)
        transfer(self.ctx, self.bundle_nodes(), bundle)

    def health_check(self) -> HealthReport:
        return self.verifier.check(self.control_node())

    def _post_checks(self, report: OperationReport) -> None:
        health = self.health_check()
        report.health_warnings += health.warnings
        expected = self.expected_node_count()
        if expected is not None:
            self.verifier.verify_node_count(self.control_node(), expected)

    def run(self) -> OperationReport:
        ctx = self.ctx
        self.validate()
        if ctx.options.dry_run:
            log.info("%s", self.plan())
            return OperationReport(operation=self.name)

        resumed = self._start_checkpoint()
        ctx.emit(
            OperationStarted,
            operation=self.name,
            nodes=[str(n) for n in self.target_nodes()],
            resumed_from=resumed,
        )

        report = OperationReport(operation=self.name)
        try:
            tctx = getattr(ctx.transport, "ctx", None)
            if tctx is not None:
                log_host_key_policy(tctx)
            ctx.open_session()
            check_all(ctx.transport, self.target_nodes())
            self._distribute_bundle()
            self.before_phases()

            report = PhaseSequencer(ctx).run(self.phases)
            if not report.halted:
                self._post_checks(report)
        except CheckpointError:
            raise
        except ShepherdError as exc:
            log.error("%s failed: %s", self.name, exc)
            report.error = str(exc)
            if isinstance(exc, RemoteTaskError) and exc.log:
                log.debug("remote log:\n%s", exc.log)
        except Exception as exc:
            log.exception("%s failed unexpectedly", self.name)
            report.error = f"{type(exc).__name__}: {exc}"
        finally:
            ctx.remove_staging_dirs()
            ctx.cleanup.run_all()

        self.summarize(report)
        status = "completed" if report.ok else "failed"
        if report.ok:
            ctx.checkpoint.complete()
        else:
            ctx.checkpoint.fail()
        log.info("%s %s: %s", self.name, status, report.summary())
        ctx.emit(
            OperationSummary,
            operation=self.name,
            status=status,
            succeeded=report.succeeded_nodes,
            failed=report.failed_nodes,
            error=report.error,
        )
        audit(self.name, status, report.error or self.audit_details(report))
        return report
