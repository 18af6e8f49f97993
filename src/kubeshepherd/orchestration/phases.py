# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kubeshepherd/orchestration/phases.py
from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional, Sequence

from ..checkpoint.store import StepStatus
from ..errors import CheckpointError, ShepherdError
from ..observers.events import (
    NodeStepFailed,
    NodeStepStarted,
    NodeStepSucceeded,
    PhaseCompleted,
    PhaseSkipped,
    PhaseStarted,
)
from ..topology.address import NodeAddress
from .context import OperationContext

log = logging.getLogger("kubeshepherd")

NodeAction = Callable[[OperationContext, NodeAddress], None]
StepNamer = Callable[[NodeAddress], str]


class PhaseKind(str, Enum):
    SEQUENTIAL = "sequential"
    PARALLEL = "parallel"
    SINGLE = "single"


@dataclass
class Phase:
    """
    One ordered stage of an operation.

    ``action`` raises a ShepherdError to signal a node failure. ``step``
    names the checkpoint step for a node; phases without it are re-run
    on every invocation.
    """

    name: str
    kind: PhaseKind
    nodes: Sequence[NodeAddress]
    action: NodeAction
    step: Optional[StepNamer] = None
    description: str = ""

    def __post_init__(self) -> None:
        if self.kind is PhaseKind.SINGLE and len(self.nodes) != 1:
            raise ValueError(f"single-node phase {self.name!r} needs exactly one node")


class NodeStatus(str, Enum):
    DONE = "done"
    SKIPPED = "skipped"
    FAILED = "failed"
    NOT_ATTEMPTED = "not_attempted"


@dataclass
class NodeOutcome:
    node: NodeAddress
    status: NodeStatus
    error: Optional[str] = None
    duration_ms: int = 0


@dataclass
class PhaseResult:
    name: str
    kind: PhaseKind
    outcomes: List[NodeOutcome] = field(default_factory=list)

    @property
    def failed(self) -> List[NodeOutcome]:
        return [o for o in self.outcomes if o.status is NodeStatus.FAILED]

    @property
    def ok(self) -> bool:
        return not self.failed


@dataclass
class OperationReport:
    operation: str
    phases: List[PhaseResult] = field(default_factory=list)
    halted: bool = False        # a sequential/single phase failed, later phases never ran
    error: Optional[str] = None
    health_warnings: int = 0

    @property
    def ok(self) -> bool:
        return self.error is None and all(p.ok for p in self.phases)

    @property
    def failed_nodes(self) -> List[str]:
        return [o.node.label for p in self.phases for o in p.failed]

    @property
    def succeeded_nodes(self) -> List[str]:
        return [
            o.node.label
            for p in self.phases
            for o in p.outcomes
            if o.status in (NodeStatus.DONE, NodeStatus.SKIPPED)
        ]

    def summary(self) -> str:
        done = sum(1 for p in self.phases for o in p.outcomes if o.status is NodeStatus.DONE)
        skipped = sum(1 for p in self.phases for o in p.outcomes if o.status is NodeStatus.SKIPPED)
        failed = len(self.failed_nodes)
        return f"DONE={done} SKIPPED={skipped} FAILED={failed} WARNINGS={self.health_warnings}"


def render_plan(operation: str, phases: Sequence[Phase]) -> str:
    """Text shown by --dry-run; nothing is executed."""
    lines = [f"Planned phases for {operation}:"]
    n = 0
    for phase in phases:
        if not phase.nodes:
            continue
        n += 1
        nodes = ", ".join(str(node) for node in phase.nodes)
        desc = f" - {phase.description}" if phase.description else ""
        lines.append(f"  {n}. {phase.name} [{phase.kind.value}] {nodes}{desc}")
    return "\n".join(lines)


class PhaseSequencer:
    def __init__(self, ctx: OperationContext):
        self.ctx = ctx

    def run(self, phases: Sequence[Phase]) -> OperationReport:
        report = OperationReport(operation=self.ctx.operation)
        for phase in phases:
            if not phase.nodes:
                continue
            result = self.run_phase(phase)
            report.phases.append(result)
            if not result.ok:
                if phase.kind is PhaseKind.PARALLEL:
                    log.error(
                        "Phase %s: %d node(s) failed: %s",
                        phase.name,
                        len(result.failed),
                        ", ".join(o.node.label for o in result.failed),
                    )
                else:
                    report.halted = True
                log.error("Phase %s failed; stopping", phase.name)
                break
        return report

    def run_phase(self, phase: Phase) -> PhaseResult:
        ctx = self.ctx
        ctx.emit(PhaseStarted, phase=phase.name, kind=phase.kind.value, nodes=[n.label for n in phase.nodes])
        log.info("Phase %s (%s): %s", phase.name, phase.kind.value, ", ".join(n.label for n in phase.nodes))
        result = PhaseResult(name=phase.name, kind=phase.kind)

        if phase.kind is PhaseKind.PARALLEL:
            with ThreadPoolExecutor(max_workers=len(phase.nodes), thread_name_prefix=phase.name) as pool:
                futures = [pool.submit(self._run_node, phase, node) for node in phase.nodes]
                # barrier: every node reaches a terminal state first
                result.outcomes = [f.result() for f in futures]
        else:
            for i, node in enumerate(phase.nodes):
                outcome = self._run_node(phase, node)
                result.outcomes.append(outcome)
                if outcome.status is NodeStatus.FAILED:
                    result.outcomes.extend(
                        NodeOutcome(node=rest, status=NodeStatus.NOT_ATTEMPTED)
                        for rest in phase.nodes[i + 1:]
                    )
                    break

        ctx.emit(PhaseCompleted, phase=phase.name, ok=result.ok, failed=[o.node.label for o in result.failed])
        return result

    def _run_node(self, phase: Phase, node: NodeAddress) -> NodeOutcome:
        ctx = self.ctx
        step = phase.step(node) if phase.step else None
        if step and ctx.checkpoint.is_step_done(step):
            log.info("  [%s] %s... (skipped, resumed)", node.label, phase.name)
            ctx.emit(PhaseSkipped, phase=phase.name, node=node.label, step=step)
            return NodeOutcome(node=node, status=NodeStatus.SKIPPED)

        if step:
            ctx.checkpoint.set_step(step, StepStatus.RUNNING)
        ctx.emit(NodeStepStarted, phase=phase.name, node=node.label, step=step)
        t0 = time.time()
        try:
            phase.action(ctx, node)
        except CheckpointError:
            raise
        except ShepherdError as exc:
            if step:
                ctx.checkpoint.set_step(step, StepStatus.FAILED)
            log.error("  [%s] %s failed: %s", node.label, phase.name, exc)
            ctx.emit(NodeStepFailed, phase=phase.name, node=node.label, error=str(exc))
            return NodeOutcome(node=node, status=NodeStatus.FAILED, error=str(exc))
        except Exception as exc:
            error = f"{type(exc).__name__}: {exc}"
            if step:
                ctx.checkpoint.set_step(step, StepStatus.FAILED)
            log.exception("  [%s] %s failed unexpectedly", node.label, phase.name)
            ctx.emit(NodeStepFailed, phase=phase.name, node=node.label, error=error)
            return NodeOutcome(node=node, status=NodeStatus.FAILED, error=error)

        duration_ms = int((time.time() - t0) * 1000)
        if step:
            ctx.checkpoint.set_step(step, StepStatus.DONE)
        ctx.emit(NodeStepSucceeded, phase=phase.name, node=node.label, duration_ms=duration_ms)
        return NodeOutcome(node=node, status=NodeStatus.DONE, duration_ms=duration_ms)
