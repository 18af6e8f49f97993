# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kubeshepherd/observers/events.py

from __future__ import annotations
from dataclasses import dataclass, asdict, field
from typing import List, Dict, Any, Optional
from datetime import datetime, timezone
import uuid


# ---------------------------------------------------------------------
# Base context and helper
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class BaseEvent:
    ts: str           # ISO timestamp
    run_id: str       # correlates all events in a single invocation
    env: str          # operation: deploy/upgrade/remove/renew/backup/restore
    context: Optional[str]  # primary control-plane host

    def dict(self) -> Dict[str, Any]:
        return asdict(self)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds").replace("+00:00", "Z")


def new_ctx(env: str, context: Optional[str], run_id: Optional[str] = None) -> Dict[str, Any]:
    return {
        "ts": _now(),
        "run_id": run_id or str(uuid.uuid4()),
        "env": env,
        "context": context,
    }


def stamp(run_ctx: Dict[str, Any]) -> Dict[str, Any]:
    """Copy of *run_ctx* with a fresh timestamp."""
    return {**run_ctx, "ts": _now()}


# ---------------------------------------------------------------------
# Operation lifecycle
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class OperationStarted(BaseEvent):
    operation: str
    nodes: List[str]
    resumed_from: Optional[str] = None

@dataclass(frozen=True)
class OperationSummary(BaseEvent):
    operation: str
    status: str                  # "completed" | "failed"
    succeeded: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    error: Optional[str] = None


# ---------------------------------------------------------------------
# Phases
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class PhaseStarted(BaseEvent):
    phase: str
    kind: str
    nodes: List[str]

@dataclass(frozen=True)
class PhaseCompleted(BaseEvent):
    phase: str
    ok: bool
    failed: List[str] = field(default_factory=list)

@dataclass(frozen=True)
class PhaseSkipped(BaseEvent):
    phase: str
    node: str
    step: str


# ---------------------------------------------------------------------
# Per-node steps
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class NodeStepStarted(BaseEvent):
    phase: str
    node: str
    step: Optional[str] = None

@dataclass(frozen=True)
class NodeStepSucceeded(BaseEvent):
    phase: str
    node: str
    duration_ms: int = 0

@dataclass(frozen=True)
class NodeStepFailed(BaseEvent):
    phase: str
    node: str
    error: str = ""

@dataclass(frozen=True)
class TaskProgress(BaseEvent):
    node: str
    elapsed_s: int
    line: str


# ---------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class HealthChecked(BaseEvent):
    node: str
    api_server_ready: bool
    etcd_healthy: bool
    not_ready_nodes: List[str] = field(default_factory=list)
    unhealthy_pods: List[str] = field(default_factory=list)
    warnings: int = 0
