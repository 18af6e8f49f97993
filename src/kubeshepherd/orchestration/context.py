# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kubeshepherd/orchestration/context.py
from __future__ import annotations

import itertools
import logging
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Optional

from ..bundle.builder import REMOTE_BUNDLE_NAME
from ..checkpoint.store import CheckpointStore
from ..observers.dispatcher import EventBus
from ..observers.events import BaseEvent, TaskProgress, new_ctx, stamp
from ..remote.task import (
    DEFAULT_POLL_INTERVAL,
    DEFAULT_TIMEOUT,
    Clock,
    RemoteTaskRunner,
    remove_staging_dir,
)
from ..topology.address import NodeAddress
from ..topology.models import Topology
from ..transport.context import close_session_known_hosts, open_session_known_hosts

log = logging.getLogger("kubeshepherd")


@dataclass
class OperationOptions:
    dry_run: bool = False
    resume: bool = False
    remote_timeout: float = DEFAULT_TIMEOUT
    poll_interval: float = DEFAULT_POLL_INTERVAL
    passthrough: List[str] = field(default_factory=list)
    # failed upgrade steps save node diagnostics here when set
    diagnostics_dir: Optional[Path] = None


@dataclass(frozen=True)
class RemoteStagingDir:
    node: NodeAddress
    remote_path: str


@dataclass(frozen=True)
class CleanupHandle:
    id: int
    name: str


class CleanupStack:
    """
    LIFO cleanup handlers tied to one operation.

    Every resource acquisition pushes its release; the normal release path
    pops it (or calls :meth:`release`, which runs and pops). Whatever is
    still on the stack runs on :meth:`run_all`.
    """

    def __init__(self) -> None:
        self._handlers: List[tuple[CleanupHandle, Callable[[], None]]] = []
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._handlers)

    def push(self, name: str, fn: Callable[[], None]) -> CleanupHandle:
        handle = CleanupHandle(next(self._ids), name)
        with self._lock:
            self._handlers.append((handle, fn))
        return handle

    def _take(self, handle: CleanupHandle) -> Optional[Callable[[], None]]:
        with self._lock:
            for i, (h, fn) in enumerate(self._handlers):
                if h == handle:
                    del self._handlers[i]
                    return fn
        return None

    def pop(self, handle: CleanupHandle) -> None:
        """Drop *handle* without running it; the resource was released normally."""
        self._take(handle)

    def release(self, handle: CleanupHandle) -> None:
        fn = self._take(handle)
        if fn is not None:
            self._run_one(handle, fn)

    @staticmethod
    def _run_one(handle: CleanupHandle, fn: Callable[[], None]) -> None:
        try:
            fn()
        except Exception as exc:
            log.warning("cleanup '%s' failed: %s", handle.name, exc)

    def run_all(self) -> None:
        while True:
            with self._lock:
                if not self._handlers:
                    return
                handle, fn = self._handlers.pop()
            log.debug("cleanup: %s", handle.name)
            self._run_one(handle, fn)


class OperationContext:
    """
    Everything one operation invocation needs, passed explicitly.

    Use it as a context manager: leaving the block (normally, by exception
    or by interrupt) runs whatever is left on the cleanup stack.
    """

    def __init__(
        self,
        operation: str,
        topology: Topology,
        transport,
        *,
        checkpoint: Optional[CheckpointStore] = None,
        bus: Optional[EventBus] = None,
        run_id: Optional[str] = None,
        options: Optional[OperationOptions] = None,
        clock: Optional[Clock] = None,
    ):
        self.operation = operation
        self.topology = topology
        self.transport = transport
        self.checkpoint = checkpoint or CheckpointStore()
        self.bus = bus or EventBus()
        self.options = options or OperationOptions()
        self.clock = clock
        self.run_ctx = new_ctx(env=operation, context=topology.primary.host, run_id=run_id)
        self.cleanup = CleanupStack()
        self.staging_dirs: Dict[NodeAddress, RemoteStagingDir] = {}
        self._staging_handles: Dict[NodeAddress, CleanupHandle] = {}
        self._staging_lock = threading.Lock()

    # ------------- lifecycle -------------

    def __enter__(self) -> "OperationContext":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.cleanup.run_all()

    def open_session(self) -> None:
        """Session known_hosts; torn down (and persisted) exactly once."""
        tctx = getattr(self.transport, "ctx", None)
        if tctx is None:
            return
        open_session_known_hosts(tctx, label=self.operation)
        self.cleanup.push("session known_hosts", lambda: close_session_known_hosts(tctx))

    # ------------- events -------------

    def emit(self, event_cls: type[BaseEvent], **fields) -> None:
        self.bus.emit(event_cls(**fields, **stamp(self.run_ctx)))

    # ------------- staging dirs -------------

    def add_staging_dir(self, node: NodeAddress, remote_path: str) -> RemoteStagingDir:
        staging = RemoteStagingDir(node=node, remote_path=remote_path)
        handle = self.cleanup.push(
            f"staging dir {node.label}:{remote_path}",
            lambda: remove_staging_dir(self.transport, node, remote_path),
        )
        with self._staging_lock:
            self.staging_dirs[node] = staging
            self._staging_handles[node] = handle
        return staging

    def remove_staging_dirs(self) -> None:
        with self._staging_lock:
            handles = list(self._staging_handles.items())
            self._staging_handles.clear()
            self.staging_dirs.clear()
        for _, handle in reversed(handles):
            self.cleanup.release(handle)

    def bundle_path(self, node: NodeAddress) -> str:
        return f"{self.staging_dirs[node].remote_path}/{REMOTE_BUNDLE_NAME}"

    # ------------- remote tasks -------------

    def _progress(self, node: NodeAddress, elapsed: int, line: str) -> None:
        self.emit(TaskProgress, node=node.label, elapsed_s=elapsed, line=line)

    def task_runner(self) -> RemoteTaskRunner:
        return RemoteTaskRunner(
            self.transport,
            timeout=self.options.remote_timeout,
            poll_interval=self.options.poll_interval,
            clock=self.clock,
            on_progress=self._progress,
            cleanup=self.cleanup,
        )
