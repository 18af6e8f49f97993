# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kubeshepherd/remote/task.py
from __future__ import annotations

import logging
import re
import shlex
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Optional, Protocol

from ..errors import (
    ConnectivityError,
    RemoteTaskError,
    RemoteTaskTimeout,
    ShepherdError,
    TransferError,
)
from ..topology.address import NodeAddress

log = logging.getLogger("kubeshepherd")

DEFAULT_TIMEOUT = 600
DEFAULT_POLL_INTERVAL = 10

_EXIT_CODE_RE = re.compile(r"^[0-9]+$")


class Clock(Protocol):
    def monotonic(self) -> float: ...

    def sleep(self, seconds: float) -> None: ...


class SystemClock:
    def monotonic(self) -> float:
        return time.monotonic()

    def sleep(self, seconds: float) -> None:
        time.sleep(seconds)


class TaskState(str, Enum):
    CREATED = "created"
    LAUNCHED = "launched"
    POLLING = "polling"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    TIMED_OUT = "timed_out"

    @property
    def terminal(self) -> bool:
        return self in (TaskState.SUCCEEDED, TaskState.FAILED, TaskState.TIMED_OUT)


@dataclass
class RemoteTask:
    node: NodeAddress
    command: str
    description: str
    staging_dir: Optional[str] = None
    started_at: float = 0.0
    state: TaskState = TaskState.CREATED
    last_poll_error: Optional[str] = None
    last_line: str = ""
    cleanup_handle: Optional[Any] = None

    @property
    def remote_script_path(self) -> str:
        return f"{self.staging_dir}/run.sh"

    @property
    def log_path(self) -> str:
        return f"{self.staging_dir}/run.log"

    @property
    def exit_code_path(self) -> str:
        return f"{self.staging_dir}/run.exit"


@dataclass(frozen=True)
class TaskResult:
    node: NodeAddress
    description: str
    state: TaskState
    exit_code: Optional[int] = None
    log: str = ""
    error: Optional[str] = None
    elapsed: float = 0.0

    @property
    def ok(self) -> bool:
        return self.state is TaskState.SUCCEEDED

    def raise_for_status(self) -> "TaskResult":
        if self.state is TaskState.TIMED_OUT:
            raise RemoteTaskTimeout(
                self.error or f"[{self.node.label}] timed out: {self.description}",
                node=self.node.label,
                log=self.log,
            )
        if self.state is TaskState.FAILED:
            raise RemoteTaskError(
                self.error or f"[{self.node.label}] failed: {self.description}",
                node=self.node.label,
                exit_code=self.exit_code,
                log=self.log,
            )
        return self


def create_staging_dir(transport, node: NodeAddress) -> str:
    """``mktemp -d`` + ``chmod 700`` on the node; returns the absolute path."""
    try:
        res = transport.execute(node, 'd=$(mktemp -d) && chmod 700 "$d" && echo "$d"')
    except ConnectivityError as exc:
        raise TransferError(f"[{node.label}] Failed to create remote temp directory: {exc}") from exc
    rdir = res.stdout.strip()
    if not res.ok or not rdir.startswith("/"):
        raise TransferError(
            f"[{node.label}] Failed to create remote temp directory (got: {rdir!r})"
        )
    return rdir


def remove_staging_dir(transport, node: NodeAddress, path: str) -> None:
    """Best-effort ``rm -rf``; a failure is logged, never raised."""
    try:
        transport.execute(node, f"rm -rf {shlex.quote(path)}")
    except ShepherdError as exc:
        log.warning("[%s] could not remove %s: %s", node.label, path, exc)


ProgressCallback = Callable[[NodeAddress, int, str], None]


class RemoteTaskRunner:
    """
    Fire-and-poll execution of one command on one node.

    There is no long-lived channel: the command is written to a script,
    started under ``nohup`` and observed by polling a sentinel file that
    receives its exit status. Each transition is one call to
    :meth:`step`, so tests can drive it with a fake clock.
    """

    def __init__(
        self,
        transport,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        clock: Optional[Clock] = None,
        on_progress: Optional[ProgressCallback] = None,
        cleanup=None,
    ):
        self.transport = transport
        self.timeout = timeout
        self.poll_interval = poll_interval
        self.clock = clock or SystemClock()
        self.on_progress = on_progress
        # anything with push(name, fn) and release(handle), e.g. CleanupStack
        self.cleanup = cleanup

    def run(self, node: NodeAddress, command: str, description: str = "") -> TaskResult:
        """Return exactly one terminal result; never raises for task failure."""
        task = RemoteTask(node=node, command=command, description=description or command)
        log.info("[%s] Starting: %s", node.label, task.description)
        result: Optional[TaskResult] = None
        while result is None:
            result = self.step(task)
        if result.ok:
            log.info("[%s] Completed: %s", node.label, task.description)
        return result

    def step(self, task: RemoteTask) -> Optional[TaskResult]:
        if task.state is TaskState.CREATED:
            return self._launch(task)
        if task.state in (TaskState.LAUNCHED, TaskState.POLLING):
            return self._poll(task)
        raise RuntimeError(f"task already terminal: {task.state.value}")

    # ------------- transitions -------------

    def _launch(self, task: RemoteTask) -> Optional[TaskResult]:
        node = task.node
        try:
            task.staging_dir = create_staging_dir(self.transport, node)
        except TransferError as exc:
            log.error("%s", exc)
            return self._finish(task, TaskState.FAILED, error=str(exc))
        if self.cleanup is not None:
            rdir = task.staging_dir
            task.cleanup_handle = self.cleanup.push(
                f"task dir {node.label}:{rdir}",
                lambda: remove_staging_dir(self.transport, node, rdir),
            )

        try:
            self.transport.put_text(node, task.command + "\n", task.remote_script_path, 0o700)
        except ShepherdError as exc:
            log.error("[%s] Failed to upload remote script: %s", node.label, exc)
            return self._finish(task, TaskState.FAILED, error=f"script upload failed: {exc}")

        inner = (
            f"sh {shlex.quote(task.remote_script_path)} > {shlex.quote(task.log_path)} 2>&1; "
            f"echo $? > {shlex.quote(task.exit_code_path)}"
        )
        launch = f"nohup sh -c {shlex.quote(inner)} </dev/null >/dev/null 2>&1 &"
        try:
            res = self.transport.execute(node, launch)
        except ConnectivityError as exc:
            log.error("[%s] Failed to launch remote command: %s", node.label, exc)
            return self._finish(task, TaskState.FAILED, error=f"launch failed: {exc}")
        if not res.ok:
            log.error("[%s] Failed to launch remote command: %s", node.label, res.stderr.strip())
            return self._finish(task, TaskState.FAILED, error="launch failed")

        task.started_at = self.clock.monotonic()
        task.state = TaskState.LAUNCHED
        return None

    def _poll(self, task: RemoteTask) -> Optional[TaskResult]:
        node = task.node
        task.state = TaskState.POLLING
        self.clock.sleep(self.poll_interval)
        elapsed = self.clock.monotonic() - task.started_at

        try:
            sentinel = self.transport.execute(node, f"test -f {shlex.quote(task.exit_code_path)}")
        except ConnectivityError as exc:
            # transient; retried on the next interval
            task.last_poll_error = str(exc)
            sentinel = None

        if sentinel is not None and sentinel.ok:
            return self._collect(task)

        if sentinel is not None:
            self._report_progress(task, int(elapsed))

        if elapsed >= self.timeout:
            return self._timeout(task)
        return None

    def _report_progress(self, task: RemoteTask, elapsed: int) -> None:
        try:
            res = self.transport.execute(task.node, f"tail -1 {shlex.quote(task.log_path)}")
        except ConnectivityError as exc:
            task.last_poll_error = str(exc)
            return
        line = res.stdout.strip()
        if line and line != task.last_line:
            task.last_line = line
            log.info("[%s] [%ss] %s", task.node.label, elapsed, line)
            if self.on_progress:
                self.on_progress(task.node, elapsed, line)

    def _read_log(self, task: RemoteTask) -> str:
        try:
            return self.transport.execute(task.node, f"cat {shlex.quote(task.log_path)}").stdout
        except ConnectivityError as exc:
            log.warning("[%s] could not fetch remote log: %s", task.node.label, exc)
            return ""

    def _collect(self, task: RemoteTask) -> TaskResult:
        node = task.node
        raw = ""
        try:
            res = self.transport.execute(node, f"cat {shlex.quote(task.exit_code_path)}")
            raw = res.stdout.strip() if res.ok else ""
        except ConnectivityError as exc:
            log.error("[%s] could not read exit status: %s", node.label, exc)

        if not _EXIT_CODE_RE.match(raw):
            log.error("[%s] Invalid exit code from remote: %r", node.label, raw)
            return self._finish(
                task,
                TaskState.FAILED,
                log_text=self._read_log(task),
                error=f"[{node.label}] invalid exit status {raw!r}: {task.description}",
            )

        code = int(raw)
        if code != 0:
            text = self._read_log(task)
            log.error("[%s] Failed (exit %d): %s", node.label, code, task.description)
            log.error("[%s] Remote log:\n%s", node.label, text)
            return self._finish(
                task,
                TaskState.FAILED,
                exit_code=code,
                log_text=text,
                error=f"[{node.label}] Failed (exit {code}): {task.description}",
            )
        return self._finish(task, TaskState.SUCCEEDED, exit_code=0)

    def _timeout(self, task: RemoteTask) -> TaskResult:
        node = task.node
        log.error("[%s] Timeout after %ss: %s", node.label, self.timeout, task.description)
        if task.last_poll_error:
            log.error("[%s] Last poll error: %s", node.label, task.last_poll_error)
        text = self._read_log(task)
        log.error("[%s] Remote log:\n%s", node.label, text)
        return self._finish(
            task,
            TaskState.TIMED_OUT,
            log_text=text,
            error=f"[{node.label}] Timeout after {self.timeout}s: {task.description}",
        )

    def _finish(
        self,
        task: RemoteTask,
        state: TaskState,
        *,
        exit_code: Optional[int] = None,
        log_text: str = "",
        error: Optional[str] = None,
    ) -> TaskResult:
        if task.cleanup_handle is not None:
            self.cleanup.release(task.cleanup_handle)
            task.cleanup_handle = None
        elif task.staging_dir:
            remove_staging_dir(self.transport, task.node, task.staging_dir)
        task.state = state
        elapsed = self.clock.monotonic() - task.started_at if task.started_at else 0.0
        return TaskResult(
            node=task.node,
            description=task.description,
            state=state,
            exit_code=exit_code,
            log=log_text,
            error=error,
            elapsed=elapsed,
        )
