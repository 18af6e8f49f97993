# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kubeshepherd/checkpoint/store.py
from __future__ import annotations

import logging
import os
import re
import tempfile
import threading
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, Optional

from ..errors import CheckpointError

log = logging.getLogger("kubeshepherd")

DEFAULT_STATE_DIR = Path("/var/lib/setup-k8s/state")

_STEP_PREFIX = "step_"
_UNSAFE = re.compile(r"[^A-Za-z0-9_.-]")


class RecordStatus(str, Enum):
    RUNNING = "running"
    FAILED = "failed"
    COMPLETED = "completed"


class StepStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    DONE = "done"
    FAILED = "failed"


def step_key(name: str) -> str:
    """``join_worker_[fd00::1]`` -> ``step_join_worker__fd00__1_``"""
    return _STEP_PREFIX + _UNSAFE.sub("_", name)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class CheckpointStore:
    """
    Durable ``key=value`` record of one operation invocation.

    One file per invocation, ``<operation>-<YYYYmmdd-HHMMSS>.state``.
    Every write rewrites the whole file through a temp file and
    ``os.replace``; the last write for a key wins.
    """

    def __init__(self, state_dir: Path = DEFAULT_STATE_DIR, *, now: Callable[[], datetime] = _utc_now):
        self.state_dir = Path(state_dir)
        self._now = now
        self._lock = threading.Lock()
        self._data: Dict[str, str] = {}
        self.path: Optional[Path] = None

    # ------------- file helpers -------------

    def _ensure_dir(self) -> None:
        try:
            self.state_dir.mkdir(parents=True, exist_ok=True)
            self.state_dir.chmod(0o700)
        except OSError as exc:
            raise CheckpointError(f"Cannot create state directory {self.state_dir}: {exc}") from exc

    @staticmethod
    def _read(path: Path) -> Dict[str, str]:
        data: Dict[str, str] = {}
        try:
            text = path.read_text()
        except OSError as exc:
            raise CheckpointError(f"Cannot read checkpoint {path}: {exc}") from exc
        for line in text.splitlines():
            if not line or line.startswith("#") or "=" not in line:
                continue
            k, v = line.split("=", 1)
            data[k] = v
        return data

    def _flush(self) -> None:
        if self.path is None:
            raise CheckpointError("No checkpoint record initialized or loaded")
        body = "".join(f"{k}={v}\n" for k, v in self._data.items())
        try:
            fd, tmp = tempfile.mkstemp(dir=self.state_dir, prefix=".tmp-", suffix=".state")
            try:
                with os.fdopen(fd, "w") as f:
                    f.write(body)
                os.chmod(tmp, 0o600)
                os.replace(tmp, self.path)
            except BaseException:
                Path(tmp).unlink(missing_ok=True)
                raise
        except OSError as exc:
            raise CheckpointError(f"Cannot write checkpoint {self.path}: {exc}") from exc

    # ------------- lifecycle -------------

    def init(self, operation: str) -> Path:
        self._ensure_dir()
        started = self._now()
        path = self.state_dir / f"{operation}-{started.strftime('%Y%m%d-%H%M%S')}.state"
        with self._lock:
            self.path = path
            self._data = {
                "operation": operation,
                "started_at": started.strftime("%Y-%m-%dT%H:%M:%SZ"),
                "status": RecordStatus.RUNNING.value,
            }
            self._flush()
        log.debug("checkpoint created: %s", path)
        return path

    def find_resumable(self, operation: str) -> Optional[Path]:
        """Most recent record for *operation* that is still running or failed."""
        if not self.state_dir.is_dir():
            return None
        for candidate in sorted(self.state_dir.glob(f"{operation}-*.state"), reverse=True):
            status = self._read(candidate).get("status")
            if status in (RecordStatus.RUNNING.value, RecordStatus.FAILED.value):
                return candidate
        return None

    def load(self, path: Path) -> None:
        data = self._read(Path(path))
        if "operation" not in data:
            raise CheckpointError(f"Not a checkpoint record: {path}")
        with self._lock:
            self.path = Path(path)
            self._data = data
            self._data["status"] = RecordStatus.RUNNING.value
            self._flush()
        log.info("Resuming from checkpoint %s", path)

    # ------------- keys -------------

    def set(self, key: str, value: str) -> None:
        if "\n" in key or "=" in key or "\n" in str(value):
            raise CheckpointError(f"Invalid checkpoint key/value: {key!r}")
        with self._lock:
            self._data[key] = str(value)
            self._flush()

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        return self._data.get(key, default)

    @property
    def operation(self) -> Optional[str]:
        return self._data.get("operation")

    @property
    def status(self) -> Optional[str]:
        return self._data.get("status")

    def set_step(self, name: str, status: StepStatus) -> None:
        self.set(step_key(name), StepStatus(status).value)

    def step_status(self, name: str) -> Optional[str]:
        return self._data.get(step_key(name))

    def is_step_done(self, name: str) -> bool:
        return self.step_status(name) == StepStatus.DONE.value

    def steps(self) -> Dict[str, str]:
        return {
            k[len(_STEP_PREFIX):]: v
            for k, v in self._data.items()
            if k.startswith(_STEP_PREFIX)
        }

    def fail(self) -> None:
        self.set("status", RecordStatus.FAILED.value)

    def complete(self) -> None:
        with self._lock:
            self._data["status"] = RecordStatus.COMPLETED.value
            self._data["completed_at"] = self._now().strftime("%Y-%m-%dT%H:%M:%SZ")
            self._flush()
