import itertools
import shlex
import threading
from pathlib import Path

import pytest

from kubeshepherd.checkpoint.store import CheckpointStore
from kubeshepherd.errors import ConnectivityError, TransferError
from kubeshepherd.observers.dispatcher import EventBus
from kubeshepherd.orchestration.context import OperationContext, OperationOptions
from kubeshepherd.topology.models import build_topology
from kubeshepherd.transport.interface import CommandResult

CA_HASH = "sha256:" + "a" * 64
CERT_KEY = "b" * 64
JOIN_COMMAND = f"kubeadm join 10.0.0.1:6443 --token abcdef.0123456789abcdef --discovery-token-ca-cert-hash {CA_HASH}\n"


# ----------------- Fakes -----------------

class FakeClock:
    def __init__(self, now=0.0):
        self.now = now
        self.sleeps = []

    def monotonic(self):
        return self.now

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


class FakeTransport:
    """
    In-memory node shell.

    Understands the remote task protocol (mktemp, script upload, nohup
    launch, sentinel polling, rm -rf); everything else answers from
    ``on(...)`` rules, newest rule first, or succeeds silently.
    """

    def __init__(self):
        self.calls = []
        self.files = {}
        self.modes = {}
        self.copies = []
        self.downloads = {}
        self.removed = []
        self.unreachable = set()
        self.connectivity_checks = []
        self.uploaded_scripts = []
        self._responses = []
        self._task_rules = []
        self._hanging = []
        self._dirs = itertools.count(1)
        self._lock = threading.RLock()

    # --- scripting ---

    def on(self, substring, stdout="", stderr="", rc=0, node=None):
        self._responses.append((node, substring, CommandResult(stdout, stderr, rc)))

    def task_fails(self, substring, rc=1, node=None, log="boom"):
        self._task_rules.append((node, substring, rc, log))

    def task_hangs(self, substring, node=None):
        self._hanging.append((node, substring))

    def clear_task_failures(self):
        self._task_rules.clear()
        self._hanging.clear()

    def commands(self, node=None):
        return [c for n, c in self.calls if node is None or n == node]

    def scripts(self, node=None):
        """Commands launched as remote tasks, in order."""
        return [c for label, c in self.uploaded_scripts if node is None or label == node]

    # --- protocol ---

    def _task_outcome(self, label, script):
        for node, sub in self._hanging:
            if (node is None or node == label) and sub in script:
                return None, "still running"
        for node, sub, rc, log in reversed(self._task_rules):
            if (node is None or node == label) and sub in script:
                return rc, log
        return 0, "done"

    def _launch(self, label, command):
        inner = shlex.split(command)[3]
        parts = shlex.split(inner)
        script, log_path, exit_path = parts[1], parts[3], parts[-1]
        rc, text = self._task_outcome(label, self.files.get((label, script), ""))
        self.files[(label, log_path)] = text + "\n"
        if rc is not None:
            self.files[(label, exit_path)] = f"{rc}\n"
        return CommandResult("", "", 0)

    def execute(self, node, command, *, timeout=None):
        label = node.label
        with self._lock:
            self.calls.append((label, command))
            if label in self.unreachable:
                raise ConnectivityError(f"[{label}] unreachable", {label: "unreachable"})

            for rule_node, sub, result in reversed(self._responses):
                if (rule_node is None or rule_node == label) and sub in command:
                    return result

            if command.startswith("d=$(mktemp -d)"):
                return CommandResult(f"/tmp/ks-{label}-{next(self._dirs)}\n", "", 0)
            if command.startswith("nohup sh -c"):
                return self._launch(label, command)

            verb, _, arg = command.partition(" ")
            if verb in ("test", "tail", "cat", "rm"):
                path = shlex.split(command)[-1]
                if verb == "test":
                    return CommandResult("", "", 0 if (label, path) in self.files else 1)
                if verb == "tail":
                    lines = self.files.get((label, path), "").splitlines()
                    return CommandResult(lines[-1] if lines else "", "", 0)
                if verb == "cat":
                    if (label, path) in self.files:
                        return CommandResult(self.files[(label, path)], "", 0)
                    return CommandResult("", f"cat: {path}: No such file", 1)
                if verb == "rm":
                    self.removed.append((label, path))
                    for key in [k for k in self.files if k[0] == label and k[1].startswith(path)]:
                        del self.files[key]
                    return CommandResult("", "", 0)
            return CommandResult("", "", 0)

    def put_text(self, node, content, remote_path, mode=0o600):
        with self._lock:
            if node.label in self.unreachable:
                raise TransferError(f"[{node.label}] unreachable")
            self.files[(node.label, remote_path)] = content
            self.modes[(node.label, remote_path)] = mode
            if remote_path.endswith("/run.sh"):
                self.uploaded_scripts.append((node.label, content.strip()))

    def copy_to(self, node, local_path, remote_path):
        with self._lock:
            if node.label in self.unreachable:
                raise TransferError(f"[{node.label}] unreachable")
            self.copies.append((node.label, Path(local_path).name, remote_path))
            self.files[(node.label, remote_path)] = "copied"

    def copy_from(self, node, remote_path, local_path):
        name = Path(remote_path).name
        if name not in self.downloads:
            raise TransferError(f"[{node.label}] {remote_path} not found")
        Path(local_path).write_bytes(self.downloads[name])

    def check_connectivity(self, node):
        self.connectivity_checks.append(node.label)
        if node.label in self.unreachable:
            raise ConnectivityError(f"[{node.label}] SSH check failed", {node.label: "unreachable"})


class FakeBuilder:
    def __init__(self, bundle=b"#!/bin/sh\necho bundle\n"):
        self.bundle = bundle
        self.families = []

    def build(self, family):
        self.families.append(family)
        return self.bundle


class Capture:
    def __init__(self):
        self.events = []

    def notify(self, event):
        self.events.append(event)

    def names(self):
        return [type(e).__name__ for e in self.events]


def healthy_cluster(transport, node_names, *, join=True):
    transport.on("cat /etc/os-release", 'ID=ubuntu\nID_LIKE="debian"\n')
    transport.on("get --raw /readyz", "ok")
    transport.on("get --raw /healthz/etcd", "ok")
    transport.on(
        "get nodes --no-headers",
        "".join(f"{n} Ready control-plane 1d v1.30.2\n" for n in node_names),
    )
    transport.on("get pods -n kube-system --no-headers", "etcd-a 1/1 Running 0 1d\n")
    if join:
        transport.on("kubeadm token create --print-join-command", JOIN_COMMAND)
        transport.on("upload-certs", f"[upload-certs] Using certificate key:\n{CERT_KEY}\n")


# ----------------- Fixtures -----------------

@pytest.fixture
def fake_transport():
    return FakeTransport()


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def capture():
    return Capture()


@pytest.fixture
def make_ctx(tmp_path, fake_transport, fake_clock, capture):
    """OperationContext over the fake transport; poll interval 1s on a fake clock."""

    def _make(operation, control_planes, workers=None, *, passthrough=(), resume=False, dry_run=False, store=None):
        topology = build_topology(control_planes, workers)
        return OperationContext(
            operation,
            topology,
            fake_transport,
            checkpoint=store or CheckpointStore(tmp_path / "state"),
            bus=EventBus(observers=[capture]),
            run_id="run-1",
            options=OperationOptions(
                dry_run=dry_run,
                resume=resume,
                remote_timeout=30,
                poll_interval=1,
                passthrough=list(passthrough),
            ),
            clock=fake_clock,
        )

    return _make
