# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kubeshepherd/bundle/builder.py
from __future__ import annotations

import logging
import re
import subprocess
import tempfile
from pathlib import Path
from typing import TYPE_CHECKING, Dict, Iterable, List

from ..errors import BundleValidationError, CollaboratorNotFoundError, ShepherdError, TransferError
from ..remote.task import create_staging_dir
from ..topology.address import NodeAddress
from .collaborators import COMMON_MODULES, PlatformFamily, platform_modules

if TYPE_CHECKING:
    from ..orchestration.context import OperationContext, RemoteStagingDir

log = logging.getLogger("kubeshepherd")

REMOTE_BUNDLE_NAME = "setup-k8s.sh"
DEFAULT_ENTRY = "setup-k8s.sh"

_HEADER = "#!/bin/sh\nset -eu\nBUNDLED_MODE=true\n\n"

# sibling sourcing only works from a checkout, not from the bundle
_SOURCE_LINE = re.compile(r"^(source .*SCRIPT_DIR|\. .*SCRIPT_DIR|SCRIPT_DIR=)")


def _strip_sourcing(text: str) -> str:
    return "".join(
        line for line in text.splitlines(keepends=True) if not _SOURCE_LINE.match(line)
    )


def _ensure_newline(text: str) -> str:
    return text if text.endswith("\n") else text + "\n"


class BundleBuilder:
    """
    Concatenate the shell collaborators into one self-contained script.

    Layout: header, common modules (fixed order), platform modules for the
    detected family, then the entry program without its shebang.
    """

    def __init__(self, source_root: Path, entry: str = DEFAULT_ENTRY):
        self.source_root = Path(source_root)
        self.entry = entry

    def _common_sections(self) -> List[str]:
        sections = []
        for module in COMMON_MODULES:
            path = self.source_root / "common" / f"{module}.sh"
            if not path.is_file():
                log.warning("bundle: common/%s.sh not present, skipping", module)
                continue
            sections.append(f"# === Module common/{module} ===\n" + _ensure_newline(path.read_text()))
        return sections

    def _platform_sections(self, family: PlatformFamily) -> List[str]:
        directory, modules = platform_modules(family)
        base = self.source_root / "distros" / directory
        if not base.is_dir():
            raise CollaboratorNotFoundError(f"Platform directory missing: {base}")
        sections = []
        for module in modules:
            path = base / f"{module}.sh"
            if not path.is_file():
                raise CollaboratorNotFoundError(f"Platform module missing: {path}")
            body = _strip_sourcing(path.read_text())
            sections.append(f"# === Module distros/{directory}/{module} ===\n" + _ensure_newline(body))
        return sections

    def _entry_section(self) -> str:
        path = self.source_root / self.entry
        if not path.is_file():
            raise CollaboratorNotFoundError(f"Entry script missing: {path}")
        lines = path.read_text().splitlines(keepends=True)
        if lines and lines[0].startswith("#!"):
            lines = lines[1:]
        return f"# === Main {self.entry} ===\n" + "".join(lines)

    def build(self, family: PlatformFamily | str) -> bytes:
        family = PlatformFamily(family) if not isinstance(family, PlatformFamily) else family
        parts = [_HEADER]
        parts.extend(s + "\n" for s in self._common_sections())
        parts.extend(s + "\n" for s in self._platform_sections(family))
        parts.append(self._entry_section())
        bundle = "".join(parts).encode("utf-8")
        validate(bundle)
        log.info("Bundle built for %s (%d bytes)", family.value, len(bundle))
        return bundle


def validate(bundle: bytes) -> None:
    """Reject an empty, non-shell or syntactically broken bundle locally."""
    if not bundle:
        raise BundleValidationError("Bundle is empty")
    if not bundle.startswith(b"#"):
        raise BundleValidationError("Bundle does not appear to be a valid shell script")
    with tempfile.NamedTemporaryFile(suffix=".sh") as f:
        f.write(bundle)
        f.flush()
        proc = subprocess.run(["sh", "-n", f.name], capture_output=True, text=True, check=False)
    if proc.returncode != 0:
        raise BundleValidationError(f"Bundle contains syntax errors:\n{proc.stderr.strip()}")


def transfer(
    ctx: "OperationContext", nodes: Iterable[NodeAddress], bundle: bytes
) -> Dict[NodeAddress, "RemoteStagingDir"]:
    """
    Create a private staging dir on every node and copy the bundle into it.

    Each dir is registered on *ctx* (and its cleanup stack) as soon as it
    exists. Any failure removes the dirs already created and raises
    TransferError.
    """
    with tempfile.TemporaryDirectory(prefix="kubeshepherd-bundle-") as tmp:
        local = Path(tmp) / REMOTE_BUNDLE_NAME
        local.write_bytes(bundle)
        local.chmod(0o700)
        try:
            for node in nodes:
                rdir = create_staging_dir(ctx.transport, node)
                staging = ctx.add_staging_dir(node, rdir)
                remote = f"{staging.remote_path}/{REMOTE_BUNDLE_NAME}"
                ctx.transport.copy_to(node, local, remote)
                log.info("[%s] Bundle transferred to %s", node.label, remote)
        except ShepherdError as exc:
            log.error("Bundle transfer failed: %s", exc)
            ctx.remove_staging_dirs()
            if isinstance(exc, TransferError):
                raise
            raise TransferError(str(exc)) from exc
    return dict(ctx.staging_dirs)
