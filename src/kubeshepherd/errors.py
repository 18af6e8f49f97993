# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kubeshepherd/errors.py
from __future__ import annotations

from typing import Dict, Optional


class ShepherdError(RuntimeError):
    """Base class for orchestration failures."""


class ConnectivityError(ShepherdError):
    """
    SSH unreachable or passwordless sudo unavailable.

    ``failures`` maps a node label to its error so a single report can
    list every broken node.
    """

    def __init__(self, message: str, failures: Optional[Dict[str, str]] = None):
        super().__init__(message)
        self.failures = dict(failures or {})


class TransferError(ShepherdError):
    """Bundle or file copy failed."""


class BundleValidationError(ShepherdError):
    """Generated bundle was rejected before distribution."""


class RemoteTaskError(ShepherdError):
    """Remote task finished with a non-zero or malformed exit status."""

    def __init__(
        self,
        message: str,
        *,
        node: str = "",
        exit_code: Optional[int] = None,
        log: str = "",
    ):
        super().__init__(message)
        self.node = node
        self.exit_code = exit_code
        self.log = log


class RemoteTaskTimeout(RemoteTaskError, TimeoutError):
    """Sentinel file never appeared within the timeout."""


class VerificationError(ShepherdError):
    """Hard post-operation check failed (node count mismatch)."""


class CheckpointError(ShepherdError):
    """Checkpoint storage unreadable or unwritable."""


class CollaboratorNotFoundError(ShepherdError, LookupError):
    """No collaborator registered for the requested platform or role."""


class AddressError(ShepherdError, ValueError):
    """Node specifier is structurally invalid."""


class TopologyError(ShepherdError, ValueError):
    """Control-plane / worker lists violate a topology invariant."""


class VersionError(ShepherdError, ValueError):
    """Requested Kubernetes version path is not allowed."""
