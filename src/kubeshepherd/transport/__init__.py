from .context import HostKeyPolicy, TransportContext
from .interface import CommandResult, Transport, sudo_prefix
from .ssh import SSHTransport, check_all

__all__ = [
    "CommandResult",
    "HostKeyPolicy",
    "SSHTransport",
    "Transport",
    "TransportContext",
    "check_all",
    "sudo_prefix",
]
