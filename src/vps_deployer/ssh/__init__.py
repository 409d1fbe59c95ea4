"""SSH utilities: the remote command-execution primitive."""

from .credentials import SSHCredentials
from .executor import CommandRunner, RemoteExecutor
from .probe import RemoteProbe
from .session import SSHCommandResult, SSHSession, load_private_key

__all__ = [
    "SSHCredentials",
    "SSHCommandResult",
    "SSHSession",
    "CommandRunner",
    "RemoteExecutor",
    "RemoteProbe",
    "load_private_key",
]
