"""The remote command-execution primitive and the helpers built on it."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Callable, List, Optional

import paramiko

from ..errors import RemoteCommandError
from ..scripts.sanitize import b64_payload, redact_command, safe_path
from ..utils.logging import get_logger
from .credentials import SSHCredentials
from .session import SSHCommandResult, SSHSession

logger = get_logger(__name__)


class CommandRunner(ABC):
    """Anything that can run a shell command on the shared host.

    Subclasses implement :meth:`execute`; the file and check helpers are
    shared so every component talks to the host the same way.
    """

    @abstractmethod
    def execute(self, command: str, timeout: Optional[float] = None) -> SSHCommandResult:
        raise NotImplementedError

    def run_checked(
        self,
        command: str,
        description: str,
        *,
        timeout: Optional[float] = None,
    ) -> SSHCommandResult:
        """Run ``command`` and raise :class:`RemoteCommandError` on a non-zero exit."""
        result = self.execute(command, timeout=timeout)
        if not result.ok:
            output = (result.stderr or result.stdout).strip()
            raise RemoteCommandError(
                f"{description} failed (exit {result.exit_status}): {output}",
                exit_code=result.exit_status,
                output=output,
            )
        return result

    def write_file(self, path: str, content: str, *, mode: Optional[str] = None) -> None:
        """Write ``content`` byte-for-byte to ``path`` on the host."""
        command = f"echo '{b64_payload(content)}' | base64 -d > {safe_path(path)}"
        if mode:
            command += f" && chmod {mode} {safe_path(path)}"
        self.run_checked(command, f"Write {path}")

    def read_file(self, path: str) -> str:
        return self.run_checked(f"cat {safe_path(path)}", f"Read {path}").stdout

    def file_exists(self, path: str) -> bool:
        result = self.execute(f'test -f {safe_path(path)} && echo "exists" || echo "missing"')
        return result.stdout.strip() == "exists"

    def dir_exists(self, path: str) -> bool:
        result = self.execute(f'test -d {safe_path(path)} && echo "exists" || echo "missing"')
        return result.stdout.strip() == "exists"

    def list_dir(self, path: str) -> List[str]:
        result = self.execute(f"ls -1 {safe_path(path)} 2>/dev/null || true")
        if not result.ok and result.stderr:
            raise RemoteCommandError(f"Failed to list directory {path}: {result.stderr}")
        return [line for line in result.stdout.strip().split("\n") if line]

    def remove_path(self, path: str) -> None:
        self.run_checked(f"sudo rm -rf {safe_path(path)}", f"Remove {path}")


class RemoteExecutor(CommandRunner):
    """Runs each command over its own SSH connection (no pooling, no retry)."""

    def __init__(
        self,
        credentials: SSHCredentials,
        *,
        client_factory: Callable[[], paramiko.SSHClient] | None = None,
    ) -> None:
        self.credentials = credentials
        self._client_factory = client_factory

    def execute(self, command: str, timeout: Optional[float] = None) -> SSHCommandResult:
        logger.debug("ssh %s: %s", self.credentials.describe(), redact_command(command))
        with SSHSession(self.credentials, client_factory=self._client_factory) as session:
            return session.run(command, timeout=timeout)
