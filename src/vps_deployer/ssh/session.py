"""SSH session management built on Paramiko."""

from __future__ import annotations

import io
import os
import time
from dataclasses import dataclass
from typing import Callable, List, Optional

import paramiko

from ..errors import CommandTimeoutError, SSHConnectionError
from .credentials import SSHCredentials

_KEY_CLASSES = (paramiko.Ed25519Key, paramiko.ECDSAKey, paramiko.RSAKey)


@dataclass
class SSHCommandResult:
    command: str
    stdout: str
    stderr: str
    exit_status: int

    @property
    def ok(self) -> bool:
        return self.exit_status == 0

    @property
    def output(self) -> str:
        """Whichever stream carries the useful text, stderr first."""
        return self.stderr or self.stdout


def load_private_key(key_text: str, passphrase: Optional[str] = None) -> paramiko.PKey:
    """Parse an in-memory private key, trying each supported key type."""
    last_error: Optional[Exception] = None
    for key_class in _KEY_CLASSES:
        try:
            return key_class.from_private_key(io.StringIO(key_text), password=passphrase)
        except (paramiko.SSHException, ValueError) as exc:
            last_error = exc
    raise SSHConnectionError(f"Unsupported or invalid private key: {last_error}")


class SSHSession:
    """High-level wrapper around paramiko.SSHClient."""

    poll_interval = 0.05

    def __init__(
        self,
        credentials: SSHCredentials,
        *,
        client_factory: Callable[[], paramiko.SSHClient] | None = None,
    ) -> None:
        self.credentials = credentials
        self._client_factory = client_factory or paramiko.SSHClient
        self._client: Optional[paramiko.SSHClient] = None

    def __enter__(self) -> "SSHSession":
        self.connect()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:  # type: ignore[override]
        self.close()

    def connect(self) -> None:
        if self._client:
            return
        client = self._client_factory()
        client.set_missing_host_key_policy(paramiko.AutoAddPolicy())
        try:
            connect_kwargs = {
                "hostname": self.credentials.host,
                "port": self.credentials.port,
                "username": self.credentials.username,
                "timeout": self.credentials.timeout,
                "banner_timeout": self.credentials.timeout,
                "look_for_keys": False,
                "allow_agent": False,
            }
            if self.credentials.private_key:
                connect_kwargs["pkey"] = load_private_key(
                    self.credentials.private_key, self.credentials.passphrase
                )
            else:
                connect_kwargs["key_filename"] = os.path.expanduser(self.credentials.key_path)
                if self.credentials.passphrase:
                    connect_kwargs["passphrase"] = self.credentials.passphrase
            client.connect(**connect_kwargs)
        except SSHConnectionError:
            client.close()
            raise
        except Exception as exc:  # pragma: no cover - network errors hard to simulate
            client.close()
            raise SSHConnectionError(f"SSH connection failed: {exc}") from exc
        self._client = client

    def close(self) -> None:
        if self._client:
            self._client.close()
            self._client = None

    def run(self, command: str, *, timeout: Optional[float] = None) -> SSHCommandResult:
        """
        Execute a command and collect both output streams in memory.

        Args:
            command: The shell command to run
            timeout: Seconds to wait for the channel to close; None waits forever

        Raises:
            SSHConnectionError: the channel could not be opened
            CommandTimeoutError: the command was still running at the deadline.
                The connection is torn down before raising.
        """
        if not self._client:
            self.connect()
        assert self._client is not None

        try:
            _stdin, stdout, _stderr = self._client.exec_command(command)
        except paramiko.SSHException as exc:
            self.close()
            raise SSHConnectionError(f"Failed to open channel: {exc}") from exc

        channel = stdout.channel
        deadline = time.monotonic() + timeout if timeout else None
        stdout_chunks: List[bytes] = []
        stderr_chunks: List[bytes] = []

        while True:
            received = False
            while channel.recv_ready():
                stdout_chunks.append(channel.recv(32768))
                received = True
            while channel.recv_stderr_ready():
                stderr_chunks.append(channel.recv_stderr(32768))
                received = True
            if channel.exit_status_ready() and not (
                channel.recv_ready() or channel.recv_stderr_ready()
            ):
                break
            if deadline is not None and time.monotonic() > deadline:
                self.close()
                raise CommandTimeoutError(command, timeout or 0)
            if not received:
                time.sleep(self.poll_interval)

        exit_status = channel.recv_exit_status()
        if exit_status < 0:
            # paramiko reports -1 when the server sent no exit status
            exit_status = 0

        return SSHCommandResult(
            command=command,
            stdout=b"".join(stdout_chunks).decode("utf-8", errors="replace"),
            stderr=b"".join(stderr_chunks).decode("utf-8", errors="replace"),
            exit_status=exit_status,
        )
