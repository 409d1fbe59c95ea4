"""Exception hierarchy shared by every deployer component."""

from __future__ import annotations

from typing import Optional


class DeployerError(RuntimeError):
    """Base class for all errors raised by vps-deployer."""


class ConfigError(DeployerError):
    """Raised when the configuration is incomplete or malformed."""


class ValidationError(DeployerError):
    """Raised when user input is rejected before any remote call is made."""


class ConflictError(DeployerError):
    """Raised when a subdomain or port is already claimed."""


class NotFoundError(DeployerError):
    """Raised when a record does not exist in the store."""


class UnsupportedAppTypeError(ValidationError):
    """Raised when no application framework detector matches."""


class UnsupportedGitProviderError(ValidationError):
    """Raised when no git host provider can handle a repository URL."""


class SSHConnectionError(DeployerError):
    """Raised when an SSH connection cannot be established."""


class CommandTimeoutError(DeployerError):
    """Raised when a remote command does not finish within its timeout."""

    def __init__(self, command: str, timeout: float) -> None:
        self.command = command
        self.timeout = timeout
        super().__init__(f"Command timed out after {timeout:g}s")


class RemoteCommandError(DeployerError):
    """Raised when a remote command exits with a non-zero status."""

    def __init__(
        self,
        message: str,
        *,
        exit_code: Optional[int] = None,
        output: str = "",
        step: Optional[str] = None,
    ) -> None:
        self.exit_code = exit_code
        self.output = output
        self.step = step
        super().__init__(message)


class ConsistencyError(DeployerError):
    """Raised when a post-mutation verification check fails."""


class RoutingTableError(ConsistencyError):
    """Raised when the proxy rejects a routing-table change (already rolled back)."""


class GitHubAPIError(DeployerError):
    """Raised when the hosted CI API answers with an error status."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        self.status_code = status_code
        super().__init__(message)
