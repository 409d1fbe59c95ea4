"""Git host providers: URL validation, credential helpers, clone and pull."""

from __future__ import annotations

import re
import secrets
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional, Tuple
from urllib.parse import urlparse

from ..errors import RemoteCommandError, UnsupportedGitProviderError, ValidationError
from ..scripts.builders import render_askpass
from ..scripts.sanitize import safe_branch, safe_path, safe_url
from ..ssh.executor import CommandRunner
from ..utils.logging import get_logger

logger = get_logger(__name__)

_GITHUB_PATH = re.compile(r"^/[A-Za-z0-9_-]+/[A-Za-z0-9_.-]+$")


@dataclass(frozen=True)
class RepoRef:
    owner: str
    repo: str


@dataclass(frozen=True)
class CredentialHelper:
    """A short-lived askpass script on the host."""

    path: str

    @property
    def env(self) -> str:
        return f'GIT_ASKPASS="{self.path}" GIT_TERMINAL_PROMPT=0'


@dataclass(frozen=True)
class CommitInfo:
    short_hash: str
    message: str


class GitProvider(ABC):
    """Capability interface for a git hosting service."""

    name: str = ""

    @abstractmethod
    def detect(self, repo_url: str) -> bool:
        """Return True when this provider hosts ``repo_url``."""

    @abstractmethod
    def validate_repo_url(self, repo_url: str) -> None:
        """Raise ValidationError unless the URL has an allowed host and path shape."""

    @abstractmethod
    def parse_repo(self, repo_url: str) -> RepoRef:
        """Split a repository URL into owner and repository name."""

    def setup_credentials(self, runner: CommandRunner, token: str) -> CredentialHelper:
        helper = CredentialHelper(f"/tmp/git-askpass-{secrets.token_hex(8)}.sh")
        runner.write_file(helper.path, render_askpass(token), mode="700")
        return helper

    def cleanup_credentials(self, runner: CommandRunner, helper: CredentialHelper) -> None:
        runner.execute(f"rm -f {safe_path(helper.path)} 2>/dev/null || true")

    def clone(
        self,
        runner: CommandRunner,
        repo_url: str,
        branch: str,
        token: str,
        dest: str,
    ) -> None:
        helper = self.setup_credentials(runner, token)
        try:
            result = runner.execute(
                f'{helper.env} git clone --branch "{safe_branch(branch)}" --single-branch '
                f'--depth 1 "{safe_url(repo_url)}" {safe_path(dest)} 2>&1'
            )
            if not result.ok:
                raise RemoteCommandError(
                    f"Git clone failed: {result.output.strip()}",
                    exit_code=result.exit_status,
                    output=result.output,
                )
        finally:
            self.cleanup_credentials(runner, helper)

    def pull(
        self,
        runner: CommandRunner,
        project_path: str,
        branch: str,
        helper: Optional[CredentialHelper] = None,
    ) -> None:
        """Hard-reset the checkout to the tip of ``branch`` on origin."""
        env = f"{helper.env} " if helper else "GIT_TERMINAL_PROMPT=0 "
        branch = safe_branch(branch)
        result = runner.execute(
            f"cd {safe_path(project_path)} && {env}git fetch origin {branch} "
            f"&& git reset --hard origin/{branch} 2>&1"
        )
        if not result.ok:
            raise RemoteCommandError(
                f"Git pull failed: {result.output.strip()}",
                exit_code=result.exit_status,
                output=result.output,
            )

    def head_commit(self, runner: CommandRunner, project_path: str) -> CommitInfo:
        path = safe_path(project_path)
        hash_result = runner.run_checked(f"cd {path} && git rev-parse HEAD", "Failed to get commit hash")
        msg_result = runner.run_checked(
            f"cd {path} && git log -1 --pretty=%B", "Failed to get commit message"
        )
        return CommitInfo(
            short_hash=hash_result.stdout.strip()[:7],
            message=msg_result.stdout.strip()[:200],
        )


class GitHubProvider(GitProvider):
    name = "GitHub"

    def detect(self, repo_url: str) -> bool:
        try:
            return urlparse(repo_url).hostname == "github.com"
        except ValueError:
            return False

    def validate_repo_url(self, repo_url: str) -> None:
        try:
            parsed = urlparse(repo_url)
        except ValueError as exc:
            raise ValidationError("Invalid repository URL") from exc
        if parsed.scheme != "https":
            raise ValidationError("Invalid repository URL")
        if parsed.hostname != "github.com":
            raise ValidationError("Only GitHub repositories are supported")
        if parsed.query or parsed.fragment or not _GITHUB_PATH.match(parsed.path):
            raise ValidationError("Invalid GitHub repository URL")

    def parse_repo(self, repo_url: str) -> RepoRef:
        parts = [p for p in urlparse(repo_url).path.split("/") if p]
        if len(parts) < 2:
            raise ValidationError(f"Invalid GitHub repo URL: {repo_url}")
        repo = parts[1][:-4] if parts[1].endswith(".git") else parts[1]
        return RepoRef(owner=parts[0], repo=repo)


GIT_PROVIDERS: Tuple[GitProvider, ...] = (
    GitHubProvider(),
)


def detect_git_provider(repo_url: str) -> GitProvider:
    for provider in GIT_PROVIDERS:
        if provider.detect(repo_url):
            return provider
    raise UnsupportedGitProviderError(
        "Unsupported git provider. Currently only GitHub is supported."
    )


def normalize_remote_url(raw: Optional[str]) -> Optional[str]:
    """Convert ``git@host:owner/repo.git`` remotes to https and drop ``.git``."""
    if not raw:
        return None
    url = raw.strip()
    match = re.match(r"^git@([^:]+):(.+?)(?:\.git)?$", url)
    if match:
        return f"https://{match.group(1)}/{match.group(2)}"
    return url[:-4] if url.endswith(".git") else url
