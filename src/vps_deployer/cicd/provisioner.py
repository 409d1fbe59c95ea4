"""Wires redeploy-on-push: deploy script, repo secrets, workflow, host sync."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Optional

from ..config import GitHubConfig
from ..detectors.git import GitProvider
from ..errors import DeployerError
from ..scripts.builders import DeployScriptOptions
from ..ssh.credentials import SSHCredentials
from ..ssh.executor import CommandRunner
from ..utils.logging import get_logger
from .deploy_script import create_deploy_script
from .github_actions import GitHubClient

logger = get_logger(__name__)

GitHubClientFactory = Callable[[str, GitHubConfig], GitHubClient]


@dataclass
class CICDSetupResult:
    success: bool
    secrets_set: List[str] = field(default_factory=list)
    workflow_created: bool = False
    deploy_script_created: bool = False
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "secretsSet": list(self.secrets_set),
            "workflowCreated": self.workflow_created,
            "deployScriptCreated": self.deploy_script_created,
            "errors": list(self.errors),
        }


@dataclass
class CICDOptions:
    repo_url: str
    branch: str
    subdomain: str
    token: str
    deploy_script: DeployScriptOptions
    provider: GitProvider


def _private_key_material(credentials: SSHCredentials) -> Optional[str]:
    if credentials.private_key:
        return credentials.private_key
    if credentials.key_path:
        return Path(credentials.key_path).expanduser().read_text(encoding="utf-8")
    return None


class CICDProvisioner:
    """Runs the four CI/CD steps in order; any step failure is collected, never raised."""

    def __init__(
        self,
        runner: CommandRunner,
        credentials: SSHCredentials,
        github: Optional[GitHubConfig] = None,
        client_factory: Optional[GitHubClientFactory] = None,
    ) -> None:
        self.runner = runner
        self.credentials = credentials
        self.github = github or GitHubConfig()
        self._client_factory = client_factory or (lambda token, cfg: GitHubClient(token, cfg))

    def connection_secrets(self) -> Dict[str, str]:
        key = _private_key_material(self.credentials)
        if not key:
            raise DeployerError("No SSH private key material available for CI secrets")
        return {
            "SSH_HOST": self.credentials.host,
            "SSH_USER": self.credentials.username,
            "SSH_PRIVATE_KEY": key,
            "SSH_PORT": str(self.credentials.port),
        }

    def setup(self, options: CICDOptions) -> CICDSetupResult:
        result = CICDSetupResult(success=False)
        ref = options.provider.parse_repo(options.repo_url)
        client = self._client_factory(options.token, self.github)

        # The script must exist before the workflow's first run triggers
        try:
            create_deploy_script(self.runner, options.deploy_script)
            result.deploy_script_created = True
        except Exception as exc:
            result.errors.append(f"Deploy script: {exc}")

        try:
            secrets = client.set_secrets(ref.owner, ref.repo, self.connection_secrets())
            result.secrets_set = secrets.set
            result.errors.extend(secrets.errors)
        except Exception as exc:
            result.errors.append(f"Secrets: {exc}")

        try:
            client.put_workflow(ref.owner, ref.repo, options.subdomain, options.branch)
            result.workflow_created = True
        except Exception as exc:
            result.errors.append(f"Workflow: {exc}")

        # The workflow commit lands on the remote; keep the host clone level with it
        if result.workflow_created:
            helper = None
            try:
                helper = options.provider.setup_credentials(self.runner, options.token)
                options.provider.pull(
                    self.runner, options.deploy_script.project_path, options.branch, helper
                )
            except Exception as exc:
                result.errors.append(f"VPS sync: {exc}")
            finally:
                if helper:
                    options.provider.cleanup_credentials(self.runner, helper)

        result.success = not result.errors
        if result.errors:
            logger.warning("CI/CD setup for %s partial: %s", options.subdomain, "; ".join(result.errors))
        else:
            logger.info("CI/CD configured for %s", options.subdomain)
        return result
