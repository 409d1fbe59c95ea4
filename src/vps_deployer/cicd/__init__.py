"""CI/CD provisioning: host deploy script plus GitHub Actions wiring."""

from .deploy_script import create_deploy_script, remove_deploy_script
from .github_actions import GitHubClient, RepoPublicKey, SecretsResult, encrypt_secret, render_workflow
from .provisioner import CICDOptions, CICDProvisioner, CICDSetupResult

__all__ = [
    "create_deploy_script",
    "remove_deploy_script",
    "GitHubClient",
    "RepoPublicKey",
    "SecretsResult",
    "encrypt_secret",
    "render_workflow",
    "CICDOptions",
    "CICDProvisioner",
    "CICDSetupResult",
]
