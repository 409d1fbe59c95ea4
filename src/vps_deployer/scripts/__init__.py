"""Sanitizer and typed builders for remote scripts and commands."""

from .builders import (
    SOURCE_NVM,
    DeployScriptOptions,
    EcosystemOptions,
    deploy_script_path,
    env_with_defaults,
    node_command,
    pm2_command,
    render_askpass,
    render_deploy_script,
    render_ecosystem,
    render_env_file,
    render_marker,
)
from .sanitize import redact_command, safe_branch, safe_name, safe_path, strip_unsafe

__all__ = [
    "SOURCE_NVM",
    "DeployScriptOptions",
    "EcosystemOptions",
    "deploy_script_path",
    "env_with_defaults",
    "node_command",
    "pm2_command",
    "render_askpass",
    "render_deploy_script",
    "render_ecosystem",
    "render_env_file",
    "render_marker",
    "redact_command",
    "safe_branch",
    "safe_name",
    "safe_path",
    "strip_unsafe",
]
