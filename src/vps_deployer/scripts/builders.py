"""Typed builders for every script and config file written to the host.

Each builder takes a small options object and runs every interpolated value
through the allow-list sanitizer before embedding it.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Dict, Mapping, Optional

from .sanitize import safe_branch, safe_command, safe_name, safe_path

# Loads nvm (node, npx) and the pnpm global bin (pm2) for non-interactive shells
SOURCE_NVM = (
    "source ~/.nvm/nvm.sh 2>/dev/null || source ~/.bashrc 2>/dev/null || true; "
    'export PATH="$HOME/.local/share/pnpm:$PATH"'
)


def node_command(work_dir: str, command: str) -> str:
    """Run ``command`` from ``work_dir`` with the node toolchain on PATH."""
    return f"bash -c '{SOURCE_NVM} && cd {safe_path(work_dir)} && {safe_command(command)} 2>&1'"


def pm2_command(args: str, cwd: Optional[str] = None) -> str:
    cd = f"cd {safe_path(cwd)} && " if cwd else ""
    return f"bash -c '{SOURCE_NVM} && {cd}pm2 {safe_command(args)}'"


@dataclass
class EcosystemOptions:
    """Inputs for a process-supervisor config file."""

    name: str
    cwd: str
    port: int
    script: str
    args: Optional[str] = None
    exec_mode: str = "fork"


def render_ecosystem(options: EcosystemOptions) -> str:
    name = safe_name(options.name, "process name")
    safe_path(options.cwd)
    script = safe_command(options.script)
    port = int(options.port)
    args_line = f"    args: '{safe_command(options.args)}',\n" if options.args else ""
    exec_mode = safe_name(options.exec_mode, "exec mode")
    return (
        "module.exports = {\n"
        "  apps: [{\n"
        f"    name: '{name}',\n"
        f"    script: '{script}',\n"
        f"{args_line}"
        f"    cwd: '{options.cwd}',\n"
        "    instances: 1,\n"
        f"    exec_mode: '{exec_mode}',\n"
        "    watch: false,\n"
        "    autorestart: true,\n"
        "    max_restarts: 10,\n"
        "    restart_delay: 1000,\n"
        "    min_uptime: '10s',\n"
        "    max_memory_restart: '500M',\n"
        "    env: {\n"
        "      NODE_ENV: 'production',\n"
        f"      PORT: {port}\n"
        "    }\n"
        "  }]\n"
        "};\n"
    )


def escape_env_value(value: str) -> str:
    return (
        value.replace("\\", "\\\\")
        .replace('"', '\\"')
        .replace("\n", "\\n")
    )


def render_env_file(variables: Mapping[str, str]) -> str:
    lines = [f'{key}="{escape_env_value(value)}"' for key, value in variables.items()]
    return "\n".join(lines) + "\n"


def render_askpass(token: str) -> str:
    """GIT_ASKPASS helper answering the username and password prompts."""
    token = safe_name(token, "access token")
    return (
        "#!/bin/sh\n"
        'case "$1" in\n'
        '  Username*) echo "x-access-token" ;;\n'
        f'  *) echo "{token}" ;;\n'
        "esac\n"
    )


def render_marker(
    user_id: str,
    github_username: Optional[str],
    subdomain: str,
    created_at: str,
) -> str:
    return json.dumps(
        {
            "userId": user_id,
            "githubUsername": github_username,
            "subdomain": subdomain,
            "createdAt": created_at,
        }
    )


@dataclass
class DeployScriptOptions:
    """Inputs for the per-project script CI runs on push."""

    subdomain: str
    branch: str
    project_path: str
    work_dir: str
    install_command: str
    build_command: str
    orm_commands: tuple = ()
    deploy_user: str = "root"
    node_bin_path: str = "/usr/bin"


def deploy_script_path(deploy_user: str, subdomain: str) -> str:
    home = "/root" if deploy_user == "root" else f"/home/{safe_name(deploy_user, 'user')}"
    return f"{home}/{safe_name(subdomain, 'subdomain')}_deploy.sh"


def render_deploy_script(options: DeployScriptOptions) -> str:
    branch = safe_branch(options.branch)
    project_path = safe_path(options.project_path)
    work_dir = safe_path(options.work_dir)
    safe_path(options.node_bin_path)
    user = safe_name(options.deploy_user, "user")
    home = "/root" if user == "root" else f"/home/{user}"
    needs_cd = options.work_dir != options.project_path

    lines = [
        "#!/bin/bash",
        "set -e",
        "",
        "# node (nvm) and pnpm global bin (pm2)",
        f'export PATH="{options.node_bin_path}:{home}/.local/share/pnpm:$PATH"',
        "",
        'echo "Starting deployment..."',
        f"cd {project_path}",
        "",
        'echo "Resetting local changes..."',
        "git reset --hard",
        'echo "Pulling latest code..."',
        f"git pull origin {branch}",
    ]
    if needs_cd:
        lines += ["", f"cd {work_dir}"]
    lines += [
        "",
        'echo "Installing dependencies..."',
        safe_command(options.install_command),
    ]
    if options.orm_commands:
        lines += ["", 'echo "Syncing database schema..."']
        lines += [safe_command(cmd) for cmd in options.orm_commands]
    lines += [
        "",
        'echo "Building application..."',
        safe_command(options.build_command),
    ]
    if needs_cd:
        lines += ["", f"cd {project_path}"]
    lines += [
        "",
        'echo "Restarting application..."',
        "pm2 startOrRestart ecosystem.config.js --update-env",
        "pm2 save",
        "",
        'echo "Deployment completed successfully at $(date)"',
    ]
    return "\n".join(lines) + "\n"


def env_with_defaults(port: int, variables: Optional[Dict[str, str]] = None) -> Dict[str, str]:
    """NODE_ENV and PORT are system-managed; user values are layered on top."""
    merged = {"NODE_ENV": "production", "PORT": str(int(port))}
    merged.update(variables or {})
    return merged
