"""Per-project deploy script that CI runs on the host after each push."""

from __future__ import annotations

from ..scripts.builders import DeployScriptOptions, deploy_script_path, render_deploy_script
from ..scripts.sanitize import safe_path
from ..ssh.executor import CommandRunner


def create_deploy_script(runner: CommandRunner, options: DeployScriptOptions) -> str:
    path = deploy_script_path(options.deploy_user, options.subdomain)
    runner.write_file(path, render_deploy_script(options), mode="+x")
    return path


def remove_deploy_script(runner: CommandRunner, deploy_user: str, subdomain: str) -> None:
    path = deploy_script_path(deploy_user, subdomain)
    runner.run_checked(f"rm -f {safe_path(path)}", "Remove deploy script")
