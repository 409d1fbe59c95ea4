"""Helpers shared by the detector families."""

from __future__ import annotations

import json
from typing import Any, Dict

from ..scripts.sanitize import safe_path
from ..ssh.executor import CommandRunner


def read_package_json(runner: CommandRunner, work_dir: str) -> Dict[str, Any]:
    """Read ``package.json`` on the host; an absent or broken manifest reads as ``{}``."""
    result = runner.execute(f'cat {safe_path(work_dir + "/package.json")} 2>/dev/null || echo "{{}}"')
    try:
        data = json.loads(result.stdout or "{}")
    except json.JSONDecodeError:
        return {}
    return data if isinstance(data, dict) else {}


def dependency_names(package: Dict[str, Any]) -> set:
    names = set()
    for section in ("dependencies", "devDependencies"):
        deps = package.get(section) or {}
        if isinstance(deps, dict):
            names.update(deps)
    return names

