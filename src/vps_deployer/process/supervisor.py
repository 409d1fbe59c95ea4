"""PM2 process supervisor operations."""

from __future__ import annotations

import json
import time
from typing import Any, Callable, Dict, List, Optional

from ..errors import ConsistencyError, RemoteCommandError
from ..scripts.builders import pm2_command
from ..scripts.sanitize import safe_name
from ..ssh.executor import CommandRunner
from ..ssh.probe import RemoteProbe
from ..utils.logging import get_logger

logger = get_logger(__name__)

ECOSYSTEM_FILE = "ecosystem.config.js"

ONLINE = "online"
STOPPED = "stopped"
ERRORED = "errored"
NOT_FOUND = "not_found"


def normalize_status(raw: Optional[str]) -> str:
    """Collapse PM2's status vocabulary into online/stopped/errored/not_found."""
    if raw == "online":
        return ONLINE
    if raw in ("stopped", "stopping"):
        return STOPPED
    if raw in ("errored", "launch failed"):
        return ERRORED
    return NOT_FOUND


def process_name(subdomain: str) -> str:
    return safe_name(subdomain.lower(), "process name")


class ProcessSupervisor:
    """Thin wrapper over the PM2 CLI on the host."""

    def __init__(
        self,
        runner: CommandRunner,
        *,
        start_grace: float = 3.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.runner = runner
        self.start_grace = start_grace
        self._sleep = sleep

    def _run(self, args: str, description: str, cwd: Optional[str] = None) -> str:
        result = self.runner.execute(pm2_command(args, cwd))
        if not result.ok:
            raise RemoteCommandError(
                f"{description} failed: {result.output.strip()}",
                exit_code=result.exit_status,
                output=result.output,
            )
        return result.stdout

    def start(self, project_path: str) -> str:
        return self._run(f"start {ECOSYSTEM_FILE}", "PM2 start", cwd=project_path)

    def start_or_restart(self, project_path: str) -> str:
        """Apply a regenerated ecosystem file to a (possibly stopped) process."""
        return self._run(
            f"startOrRestart {ECOSYSTEM_FILE} --update-env", "PM2 restart", cwd=project_path
        )

    def restart(self, name: str) -> str:
        return self._run(f"restart {process_name(name)}", "PM2 restart")

    def stop(self, name: str) -> str:
        return self._run(f"stop {process_name(name)}", "PM2 stop")

    def delete(self, name: str) -> str:
        return self._run(f"delete {process_name(name)}", "PM2 delete")

    def discard(self, name: str) -> None:
        """Delete ``name`` if it exists; used on rollback where absence is fine."""
        result = self.runner.execute(pm2_command(f"delete {process_name(name)}"))
        if not result.ok:
            logger.debug("pm2 delete %s: %s", name, result.output.strip())

    def save(self) -> str:
        return self._run("save", "PM2 save")

    def processes(self) -> List[Dict[str, Any]]:
        result = self.runner.execute(pm2_command("jlist"))
        if not result.ok:
            raise RemoteCommandError(
                f"PM2 jlist failed: {result.output.strip()}",
                exit_code=result.exit_status,
                output=result.output,
            )
        try:
            data = json.loads(result.stdout or "[]")
        except json.JSONDecodeError as exc:
            raise ConsistencyError(f"Unreadable PM2 process list: {exc}") from exc
        return data if isinstance(data, list) else []

    def status_map(self) -> Dict[str, str]:
        """Raw PM2 status keyed by process name."""
        statuses: Dict[str, str] = {}
        for entry in self.processes():
            name = entry.get("name")
            if name:
                statuses[name] = (entry.get("pm2_env") or {}).get("status", "")
        return statuses

    def status(self, name: str) -> str:
        return normalize_status(self.status_map().get(name))

    def verify_online(self, name: str, port: int, probe: RemoteProbe) -> None:
        """Wait out the start grace period, then require online status and a bound port."""
        if self.start_grace:
            self._sleep(self.start_grace)
        if self.status_map().get(name) != ONLINE:
            raise ConsistencyError("Application failed to start")
        if not probe.port_in_use(port):
            raise ConsistencyError(f"Port {port} not bound after start")

    def verify_gone(self, name: str) -> None:
        if name in self.status_map():
            raise ConsistencyError(f"PM2 process {name} still running after delete")
