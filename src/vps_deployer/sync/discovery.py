"""Rebuild the list of deployed projects by inspecting the live host."""

from __future__ import annotations

import json
import re
from typing import Dict, List, Optional, Tuple

from ..config import HostConfig
from ..detectors.git import GitHubProvider, normalize_remote_url
from ..errors import DeployerError, ValidationError
from ..process.supervisor import ECOSYSTEM_FILE, ProcessSupervisor, normalize_status
from ..proxy.routing import ParsedMapping, RoutingTable
from ..scripts.sanitize import safe_path
from ..ssh.executor import CommandRunner
from ..utils.logging import get_logger
from .models import DiscoveredProject, DiscoveryResult

logger = get_logger(__name__)

SEPARATOR = "===VPS_DEPLOYER_SEP==="
NONE = "__NONE__"
SYSTEM_ENV_KEYS = frozenset({"NODE_ENV", "PORT"})

_ECO_NAME = re.compile(r"name:\s*['\"]([^'\"]+)['\"]")
_ECO_PORT = re.compile(r"PORT:\s*(\d+)")
_ECO_CWD = re.compile(r"cwd:\s*['\"]([^'\"]+)['\"]")


def parse_nullable(value: Optional[str]) -> Optional[str]:
    if not value or value == NONE:
        return None
    return value


def parse_ecosystem(raw: Optional[str]) -> Tuple[Optional[str], Optional[int], Optional[str]]:
    """Extract (name, port, cwd) from a process-supervisor config file."""
    if not raw:
        return None, None, None
    name = _ECO_NAME.search(raw)
    port = _ECO_PORT.search(raw)
    cwd = _ECO_CWD.search(raw)
    return (
        name.group(1) if name else None,
        int(port.group(1)) if port else None,
        cwd.group(1) if cwd else None,
    )


def parse_package_json(raw: Optional[str]) -> Tuple[Optional[str], Optional[str]]:
    """Return (package name, framework name) from manifest text."""
    if not raw:
        return None, None
    try:
        pkg = json.loads(raw)
    except json.JSONDecodeError:
        return None, None
    if not isinstance(pkg, dict):
        return None, None
    deps = {}
    for section in ("dependencies", "devDependencies"):
        if isinstance(pkg.get(section), dict):
            deps.update(pkg[section])
    app_type = None
    if "next" in deps:
        app_type = "Next.js"
    elif "vite" in deps:
        app_type = "Vite"
    return pkg.get("name") or None, app_type


def _unquote(value: str) -> str:
    if len(value) >= 2 and value[0] == value[-1] == '"':
        inner = value[1:-1]
        return re.sub(r'\\(.)', lambda m: "\n" if m.group(1) == "n" else m.group(1), inner)
    if len(value) >= 2 and value[0] == value[-1] == "'":
        return value[1:-1]
    return value


def parse_env_file(raw: Optional[str]) -> Dict[str, str]:
    """Parse ``KEY=value`` lines, skipping comments and system-managed keys."""
    variables: Dict[str, str] = {}
    if not raw:
        return variables
    for line in raw.split("\n"):
        trimmed = line.strip()
        if not trimmed or trimmed.startswith("#"):
            continue
        key, sep, value = trimmed.partition("=")
        key = key.strip()
        if not sep or not key or key in SYSTEM_ENV_KEYS:
            continue
        variables[key] = _unquote(value.strip())
    return variables


def parse_markers(raw: str) -> Dict[str, str]:
    """Map subdomain to owner id from concatenated marker files."""
    owners: Dict[str, str] = {}
    for line in raw.strip().split("\n"):
        trimmed = line.strip()
        if not trimmed:
            continue
        try:
            data = json.loads(trimmed)
        except json.JSONDecodeError:
            continue
        if isinstance(data, dict) and data.get("subdomain") and data.get("userId"):
            owners[data["subdomain"]] = data["userId"]
    return owners


def probe_command(project_path: str) -> str:
    """One round trip that gathers every per-project field."""
    path = safe_path(project_path)
    sections = [
        f'test -d {path} && echo "exists" || echo "missing"',
        f'(cd {path} 2>/dev/null && git remote get-url origin 2>/dev/null) || echo "{NONE}"',
        f'(cd {path} 2>/dev/null && git rev-parse --short HEAD 2>/dev/null) || echo "{NONE}"',
        f'(cd {path} 2>/dev/null && git branch --show-current 2>/dev/null) || echo "{NONE}"',
        f'cat {safe_path(project_path + "/" + ECOSYSTEM_FILE)} 2>/dev/null || echo "{NONE}"',
        f'cat {safe_path(project_path + "/package.json")} 2>/dev/null || echo "{NONE}"',
        f'cat {safe_path(project_path + "/.env")} 2>/dev/null || echo "{NONE}"',
    ]
    return f'; echo "{SEPARATOR}"; '.join(sections)


def workdir_probe_command(work_dir: str) -> str:
    return (
        f'cat {safe_path(work_dir + "/package.json")} 2>/dev/null || echo "{NONE}"; '
        f'echo "{SEPARATOR}"; '
        f'cat {safe_path(work_dir + "/.env")} 2>/dev/null || echo "{NONE}"'
    )


class HostDiscovery:
    """Enumerates routing entries for the managed domain and enriches each one."""

    def __init__(
        self,
        runner: CommandRunner,
        host: HostConfig,
        *,
        probe_timeout: Optional[float] = 15,
    ) -> None:
        self.runner = runner
        self.host = host
        self.probe_timeout = probe_timeout
        self.routing = RoutingTable(runner, host)
        self.supervisor = ProcessSupervisor(runner)
        self._github = GitHubProvider()

    def discover(self) -> DiscoveryResult:
        result = DiscoveryResult()
        table = self.routing.parse()
        result.errors.extend(f"Port mapping parse error: {w}" for w in table.warnings)

        mappings = table.for_domain(self.host.app_domain)
        if not mappings:
            return result

        owners = self.read_markers()
        statuses = self.process_statuses()
        for mapping in mappings:
            try:
                result.projects.append(self.gather(mapping, owners, statuses))
            except DeployerError as exc:
                result.errors.append(f"Failed to gather data for {mapping.subdomain}: {exc}")
        logger.info("Discovered %d project(s) on the host", len(result.projects))
        return result

    def read_markers(self) -> Dict[str, str]:
        markers = safe_path(self.host.markers_dir)
        command = (
            f'for f in {markers}/*.json; do [ -f "$f" ] && cat "$f" && echo ""; '
            "done 2>/dev/null || true"
        )
        try:
            result = self.runner.execute(command)
        except DeployerError as exc:
            logger.warning("Could not read ownership markers: %s", exc)
            return {}
        return parse_markers(result.stdout)

    def process_statuses(self) -> Dict[str, str]:
        try:
            return self.supervisor.status_map()
        except DeployerError as exc:
            logger.warning("Could not list PM2 processes: %s", exc)
            return {}

    def gather(
        self,
        mapping: ParsedMapping,
        owners: Dict[str, str],
        statuses: Dict[str, str],
    ) -> DiscoveredProject:
        project_path = self.host.project_path(mapping.subdomain)
        result = self.runner.execute(probe_command(project_path), timeout=self.probe_timeout)
        sections = [s.strip() for s in result.stdout.split(SEPARATOR)]
        sections += [""] * (7 - len(sections))

        repo_url = normalize_remote_url(parse_nullable(sections[1]))
        repo_owner = None
        if repo_url and self._github.detect(repo_url):
            try:
                repo_owner = self._github.parse_repo(repo_url).owner
            except ValidationError:
                repo_owner = None

        eco_name, eco_port, eco_cwd = parse_ecosystem(parse_nullable(sections[4]))
        package_raw = parse_nullable(sections[5])
        env_raw = parse_nullable(sections[6])

        root_directory = None
        if eco_cwd and eco_cwd != project_path and eco_cwd.startswith(project_path + "/"):
            root_directory = eco_cwd[len(project_path) + 1:]
            work = self.runner.execute(
                workdir_probe_command(eco_cwd), timeout=self.probe_timeout
            )
            parts = [s.strip() for s in work.stdout.split(SEPARATOR)] + ["", ""]
            package_raw = parse_nullable(parts[0]) or package_raw
            env_raw = parse_nullable(parts[1]) or env_raw

        project_name, app_type = parse_package_json(package_raw)
        pm2_id = eco_name or mapping.subdomain
        return DiscoveredProject(
            subdomain=mapping.subdomain,
            domain=mapping.domain,
            port=mapping.port,
            project_path=project_path,
            nginx_config_path=self.host.port_mapping_file,
            owner_user_id=owners.get(mapping.subdomain),
            repo_url=repo_url,
            repo_owner=repo_owner,
            branch=parse_nullable(sections[3]),
            commit_hash=parse_nullable(sections[2]),
            pm2_id=pm2_id,
            pm2_status=normalize_status(statuses.get(pm2_id)),
            ecosystem_port=eco_port,
            ecosystem_cwd=eco_cwd,
            project_name=project_name or mapping.subdomain,
            app_type=app_type,
            env_vars=parse_env_file(env_raw),
            has_project_dir=sections[0] == "exists",
            root_directory=root_directory,
        )


def partition_by_owner(
    projects: List[DiscoveredProject],
    user_id: str,
    github_username: Optional[str],
) -> Tuple[List[DiscoveredProject], List[DiscoveredProject]]:
    """
    Split discovered projects into (owned by user, unattributed).

    The git remote owner decides when both it and the user's handle are
    known; otherwise the ownership marker decides. A project with neither
    signal belongs to nobody and lands in the unattributed list.
    """
    handle = github_username.lower() if github_username else None
    owned: List[DiscoveredProject] = []
    unattributed: List[DiscoveredProject] = []
    for project in projects:
        if not project.repo_owner and not project.owner_user_id:
            unattributed.append(project)
        elif handle and project.repo_owner:
            if project.repo_owner.lower() == handle:
                owned.append(project)
        elif project.owner_user_id == user_id:
            owned.append(project)
    return owned, unattributed
