"""Reverse-proxy routing table: one ``host port;`` line per project."""

from __future__ import annotations

import re
import secrets
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Tuple

from ..config import HostConfig
from ..errors import RemoteCommandError, RoutingTableError
from ..scripts.sanitize import safe_name, safe_path
from ..ssh.executor import CommandRunner
from ..utils.logging import get_logger

logger = get_logger(__name__)

_MAP_LINE = re.compile(r"^(\S+)\s+(\d+);$")

NGINX_TEST_COMMAND = "sudo nginx -t 2>&1"
NGINX_RELOAD_COMMAND = "sudo systemctl reload nginx"


@dataclass(frozen=True)
class ParsedMapping:
    subdomain: str
    domain: str
    port: int
    server_name: str


@dataclass
class ParsedRoutingTable:
    mappings: List[ParsedMapping] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    def for_domain(self, domain: str) -> List[ParsedMapping]:
        return [m for m in self.mappings if m.domain == domain]


def parse_routing_table(content: str) -> ParsedRoutingTable:
    """Parse map content; malformed lines become warnings, never errors."""
    table = ParsedRoutingTable()
    for line in content.split("\n"):
        trimmed = line.strip()
        if not trimmed or trimmed.startswith("#"):
            continue
        match = _MAP_LINE.match(trimmed)
        if not match:
            table.warnings.append(f'Unparseable map line: "{trimmed}"')
            continue
        server_name = match.group(1)
        parts = server_name.split(".")
        if len(parts) < 3:
            table.warnings.append(f'Invalid server name in map: "{server_name}"')
            continue
        table.mappings.append(
            ParsedMapping(
                subdomain=parts[0],
                domain=".".join(parts[1:]),
                port=int(match.group(2)),
                server_name=server_name,
            )
        )
    return table


def _render(lines: List[str]) -> str:
    kept = [line for line in lines if line.strip()]
    return "\n".join(kept) + "\n" if kept else ""


class RoutingTable:
    """Mutates the proxy map file with test-before-reload and rollback."""

    def __init__(self, runner: CommandRunner, host: HostConfig) -> None:
        self.runner = runner
        self.host = host

    @property
    def path(self) -> str:
        return self.host.port_mapping_file

    def read(self) -> str:
        result = self.runner.execute(f"cat {safe_path(self.path)}")
        if not result.ok:
            raise RemoteCommandError(
                f"Failed to read {self.path}: {result.stderr.strip()}",
                exit_code=result.exit_status,
                output=result.stderr,
            )
        return result.stdout

    def parse(self) -> ParsedRoutingTable:
        try:
            content = self.read()
        except RemoteCommandError as exc:
            return ParsedRoutingTable(warnings=[str(exc)])
        return parse_routing_table(content)

    def lookup(self, subdomain: str) -> Optional[int]:
        server_name = self.host.public_host(subdomain)
        for mapping in self.parse().mappings:
            if mapping.server_name == server_name:
                return mapping.port
        return None

    def add(self, subdomain: str, port: int) -> bool:
        """Map ``subdomain`` to ``port``; returns False when already mapped exactly."""
        server_name = self.host.public_host(safe_name(subdomain, "subdomain"))
        line = f"{server_name} {int(port)};"
        prefix = f"{server_name} "

        def mutate(lines: List[str]) -> Optional[List[str]]:
            if any(existing.strip() == line for existing in lines):
                return None
            kept = [existing for existing in lines if not existing.strip().startswith(prefix)]
            return kept + [line]

        return self._mutate(mutate, f"adding {server_name}")

    def remove(self, subdomain: str) -> bool:
        server_name = self.host.public_host(safe_name(subdomain, "subdomain"))
        prefix = f"{server_name} "

        def mutate(lines: List[str]) -> Optional[List[str]]:
            kept = [existing for existing in lines if not existing.strip().startswith(prefix)]
            return None if len(kept) == len(lines) else kept

        return self._mutate(mutate, f"removing {server_name}")

    def update(self, subdomain: str, port: int) -> bool:
        server_name = self.host.public_host(safe_name(subdomain, "subdomain"))
        line = f"{server_name} {int(port)};"
        prefix = f"{server_name} "

        def mutate(lines: List[str]) -> Optional[List[str]]:
            updated = [line if existing.strip().startswith(prefix) else existing for existing in lines]
            return None if updated == lines else updated

        return self._mutate(mutate, f"updating {server_name}")

    def test_config(self) -> Tuple[bool, str]:
        result = self.runner.execute(NGINX_TEST_COMMAND)
        if not result.ok:
            return False, (result.stdout or result.stderr or "nginx -t failed").strip()
        return True, ""

    def reload(self) -> None:
        result = self.runner.execute(NGINX_RELOAD_COMMAND)
        if not result.ok:
            raise RemoteCommandError(
                f"Failed to reload Nginx: {result.stderr.strip()}",
                exit_code=result.exit_status,
                output=result.stderr,
            )

    def _mutate(self, mutate: Callable[[List[str]], Optional[List[str]]], action: str) -> bool:
        original = self.read()
        new_lines = mutate(original.split("\n"))
        if new_lines is None:
            logger.debug("Routing table unchanged when %s", action)
            return False

        self._write(_render(new_lines))
        valid, error = self.test_config()
        if not valid:
            logger.warning("Proxy rejected routing table after %s; restoring", action)
            self._write(original)
            raise RoutingTableError(f"Nginx config test failed after {action}: {error}")

        self.reload()
        logger.info("Routing table updated: %s", action)
        return True

    def _write(self, content: str) -> None:
        tmp_path = f"/tmp/vps-deployer-portmap-{secrets.token_hex(4)}.tmp"
        self.runner.write_file(tmp_path, content)
        self.runner.run_checked(
            f"sudo mv {safe_path(tmp_path)} {safe_path(self.path)}",
            "Move routing table into place",
        )
