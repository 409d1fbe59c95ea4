"""Input validation run before any remote call."""

from __future__ import annotations

import re
from typing import Iterable, Optional

from ..errors import ValidationError

MIN_USER_PORT = 3001
MAX_USER_PORT = 65535
RESERVED_PORTS = frozenset({22, 80, 443, 3306, 5432, 6379, 27017})
RESERVED_SUBDOMAINS = frozenset({"www", "api", "admin", "mail", "ftp", "ssh"})
PROTECTED_ENV_KEYS = frozenset({"PATH", "HOME", "USER", "SHELL"})

_SUBDOMAIN = re.compile(r"^[a-z0-9]([a-z0-9-]*[a-z0-9])?$")
_BRANCH = re.compile(r"^[a-zA-Z0-9/_.-]+$")
_ENV_KEY = re.compile(r"^[A-Z_][A-Z0-9_]*$")
_ROOT_DIR = re.compile(r"^[A-Za-z0-9_.-]+(/[A-Za-z0-9_.-]+)*$")


def validate_subdomain(subdomain: str) -> None:
    if not _SUBDOMAIN.match(subdomain or ""):
        raise ValidationError(
            "Invalid subdomain format. Use lowercase letters, numbers, and hyphens only."
        )
    if len(subdomain) < 3 or len(subdomain) > 63:
        raise ValidationError("Subdomain must be 3-63 characters long")
    if subdomain in RESERVED_SUBDOMAINS:
        raise ValidationError("This subdomain is reserved")


def validate_port(port) -> None:
    if isinstance(port, bool) or not isinstance(port, int):
        raise ValidationError("Port must be an integer")
    if port < MIN_USER_PORT or port > MAX_USER_PORT:
        raise ValidationError(f"Port must be between {MIN_USER_PORT} and {MAX_USER_PORT}")
    if port in RESERVED_PORTS:
        raise ValidationError("Port is reserved for system services")


def validate_branch(branch: str) -> None:
    if not _BRANCH.match(branch or ""):
        raise ValidationError("Invalid branch name")
    if branch.startswith("-") or branch.endswith(".lock") or ".." in branch:
        raise ValidationError("Invalid branch name format")


def validate_env_key(key: str) -> None:
    if not _ENV_KEY.match(key or ""):
        raise ValidationError(f"Invalid environment variable key: {key}")
    if key in PROTECTED_ENV_KEYS:
        raise ValidationError(f"Cannot override system variable: {key}")


def validate_env_keys(keys: Iterable[str]) -> None:
    for key in keys:
        validate_env_key(key)


def validate_root_directory(root_directory: Optional[str]) -> None:
    if not root_directory:
        return
    if not _ROOT_DIR.match(root_directory) or ".." in root_directory.split("/"):
        raise ValidationError(f'Invalid root directory "{root_directory}"')


def is_valid_subdomain(subdomain: str) -> bool:
    try:
        validate_subdomain(subdomain)
    except ValidationError:
        return False
    return True


def candidate_ports() -> Iterable[int]:
    for port in range(MIN_USER_PORT, MAX_USER_PORT + 1):
        if port not in RESERVED_PORTS:
            yield port
