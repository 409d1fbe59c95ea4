"""Allow-list sanitizing for values interpolated into remote shell commands."""

from __future__ import annotations

import base64
import re

from ..errors import ValidationError

_SAFE_PATH = re.compile(r"^/[A-Za-z0-9._/-]*$")
_SAFE_NAME = re.compile(r"^[A-Za-z0-9._-]+$")
_SAFE_BRANCH = re.compile(r"^[A-Za-z0-9/_.-]+$")
_SAFE_URL = re.compile(r"^https://[A-Za-z0-9.-]+(/[A-Za-z0-9_.-]+)+$")
# User supplied install/build/start overrides run inside bash -c '...'
_SAFE_COMMAND = re.compile(r"^[A-Za-z0-9 _./:=@,+&|-]+$")
_B64_PAYLOAD = re.compile(r"^[A-Za-z0-9+/=]*$")

_REDACTIONS = (
    (re.compile(r'GIT_ASKPASS="[^"]*"'), 'GIT_ASKPASS="***"'),
    (re.compile(r"echo '[A-Za-z0-9+/=]*' \| base64 -d"), "echo '***' | base64 -d"),
    (re.compile(r'echo\s+"[^"]*"'), 'echo "***"'),
    (re.compile(r"(https?://)[^/@\s]+@"), r"\1***@"),
    (re.compile(r"/tmp/[A-Za-z0-9._-]*askpass[A-Za-z0-9._-]*"), "[credential helper]"),
)


def strip_unsafe(value: str) -> str:
    """Drop every character outside ``[A-Za-z0-9-_./]``."""
    return re.sub(r"[^A-Za-z0-9\-_./]", "", value)


def safe_path(path: str) -> str:
    """Return ``path`` double-quoted, rejecting anything outside the allow-list."""
    if not _SAFE_PATH.match(path) or "/../" in f"{path}/":
        raise ValidationError(f"Unsafe remote path: {path!r}")
    return f'"{path}"'


def safe_name(value: str, what: str = "name") -> str:
    if not _SAFE_NAME.match(value):
        raise ValidationError(f"Unsafe {what}: {value!r}")
    return value


def safe_branch(value: str) -> str:
    if not _SAFE_BRANCH.match(value) or value.startswith("-"):
        raise ValidationError(f"Unsafe branch name: {value!r}")
    return value


def safe_url(value: str) -> str:
    if not _SAFE_URL.match(value):
        raise ValidationError(f"Unsafe repository URL: {value!r}")
    return value


def safe_command(value: str) -> str:
    if not value.strip() or not _SAFE_COMMAND.match(value):
        raise ValidationError(f"Command contains unsupported characters: {value!r}")
    return value


def b64_payload(content: str) -> str:
    encoded = base64.b64encode(content.encode("utf-8")).decode("ascii")
    assert _B64_PAYLOAD.match(encoded)
    return encoded


def redact_command(command: str) -> str:
    """Mask credential material before a command is stored or logged."""
    for pattern, replacement in _REDACTIONS:
        command = pattern.sub(replacement, command)
    return command
