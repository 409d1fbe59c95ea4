"""SSH credential helpers."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


@dataclass
class SSHCredentials:
    """Key-based connection settings for the shared host."""

    host: str
    username: str
    port: int = 22
    private_key: Optional[str] = None
    key_path: Optional[str] = None
    passphrase: Optional[str] = None
    timeout: int = 30

    def validate(self) -> None:
        if not self.private_key and not self.key_path:
            raise ValueError("Key authentication requires private_key or key_path")

    def describe(self) -> str:
        return f"{self.username}@{self.host}:{self.port}"
