"""Configuration loading utilities for vps-deployer."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

from dotenv import load_dotenv

from .errors import ConfigError
from .ssh.credentials import SSHCredentials

_DEFAULT_CONFIG_PATH = Path("config/default_config.json")
_ENV_PREFIX = "VPS_DEPLOYER_"


@dataclass
class HostConfig:
    """Layout of the shared host that receives deployments."""

    app_domain: str = ""
    projects_root: str = "/var/www"
    deploy_user: Optional[str] = None
    port_mapping_file: str = "/etc/nginx/subdomain-ports.map"
    markers_dir: str = "/var/lib/vps-deployer/markers"
    storage_root: str = "/var/www/storage"

    def project_path(self, subdomain: str) -> str:
        return f"{self.projects_root.rstrip('/')}/{subdomain}"

    def marker_path(self, subdomain: str) -> str:
        return f"{self.markers_dir.rstrip('/')}/{subdomain}.json"

    def public_host(self, subdomain: str) -> str:
        return f"{subdomain}.{self.app_domain}"


@dataclass
class TimeoutConfig:
    """Per-command timeouts in seconds."""

    connect: int = 30
    install: int = 300
    build: int = 600
    orm: int = 120
    discovery_probe: int = 15
    # Grace period between starting a process and checking its health
    start_grace: float = 3.0


@dataclass
class GitHubConfig:
    """Hosted CI settings."""

    api_url: str = "https://api.github.com"
    workflow_path: str = ".github/workflows/vps-deployer-deploy.yml"
    request_timeout: int = 30


@dataclass
class StoreConfig:
    """System-of-record settings."""

    path: Optional[str] = None
    encryption_key: Optional[str] = None


@dataclass
class AppConfig:
    """Top-level configuration, built once and passed to every component."""

    ssh: SSHCredentials = field(default_factory=lambda: SSHCredentials(host="", username=""))
    host: HostConfig = field(default_factory=HostConfig)
    timeouts: TimeoutConfig = field(default_factory=TimeoutConfig)
    github: GitHubConfig = field(default_factory=GitHubConfig)
    store: StoreConfig = field(default_factory=StoreConfig)

    @property
    def deploy_user(self) -> str:
        return self.host.deploy_user or self.ssh.username or "root"

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "AppConfig":
        ssh_payload = payload.get("ssh", {}) or {}
        host_payload = payload.get("host", {}) or {}
        timeouts_payload = payload.get("timeouts", {}) or {}
        github_payload = payload.get("github", {}) or {}
        store_payload = payload.get("store", {}) or {}

        # Keys starting with "_" are comments
        def _clean(section: Dict[str, Any]) -> Dict[str, Any]:
            return {k: v for k, v in section.items() if not k.startswith("_")}

        ssh_defaults = SSHCredentials(host="", username="").__dict__
        return cls(
            ssh=SSHCredentials(**{**ssh_defaults, **_clean(ssh_payload)}),
            host=HostConfig(**{**HostConfig().__dict__, **_clean(host_payload)}),
            timeouts=TimeoutConfig(
                **{**TimeoutConfig().__dict__, **_clean(timeouts_payload)}
            ),
            github=GitHubConfig(**{**GitHubConfig().__dict__, **_clean(github_payload)}),
            store=StoreConfig(**{**StoreConfig().__dict__, **_clean(store_payload)}),
        )

    def validate(self) -> None:
        if not self.ssh.host:
            raise ConfigError("SSH host is not set (VPS_DEPLOYER_SSH_HOST)")
        if not self.ssh.username:
            raise ConfigError("SSH user is not set (VPS_DEPLOYER_SSH_USER)")
        if not self.host.app_domain:
            raise ConfigError("App domain is not set (VPS_DEPLOYER_APP_DOMAIN)")
        try:
            self.ssh.validate()
        except ValueError as exc:
            raise ConfigError(str(exc)) from exc


def _apply_env(config: AppConfig) -> None:
    def env(name: str) -> Optional[str]:
        return os.getenv(_ENV_PREFIX + name)

    if env("SSH_HOST"):
        config.ssh.host = env("SSH_HOST") or ""
    if env("SSH_PORT"):
        try:
            config.ssh.port = int(env("SSH_PORT") or "22")
        except ValueError as exc:
            raise ConfigError("VPS_DEPLOYER_SSH_PORT must be an integer") from exc
    if env("SSH_USER"):
        config.ssh.username = env("SSH_USER") or ""
    if env("SSH_PRIVATE_KEY"):
        # Keys pasted into a single env line carry escaped newlines
        config.ssh.private_key = (env("SSH_PRIVATE_KEY") or "").replace("\\n", "\n")
    if env("SSH_KEY_PATH"):
        config.ssh.key_path = env("SSH_KEY_PATH")
    if env("SSH_PASSPHRASE"):
        config.ssh.passphrase = env("SSH_PASSPHRASE")

    host_fields = {
        "APP_DOMAIN": "app_domain",
        "PROJECTS_ROOT": "projects_root",
        "DEPLOY_USER": "deploy_user",
        "PORT_MAPPING_FILE": "port_mapping_file",
        "MARKERS_DIR": "markers_dir",
        "STORAGE_ROOT": "storage_root",
    }
    for env_name, attr in host_fields.items():
        value = env(env_name)
        if value:
            setattr(config.host, attr, value)

    if env("STORE_PATH"):
        config.store.path = env("STORE_PATH")
    if env("ENCRYPTION_KEY"):
        config.store.encryption_key = env("ENCRYPTION_KEY")
    if env("GITHUB_API_URL"):
        config.github.api_url = env("GITHUB_API_URL") or config.github.api_url


def load_config(path: Optional[str] = None) -> AppConfig:
    """Load configuration from `path`, the default location, and the environment.

    Environment variables (higher priority than the config file) are read
    after `load_dotenv()`, so a local `.env` file works too:

    - VPS_DEPLOYER_SSH_HOST / _SSH_PORT / _SSH_USER
    - VPS_DEPLOYER_SSH_PRIVATE_KEY or VPS_DEPLOYER_SSH_KEY_PATH
    - VPS_DEPLOYER_APP_DOMAIN, VPS_DEPLOYER_PROJECTS_ROOT
    - VPS_DEPLOYER_PORT_MAPPING_FILE, VPS_DEPLOYER_MARKERS_DIR
    - VPS_DEPLOYER_STORAGE_ROOT, VPS_DEPLOYER_DEPLOY_USER
    - VPS_DEPLOYER_STORE_PATH, VPS_DEPLOYER_ENCRYPTION_KEY
    """
    load_dotenv()

    if path and not Path(path).is_file():
        raise ConfigError(f"Configuration file not found: {path}")

    config = AppConfig()
    for candidate in [Path(path)] if path else [_DEFAULT_CONFIG_PATH]:
        if candidate.is_file():
            with candidate.open("r", encoding="utf-8") as handle:
                try:
                    data = json.load(handle)
                except json.JSONDecodeError as exc:
                    raise ConfigError(f"Invalid JSON in {candidate}: {exc}") from exc
            config = AppConfig.from_dict(data)
            break

    _apply_env(config)
    return config
