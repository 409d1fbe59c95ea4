"""Record types held by the system of record."""

from __future__ import annotations

import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional


def new_id() -> str:
    return uuid.uuid4().hex


def utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.title() for part in rest)


def _snake(name: str) -> str:
    return "".join(f"_{c.lower()}" if c.isupper() else c for c in name)


class ProjectStatus(str, Enum):
    PENDING = "PENDING"
    BUILDING = "BUILDING"
    ACTIVE = "ACTIVE"
    FAILED = "FAILED"
    STOPPED = "STOPPED"


class DeploymentStatus(str, Enum):
    BUILDING = "BUILDING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"


class _Record:
    """camelCase dict conversion shared by every record."""

    def to_dict(self) -> Dict[str, Any]:
        payload = {}
        for key, value in asdict(self).items():
            if isinstance(value, Enum):
                value = value.value
            payload[_camel(key)] = value
        return payload

    @classmethod
    def from_dict(cls, data: Dict[str, Any]):
        return cls(**{_snake(k): v for k, v in data.items()})


@dataclass
class User(_Record):
    id: str
    github_username: Optional[str] = None
    encrypted_github_token: Optional[str] = None


@dataclass
class Project(_Record):
    user_id: str
    name: str
    subdomain: str
    repo_url: str
    port: int
    branch: str = "main"
    root_directory: Optional[str] = None
    install_command: Optional[str] = None
    build_command: Optional[str] = None
    start_command: Optional[str] = None
    node_version: str = "20"
    status: ProjectStatus = ProjectStatus.PENDING
    last_commit_hash: Optional[str] = None
    pm2_id: Optional[str] = None
    app_type: Optional[str] = None
    nginx_config_path: Optional[str] = None
    id: str = field(default_factory=new_id)
    created_at: str = field(default_factory=utcnow_iso)
    updated_at: str = field(default_factory=utcnow_iso)

    def __post_init__(self) -> None:
        self.status = ProjectStatus(self.status)


@dataclass
class Deployment(_Record):
    project_id: str
    commit_hash: str = "pending"
    commit_msg: Optional[str] = None
    status: DeploymentStatus = DeploymentStatus.BUILDING
    logs: Optional[str] = None
    last_completed_step: Optional[str] = None
    error_msg: Optional[str] = None
    id: str = field(default_factory=new_id)
    started_at: str = field(default_factory=utcnow_iso)
    finished_at: Optional[str] = None

    def __post_init__(self) -> None:
        self.status = DeploymentStatus(self.status)


@dataclass
class EnvironmentVar(_Record):
    project_id: str
    key: str
    encrypted_value: str
    id: str = field(default_factory=new_id)


@dataclass
class StorageBucket(_Record):
    project_id: str
    name: str
    path: str
    id: str = field(default_factory=new_id)
