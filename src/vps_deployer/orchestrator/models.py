"""Data models for the orchestrator module."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class StepStatus(Enum):
    """Lifecycle of a pipeline step."""
    PENDING = "pending"
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"

    @property
    def terminal(self) -> bool:
        return self in (StepStatus.SUCCESS, StepStatus.FAILED, StepStatus.SKIPPED)


@dataclass
class DeploymentStep:
    """One named step of a create/redeploy pipeline."""
    id: str
    name: str
    command: Optional[str] = None
    status: StepStatus = StepStatus.PENDING
    started_at: Optional[str] = None
    finished_at: Optional[str] = None
    output: Optional[str] = None
    error: Optional[str] = None
    duration_ms: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "status": self.status.value,
        }
        optional = {
            "command": self.command,
            "startedAt": self.started_at,
            "finishedAt": self.finished_at,
            "output": self.output,
            "error": self.error,
            "durationMs": self.duration_ms,
        }
        payload.update({k: v for k, v in optional.items() if v is not None})
        return payload

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DeploymentStep":
        return cls(
            id=data["id"],
            name=data.get("name", data["id"]),
            command=data.get("command"),
            status=StepStatus(data.get("status", "pending")),
            started_at=data.get("startedAt"),
            finished_at=data.get("finishedAt"),
            output=data.get("output"),
            error=data.get("error"),
            duration_ms=data.get("durationMs"),
        )


@dataclass(frozen=True)
class ProgressSnapshot:
    """Immutable view of every step plus the transcript at one instant."""
    steps: tuple
    text_log: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "steps": [step.to_dict() for step in self.steps],
            "textLog": self.text_log,
        }


@dataclass
class DeployResult:
    """Outcome of create / redeploy / restart / stop."""
    success: bool
    project: Optional[Any] = None
    deployment: Optional[Any] = None
    error: Optional[str] = None
    logs: Optional[str] = None
    url: Optional[str] = None
    warnings: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"success": self.success}
        if self.project is not None:
            payload["project"] = self.project.to_dict()
        if self.deployment is not None:
            payload["deployment"] = self.deployment.to_dict()
        for key, value in (("error", self.error), ("logs", self.logs), ("url", self.url)):
            if value is not None:
                payload[key] = value
        if self.warnings:
            payload["warnings"] = list(self.warnings)
        return payload


@dataclass
class DeleteResult:
    """Outcome of a delete; ``errors`` lists each failed cleanup step."""
    success: bool
    errors: List[str] = field(default_factory=list)
    logs: str = ""

    @property
    def error(self) -> Optional[str]:
        if not self.errors:
            return None
        return "Deletion failed:\n" + "\n".join(self.errors)

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"success": self.success, "logs": self.logs}
        if self.errors:
            payload["error"] = self.error
            payload["errors"] = list(self.errors)
        return payload


@dataclass
class CreateProjectInput:
    """Everything a caller supplies to provision a new project."""
    user_id: str
    name: str
    subdomain: str
    repo_url: str
    branch: str = "main"
    port: Optional[int] = None
    root_directory: Optional[str] = None
    env_vars: Dict[str, str] = field(default_factory=dict)
    install_command: Optional[str] = None
    build_command: Optional[str] = None
    start_command: Optional[str] = None
    node_version: str = "20"
