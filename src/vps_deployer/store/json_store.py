"""Thread-safe in-memory store with optional JSON-file persistence."""

from __future__ import annotations

import json
import threading
from contextlib import contextmanager
from dataclasses import replace
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Set

from ..errors import ConflictError, NotFoundError
from ..utils.logging import get_logger
from .base import ProjectStore
from .models import Deployment, EnvironmentVar, Project, StorageBucket, User, utcnow_iso

logger = get_logger(__name__)


class JsonProjectStore(ProjectStore):
    """Keeps every record in memory; writes one JSON document after each change."""

    def __init__(self, path: Optional[str] = None) -> None:
        self.path = Path(path) if path else None
        self._lock = threading.RLock()
        self._users: Dict[str, User] = {}
        self._projects: Dict[str, Project] = {}
        self._deployments: Dict[str, Deployment] = {}
        self._env_vars: Dict[str, EnvironmentVar] = {}
        self._buckets: Dict[str, StorageBucket] = {}
        self._reserved_ports: Set[int] = set()
        self._reserved_subdomains: Set[str] = set()
        if self.path and self.path.is_file():
            self._load()

    @contextmanager
    def transaction(self) -> Iterator["JsonProjectStore"]:
        with self._lock:
            yield self

    # users

    def get_user(self, user_id: str) -> Optional[User]:
        with self._lock:
            user = self._users.get(user_id)
            return replace(user) if user else None

    def save_user(self, user: User) -> User:
        with self._lock:
            self._users[user.id] = replace(user)
            self._save()
            return replace(user)

    def list_users(self) -> List[User]:
        with self._lock:
            return [replace(u) for u in self._users.values()]

    # projects

    def get_project(self, project_id: str) -> Optional[Project]:
        with self._lock:
            project = self._projects.get(project_id)
            return replace(project) if project else None

    def get_project_by_subdomain(self, subdomain: str) -> Optional[Project]:
        with self._lock:
            for project in self._projects.values():
                if project.subdomain == subdomain:
                    return replace(project)
            return None

    def list_projects(self, user_id: Optional[str] = None) -> List[Project]:
        with self._lock:
            projects = [
                replace(p)
                for p in self._projects.values()
                if user_id is None or p.user_id == user_id
            ]
        return sorted(projects, key=lambda p: p.created_at, reverse=True)

    def create_project(self, project: Project) -> Project:
        with self._lock:
            for existing in self._projects.values():
                if existing.subdomain == project.subdomain:
                    raise ConflictError("Subdomain is already taken")
                if existing.port == project.port:
                    raise ConflictError(f"Port {project.port} is already in use")
            self._projects[project.id] = replace(project)
            self._save()
            return replace(project)

    def update_project(self, project_id: str, **changes) -> Project:
        with self._lock:
            project = self._require(self._projects, project_id, "Project")
            updated = replace(project, updated_at=utcnow_iso(), **changes)
            self._projects[project_id] = updated
            self._save()
            return replace(updated)

    def delete_project(self, project_id: str) -> None:
        with self._lock:
            self._require(self._projects, project_id, "Project")
            del self._projects[project_id]
            for table in (self._deployments, self._env_vars, self._buckets):
                for key in [k for k, v in table.items() if v.project_id == project_id]:
                    del table[key]
            self._save()

    # deployments

    def create_deployment(self, deployment: Deployment) -> Deployment:
        with self._lock:
            self._require(self._projects, deployment.project_id, "Project")
            self._deployments[deployment.id] = replace(deployment)
            self._save()
            return replace(deployment)

    def update_deployment(self, deployment_id: str, **changes) -> Deployment:
        with self._lock:
            deployment = self._require(self._deployments, deployment_id, "Deployment")
            updated = replace(deployment, **changes)
            self._deployments[deployment_id] = updated
            self._save()
            return replace(updated)

    def get_deployment(self, deployment_id: str) -> Optional[Deployment]:
        with self._lock:
            deployment = self._deployments.get(deployment_id)
            return replace(deployment) if deployment else None

    def list_deployments(self, project_id: str) -> List[Deployment]:
        with self._lock:
            deployments = [replace(d) for d in self._deployments.values() if d.project_id == project_id]
        return sorted(deployments, key=lambda d: d.started_at, reverse=True)

    # environment variables

    def list_env_vars(self, project_id: str) -> List[EnvironmentVar]:
        with self._lock:
            return [replace(v) for v in self._env_vars.values() if v.project_id == project_id]

    def replace_env_vars(self, project_id: str, encrypted: Dict[str, str]) -> List[EnvironmentVar]:
        with self._lock:
            self._require(self._projects, project_id, "Project")
            for key in [k for k, v in self._env_vars.items() if v.project_id == project_id]:
                del self._env_vars[key]
            created = []
            for name, value in encrypted.items():
                var = EnvironmentVar(project_id=project_id, key=name, encrypted_value=value)
                self._env_vars[var.id] = var
                created.append(replace(var))
            self._save()
            return created

    # storage buckets

    def list_storage_buckets(self, project_id: str) -> List[StorageBucket]:
        with self._lock:
            return [replace(b) for b in self._buckets.values() if b.project_id == project_id]

    def add_storage_bucket(self, bucket: StorageBucket) -> StorageBucket:
        with self._lock:
            self._require(self._projects, bucket.project_id, "Project")
            self._buckets[bucket.id] = replace(bucket)
            self._save()
            return replace(bucket)

    # reservations

    def reserve_port(self, port: int) -> None:
        with self._lock:
            if port in self.claimed_ports():
                raise ConflictError(f"Port {port} is already in use")
            self._reserved_ports.add(port)

    def release_port(self, port: int) -> None:
        with self._lock:
            self._reserved_ports.discard(port)

    def reserved_ports(self) -> Set[int]:
        with self._lock:
            return set(self._reserved_ports)

    def reserve_subdomain(self, subdomain: str) -> None:
        with self._lock:
            if subdomain in self._reserved_subdomains or self.get_project_by_subdomain(subdomain):
                raise ConflictError("Subdomain is already taken")
            self._reserved_subdomains.add(subdomain)

    def release_subdomain(self, subdomain: str) -> None:
        with self._lock:
            self._reserved_subdomains.discard(subdomain)

    def reserved_subdomains(self) -> Set[str]:
        with self._lock:
            return set(self._reserved_subdomains)

    # persistence

    @staticmethod
    def _require(table: dict, record_id: str, what: str):
        try:
            return table[record_id]
        except KeyError:
            raise NotFoundError(f"{what} not found") from None

    def _save(self) -> None:
        if not self.path:
            return
        document = {
            "users": [u.to_dict() for u in self._users.values()],
            "projects": [p.to_dict() for p in self._projects.values()],
            "deployments": [d.to_dict() for d in self._deployments.values()],
            "envVars": [v.to_dict() for v in self._env_vars.values()],
            "storageBuckets": [b.to_dict() for b in self._buckets.values()],
        }
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp.write_text(json.dumps(document, indent=2), encoding="utf-8")
        tmp.replace(self.path)

    def _load(self) -> None:
        data = json.loads(self.path.read_text(encoding="utf-8"))
        for raw in data.get("users", []):
            user = User.from_dict(raw)
            self._users[user.id] = user
        for raw in data.get("projects", []):
            project = Project.from_dict(raw)
            self._projects[project.id] = project
        for raw in data.get("deployments", []):
            deployment = Deployment.from_dict(raw)
            self._deployments[deployment.id] = deployment
        for raw in data.get("envVars", []):
            var = EnvironmentVar.from_dict(raw)
            self._env_vars[var.id] = var
        for raw in data.get("storageBuckets", []):
            bucket = StorageBucket.from_dict(raw)
            self._buckets[bucket.id] = bucket
        logger.debug("Loaded %d projects from %s", len(self._projects), self.path)
