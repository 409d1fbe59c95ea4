"""Abstract system-of-record boundary used by the orchestrator and sync."""

from __future__ import annotations

from abc import ABC, abstractmethod
from contextlib import AbstractContextManager
from typing import Dict, List, Optional, Set

from .models import Deployment, EnvironmentVar, Project, StorageBucket, User


class ProjectStore(ABC):
    """
    CRUD over users, projects, deployments, env vars and storage buckets.

    ``transaction()`` must serialize callers against each other; port and
    subdomain reservations let an in-flight create hold its claim before
    the project row exists.
    """

    @abstractmethod
    def transaction(self) -> AbstractContextManager:
        ...

    # users
    @abstractmethod
    def get_user(self, user_id: str) -> Optional[User]:
        ...

    @abstractmethod
    def save_user(self, user: User) -> User:
        ...

    @abstractmethod
    def list_users(self) -> List[User]:
        ...

    # projects
    @abstractmethod
    def get_project(self, project_id: str) -> Optional[Project]:
        ...

    @abstractmethod
    def get_project_by_subdomain(self, subdomain: str) -> Optional[Project]:
        ...

    @abstractmethod
    def list_projects(self, user_id: Optional[str] = None) -> List[Project]:
        ...

    @abstractmethod
    def create_project(self, project: Project) -> Project:
        ...

    @abstractmethod
    def update_project(self, project_id: str, **changes) -> Project:
        ...

    @abstractmethod
    def delete_project(self, project_id: str) -> None:
        """Delete the project and every row that belongs to it."""

    # deployments
    @abstractmethod
    def create_deployment(self, deployment: Deployment) -> Deployment:
        ...

    @abstractmethod
    def update_deployment(self, deployment_id: str, **changes) -> Deployment:
        ...

    @abstractmethod
    def get_deployment(self, deployment_id: str) -> Optional[Deployment]:
        ...

    @abstractmethod
    def list_deployments(self, project_id: str) -> List[Deployment]:
        """Newest first."""

    # environment variables (values already encrypted)
    @abstractmethod
    def list_env_vars(self, project_id: str) -> List[EnvironmentVar]:
        ...

    @abstractmethod
    def replace_env_vars(self, project_id: str, encrypted: Dict[str, str]) -> List[EnvironmentVar]:
        ...

    # storage buckets
    @abstractmethod
    def list_storage_buckets(self, project_id: str) -> List[StorageBucket]:
        ...

    @abstractmethod
    def add_storage_bucket(self, bucket: StorageBucket) -> StorageBucket:
        ...

    # reservations
    @abstractmethod
    def reserve_port(self, port: int) -> None:
        ...

    @abstractmethod
    def release_port(self, port: int) -> None:
        ...

    @abstractmethod
    def reserve_subdomain(self, subdomain: str) -> None:
        ...

    @abstractmethod
    def release_subdomain(self, subdomain: str) -> None:
        ...

    @abstractmethod
    def reserved_subdomains(self) -> Set[str]:
        ...

    def claimed_ports(self) -> Set[int]:
        """Ports recorded on any project plus ports held by in-flight creates."""
        return {p.port for p in self.list_projects()} | self.reserved_ports()

    @abstractmethod
    def reserved_ports(self) -> Set[int]:
        ...
