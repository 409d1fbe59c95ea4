"""System-of-record boundary: records, the abstract store and its JSON implementation."""

from .base import ProjectStore
from .cipher import FernetCipher, FieldCipher, build_cipher
from .json_store import JsonProjectStore
from .models import (
    Deployment,
    DeploymentStatus,
    EnvironmentVar,
    Project,
    ProjectStatus,
    StorageBucket,
    User,
)

__all__ = [
    "ProjectStore",
    "FernetCipher",
    "FieldCipher",
    "build_cipher",
    "JsonProjectStore",
    "Deployment",
    "DeploymentStatus",
    "EnvironmentVar",
    "Project",
    "ProjectStatus",
    "StorageBucket",
    "User",
]
