"""Capability detectors probed in priority order on the host."""

from .frameworks import APP_FRAMEWORKS, AppFramework, NextJsApp, ViteApp, detect_app_framework, get_app_framework
from .git import (
    GIT_PROVIDERS,
    CommitInfo,
    CredentialHelper,
    GitHubProvider,
    GitProvider,
    RepoRef,
    detect_git_provider,
    normalize_remote_url,
)
from .orms import ORM_TOOLS, NoOrm, OrmResult, OrmTool, PrismaOrm, detect_orm
from .packages import (
    PACKAGE_MANAGERS,
    NpmManager,
    PackageManager,
    PnpmManager,
    YarnManager,
    detect_package_manager,
    get_package_manager,
)

__all__ = [
    "APP_FRAMEWORKS",
    "AppFramework",
    "NextJsApp",
    "ViteApp",
    "detect_app_framework",
    "get_app_framework",
    "GIT_PROVIDERS",
    "CommitInfo",
    "CredentialHelper",
    "GitHubProvider",
    "GitProvider",
    "RepoRef",
    "detect_git_provider",
    "normalize_remote_url",
    "ORM_TOOLS",
    "NoOrm",
    "OrmResult",
    "OrmTool",
    "PrismaOrm",
    "detect_orm",
    "PACKAGE_MANAGERS",
    "NpmManager",
    "PackageManager",
    "PnpmManager",
    "YarnManager",
    "detect_package_manager",
    "get_package_manager",
]
