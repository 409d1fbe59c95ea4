"""Transient records produced by discovery and reconciliation."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional

from ..store.models import ProjectStatus


@dataclass
class DiscoveredProject:
    """Live-host view of one project; every probed field may be missing."""

    subdomain: str
    domain: str
    port: int
    project_path: str
    nginx_config_path: str
    owner_user_id: Optional[str] = None
    repo_url: Optional[str] = None
    repo_owner: Optional[str] = None
    branch: Optional[str] = None
    commit_hash: Optional[str] = None
    pm2_id: Optional[str] = None
    pm2_status: str = "not_found"
    ecosystem_port: Optional[int] = None
    ecosystem_cwd: Optional[str] = None
    project_name: Optional[str] = None
    app_type: Optional[str] = None
    env_vars: Dict[str, str] = field(default_factory=dict)
    has_project_dir: bool = False
    root_directory: Optional[str] = None

    @property
    def work_dir(self) -> str:
        if self.root_directory:
            return f"{self.project_path}/{self.root_directory}"
        return self.project_path

    def to_dict(self) -> Dict[str, Any]:
        payload = asdict(self)
        # Values are secrets; only report which keys exist
        payload["env_vars"] = sorted(self.env_vars)
        return payload


@dataclass
class ReconcileItem:
    discovered: DiscoveredProject
    project_id: str
    recorded_status: ProjectStatus
    suggested_status: ProjectStatus


@dataclass
class RecordRef:
    id: str
    subdomain: str
    name: str = ""
    status: Optional[ProjectStatus] = None


@dataclass
class SyncComparison:
    to_import: List[DiscoveredProject] = field(default_factory=list)
    to_reconcile: List[ReconcileItem] = field(default_factory=list)
    orphaned: List[RecordRef] = field(default_factory=list)
    in_sync: List[RecordRef] = field(default_factory=list)


@dataclass
class ImportResult:
    subdomain: str
    success: bool
    project_id: Optional[str] = None
    error: Optional[str] = None
    note: Optional[str] = None


@dataclass
class ReconcileResult:
    subdomain: str
    project_id: str
    status_updated: bool
    old_status: str
    new_status: str


@dataclass
class DiscoveryResult:
    projects: List[DiscoveredProject] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)


@dataclass
class SyncResult:
    success: bool
    discovered: int = 0
    imported: List[ImportResult] = field(default_factory=list)
    reconciled: List[ReconcileResult] = field(default_factory=list)
    orphaned: List[RecordRef] = field(default_factory=list)
    unattributed: List[str] = field(default_factory=list)
    already_in_sync: int = 0
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "discovered": self.discovered,
            "imported": [asdict(r) for r in self.imported],
            "reconciled": [asdict(r) for r in self.reconciled],
            "orphaned": [{"id": o.id, "subdomain": o.subdomain, "name": o.name} for o in self.orphaned],
            "unattributed": list(self.unattributed),
            "alreadyInSync": self.already_in_sync,
            "errors": list(self.errors),
        }
