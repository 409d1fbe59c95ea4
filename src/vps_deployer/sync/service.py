"""Top-level sync flow: discover, attribute, compare, import, reconcile."""

from __future__ import annotations

from typing import Callable, Dict, Optional

from ..cicd.github_actions import GitHubClient
from ..cicd.provisioner import CICDProvisioner
from ..config import AppConfig
from ..errors import DeployerError
from ..orchestrator.progress import ProgressChannel, SyncEvent
from ..ssh.executor import CommandRunner, RemoteExecutor
from ..store.base import ProjectStore
from ..store.cipher import FieldCipher
from ..utils.logging import get_logger
from .discovery import HostDiscovery, partition_by_owner
from .importer import ProjectImporter
from .models import SyncResult
from .reconciler import reconcile_projects

logger = get_logger(__name__)


class SyncService:
    def __init__(
        self,
        config: AppConfig,
        store: ProjectStore,
        cipher: FieldCipher,
        runner: Optional[CommandRunner] = None,
        *,
        cicd: Optional[CICDProvisioner] = None,
        github_factory: Optional[Callable[[str], GitHubClient]] = None,
    ):
        self.config = config
        self.store = store
        self.runner = runner or RemoteExecutor(config.ssh)
        self.discovery = HostDiscovery(
            self.runner, config.host, probe_timeout=config.timeouts.discovery_probe
        )
        self.importer = ProjectImporter(
            config, self.runner, store, cipher, cicd=cicd, github_factory=github_factory
        )

    def sync(self, user_id: str, channel: Optional[ProgressChannel] = None) -> SyncResult:
        """
        Bring the system of record in line with what is deployed on the host.

        Args:
            user_id: Owner the imported projects are attributed to.
            channel: Optional channel receiving ``SyncEvent`` progress.

        Returns:
            SyncResult summarising imports, status fixes, orphans and
            projects that could not be attributed to anybody.
        """

        def emit(kind: str, data: Dict) -> None:
            if channel is not None:
                channel.publish(SyncEvent(kind, data))

        emit("discovering", {"message": "Scanning host for deployed projects..."})
        try:
            discovery = self.discovery.discover()
        except DeployerError as exc:
            logger.error("Discovery failed: %s", exc)
            result = SyncResult(success=False, errors=[f"Discovery failed: {exc}"])
            emit("complete", result.to_dict())
            return result

        user = self.store.get_user(user_id)
        github_username = user.github_username if user else None
        owned, unattributed = partition_by_owner(discovery.projects, user_id, github_username)
        emit(
            "discovered",
            {"total": len(owned), "subdomains": [p.subdomain for p in owned]},
        )

        comparison = reconcile_projects(owned, self.store.list_projects(), discovery.projects)
        imported = self.importer.import_projects(comparison.to_import, user_id, emit)

        emit("reconciling", {"count": len(comparison.to_reconcile)})
        reconciled = self.importer.reconcile_statuses(comparison.to_reconcile)

        errors = list(discovery.errors)
        result = SyncResult(
            success=not errors and all(r.success for r in imported),
            discovered=len(discovery.projects),
            imported=imported,
            reconciled=reconciled,
            orphaned=comparison.orphaned,
            unattributed=[p.subdomain for p in unattributed],
            already_in_sync=len(comparison.in_sync),
            errors=errors,
        )
        logger.info(
            "Sync for %s: %d imported, %d reconciled, %d orphaned, %d unattributed",
            user_id,
            sum(1 for r in imported if r.success and not r.note),
            len(reconciled),
            len(comparison.orphaned),
            len(unattributed),
        )
        emit("complete", result.to_dict())
        return result
