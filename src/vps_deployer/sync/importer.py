"""Import discovered projects into the system of record."""

from __future__ import annotations

from typing import Callable, Dict, List, Optional

from ..cicd.github_actions import GitHubClient
from ..cicd.provisioner import CICDOptions, CICDProvisioner
from ..config import AppConfig
from ..detectors.frameworks import detect_app_framework
from ..detectors.git import GitHubProvider, detect_git_provider
from ..detectors.orms import detect_orm
from ..detectors.packages import detect_package_manager
from ..errors import DeployerError
from ..scripts.builders import DeployScriptOptions
from ..ssh.executor import CommandRunner
from ..ssh.probe import RemoteProbe
from ..store.base import ProjectStore
from ..store.cipher import FieldCipher
from ..store.models import Deployment, DeploymentStatus, Project, utcnow_iso
from ..utils.logging import get_logger
from .models import DiscoveredProject, ImportResult, ReconcileItem, ReconcileResult
from .reconciler import status_from_supervisor

logger = get_logger(__name__)

Emit = Callable[[str, Dict], None]


def _no_emit(kind: str, data: Dict) -> None:
    return None


class ProjectImporter:
    """Creates records for discovered projects; safe to run repeatedly."""

    def __init__(
        self,
        config: AppConfig,
        runner: CommandRunner,
        store: ProjectStore,
        cipher: FieldCipher,
        *,
        cicd: Optional[CICDProvisioner] = None,
        github_factory: Optional[Callable[[str], GitHubClient]] = None,
    ) -> None:
        self.config = config
        self.runner = runner
        self.store = store
        self.cipher = cipher
        self.probe = RemoteProbe(runner)
        self.cicd = cicd or CICDProvisioner(runner, config.ssh, config.github)
        self._github_factory = github_factory or (lambda token: GitHubClient(token, config.github))

    def import_projects(
        self,
        to_import: List[DiscoveredProject],
        user_id: str,
        emit: Emit = _no_emit,
    ) -> List[ImportResult]:
        results: List[ImportResult] = []
        token = self._token(user_id)
        node_bin = self._node_bin() if token else None
        total = len(to_import)

        for index, discovered in enumerate(to_import, start=1):
            emit("importing", {"current": index, "total": total, "subdomain": discovered.subdomain})
            try:
                result = self._import_one(discovered, user_id, token, node_bin)
            except DeployerError as exc:
                result = ImportResult(subdomain=discovered.subdomain, success=False, error=str(exc))
                logger.warning("Import of %s failed: %s", discovered.subdomain, exc)
            results.append(result)
            event = {
                "current": index,
                "total": total,
                "subdomain": discovered.subdomain,
                "success": result.success,
            }
            if result.error:
                event["error"] = result.error
            emit("imported", event)
        return results

    def reconcile_statuses(self, items: List[ReconcileItem]) -> List[ReconcileResult]:
        results: List[ReconcileResult] = []
        for item in items:
            try:
                self.store.update_project(item.project_id, status=item.suggested_status)
                updated = True
            except DeployerError as exc:
                logger.warning("Status update for %s failed: %s", item.discovered.subdomain, exc)
                updated = False
            results.append(
                ReconcileResult(
                    subdomain=item.discovered.subdomain,
                    project_id=item.project_id,
                    status_updated=updated,
                    old_status=item.recorded_status.value,
                    new_status=item.suggested_status.value,
                )
            )
        return results

    def _token(self, user_id: str) -> Optional[str]:
        user = self.store.get_user(user_id)
        if not user or not user.encrypted_github_token:
            return None
        try:
            return self.cipher.decrypt(user.encrypted_github_token)
        except ValueError as exc:
            logger.warning("Stored GitHub token for %s is unreadable: %s", user_id, exc)
            return None

    def _node_bin(self) -> Optional[str]:
        try:
            return self.probe.node_bin_path()
        except DeployerError as exc:
            logger.warning("CI/CD setup will be skipped: %s", exc)
            return None

    def _import_one(
        self,
        discovered: DiscoveredProject,
        user_id: str,
        token: Optional[str],
        node_bin: Optional[str],
    ) -> ImportResult:
        existing = self.store.get_project_by_subdomain(discovered.subdomain)
        if existing:
            return ImportResult(
                subdomain=discovered.subdomain,
                success=True,
                project_id=existing.id,
                note="Already exists",
            )

        branch = self._default_branch(discovered, token) or discovered.branch or "main"

        with self.store.transaction():
            project = self.store.create_project(
                Project(
                    user_id=user_id,
                    name=discovered.project_name or discovered.subdomain,
                    subdomain=discovered.subdomain,
                    repo_url=discovered.repo_url or "unknown",
                    branch=branch,
                    port=discovered.port,
                    root_directory=discovered.root_directory,
                    status=status_from_supervisor(discovered.pm2_status),
                    last_commit_hash=discovered.commit_hash,
                    pm2_id=discovered.pm2_id or discovered.subdomain,
                    app_type=discovered.app_type,
                    nginx_config_path=discovered.nginx_config_path,
                )
            )
            if discovered.env_vars:
                self.store.replace_env_vars(
                    project.id,
                    {k: self.cipher.encrypt(v) for k, v in discovered.env_vars.items()},
                )
            self.store.create_deployment(
                Deployment(
                    project_id=project.id,
                    commit_hash=discovered.commit_hash or "synced",
                    commit_msg="Imported via sync",
                    status=DeploymentStatus.SUCCESS,
                    finished_at=utcnow_iso(),
                )
            )
        logger.info("Imported %s", discovered.subdomain)

        if token and node_bin and discovered.repo_url:
            self._setup_cicd(discovered, branch, token, node_bin)
        return ImportResult(subdomain=discovered.subdomain, success=True, project_id=project.id)

    def _default_branch(self, discovered: DiscoveredProject, token: Optional[str]) -> Optional[str]:
        provider = GitHubProvider()
        if not token or not discovered.repo_url or not provider.detect(discovered.repo_url):
            return None
        try:
            ref = provider.parse_repo(discovered.repo_url)
        except DeployerError:
            return None
        return self._github_factory(token).default_branch(ref.owner, ref.repo)

    def _setup_cicd(self, discovered: DiscoveredProject, branch: str, token: str, node_bin: str) -> None:
        """Best-effort; a failure never fails the import."""
        work_dir = discovered.work_dir
        try:
            provider = detect_git_provider(discovered.repo_url)
            manager = detect_package_manager(self.runner, work_dir)
            orm = detect_orm(self.runner, work_dir)
            try:
                build_command = detect_app_framework(self.runner, work_dir).build_command(manager)
            except DeployerError:
                build_command = manager.run_script("build")
            self.cicd.setup(
                CICDOptions(
                    repo_url=discovered.repo_url,
                    branch=branch,
                    subdomain=discovered.subdomain,
                    token=token,
                    provider=provider,
                    deploy_script=DeployScriptOptions(
                        subdomain=discovered.subdomain,
                        branch=branch,
                        project_path=discovered.project_path,
                        work_dir=work_dir,
                        install_command=manager.frozen_install_command(),
                        build_command=build_command,
                        orm_commands=orm.deploy_commands(manager),
                        deploy_user=self.config.deploy_user,
                        node_bin_path=node_bin,
                    ),
                )
            )
        except (DeployerError, ValueError, OSError) as exc:
            logger.warning("CI/CD setup for imported %s failed: %s", discovered.subdomain, exc)
