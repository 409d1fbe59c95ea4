"""Deployment orchestrator: create, redeploy, restart, stop and delete projects."""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Tuple

from ..cicd.deploy_script import remove_deploy_script
from ..cicd.provisioner import CICDOptions, CICDProvisioner
from ..config import AppConfig
from ..detectors.frameworks import AppFramework, detect_app_framework
from ..detectors.git import CredentialHelper, GitProvider, detect_git_provider
from ..detectors.orms import OrmTool, detect_orm
from ..detectors.packages import PackageManager, detect_package_manager
from ..errors import (
    ConflictError,
    ConsistencyError,
    DeployerError,
    NotFoundError,
    RemoteCommandError,
    ValidationError,
)
from ..process.supervisor import ECOSYSTEM_FILE, ProcessSupervisor, process_name
from ..proxy.routing import RoutingTable
from ..scripts.builders import (
    DeployScriptOptions,
    EcosystemOptions,
    env_with_defaults,
    node_command,
    render_ecosystem,
    render_env_file,
    render_marker,
)
from ..scripts.sanitize import safe_command, safe_path
from ..ssh.executor import CommandRunner, RemoteExecutor
from ..ssh.probe import RemoteProbe
from ..store.base import ProjectStore
from ..store.cipher import FieldCipher
from ..store.models import Deployment, DeploymentStatus, Project, ProjectStatus, utcnow_iso
from ..utils.logging import get_logger
from .models import CreateProjectInput, DeleteResult, DeployResult
from .progress import CompleteEvent, ErrorEvent, ProgressChannel
from .step_logger import StepLogger
from .validation import (
    candidate_ports,
    is_valid_subdomain,
    validate_branch,
    validate_env_keys,
    validate_port,
    validate_root_directory,
    validate_subdomain,
)

logger = get_logger(__name__)

CREATE_STEPS: Tuple[Tuple[str, str], ...] = (
    ("clone", "Clone repository"),
    ("detect_pm", "Detect package manager"),
    ("detect_app", "Detect app type"),
    ("env", "Create .env file"),
    ("install", "Install dependencies"),
    ("orm", "ORM setup"),
    ("build", "Build application"),
    ("start", "Start with PM2"),
    ("routing", "Add port mapping"),
    ("persist", "Save to database"),
    ("cicd", "Setup CI/CD"),
)

REDEPLOY_STEPS: Tuple[Tuple[str, str], ...] = (
    ("stop", "Stop process"),
    ("pull", "Pull latest code"),
    ("detect_pm", "Detect package manager"),
    ("detect_app", "Detect app type"),
    ("env", "Update .env file"),
    ("install", "Install dependencies"),
    ("orm", "ORM setup"),
    ("build", "Build application"),
    ("restart", "Restart application"),
)

REDEPLOY_STEP_IDS = tuple(step_id for step_id, _ in REDEPLOY_STEPS)


def resume_point(deployment: Deployment) -> Optional[str]:
    """First redeploy step after the deployment's last checkpoint."""
    if deployment.last_completed_step not in REDEPLOY_STEP_IDS:
        return REDEPLOY_STEP_IDS[0]
    index = REDEPLOY_STEP_IDS.index(deployment.last_completed_step) + 1
    return REDEPLOY_STEP_IDS[index] if index < len(REDEPLOY_STEP_IDS) else None


@dataclass
class _Workspace:
    """Per-run state shared by the pipeline steps."""

    subdomain: str
    project_path: str
    work_dir: str
    pm2_id: str
    port: int
    manager: Optional[PackageManager] = None
    framework: Optional[AppFramework] = None
    orm: Optional[OrmTool] = None
    commit_hash: Optional[str] = None
    commit_msg: Optional[str] = None
    helper: Optional[CredentialHelper] = None


class DeploymentOrchestrator:
    """
    Runs every project lifecycle operation as an ordered list of named steps.

    All remote work goes through one ``CommandRunner``; every step transition
    is reported through a ``StepLogger`` whose observer feeds the caller's
    progress channel.
    """

    def __init__(
        self,
        config: AppConfig,
        store: ProjectStore,
        cipher: FieldCipher,
        runner: Optional[CommandRunner] = None,
        *,
        cicd: Optional[CICDProvisioner] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.config = config
        self.host = config.host
        self.store = store
        self.cipher = cipher
        self.runner = runner or RemoteExecutor(config.ssh)
        self.probe = RemoteProbe(self.runner)
        self.routing = RoutingTable(self.runner, config.host)
        self.supervisor = ProcessSupervisor(
            self.runner, start_grace=config.timeouts.start_grace, sleep=sleep
        )
        self.cicd = cicd or CICDProvisioner(self.runner, config.ssh, config.github)

    # ------------------------------------------------------------------
    # queries
    # ------------------------------------------------------------------

    def list_projects(self, user_id: Optional[str] = None) -> List[Project]:
        return self.store.list_projects(user_id)

    def is_subdomain_available(self, subdomain: str) -> bool:
        if not is_valid_subdomain(subdomain):
            return False
        with self.store.transaction():
            if subdomain in self.store.reserved_subdomains():
                return False
            return self.store.get_project_by_subdomain(subdomain) is None

    def next_available_port(self, *, reserve: bool = False) -> int:
        """
        Lowest free port: not reserved, not recorded, and not bound on the host.

        The scan runs under the store lock so concurrent callers that reserve
        never receive the same port.
        """
        with self.store.transaction():
            claimed = self.store.claimed_ports()
            for port in candidate_ports():
                if port in claimed:
                    continue
                if self.probe.port_in_use(port):
                    continue
                if reserve:
                    self.store.reserve_port(port)
                return port
        raise ConflictError("No available ports in range")

    # ------------------------------------------------------------------
    # create
    # ------------------------------------------------------------------

    def create(
        self,
        request: CreateProjectInput,
        channel: Optional[ProgressChannel] = None,
    ) -> DeployResult:
        """
        Provision a new project end to end.

        Validation and conflict failures return before any remote call. Any
        failure after cloning tears down every live resource created so far.
        """
        try:
            provider = self._validate_create(request)
        except ValidationError as exc:
            return self._finish(DeployResult(success=False, error=str(exc), logs=str(exc)), channel)

        user = self.store.get_user(request.user_id)
        if not user or not user.encrypted_github_token:
            return self._finish(DeployResult(success=False, error="GitHub token not found"), channel)
        token = self.cipher.decrypt(user.encrypted_github_token)

        try:
            port = self._claim(request)
        except DeployerError as exc:
            return self._finish(DeployResult(success=False, error=str(exc)), channel)

        try:
            project_path = self.host.project_path(request.subdomain)
            if request.port is not None and self.probe.port_in_use(port):
                raise ConflictError(f"Port {port} is already in use")
            if self.probe.dir_exists(project_path):
                raise ConflictError("Subdomain is already taken")
        except DeployerError as exc:
            self._release(request.subdomain, port)
            return self._finish(DeployResult(success=False, error=str(exc)), channel)

        try:
            result = self._run_create(request, provider, token, user.github_username, port, channel)
        finally:
            self._release(request.subdomain, port)
        return self._finish(result, channel)

    def _validate_create(self, request: CreateProjectInput) -> GitProvider:
        validate_subdomain(request.subdomain)
        provider = detect_git_provider(request.repo_url)
        provider.validate_repo_url(request.repo_url)
        if request.port is not None:
            validate_port(request.port)
        validate_branch(request.branch)
        validate_env_keys(request.env_vars)
        validate_root_directory(request.root_directory)
        for override in (request.install_command, request.build_command, request.start_command):
            if override is not None:
                safe_command(override)
        return provider

    def _claim(self, request: CreateProjectInput) -> int:
        with self.store.transaction():
            if (
                self.store.get_project_by_subdomain(request.subdomain)
                or request.subdomain in self.store.reserved_subdomains()
            ):
                raise ConflictError("Subdomain is already taken")
            if request.port is None:
                port = self.next_available_port(reserve=True)
            else:
                port = request.port
                self.store.reserve_port(port)
            try:
                self.store.reserve_subdomain(request.subdomain)
            except ConflictError:
                self.store.release_port(port)
                raise
            return port

    def _release(self, subdomain: str, port: int) -> None:
        with self.store.transaction():
            self.store.release_subdomain(subdomain)
            self.store.release_port(port)

    def _run_create(
        self,
        request: CreateProjectInput,
        provider: GitProvider,
        token: str,
        github_username: Optional[str],
        port: int,
        channel: Optional[ProgressChannel],
    ) -> DeployResult:
        log = StepLogger(channel.step_observer() if channel else None)
        ws = self._workspace(request.subdomain, request.root_directory, port)
        for step_id, name in CREATE_STEPS:
            log.add_step(name, self._create_command(step_id, request, ws), step_id=step_id)

        logger.info("Creating %s on port %d", request.subdomain, port)
        project: Optional[Project] = None
        deployment: Optional[Deployment] = None
        try:
            self._step(log, "clone", lambda: self._clone(request, provider, token, github_username, ws))
            self._step(log, "detect_pm", lambda: self._detect_pm(ws))
            self._step(log, "detect_app", lambda: self._detect_app(ws))
            self._step(log, "env", lambda: self._write_env(ws, request.env_vars))
            self._step(log, "install", lambda: self._install(ws, request.install_command))
            self._orm_step(log, ws, env_with_defaults(port, request.env_vars))
            self._step(log, "build", lambda: self._build(ws, request.build_command))
            self._step(log, "start", lambda: self._start(ws, request.start_command, restart=False))
            self._step(log, "routing", lambda: self._add_route(ws))

            log.start("persist")
            project, deployment = self._persist_created(request, ws, log)
            log.complete("persist", "Saved")
        except Exception as exc:
            message = str(exc) or exc.__class__.__name__
            self._fail_running(log, message, exc)
            self._teardown(ws, project)
            return DeployResult(success=False, error=message, logs=log.to_json())

        warnings = self._setup_cicd(log, request.repo_url, request.branch, token, provider, ws,
                                    request.install_command, request.build_command)
        deployment = self.store.update_deployment(deployment.id, logs=log.to_json())
        logger.info("Project %s is live at %s", ws.subdomain, self._url(ws.subdomain))
        return DeployResult(
            success=True,
            project=project,
            deployment=deployment,
            logs=log.to_json(),
            url=self._url(ws.subdomain),
            warnings=warnings,
        )

    def _create_command(self, step_id: str, request: CreateProjectInput, ws: _Workspace) -> Optional[str]:
        commands = {
            "clone": f"git clone --branch {request.branch} --single-branch --depth 1 {request.repo_url}",
            "start": f"pm2 start {ECOSYSTEM_FILE}",
            "routing": f"{self.host.public_host(ws.subdomain)} {ws.port};",
        }
        return commands.get(step_id)

    def _clone(
        self,
        request: CreateProjectInput,
        provider: GitProvider,
        token: str,
        github_username: Optional[str],
        ws: _Workspace,
    ) -> str:
        path = safe_path(ws.project_path)
        self.runner.run_checked(
            f"sudo mkdir -p {path} && sudo chown $(whoami):$(whoami) {path}",
            "Create project directory",
        )
        provider.clone(self.runner, request.repo_url, request.branch, token, ws.project_path)
        commit = provider.head_commit(self.runner, ws.project_path)
        ws.commit_hash, ws.commit_msg = commit.short_hash, commit.message

        markers = safe_path(self.host.markers_dir)
        self.runner.run_checked(
            f"sudo mkdir -p {markers} && sudo chown $(whoami):$(whoami) {markers}",
            "Create marker directory",
        )
        self.runner.write_file(
            self.host.marker_path(ws.subdomain),
            render_marker(request.user_id, github_username, ws.subdomain, utcnow_iso()),
            mode="600",
        )

        if not self.runner.dir_exists(ws.work_dir):
            raise ConsistencyError(f'Root directory "{request.root_directory}" does not exist')
        return f"Commit: {commit.short_hash} - {commit.message.splitlines()[0] if commit.message else ''}"

    def _persist_created(
        self, request: CreateProjectInput, ws: _Workspace, log: StepLogger
    ) -> Tuple[Project, Deployment]:
        with self.store.transaction():
            self.store.release_subdomain(ws.subdomain)
            self.store.release_port(ws.port)
            project = self.store.create_project(
                Project(
                    user_id=request.user_id,
                    name=request.name,
                    subdomain=ws.subdomain,
                    repo_url=request.repo_url,
                    branch=request.branch,
                    port=ws.port,
                    root_directory=request.root_directory,
                    install_command=request.install_command,
                    build_command=request.build_command,
                    start_command=request.start_command,
                    node_version=request.node_version,
                    status=ProjectStatus.ACTIVE,
                    last_commit_hash=ws.commit_hash,
                    pm2_id=ws.pm2_id,
                    app_type=ws.framework.name if ws.framework else None,
                    nginx_config_path=self.host.port_mapping_file,
                )
            )
            try:
                if request.env_vars:
                    self.store.replace_env_vars(project.id, self._encrypt_env(request.env_vars))
                deployment = self.store.create_deployment(
                    Deployment(
                        project_id=project.id,
                        commit_hash=ws.commit_hash or "unknown",
                        commit_msg=ws.commit_msg,
                        status=DeploymentStatus.SUCCESS,
                        logs=log.to_json(),
                        finished_at=utcnow_iso(),
                    )
                )
            except Exception:
                self.store.delete_project(project.id)
                raise
        return project, deployment

    # ------------------------------------------------------------------
    # redeploy
    # ------------------------------------------------------------------

    def redeploy(
        self,
        project_id: str,
        resume_from_step: Optional[str] = None,
        channel: Optional[ProgressChannel] = None,
    ) -> DeployResult:
        """
        Pull, rebuild and restart an existing project.

        With ``resume_from_step`` every earlier step is marked skipped and the
        pipeline starts at the named step; detection results that a later
        step needs are recomputed on demand.
        """
        project = self.store.get_project(project_id)
        if not project:
            return self._finish(DeployResult(success=False, error="Project not found"), channel)
        if resume_from_step is not None and resume_from_step not in REDEPLOY_STEP_IDS:
            return self._finish(
                DeployResult(success=False, error=f"Unknown step: {resume_from_step}"), channel
            )
        if not project.pm2_id:
            return self._finish(DeployResult(success=False, error="Project has no PM2 process"), channel)
        user = self.store.get_user(project.user_id)
        if not user or not user.encrypted_github_token:
            return self._finish(
                DeployResult(
                    success=False,
                    error="GitHub token not found. Please re-authenticate with GitHub.",
                ),
                channel,
            )
        try:
            token = self.cipher.decrypt(user.encrypted_github_token)
            env = self._decrypted_env(project.id)
        except ValueError as exc:
            return self._finish(
                DeployResult(success=False, error=f"Stored secrets could not be decrypted: {exc}"),
                channel,
            )
        provider = detect_git_provider(project.repo_url)

        log = StepLogger(channel.step_observer() if channel else None)
        for step_id, name in REDEPLOY_STEPS:
            log.add_step(name, self._redeploy_command(step_id, project), step_id=step_id)

        deployment = self.store.create_deployment(Deployment(project_id=project.id))
        self.store.update_project(project.id, status=ProjectStatus.BUILDING)

        ws = self._workspace(project.subdomain, project.root_directory, project.port)
        ws.pm2_id = project.pm2_id
        actions = {
            "stop": lambda: self._stop_for_redeploy(ws),
            "pull": lambda: self._pull(ws, provider, project.branch, token),
            "detect_pm": lambda: self._detect_pm(ws),
            "detect_app": lambda: self._detect_app(ws),
            "env": lambda: self._write_env(ws, env),
            "install": lambda: self._install(ws, project.install_command),
            "build": lambda: self._build(ws, project.build_command),
            "restart": lambda: self._start(ws, project.start_command, restart=True),
        }

        logger.info("Redeploying %s%s", project.subdomain,
                    f" from step {resume_from_step}" if resume_from_step else "")
        skipping = resume_from_step is not None
        try:
            for step_id in REDEPLOY_STEP_IDS:
                if skipping and step_id != resume_from_step:
                    log.skip(step_id, "Resumed past this step")
                    continue
                skipping = False
                if step_id == "orm":
                    self._orm_step(log, ws, env_with_defaults(ws.port, env))
                else:
                    self._step(log, step_id, actions[step_id])
                self.store.update_deployment(
                    deployment.id,
                    last_completed_step=log.last_completed_step_id(),
                    logs=log.to_json(),
                )
        except Exception as exc:
            message = str(exc) or exc.__class__.__name__
            self._fail_running(log, message, exc)
            self.store.update_deployment(
                deployment.id,
                status=DeploymentStatus.FAILED,
                logs=log.to_json(),
                error_msg=message,
                last_completed_step=log.last_completed_step_id(),
                finished_at=utcnow_iso(),
            )
            self.store.update_project(project.id, status=ProjectStatus.FAILED)
            return self._finish(DeployResult(success=False, error=message, logs=log.to_json()), channel)
        finally:
            if ws.helper:
                provider.cleanup_credentials(self.runner, ws.helper)

        if ws.commit_hash is None:
            self._read_commit(ws, provider, fallback=project.last_commit_hash)
        deployment = self.store.update_deployment(
            deployment.id,
            commit_hash=ws.commit_hash or "unknown",
            commit_msg=ws.commit_msg,
            status=DeploymentStatus.SUCCESS,
            logs=log.to_json(),
            finished_at=utcnow_iso(),
        )
        changes = {"status": ProjectStatus.ACTIVE, "last_commit_hash": ws.commit_hash}
        if ws.framework:
            changes["app_type"] = ws.framework.name
        project = self.store.update_project(project.id, **changes)
        return self._finish(
            DeployResult(
                success=True,
                project=project,
                deployment=deployment,
                logs=log.to_json(),
                url=self._url(project.subdomain),
            ),
            channel,
        )

    def _redeploy_command(self, step_id: str, project: Project) -> Optional[str]:
        commands = {
            "stop": f"pm2 stop {project.pm2_id}",
            "pull": f"git fetch origin {project.branch} && git reset --hard origin/{project.branch}",
            "restart": f"pm2 startOrRestart {ECOSYSTEM_FILE} --update-env",
        }
        return commands.get(step_id)

    def _stop_for_redeploy(self, ws: _Workspace) -> str:
        self.supervisor.stop(ws.pm2_id)
        return "Process stopped"

    def _pull(self, ws: _Workspace, provider: GitProvider, branch: str, token: str) -> str:
        ws.helper = provider.setup_credentials(self.runner, token)
        provider.pull(self.runner, ws.project_path, branch, ws.helper)
        commit = provider.head_commit(self.runner, ws.project_path)
        ws.commit_hash, ws.commit_msg = commit.short_hash, commit.message
        first_line = commit.message.splitlines()[0] if commit.message else ""
        return f"Commit: {commit.short_hash} - {first_line}"

    def _read_commit(self, ws: _Workspace, provider: GitProvider, fallback: Optional[str]) -> None:
        try:
            commit = provider.head_commit(self.runner, ws.project_path)
        except DeployerError as exc:
            logger.warning("Could not read commit for %s: %s", ws.subdomain, exc)
            ws.commit_hash = fallback
            return
        ws.commit_hash, ws.commit_msg = commit.short_hash, commit.message

    # ------------------------------------------------------------------
    # shared pipeline steps
    # ------------------------------------------------------------------

    def _workspace(self, subdomain: str, root_directory: Optional[str], port: int) -> _Workspace:
        project_path = self.host.project_path(subdomain)
        work_dir = f"{project_path}/{root_directory.strip('/')}" if root_directory else project_path
        return _Workspace(
            subdomain=subdomain,
            project_path=project_path,
            work_dir=work_dir,
            pm2_id=process_name(subdomain),
            port=port,
        )

    def _step(self, log: StepLogger, step_id: str, action: Callable[[], Optional[str]]) -> None:
        log.start(step_id)
        output = action()
        log.complete(step_id, output)

    def _detect_pm(self, ws: _Workspace) -> str:
        ws.manager = detect_package_manager(self.runner, ws.work_dir)
        return f"Using {ws.manager.name}"

    def _detect_app(self, ws: _Workspace) -> str:
        ws.framework = detect_app_framework(self.runner, ws.work_dir)
        return f"Detected: {ws.framework.name}"

    def _require_manager(self, ws: _Workspace) -> PackageManager:
        if ws.manager is None:
            ws.manager = detect_package_manager(self.runner, ws.work_dir)
        return ws.manager

    def _require_framework(self, ws: _Workspace) -> AppFramework:
        if ws.framework is None:
            ws.framework = detect_app_framework(self.runner, ws.work_dir)
        return ws.framework

    def _write_env(self, ws: _Workspace, variables: Dict[str, str]) -> str:
        env = env_with_defaults(ws.port, variables)
        env_path = f"{ws.work_dir}/.env"
        self.runner.write_file(env_path, render_env_file(env), mode="600")
        if not self.runner.file_exists(env_path):
            raise ConsistencyError(".env file missing after write")
        return f"{len(env)} variables"

    def _install(self, ws: _Workspace, override: Optional[str]) -> str:
        manager = self._require_manager(ws)
        command = override or manager.install_command()
        result = self.runner.execute(
            node_command(ws.work_dir, command), timeout=self.config.timeouts.install
        )
        if not result.ok:
            raise RemoteCommandError(
                f"{manager.name} install failed: {result.output.strip()}",
                exit_code=result.exit_status,
                output=result.output,
                step="install",
            )
        return "Dependencies installed"

    def _orm_step(self, log: StepLogger, ws: _Workspace, env: Dict[str, str]) -> None:
        log.start("orm")
        ws.orm = detect_orm(self.runner, ws.work_dir)
        if ws.orm.is_noop:
            log.skip("orm", "No ORM detected")
            return
        timeout = self.config.timeouts.orm
        ws.orm.generate(self.runner, ws.work_dir, timeout=timeout)
        outcome = ws.orm.push_schema(self.runner, ws.work_dir, env, timeout=timeout)
        log.complete("orm", f"{ws.orm.name}: {outcome.message}")

    def _build(self, ws: _Workspace, override: Optional[str]) -> str:
        framework = self._require_framework(ws)
        manager = self._require_manager(ws)
        command = override or framework.build_command(manager)
        result = self.runner.execute(
            node_command(ws.work_dir, command), timeout=self.config.timeouts.build
        )
        if not result.ok:
            raise RemoteCommandError(
                f"Build failed: {result.output.strip()}",
                exit_code=result.exit_status,
                output=result.output,
                step="build",
            )
        return "Build completed"

    def _ecosystem(self, ws: _Workspace, start_command: Optional[str]) -> EcosystemOptions:
        if start_command:
            script, _, args = start_command.strip().partition(" ")
            return EcosystemOptions(
                name=ws.pm2_id,
                cwd=ws.work_dir,
                port=ws.port,
                script=script,
                args=args.strip() or None,
            )
        return self._require_framework(ws).ecosystem_options(ws.pm2_id, ws.work_dir, ws.port)

    def _start(self, ws: _Workspace, start_command: Optional[str], *, restart: bool) -> str:
        framework = self._require_framework(ws)
        for relative, content in framework.extra_files().items():
            self.runner.write_file(f"{ws.work_dir}/{relative}", content)
        self.runner.write_file(
            f"{ws.project_path}/{ECOSYSTEM_FILE}",
            render_ecosystem(self._ecosystem(ws, start_command)),
        )
        if restart:
            self.supervisor.start_or_restart(ws.project_path)
        else:
            self.supervisor.start(ws.project_path)
        self.supervisor.verify_online(ws.pm2_id, ws.port, self.probe)
        self.supervisor.save()
        return "Application restarted" if restart else "Application started and saved"

    def _add_route(self, ws: _Workspace) -> str:
        self.routing.add(ws.subdomain, ws.port)
        return f"Mapped to port {ws.port}"

    def _setup_cicd(
        self,
        log: StepLogger,
        repo_url: str,
        branch: str,
        token: str,
        provider: GitProvider,
        ws: _Workspace,
        install_override: Optional[str] = None,
        build_override: Optional[str] = None,
    ) -> List[str]:
        """Best-effort: failures are recorded on the step, never raised."""
        log.start("cicd")
        try:
            manager = self._require_manager(ws)
            framework = self._require_framework(ws)
            orm = ws.orm or detect_orm(self.runner, ws.work_dir)
            script = DeployScriptOptions(
                subdomain=ws.subdomain,
                branch=branch,
                project_path=ws.project_path,
                work_dir=ws.work_dir,
                install_command=install_override or manager.frozen_install_command(),
                build_command=build_override or framework.build_command(manager),
                orm_commands=orm.deploy_commands(manager),
                deploy_user=self.config.deploy_user,
                node_bin_path=self.probe.node_bin_path(),
            )
            outcome = self.cicd.setup(
                CICDOptions(
                    repo_url=repo_url,
                    branch=branch,
                    subdomain=ws.subdomain,
                    token=token,
                    deploy_script=script,
                    provider=provider,
                )
            )
        except Exception as exc:
            logger.warning("CI/CD setup for %s failed: %s", ws.subdomain, exc)
            log.skip("cicd", "CI/CD setup failed (non-fatal)")
            return [f"CI/CD: {exc}"]
        if outcome.success:
            log.complete("cicd", "GitHub Actions configured")
            return []
        log.complete("cicd", f"Partial: {', '.join(outcome.errors)}")
        return [f"CI/CD: {error}" for error in outcome.errors]

    def _fail_running(self, log: StepLogger, message: str, exc: Exception) -> None:
        running = log.running_step_id()
        if running:
            log.fail(running, message)
        if isinstance(exc, DeployerError):
            logger.error("Step %s failed: %s", running, message)
        else:
            logger.exception("Unexpected error in step %s", running)

    def _teardown(self, ws: _Workspace, project: Optional[Project]) -> None:
        """Remove every live resource a failed create may have left behind."""
        logger.warning("Rolling back %s", ws.subdomain)
        cleanups = (
            ("process", lambda: self.supervisor.discard(ws.pm2_id)),
            ("process list", lambda: self.supervisor.save()),
            ("directory", lambda: self.runner.remove_path(ws.project_path)),
            ("routing", lambda: self.routing.remove(ws.subdomain)),
            ("marker", lambda: self.runner.execute(
                f"rm -f {safe_path(self.host.marker_path(ws.subdomain))}")),
        )
        for what, cleanup in cleanups:
            try:
                cleanup()
            except DeployerError as exc:
                logger.warning("Rollback of %s for %s failed: %s", what, ws.subdomain, exc)
        if project is not None:
            try:
                self.store.delete_project(project.id)
            except NotFoundError:
                pass

    # ------------------------------------------------------------------
    # restart / stop / env
    # ------------------------------------------------------------------

    def restart(self, project_id: str) -> DeployResult:
        project = self.store.get_project(project_id)
        if not project:
            return DeployResult(success=False, error="Project not found")
        if not project.pm2_id:
            return DeployResult(success=False, error="Project has no PM2 process")
        try:
            self.supervisor.restart(project.pm2_id)
        except DeployerError as exc:
            return DeployResult(success=False, error=str(exc))
        logger.info("Restarted %s", project.subdomain)
        return DeployResult(success=True, project=project)

    def stop(self, project_id: str) -> DeployResult:
        project = self.store.get_project(project_id)
        if not project:
            return DeployResult(success=False, error="Project not found")
        if not project.pm2_id:
            return DeployResult(success=False, error="Project has no PM2 process")
        try:
            self.supervisor.stop(project.pm2_id)
        except DeployerError as exc:
            return DeployResult(success=False, error=str(exc))
        project = self.store.update_project(project.id, status=ProjectStatus.STOPPED)
        logger.info("Stopped %s", project.subdomain)
        return DeployResult(success=True, project=project)

    def sync_env(self, project_id: str) -> DeployResult:
        """Rewrite the host ``.env`` from stored variables without redeploying."""
        project = self.store.get_project(project_id)
        if not project:
            return DeployResult(success=False, error="Project not found")
        ws = self._workspace(project.subdomain, project.root_directory, project.port)
        try:
            self._write_env(ws, self._decrypted_env(project.id))
        except DeployerError as exc:
            return DeployResult(success=False, error=str(exc))
        return DeployResult(success=True, project=project)

    def update_env_vars(self, project_id: str, variables: Dict[str, str], *, sync: bool = True) -> DeployResult:
        """Replace a project's stored variables, then optionally push them to the host."""
        project = self.store.get_project(project_id)
        if not project:
            return DeployResult(success=False, error="Project not found")
        try:
            validate_env_keys(variables)
        except ValidationError as exc:
            return DeployResult(success=False, error=str(exc))
        self.store.replace_env_vars(project.id, self._encrypt_env(variables))
        if sync:
            return self.sync_env(project.id)
        return DeployResult(success=True, project=project)

    def _encrypt_env(self, variables: Dict[str, str]) -> Dict[str, str]:
        return {key: self.cipher.encrypt(value) for key, value in variables.items()}

    def _decrypted_env(self, project_id: str) -> Dict[str, str]:
        return {
            var.key: self.cipher.decrypt(var.encrypted_value)
            for var in self.store.list_env_vars(project_id)
        }

    # ------------------------------------------------------------------
    # delete
    # ------------------------------------------------------------------

    def delete(self, project_id: str) -> DeleteResult:
        """
        Remove every live resource, verifying each, then the record.

        Each cleanup step is attempted independently. If any verified step
        fails the record is kept and the collected errors are returned.
        """
        project = self.store.get_project(project_id)
        if not project:
            return DeleteResult(success=False, errors=["Project not found"])

        transcript: List[str] = []
        errors: List[str] = []

        def note(message: str) -> None:
            transcript.append(f"[{utcnow_iso()}] {message}")
            logger.info("[delete %s] %s", project.subdomain, message)

        def attempt(description: str, action: Callable[[], None]) -> None:
            note(f"Running: {description}")
            try:
                action()
            except DeployerError as exc:
                note(f"ERROR: {exc}")
                errors.append(str(exc))

        project_path = self.host.project_path(project.subdomain)

        if project.pm2_id:
            def remove_process() -> None:
                self.supervisor.delete(project.pm2_id)
                self.supervisor.save()
                self.supervisor.verify_gone(project.pm2_id)
                note(f"PM2 process {project.pm2_id} deleted and verified")

            attempt(f"Stop PM2 process: {project.pm2_id}", remove_process)

        def remove_route() -> None:
            self.routing.remove(project.subdomain)
            if self.routing.lookup(project.subdomain) is not None:
                raise ConsistencyError(f"Port mapping for {project.subdomain} still present")
            note("Port mapping removed")

        attempt("Remove port mapping", remove_route)

        def reload_proxy() -> None:
            valid, error = self.routing.test_config()
            if not valid:
                raise ConsistencyError(f"Test nginx config failed: {error}")
            self.routing.reload()
            note("Nginx reloaded and verified")

        attempt("Reload nginx", reload_proxy)

        def remove_directory() -> None:
            self.runner.remove_path(project_path)
            if not self.probe.path_gone(project_path):
                raise ConsistencyError(f"{project_path} still exists after rm -rf")
            note("Project directory removed and verified")

        attempt(f"Remove directory {project_path}", remove_directory)

        storage_root = self.host.storage_root.rstrip("/") + "/"
        for bucket in self.store.list_storage_buckets(project.id):
            if not bucket.path.startswith(storage_root):
                note(f"Skipping storage bucket {bucket.name} outside {storage_root}")
                continue

            def remove_bucket(bucket=bucket) -> None:
                self.runner.remove_path(bucket.path)
                if not self.probe.path_gone(bucket.path):
                    raise ConsistencyError(f"Storage bucket {bucket.name} still exists")

            attempt(f"Remove storage bucket {bucket.name}", remove_bucket)

        try:
            remove_deploy_script(self.runner, self.config.deploy_user, project.subdomain)
            note("Deploy script removed")
        except DeployerError as exc:
            logger.warning("Deploy script removal for %s failed: %s", project.subdomain, exc)

        try:
            self.runner.run_checked(
                f"rm -f {safe_path(self.host.marker_path(project.subdomain))}", "Remove marker"
            )
            note("Marker file removed")
        except DeployerError as exc:
            logger.warning("Marker removal for %s failed: %s", project.subdomain, exc)

        if errors:
            note(f"FAILED: {len(errors)} error(s) during cleanup:")
            for error in errors:
                note(f"  - {error}")
            return DeleteResult(success=False, errors=errors, logs="\n".join(transcript) + "\n")

        note("Removing from database")
        self.store.delete_project(project.id)
        note("Project fully deleted and verified")
        return DeleteResult(success=True, logs="\n".join(transcript) + "\n")

    # ------------------------------------------------------------------

    def _url(self, subdomain: str) -> str:
        return f"https://{self.host.public_host(subdomain)}"

    @staticmethod
    def _finish(result: DeployResult, channel: Optional[ProgressChannel]) -> DeployResult:
        if channel is not None:
            if result.success:
                channel.publish(CompleteEvent(result.to_dict()))
            else:
                channel.publish(ErrorEvent(result.error or "Unknown error", result.logs))
        return result
