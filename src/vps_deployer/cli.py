"""Command-line interface for vps-deployer."""

from __future__ import annotations

import argparse
import json
import os
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from rich.console import Console
from rich.table import Table

from .config import AppConfig, load_config
from .errors import DeployerError, NotFoundError, ValidationError
from .orchestrator import (
    REDEPLOY_STEP_IDS,
    CreateProjectInput,
    DeploymentOrchestrator,
    ProgressChannel,
    to_json_line,
)
from .paths import get_store_path
from .store import JsonProjectStore, ProjectStore, User, build_cipher
from .store.cipher import FieldCipher
from .store.models import Project
from .sync import SyncService


@dataclass
class CLIContext:
    """Context captured from CLI arguments."""

    config: AppConfig
    store: ProjectStore
    cipher: FieldCipher
    console: Console
    json_output: bool = False

    def orchestrator(self) -> DeploymentOrchestrator:
        self.config.validate()
        return DeploymentOrchestrator(self.config, self.store, self.cipher)

    def sync_service(self) -> SyncService:
        self.config.validate()
        return SyncService(self.config, self.store, self.cipher)


def _key_value(raw: str) -> tuple:
    key, sep, value = raw.partition("=")
    if not sep or not key:
        raise argparse.ArgumentTypeError(f"Expected KEY=VALUE, got {raw!r}")
    return key, value


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="vps-deployer",
        description="Deploy Node.js apps from git to a VPS over SSH.",
    )
    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="Path to a JSON config file overriding defaults.",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        dest="json_output",
        help="Emit newline-delimited JSON events instead of formatted output.",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    user_parser = subparsers.add_parser("user", help="Register a user and their GitHub token")
    user_parser.add_argument("--id", required=True, dest="user_id", help="User id")
    user_parser.add_argument("--github-username", default=None, help="GitHub handle")
    user_parser.add_argument(
        "--token",
        default=None,
        help="GitHub access token (default: $GITHUB_TOKEN)",
    )

    create_parser = subparsers.add_parser("create", help="Create and deploy a new project")
    create_parser.add_argument("--user", required=True, help="Owner user id")
    create_parser.add_argument("--name", required=True, help="Display name")
    create_parser.add_argument("--subdomain", required=True, help="Public subdomain")
    create_parser.add_argument("--repo", required=True, help="Git repository URL")
    create_parser.add_argument("--branch", default="main", help="Branch to deploy")
    create_parser.add_argument("--port", type=int, default=None, help="Fixed port (default: auto)")
    create_parser.add_argument("--root-dir", default=None, help="App subdirectory inside the repo")
    create_parser.add_argument(
        "--env", action="append", type=_key_value, default=[], metavar="KEY=VALUE",
        help="Environment variable (repeatable)",
    )
    create_parser.add_argument("--install-command", default=None)
    create_parser.add_argument("--build-command", default=None)
    create_parser.add_argument("--start-command", default=None)
    create_parser.add_argument("--node-version", default="20")

    redeploy_parser = subparsers.add_parser("redeploy", help="Pull and redeploy a project")
    redeploy_parser.add_argument("project", help="Project id or subdomain")
    redeploy_parser.add_argument(
        "--resume-from",
        choices=REDEPLOY_STEP_IDS,
        default=None,
        help="Skip every step before this one",
    )

    for name, help_text in (
        ("restart", "Restart a project's process"),
        ("stop", "Stop a project's process"),
        ("delete", "Remove a project and all of its resources"),
        ("deployments", "List a project's deployment history"),
    ):
        sub = subparsers.add_parser(name, help=help_text)
        sub.add_argument("project", help="Project id or subdomain")

    list_parser = subparsers.add_parser("list", help="List recorded projects")
    list_parser.add_argument("--user", default=None, help="Only this user's projects")

    sync_parser = subparsers.add_parser("sync", help="Import projects already running on the host")
    sync_parser.add_argument("--user", required=True, help="User id to attribute imports to")

    check_parser = subparsers.add_parser("check-subdomain", help="Check whether a subdomain is free")
    check_parser.add_argument("subdomain")

    subparsers.add_parser("next-port", help="Show the next free application port")

    env_parser = subparsers.add_parser("env", help="Replace a project's environment variables")
    env_parser.add_argument("project", help="Project id or subdomain")
    env_parser.add_argument(
        "--set", action="append", type=_key_value, default=[], dest="variables",
        metavar="KEY=VALUE", help="Variable to store (repeatable)",
    )
    env_parser.add_argument(
        "--no-sync", action="store_true",
        help="Only update stored values; do not rewrite the host .env",
    )

    return parser


def _build_context(args: argparse.Namespace) -> CLIContext:
    config = load_config(args.config)
    store = JsonProjectStore(config.store.path or str(get_store_path()))
    return CLIContext(
        config=config,
        store=store,
        cipher=build_cipher(config.store.encryption_key),
        console=Console(),
        json_output=args.json_output,
    )


def _resolve_project(context: CLIContext, ref: str) -> Project:
    project = context.store.get_project(ref) or context.store.get_project_by_subdomain(ref)
    if not project:
        raise NotFoundError(f"Project not found: {ref}")
    return project


class _ProgressPrinter:
    """Turns progress events into console lines, one per step transition."""

    _STYLES = {
        "running": ("…", "cyan"),
        "success": ("✓", "green"),
        "failed": ("✗", "red"),
        "skipped": ("-", "dim"),
    }

    def __init__(self, context: CLIContext) -> None:
        self.context = context
        self._seen: Dict[str, str] = {}

    def __call__(self, event: Dict[str, Any]) -> None:
        console = self.context.console
        if self.context.json_output:
            console.print(to_json_line(event), markup=False, highlight=False, soft_wrap=True)
            return
        kind = event.get("type")
        if kind == "progress":
            for step in event.get("steps", []):
                status = step.get("status")
                if self._seen.get(step["id"]) == status or status not in self._STYLES:
                    continue
                self._seen[step["id"]] = status
                icon, style = self._STYLES[status]
                detail = step.get("error") or ""
                console.print(f"[{style}]{icon} {step['name']}[/{style}] {detail}".rstrip())
        elif kind in ("discovering", "reconciling"):
            console.print(f"[cyan]{kind.capitalize()}...[/cyan]")
        elif kind == "discovered":
            console.print(f"Found {event.get('total', 0)} project(s): {', '.join(event.get('subdomains', []))}")
        elif kind == "imported":
            mark = "[green]✓[/green]" if event.get("success") else "[red]✗[/red]"
            console.print(f"{mark} {event.get('subdomain')} {event.get('error', '')}".rstrip())


def _print_result(context: CLIContext, payload: Dict[str, Any], success: bool, message: str) -> int:
    console = context.console
    if context.json_output:
        console.print(json.dumps(payload, default=str), markup=False, highlight=False, soft_wrap=True)
    elif success:
        console.print(f"[green]{message}[/green]")
    else:
        console.print(f"[red]{message}[/red]")
    return 0 if success else 1


def handle_user_command(args: argparse.Namespace, context: CLIContext) -> int:
    token = args.token or os.getenv("GITHUB_TOKEN")
    if not token:
        raise ValidationError("A GitHub token is required (--token or GITHUB_TOKEN)")
    existing = context.store.get_user(args.user_id)
    user = User(
        id=args.user_id,
        github_username=args.github_username or (existing.github_username if existing else None),
        encrypted_github_token=context.cipher.encrypt(token),
    )
    context.store.save_user(user)
    return _print_result(context, {"success": True, "id": user.id}, True, f"Saved user {user.id}")


def handle_create_command(args: argparse.Namespace, context: CLIContext) -> int:
    request = CreateProjectInput(
        user_id=args.user,
        name=args.name,
        subdomain=args.subdomain,
        repo_url=args.repo,
        branch=args.branch,
        port=args.port,
        root_directory=args.root_dir,
        env_vars=dict(args.env),
        install_command=args.install_command,
        build_command=args.build_command,
        start_command=args.start_command,
        node_version=args.node_version,
    )
    channel = ProgressChannel(_ProgressPrinter(context))
    result = context.orchestrator().create(request, channel)
    channel.close()
    if context.json_output:
        return 0 if result.success else 1
    message = f"Deployed to {result.url}" if result.success else f"Deployment failed: {result.error}"
    for warning in result.warnings:
        context.console.print(f"[yellow]{warning}[/yellow]")
    return _print_result(context, result.to_dict(), result.success, message)


def handle_redeploy_command(args: argparse.Namespace, context: CLIContext) -> int:
    project = _resolve_project(context, args.project)
    channel = ProgressChannel(_ProgressPrinter(context))
    result = context.orchestrator().redeploy(project.id, args.resume_from, channel)
    channel.close()
    if context.json_output:
        return 0 if result.success else 1
    message = f"Redeployed {project.subdomain}" if result.success else f"Redeploy failed: {result.error}"
    return _print_result(context, result.to_dict(), result.success, message)


def handle_lifecycle_command(args: argparse.Namespace, context: CLIContext) -> int:
    project = _resolve_project(context, args.project)
    orchestrator = context.orchestrator()
    if args.command == "delete":
        deleted = orchestrator.delete(project.id)
        if not context.json_output and deleted.logs:
            context.console.print(deleted.logs.rstrip(), markup=False)
        message = f"Deleted {project.subdomain}" if deleted.success else deleted.error or "Deletion failed"
        return _print_result(context, deleted.to_dict(), deleted.success, message)

    action = orchestrator.restart if args.command == "restart" else orchestrator.stop
    result = action(project.id)
    verb = "Restarted" if args.command == "restart" else "Stopped"
    message = f"{verb} {project.subdomain}" if result.success else str(result.error)
    return _print_result(context, result.to_dict(), result.success, message)


def handle_list_command(args: argparse.Namespace, context: CLIContext) -> int:
    projects = context.store.list_projects(args.user)
    if context.json_output:
        return _print_result(context, {"projects": [p.to_dict() for p in projects]}, True, "")
    table = Table(title="Projects")
    for column in ("Subdomain", "Port", "Status", "Branch", "Type", "Commit"):
        table.add_column(column)
    for project in projects:
        table.add_row(
            project.subdomain,
            str(project.port),
            project.status.value,
            project.branch,
            project.app_type or "",
            project.last_commit_hash or "",
        )
    context.console.print(table)
    return 0


def handle_deployments_command(args: argparse.Namespace, context: CLIContext) -> int:
    project = _resolve_project(context, args.project)
    deployments = context.store.list_deployments(project.id)
    if context.json_output:
        return _print_result(context, {"deployments": [d.to_dict() for d in deployments]}, True, "")
    table = Table(title=f"Deployments of {project.subdomain}")
    for column in ("Started", "Status", "Commit", "Message", "Last step"):
        table.add_column(column)
    for deployment in deployments:
        table.add_row(
            deployment.started_at,
            deployment.status.value,
            deployment.commit_hash,
            (deployment.commit_msg or "").splitlines()[0] if deployment.commit_msg else "",
            deployment.last_completed_step or "",
        )
    context.console.print(table)
    return 0


def handle_sync_command(args: argparse.Namespace, context: CLIContext) -> int:
    channel = ProgressChannel(_ProgressPrinter(context))
    result = context.sync_service().sync(args.user, channel)
    channel.close()
    if context.json_output:
        return 0 if result.success else 1
    console = context.console
    imported = [r for r in result.imported if r.success and not r.note]
    console.print(
        f"Discovered {result.discovered}, imported {len(imported)}, "
        f"reconciled {len(result.reconciled)}, in sync {result.already_in_sync}"
    )
    for orphan in result.orphaned:
        console.print(f"[yellow]Orphaned record: {orphan.subdomain} ({orphan.id})[/yellow]")
    if result.unattributed:
        console.print(f"[yellow]Unattributed on host: {', '.join(result.unattributed)}[/yellow]")
    for error in result.errors + [f"{r.subdomain}: {r.error}" for r in result.imported if r.error]:
        console.print(f"[red]{error}[/red]")
    return 0 if result.success else 1


def handle_check_subdomain_command(args: argparse.Namespace, context: CLIContext) -> int:
    available = context.orchestrator().is_subdomain_available(args.subdomain)
    state = "available" if available else "taken or invalid"
    return _print_result(
        context,
        {"subdomain": args.subdomain, "available": available},
        available,
        f"{args.subdomain}: {state}",
    )


def handle_next_port_command(args: argparse.Namespace, context: CLIContext) -> int:
    port = context.orchestrator().next_available_port()
    return _print_result(context, {"port": port}, True, str(port))


def handle_env_command(args: argparse.Namespace, context: CLIContext) -> int:
    project = _resolve_project(context, args.project)
    result = context.orchestrator().update_env_vars(
        project.id, dict(args.variables), sync=not args.no_sync
    )
    message = f"Updated {len(args.variables)} variable(s)" if result.success else str(result.error)
    return _print_result(context, result.to_dict(), result.success, message)


_HANDLERS = {
    "user": handle_user_command,
    "create": handle_create_command,
    "redeploy": handle_redeploy_command,
    "restart": handle_lifecycle_command,
    "stop": handle_lifecycle_command,
    "delete": handle_lifecycle_command,
    "deployments": handle_deployments_command,
    "list": handle_list_command,
    "sync": handle_sync_command,
    "check-subdomain": handle_check_subdomain_command,
    "next-port": handle_next_port_command,
    "env": handle_env_command,
}


def dispatch_command(args: argparse.Namespace, context: Optional[CLIContext] = None) -> int:
    context = context or _build_context(args)
    handler = _HANDLERS.get(args.command)
    if handler is None:
        raise ValueError(f"Unsupported command: {args.command}")
    try:
        return handler(args, context)
    except DeployerError as exc:
        return _print_result(context, {"success": False, "error": str(exc)}, False, str(exc))


def run_cli(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    return dispatch_command(args)
