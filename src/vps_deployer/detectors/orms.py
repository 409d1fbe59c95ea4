"""ORM tooling: schema client generation and schema push."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Mapping, Optional, Tuple

from ..errors import RemoteCommandError
from ..scripts.builders import node_command
from ..ssh.executor import CommandRunner
from .base import dependency_names, read_package_json
from .packages import PackageManager


@dataclass(frozen=True)
class OrmResult:
    ran: bool
    message: str


class OrmTool(ABC):
    name: str = ""
    is_noop: bool = False

    @abstractmethod
    def detect(self, runner: CommandRunner, work_dir: str) -> bool:
        ...

    @abstractmethod
    def generate(self, runner: CommandRunner, work_dir: str, timeout: Optional[float] = None) -> None:
        ...

    @abstractmethod
    def push_schema(
        self,
        runner: CommandRunner,
        work_dir: str,
        env: Mapping[str, str],
        timeout: Optional[float] = None,
    ) -> OrmResult:
        ...

    def deploy_commands(self, manager: PackageManager) -> Tuple[str, ...]:
        """Commands the CI deploy script runs after installing dependencies."""
        return ()


class PrismaOrm(OrmTool):
    name = "Prisma"

    def detect(self, runner: CommandRunner, work_dir: str) -> bool:
        if runner.dir_exists(f"{work_dir}/prisma"):
            return True
        deps = dependency_names(read_package_json(runner, work_dir))
        return "prisma" in deps or "@prisma/client" in deps

    def generate(self, runner: CommandRunner, work_dir: str, timeout: Optional[float] = None) -> None:
        result = runner.execute(node_command(work_dir, "npx prisma generate"), timeout=timeout)
        if not result.ok:
            raise RemoteCommandError(
                f"Prisma generate failed:\n{result.output}",
                exit_code=result.exit_status,
                output=result.output,
            )

    def push_schema(
        self,
        runner: CommandRunner,
        work_dir: str,
        env: Mapping[str, str],
        timeout: Optional[float] = None,
    ) -> OrmResult:
        if not env.get("DATABASE_URL"):
            return OrmResult(ran=False, message="Generated (no DATABASE_URL)")
        result = runner.execute(node_command(work_dir, "npx prisma db push"), timeout=timeout)
        if not result.ok:
            # A failed push leaves the app runnable against the existing schema
            return OrmResult(ran=True, message=f"Generated (db push warning: {result.output.strip()})")
        return OrmResult(ran=True, message="Generated and database pushed")

    def deploy_commands(self, manager: PackageManager) -> Tuple[str, ...]:
        return ("npx prisma generate", "npx prisma db push")


class NoOrm(OrmTool):
    """Sentinel that always matches and does nothing."""

    name = "none"
    is_noop = True

    def detect(self, runner: CommandRunner, work_dir: str) -> bool:
        return True

    def generate(self, runner: CommandRunner, work_dir: str, timeout: Optional[float] = None) -> None:
        return None

    def push_schema(
        self,
        runner: CommandRunner,
        work_dir: str,
        env: Mapping[str, str],
        timeout: Optional[float] = None,
    ) -> OrmResult:
        return OrmResult(ran=False, message="No ORM detected")


ORM_TOOLS: Tuple[OrmTool, ...] = (
    PrismaOrm(),
    NoOrm(),
)


def detect_orm(runner: CommandRunner, work_dir: str) -> OrmTool:
    for tool in ORM_TOOLS:
        if tool.detect(runner, work_dir):
            return tool
    raise AssertionError("NoOrm always matches")  # pragma: no cover
