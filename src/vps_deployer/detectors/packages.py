"""Package manager detection, probed through lockfiles on the host."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Tuple

from ..ssh.executor import CommandRunner


class PackageManager(ABC):
    name: str = ""
    lockfile: str = ""

    @abstractmethod
    def detect(self, runner: CommandRunner, work_dir: str) -> bool:
        ...

    @abstractmethod
    def install_command(self) -> str:
        """Install command tolerant of a stale lockfile."""

    @abstractmethod
    def frozen_install_command(self) -> str:
        """Strict install used by the CI deploy script."""

    def run_script(self, script: str) -> str:
        return f"{self.name} {script}"


class PnpmManager(PackageManager):
    name = "pnpm"
    lockfile = "pnpm-lock.yaml"

    def detect(self, runner: CommandRunner, work_dir: str) -> bool:
        return runner.file_exists(f"{work_dir}/{self.lockfile}")

    def install_command(self) -> str:
        return "pnpm install --frozen-lockfile || pnpm install"

    def frozen_install_command(self) -> str:
        return "pnpm install --frozen-lockfile"


class YarnManager(PackageManager):
    name = "yarn"
    lockfile = "yarn.lock"

    def detect(self, runner: CommandRunner, work_dir: str) -> bool:
        return runner.file_exists(f"{work_dir}/{self.lockfile}")

    def install_command(self) -> str:
        return "yarn install --frozen-lockfile || yarn install"

    def frozen_install_command(self) -> str:
        return "yarn install --frozen-lockfile"


class NpmManager(PackageManager):
    """Fallback sentinel: always matches."""

    name = "npm"
    lockfile = "package-lock.json"

    def detect(self, runner: CommandRunner, work_dir: str) -> bool:
        return True

    def install_command(self) -> str:
        return "npm ci || npm install"

    def frozen_install_command(self) -> str:
        return "npm ci"

    def run_script(self, script: str) -> str:
        return f"npm run {script}"


# Most specific first; npm terminates the search
PACKAGE_MANAGERS: Tuple[PackageManager, ...] = (
    PnpmManager(),
    YarnManager(),
    NpmManager(),
)


def detect_package_manager(runner: CommandRunner, work_dir: str) -> PackageManager:
    for manager in PACKAGE_MANAGERS:
        if manager.detect(runner, work_dir):
            return manager
    raise AssertionError("NpmManager always matches")  # pragma: no cover


def get_package_manager(name: str) -> PackageManager:
    for manager in PACKAGE_MANAGERS:
        if manager.name == name:
            return manager
    raise KeyError(name)
