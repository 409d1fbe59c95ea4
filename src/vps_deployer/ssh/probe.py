"""Remote host probing utilities."""

from __future__ import annotations

from ..errors import ConsistencyError, DeployerError
from ..scripts.sanitize import safe_path
from .executor import CommandRunner

NODE_BIN_COMMAND = "bash -c 'source ~/.nvm/nvm.sh 2>/dev/null || true; dirname \"$(which node)\"'"


class RemoteProbe:
    """Answers small yes/no questions about the host."""

    def __init__(self, runner: CommandRunner) -> None:
        self.runner = runner

    def port_in_use(self, port: int) -> bool:
        port = int(port)
        result = self.runner.execute(
            f'ss -tlnp 2>/dev/null | grep -q ":{port} " && echo "in_use" || echo "free"'
        )
        return "in_use" in result.stdout

    def dir_exists(self, path: str) -> bool:
        return self.runner.dir_exists(path)

    def file_exists(self, path: str) -> bool:
        return self.runner.file_exists(path)

    def path_gone(self, path: str) -> bool:
        result = self.runner.execute(f'test -e {safe_path(path)} && echo "exists" || echo "gone"')
        return result.stdout.strip() == "gone"

    def node_bin_path(self) -> str:
        """Absolute directory of the node binary, e.g. ~/.nvm/versions/node/v20/bin."""
        bin_path = self.runner.execute(NODE_BIN_COMMAND).stdout.strip()
        if not bin_path or bin_path == ".":
            raise ConsistencyError("Could not detect node binary path on host")
        return bin_path

    def test_connection(self) -> bool:
        try:
            result = self.runner.execute("echo 'vps-deployer connection test'")
        except DeployerError:
            return False
        return "vps-deployer connection test" in result.stdout
