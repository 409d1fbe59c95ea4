"""In-memory stand-ins for the shared host, the SSH client and GitHub."""

from __future__ import annotations

import base64
import json
import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set, Tuple

from cryptography.fernet import Fernet

from vps_deployer.cicd.provisioner import CICDSetupResult
from vps_deployer.config import AppConfig, HostConfig, TimeoutConfig
from vps_deployer.scripts.builders import SOURCE_NVM
from vps_deployer.ssh.credentials import SSHCredentials
from vps_deployer.ssh.executor import CommandRunner
from vps_deployer.ssh.probe import NODE_BIN_COMMAND
from vps_deployer.ssh.session import SSHCommandResult
from vps_deployer.store import FernetCipher
from vps_deployer.store.models import User
from vps_deployer.sync.discovery import SEPARATOR, parse_ecosystem

APP_DOMAIN = "apps.example.com"
MAP_FILE = "/etc/nginx/subdomain-ports.map"
MARKERS_DIR = "/var/lib/vps-deployer/markers"
NODE_BIN = "/home/deploy/.nvm/versions/node/v20.11.0/bin"

NEXT_PACKAGE = json.dumps(
    {"name": "demo", "dependencies": {"next": "14.2.0", "react": "18.2.0"}}
)
VITE_PACKAGE = json.dumps(
    {"name": "spa", "devDependencies": {"vite": "5.0.0"}}
)
PRISMA_PACKAGE = json.dumps(
    {"name": "shop", "dependencies": {"next": "14.2.0", "@prisma/client": "5.0.0"}}
)


def make_config(**host_overrides) -> AppConfig:
    host = HostConfig(
        app_domain=APP_DOMAIN,
        projects_root="/var/www",
        deploy_user="deploy",
        port_mapping_file=MAP_FILE,
        markers_dir=MARKERS_DIR,
        storage_root="/var/www/storage",
    )
    for key, value in host_overrides.items():
        setattr(host, key, value)
    return AppConfig(
        ssh=SSHCredentials(host="203.0.113.10", username="deploy", private_key="FAKE-KEY"),
        host=host,
        timeouts=TimeoutConfig(start_grace=0),
    )


def make_cipher() -> FernetCipher:
    return FernetCipher(Fernet.generate_key())


@dataclass
class RepoFixture:
    files: Dict[str, str]
    commit: str = "a1b2c3d4e5f60718293a4b5c6d7e8f9012345678"
    message: str = "Initial commit"
    branch: str = "main"


@dataclass
class FakeProcess:
    name: str
    cwd: str
    port: int
    status: str = "online"


@dataclass
class _Failure:
    pattern: "re.Pattern[str]"
    output: str
    exit_status: int
    remaining: Optional[int]


_Q = r'"([^"]+)"'
_NVM = re.escape(SOURCE_NVM)

_WRITE = re.compile(rf"^echo '([A-Za-z0-9+/=]*)' \| base64 -d > {_Q}(?: && chmod (\S+) {_Q})?$")
_CAT = re.compile(rf"^cat {_Q}$")
_CAT_OR = re.compile(rf'^cat {_Q} 2>/dev/null \|\| echo "(.*)"$')
_TEST = re.compile(rf'^test -([fde]) {_Q} && echo "exists" \|\| (?:echo "(\w+)"|true)$')
_MOVE = re.compile(rf"^sudo mv {_Q} {_Q}$")
_REMOVE_TREE = re.compile(rf"^sudo rm -rf {_Q}$")
_REMOVE_FILE = re.compile(rf"^rm -f {_Q}(?: 2>/dev/null \|\| true)?$")
_MKDIR = re.compile(rf"^sudo mkdir -p {_Q} && sudo chown \$\(whoami\):\$\(whoami\) {_Q}$")
_CLONE = re.compile(
    rf'^GIT_ASKPASS={_Q} GIT_TERMINAL_PROMPT=0 git clone --branch {_Q} --single-branch '
    rf"--depth 1 {_Q} {_Q} 2>&1$"
)
_PULL = re.compile(rf"^cd {_Q} && .*git fetch origin (\S+) && git reset --hard origin/\S+ 2>&1$")
_REV_PARSE = re.compile(rf"^cd {_Q} && git rev-parse HEAD$")
_LOG_MESSAGE = re.compile(rf"^cd {_Q} && git log -1 --pretty=%B$")
_PROBE_GIT = re.compile(rf'^\(cd {_Q} 2>/dev/null && git (.+?) 2>/dev/null\) \|\| echo "(.*)"$')
_PM2 = re.compile(rf"^bash -c '{_NVM} && (?:cd {_Q} && )?pm2 ([^']+)'$")
_NODE = re.compile(rf"^bash -c '{_NVM} && cd {_Q} && (.+) 2>&1'$")
_PORT = re.compile(r'^ss -tlnp 2>/dev/null \| grep -q ":(\d+) " && echo "in_use" \|\| echo "free"$')
_LS_FIRST = re.compile(r"^ls (.+) 2>/dev/null \| head -1$")
_LS_DIR = re.compile(rf"^ls -1 {_Q} 2>/dev/null \|\| true$")
_MARKERS = re.compile(rf"^for f in {_Q}/\*\.json; do .* done 2>/dev/null \|\| true$")


class FakeHost(CommandRunner):
    """
    A stateful host that understands exactly the commands the deployer sends.

    Unknown commands raise AssertionError so a test never passes against a
    command shape the fake silently ignored.
    """

    def __init__(self) -> None:
        self.files: Dict[str, str] = {MAP_FILE: ""}
        self.modes: Dict[str, str] = {}
        self.dirs: Set[str] = {"/", "/etc", "/etc/nginx", "/tmp", "/var", "/var/www", "/home/deploy"}
        self.repos: Dict[str, RepoFixture] = {}
        self.checkouts: Dict[str, Tuple[str, RepoFixture]] = {}
        self.processes: Dict[str, FakeProcess] = {}
        self.bound_ports: Set[int] = set()
        self.crash_on_start: Set[str] = set()
        self.commands: List[str] = []
        self.node_commands: List[str] = []
        self.reloads = 0
        self.nginx_accepts = lambda content: True
        self._failures: List[_Failure] = []

    # -- test helpers -------------------------------------------------

    def add_repo(self, url: str, files: Dict[str, str], **kwargs) -> RepoFixture:
        repo = RepoFixture(files=dict(files), **kwargs)
        self.repos[url] = repo
        return repo

    def fail(self, pattern: str, output: str = "error", exit_status: int = 1, times: Optional[int] = None) -> None:
        """Make every command matching ``pattern`` fail (``times`` limits how often)."""
        self._failures.append(_Failure(re.compile(pattern), output, exit_status, times))

    def exists(self, path: str) -> bool:
        return path in self.files or path in self.dirs

    def map_lines(self) -> List[str]:
        return [line for line in self.files.get(MAP_FILE, "").split("\n") if line]

    def ran(self, pattern: str) -> bool:
        return any(re.search(pattern, command) for command in self.commands)

    def seed_project(
        self,
        subdomain: str,
        port: int,
        repo_url: Optional[str] = None,
        *,
        owner_id: Optional[str] = None,
        status: str = "online",
        package: str = NEXT_PACKAGE,
        env: str = 'NODE_ENV="production"\nPORT="{port}"\nAPI_KEY="secret"\n',
        commit: str = "f00dfacecafe0000111122223333444455556666",
        branch: str = "main",
    ) -> str:
        """Lay down a project as a previous deploy would have left it."""
        path = f"/var/www/{subdomain}"
        self._mkdir(path)
        self.files[f"{path}/package.json"] = package
        self.files[f"{path}/.env"] = env.format(port=port)
        self.files[f"{path}/ecosystem.config.js"] = (
            "module.exports = {\n  apps: [{\n"
            f"    name: '{subdomain}',\n    cwd: '{path}',\n"
            f"    env: {{\n      PORT: {port}\n    }}\n  }}]\n}};\n"
        )
        if repo_url:
            repo = self.repos.get(repo_url) or self.add_repo(
                repo_url, {"package.json": package}, commit=commit, branch=branch
            )
            self.checkouts[path] = (repo_url, repo)
        self.files[MAP_FILE] = self.files.get(MAP_FILE, "") + f"{subdomain}.{APP_DOMAIN} {port};\n"
        if owner_id:
            self._mkdir(MARKERS_DIR)
            self.files[f"{MARKERS_DIR}/{subdomain}.json"] = json.dumps(
                {"userId": owner_id, "subdomain": subdomain}
            )
        if status != "not_found":
            self.processes[subdomain] = FakeProcess(subdomain, path, port, status)
        return path

    # -- CommandRunner ------------------------------------------------

    def execute(self, command: str, timeout: Optional[float] = None) -> SSHCommandResult:
        self.commands.append(command)
        for failure in self._failures:
            if failure.remaining == 0 or not failure.pattern.search(command):
                continue
            if failure.remaining is not None:
                failure.remaining -= 1
            return SSHCommandResult(command, "", failure.output, failure.exit_status)
        if SEPARATOR in command:
            sections = command.split(f'; echo "{SEPARATOR}"; ')
            outputs = [self._dispatch(section).stdout for section in sections]
            return self._ok(command, f"{SEPARATOR}\n".join(outputs))
        result = self._dispatch(command)
        return SSHCommandResult(command, result.stdout, result.stderr, result.exit_status)

    # -- command handlers ---------------------------------------------

    def _ok(self, command: str, stdout: str = "") -> SSHCommandResult:
        return SSHCommandResult(command, stdout, "", 0)

    def _err(self, command: str, stderr: str, status: int = 1) -> SSHCommandResult:
        return SSHCommandResult(command, "", stderr, status)

    def _mkdir(self, path: str) -> None:
        while path and path != "/":
            self.dirs.add(path)
            path = path.rsplit("/", 1)[0]

    def _put(self, path: str, content: str) -> None:
        self._mkdir(path.rsplit("/", 1)[0])
        self.files[path] = content

    def _remove_tree(self, path: str) -> None:
        prefix = path.rstrip("/") + "/"
        for name in [f for f in self.files if f == path or f.startswith(prefix)]:
            del self.files[name]
        self.dirs = {d for d in self.dirs if d != path and not d.startswith(prefix)}
        self.checkouts.pop(path, None)

    def _checkout(self, dest: str, url: str, repo: RepoFixture) -> None:
        self._mkdir(dest)
        for relative, content in repo.files.items():
            self._put(f"{dest}/{relative}", content)
        self.checkouts[dest] = (url, repo)

    def _dispatch(self, command: str) -> SSHCommandResult:
        match = _WRITE.match(command)
        if match:
            content = base64.b64decode(match.group(1)).decode("utf-8")
            self._put(match.group(2), content)
            if match.group(3):
                self.modes[match.group(2)] = match.group(3)
            return self._ok(command)

        match = _CAT.match(command)
        if match:
            path = match.group(1)
            if path not in self.files:
                return self._err(command, f"cat: {path}: No such file or directory")
            return self._ok(command, self.files[path])

        match = _CAT_OR.match(command)
        if match:
            return self._ok(command, self.files.get(match.group(1), match.group(2) + "\n"))

        match = _TEST.match(command)
        if match:
            kind, path, otherwise = match.groups()
            found = {
                "f": path in self.files,
                "d": path in self.dirs,
                "e": self.exists(path),
            }[kind]
            return self._ok(command, "exists\n" if found else (f"{otherwise}\n" if otherwise else ""))

        match = _MOVE.match(command)
        if match:
            source, dest = match.groups()
            if source not in self.files:
                return self._err(command, f"mv: cannot stat '{source}'")
            self._put(dest, self.files.pop(source))
            return self._ok(command)

        match = _REMOVE_TREE.match(command)
        if match:
            self._remove_tree(match.group(1))
            return self._ok(command)

        match = _REMOVE_FILE.match(command)
        if match:
            self.files.pop(match.group(1), None)
            return self._ok(command)

        match = _MKDIR.match(command)
        if match:
            self._mkdir(match.group(1))
            return self._ok(command)

        match = _CLONE.match(command)
        if match:
            _askpass, branch, url, dest = match.groups()
            repo = self.repos.get(url)
            if repo is None:
                return SSHCommandResult(command, f"fatal: repository '{url}' not found", "", 128)
            if repo.branch != branch:
                return SSHCommandResult(command, f"fatal: Remote branch {branch} not found", "", 128)
            self._checkout(dest, url, repo)
            return self._ok(command, f"Cloning into '{dest}'...\n")

        match = _PULL.match(command)
        if match:
            path = match.group(1)
            if path not in self.checkouts:
                return SSHCommandResult(command, "fatal: not a git repository", "", 128)
            url, _ = self.checkouts[path]
            self._checkout(path, url, self.repos[url])
            return self._ok(command, f"HEAD is now at {self.repos[url].commit[:7]}\n")

        match = _REV_PARSE.match(command)
        if match:
            checkout = self.checkouts.get(match.group(1))
            if not checkout:
                return self._err(command, "fatal: not a git repository", 128)
            return self._ok(command, checkout[1].commit + "\n")

        match = _LOG_MESSAGE.match(command)
        if match:
            checkout = self.checkouts.get(match.group(1))
            if not checkout:
                return self._err(command, "fatal: not a git repository", 128)
            return self._ok(command, checkout[1].message + "\n\n")

        match = _PROBE_GIT.match(command)
        if match:
            path, git_args, fallback = match.groups()
            checkout = self.checkouts.get(path)
            if not checkout:
                return self._ok(command, fallback + "\n")
            url, repo = checkout
            value = {
                "remote get-url origin": url + ".git",
                "rev-parse --short HEAD": repo.commit[:7],
                "branch --show-current": repo.branch,
            }[git_args]
            return self._ok(command, value + "\n")

        match = _PM2.match(command)
        if match:
            return self._pm2(command, match.group(1), match.group(2))

        match = _NODE.match(command)
        if match:
            self.node_commands.append(match.group(2))
            return self._ok(command, "done\n")

        match = _PORT.match(command)
        if match:
            port = int(match.group(1))
            online = {p.port for p in self.processes.values() if p.status == "online"}
            return self._ok(command, "in_use\n" if port in self.bound_ports | online else "free\n")

        if command == "sudo nginx -t 2>&1":
            if self.nginx_accepts(self.files.get(MAP_FILE, "")):
                return self._ok(command, "nginx: configuration file test is successful\n")
            return SSHCommandResult(command, "nginx: [emerg] invalid map entry\n", "", 1)

        if command == "sudo systemctl reload nginx":
            self.reloads += 1
            return self._ok(command)

        if command == NODE_BIN_COMMAND:
            return self._ok(command, NODE_BIN + "\n")

        match = _LS_FIRST.match(command)
        if match:
            paths = re.findall(r'"([^"]+)"', match.group(1))
            present = [p for p in paths if p in self.files]
            return self._ok(command, present[0] + "\n" if present else "")

        match = _LS_DIR.match(command)
        if match:
            prefix = match.group(1).rstrip("/") + "/"
            names = sorted({f[len(prefix):].split("/")[0] for f in self.files if f.startswith(prefix)})
            return self._ok(command, "\n".join(names))

        match = _MARKERS.match(command)
        if match:
            prefix = match.group(1).rstrip("/") + "/"
            markers = [
                content + "\n"
                for path, content in sorted(self.files.items())
                if path.startswith(prefix) and path.endswith(".json")
            ]
            return self._ok(command, "".join(markers))

        if command == "echo 'vps-deployer connection test'":
            return self._ok(command, "vps-deployer connection test\n")

        raise AssertionError(f"FakeHost does not understand: {command}")

    def _pm2(self, command: str, cwd: Optional[str], args: str) -> SSHCommandResult:
        verb, _, rest = args.partition(" ")
        if verb in ("start", "startOrRestart"):
            content = self.files.get(f"{cwd}/ecosystem.config.js")
            if content is None:
                return self._err(command, "[PM2][ERROR] File ecosystem.config.js not found")
            name, port, app_cwd = parse_ecosystem(content)
            status = "errored" if name in self.crash_on_start else "online"
            self.processes[name] = FakeProcess(name, app_cwd or cwd, port or 0, status)
            return self._ok(command, f"[PM2] App [{name}] launched\n")
        if verb in ("stop", "restart", "delete"):
            name = rest.strip()
            if name not in self.processes:
                return self._err(command, f"[PM2][ERROR] Process or Namespace {name} not found")
            if verb == "delete":
                del self.processes[name]
            else:
                self.processes[name].status = "stopped" if verb == "stop" else "online"
            return self._ok(command)
        if verb == "save":
            return self._ok(command, "[PM2] Saving current process list...\n")
        if verb == "jlist":
            return self._ok(
                command,
                json.dumps(
                    [{"name": p.name, "pm2_env": {"status": p.status}} for p in self.processes.values()]
                ),
            )
        raise AssertionError(f"FakeHost does not understand pm2 {args}")


class FakeCICD:
    """Records setup calls instead of talking to GitHub."""

    def __init__(self, result: Optional[CICDSetupResult] = None) -> None:
        self.calls = []
        self.result = result or CICDSetupResult(
            success=True,
            secrets_set=["SSH_HOST", "SSH_USER", "SSH_PRIVATE_KEY", "SSH_PORT"],
            workflow_created=True,
            deploy_script_created=True,
        )

    def setup(self, options):
        self.calls.append(options)
        return self.result


class FakeResponse:
    def __init__(self, status_code: int = 200, payload=None, text: str = "") -> None:
        self.status_code = status_code
        self._payload = payload
        self.text = text or (json.dumps(payload) if payload is not None else "")

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300

    def json(self):
        if self._payload is None:
            raise ValueError("No JSON body")
        return self._payload


@dataclass
class FakeHTTPSession:
    """Answers ``requests.Session.request`` from a (method, url-suffix) table; the last match wins."""

    routes: Dict[Tuple[str, str], FakeResponse] = field(default_factory=dict)
    calls: List[Tuple[str, str, dict]] = field(default_factory=list)
    proxies: dict = field(default_factory=dict)

    def request(self, method: str, url: str, **kwargs):
        self.calls.append((method, url, kwargs))
        # later routes win so a test can override a default
        for (route_method, suffix), response in reversed(list(self.routes.items())):
            if route_method == method and url.endswith(suffix):
                return response
        return FakeResponse(404, {"message": "Not Found"})


def seed_user(store, cipher, user_id: str = "u1", github_username: Optional[str] = "alice",
              token: Optional[str] = "ghp_abc123"):
    return store.save_user(
        User(
            id=user_id,
            github_username=github_username,
            encrypted_github_token=cipher.encrypt(token) if token else None,
        )
    )
