"""Application framework detection and per-framework process settings."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Dict, Tuple

from ..errors import UnsupportedAppTypeError
from ..scripts.builders import EcosystemOptions
from ..scripts.sanitize import safe_path
from ..ssh.executor import CommandRunner
from .base import dependency_names, read_package_json
from .packages import PackageManager

STATIC_SERVER_FILE = "_vps_deployer_server.js"

# Zero-dependency static server for SPA builds: serves dist/ and falls back
# to index.html for unknown paths.
STATIC_SERVER_SCRIPT = """'use strict';
const http = require('http');
const fs = require('fs');
const path = require('path');

const distDir = path.join(__dirname, 'dist');
const port = parseInt(process.env.PORT, 10);

const MIME = {
  '.html': 'text/html; charset=utf-8',
  '.css': 'text/css',
  '.js': 'application/javascript',
  '.mjs': 'application/javascript',
  '.json': 'application/json',
  '.svg': 'image/svg+xml',
  '.png': 'image/png',
  '.jpg': 'image/jpeg',
  '.jpeg': 'image/jpeg',
  '.gif': 'image/gif',
  '.webp': 'image/webp',
  '.ico': 'image/x-icon',
  '.woff': 'font/woff',
  '.woff2': 'font/woff2',
  '.ttf': 'font/ttf',
};

http.createServer((req, res) => {
  const urlPath = decodeURIComponent(req.url.split('?')[0]);
  let filePath = path.normalize(path.join(distDir, urlPath));

  if (!filePath.startsWith(distDir + path.sep) && filePath !== distDir) {
    res.writeHead(403);
    return res.end('Forbidden');
  }

  try {
    if (fs.statSync(filePath).isDirectory()) {
      filePath = path.join(filePath, 'index.html');
    }
  } catch (err) {
    filePath = path.join(distDir, 'index.html');
  }

  fs.readFile(filePath, (err, data) => {
    if (err) {
      res.writeHead(404);
      return res.end('Not found');
    }
    const contentType = MIME[path.extname(filePath)] || 'application/octet-stream';
    res.writeHead(200, { 'Content-Type': contentType });
    res.end(data);
  });
}).listen(port, () => {
  console.log('static server listening on port ' + port);
});
"""


class AppFramework(ABC):
    """Capability interface for a supported application framework."""

    name: str = ""

    @abstractmethod
    def detect(self, runner: CommandRunner, work_dir: str) -> bool:
        ...

    def build_command(self, manager: PackageManager) -> str:
        return manager.run_script("build")

    @abstractmethod
    def ecosystem_options(self, name: str, cwd: str, port: int) -> EcosystemOptions:
        ...

    @abstractmethod
    def start_command(self) -> str:
        ...

    def extra_files(self) -> Dict[str, str]:
        """Files (relative to the working directory) written before the process starts."""
        return {}


class NextJsApp(AppFramework):
    name = "Next.js"

    def detect(self, runner: CommandRunner, work_dir: str) -> bool:
        return "next" in dependency_names(read_package_json(runner, work_dir))

    def ecosystem_options(self, name: str, cwd: str, port: int) -> EcosystemOptions:
        return EcosystemOptions(
            name=name,
            cwd=cwd,
            port=port,
            script="node_modules/next/dist/bin/next",
            args="start",
            exec_mode="cluster",
        )

    def start_command(self) -> str:
        return "node_modules/next/dist/bin/next start"


class ViteApp(AppFramework):
    name = "Vite"
    config_files = ("vite.config.ts", "vite.config.js", "vite.config.mts", "vite.config.mjs")

    def detect(self, runner: CommandRunner, work_dir: str) -> bool:
        if "vite" not in dependency_names(read_package_json(runner, work_dir)):
            return False
        # Projects that only bundle a library with vite carry no config file
        candidates = " ".join(safe_path(f"{work_dir}/{name}") for name in self.config_files)
        result = runner.execute(f"ls {candidates} 2>/dev/null | head -1")
        return bool(result.stdout.strip())

    def ecosystem_options(self, name: str, cwd: str, port: int) -> EcosystemOptions:
        return EcosystemOptions(name=name, cwd=cwd, port=port, script=STATIC_SERVER_FILE)

    def start_command(self) -> str:
        return f"node {STATIC_SERVER_FILE}"

    def extra_files(self) -> Dict[str, str]:
        return {STATIC_SERVER_FILE: STATIC_SERVER_SCRIPT}


# No fallback member: an unmatched project is a user-visible error
APP_FRAMEWORKS: Tuple[AppFramework, ...] = (
    NextJsApp(),
    ViteApp(),
)


def detect_app_framework(runner: CommandRunner, work_dir: str) -> AppFramework:
    for framework in APP_FRAMEWORKS:
        if framework.detect(runner, work_dir):
            return framework
    supported = ", ".join(f.name for f in APP_FRAMEWORKS)
    raise UnsupportedAppTypeError(f"Unsupported app type. Currently supported: {supported}.")


def get_app_framework(name: str) -> AppFramework:
    for framework in APP_FRAMEWORKS:
        if framework.name == name:
            return framework
    raise KeyError(name)
