"""GitHub REST client for Actions secrets, workflow files and repo metadata."""

from __future__ import annotations

import base64
import os
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import requests
from nacl import encoding, public

from ..config import GitHubConfig
from ..errors import GitHubAPIError
from ..utils.logging import get_logger

logger = get_logger(__name__)

API_VERSION = "2022-11-28"


@dataclass(frozen=True)
class RepoPublicKey:
    key_id: str
    key: str


@dataclass
class SecretsResult:
    set: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)


def encrypt_secret(value: str, public_key_b64: str) -> str:
    """Seal ``value`` for the repository's public key (libsodium sealed box)."""
    key = public.PublicKey(public_key_b64.encode("ascii"), encoding.Base64Encoder)
    sealed = public.SealedBox(key).encrypt(value.encode("utf-8"))
    return base64.b64encode(sealed).decode("ascii")


def render_workflow(subdomain: str, branch: str) -> str:
    """Workflow that runs the host's deploy script over SSH on every push."""
    return f"""name: Deploy via vps-deployer

on:
  push:
    branches:
      - {branch}

jobs:
  deploy:
    name: Deploy Application
    runs-on: ubuntu-latest

    steps:
      - name: Checkout code
        uses: actions/checkout@v4

      - name: Deploy to VPS
        uses: appleboy/ssh-action@v1.0.3
        with:
          host: ${{{{ secrets.SSH_HOST }}}}
          username: ${{{{ secrets.SSH_USER }}}}
          key: ${{{{ secrets.SSH_PRIVATE_KEY }}}}
          port: ${{{{ secrets.SSH_PORT }}}}
          script: ~/{subdomain}_deploy.sh
"""


class GitHubClient:
    """Minimal GitHub REST API client bound to one access token."""

    def __init__(
        self,
        token: str,
        config: Optional[GitHubConfig] = None,
        session: Optional[requests.Session] = None,
    ):
        """
        Initialize the client.

        Args:
            token: OAuth or fine-grained access token
            config: API base URL, workflow path and request timeout
            session: Optional pre-built session (tests inject a double)
        """
        if not token:
            raise ValueError("GitHub token is required")

        self.config = config or GitHubConfig()
        self.base_url = self.config.api_url.rstrip("/")
        self.session = session or requests.Session()

        proxy = os.environ.get("HTTPS_PROXY") or os.environ.get("HTTP_PROXY")
        if proxy and session is None:
            self.session.proxies = {"http": proxy, "https": proxy}
            logger.info("GitHub client using proxy: %s", proxy)

        self._headers = {
            "Authorization": f"Bearer {token}",
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": API_VERSION,
            "Content-Type": "application/json",
        }

    def _request(self, method: str, path: str, **kwargs) -> requests.Response:
        url = f"{self.base_url}{path}"
        try:
            return self.session.request(
                method,
                url,
                headers=self._headers,
                timeout=self.config.request_timeout,
                **kwargs,
            )
        except requests.exceptions.RequestException as exc:
            raise GitHubAPIError(f"{method} {path} failed: {exc}") from exc

    @staticmethod
    def _payload(response: requests.Response, what: str) -> dict:
        try:
            data = response.json()
        except ValueError as exc:
            raise GitHubAPIError(f"{what}: response is not JSON", response.status_code) from exc
        if not isinstance(data, dict):
            raise GitHubAPIError(f"{what}: unexpected response body", response.status_code)
        return data

    def get_public_key(self, owner: str, repo: str) -> RepoPublicKey:
        response = self._request("GET", f"/repos/{owner}/{repo}/actions/secrets/public-key")
        if not response.ok:
            raise GitHubAPIError(
                f"Failed to get repo public key: {response.status_code} {response.text}",
                response.status_code,
            )
        data = self._payload(response, "Repo public key")
        key_id, key = data.get("key_id"), data.get("key")
        if not key_id or not key:
            raise GitHubAPIError("Repo public key response is missing key_id or key", response.status_code)
        return RepoPublicKey(key_id=str(key_id), key=str(key))

    def set_secrets(self, owner: str, repo: str, secrets: Dict[str, str]) -> SecretsResult:
        """
        Encrypt and store each secret; one failure does not stop the rest.

        Raises:
            GitHubAPIError: when the repository public key cannot be fetched
        """
        key = self.get_public_key(owner, repo)
        result = SecretsResult()
        for name, value in secrets.items():
            try:
                body = {"encrypted_value": encrypt_secret(value, key.key), "key_id": key.key_id}
                response = self._request(
                    "PUT", f"/repos/{owner}/{repo}/actions/secrets/{name}", json=body
                )
            except (GitHubAPIError, ValueError, TypeError) as exc:
                result.errors.append(f"Secret {name}: {exc}")
                continue
            if response.ok:
                result.set.append(name)
            else:
                result.errors.append(f"Secret {name}: {response.status_code} {response.text}")
        return result

    def get_file_sha(self, owner: str, repo: str, path: str, branch: str) -> Optional[str]:
        response = self._request(
            "GET", f"/repos/{owner}/{repo}/contents/{path}", params={"ref": branch}
        )
        if not response.ok:
            return None
        sha = self._payload(response, "Workflow file lookup").get("sha")
        return sha if isinstance(sha, str) else None

    def put_file(
        self,
        owner: str,
        repo: str,
        path: str,
        content: str,
        branch: str,
        message: str,
    ) -> None:
        """Create or update ``path`` on ``branch``; an existing file is updated by SHA."""
        body = {
            "message": message,
            "content": base64.b64encode(content.encode("utf-8")).decode("ascii"),
            "branch": branch,
        }
        sha = self.get_file_sha(owner, repo, path, branch)
        if sha:
            body["sha"] = sha
        response = self._request("PUT", f"/repos/{owner}/{repo}/contents/{path}", json=body)
        if not response.ok:
            raise GitHubAPIError(
                f"Failed to create workflow file: {response.status_code} {response.text}",
                response.status_code,
            )

    def put_workflow(self, owner: str, repo: str, subdomain: str, branch: str) -> None:
        self.put_file(
            owner,
            repo,
            self.config.workflow_path,
            render_workflow(subdomain, branch),
            branch,
            "Add vps-deployer deploy workflow",
        )

    def default_branch(self, owner: str, repo: str) -> Optional[str]:
        """Repository default branch, or None when the API cannot tell."""
        try:
            response = self._request("GET", f"/repos/{owner}/{repo}")
        except GitHubAPIError as exc:
            logger.warning("Could not fetch %s/%s: %s", owner, repo, exc)
            return None
        if not response.ok:
            return None
        try:
            branch = self._payload(response, "Repository lookup").get("default_branch")
        except GitHubAPIError as exc:
            logger.warning("Could not read %s/%s: %s", owner, repo, exc)
            return None
        return branch if isinstance(branch, str) else None
