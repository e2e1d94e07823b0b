"""Minimal GitHub REST client for forking repositories and opening pull requests."""

from __future__ import annotations

import json
import logging
import os
import re
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

LOGGER = logging.getLogger(__name__)

Transport = Callable[[str, str, Optional[Dict[str, Any]]], Any]

_REPO_URL_RE = re.compile(
    r"^(?:https?://)?(?:www\.)?github\.com/(?P<owner>[A-Za-z0-9_.-]+)/(?P<repo>[A-Za-z0-9_.-]+?)(?:\.git)?/?$"
)


class RemoteIntegrationError(RuntimeError):
    """Raised when the hosting service rejects a call; carries its payload."""

    def __init__(self, message: str, *, status: int | None = None, payload: Any = None) -> None:
        super().__init__(message)
        self.status = status
        self.payload = payload


@dataclass(slots=True, frozen=True)
class RepositoryRef:
    """``owner/name`` pair identifying a hosted repository."""

    owner: str
    name: str

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.name}"


@dataclass(slots=True, frozen=True)
class ForkInfo:
    """Result of a fork request."""

    full_name: str
    clone_url: str
    owner: str


@dataclass(slots=True, frozen=True)
class PullRequest:
    number: int
    url: str


def parse_repository_url(url: str) -> RepositoryRef:
    """Extract ``owner`` and ``repo`` from a GitHub repository URL."""
    match = _REPO_URL_RE.match(url.strip())
    if not match:
        raise RemoteIntegrationError(f"Invalid repository URL: {url}")
    return RepositoryRef(owner=match.group("owner"), name=match.group("repo"))


class GitHubClient:
    """Thin adapter around the GitHub REST API."""

    def __init__(
        self,
        *,
        token: Optional[str] = None,
        api_url: str = "https://api.github.com",
        transport: Optional[Transport] = None,
        timeout: float = 30.0,
    ) -> None:
        self._token = token or os.getenv("GITHUB_TOKEN")
        self._api_url = api_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport or self._http_transport

        if transport is None and not self._token:
            raise ValueError("A GitHub token is required when using the default transport.")

    @property
    def token(self) -> Optional[str]:
        return self._token

    def fork(self, repo: RepositoryRef) -> ForkInfo:
        """Fork ``repo`` into the authenticated account."""
        LOGGER.info("Forking %s", repo.full_name)
        data = self._request("POST", f"/repos/{repo.full_name}/forks", {})
        try:
            return ForkInfo(
                full_name=data["full_name"],
                clone_url=data["clone_url"],
                owner=data["owner"]["login"],
            )
        except (KeyError, TypeError) as error:
            raise RemoteIntegrationError("Fork response is missing repository details", payload=data) from error

    def default_branch(self, repo: RepositoryRef) -> str:
        """Return the upstream default branch, ``main`` when unspecified."""
        data = self._request("GET", f"/repos/{repo.full_name}", None)
        branch = data.get("default_branch") if isinstance(data, dict) else None
        return branch or "main"

    def create_pull_request(
        self,
        repo: RepositoryRef,
        *,
        head: str,
        base: str,
        title: str,
        body: str,
    ) -> PullRequest:
        """Open a pull request against ``repo``."""
        payload = {"title": title, "head": head, "base": base, "body": body}
        data = self._request("POST", f"/repos/{repo.full_name}/pulls", payload)
        url = data.get("html_url") if isinstance(data, dict) else None
        if not url:
            raise RemoteIntegrationError("Pull request creation failed: html_url missing", payload=data)
        return PullRequest(number=int(data.get("number") or 0), url=url)

    def _request(self, method: str, path: str, payload: Optional[Dict[str, Any]]) -> Any:
        return self._transport(method, f"{self._api_url}{path}", payload)

    def _http_transport(self, method: str, url: str, payload: Optional[Dict[str, Any]]) -> Any:
        """Default HTTP transport built on ``urllib``."""
        import urllib.error
        import urllib.request

        data = json.dumps(payload).encode("utf-8") if payload is not None else None
        request = urllib.request.Request(
            url,
            data=data,
            headers={
                "Accept": "application/vnd.github+json",
                "Authorization": f"Bearer {self._token}",
                "Content-Type": "application/json",
                "User-Agent": "redit/0.1",
                "X-GitHub-Api-Version": "2022-11-28",
            },
            method=method,
        )

        try:
            with urllib.request.urlopen(request, timeout=self._timeout) as response:
                body = response.read().decode("utf-8")
        except urllib.error.HTTPError as error:
            raw = error.read().decode("utf-8", errors="replace")
            try:
                detail: Any = json.loads(raw)
            except json.JSONDecodeError:
                detail = raw
            raise RemoteIntegrationError(
                f"GitHub {method} {url} failed with HTTP {error.code}",
                status=error.code,
                payload=detail,
            ) from error
        except urllib.error.URLError as error:
            raise RemoteIntegrationError(f"GitHub {method} {url} failed: {error.reason}") from error

        if not body.strip():
            return {}
        try:
            return json.loads(body)
        except json.JSONDecodeError as error:
            raise RemoteIntegrationError("GitHub returned invalid JSON", payload=body) from error


__all__ = [
    "ForkInfo",
    "GitHubClient",
    "PullRequest",
    "RemoteIntegrationError",
    "RepositoryRef",
    "parse_repository_url",
]
