"""Git helpers that operate on a checkout inside a sandbox.

Every command goes through :meth:`Sandbox.run_command`, so the same code
drives a local temporary checkout in tests and an isolated job sandbox in
production. Credentials embedded in remote URLs are redacted from every
error message raised here.
"""

from __future__ import annotations

import re
from typing import List, Sequence
from urllib.parse import urlsplit, urlunsplit

from .sandbox import CommandResult, ExecutorError, Sandbox

_CREDENTIALS_RE = re.compile(r"(https?://)[^/@\s]+@")


class GitError(ExecutorError):
    """Raised when a git command fails or the repository cannot be used."""


def redact_credentials(text: str) -> str:
    """Replace ``user:token@`` segments of URLs with ``***@``."""
    return _CREDENTIALS_RE.sub(r"\1***@", text)


def authenticated_url(url: str, token: str, *, username: str = "x-access-token") -> str:
    """Embed ``token`` into an HTTPS remote URL for a non-interactive push."""
    parts = urlsplit(url)
    if parts.scheme not in {"http", "https"}:
        raise GitError(f"Only HTTP(S) remotes can carry a token: {redact_credentials(url)}")
    host = parts.hostname or ""
    if parts.port:
        host = f"{host}:{parts.port}"
    netloc = f"{username}:{token}@{host}"
    return urlunsplit((parts.scheme, netloc, parts.path, parts.query, parts.fragment))


class GitRepository:
    """Lightweight wrapper around ``git`` commands run inside a sandbox."""

    def __init__(self, sandbox: Sandbox, path: str = ".", *, timeout: float | None = None) -> None:
        self.sandbox = sandbox
        self.path = path
        self._timeout = timeout

    @classmethod
    def clone(
        cls,
        sandbox: Sandbox,
        url: str,
        path: str = "repo",
        *,
        depth: int | None = None,
        timeout: float | None = None,
    ) -> "GitRepository":
        """Clone ``url`` into ``path`` (relative to the sandbox root)."""
        args: List[str] = ["git", "clone"]
        if depth:
            args.extend(["--depth", str(depth)])
        args.extend([url, path])
        result = sandbox.run_command(args, timeout=timeout)
        if not result.ok:
            raise GitError(f"git clone failed: {_failure_detail(result)}")
        return cls(sandbox, path, timeout=timeout)

    # ------------------------------------------------------------------ git IO
    def _run_git(self, args: Sequence[str], *, check: bool = True) -> CommandResult:
        result = self.sandbox.run_command(["git", *args], timeout=self._timeout, cwd=self.path)
        if check and not result.ok:
            raise GitError(f"git {redact_credentials(' '.join(args))} failed: {_failure_detail(result)}")
        return result

    def configure_identity(self, name: str, email: str) -> None:
        """Set the committer identity local to this checkout."""
        self._run_git(["config", "user.name", name])
        self._run_git(["config", "user.email", email])

    # -------------------------------------------------------------- branches
    def current_branch(self) -> str | None:
        """Return the current branch name or ``None`` when detached."""
        result = self._run_git(["rev-parse", "--abbrev-ref", "HEAD"], check=False)
        if not result.ok:
            return None
        branch = result.stdout.strip()
        if not branch or branch == "HEAD":
            return None
        return branch

    def create_branch(self, name: str) -> None:
        """Create ``name`` from the current ``HEAD`` and switch to it."""
        self._run_git(["checkout", "-b", name])

    def head(self) -> str | None:
        result = self._run_git(["rev-parse", "--verify", "HEAD"], check=False)
        if not result.ok:
            return None
        return result.stdout.strip() or None

    # ------------------------------------------------------------- repo status
    def status_entries(self) -> List[tuple[str, str]]:
        """Return porcelain status entries as ``(status, path)`` pairs."""
        result = self._run_git(["status", "--porcelain"])
        entries: List[tuple[str, str]] = []
        for line in result.stdout.splitlines():
            if not line:
                continue
            status = line[:2]
            raw_path = line[3:]
            if status[0] in {"R", "C"} and " -> " in raw_path:
                raw_path = raw_path.split(" -> ", 1)[1]
            entries.append((status.strip() or status, raw_path.strip()))
        return entries

    def has_changes(self) -> bool:
        """Return ``True`` when there are working tree changes."""
        return bool(self.status_entries())

    # -------------------------------------------------------------- commits
    def commit_all(self, message: str, *, allow_empty_fallback: bool = True) -> str | None:
        """Stage everything and commit.

        When git reports nothing to commit and ``allow_empty_fallback`` is set,
        an empty commit is created instead so a branch can still be pushed.
        Returns the new commit SHA, or ``None`` when nothing was committed.
        """
        self._run_git(["add", "--all"])
        commit = self._run_git(["commit", "-m", message], check=False)
        if not commit.ok:
            combined = f"{commit.stdout}\n{commit.stderr}".lower()
            if "nothing to commit" not in combined:
                raise GitError(f"git commit failed: {_failure_detail(commit)}")
            if not allow_empty_fallback:
                return None
            self._run_git(["commit", "--allow-empty", "-m", message])
        return self.head()

    # -------------------------------------------------------------- remotes
    def push(self, remote: str, branch: str, *, force: bool = False) -> None:
        """Push ``branch`` to ``remote`` (a remote name or URL)."""
        args: List[str] = ["push"]
        if force:
            args.append("--force")
        args.extend([remote, f"HEAD:refs/heads/{branch}"])
        self._run_git(args)


def _failure_detail(result: CommandResult) -> str:
    message = result.stderr.strip() or result.stdout.strip() or f"exit code {result.exit_code}"
    return redact_credentials(message)


__all__ = ["GitError", "GitRepository", "authenticated_url", "redact_credentials"]
