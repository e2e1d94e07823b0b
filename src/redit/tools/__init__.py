"""Tool integrations used by the edit pipeline and job runner."""

from .github import (
    ForkInfo,
    GitHubClient,
    PullRequest,
    RemoteIntegrationError,
    RepositoryRef,
    parse_repository_url,
)
from .sandbox import (
    CommandResult,
    ExecutorError,
    LocalSandbox,
    Sandbox,
    SandboxFileNotFound,
    SandboxTimeoutError,
)
from .vcs import GitError, GitRepository, authenticated_url, redact_credentials

__all__ = [
    "CommandResult",
    "ExecutorError",
    "ForkInfo",
    "GitError",
    "GitHubClient",
    "GitRepository",
    "LocalSandbox",
    "PullRequest",
    "RemoteIntegrationError",
    "RepositoryRef",
    "Sandbox",
    "SandboxFileNotFound",
    "SandboxTimeoutError",
    "authenticated_url",
    "parse_repository_url",
    "redact_credentials",
]
