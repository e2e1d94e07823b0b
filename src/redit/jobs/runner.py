"""Job runner: fork a hosted repository, run the pipeline on a clone, open a PR."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, List, Optional

from ..config import GitHubSettings, PipelineSettings, SandboxSettings
from ..models.llm_client import LLMClient
from ..orchestrator import PipelineDriver, PipelineResult
from ..prompts import render_pull_request_body
from ..state import FailureKind
from ..tools.github import ForkInfo, GitHubClient, RemoteIntegrationError, RepositoryRef, parse_repository_url
from ..tools.sandbox import LocalSandbox
from ..tools.vcs import GitError, GitRepository, authenticated_url
from ..utils.slug import branch_name
from .schema import JobSubmission

LOGGER = logging.getLogger(__name__)

CHECKOUT_DIR = "repo"

SandboxFactory = Callable[[], LocalSandbox]


@dataclass(slots=True)
class JobResult:
    """What a finished job produced."""

    repository: str
    fork: str
    pr_url: Optional[str] = None
    branch: Optional[str] = None
    applied_paths: List[str] = field(default_factory=list)
    removed_paths: List[str] = field(default_factory=list)
    reason: str = ""

    @property
    def published(self) -> bool:
        return self.pr_url is not None


class EditJobRunner:
    """Execute one job attempt end to end inside a fresh sandbox."""

    def __init__(
        self,
        *,
        client: LLMClient,
        github: GitHubClient,
        pipeline_settings: PipelineSettings | None = None,
        sandbox_settings: SandboxSettings | None = None,
        github_settings: GitHubSettings | None = None,
        logs_root: Path | None = None,
        sandbox_factory: SandboxFactory | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._client = client
        self._github = github
        self._pipeline_settings = pipeline_settings or PipelineSettings()
        self._sandbox_settings = sandbox_settings or SandboxSettings()
        self._github_settings = github_settings or GitHubSettings()
        self._logs_root = logs_root
        self._sandbox_factory = sandbox_factory or self._default_sandbox
        self._sleep = sleep

    def __call__(self, submission: JobSubmission) -> JobResult:
        return self.run(submission)

    def run(self, submission: JobSubmission) -> JobResult:
        """Fork, clone, edit and publish; raise when the pipeline fails."""
        upstream = parse_repository_url(str(submission.repository_url))
        fork = self._github.fork(upstream)
        LOGGER.info("Fork created: %s -> %s", fork.full_name, fork.clone_url)
        if self._github_settings.fork_wait_seconds:
            self._sleep(self._github_settings.fork_wait_seconds)

        sandbox = self._sandbox_factory()
        try:
            repo = GitRepository.clone(
                sandbox,
                fork.clone_url,
                CHECKOUT_DIR,
                timeout=self._sandbox_settings.clone_timeout,
            )
            repo.configure_identity(self._github_settings.username, self._github_settings.email)

            driver = PipelineDriver(
                client=self._client,
                sandbox=sandbox,
                repo_path=CHECKOUT_DIR,
                settings=self._pipeline_settings,
                logs_root=self._logs_root,
            )
            outcome = driver.run(submission.instruction)
            return self._finish(submission, upstream, fork, repo, outcome)
        finally:
            sandbox.close()

    def _finish(
        self,
        submission: JobSubmission,
        upstream: RepositoryRef,
        fork: ForkInfo,
        repo: GitRepository,
        outcome: PipelineResult,
    ) -> JobResult:
        state = outcome.state
        result = JobResult(
            repository=upstream.full_name,
            fork=fork.full_name,
            applied_paths=state.applied_paths(),
            removed_paths=list(state.removed_paths),
            reason=outcome.reason,
        )
        wrote_something = bool(state.applied_changes or state.removed_paths)

        if not outcome.ok:
            timed_out = state.failure is not None and state.failure.kind is FailureKind.TIMEOUT
            pr_url = None
            if timed_out and wrote_something:
                LOGGER.warning("Pipeline timed out after writing files; publishing partial changes")
                try:
                    pr_url = self._publish(submission, upstream, fork, repo, result).pr_url
                except Exception as error:  # pragma: no cover - best-effort
                    LOGGER.warning("Best-effort publication failed: %s", error)
            outcome.raise_for_failure(pr_url=pr_url)

        if not wrote_something and not repo.has_changes():
            LOGGER.info("No changes detected; skipping pull request")
            return result
        return self._publish(submission, upstream, fork, repo, result)

    def _publish(
        self,
        submission: JobSubmission,
        upstream: RepositoryRef,
        fork: ForkInfo,
        repo: GitRepository,
        result: JobResult,
    ) -> JobResult:
        branch = branch_name(submission.instruction)
        LOGGER.info("Creating branch %s from %s", branch, repo.current_branch() or "detached HEAD")
        repo.create_branch(branch)
        title = _pull_request_title(submission.instruction)
        repo.commit_all(title)

        token = self._github.token
        remote = authenticated_url(fork.clone_url, token) if token else fork.clone_url
        LOGGER.info("Pushing to fork %s", fork.full_name)
        try:
            repo.push(remote, branch, force=True)
        except GitError as error:
            raise RemoteIntegrationError(
                f"Push to {fork.full_name} failed: {error}", payload={"branch": branch, "detail": str(error)}
            ) from error

        base = self._github.default_branch(upstream)
        pull = self._github.create_pull_request(
            upstream,
            head=f"{fork.owner}:{branch}",
            base=base,
            title=title,
            body=render_pull_request_body(submission.instruction, result.applied_paths, result.removed_paths),
        )
        LOGGER.info("Pull request created: %s", pull.url)
        result.branch = branch
        result.pr_url = pull.url
        return result

    def _default_sandbox(self) -> LocalSandbox:
        return LocalSandbox.create(
            self._sandbox_settings.base_dir,
            default_timeout=self._sandbox_settings.command_timeout,
        )


def _pull_request_title(instruction: str, limit: int = 72) -> str:
    summary = " ".join(instruction.split())
    title = f"redit: {summary}"
    if len(title) > limit:
        title = title[: limit - 3].rstrip() + "..."
    return title


__all__ = ["CHECKOUT_DIR", "EditJobRunner", "JobResult"]
