"""Plan phase: turn the instruction and loaded files into a structured change plan.

Two modes exist. When discovery loaded nothing, the planner proposes new files
that fit the repository's detected stack; a reply that cannot be parsed falls
back to a single synthetic file. When files were loaded, the planner proposes
edits/creates/deletes ranked by relevance; an unparseable reply is fatal for
the run because there is nothing sensible to fall back to.
"""

from __future__ import annotations

import logging
import posixpath
from collections import Counter
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator

from ..models.llm_client import LLMClientError, PlannerParseError, parse_json_payload
from ..prompts import render_change_plan_prompt, render_create_plan_prompt, render_repo_context
from ..state import FailureKind, PipelineState, PlanEntry
from ..tools.sandbox import ExecutorError
from . import PhaseName
from .base import PhaseContext, invoke_planner, is_safe_repo_path, normalise_repo_path

LOGGER = logging.getLogger(__name__)

_MANIFEST_NAMES = (
    "package.json",
    "pyproject.toml",
    "setup.py",
    "requirements.txt",
    "Cargo.toml",
    "go.mod",
    "pom.xml",
    "build.gradle",
    "Gemfile",
    "composer.json",
)
_COMPONENT_EXTENSIONS = (".tsx", ".jsx", ".vue")
_ACTION_ALIASES = {
    "modify": "edit",
    "update": "edit",
    "change": "edit",
    "add": "create",
    "new": "create",
    "remove": "delete",
}
_PLAN_CONTAINER_KEYS = ("plan", "changes", "changePlan", "change_plan", "files", "entries", "items")


class PlanProposal(BaseModel):
    """One planner-proposed plan entry, validated strictly."""

    model_config = ConfigDict(extra="ignore")

    file: str = Field(min_length=1, validation_alias=AliasChoices("file", "path", "filePath", "file_path"))
    action: Literal["create", "edit", "delete"] = "edit"
    goal: str = ""
    reason: str = ""
    relevance: float = 0.0

    @field_validator("action", mode="before")
    @classmethod
    def _normalise_action(cls, value: Any) -> Any:
        if isinstance(value, str):
            lowered = value.strip().lower()
            return _ACTION_ALIASES.get(lowered, lowered)
        return value

    @field_validator("relevance", mode="before")
    @classmethod
    def _coerce_relevance(cls, value: Any) -> float:
        if isinstance(value, bool) or value is None:
            return 0.0
        if isinstance(value, str):
            value = value.strip().rstrip("%")
        try:
            return float(value)
        except (TypeError, ValueError):
            return 0.0

    @field_validator("goal", "reason", mode="before")
    @classmethod
    def _coerce_text(cls, value: Any) -> str:
        if value is None:
            return ""
        return value if isinstance(value, str) else str(value)

    def to_entry(self) -> PlanEntry:
        return PlanEntry(
            action=self.action,
            path=normalise_repo_path(self.file),
            goal=self.goal,
            reason=self.reason,
            relevance=self.relevance,
        )


@dataclass(slots=True)
class RepoContext:
    """Cheap structural signals about the checkout's technology stack."""

    existing_files: list[str] = field(default_factory=list)
    file_count: int = 0
    has_components: bool = False
    manifest: str | None = None
    has_src: bool = False
    has_tests: bool = False
    dominant_extension: str | None = None

    @property
    def source_dir(self) -> str:
        return "src" if self.has_src else ""

    def as_mapping(self) -> dict[str, object]:
        return {
            "existing_files": self.existing_files,
            "file_count": self.file_count,
            "has_components": self.has_components,
            "manifest": self.manifest,
            "has_src": self.has_src,
            "has_tests": self.has_tests,
            "dominant_extension": self.dominant_extension,
        }


def detect_repo_context(context: PhaseContext) -> RepoContext:
    """Sample the checkout layout; an executor failure yields empty signals."""
    command = ["find", ".", "-type", "f", "-not", "-path", "./.git/*", "-not", "-path", "*/node_modules/*"]
    try:
        result = context.sandbox.run_command(command, timeout=context.command_timeout(), cwd=context.repo_path)
    except ExecutorError as error:
        LOGGER.warning("Repository structure listing failed: %s", error)
        return RepoContext()
    if not result.ok:
        LOGGER.warning("Repository structure listing exited with %d", result.exit_code)
        return RepoContext()

    files = sorted(normalise_repo_path(line) for line in result.lines())
    sample = files[: context.settings.structure_sample]
    basenames = {posixpath.basename(path) for path in files}
    manifest = next((name for name in _MANIFEST_NAMES if name in basenames), None)
    extensions = Counter(
        posixpath.splitext(path)[1]
        for path in files
        if posixpath.splitext(path)[1] in context.settings.source_extensions
    )
    dominant = extensions.most_common(1)[0][0] if extensions else None
    repo = RepoContext(
        existing_files=sample,
        file_count=len(files),
        has_components=any(path.endswith(_COMPONENT_EXTENSIONS) for path in files),
        manifest=manifest,
        has_src=any(path.startswith("src/") for path in files),
        has_tests=any("test" in path.lower() or "spec" in path.lower() for path in files),
        dominant_extension=dominant,
    )
    LOGGER.info(
        "Repo context: components=%s manifest=%s src=%s tests=%s",
        repo.has_components,
        repo.manifest,
        repo.has_src,
        repo.has_tests,
    )
    return repo


def parse_plan_proposals(raw: str) -> list[PlanProposal]:
    """Parse planner text into proposals, raising :class:`PlannerParseError`."""
    data = parse_json_payload(raw)
    if isinstance(data, Mapping):
        container = next(
            (data[key] for key in _PLAN_CONTAINER_KEYS if isinstance(data.get(key), list)),
            None,
        )
        data = container if container is not None else [data]
    if not isinstance(data, list):
        raise PlannerParseError(f"Expected a JSON array of plan entries, got {type(data).__name__}.")

    proposals: list[PlanProposal] = []
    for item in data:
        try:
            proposals.append(PlanProposal.model_validate(item))
        except ValidationError as error:
            LOGGER.debug("Dropping malformed plan entry %r: %s", item, error)
    if data and not proposals:
        raise PlannerParseError("No plan entry in the planner reply was well-formed.")
    return proposals


def rank_entries(proposals: list[PlanProposal], limit: int) -> list[PlanEntry]:
    """Sort by descending relevance (stable), dedupe by path, then truncate.

    Entries whose path is absolute or climbs out of the checkout are dropped.
    """
    ordered = sorted(proposals, key=lambda proposal: proposal.relevance, reverse=True)
    entries: list[PlanEntry] = []
    seen: set[str] = set()
    for proposal in ordered:
        if not is_safe_repo_path(proposal.file):
            LOGGER.warning("Dropping plan entry outside the checkout: %s", proposal.file)
            continue
        entry = proposal.to_entry()
        if not entry.path or entry.path in seen:
            continue
        seen.add(entry.path)
        entries.append(entry)
    return entries[:limit]


def fallback_entry(repo: RepoContext, extension: str) -> PlanEntry:
    """Synthetic create entry used when the planner reply is unusable."""
    name = f"new_feature{repo.dominant_extension or extension}"
    path = posixpath.join(repo.source_dir, name) if repo.source_dir else name
    return PlanEntry(action="create", path=path, goal="Create new file based on the request", relevance=0.0)


def _plan_new_files(state: PipelineState, context: PhaseContext, repo: RepoContext) -> list[PlanEntry]:
    settings = context.settings
    prompt = render_create_plan_prompt(
        state.instruction,
        render_repo_context(repo.as_mapping()),
        settings.max_new_files,
    )
    try:
        reply = invoke_planner(context, PhaseName.PLAN.value, prompt)
        proposals = parse_plan_proposals(reply)
    except LLMClientError as error:
        LOGGER.warning("New-file plan unavailable, using fallback file: %s", error)
        return [fallback_entry(repo, settings.fallback_extension)]

    entries = rank_entries(proposals, settings.max_new_files)
    for entry in entries:
        entry.action = "create"
    return entries


def _plan_changes(state: PipelineState, context: PhaseContext, repo: RepoContext) -> list[PlanEntry] | None:
    settings = context.settings
    prompt = render_change_plan_prompt(
        state.instruction,
        render_repo_context(repo.as_mapping()),
        state.loaded_contents,
        context_chars=settings.context_chars,
        max_entries=settings.max_plan_entries,
    )
    try:
        reply = invoke_planner(context, PhaseName.PLAN.value, prompt)
    except LLMClientError as error:
        state.fail(FailureKind.PLANNER_UNAVAILABLE, f"Failed to analyze files: {error}")
        return None
    try:
        proposals = parse_plan_proposals(reply)
    except PlannerParseError as error:
        state.fail(FailureKind.PLANNER_PARSE, f"Failed to analyze files: {error}")
        return None
    return rank_entries(proposals, settings.max_plan_entries)


def run(state: PipelineState, context: PhaseContext) -> PipelineState:
    """Replace ``change_plan``; never touches files."""
    if state.failed:
        return state

    repo = detect_repo_context(context)
    if not state.loaded_contents:
        LOGGER.info("No file contents loaded, planning new files")
        state.change_plan = _plan_new_files(state, context, repo)
    else:
        LOGGER.info("Planning changes across %d loaded file(s)", len(state.loaded_contents))
        entries = _plan_changes(state, context, repo)
        state.change_plan = entries or []

    LOGGER.info("Change plan has %d entr%s", len(state.change_plan), "y" if len(state.change_plan) == 1 else "ies")
    return state
