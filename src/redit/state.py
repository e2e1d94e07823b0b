"""Typed records threaded through a single edit pipeline run."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Literal

PlanAction = Literal["create", "edit", "delete"]


class SearchMode(str, Enum):
    """File discovery strategies available to the pipeline."""

    LITERAL = "literal"
    PATTERN = "pattern"
    WILDCARD = "wildcard"


class FailureKind(str, Enum):
    """Reasons a pipeline run can end in the failed terminal state."""

    PLANNER_PARSE = "planner_parse"
    PLANNER_UNAVAILABLE = "planner_unavailable"
    EXECUTOR = "executor"
    EMPTY_PLAN = "empty_plan"
    SEARCH_EXHAUSTED = "search_exhausted"
    VALIDATION_EXHAUSTED = "validation_exhausted"
    TIMEOUT = "timeout"


@dataclass(slots=True, frozen=True)
class FailureDescriptor:
    """Terminal error recorded on the pipeline state."""

    kind: FailureKind
    message: str

    def render(self) -> str:
        return f"{self.kind.value}: {self.message}"


@dataclass(slots=True)
class PlanEntry:
    """One instruction to create, edit, or delete a file."""

    action: PlanAction
    path: str
    goal: str
    reason: str = ""
    relevance: float = 0.0


@dataclass(slots=True)
class AppliedChange:
    """A file write performed by the change applier."""

    path: str
    new_content: str


@dataclass(slots=True)
class PipelineState:
    """Mutable record owned by the pipeline driver for the lifetime of a run."""

    instruction: str
    search_mode: SearchMode | None = None
    search_attempts: int = 0
    candidate_files: list[str] = field(default_factory=list)
    files_found: bool = False
    discovery_error: str | None = None
    loaded_contents: dict[str, str] = field(default_factory=dict)
    change_plan: list[PlanEntry] = field(default_factory=list)
    applied_changes: list[AppliedChange] = field(default_factory=list)
    removed_paths: list[str] = field(default_factory=list)
    validation_attempts: int = 0
    validation_passed: bool | None = None
    failure: FailureDescriptor | None = None

    @property
    def failed(self) -> bool:
        return self.failure is not None

    def fail(self, kind: FailureKind, message: str) -> None:
        """Record the first terminal failure; later failures are ignored."""
        if self.failure is None:
            self.failure = FailureDescriptor(kind=kind, message=message)

    def record_applied(self, path: str, new_content: str) -> None:
        """Append a write, replacing any earlier write to the same path."""
        self.applied_changes = [change for change in self.applied_changes if change.path != path]
        self.applied_changes.append(AppliedChange(path=path, new_content=new_content))

    def applied_paths(self) -> list[str]:
        return [change.path for change in self.applied_changes]


__all__ = [
    "AppliedChange",
    "FailureDescriptor",
    "FailureKind",
    "PipelineState",
    "PlanAction",
    "PlanEntry",
    "SearchMode",
]
