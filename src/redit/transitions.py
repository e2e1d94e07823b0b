"""Transition policy: pure decisions about where the pipeline goes next.

The policy only reads :class:`PipelineState`; it never mutates it. Each
decision is a :class:`Transition` whose ``kind`` tags the next step and whose
``failure`` (for ``FAIL``) says which terminal substate was reached.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from .config import PipelineSettings
from .state import FailureDescriptor, FailureKind, PipelineState


class TransitionKind(str, Enum):
    """Tag of the next pipeline step."""

    APPLY = "apply"
    DISCOVER = "discover"
    SUCCEED = "succeed"
    FAIL = "fail"


@dataclass(slots=True, frozen=True)
class Transition:
    """Decision returned by the policy functions."""

    kind: TransitionKind
    reason: str
    failure: FailureDescriptor | None = None

    @property
    def terminal(self) -> bool:
        return self.kind in (TransitionKind.SUCCEED, TransitionKind.FAIL)

    @classmethod
    def apply(cls, reason: str) -> "Transition":
        return cls(TransitionKind.APPLY, reason)

    @classmethod
    def discover(cls, reason: str) -> "Transition":
        return cls(TransitionKind.DISCOVER, reason)

    @classmethod
    def succeed(cls, reason: str) -> "Transition":
        return cls(TransitionKind.SUCCEED, reason)

    @classmethod
    def fail(cls, failure: FailureDescriptor) -> "Transition":
        return cls(TransitionKind.FAIL, failure.message, failure)


def after_plan(state: PipelineState, settings: PipelineSettings | None = None) -> Transition:
    """Decide between applying the plan, searching again, or giving up."""
    limits = settings or PipelineSettings()
    if state.failure is not None:
        return Transition.fail(state.failure)

    # Found files are authoritative over the no-candidates branch.
    if state.files_found:
        return Transition.apply("Files found, applying changes")

    if state.change_plan:
        return Transition.apply("No existing files, applying plan for new files")

    if state.search_attempts < limits.max_search_attempts:
        return Transition.discover(
            f"No files found, retrying search ({state.search_attempts + 1}/{limits.max_search_attempts})"
        )

    return Transition.fail(
        FailureDescriptor(
            kind=FailureKind.SEARCH_EXHAUSTED,
            message=(
                f"Search retries exhausted after {state.search_attempts} attempt(s) "
                "without candidate files or a change plan"
            ),
        )
    )


def after_validate(state: PipelineState, settings: PipelineSettings | None = None) -> Transition:
    """Decide between success, another search/plan cycle, or giving up."""
    limits = settings or PipelineSettings()
    if state.failure is not None:
        return Transition.fail(state.failure)

    if not state.applied_changes:
        return Transition.succeed("No files to validate, treating as success")

    if state.validation_passed:
        return Transition.succeed("Validation passed")

    exhausted = FailureDescriptor(
        kind=FailureKind.VALIDATION_EXHAUSTED,
        message=f"Validation failed after {state.validation_attempts} attempt(s)",
    )
    if state.validation_attempts >= limits.max_validation_attempts:
        return Transition.fail(exhausted)
    if state.search_attempts >= limits.max_search_attempts:
        return Transition.fail(
            FailureDescriptor(
                kind=FailureKind.VALIDATION_EXHAUSTED,
                message=f"{exhausted.message}; no search attempts left to gather more context",
            )
        )

    return Transition.discover(
        f"Validation failed, retrying ({state.validation_attempts + 1}/{limits.max_validation_attempts})"
    )


__all__ = ["Transition", "TransitionKind", "after_plan", "after_validate"]
