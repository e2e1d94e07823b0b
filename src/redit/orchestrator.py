"""Pipeline driver: run the edit state machine from instruction to terminal state."""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Callable, Mapping

from .config import PipelineSettings
from .models.llm_client import LLMClient
from .phases import PhaseName
from .phases import apply as apply_phase
from .phases import discover as discover_phase
from .phases import load as load_phase
from .phases import plan as plan_phase
from .phases import select_mode as select_mode_phase
from .phases import validate as validate_phase
from .phases.base import PhaseContext, json_safe
from .state import FailureDescriptor, FailureKind, PipelineState
from .tools.sandbox import Sandbox
from .transitions import Transition, TransitionKind, after_plan, after_validate
from .utils.slug import slugify

LOGGER = logging.getLogger(__name__)

PhaseRunner = Callable[[PipelineState, PhaseContext], PipelineState]

_PHASE_RUNNERS: Mapping[PhaseName, PhaseRunner] = {
    PhaseName.SELECT_MODE: select_mode_phase.run,
    PhaseName.DISCOVER: discover_phase.run,
    PhaseName.LOAD: load_phase.run,
    PhaseName.PLAN: plan_phase.run,
    PhaseName.APPLY: apply_phase.run,
    PhaseName.VALIDATE: validate_phase.run,
}

# Straight-line edges; PLAN and VALIDATE branch through the transition policy.
_NEXT_PHASE: Mapping[PhaseName, PhaseName] = {
    PhaseName.SELECT_MODE: PhaseName.DISCOVER,
    PhaseName.DISCOVER: PhaseName.LOAD,
    PhaseName.LOAD: PhaseName.PLAN,
    PhaseName.APPLY: PhaseName.VALIDATE,
}


class PipelineOutcome(str, Enum):
    """Terminal states of a pipeline run."""

    SUCCEEDED = "succeeded"
    FAILED = "failed"


class PipelineFailedError(RuntimeError):
    """Raised by callers that turn a failed run into an exception."""

    def __init__(self, message: str, *, kind: FailureKind | None = None, pr_url: str | None = None) -> None:
        super().__init__(message)
        self.kind = kind
        self.pr_url = pr_url


class RetryBudgetExhausted(PipelineFailedError):
    """Raised when the search or validation loop exceeded its cap."""


@dataclass(slots=True)
class StageRecord:
    """Telemetry for a single stage execution."""

    phase: PhaseName
    started_at: float
    duration: float
    transition: str | None = None


@dataclass(slots=True)
class PipelineResult:
    """Final state and telemetry of a pipeline run."""

    state: PipelineState
    outcome: PipelineOutcome
    reason: str
    stages: list[StageRecord] = field(default_factory=list)
    artifact_path: Path | None = None

    @property
    def ok(self) -> bool:
        return self.outcome is PipelineOutcome.SUCCEEDED

    @property
    def failure(self) -> FailureDescriptor | None:
        return self.state.failure

    def raise_for_failure(self, *, pr_url: str | None = None) -> None:
        """Raise the matching pipeline error when the run failed."""
        if self.ok:
            return
        kind = self.failure.kind if self.failure else None
        if kind in (FailureKind.SEARCH_EXHAUSTED, FailureKind.VALIDATION_EXHAUSTED):
            raise RetryBudgetExhausted(self.reason, kind=kind, pr_url=pr_url)
        raise PipelineFailedError(self.reason, kind=kind, pr_url=pr_url)


class PipelineDriver:
    """Sequence the pipeline phases under the transition policy."""

    def __init__(
        self,
        *,
        client: LLMClient,
        sandbox: Sandbox,
        repo_path: str = ".",
        settings: PipelineSettings | None = None,
        logs_root: Path | None = None,
        runners: Mapping[PhaseName, PhaseRunner] | None = None,
    ) -> None:
        self._client = client
        self._sandbox = sandbox
        self._repo_path = repo_path
        self._settings = settings or PipelineSettings()
        self._logs_root = logs_root
        self._runners = dict(runners or _PHASE_RUNNERS)

    def run(self, instruction: str) -> PipelineResult:
        """Run one pipeline to a terminal state with a fresh state record."""
        deadline = None
        if self._settings.session_timeout is not None:
            deadline = time.monotonic() + self._settings.session_timeout
        context = PhaseContext(
            client=self._client,
            sandbox=self._sandbox,
            repo_path=self._repo_path,
            settings=self._settings,
            logs_root=self._logs_root,
            deadline=deadline,
        )
        state = PipelineState(instruction=instruction)
        result = self.drive(state, context)
        result.artifact_path = self._write_run_artifact(context, result)
        return result

    def drive(self, state: PipelineState, context: PhaseContext) -> PipelineResult:
        """Advance ``state`` phase by phase until a terminal transition."""
        stages: list[StageRecord] = []
        phase = PhaseName.SELECT_MODE
        LOGGER.info("Starting pipeline run %s", context.run_id)

        while True:
            if context.expired():
                state.fail(FailureKind.TIMEOUT, f"Sandbox session deadline exceeded before {phase.value}")
            if state.failure is not None:
                return self._finish(state, stages, Transition.fail(state.failure))

            started = time.monotonic()
            state = self._runners[phase](state, context)
            record = StageRecord(phase=phase, started_at=started, duration=time.monotonic() - started)
            stages.append(record)

            transition = self._transition_after(phase, state)
            if transition is None:
                phase = _NEXT_PHASE[phase]
                continue

            record.transition = transition.kind.value
            LOGGER.info("After %s: %s (%s)", phase.value, transition.kind.value, transition.reason)
            if transition.terminal:
                return self._finish(state, stages, transition)
            phase = PhaseName.APPLY if transition.kind is TransitionKind.APPLY else PhaseName.DISCOVER

    def _transition_after(self, phase: PhaseName, state: PipelineState) -> Transition | None:
        if phase is PhaseName.PLAN:
            return after_plan(state, self._settings)
        if phase is PhaseName.VALIDATE:
            return after_validate(state, self._settings)
        return None

    @staticmethod
    def _finish(state: PipelineState, stages: list[StageRecord], transition: Transition) -> PipelineResult:
        if transition.kind is TransitionKind.SUCCEED:
            LOGGER.info("Pipeline succeeded with %d applied change(s)", len(state.applied_changes))
            return PipelineResult(state=state, outcome=PipelineOutcome.SUCCEEDED, reason=transition.reason, stages=stages)

        failure = transition.failure or state.failure
        if failure is not None and state.failure is None:
            state.failure = failure
        reason = failure.render() if failure else transition.reason
        LOGGER.warning("Pipeline failed: %s", reason)
        return PipelineResult(state=state, outcome=PipelineOutcome.FAILED, reason=reason, stages=stages)

    def _write_run_artifact(self, context: PhaseContext, result: PipelineResult) -> Path | None:
        """Persist a JSON summary of the run for later debugging."""
        if self._logs_root is None:
            return None
        runs_root = self._logs_root / "runs"
        try:
            runs_root.mkdir(parents=True, exist_ok=True)
        except OSError:
            return None

        state = result.state
        payload = {
            "run_id": context.run_id,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "instruction": state.instruction,
            "outcome": result.outcome.value,
            "reason": result.reason,
            "search_mode": state.search_mode,
            "search_attempts": state.search_attempts,
            "validation_attempts": state.validation_attempts,
            "validation_passed": state.validation_passed,
            "candidate_files": state.candidate_files,
            "change_plan": json_safe(state.change_plan),
            "applied_paths": state.applied_paths(),
            "removed_paths": state.removed_paths,
            "failure": json_safe(state.failure),
            "stages": [
                {"phase": record.phase.value, "duration": round(record.duration, 3), "transition": record.transition}
                for record in result.stages
            ],
        }
        timestamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%fZ")
        name = f"run__{slugify(state.instruction, fallback='run', max_length=60)}__{timestamp}.json"
        path = runs_root / name
        try:
            path.write_text(json.dumps(json_safe(payload), indent=2, sort_keys=True), encoding="utf-8")
        except OSError:
            return None
        return path


def run_pipeline(
    instruction: str,
    *,
    client: LLMClient,
    sandbox: Sandbox,
    repo_path: str = ".",
    settings: PipelineSettings | None = None,
    logs_root: Path | None = None,
) -> PipelineResult:
    """Convenience wrapper used by the CLI and job runner."""
    driver = PipelineDriver(
        client=client,
        sandbox=sandbox,
        repo_path=repo_path,
        settings=settings,
        logs_root=logs_root,
    )
    return driver.run(instruction)


__all__ = [
    "PipelineDriver",
    "PipelineFailedError",
    "PipelineOutcome",
    "PipelineResult",
    "RetryBudgetExhausted",
    "StageRecord",
    "run_pipeline",
]
