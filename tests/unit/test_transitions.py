from __future__ import annotations

from redit.config import PipelineSettings
from redit.state import FailureKind, PipelineState, PlanEntry
from redit.transitions import TransitionKind, after_plan, after_validate


def _entry(path: str = "src/a.ts") -> PlanEntry:
    return PlanEntry(action="create", path=path, goal="goal")


def test_after_plan_fails_on_recorded_failure() -> None:
    state = PipelineState(instruction="x", files_found=True, change_plan=[_entry()])
    state.fail(FailureKind.PLANNER_PARSE, "bad reply")

    transition = after_plan(state)

    assert transition.kind is TransitionKind.FAIL
    assert transition.failure is not None
    assert transition.failure.kind is FailureKind.PLANNER_PARSE


def test_after_plan_prefers_found_files() -> None:
    state = PipelineState(instruction="x", files_found=True, search_attempts=3)
    assert after_plan(state).kind is TransitionKind.APPLY


def test_after_plan_applies_new_file_plan() -> None:
    state = PipelineState(instruction="x", search_attempts=1, change_plan=[_entry()])
    assert after_plan(state).kind is TransitionKind.APPLY


def test_after_plan_retries_search_while_budget_remains() -> None:
    for attempts in (1, 2):
        state = PipelineState(instruction="x", search_attempts=attempts)
        assert after_plan(state).kind is TransitionKind.DISCOVER


def test_after_plan_exhausts_search_budget() -> None:
    state = PipelineState(instruction="x", search_attempts=3)
    transition = after_plan(state)
    assert transition.kind is TransitionKind.FAIL
    assert transition.terminal
    assert transition.failure.kind is FailureKind.SEARCH_EXHAUSTED


def test_after_plan_respects_configured_budget() -> None:
    state = PipelineState(instruction="x", search_attempts=3)
    settings = PipelineSettings(max_search_attempts=5)
    assert after_plan(state, settings).kind is TransitionKind.DISCOVER


def test_after_validate_succeeds_without_applied_changes() -> None:
    state = PipelineState(instruction="x", validation_attempts=1, validation_passed=False)
    assert after_validate(state).kind is TransitionKind.SUCCEED


def test_after_validate_succeeds_when_passed() -> None:
    state = PipelineState(instruction="x", validation_attempts=1, validation_passed=True)
    state.record_applied("a.ts", "body")
    assert after_validate(state).kind is TransitionKind.SUCCEED


def test_after_validate_retries_discovery_on_failure() -> None:
    state = PipelineState(instruction="x", search_attempts=1, validation_attempts=1, validation_passed=False)
    state.record_applied("a.ts", "body")
    assert after_validate(state).kind is TransitionKind.DISCOVER


def test_after_validate_exhausts_validation_budget() -> None:
    state = PipelineState(instruction="x", search_attempts=1, validation_attempts=3, validation_passed=False)
    state.record_applied("a.ts", "body")
    transition = after_validate(state)
    assert transition.kind is TransitionKind.FAIL
    assert transition.failure.kind is FailureKind.VALIDATION_EXHAUSTED


def test_after_validate_fails_when_search_budget_spent() -> None:
    state = PipelineState(instruction="x", search_attempts=3, validation_attempts=1, validation_passed=False)
    state.record_applied("a.ts", "body")
    transition = after_validate(state)
    assert transition.kind is TransitionKind.FAIL
    assert transition.failure.kind is FailureKind.VALIDATION_EXHAUSTED
    assert "no search attempts left" in transition.reason


def test_after_validate_propagates_failure() -> None:
    state = PipelineState(instruction="x", validation_passed=True)
    state.record_applied("a.ts", "body")
    state.fail(FailureKind.TIMEOUT, "deadline")
    assert after_validate(state).failure.kind is FailureKind.TIMEOUT


def test_record_applied_replaces_earlier_write() -> None:
    state = PipelineState(instruction="x")
    state.record_applied("a.ts", "one")
    state.record_applied("b.ts", "two")
    state.record_applied("a.ts", "three")
    assert [(c.path, c.new_content) for c in state.applied_changes] == [("b.ts", "two"), ("a.ts", "three")]


def test_first_failure_wins() -> None:
    state = PipelineState(instruction="x")
    state.fail(FailureKind.EXECUTOR, "first")
    state.fail(FailureKind.TIMEOUT, "second")
    assert state.failure.render() == "executor: first"
