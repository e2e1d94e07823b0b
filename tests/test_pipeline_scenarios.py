from __future__ import annotations

import json
import sys
from pathlib import Path

import pytest

from conftest import (
    CHANGE_PLAN,
    CREATE_FILE,
    CREATE_PLAN,
    EDIT_FILE,
    KEYWORD,
    MODE,
    ScriptedPlanner,
    write_files,
)
from redit.config import PipelineSettings
from redit.orchestrator import (
    PipelineDriver,
    PipelineFailedError,
    PipelineOutcome,
    RetryBudgetExhausted,
    run_pipeline,
)
from redit.phases import PhaseName
from redit.state import FailureKind, PipelineState
from redit.tools.sandbox import LocalSandbox

ORIGINAL = "export function add(a: number, b: number) {\n  return a + b;\n}\n"
EDITED = "export function sum(a: number, b: number) {\n  return a + b;\n}\n"


def test_new_file_is_created_in_empty_repository(repo_root: Path, sandbox: LocalSandbox, tmp_path: Path) -> None:
    planner = ScriptedPlanner(
        {
            MODE: "literal",
            KEYWORD: "divide",
            CREATE_PLAN: json.dumps(
                [{"file": "src/divide.ts", "action": "create", "relevance": 90, "goal": "divide helper"}]
            ),
            CREATE_FILE: "```ts\nexport const divide = (a: number, b: number) => a / b;\n```",
        }
    )

    result = run_pipeline(
        "add a divide function",
        client=planner,
        sandbox=sandbox,
        logs_root=tmp_path / "logs",
    )

    assert result.ok
    assert result.outcome is PipelineOutcome.SUCCEEDED
    assert (repo_root / "src" / "divide.ts").read_text(encoding="utf-8").startswith("export const divide")
    assert result.state.applied_paths() == ["src/divide.ts"]
    assert result.state.search_attempts == 1
    assert result.state.validation_passed is True
    assert [record.phase for record in result.stages] == [
        PhaseName.SELECT_MODE,
        PhaseName.DISCOVER,
        PhaseName.LOAD,
        PhaseName.PLAN,
        PhaseName.APPLY,
        PhaseName.VALIDATE,
    ]
    result.raise_for_failure()


def test_search_budget_exhausts_without_candidates(sandbox: LocalSandbox, tmp_path: Path) -> None:
    planner = ScriptedPlanner({MODE: "literal", KEYWORD: "divide", CREATE_PLAN: "[]"})

    result = run_pipeline("add a divide function", client=planner, sandbox=sandbox, logs_root=tmp_path / "logs")

    assert result.outcome is PipelineOutcome.FAILED
    assert result.failure is not None
    assert result.failure.kind is FailureKind.SEARCH_EXHAUSTED
    assert result.state.search_attempts == 3
    assert planner.calls(CREATE_PLAN) == 3
    assert planner.calls(MODE) == 1
    with pytest.raises(RetryBudgetExhausted) as excinfo:
        result.raise_for_failure()
    assert excinfo.value.kind is FailureKind.SEARCH_EXHAUSTED


def test_failing_validation_exhausts_validation_budget(repo_root: Path, sandbox: LocalSandbox, tmp_path: Path) -> None:
    write_files(repo_root, {"src/math.ts": ORIGINAL})
    planner = ScriptedPlanner(
        {
            MODE: "literal",
            KEYWORD: "function",
            CHANGE_PLAN: json.dumps(
                [{"file": "src/math.ts", "action": "edit", "relevance": 90, "goal": "rename add to sum"}]
            ),
            EDIT_FILE: EDITED,
        }
    )
    settings = PipelineSettings(validation_command=[sys.executable, "-c", "import sys; sys.exit(1)"])

    result = run_pipeline(
        "rename add to sum",
        client=planner,
        sandbox=sandbox,
        settings=settings,
        logs_root=tmp_path / "logs",
    )

    assert result.failure is not None
    assert result.failure.kind is FailureKind.VALIDATION_EXHAUSTED
    assert result.state.validation_attempts == 3
    assert result.state.applied_paths() == ["src/math.ts"]
    assert (repo_root / "src" / "math.ts").read_text(encoding="utf-8") == EDITED
    # the edit is only written once; later passes see unchanged content
    assert planner.calls(EDIT_FILE) == 3


def test_validation_retry_recovers(repo_root: Path, sandbox: LocalSandbox, tmp_path: Path) -> None:
    write_files(repo_root, {"src/math.ts": ORIGINAL})
    marker = repo_root / "lint-ran"
    script = (
        "import pathlib, sys\n"
        f"marker = pathlib.Path({str(marker)!r})\n"
        "if marker.exists():\n"
        "    sys.exit(0)\n"
        "marker.write_text('1')\n"
        "sys.exit(1)\n"
    )
    planner = ScriptedPlanner(
        {
            MODE: "literal",
            KEYWORD: "function",
            CHANGE_PLAN: json.dumps([{"file": "src/math.ts", "action": "edit", "relevance": 90}]),
            EDIT_FILE: EDITED,
        }
    )
    settings = PipelineSettings(validation_command=[sys.executable, "-c", script])

    result = run_pipeline("rename add to sum", client=planner, sandbox=sandbox, settings=settings)

    assert result.ok
    assert result.state.validation_attempts == 2
    assert result.state.search_attempts == 2


def test_planner_parse_failure_is_terminal(repo_root: Path, sandbox: LocalSandbox) -> None:
    write_files(repo_root, {"src/math.ts": ORIGINAL})
    planner = ScriptedPlanner({MODE: "literal", KEYWORD: "function", CHANGE_PLAN: "edit math.ts please"})

    result = run_pipeline("rename add to sum", client=planner, sandbox=sandbox)

    assert result.failure is not None
    assert result.failure.kind is FailureKind.PLANNER_PARSE
    assert [record.phase for record in result.stages][-1] is PhaseName.PLAN
    with pytest.raises(PipelineFailedError) as excinfo:
        result.raise_for_failure(pr_url="https://example.com/pr/1")
    assert not isinstance(excinfo.value, RetryBudgetExhausted)
    assert excinfo.value.pr_url == "https://example.com/pr/1"


def test_run_artifact_is_written(sandbox: LocalSandbox, tmp_path: Path) -> None:
    planner = ScriptedPlanner({MODE: "wildcard", CREATE_PLAN: "[]"})
    logs_root = tmp_path / "logs"

    result = run_pipeline("add a divide function", client=planner, sandbox=sandbox, logs_root=logs_root)

    assert result.artifact_path is not None
    assert result.artifact_path.parent == logs_root / "runs"
    assert result.artifact_path.name.startswith("run__add-a-divide-function__")
    payload = json.loads(result.artifact_path.read_text(encoding="utf-8"))
    assert payload["outcome"] == "failed"
    assert payload["search_mode"] == "wildcard"
    assert payload["failure"]["kind"] == "search_exhausted"
    assert payload["stages"][0]["phase"] == "select_mode"
    assert list((logs_root / "phases").glob("phase__select_mode__*.json"))


def test_expired_session_fails_with_timeout(sandbox: LocalSandbox) -> None:
    planner = ScriptedPlanner({MODE: "literal"})
    driver = PipelineDriver(client=planner, sandbox=sandbox, settings=PipelineSettings(session_timeout=1e-9))

    result = driver.run("add a divide function")

    assert result.failure is not None
    assert result.failure.kind is FailureKind.TIMEOUT
    assert result.stages == []
    assert planner.prompts == []


def test_driver_uses_injected_runners(sandbox: LocalSandbox) -> None:
    visited: list[str] = []

    def recorder(name: str):
        def _run(state: PipelineState, context) -> PipelineState:
            visited.append(name)
            if name == "plan":
                state.files_found = True
            if name == "apply":
                state.record_applied("a.ts", "body")
            if name == "validate":
                state.validation_attempts += 1
                state.validation_passed = True
            return state

        return _run

    runners = {phase: recorder(phase.value) for phase in PhaseName}
    driver = PipelineDriver(client=ScriptedPlanner(), sandbox=sandbox, runners=runners)

    result = driver.run("rename add to sum")

    assert result.ok
    assert visited == ["select_mode", "discover", "load", "plan", "apply", "validate"]
