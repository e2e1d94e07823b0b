from __future__ import annotations

import json
from pathlib import Path

import pytest
import yaml
from typer.testing import CliRunner

from conftest import CREATE_FILE, CREATE_PLAN, KEYWORD, MODE, ScriptedPlanner
from redit import cli
from redit.jobs.runner import JobResult

runner = CliRunner()


@pytest.fixture()
def workspace(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    monkeypatch.chdir(tmp_path)
    return tmp_path


def _fast_queue_config(path: Path) -> Path:
    config = path / "config.yaml"
    config.write_text(
        yaml.safe_dump({"queue": {"backoff_seconds": 0, "max_attempts": 2, "keepalive_seconds": 0.05}}),
        encoding="utf-8",
    )
    return config


def test_init_writes_default_config(workspace: Path) -> None:
    result = runner.invoke(cli.app, ["init"])

    assert result.exit_code == 0, result.output
    data = yaml.safe_load((workspace / "config.yaml").read_text(encoding="utf-8"))
    assert data["pipeline"]["max_search_attempts"] == 3
    assert data["queue"]["max_attempts"] == 3

    again = runner.invoke(cli.app, ["init"])
    assert again.exit_code == 1
    assert "already exists" in again.output

    forced = runner.invoke(cli.app, ["init", "--force", "--config", "custom.yaml"])
    assert forced.exit_code == 0
    assert (workspace / "custom.yaml").exists()


def test_edit_runs_pipeline_locally(workspace: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    checkout = workspace / "checkout"
    checkout.mkdir()
    planner = ScriptedPlanner(
        {
            MODE: "literal",
            KEYWORD: "divide",
            CREATE_PLAN: json.dumps([{"file": "src/divide.ts", "action": "create", "goal": "divide"}]),
            CREATE_FILE: "export const divide = (a: number, b: number) => a / b;\n",
        }
    )
    monkeypatch.setattr(cli, "_build_client", lambda config: planner)

    result = runner.invoke(cli.app, ["edit", str(checkout), "add a divide function"])

    assert result.exit_code == 0, result.output
    assert "Outcome: succeeded" in result.output
    assert "- src/divide.ts" in result.output
    assert (checkout / "src" / "divide.ts").exists()
    assert list((workspace / "data" / "logs" / "runs").glob("run__*.json"))


def test_edit_reports_failure(workspace: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    checkout = workspace / "checkout"
    checkout.mkdir()
    planner = ScriptedPlanner({MODE: "literal", KEYWORD: "divide", CREATE_PLAN: "[]"})
    monkeypatch.setattr(cli, "_build_client", lambda config: planner)

    result = runner.invoke(cli.app, ["edit", str(checkout), "add a divide function"])

    assert result.exit_code == 1
    assert "search_exhausted" in result.output
    assert "No changes were made." in result.output


def test_edit_rejects_bad_arguments(workspace: Path) -> None:
    missing = runner.invoke(cli.app, ["edit", str(workspace / "nope"), "add a divide function"])
    assert missing.exit_code == 2

    short = runner.invoke(cli.app, ["edit", str(workspace), "fix"])
    assert short.exit_code == 2
    assert "at least 5 characters" in short.output


def test_edit_rejects_invalid_config(workspace: Path) -> None:
    (workspace / "config.yaml").write_text("- just\n- a list\n", encoding="utf-8")
    result = runner.invoke(cli.app, ["edit", str(workspace), "add a divide function"])
    assert result.exit_code == 2
    assert "Invalid configuration" in result.output


class _FakeRunner:
    outcomes: list = []

    def __init__(self, **kwargs) -> None:
        self.kwargs = kwargs

    def __call__(self, submission):
        outcome = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


@pytest.fixture()
def fake_remote(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setattr(cli, "_build_client", lambda config: ScriptedPlanner())
    monkeypatch.setattr(cli, "_build_github", lambda config: object())
    monkeypatch.setattr(cli, "EditJobRunner", _FakeRunner)
    return _FakeRunner


def test_run_prints_pull_request(workspace: Path, fake_remote) -> None:
    fake_remote.outcomes = [
        JobResult(repository="octo/widgets", fork="bot/widgets", pr_url="https://github.com/octo/widgets/pull/3")
    ]
    config = _fast_queue_config(workspace)

    result = runner.invoke(
        cli.app,
        ["run", "https://github.com/octo/widgets", "add a divide function", "--config", str(config)],
    )

    assert result.exit_code == 0, result.output
    assert "Queued job" in result.output
    assert "Pull request: https://github.com/octo/widgets/pull/3" in result.output


def test_run_without_changes(workspace: Path, fake_remote) -> None:
    fake_remote.outcomes = [JobResult(repository="octo/widgets", fork="bot/widgets")]
    config = _fast_queue_config(workspace)

    result = runner.invoke(
        cli.app,
        ["run", "https://github.com/octo/widgets", "add a divide function", "--config", str(config)],
    )

    assert result.exit_code == 0, result.output
    assert "No changes detected" in result.output


def test_run_reports_failed_job(workspace: Path, fake_remote) -> None:
    fake_remote.outcomes = [RuntimeError("clone failed")]
    config = _fast_queue_config(workspace)

    result = runner.invoke(
        cli.app,
        ["run", "https://github.com/octo/widgets", "add a divide function", "--config", str(config)],
    )

    assert result.exit_code == 1
    assert "Job failed: clone failed" in result.output


def test_run_rejects_invalid_submission(workspace: Path, fake_remote) -> None:
    fake_remote.outcomes = [JobResult(repository="octo/widgets", fork="bot/widgets")]

    result = runner.invoke(cli.app, ["run", "not-a-url", "add a divide function"])

    assert result.exit_code == 2
    assert "repository_url" in result.output
