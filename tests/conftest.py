from __future__ import annotations

import subprocess
import sys
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Tuple

import pytest

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"

if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from redit.config import PipelineSettings  # noqa: E402
from redit.models.llm_client import LLMClient  # noqa: E402
from redit.phases.base import PhaseContext  # noqa: E402
from redit.tools.sandbox import LocalSandbox  # noqa: E402

# Prompt needles used to route scripted planner replies.
MODE = "Choose ONE file search mode"
KEYWORD = "Extract the main code keyword from"
PATTERN = "Extract a file name glob pattern"
CREATE_PLAN = "No existing files matched the request"
CHANGE_PLAN = "Relevant existing files:"
CREATE_FILE = "Generate a complete, working file for:"
EDIT_FILE = "You are editing this file:"


class ScriptedPlanner(LLMClient):
    """Planner double that answers by matching needles in the prompt.

    A route's reply may be a string, a list of strings (consumed in order,
    the last one repeating), a callable taking the prompt, or an exception
    instance to raise.
    """

    def __init__(self, routes: Dict[str, Any] | None = None, *, default: str = "") -> None:
        super().__init__("scripted", max_attempts=1, retry_delay=0.0)
        self.routes: List[Tuple[str, Any]] = list((routes or {}).items())
        self.default = default
        self.prompts: List[str] = []

    def _raw_invoke(self, payload: Dict[str, Any]) -> str:
        prompt = payload["input"][-1]["content"][0]["text"]
        self.prompts.append(prompt)
        for needle, reply in self.routes:
            if needle not in prompt:
                continue
            if isinstance(reply, list):
                reply = reply.pop(0) if len(reply) > 1 else reply[0]
            if callable(reply):
                reply = reply(prompt)
            if isinstance(reply, Exception):
                raise reply
            return reply
        return self.default

    def calls(self, needle: str) -> int:
        return sum(1 for prompt in self.prompts if needle in prompt)


def write_files(root: Path, files: Dict[str, str]) -> None:
    for relative, content in files.items():
        target = root / relative
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(content, encoding="utf-8")


def init_git_repo(root: Path, files: Dict[str, str] | None = None) -> None:
    """Create a git repository with one commit containing ``files``."""

    root.mkdir(parents=True, exist_ok=True)
    write_files(root, files or {"README.md": "# fixture\n"})

    def run_git(*cmd: str) -> None:
        subprocess.run(["git", *cmd], cwd=root, check=True, capture_output=True, text=True)

    run_git("init", "-b", "main")
    run_git("config", "user.email", "fixture@example.com")
    run_git("config", "user.name", "Fixture")
    run_git("add", ".")
    run_git("commit", "-m", "Initial commit")


@pytest.fixture()
def repo_root(tmp_path: Path) -> Path:
    root = tmp_path / "repo"
    root.mkdir()
    return root


@pytest.fixture()
def sandbox(repo_root: Path) -> Iterable[LocalSandbox]:
    with LocalSandbox(repo_root) as box:
        yield box


@pytest.fixture()
def make_context(sandbox: LocalSandbox, tmp_path: Path) -> Callable[..., PhaseContext]:
    """Build a :class:`PhaseContext` over the fixture sandbox."""

    def _factory(client: LLMClient, **overrides: Any) -> PhaseContext:
        deadline = overrides.pop("deadline", None)
        settings = PipelineSettings(**overrides)
        return PhaseContext(
            client=client,
            sandbox=sandbox,
            settings=settings,
            logs_root=tmp_path / "logs",
            deadline=deadline,
        )

    return _factory
