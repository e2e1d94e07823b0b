from __future__ import annotations

from pathlib import Path

from conftest import KEYWORD, PATTERN, ScriptedPlanner, write_files
from redit.models.llm_client import LLMTransportError
from redit.phases import discover, load
from redit.state import PipelineState, SearchMode
from redit.tools.sandbox import ExecutorError


def _seed(repo_root: Path) -> None:
    write_files(
        repo_root,
        {
            "src/math.ts": "export function add(a: number, b: number) { return a + b; }\n",
            "src/strings.ts": "export const upper = (s: string) => s.toUpperCase();\n",
            "node_modules/lib/add.ts": "export function add() {}\n",
            "README.md": "This project can add numbers.\n",
        },
    )


def test_extract_keywords_drops_stop_words_and_duplicates() -> None:
    keywords = discover.extract_keywords("Add a divide function to the math utils, divide safely!")
    assert keywords == ["divide", "math", "utils", "safely"]


def test_literal_search_finds_content_matches(repo_root: Path, make_context) -> None:
    _seed(repo_root)
    planner = ScriptedPlanner({KEYWORD: "add\n"})
    state = PipelineState(instruction="rename add to sum", search_mode=SearchMode.LITERAL)

    discover.run(state, make_context(planner))

    assert state.candidate_files == ["src/math.ts"]
    assert state.files_found is True
    assert state.search_attempts == 1


def test_literal_search_falls_back_to_heuristic_keyword(repo_root: Path, make_context) -> None:
    _seed(repo_root)
    planner = ScriptedPlanner({KEYWORD: LLMTransportError("offline")})
    state = PipelineState(instruction="make upper handle null", search_mode=SearchMode.LITERAL)

    discover.run(state, make_context(planner))

    assert state.candidate_files == ["src/strings.ts"]


def test_pattern_search_matches_file_names(repo_root: Path, make_context) -> None:
    _seed(repo_root)
    planner = ScriptedPlanner({PATTERN: "`strings*`"})
    state = PipelineState(instruction="tweak the strings module", search_mode=SearchMode.PATTERN)

    discover.run(state, make_context(planner))

    assert state.candidate_files == ["src/strings.ts"]


def test_wildcard_search_is_sorted_and_bounded(repo_root: Path, make_context) -> None:
    write_files(repo_root, {f"src/file{index:02d}.ts": "export {};\n" for index in range(25)})
    planner = ScriptedPlanner()
    state = PipelineState(instruction="add logging everywhere", search_mode=SearchMode.WILDCARD)

    discover.run(state, make_context(planner, max_candidates=10, wildcard_limit=20))

    assert state.candidate_files == [f"src/file{index:02d}.ts" for index in range(10)]
    assert planner.prompts == []


def test_no_matches_leaves_files_found_unset(repo_root: Path, make_context) -> None:
    _seed(repo_root)
    planner = ScriptedPlanner({KEYWORD: "divide"})
    state = PipelineState(instruction="add a divide function", search_mode=SearchMode.LITERAL)

    discover.run(state, make_context(planner))
    discover.run(state, make_context(planner))

    assert state.candidate_files == []
    assert state.files_found is False
    assert state.search_attempts == 2


def test_files_found_latches_once_set(repo_root: Path, make_context) -> None:
    _seed(repo_root)
    planner = ScriptedPlanner({KEYWORD: "divide"})
    state = PipelineState(instruction="add a divide function", search_mode=SearchMode.LITERAL, files_found=True)

    discover.run(state, make_context(planner))

    assert state.candidate_files == []
    assert state.files_found is True


def test_executor_failure_becomes_discovery_error(sandbox, make_context, monkeypatch) -> None:
    def broken(*args, **kwargs):
        raise ExecutorError("sandbox unavailable")

    monkeypatch.setattr(sandbox, "run_command", broken)
    state = PipelineState(instruction="add a divide function", search_mode=SearchMode.WILDCARD)

    discover.run(state, make_context(ScriptedPlanner()))

    assert state.candidate_files == []
    assert state.discovery_error == "sandbox unavailable"
    assert state.search_attempts == 1


def test_load_reads_candidates_and_skips_unreadable(repo_root: Path, make_context) -> None:
    _seed(repo_root)
    (repo_root / "big.ts").write_text("x" * 500, encoding="utf-8")
    state = PipelineState(
        instruction="rename add",
        candidate_files=["src/math.ts", "src/missing.ts", "big.ts"],
    )

    load.run(state, make_context(ScriptedPlanner(), max_file_bytes=100))

    assert list(state.loaded_contents) == ["src/math.ts"]
    assert state.loaded_contents["src/math.ts"].startswith("export function add")


def test_load_with_no_candidates_clears_contents(make_context) -> None:
    state = PipelineState(instruction="rename add", loaded_contents={"stale.ts": "old"})
    load.run(state, make_context(ScriptedPlanner()))
    assert state.loaded_contents == {}
