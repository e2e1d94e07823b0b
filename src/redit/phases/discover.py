"""Discover phase: find candidate files in the checkout for the current search mode."""

from __future__ import annotations

import logging
import re
from typing import Sequence

from ..models.llm_client import LLMClientError
from ..prompts import render_keyword_prompt, render_pattern_prompt
from ..state import PipelineState, SearchMode
from ..tools.sandbox import CommandResult, ExecutorError
from . import PhaseName
from .base import PhaseContext, invoke_planner, normalise_repo_path

LOGGER = logging.getLogger(__name__)

_STOP_WORDS = frozenset(
    {
        "the", "a", "an", "and", "or", "but", "in", "on", "at", "to", "for", "of",
        "with", "by", "from", "update", "change", "modify", "fix", "add", "remove",
        "delete", "create", "make", "new", "function", "file", "please",
    }
)

_GLOB_SAFE_RE = re.compile(r"[^\w.*?\[\]-]")


def extract_keywords(instruction: str) -> list[str]:
    """Return unique, stop-word filtered keywords in order of appearance."""
    words = re.sub(r"[^\w\s]", " ", instruction.lower()).split()
    keywords: list[str] = []
    for word in words:
        if len(word) <= 2 or word in _STOP_WORDS or word in keywords:
            continue
        keywords.append(word)
    return keywords


def _first_line(reply: str) -> str:
    for line in reply.strip().splitlines():
        cleaned = line.strip().strip("`\"'")
        if cleaned:
            return cleaned
    return ""


def _resolve_keyword(state: PipelineState, context: PhaseContext) -> str:
    try:
        reply = invoke_planner(context, PhaseName.DISCOVER.value, render_keyword_prompt(state.instruction))
    except LLMClientError as error:
        LOGGER.warning("Keyword extraction failed, using heuristic keyword: %s", error)
        reply = ""
    keyword = _first_line(reply)
    if not keyword:
        fallback = extract_keywords(state.instruction)
        keyword = fallback[0] if fallback else (state.instruction.split() or ["."])[0]
    return keyword


def _resolve_pattern(state: PipelineState, context: PhaseContext) -> str:
    try:
        reply = invoke_planner(context, PhaseName.DISCOVER.value, render_pattern_prompt(state.instruction))
    except LLMClientError as error:
        LOGGER.warning("Pattern extraction failed, using heuristic pattern: %s", error)
        reply = ""
    pattern = _GLOB_SAFE_RE.sub("", _first_line(reply))
    if not pattern or pattern.strip("*?") == "":
        keywords = extract_keywords(state.instruction)
        pattern = f"*{keywords[0]}*" if keywords else "*"
    return pattern


def _include_flags(extensions: Sequence[str]) -> list[str]:
    return [f"--include=*{extension}" for extension in extensions]


def _name_filters(extensions: Sequence[str]) -> list[str]:
    filters: list[str] = ["("]
    for index, extension in enumerate(extensions):
        if index:
            filters.append("-o")
        filters.extend(["-name", f"*{extension}"])
    filters.append(")")
    return filters


def _checked(result: CommandResult, *, allowed: Sequence[int] = (0,)) -> CommandResult:
    if result.exit_code not in allowed:
        detail = result.stderr.strip() or result.stdout.strip() or f"exit code {result.exit_code}"
        raise ExecutorError(f"{result.command[0]} failed: {detail}")
    return result


def search(state: PipelineState, context: PhaseContext) -> list[str]:
    """Execute the selected strategy and return normalised, unfiltered matches."""
    settings = context.settings
    mode = state.search_mode or SearchMode.LITERAL
    timeout = context.command_timeout()

    if mode is SearchMode.LITERAL:
        keyword = _resolve_keyword(state, context)
        LOGGER.info("Searching file contents for %r", keyword)
        command = [
            "grep", "-rlF", "--exclude-dir=.git", "--exclude-dir=node_modules",
            *_include_flags(settings.source_extensions), "--", keyword, ".",
        ]
        # grep exits 1 when nothing matched
        result = _checked(
            context.sandbox.run_command(command, timeout=timeout, cwd=context.repo_path),
            allowed=(0, 1),
        )
        matches = result.lines()
    elif mode is SearchMode.PATTERN:
        pattern = _resolve_pattern(state, context)
        LOGGER.info("Searching file names for %r", pattern)
        command = [
            "find", ".", "-type", "f", "-name", pattern,
            "-not", "-path", "./.git/*", "-not", "-path", "*/node_modules/*",
        ]
        result = _checked(context.sandbox.run_command(command, timeout=timeout, cwd=context.repo_path))
        matches = result.lines()
    else:
        command = [
            "find", ".", "-type", "f", *_name_filters(settings.source_extensions),
            "-not", "-path", "./.git/*", "-not", "-path", "*/node_modules/*",
        ]
        result = _checked(context.sandbox.run_command(command, timeout=timeout, cwd=context.repo_path))
        matches = sorted(result.lines())[: settings.wildcard_limit]

    candidates: list[str] = []
    for match in matches:
        path = normalise_repo_path(match)
        if not path or path.startswith(".git/") or path in candidates:
            continue
        candidates.append(path)
    return candidates


def run(state: PipelineState, context: PhaseContext) -> PipelineState:
    """Replace ``candidate_files`` with a bounded result and count the attempt."""
    state.search_attempts += 1
    state.discovery_error = None
    LOGGER.info("Searching files (attempt %d, mode %s)", state.search_attempts, state.search_mode)

    try:
        candidates = search(state, context)
    except ExecutorError as error:
        LOGGER.warning("File discovery failed: %s", error)
        state.discovery_error = str(error)
        candidates = []

    state.candidate_files = candidates[: context.settings.max_candidates]
    if state.candidate_files:
        state.files_found = True
    LOGGER.info("Found %d candidate file(s)", len(state.candidate_files))
    return state
