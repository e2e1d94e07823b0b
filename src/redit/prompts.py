"""Prompt templates shared across pipeline phases."""

from __future__ import annotations

import textwrap
from typing import Mapping, Sequence

JSON_ARRAY_INSTRUCTION = (
    "Return ONLY a JSON array. Do not include markdown fences, explanations, or trailing text."
)

RAW_FILE_INSTRUCTION = (
    "Return ONLY the full file content, no explanation or markdown code blocks."
)

_LANGUAGE_BY_EXTENSION = {
    ".ts": "TypeScript",
    ".tsx": "React TypeScript",
    ".js": "JavaScript",
    ".jsx": "React JavaScript",
    ".vue": "Vue",
    ".py": "Python",
    ".go": "Go",
    ".rs": "Rust",
    ".java": "Java",
    ".rb": "Ruby",
    ".css": "CSS",
    ".md": "Markdown",
}


def language_for(path: str) -> str:
    """Return a human label for the language implied by ``path``."""
    for extension, label in _LANGUAGE_BY_EXTENSION.items():
        if path.endswith(extension):
            return label
    return "plain text"


def render_search_mode_prompt(instruction: str) -> str:
    return textwrap.dedent(
        """
        Analyze the request: "{instruction}"
        Choose ONE file search mode:
        - literal: search file contents for a keyword
        - pattern: match file names against a glob pattern
        - wildcard: list source files without filtering
        Return ONLY the word (no explanation).
        """
    ).strip().format(instruction=instruction)


def render_keyword_prompt(instruction: str) -> str:
    return f'Extract the main code keyword from: "{instruction}". Return ONLY the keyword.'


def render_pattern_prompt(instruction: str) -> str:
    return (
        f'Extract a file name glob pattern (e.g. "*.ts") from: "{instruction}". '
        "Return ONLY the pattern."
    )


def render_repo_context(context: Mapping[str, object]) -> str:
    """Format repository stack signals as a bullet list."""
    existing = context.get("existing_files") or []
    listing = "\n".join(f"  {path}" for path in existing) if existing else "  (empty repository)"
    return "\n".join(
        [
            "Repository context:",
            f"- Total files sampled: {context.get('file_count', 0)}",
            f"- Has component files (.tsx/.jsx/.vue): {context.get('has_components', False)}",
            f"- Has manifest: {context.get('manifest') or False}",
            f"- Has src/ directory: {context.get('has_src', False)}",
            f"- Has tests: {context.get('has_tests', False)}",
            f"- Dominant extension: {context.get('dominant_extension') or 'unknown'}",
            "- Existing files:",
            listing,
        ]
    )


def render_create_plan_prompt(instruction: str, repo_context: str, max_files: int) -> str:
    return textwrap.dedent(
        """
        User request: "{instruction}"

        {repo_context}

        No existing files matched the request. Decide which NEW files must be created.
        Rules:
        1. Match the existing technology stack and file extensions.
        2. Match the existing directory structure (use src/ when it exists).
        3. Create the minimum number of files; a simple request needs ONE file.
        4. Do not create test or styling files unless the repository already has them.

        Return between 1 and {max_files} entries:
        [
          {{"file": "path/to/file.ext", "reason": "why", "relevance": 90, "action": "create", "goal": "what the file should contain"}}
        ]
        {json_instruction}
        """
    ).strip().format(
        instruction=instruction,
        repo_context=repo_context,
        max_files=max_files,
        json_instruction=JSON_ARRAY_INSTRUCTION,
    )


def render_change_plan_prompt(
    instruction: str,
    repo_context: str,
    files: Mapping[str, str],
    *,
    context_chars: int,
    max_entries: int,
) -> str:
    sections = [f"File: {path}\n{content[:context_chars]}" for path, content in files.items()]
    file_block = "\n\n---\n\n".join(sections)
    return textwrap.dedent(
        """
        User request: "{instruction}"

        {repo_context}

        Relevant existing files:
        {file_block}

        Decide which files to EDIT (preferred), CREATE (only when necessary) or DELETE.
        Keep file extensions consistent with the repository.
        Score each entry with a relevance between 0 and 100.

        Return at most {max_entries} entries:
        [
          {{"file": "path/to/existing.ext", "reason": "why", "relevance": 85, "action": "edit", "goal": "specific change"}}
        ]
        {json_instruction}
        """
    ).strip().format(
        instruction=instruction,
        repo_context=repo_context,
        file_block=file_block,
        max_entries=max_entries,
        json_instruction=JSON_ARRAY_INSTRUCTION,
    )


def render_create_file_prompt(path: str, goal: str, instruction: str) -> str:
    return textwrap.dedent(
        """
        Generate a complete, working file for: {path}

        Goal: {goal}
        User request: {instruction}

        Requirements:
        - Complete, minimal code with the imports and exports it needs
        - Comments only where necessary
        - Match the style of a {language} project

        {raw_instruction}
        """
    ).strip().format(
        path=path,
        goal=goal,
        instruction=instruction,
        language=language_for(path),
        raw_instruction=RAW_FILE_INSTRUCTION,
    )


def render_edit_file_prompt(path: str, existing: str, goal: str, instruction: str) -> str:
    return (
        f"You are editing this file: {path}\n\n"
        f"Current content:\n```\n{existing}\n```\n\n"
        f"User request: {instruction}\n"
        f"Change goal: {goal}\n\n"
        "Produce the COMPLETE modified file. Keep code that does not need to change "
        "and preserve the existing formatting and style.\n\n"
        f"{RAW_FILE_INSTRUCTION}"
    )


def render_pull_request_body(instruction: str, paths: Sequence[str], removed: Sequence[str]) -> str:
    lines = ["Automated changes for the request:", "", f"> {instruction}", ""]
    if paths:
        lines.append("Files written:")
        lines.extend(f"- `{path}`" for path in paths)
    if removed:
        lines.append("")
        lines.append("Files removed:")
        lines.extend(f"- `{path}`" for path in removed)
    return "\n".join(lines).rstrip() + "\n"


__all__ = [
    "JSON_ARRAY_INSTRUCTION",
    "RAW_FILE_INSTRUCTION",
    "language_for",
    "render_change_plan_prompt",
    "render_create_file_prompt",
    "render_create_plan_prompt",
    "render_edit_file_prompt",
    "render_keyword_prompt",
    "render_pattern_prompt",
    "render_pull_request_body",
    "render_repo_context",
    "render_search_mode_prompt",
]
