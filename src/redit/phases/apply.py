"""Apply phase: execute the change plan against the sandboxed checkout."""

from __future__ import annotations

import logging

from ..models.llm_client import LLMClientError, strip_code_fences
from ..prompts import render_create_file_prompt, render_edit_file_prompt
from ..state import FailureKind, PipelineState, PlanEntry
from ..tools.sandbox import ExecutorError, SandboxTimeoutError
from . import PhaseName
from .base import PhaseContext, invoke_planner, is_safe_repo_path

LOGGER = logging.getLogger(__name__)


def clean_generated_content(reply: str) -> str:
    """Strip fences from a generated file body and end it with a newline."""
    content = strip_code_fences(reply)
    if content and not content.endswith("\n"):
        content += "\n"
    return content


def is_meaningful_edit(existing: str, new_content: str, min_length: int) -> bool:
    """Reject echoes of the input and near-empty replies."""
    if len(new_content.strip()) <= min_length:
        return False
    return new_content.rstrip() != existing.rstrip()


def _apply_create(state: PipelineState, context: PhaseContext, entry: PlanEntry) -> None:
    try:
        reply = invoke_planner(
            context,
            PhaseName.APPLY.value,
            render_create_file_prompt(entry.path, entry.goal, state.instruction),
        )
    except LLMClientError as error:
        LOGGER.warning("Skipping create of %s: %s", entry.path, error)
        return

    content = clean_generated_content(reply)
    context.sandbox.write_file(context.repo_file(entry.path), content)
    state.record_applied(entry.path, content)
    state.loaded_contents[entry.path] = content
    LOGGER.info("Created %s", entry.path)


def _apply_edit(state: PipelineState, context: PhaseContext, entry: PlanEntry) -> None:
    existing = state.loaded_contents.get(entry.path)
    if existing is None:
        try:
            existing = context.sandbox.read_file(context.repo_file(entry.path))
        except ExecutorError as error:
            LOGGER.info("Could not read %s, skipping: %s", entry.path, error)
            return

    try:
        reply = invoke_planner(
            context,
            PhaseName.APPLY.value,
            render_edit_file_prompt(entry.path, existing, entry.goal, state.instruction),
        )
    except LLMClientError as error:
        LOGGER.warning("Skipping edit of %s: %s", entry.path, error)
        return

    content = clean_generated_content(reply)
    if not is_meaningful_edit(existing, content, context.settings.min_content_length):
        LOGGER.info("No effective change for %s", entry.path)
        return

    context.sandbox.write_file(context.repo_file(entry.path), content)
    state.record_applied(entry.path, content)
    state.loaded_contents[entry.path] = content
    LOGGER.info("Edited %s", entry.path)


def _apply_delete(state: PipelineState, context: PhaseContext, entry: PlanEntry) -> None:
    try:
        context.sandbox.remove_file(context.repo_file(entry.path))
    except SandboxTimeoutError:
        raise
    except ExecutorError as error:
        LOGGER.warning("Could not delete %s: %s", entry.path, error)
        return
    state.loaded_contents.pop(entry.path, None)
    if entry.path not in state.removed_paths:
        state.removed_paths.append(entry.path)
    LOGGER.info("Deleted %s", entry.path)


_HANDLERS = {
    "create": _apply_create,
    "edit": _apply_edit,
    "delete": _apply_delete,
}


def run(state: PipelineState, context: PhaseContext) -> PipelineState:
    """Apply entries in plan order, accumulating ``applied_changes``.

    A planner failure or an unreadable file skips a single entry, as does a
    path outside the checkout. An executor error while writing ends the pass
    and marks the run failed; writes made before it stay recorded.
    """
    if state.failed:
        return state
    if not state.change_plan:
        state.fail(FailureKind.EMPTY_PLAN, "No change plan")
        return state

    LOGGER.info("Applying %d plan entr%s", len(state.change_plan), "y" if len(state.change_plan) == 1 else "ies")
    try:
        for entry in state.change_plan:
            if context.expired():
                raise SandboxTimeoutError("Sandbox session deadline exceeded.")
            LOGGER.info("Processing %s (%s)", entry.path, entry.action)
            if not is_safe_repo_path(entry.path):
                LOGGER.warning("Skipping %s: path is outside the checkout", entry.path)
                continue
            _HANDLERS[entry.action](state, context, entry)
    except SandboxTimeoutError as error:
        state.fail(FailureKind.TIMEOUT, f"Sandbox session timed out while applying changes: {error}")
    except ExecutorError as error:
        state.fail(FailureKind.EXECUTOR, f"Failed to apply changes: {error}")

    LOGGER.info("Total applied changes: %d", len(state.applied_changes))
    return state
