"""Validate phase: run the repository's own verification command after edits."""

from __future__ import annotations

import json
import logging
import re

from ..state import PipelineState
from ..tools.sandbox import ExecutorError
from .base import PhaseContext

LOGGER = logging.getLogger(__name__)

_MAKE_LINT_RE = re.compile(r"^lint\s*:", re.MULTILINE)


def detect_validation_command(context: PhaseContext) -> list[str] | None:
    """Return the verification command the repository declares, if any.

    Order: configured command, ``package.json`` ``scripts.lint``, then a
    ``Makefile`` ``lint`` target.
    """
    if context.settings.validation_command:
        return list(context.settings.validation_command)

    try:
        manifest = context.sandbox.read_file(context.repo_file("package.json"))
    except ExecutorError:
        manifest = None
    if manifest is not None:
        try:
            scripts = json.loads(manifest).get("scripts") or {}
        except (json.JSONDecodeError, AttributeError):
            LOGGER.warning("package.json is not valid JSON; ignoring its scripts")
            scripts = {}
        if isinstance(scripts, dict) and scripts.get("lint"):
            return ["npm", "run", "lint"]

    try:
        makefile = context.sandbox.read_file(context.repo_file("Makefile"))
    except ExecutorError:
        makefile = None
    if makefile is not None and _MAKE_LINT_RE.search(makefile):
        return ["make", "lint"]
    return None


def run(state: PipelineState, context: PhaseContext) -> PipelineState:
    """Set ``validation_passed`` and count the attempt."""
    state.validation_attempts += 1
    LOGGER.info("Validating changes (attempt %d)", state.validation_attempts)

    if not state.applied_changes:
        LOGGER.info("No files modified, skipping validation")
        state.validation_passed = True
        return state

    command = detect_validation_command(context)
    if command is None:
        LOGGER.info("No verification command found; treating validation as passed")
        state.validation_passed = True
        return state

    try:
        result = context.sandbox.run_command(
            command,
            timeout=context.command_timeout(context.settings.validation_timeout),
            cwd=context.repo_path,
        )
    except ExecutorError as error:
        LOGGER.warning("Validation command %s could not run: %s", " ".join(command), error)
        state.validation_passed = False
        return state

    state.validation_passed = result.ok
    if result.ok:
        LOGGER.info("Validation passed: %s", " ".join(command))
    else:
        LOGGER.warning(
            "Validation failed (exit %d): %s",
            result.exit_code,
            (result.stderr.strip() or result.stdout.strip())[:500],
        )
    return state
