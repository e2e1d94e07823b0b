"""Load phase: read the bounded contents of discovered files."""

from __future__ import annotations

import logging

from ..state import PipelineState
from ..tools.sandbox import ExecutorError
from .base import PhaseContext

LOGGER = logging.getLogger(__name__)


def run(state: PipelineState, context: PhaseContext) -> PipelineState:
    """Replace ``loaded_contents`` with every readable candidate."""
    if not state.candidate_files:
        LOGGER.info("No files to read")
        state.loaded_contents = {}
        return state

    limit = context.settings.max_candidates
    max_bytes = context.settings.max_file_bytes
    contents: dict[str, str] = {}
    for path in state.candidate_files[:limit]:
        try:
            content = context.sandbox.read_file(context.repo_file(path))
        except ExecutorError as error:
            LOGGER.warning("Skipping unreadable file %s: %s", path, error)
            continue
        if len(content.encode("utf-8")) > max_bytes:
            LOGGER.warning("Skipping %s: larger than %d bytes", path, max_bytes)
            continue
        contents[path] = content

    state.loaded_contents = contents
    LOGGER.info("Loaded %d of %d candidate file(s)", len(contents), len(state.candidate_files))
    return state
