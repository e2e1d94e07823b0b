"""Select-mode phase: classify the instruction into a file discovery strategy."""

from __future__ import annotations

import logging
import re

from ..models.llm_client import LLMClientError
from ..prompts import render_search_mode_prompt
from ..state import PipelineState, SearchMode
from . import PhaseName
from .base import PhaseContext, invoke_planner

LOGGER = logging.getLogger(__name__)

_MODE_ALIASES: dict[str, SearchMode] = {
    "literal": SearchMode.LITERAL,
    "grep": SearchMode.LITERAL,
    "keyword": SearchMode.LITERAL,
    "pattern": SearchMode.PATTERN,
    "glob": SearchMode.PATTERN,
    "wildcard": SearchMode.WILDCARD,
    "regex": SearchMode.WILDCARD,
    "list": SearchMode.WILDCARD,
}


def parse_search_mode(reply: str) -> SearchMode | None:
    """Map the first recognised word of ``reply`` onto a search mode."""
    for token in re.findall(r"[a-z]+", reply.lower()):
        mode = _MODE_ALIASES.get(token)
        if mode is not None:
            return mode
    return None


def run(state: PipelineState, context: PhaseContext) -> PipelineState:
    """Set ``state.search_mode`` once; any planner problem falls back to literal."""
    if state.search_mode is not None:
        return state

    try:
        reply = invoke_planner(context, PhaseName.SELECT_MODE.value, render_search_mode_prompt(state.instruction))
    except LLMClientError as error:
        LOGGER.warning("Search mode classification failed, defaulting to literal: %s", error)
        state.search_mode = SearchMode.LITERAL
        return state

    mode = parse_search_mode(reply)
    if mode is None:
        LOGGER.info("Unrecognised search mode %r, defaulting to literal", reply.strip()[:40])
        mode = SearchMode.LITERAL
    state.search_mode = mode
    LOGGER.info("Selected search mode: %s", mode.value)
    return state
