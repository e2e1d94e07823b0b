"""Convenience exports for planner client implementations."""

from .gpt5 import GPT5Client
from .llm_client import (
    LLMClient,
    LLMClientError,
    LLMRequest,
    LLMResponseFormatError,
    LLMRetryError,
    LLMTransportError,
    PlannerParseError,
    parse_json_payload,
    strip_code_fences,
)

__all__ = [
    "GPT5Client",
    "LLMClient",
    "LLMClientError",
    "LLMRequest",
    "LLMResponseFormatError",
    "LLMRetryError",
    "LLMTransportError",
    "PlannerParseError",
    "parse_json_payload",
    "strip_code_fences",
]
