"""Planner client base class shared by all language-model integrations.

The pipeline treats the model as an opaque ``prompt -> text`` function. Replies
are untrusted: they may wrap JSON in Markdown fences, use smart quotes, leave
trailing commas, or answer with Python literals. The helpers at the bottom of
this module normalise that text and raise :class:`PlannerParseError` when no
structure can be recovered, so callers can fall back explicitly.
"""

from __future__ import annotations

import ast
import json
import re
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional, Union

__all__ = [
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


class LLMClientError(RuntimeError):
    """Base error raised for planner client failures."""


class LLMTransportError(LLMClientError):
    """Raised when the underlying transport fails to return a response."""


class LLMResponseFormatError(LLMClientError):
    """Raised when the model returns an empty or unreadable payload."""


class LLMRetryError(LLMClientError):
    """Raised after exhausting retries due to repeated transport failures."""


class PlannerParseError(LLMClientError):
    """Raised when planner text cannot be coerced into the expected structure."""


@dataclass(slots=True)
class LLMRequest:
    """Free-text request payload sent to the planner model."""

    prompt: str
    model: Optional[str] = None
    system_prompt: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    temperature: float = 0.0
    max_attempts: Optional[int] = None

    def to_payload(self, default_model: str) -> Dict[str, Any]:
        """Render a transport-ready payload for the Responses API."""
        def _message(role: str, text: str) -> Dict[str, Any]:
            return {
                "role": role,
                "content": [
                    {
                        "type": "input_text",
                        "text": text,
                    }
                ],
            }

        messages: list[Dict[str, Any]] = []
        if self.system_prompt:
            messages.append(_message("system", self.system_prompt))
        messages.append(_message("user", self.prompt))

        payload: Dict[str, Any] = {
            "model": self.model or default_model,
            "input": messages,
            "text": {"format": {"type": "text"}},
        }
        if self.temperature not in (None, 0.0):
            payload["temperature"] = self.temperature
        if self.metadata:
            max_metadata_len = 512
            serialised_metadata: Dict[str, Any] = {}
            for key, value in self.metadata.items():
                if isinstance(value, str):
                    formatted = value
                else:
                    formatted = json.dumps(value, separators=(",", ":"), sort_keys=True)
                if len(formatted) > max_metadata_len:
                    formatted = f"{formatted[: max_metadata_len - 3]}..."
                serialised_metadata[key] = formatted
            payload["metadata"] = serialised_metadata
        return payload


AttemptLogger = Callable[[Dict[str, Any], Optional[str], Optional[Exception], int], None]


class LLMClient:
    """High-level helper that retries transport failures and returns raw text."""

    def __init__(self, model: str, *, max_attempts: int = 3, retry_delay: float = 0.5) -> None:
        self._model = model
        self._max_attempts = max_attempts
        self._retry_delay = retry_delay

    @property
    def model(self) -> str:
        """Return the default model name configured for this client."""
        return self._model

    def invoke(
        self,
        request: Union[LLMRequest, str],
        *,
        logger: Optional[AttemptLogger] = None,
    ) -> str:
        """Invoke the model and return its non-empty text reply."""
        if isinstance(request, str):
            request = LLMRequest(prompt=request)
        attempts = request.max_attempts or self._max_attempts
        last_error: Optional[Exception] = None

        for attempt in range(1, attempts + 1):
            payload = request.to_payload(self._model)
            raw: Optional[str] = None
            try:
                raw = self._raw_invoke(payload)
                if raw is None or not raw.strip():
                    raise LLMResponseFormatError("Model returned an empty response.")
                if logger:
                    logger(payload, raw, None, attempt)
                return raw
            except (LLMResponseFormatError, LLMTransportError) as error:
                last_error = error
                if logger:
                    logger(payload, raw, error, attempt)
                if attempt >= attempts:
                    break
                time.sleep(self._retry_delay)

        error_message = (
            f"Failed to obtain a response after {attempts} attempt(s) for model "
            f"{request.model or self._model}"
        )
        raise LLMRetryError(error_message) from last_error

    def _raw_invoke(self, payload: Dict[str, Any]) -> str:
        """Perform the transport call. Subclasses must implement."""
        raise NotImplementedError("Subclasses must implement _raw_invoke().")


_FENCE_LINE_RE = re.compile(r"^\s*```[\w.+-]*\s*$")
_FENCED_BLOCK_RE = re.compile(r"```[\w.+-]*[ \t]*\n(.*?)\n?```", re.DOTALL)


def strip_code_fences(payload: str) -> str:
    """Remove Markdown code fences that models wrap around file bodies or JSON.

    A reply consisting of a single fenced block yields the block body; stray
    fence lines elsewhere are dropped.
    """
    text = payload.strip()
    if not text:
        return text
    if text.startswith("```"):
        match = _FENCED_BLOCK_RE.match(text)
        if match and not text[match.end() :].strip():
            return match.group(1).strip("\n")
    lines = [line for line in text.splitlines() if not _FENCE_LINE_RE.match(line)]
    return "\n".join(lines).strip("\n")


def parse_json_payload(raw_response: str) -> Any:
    """Parse JSON embedded in planner text, raising :class:`PlannerParseError`."""
    text = (raw_response or "").strip()
    if not text:
        raise PlannerParseError("Planner returned an empty response.")

    text = _normalise_json_string(text)
    candidates: list[str] = []
    fenced = _FENCED_BLOCK_RE.search(text)
    if fenced:
        candidates.append(fenced.group(1).strip())
    candidates.append(strip_code_fences(text))
    repaired = _repair_json_payload(text)
    if repaired:
        candidates.append(repaired)

    seen: set[str] = set()
    for candidate in candidates:
        if not candidate or candidate in seen:
            continue
        seen.add(candidate)
        for variant in (candidate, _strip_trailing_commas(candidate)):
            try:
                return json.loads(variant)
            except json.JSONDecodeError:
                pythonic = _coerce_python_literal(variant)
                if pythonic is not None:
                    return pythonic

    snippet = text[:200]
    raise PlannerParseError(f"Planner returned invalid JSON: {snippet}")


def _normalise_json_string(payload: str) -> str:
    """Normalise common non-JSON characters emitted by models."""
    if not payload:
        return payload
    translation = {
        0x201C: '"',
        0x201D: '"',
        0x2018: "'",
        0x2019: "'",
        0xFF07: "'",
        0x00A0: " ",
        0xFEFF: "",
    }
    return payload.translate(str.maketrans(translation))


def _strip_trailing_commas(payload: str) -> str:
    """Remove trailing commas before closing braces/brackets."""
    if not payload:
        return payload
    return re.sub(r",(\s*[}\]])", r"\1", payload)


def _repair_json_payload(raw: str) -> str | None:
    """Attempt to salvage the first balanced JSON value embedded in noisy output."""
    stripped = strip_code_fences(raw)
    if not stripped:
        return None

    opening_idx = None
    expected: list[str] = []
    in_string = False
    escaped = False
    for index, char in enumerate(stripped):
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"' and opening_idx is not None:
            in_string = True
        elif char in "{[":
            if opening_idx is None:
                opening_idx = index
            expected.append("}" if char == "{" else "]")
        elif expected and char == expected[-1]:
            expected.pop()
            if not expected and opening_idx is not None:
                candidate = stripped[opening_idx : index + 1]
                return _strip_trailing_commas(candidate.strip())
    return None


def _coerce_python_literal(candidate: str) -> Any | None:
    """Fall back to Python literal parsing when JSON decoding fails."""
    try:
        literal = ast.literal_eval(candidate)
    except (SyntaxError, ValueError, TypeError, MemoryError, RecursionError):
        return None
    if not isinstance(literal, (dict, list, tuple)):
        return None
    return _normalise_literal(literal)


def _normalise_literal(value: Any) -> Any:
    """Convert Python literals into JSON-compatible structures recursively."""
    if isinstance(value, dict):
        return {str(key): _normalise_literal(sub) for key, sub in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [_normalise_literal(item) for item in value]
    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    return str(value)
