"""Shared context for pipeline phases and planner transcript logging."""

from __future__ import annotations

import json
import posixpath
import re
import time
import uuid
from dataclasses import asdict, dataclass, field, is_dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any

from ..config import PipelineSettings
from ..models.llm_client import LLMClient, LLMClientError, LLMRequest
from ..tools.sandbox import Sandbox, SandboxTimeoutError
from ..utils.slug import slugify

_DRIVE_RE = re.compile(r"^[A-Za-z]:/")


@dataclass(slots=True)
class PhaseContext:
    """Collaborators and limits shared by every phase of one pipeline run."""

    client: LLMClient
    sandbox: Sandbox
    repo_path: str = "."
    settings: PipelineSettings = field(default_factory=PipelineSettings)
    logs_root: Path | None = None
    deadline: float | None = None
    run_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])

    def repo_file(self, path: str) -> str:
        """Return the sandbox path of ``path`` inside the checkout."""
        return posixpath.normpath(posixpath.join(self.repo_path, normalise_repo_path(path)))

    def remaining(self) -> float | None:
        """Seconds left before the session deadline, or ``None`` when unbounded."""
        if self.deadline is None:
            return None
        return self.deadline - time.monotonic()

    def expired(self) -> bool:
        remaining = self.remaining()
        return remaining is not None and remaining <= 0

    def command_timeout(self, requested: float | None = None) -> float | None:
        """Bound ``requested`` by the session deadline."""
        remaining = self.remaining()
        if remaining is None:
            return requested
        if remaining <= 0:
            raise SandboxTimeoutError("Sandbox session deadline exceeded.")
        if requested is None:
            return remaining
        return min(requested, remaining)


def normalise_repo_path(path: str) -> str:
    """Strip leading ``./`` and slashes so paths are checkout-relative."""
    cleaned = path.strip().replace("\\", "/")
    while cleaned.startswith("./"):
        cleaned = cleaned[2:]
    return cleaned.lstrip("/")


def is_safe_repo_path(path: str) -> bool:
    """Return ``False`` for absolute paths and paths with a ``..`` segment."""
    cleaned = path.strip().replace("\\", "/")
    if not cleaned or cleaned.startswith("/") or _DRIVE_RE.match(cleaned):
        return False
    parts = [part for part in normalise_repo_path(cleaned).split("/") if part not in ("", ".")]
    return bool(parts) and ".." not in parts


def invoke_planner(
    context: PhaseContext,
    phase: str,
    prompt: str,
    *,
    system_prompt: str | None = None,
) -> str:
    """Call the planner and persist a transcript of every attempt.

    Raises :class:`LLMClientError` when the client gives up.
    """
    request = LLMRequest(
        prompt=prompt,
        system_prompt=system_prompt,
        metadata={"phase": phase, "run_id": context.run_id},
    )
    attempts: list[dict[str, Any]] = []

    def _attempt_logger(
        payload: dict[str, Any],
        raw: str | None,
        error: Exception | None,
        attempt: int,
    ) -> None:
        attempts.append(
            {
                "attempt": attempt,
                "model": payload.get("model"),
                "raw": raw,
                "error": str(error) if error else None,
            }
        )

    try:
        result = context.client.invoke(request, logger=_attempt_logger)
    except LLMClientError as error:
        _write_phase_log(context, phase, request, attempts, error=error)
        raise

    _write_phase_log(context, phase, request, attempts, result=result)
    return result


def _write_phase_log(
    context: PhaseContext,
    phase: str,
    request: LLMRequest,
    attempts: list[dict[str, Any]],
    *,
    result: str | None = None,
    error: Exception | None = None,
) -> None:
    """Persist a structured planner transcript for later debugging."""
    if context.logs_root is None:
        return
    logs_root = context.logs_root / "phases"
    try:
        logs_root.mkdir(parents=True, exist_ok=True)
    except OSError:
        return

    entry: dict[str, Any] = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "phase": phase,
        "run_id": context.run_id,
        "context": {
            "system_prompt": request.system_prompt,
            "user_prompt": request.prompt,
            "metadata": json_safe(request.metadata),
        },
        "attempts": attempts,
    }
    if result is not None:
        entry["result"] = result
    if error is not None:
        entry["error"] = str(error)

    timestamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%fZ")
    parts = ["phase", slugify(phase, fallback="phase"), slugify(context.run_id, fallback="run"), timestamp]
    file_name = "__".join(parts) + ".json"
    try:
        with (logs_root / file_name).open("w", encoding="utf-8") as handle:
            json.dump(entry, handle, indent=2, sort_keys=True, ensure_ascii=False)
    except OSError:
        return


def json_safe(value: Any) -> Any:
    """Coerce complex objects into JSON-serialisable representations."""
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Path):
        return value.as_posix()
    if is_dataclass(value) and not isinstance(value, type):
        return json_safe(asdict(value))
    if hasattr(value, "model_dump"):
        try:
            return json_safe(value.model_dump())
        except TypeError:
            pass
    if isinstance(value, dict):
        return {str(key): json_safe(val) for key, val in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [json_safe(item) for item in value]
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="ignore")
    return str(value)


__all__ = [
    "PhaseContext",
    "invoke_planner",
    "is_safe_repo_path",
    "json_safe",
    "normalise_repo_path",
]
