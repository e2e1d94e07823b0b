"""Configuration loading and typed settings views."""

from __future__ import annotations

import copy
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict

import yaml

DEFAULT_CONFIG_NAME = "config.yaml"

DEFAULT_CONFIG_TEMPLATE: Dict[str, Any] = {
    "models": {
        "default": "gpt-5-mini",
        "base_url": "https://api.openai.com/v1/responses",
        "timeout": 120,
        "max_attempts": 3,
        "retry_delay": 0.5,
    },
    "pipeline": {
        "max_search_attempts": 3,
        "max_validation_attempts": 3,
        "max_candidates": 10,
        "wildcard_limit": 20,
        "max_plan_entries": 5,
        "max_new_files": 3,
        "context_chars": 1500,
        "min_content_length": 10,
        "max_file_bytes": 200_000,
        "structure_sample": 30,
        "validation_timeout": 60,
        "validation_command": None,
        "source_extensions": [".ts", ".tsx", ".js", ".jsx", ".vue", ".py"],
        "fallback_extension": ".ts",
    },
    "sandbox": {
        "base_dir": None,
        "session_timeout": 1800,
        "clone_timeout": 300,
        "command_timeout": 120,
    },
    "github": {
        "api_url": "https://api.github.com",
        "token_env": "GITHUB_TOKEN",
        "username": "redit-bot",
        "email": "redit-bot@users.noreply.github.com",
        "fork_wait_seconds": 5,
    },
    "queue": {
        "concurrency": 1,
        "max_attempts": 3,
        "backoff_seconds": 2.0,
        "keepalive_seconds": 15.0,
        "retention_seconds": 3600.0,
    },
    "paths": {
        "data": "data",
        "logs": "data/logs",
    },
}


class ConfigError(ValueError):
    """Raised when the configuration file cannot be used."""


def default_config() -> Dict[str, Any]:
    """Return a deep copy of the default configuration template."""
    return copy.deepcopy(DEFAULT_CONFIG_TEMPLATE)


def merge_config(base: Mapping[str, Any], override: Mapping[str, Any]) -> Dict[str, Any]:
    """Recursively merge ``override`` onto ``base`` without mutating either."""
    merged: Dict[str, Any] = copy.deepcopy(dict(base))
    for key, value in override.items():
        current = merged.get(key)
        if isinstance(current, Mapping) and isinstance(value, Mapping):
            merged[key] = merge_config(current, value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def load_config(config_path: Path | str | None) -> Dict[str, Any]:
    """Load YAML configuration layered over the defaults.

    A missing ``config_path`` (``None``) yields the defaults; a path that does
    not exist is an error.
    """
    if config_path is None:
        return default_config()

    path = Path(config_path)
    if not path.exists():
        raise ConfigError(f"Config file not found: {path}")

    try:
        with path.open("r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle) or {}
    except yaml.YAMLError as error:
        raise ConfigError(f"Failed to parse config: {error}") from error

    if not isinstance(data, dict):
        raise ConfigError("Configuration must be a mapping at the top level.")

    return merge_config(DEFAULT_CONFIG_TEMPLATE, data)


def write_config(config_path: Path, config_data: Mapping[str, Any]) -> None:
    """Persist configuration data to disk with stable formatting."""
    config_path.parent.mkdir(parents=True, exist_ok=True)
    with config_path.open("w", encoding="utf-8") as handle:
        yaml.safe_dump(dict(config_data), handle, sort_keys=False)


def _section(config: Mapping[str, Any], name: str) -> Mapping[str, Any]:
    value = config.get(name)
    return value if isinstance(value, Mapping) else {}


def _positive_int(section: Mapping[str, Any], key: str, default: int) -> int:
    value = section.get(key)
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        return default
    return value


def _positive_float(section: Mapping[str, Any], key: str, default: float) -> float:
    value = section.get(key)
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
        return default
    return float(value)


def _non_negative_float(section: Mapping[str, Any], key: str, default: float) -> float:
    value = section.get(key)
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value < 0:
        return default
    return float(value)


@dataclass(slots=True)
class PipelineSettings:
    """Limits and knobs consumed by the pipeline stages and transition policy."""

    max_search_attempts: int = 3
    max_validation_attempts: int = 3
    max_candidates: int = 10
    wildcard_limit: int = 20
    max_plan_entries: int = 5
    max_new_files: int = 3
    context_chars: int = 1500
    min_content_length: int = 10
    max_file_bytes: int = 200_000
    structure_sample: int = 30
    validation_timeout: float = 60.0
    validation_command: list[str] | None = None
    source_extensions: tuple[str, ...] = (".ts", ".tsx", ".js", ".jsx", ".vue", ".py")
    fallback_extension: str = ".ts"
    session_timeout: float | None = None

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> "PipelineSettings":
        pipeline = _section(config, "pipeline")
        sandbox = _section(config, "sandbox")
        defaults = cls()

        command = pipeline.get("validation_command")
        validation_command: list[str] | None = None
        if isinstance(command, str) and command.strip():
            validation_command = command.split()
        elif isinstance(command, (list, tuple)) and command:
            validation_command = [str(part) for part in command]

        extensions = pipeline.get("source_extensions")
        source_extensions = defaults.source_extensions
        if isinstance(extensions, (list, tuple)) and extensions:
            source_extensions = tuple(
                ext if str(ext).startswith(".") else f".{ext}" for ext in map(str, extensions)
            )

        fallback_extension = pipeline.get("fallback_extension")
        if not isinstance(fallback_extension, str) or not fallback_extension.strip():
            fallback_extension = defaults.fallback_extension

        session_timeout = sandbox.get("session_timeout")
        if isinstance(session_timeout, bool) or not isinstance(session_timeout, (int, float)) or session_timeout <= 0:
            session_timeout = None

        return cls(
            max_search_attempts=_positive_int(pipeline, "max_search_attempts", defaults.max_search_attempts),
            max_validation_attempts=_positive_int(
                pipeline, "max_validation_attempts", defaults.max_validation_attempts
            ),
            max_candidates=_positive_int(pipeline, "max_candidates", defaults.max_candidates),
            wildcard_limit=_positive_int(pipeline, "wildcard_limit", defaults.wildcard_limit),
            max_plan_entries=_positive_int(pipeline, "max_plan_entries", defaults.max_plan_entries),
            max_new_files=_positive_int(pipeline, "max_new_files", defaults.max_new_files),
            context_chars=_positive_int(pipeline, "context_chars", defaults.context_chars),
            min_content_length=_positive_int(pipeline, "min_content_length", defaults.min_content_length),
            max_file_bytes=_positive_int(pipeline, "max_file_bytes", defaults.max_file_bytes),
            structure_sample=_positive_int(pipeline, "structure_sample", defaults.structure_sample),
            validation_timeout=_positive_float(pipeline, "validation_timeout", defaults.validation_timeout),
            validation_command=validation_command,
            source_extensions=source_extensions,
            fallback_extension=fallback_extension.strip(),
            session_timeout=float(session_timeout) if session_timeout is not None else None,
        )


@dataclass(slots=True)
class QueueSettings:
    """Worker pool and queue-level retry configuration."""

    concurrency: int = 1
    max_attempts: int = 3
    backoff_seconds: float = 2.0
    keepalive_seconds: float = 15.0
    retention_seconds: float = 3600.0

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> "QueueSettings":
        queue = _section(config, "queue")
        defaults = cls()
        return cls(
            concurrency=_positive_int(queue, "concurrency", defaults.concurrency),
            max_attempts=_positive_int(queue, "max_attempts", defaults.max_attempts),
            backoff_seconds=_non_negative_float(queue, "backoff_seconds", defaults.backoff_seconds),
            keepalive_seconds=_positive_float(queue, "keepalive_seconds", defaults.keepalive_seconds),
            retention_seconds=_non_negative_float(queue, "retention_seconds", defaults.retention_seconds),
        )


@dataclass(slots=True)
class SandboxSettings:
    """Where job sandboxes live and how long they may run."""

    base_dir: Path | None = None
    session_timeout: float = 1800.0
    clone_timeout: float = 300.0
    command_timeout: float = 120.0

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> "SandboxSettings":
        sandbox = _section(config, "sandbox")
        defaults = cls()
        base_dir_value = sandbox.get("base_dir")
        base_dir = None
        if isinstance(base_dir_value, str) and base_dir_value.strip():
            base_dir = Path(base_dir_value.strip())
        return cls(
            base_dir=base_dir,
            session_timeout=_positive_float(sandbox, "session_timeout", defaults.session_timeout),
            clone_timeout=_positive_float(sandbox, "clone_timeout", defaults.clone_timeout),
            command_timeout=_positive_float(sandbox, "command_timeout", defaults.command_timeout),
        )


@dataclass(slots=True)
class GitHubSettings:
    """Remote integration settings; the token itself comes from the environment."""

    api_url: str = "https://api.github.com"
    token_env: str = "GITHUB_TOKEN"
    username: str = "redit-bot"
    email: str = "redit-bot@users.noreply.github.com"
    fork_wait_seconds: float = 5.0

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> "GitHubSettings":
        github = _section(config, "github")
        defaults = cls()

        def _text(key: str, default: str) -> str:
            value = github.get(key)
            return value.strip() if isinstance(value, str) and value.strip() else default

        return cls(
            api_url=_text("api_url", defaults.api_url).rstrip("/"),
            token_env=_text("token_env", defaults.token_env),
            username=_text("username", defaults.username),
            email=_text("email", defaults.email),
            fork_wait_seconds=_non_negative_float(github, "fork_wait_seconds", defaults.fork_wait_seconds),
        )


@dataclass(slots=True)
class PathSettings:
    """Filesystem locations for run artifacts and planner transcripts."""

    data_root: Path = field(default_factory=lambda: Path("data"))
    logs_root: Path = field(default_factory=lambda: Path("data/logs"))

    @classmethod
    def from_config(cls, config: Mapping[str, Any], *, base: Path | None = None) -> "PathSettings":
        paths = _section(config, "paths")
        anchor = (base or Path.cwd()).resolve()

        def _resolve(key: str, default: str) -> Path:
            value = paths.get(key)
            candidate = Path(value.strip()) if isinstance(value, str) and value.strip() else Path(default)
            if not candidate.is_absolute():
                candidate = anchor / candidate
            return candidate

        return cls(data_root=_resolve("data", "data"), logs_root=_resolve("logs", "data/logs"))


__all__ = [
    "ConfigError",
    "DEFAULT_CONFIG_NAME",
    "DEFAULT_CONFIG_TEMPLATE",
    "GitHubSettings",
    "PathSettings",
    "PipelineSettings",
    "QueueSettings",
    "SandboxSettings",
    "default_config",
    "load_config",
    "merge_config",
    "write_config",
]
