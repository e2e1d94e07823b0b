"""CLI commands for running repository edits locally or against GitHub."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Dict

import typer

from .config import (
    DEFAULT_CONFIG_NAME,
    ConfigError,
    GitHubSettings,
    PathSettings,
    PipelineSettings,
    QueueSettings,
    SandboxSettings,
    default_config,
    load_config,
    write_config,
)
from .jobs import EditJobRunner, JobEventKind, JobQueue, ValidationInputError
from .models import GPT5Client, LLMClient, LLMClientError
from .orchestrator import PipelineResult, run_pipeline
from .tools.github import GitHubClient
from .tools.sandbox import LocalSandbox

APP_HELP = "Edit repositories from natural-language instructions."

app = typer.Typer(help=APP_HELP)


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
) -> None:
    """Configure logging for every command."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _load(config: str) -> Dict[str, Any]:
    """Load ``config`` when it exists, otherwise fall back to defaults."""
    config_path = Path(config)
    try:
        return load_config(config_path if config_path.exists() else None)
    except ConfigError as error:
        typer.echo(f"Invalid configuration: {error}")
        raise typer.Exit(code=2)


def _build_client(config: Dict[str, Any]) -> LLMClient:
    """Construct the GPT-5 planner client from the ``models`` section."""
    models_cfg = config.get("models") or {}
    model_name = str(models_cfg.get("default", "gpt-5-mini"))
    client_kwargs: Dict[str, Any] = {}
    timeout_value = models_cfg.get("timeout")
    if isinstance(timeout_value, (int, float)) and timeout_value > 0:
        client_kwargs["timeout"] = float(timeout_value)
    max_attempts_value = models_cfg.get("max_attempts")
    if isinstance(max_attempts_value, int) and max_attempts_value > 0:
        client_kwargs["max_attempts"] = max_attempts_value
    retry_delay_value = models_cfg.get("retry_delay")
    if isinstance(retry_delay_value, (int, float)) and retry_delay_value >= 0:
        client_kwargs["retry_delay"] = float(retry_delay_value)
    base_url_value = models_cfg.get("base_url")
    if isinstance(base_url_value, str) and base_url_value.strip():
        client_kwargs["base_url"] = base_url_value.strip()

    try:
        return GPT5Client(model=model_name, **client_kwargs)
    except ValueError as error:
        if "api key" in str(error).lower():
            typer.echo("No API key given. Set OPENAI_API_KEY.")
        else:
            typer.echo(f"Failed to initialise GPT-5 client: {error}")
        raise typer.Exit(code=1)
    except LLMClientError as error:
        typer.echo(f"Failed to initialise GPT-5 client: {error}")
        raise typer.Exit(code=1)


def _build_github(config: Dict[str, Any]) -> GitHubClient:
    settings = GitHubSettings.from_config(config)
    token = os.getenv(settings.token_env)
    try:
        return GitHubClient(token=token, api_url=settings.api_url)
    except ValueError:
        typer.echo(f"No GitHub token given. Set {settings.token_env}.")
        raise typer.Exit(code=1)


def _render_result(result: PipelineResult) -> None:
    state = result.state
    typer.echo(f"Outcome: {result.outcome.value} ({result.reason})")
    mode = state.search_mode.value if state.search_mode else "n/a"
    typer.echo(f"Search: mode={mode} attempts={state.search_attempts}")
    if state.applied_changes:
        typer.echo("Files written:")
        for path in state.applied_paths():
            typer.echo(f"- {path}")
    if state.removed_paths:
        typer.echo("Files removed:")
        for path in state.removed_paths:
            typer.echo(f"- {path}")
    if not state.applied_changes and not state.removed_paths:
        typer.echo("No changes were made.")
    if result.artifact_path is not None:
        typer.echo(f"Run log: {result.artifact_path}")


@app.command()
def init(
    config: str = typer.Option(
        DEFAULT_CONFIG_NAME,
        "--config",
        "-c",
        help="Path to the configuration file.",
    ),
    force: bool = typer.Option(False, "--force", help="Overwrite an existing configuration file."),
) -> None:
    """Write the default configuration file."""
    config_path = Path(config)
    if config_path.exists() and not force:
        typer.echo(f"{config_path} already exists; use --force to overwrite it.")
        raise typer.Exit(code=1)
    write_config(config_path, default_config())
    typer.echo(f"Wrote default configuration to {config_path}")


@app.command()
def edit(
    path: Path = typer.Argument(..., help="Local checkout to edit in place."),
    instruction: str = typer.Argument(..., help="What to change, in plain language."),
    config: str = typer.Option(
        DEFAULT_CONFIG_NAME,
        "--config",
        "-c",
        help="Path to the configuration file.",
    ),
) -> None:
    """Run the edit pipeline against a local checkout without publishing."""
    if not path.is_dir():
        typer.echo(f"Not a directory: {path}")
        raise typer.Exit(code=2)
    if len(instruction.strip()) < 5:
        typer.echo("Instruction must contain at least 5 characters.")
        raise typer.Exit(code=2)

    config_data = _load(config)
    paths = PathSettings.from_config(config_data)
    sandbox_settings = SandboxSettings.from_config(config_data)
    client = _build_client(config_data)

    sandbox = LocalSandbox(path, default_timeout=sandbox_settings.command_timeout)
    result = run_pipeline(
        instruction.strip(),
        client=client,
        sandbox=sandbox,
        settings=PipelineSettings.from_config(config_data),
        logs_root=paths.logs_root,
    )
    _render_result(result)
    if not result.ok:
        raise typer.Exit(code=1)


@app.command()
def run(
    repository_url: str = typer.Argument(..., help="GitHub repository URL to fork and edit."),
    instruction: str = typer.Argument(..., help="What to change, in plain language."),
    config: str = typer.Option(
        DEFAULT_CONFIG_NAME,
        "--config",
        "-c",
        help="Path to the configuration file.",
    ),
) -> None:
    """Fork a repository, apply the instruction, and open a pull request."""
    config_data = _load(config)
    paths = PathSettings.from_config(config_data)
    queue_settings = QueueSettings.from_config(config_data)

    runner = EditJobRunner(
        client=_build_client(config_data),
        github=_build_github(config_data),
        pipeline_settings=PipelineSettings.from_config(config_data),
        sandbox_settings=SandboxSettings.from_config(config_data),
        github_settings=GitHubSettings.from_config(config_data),
        logs_root=paths.logs_root,
    )

    with JobQueue(runner, settings=queue_settings) as queue:
        try:
            receipt = queue.submit({"repository_url": repository_url, "instruction": instruction})
        except ValidationInputError as error:
            typer.echo(f"{error}:")
            for detail in error.errors:
                location = ".".join(str(part) for part in detail.get("loc", []))
                typer.echo(f"- {location}: {detail.get('msg')}")
            raise typer.Exit(code=2)

        typer.echo(f"Queued job {receipt.job_id}")
        final = None
        for event in queue.events(receipt.job_id):
            if event.kind is JobEventKind.PING:
                typer.echo(f"... still working (attempt {event.attempt})")
                continue
            if event.terminal:
                final = event
                break
            typer.echo(f"Job {event.job_id}: {event.kind.value}")

    if final is None or final.kind is not JobEventKind.COMPLETED:
        reason = final.reason if final else "unknown"
        typer.echo(f"Job failed: {reason}")
        raise typer.Exit(code=1)
    if final.pr_url:
        typer.echo(f"Pull request: {final.pr_url}")
    else:
        typer.echo("No changes detected; no pull request opened.")


if __name__ == "__main__":
    app()
