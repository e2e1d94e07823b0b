"""Sandboxed executor used by the pipeline to touch the repository checkout.

The pipeline only needs four capabilities from its environment: run a
command, read a file, write a file, and remove a file. :class:`Sandbox`
captures that contract; :class:`LocalSandbox` implements it on a private
directory with ``subprocess`` so each job owns an isolated checkout.
"""

from __future__ import annotations

import shutil
import subprocess
import tempfile
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Protocol, Sequence


class ExecutorError(RuntimeError):
    """Raised when a sandbox command or file operation fails."""


class SandboxFileNotFound(ExecutorError):
    """Raised when a requested file does not exist in the sandbox."""


class SandboxTimeoutError(ExecutorError):
    """Raised when a command exceeds its time budget."""


@dataclass(slots=True)
class CommandResult:
    """Outcome of a command executed inside the sandbox."""

    command: list[str]
    exit_code: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.exit_code == 0

    def lines(self) -> list[str]:
        """Return non-empty, stripped stdout lines."""
        return [line.strip() for line in self.stdout.splitlines() if line.strip()]


class Sandbox(Protocol):
    """Operations the pipeline may perform against an isolated checkout."""

    def run_command(
        self,
        command: Sequence[str],
        *,
        timeout: float | None = None,
        cwd: str | None = None,
    ) -> CommandResult: ...

    def read_file(self, path: str) -> str: ...

    def write_file(self, path: str, content: str) -> None: ...

    def remove_file(self, path: str) -> None: ...


class LocalSandbox:
    """Sandbox backed by a private directory on the local filesystem."""

    def __init__(self, root: Path | str, *, default_timeout: float = 120.0, owned: bool = False) -> None:
        self.root = Path(root).resolve()
        self.root.mkdir(parents=True, exist_ok=True)
        self._default_timeout = default_timeout
        self._owned = owned
        self._closed = False

    @classmethod
    def create(
        cls,
        base_dir: Path | str | None = None,
        *,
        prefix: str = "redit-sandbox-",
        default_timeout: float = 120.0,
    ) -> "LocalSandbox":
        """Create a sandbox in a fresh temporary directory it owns."""
        if base_dir is not None:
            Path(base_dir).mkdir(parents=True, exist_ok=True)
        path = tempfile.mkdtemp(prefix=prefix, dir=str(base_dir) if base_dir else None)
        return cls(path, default_timeout=default_timeout, owned=True)

    def __enter__(self) -> "LocalSandbox":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def close(self) -> None:
        """Remove the sandbox directory when this instance created it."""
        if self._closed:
            return
        self._closed = True
        if self._owned:
            shutil.rmtree(self.root, ignore_errors=True)

    # ---------------------------------------------------------------- commands
    def run_command(
        self,
        command: Sequence[str],
        *,
        timeout: float | None = None,
        cwd: str | None = None,
    ) -> CommandResult:
        """Run ``command`` (an argv sequence) inside the sandbox."""
        if not command:
            raise ExecutorError("Refusing to run an empty command.")
        workdir = self.resolve(cwd) if cwd else self.root
        limit = timeout if timeout is not None else self._default_timeout
        args = [str(part) for part in command]
        try:
            process = subprocess.run(  # noqa: S603 - argv is assembled by the pipeline
                args,
                cwd=workdir,
                capture_output=True,
                text=False,
                check=False,
                timeout=limit,
            )
        except subprocess.TimeoutExpired as error:
            raise SandboxTimeoutError(f"Command timed out after {limit:.0f}s: {args[0]}") from error
        except OSError as error:
            raise ExecutorError(f"Unable to run {args[0]}: {error}") from error

        stdout = process.stdout.decode("utf-8", errors="replace") if process.stdout else ""
        stderr = process.stderr.decode("utf-8", errors="replace") if process.stderr else ""
        return CommandResult(command=args, exit_code=process.returncode, stdout=stdout, stderr=stderr)

    # ------------------------------------------------------------------- files
    def read_file(self, path: str) -> str:
        target = self.resolve(path)
        if not target.is_file():
            raise SandboxFileNotFound(f"No such file: {path}")
        try:
            return target.read_text(encoding="utf-8")
        except UnicodeDecodeError as error:
            raise ExecutorError(f"File is not valid UTF-8: {path}") from error
        except OSError as error:
            raise ExecutorError(f"Failed to read {path}: {error}") from error

    def write_file(self, path: str, content: str) -> None:
        target = self.resolve(path)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(content, encoding="utf-8")
        except OSError as error:
            raise ExecutorError(f"Failed to write {path}: {error}") from error

    def remove_file(self, path: str) -> None:
        target = self.resolve(path)
        if not target.exists():
            raise SandboxFileNotFound(f"No such file: {path}")
        try:
            target.unlink()
        except OSError as error:
            raise ExecutorError(f"Failed to remove {path}: {error}") from error

    def resolve(self, path: str) -> Path:
        """Map a sandbox-relative path to a host path, rejecting escapes."""
        relative = PurePosixPath(path.replace("\\", "/"))
        if relative.is_absolute():
            relative = relative.relative_to("/")
        candidate = (self.root / relative).resolve()
        if candidate != self.root and self.root not in candidate.parents:
            raise ExecutorError(f"Path escapes the sandbox: {path}")
        return candidate


__all__ = [
    "CommandResult",
    "ExecutorError",
    "LocalSandbox",
    "Sandbox",
    "SandboxFileNotFound",
    "SandboxTimeoutError",
]
