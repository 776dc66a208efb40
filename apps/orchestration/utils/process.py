"""
Subprocess helpers shared by command-line drivers (build, test, publish, deploy).

Commands are argv lists (or shell-like strings split with ``shlex``) whose
items may contain ``${placeholder}`` references substituted from the stage
context. Commands never run through a shell.
"""

from __future__ import annotations

import logging
import os
import shlex
import subprocess
import time
from dataclasses import dataclass
from string import Template
from typing import Any, Mapping

from apps.orchestration.errors import PermanentAdapterError, TransientAdapterError

logger = logging.getLogger(__name__)


@dataclass
class CommandResult:
    """Outcome of a finished command."""

    argv: list[str]
    returncode: int
    stdout: str = ""
    stderr: str = ""
    duration_ms: float = 0.0

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    def tail(self, lines: int = 20) -> str:
        """Last lines of combined output, for snapshots and error messages."""
        combined = "\n".join(part for part in (self.stdout, self.stderr) if part)
        return "\n".join(combined.strip().splitlines()[-lines:])


def render(template: str, values: Mapping[str, Any]) -> str:
    """Substitute ``${name}`` placeholders, leaving unknown ones untouched."""
    return Template(template).safe_substitute({k: str(v) for k, v in values.items()})


def render_argv(command: list[str] | str, values: Mapping[str, Any]) -> list[str]:
    """Render a command template into an argv list."""
    if isinstance(command, str):
        command = shlex.split(command)
    if not command:
        raise PermanentAdapterError("empty command")
    return [render(str(part), values) for part in command]


def run_command(
    argv: list[str],
    *,
    timeout: float | None = None,
    cwd: str | None = None,
    input: str | None = None,
    env: Mapping[str, str] | None = None,
) -> CommandResult:
    """
    Run a command and capture its output.

    Raises:
        TransientAdapterError: The command did not finish within ``timeout``.
        PermanentAdapterError: The executable does not exist.
    """
    full_env = None
    if env:
        full_env = {**os.environ, **{k: str(v) for k, v in env.items()}}

    logger.info("Running command: %s", shlex.join(argv))
    start = time.perf_counter()
    try:
        completed = subprocess.run(
            argv,
            capture_output=True,
            text=True,
            timeout=timeout,
            cwd=cwd,
            input=input,
            env=full_env,
        )
    except subprocess.TimeoutExpired:
        raise TransientAdapterError(f"{argv[0]} timed out after {timeout}s")
    except FileNotFoundError:
        raise PermanentAdapterError(f"Command not found: {argv[0]}")

    return CommandResult(
        argv=argv,
        returncode=completed.returncode,
        stdout=completed.stdout or "",
        stderr=completed.stderr or "",
        duration_ms=(time.perf_counter() - start) * 1000,
    )
