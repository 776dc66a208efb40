"""
Command-line build and test drivers.

Config (build):
    command: argv list or string, e.g.
        ["docker", "buildx", "build", "--push", "-t", "${image}",
         "--iidfile", "/tmp/${run_id}.iid", "."]
    iidfile: optional path (templated) the digest is read from
    workdir: optional working directory
    env: optional extra environment variables
    transient_exit_codes: exit codes treated as transient (default: none)

Config (test):
    command: argv list or string, e.g.
        ["docker", "run", "--rm", "${image_ref}", "pytest", "-q"]
    workdir, env, transient_exit_codes: as above
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

from apps.builds.drivers.base import (
    BaseBuildDriver,
    BaseTestDriver,
    check_config,
    extract_digest,
    normalize_digest,
)
from apps.orchestration.dtos import BuildResult, StageContext, TestResult
from apps.orchestration.errors import PermanentAdapterError, TransientAdapterError
from apps.orchestration.utils.process import CommandResult, render, render_argv, run_command

logger = logging.getLogger(__name__)


def _valid_command(config: dict[str, Any]) -> bool:
    command = config.get("command")
    if isinstance(command, str):
        return bool(command.strip())
    return isinstance(command, list) and len(command) > 0


def _run_stage_command(ctx: StageContext) -> CommandResult:
    config = ctx.config
    values = ctx.placeholders()
    argv = render_argv(config["command"], values)
    workdir = render(config["workdir"], values) if config.get("workdir") else None

    result = run_command(argv, timeout=ctx.timeout, cwd=workdir, env=config.get("env"))
    if not result.ok:
        message = f"{argv[0]} exited with {result.returncode}: {result.tail(10)}"
        if result.returncode in set(config.get("transient_exit_codes", [])):
            raise TransientAdapterError(message, stage=ctx.stage)
        raise PermanentAdapterError(message, stage=ctx.stage)
    return result


class CommandBuildDriver(BaseBuildDriver):
    """Run an external build command and report the digest it produced."""

    name = "command"

    def validate_config(self, config: dict[str, Any]) -> bool:
        return _valid_command(config)

    def build(self, ctx: StageContext) -> BuildResult:
        check_config(self, ctx)
        result = _run_stage_command(ctx)

        digest = self._read_digest(ctx, result)
        if not digest:
            raise PermanentAdapterError(
                "Build finished but no sha256 digest was found in its output", stage=ctx.stage
            )

        logger.info(f"Built {ctx.target_key} at {ctx.short_ref}: {digest}")
        return BuildResult(
            digest=digest,
            image=ctx.placeholders()["image"],
            log_tail=result.tail(),
            duration_ms=result.duration_ms,
        )

    def _read_digest(self, ctx: StageContext, result: CommandResult) -> str | None:
        iidfile = ctx.config.get("iidfile")
        if iidfile:
            path = Path(render(iidfile, ctx.placeholders()))
            try:
                return normalize_digest(path.read_text())
            except FileNotFoundError:
                raise PermanentAdapterError(f"iidfile not written: {path}", stage=ctx.stage)
        return extract_digest(result.stdout) or extract_digest(result.stderr)


class CommandTestDriver(BaseTestDriver):
    """Run an external test command; a non-zero exit fails the run."""

    name = "command"

    def validate_config(self, config: dict[str, Any]) -> bool:
        return _valid_command(config)

    def run_tests(self, ctx: StageContext) -> TestResult:
        check_config(self, ctx)
        result = _run_stage_command(ctx)
        return TestResult(
            passed=True,
            summary=result.tail(1),
            log_tail=result.tail(),
            duration_ms=result.duration_ms,
        )
