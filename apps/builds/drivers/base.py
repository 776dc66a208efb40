"""
Base drivers and helpers for the build and test stages.

A build driver turns a source reference into a container artifact and reports
its content digest. A test driver runs the test suite against that artifact.
Both may be called several times for the same run (the orchestrator retries
transient failures), so they must not depend on state left by earlier calls.
"""

from __future__ import annotations

import re
from abc import ABC, abstractmethod
from typing import Any

from apps.orchestration.dtos import BuildResult, StageContext, TestResult
from apps.orchestration.errors import PermanentAdapterError

DIGEST_PATTERN = re.compile(r"sha256:[0-9a-f]{64}")


def normalize_digest(value: str) -> str:
    """Return ``sha256:<hex>`` for a digest with or without the algorithm prefix."""
    value = (value or "").strip().lower()
    if not value:
        return ""
    if ":" not in value:
        value = f"sha256:{value}"
    return value


def extract_digest(output: str) -> str | None:
    """Return the last ``sha256:<64 hex>`` occurring in command output."""
    matches = DIGEST_PATTERN.findall((output or "").lower())
    return matches[-1] if matches else None


class BaseBuildDriver(ABC):
    """Abstract base class for build drivers."""

    name: str = "base"

    def validate_config(self, config: dict[str, Any]) -> bool:
        return True

    @abstractmethod
    def build(self, ctx: StageContext) -> BuildResult:
        """Build the artifact for ``ctx.source_ref`` and return its digest."""


class BaseTestDriver(ABC):
    """Abstract base class for test drivers."""

    name: str = "base"

    def validate_config(self, config: dict[str, Any]) -> bool:
        return True

    @abstractmethod
    def run_tests(self, ctx: StageContext) -> TestResult:
        """Run tests against ``ctx.artifact``.

        A failing suite raises PermanentAdapterError: re-running the same
        tests on the same artifact will not change the verdict.
        """


def check_config(driver: BaseBuildDriver | BaseTestDriver, ctx: StageContext) -> None:
    if not driver.validate_config(ctx.config):
        raise PermanentAdapterError(
            f"Invalid configuration for {ctx.stage} driver '{driver.name}'", stage=ctx.stage
        )
