"""
Base classes for readiness probes and telemetry sources.

Probes are read-only observers: calling them any number of times has no
effect on the workload. They answer "not yet" by returning a negative result
and may raise adapter errors, which the verifier logs and treats as "not yet".
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

from apps.orchestration.dtos import ArtifactInfo, StageContext
from apps.orchestration.errors import PermanentAdapterError


@dataclass
class ProbeResult:
    """Outcome of one readiness poll."""

    ready: bool
    detail: dict[str, Any] = field(default_factory=dict)


@dataclass
class TelemetryReading:
    """Outcome of one telemetry poll."""

    samples: float
    detail: dict[str, Any] = field(default_factory=dict)

    @property
    def observed(self) -> bool:
        return self.samples > 0


class BaseProbe(ABC):
    """Shared configuration handling for probes and telemetry sources."""

    name: str = "base"

    def validate_config(self, config: dict[str, Any]) -> bool:
        return True

    def check_config(self, config: dict[str, Any]) -> None:
        if not self.validate_config(config):
            raise PermanentAdapterError(f"Invalid configuration for {self.kind} '{self.name}'")

    @property
    def kind(self) -> str:
        return "probe"

    def _require_artifact(self, ctx: StageContext) -> ArtifactInfo:
        if ctx.artifact is None:
            raise PermanentAdapterError("Verification requires a deployed artifact", stage=ctx.stage)
        return ctx.artifact


class BaseReadinessProbe(BaseProbe):
    """Is the workload serving the new digest?"""

    @property
    def kind(self) -> str:
        return "readiness probe"

    @abstractmethod
    def check(self, ctx: StageContext, config: dict[str, Any]) -> ProbeResult:
        """Poll once for readiness of ``ctx.artifact.digest``."""


class BaseTelemetrySource(BaseProbe):
    """Has the new digest emitted telemetry?"""

    @property
    def kind(self) -> str:
        return "telemetry source"

    @abstractmethod
    def read(self, ctx: StageContext, config: dict[str, Any], window_seconds: float) -> TelemetryReading:
        """Count samples labelled with ``ctx.artifact.digest`` in the window."""


def url_config_valid(config: dict[str, Any], key: str = "url") -> bool:
    url = config.get(key, "")
    return isinstance(url, str) and (url.startswith("http://") or url.startswith("https://"))
