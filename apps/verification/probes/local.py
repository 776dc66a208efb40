"""Local probes for development and tests.

Readiness config: ``ready`` (default True).
Telemetry config: ``samples`` (default 1).
"""

from typing import Any

from apps.orchestration.dtos import StageContext
from apps.verification.probes.base import (
    BaseReadinessProbe,
    BaseTelemetrySource,
    ProbeResult,
    TelemetryReading,
)


class LocalReadinessProbe(BaseReadinessProbe):
    name = "local"

    def check(self, ctx: StageContext, config: dict[str, Any]) -> ProbeResult:
        self._require_artifact(ctx)
        return ProbeResult(ready=bool(config.get("ready", True)), detail={"driver": "local"})


class LocalTelemetrySource(BaseTelemetrySource):
    name = "local"

    def read(self, ctx: StageContext, config: dict[str, Any], window_seconds: float) -> TelemetryReading:
        return TelemetryReading(samples=float(config.get("samples", 1)), detail={"driver": "local"})
