"""
Readiness probes and telemetry sources used by the verifier.
"""

from apps.verification.probes.base import (
    BaseReadinessProbe,
    BaseTelemetrySource,
    ProbeResult,
    TelemetryReading,
)
from apps.verification.probes.http import HttpReadinessProbe, HttpTelemetrySource
from apps.verification.probes.kubectl import KubectlReadinessProbe
from apps.verification.probes.local import LocalReadinessProbe, LocalTelemetrySource
from apps.verification.probes.prometheus import PrometheusTelemetrySource

__all__ = [
    "BaseReadinessProbe",
    "BaseTelemetrySource",
    "ProbeResult",
    "TelemetryReading",
    "READINESS_PROBES",
    "TELEMETRY_SOURCES",
    "get_readiness_probe",
    "get_telemetry_source",
]

READINESS_PROBES: dict[str, type[BaseReadinessProbe]] = {
    "http": HttpReadinessProbe,
    "kubectl": KubectlReadinessProbe,
    "local": LocalReadinessProbe,
}

TELEMETRY_SOURCES: dict[str, type[BaseTelemetrySource]] = {
    "prometheus": PrometheusTelemetrySource,
    "http": HttpTelemetrySource,
    "local": LocalTelemetrySource,
}


def get_readiness_probe(name: str = "local") -> BaseReadinessProbe:
    if name not in READINESS_PROBES:
        raise ValueError(f"Unknown readiness probe: {name}. Available: {', '.join(sorted(READINESS_PROBES))}")
    return READINESS_PROBES[name]()


def get_telemetry_source(name: str = "local") -> BaseTelemetrySource:
    if name not in TELEMETRY_SOURCES:
        raise ValueError(f"Unknown telemetry source: {name}. Available: {', '.join(sorted(TELEMETRY_SOURCES))}")
    return TELEMETRY_SOURCES[name]()
