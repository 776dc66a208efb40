"""
HTTP readiness probe and telemetry source.

Readiness config:
    url: status endpoint (templated, e.g. "https://${workload}.internal/version")
    digest_field: dotted path of the digest in the JSON body (default "digest")
    headers: extra request headers

Telemetry config:
    url: JSON endpoint (templated) returning a sample count for the digest
    count_field: dotted path of the count (default "count")
    headers: extra request headers
"""

from __future__ import annotations

from typing import Any

from apps.orchestration.dtos import StageContext
from apps.orchestration.utils import httpclient
from apps.orchestration.utils.process import render
from apps.verification.probes.base import (
    BaseReadinessProbe,
    BaseTelemetrySource,
    ProbeResult,
    TelemetryReading,
    url_config_valid,
)


def lookup(data: Any, path: str) -> Any:
    """Resolve a dotted path in nested dicts, None when absent."""
    for part in path.split("."):
        if not isinstance(data, dict):
            return None
        data = data.get(part)
    return data


class HttpReadinessProbe(BaseReadinessProbe):
    name = "http"

    def validate_config(self, config: dict[str, Any]) -> bool:
        return url_config_valid(config)

    def check(self, ctx: StageContext, config: dict[str, Any]) -> ProbeResult:
        artifact = self._require_artifact(ctx)
        url = render(config["url"], ctx.placeholders())
        response = httpclient.request(url, headers=config.get("headers"), timeout=config.get("timeout", 10.0))
        reported = lookup(response.json(), config.get("digest_field", "digest"))
        return ProbeResult(
            ready=reported == artifact.digest,
            detail={"url": url, "status": response.status, "reported_digest": reported},
        )


class HttpTelemetrySource(BaseTelemetrySource):
    name = "http"

    def validate_config(self, config: dict[str, Any]) -> bool:
        return url_config_valid(config)

    def read(self, ctx: StageContext, config: dict[str, Any], window_seconds: float) -> TelemetryReading:
        values = ctx.placeholders()
        values["window"] = int(window_seconds)
        url = render(config["url"], values)
        response = httpclient.request(url, headers=config.get("headers"), timeout=config.get("timeout", 10.0))
        count = lookup(response.json(), config.get("count_field", "count"))
        try:
            samples = float(count or 0)
        except (TypeError, ValueError):
            samples = 0.0
        return TelemetryReading(samples=samples, detail={"url": url, "count": count})
