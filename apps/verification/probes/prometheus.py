"""
Prometheus telemetry source.

Config:
    url: Prometheus base URL, e.g. "http://prometheus:9090" (required)
    query: PromQL instant query; ``${digest}`` and ``${window}`` (seconds) are
        substituted. Default counts requests of pods running the digest.
    headers: extra request headers

Any positive value in the result vector counts as observed telemetry.
"""

from __future__ import annotations

import urllib.parse
from typing import Any

from apps.orchestration.dtos import StageContext
from apps.orchestration.errors import PermanentAdapterError
from apps.orchestration.utils import httpclient
from apps.orchestration.utils.process import render
from apps.verification.probes.base import BaseTelemetrySource, TelemetryReading, url_config_valid

DEFAULT_QUERY = 'sum(count_over_time(up{image_digest="${digest}"}[${window}s]))'


def vector_total(data: dict[str, Any]) -> float:
    """Sum the positive values of an instant-query result."""
    if not isinstance(data, dict) or data.get("status") != "success":
        raise PermanentAdapterError(f"Prometheus query failed: {str(data)[:200]}")
    result = (data.get("data") or {}).get("result") or []
    total = 0.0
    for item in result:
        value = (item.get("value") or [None, "0"])[1]
        try:
            number = float(value)
        except (TypeError, ValueError):
            continue
        if number > 0:
            total += number
    return total


class PrometheusTelemetrySource(BaseTelemetrySource):
    name = "prometheus"

    def validate_config(self, config: dict[str, Any]) -> bool:
        return url_config_valid(config)

    def read(self, ctx: StageContext, config: dict[str, Any], window_seconds: float) -> TelemetryReading:
        values = ctx.placeholders()
        values["window"] = max(int(window_seconds), 1)
        query = render(config.get("query", DEFAULT_QUERY), values)
        url = f"{config['url'].rstrip('/')}/api/v1/query?{urllib.parse.urlencode({'query': query})}"
        response = httpclient.request(url, headers=config.get("headers"), timeout=config.get("timeout", 10.0))
        return TelemetryReading(samples=vector_total(response.json()), detail={"query": query})
