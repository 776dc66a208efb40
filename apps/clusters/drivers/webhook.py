"""Webhook deploy driver: POSTs the desired state to a deployment API."""

from __future__ import annotations

import logging
import time
from typing import Any

from apps.clusters.drivers.base import BaseDeployDriver
from apps.orchestration.dtos import DeployResult, StageContext
from apps.orchestration.errors import PermanentAdapterError
from apps.orchestration.utils import httpclient

logger = logging.getLogger(__name__)


class WebhookDeployDriver(BaseDeployDriver):
    """
    Hand the deployment to an external API (GitOps bot, platform API, ...).

    Config:
        url: endpoint receiving the desired state (required)
        headers: extra request headers
        method: HTTP method (default POST)

    The receiving side must treat a repeated request for the same run and
    digest as a no-op; ``Idempotency-Key`` is set to ``<run_id>:deploy``.
    """

    name = "webhook"

    def validate_config(self, config: dict[str, Any]) -> bool:
        url = config.get("url", "")
        return isinstance(url, str) and (url.startswith("http://") or url.startswith("https://"))

    def build_payload(self, ctx: StageContext) -> dict[str, Any]:
        artifact = self._require_artifact(ctx)
        return {
            "run_id": ctx.run_id,
            "trace_id": ctx.trace_id,
            "target": {
                "cluster": ctx.cluster,
                "namespace": ctx.namespace,
                "workload": ctx.workload,
            },
            "artifact": {
                "repository": artifact.repository,
                "digest": artifact.digest,
                "tag": artifact.tag,
                "image": artifact.image_ref,
            },
            "source_ref": ctx.source_ref,
        }

    def deploy(self, ctx: StageContext) -> DeployResult:
        self._check_config(ctx)
        config = ctx.config
        start = time.perf_counter()

        headers = {"Idempotency-Key": f"{ctx.run_id}:deploy", **config.get("headers", {})}
        response = httpclient.request(
            config["url"],
            method=config.get("method", "POST"),
            payload=self.build_payload(ctx),
            headers=headers,
            timeout=ctx.timeout or 30.0,
        )

        body = response.json() if response.body else {}
        if not isinstance(body, dict):
            body = {}
        if body.get("accepted") is False:
            raise PermanentAdapterError(
                f"Deployment rejected: {body.get('reason', 'no reason given')}", stage=ctx.stage
            )

        logger.info(f"Deploy webhook accepted {ctx.artifact.digest} for {ctx.target_key}")
        return DeployResult(
            accepted=True,
            revision=str(body.get("revision") or ctx.artifact.digest),
            detail=f"HTTP {response.status}",
            duration_ms=(time.perf_counter() - start) * 1000,
        )
