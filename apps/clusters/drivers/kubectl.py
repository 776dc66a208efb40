"""
kubectl deploy driver.

Two modes:
- ``manifest``: a desired-state descriptor template supplied by the target
  configuration. Placeholders (``${image_ref}``, ``${digest}``, ...) are
  substituted and the result is piped to ``kubectl apply -f -``. The
  descriptor is never parsed.
- default: ``kubectl set image <kind>/<workload> <container>=<image_ref>``.

Both are idempotent: applying the same digest twice leaves the cluster as is.
"""

from __future__ import annotations

import logging
from typing import Any

from apps.clusters.drivers.base import BaseDeployDriver
from apps.orchestration.dtos import DeployResult, StageContext
from apps.orchestration.errors import PermanentAdapterError, TransientAdapterError
from apps.orchestration.utils.process import render, run_command

logger = logging.getLogger(__name__)

# Substrings of kubectl stderr that indicate a network/apiserver hiccup.
TRANSIENT_MARKERS = (
    "unable to connect to the server",
    "connection refused",
    "i/o timeout",
    "tls handshake timeout",
    "context deadline exceeded",
    "the server is currently unable to handle the request",
    "etcdserver: request timed out",
    "too many requests",
)


def classify_kubectl_failure(stderr: str, returncode: int) -> TransientAdapterError | PermanentAdapterError:
    """Map a failed kubectl invocation to an adapter error."""
    text = (stderr or "").strip()
    lowered = text.lower()
    message = f"kubectl exited with {returncode}: {text[-500:]}"
    if any(marker in lowered for marker in TRANSIENT_MARKERS):
        return TransientAdapterError(message)
    return PermanentAdapterError(message)


class KubectlDeployDriver(BaseDeployDriver):
    """Apply desired state with kubectl."""

    name = "kubectl"

    def validate_config(self, config: dict[str, Any]) -> bool:
        manifest = config.get("manifest")
        if manifest is not None and not isinstance(manifest, str):
            return False
        return True

    def _base_argv(self, ctx: StageContext) -> list[str]:
        config = ctx.config
        return [
            config.get("kubectl", "kubectl"),
            "--context",
            config.get("context", ctx.cluster),
            "--namespace",
            ctx.namespace,
        ]

    def build_invocation(self, ctx: StageContext) -> tuple[list[str], str | None]:
        """Return (argv, stdin) for this deployment."""
        artifact = self._require_artifact(ctx)
        config = ctx.config
        argv = self._base_argv(ctx)

        manifest = config.get("manifest")
        if manifest:
            return argv + ["apply", "-f", "-"], render(manifest, ctx.placeholders())

        kind = config.get("kind", "deployment")
        container = config.get("container", ctx.workload)
        argv += ["set", "image", f"{kind}/{ctx.workload}", f"{container}={artifact.image_ref}"]
        return argv, None

    def deploy(self, ctx: StageContext) -> DeployResult:
        self._check_config(ctx)
        argv, stdin = self.build_invocation(ctx)

        result = run_command(argv, timeout=ctx.timeout, input=stdin)
        if not result.ok:
            error = classify_kubectl_failure(result.stderr, result.returncode)
            error.stage = ctx.stage
            raise error

        logger.info(f"kubectl accepted {ctx.artifact.image_ref} for {ctx.target_key}")
        return DeployResult(
            accepted=True,
            revision=ctx.artifact.digest,
            detail=result.tail(5),
            duration_ms=result.duration_ms,
        )
