"""
kubectl readiness probe.

A workload is ready for a digest when its rollout is complete and its pod
template runs an image pinned to that digest:

- ``status.observedGeneration >= metadata.generation``
- updated, ready and available replicas all equal ``spec.replicas``
- a container image ends with ``@<digest>``
"""

from __future__ import annotations

import json
from typing import Any

from apps.clusters.drivers.kubectl import classify_kubectl_failure
from apps.orchestration.dtos import StageContext
from apps.orchestration.errors import PermanentAdapterError
from apps.orchestration.utils.process import run_command
from apps.verification.probes.base import BaseReadinessProbe, ProbeResult


def rollout_state(resource: dict[str, Any], digest: str) -> ProbeResult:
    """Evaluate a deployment resource (``kubectl get -o json``) for ``digest``."""
    metadata = resource.get("metadata") or {}
    spec = resource.get("spec") or {}
    status = resource.get("status") or {}

    desired = spec.get("replicas", 1)
    generation = metadata.get("generation", 0)
    observed = status.get("observedGeneration", 0)
    updated = status.get("updatedReplicas", 0)
    ready = status.get("readyReplicas", 0)
    available = status.get("availableReplicas", 0)

    containers = ((spec.get("template") or {}).get("spec") or {}).get("containers") or []
    images = [c.get("image", "") for c in containers]
    pinned = any(image.endswith(f"@{digest}") for image in images)

    rolled_out = observed >= generation and updated == desired and ready == desired and available == desired
    return ProbeResult(
        ready=pinned and rolled_out,
        detail={
            "desired": desired,
            "updated": updated,
            "ready": ready,
            "available": available,
            "generation": generation,
            "observed_generation": observed,
            "images": images,
        },
    )


class KubectlReadinessProbe(BaseReadinessProbe):
    """Config: ``kubectl`` (binary), ``context`` (default: cluster), ``kind``."""

    name = "kubectl"

    def check(self, ctx: StageContext, config: dict[str, Any]) -> ProbeResult:
        artifact = self._require_artifact(ctx)
        argv = [
            config.get("kubectl", "kubectl"),
            "--context",
            config.get("context", ctx.cluster),
            "--namespace",
            ctx.namespace,
            "get",
            f"{config.get('kind', 'deployment')}/{ctx.workload}",
            "-o",
            "json",
        ]
        result = run_command(argv, timeout=config.get("timeout", 30.0))
        if not result.ok:
            raise classify_kubectl_failure(result.stderr, result.returncode)
        try:
            resource = json.loads(result.stdout)
        except json.JSONDecodeError:
            raise PermanentAdapterError(f"kubectl returned invalid JSON: {result.stdout[:200]}")
        return rollout_state(resource, artifact.digest)
