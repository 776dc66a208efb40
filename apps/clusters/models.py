"""
Models for deployment targets.

A target is the logical destination of a run: a workload in a namespace of a
cluster. Its ``pipeline_config`` selects and configures the driver for every
stage.
"""

from __future__ import annotations

from typing import Any

from django.db import models

STAGE_CONFIG_KEYS = ("build", "test", "publish", "deploy", "verify")


class DeploymentTargetQuerySet(models.QuerySet):
    def get_by_key(self, key: str) -> "DeploymentTarget":
        """Look up a target by ``cluster/namespace/workload``.

        Raises:
            ValueError: The key is malformed.
            DeploymentTarget.DoesNotExist: No such target.
        """
        cluster, namespace, workload = DeploymentTarget.parse_key(key)
        return self.get(cluster=cluster, namespace=namespace, workload=workload)


class DeploymentTarget(models.Model):
    """A cluster + namespace + workload that runs deploy to."""

    cluster = models.CharField(
        max_length=100,
        help_text="Cluster name (also the default kubectl context).",
    )
    namespace = models.CharField(max_length=100, default="default")
    workload = models.CharField(
        max_length=100,
        help_text="Workload (deployment) name.",
    )
    repository = models.CharField(
        max_length=255,
        blank=True,
        default="",
        help_text="Image repository, e.g. 'registry.example.com/team/service'.",
    )
    pipeline_config = models.JSONField(
        default=dict,
        blank=True,
        help_text="Per-stage driver configuration: build, test, publish, deploy, verify.",
    )
    is_active = models.BooleanField(
        default=True,
        db_index=True,
        help_text="Inactive targets reject new runs.",
    )
    description = models.TextField(blank=True, default="")
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    objects = DeploymentTargetQuerySet.as_manager()

    class Meta:
        ordering = ["cluster", "namespace", "workload"]
        constraints = [
            models.UniqueConstraint(
                fields=["cluster", "namespace", "workload"],
                name="unique_deployment_target",
            ),
        ]

    def __str__(self):
        return self.key

    @property
    def key(self) -> str:
        return f"{self.cluster}/{self.namespace}/{self.workload}"

    @staticmethod
    def parse_key(key: str) -> tuple[str, str, str]:
        parts = [part.strip() for part in (key or "").split("/")]
        if len(parts) != 3 or not all(parts):
            raise ValueError(f"Target key must be 'cluster/namespace/workload', got: {key!r}")
        return parts[0], parts[1], parts[2]

    def stage_config(self, stage: str) -> dict[str, Any]:
        """Return the configuration block for a stage (empty dict if unset)."""
        config = (self.pipeline_config or {}).get(str(stage)) or {}
        return dict(config) if isinstance(config, dict) else {}
