"""
Models for post-deployment verification.

A TelemetryCheckpoint is the evidence that a deployed digest became ready and
emitted at least one telemetry sample. A run may only succeed once a
checkpoint exists for its target and artifact digest.
"""

from django.db import models

from apps.orchestration.utils.append_only import AppendOnlyModel


class TelemetryCheckpoint(AppendOnlyModel):
    """Immutable record of observed readiness and telemetry for a digest."""

    target = models.ForeignKey(
        "clusters.DeploymentTarget",
        on_delete=models.PROTECT,
        related_name="checkpoints",
    )
    digest = models.CharField(max_length=128, db_index=True)
    run = models.ForeignKey(
        "orchestration.PipelineRun",
        on_delete=models.PROTECT,
        related_name="checkpoints",
    )
    ready_at = models.DateTimeField(help_text="When the workload first reported ready for the digest.")
    observed_at = models.DateTimeField(help_text="When telemetry for the digest was first observed.")
    sample_count = models.FloatField(default=0)
    details = models.JSONField(
        default=dict,
        blank=True,
        help_text="Readiness and telemetry probe output.",
    )
    recorded_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["-observed_at"]
        constraints = [
            models.UniqueConstraint(
                fields=["run", "target", "digest"],
                name="unique_checkpoint_per_run_digest",
            ),
        ]
        indexes = [
            models.Index(fields=["target", "digest"]),
        ]

    def __str__(self):
        return f"{self.target_id}@{self.digest} observed {self.observed_at:%Y-%m-%d %H:%M:%S}"

    def to_dict(self) -> dict:
        return {
            "target": str(self.target),
            "digest": self.digest,
            "run_id": self.run.run_id,
            "ready_at": self.ready_at.isoformat(),
            "observed_at": self.observed_at.isoformat(),
            "sample_count": self.sample_count,
        }
