"""
Models for published artifacts.

An ArtifactReference is the durable identity of a build output: its content
digest, the tag it was published under and the source input that produced it.
"""

from django.db import models

from apps.orchestration.utils.append_only import AppendOnlyModel


class ArtifactReference(AppendOnlyModel):
    """Immutable record of a published artifact."""

    digest = models.CharField(
        max_length=128,
        unique=True,
        help_text="Content digest, e.g. 'sha256:...'.",
    )
    tag = models.CharField(max_length=128, blank=True, default="")
    repository = models.CharField(max_length=255, blank=True, default="")
    source_ref = models.CharField(
        max_length=255,
        db_index=True,
        help_text="Source input (e.g. commit hash) that produced this digest.",
    )
    run = models.ForeignKey(
        "orchestration.PipelineRun",
        on_delete=models.PROTECT,
        related_name="artifacts",
        help_text="Run that first published this artifact.",
    )
    recorded_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["-recorded_at"]

    def __str__(self):
        return f"{self.repository}@{self.digest}" if self.repository else self.digest

    def to_dict(self) -> dict:
        return {
            "digest": self.digest,
            "tag": self.tag,
            "repository": self.repository,
            "source_ref": self.source_ref,
            "run_id": self.run.run_id,
            "recorded_at": self.recorded_at.isoformat() if self.recorded_at else None,
        }
