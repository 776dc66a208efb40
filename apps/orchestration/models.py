"""
Models for pipeline orchestration.

Provides persistent state for deployment runs, the append-only ledger of stage
attempts, and the per-target lock that serializes runs on one target.
"""

from __future__ import annotations

from datetime import timedelta

from django.db import models
from django.utils import timezone

from apps.orchestration.errors import ErrorKind, RunStateError
from apps.orchestration.utils.append_only import AppendOnlyModel


class PipelineStage(models.TextChoices):
    """Pipeline stages in execution order."""

    BUILD = "build", "Build"
    TEST = "test", "Test"
    PUBLISH = "publish", "Publish"
    DEPLOY = "deploy", "Deploy"
    VERIFY = "verify", "Verify"


STAGE_ORDER = [
    PipelineStage.BUILD,
    PipelineStage.TEST,
    PipelineStage.PUBLISH,
    PipelineStage.DEPLOY,
    PipelineStage.VERIFY,
]


class RunStatus(models.TextChoices):
    """Overall run status (state machine)."""

    PENDING = "pending", "Pending"
    RUNNING = "running", "Running"
    SUCCEEDED = "succeeded", "Succeeded"
    FAILED = "failed", "Failed"
    ABORTED = "aborted", "Aborted"


TERMINAL_STATUSES = frozenset({RunStatus.SUCCEEDED, RunStatus.FAILED, RunStatus.ABORTED})

# Process exit code for each terminal status (CLI contract).
EXIT_CODES = {
    RunStatus.SUCCEEDED: 0,
    RunStatus.FAILED: 1,
    RunStatus.ABORTED: 2,
}
EXIT_CODE_NOT_TERMINAL = 3
EXIT_CODE_CONFLICT = 4


class AttemptStatus(models.TextChoices):
    """Status recorded by a ledger entry."""

    RUNNING = "running", "Running"
    SUCCEEDED = "succeeded", "Succeeded"
    FAILED = "failed", "Failed"


class PipelineRun(models.Model):
    """
    A single execution of the pipeline for one trigger against one target.

    Once the run reaches a terminal status it is immutable: every transition
    method raises RunStateError, also when called on a stale in-memory copy.
    """

    # Correlation IDs (required for tracing)
    trace_id = models.CharField(
        max_length=64,
        db_index=True,
        help_text="Correlation ID for tracing across all stages and logs.",
    )
    run_id = models.CharField(
        max_length=64,
        unique=True,
        help_text="Unique ID for this specific pipeline run.",
    )

    # Trigger
    target = models.ForeignKey(
        "clusters.DeploymentTarget",
        on_delete=models.PROTECT,
        related_name="runs",
    )
    source_ref = models.CharField(
        max_length=255,
        db_index=True,
        help_text="Source change identifier, e.g. a commit hash.",
    )
    source = models.CharField(
        max_length=50,
        default="api",
        db_index=True,
        help_text="Where the trigger came from (e.g. 'webhook', 'cli', 'api').",
    )
    trigger_payload = models.JSONField(
        default=dict,
        blank=True,
        help_text="Opaque trigger data, passed through to stage drivers.",
    )

    # State machine
    status = models.CharField(
        max_length=20,
        choices=RunStatus.choices,
        default=RunStatus.PENDING,
        db_index=True,
    )
    current_stage = models.CharField(
        max_length=20,
        choices=PipelineStage.choices,
        null=True,
        blank=True,
        help_text="Current/last stage being executed.",
    )
    cancel_requested = models.BooleanField(
        default=False,
        help_text="Honoured at the next stage boundary.",
    )

    # Ownership of the stage loop
    claimed_by = models.CharField(
        max_length=64,
        blank=True,
        default="",
        help_text="Token of the stage loop driving this run.",
    )
    claim_expires_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="Another stage loop may take the run over after this.",
    )

    # Artifact produced by the build stage
    artifact_digest = models.CharField(max_length=128, blank=True, default="", db_index=True)

    # Error tracking
    failed_stage = models.CharField(
        max_length=20,
        choices=PipelineStage.choices,
        null=True,
        blank=True,
    )
    error_kind = models.CharField(
        max_length=32,
        choices=ErrorKind.CHOICES,
        blank=True,
        default="",
    )
    error_message = models.TextField(blank=True, default="")

    # Timestamps
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)
    started_at = models.DateTimeField(null=True, blank=True)
    deadline_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="Wall-clock ceiling for the whole run.",
    )
    completed_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the run reached a terminal status.",
    )
    total_duration_ms = models.FloatField(default=0.0)

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["trace_id", "run_id"]),
            models.Index(fields=["status", "created_at"]),
            models.Index(fields=["target", "status"]),
        ]

    def __str__(self):
        return f"Run {self.run_id} [{self.status}]"

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def exit_code(self) -> int | None:
        return EXIT_CODES.get(self.status)

    def remaining_seconds(self, now=None) -> float | None:
        """Seconds until the run deadline (None when no deadline is set)."""
        if self.deadline_at is None:
            return None
        return (self.deadline_at - (now or timezone.now())).total_seconds()

    def _require_active(self, action: str):
        if self.is_terminal:
            raise RunStateError(f"Cannot {action}: run {self.run_id} is already {self.status}")

    def mark_running(self, timeout_seconds: float | None = None):
        """Transition pending -> running and start the wall-clock budget."""
        self._require_active("start")
        if self.status != RunStatus.PENDING:
            raise RunStateError(f"Cannot start: run {self.run_id} is {self.status}")
        self.status = RunStatus.RUNNING
        self.started_at = timezone.now()
        if timeout_seconds:
            self.deadline_at = self.started_at + timedelta(seconds=timeout_seconds)
        self.save(update_fields=["status", "started_at", "deadline_at", "updated_at"])

    def enter_stage(self, stage: str):
        self._require_active("enter stage")
        self.current_stage = stage
        self.save(update_fields=["current_stage", "updated_at"])

    def set_artifact(self, digest: str):
        self._require_active("record artifact")
        if self.artifact_digest == digest:
            return
        self.artifact_digest = digest
        self.save(update_fields=["artifact_digest", "updated_at"])

    def request_cancel(self):
        self._require_active("cancel")
        self.cancel_requested = True
        self.save(update_fields=["cancel_requested", "updated_at"])

    def claim(self, token: str, lease_seconds: float) -> bool:
        """
        Take or renew ownership of the stage loop for ``lease_seconds``.

        Succeeds only while the run is running and is unclaimed, already held
        by ``token``, or held by a claim that has expired. Renewing also marks
        progress for stale-run detection.
        """
        now = timezone.now()
        expires_at = now + timedelta(seconds=lease_seconds)
        claimable = (
            models.Q(claimed_by="")
            | models.Q(claimed_by=token)
            | models.Q(claim_expires_at__lt=now)
        )
        updated = (
            PipelineRun.objects.filter(claimable, pk=self.pk, status=RunStatus.RUNNING)
            .update(claimed_by=token, claim_expires_at=expires_at, updated_at=now)
        )
        if updated:
            self.claimed_by = token
            self.claim_expires_at = expires_at
        return bool(updated)

    def _finish(self, status: str, extra_fields: list[str], claimed_by: str | None = None):
        """
        Write the terminal status in one conditional update.

        Only a row that is still non-terminal (and, with ``claimed_by``, still
        held by that claim) is written; otherwise this object is reloaded and
        RunStateError is raised.
        """
        self.status = status
        self.completed_at = timezone.now()
        if self.started_at:
            delta = self.completed_at - self.started_at
            self.total_duration_ms = delta.total_seconds() * 1000

        runs = PipelineRun.objects.filter(pk=self.pk).exclude(status__in=TERMINAL_STATUSES)
        if claimed_by is not None:
            runs = runs.filter(claimed_by=claimed_by)
        fields = ["status", "completed_at", "total_duration_ms", *extra_fields]
        updated = runs.update(updated_at=self.completed_at, **{name: getattr(self, name) for name in fields})
        if not updated:
            self.refresh_from_db()
            holder = self.claimed_by or "nobody"
            raise RunStateError(f"Cannot mark run {self.run_id} {status}: it is {self.status}, claimed by {holder}")
        self.updated_at = self.completed_at

    def mark_succeeded(self, claimed_by: str | None = None):
        self._require_active("complete")
        self._finish(RunStatus.SUCCEEDED, [], claimed_by)

    def mark_failed(self, kind: str, message: str, stage: str | None = None, claimed_by: str | None = None):
        self._require_active("fail")
        self.error_kind = kind
        self.error_message = message
        self.failed_stage = stage
        self._finish(RunStatus.FAILED, ["error_kind", "error_message", "failed_stage"], claimed_by)

    def mark_aborted(self, reason: str = "Cancelled by operator", claimed_by: str | None = None):
        self._require_active("abort")
        self.error_message = reason
        self._finish(RunStatus.ABORTED, ["error_message"], claimed_by)


class StageAttempt(AppendOnlyModel):
    """
    Run ledger entry.

    Every attempt of a stage appends a ``running`` row and then exactly one
    ``succeeded`` or ``failed`` row. Rows are never updated or deleted; the
    logical status of an attempt is its latest row.
    """

    run = models.ForeignKey(
        PipelineRun,
        on_delete=models.PROTECT,
        related_name="attempts",
    )
    sequence = models.PositiveIntegerField(help_text="Per-run position in the ledger (1-based).")
    stage = models.CharField(
        max_length=20,
        choices=PipelineStage.choices,
        db_index=True,
    )
    attempt = models.PositiveIntegerField(help_text="Attempt number for this stage (1-based).")
    status = models.CharField(
        max_length=20,
        choices=AttemptStatus.choices,
        db_index=True,
    )

    # Error tracking
    error_kind = models.CharField(max_length=32, choices=ErrorKind.CHOICES, blank=True, default="")
    error_message = models.TextField(blank=True, default="")
    retryable = models.BooleanField(default=False)

    # Artifact produced or consumed by this attempt
    artifact_digest = models.CharField(max_length=128, blank=True, default="")
    artifact_tag = models.CharField(max_length=128, blank=True, default="")
    artifact_repository = models.CharField(max_length=255, blank=True, default="")

    output_snapshot = models.JSONField(
        default=dict,
        blank=True,
        help_text="Snapshot of the stage result.",
    )
    duration_ms = models.FloatField(default=0.0)
    recorded_at = models.DateTimeField(default=timezone.now)

    class Meta:
        ordering = ["run", "sequence"]
        indexes = [
            models.Index(fields=["run", "stage"]),
            models.Index(fields=["stage", "status"]),
        ]
        constraints = [
            models.UniqueConstraint(fields=["run", "sequence"], name="unique_ledger_sequence"),
            models.UniqueConstraint(
                fields=["run", "stage", "attempt", "status"],
                name="unique_attempt_status",
            ),
        ]

    def __str__(self):
        return f"{self.run.run_id} #{self.sequence} {self.stage} (attempt {self.attempt}) [{self.status}]"

    def to_dict(self) -> dict:
        return {
            "sequence": self.sequence,
            "stage": self.stage,
            "attempt": self.attempt,
            "status": self.status,
            "error_kind": self.error_kind or None,
            "error_message": self.error_message,
            "retryable": self.retryable,
            "artifact_digest": self.artifact_digest or None,
            "artifact_tag": self.artifact_tag or None,
            "output": self.output_snapshot,
            "duration_ms": self.duration_ms,
            "recorded_at": self.recorded_at.isoformat() if self.recorded_at else None,
        }


class TargetLock(models.Model):
    """
    Exclusive claim of a deployment target by one active run.

    The unique constraints on ``target`` and ``run`` make the database the
    arbiter when two starts race for the same target.
    """

    target = models.OneToOneField(
        "clusters.DeploymentTarget",
        on_delete=models.CASCADE,
        related_name="lock",
    )
    run = models.OneToOneField(
        PipelineRun,
        on_delete=models.CASCADE,
        related_name="target_lock",
    )
    acquired_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["-acquired_at"]

    def __str__(self):
        return f"{self.target} held by {self.run.run_id}"
