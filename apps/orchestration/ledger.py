"""
Run ledger: the durable, append-only history of stage attempts.

The orchestrator consults the ledger before every stage, so a run that is
resumed after a crash never repeats work that already succeeded.
"""

from __future__ import annotations

import logging
from typing import Any

from django.db import transaction
from django.db.models import Max
from django.utils import timezone

from apps.orchestration.dtos import ArtifactInfo
from apps.orchestration.models import AttemptStatus, PipelineRun, StageAttempt

logger = logging.getLogger(__name__)


class RunLedger:
    """Append and query ledger entries of pipeline runs."""

    def append(
        self,
        run: PipelineRun,
        stage: str,
        attempt: int,
        status: str,
        *,
        error_kind: str = "",
        error_message: str = "",
        retryable: bool = False,
        artifact: ArtifactInfo | None = None,
        output: dict[str, Any] | None = None,
        duration_ms: float = 0.0,
    ) -> StageAttempt:
        """
        Durably record one attempt state.

        The row is committed (or part of the caller's transaction) before this
        returns. Sequence numbers are allocated under the run row lock.
        """
        with transaction.atomic():
            # Locks the run row until commit and marks progress for stale-run detection.
            PipelineRun.objects.filter(pk=run.pk).update(updated_at=timezone.now())
            last = StageAttempt.objects.filter(run=run).aggregate(last=Max("sequence"))["last"]
            entry = StageAttempt.objects.create(
                run=run,
                sequence=(last or 0) + 1,
                stage=stage,
                attempt=attempt,
                status=status,
                error_kind=error_kind,
                error_message=error_message,
                retryable=retryable,
                artifact_digest=artifact.digest if artifact else "",
                artifact_tag=artifact.tag if artifact else "",
                artifact_repository=artifact.repository if artifact else "",
                output_snapshot=output or {},
                duration_ms=duration_ms,
            )
        logger.debug(f"Ledger {run.run_id}: {entry}")
        return entry

    def read(self, run_id: str) -> list[StageAttempt]:
        """All entries of a run, in ledger order."""
        return list(StageAttempt.objects.filter(run__run_id=run_id).order_by("sequence"))

    def entries(self, run: PipelineRun) -> list[StageAttempt]:
        return list(StageAttempt.objects.filter(run=run).order_by("sequence"))

    def attempts(self, run: PipelineRun) -> list[StageAttempt]:
        """The latest entry of every attempt (its logical status), in order."""
        latest: dict[tuple[str, int], StageAttempt] = {}
        for entry in self.entries(run):
            latest[(entry.stage, entry.attempt)] = entry
        return sorted(latest.values(), key=lambda e: e.sequence)

    def succeeded_entry(self, run: PipelineRun, stage: str) -> StageAttempt | None:
        return (
            StageAttempt.objects.filter(run=run, stage=stage, status=AttemptStatus.SUCCEEDED)
            .order_by("-sequence")
            .first()
        )

    def has_succeeded(self, run: PipelineRun, stage: str) -> bool:
        return StageAttempt.objects.filter(run=run, stage=stage, status=AttemptStatus.SUCCEEDED).exists()

    def next_attempt_number(self, run: PipelineRun, stage: str) -> int:
        """Attempt numbers continue across resumes."""
        last = StageAttempt.objects.filter(run=run, stage=stage).aggregate(last=Max("attempt"))["last"]
        return (last or 0) + 1

    def latest_artifact(self, run: PipelineRun) -> ArtifactInfo | None:
        """The most recent artifact recorded by a succeeded entry."""
        entry = (
            StageAttempt.objects.filter(run=run, status=AttemptStatus.SUCCEEDED)
            .exclude(artifact_digest="")
            .order_by("-sequence")
            .first()
        )
        if entry is None:
            return None
        return ArtifactInfo(
            digest=entry.artifact_digest,
            repository=entry.artifact_repository,
            tag=entry.artifact_tag,
        )

    def completed_stages(self, run: PipelineRun) -> list[str]:
        stages = StageAttempt.objects.filter(run=run, status=AttemptStatus.SUCCEEDED).order_by("sequence")
        return list(dict.fromkeys(stages.values_list("stage", flat=True)))
