"""Celery tasks for pipeline orchestration.

These tasks wrap the PipelineOrchestrator for async execution via Celery.
A run is executed by exactly one task at a time; a worker crash leaves the run
``running`` and ``resume_interrupted_runs_task`` picks it up again.
"""

from __future__ import annotations

from datetime import timedelta
from typing import Any

from celery import shared_task
from django.conf import settings


@shared_task(bind=True, acks_late=True)
def execute_run_task(self, run_id: str) -> dict[str, Any]:
    """
    Celery task to execute the stages of a started run.

    Args:
        run_id: Run to execute.

    Returns:
        RunSnapshot as dict.
    """
    from apps.orchestration.orchestrator import PipelineOrchestrator

    orchestrator = PipelineOrchestrator()
    return orchestrator.execute_run(run_id).to_dict()


@shared_task(bind=True)
def resume_interrupted_runs_task(self, older_than_seconds: float | None = None) -> dict[str, Any]:
    """
    Celery task (suitable for beat) that re-dispatches orphaned runs.

    Args:
        older_than_seconds: Minimum time without ledger progress
            (default: ORCHESTRATION_RESUME_STALE_SECONDS).

    Returns:
        The resumed run IDs.
    """
    from apps.orchestration.orchestrator import PipelineOrchestrator

    if older_than_seconds is None:
        older_than_seconds = settings.ORCHESTRATION_RESUME_STALE_SECONDS

    orchestrator = PipelineOrchestrator()
    resumed = orchestrator.resume_interrupted(older_than=timedelta(seconds=older_than_seconds))
    return {"resumed": resumed, "count": len(resumed)}
