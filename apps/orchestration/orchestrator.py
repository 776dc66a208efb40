"""
Pipeline Orchestrator service.

The main entry point for deployment runs. Drives a run through
build → test → publish → deploy → verify for one target.

Key responsibilities:
1. State machine: PENDING → RUNNING → SUCCEEDED | FAILED | ABORTED
2. Target lock: at most one active run per deployment target
3. Run ledger: every attempt is recorded before the run proceeds, so a
   resumed run skips stages that already succeeded
4. Failure policy: transient errors retry with capped, jittered backoff;
   anything else fails the run immediately (no automatic rollback)
5. Observability: correlation IDs on every log record and signals at every
   stage boundary
"""

from __future__ import annotations

import logging
import time
import uuid
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeout
from datetime import timedelta
from typing import Any, Callable

from django.conf import settings
from django.db import transaction
from django.db.models import Q
from django.utils import timezone

from apps.clusters.models import DeploymentTarget
from apps.orchestration import locks
from apps.orchestration.backoff import BackoffPolicy
from apps.orchestration.dtos import ArtifactInfo, RunSnapshot, StageContext, StageResult, Trigger
from apps.orchestration.errors import (
    PermanentAdapterError,
    PipelineError,
    RunStateError,
    RunTimeoutError,
    TransientAdapterError,
    classify_exception,
)
from apps.orchestration.executors import BaseExecutor, default_executors
from apps.orchestration.ledger import RunLedger
from apps.orchestration.models import (
    STAGE_ORDER,
    AttemptStatus,
    PipelineRun,
    PipelineStage,
    RunStatus,
)
from apps.orchestration.signals import (
    SignalTags,
    StageTimer,
    emit_pipeline_completed,
    emit_pipeline_started,
    emit_stage_failed,
    emit_stage_retrying,
    emit_stage_skipped,
    emit_stage_succeeded,
)
from apps.registry.models import ArtifactReference
from apps.verification.services import has_checkpoint, latest_checkpoint

logger = logging.getLogger(__name__)


class RunCancelled(Exception):
    """Raised at a stage boundary when cancellation was requested."""


class RunClaimLost(Exception):
    """Raised when the run went terminal or another stage loop took it over."""


def dispatch_with_celery(run_id: str) -> None:
    from apps.orchestration.tasks import execute_run_task

    execute_run_task.delay(run_id)


class PipelineOrchestrator:
    """
    Main orchestrator service for deployment runs.

    Usage:
        orchestrator = PipelineOrchestrator()
        run_id = orchestrator.start({"source_ref": "3f2c...", "target": "prod/web/api"})
        snapshot = orchestrator.status(run_id)
    """

    executors: dict[str, BaseExecutor]

    def __init__(
        self,
        executors: dict[str, BaseExecutor] | None = None,
        backoff: BackoffPolicy | None = None,
        stage_timeouts: dict[str, float] | None = None,
        run_timeout: float | None = None,
        dispatcher: Callable[[str], None] | None = None,
        ledger: RunLedger | None = None,
        sleep: Callable[[float], None] | None = None,
    ):
        """
        Initialize the orchestrator.

        Args:
            executors: Stage executors by stage (default: driver-backed executors).
            backoff: Retry policy (default from settings).
            stage_timeouts: Seconds per stage (default from settings).
            run_timeout: Wall-clock ceiling per run in seconds (default from settings).
            dispatcher: Called with the run_id after start commits
                (default: queue ``execute_run_task``).
            sleep: Backoff sleep (default: ``time.sleep``).
        """
        self.executors = default_executors()
        self.executors.update(executors or {})
        self.backoff = backoff or BackoffPolicy.from_settings()
        self.stage_timeouts = dict(settings.ORCHESTRATION_STAGE_TIMEOUTS)
        self.stage_timeouts.update(stage_timeouts or {})
        self.run_timeout = (
            run_timeout if run_timeout is not None else float(settings.ORCHESTRATION_RUN_TIMEOUT_SECONDS)
        )
        self.dispatcher = dispatcher or dispatch_with_celery
        self.ledger = ledger or RunLedger()
        self._sleep = sleep
        self.claim_grace = float(settings.ORCHESTRATION_CLAIM_GRACE_SECONDS)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def start(self, trigger: Trigger | dict[str, Any]) -> str:
        """
        Create a run for the trigger, lock its target and queue execution.

        Raises:
            ValueError: The trigger is invalid or the target is inactive.
            DeploymentTarget.DoesNotExist: Unknown target.
            ConflictError: The target is held by another active run. No run
                is recorded in that case.
        """
        if not isinstance(trigger, Trigger):
            trigger = Trigger.from_dict(trigger)

        trace_id = trigger.trace_id or str(uuid.uuid4())
        run_id = str(uuid.uuid4())

        with locks.exclusive():
            target = DeploymentTarget.objects.get_by_key(trigger.target_key)
            if not target.is_active:
                raise ValueError(f"Target {target.key} is inactive")
            with transaction.atomic():
                run = PipelineRun.objects.create(
                    trace_id=trace_id,
                    run_id=run_id,
                    target=target,
                    source_ref=trigger.source_ref,
                    source=trigger.source,
                    trigger_payload=trigger.payload,
                    status=RunStatus.PENDING,
                )
                locks.acquire(target, run)
                run.mark_running(self.run_timeout)

        logger.info(
            f"Run started: run_id={run_id}, target={target.key}, source_ref={trigger.source_ref}",
            extra={"trace_id": trace_id, "run_id": run_id, "source": trigger.source},
        )
        emit_pipeline_started(SignalTags.for_run(run))

        transaction.on_commit(lambda: self.dispatcher(run_id))
        return run_id

    def status(self, run_id: str) -> RunSnapshot:
        """
        Read-only view of a run, composed from the run row and its ledger.

        Raises:
            PipelineRun.DoesNotExist: Unknown run.
        """
        run = PipelineRun.objects.select_related("target").get(run_id=run_id)
        return self._snapshot(run)

    def list_runs(
        self,
        status: str | None = None,
        target: str | None = None,
        limit: int = 50,
    ) -> list[RunSnapshot]:
        """Most recent runs (without ledger entries), optionally filtered."""
        runs = PipelineRun.objects.select_related("target").order_by("-created_at")
        if status:
            runs = runs.filter(status=status)
        if target:
            cluster, namespace, workload = DeploymentTarget.parse_key(target)
            runs = runs.filter(
                target__cluster=cluster,
                target__namespace=namespace,
                target__workload=workload,
            )
        return [self._snapshot(run, include_ledger=False) for run in runs[:limit]]

    def cancel(self, run_id: str) -> RunSnapshot:
        """
        Request cancellation of a run.

        A running run is aborted at its next stage boundary; a pending run is
        aborted immediately.

        Raises:
            PipelineRun.DoesNotExist: Unknown run.
            RunStateError: The run already reached a terminal status.
        """
        with transaction.atomic():
            run = PipelineRun.objects.select_for_update().select_related("target").get(run_id=run_id)
            if run.is_terminal:
                raise RunStateError(f"Run {run_id} is already {run.status}")
            if run.status == RunStatus.PENDING:
                run.mark_aborted("Cancelled before execution started")
                locks.release(run)
            else:
                run.request_cancel()

        logger.info(
            f"Cancellation requested for run {run_id}",
            extra={"trace_id": run.trace_id, "run_id": run_id},
        )
        if run.is_terminal:
            emit_pipeline_completed(SignalTags.for_run(run), run.total_duration_ms, run.status)
        return self._snapshot(run)

    def execute_run(self, run_id: str) -> RunSnapshot:
        """
        Drive a running run through its remaining stages.

        Safe to call again after a crash: stages with a succeeded ledger entry
        are skipped and their artifact is recovered from the ledger.

        Only one stage loop drives a run at a time. The loop claims the run
        first and renews the claim at every boundary; a call that finds the
        run held by another live loop returns its snapshot without executing,
        and a loop whose claim was taken over stops without touching the run.
        """
        run = PipelineRun.objects.select_related("target").get(run_id=run_id)
        log_extra = {"trace_id": run.trace_id, "run_id": run_id}
        if run.is_terminal:
            logger.info(f"Run {run_id} is already {run.status}; nothing to execute", extra=log_extra)
            return self._snapshot(run)
        if run.status != RunStatus.RUNNING:
            raise RunStateError(f"Run {run_id} is {run.status}, expected running")
        if not run.claim(uuid.uuid4().hex, self.claim_grace):
            run.refresh_from_db()
            logger.info(
                f"Run {run_id} is {run.status} and held by stage loop {run.claimed_by}; not executing",
                extra=log_extra,
            )
            return self._snapshot(run)

        artifact = self.ledger.latest_artifact(run)
        try:
            for stage in STAGE_ORDER:
                self._check_boundary(run, stage)
                entry = self.ledger.succeeded_entry(run, stage)
                if entry is not None:
                    if entry.artifact_digest:
                        artifact = ArtifactInfo(
                            digest=entry.artifact_digest,
                            repository=entry.artifact_repository,
                            tag=entry.artifact_tag,
                        )
                    emit_stage_skipped(
                        SignalTags.for_run(run, stage, entry.attempt),
                        reason=f"succeeded in attempt {entry.attempt}",
                    )
                    logger.info(
                        f"Skipping {stage}: already succeeded for run {run_id}",
                        extra={"trace_id": run.trace_id, "run_id": run_id},
                    )
                    continue
                artifact = self._run_stage(run, stage, artifact)

            self._check_boundary(run, None)
            self._complete(run)
        except RunCancelled:
            self._finish(run, RunStatus.ABORTED)
        except PipelineError as e:
            self._finish(run, RunStatus.FAILED, error=e)
        except RunClaimLost:
            run.refresh_from_db()
            logger.warning(
                f"Run {run_id} is {run.status} and held by stage loop {run.claimed_by or 'none'}; stopping",
                extra=log_extra,
            )

        return self._snapshot(run)

    def resume_interrupted(
        self,
        run_ids: list[str] | None = None,
        older_than: timedelta | None = None,
    ) -> list[str]:
        """
        Re-dispatch runs left ``running`` by a crashed worker.

        Runs still held by a live stage loop are never dispatched.

        Args:
            run_ids: Restrict to these runs.
            older_than: Only runs without progress for at least this long.

        Returns:
            The run IDs that were dispatched.
        """
        now = timezone.now()
        runs = PipelineRun.objects.filter(status=RunStatus.RUNNING).filter(
            Q(claim_expires_at__isnull=True) | Q(claim_expires_at__lt=now)
        )
        if run_ids:
            runs = runs.filter(run_id__in=run_ids)
        if older_than is not None:
            runs = runs.filter(updated_at__lte=now - older_than)

        dispatched = list(runs.order_by("created_at").values_list("run_id", flat=True))
        for run_id in dispatched:
            logger.info(f"Resuming interrupted run {run_id}", extra={"run_id": run_id})
            self.dispatcher(run_id)
        return dispatched

    # ------------------------------------------------------------------
    # Stage execution
    # ------------------------------------------------------------------

    def _run_stage(self, run: PipelineRun, stage: str, artifact: ArtifactInfo | None) -> ArtifactInfo | None:
        """Run one stage to success, retrying transient failures."""
        executor = self.executors[stage]
        config = run.target.stage_config(stage)
        run.enter_stage(stage)

        while True:
            attempt = self.ledger.next_attempt_number(run, stage)
            if self.backoff.exhausted(attempt - 1):
                raise TransientAdapterError(
                    f"{stage} exhausted {self.backoff.max_attempts} attempts", stage=stage
                )
            self._check_boundary(run, stage)
            timeout = self._stage_timeout(run, stage, config)
            self._hold(run, timeout)
            ctx = self._context(run, stage, attempt, config, artifact, timeout)
            tags = SignalTags.for_run(run, stage, attempt)
            log_extra = {"trace_id": run.trace_id, "run_id": run.run_id, "stage": stage, "attempt": attempt}

            self.ledger.append(run, stage, attempt, AttemptStatus.RUNNING, artifact=artifact)
            logger.info(f"Stage {stage} attempt {attempt} started", extra=log_extra)

            with StageTimer(tags) as timer:
                try:
                    result = self._call_with_timeout(executor, ctx, timeout)
                    executor.record(run, ctx, result)
                    produced = executor.artifact(ctx, result)
                except Exception as exc:
                    error = classify_exception(exc, stage)
                    if not isinstance(exc, PipelineError):
                        logger.exception(f"Unexpected error in stage {stage}: {exc}", extra=log_extra)
                    failed_ms = timer.elapsed_ms()
                else:
                    error = None

            # The outcome belongs to the ledger only while this loop still owns the run.
            self._hold(run, 0)
            if error is None:
                self.ledger.append(
                    run,
                    stage,
                    attempt,
                    AttemptStatus.SUCCEEDED,
                    artifact=produced,
                    output=result.to_dict(),
                    duration_ms=timer.duration_ms,
                )
                emit_stage_succeeded(tags, timer.duration_ms)
                logger.info(f"Stage {stage} attempt {attempt} succeeded", extra=log_extra)
                if produced is not None and produced.digest != run.artifact_digest:
                    run.set_artifact(produced.digest)
                return produced

            self.ledger.append(
                run,
                stage,
                attempt,
                AttemptStatus.FAILED,
                error_kind=error.kind,
                error_message=error.message,
                retryable=error.retryable,
                artifact=artifact,
                duration_ms=failed_ms,
            )
            emit_stage_failed(tags, error.kind, error.message, error.retryable, failed_ms)
            logger.warning(
                f"Stage {stage} attempt {attempt} failed ({error.kind}): {error.message}",
                extra=log_extra,
            )

            if not error.retryable:
                raise error
            if self.backoff.exhausted(attempt):
                raise TransientAdapterError(
                    f"{stage} exhausted {attempt} attempts; last error: {error.message}",
                    stage=stage,
                )

            delay = self.backoff.delay(attempt)
            remaining = run.remaining_seconds()
            if remaining is not None and remaining <= delay:
                raise RunTimeoutError(
                    f"Run deadline leaves {max(remaining, 0):.1f}s, retry of {stage} needs {delay:.1f}s",
                    stage=stage,
                )
            self._check_boundary(run, stage, hold_for=delay)
            emit_stage_retrying(tags, delay)
            logger.info(f"Retrying {stage} in {delay:.1f}s", extra=log_extra)
            self._backoff_sleep(delay)

    def _call_with_timeout(self, executor: BaseExecutor, ctx: StageContext, timeout: float) -> StageResult:
        """Run the executor on a worker thread; overrunning ``timeout`` is transient."""
        pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"stage-{ctx.stage}")
        try:
            future = pool.submit(executor.execute, ctx)
            try:
                return future.result(timeout=timeout)
            except FuturesTimeout:
                future.cancel()
                raise TransientAdapterError(f"{ctx.stage} exceeded its {timeout:.0f}s timeout", stage=ctx.stage)
        finally:
            pool.shutdown(wait=False)

    def _stage_timeout(self, run: PipelineRun, stage: str, config: dict[str, Any]) -> float:
        timeout = float(config.get("timeout") or self.stage_timeouts.get(stage, 300.0))
        remaining = run.remaining_seconds()
        if remaining is not None:
            if remaining <= 0:
                raise RunTimeoutError(f"Run exceeded its deadline before {stage}", stage=stage)
            timeout = min(timeout, remaining)
        return timeout

    def _context(
        self,
        run: PipelineRun,
        stage: str,
        attempt: int,
        config: dict[str, Any],
        artifact: ArtifactInfo | None,
        timeout: float,
    ) -> StageContext:
        target = run.target
        return StageContext(
            trace_id=run.trace_id,
            run_id=run.run_id,
            stage=stage,
            source_ref=run.source_ref,
            cluster=target.cluster,
            namespace=target.namespace,
            workload=target.workload,
            repository=target.repository,
            attempt=attempt,
            source=run.source,
            config=config,
            artifact=artifact,
            timeout=timeout,
            trigger_payload=run.trigger_payload or {},
        )

    def _backoff_sleep(self, seconds: float) -> None:
        if self._sleep is not None:
            self._sleep(seconds)
        else:
            time.sleep(seconds)

    # ------------------------------------------------------------------
    # Boundaries and terminal transitions
    # ------------------------------------------------------------------

    def _hold(self, run: PipelineRun, seconds: float) -> None:
        """Renew this loop's claim for ``seconds`` plus the grace period."""
        if not run.claim(run.claimed_by, seconds + self.claim_grace):
            raise RunClaimLost()

    def _check_boundary(self, run: PipelineRun, stage: str | None, hold_for: float = 0) -> None:
        """Honour ownership, cancellation and the run deadline between stages and attempts."""
        self._hold(run, hold_for)
        run.cancel_requested = (
            PipelineRun.objects.filter(pk=run.pk).values_list("cancel_requested", flat=True).first()
            or False
        )
        if run.cancel_requested:
            raise RunCancelled()
        remaining = run.remaining_seconds()
        if remaining is not None and remaining <= 0:
            where = f"before {stage}" if stage else "before completion"
            raise RunTimeoutError(
                f"Run exceeded its {self.run_timeout:.0f}s deadline {where}",
                stage=stage or run.current_stage,
            )

    def _complete(self, run: PipelineRun) -> None:
        if not has_checkpoint(run.target, run.artifact_digest):
            raise PermanentAdapterError(
                "Verify succeeded without a telemetry checkpoint", stage=PipelineStage.VERIFY
            )
        self._finish(run, RunStatus.SUCCEEDED)

    def _finish(self, run: PipelineRun, status: str, error: PipelineError | None = None) -> None:
        """Mark the run terminal and release its target lock atomically, if this loop still owns it."""
        log_extra = {"trace_id": run.trace_id, "run_id": run.run_id}
        token = run.claimed_by
        try:
            with transaction.atomic():
                if status == RunStatus.SUCCEEDED:
                    run.mark_succeeded(claimed_by=token)
                elif status == RunStatus.ABORTED:
                    run.mark_aborted(claimed_by=token)
                else:
                    run.mark_failed(error.kind, error.message, error.stage or run.current_stage, claimed_by=token)
                locks.release(run)
        except RunStateError as e:
            logger.warning(f"Run {run.run_id} not marked {status}: {e}", extra=log_extra)
            return

        if status == RunStatus.FAILED:
            logger.error(
                f"Run {run.run_id} failed at {run.failed_stage} ({run.error_kind}): {run.error_message}",
                extra=log_extra,
            )
        else:
            logger.info(f"Run {run.run_id} {status}", extra=log_extra)
        emit_pipeline_completed(SignalTags.for_run(run, run.current_stage or ""), run.total_duration_ms, status)

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------

    def _snapshot(self, run: PipelineRun, include_ledger: bool = True) -> RunSnapshot:
        artifact = None
        checkpoint = None
        attempts: list[dict[str, Any]] = []
        stages_completed: list[str] = []

        if include_ledger:
            attempts = [entry.to_dict() for entry in self.ledger.entries(run)]
            stages_completed = self.ledger.completed_stages(run)
            if run.artifact_digest:
                reference = (
                    ArtifactReference.objects.select_related("run").filter(digest=run.artifact_digest).first()
                )
                if reference is not None:
                    artifact = reference.to_dict()
                else:
                    recovered = self.ledger.latest_artifact(run)
                    artifact = recovered.to_dict() if recovered else {"digest": run.artifact_digest}
                found = latest_checkpoint(run.target, run.artifact_digest)
                checkpoint = found.to_dict() if found else None

        return RunSnapshot(
            run_id=run.run_id,
            trace_id=run.trace_id,
            status=run.status,
            target=run.target.key,
            source_ref=run.source_ref,
            source=run.source,
            current_stage=run.current_stage,
            failed_stage=run.failed_stage,
            error_kind=run.error_kind or None,
            error_message=run.error_message,
            cancel_requested=run.cancel_requested,
            exit_code=run.exit_code,
            artifact=artifact,
            checkpoint=checkpoint,
            stages_completed=stages_completed,
            attempts=attempts,
            created_at=run.created_at,
            started_at=run.started_at,
            completed_at=run.completed_at,
            deadline_at=run.deadline_at,
            total_duration_ms=run.total_duration_ms,
        )
