"""
Health and telemetry verification of a deployed digest.

Verification runs in two phases:

1. Readiness: poll the readiness probe until the workload reports ready for
   the new digest. Never ready before the deadline -> VerificationTimeout.
2. Telemetry: poll the telemetry source until at least one sample labelled
   with the digest is seen. Nothing within the window -> TelemetrySilent.

Probe errors while polling are logged and count as "not yet".
"""

from __future__ import annotations

import logging
import time
from datetime import datetime, timedelta
from typing import Any, Callable

from django.conf import settings
from django.db import IntegrityError, transaction
from django.utils import timezone

from apps.orchestration.dtos import StageContext, VerifyResult
from apps.orchestration.errors import PipelineError, TelemetrySilent, VerificationTimeout
from apps.verification.models import TelemetryCheckpoint
from apps.verification.probes import (
    BaseReadinessProbe,
    BaseTelemetrySource,
    ProbeResult,
    TelemetryReading,
    get_readiness_probe,
    get_telemetry_source,
)

logger = logging.getLogger(__name__)


class TelemetryVerifier:
    """
    Confirms that a deployed digest is healthy and observable.

    ``now`` and ``sleep`` are injectable so the polling loop can be driven by a
    fake clock in tests.
    """

    def __init__(
        self,
        readiness_probe: BaseReadinessProbe | None = None,
        telemetry_source: BaseTelemetrySource | None = None,
        readiness_config: dict[str, Any] | None = None,
        telemetry_config: dict[str, Any] | None = None,
        poll_interval: float | None = None,
        readiness_timeout: float | None = None,
        telemetry_window: float | None = None,
        now: Callable[[], datetime] = timezone.now,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.readiness_probe = readiness_probe or get_readiness_probe("local")
        self.telemetry_source = telemetry_source or get_telemetry_source("local")
        self.readiness_config = readiness_config or {}
        self.telemetry_config = telemetry_config or {}
        self.poll_interval = float(
            poll_interval if poll_interval is not None else settings.VERIFICATION_POLL_INTERVAL_SECONDS
        )
        self.readiness_timeout = float(
            readiness_timeout
            if readiness_timeout is not None
            else settings.VERIFICATION_READINESS_TIMEOUT_SECONDS
        )
        self.telemetry_window = float(
            telemetry_window
            if telemetry_window is not None
            else settings.VERIFICATION_TELEMETRY_WINDOW_SECONDS
        )
        self.now = now
        self.sleep = sleep

    @classmethod
    def from_config(cls, config: dict[str, Any], **kwargs) -> "TelemetryVerifier":
        """
        Build a verifier from a target's ``verify`` stage configuration::

            {
                "readiness": {"driver": "kubectl"},
                "telemetry": {"driver": "prometheus", "url": "http://prometheus:9090"},
                "poll_interval": 5,
                "readiness_timeout": 120,
                "telemetry_window": 60
            }
        """
        readiness_config = dict(config.get("readiness") or {})
        telemetry_config = dict(config.get("telemetry") or {})
        readiness_probe = get_readiness_probe(readiness_config.pop("driver", "local"))
        telemetry_source = get_telemetry_source(telemetry_config.pop("driver", "local"))
        readiness_probe.check_config(readiness_config)
        telemetry_source.check_config(telemetry_config)
        return cls(
            readiness_probe=readiness_probe,
            telemetry_source=telemetry_source,
            readiness_config=readiness_config,
            telemetry_config=telemetry_config,
            poll_interval=config.get("poll_interval"),
            readiness_timeout=config.get("readiness_timeout"),
            telemetry_window=config.get("telemetry_window"),
            **kwargs,
        )

    def verify(self, ctx: StageContext, deadline: datetime | None = None) -> VerifyResult:
        """
        Verify ``ctx.artifact`` on the target described by ``ctx``.

        Args:
            ctx: Stage context carrying the target identity and the artifact.
            deadline: Hard limit for both phases (e.g. the stage timeout).

        Raises:
            VerificationTimeout: Never ready for the digest before the deadline.
            TelemetrySilent: Ready, but no telemetry for the digest in the window.
        """
        digest = ctx.artifact.digest if ctx.artifact else ""
        start = time.perf_counter()

        readiness_until = self.now() + timedelta(seconds=self.readiness_timeout)
        if deadline is not None:
            readiness_until = min(readiness_until, deadline)
        probe_result = self._wait_ready(ctx, readiness_until)
        ready_at = self.now()
        logger.info(
            f"{ctx.target_key} ready for {digest}",
            extra={"trace_id": ctx.trace_id, "run_id": ctx.run_id},
        )

        telemetry_until = ready_at + timedelta(seconds=self.telemetry_window)
        if deadline is not None:
            telemetry_until = min(telemetry_until, deadline)
        reading = self._wait_telemetry(ctx, telemetry_until)
        observed_at = self.now()
        logger.info(
            f"{ctx.target_key} emitted {reading.samples:g} sample(s) for {digest}",
            extra={"trace_id": ctx.trace_id, "run_id": ctx.run_id},
        )

        return VerifyResult(
            digest=digest,
            ready_at=ready_at,
            observed_at=observed_at,
            sample_count=reading.samples,
            readiness=probe_result.detail,
            telemetry=reading.detail,
            duration_ms=(time.perf_counter() - start) * 1000,
        )

    def _wait_ready(self, ctx: StageContext, until: datetime) -> ProbeResult:
        polls = 0
        last_detail: dict[str, Any] = {}
        while True:
            polls += 1
            try:
                result = self.readiness_probe.check(ctx, self.readiness_config)
            except (PipelineError, OSError) as e:
                logger.warning(f"Readiness probe error for {ctx.target_key} (poll {polls}): {e}")
            else:
                if result.ready:
                    return result
                last_detail = result.detail
            if not self._pause_until(until):
                raise VerificationTimeout(
                    f"{ctx.target_key} did not become ready for {ctx.artifact.digest} "
                    f"after {polls} poll(s); last state: {last_detail or 'unavailable'}",
                    stage=ctx.stage,
                )

    def _wait_telemetry(self, ctx: StageContext, until: datetime) -> TelemetryReading:
        polls = 0
        while True:
            polls += 1
            try:
                reading = self.telemetry_source.read(ctx, self.telemetry_config, self.telemetry_window)
            except (PipelineError, OSError) as e:
                logger.warning(f"Telemetry source error for {ctx.target_key} (poll {polls}): {e}")
            else:
                if reading.observed:
                    return reading
            if not self._pause_until(until):
                raise TelemetrySilent(
                    f"{ctx.target_key} is ready but emitted no telemetry for "
                    f"{ctx.artifact.digest} within {self.telemetry_window:g}s ({polls} poll(s))",
                    stage=ctx.stage,
                )

    def _pause_until(self, until: datetime) -> bool:
        """Sleep one poll interval (bounded by ``until``); False once it has passed."""
        remaining = (until - self.now()).total_seconds()
        if remaining <= 0:
            return False
        self.sleep(min(self.poll_interval, remaining))
        return True


def record_checkpoint(*, run, target, result: VerifyResult) -> TelemetryCheckpoint:
    """Persist the checkpoint for a verified digest (idempotent per run)."""
    existing = TelemetryCheckpoint.objects.filter(run=run, target=target, digest=result.digest).first()
    if existing is not None:
        return existing
    try:
        with transaction.atomic():
            checkpoint = TelemetryCheckpoint.objects.create(
                run=run,
                target=target,
                digest=result.digest,
                ready_at=result.ready_at,
                observed_at=result.observed_at,
                sample_count=result.sample_count,
                details={"readiness": result.readiness, "telemetry": result.telemetry},
            )
    except IntegrityError:
        return TelemetryCheckpoint.objects.get(run=run, target=target, digest=result.digest)
    logger.info(f"Recorded telemetry checkpoint {checkpoint}")
    return checkpoint


def has_checkpoint(target, digest: str) -> bool:
    return bool(digest) and TelemetryCheckpoint.objects.filter(target=target, digest=digest).exists()


def latest_checkpoint(target, digest: str) -> TelemetryCheckpoint | None:
    if not digest:
        return None
    return TelemetryCheckpoint.objects.filter(target=target, digest=digest).select_related("run").first()
