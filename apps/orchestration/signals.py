"""
Run and stage lifecycle signals.

Every boundary of a run (start, stage attempt, retry, skip, completion) emits
a named signal carrying the run's correlation tags. Where the signal goes is
decided by ``ORCHESTRATION_METRICS_BACKEND``:

- ``logging`` (default): one structured log record per signal
- ``statsd``: counters, gauges and timers named
  ``<prefix>.<signal>[.<stage>][.<source>]``

Signal names:
    pipeline.started, pipeline.completed, pipeline.duration
    pipeline.stage.started, pipeline.stage.succeeded, pipeline.stage.failed
    pipeline.stage.retrying, pipeline.stage.skipped, pipeline.stage.duration
    pipeline.stage.retry_count, pipeline.stage.failure_count
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, field
from typing import Any

import statsd
from django.conf import settings

logger = logging.getLogger("apps.orchestration.signals")


@dataclass
class SignalTags:
    """Correlation tags attached to every signal of a run."""

    trace_id: str
    run_id: str
    target: str
    stage: str = ""
    source_ref: str = ""
    source: str = "api"
    attempt: int = 1
    extra: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def for_run(cls, run, stage: str = "", attempt: int = 1) -> "SignalTags":
        return cls(
            trace_id=run.trace_id,
            run_id=run.run_id,
            target=run.target.key,
            stage=stage,
            source_ref=run.source_ref,
            source=run.source,
            attempt=attempt,
        )

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        return {**{k: v for k, v in data.items() if k != "extra"}, **self.extra}


class MonitoringBackend(ABC):
    """Destination for signals."""

    @abstractmethod
    def emit(
        self,
        signal_name: str,
        tags: SignalTags,
        value: float | None = None,
        extra: dict[str, Any] | None = None,
    ) -> None:
        ...


class LoggingBackend(MonitoringBackend):
    def emit(self, signal_name, tags, value=None, extra=None):
        payload = {"signal": signal_name, "value": value, **tags.to_dict(), **(extra or {})}
        logger.info(
            f"[SIGNAL] {signal_name} {tags.target} {tags.stage}".rstrip(),
            extra={"signal_data": payload, "trace_id": tags.trace_id, "run_id": tags.run_id},
        )


class StatsdBackend(MonitoringBackend):
    """
    Maps signals onto statsd metric types.

    ``*.duration`` signals are timers, ``*_count`` signals are counters
    incremented by their value, other valued signals are gauges and signals
    without a value count occurrences.
    """

    def __init__(self, host: str = "localhost", port: int = 8125, prefix: str = "pipeline"):
        self.host = host
        self.port = port
        self.prefix = prefix
        self._client: statsd.StatsClient | None = None

    @property
    def client(self) -> statsd.StatsClient:
        if self._client is None:
            self._client = statsd.StatsClient(self.host, self.port, prefix=self.prefix)
        return self._client

    @staticmethod
    def metric_name(signal_name: str, tags: SignalTags) -> str:
        return ".".join(part for part in (signal_name, tags.stage, tags.source) if part)

    def emit(self, signal_name, tags, value=None, extra=None):
        name = self.metric_name(signal_name, tags)
        if value is None:
            self.client.incr(name)
        elif signal_name.endswith(".duration"):
            self.client.timing(name, value)
        elif signal_name.endswith("_count"):
            self.client.incr(name, int(value))
        else:
            self.client.gauge(name, value)


def get_monitoring_backend() -> MonitoringBackend:
    """Build the backend named by ``ORCHESTRATION_METRICS_BACKEND``."""
    if getattr(settings, "ORCHESTRATION_METRICS_BACKEND", "logging") == "statsd":
        return StatsdBackend(
            host=getattr(settings, "STATSD_HOST", "localhost"),
            port=getattr(settings, "STATSD_PORT", 8125),
            prefix=getattr(settings, "STATSD_PREFIX", "pipeline"),
        )
    return LoggingBackend()


_backend: MonitoringBackend | None = None


def _emit(signal_name: str, tags: SignalTags, value: float | None = None, **extra) -> None:
    global _backend
    if _backend is None:
        _backend = get_monitoring_backend()
    _backend.emit(signal_name, tags, value=value, extra=extra or None)


def reset_backend() -> None:
    """Forget the cached backend so the next signal re-reads settings."""
    global _backend
    _backend = None


def emit_pipeline_started(tags: SignalTags) -> None:
    _emit("pipeline.started", tags)


def emit_pipeline_completed(tags: SignalTags, duration_ms: float, status: str) -> None:
    _emit("pipeline.completed", tags, final_status=status, duration_ms=duration_ms)
    _emit("pipeline.duration", tags, value=duration_ms)


def emit_stage_started(tags: SignalTags) -> None:
    _emit("pipeline.stage.started", tags)


def emit_stage_succeeded(tags: SignalTags, duration_ms: float) -> None:
    _emit("pipeline.stage.succeeded", tags, duration_ms=duration_ms)
    _emit("pipeline.stage.duration", tags, value=duration_ms)


def emit_stage_failed(
    tags: SignalTags,
    error_kind: str,
    error_message: str,
    retryable: bool,
    duration_ms: float,
) -> None:
    """A stage attempt failed; ``retryable`` tells whether another attempt follows."""
    _emit(
        "pipeline.stage.failed",
        tags,
        error_kind=error_kind,
        error_message=error_message,
        retryable=retryable,
        duration_ms=duration_ms,
    )
    _emit("pipeline.stage.duration", tags, value=duration_ms)
    _emit("pipeline.stage.failure_count", tags, value=1)


def emit_stage_retrying(tags: SignalTags, delay_seconds: float) -> None:
    _emit("pipeline.stage.retrying", tags, delay_seconds=delay_seconds)
    _emit("pipeline.stage.retry_count", tags, value=1)


def emit_stage_skipped(tags: SignalTags, reason: str) -> None:
    """The ledger already holds a success for this stage."""
    _emit("pipeline.stage.skipped", tags, reason=reason)


class StageTimer:
    """
    Times one stage attempt and emits ``pipeline.stage.started`` on entry.

    ``duration_ms`` is set on exit; the outcome signal is left to the caller,
    which knows whether the attempt succeeded.
    """

    def __init__(self, tags: SignalTags):
        self.tags = tags
        self._started = 0.0
        self.duration_ms = 0.0

    def elapsed_ms(self) -> float:
        return (time.monotonic() - self._started) * 1000

    def __enter__(self) -> "StageTimer":
        self._started = time.monotonic()
        emit_stage_started(self.tags)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.duration_ms = self.elapsed_ms()
        return False
