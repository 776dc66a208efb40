"""
Error taxonomy for pipeline orchestration.

Drivers raise the adapter errors; the orchestrator is the single place that
decides between retrying a stage and failing the run. Every run-failing error
carries a ``kind`` that is recorded on the run and on the ledger entry, so
operators can tell e.g. "never became healthy" from "healthy but silent".
"""

from __future__ import annotations


class ErrorKind:
    """Stable identifiers recorded as ``error_kind``."""

    TRANSIENT = "transient"
    PERMANENT = "permanent"
    VERIFICATION_TIMEOUT = "verification_timeout"
    TELEMETRY_SILENT = "telemetry_silent"
    INTEGRITY = "integrity"
    RUN_TIMEOUT = "run_timeout"

    CHOICES = [
        (TRANSIENT, "Transient adapter error"),
        (PERMANENT, "Permanent adapter error"),
        (VERIFICATION_TIMEOUT, "Verification timeout"),
        (TELEMETRY_SILENT, "Telemetry silent"),
        (INTEGRITY, "Artifact integrity error"),
        (RUN_TIMEOUT, "Run timeout"),
    ]


class PipelineError(Exception):
    """Base class for errors that end a stage attempt."""

    kind: str = ErrorKind.PERMANENT
    retryable: bool = False

    def __init__(self, message: str, *, stage: str | None = None):
        self.message = message
        self.stage = stage
        super().__init__(message)


class TransientAdapterError(PipelineError):
    """Network/timeout-class failure; the stage is retried with backoff."""

    kind = ErrorKind.TRANSIENT
    retryable = True


class PermanentAdapterError(PipelineError):
    """Validation/rejection-class failure; the run fails immediately."""

    kind = ErrorKind.PERMANENT


class VerificationTimeout(PipelineError):
    """The workload never reported ready for the new digest before the deadline."""

    kind = ErrorKind.VERIFICATION_TIMEOUT


class TelemetrySilent(PipelineError):
    """The workload is ready but emitted no telemetry for the digest in the window."""

    kind = ErrorKind.TELEMETRY_SILENT


class ArtifactIntegrityError(PipelineError):
    """A digest was produced by two different source inputs."""

    kind = ErrorKind.INTEGRITY


class RunTimeoutError(PipelineError):
    """The run exceeded its overall wall-clock ceiling."""

    kind = ErrorKind.RUN_TIMEOUT


class ConflictError(Exception):
    """The deployment target is already locked by another active run."""

    def __init__(self, target_key: str, holder_run_id: str | None = None):
        self.target_key = target_key
        self.holder_run_id = holder_run_id
        detail = f" (held by run {holder_run_id})" if holder_run_id else ""
        super().__init__(f"Target {target_key} is locked by an active run{detail}")


class RunStateError(Exception):
    """An operation is not allowed in the run's current status."""


class LedgerError(Exception):
    """Attempted to modify or delete an append-only ledger entry."""


# Permanent-by-nature exception types raised by buggy or misconfigured drivers.
_PERMANENT_EXCEPTIONS = (ValueError, TypeError, KeyError)


def classify_exception(exc: Exception, stage: str | None = None) -> PipelineError:
    """
    Map an arbitrary exception to a PipelineError.

    Typed pipeline errors pass through. ``OSError`` (which covers socket,
    ``TimeoutError`` and ``urllib.error.URLError``) is transient; value/type/key
    errors are permanent. Anything else is treated as transient so that the
    attempt ceiling bounds it.
    """
    if isinstance(exc, PipelineError):
        if exc.stage is None:
            exc.stage = stage
        return exc
    message = f"{type(exc).__name__}: {exc}"
    if isinstance(exc, OSError):
        return TransientAdapterError(message, stage=stage)
    if isinstance(exc, _PERMANENT_EXCEPTIONS):
        return PermanentAdapterError(message, stage=stage)
    return TransientAdapterError(message, stage=stage)
