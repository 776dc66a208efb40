"""Tests for the telemetry verifier and checkpoint persistence."""

from datetime import datetime, timedelta, timezone as dt_timezone

import pytest
from django.test import override_settings

from apps.clusters.models import DeploymentTarget
from apps.orchestration.dtos import ArtifactInfo, StageContext, VerifyResult
from apps.orchestration.errors import (
    ErrorKind,
    PermanentAdapterError,
    TelemetrySilent,
    TransientAdapterError,
    VerificationTimeout,
)
from apps.orchestration.models import PipelineRun
from apps.verification.models import TelemetryCheckpoint
from apps.verification.probes import BaseReadinessProbe, BaseTelemetrySource, ProbeResult, TelemetryReading
from apps.verification.probes.kubectl import KubectlReadinessProbe
from apps.verification.probes.prometheus import PrometheusTelemetrySource
from apps.verification.services import (
    TelemetryVerifier,
    has_checkpoint,
    latest_checkpoint,
    record_checkpoint,
)

DIGEST = "sha256:" + "5a" * 32
T0 = datetime(2026, 3, 1, 12, 0, tzinfo=dt_timezone.utc)


class FakeClock:
    def __init__(self):
        self.current = T0
        self.sleeps = []

    def now(self):
        return self.current

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.current += timedelta(seconds=seconds)


class ScriptedProbe(BaseReadinessProbe):
    """Answers from a list; exceptions in the list are raised."""

    name = "scripted"

    def __init__(self, *answers):
        self.answers = list(answers)
        self.calls = 0

    def check(self, ctx, config):
        self.calls += 1
        answer = self.answers.pop(0) if self.answers else False
        if isinstance(answer, Exception):
            raise answer
        return ProbeResult(ready=answer, detail={"poll": self.calls})


class ScriptedTelemetry(BaseTelemetrySource):
    name = "scripted"

    def __init__(self, *samples):
        self.samples = list(samples)

    def read(self, ctx, config, window_seconds):
        value = self.samples.pop(0) if self.samples else 0
        if isinstance(value, Exception):
            raise value
        return TelemetryReading(samples=value, detail={"window": window_seconds})


def _ctx():
    return StageContext(
        trace_id="trace-1",
        run_id="run-1",
        stage="verify",
        source_ref="deadbeef",
        cluster="prod-eu",
        namespace="web",
        workload="api",
        artifact=ArtifactInfo(digest=DIGEST),
    )


def _verifier(clock, probe, telemetry, **kwargs):
    options = {"poll_interval": 5, "readiness_timeout": 30, "telemetry_window": 20}
    options.update(kwargs)
    return TelemetryVerifier(
        readiness_probe=probe, telemetry_source=telemetry, now=clock.now, sleep=clock.sleep, **options
    )


class TestTelemetryVerifier:
    def test_ready_then_observed(self):
        clock = FakeClock()
        verifier = _verifier(clock, ScriptedProbe(False, False, True), ScriptedTelemetry(0, 3))

        result = verifier.verify(_ctx())

        assert result.digest == DIGEST
        assert result.ready_at == T0 + timedelta(seconds=10)
        assert result.observed_at == T0 + timedelta(seconds=15)
        assert result.sample_count == 3
        assert result.readiness == {"poll": 3}
        assert result.telemetry == {"window": 20.0}
        assert clock.sleeps == [5, 5, 5]

    def test_never_ready_is_timeout(self):
        clock = FakeClock()
        probe = ScriptedProbe()
        verifier = _verifier(clock, probe, ScriptedTelemetry(5), readiness_timeout=12)

        with pytest.raises(VerificationTimeout) as exc_info:
            verifier.verify(_ctx())

        assert exc_info.value.kind == ErrorKind.VERIFICATION_TIMEOUT
        assert exc_info.value.stage == "verify"
        # Last sleep is shortened to land exactly on the deadline.
        assert clock.sleeps == [5, 5, 2]
        assert probe.calls == 4

    def test_ready_but_silent(self):
        clock = FakeClock()
        verifier = _verifier(clock, ScriptedProbe(True), ScriptedTelemetry(), telemetry_window=10)

        with pytest.raises(TelemetrySilent) as exc_info:
            verifier.verify(_ctx())

        assert exc_info.value.kind == ErrorKind.TELEMETRY_SILENT
        assert "within 10s" in str(exc_info.value)
        assert clock.sleeps == [5, 5]

    def test_probe_errors_count_as_not_yet(self):
        clock = FakeClock()
        probe = ScriptedProbe(TransientAdapterError("apiserver down"), ConnectionResetError("reset"), True)
        telemetry = ScriptedTelemetry(PermanentAdapterError("bad query"), 1)

        result = _verifier(clock, probe, telemetry).verify(_ctx())

        assert result.sample_count == 1
        assert probe.calls == 3

    def test_zero_timeouts_do_not_sleep(self):
        clock = FakeClock()
        with pytest.raises(VerificationTimeout):
            _verifier(clock, ScriptedProbe(False), ScriptedTelemetry(1), readiness_timeout=0).verify(_ctx())
        with pytest.raises(TelemetrySilent):
            _verifier(clock, ScriptedProbe(True), ScriptedTelemetry(0), telemetry_window=0).verify(_ctx())
        assert clock.sleeps == []

    def test_deadline_caps_both_phases(self):
        clock = FakeClock()
        verifier = _verifier(clock, ScriptedProbe(), ScriptedTelemetry(), readiness_timeout=300)

        with pytest.raises(VerificationTimeout):
            verifier.verify(_ctx(), deadline=T0 + timedelta(seconds=7))

        assert clock.current == T0 + timedelta(seconds=7)

    @override_settings(
        VERIFICATION_POLL_INTERVAL_SECONDS=2,
        VERIFICATION_READINESS_TIMEOUT_SECONDS=40,
        VERIFICATION_TELEMETRY_WINDOW_SECONDS=50,
    )
    def test_defaults_from_settings(self):
        verifier = TelemetryVerifier()
        assert (verifier.poll_interval, verifier.readiness_timeout, verifier.telemetry_window) == (2.0, 40.0, 50.0)


class TestFromConfig:
    def test_builds_probes_from_config(self):
        verifier = TelemetryVerifier.from_config(
            {
                "readiness": {"driver": "kubectl", "context": "eu-admin"},
                "telemetry": {"driver": "prometheus", "url": "http://prometheus:9090"},
                "poll_interval": 1,
                "readiness_timeout": 60,
                "telemetry_window": 30,
            }
        )
        assert isinstance(verifier.readiness_probe, KubectlReadinessProbe)
        assert isinstance(verifier.telemetry_source, PrometheusTelemetrySource)
        assert verifier.readiness_config == {"context": "eu-admin"}
        assert verifier.telemetry_config == {"url": "http://prometheus:9090"}
        assert verifier.telemetry_window == 30.0

    def test_invalid_source_config(self):
        with pytest.raises(PermanentAdapterError):
            TelemetryVerifier.from_config({"telemetry": {"driver": "prometheus"}})

    def test_unknown_probe(self):
        with pytest.raises(ValueError):
            TelemetryVerifier.from_config({"readiness": {"driver": "tcp"}})


@pytest.mark.django_db
class TestCheckpoints:
    @pytest.fixture
    def run(self):
        target = DeploymentTarget.objects.create(cluster="prod-eu", namespace="web", workload="api")
        return PipelineRun.objects.create(trace_id="trace-1", run_id="run-1", target=target, source_ref="deadbeef")

    def _result(self, samples=2.0):
        return VerifyResult(
            digest=DIGEST,
            ready_at=T0,
            observed_at=T0 + timedelta(seconds=4),
            sample_count=samples,
            readiness={"ready": True},
            telemetry={"query": "q"},
        )

    def test_record_is_idempotent_per_run(self, run):
        first = record_checkpoint(run=run, target=run.target, result=self._result())
        again = record_checkpoint(run=run, target=run.target, result=self._result(samples=9.0))

        assert again.pk == first.pk
        assert TelemetryCheckpoint.objects.count() == 1
        assert first.details == {"readiness": {"ready": True}, "telemetry": {"query": "q"}}
        assert first.to_dict()["run_id"] == "run-1"

    def test_has_and_latest_checkpoint(self, run):
        assert not has_checkpoint(run.target, DIGEST)
        assert latest_checkpoint(run.target, DIGEST) is None

        checkpoint = record_checkpoint(run=run, target=run.target, result=self._result())

        assert has_checkpoint(run.target, DIGEST)
        assert not has_checkpoint(run.target, "")
        assert not has_checkpoint(run.target, "sha256:other")
        assert latest_checkpoint(run.target, DIGEST) == checkpoint
        assert latest_checkpoint(run.target, "") is None
