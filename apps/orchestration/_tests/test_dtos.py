"""Tests for orchestration DTOs and the error taxonomy."""

import socket

import pytest

from apps.orchestration.dtos import ArtifactInfo, RunSnapshot, StageContext, Trigger
from apps.orchestration.errors import (
    ConflictError,
    ErrorKind,
    PermanentAdapterError,
    TelemetrySilent,
    TransientAdapterError,
    classify_exception,
)


class TestTrigger:
    def test_from_dict_with_key(self):
        trigger = Trigger.from_dict({"source_ref": " abc ", "target": "c/ns/w", "source": "ci"})
        assert trigger.source_ref == "abc"
        assert trigger.target_key == "c/ns/w"
        assert trigger.source == "ci"
        assert trigger.trace_id is None

    def test_from_dict_with_target_object(self):
        trigger = Trigger.from_dict(
            {"source_ref": "abc", "target": {"cluster": "c", "namespace": "ns", "workload": "w"}}
        )
        assert trigger.target_key == "c/ns/w"
        assert trigger.source == "api"

    @pytest.mark.parametrize(
        "data",
        [
            [],
            {"target": "c/ns/w"},
            {"source_ref": "abc"},
            {"source_ref": "abc", "target": {"cluster": "c"}},
            {"source_ref": "abc", "target": "c/ns/w", "payload": ["not", "a", "dict"]},
        ],
    )
    def test_from_dict_invalid(self, data):
        with pytest.raises(ValueError):
            Trigger.from_dict(data)


class TestStageContext:
    def _ctx(self, **kwargs):
        defaults = {
            "trace_id": "t",
            "run_id": "r",
            "stage": "publish",
            "source_ref": "3f2c9a1b7e5d8c",
            "cluster": "c",
            "namespace": "ns",
            "workload": "w",
            "repository": "reg.example.com/team/app",
        }
        defaults.update(kwargs)
        return StageContext(**defaults)

    def test_placeholders_without_artifact(self):
        values = self._ctx().placeholders()
        assert values["short_ref"] == "3f2c9a1b7e5d"
        assert values["image"] == "reg.example.com/team/app:3f2c9a1b7e5d"
        assert "digest" not in values

    def test_placeholders_with_artifact(self):
        artifact = ArtifactInfo(digest="sha256:abc", repository="reg.example.com/team/app", tag="v1")
        values = self._ctx(artifact=artifact).placeholders()
        assert values["digest"] == "sha256:abc"
        assert values["image_ref"] == "reg.example.com/team/app@sha256:abc"
        assert values["tagged_ref"] == "reg.example.com/team/app:v1"

    def test_target_key(self):
        assert self._ctx().target_key == "c/ns/w"


class TestArtifactInfo:
    def test_refs_without_repository(self):
        artifact = ArtifactInfo(digest="sha256:abc")
        assert artifact.image_ref == "sha256:abc"
        assert artifact.tagged_ref == "sha256:abc"


class TestRunSnapshot:
    def test_exit_code_defines_terminal(self):
        running = RunSnapshot(run_id="r", trace_id="t", status="running", target="c/n/w", source_ref="a", source="api")
        assert running.is_terminal is False
        assert running.to_dict()["completed_at"] is None


class TestClassifyException:
    def test_pipeline_errors_pass_through_with_stage(self):
        error = TelemetrySilent("quiet")
        assert classify_exception(error, "verify") is error
        assert error.stage == "verify"
        assert error.kind == ErrorKind.TELEMETRY_SILENT
        assert error.retryable is False

    @pytest.mark.parametrize("exc", [socket.timeout("t"), ConnectionResetError("reset"), TimeoutError()])
    def test_os_errors_are_transient(self, exc):
        error = classify_exception(exc, "deploy")
        assert isinstance(error, TransientAdapterError)
        assert error.retryable is True
        assert error.stage == "deploy"

    @pytest.mark.parametrize("exc", [ValueError("bad"), TypeError("bad"), KeyError("bad")])
    def test_programming_errors_are_permanent(self, exc):
        assert isinstance(classify_exception(exc, "build"), PermanentAdapterError)

    def test_unknown_errors_are_transient(self):
        assert isinstance(classify_exception(RuntimeError("?"), "build"), TransientAdapterError)

    def test_conflict_error_message(self):
        error = ConflictError("c/ns/w", "run-1")
        assert "c/ns/w" in str(error)
        assert "run-1" in str(error)
