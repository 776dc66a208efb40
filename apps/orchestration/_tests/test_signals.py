"""Tests for orchestration monitoring signals."""

from unittest.mock import MagicMock, patch

from django.test import TestCase, override_settings

from apps.orchestration import signals
from apps.orchestration.signals import (
    LoggingBackend,
    SignalTags,
    StageTimer,
    StatsdBackend,
    get_monitoring_backend,
)


def _tags(**kwargs):
    defaults = {
        "trace_id": "trace-123",
        "run_id": "run-456",
        "target": "prod-eu/web/checkout",
        "stage": "deploy",
        "source_ref": "3f2c9a1",
        "source": "webhook",
        "attempt": 2,
    }
    defaults.update(kwargs)
    return SignalTags(**defaults)


class SignalTagsTests(TestCase):
    def test_signal_tags_to_dict(self):
        """Every signal carries the correlation IDs, target, stage and attempt."""
        data = _tags(extra={"cluster_region": "eu"}).to_dict()

        self.assertEqual(data["trace_id"], "trace-123")
        self.assertEqual(data["run_id"], "run-456")
        self.assertEqual(data["target"], "prod-eu/web/checkout")
        self.assertEqual(data["stage"], "deploy")
        self.assertEqual(data["source"], "webhook")
        self.assertEqual(data["attempt"], 2)
        self.assertEqual(data["cluster_region"], "eu")


class MonitoringBackendTests(TestCase):
    def tearDown(self):
        signals.reset_backend()

    def test_default_backend_is_logging(self):
        self.assertIsInstance(get_monitoring_backend(), LoggingBackend)

    @override_settings(ORCHESTRATION_METRICS_BACKEND="statsd", STATSD_PREFIX="deploys")
    def test_statsd_backend_selected(self):
        backend = get_monitoring_backend()
        self.assertIsInstance(backend, StatsdBackend)
        self.assertEqual(backend.prefix, "deploys")

    def test_logging_backend_logs_structured_record(self):
        with self.assertLogs("apps.orchestration.signals", level="INFO") as logs:
            LoggingBackend().emit("pipeline.stage.failed", _tags(), extra={"error_kind": "transient"})

        record = logs.records[0]
        self.assertEqual(record.trace_id, "trace-123")
        self.assertEqual(record.run_id, "run-456")
        self.assertEqual(record.signal_data["error_kind"], "transient")
        self.assertEqual(record.signal_data["stage"], "deploy")

    def test_statsd_metric_names(self):
        backend = StatsdBackend()
        client = MagicMock()
        backend._client = client

        backend.emit("pipeline.stage.duration", _tags(), value=12.5)
        backend.emit("pipeline.stage.retry_count", _tags(), value=1)
        backend.emit("pipeline.started", _tags(stage=""))
        backend.emit("pipeline.queue_depth", _tags(stage="", source=""), value=3)

        client.timing.assert_called_once_with("pipeline.stage.duration.deploy.webhook", 12.5)
        self.assertEqual(
            [c.args for c in client.incr.call_args_list],
            [("pipeline.stage.retry_count.deploy.webhook", 1), ("pipeline.started.webhook",)],
        )
        client.gauge.assert_called_once_with("pipeline.queue_depth", 3)

    def test_stage_failed_emits_failure_counter(self):
        backend = MagicMock()
        with patch.object(signals, "_backend", backend):
            signals.emit_stage_failed(_tags(), "permanent", "rejected", False, 40.0)

        names = [c.args[0] for c in backend.emit.call_args_list]
        self.assertEqual(
            names,
            ["pipeline.stage.failed", "pipeline.stage.duration", "pipeline.stage.failure_count"],
        )
        self.assertEqual(backend.emit.call_args_list[0].kwargs["extra"]["retryable"], False)


class StageTimerTests(TestCase):
    def test_timer_emits_started_and_measures(self):
        with patch.object(signals, "emit_stage_started") as mock_started:
            with StageTimer(_tags()) as timer:
                pass

        mock_started.assert_called_once()
        self.assertGreaterEqual(timer.duration_ms, 0)
