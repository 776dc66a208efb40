"""Tests for the orchestration system checks."""

from django.test import TestCase, override_settings

from apps.clusters.models import DeploymentTarget
from apps.orchestration.checks import check_orchestration_settings, check_target_drivers

VALID_TIMEOUTS = {"build": 60.0, "test": 60.0, "publish": 60.0, "deploy": 60.0, "verify": 300.0}


@override_settings(
    ORCHESTRATION_STAGE_TIMEOUTS=VALID_TIMEOUTS,
    VERIFICATION_READINESS_TIMEOUT_SECONDS=120.0,
    VERIFICATION_TELEMETRY_WINDOW_SECONDS=60.0,
)
class OrchestrationSettingsCheckTests(TestCase):
    def _ids(self):
        return [e.id for e in check_orchestration_settings(app_configs=None)]

    def test_defaults_pass(self):
        self.assertEqual(self._ids(), [])

    @override_settings(ORCHESTRATION_MAX_ATTEMPTS_PER_STAGE=0)
    def test_attempts_must_be_positive(self):
        self.assertIn("orchestration.E001", self._ids())

    @override_settings(ORCHESTRATION_BACKOFF_BASE_SECONDS=10.0, ORCHESTRATION_BACKOFF_CAP_SECONDS=5.0)
    def test_cap_below_base(self):
        self.assertIn("orchestration.E003", self._ids())

    @override_settings(ORCHESTRATION_BACKOFF_JITTER=1.5)
    def test_jitter_out_of_range(self):
        self.assertIn("orchestration.E004", self._ids())

    @override_settings(ORCHESTRATION_STAGE_TIMEOUTS={**VALID_TIMEOUTS, "deploy": 0})
    def test_stage_timeout_must_be_positive(self):
        self.assertIn("orchestration.E006", self._ids())

    @override_settings(VERIFICATION_READINESS_TIMEOUT_SECONDS=600.0)
    def test_verify_budget_warning(self):
        self.assertEqual(self._ids(), ["orchestration.W001"])

    @override_settings(ORCHESTRATION_METRICS_BACKEND="graphite")
    def test_unknown_metrics_backend(self):
        self.assertIn("orchestration.E007", self._ids())


class TargetDriverCheckTests(TestCase):
    def test_local_target_passes(self):
        DeploymentTarget.objects.create(cluster="c1", namespace="ns", workload="api")
        self.assertEqual(check_target_drivers(app_configs=None), [])

    def test_unknown_and_invalid_drivers_reported(self):
        target = DeploymentTarget.objects.create(
            cluster="c1",
            namespace="ns",
            workload="api",
            pipeline_config={
                "build": {"driver": "bazel"},
                "deploy": {"driver": "webhook"},
                "verify": {"telemetry": {"driver": "prometheus"}},
            },
        )

        errors = check_target_drivers(app_configs=None)
        messages = [e.msg for e in errors]

        self.assertEqual({e.id for e in errors}, {"orchestration.E101"})
        self.assertTrue(all(e.obj == target for e in errors))
        self.assertIn("Target c1/ns/api build: unknown driver 'bazel'", messages)
        self.assertIn("Target c1/ns/api deploy: invalid configuration for driver 'webhook'", messages)
        self.assertIn("Target c1/ns/api verify.telemetry: invalid configuration for driver 'prometheus'", messages)

    def test_inactive_targets_ignored(self):
        DeploymentTarget.objects.create(
            cluster="c1",
            namespace="ns",
            workload="api",
            is_active=False,
            pipeline_config={"build": {"driver": "bazel"}},
        )
        self.assertEqual(check_target_drivers(app_configs=None), [])
