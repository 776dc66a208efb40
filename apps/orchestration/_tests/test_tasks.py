"""Tests for the orchestration Celery tasks."""

from datetime import timedelta
from unittest.mock import patch

from django.test import TestCase, override_settings
from django.utils import timezone

from apps.clusters.models import DeploymentTarget
from apps.orchestration.models import PipelineRun, RunStatus
from apps.orchestration.orchestrator import PipelineOrchestrator
from apps.orchestration.tasks import execute_run_task, resume_interrupted_runs_task


class OrchestrationTaskTests(TestCase):
    def setUp(self):
        self.target = DeploymentTarget.objects.create(cluster="c1", namespace="ns", workload="api")
        self.orchestrator = PipelineOrchestrator(dispatcher=lambda run_id: None)

    def test_task_names(self):
        self.assertEqual(execute_run_task.name, "apps.orchestration.tasks.execute_run_task")
        self.assertEqual(
            resume_interrupted_runs_task.name,
            "apps.orchestration.tasks.resume_interrupted_runs_task",
        )

    @override_settings(CELERY_TASK_ALWAYS_EAGER=True)
    def test_execute_run_task_runs_pipeline(self):
        """The task drives the run to a terminal status and returns its snapshot."""
        run_id = self.orchestrator.start({"source_ref": "abc", "target": self.target.key})

        result = execute_run_task.apply(args=[run_id]).get()

        self.assertEqual(result["run_id"], run_id)
        self.assertEqual(result["status"], RunStatus.SUCCEEDED)
        self.assertEqual(result["exit_code"], 0)
        self.assertEqual(PipelineRun.objects.get(run_id=run_id).status, RunStatus.SUCCEEDED)

    def test_execute_run_task_on_finished_run(self):
        run_id = self.orchestrator.start({"source_ref": "abc", "target": self.target.key})
        self.orchestrator.execute_run(run_id)

        result = execute_run_task.apply(args=[run_id]).get()
        self.assertEqual(result["status"], RunStatus.SUCCEEDED)

    @patch("apps.orchestration.orchestrator.dispatch_with_celery")
    def test_resume_task_dispatches_stale_runs(self, mock_dispatch):
        run_id = self.orchestrator.start({"source_ref": "abc", "target": self.target.key})
        PipelineRun.objects.filter(run_id=run_id).update(updated_at=timezone.now() - timedelta(hours=3))

        result = resume_interrupted_runs_task.apply(kwargs={"older_than_seconds": 3600}).get()

        self.assertEqual(result, {"resumed": [run_id], "count": 1})
        mock_dispatch.assert_called_once_with(run_id)

    @override_settings(ORCHESTRATION_RESUME_STALE_SECONDS=7200)
    @patch("apps.orchestration.orchestrator.dispatch_with_celery")
    def test_resume_task_uses_stale_setting(self, mock_dispatch):
        run_id = self.orchestrator.start({"source_ref": "abc", "target": self.target.key})
        PipelineRun.objects.filter(run_id=run_id).update(updated_at=timezone.now() - timedelta(hours=1))

        result = resume_interrupted_runs_task.apply().get()

        self.assertEqual(result["count"], 0)
        mock_dispatch.assert_not_called()

    @patch("apps.orchestration.tasks.execute_run_task.delay")
    def test_start_dispatches_task_on_commit(self, mock_delay):
        orchestrator = PipelineOrchestrator()
        with self.captureOnCommitCallbacks(execute=True):
            run_id = orchestrator.start({"source_ref": "abc", "target": self.target.key})

        mock_delay.assert_called_once_with(run_id)
