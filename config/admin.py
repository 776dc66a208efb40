"""Custom admin site for the deployment orchestrator ops console."""

from datetime import timedelta

from django.contrib.admin import AdminSite
from django.db.models import Avg, Count, Q
from django.utils import timezone


class DeployAdminSite(AdminSite):
    site_header = "Deployment Orchestrator"
    site_title = "Deployment Orchestrator"
    index_title = "Dashboard"
    index_template = "admin/dashboard.html"

    def index(self, request, extra_context=None):
        extra_context = extra_context or {}
        extra_context.update(self._get_dashboard_context())
        return super().index(request, extra_context=extra_context)

    def _get_dashboard_context(self):
        from apps.orchestration.models import PipelineRun, RunStatus, TargetLock

        now = timezone.now()
        last_24h = now - timedelta(hours=24)
        last_7d = now - timedelta(days=7)

        # --- Run Health (24h) ---
        runs_qs = PipelineRun.objects.filter(created_at__gte=last_24h)
        status_counts = dict(
            runs_qs.values_list("status").annotate(count=Count("id")).values_list("status", "count")
        )
        total_runs = sum(status_counts.values())
        succeeded = status_counts.get(RunStatus.SUCCEEDED, 0)
        finished = runs_qs.filter(status=RunStatus.SUCCEEDED).aggregate(avg=Avg("total_duration_ms"))
        run_health = {
            "total": total_runs,
            "succeeded": succeeded,
            "failed": status_counts.get(RunStatus.FAILED, 0),
            "aborted": status_counts.get(RunStatus.ABORTED, 0),
            "in_flight": status_counts.get(RunStatus.PENDING, 0) + status_counts.get(RunStatus.RUNNING, 0),
            "success_rate": round(succeeded / total_runs * 100, 1) if total_runs else 0,
            "avg_duration_s": round((finished["avg"] or 0) / 1000, 1),
        }

        # --- Locked Targets ---
        locked_targets = list(
            TargetLock.objects.select_related("target", "run").order_by("acquired_at")
        )

        # --- Failed Runs (last 5) ---
        failed_runs = list(
            PipelineRun.objects.filter(status=RunStatus.FAILED)
            .select_related("target")
            .order_by("-created_at")
            .only(
                "id",
                "run_id",
                "source_ref",
                "target__cluster",
                "target__namespace",
                "target__workload",
                "failed_stage",
                "error_kind",
                "error_message",
                "created_at",
            )[:5]
        )

        # --- 7-Day Aggregations ---
        failures_by_stage = list(
            PipelineRun.objects.filter(status=RunStatus.FAILED, created_at__gte=last_7d)
            .values("failed_stage", "error_kind")
            .annotate(count=Count("id"))
            .order_by("-count")[:10]
        )

        busiest_targets = list(
            PipelineRun.objects.filter(created_at__gte=last_7d)
            .values("target__cluster", "target__namespace", "target__workload")
            .annotate(
                runs=Count("id"),
                failed=Count("id", filter=Q(status=RunStatus.FAILED)),
            )
            .order_by("-runs")[:5]
        )

        return {
            "run_health": run_health,
            "locked_targets": locked_targets,
            "failed_runs": failed_runs,
            "failures_by_stage": failures_by_stage,
            "busiest_targets": busiest_targets,
        }
