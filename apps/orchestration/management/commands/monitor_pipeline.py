"""
Management command to monitor runs and their statuses.

Usage:
    # List recent runs
    python manage.py monitor_pipeline --limit 10

    # Filter by status or target
    python manage.py monitor_pipeline --status failed
    python manage.py monitor_pipeline --target prod-eu/payments/api

    # Show details for a specific run
    python manage.py monitor_pipeline --run-id <run_id>

    # Show which targets are locked right now
    python manage.py monitor_pipeline --locks
"""

from django.core.management.base import BaseCommand, CommandError

from apps.orchestration.management.commands._output import write_snapshot
from apps.orchestration.models import PipelineRun, RunStatus, TargetLock
from apps.orchestration.orchestrator import PipelineOrchestrator


class Command(BaseCommand):
    help = "Monitor runs: list, filter, show details and active target locks."

    def add_arguments(self, parser):
        parser.add_argument(
            "--limit",
            type=int,
            default=10,
            help="Number of runs to show (default: 10)",
        )
        parser.add_argument(
            "--status",
            type=str,
            choices=RunStatus.values,
            help="Filter by run status",
        )
        parser.add_argument(
            "--target",
            type=str,
            help="Filter by target (cluster/namespace/workload)",
        )
        parser.add_argument(
            "--run-id",
            type=str,
            help="Show details for a specific run (by run_id)",
        )
        parser.add_argument(
            "--locks",
            action="store_true",
            help="List targets currently locked by a run",
        )

    def handle(self, *args, **options):
        orchestrator = PipelineOrchestrator()

        if options["run_id"]:
            try:
                snapshot = orchestrator.status(options["run_id"])
            except PipelineRun.DoesNotExist:
                self.stdout.write(self.style.ERROR(f"Run not found: {options['run_id']}"))
                return
            write_snapshot(self, snapshot)
        elif options["locks"]:
            self.list_locks()
        else:
            try:
                runs = orchestrator.list_runs(
                    status=options["status"],
                    target=options["target"],
                    limit=options["limit"],
                )
            except ValueError as e:
                raise CommandError(str(e))
            self.list_runs(runs)

    def list_runs(self, runs):
        if not runs:
            self.stdout.write(self.style.WARNING("No runs found."))
            return

        self.stdout.write(
            f"{'Run ID':<38} {'Status':<10} {'Target':<36} {'Ref':<13} {'Stage':<8} {'Created':<20} {'Duration(ms)':<12}"
        )
        self.stdout.write("-" * 140)
        for run in runs:
            stage = run.failed_stage or run.current_stage or "-"
            self.stdout.write(
                f"{run.run_id:<38} {run.status:<10} {run.target:<36} {run.source_ref[:12]:<13} "
                f"{stage:<8} {run.created_at:%Y-%m-%d %H:%M:%S} {run.total_duration_ms:<12.2f}"
            )

    def list_locks(self):
        locks = TargetLock.objects.select_related("target", "run").order_by("acquired_at")
        if not locks:
            self.stdout.write(self.style.SUCCESS("No targets are locked."))
            return
        for lock in locks:
            line = f"{lock.target.key:<36} {lock.run.run_id:<38} {lock.run.status:<10} since {lock.acquired_at:%Y-%m-%d %H:%M:%S}"
            if lock.run.is_terminal:
                self.stdout.write(self.style.WARNING(f"{line} (stale)"))
            else:
                self.stdout.write(line)
