"""
Management command to show the status of a run.

Usage:
    python manage.py run_status <run_id>
    python manage.py run_status <run_id> --json

Exits with the run's status code: 0 succeeded, 1 failed, 2 aborted,
3 not finished yet.
"""

from django.core.management.base import BaseCommand, CommandError

from apps.orchestration.management.commands._output import exit_for, write_snapshot
from apps.orchestration.models import PipelineRun
from apps.orchestration.orchestrator import PipelineOrchestrator


class Command(BaseCommand):
    help = "Show a run's status, ledger, artifact and telemetry checkpoint."

    def add_arguments(self, parser):
        parser.add_argument("run_id", type=str)
        parser.add_argument(
            "--json",
            action="store_true",
            help="Output the run snapshot as JSON",
        )

    def handle(self, *args, **options):
        try:
            snapshot = PipelineOrchestrator().status(options["run_id"])
        except PipelineRun.DoesNotExist:
            raise CommandError(f"Run not found: {options['run_id']}")

        write_snapshot(self, snapshot, as_json=options["json"])
        exit_for(snapshot)
