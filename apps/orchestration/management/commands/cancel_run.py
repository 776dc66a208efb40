"""
Management command to cancel a run.

Usage:
    python manage.py cancel_run <run_id>

The run is aborted at its next stage boundary (immediately if it has not
started executing).
"""

from django.core.management.base import BaseCommand, CommandError

from apps.orchestration.errors import RunStateError
from apps.orchestration.management.commands._output import write_snapshot
from apps.orchestration.models import PipelineRun
from apps.orchestration.orchestrator import PipelineOrchestrator


class Command(BaseCommand):
    help = "Request cancellation of a run."

    def add_arguments(self, parser):
        parser.add_argument("run_id", type=str)
        parser.add_argument(
            "--json",
            action="store_true",
            help="Output the run snapshot as JSON",
        )

    def handle(self, *args, **options):
        try:
            snapshot = PipelineOrchestrator().cancel(options["run_id"])
        except PipelineRun.DoesNotExist:
            raise CommandError(f"Run not found: {options['run_id']}")
        except RunStateError as e:
            raise CommandError(str(e))

        if not options["json"]:
            self.stdout.write(self.style.WARNING(f"Cancellation requested for {snapshot.run_id}"))
        write_snapshot(self, snapshot, as_json=options["json"])
