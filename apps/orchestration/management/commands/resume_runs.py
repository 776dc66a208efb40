"""
Management command to resume runs interrupted by a crashed worker.

Usage:
    # Re-dispatch runs without progress for the configured stale period
    python manage.py resume_runs

    # Resume specific runs now, executing them in this process
    python manage.py resume_runs --run-id <run_id> --sync
"""

from datetime import timedelta

from django.conf import settings
from django.core.management.base import BaseCommand

from apps.orchestration.orchestrator import PipelineOrchestrator


class Command(BaseCommand):
    help = "Resume running runs; stages that already succeeded are skipped."

    def add_arguments(self, parser):
        parser.add_argument(
            "--run-id",
            action="append",
            dest="run_ids",
            help="Resume only this run (repeatable)",
        )
        parser.add_argument(
            "--older-than",
            type=float,
            default=None,
            help="Only runs without progress for this many seconds "
            "(default: ORCHESTRATION_RESUME_STALE_SECONDS, or 0 with --run-id)",
        )
        parser.add_argument(
            "--sync",
            action="store_true",
            help="Execute resumed runs in this process instead of queueing them",
        )

    def handle(self, *args, **options):
        run_ids = options["run_ids"]
        older_than = options["older_than"]
        if older_than is None:
            older_than = 0.0 if run_ids else settings.ORCHESTRATION_RESUME_STALE_SECONDS

        executed = []
        if options["sync"]:
            orchestrator = PipelineOrchestrator(dispatcher=executed.append)
        else:
            orchestrator = PipelineOrchestrator()

        resumed = orchestrator.resume_interrupted(run_ids=run_ids, older_than=timedelta(seconds=older_than))
        if not resumed:
            self.stdout.write(self.style.WARNING("No interrupted runs found."))
            return

        for run_id in executed:
            snapshot = orchestrator.execute_run(run_id)
            self.stdout.write(f"{run_id}: {snapshot.status}")
        if not options["sync"]:
            for run_id in resumed:
                self.stdout.write(f"{run_id}: queued")
        self.stdout.write(self.style.SUCCESS(f"Resumed {len(resumed)} run(s)."))
