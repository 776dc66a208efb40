"""
Management command to start a deployment run.

Usage:
    # Queue a run (executed by a Celery worker)
    python manage.py start_run --target prod-eu/payments/api --ref 3f2c9a1

    # Run in this process and exit with the run's status code
    python manage.py start_run --target prod-eu/payments/api --ref 3f2c9a1 --sync

    # Queue and wait for the worker to finish
    python manage.py start_run --target prod-eu/payments/api --ref 3f2c9a1 --wait

Exit codes: 0 succeeded (or queued without --sync/--wait), 1 failed,
2 aborted, 3 still running when --wait timed out, 4 target locked.
"""

import json
import time

from django.core.management.base import BaseCommand, CommandError

from apps.clusters.models import DeploymentTarget
from apps.orchestration.dtos import Trigger
from apps.orchestration.errors import ConflictError
from apps.orchestration.management.commands._output import exit_for, write_snapshot
from apps.orchestration.models import EXIT_CODE_CONFLICT
from apps.orchestration.orchestrator import PipelineOrchestrator


class Command(BaseCommand):
    help = "Start a run: build → test → publish → deploy → verify"

    def add_arguments(self, parser):
        parser.add_argument(
            "--target",
            type=str,
            required=True,
            help="Deployment target as cluster/namespace/workload",
        )
        parser.add_argument(
            "--ref",
            type=str,
            required=True,
            help="Source reference to deploy (e.g. commit hash)",
        )
        parser.add_argument(
            "--source",
            type=str,
            default="cli",
            help="Trigger source (default: cli)",
        )
        parser.add_argument(
            "--trace-id",
            type=str,
            help="Custom trace ID for correlation",
        )
        parser.add_argument(
            "--payload",
            type=str,
            help="Opaque trigger payload as a JSON object",
        )
        parser.add_argument(
            "--sync",
            action="store_true",
            help="Execute the run in this process instead of queueing it",
        )
        parser.add_argument(
            "--wait",
            action="store_true",
            help="Wait for a queued run to finish",
        )
        parser.add_argument(
            "--poll-interval",
            type=float,
            default=2.0,
            help="Seconds between status polls with --wait (default: 2)",
        )
        parser.add_argument(
            "--wait-timeout",
            type=float,
            default=None,
            help="Give up waiting after this many seconds (exit code 3)",
        )
        parser.add_argument(
            "--json",
            action="store_true",
            help="Output the run snapshot as JSON",
        )

    def handle(self, *args, **options):
        trigger = self._trigger(options)

        if options["sync"]:
            orchestrator = PipelineOrchestrator(dispatcher=lambda run_id: None)
        else:
            orchestrator = PipelineOrchestrator()

        try:
            run_id = orchestrator.start(trigger)
        except ConflictError as e:
            raise CommandError(str(e), returncode=EXIT_CODE_CONFLICT)
        except DeploymentTarget.DoesNotExist:
            raise CommandError(f"Unknown target: {trigger.target_key}")
        except ValueError as e:
            raise CommandError(str(e))

        if options["sync"]:
            snapshot = orchestrator.execute_run(run_id)
        elif options["wait"]:
            snapshot = self._wait(orchestrator, run_id, options["poll_interval"], options["wait_timeout"])
        else:
            if options["json"]:
                self.stdout.write(json.dumps({"status": "queued", "run_id": run_id}))
            else:
                self.stdout.write(self.style.SUCCESS(f"Run queued: {run_id}"))
            return

        write_snapshot(self, snapshot, as_json=options["json"])
        exit_for(snapshot)

    def _trigger(self, options) -> Trigger:
        payload = {}
        if options["payload"]:
            try:
                payload = json.loads(options["payload"])
            except json.JSONDecodeError as e:
                raise CommandError(f"Invalid JSON payload: {e}")
        try:
            return Trigger.from_dict(
                {
                    "source_ref": options["ref"],
                    "target": options["target"],
                    "source": options["source"],
                    "trace_id": options.get("trace_id"),
                    "payload": payload,
                }
            )
        except ValueError as e:
            raise CommandError(str(e))

    def _wait(self, orchestrator, run_id, poll_interval, wait_timeout):
        started = time.monotonic()
        while True:
            snapshot = orchestrator.status(run_id)
            if snapshot.is_terminal:
                return snapshot
            if wait_timeout is not None and time.monotonic() - started >= wait_timeout:
                return snapshot
            time.sleep(poll_interval)
