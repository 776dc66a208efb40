"""Shared rendering and exit-code handling for the run management commands."""

import json

from django.core.management.base import CommandError

from apps.orchestration.dtos import RunSnapshot
from apps.orchestration.models import EXIT_CODE_NOT_TERMINAL, RunStatus


def write_snapshot(command, snapshot: RunSnapshot, as_json: bool = False) -> None:
    """Print a run snapshot in human or JSON form."""
    if as_json:
        command.stdout.write(json.dumps(snapshot.to_dict(), indent=2, default=str))
        return

    style = command.style
    status_style = {
        RunStatus.SUCCEEDED: style.SUCCESS,
        RunStatus.FAILED: style.ERROR,
        RunStatus.ABORTED: style.WARNING,
    }.get(snapshot.status, style.NOTICE)

    command.stdout.write(style.HTTP_INFO(f"Run: {snapshot.run_id}"))
    command.stdout.write(f"  Status: {status_style(snapshot.status)}")
    command.stdout.write(f"  Target: {snapshot.target}")
    command.stdout.write(f"  Source ref: {snapshot.source_ref} ({snapshot.source})")
    command.stdout.write(f"  Trace ID: {snapshot.trace_id}")
    if snapshot.current_stage:
        command.stdout.write(f"  Current stage: {snapshot.current_stage}")
    if snapshot.cancel_requested and not snapshot.is_terminal:
        command.stdout.write(style.WARNING("  Cancellation requested"))
    if snapshot.artifact:
        tag = f" (tag {snapshot.artifact['tag']})" if snapshot.artifact.get("tag") else ""
        command.stdout.write(f"  Artifact: {snapshot.artifact['digest']}{tag}")
    if snapshot.checkpoint:
        command.stdout.write(f"  Telemetry observed: {snapshot.checkpoint['observed_at']}")
    if snapshot.error_kind:
        command.stdout.write(
            style.ERROR(f"  Failed at {snapshot.failed_stage} ({snapshot.error_kind}): {snapshot.error_message}")
        )
    elif snapshot.status == RunStatus.ABORTED and snapshot.error_message:
        command.stdout.write(style.WARNING(f"  {snapshot.error_message}"))
    if snapshot.total_duration_ms:
        command.stdout.write(f"  Duration: {snapshot.total_duration_ms:.0f} ms")

    if snapshot.attempts:
        command.stdout.write("")
        command.stdout.write("Ledger:")
        for entry in snapshot.attempts:
            line = f"  #{entry['sequence']:<3} {entry['stage']:<8} attempt {entry['attempt']:<2} {entry['status']:<10}"
            if entry["error_kind"]:
                line += f" {entry['error_kind']}: {entry['error_message']}"
            command.stdout.write(line)


def exit_for(snapshot: RunSnapshot) -> None:
    """Raise CommandError carrying the run's exit code unless it succeeded."""
    code = snapshot.exit_code
    if code == 0:
        return
    if code is None:
        raise CommandError(f"Run {snapshot.run_id} is still {snapshot.status}", returncode=EXIT_CODE_NOT_TERMINAL)
    raise CommandError(f"Run {snapshot.run_id} {snapshot.status}", returncode=code)
