"""
Views for the orchestration app.

Provides HTTP endpoints for starting, monitoring and cancelling deployment
runs, plus a Git push webhook that starts a run for a target.
"""

import json
import logging
from typing import Any

from django.http import JsonResponse
from django.utils.decorators import method_decorator
from django.views import View
from django.views.decorators.csrf import csrf_exempt

from apps.clusters.models import DeploymentTarget
from apps.orchestration.dtos import Trigger
from apps.orchestration.errors import ConflictError, RunStateError
from apps.orchestration.models import PipelineRun, RunStatus
from apps.orchestration.orchestrator import PipelineOrchestrator

logger = logging.getLogger(__name__)

DELETED_REF = "0" * 40


class JSONResponseMixin:
    """Mixin for JSON responses."""

    def json_response(self, data: Any, status: int = 200) -> JsonResponse:
        return JsonResponse(data, status=status)

    def error_response(self, message: str, status: int = 400, **extra) -> JsonResponse:
        return JsonResponse({"error": message, **extra}, status=status)

    def parse_body(self, request) -> dict:
        """Decode a JSON object body (ValueError if invalid)."""
        try:
            body = json.loads(request.body) if request.body else {}
        except json.JSONDecodeError:
            raise ValueError("Invalid JSON body")
        if not isinstance(body, dict):
            raise ValueError("Request body must be a JSON object")
        return body


class StartRunMixin(JSONResponseMixin):
    """Start a run and map orchestration errors to HTTP responses."""

    def start_run(self, trigger: Trigger) -> JsonResponse:
        orchestrator = PipelineOrchestrator()
        try:
            run_id = orchestrator.start(trigger)
        except DeploymentTarget.DoesNotExist:
            return self.error_response(f"Unknown target: {trigger.target_key}", status=404)
        except ConflictError as e:
            return self.error_response(str(e), status=409, holder_run_id=e.holder_run_id)
        except ValueError as e:
            return self.error_response(str(e), status=400)

        snapshot = orchestrator.status(run_id)
        return self.json_response(
            {
                "status": "queued",
                "run_id": run_id,
                "trace_id": snapshot.trace_id,
                "target": snapshot.target,
                "source_ref": snapshot.source_ref,
            },
            status=202,
        )


@method_decorator(csrf_exempt, name="dispatch")
class RunListView(StartRunMixin, View):
    """
    API endpoint for starting and listing runs.

    POST /orchestration/runs/
        Start a new run.

    Request body:
    {
        "source_ref": "3f2c9a1...",          // commit hash or other source identifier
        "target": "prod-eu/web/checkout",    // or {"cluster", "namespace", "workload"}
        "source": "ci",                      // Optional
        "trace_id": "...",                   // Optional: correlation ID
        "payload": {...}                     // Optional: opaque trigger data
    }

    GET /orchestration/runs/
        List recent runs.

    Query params:
        status: Filter by status (pending, running, succeeded, failed, aborted)
        target: Filter by target key
        limit: Max results (default 50)
    """

    def post(self, request):
        try:
            trigger = Trigger.from_dict(self.parse_body(request))
        except ValueError as e:
            return self.error_response(str(e), status=400)
        return self.start_run(trigger)

    def get(self, request):
        status = request.GET.get("status")
        if status and status not in RunStatus.values:
            return self.error_response(f"Unknown status: {status}", status=400)
        try:
            limit = int(request.GET.get("limit", 50))
            runs = PipelineOrchestrator().list_runs(
                status=status,
                target=request.GET.get("target"),
                limit=max(1, min(limit, 500)),
            )
        except ValueError as e:
            return self.error_response(str(e), status=400)

        data = [
            {
                "run_id": run.run_id,
                "trace_id": run.trace_id,
                "status": run.status,
                "target": run.target,
                "source_ref": run.source_ref,
                "current_stage": run.current_stage,
                "failed_stage": run.failed_stage,
                "error_kind": run.error_kind,
                "created_at": run.created_at.isoformat() if run.created_at else None,
                "total_duration_ms": run.total_duration_ms,
            }
            for run in runs
        ]
        return self.json_response({"count": len(data), "runs": data})


@method_decorator(csrf_exempt, name="dispatch")
class RunStatusView(JSONResponseMixin, View):
    """
    API endpoint for checking run status.

    GET /orchestration/runs/<run_id>/
        Run snapshot including the ledger, artifact and checkpoint.
    """

    def get(self, request, run_id: str):
        try:
            snapshot = PipelineOrchestrator().status(run_id)
        except PipelineRun.DoesNotExist:
            return self.error_response(f"Run not found: {run_id}", status=404)
        return self.json_response(snapshot.to_dict())


@method_decorator(csrf_exempt, name="dispatch")
class RunCancelView(JSONResponseMixin, View):
    """
    API endpoint for cancelling a run.

    POST /orchestration/runs/<run_id>/cancel/
        Request cancellation; honoured at the next stage boundary.
    """

    def post(self, request, run_id: str):
        try:
            snapshot = PipelineOrchestrator().cancel(run_id)
        except PipelineRun.DoesNotExist:
            return self.error_response(f"Run not found: {run_id}", status=404)
        except RunStateError as e:
            return self.error_response(str(e), status=409)
        return self.json_response(snapshot.to_dict(), status=202)


@method_decorator(csrf_exempt, name="dispatch")
class PushHookView(StartRunMixin, View):
    """
    Git push webhook for a target.

    POST /orchestration/targets/<cluster>/<namespace>/<workload>/hooks/push/
        Starts a run for the pushed commit (``after``). Branch deletions are
        ignored. With ``?branch=<name>`` pushes to other refs are ignored.
    """

    def post(self, request, cluster: str, namespace: str, workload: str):
        try:
            body = self.parse_body(request)
        except ValueError as e:
            return self.error_response(str(e), status=400)

        after = str(body.get("after") or "").strip()
        ref = str(body.get("ref") or "")
        if not after:
            return self.error_response("Push payload has no 'after' commit", status=400)
        if body.get("deleted") or after == DELETED_REF:
            return self.json_response({"status": "ignored", "reason": "ref deleted"})

        branch = request.GET.get("branch")
        if branch and ref != f"refs/heads/{branch}":
            return self.json_response({"status": "ignored", "reason": f"ref {ref} is not {branch}"})

        trigger = Trigger(
            source_ref=after,
            target_key=f"{cluster}/{namespace}/{workload}",
            source="webhook",
            trace_id=request.headers.get("X-Request-Id") or None,
            payload={
                "ref": ref,
                "before": body.get("before"),
                "repository": (body.get("repository") or {}).get("full_name"),
                "pusher": (body.get("pusher") or {}).get("name"),
                "delivery": request.headers.get("X-GitHub-Delivery") or request.headers.get("X-Gitlab-Event-UUID"),
            },
        )
        logger.info(f"Push hook for {trigger.target_key}: {ref} -> {after}")
        return self.start_run(trigger)
