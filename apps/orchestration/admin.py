"""Admin configuration for orchestration models."""

from django.contrib import admin
from django.utils.html import format_html
from django.utils.safestring import mark_safe
from django_object_actions import DjangoObjectActions
from django_object_actions import action as object_action

from apps.orchestration.errors import RunStateError
from apps.orchestration.models import (
    STAGE_ORDER,
    TERMINAL_STATUSES,
    AttemptStatus,
    PipelineRun,
    StageAttempt,
    TargetLock,
)

LEDGER_FIELDS = [
    "sequence",
    "stage",
    "attempt",
    "status",
    "error_kind",
    "error_message",
    "retryable",
    "artifact_digest",
    "artifact_tag",
    "duration_ms",
    "recorded_at",
]


class ReadOnlyAdminMixin:
    """Rows are written by the orchestrator only."""

    def has_add_permission(self, request, obj=None):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


class StageAttemptInline(ReadOnlyAdminMixin, admin.TabularInline):
    """Inline display of the run ledger."""

    model = StageAttempt
    extra = 0
    fields = LEDGER_FIELDS
    readonly_fields = LEDGER_FIELDS
    ordering = ["sequence"]
    can_delete = False


@admin.register(PipelineRun)
class PipelineRunAdmin(DjangoObjectActions, admin.ModelAdmin):
    """Admin for PipelineRun model."""

    list_display = [
        "run_id",
        "target",
        "source_ref_short",
        "status",
        "current_stage",
        "error_kind",
        "created_at",
        "total_duration_ms",
    ]
    list_filter = ["status", "current_stage", "error_kind", "source"]
    search_fields = ["run_id", "trace_id", "source_ref", "artifact_digest"]
    readonly_fields = [
        "pipeline_flow",
        "run_id",
        "trace_id",
        "target",
        "source_ref",
        "source",
        "trigger_payload",
        "status",
        "current_stage",
        "cancel_requested",
        "claimed_by",
        "claim_expires_at",
        "artifact_digest",
        "failed_stage",
        "error_kind",
        "error_message",
        "created_at",
        "updated_at",
        "started_at",
        "deadline_at",
        "completed_at",
        "total_duration_ms",
    ]
    inlines = [StageAttemptInline]
    actions = ["request_cancel_selected"]
    change_actions = ["request_cancel"]

    fieldsets = [
        (
            "Identification",
            {"fields": ["pipeline_flow", "run_id", "trace_id", "target", "source_ref", "source"]},
        ),
        (
            "State",
            {"fields": ["status", "current_stage", "cancel_requested", "artifact_digest"]},
        ),
        (
            "Stage loop",
            {"fields": ["claimed_by", "claim_expires_at"], "classes": ["collapse"]},
        ),
        (
            "Errors",
            {"fields": ["failed_stage", "error_kind", "error_message"]},
        ),
        (
            "Trigger",
            {"fields": ["trigger_payload"], "classes": ["collapse"]},
        ),
        (
            "Timestamps",
            {
                "fields": [
                    "created_at",
                    "updated_at",
                    "started_at",
                    "deadline_at",
                    "completed_at",
                    "total_duration_ms",
                ]
            },
        ),
    ]

    def get_queryset(self, request):
        return super().get_queryset(request).select_related("target").prefetch_related("attempts")

    def has_add_permission(self, request):
        return False

    def has_delete_permission(self, request, obj=None):
        return False

    @admin.display(description="Source ref", ordering="source_ref")
    def source_ref_short(self, obj):
        return obj.source_ref[:12]

    def _cancel(self, run):
        from apps.orchestration.orchestrator import PipelineOrchestrator

        PipelineOrchestrator().cancel(run.run_id)

    @admin.action(description="Request cancel for selected runs")
    def request_cancel_selected(self, request, queryset):
        count = 0
        for run in queryset.exclude(status__in=TERMINAL_STATUSES):
            try:
                self._cancel(run)
            except RunStateError:
                continue
            count += 1
        self.message_user(request, f"Cancellation requested for {count} run(s).")

    @object_action(label="Request cancel", description="Abort this run at its next stage boundary")
    def request_cancel(self, request, obj):
        try:
            self._cancel(obj)
        except RunStateError as e:
            self.message_user(request, str(e), level="warning")
            return
        self.message_user(request, f"Cancellation requested for run '{obj.run_id}'.")

    def get_change_actions(self, request, object_id, form_url):
        actions = super().get_change_actions(request, object_id, form_url)
        run = self.get_object(request, object_id)
        if run is not None and run.is_terminal:
            actions = [a for a in actions if a != "request_cancel"]
        return actions

    @admin.display(description="Pipeline Flow")
    def pipeline_flow(self, obj):
        """Render a horizontal stage flow with the latest ledger status per stage.

        Uses obj.attempts.all(); keep it out of list_display.
        """
        latest = {}
        for entry in sorted(obj.attempts.all(), key=lambda e: e.sequence):
            latest[entry.stage] = entry
        parts = []
        for stage in STAGE_ORDER:
            entry = latest.get(stage)
            status = entry.status if entry else None
            if status == AttemptStatus.SUCCEEDED:
                color, icon = "#28a745", "✓"
            elif status == AttemptStatus.RUNNING:
                color, icon = "#ffc107", "●"
            elif status == AttemptStatus.FAILED:
                color, icon = "#dc3545", "✗"
            else:
                color, icon = "#ccc", "○"
            attempts = f" ×{entry.attempt}" if entry and entry.attempt > 1 else ""
            parts.append(
                format_html(
                    '<span style="display:inline-block;text-align:center;margin:0 4px;">'
                    '<span style="color:{};font-size:18px;">{}</span><br>'
                    '<span style="font-size:11px;">{}{}</span></span>',
                    color,
                    icon,
                    stage.label.upper(),
                    attempts,
                )
            )

        arrow = mark_safe('<span style="color:#999;margin:0 2px;">→</span>')
        stages_html = mark_safe(arrow.join(parts))

        return format_html(
            '<div style="display:flex;align-items:center;padding:8px 0;">{}</div>',
            stages_html,
        )


@admin.register(StageAttempt)
class StageAttemptAdmin(ReadOnlyAdminMixin, admin.ModelAdmin):
    """Admin for the run ledger (read-only)."""

    list_display = ["run", "sequence", "stage", "attempt", "status", "error_kind", "duration_ms", "recorded_at"]
    list_filter = ["stage", "status", "error_kind"]
    search_fields = ["run__run_id", "run__trace_id", "artifact_digest"]
    readonly_fields = ["run", *LEDGER_FIELDS, "artifact_repository", "output_snapshot"]

    def get_queryset(self, request):
        return super().get_queryset(request).select_related("run")


@admin.register(TargetLock)
class TargetLockAdmin(admin.ModelAdmin):
    """Admin for target locks; only locks of finished runs may be released."""

    list_display = ["target", "run", "run_status", "acquired_at"]
    readonly_fields = ["target", "run", "acquired_at"]
    actions = ["release_stale"]

    def get_queryset(self, request):
        return super().get_queryset(request).select_related("target", "run")

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False

    @admin.display(description="Run status")
    def run_status(self, obj):
        return obj.run.status

    @admin.action(description="Release locks held by finished runs")
    def release_stale(self, request, queryset):
        from apps.orchestration import locks

        count = 0
        for lock in queryset.filter(run__status__in=TERMINAL_STATUSES):
            count += locks.release(lock.run)
        self.message_user(request, f"Released {count} stale lock(s).")
