"""Admin configuration for telemetry checkpoints (read-only)."""

from django.contrib import admin

from apps.verification.models import TelemetryCheckpoint


@admin.register(TelemetryCheckpoint)
class TelemetryCheckpointAdmin(admin.ModelAdmin):
    list_display = ["target", "digest", "run", "ready_at", "observed_at", "sample_count"]
    list_filter = ["target"]
    search_fields = ["digest", "run__run_id"]
    readonly_fields = ["target", "digest", "run", "ready_at", "observed_at", "sample_count", "details", "recorded_at"]

    def get_queryset(self, request):
        return super().get_queryset(request).select_related("target", "run")

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False
