"""Admin configuration for deployment targets."""

from django.contrib import admin
from django.db import models as db_models
from django.utils.html import format_html
from django_json_widget.widgets import JSONEditorWidget

from apps.clusters.models import DeploymentTarget


@admin.register(DeploymentTarget)
class DeploymentTargetAdmin(admin.ModelAdmin):
    """Admin for DeploymentTarget model."""

    list_display = [
        "key_display",
        "repository",
        "is_active",
        "lock_display",
        "updated_at",
    ]
    list_filter = ["cluster", "namespace", "is_active"]
    search_fields = ["cluster", "namespace", "workload", "repository", "description"]
    readonly_fields = ["created_at", "updated_at"]
    formfield_overrides = {db_models.JSONField: {"widget": JSONEditorWidget}}

    fieldsets = [
        (
            "Destination",
            {"fields": ["cluster", "namespace", "workload", "repository", "is_active"]},
        ),
        (
            "Pipeline",
            {
                "fields": ["pipeline_config"],
                "description": (
                    "Per-stage driver configuration. Keys: build, test, publish, deploy, verify; "
                    "each block selects a driver with 'driver' (verify uses 'readiness' and "
                    "'telemetry' blocks)."
                ),
            },
        ),
        (
            "Metadata",
            {"fields": ["description", "created_at", "updated_at"]},
        ),
    ]

    def get_queryset(self, request):
        return super().get_queryset(request).select_related("lock__run")

    @admin.display(description="Target", ordering="cluster")
    def key_display(self, obj):
        return obj.key

    @admin.display(description="Lock")
    def lock_display(self, obj):
        lock = getattr(obj, "lock", None)
        if lock is None:
            return format_html('<span style="color:#28a745;">{}</span>', "free")
        return format_html(
            '<span style="color:#ffc107;">locked by {}</span>',
            lock.run.run_id,
        )
