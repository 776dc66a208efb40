"""Admin configuration for published artifacts (read-only)."""

from django.contrib import admin

from apps.registry.models import ArtifactReference


@admin.register(ArtifactReference)
class ArtifactReferenceAdmin(admin.ModelAdmin):
    list_display = ["digest", "tag", "repository", "source_ref", "run", "recorded_at"]
    list_filter = ["repository"]
    search_fields = ["digest", "tag", "source_ref", "run__run_id"]
    readonly_fields = ["digest", "tag", "repository", "source_ref", "run", "recorded_at"]

    def get_queryset(self, request):
        return super().get_queryset(request).select_related("run")

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False
