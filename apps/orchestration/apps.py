"""Django app configuration for the orchestration app."""

from django.apps import AppConfig


class OrchestrationConfig(AppConfig):
    """Configuration for the Pipeline Orchestration app."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "apps.orchestration"
    verbose_name = "Pipeline Orchestration"

    def ready(self):
        # Import checks module to register system checks with Django
        from apps.orchestration import checks  # noqa: F401
