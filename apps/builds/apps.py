"""Django app configuration for the builds app."""

from django.apps import AppConfig


class BuildsConfig(AppConfig):
    """Artifact builder drivers (build and test stages)."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "apps.builds"
    verbose_name = "Builds"
