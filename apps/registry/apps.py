"""Django app configuration for the registry app."""

from django.apps import AppConfig


class RegistryConfig(AppConfig):
    """Registry publisher drivers and recorded artifact references."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "apps.registry"
    verbose_name = "Registry"
