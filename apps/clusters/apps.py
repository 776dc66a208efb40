"""Django app configuration for the clusters app."""

from django.apps import AppConfig


class ClustersConfig(AppConfig):
    """Deployment targets and cluster deployer drivers."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "apps.clusters"
    verbose_name = "Clusters"
