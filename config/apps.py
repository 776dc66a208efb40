"""Custom Django admin app configuration."""

from django.contrib.admin.apps import AdminConfig


class DeployAdminConfig(AdminConfig):
    default_site = "config.admin.DeployAdminSite"
