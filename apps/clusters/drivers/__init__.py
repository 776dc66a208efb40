"""
Cluster deployer drivers.
"""

from apps.clusters.drivers.base import BaseDeployDriver
from apps.clusters.drivers.kubectl import KubectlDeployDriver
from apps.clusters.drivers.local import LocalDeployDriver
from apps.clusters.drivers.webhook import WebhookDeployDriver

__all__ = [
    "BaseDeployDriver",
    "DRIVER_REGISTRY",
    "get_deploy_driver",
]

# Registry of available deploy drivers
DRIVER_REGISTRY: dict[str, type[BaseDeployDriver]] = {
    "kubectl": KubectlDeployDriver,
    "webhook": WebhookDeployDriver,
    "local": LocalDeployDriver,
}


def get_deploy_driver(name: str = "local") -> BaseDeployDriver:
    """Instantiate a deploy driver by name.

    Raises:
        ValueError: Unknown driver name.
    """
    try:
        return DRIVER_REGISTRY[name]()
    except KeyError:
        raise ValueError(
            f"Unknown deploy driver: {name}. Available: {', '.join(sorted(DRIVER_REGISTRY))}"
        )
