"""
Registry publisher drivers.
"""

from apps.registry.drivers.base import BasePublishDriver
from apps.registry.drivers.command import CommandPublishDriver
from apps.registry.drivers.local import LocalPublishDriver
from apps.registry.drivers.oci import OCIPublishDriver

__all__ = [
    "BasePublishDriver",
    "DRIVER_REGISTRY",
    "get_publish_driver",
]

# Registry of available publish drivers
DRIVER_REGISTRY: dict[str, type[BasePublishDriver]] = {
    "oci": OCIPublishDriver,
    "command": CommandPublishDriver,
    "local": LocalPublishDriver,
}


def get_publish_driver(name: str = "local") -> BasePublishDriver:
    """Instantiate a publish driver by name (ValueError if unknown)."""
    if name not in DRIVER_REGISTRY:
        raise ValueError(
            f"Unknown publish driver: {name}. Available: {', '.join(sorted(DRIVER_REGISTRY))}"
        )
    return DRIVER_REGISTRY[name]()
