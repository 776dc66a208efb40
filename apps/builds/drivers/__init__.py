"""
Artifact builder drivers for the build and test stages.
"""

from apps.builds.drivers.base import (
    BaseBuildDriver,
    BaseTestDriver,
    extract_digest,
    normalize_digest,
)
from apps.builds.drivers.command import CommandBuildDriver, CommandTestDriver
from apps.builds.drivers.local import LocalBuildDriver, LocalTestDriver

__all__ = [
    "BaseBuildDriver",
    "BaseTestDriver",
    "BUILD_DRIVERS",
    "TEST_DRIVERS",
    "extract_digest",
    "get_build_driver",
    "get_test_driver",
    "normalize_digest",
]

BUILD_DRIVERS: dict[str, type[BaseBuildDriver]] = {
    "command": CommandBuildDriver,
    "local": LocalBuildDriver,
}

TEST_DRIVERS: dict[str, type[BaseTestDriver]] = {
    "command": CommandTestDriver,
    "local": LocalTestDriver,
}


def get_build_driver(name: str = "local") -> BaseBuildDriver:
    """Instantiate a build driver by name (ValueError if unknown)."""
    if name not in BUILD_DRIVERS:
        raise ValueError(
            f"Unknown build driver: {name}. Available: {', '.join(sorted(BUILD_DRIVERS))}"
        )
    return BUILD_DRIVERS[name]()


def get_test_driver(name: str = "local") -> BaseTestDriver:
    """Instantiate a test driver by name (ValueError if unknown)."""
    if name not in TEST_DRIVERS:
        raise ValueError(
            f"Unknown test driver: {name}. Available: {', '.join(sorted(TEST_DRIVERS))}"
        )
    return TEST_DRIVERS[name]()
