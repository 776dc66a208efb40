"""Base driver for applying desired state to a cluster.

Drivers receive the digest-pinned artifact and must be safe to call more than
once for the same run: re-applying the same desired state is a no-op for the
cluster.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from apps.orchestration.dtos import ArtifactInfo, DeployResult, StageContext
from apps.orchestration.errors import PermanentAdapterError


class BaseDeployDriver(ABC):
    """Abstract base class for cluster deployer drivers."""

    name: str = "base"

    def validate_config(self, config: dict[str, Any]) -> bool:
        """Validate the driver configuration block."""
        return True

    @abstractmethod
    def deploy(self, ctx: StageContext) -> DeployResult:
        """Apply the desired state referencing ``ctx.artifact`` to the target."""

    def _require_artifact(self, ctx: StageContext) -> ArtifactInfo:
        if ctx.artifact is None:
            raise PermanentAdapterError("Deploy requires a published artifact", stage=ctx.stage)
        return ctx.artifact

    def _check_config(self, ctx: StageContext) -> None:
        if not self.validate_config(ctx.config):
            raise PermanentAdapterError(
                f"Invalid configuration for deploy driver '{self.name}'", stage=ctx.stage
            )
