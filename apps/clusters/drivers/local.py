"""No-op deploy driver for local development and tests."""

import logging

from apps.clusters.drivers.base import BaseDeployDriver
from apps.orchestration.dtos import DeployResult, StageContext

logger = logging.getLogger(__name__)


class LocalDeployDriver(BaseDeployDriver):
    """Accepts every deployment without contacting a cluster."""

    name = "local"

    def deploy(self, ctx: StageContext) -> DeployResult:
        artifact = self._require_artifact(ctx)
        logger.info(f"[local] would deploy {artifact.image_ref} to {ctx.target_key}")
        return DeployResult(accepted=True, revision=artifact.digest, detail="local driver")
