"""Local publisher: records the reference without contacting a registry."""

from apps.orchestration.dtos import PublishResult, StageContext
from apps.registry.drivers.base import BasePublishDriver


class LocalPublishDriver(BasePublishDriver):
    name = "local"

    def publish(self, ctx: StageContext) -> PublishResult:
        artifact = self._require_artifact(ctx)
        return PublishResult(
            digest=artifact.digest,
            tag=self.resolve_tag(ctx),
            repository=ctx.repository,
        )
