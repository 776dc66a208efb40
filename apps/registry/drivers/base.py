"""Base driver for publishing artifacts to a registry.

Publishing must be idempotent: publishing a digest that the registry already
holds under the requested tag is a no-op success, not a duplicate.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from apps.orchestration.dtos import ArtifactInfo, PublishResult, StageContext
from apps.orchestration.errors import PermanentAdapterError
from apps.orchestration.utils.process import render

DEFAULT_TAG_TEMPLATE = "${short_ref}"


class BasePublishDriver(ABC):
    """Abstract base class for registry publisher drivers."""

    name: str = "base"

    def validate_config(self, config: dict[str, Any]) -> bool:
        return True

    @abstractmethod
    def publish(self, ctx: StageContext) -> PublishResult:
        """Publish ``ctx.artifact`` and return its durable reference."""

    def _require_artifact(self, ctx: StageContext) -> ArtifactInfo:
        if ctx.artifact is None or not ctx.artifact.digest:
            raise PermanentAdapterError("Publish requires a built artifact digest", stage=ctx.stage)
        return ctx.artifact

    def _check_config(self, ctx: StageContext) -> None:
        if not self.validate_config(ctx.config):
            raise PermanentAdapterError(
                f"Invalid configuration for publish driver '{self.name}'", stage=ctx.stage
            )

    def resolve_tag(self, ctx: StageContext) -> str:
        """Render the tag for this publication (default: short source ref)."""
        tag = render(ctx.config.get("tag_template", DEFAULT_TAG_TEMPLATE), ctx.placeholders())
        if not tag:
            raise PermanentAdapterError("Tag template rendered an empty tag", stage=ctx.stage)
        return tag
