"""
Stage executors for each pipeline stage.

Each executor wraps the corresponding app's drivers. ``execute`` talks to the
outside world only: it runs on a worker thread bounded by the stage timeout
and must not touch the database. ``record`` runs afterwards on the
orchestrator's thread and persists what the stage established (artifact
identity, telemetry checkpoint).
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from datetime import timedelta

from django.utils import timezone

from apps.builds.drivers import get_build_driver, get_test_driver
from apps.clusters.drivers import get_deploy_driver
from apps.orchestration.dtos import (
    ArtifactInfo,
    BuildResult,
    DeployResult,
    PublishResult,
    StageContext,
    StageResult,
    TestResult,
    VerifyResult,
)
from apps.orchestration.errors import PermanentAdapterError
from apps.orchestration.models import PipelineStage
from apps.registry.drivers import get_publish_driver
from apps.registry.services import check_digest_integrity, record_artifact
from apps.verification.services import TelemetryVerifier, record_checkpoint

logger = logging.getLogger(__name__)

DEFAULT_DRIVER = "local"

# Seconds reserved at the end of the verify stage budget so the verifier
# reports its own timeout before the stage timeout fires.
VERIFY_DEADLINE_MARGIN_SECONDS = 1.0


class BaseExecutor(ABC):
    """Base class for stage executors."""

    stage: str = ""

    @staticmethod
    def driver_name(ctx: StageContext) -> str:
        return str(ctx.config.get("driver") or DEFAULT_DRIVER)

    @abstractmethod
    def execute(self, ctx: StageContext) -> StageResult:
        """Execute the stage and return a result DTO."""
        raise NotImplementedError

    def artifact(self, ctx: StageContext, result: StageResult) -> ArtifactInfo | None:
        """The artifact to carry forward after this stage."""
        return ctx.artifact

    def record(self, run, ctx: StageContext, result: StageResult) -> None:
        """Persist stage outcome (called outside the worker thread)."""


class BuildExecutor(BaseExecutor):
    """
    Stage 1: Build.

    Produces the artifact digest. A digest already recorded for a different
    source input fails the run with an integrity error.
    """

    stage = PipelineStage.BUILD

    def execute(self, ctx: StageContext) -> BuildResult:
        result = get_build_driver(self.driver_name(ctx)).build(ctx)
        if not result.digest:
            raise PermanentAdapterError("Build produced no digest", stage=ctx.stage)
        return result

    def artifact(self, ctx: StageContext, result: BuildResult) -> ArtifactInfo:
        return ArtifactInfo(digest=result.digest, repository=ctx.repository)

    def record(self, run, ctx: StageContext, result: BuildResult) -> None:
        check_digest_integrity(result.digest, ctx.source_ref)


class TestExecutor(BaseExecutor):
    """Stage 2: Test the built artifact."""

    __test__ = False  # not a pytest test class

    stage = PipelineStage.TEST

    def execute(self, ctx: StageContext) -> TestResult:
        result = get_test_driver(self.driver_name(ctx)).run_tests(ctx)
        if not result.passed:
            raise PermanentAdapterError(f"tests failed: {result.summary}", stage=ctx.stage)
        return result


class PublishExecutor(BaseExecutor):
    """Stage 3: Publish the artifact to the registry under a durable tag."""

    stage = PipelineStage.PUBLISH

    def execute(self, ctx: StageContext) -> PublishResult:
        result = get_publish_driver(self.driver_name(ctx)).publish(ctx)
        if ctx.artifact is not None and result.digest != ctx.artifact.digest:
            raise PermanentAdapterError(
                f"Registry published {result.digest}, expected {ctx.artifact.digest}",
                stage=ctx.stage,
            )
        return result

    def artifact(self, ctx: StageContext, result: PublishResult) -> ArtifactInfo:
        return ArtifactInfo(
            digest=result.digest,
            repository=result.repository or ctx.repository,
            tag=result.tag,
        )

    def record(self, run, ctx: StageContext, result: PublishResult) -> None:
        record_artifact(
            digest=result.digest,
            tag=result.tag,
            repository=result.repository or ctx.repository,
            source_ref=ctx.source_ref,
            run=run,
        )


class DeployExecutor(BaseExecutor):
    """Stage 4: Apply desired state referencing the published digest."""

    stage = PipelineStage.DEPLOY

    def execute(self, ctx: StageContext) -> DeployResult:
        result = get_deploy_driver(self.driver_name(ctx)).deploy(ctx)
        if not result.accepted:
            raise PermanentAdapterError(f"Deployment rejected: {result.detail}", stage=ctx.stage)
        return result


class VerifyExecutor(BaseExecutor):
    """Stage 5: Wait for readiness and telemetry of the deployed digest."""

    stage = PipelineStage.VERIFY

    def __init__(self, verifier_factory=TelemetryVerifier.from_config):
        self.verifier_factory = verifier_factory

    def execute(self, ctx: StageContext) -> VerifyResult:
        if ctx.artifact is None:
            raise PermanentAdapterError("Verify requires a deployed artifact", stage=ctx.stage)
        deadline = None
        if ctx.timeout:
            budget = max(ctx.timeout - VERIFY_DEADLINE_MARGIN_SECONDS, ctx.timeout / 2)
            deadline = timezone.now() + timedelta(seconds=budget)
        return self.verifier_factory(ctx.config).verify(ctx, deadline=deadline)

    def record(self, run, ctx: StageContext, result: VerifyResult) -> None:
        record_checkpoint(run=run, target=run.target, result=result)


EXECUTORS: dict[str, type[BaseExecutor]] = {
    PipelineStage.BUILD: BuildExecutor,
    PipelineStage.TEST: TestExecutor,
    PipelineStage.PUBLISH: PublishExecutor,
    PipelineStage.DEPLOY: DeployExecutor,
    PipelineStage.VERIFY: VerifyExecutor,
}


def default_executors() -> dict[str, BaseExecutor]:
    return {stage: executor_class() for stage, executor_class in EXECUTORS.items()}
