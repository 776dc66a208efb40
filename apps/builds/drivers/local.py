"""Local build/test drivers for development and tests.

The build digest is derived from the repository and source reference, so the
same source always maps to the same digest. A fixed ``digest`` may be set in
the stage configuration instead.
"""

import hashlib
import logging

from apps.builds.drivers.base import BaseBuildDriver, BaseTestDriver, normalize_digest
from apps.orchestration.dtos import BuildResult, StageContext, TestResult
from apps.orchestration.errors import PermanentAdapterError

logger = logging.getLogger(__name__)


def local_digest(repository: str, source_ref: str) -> str:
    raw = f"{repository}:{source_ref}".encode("utf-8")
    return f"sha256:{hashlib.sha256(raw).hexdigest()}"


class LocalBuildDriver(BaseBuildDriver):
    name = "local"

    def build(self, ctx: StageContext) -> BuildResult:
        fixed = ctx.config.get("digest")
        digest = normalize_digest(fixed) if fixed else local_digest(ctx.repository, ctx.source_ref)
        logger.info(f"[local] build of {ctx.source_ref} -> {digest}")
        return BuildResult(digest=digest, image=ctx.placeholders()["image"])


class LocalTestDriver(BaseTestDriver):
    name = "local"

    def run_tests(self, ctx: StageContext) -> TestResult:
        if ctx.config.get("fail"):
            raise PermanentAdapterError(f"tests failed: {ctx.config['fail']}", stage=ctx.stage)
        return TestResult(passed=True, summary="local driver: no tests run")
