"""Shared test fixtures for registry app."""

import pytest

from apps.clusters.models import DeploymentTarget
from apps.orchestration.models import PipelineRun


@pytest.fixture
def make_run(db):
    """Factory for runs against a single target."""
    target = DeploymentTarget.objects.create(
        cluster="prod-us", namespace="shop", workload="cart", repository="registry.example.com/shop/cart"
    )

    def _make(run_id="run-1", source_ref="aaaa1111"):
        return PipelineRun.objects.create(
            trace_id=f"trace-{run_id}", run_id=run_id, target=target, source_ref=source_ref
        )

    return _make
