"""Shared test fixtures for orchestration app."""

import pytest

from apps.clusters.models import DeploymentTarget
from apps.orchestration.orchestrator import PipelineOrchestrator


@pytest.fixture
def local_pipeline_config():
    """Pipeline configuration that runs every stage with the local drivers."""
    return {
        "build": {"driver": "local", "digest": "sha256:abc123"},
        "test": {"driver": "local"},
        "publish": {"driver": "local"},
        "deploy": {"driver": "local"},
        "verify": {
            "readiness": {"driver": "local"},
            "telemetry": {"driver": "local", "samples": 3},
        },
    }


@pytest.fixture
def target(db, local_pipeline_config):
    """A deployment target wired to the local drivers."""
    return DeploymentTarget.objects.create(
        cluster="prod-eu",
        namespace="web",
        workload="checkout",
        repository="registry.example.com/shop/checkout",
        pipeline_config=local_pipeline_config,
    )


@pytest.fixture
def dispatched():
    """Collects run IDs handed to the dispatcher."""
    return []


@pytest.fixture
def orchestrator(dispatched):
    """Orchestrator that records dispatches instead of queueing Celery tasks."""
    return PipelineOrchestrator(dispatcher=dispatched.append, sleep=lambda seconds: None)
