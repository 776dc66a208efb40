"""
Django system checks for the deployment orchestrator.

Available check tags:
    - orchestration: retry, backoff and timeout settings
    - targets: driver selection in each active target's pipeline_config

Usage:
    python manage.py check --tag orchestration
    python manage.py check --tag targets
"""

from django.conf import settings
from django.core.checks import Error, Warning, register
from django.db import DatabaseError

from apps.orchestration.models import STAGE_ORDER


@register("orchestration")
def check_orchestration_settings(app_configs, **kwargs):
    """Validate retry, backoff, timeout and metrics settings."""
    errors = []

    if settings.ORCHESTRATION_MAX_ATTEMPTS_PER_STAGE < 1:
        errors.append(
            Error(
                "ORCHESTRATION_MAX_ATTEMPTS_PER_STAGE must be at least 1",
                id="orchestration.E001",
            )
        )
    if settings.ORCHESTRATION_BACKOFF_BASE_SECONDS <= 0:
        errors.append(Error("ORCHESTRATION_BACKOFF_BASE_SECONDS must be positive", id="orchestration.E002"))
    if settings.ORCHESTRATION_BACKOFF_CAP_SECONDS < settings.ORCHESTRATION_BACKOFF_BASE_SECONDS:
        errors.append(
            Error(
                "ORCHESTRATION_BACKOFF_CAP_SECONDS must not be below the backoff base",
                id="orchestration.E003",
            )
        )
    if not 0 <= settings.ORCHESTRATION_BACKOFF_JITTER <= 1:
        errors.append(
            Error(
                "ORCHESTRATION_BACKOFF_JITTER must be within [0, 1]",
                hint="Larger jitter can make consecutive retry delays shrink.",
                id="orchestration.E004",
            )
        )
    if settings.ORCHESTRATION_RUN_TIMEOUT_SECONDS <= 0:
        errors.append(Error("ORCHESTRATION_RUN_TIMEOUT_SECONDS must be positive", id="orchestration.E005"))

    timeouts = settings.ORCHESTRATION_STAGE_TIMEOUTS
    for stage in STAGE_ORDER:
        value = timeouts.get(stage)
        if value is None or value <= 0:
            errors.append(
                Error(
                    f"ORCHESTRATION_STAGE_TIMEOUTS['{stage}'] must be a positive number of seconds",
                    id="orchestration.E006",
                )
            )

    verify_budget = (
        settings.VERIFICATION_READINESS_TIMEOUT_SECONDS + settings.VERIFICATION_TELEMETRY_WINDOW_SECONDS
    )
    if timeouts.get("verify", 0) and verify_budget > timeouts["verify"]:
        errors.append(
            Warning(
                "Verification readiness timeout plus telemetry window exceeds the verify stage timeout",
                hint="The stage timeout will cut verification short and report it as a transient failure.",
                id="orchestration.W001",
            )
        )

    if settings.ORCHESTRATION_METRICS_BACKEND not in ("logging", "statsd"):
        errors.append(
            Error(
                f"Unknown ORCHESTRATION_METRICS_BACKEND: {settings.ORCHESTRATION_METRICS_BACKEND}",
                hint="Use 'logging' or 'statsd'.",
                id="orchestration.E007",
            )
        )

    return errors


def _target_config_errors(target) -> list[str]:
    """Problems with the driver selection of one target."""
    from apps.builds.drivers import BUILD_DRIVERS, TEST_DRIVERS
    from apps.clusters.drivers import DRIVER_REGISTRY as DEPLOY_DRIVERS
    from apps.registry.drivers import DRIVER_REGISTRY as PUBLISH_DRIVERS
    from apps.verification.probes import READINESS_PROBES, TELEMETRY_SOURCES

    registries = {
        "build": BUILD_DRIVERS,
        "test": TEST_DRIVERS,
        "publish": PUBLISH_DRIVERS,
        "deploy": DEPLOY_DRIVERS,
    }
    problems = []
    for stage, registry in registries.items():
        config = target.stage_config(stage)
        name = config.get("driver", "local")
        if name not in registry:
            problems.append(f"{stage}: unknown driver '{name}'")
        elif not registry[name]().validate_config(config):
            problems.append(f"{stage}: invalid configuration for driver '{name}'")

    verify = target.stage_config("verify")
    for key, registry in (("readiness", READINESS_PROBES), ("telemetry", TELEMETRY_SOURCES)):
        config = dict(verify.get(key) or {})
        name = config.pop("driver", "local")
        if name not in registry:
            problems.append(f"verify.{key}: unknown driver '{name}'")
        elif not registry[name]().validate_config(config):
            problems.append(f"verify.{key}: invalid configuration for driver '{name}'")
    return problems


@register("targets")
def check_target_drivers(app_configs, **kwargs):
    """Validate the configured drivers of every active deployment target."""
    from apps.clusters.models import DeploymentTarget

    errors = []
    try:
        targets = list(DeploymentTarget.objects.filter(is_active=True))
    except DatabaseError:
        # Tables not created yet.
        return errors

    for target in targets:
        for problem in _target_config_errors(target):
            errors.append(
                Error(
                    f"Target {target.key} {problem}",
                    hint="Fix the target's pipeline_config in the admin or with register_target.",
                    obj=target,
                    id="orchestration.E101",
                )
            )
    return errors
