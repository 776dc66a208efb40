"""
Django settings for the deployment orchestrator.

Values are read from the process environment (optionally seeded from .env
files, see config/env.py). Defaults are suitable for local development.
"""

from __future__ import annotations

import os
from pathlib import Path

from config.env import env_bool, env_float, env_int, env_list, load_env

BASE_DIR = Path(__file__).resolve().parent.parent

load_env(BASE_DIR)

SECRET_KEY = os.environ.get("DJANGO_SECRET_KEY", "insecure-dev-key-change-me")
DEBUG = env_bool("DJANGO_DEBUG", default=False)
ALLOWED_HOSTS = env_list("DJANGO_ALLOWED_HOSTS", default=["localhost", "127.0.0.1", "testserver"])

INSTALLED_APPS = [
    "config.apps.DeployAdminConfig",
    "django.contrib.auth",
    "django.contrib.contenttypes",
    "django.contrib.sessions",
    "django.contrib.messages",
    "django.contrib.staticfiles",
    "django_object_actions",
    "django_json_widget",
    "apps.clusters",
    "apps.builds",
    "apps.registry",
    "apps.verification",
    "apps.orchestration",
]

MIDDLEWARE = [
    "django.middleware.security.SecurityMiddleware",
    "django.contrib.sessions.middleware.SessionMiddleware",
    "django.middleware.common.CommonMiddleware",
    "django.middleware.csrf.CsrfViewMiddleware",
    "django.contrib.auth.middleware.AuthenticationMiddleware",
    "django.contrib.messages.middleware.MessageMiddleware",
    "django.middleware.clickjacking.XFrameOptionsMiddleware",
]

ROOT_URLCONF = "config.urls"

TEMPLATES = [
    {
        "BACKEND": "django.template.backends.django.DjangoTemplates",
        "DIRS": [BASE_DIR / "templates"],
        "APP_DIRS": True,
        "OPTIONS": {
            "context_processors": [
                "django.template.context_processors.request",
                "django.contrib.auth.context_processors.auth",
                "django.contrib.messages.context_processors.messages",
            ],
        },
    },
]

WSGI_APPLICATION = "config.wsgi.application"

DATABASES = {
    "default": {
        "ENGINE": "django.db.backends.sqlite3",
        "NAME": os.environ.get("DJANGO_DB_PATH", str(BASE_DIR / "db.sqlite3")),
        "OPTIONS": {"timeout": 20},
    }
}

DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"

LANGUAGE_CODE = "en-us"
TIME_ZONE = "UTC"
USE_I18N = True
USE_TZ = True

STATIC_URL = "static/"
STATIC_ROOT = BASE_DIR / "staticfiles"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

LOG_LEVEL = os.environ.get("DJANGO_LOG_LEVEL", "INFO").upper()

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "verbose": {
            "format": "%(asctime)s %(levelname)s %(name)s %(message)s",
        },
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "verbose",
        },
    },
    "root": {
        "handlers": ["console"],
        "level": "WARNING",
    },
    "loggers": {
        "apps": {
            "handlers": ["console"],
            "level": LOG_LEVEL,
            "propagate": False,
        },
        "django": {
            "handlers": ["console"],
            "level": os.environ.get("DJANGO_FRAMEWORK_LOG_LEVEL", "WARNING").upper(),
            "propagate": False,
        },
    },
}

# ---------------------------------------------------------------------------
# Celery
# ---------------------------------------------------------------------------

CELERY_BROKER_URL = os.environ.get("CELERY_BROKER_URL", "redis://localhost:6379/0")
CELERY_RESULT_BACKEND = os.environ.get("CELERY_RESULT_BACKEND", CELERY_BROKER_URL)
CELERY_TASK_ALWAYS_EAGER = env_bool("CELERY_TASK_ALWAYS_EAGER", default=False)
CELERY_TASK_EAGER_PROPAGATES = True
CELERY_TASK_ACKS_LATE = True
CELERY_WORKER_PREFETCH_MULTIPLIER = 1
CELERY_ACCEPT_CONTENT = ["json"]
CELERY_TASK_SERIALIZER = "json"
CELERY_RESULT_SERIALIZER = "json"
CELERY_BEAT_SCHEDULE = {
    "resume-interrupted-runs": {
        "task": "apps.orchestration.tasks.resume_interrupted_runs_task",
        "schedule": env_float("ORCHESTRATION_RESUME_INTERVAL_SECONDS", 300.0),
    },
}

# ---------------------------------------------------------------------------
# Orchestration
# ---------------------------------------------------------------------------

ORCHESTRATION_MAX_ATTEMPTS_PER_STAGE = env_int("ORCHESTRATION_MAX_ATTEMPTS_PER_STAGE", 4)
ORCHESTRATION_BACKOFF_BASE_SECONDS = env_float("ORCHESTRATION_BACKOFF_BASE_SECONDS", 2.0)
ORCHESTRATION_BACKOFF_CAP_SECONDS = env_float("ORCHESTRATION_BACKOFF_CAP_SECONDS", 60.0)
ORCHESTRATION_BACKOFF_JITTER = env_float("ORCHESTRATION_BACKOFF_JITTER", 0.5)
ORCHESTRATION_RUN_TIMEOUT_SECONDS = env_float("ORCHESTRATION_RUN_TIMEOUT_SECONDS", 3600.0)
ORCHESTRATION_STAGE_TIMEOUTS = {
    "build": env_float("ORCHESTRATION_BUILD_TIMEOUT_SECONDS", 1800.0),
    "test": env_float("ORCHESTRATION_TEST_TIMEOUT_SECONDS", 1800.0),
    "publish": env_float("ORCHESTRATION_PUBLISH_TIMEOUT_SECONDS", 600.0),
    "deploy": env_float("ORCHESTRATION_DEPLOY_TIMEOUT_SECONDS", 300.0),
    "verify": env_float("ORCHESTRATION_VERIFY_TIMEOUT_SECONDS", 300.0),
}
# Runs still "running" without ledger progress for this long are considered
# orphaned by a crashed worker and are re-dispatched by resume_interrupted_runs_task.
ORCHESTRATION_RESUME_STALE_SECONDS = env_float(
    "ORCHESTRATION_RESUME_STALE_SECONDS",
    max(ORCHESTRATION_STAGE_TIMEOUTS.values()) + ORCHESTRATION_BACKOFF_CAP_SECONDS + 60.0,
)
# A stage loop holds its run for the blocking call ahead of it plus this margin;
# another loop may take the run over only once that claim has expired.
ORCHESTRATION_CLAIM_GRACE_SECONDS = env_float("ORCHESTRATION_CLAIM_GRACE_SECONDS", 60.0)
# Redelivery of an unacknowledged execute_run_task must not happen while the run
# can still be in progress.
CELERY_BROKER_TRANSPORT_OPTIONS = {
    "visibility_timeout": int(ORCHESTRATION_RUN_TIMEOUT_SECONDS + ORCHESTRATION_RESUME_STALE_SECONDS),
}
ORCHESTRATION_METRICS_BACKEND = os.environ.get("ORCHESTRATION_METRICS_BACKEND", "logging")

STATSD_HOST = os.environ.get("STATSD_HOST", "localhost")
STATSD_PORT = env_int("STATSD_PORT", 8125)
STATSD_PREFIX = os.environ.get("STATSD_PREFIX", "pipeline")

# ---------------------------------------------------------------------------
# Verification
# ---------------------------------------------------------------------------

VERIFICATION_POLL_INTERVAL_SECONDS = env_float("VERIFICATION_POLL_INTERVAL_SECONDS", 5.0)
VERIFICATION_READINESS_TIMEOUT_SECONDS = env_float("VERIFICATION_READINESS_TIMEOUT_SECONDS", 120.0)
VERIFICATION_TELEMETRY_WINDOW_SECONDS = env_float("VERIFICATION_TELEMETRY_WINDOW_SECONDS", 60.0)
