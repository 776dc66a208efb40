"""Celery application bootstrap for the deployment orchestrator.

Each pipeline run executes its stage loop inside its own Celery task, so runs
for distinct targets proceed concurrently on the worker pool.

Run workers with something like:
- celery -A config worker -l info
- celery -A config beat -l info   (periodic resume of interrupted runs)

Broker/result backend are configured via Django settings (see config/settings.py).
"""

from __future__ import annotations

import os

from celery import Celery

from config.env import load_env

load_env()

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")

app = Celery("deploy-orchestrator")

# Load Celery config from Django settings using CELERY_* namespace.
app.config_from_object("django.conf:settings", namespace="CELERY")

app.autodiscover_tasks()
