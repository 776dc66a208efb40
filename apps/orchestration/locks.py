"""
Per-target mutual exclusion.

At most one non-terminal run may hold a target. Locks are rows of TargetLock,
whose unique constraints make concurrent acquisitions race safely in the
database; within one process a mutex additionally serializes the
check-and-insert so threads do not contend on the same transaction.
"""

from __future__ import annotations

import logging
import threading

from django.db import IntegrityError, transaction

from apps.orchestration.errors import ConflictError
from apps.orchestration.models import TERMINAL_STATUSES, PipelineRun, TargetLock

logger = logging.getLogger(__name__)

_mutex = threading.RLock()


def exclusive() -> threading.RLock:
    """Process-wide mutex guarding lock mutations; callers may hold it across a transaction."""
    return _mutex


def acquire(target, run: PipelineRun) -> TargetLock:
    """
    Claim ``target`` for ``run``.

    A lock left behind by a run that has already reached a terminal status
    (e.g. a crash between the terminal mark and the release) is reclaimed.

    Raises:
        ConflictError: Another active run holds the target.
    """
    with _mutex:
        try:
            with transaction.atomic():
                existing = TargetLock.objects.select_related("run").filter(target=target).first()
                if existing is not None:
                    if existing.run_id == run.pk:
                        return existing
                    if existing.run.status not in TERMINAL_STATUSES:
                        raise ConflictError(target.key, existing.run.run_id)
                    logger.warning(
                        f"Reclaiming stale lock on {target.key} from {existing.run.status} "
                        f"run {existing.run.run_id}"
                    )
                    existing.delete()
                return TargetLock.objects.create(target=target, run=run)
        except IntegrityError:
            current = holder(target)
            raise ConflictError(target.key, current.run_id if current else None)


def release(run: PipelineRun) -> bool:
    """Release the lock held by ``run``, if any. Returns True if one was released."""
    with _mutex:
        deleted, _ = TargetLock.objects.filter(run=run).delete()
    if deleted:
        logger.info(f"Released lock held by run {run.run_id}")
    return bool(deleted)


def holder(target) -> PipelineRun | None:
    """The run currently holding ``target``, if any."""
    lock = TargetLock.objects.select_related("run").filter(target=target).first()
    return lock.run if lock else None
