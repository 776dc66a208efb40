"""Tests for per-target locking."""

import threading
import uuid

import pytest
from django.db import connection
from django.test import TransactionTestCase

from apps.clusters.models import DeploymentTarget
from apps.orchestration import locks
from apps.orchestration.errors import ConflictError, ErrorKind
from apps.orchestration.models import PipelineRun, RunStatus, TargetLock
from apps.orchestration.orchestrator import PipelineOrchestrator


def _run(target, status=RunStatus.PENDING):
    return PipelineRun.objects.create(
        trace_id=str(uuid.uuid4()),
        run_id=str(uuid.uuid4()),
        target=target,
        source_ref="abc",
        status=status,
    )


@pytest.mark.django_db
class TestTargetLocks:
    def test_acquire_and_release(self, target):
        run = _run(target)
        lock = locks.acquire(target, run)
        assert lock.run == run
        assert locks.holder(target) == run

        assert locks.release(run) is True
        assert locks.holder(target) is None
        assert locks.release(run) is False

    def test_acquire_is_reentrant_for_holder(self, target):
        run = _run(target)
        first = locks.acquire(target, run)
        assert locks.acquire(target, run).pk == first.pk

    def test_conflict_names_holder(self, target):
        holder = _run(target, status=RunStatus.RUNNING)
        locks.acquire(target, holder)

        with pytest.raises(ConflictError) as exc_info:
            locks.acquire(target, _run(target))
        assert exc_info.value.holder_run_id == holder.run_id
        assert exc_info.value.target_key == target.key

    def test_stale_lock_is_reclaimed(self, target):
        """A lock held by a terminal run does not block new runs."""
        stale = _run(target, status=RunStatus.RUNNING)
        locks.acquire(target, stale)
        stale.mark_failed(ErrorKind.PERMANENT, "crashed before release")

        fresh = _run(target)
        lock = locks.acquire(target, fresh)
        assert lock.run == fresh
        assert TargetLock.objects.count() == 1

    def test_locks_are_per_target(self, target):
        other = DeploymentTarget.objects.create(cluster="prod-eu", namespace="web", workload="cart")
        locks.acquire(target, _run(target))
        locks.acquire(other, _run(other))
        assert TargetLock.objects.count() == 2


class ConcurrentStartTests(TransactionTestCase):
    """Concurrent starts against one target: exactly one wins."""

    def test_only_one_concurrent_start_succeeds(self):
        DeploymentTarget.objects.create(cluster="c1", namespace="ns", workload="api")
        orchestrator = PipelineOrchestrator(dispatcher=lambda run_id: None)
        barrier = threading.Barrier(5)
        started, conflicts, errors = [], [], []

        def start(n):
            try:
                barrier.wait()
                started.append(orchestrator.start({"source_ref": f"ref-{n}", "target": "c1/ns/api"}))
            except ConflictError as e:
                conflicts.append(e)
            except Exception as e:
                errors.append(e)
            finally:
                connection.close()

        threads = [threading.Thread(target=start, args=(n,)) for n in range(5)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert errors == []
        assert len(started) == 1
        assert len(conflicts) == 4
        assert all(e.holder_run_id == started[0] for e in conflicts)
        # A rejected start leaves no run behind.
        assert PipelineRun.objects.count() == 1
        assert TargetLock.objects.get().run.run_id == started[0]
