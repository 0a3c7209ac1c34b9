# SPDX-License-Identifier: Apache-2.0
"""Tests for the periodic sync scheduler."""

import pytest

from core.sync.registry import RunRegistry
from core.sync.result import SyncResult
from core.sync.settings import SyncSettings
from core.sync.sync_scheduler import SYNC_JOB_ID, SyncScheduler
from data.database.models import SyncState


class RecordingOrchestrator:
    """Orchestrator stand-in recording runs and their tokens."""

    def __init__(self, failing=()):
        self.settings = SyncSettings(run_timeout_seconds=5)
        self.failing = set(failing)
        self.runs = []

    def run_sync(self, target_id, cancel_token=None):
        self.runs.append((target_id, cancel_token))
        if target_id in self.failing:
            raise RuntimeError("database is locked")
        return SyncResult(target_id=target_id)


@pytest.fixture
def orchestrator():
    return RecordingOrchestrator()


@pytest.fixture
def scheduler(orchestrator, state_store):
    scheduler = SyncScheduler(orchestrator, state_store, registry=RunRegistry(), interval_minutes=30)
    yield scheduler
    if scheduler.is_running:
        scheduler.stop()


def add_target(state_store, credential, resource_id, **fields):
    return state_store.create(
        SyncState(credential_id=credential.id, provider="google", resource_id=resource_id, **fields)
    )


class TestRunTarget:
    def test_run_gets_registry_token_with_deadline(self, scheduler, orchestrator, target):
        result = scheduler.run_target(target.id)

        assert result.target_id == target.id
        _, token = orchestrator.runs[0]
        assert token.remaining() is not None
        assert not scheduler.registry.is_running(target.id)

    def test_concurrent_trigger_is_skipped(self, scheduler, orchestrator, target):
        scheduler.registry.start(target.id)

        assert scheduler.run_target(target.id) is None
        assert orchestrator.runs == []


class TestSyncAll:
    def test_runs_every_active_target(self, scheduler, orchestrator, state_store, credential, target):
        other = add_target(state_store, credential, "work")
        add_target(state_store, credential, "archived", is_active=False)

        results = scheduler.sync_all()

        assert set(results) == {target.id, other.id}
        assert {run[0] for run in orchestrator.runs} == {target.id, other.id}

    def test_one_failing_target_does_not_stop_others(self, state_store, credential, target):
        other = add_target(state_store, credential, "work")
        orchestrator = RecordingOrchestrator(failing={target.id})
        scheduler = SyncScheduler(orchestrator, state_store)

        results = scheduler.sync_all()

        assert list(results) == [other.id]
        assert len(orchestrator.runs) == 2

    def test_resume_stale_runs(self, scheduler, orchestrator, state_store, credential, target):
        state_store.update(target.id, {"in_progress": True})
        add_target(state_store, credential, "work")

        assert scheduler.resume_stale_runs() == [target.id]
        assert [run[0] for run in orchestrator.runs] == [target.id]


class TestLifecycle:
    def test_start_and_stop(self, scheduler):
        scheduler.start()

        assert scheduler.is_running
        assert scheduler.scheduler.get_job(SYNC_JOB_ID) is not None
        assert scheduler.get_next_sync_time() is not None
        assert scheduler.get_status()["interval_minutes"] == 30

        scheduler.stop()

        assert not scheduler.is_running
        assert scheduler.get_next_sync_time() is None

    def test_stop_cancels_running_syncs(self, scheduler):
        scheduler.start()
        token = scheduler.registry.start("t1")

        scheduler.stop()

        assert token.cancelled
