# SPDX-License-Identifier: Apache-2.0
#
# Copyright (c) 2024-2025 Dashsync Contributors
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
"""
Sync Scheduler for dashsync.

Runs every active sync target periodically. Whether a failed run is retried
is decided by the next interval, never by the scheduler itself.
"""

import logging
from typing import Dict, List, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from config.constants import DEFAULT_SYNC_INTERVAL_MINUTES
from core.sync.exceptions import SyncAlreadyRunningError
from core.sync.registry import RunRegistry
from core.sync.result import SyncResult

logger = logging.getLogger("dashsync.sync.scheduler")

SYNC_JOB_ID = "sync_all_targets"


class SyncScheduler:
    """
    Periodic trigger for sync runs.

    Uses APScheduler to run all active targets at regular intervals. Runs are
    serialized per target through the ``RunRegistry``.
    """

    def __init__(
        self,
        orchestrator,
        state_store,
        registry: Optional[RunRegistry] = None,
        interval_minutes: int = DEFAULT_SYNC_INTERVAL_MINUTES,
        run_timeout_seconds: Optional[float] = None,
    ):
        """
        Args:
            orchestrator: SyncOrchestrator instance
            state_store: SyncStateStore used to list targets
            registry: Run registry shared with other triggers
            interval_minutes: Sync interval in minutes (default: 15)
            run_timeout_seconds: Deadline for each run
        """
        self.orchestrator = orchestrator
        self.state_store = state_store
        self.registry = registry or RunRegistry()
        self.interval_minutes = interval_minutes
        self.run_timeout_seconds = (
            run_timeout_seconds
            if run_timeout_seconds is not None
            else orchestrator.settings.run_timeout_seconds
        )
        self.scheduler = BackgroundScheduler()
        self.is_running = False

        logger.info(f"SyncScheduler initialized with {interval_minutes}min interval")

    def start(self):
        """Start the periodic scheduler."""
        if self.is_running:
            logger.warning("Scheduler is already running")
            return

        try:
            self.scheduler.add_job(
                func=self.sync_all,
                trigger=IntervalTrigger(minutes=self.interval_minutes),
                id=SYNC_JOB_ID,
                name="Sync all targets",
                replace_existing=True,
                max_instances=1,  # Prevent overlapping passes
            )

            self.scheduler.start()
            self.is_running = True
            logger.info("Sync scheduler started")

        except Exception as e:
            logger.error(f"Failed to start scheduler: {e}")
            raise

    def stop(self):
        """Cancel running syncs and stop the scheduler."""
        if not self.is_running:
            logger.warning("Scheduler is not running")
            return

        self.registry.cancel_all()
        self.scheduler.shutdown(wait=True)
        self.is_running = False
        logger.info("Sync scheduler stopped")

    def sync_now(self):
        """Trigger an immediate pass in addition to the scheduled ones."""
        if not self.is_running:
            logger.warning("Scheduler is not running, cannot trigger manual sync")
            return

        self.scheduler.add_job(
            func=self.sync_all,
            id=f"{SYNC_JOB_ID}_manual",
            name="Manual sync",
            replace_existing=True,
        )
        logger.info("Manual sync triggered")

    def run_target(self, target_id: str) -> Optional[SyncResult]:
        """
        Run one target unless it is already running.

        Returns:
            The run's result, or None if another run holds the target
        """
        try:
            with self.registry.track(target_id, self.run_timeout_seconds) as token:
                return self.orchestrator.run_sync(target_id, cancel_token=token)
        except SyncAlreadyRunningError:
            logger.info(f"Sync already running for {target_id}, skipping trigger")
            return None

    def sync_all(self) -> Dict[str, SyncResult]:
        """
        Run every active target once.

        Called by the scheduler at regular intervals. Failures of one target
        do not stop the others.
        """
        logger.info("Starting scheduled sync")

        results: Dict[str, SyncResult] = {}
        for state in self.state_store.list_active():
            try:
                result = self.run_target(state.id)
            except Exception as e:
                # Keep the job alive for the remaining targets
                logger.exception(f"Sync of {state.id} raised: {e}")
                continue
            if result is not None:
                results[state.id] = result
                if result.requires_attention:
                    logger.warning(f"Sync of {state.id} needs attention: {result.error}")

        completed = sum(1 for result in results.values() if result.succeeded)
        logger.info(f"Scheduled sync completed: {completed}/{len(results)} succeeded")
        return results

    def resume_stale_runs(self) -> List[str]:
        """
        Re-run targets left ``in_progress`` by a crash or shutdown.

        Full syncs pick up from their stored checkpoint.

        Returns:
            Ids of the targets that were re-run
        """
        resumed: List[str] = []
        for state in self.state_store.list_in_progress():
            if self.registry.is_running(state.id):
                continue
            logger.info(f"Resuming interrupted sync for {state.id}")
            if self.run_target(state.id) is not None:
                resumed.append(state.id)
        return resumed

    def get_next_sync_time(self) -> Optional[str]:
        if not self.is_running:
            return None

        job = self.scheduler.get_job(SYNC_JOB_ID)
        if job and job.next_run_time:
            return job.next_run_time.isoformat()
        return None

    def get_status(self) -> dict:
        return {
            "is_running": self.is_running,
            "interval_minutes": self.interval_minutes,
            "next_sync_time": self.get_next_sync_time(),
            "running_targets": self.registry.running_targets(),
        }
