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
Sync orchestrator.

Runs one sync of one target:

    Idle -> Syncing(incremental | full) -> Completed | Failed | Cancelled

A rejected cursor moves the run from ``Syncing(incremental)`` to
``Syncing(full)`` once; every other error ends the run through the
recovery action picked by the ``ErrorClassifier``.
"""

import logging
import time
from datetime import datetime
from typing import Callable, Optional

from core.sync.cancellation import CancellationToken
from core.sync.checkpoint import CheckpointStore, CheckpointTracker
from core.sync.classifier import Classification, ErrorClassifier
from core.sync.constants import RecoveryAction, SyncMode, SyncOutcome, SyncStatus
from core.sync.result import SyncResult
from core.sync.settings import SyncSettings
from core.sync.upserter import RecordUpserter
from core.sync.worker_pool import ErrorAccumulator, WorkerPool
from data.database.models import SyncState
from engines.sync.base import ListPageParams, RemoteCollectionClient
from engines.sync.google_calendar import GoogleCalendarClient
from utils.time_utils import add_months, now_utc


logger = logging.getLogger("dashsync.sync.orchestrator")

CLIENT_CLASSES = {
    GoogleCalendarClient.provider: GoogleCalendarClient,
}


def default_client_factory(state: SyncState, session, settings: SyncSettings) -> RemoteCollectionClient:
    """Build the provider client for a sync target."""
    client_class = CLIENT_CLASSES.get(state.provider)
    if client_class is None:
        raise ValueError(f"Unsupported provider: {state.provider}")
    return client_class(session, calendar_id=state.resource_id, page_size=settings.page_size)


class _Pass:
    """Per-pass working state: one mode, one worker pool, one tracker."""

    def __init__(
        self,
        mode: str,
        resume_from: Optional[datetime],
        pool: WorkerPool,
        tracker: CheckpointTracker,
    ):
        self.mode = mode
        self.resume_from = resume_from
        self.pool = pool
        self.tracker = tracker
        self.pages = 0
        self.next_cursor: Optional[str] = None


class SyncOrchestrator:
    """
    Drives sync runs for registered targets.

    Callers serialize runs per target (see ``RunRegistry``); the orchestrator
    itself holds no per-target state between runs.
    """

    def __init__(
        self,
        state_store,
        record_store,
        credential_refresher,
        settings: Optional[SyncSettings] = None,
        client_factory: Optional[Callable] = None,
        classifier: Optional[ErrorClassifier] = None,
    ):
        self.checkpoints = CheckpointStore(state_store)
        self.record_store = record_store
        self.credential_refresher = credential_refresher
        self.settings = settings or SyncSettings()
        self.client_factory = client_factory or default_client_factory
        self.classifier = classifier or ErrorClassifier()

    def run_sync(self, target_id: str, cancel_token: Optional[CancellationToken] = None) -> SyncResult:
        """
        Run one sync of ``target_id``.

        Args:
            target_id: Sync target to run
            cancel_token: Shared cancellation; defaults to a token with the
                          configured run timeout

        Returns:
            SyncResult describing the outcome. Failures that need attention
            are reported on the result; call ``raise_for_outcome()`` to get
            them as exceptions.

        Raises:
            NotFoundError: The target does not exist
        """
        started = time.monotonic()
        token = cancel_token or CancellationToken(self.settings.run_timeout_seconds)
        result = SyncResult(target_id=target_id)

        state = self.checkpoints.load(target_id)
        if not state.is_active:
            logger.info(f"Skipping inactive sync target {target_id}")
            result.outcome = SyncOutcome.INACTIVE
            result.status = state.status
            return result

        self.checkpoints.begin_run(target_id)
        logger.info(f"Sync started for {target_id} ({state.provider}/{state.resource_id})")

        try:
            self._execute(state, token, result)
        finally:
            result.duration_seconds = time.monotonic() - started

        logger.info(
            f"Sync finished for {target_id}: outcome={result.outcome} status={result.status} "
            f"processed={result.processed} failed={result.failed} skipped={result.skipped} "
            f"pages={result.pages} in {result.duration_seconds:.2f}s"
        )
        return result

    def _execute(self, state: SyncState, token: CancellationToken, result: SyncResult) -> None:
        mode = SyncMode.INCREMENTAL if state.cursor else SyncMode.FULL

        try:
            session = self.credential_refresher.get_client(state.credential_id)
        except Exception as e:
            self._recover(state, self.classifier.classify(e, mode), None, result)
            return

        try:
            client = self.client_factory(state, session, self.settings)
        except Exception as e:
            session.close()
            self._recover(state, self.classifier.classify(e, mode), None, result)
            return

        try:
            resume_from = state.full_sync_checkpoint if mode == SyncMode.FULL else None

            while True:
                sync_pass = self._new_pass(state, mode, resume_from, token)
                result.mode = mode

                try:
                    next_cursor = self._paginate(sync_pass, state, client, token)
                except Exception as e:
                    classification = self.classifier.classify(e, mode, result.fell_back_to_full)
                    if classification.action == RecoveryAction.RESET_AND_RETRY_FULL:
                        logger.warning(
                            f"Cursor for {state.id} was rejected; restarting as a full sync"
                        )
                        self.checkpoints.reset_for_full_sync(state.id)
                        result.fell_back_to_full = True
                        mode = SyncMode.FULL
                        resume_from = None
                        continue
                    self._recover(state, classification, sync_pass, result)
                    return
                finally:
                    self._collect(sync_pass, result)

                try:
                    result.status = self.checkpoints.complete(state.id, mode, next_cursor)
                except Exception as e:
                    classification = self.classifier.classify(e, mode, result.fell_back_to_full)
                    self._recover(state, classification, sync_pass, result)
                    return

                result.outcome = SyncOutcome.COMPLETED
                return
        finally:
            client.close()
            session.close()

    def _new_pass(
        self,
        state: SyncState,
        mode: str,
        resume_from: Optional[datetime],
        token: CancellationToken,
    ) -> _Pass:
        tracker = CheckpointTracker(
            self.checkpoints,
            state.id,
            enabled=mode == SyncMode.FULL,
            interval=self.settings.checkpoint_interval,
            resume_from=resume_from,
        )
        upserter = RecordUpserter(self.record_store, state.id)

        def already_processed(record) -> bool:
            timestamp = record.timestamp
            return resume_from is not None and timestamp is not None and timestamp >= resume_from

        pool = WorkerPool(
            process=upserter.upsert,
            cancel_token=token,
            should_skip=already_processed if resume_from is not None else None,
            on_processed=tracker.record_processed,
            worker_count=self.settings.worker_count,
            queue_capacity=self.settings.queue_capacity,
            poll_seconds=self.settings.queue_poll_seconds,
            errors=ErrorAccumulator(self.settings.error_detail_limit),
            name=f"sync-{state.id[:8]}",
        )
        return _Pass(mode, resume_from, pool, tracker)

    def _paginate(
        self,
        sync_pass: _Pass,
        state: SyncState,
        client: RemoteCollectionClient,
        token: CancellationToken,
    ) -> Optional[str]:
        if sync_pass.mode == SyncMode.INCREMENTAL:
            base_params = ListPageParams(cursor=state.cursor, page_size=self.settings.page_size)
            logger.info(f"Incremental sync of {state.id}")
        else:
            now = now_utc()
            time_min = sync_pass.resume_from or add_months(now, -self.settings.past_window_months)
            time_max = add_months(now, self.settings.future_window_months)
            base_params = ListPageParams(
                time_min=time_min, time_max=time_max, page_size=self.settings.page_size
            )
            if sync_pass.resume_from is not None:
                logger.info(
                    f"Resuming full sync of {state.id} from checkpoint "
                    f"{sync_pass.resume_from.isoformat()}"
                )
            else:
                logger.info(f"Full sync of {state.id} over [{time_min}, {time_max}]")

        with sync_pass.pool:
            page_token: Optional[str] = None
            while True:
                token.raise_if_cancelled()

                params = ListPageParams(
                    cursor=base_params.cursor,
                    time_min=base_params.time_min,
                    time_max=base_params.time_max,
                    page_token=page_token,
                    page_size=base_params.page_size,
                )
                page = client.list_page(params, cancel_token=token)
                sync_pass.pages += 1

                if page.next_cursor:
                    sync_pass.next_cursor = page.next_cursor

                for record in page.records:
                    sync_pass.pool.submit(record)
                for external_id, message in page.parse_errors:
                    sync_pass.pool.record_failure(external_id, message)

                page_token = page.next_page_token
                if not page_token:
                    break

        if sync_pass.pool.pending:
            # Workers stop early only on cancellation
            token.raise_if_cancelled()

        return sync_pass.next_cursor

    def _recover(
        self,
        state: SyncState,
        classification: Classification,
        sync_pass: Optional[_Pass],
        result: SyncResult,
    ) -> None:
        action = classification.action
        result.outcome = classification.outcome
        result.error = classification.error

        if action == RecoveryAction.SUSPEND:
            self._preserve_checkpoint(state, sync_pass)
            result.status = SyncStatus.SYNCING
            logger.info(f"Sync of {state.id} suspended: {classification.error}")

        elif action == RecoveryAction.DISABLE:
            self.checkpoints.mark_inactive(state.id)
            result.status = SyncStatus.INACTIVE
            logger.error(f"Sync target {state.id} disabled: {classification.error}")

        else:
            self._preserve_checkpoint(state, sync_pass)
            self.checkpoints.mark_failed(state.id)
            result.status = SyncStatus.FAILED
            if action == RecoveryAction.PRESERVE_AND_STOP:
                logger.warning(f"Sync of {state.id} rate limited; will resume on next trigger")
            else:
                logger.error(f"Sync of {state.id} failed: {classification.error}")

    def _preserve_checkpoint(self, state: SyncState, sync_pass: Optional[_Pass]) -> None:
        if sync_pass is None or sync_pass.mode != SyncMode.FULL:
            return

        fallback = None
        if sync_pass.tracker.oldest is None and sync_pass.pool.processed > 0:
            fallback = self.record_store.oldest_record_start(state.id)
            if fallback is not None:
                logger.info(
                    f"Recovered checkpoint {fallback.isoformat()} for {state.id} from local records"
                )

        sync_pass.tracker.persist(fallback)

    @staticmethod
    def _collect(sync_pass: _Pass, result: SyncResult) -> None:
        pool = sync_pass.pool
        result.pages += sync_pass.pages
        result.processed += pool.processed
        result.failed += pool.failed
        result.skipped += pool.skipped
        result.record_errors.extend(pool.errors.snapshot())
