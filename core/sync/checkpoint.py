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
Checkpoint persistence for sync runs.

``CheckpointStore`` owns every state transition written to ``sync_states``.
``CheckpointTracker`` follows the oldest record processed during one full
sync and writes it back periodically; the stored value only ever moves to
older timestamps.
"""

import logging
import threading
from datetime import datetime
from typing import Any, Dict, Optional

from core.sync.constants import SyncMode, SyncStatus
from data.database.models import SyncState
from utils.time_utils import now_utc


logger = logging.getLogger("dashsync.sync.checkpoint")


class CheckpointStore:
    """State transitions of a sync target."""

    def __init__(self, state_store):
        self.state_store = state_store

    def load(self, target_id: str) -> SyncState:
        return self.state_store.get(target_id)

    def begin_run(self, target_id: str) -> None:
        """Durable "syncing" marker, written before any network call."""
        self._write(target_id, {"in_progress": True, "status": SyncStatus.SYNCING})

    def save_checkpoint(self, target_id: str, checkpoint: datetime) -> None:
        self._write(target_id, {"full_sync_checkpoint": checkpoint})

    def reset_for_full_sync(self, target_id: str) -> None:
        """Drop the cursor and the checkpoint so the next pass starts a cold full sync."""
        self._write(target_id, {"cursor": "", "full_sync_checkpoint": None})

    def complete(self, target_id: str, mode: str, new_cursor: Optional[str]) -> str:
        """
        Record a successful run.

        Returns:
            The status written
        """
        status = SyncStatus.ADDED if mode == SyncMode.FULL else SyncStatus.NO_CHANGE
        fields: Dict[str, Any] = {
            "status": status,
            "in_progress": False,
            "last_synced_at": now_utc(),
        }
        if new_cursor:
            fields["cursor"] = new_cursor
        else:
            logger.warning(f"Run for {target_id} finished without a new cursor")
        if mode == SyncMode.FULL:
            fields["full_sync_checkpoint"] = None

        self._write(target_id, fields)
        return status

    def mark_failed(self, target_id: str) -> None:
        self._write(target_id, {"status": SyncStatus.FAILED, "in_progress": False})

    def mark_inactive(self, target_id: str) -> None:
        self._write(
            target_id,
            {"status": SyncStatus.INACTIVE, "in_progress": False, "is_active": False},
        )

    def _write(self, target_id: str, fields: Dict[str, Any]) -> None:
        self.state_store.update(target_id, fields)
        logger.debug(f"Sync state {target_id} updated: {sorted(fields)}")


class CheckpointTracker:
    """
    Oldest-processed-timestamp tracker for one pass.

    Workers call :meth:`record_processed` after each successful upsert. Every
    ``interval`` processed records the current minimum is persisted. Snapshot
    and write happen under one lock, and a value is only written when it is
    older than the last one written, so concurrent workers can never move the
    stored checkpoint forward.
    """

    def __init__(
        self,
        checkpoint_store: CheckpointStore,
        target_id: str,
        enabled: bool,
        interval: int,
        resume_from: Optional[datetime] = None,
    ):
        self.checkpoint_store = checkpoint_store
        self.target_id = target_id
        self.enabled = enabled
        self.interval = max(1, interval)

        self._lock = threading.Lock()
        self._oldest: Optional[datetime] = resume_from if enabled else None
        self._persisted: Optional[datetime] = resume_from if enabled else None
        self._last_persisted_count = 0
        self._processed = 0

    @property
    def oldest(self) -> Optional[datetime]:
        with self._lock:
            return self._oldest

    @property
    def persisted(self) -> Optional[datetime]:
        with self._lock:
            return self._persisted

    def observe(self, timestamp: Optional[datetime]) -> None:
        if not self.enabled or timestamp is None:
            return
        with self._lock:
            if self._oldest is None or timestamp < self._oldest:
                self._oldest = timestamp

    def record_processed(self, record) -> None:
        """Worker callback after a successful upsert."""
        self.observe(record.timestamp)
        if not self.enabled:
            return

        with self._lock:
            self._processed += 1
            due = self._processed - self._last_persisted_count >= self.interval
            if due:
                self._last_persisted_count = self._processed
                self._persist_locked()

    def persist(self, fallback: Optional[datetime] = None) -> Optional[datetime]:
        """
        Write the best-known checkpoint.

        Args:
            fallback: Used when nothing was observed, e.g. a value recovered
                      from local storage

        Returns:
            The value now stored, or None if there is none
        """
        if not self.enabled:
            return None
        with self._lock:
            if self._oldest is None and fallback is not None:
                self._oldest = fallback
            self._persist_locked()
            return self._persisted

    def _persist_locked(self) -> None:
        candidate = self._oldest
        if candidate is None:
            return
        if self._persisted is not None and candidate >= self._persisted:
            return
        try:
            self.checkpoint_store.save_checkpoint(self.target_id, candidate)
        except Exception as e:
            logger.error(f"Failed to persist checkpoint for {self.target_id}: {e}")
            return
        self._persisted = candidate
        logger.info(
            f"Checkpoint for {self.target_id} moved to {candidate.isoformat()} "
            f"({self._processed} records processed)"
        )
