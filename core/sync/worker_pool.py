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
Fixed-size worker pool for record processing.

The pagination loop feeds records into one bounded queue; a fixed number of
worker threads drain it. A failing record is counted and recorded, never
fatal to the run.
"""

import logging
import queue
import threading
from dataclasses import dataclass
from typing import Callable, List, Optional

from config.constants import (
    SYNC_ERROR_DETAIL_LIMIT,
    SYNC_QUEUE_CAPACITY,
    SYNC_QUEUE_POLL_SECONDS,
    SYNC_WORKER_COUNT,
)


logger = logging.getLogger("dashsync.sync.worker_pool")


@dataclass(frozen=True)
class RecordError:
    """One failed record."""

    external_id: Optional[str]
    message: str


class ErrorAccumulator:
    """
    Thread-safe collector of per-record failures.

    Keeps every count, and details for the first ``limit`` failures.
    """

    def __init__(self, limit: int = SYNC_ERROR_DETAIL_LIMIT):
        self.limit = limit
        self._lock = threading.Lock()
        self._errors: List[RecordError] = []
        self._total = 0

    def add(self, error: RecordError) -> None:
        with self._lock:
            self._total += 1
            if len(self._errors) < self.limit:
                self._errors.append(error)

    @property
    def total(self) -> int:
        with self._lock:
            return self._total

    def snapshot(self) -> List[RecordError]:
        with self._lock:
            return list(self._errors)


class WorkerPool:
    """
    Bounded-queue worker pool.

    Args:
        process: Called once per record; raising marks the record failed
        cancel_token: Checked before each enqueue and between dequeues
        should_skip: Optional predicate; matching records are counted as skipped
        on_processed: Optional callback after each successful ``process``
        worker_count: Number of worker threads
        queue_capacity: Queue size; ``submit`` blocks while it is full
    """

    def __init__(
        self,
        process: Callable,
        cancel_token,
        should_skip: Optional[Callable] = None,
        on_processed: Optional[Callable] = None,
        worker_count: int = SYNC_WORKER_COUNT,
        queue_capacity: int = SYNC_QUEUE_CAPACITY,
        poll_seconds: float = SYNC_QUEUE_POLL_SECONDS,
        errors: Optional[ErrorAccumulator] = None,
        name: str = "sync",
    ):
        self.process = process
        self.cancel_token = cancel_token
        self.should_skip = should_skip
        self.on_processed = on_processed
        self.worker_count = worker_count
        self.poll_seconds = poll_seconds
        self.errors = errors or ErrorAccumulator()
        self.name = name

        self._queue: "queue.Queue" = queue.Queue(maxsize=queue_capacity)
        self._closed = threading.Event()
        self._threads: List[threading.Thread] = []
        self._counter_lock = threading.Lock()
        self.processed = 0
        self.failed = 0
        self.skipped = 0

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.shutdown()

    def start(self) -> None:
        for index in range(self.worker_count):
            thread = threading.Thread(
                target=self._worker_loop,
                name=f"{self.name}-worker-{index}",
                daemon=True,
            )
            thread.start()
            self._threads.append(thread)
        logger.debug(f"Started {self.worker_count} workers for {self.name}")

    def submit(self, record) -> None:
        """
        Enqueue a record, blocking while the queue is full.

        Raises:
            SyncCancelledError: The run was cancelled while waiting
        """
        while True:
            self.cancel_token.raise_if_cancelled()
            try:
                self._queue.put(record, timeout=self.poll_seconds)
                return
            except queue.Full:
                continue

    def shutdown(self) -> None:
        """
        Stop accepting records and wait for the workers.

        Queued records are drained first unless the run was cancelled.
        """
        self._closed.set()
        for thread in self._threads:
            thread.join()
        self._threads = []
        logger.debug(
            f"Workers for {self.name} stopped: processed={self.processed} "
            f"failed={self.failed} skipped={self.skipped}"
        )

    def record_failure(self, external_id: Optional[str], message: str) -> None:
        """Count a record that failed outside the workers."""
        with self._counter_lock:
            self.failed += 1
        self.errors.add(RecordError(external_id, message))

    @property
    def pending(self) -> int:
        """Records still queued."""
        return self._queue.qsize()

    def _worker_loop(self) -> None:
        while not self.cancel_token.cancelled:
            try:
                record = self._queue.get(timeout=self.poll_seconds)
            except queue.Empty:
                if self._closed.is_set():
                    return
                continue

            try:
                self._handle(record)
            finally:
                self._queue.task_done()

    def _handle(self, record) -> None:
        if self.should_skip is not None and self.should_skip(record):
            with self._counter_lock:
                self.skipped += 1
            return

        try:
            self.process(record)
        except Exception as e:
            external_id = getattr(record, "external_id", None)
            self.record_failure(external_id, str(e))
            logger.warning(f"Record {external_id} failed: {e}")
            return

        with self._counter_lock:
            self.processed += 1

        if self.on_processed is not None:
            try:
                self.on_processed(record)
            except Exception as e:
                logger.error(f"Post-processing callback failed: {e}")
