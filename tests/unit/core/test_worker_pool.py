# SPDX-License-Identifier: Apache-2.0
"""Tests for the record worker pool."""

import threading

import pytest

from conftest import descending_records
from core.sync.cancellation import CancellationToken
from core.sync.exceptions import SyncCancelledError
from core.sync.worker_pool import ErrorAccumulator, RecordError, WorkerPool


def make_pool(process, token=None, **kwargs):
    kwargs.setdefault("worker_count", 3)
    kwargs.setdefault("queue_capacity", 2)
    kwargs.setdefault("poll_seconds", 0.01)
    return WorkerPool(process=process, cancel_token=token or CancellationToken(), **kwargs)


class TestWorkerPool:
    def test_all_records_are_processed(self):
        seen = []
        lock = threading.Lock()

        def process(record):
            with lock:
                seen.append(record.external_id)

        records = descending_records("r", 20)
        with make_pool(process) as pool:
            for record in records:
                pool.submit(record)

        assert sorted(seen) == sorted(record.external_id for record in records)
        assert pool.processed == 20
        assert pool.pending == 0

    def test_failures_are_counted_not_raised(self):
        def process(record):
            if record.external_id == "r3":
                raise ValueError("bad payload")

        with make_pool(process) as pool:
            for record in descending_records("r", 6):
                pool.submit(record)

        assert pool.processed == 5
        assert pool.failed == 1
        assert pool.errors.snapshot() == [RecordError("r3", "bad payload")]

    def test_skipped_records_are_not_processed(self):
        processed = []
        callbacks = []

        with make_pool(
            processed.append,
            should_skip=lambda record: record.external_id.endswith(("0", "2")),
            on_processed=callbacks.append,
            worker_count=1,
        ) as pool:
            for record in descending_records("r", 4):
                pool.submit(record)

        assert [r.external_id for r in processed] == ["r1", "r3"]
        assert callbacks == processed
        assert pool.skipped == 2

    def test_callback_failure_does_not_fail_record(self):
        def on_processed(record):
            raise RuntimeError("callback broke")

        with make_pool(lambda record: None, on_processed=on_processed) as pool:
            pool.submit(descending_records("r", 1)[0])

        assert pool.processed == 1
        assert pool.failed == 0

    def test_submit_raises_after_cancellation(self):
        token = CancellationToken()
        release = threading.Event()

        pool = make_pool(lambda record: release.wait(1), token=token, worker_count=1, queue_capacity=1)
        pool.start()
        try:
            records = descending_records("r", 5)
            pool.submit(records[0])
            token.cancel()
            with pytest.raises(SyncCancelledError):
                for record in records[1:]:
                    pool.submit(record)
        finally:
            release.set()
            pool.shutdown()

        assert pool.processed + pool.pending <= 2


class TestErrorAccumulator:
    def test_details_are_capped(self):
        errors = ErrorAccumulator(limit=2)
        for index in range(5):
            errors.add(RecordError(f"r{index}", "failed"))

        assert errors.total == 5
        assert [e.external_id for e in errors.snapshot()] == ["r0", "r1"]
