# SPDX-License-Identifier: Apache-2.0
"""Tests for RecordUpserter and SyncResult."""

import pytest

from conftest import BASE_TIME, make_record
from core.sync.constants import SyncOutcome
from core.sync.exceptions import RecordProcessingError, SyncInternalError
from core.sync.result import SyncResult
from core.sync.upserter import RecordUpserter
from core.sync.worker_pool import RecordError


def test_record_fields_are_mapped(record_store, target):
    upserter = RecordUpserter(record_store, target.id)
    upserter.upsert(make_record("evt", BASE_TIME, location="Room 1", is_all_day=True))

    stored = record_store.get(target.id, "evt")
    assert stored.location == "Room 1"
    assert stored.start_time == BASE_TIME
    assert stored.is_all_day is True


def test_record_without_id_is_rejected(record_store, target):
    with pytest.raises(RecordProcessingError):
        RecordUpserter(record_store, target.id).upsert(make_record(""))


def test_storage_errors_are_wrapped(record_store):
    # Unknown target violates the foreign key
    with pytest.raises(RecordProcessingError) as exc_info:
        RecordUpserter(record_store, "no-such-target").upsert(make_record("evt", BASE_TIME))

    assert exc_info.value.external_id == "evt"


def test_result_dict():
    result = SyncResult(
        target_id="t1",
        outcome=SyncOutcome.FAILED,
        error=SyncInternalError("boom"),
        record_errors=[RecordError("evt", "bad")],
    )

    data = result.to_dict()
    assert data["error"] == "boom"
    assert data["record_errors"] == [{"external_id": "evt", "message": "bad"}]
    assert result.requires_attention
    with pytest.raises(SyncInternalError):
        result.raise_for_outcome()
