# SPDX-License-Identifier: Apache-2.0
"""Maps fetched records to local rows and writes them idempotently."""

import logging
import sqlite3

from core.sync.exceptions import RecordProcessingError
from data.database.models import SyncedRecord
from data.database.stores import DEFAULT_MATCH_KEY


logger = logging.getLogger("dashsync.sync.upserter")


class RecordUpserter:
    """Upserts records of one sync target, keyed on the remote id."""

    def __init__(self, record_store, sync_target_id: str):
        self.record_store = record_store
        self.sync_target_id = sync_target_id

    def to_synced_record(self, record) -> SyncedRecord:
        return SyncedRecord(
            sync_target_id=self.sync_target_id,
            external_id=record.external_id,
            etag=record.etag,
            title=record.title,
            description=record.description,
            location=record.location,
            status=record.status,
            kind=record.kind,
            event_type=record.event_type,
            creator=record.creator,
            organizer=record.organizer,
            start_time=record.start,
            end_time=record.end,
            is_all_day=record.is_all_day,
            remote_created_at=record.created,
            remote_updated_at=record.updated,
        )

    def upsert(self, record) -> None:
        """
        Raises:
            RecordProcessingError: The record is invalid or could not be written
        """
        if not record.external_id:
            raise RecordProcessingError(None, "record has no external id")

        try:
            self.record_store.upsert(self.to_synced_record(record), DEFAULT_MATCH_KEY)
        except (sqlite3.Error, ValueError) as e:
            raise RecordProcessingError(record.external_id, str(e)) from e

        logger.debug(f"Upserted record {record.external_id} for {self.sync_target_id}")
