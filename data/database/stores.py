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
Stores used by the sync engine.

Each store wraps one table and exposes the narrow interface the engine needs:
``get``/``update`` for credentials and sync states, ``upsert`` for records.
Partial updates only touch the columns named in ``fields``.
"""

import logging
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple

from data.database.connection import DatabaseConnection
from data.database.encryption_helper import DatabaseEncryptionHelper
from data.database.models import (
    Credential,
    CredentialUsage,
    SyncedRecord,
    SyncState,
    current_timestamp,
)
from utils.time_utils import now_utc, parse_timestamp, to_db_timestamp


logger = logging.getLogger("dashsync.database.stores")

DEFAULT_MATCH_KEY: Tuple[str, ...] = ("sync_target_id", "external_id")


class NotFoundError(LookupError):
    """Raised when a requested row does not exist."""


def _to_column_value(value: Any) -> Any:
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, datetime):
        return to_db_timestamp(value)
    return value


class _TableStore:
    """Shared partial-update logic."""

    table: str = ""
    updatable_columns: Tuple[str, ...] = ()
    sensitive_columns: Tuple[str, ...] = ()

    def __init__(
        self,
        db_connection: DatabaseConnection,
        encryption: Optional[DatabaseEncryptionHelper] = None,
    ):
        self.db = db_connection
        self.encryption = encryption

    def _prepare(self, column: str, value: Any) -> Any:
        if column not in self.updatable_columns:
            raise ValueError(f"Column '{column}' cannot be updated on {self.table}")
        value = _to_column_value(value)
        if column in self.sensitive_columns and self.encryption is not None:
            value = self.encryption.encrypt_field(value)
        return value

    def _update(self, row_id: str, fields: Dict[str, Any]) -> None:
        if not fields:
            return

        columns = sorted(fields)
        assignments = ", ".join(f"{column} = ?" for column in columns)
        params = [self._prepare(column, fields[column]) for column in columns]
        params.extend([current_timestamp(), row_id])

        with self.db.get_cursor(commit=True) as cursor:
            cursor.execute(
                f"UPDATE {self.table} SET {assignments}, updated_at = ? WHERE id = ?",
                params,
            )
            if cursor.rowcount == 0:
                raise NotFoundError(f"{self.table} row not found: {row_id}")

        logger.debug(f"Updated {self.table} {row_id}: {', '.join(columns)}")


class CredentialStore(_TableStore):
    """Credential persistence."""

    table = "credentials"
    updatable_columns = (
        "account",
        "access_token",
        "refresh_token",
        "token_type",
        "expiry",
        "active",
    )
    sensitive_columns = Credential.SENSITIVE_FIELDS

    def get(self, credential_id: str) -> Credential:
        credential = Credential.get_by_id(self.db, credential_id, self.encryption)
        if credential is None:
            raise NotFoundError(f"Credential not found: {credential_id}")
        return credential

    def create(self, credential: Credential) -> Credential:
        credential.save(self.db, self.encryption)
        logger.info(f"Stored credential {credential.id} ({credential.provider})")
        return credential

    def update(self, credential_id: str, fields: Dict[str, Any]) -> None:
        self._update(credential_id, fields)


class SyncStateStore(_TableStore):
    """Sync target state persistence."""

    table = "sync_states"
    updatable_columns = (
        "name",
        "owner",
        "cursor",
        "full_sync_checkpoint",
        "in_progress",
        "status",
        "last_synced_at",
        "is_active",
    )
    sensitive_columns = SyncState.SENSITIVE_FIELDS

    def get(self, target_id: str) -> SyncState:
        state = SyncState.get_by_id(self.db, target_id, self.encryption)
        if state is None:
            raise NotFoundError(f"Sync target not found: {target_id}")
        return state

    def create(self, state: SyncState) -> SyncState:
        state.save(self.db, self.encryption)
        return state

    def update(self, target_id: str, fields: Dict[str, Any]) -> None:
        self._update(target_id, fields)

    def list_active(self) -> List[SyncState]:
        return SyncState.get_all_active(self.db, self.encryption)

    def list_in_progress(self) -> List[SyncState]:
        """Active targets whose last run never finished."""
        return [state for state in self.list_active() if state.in_progress]

    def find_active(self, credential_id: str, resource_id: str) -> Optional[SyncState]:
        result = self.db.execute(
            """
            SELECT * FROM sync_states
            WHERE credential_id = ? AND resource_id = ? AND is_active = 1
            LIMIT 1
            """,
            (credential_id, resource_id),
        )
        if result:
            return SyncState.from_db_row(result[0], self.encryption)
        return None


class RecordStore:
    """Mirrored record persistence."""

    def __init__(self, db_connection: DatabaseConnection):
        self.db = db_connection

    def upsert(self, record: SyncedRecord, match_key: Iterable[str] = DEFAULT_MATCH_KEY) -> None:
        """
        Insert the record, or overwrite the row matching ``match_key``.

        The local id and ``created_at`` of an existing row are kept, so applying
        the same record any number of times leaves one identical row.

        Raises:
            ValueError: ``match_key`` is not backed by a unique index
        """
        match_key = tuple(match_key)
        if match_key != DEFAULT_MATCH_KEY:
            raise ValueError(f"Unsupported match key: {match_key}")

        record.updated_at = current_timestamp()
        values = record.to_db_params()
        columns = list(values)
        placeholders = ", ".join("?" for _ in columns)
        preserved = {"id", "created_at", *match_key}
        assignments = ", ".join(
            f"{column} = excluded.{column}" for column in columns if column not in preserved
        )

        query = f"""
            INSERT INTO synced_records ({", ".join(columns)})
            VALUES ({placeholders})
            ON CONFLICT({", ".join(match_key)}) DO UPDATE SET {assignments}
        """
        self.db.execute(query, tuple(values[column] for column in columns), commit=True)

    def get(self, sync_target_id: str, external_id: str) -> Optional[SyncedRecord]:
        return SyncedRecord.get_by_external_id(self.db, sync_target_id, external_id)

    def list_for_target(self, sync_target_id: str) -> List[SyncedRecord]:
        return SyncedRecord.get_by_target(self.db, sync_target_id)

    def count(self, sync_target_id: str) -> int:
        result = self.db.execute(
            "SELECT COUNT(*) AS total FROM synced_records WHERE sync_target_id = ?",
            (sync_target_id,),
        )
        return int(result[0]["total"]) if result else 0

    def oldest_record_start(self, sync_target_id: str) -> Optional[datetime]:
        """Earliest stored start time for a target, or None when it has no dated records."""
        result = self.db.execute(
            """
            SELECT MIN(start_time) AS oldest FROM synced_records
            WHERE sync_target_id = ? AND start_time IS NOT NULL
            """,
            (sync_target_id,),
        )
        if not result:
            return None
        return parse_timestamp(result[0]["oldest"])


class UsageStore:
    """Per-credential daily API call counters."""

    def __init__(self, db_connection: DatabaseConnection):
        self.db = db_connection

    def record_call(self, credential_id: str, error: bool = False) -> None:
        usage_date = now_utc().strftime("%Y-%m-%d")
        CredentialUsage.increment(self.db, credential_id, usage_date, error=error)

    def list_for_credential(self, credential_id: str) -> List[CredentialUsage]:
        return CredentialUsage.get_for_credential(self.db, credential_id)
