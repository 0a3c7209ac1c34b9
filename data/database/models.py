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
Data models for dashsync.

Provides ORM-like classes for database operations. Sensitive columns are
passed through an optional ``DatabaseEncryptionHelper``.
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from data.database.encryption_helper import DatabaseEncryptionHelper
from utils.time_utils import now_utc, parse_timestamp, to_db_timestamp, to_utc_iso


logger = logging.getLogger("dashsync.database.models")


def generate_uuid() -> str:
    """Generate a new UUID string."""
    return str(uuid.uuid4())


def current_timestamp() -> str:
    """Get current UTC timestamp in storage format."""
    return to_db_timestamp(now_utc())


def _encrypt(helper: Optional[DatabaseEncryptionHelper], value: Optional[str]) -> Optional[str]:
    if helper is None:
        return value
    return helper.encrypt_field(value)


def _decrypt(helper: Optional[DatabaseEncryptionHelper], value: Optional[str]) -> Optional[str]:
    if helper is None:
        return value
    return helper.decrypt_field(value)


@dataclass
class Credential:
    """Model for an OAuth credential."""

    id: str = field(default_factory=generate_uuid)
    provider: str = ""
    account: Optional[str] = None
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    token_type: str = "Bearer"
    expiry: Optional[datetime] = None
    active: bool = True
    created_at: str = field(default_factory=current_timestamp)
    updated_at: str = field(default_factory=current_timestamp)

    SENSITIVE_FIELDS = ("access_token", "refresh_token")

    @classmethod
    def from_db_row(cls, row, encryption: Optional[DatabaseEncryptionHelper] = None) -> "Credential":
        """Create instance from database row."""
        return cls(
            id=row["id"],
            provider=row["provider"],
            account=row["account"],
            access_token=_decrypt(encryption, row["access_token"]),
            refresh_token=_decrypt(encryption, row["refresh_token"]),
            token_type=row["token_type"] or "Bearer",
            expiry=parse_timestamp(row["expiry"]),
            active=bool(row["active"]),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def save(self, db_connection, encryption: Optional[DatabaseEncryptionHelper] = None):
        """Insert or fully replace the credential."""
        self.updated_at = current_timestamp()

        query = """
            INSERT INTO credentials (
                id, provider, account, access_token, refresh_token,
                token_type, expiry, active, created_at, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                provider = excluded.provider,
                account = excluded.account,
                access_token = excluded.access_token,
                refresh_token = excluded.refresh_token,
                token_type = excluded.token_type,
                expiry = excluded.expiry,
                active = excluded.active,
                updated_at = excluded.updated_at
        """
        params = (
            self.id,
            self.provider,
            self.account,
            _encrypt(encryption, self.access_token),
            _encrypt(encryption, self.refresh_token),
            self.token_type,
            to_db_timestamp(self.expiry),
            int(self.active),
            self.created_at,
            self.updated_at,
        )
        db_connection.execute(query, params, commit=True)
        logger.debug(f"Saved credential: {self.id}")

    @staticmethod
    def get_by_id(
        db_connection, credential_id: str, encryption: Optional[DatabaseEncryptionHelper] = None
    ) -> Optional["Credential"]:
        result = db_connection.execute("SELECT * FROM credentials WHERE id = ?", (credential_id,))
        if result:
            return Credential.from_db_row(result[0], encryption)
        return None

    def is_expired(self, buffer_seconds: int = 0, now: Optional[datetime] = None) -> bool:
        """Whether the access token is missing, expired, or expires within the buffer."""
        if not self.access_token:
            return True
        if self.expiry is None:
            return False
        reference = parse_timestamp(now) if now is not None else now_utc()
        return (self.expiry - reference).total_seconds() <= buffer_seconds


@dataclass
class SyncState:
    """Model for the sync state of one sync target."""

    id: str = field(default_factory=generate_uuid)
    credential_id: str = ""
    provider: str = ""
    resource_id: str = "primary"
    name: Optional[str] = None
    owner: Optional[str] = None
    cursor: Optional[str] = None
    full_sync_checkpoint: Optional[datetime] = None
    in_progress: bool = False
    status: str = "idle"
    last_synced_at: Optional[datetime] = None
    is_active: bool = True
    created_at: str = field(default_factory=current_timestamp)
    updated_at: str = field(default_factory=current_timestamp)

    SENSITIVE_FIELDS = ("cursor",)

    @classmethod
    def from_db_row(cls, row, encryption: Optional[DatabaseEncryptionHelper] = None) -> "SyncState":
        """Create instance from database row."""
        return cls(
            id=row["id"],
            credential_id=row["credential_id"],
            provider=row["provider"],
            resource_id=row["resource_id"],
            name=row["name"],
            owner=row["owner"],
            cursor=_decrypt(encryption, row["cursor"]),
            full_sync_checkpoint=parse_timestamp(row["full_sync_checkpoint"]),
            in_progress=bool(row["in_progress"]),
            status=row["status"],
            last_synced_at=parse_timestamp(row["last_synced_at"]),
            is_active=bool(row["is_active"]),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def save(self, db_connection, encryption: Optional[DatabaseEncryptionHelper] = None):
        """Insert or fully replace the sync state."""
        self.updated_at = current_timestamp()

        query = """
            INSERT INTO sync_states (
                id, credential_id, provider, resource_id, name, owner,
                cursor, full_sync_checkpoint, in_progress, status,
                last_synced_at, is_active, created_at, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                credential_id = excluded.credential_id,
                provider = excluded.provider,
                resource_id = excluded.resource_id,
                name = excluded.name,
                owner = excluded.owner,
                cursor = excluded.cursor,
                full_sync_checkpoint = excluded.full_sync_checkpoint,
                in_progress = excluded.in_progress,
                status = excluded.status,
                last_synced_at = excluded.last_synced_at,
                is_active = excluded.is_active,
                updated_at = excluded.updated_at
        """
        params = (
            self.id,
            self.credential_id,
            self.provider,
            self.resource_id,
            self.name,
            self.owner,
            _encrypt(encryption, self.cursor),
            to_db_timestamp(self.full_sync_checkpoint),
            int(self.in_progress),
            self.status,
            to_db_timestamp(self.last_synced_at),
            int(self.is_active),
            self.created_at,
            self.updated_at,
        )
        db_connection.execute(query, params, commit=True)
        logger.debug(f"Saved sync state: {self.id}")

    @staticmethod
    def get_by_id(
        db_connection, target_id: str, encryption: Optional[DatabaseEncryptionHelper] = None
    ) -> Optional["SyncState"]:
        result = db_connection.execute("SELECT * FROM sync_states WHERE id = ?", (target_id,))
        if result:
            return SyncState.from_db_row(result[0], encryption)
        return None

    @staticmethod
    def get_all_active(
        db_connection, encryption: Optional[DatabaseEncryptionHelper] = None
    ) -> List["SyncState"]:
        result = db_connection.execute(
            "SELECT * FROM sync_states WHERE is_active = 1 ORDER BY created_at"
        )
        return [SyncState.from_db_row(row, encryption) for row in result]

    @property
    def requires_full_sync(self) -> bool:
        return not self.cursor

    def to_status_dict(self) -> Dict[str, Any]:
        """Externally visible sync status."""
        return {
            "id": self.id,
            "name": self.name,
            "status": self.status,
            "in_progress": self.in_progress,
            "last_synced_at": to_utc_iso(self.last_synced_at) or None,
            "full_sync_checkpoint": to_utc_iso(self.full_sync_checkpoint) or None,
            "is_active": self.is_active,
        }


@dataclass
class SyncedRecord:
    """Model for a record mirrored from a remote collection."""

    id: str = field(default_factory=generate_uuid)
    sync_target_id: str = ""
    external_id: str = ""
    etag: Optional[str] = None
    title: Optional[str] = None
    description: Optional[str] = None
    location: Optional[str] = None
    status: Optional[str] = None
    kind: Optional[str] = None
    event_type: Optional[str] = None
    creator: Optional[str] = None
    organizer: Optional[str] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    is_all_day: bool = False
    remote_created_at: Optional[datetime] = None
    remote_updated_at: Optional[datetime] = None
    created_at: str = field(default_factory=current_timestamp)
    updated_at: str = field(default_factory=current_timestamp)

    @classmethod
    def from_db_row(cls, row) -> "SyncedRecord":
        """Create instance from database row."""
        return cls(
            id=row["id"],
            sync_target_id=row["sync_target_id"],
            external_id=row["external_id"],
            etag=row["etag"],
            title=row["title"],
            description=row["description"],
            location=row["location"],
            status=row["status"],
            kind=row["kind"],
            event_type=row["event_type"],
            creator=row["creator"],
            organizer=row["organizer"],
            start_time=parse_timestamp(row["start_time"]),
            end_time=parse_timestamp(row["end_time"]),
            is_all_day=bool(row["is_all_day"]),
            remote_created_at=parse_timestamp(row["remote_created_at"]),
            remote_updated_at=parse_timestamp(row["remote_updated_at"]),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def to_db_params(self) -> Dict[str, Any]:
        """Column values in storage form."""
        return {
            "id": self.id,
            "sync_target_id": self.sync_target_id,
            "external_id": self.external_id,
            "etag": self.etag,
            "title": self.title,
            "description": self.description,
            "location": self.location,
            "status": self.status,
            "kind": self.kind,
            "event_type": self.event_type,
            "creator": self.creator,
            "organizer": self.organizer,
            "start_time": to_db_timestamp(self.start_time),
            "end_time": to_db_timestamp(self.end_time),
            "is_all_day": int(self.is_all_day),
            "remote_created_at": to_db_timestamp(self.remote_created_at),
            "remote_updated_at": to_db_timestamp(self.remote_updated_at),
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @staticmethod
    def get_by_external_id(
        db_connection, sync_target_id: str, external_id: str
    ) -> Optional["SyncedRecord"]:
        result = db_connection.execute(
            "SELECT * FROM synced_records WHERE sync_target_id = ? AND external_id = ?",
            (sync_target_id, external_id),
        )
        if result:
            return SyncedRecord.from_db_row(result[0])
        return None

    @staticmethod
    def get_by_target(db_connection, sync_target_id: str) -> List["SyncedRecord"]:
        result = db_connection.execute(
            "SELECT * FROM synced_records WHERE sync_target_id = ? ORDER BY start_time",
            (sync_target_id,),
        )
        return [SyncedRecord.from_db_row(row) for row in result]


@dataclass
class CredentialUsage:
    """Model for daily API usage of one credential."""

    credential_id: str = ""
    usage_date: str = ""
    request_count: int = 0
    error_count: int = 0
    updated_at: str = field(default_factory=current_timestamp)

    @classmethod
    def from_db_row(cls, row) -> "CredentialUsage":
        return cls(
            credential_id=row["credential_id"],
            usage_date=row["usage_date"],
            request_count=row["request_count"],
            error_count=row["error_count"],
            updated_at=row["updated_at"],
        )

    @staticmethod
    def increment(db_connection, credential_id: str, usage_date: str, error: bool = False):
        """Count one request (and optionally one error) for a credential and day."""
        query = """
            INSERT INTO credential_usage (
                credential_id, usage_date, request_count, error_count, updated_at
            ) VALUES (?, ?, 1, ?, ?)
            ON CONFLICT(credential_id, usage_date) DO UPDATE SET
                request_count = credential_usage.request_count + 1,
                error_count = credential_usage.error_count + excluded.error_count,
                updated_at = excluded.updated_at
        """
        db_connection.execute(
            query, (credential_id, usage_date, int(error), current_timestamp()), commit=True
        )

    @staticmethod
    def get_for_credential(db_connection, credential_id: str) -> List["CredentialUsage"]:
        result = db_connection.execute(
            "SELECT * FROM credential_usage WHERE credential_id = ? ORDER BY usage_date",
            (credential_id,),
        )
        return [CredentialUsage.from_db_row(row) for row in result]
