# SPDX-License-Identifier: Apache-2.0
"""
Shared pytest fixtures for dashsync tests.

Provides a temporary SQLite database, stores over it, and scripted fakes for
the remote client and credential refresher.
"""

from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional, Union

import pytest

from data.database.connection import DatabaseConnection
from data.database.models import Credential, SyncState
from data.database.stores import CredentialStore, RecordStore, SyncStateStore, UsageStore
from engines.sync.base import FetchedRecord, ListPageParams, PageResult, RemoteCollectionClient


BASE_TIME = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)


def make_record(external_id: str, start: Optional[datetime] = None, **fields) -> FetchedRecord:
    """Build a FetchedRecord with a one-hour duration."""
    end = start + timedelta(hours=1) if start is not None else None
    return FetchedRecord(
        external_id=external_id,
        etag=fields.pop("etag", f'"{external_id}-v1"'),
        title=fields.pop("title", f"Event {external_id}"),
        status=fields.pop("status", "confirmed"),
        start=start,
        end=end,
        **fields,
    )


def descending_records(prefix: str, count: int, newest: datetime = BASE_TIME) -> List[FetchedRecord]:
    """Records one hour apart, newest first."""
    return [make_record(f"{prefix}{i}", newest - timedelta(hours=i)) for i in range(count)]


class FakeRemoteClient(RemoteCollectionClient):
    """
    Remote client driven by a script.

    Each entry is a PageResult to return, an exception to raise, or a
    callable taking the request params.
    """

    provider = "fake"

    def __init__(self, script: List[Union[PageResult, Exception, Callable]]):
        super().__init__()
        self.script = list(script)
        self.calls: List[ListPageParams] = []
        self.closed = False

    def list_page(self, params: ListPageParams, cancel_token=None) -> PageResult:
        self.calls.append(params)
        if not self.script:
            raise AssertionError(f"Unexpected list_page call: {params}")
        step = self.script.pop(0)
        if isinstance(step, Exception):
            raise step
        if callable(step):
            return step(params)
        return step

    def close(self) -> None:
        self.closed = True


class FakeSession:
    def __init__(self):
        self.closed = False

    def close(self):
        self.closed = True


class FakeRefresher:
    """CredentialRefresher stand-in; raises ``error`` if set."""

    def __init__(self, error: Optional[Exception] = None):
        self.error = error
        self.sessions: List[FakeSession] = []

    def get_client(self, credential_id):
        if self.error is not None:
            raise self.error
        session = FakeSession()
        self.sessions.append(session)
        return session


@pytest.fixture
def db(tmp_path):
    """Initialized database in a temporary directory."""
    connection = DatabaseConnection(str(tmp_path / "dashsync.db"))
    connection.initialize_schema()
    yield connection
    connection.close()


@pytest.fixture
def credential_store(db):
    return CredentialStore(db)


@pytest.fixture
def state_store(db):
    return SyncStateStore(db)


@pytest.fixture
def record_store(db):
    return RecordStore(db)


@pytest.fixture
def usage_store(db):
    return UsageStore(db)


@pytest.fixture
def credential(credential_store):
    """Active Google credential with a valid access token."""
    return credential_store.create(
        Credential(
            provider="google",
            account="user@example.com",
            access_token="access-1",
            refresh_token="refresh-1",
            expiry=datetime.now(timezone.utc) + timedelta(hours=1),
        )
    )


@pytest.fixture
def target(state_store, credential):
    """Registered sync target with no cursor."""
    return state_store.create(
        SyncState(credential_id=credential.id, provider="google", resource_id="primary", cursor="")
    )
