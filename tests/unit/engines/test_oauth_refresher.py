# SPDX-License-Identifier: Apache-2.0
"""
Tests for the OAuth token lifecycle: refresh, rotation persistence,
deactivation on permanent failures and the 401 retry.
"""

import json
from datetime import timedelta
from urllib.parse import parse_qs

import httpx
import pytest

from core.sync.exceptions import (
    CredentialInactiveError,
    CredentialPermanentlyInvalidError,
    RemoteCollectionError,
    RemoteErrorCode,
)
from data.database.stores import CredentialStore
from engines.sync.oauth import (
    AuthorizedSession,
    CredentialRefresher,
    OAuthClientConfig,
    PersistingTokenSource,
)
from utils.http_client import RetryableHttpClient
from utils.time_utils import now_utc


TOKEN_URL = "https://oauth.example.test/token"
EVENTS_URL = "https://api.example.test/calendars/primary/events"
OAUTH_CONFIG = OAuthClientConfig(client_id="client", client_secret="secret", token_url=TOKEN_URL)


class CountingCredentialStore(CredentialStore):
    """Records every update on top of the real store."""

    def __init__(self, db):
        super().__init__(db)
        self.updates = []

    def update(self, credential_id, fields):
        self.updates.append(dict(fields))
        super().update(credential_id, fields)


class TokenEndpoint:
    """Scripted token endpoint; each refresh pops the next response."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        status, payload = self.responses.pop(0)
        return httpx.Response(status, json=payload)


def http_client(handler) -> RetryableHttpClient:
    return RetryableHttpClient(max_retries=0, base_delay=0, transport=httpx.MockTransport(handler))


@pytest.fixture
def store(db):
    return CountingCredentialStore(db)


@pytest.fixture
def expired_credential(store, credential):
    store.update(credential.id, {"expiry": now_utc() - timedelta(minutes=1)})
    store.updates.clear()
    return store.get(credential.id)


def token_source(credential, store, handler) -> PersistingTokenSource:
    return PersistingTokenSource(credential, store, OAUTH_CONFIG, http_client(handler))


class TestPersistingTokenSource:
    """Refresh and write-back behaviour."""

    def test_valid_token_is_returned_without_refresh(self, store, credential):
        endpoint = TokenEndpoint()
        source = token_source(credential, store, endpoint)

        assert source.token() == ("Bearer", "access-1")
        assert endpoint.requests == []
        assert store.updates == []

    def test_expired_token_is_refreshed(self, store, expired_credential):
        endpoint = TokenEndpoint((200, {"access_token": "access-2", "expires_in": 3600, "token_type": "bearer"}))
        source = token_source(expired_credential, store, endpoint)

        assert source.token() == ("Bearer", "access-2")

        form = parse_qs(endpoint.requests[0].content.decode())
        assert form["grant_type"] == ["refresh_token"]
        assert form["refresh_token"] == ["refresh-1"]
        assert form["client_id"] == ["client"]

        stored = store.get(expired_credential.id)
        assert stored.access_token == "access-2"
        assert stored.refresh_token == "refresh-1"
        assert stored.expiry > now_utc() + timedelta(minutes=55)

    def test_same_token_value_is_persisted_once(self, store, credential):
        endpoint = TokenEndpoint(
            (200, {"access_token": "access-2", "expires_in": 3600}),
            (200, {"access_token": "access-2", "expires_in": 3600}),
            (200, {"access_token": "access-3", "expires_in": 3600}),
        )
        source = token_source(credential, store, endpoint)

        source.token(force_refresh=True)
        source.token(force_refresh=True)
        assert [update["access_token"] for update in store.updates] == ["access-2"]

        source.token(force_refresh=True)
        assert [update["access_token"] for update in store.updates] == ["access-2", "access-3"]

    def test_rotated_refresh_token_is_persisted(self, store, expired_credential):
        endpoint = TokenEndpoint(
            (200, {"access_token": "access-2", "refresh_token": "refresh-2", "expires_in": 60})
        )
        token_source(expired_credential, store, endpoint).token()

        assert store.updates[0]["refresh_token"] == "refresh-2"
        assert store.get(expired_credential.id).refresh_token == "refresh-2"

    def test_expiry_is_written_only_when_issued(self, store, expired_credential):
        endpoint = TokenEndpoint((200, {"access_token": "access-2"}))
        token_source(expired_credential, store, endpoint).token()

        assert "expiry" not in store.updates[0]
        assert "refresh_token" not in store.updates[0]

    def test_invalid_grant_deactivates_credential(self, store, expired_credential):
        endpoint = TokenEndpoint((400, {"error": "invalid_grant"}))
        source = token_source(expired_credential, store, endpoint)

        with pytest.raises(CredentialPermanentlyInvalidError) as exc_info:
            source.token()

        assert exc_info.value.reason == "invalid_grant"
        assert store.get(expired_credential.id).active is False

    @pytest.mark.parametrize("status,error", [(401, "invalid_client"), (400, "unauthorized_client")])
    def test_client_configuration_errors_keep_credential_active(
        self, store, expired_credential, status, error
    ):
        endpoint = TokenEndpoint((status, {"error": error}))
        source = token_source(expired_credential, store, endpoint)

        with pytest.raises(RemoteCollectionError) as exc_info:
            source.token()

        assert exc_info.value.code == RemoteErrorCode.OTHER
        assert exc_info.value.reason == error
        assert exc_info.value.status_code == status
        assert store.get(expired_credential.id).active is True
        assert store.updates == []

    def test_missing_refresh_token_deactivates_credential(self, store, expired_credential):
        store.update(expired_credential.id, {"refresh_token": None})
        credential = store.get(expired_credential.id)
        endpoint = TokenEndpoint()

        with pytest.raises(CredentialPermanentlyInvalidError) as exc_info:
            token_source(credential, store, endpoint).token()

        assert exc_info.value.reason == "missing_refresh_token"
        assert endpoint.requests == []
        assert store.get(credential.id).active is False

    def test_rate_limited_token_endpoint(self, store, expired_credential):
        endpoint = TokenEndpoint((429, {"error": "rate_limit"}))

        with pytest.raises(RemoteCollectionError) as exc_info:
            token_source(expired_credential, store, endpoint).token()

        assert exc_info.value.code == RemoteErrorCode.RATE_LIMITED
        assert store.get(expired_credential.id).active is True

    def test_server_error_is_transient(self, store, expired_credential):
        endpoint = TokenEndpoint((500, {"error": "backend"}))

        with pytest.raises(RemoteCollectionError) as exc_info:
            token_source(expired_credential, store, endpoint).token()

        assert exc_info.value.code == RemoteErrorCode.OTHER
        assert store.get(expired_credential.id).active is True

    def test_response_without_access_token(self, store, expired_credential):
        endpoint = TokenEndpoint((200, {"token_type": "Bearer"}))

        with pytest.raises(RemoteCollectionError):
            token_source(expired_credential, store, endpoint).token()


class TestAuthorizedSession:
    """Signing, 401 retry and usage accounting."""

    def test_unauthorized_response_refreshes_once(self, store, credential, usage_store):
        seen = []

        def handler(request):
            if request.url.path == "/token":
                return httpx.Response(200, json={"access_token": "access-2", "expires_in": 3600})
            seen.append(request.headers["Authorization"])
            if request.headers["Authorization"] == "Bearer access-1":
                return httpx.Response(401, json={"error": {"code": 401}})
            return httpx.Response(200, json={"items": []})

        client = http_client(handler)
        source = PersistingTokenSource(credential, store, OAUTH_CONFIG, client)
        session = AuthorizedSession(credential.id, source, client, usage_store)

        response = session.get(EVENTS_URL)

        assert response.status_code == 200
        assert seen == ["Bearer access-1", "Bearer access-2"]
        assert store.get(credential.id).access_token == "access-2"

        usage = usage_store.list_for_credential(credential.id)
        assert len(usage) == 1
        assert usage[0].request_count == 2
        assert usage[0].error_count == 1

    def test_other_errors_are_not_retried(self, store, credential):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(404, json={})

        client = http_client(handler)
        session = AuthorizedSession(
            credential.id, PersistingTokenSource(credential, store, OAUTH_CONFIG, client), client
        )

        with pytest.raises(httpx.HTTPStatusError):
            session.get(EVENTS_URL)
        assert len(calls) == 1


class TestCredentialRefresher:
    """Session construction."""

    def test_get_client_returns_signed_session(self, store, credential):
        def handler(request):
            return httpx.Response(200, json={"auth": request.headers["Authorization"]})

        refresher = CredentialRefresher(
            store, {"google": OAUTH_CONFIG}, http_client_factory=lambda: http_client(handler)
        )

        with refresher.get_client(credential.id) as session:
            assert json.loads(session.get(EVENTS_URL).content) == {"auth": "Bearer access-1"}

    def test_inactive_credential_is_rejected(self, store, credential):
        store.update(credential.id, {"active": False})
        refresher = CredentialRefresher(store, {"google": OAUTH_CONFIG})

        with pytest.raises(CredentialInactiveError):
            refresher.get_client(credential.id)

    def test_unknown_provider_is_rejected(self, store, credential):
        refresher = CredentialRefresher(store, {})

        with pytest.raises(ValueError, match="google"):
            refresher.get_client(credential.id)
