"""
OAuth credential lifecycle for sync runs.

``CredentialRefresher.get_client`` hands out an ``AuthorizedSession`` whose
token source refreshes the access token on demand and writes each newly
issued token back to the credential store exactly once.
"""

import logging
import threading
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Callable, Dict, Optional, Tuple

import httpx

from config.constants import DEFAULT_TOKEN_BUFFER_SECONDS, DEFAULT_TOKEN_EXPIRES_IN_SECONDS
from core.sync.exceptions import (
    CredentialInactiveError,
    CredentialPermanentlyInvalidError,
    RemoteCollectionError,
    RemoteErrorCode,
)
from data.database.models import Credential
from utils.http_client import RetryableHttpClient
from utils.time_utils import now_utc


logger = logging.getLogger("dashsync.engines.sync.oauth")

PERMANENT_GRANT_ERRORS = {"invalid_grant"}


@dataclass(frozen=True)
class OAuthClientConfig:
    """Client registration used for refresh requests."""

    client_id: str
    client_secret: str
    token_url: str


def _normalize_token_type(token_type: Optional[str]) -> str:
    if not token_type:
        return "Bearer"
    normalized = token_type.strip()
    if normalized.lower() == "bearer":
        return "Bearer"
    return normalized


def _error_code(response: httpx.Response) -> Optional[str]:
    try:
        payload = response.json()
    except ValueError:
        return None
    if isinstance(payload, dict):
        error = payload.get("error")
        if isinstance(error, str):
            return error
    return None


class PersistingTokenSource:
    """
    Supplies a valid access token, refreshing it when needed.

    After every refresh the new access token is compared with the last value
    written to the store; only a different value is persisted, so one token
    value means one write.
    """

    def __init__(
        self,
        credential: Credential,
        credential_store,
        oauth_config: OAuthClientConfig,
        http_client: RetryableHttpClient,
        buffer_seconds: int = DEFAULT_TOKEN_BUFFER_SECONDS,
    ):
        self.credential = credential
        self.credential_store = credential_store
        self.oauth_config = oauth_config
        self.http_client = http_client
        self.buffer_seconds = buffer_seconds

        self._lock = threading.Lock()
        self._last_persisted_access_token = credential.access_token

    def token(self, cancel_token=None, force_refresh: bool = False) -> Tuple[str, str]:
        """
        Return ``(token_type, access_token)``.

        Raises:
            CredentialPermanentlyInvalidError: The refresh token was rejected
            RemoteCollectionError: The token endpoint failed otherwise
        """
        with self._lock:
            if force_refresh or self.credential.is_expired(self.buffer_seconds):
                token_data = self._refresh(cancel_token)
                issued = self._apply(token_data)
                self._persist_if_changed(issued)
            return _normalize_token_type(self.credential.token_type), self.credential.access_token

    def _refresh(self, cancel_token=None) -> Dict[str, Any]:
        credential_id = self.credential.id

        if not self.credential.refresh_token:
            logger.error(f"Credential {credential_id} has no refresh token")
            self._deactivate()
            raise CredentialPermanentlyInvalidError(credential_id, "missing_refresh_token")

        data = {
            "refresh_token": self.credential.refresh_token,
            "client_id": self.oauth_config.client_id,
            "client_secret": self.oauth_config.client_secret,
            "grant_type": "refresh_token",
        }

        try:
            response = self.http_client.post(
                self.oauth_config.token_url, data=data, cancel_token=cancel_token
            )
        except httpx.HTTPStatusError as e:
            error = _error_code(e.response)
            if error in PERMANENT_GRANT_ERRORS:
                logger.error(f"Refresh token rejected for credential {credential_id}: {error}")
                self._deactivate()
                raise CredentialPermanentlyInvalidError(credential_id, error) from e

            code = (
                RemoteErrorCode.RATE_LIMITED
                if e.response.status_code == 429
                else RemoteErrorCode.OTHER
            )
            raise RemoteCollectionError(
                code,
                f"Token refresh failed for credential {credential_id}",
                status_code=e.response.status_code,
                reason=error,
            ) from e
        except httpx.TransportError as e:
            raise RemoteCollectionError(
                RemoteErrorCode.OTHER,
                f"Token endpoint unreachable: {type(e).__name__}",
            ) from e

        try:
            token_data = response.json()
        except ValueError as e:
            raise RemoteCollectionError(
                RemoteErrorCode.OTHER, "Token endpoint returned invalid JSON"
            ) from e

        if not isinstance(token_data, dict) or not token_data.get("access_token"):
            raise RemoteCollectionError(
                RemoteErrorCode.OTHER, "Token endpoint response has no access_token"
            )

        logger.info(f"Refreshed access token for credential {credential_id}")
        return token_data

    def _apply(self, token_data: Dict[str, Any]) -> Dict[str, Any]:
        """Update the in-memory credential; return the fields the response actually issued."""
        issued: Dict[str, Any] = {}

        self.credential.access_token = token_data["access_token"]
        self.credential.token_type = _normalize_token_type(token_data.get("token_type"))

        refresh_token = token_data.get("refresh_token")
        if refresh_token:
            self.credential.refresh_token = refresh_token
            issued["refresh_token"] = refresh_token

        raw_expires_in = token_data.get("expires_in")
        if raw_expires_in is not None:
            expiry = now_utc() + timedelta(seconds=int(raw_expires_in))
            issued["expiry"] = expiry
        else:
            expiry = now_utc() + timedelta(seconds=DEFAULT_TOKEN_EXPIRES_IN_SECONDS)
        self.credential.expiry = expiry

        return issued

    def _persist_if_changed(self, issued: Dict[str, Any]) -> None:
        access_token = self.credential.access_token
        if access_token == self._last_persisted_access_token:
            return

        fields = {
            "access_token": access_token,
            "token_type": self.credential.token_type,
        }
        fields.update(issued)

        try:
            self.credential_store.update(self.credential.id, fields)
        except Exception as e:
            # The in-memory token stays usable for this run
            logger.error(f"Failed to persist refreshed token for {self.credential.id}: {e}")
            return

        self._last_persisted_access_token = access_token
        logger.debug(f"Persisted refreshed token for credential {self.credential.id}")

    def _deactivate(self) -> None:
        self.credential.active = False
        try:
            self.credential_store.update(self.credential.id, {"active": False})
        except Exception as e:
            logger.error(f"Failed to deactivate credential {self.credential.id}: {e}")


class AuthorizedSession:
    """
    HTTP session that signs every request with the current access token.

    A 401 triggers one forced refresh and one retry. Every call is counted in
    the usage store when one is configured.
    """

    def __init__(
        self,
        credential_id: str,
        token_source: PersistingTokenSource,
        http_client: RetryableHttpClient,
        usage_store=None,
    ):
        self.credential_id = credential_id
        self.token_source = token_source
        self.http_client = http_client
        self.usage_store = usage_store

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def close(self) -> None:
        self.http_client.close()

    def request(
        self,
        method: str,
        url: str,
        *,
        cancel_token=None,
        headers: Optional[Dict[str, str]] = None,
        **kwargs,
    ) -> httpx.Response:
        try:
            return self._send(method, url, cancel_token, headers, False, **kwargs)
        except httpx.HTTPStatusError as e:
            if e.response.status_code != 401:
                raise
            logger.warning(f"Access token rejected for {self.credential_id}; refreshing once")
            return self._send(method, url, cancel_token, headers, True, **kwargs)

    def get(self, url: str, **kwargs) -> httpx.Response:
        return self.request("GET", url, **kwargs)

    def _send(self, method, url, cancel_token, headers, force_refresh, **kwargs) -> httpx.Response:
        token_type, access_token = self.token_source.token(
            cancel_token=cancel_token, force_refresh=force_refresh
        )
        request_headers = {"Authorization": f"{token_type} {access_token}"}
        if headers:
            request_headers.update(headers)

        try:
            response = self.http_client.request(
                method, url, cancel_token=cancel_token, headers=request_headers, **kwargs
            )
        except httpx.HTTPError:
            self._record_usage(error=True)
            raise

        self._record_usage(error=False)
        return response

    def _record_usage(self, error: bool) -> None:
        if self.usage_store is None:
            return
        try:
            self.usage_store.record_call(self.credential_id, error=error)
        except Exception as e:
            logger.warning(f"Failed to record API usage for {self.credential_id}: {e}")


class CredentialRefresher:
    """
    Builds authorized sessions for stored credentials.

    Args:
        credential_store: Store exposing ``get(id)`` and ``update(id, fields)``
        oauth_configs: Client registration per provider name
        http_client_factory: Returns a new ``RetryableHttpClient`` per session
        usage_store: Optional per-credential call counter
        buffer_seconds: Refresh tokens expiring within this many seconds
    """

    def __init__(
        self,
        credential_store,
        oauth_configs: Dict[str, OAuthClientConfig],
        http_client_factory: Optional[Callable[[], RetryableHttpClient]] = None,
        usage_store=None,
        buffer_seconds: int = DEFAULT_TOKEN_BUFFER_SECONDS,
    ):
        self.credential_store = credential_store
        self.oauth_configs = dict(oauth_configs)
        self.http_client_factory = http_client_factory or RetryableHttpClient
        self.usage_store = usage_store
        self.buffer_seconds = buffer_seconds

    def get_client(self, credential_id: str) -> AuthorizedSession:
        """
        Raises:
            CredentialInactiveError: The credential was deactivated earlier
            ValueError: No OAuth client is configured for the provider
        """
        credential = self.credential_store.get(credential_id)
        if not credential.active:
            raise CredentialInactiveError(credential_id)

        oauth_config = self.oauth_configs.get(credential.provider)
        if oauth_config is None:
            raise ValueError(f"No OAuth client configured for provider '{credential.provider}'")

        http_client = self.http_client_factory()
        token_source = PersistingTokenSource(
            credential,
            self.credential_store,
            oauth_config,
            http_client,
            buffer_seconds=self.buffer_seconds,
        )
        return AuthorizedSession(credential_id, token_source, http_client, self.usage_store)
