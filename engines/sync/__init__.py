"""Remote collection clients and OAuth credential handling."""

from engines.sync.base import (
    FetchedRecord,
    ListPageParams,
    PageResult,
    RemoteCollectionClient,
)
from engines.sync.google_calendar import GoogleCalendarClient
from engines.sync.oauth import AuthorizedSession, CredentialRefresher, OAuthClientConfig

__all__ = [
    'AuthorizedSession',
    'CredentialRefresher',
    'FetchedRecord',
    'GoogleCalendarClient',
    'ListPageParams',
    'OAuthClientConfig',
    'PageResult',
    'RemoteCollectionClient',
]
