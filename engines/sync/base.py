"""
Base types for remote collection clients.

A remote collection client lists one page at a time. Requests and responses
are typed dataclasses; raw provider JSON never leaves the client module.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional, Tuple

from core.sync.exceptions import RemoteCollectionError, RemoteErrorCode

__all__ = [
    "FetchedRecord",
    "ListPageParams",
    "PageResult",
    "RemoteCollectionClient",
    "RemoteCollectionError",
    "RemoteErrorCode",
]


@dataclass(frozen=True)
class ListPageParams:
    """
    One list request.

    Incremental requests carry ``cursor``; full-sync requests carry the
    ``time_min``/``time_max`` window. ``page_token`` continues either kind.
    """

    cursor: Optional[str] = None
    time_min: Optional[datetime] = None
    time_max: Optional[datetime] = None
    page_token: Optional[str] = None
    page_size: Optional[int] = None

    @property
    def is_incremental(self) -> bool:
        return bool(self.cursor)


@dataclass
class FetchedRecord:
    """A record as returned by the remote, before persistence."""

    external_id: str
    etag: Optional[str] = None
    title: Optional[str] = None
    description: Optional[str] = None
    location: Optional[str] = None
    status: Optional[str] = None
    kind: Optional[str] = None
    event_type: Optional[str] = None
    creator: Optional[str] = None
    organizer: Optional[str] = None
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    is_all_day: bool = False
    created: Optional[datetime] = None
    updated: Optional[datetime] = None

    @property
    def timestamp(self) -> Optional[datetime]:
        """Ordering key used for full-sync checkpoints."""
        return self.start


@dataclass
class PageResult:
    """One page of a listing."""

    records: List[FetchedRecord] = field(default_factory=list)
    next_page_token: Optional[str] = None
    next_cursor: Optional[str] = None
    # (external_id, message) for items the client could not parse
    parse_errors: List[Tuple[Optional[str], str]] = field(default_factory=list)


class RemoteCollectionClient(ABC):
    """
    Abstract base class for remote collection clients.

    Implementations must raise ``RemoteCollectionError`` with a
    ``RemoteErrorCode`` for every listing failure.
    """

    provider: str = ""

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger(f"dashsync.engines.sync.{self.get_name()}")

    @abstractmethod
    def list_page(self, params: ListPageParams, cancel_token=None) -> PageResult:
        """
        Fetch one page.

        Args:
            params: Cursor or window, plus an optional page token
            cancel_token: Optional cancellation token for the HTTP call

        Returns:
            The page's records and continuation tokens

        Raises:
            RemoteCollectionError: Listing failed
        """
        pass

    def close(self) -> None:
        """Release any resources held by the client."""

    def get_name(self) -> str:
        return self.provider or self.__class__.__name__.lower().replace("client", "")
