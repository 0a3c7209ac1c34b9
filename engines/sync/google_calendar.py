"""Google Calendar events listing client."""

import logging
from typing import Any, Dict, Optional
from urllib.parse import quote

import httpx

from config.constants import (
    CALENDAR_API_TIMEOUT_SECONDS,
    DEFAULT_CALENDAR_RESOURCE_ID,
    GOOGLE_CALENDAR_MAX_RESULTS,
)
from engines.sync.base import (
    FetchedRecord,
    ListPageParams,
    PageResult,
    RemoteCollectionClient,
    RemoteCollectionError,
    RemoteErrorCode,
)
from utils.time_utils import parse_timestamp, to_utc_iso


logger = logging.getLogger("dashsync.engines.sync.google")

RATE_LIMIT_REASONS = {"rateLimitExceeded", "userRateLimitExceeded", "quotaExceeded"}


class GoogleCalendarClient(RemoteCollectionClient):
    """Lists events of one Google calendar through an authorized session."""

    provider = "google"

    TOKEN_URL = "https://oauth2.googleapis.com/token"
    API_BASE_URL = "https://www.googleapis.com/calendar/v3"

    def __init__(
        self,
        session,
        calendar_id: str = DEFAULT_CALENDAR_RESOURCE_ID,
        page_size: int = GOOGLE_CALENDAR_MAX_RESULTS,
        timeout: float = CALENDAR_API_TIMEOUT_SECONDS,
        api_base_url: Optional[str] = None,
    ):
        super().__init__(logger=logger)
        self.session = session
        self.calendar_id = calendar_id
        self.page_size = page_size
        self.timeout = timeout
        self.api_base_url = api_base_url or self.API_BASE_URL

    @property
    def events_url(self) -> str:
        return f"{self.api_base_url}/calendars/{quote(self.calendar_id, safe='')}/events"

    def build_query(self, params: ListPageParams) -> Dict[str, Any]:
        """Translate a typed request into Google query parameters."""
        query: Dict[str, Any] = {
            "maxResults": params.page_size or self.page_size,
            "singleEvents": "true",
        }

        if params.is_incremental:
            query["syncToken"] = params.cursor
        else:
            if params.time_min is not None:
                query["timeMin"] = to_utc_iso(params.time_min)
            if params.time_max is not None:
                query["timeMax"] = to_utc_iso(params.time_max)

        if params.page_token:
            query["pageToken"] = params.page_token

        return query

    def list_page(self, params: ListPageParams, cancel_token=None) -> PageResult:
        try:
            response = self.session.get(
                self.events_url,
                params=self.build_query(params),
                timeout=self.timeout,
                cancel_token=cancel_token,
            )
        except httpx.HTTPStatusError as e:
            raise self._map_status_error(e) from e
        except httpx.TransportError as e:
            raise RemoteCollectionError(
                RemoteErrorCode.OTHER, f"Network error listing events: {type(e).__name__}"
            ) from e

        try:
            data = response.json()
        except ValueError as e:
            raise RemoteCollectionError(
                RemoteErrorCode.OTHER, "Events response is not valid JSON"
            ) from e

        records = []
        parse_errors = []
        for item in data.get("items", []):
            try:
                records.append(self.parse_event(item))
            except ValueError as e:
                event_id = item.get("id") if isinstance(item, dict) else None
                self.logger.warning("Skipping malformed event %s: %s", event_id, e)
                parse_errors.append((event_id, f"Malformed event: {e}"))

        self.logger.debug(
            "Fetched %s events (next page: %s)", len(records), bool(data.get("nextPageToken"))
        )

        return PageResult(
            records=records,
            next_page_token=data.get("nextPageToken") or None,
            next_cursor=data.get("nextSyncToken") or None,
            parse_errors=parse_errors,
        )

    def _map_status_error(self, error: httpx.HTTPStatusError) -> RemoteCollectionError:
        status_code = error.response.status_code
        reason = self._error_reason(error.response)

        if status_code == 410:
            code = RemoteErrorCode.CURSOR_INVALID
            message = "Sync token is no longer valid"
        elif status_code == 429 or (status_code == 403 and reason in RATE_LIMIT_REASONS):
            code = RemoteErrorCode.RATE_LIMITED
            message = "Google Calendar rate limit exceeded"
        else:
            code = RemoteErrorCode.OTHER
            message = f"Google Calendar request failed with HTTP {status_code}"

        self.logger.warning("%s (reason=%s)", message, reason)
        return RemoteCollectionError(code, message, status_code=status_code, reason=reason)

    @staticmethod
    def _error_reason(response: httpx.Response) -> Optional[str]:
        try:
            payload = response.json()
        except ValueError:
            return None
        if not isinstance(payload, dict):
            return None
        error = payload.get("error")
        if not isinstance(error, dict):
            return None
        for detail in error.get("errors") or []:
            if isinstance(detail, dict) and detail.get("reason"):
                return detail["reason"]
        return error.get("status")

    @staticmethod
    def parse_event(item: Dict[str, Any]) -> FetchedRecord:
        """
        Convert one Google event resource into a FetchedRecord.

        Cancelled events keep their id and status so the local copy is
        overwritten with ``status="cancelled"``.

        Raises:
            ValueError: The item is not an event or has no id
        """
        if not isinstance(item, dict):
            raise ValueError(f"Event item is not an object: {type(item).__name__}")

        event_id = item.get("id")
        if not event_id:
            raise ValueError("Event has no id")

        start = item.get("start") or {}
        end = item.get("end") or {}
        is_all_day = "date" in start and "dateTime" not in start

        creator = item.get("creator") or {}
        organizer = item.get("organizer") or {}

        return FetchedRecord(
            external_id=event_id,
            etag=item.get("etag"),
            title=item.get("summary"),
            description=item.get("description"),
            location=item.get("location"),
            status=item.get("status"),
            kind=item.get("kind"),
            event_type=item.get("eventType"),
            creator=creator.get("email"),
            organizer=organizer.get("email"),
            start=parse_timestamp(start.get("dateTime") or start.get("date")),
            end=parse_timestamp(end.get("dateTime") or end.get("date")),
            is_all_day=is_all_day,
            created=parse_timestamp(item.get("created")),
            updated=parse_timestamp(item.get("updated")),
        )
