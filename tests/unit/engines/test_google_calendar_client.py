# SPDX-License-Identifier: Apache-2.0
"""Tests for the Google Calendar events client."""

from datetime import datetime, timezone

import httpx
import pytest

from engines.sync.base import ListPageParams, RemoteCollectionError, RemoteErrorCode
from engines.sync.google_calendar import GoogleCalendarClient
from utils.http_client import RetryableHttpClient


WINDOW_START = datetime(2025, 1, 1, tzinfo=timezone.utc)
WINDOW_END = datetime(2025, 7, 1, tzinfo=timezone.utc)


def make_client(handler, **kwargs):
    session = RetryableHttpClient(max_retries=0, base_delay=0, transport=httpx.MockTransport(handler))
    return GoogleCalendarClient(session, api_base_url="https://calendar.test/v3", **kwargs)


def google_error(status, reason):
    return httpx.Response(
        status,
        json={"error": {"code": status, "errors": [{"reason": reason}], "message": reason}},
    )


class TestBuildQuery:
    def test_incremental_query_uses_sync_token(self):
        client = make_client(lambda request: httpx.Response(200, json={}))
        query = client.build_query(ListPageParams(cursor="sync-1", time_min=WINDOW_START))

        assert query["syncToken"] == "sync-1"
        assert "timeMin" not in query
        assert query["singleEvents"] == "true"

    def test_full_query_uses_window(self):
        client = make_client(lambda request: httpx.Response(200, json={}), page_size=50)
        query = client.build_query(
            ListPageParams(time_min=WINDOW_START, time_max=WINDOW_END, page_token="p2")
        )

        assert query["timeMin"] == "2025-01-01T00:00:00Z"
        assert query["timeMax"] == "2025-07-01T00:00:00Z"
        assert query["pageToken"] == "p2"
        assert query["maxResults"] == 50
        assert "syncToken" not in query

    def test_calendar_id_is_url_encoded(self):
        client = make_client(
            lambda request: httpx.Response(200, json={}), calendar_id="team@group.calendar.google.com"
        )
        assert client.events_url.endswith("/calendars/team%40group.calendar.google.com/events")


class TestListPage:
    def test_page_is_parsed(self):
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(
                200,
                json={
                    "items": [
                        {
                            "id": "evt-1",
                            "etag": '"1"',
                            "summary": "Standup",
                            "status": "confirmed",
                            "start": {"dateTime": "2025-03-01T09:00:00+01:00"},
                            "end": {"dateTime": "2025-03-01T09:15:00+01:00"},
                            "organizer": {"email": "lead@example.com"},
                        },
                        {"summary": "no id"},
                    ],
                    "nextPageToken": "p2",
                },
            )

        page = make_client(handler).list_page(ListPageParams(cursor="sync-1"))

        assert [record.external_id for record in page.records] == ["evt-1"]
        assert page.records[0].start == datetime(2025, 3, 1, 8, 0, tzinfo=timezone.utc)
        assert page.records[0].organizer == "lead@example.com"
        assert page.next_page_token == "p2"
        assert page.next_cursor is None
        assert requests[0].url.params["syncToken"] == "sync-1"

    def test_malformed_items_are_reported(self):
        client = make_client(
            lambda request: httpx.Response(
                200,
                json={"items": [{"summary": "no id"}, "not-an-event", {"id": "evt-2"}]},
            )
        )

        page = client.list_page(ListPageParams(cursor="sync-1"))

        assert [record.external_id for record in page.records] == ["evt-2"]
        assert len(page.parse_errors) == 2
        assert [external_id for external_id, _ in page.parse_errors] == [None, None]
        assert "no id" in page.parse_errors[0][1]

    def test_last_page_carries_next_cursor(self):
        client = make_client(
            lambda request: httpx.Response(200, json={"items": [], "nextSyncToken": "sync-2"})
        )
        page = client.list_page(ListPageParams(time_min=WINDOW_START, time_max=WINDOW_END))

        assert page.records == []
        assert page.next_page_token is None
        assert page.next_cursor == "sync-2"

    @pytest.mark.parametrize(
        "response,expected",
        [
            (google_error(410, "fullSyncRequired"), RemoteErrorCode.CURSOR_INVALID),
            (google_error(429, "rateLimitExceeded"), RemoteErrorCode.RATE_LIMITED),
            (google_error(403, "rateLimitExceeded"), RemoteErrorCode.RATE_LIMITED),
            (google_error(403, "userRateLimitExceeded"), RemoteErrorCode.RATE_LIMITED),
            (google_error(403, "forbidden"), RemoteErrorCode.OTHER),
            (google_error(500, "backendError"), RemoteErrorCode.OTHER),
        ],
    )
    def test_status_errors_are_mapped(self, response, expected):
        client = make_client(lambda request: response)

        with pytest.raises(RemoteCollectionError) as exc_info:
            client.list_page(ListPageParams(cursor="sync-1"))

        assert exc_info.value.code == expected
        assert exc_info.value.status_code == response.status_code

    def test_network_error_is_other(self):
        def handler(request):
            raise httpx.ConnectError("unreachable", request=request)

        with pytest.raises(RemoteCollectionError) as exc_info:
            make_client(handler).list_page(ListPageParams(cursor="sync-1"))

        assert exc_info.value.code == RemoteErrorCode.OTHER


class TestParseEvent:
    def test_all_day_event(self):
        record = GoogleCalendarClient.parse_event(
            {"id": "day", "start": {"date": "2025-03-01"}, "end": {"date": "2025-03-02"}}
        )

        assert record.is_all_day is True
        assert record.start == datetime(2025, 3, 1, tzinfo=timezone.utc)
        assert record.timestamp == record.start

    def test_cancelled_event_keeps_id_and_status(self):
        record = GoogleCalendarClient.parse_event({"id": "gone", "status": "cancelled"})

        assert record.external_id == "gone"
        assert record.status == "cancelled"
        assert record.start is None

    @pytest.mark.parametrize("item", [None, "evt", {}, {"id": ""}])
    def test_invalid_items_raise(self, item):
        with pytest.raises(ValueError):
            GoogleCalendarClient.parse_event(item)
