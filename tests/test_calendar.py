"""Tests for the Google Calendar write client."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from eventgate.calendar import (
    GOOGLE_CALENDAR_API_BASE_URL,
    CalendarApiError,
    CalendarAuthError,
    CalendarConfigurationError,
    CalendarNetworkError,
    CalendarWriteClient,
    build_event_body,
)
from eventgate.credentials import (
    CredentialConfigurationError,
    CredentialNetworkError,
    CredentialPersistenceError,
    CredentialRefreshError,
)
from eventgate.proposals.models import EventProposal

pytestmark = pytest.mark.unit

EVENTS_URL = f"{GOOGLE_CALENDAR_API_BASE_URL}/calendars/primary/events"


def _mock_response(
    *,
    status_code: int,
    json_body: dict | None = None,
    text: str = "",
) -> httpx.Response:
    request = httpx.Request("POST", EVENTS_URL)
    if json_body is not None:
        return httpx.Response(status_code=status_code, json=json_body, request=request)
    return httpx.Response(status_code=status_code, text=text, request=request)


def _created(event_id: str = "evt-abc") -> httpx.Response:
    return _mock_response(
        status_code=200,
        json_body={"id": event_id, "htmlLink": f"https://calendar.google.com/event?eid={event_id}"},
    )


def _proposal(**overrides) -> EventProposal:
    values = {
        "id": uuid.uuid4(),
        "title": "Dinner with Alex",
        "start_at": datetime(2026, 10, 20, 16, 0, tzinfo=UTC),
        "end_at": datetime(2026, 10, 20, 18, 0, tzinfo=UTC),
        "attendees": ["alex@example.com"],
        "description": "Usual place",
        "location": "Bistro 42",
        "origin_conversation_id": "tg:1001",
        "created_at": datetime(2026, 10, 18, 9, 0, tzinfo=UTC),
    }
    values.update(overrides)
    return EventProposal(**values)


@pytest.fixture
def credentials() -> MagicMock:
    manager = MagicMock()
    manager.get_access_token = AsyncMock(side_effect=["token-1", "token-2"])
    return manager


@pytest.fixture
def http_client() -> MagicMock:
    client = MagicMock(spec=httpx.AsyncClient)
    client.post = AsyncMock(return_value=_created())
    return client


@pytest.fixture
def client(credentials, http_client) -> CalendarWriteClient:
    return CalendarWriteClient(
        credentials, timezone="Europe/Berlin", http_client=http_client
    )


class TestEventBody:
    def test_full_body(self):
        body = build_event_body(_proposal(), "Europe/Berlin")

        assert body == {
            "summary": "Dinner with Alex",
            "description": "Usual place",
            "location": "Bistro 42",
            "start": {"dateTime": "2026-10-20T18:00:00+02:00", "timeZone": "Europe/Berlin"},
            "end": {"dateTime": "2026-10-20T20:00:00+02:00", "timeZone": "Europe/Berlin"},
            "attendees": [{"email": "alex@example.com"}],
        }

    def test_optional_fields_omitted(self):
        body = build_event_body(
            _proposal(attendees=[], description=None, location=None), "UTC"
        )

        assert set(body) == {"summary", "start", "end"}


class TestCreateEvent:
    async def test_success(self, client, http_client, credentials):
        created = await client.create_event(_proposal())

        assert created.external_id == "evt-abc"
        assert created.external_link == "https://calendar.google.com/event?eid=evt-abc"
        call = http_client.post.await_args
        assert call.args[0] == EVENTS_URL
        assert call.kwargs["headers"] == {"Authorization": "Bearer token-1"}
        assert call.kwargs["json"]["summary"] == "Dinner with Alex"
        credentials.get_access_token.assert_awaited_once_with(force_refresh=False)

    async def test_calendar_id_is_url_quoted(self, credentials, http_client):
        client = CalendarWriteClient(
            credentials, calendar_id="team@group.calendar.google.com", http_client=http_client
        )

        await client.create_event(_proposal())

        url = http_client.post.await_args.args[0]
        assert url.endswith("/calendars/team%40group.calendar.google.com/events")

    async def test_401_retries_once_with_forced_refresh(self, client, http_client, credentials):
        http_client.post.side_effect = [_mock_response(status_code=401, text=""), _created()]

        created = await client.create_event(_proposal())

        assert created.external_id == "evt-abc"
        assert http_client.post.await_count == 2
        assert [c.kwargs for c in credentials.get_access_token.await_args_list] == [
            {"force_refresh": False},
            {"force_refresh": True},
        ]
        assert http_client.post.await_args.kwargs["headers"] == {
            "Authorization": "Bearer token-2"
        }

    async def test_second_401_is_auth_error(self, client, http_client):
        unauthorized = _mock_response(
            status_code=401, json_body={"error": {"message": "Invalid Credentials"}}
        )
        http_client.post.side_effect = [unauthorized, unauthorized]

        with pytest.raises(CalendarAuthError, match="Invalid Credentials") as excinfo:
            await client.create_event(_proposal())

        assert excinfo.value.error_class == "auth"
        assert http_client.post.await_count == 2

    async def test_403_is_api_error_without_retry(self, client, http_client, credentials):
        http_client.post.return_value = _mock_response(
            status_code=403,
            json_body={"error": {"code": 403, "message": "Calendar usage limits exceeded."}},
        )

        with pytest.raises(CalendarApiError) as excinfo:
            await client.create_event(_proposal())

        assert excinfo.value.status_code == 403
        assert excinfo.value.message == "Calendar usage limits exceeded."
        assert excinfo.value.error_class == "api"
        assert http_client.post.await_count == 1
        credentials.get_access_token.assert_awaited_once()

    async def test_missing_event_id_is_api_error(self, client, http_client):
        http_client.post.return_value = _mock_response(status_code=200, json_body={"status": "ok"})

        with pytest.raises(CalendarApiError, match="missing the event id"):
            await client.create_event(_proposal())

    async def test_transport_failure_is_network_error(self, client, http_client):
        http_client.post.side_effect = httpx.ReadTimeout("read timed out")

        with pytest.raises(CalendarNetworkError) as excinfo:
            await client.create_event(_proposal())

        assert excinfo.value.error_class == "network"


class TestCredentialErrorMapping:
    @pytest.mark.parametrize(
        ("credential_error", "expected"),
        [
            (CredentialConfigurationError("no file"), CalendarConfigurationError),
            (CredentialRefreshError(400, "invalid_grant"), CalendarAuthError),
            (CredentialNetworkError("unreachable"), CalendarNetworkError),
            (CredentialPersistenceError("disk full"), CalendarConfigurationError),
        ],
    )
    async def test_mapping(self, client, credentials, http_client, credential_error, expected):
        credentials.get_access_token.side_effect = credential_error

        with pytest.raises(expected):
            await client.create_event(_proposal())

        http_client.post.assert_not_awaited()

    async def test_refresh_failure_during_retry_is_auth_error(
        self, client, credentials, http_client
    ):
        credentials.get_access_token.side_effect = [
            "token-1",
            CredentialRefreshError(400, "Token has been revoked."),
        ]
        http_client.post.return_value = _mock_response(status_code=401, text="")

        with pytest.raises(CalendarAuthError, match="revoked"):
            await client.create_event(_proposal())

        assert http_client.post.await_count == 1
