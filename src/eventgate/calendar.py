"""Google Calendar write client: creates one event from an approved proposal.

The only operation is :meth:`CalendarWriteClient.create_event`. It fetches a
token from the :class:`~eventgate.credentials.CredentialManager`, POSTs the
event, and on a 401 forces exactly one token refresh and retries once. Any
other failure is raised as a typed error whose ``error_class`` is shown to
the human who tapped "Create".
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, ClassVar
from urllib.parse import quote
from zoneinfo import ZoneInfo

import httpx

from eventgate.credentials import (
    CredentialConfigurationError,
    CredentialManager,
    CredentialNetworkError,
    CredentialPersistenceError,
    CredentialRefreshError,
)
from eventgate.proposals.models import EventProposal

logger = logging.getLogger(__name__)

GOOGLE_CALENDAR_API_BASE_URL = "https://www.googleapis.com/calendar/v3"
DEFAULT_TIMEOUT_SECONDS = 30.0


class CalendarWriteError(RuntimeError):
    """Base error for calendar event creation."""

    error_class: ClassVar[str] = "unknown"


class CalendarAuthError(CalendarWriteError):
    """Authorization failed even after a forced token refresh."""

    error_class = "auth"


class CalendarConfigurationError(CalendarWriteError):
    """Local OAuth configuration is missing or invalid."""

    error_class = "config"


class CalendarNetworkError(CalendarWriteError):
    """Transport failure or timeout talking to Google."""

    error_class = "network"


class CalendarApiError(CalendarWriteError):
    """Google Calendar answered with a non-success status other than 401."""

    error_class = "api"

    def __init__(self, *, status_code: int, message: str) -> None:
        self.status_code = status_code
        self.message = message
        super().__init__(f"Google Calendar API request failed ({status_code}): {message}")


@dataclass(frozen=True)
class CreatedEvent:
    external_id: str
    external_link: str | None = None


def build_event_body(proposal: EventProposal, timezone: str) -> dict[str, Any]:
    """Translate a proposal into a Google Calendar event resource.

    Optional text fields and the attendee list are only included when set;
    an empty attendee list is omitted rather than sent as ``[]``.
    """
    tz = ZoneInfo(timezone)
    body: dict[str, Any] = {"summary": proposal.title}
    if proposal.description:
        body["description"] = proposal.description
    if proposal.location:
        body["location"] = proposal.location
    body["start"] = {
        "dateTime": proposal.start_at.astimezone(tz).isoformat(),
        "timeZone": timezone,
    }
    body["end"] = {
        "dateTime": proposal.end_at.astimezone(tz).isoformat(),
        "timeZone": timezone,
    }
    if proposal.attendees:
        body["attendees"] = [{"email": email} for email in proposal.attendees]
    return body


def _safe_google_error_message(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        payload = None

    if isinstance(payload, dict):
        error_payload = payload.get("error")
        if isinstance(error_payload, dict):
            message = error_payload.get("message")
            if isinstance(message, str) and message.strip():
                return " ".join(message.split())[:200]
        if isinstance(error_payload, str) and error_payload.strip():
            description = payload.get("error_description")
            if isinstance(description, str) and description.strip():
                return " ".join(description.split())[:200]
            return " ".join(error_payload.split())[:200]

    raw_text = response.text.strip()
    if raw_text:
        return " ".join(raw_text.split())[:200]
    return "Request failed without an error payload"


class CalendarWriteClient:
    """Creates calendar events on behalf of approved proposals.

    Parameters
    ----------
    credentials:
        Source of bearer tokens.
    timezone:
        IANA zone sent as ``timeZone`` on start and end.
    calendar_id:
        Target calendar, ``"primary"`` by default.
    http_client:
        Optional shared client; one with *timeout* is created when omitted.
    timeout:
        Per-request timeout in seconds for the owned client.
    base_url:
        Calendar API root, overridable for tests.
    """

    def __init__(
        self,
        credentials: CredentialManager,
        *,
        timezone: str = "UTC",
        calendar_id: str = "primary",
        http_client: httpx.AsyncClient | None = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        base_url: str = GOOGLE_CALENDAR_API_BASE_URL,
    ) -> None:
        self._credentials = credentials
        self._timezone = timezone
        self._calendar_id = calendar_id
        self._http_client = http_client
        self._owns_http_client = http_client is None
        self._timeout = timeout
        self._base_url = base_url.rstrip("/")

    def _client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self._timeout)
        return self._http_client

    async def aclose(self) -> None:
        if self._owns_http_client and self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None

    async def create_event(self, proposal: EventProposal) -> CreatedEvent:
        """Create the event described by *proposal*.

        Raises
        ------
        CalendarAuthError
            Refresh was rejected, or the API still answered 401 after one
            forced refresh.
        CalendarApiError
            Any other non-success response. Not retried.
        CalendarNetworkError
            Transport failure or timeout.
        CalendarConfigurationError
            The OAuth credential file is missing, invalid, or could not be
            rewritten after a refresh.
        """
        url = f"{self._base_url}/calendars/{quote(self._calendar_id, safe='')}/events"
        body = build_event_body(proposal, self._timezone)

        response = await self._post_once(url, body, force_refresh=False)
        if response.status_code == 401:
            logger.warning(
                "Calendar API returned 401, retrying once with a refreshed token",
                extra={"proposal_id": str(proposal.id)},
            )
            response = await self._post_once(url, body, force_refresh=True)
            if response.status_code == 401:
                raise CalendarAuthError(
                    "Google Calendar rejected the refreshed access token: "
                    f"{_safe_google_error_message(response)}"
                )

        if response.status_code < 200 or response.status_code >= 300:
            raise CalendarApiError(
                status_code=response.status_code,
                message=_safe_google_error_message(response),
            )

        try:
            payload = response.json()
        except ValueError as exc:
            raise CalendarApiError(
                status_code=response.status_code,
                message="Google Calendar returned invalid JSON",
            ) from exc

        event_id = payload.get("id") if isinstance(payload, dict) else None
        if not isinstance(event_id, str) or not event_id:
            raise CalendarApiError(
                status_code=response.status_code,
                message="Google Calendar response is missing the event id",
            )
        link = payload.get("htmlLink")
        return CreatedEvent(external_id=event_id, external_link=link if isinstance(link, str) else None)

    async def _post_once(
        self, url: str, body: dict[str, Any], *, force_refresh: bool
    ) -> httpx.Response:
        try:
            access_token = await self._credentials.get_access_token(force_refresh=force_refresh)
        except (CredentialConfigurationError, CredentialPersistenceError) as exc:
            raise CalendarConfigurationError(str(exc)) from exc
        except CredentialRefreshError as exc:
            raise CalendarAuthError(str(exc)) from exc
        except CredentialNetworkError as exc:
            raise CalendarNetworkError(str(exc)) from exc

        try:
            return await self._client().post(
                url,
                json=body,
                headers={"Authorization": f"Bearer {access_token}"},
            )
        except httpx.HTTPError as exc:
            raise CalendarNetworkError(f"Google Calendar request failed: {exc}") from exc
