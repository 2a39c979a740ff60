"""
HTTP client for Google Calendar sync.

Mirrors booked appointments into the therapist's Google Calendar:
- Exchanges the therapist's stored refresh token for an access token
- Creates, patches and deletes calendar events

Every failure raises CalendarSyncError. Callers treat sync as best effort.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

import httpx

from app.config import get_settings

logger = logging.getLogger(__name__)


class CalendarSyncError(Exception):
    """Raised when an event could not be mirrored to the external calendar."""
    pass


@dataclass
class CalendarCredentials:
    """Per-therapist calendar credentials stored by the OAuth callback."""

    refresh_token: Optional[str]
    calendar_id: Optional[str] = None

    @property
    def usable(self) -> bool:
        return bool(self.refresh_token)

    @property
    def target_calendar(self) -> str:
        return self.calendar_id or "primary"


@dataclass
class CalendarEvent:
    """Event details sent to the calendar."""

    start_local: datetime
    end_local: datetime
    time_zone: str
    inquiry_id: str
    patient_name: Optional[str] = None

    def to_body(self) -> dict:
        """Build the Google Calendar event resource."""
        return {
            "summary": f"Therapy Session with {self.patient_name or 'Patient'}",
            "description": f"Inquiry ID: {self.inquiry_id}",
            "start": {
                "dateTime": self.start_local.replace(tzinfo=None).isoformat(),
                "timeZone": self.time_zone,
            },
            "end": {
                "dateTime": self.end_local.replace(tzinfo=None).isoformat(),
                "timeZone": self.time_zone,
            },
            "reminders": {
                "useDefault": False,
                "overrides": [
                    {"method": "email", "minutes": 24 * 60},
                    {"method": "popup", "minutes": 30},
                ],
            },
        }


class GoogleCalendarSync:
    """
    HTTP client for the Google Calendar API.

    Uses:
    - POST {token_url} - refresh-token grant
    - POST /calendars/{id}/events?sendUpdates=all - Create event
    - PATCH /calendars/{id}/events/{event_id} - Move event
    - DELETE /calendars/{id}/events/{event_id} - Remove event
    """

    def __init__(
        self,
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
        base_url: Optional[str] = None,
        token_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize client.

        Args:
            client_id: OAuth client id (defaults to settings)
            client_secret: OAuth client secret (defaults to settings)
            base_url: Calendar API base URL (defaults to settings)
            token_url: OAuth token endpoint (defaults to settings)
            timeout: Request timeout in seconds
            transport: Optional httpx transport (for testing)
        """
        settings = get_settings()
        self.client_id = client_id or settings.google_client_id
        self.client_secret = client_secret or settings.google_client_secret
        self.base_url = base_url or settings.google_calendar_api_url
        self.token_url = token_url or settings.google_token_url
        self.timeout = timeout or settings.calendar_timeout_seconds
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    def is_configured(self) -> bool:
        """Whether OAuth client credentials are available."""
        return bool(self.client_id and self.client_secret)

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self.timeout,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    # === Auth ===

    async def _access_token(self, credentials: CalendarCredentials) -> str:
        """Exchange the stored refresh token for a short-lived access token."""
        if not credentials.usable:
            raise CalendarSyncError("No Google Refresh Token found for therapist.")
        if not self.is_configured():
            raise CalendarSyncError("Google OAuth client is not configured.")

        client = await self._get_client()

        try:
            response = await client.post(
                self.token_url,
                data={
                    "client_id": self.client_id,
                    "client_secret": self.client_secret,
                    "refresh_token": credentials.refresh_token,
                    "grant_type": "refresh_token",
                },
            )
            response.raise_for_status()
            token = response.json().get("access_token")
        except httpx.HTTPError as e:
            logger.error(f"Token refresh failed: {e}")
            raise CalendarSyncError(f"Failed to refresh Google access token: {e}") from e
        except ValueError as e:
            raise CalendarSyncError(f"Invalid token response: {e}") from e

        if not token:
            raise CalendarSyncError("Token response did not contain an access token.")
        return token

    async def _request(
        self,
        method: str,
        path: str,
        credentials: CalendarCredentials,
        json_body: Optional[dict] = None,
        params: Optional[dict] = None,
    ) -> httpx.Response:
        token = await self._access_token(credentials)
        client = await self._get_client()

        try:
            response = await client.request(
                method,
                f"{self.base_url}{path}",
                json=json_body,
                params=params,
                headers={"Authorization": f"Bearer {token}"},
            )
            response.raise_for_status()
            return response
        except httpx.HTTPError as e:
            logger.error(f"Calendar API {method} {path} failed: {e}")
            raise CalendarSyncError(f"Google Calendar request failed: {e}") from e

    # === Events ===

    async def create_event(
        self,
        credentials: CalendarCredentials,
        event: CalendarEvent,
    ) -> Optional[str]:
        """Create an event and invite attendees.

        Returns:
            The external event id (None if the API omitted it)

        Raises:
            CalendarSyncError: on missing credentials or any HTTP failure
        """
        response = await self._request(
            "POST",
            f"/calendars/{credentials.target_calendar}/events",
            credentials,
            json_body=event.to_body(),
            params={"sendUpdates": "all"},
        )
        try:
            event_id = response.json().get("id")
        except ValueError:
            event_id = None

        logger.info(f"Created calendar event {event_id} for inquiry {event.inquiry_id}")
        return event_id

    async def update_event(
        self,
        credentials: CalendarCredentials,
        event_id: str,
        event: CalendarEvent,
    ) -> None:
        """Move an existing event to new times."""
        body = event.to_body()
        await self._request(
            "PATCH",
            f"/calendars/{credentials.target_calendar}/events/{event_id}",
            credentials,
            json_body={"start": body["start"], "end": body["end"]},
            params={"sendUpdates": "all"},
        )
        logger.info(f"Updated calendar event {event_id}")

    async def delete_event(
        self,
        credentials: CalendarCredentials,
        event_id: str,
    ) -> None:
        """Delete an event."""
        await self._request(
            "DELETE",
            f"/calendars/{credentials.target_calendar}/events/{event_id}",
            credentials,
            params={"sendUpdates": "all"},
        )
        logger.info(f"Deleted calendar event {event_id}")


# Singleton
_calendar_sync: Optional[GoogleCalendarSync] = None


def get_calendar_sync() -> GoogleCalendarSync:
    """Get singleton GoogleCalendarSync."""
    global _calendar_sync
    if _calendar_sync is None:
        _calendar_sync = GoogleCalendarSync()
    return _calendar_sync


async def close_calendar_sync() -> None:
    """Close the shared client (application shutdown)."""
    global _calendar_sync
    if _calendar_sync is not None:
        await _calendar_sync.close()
        _calendar_sync = None
