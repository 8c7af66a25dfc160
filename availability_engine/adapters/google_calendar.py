"""
Google Calendar v3 REST client for busy data and reservations.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import requests
from pendulum import DateTime

from ..domain.exceptions import AttendeeNotificationUnsupported, UpstreamUnavailable
from ..domain.models import Reservation, ReservationDraft

logger = logging.getLogger(__name__)

ATTENDEE_RESTRICTION_REASON = "forbiddenForServiceAccounts"
ATTENDEE_RESTRICTION_TEXT = "service accounts cannot invite attendees"


class GoogleCalendarClient:
    """
    Client for Google Calendar operations.

    Uses ``events.list`` for busy data and ``events.insert`` for reservations.
    The access token is an opaque capability handed in by the caller; this
    client never loads, refreshes or stores credentials.
    """

    API_ENDPOINT = "https://www.googleapis.com/calendar/v3"
    PAGE_SIZE = 250

    def __init__(
        self,
        access_token: str,
        base_url: str = API_ENDPOINT,
        timeout: float = 30,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.headers = {
            "Authorization": f"Bearer {access_token}",
            "Content-Type": "application/json",
        }

    async def fetch_busy(
        self,
        calendar_id: str,
        time_min: DateTime,
        time_max: DateTime,
    ) -> List[Dict[str, Any]]:
        return await asyncio.to_thread(self.list_busy_entries, calendar_id, time_min, time_max)

    async def create_reservation(self, calendar_id: str, draft: ReservationDraft) -> Reservation:
        return await asyncio.to_thread(self.insert_event, calendar_id, draft)

    def list_busy_entries(
        self,
        calendar_id: str,
        time_min: DateTime,
        time_max: DateTime,
    ) -> List[Dict[str, Any]]:
        """
        List events blocking time in ``[time_min, time_max)``.

        Cancelled and transparent ("show as free") events are skipped.
        All-day events keep their ``date`` form so the engine can expand
        them to whole days in the resource timezone.

        Raises:
            UpstreamUnavailable: If the API call fails
        """
        params: Dict[str, Any] = {
            "timeMin": time_min.to_iso8601_string(),
            "timeMax": time_max.to_iso8601_string(),
            "singleEvents": "true",
            "orderBy": "startTime",
            "maxResults": self.PAGE_SIZE,
        }
        path = f"/calendars/{quote(calendar_id, safe='')}/events"

        entries: List[Dict[str, Any]] = []
        while True:
            data = self._request("GET", path, params=params)

            for item in data.get("items", []):
                if item.get("status") == "cancelled":
                    continue
                if item.get("transparency") == "transparent":
                    continue
                entries.append({"start": item.get("start"), "end": item.get("end")})

            page_token = data.get("nextPageToken")
            if not page_token:
                break
            params = {**params, "pageToken": page_token}

        logger.debug("Fetched %d busy entries for %s", len(entries), calendar_id)
        return entries

    def insert_event(self, calendar_id: str, draft: ReservationDraft) -> Reservation:
        """
        Create the reservation event.

        Raises:
            AttendeeNotificationUnsupported: If the credentials may not invite attendees
            UpstreamUnavailable: On any other failure
        """
        event: Dict[str, Any] = {
            "summary": draft.summary,
            "start": {
                "dateTime": draft.start.to_iso8601_string(),
                "timeZone": draft.start.timezone_name,
            },
            "end": {
                "dateTime": draft.end.to_iso8601_string(),
                "timeZone": draft.end.timezone_name,
            },
        }
        if draft.description:
            event["description"] = draft.description
        if draft.attendee and draft.attendee.email:
            attendee: Dict[str, str] = {"email": draft.attendee.email}
            if draft.attendee.name:
                attendee["displayName"] = draft.attendee.name
            event["attendees"] = [attendee]

        params = {"sendUpdates": "all" if draft.send_notifications else "none"}
        path = f"/calendars/{quote(calendar_id, safe='')}/events"
        created = self._request("POST", path, params=params, json=event)

        return Reservation(id=created.get("id", ""), link=created.get("htmlLink", ""))

    def _request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        try:
            response = requests.request(
                method,
                f"{self.base_url}{path}",
                headers=self.headers,
                params=params,
                json=json,
                timeout=self.timeout,
            )
        except requests.exceptions.RequestException as e:
            raise UpstreamUnavailable(f"Google Calendar request failed: {e.__class__.__name__}") from e

        if response.status_code >= 400:
            message = _safe_error_message(response)
            if response.status_code == 403 and _is_attendee_restriction(response, message):
                raise AttendeeNotificationUnsupported(
                    "Service accounts cannot invite attendees without domain-wide delegation."
                )
            logger.warning("Google Calendar API returned %s: %s", response.status_code, message)
            raise UpstreamUnavailable(
                f"Google Calendar API request failed ({response.status_code}): {message}"
            )

        try:
            return response.json()
        except ValueError as e:
            raise UpstreamUnavailable("Google Calendar API returned invalid JSON") from e


def _error_payload(response: requests.Response) -> Dict[str, Any]:
    try:
        payload = response.json()
    except ValueError:
        return {}
    if isinstance(payload, dict) and isinstance(payload.get("error"), dict):
        return payload["error"]
    return {}


def _safe_error_message(response: requests.Response) -> str:
    message = _error_payload(response).get("message")
    if isinstance(message, str) and message.strip():
        return " ".join(message.split())[:200]
    return response.reason or "Request failed without an error payload"


def _is_attendee_restriction(response: requests.Response, message: str) -> bool:
    reasons = [
        error.get("reason")
        for error in _error_payload(response).get("errors", [])
        if isinstance(error, dict)
    ]
    return ATTENDEE_RESTRICTION_REASON in reasons or ATTENDEE_RESTRICTION_TEXT in message.lower()
