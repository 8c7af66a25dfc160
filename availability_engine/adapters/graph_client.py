"""
Microsoft Graph API client for busy data and reservations.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import pendulum
import requests
from pendulum import DateTime

from ..domain.exceptions import AttendeeNotificationUnsupported, UpstreamUnavailable
from ..domain.models import Reservation, ReservationDraft

logger = logging.getLogger(__name__)

# Statuses that block the calendar
BUSY_STATUSES = {"busy", "tentative", "oof", "workingelsewhere"}
ATTENDEE_RESTRICTION_CODES = {"ErrorSendAsDenied"}


class GraphClient:
    """
    Client for Microsoft Graph API calendar operations.

    Uses ``/users/{id}/calendarView`` for busy data and ``/users/{id}/events``
    for reservations. Calendar ids are the mailbox addresses of the resources.
    """

    GRAPH_API_ENDPOINT = "https://graph.microsoft.com/v1.0"

    def __init__(self, access_token: str, timeout: float = 30):
        """
        Initialize the Graph API client.

        Args:
            access_token: Valid Microsoft Graph access token
            timeout: Per-request timeout in seconds
        """
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
        return await asyncio.to_thread(self.get_calendar_view, calendar_id, time_min, time_max)

    async def create_reservation(self, calendar_id: str, draft: ReservationDraft) -> Reservation:
        return await asyncio.to_thread(self.create_event, calendar_id, draft)

    def get_calendar_view(
        self,
        calendar_id: str,
        time_min: DateTime,
        time_max: DateTime,
    ) -> List[Dict[str, Any]]:
        """
        Get the busy events of one mailbox in a time window.

        Times are requested in UTC. All-day events are returned as dates in the
        timezone of ``time_min``, which is the resource timezone.

        Raises:
            UpstreamUnavailable: If the API call fails
        """
        url: Optional[str] = f"{self.GRAPH_API_ENDPOINT}/users/{quote(calendar_id, safe='')}/calendarView"
        params: Optional[Dict[str, Any]] = {
            "startDateTime": time_min.in_timezone("UTC").to_iso8601_string(),
            "endDateTime": time_max.in_timezone("UTC").to_iso8601_string(),
            "$select": "start,end,showAs,isAllDay,isCancelled",
            "$top": 100,
        }
        headers = {**self.headers, "Prefer": 'outlook.timezone="UTC"'}

        entries: List[Dict[str, Any]] = []
        while url:
            data = self._request("GET", url, headers=headers, params=params)

            for item in data.get("value", []):
                if item.get("isCancelled"):
                    continue
                if item.get("showAs", "").lower() not in BUSY_STATUSES:
                    continue
                try:
                    entries.append(self._to_busy_entry(item, time_min.timezone_name))
                except (KeyError, ValueError) as e:
                    logger.warning("Could not parse calendar item: %s", e)

            # nextLink already carries the query string
            url = data.get("@odata.nextLink")
            params = None

        return entries

    def create_event(self, calendar_id: str, draft: ReservationDraft) -> Reservation:
        """
        Create the reservation event in the resource's mailbox.

        Graph always notifies listed attendees, so the attendee is only
        added when notifications were requested.

        Raises:
            AttendeeNotificationUnsupported: If the mailbox may not send invitations
            UpstreamUnavailable: On any other failure
        """
        event: Dict[str, Any] = {
            "subject": draft.summary,
            "body": {"contentType": "text", "content": draft.description},
            "start": {
                "dateTime": draft.start.format("YYYY-MM-DDTHH:mm:ss"),
                "timeZone": draft.start.timezone_name,
            },
            "end": {
                "dateTime": draft.end.format("YYYY-MM-DDTHH:mm:ss"),
                "timeZone": draft.end.timezone_name,
            },
        }
        if draft.send_notifications and draft.attendee and draft.attendee.email:
            event["attendees"] = [
                {
                    "emailAddress": {
                        "address": draft.attendee.email,
                        "name": draft.attendee.name or draft.attendee.email,
                    },
                    "type": "required",
                }
            ]

        url = f"{self.GRAPH_API_ENDPOINT}/users/{quote(calendar_id, safe='')}/events"
        created = self._request("POST", url, headers=self.headers, json=event)

        return Reservation(id=created.get("id", ""), link=created.get("webLink", ""))

    def test_connection(self) -> Dict[str, Any]:
        """
        Test the connection and authentication by fetching user profile.

        Raises:
            UpstreamUnavailable: If connection test fails
        """
        return self._request("GET", f"{self.GRAPH_API_ENDPOINT}/me", headers=self.headers)

    def _to_busy_entry(self, item: Dict[str, Any], local_timezone: str) -> Dict[str, Any]:
        start = self._parse_datetime(item["start"]["dateTime"], item["start"].get("timeZone", "UTC"))
        end = self._parse_datetime(item["end"]["dateTime"], item["end"].get("timeZone", "UTC"))

        if item.get("isAllDay"):
            # All-day bounds are local midnights in the resource timezone
            return {
                "start": start.in_timezone(local_timezone).to_date_string(),
                "end": end.in_timezone(local_timezone).to_date_string(),
            }
        return {"start": start, "end": end}

    def _parse_datetime(self, datetime_str: str, timezone: str) -> DateTime:
        """
        Parse a Graph datetime string (no offset) in the zone it was reported in.
        """
        dt = pendulum.parse(datetime_str, tz=timezone)

        if isinstance(dt, DateTime):
            return dt

        raise ValueError(f"Could not parse datetime: {datetime_str}")

    def _request(
        self,
        method: str,
        url: str,
        headers: Dict[str, str],
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        try:
            response = requests.request(
                method,
                url,
                headers=headers,
                params=params,
                json=json,
                timeout=self.timeout,
            )
        except requests.exceptions.RequestException as e:
            raise UpstreamUnavailable(f"Microsoft Graph request failed: {e.__class__.__name__}") from e

        if response.status_code >= 400:
            code, message = _graph_error(response)
            if code in ATTENDEE_RESTRICTION_CODES:
                raise AttendeeNotificationUnsupported(
                    "The calendar account is not allowed to send invitations to attendees."
                )
            logger.warning("Microsoft Graph returned %s (%s): %s", response.status_code, code, message)
            raise UpstreamUnavailable(
                f"Microsoft Graph request failed ({response.status_code}): {message}"
            )

        try:
            return response.json()
        except ValueError as e:
            raise UpstreamUnavailable("Microsoft Graph returned invalid JSON") from e


def _graph_error(response: requests.Response) -> tuple[str, str]:
    try:
        error = response.json().get("error", {})
    except (ValueError, AttributeError):
        error = {}
    if not isinstance(error, dict):
        error = {}
    message = " ".join(str(error.get("message") or response.reason or "").split())[:200]
    return str(error.get("code", "")), message or "Request failed without an error payload"
