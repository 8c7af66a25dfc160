"""
In-memory calendar for running the engine without a real backend.
"""

from __future__ import annotations

import itertools
import json
from pathlib import Path
from typing import Any, Dict, List, Optional

from pendulum import DateTime

from ..domain.exceptions import AttendeeNotificationUnsupported, EngineError
from ..domain.intervals import normalize_busy_entry
from ..domain.models import Reservation, ReservationDraft


class MockCalendarClient:
    """
    Mock client serving busy data from a list of events.

    Events are dicts with ``calendarId``, ``start`` and ``end``. Created
    reservations are appended to the same list, so later lookups see them.
    """

    def __init__(
        self,
        events: Optional[List[Dict[str, Any]]] = None,
        reject_attendee_invites: bool = False,
    ):
        """
        Args:
            events: Initial calendar events
            reject_attendee_invites: Simulate credentials that may not invite attendees
        """
        self.events: List[Dict[str, Any]] = list(events or [])
        self.reject_attendee_invites = reject_attendee_invites
        self.reservations: List[ReservationDraft] = []
        self._ids = itertools.count(1)

    @classmethod
    def from_file(cls, data_file: Optional[Path], **kwargs: Any) -> "MockCalendarClient":
        """Load events from a JSON file; a missing file means an empty calendar."""
        if data_file is None or not data_file.exists():
            return cls(**kwargs)

        with open(data_file, "r", encoding="utf-8") as f:
            events = json.load(f)

        if not isinstance(events, list):
            raise ValueError(f"Mock calendar file {data_file} must contain a list of events")

        return cls(events=events, **kwargs)

    async def fetch_busy(
        self,
        calendar_id: str,
        time_min: DateTime,
        time_max: DateTime,
    ) -> List[Dict[str, Any]]:
        """Return the events of ``calendar_id`` that overlap the window."""
        matching: List[Dict[str, Any]] = []

        for event in self.events:
            if event.get("calendarId") != calendar_id:
                continue

            try:
                event_range = normalize_busy_entry(event, time_min.timezone_name)
            except EngineError:
                # Let the engine see and drop malformed entries itself
                matching.append({"start": event.get("start"), "end": event.get("end")})
                continue

            if event_range.start < time_max and event_range.end > time_min:
                matching.append({"start": event["start"], "end": event["end"]})

        return matching

    async def create_reservation(self, calendar_id: str, draft: ReservationDraft) -> Reservation:
        if self.reject_attendee_invites and draft.attendee and draft.attendee.email:
            raise AttendeeNotificationUnsupported(
                "Service accounts cannot invite attendees without domain-wide delegation."
            )

        event_id = f"mock-{next(self._ids)}"
        self.reservations.append(draft)
        self.events.append(
            {
                "calendarId": calendar_id,
                "id": event_id,
                "summary": draft.summary,
                "start": draft.start.isoformat(),
                "end": draft.end.isoformat(),
            }
        )

        return Reservation(id=event_id, link=f"https://calendar.invalid/event/{event_id}")
