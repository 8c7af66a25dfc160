"""
Domain models for intervals, scheduling policies, slots and engine requests.
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union

import pendulum
from pendulum import Date, DateTime

from .exceptions import EngineError, InvalidWindow


@dataclass(frozen=True)
class TimeRange:
    """
    Represents an immutable half-open time range ``[start, end)``.

    Invariant: start must be before end.
    """
    start: DateTime
    end: DateTime

    def __post_init__(self):
        if self.start >= self.end:
            raise InvalidWindow(f"Start time {self.start} must be before end time {self.end}")

    def duration_minutes(self) -> int:
        """Return the duration in minutes."""
        return int((self.end - self.start).total_seconds() // 60)

    def overlaps(self, other: "TimeRange") -> bool:
        """Half-open overlap: touching ranges do not overlap."""
        return self.start < other.end and other.start < self.end

    def in_timezone(self, tz: str) -> "TimeRange":
        """Re-express both endpoints in another zone; the instants are unchanged."""
        return TimeRange(start=self.start.in_timezone(tz), end=self.end.in_timezone(tz))

    def __str__(self) -> str:
        return f"{self.start.format('YYYY-MM-DD HH:mm')} - {self.end.format('HH:mm')}"


@dataclass(frozen=True)
class SchedulingPolicy:
    """
    Resolved per-resource scheduling configuration.

    Weekdays follow pendulum numbering: 0=Monday, 6=Sunday.
    """
    timezone: str
    operating_start_hour: int = 8
    operating_end_hour: int = 18
    allow_weekends: bool = False
    weekend_days: Tuple[int, ...] = (5, 6)
    alignment_minutes: int = 30
    required_free_minutes: int = 30

    def __post_init__(self):
        if not 0 <= self.operating_start_hour <= 23:
            raise InvalidWindow(
                f"operating_start_hour must be between 0 and 23, got {self.operating_start_hour}"
            )
        if not 1 <= self.operating_end_hour <= 24:
            raise InvalidWindow(
                f"operating_end_hour must be between 1 and 24, got {self.operating_end_hour}"
            )
        if self.operating_end_hour <= self.operating_start_hour:
            raise InvalidWindow("operating_end_hour must be later than operating_start_hour")
        if self.alignment_minutes <= 0:
            raise InvalidWindow("alignment_minutes must be greater than zero")
        if self.required_free_minutes <= 0:
            raise InvalidWindow("required_free_minutes must be greater than zero")

    def with_overrides(self, **changes: Any) -> "SchedulingPolicy":
        """Return a copy with the non-None fields in ``changes`` replaced."""
        present = {key: value for key, value in changes.items() if value is not None}
        if not present:
            return self
        return dataclasses.replace(self, **present)

    def is_open_on(self, day: Date) -> bool:
        """Check whether bookings may fall on the given calendar day."""
        return self.allow_weekends or day.day_of_week not in self.weekend_days

    def window_for(self, day: Date) -> TimeRange | None:
        """
        Build the operating window for a calendar day in the resource timezone.

        Returns None when the day is excluded by the weekend rule.
        """
        if not self.is_open_on(day):
            return None

        start = pendulum.datetime(
            day.year, day.month, day.day, self.operating_start_hour, tz=self.timezone
        )
        if self.operating_end_hour == 24:
            end = pendulum.datetime(day.year, day.month, day.day, tz=self.timezone).add(days=1)
        else:
            end = pendulum.datetime(
                day.year, day.month, day.day, self.operating_end_hour, tz=self.timezone
            )

        return TimeRange(start=start, end=end)


@dataclass
class CandidateSlot:
    """
    A bookable slot in the resource timezone, optionally projected for display.
    """
    date: Date
    start: DateTime
    end: DateTime
    display_start: Optional[DateTime] = None
    display_end: Optional[DateTime] = None
    label: str = ""

    @property
    def time_range(self) -> TimeRange:
        return TimeRange(start=self.start, end=self.end)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "date": self.date.isoformat(),
            "start": self.start.isoformat(),
            "end": self.end.isoformat(),
        }
        if self.display_start is not None and self.display_end is not None:
            data["display_start"] = self.display_start.isoformat()
            data["display_end"] = self.display_end.isoformat()
        if self.label:
            data["label"] = self.label
        return data


@dataclass(frozen=True)
class Attendee:
    """Person the reservation is made for."""
    name: str = ""
    email: str = ""


@dataclass(frozen=True)
class BookingSelection:
    """Caller-chosen start and duration, alive only for one booking call."""
    resource_id: str
    chosen_start: Union[str, datetime]
    duration_minutes: int
    caller_timezone: Optional[str] = None


@dataclass(frozen=True)
class AvailabilityRequest:
    resource_id: str
    requested_date: Union[str, Date, None] = None
    days_to_check: Optional[int] = None
    required_free_minutes: Optional[int] = None
    alignment_minutes: Optional[int] = None
    max_slots: Optional[int] = None
    caller_timezone: Optional[str] = None


@dataclass(frozen=True)
class BookingRequest:
    resource_id: str
    chosen_start: Union[str, datetime]
    duration_minutes: int = 30
    caller_timezone: Optional[str] = None
    attendee: Optional[Attendee] = None
    description: str = ""
    send_notifications: bool = False

    def selection(self) -> BookingSelection:
        return BookingSelection(
            resource_id=self.resource_id,
            chosen_start=self.chosen_start,
            duration_minutes=self.duration_minutes,
            caller_timezone=self.caller_timezone,
        )


@dataclass(frozen=True)
class ReservationDraft:
    """Payload handed to the reservation sink."""
    start: DateTime
    end: DateTime
    summary: str
    description: str = ""
    attendee: Optional[Attendee] = None
    send_notifications: bool = False


@dataclass(frozen=True)
class Reservation:
    id: str
    link: str = ""


class AvailabilityStatus(str, Enum):
    SLOTS_RETURNED = "slots_returned"
    REJECTED_INPUT = "rejected_input"
    UPSTREAM_FAILURE = "upstream_failure"


class BookingOutcome(str, Enum):
    RESERVED = "reserved"
    CONFLICT = "conflict"
    REJECTED_INPUT = "rejected_input"
    UPSTREAM_FAILURE = "upstream_failure"


@dataclass(frozen=True)
class ErrorInfo:
    """Stable, user-visible description of a failed request."""
    kind: str
    message: str
    retryable: bool = False

    @classmethod
    def from_error(cls, error: EngineError) -> "ErrorInfo":
        return cls(kind=error.kind, message=error.message, retryable=error.retryable)

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind, "message": self.message, "retryable": self.retryable}


@dataclass
class AvailabilityResponse:
    status: AvailabilityStatus
    resource_id: str
    resource_timezone: str = ""
    slots: List[CandidateSlot] = field(default_factory=list)
    error: Optional[ErrorInfo] = None

    @property
    def ok(self) -> bool:
        return self.status is AvailabilityStatus.SLOTS_RETURNED

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "status": self.status.value,
            "resource_id": self.resource_id,
            "resource_timezone": self.resource_timezone,
            "slots": [slot.to_dict() for slot in self.slots],
        }
        if self.error is not None:
            data["error"] = self.error.to_dict()
        return data


@dataclass
class BookingResponse:
    outcome: BookingOutcome
    resource_id: str
    reservation_id: Optional[str] = None
    reservation_link: Optional[str] = None
    booked_range: Optional[TimeRange] = None
    error: Optional[ErrorInfo] = None

    @property
    def ok(self) -> bool:
        return self.outcome is BookingOutcome.RESERVED

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "outcome": self.outcome.value,
            "resource_id": self.resource_id,
            "reservation_id": self.reservation_id,
            "reservation_link": self.reservation_link,
        }
        if self.booked_range is not None:
            data["start"] = self.booked_range.start.isoformat()
            data["end"] = self.booked_range.end.isoformat()
        if self.error is not None:
            data["error"] = self.error.to_dict()
        return data
