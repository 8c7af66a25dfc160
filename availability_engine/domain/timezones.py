"""
Timezone projection between a resource's canonical zone and a caller's zone.
"""

from __future__ import annotations

import dataclasses
from datetime import datetime
from typing import Optional, Union

import pendulum
from pendulum import DateTime

from .exceptions import InvalidDate, InvalidRequest, InvalidTimeZone
from .intervals import parse_instant
from .models import CandidateSlot, TimeRange


def resolve_timezone(name: Optional[str]) -> str:
    """
    Validate an IANA timezone name and return it.

    Raises:
        InvalidTimeZone: If the name is empty or unknown
    """
    if not name or not str(name).strip():
        raise InvalidTimeZone("Timezone name is empty")

    name = str(name).strip()
    try:
        pendulum.timezone(name)
    except (ValueError, KeyError) as exc:
        raise InvalidTimeZone(f"Unknown timezone: {name!r}") from exc
    return name


def format_slot_label(start: DateTime, end: DateTime) -> str:
    """
    Human-readable label, e.g. ``Tue, Nov 26 2:00 PM - 2:30 PM EST``.
    """
    day = start.format("ddd, MMM D")
    return f"{day} {start.format('h:mm A')} - {end.format('h:mm A')} {start.tzname()}"


def project_slot(slot: CandidateSlot, display_timezone: str) -> CandidateSlot:
    """
    Re-express a canonical slot in the caller's timezone.

    The canonical ``start``/``end`` are untouched; only ``display_start``,
    ``display_end`` and the label are filled in.
    """
    display_start = slot.start.in_timezone(display_timezone)
    display_end = slot.end.in_timezone(display_timezone)
    return dataclasses.replace(
        slot,
        display_start=display_start,
        display_end=display_end,
        label=format_slot_label(display_start, display_end),
    )


def reverse_selection(
    chosen_start: Union[str, datetime],
    duration_minutes: int,
    resource_timezone: str,
    caller_timezone: Optional[str] = None,
) -> TimeRange:
    """
    Resolve a caller's chosen start into the canonical booking range.

    Zone-less input is read in the caller's timezone, or the resource's
    timezone when the caller did not declare one. Input carrying an offset
    is used as-is.

    Returns:
        ``[start, start + duration)`` expressed in ``resource_timezone``

    Raises:
        InvalidTimeZone: If either timezone is unknown
        InvalidDate: If the start cannot be parsed or has no time of day
        InvalidRequest: If the duration is not positive
    """
    resource_timezone = resolve_timezone(resource_timezone)
    reading_zone = resolve_timezone(caller_timezone) if caller_timezone else resource_timezone

    if duration_minutes is None or duration_minutes <= 0:
        raise InvalidRequest(f"duration_minutes must be greater than zero, got {duration_minutes}")

    instant, date_only = parse_instant(chosen_start, reading_zone)
    if date_only:
        raise InvalidDate(f"A start time of day is required, got {chosen_start!r}")

    start = instant.in_timezone(resource_timezone)
    return TimeRange(start=start, end=start.add(minutes=duration_minutes))
