"""
Busy-interval normalisation and merging.

Calendar backends hand back loosely typed entries: ISO strings with or
without offsets, date-only all-day events, ``datetime`` objects, or
Google-style ``{"dateTime": ...}`` / ``{"date": ...}`` mappings. Everything
is turned into ``TimeRange`` objects in the resource timezone and merged
into a sorted list with no overlapping or touching ranges.
"""

from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Any, Iterable, List, Mapping, Tuple

import pendulum
from pendulum import DateTime

from .exceptions import EngineError, InvalidDate
from .models import TimeRange

logger = logging.getLogger(__name__)


def parse_instant(value: Any, timezone: str) -> Tuple[DateTime, bool]:
    """
    Parse a single endpoint into a timezone-aware DateTime.

    Returns the instant (expressed in ``timezone``) and whether the input was
    a date without a time of day. Zone-less values are read as wall-clock
    time in ``timezone``.

    Raises:
        InvalidDate: If the value is missing or cannot be parsed
    """
    if isinstance(value, Mapping):
        value = value.get("dateTime") or value.get("date")

    if value is None or value == "":
        raise InvalidDate("Missing date/time value")

    if isinstance(value, datetime):
        if value.tzinfo is None:
            local = pendulum.datetime(
                value.year, value.month, value.day,
                value.hour, value.minute, value.second, value.microsecond,
                tz=timezone,
            )
            return local, False
        return pendulum.instance(value).in_timezone(timezone), False

    if isinstance(value, date):
        return pendulum.datetime(value.year, value.month, value.day, tz=timezone), True

    if not isinstance(value, str):
        raise InvalidDate(f"Unsupported date/time value: {value!r}")

    try:
        parsed = pendulum.parse(value.strip(), exact=True, tz=timezone)
    except ValueError as exc:
        raise InvalidDate(f"Could not parse date/time: {value!r}") from exc

    if isinstance(parsed, DateTime):
        return parsed.in_timezone(timezone), False
    if isinstance(parsed, date):
        return pendulum.datetime(parsed.year, parsed.month, parsed.day, tz=timezone), True

    raise InvalidDate(f"Not a date or date/time: {value!r}")


def normalize_busy_entry(entry: Any, timezone: str) -> TimeRange:
    """
    Convert one raw busy entry into a TimeRange in ``timezone``.

    Date-only entries cover whole days: ``[start-of-day, start-of-next-day)``.
    An all-day end date equal to the start date is read as inclusive.

    Raises:
        InvalidDate: If an endpoint is missing or unparsable
        InvalidWindow: If the entry ends at or before its start
    """
    if isinstance(entry, TimeRange):
        return entry.in_timezone(timezone)

    if isinstance(entry, Mapping):
        raw_start, raw_end = entry.get("start"), entry.get("end")
    else:
        raw_start, raw_end = getattr(entry, "start", None), getattr(entry, "end", None)

    start, _ = parse_instant(raw_start, timezone)
    end, end_is_date = parse_instant(raw_end, timezone)

    if end_is_date and end <= start:
        end = end.add(days=1)

    return TimeRange(start=start, end=end)


def merge_ranges(ranges: Iterable[TimeRange]) -> List[TimeRange]:
    """
    Merge overlapping or adjacent time ranges.

    Example: [09:00-10:00, 10:00-11:00] -> [09:00-11:00]
    """
    sorted_ranges = sorted(ranges, key=lambda r: r.start)
    if not sorted_ranges:
        return []

    merged: List[TimeRange] = [sorted_ranges[0]]

    for current in sorted_ranges[1:]:
        last = merged[-1]

        # Touching counts as merge-worthy; only a strict gap starts a new range
        if current.start <= last.end:
            if current.end > last.end:
                merged[-1] = TimeRange(start=last.start, end=current.end)
        else:
            merged.append(current)

    return merged


def merge_busy_intervals(entries: Iterable[Any], timezone: str) -> List[TimeRange]:
    """
    Normalise raw busy entries and merge them into a canonical busy set.

    Invalid entries are logged and dropped; they never fail the batch.
    """
    ranges: List[TimeRange] = []

    for entry in entries:
        try:
            ranges.append(normalize_busy_entry(entry, timezone))
        except EngineError as exc:
            logger.warning("Dropping busy entry %r: %s", entry, exc.message)

    return merge_ranges(ranges)
