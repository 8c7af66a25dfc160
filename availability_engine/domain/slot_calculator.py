"""
Core business logic for calculating bookable slots.

This is the heart of the application - pure domain logic without any
external dependencies (no API calls, no database, no I/O).
"""

from __future__ import annotations

import math
from typing import Iterable, Iterator, List, Optional, Sequence

from pendulum import Date, DateTime

from .models import CandidateSlot, SchedulingPolicy, TimeRange


def align_up(moment: DateTime, alignment_minutes: int, anchor: DateTime) -> DateTime:
    """
    Round a moment up to the next grid point counted from ``anchor``.

    Grid points are ``anchor + k * alignment_minutes``. Moments at or before
    the anchor map to the anchor itself; grid points are returned unchanged.
    """
    elapsed = (moment - anchor).total_seconds()
    if elapsed <= 0:
        return anchor

    steps = math.ceil(elapsed / (alignment_minutes * 60))
    return anchor.add(minutes=steps * alignment_minutes)


def conflicts_with(candidate: TimeRange, busy: Sequence[TimeRange]) -> bool:
    """
    Check a candidate against a merged, sorted busy set.

    Uses the half-open rule: ``c.start < b.end and b.start < c.end``.
    """
    for interval in busy:
        if interval.start >= candidate.end:
            break
        if candidate.overlaps(interval):
            return True
    return False


def is_bookable(candidate: TimeRange, busy: Sequence[TimeRange], now: DateTime) -> bool:
    """A candidate is bookable when it starts after ``now`` and hits no busy range."""
    if candidate.start <= now:
        return False
    return not conflicts_with(candidate, busy)


class SlotCalculator:
    """
    Turns a scheduling policy and a merged busy set into bookable slots.

    Algorithm per day:
    1. Build the operating window (or skip the day)
    2. Walk the alignment grid inside the window
    3. Drop candidates in the past or overlapping busy time
    """

    def __init__(self, policy: SchedulingPolicy):
        self.policy = policy

    def generate_candidates(
        self,
        window: TimeRange,
        earliest: Optional[DateTime] = None,
    ) -> Iterator[TimeRange]:
        """
        Yield grid-aligned candidate ranges inside ``window``.

        The grid is anchored at the window start. The step is the alignment
        grid, not the slot length, so consecutive candidates may overlap when
        the grid is finer than the slot. ``earliest`` skips grid points before it.
        """
        step = self.policy.alignment_minutes
        length = self.policy.required_free_minutes

        start = window.start
        if earliest is not None:
            start = align_up(earliest, step, window.start)
        while start.add(minutes=length) <= window.end:
            yield TimeRange(start=start, end=start.add(minutes=length))
            start = start.add(minutes=step)

    def filter_available(
        self,
        candidates: Iterable[TimeRange],
        busy: Sequence[TimeRange],
        now: DateTime,
    ) -> Iterator[TimeRange]:
        """Keep only candidates that are in the future and free."""
        for candidate in candidates:
            if is_bookable(candidate, busy, now):
                yield candidate

    def slots_for_day(
        self,
        day: Date,
        busy: Sequence[TimeRange],
        now: DateTime,
    ) -> List[CandidateSlot]:
        """
        Compute the bookable slots of one calendar day.

        Args:
            day: Calendar day in the resource timezone
            busy: Merged busy ranges covering at least that day's window
            now: Current moment

        Returns:
            Slots in chronological order, empty for excluded days
        """
        window = self.policy.window_for(day)
        if window is None:
            return []

        return self.slots_in_window(day, window, busy, now)

    def slots_in_window(
        self,
        day: Date,
        window: TimeRange,
        busy: Sequence[TimeRange],
        now: DateTime,
    ) -> List[CandidateSlot]:
        available = self.filter_available(self.generate_candidates(window, earliest=now), busy, now)
        return [
            CandidateSlot(date=day, start=candidate.start, end=candidate.end)
            for candidate in available
        ]
