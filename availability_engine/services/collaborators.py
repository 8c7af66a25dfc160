"""
Protocols for the calendar collaborators the engine depends on.

The engine never builds these itself; concrete adapters (Google, Graph,
mock) are injected by the caller.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, List, Protocol, Sequence

from pendulum import DateTime

from ..domain.exceptions import UpstreamUnavailable
from ..domain.intervals import merge_busy_intervals
from ..domain.models import Reservation, ReservationDraft, TimeRange

logger = logging.getLogger(__name__)


class BusySource(Protocol):
    """Source of raw busy entries for one calendar."""

    async def fetch_busy(
        self,
        calendar_id: str,
        time_min: DateTime,
        time_max: DateTime,
    ) -> Sequence[Any]:
        """
        Return raw ``{start, end}`` entries overlapping ``[time_min, time_max)``.

        Entries may be unmerged and may be date-only. Failures are raised as
        ``UpstreamUnavailable``.
        """


class ReservationSink(Protocol):
    """Destination for confirmed reservations."""

    async def create_reservation(
        self,
        calendar_id: str,
        draft: ReservationDraft,
    ) -> Reservation:
        """
        Create the reservation and return its id and link.

        Raises ``UpstreamUnavailable`` on failure and
        ``AttendeeNotificationUnsupported`` when attendees cannot be invited.
        """


async def fetch_merged_busy(
    source: BusySource,
    calendar_id: str,
    time_min: DateTime,
    time_max: DateTime,
    *,
    timezone: str,
    timeout: float,
) -> List[TimeRange]:
    """Fetch busy entries with a timeout and merge them in ``timezone``."""
    try:
        raw_entries = await asyncio.wait_for(
            source.fetch_busy(calendar_id, time_min, time_max),
            timeout=timeout,
        )
    except asyncio.TimeoutError as exc:
        logger.warning("Busy lookup for %s timed out after %ss", calendar_id, timeout)
        raise UpstreamUnavailable(f"Busy lookup timed out after {timeout:g}s") from exc

    return merge_busy_intervals(raw_entries, timezone)
