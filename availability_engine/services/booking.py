"""
Conflict-guarded booking.

Right before asking the reservation sink to create an event, the chosen
range is checked again against fresh busy data for its day. The check is
advisory: two concurrent bookings can both pass it, so the sink itself must
reject duplicates (idempotency key or conditional create) for real
exclusivity.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Tuple

import pendulum

from ..domain.exceptions import (
    AttendeeNotificationUnsupported,
    EngineError,
    InvalidRequest,
    SlotNoLongerAvailable,
    UpstreamUnavailable,
)
from ..domain.models import (
    BookingOutcome,
    BookingRequest,
    BookingResponse,
    ErrorInfo,
    Reservation,
    ReservationDraft,
    TimeRange,
)
from ..domain.resources import PolicyTable, ResourceProfile
from ..domain.slot_calculator import is_bookable
from ..domain.timezones import reverse_selection
from .availability import Clock
from .collaborators import BusySource, ReservationSink, fetch_merged_busy

logger = logging.getLogger(__name__)

MAX_DESCRIPTION_LENGTH = 2000


class BookingService:
    """
    Answers "can this chosen window be reserved?" and reserves it if so.
    """

    def __init__(
        self,
        busy_source: BusySource,
        reservation_sink: ReservationSink,
        policy_table: PolicyTable,
        upstream_timeout_seconds: float = 30.0,
        clock: Clock = pendulum.now,
    ) -> None:
        self._busy_source = busy_source
        self._reservation_sink = reservation_sink
        self._policy_table = policy_table
        self._timeout = upstream_timeout_seconds
        self._clock = clock

    async def book(self, request: BookingRequest) -> BookingResponse:
        """
        Validate, re-check and reserve the requested range.

        Never raises engine errors; the outcome is one of reserved,
        conflict, rejected_input or upstream_failure.
        """
        try:
            profile, booked = self.resolve(request)
        except EngineError as exc:
            logger.info("Rejected booking request for %r: %s", request.resource_id, exc.message)
            return BookingResponse(
                outcome=BookingOutcome.REJECTED_INPUT,
                resource_id=request.resource_id,
                error=ErrorInfo.from_error(exc),
            )

        try:
            await self.ensure_still_free(profile, booked)
            reservation = await self._reserve(profile, booked, request)
        except SlotNoLongerAvailable as exc:
            logger.info("Slot %s for %s is no longer available", booked, profile.id)
            return BookingResponse(
                outcome=BookingOutcome.CONFLICT,
                resource_id=profile.id,
                booked_range=booked,
                error=ErrorInfo.from_error(exc),
            )
        except (UpstreamUnavailable, AttendeeNotificationUnsupported) as exc:
            logger.warning("Booking for %s failed upstream: %s", profile.id, exc.message)
            return BookingResponse(
                outcome=BookingOutcome.UPSTREAM_FAILURE,
                resource_id=profile.id,
                booked_range=booked,
                error=ErrorInfo.from_error(exc),
            )

        return BookingResponse(
            outcome=BookingOutcome.RESERVED,
            resource_id=profile.id,
            reservation_id=reservation.id,
            reservation_link=reservation.link or None,
            booked_range=booked,
        )

    def resolve(self, request: BookingRequest) -> Tuple[ResourceProfile, TimeRange]:
        """
        Validate the request and compute the canonical booking range.

        Raises:
            EngineError: Any input validation failure
        """
        profile = self._policy_table.resolve(request.resource_id)
        selection = request.selection()
        booked = reverse_selection(
            selection.chosen_start,
            selection.duration_minutes,
            resource_timezone=profile.policy.timezone,
            caller_timezone=selection.caller_timezone,
        )

        now = self._clock(profile.policy.timezone)
        if booked.start <= now:
            raise InvalidRequest(f"Chosen start {booked.start.isoformat()} is not in the future")

        return profile, booked

    async def ensure_still_free(self, profile: ResourceProfile, booked: TimeRange) -> None:
        """
        Re-fetch the target day's busy data and re-run the availability filter.

        Raises:
            SlotNoLongerAvailable: If the range is taken or already started
            UpstreamUnavailable: If busy data cannot be fetched
        """
        day_start = booked.start.start_of("day")
        day_end = max(day_start.add(days=1), booked.end)

        busy = await fetch_merged_busy(
            self._busy_source,
            profile.calendar_id,
            day_start,
            day_end,
            timezone=profile.policy.timezone,
            timeout=self._timeout,
        )

        now = self._clock(profile.policy.timezone)
        if not is_bookable(booked, busy, now):
            raise SlotNoLongerAvailable(
                f"The slot starting {booked.start.isoformat()} is no longer available"
            )

    async def _reserve(
        self,
        profile: ResourceProfile,
        booked: TimeRange,
        request: BookingRequest,
    ) -> Reservation:
        attendee = request.attendee
        summary = f"Appointment with {attendee.name}" if attendee and attendee.name else "Appointment"
        draft = ReservationDraft(
            start=booked.start,
            end=booked.end,
            summary=summary,
            description=request.description[:MAX_DESCRIPTION_LENGTH],
            attendee=attendee,
            send_notifications=request.send_notifications,
        )

        try:
            reservation = await asyncio.wait_for(
                self._reservation_sink.create_reservation(profile.calendar_id, draft),
                timeout=self._timeout,
            )
        except asyncio.TimeoutError as exc:
            raise UpstreamUnavailable(
                f"Reservation request timed out after {self._timeout:g}s"
            ) from exc

        logger.info("Reserved %s for %s (id=%s)", booked, profile.id, reservation.id)
        return reservation
