"""
Multi-day availability scan.

The service validates the request, walks the requested days, fetches busy
data per open day through the injected ``BusySource`` and delegates the slot
computation to the domain ``SlotCalculator``. Per-day fetches may run
concurrently, but slots are always assembled in day order before the
``max_slots`` cut-off so that "the first N slots" is reproducible.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import date
from typing import Callable, List, Optional, Sequence, Tuple, Union

import pendulum
from pendulum import Date, DateTime

from ..domain.exceptions import EngineError, InvalidDate, InvalidRequest, UpstreamUnavailable
from ..domain.models import (
    AvailabilityRequest,
    AvailabilityResponse,
    AvailabilityStatus,
    CandidateSlot,
    ErrorInfo,
    SchedulingPolicy,
    TimeRange,
)
from ..domain.resources import PolicyTable, ResourceProfile
from ..domain.slot_calculator import SlotCalculator
from ..domain.timezones import project_slot, resolve_timezone
from .collaborators import BusySource, fetch_merged_busy

logger = logging.getLogger(__name__)

Clock = Callable[[str], DateTime]


@dataclass(frozen=True)
class ScanSettings:
    """Defaults and limits for availability scans."""
    days_to_check: int = 7
    max_slots: int = 4
    max_concurrent_fetches: int = 4
    upstream_timeout_seconds: float = 30.0


@dataclass(frozen=True)
class ScanPlan:
    profile: ResourceProfile
    policy: SchedulingPolicy
    days: Tuple[Date, ...]
    max_slots: int
    now: DateTime
    caller_timezone: Optional[str]


class AvailabilityService:
    """
    Answers "which windows are bookable for this resource?".

    Holds no mutable state; concurrent calls are independent.
    """

    def __init__(
        self,
        busy_source: BusySource,
        policy_table: PolicyTable,
        settings: ScanSettings = ScanSettings(),
        clock: Clock = pendulum.now,
    ) -> None:
        self._busy_source = busy_source
        self._policy_table = policy_table
        self._settings = settings
        self._clock = clock

    async def find_slots(self, request: AvailabilityRequest) -> AvailabilityResponse:
        """
        Run the full availability pipeline for one request.

        Never raises engine errors; they are reported through the response
        status and ``error``.
        """
        try:
            plan = self.plan(request)
        except EngineError as exc:
            logger.info("Rejected availability request for %r: %s", request.resource_id, exc.message)
            return AvailabilityResponse(
                status=AvailabilityStatus.REJECTED_INPUT,
                resource_id=request.resource_id,
                error=ErrorInfo.from_error(exc),
            )

        try:
            slots = await self.scan(plan)
        except UpstreamUnavailable as exc:
            return AvailabilityResponse(
                status=AvailabilityStatus.UPSTREAM_FAILURE,
                resource_id=plan.profile.id,
                resource_timezone=plan.policy.timezone,
                error=ErrorInfo.from_error(exc),
            )

        return AvailabilityResponse(
            status=AvailabilityStatus.SLOTS_RETURNED,
            resource_id=plan.profile.id,
            resource_timezone=plan.policy.timezone,
            slots=slots,
        )

    def plan(self, request: AvailabilityRequest) -> ScanPlan:
        """
        Validate a request without touching the network.

        Raises:
            EngineError: Any input validation failure
        """
        profile = self._policy_table.resolve(request.resource_id)
        policy = profile.policy.with_overrides(
            required_free_minutes=request.required_free_minutes,
            alignment_minutes=request.alignment_minutes,
        )

        caller_timezone = None
        if request.caller_timezone:
            caller_timezone = resolve_timezone(request.caller_timezone)

        days_to_check = _positive(
            "days_to_check", request.days_to_check, self._settings.days_to_check
        )
        max_slots = _positive("max_slots", request.max_slots, self._settings.max_slots)

        now = self._clock(policy.timezone)
        first_day = _first_day(request.requested_date, policy.timezone, now)

        return ScanPlan(
            profile=profile,
            policy=policy,
            days=tuple(first_day.add(days=offset) for offset in range(days_to_check)),
            max_slots=max_slots,
            now=now,
            caller_timezone=caller_timezone,
        )

    async def scan(self, plan: ScanPlan) -> List[CandidateSlot]:
        """
        Walk the planned days and collect slots until the quota is reached.

        Days are fetched in batches of ``max_concurrent_fetches``; each batch
        is assembled in day order and the scan stops at the first batch that
        fills the quota.
        """
        calculator = SlotCalculator(plan.policy)
        open_days: List[Tuple[Date, TimeRange]] = []

        for day in plan.days:
            window = plan.policy.window_for(day)
            if window is None:
                logger.debug("Skipping excluded day %s", day)
                continue
            if window.end <= plan.now:
                continue
            open_days.append((day, window))

        slots: List[CandidateSlot] = []
        batch_size = self._settings.max_concurrent_fetches

        for offset in range(0, len(open_days), batch_size):
            batch = open_days[offset:offset + batch_size]
            busy_per_day = await asyncio.gather(
                *(self._fetch_day(plan, window) for _, window in batch)
            )

            for (day, window), busy in zip(batch, busy_per_day):
                for slot in calculator.slots_in_window(day, window, busy, plan.now):
                    if plan.caller_timezone:
                        slot = project_slot(slot, plan.caller_timezone)
                    slots.append(slot)
                    if len(slots) >= plan.max_slots:
                        logger.debug("Slot quota of %d reached on %s", plan.max_slots, day)
                        return slots

        logger.debug("Scan of %d day(s) produced %d slot(s)", len(plan.days), len(slots))
        return slots

    async def _fetch_day(self, plan: ScanPlan, window: TimeRange) -> Sequence[TimeRange]:
        return await fetch_merged_busy(
            self._busy_source,
            plan.profile.calendar_id,
            window.start,
            window.end,
            timezone=plan.policy.timezone,
            timeout=self._settings.upstream_timeout_seconds,
        )


def _positive(name: str, value: Optional[int], default: int) -> int:
    if value is None:
        return default
    if value <= 0:
        raise InvalidRequest(f"{name} must be greater than zero, got {value}")
    return value


def _first_day(requested: Union[str, date, None], timezone: str, now: DateTime) -> Date:
    """
    Resolve the first calendar day to scan.

    Missing dates mean today; dates before today are clamped to today.
    """
    today = now.in_timezone(timezone).date()

    if requested is None or requested == "":
        return today

    if isinstance(requested, date):
        day = pendulum.date(requested.year, requested.month, requested.day)
    else:
        try:
            day = pendulum.from_format(str(requested).strip(), "YYYY-MM-DD").date()
        except ValueError as exc:
            raise InvalidDate(
                f"requested_date must be YYYY-MM-DD, got {requested!r}"
            ) from exc

    if day < today:
        logger.debug("Requested date %s is in the past, starting from %s", day, today)
        return today
    return day
