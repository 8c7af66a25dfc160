"""
Request-boundary translation.

External callers (voice agents, webhooks, the CLI) send loosely named
payloads, sometimes wrapped as ``{"args": {...}}``. The models here accept
every known spelling of each field and translate them into the engine's
internal request types, so alternate names never reach the services.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Mapping, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, model_validator

from .domain.exceptions import InvalidRequest
from .domain.models import (
    Attendee,
    AvailabilityRequest,
    AvailabilityResponse,
    AvailabilityStatus,
    BookingOutcome,
    BookingRequest,
    BookingResponse,
    ErrorInfo,
)
from .services.availability import AvailabilityService
from .services.booking import BookingService

logger = logging.getLogger(__name__)

LEGACY_SLOT_FIELDS = 8

RESOURCE_ALIASES = AliasChoices(
    "resource_id", "resourceId", "calendar_id", "calendarId", "provider_token", "providerToken"
)
TIMEZONE_ALIASES = AliasChoices(
    "caller_timezone", "callerTimezone", "user_timezone", "userTimezone", "user_tz"
)


class _Payload(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore", str_strip_whitespace=True)

    @model_validator(mode="before")
    @classmethod
    def unwrap_args(cls, data: Any) -> Any:
        """Accept both raw bodies and ``{"args": {...}}`` tool-call envelopes."""
        if isinstance(data, Mapping) and isinstance(data.get("args"), Mapping):
            return data["args"]
        return data


class AvailabilityPayload(_Payload):
    resource_id: str = Field(min_length=1, validation_alias=RESOURCE_ALIASES)
    requested_date: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("requested_date", "requestedDate", "date")
    )
    days_to_check: Optional[int] = Field(
        default=None, validation_alias=AliasChoices("days_to_check", "daysToCheck")
    )
    required_free_minutes: Optional[int] = Field(
        default=None,
        validation_alias=AliasChoices(
            "required_free_minutes",
            "requiredFreeMinutes",
            "slot_duration_minutes",
            "slotDurationMinutes",
        ),
    )
    alignment_minutes: Optional[int] = Field(
        default=None, validation_alias=AliasChoices("alignment_minutes", "alignmentMinutes")
    )
    max_slots: Optional[int] = Field(
        default=None, validation_alias=AliasChoices("max_slots", "maxSlots")
    )
    caller_timezone: Optional[str] = Field(default=None, validation_alias=TIMEZONE_ALIASES)

    def to_request(self) -> AvailabilityRequest:
        return AvailabilityRequest(
            resource_id=self.resource_id,
            requested_date=self.requested_date or None,
            days_to_check=self.days_to_check,
            required_free_minutes=self.required_free_minutes,
            alignment_minutes=self.alignment_minutes,
            max_slots=self.max_slots,
            caller_timezone=self.caller_timezone or None,
        )


class BookingPayload(_Payload):
    resource_id: str = Field(min_length=1, validation_alias=RESOURCE_ALIASES)
    chosen_start: str = Field(
        min_length=1,
        validation_alias=AliasChoices(
            "chosen_start", "chosenStart", "user_start_iso", "start", "start_iso"
        ),
    )
    duration_minutes: int = Field(
        default=30,
        validation_alias=AliasChoices(
            "duration_minutes", "durationMinutes", "booked_minutes", "bookedMinutes"
        ),
    )
    caller_timezone: Optional[str] = Field(default=None, validation_alias=TIMEZONE_ALIASES)
    attendee_name: str = Field(
        default="", validation_alias=AliasChoices("attendee_name", "attendeeName", "name")
    )
    attendee_email: str = Field(
        default="", validation_alias=AliasChoices("attendee_email", "attendeeEmail", "email")
    )
    description: str = ""
    send_notifications: bool = Field(
        default=False,
        validation_alias=AliasChoices(
            "send_notifications", "send_confirmation", "sendConfirmation"
        ),
    )
    confirm_booking: bool = Field(
        default=False, validation_alias=AliasChoices("confirm_booking", "confirmBooking")
    )

    def to_request(self) -> BookingRequest:
        """
        Build the engine request.

        Raises:
            InvalidRequest: If the caller did not explicitly confirm the booking
        """
        if not self.confirm_booking:
            raise InvalidRequest("Booking requires confirm_booking=true")

        attendee = None
        if self.attendee_name or self.attendee_email:
            attendee = Attendee(name=self.attendee_name, email=self.attendee_email)

        return BookingRequest(
            resource_id=self.resource_id,
            chosen_start=self.chosen_start,
            duration_minutes=self.duration_minutes,
            caller_timezone=self.caller_timezone or None,
            attendee=attendee,
            description=self.description,
            send_notifications=self.send_notifications,
        )


def _describe_validation_error(exc: ValidationError) -> str:
    problems = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ())) or "payload"
        problems.append(f"{location}: {error.get('msg', 'invalid value')}")
    return "Invalid request: " + "; ".join(problems)


def parse_availability_payload(data: Mapping[str, Any]) -> AvailabilityRequest:
    """
    Translate an external availability payload.

    Raises:
        InvalidRequest: If required fields are missing or malformed
    """
    try:
        return AvailabilityPayload.model_validate(data).to_request()
    except ValidationError as exc:
        raise InvalidRequest(_describe_validation_error(exc)) from exc


def parse_booking_payload(data: Mapping[str, Any]) -> BookingRequest:
    """
    Translate an external booking payload.

    Raises:
        InvalidRequest: If required fields are missing, malformed or unconfirmed
    """
    try:
        payload = BookingPayload.model_validate(data)
    except ValidationError as exc:
        raise InvalidRequest(_describe_validation_error(exc)) from exc
    return payload.to_request()


def availability_response_body(response: AvailabilityResponse) -> Dict[str, Any]:
    """
    Serialise an availability response.

    Adds flat ``slotN_start_iso`` / ``slotN_end_iso`` / ``slotN_label``
    fields for the first slots, as older voice-agent integrations expect.
    """
    body = response.to_dict()
    for index, slot in enumerate(response.slots[:LEGACY_SLOT_FIELDS], start=1):
        body[f"slot{index}_start_iso"] = slot.start.isoformat()
        body[f"slot{index}_end_iso"] = slot.end.isoformat()
        body[f"slot{index}_label"] = slot.label
    return body


async def handle_availability_payload(
    service: AvailabilityService,
    data: Mapping[str, Any],
) -> Dict[str, Any]:
    """Parse, run and serialise one availability call."""
    resource_hint = str(_unwrap(data).get("resource_id") or _unwrap(data).get("calendar_id") or "")
    try:
        request = parse_availability_payload(data)
    except InvalidRequest as exc:
        logger.info("Rejected availability payload: %s", exc.message)
        response = AvailabilityResponse(
            status=AvailabilityStatus.REJECTED_INPUT,
            resource_id=resource_hint,
            error=ErrorInfo.from_error(exc),
        )
        return availability_response_body(response)

    return availability_response_body(await service.find_slots(request))


async def handle_booking_payload(
    service: BookingService,
    data: Mapping[str, Any],
) -> Dict[str, Any]:
    """Parse, run and serialise one booking call."""
    resource_hint = str(_unwrap(data).get("resource_id") or _unwrap(data).get("calendar_id") or "")
    try:
        request = parse_booking_payload(data)
    except InvalidRequest as exc:
        logger.info("Rejected booking payload: %s", exc.message)
        response = BookingResponse(
            outcome=BookingOutcome.REJECTED_INPUT,
            resource_id=resource_hint,
            error=ErrorInfo.from_error(exc),
        )
        return response.to_dict()

    return (await service.book(request)).to_dict()


def _unwrap(data: Any) -> Mapping[str, Any]:
    if not isinstance(data, Mapping):
        return {}
    if isinstance(data.get("args"), Mapping):
        return data["args"]
    return data
