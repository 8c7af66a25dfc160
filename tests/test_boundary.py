"""
Tests for payload translation at the request boundary.
"""

import asyncio

import pendulum
import pytest

from availability_engine.adapters.mock_calendar import MockCalendarClient
from availability_engine.boundary import (
    LEGACY_SLOT_FIELDS,
    handle_availability_payload,
    handle_booking_payload,
    parse_availability_payload,
    parse_booking_payload,
)
from availability_engine.domain.exceptions import InvalidRequest
from availability_engine.domain.models import SchedulingPolicy
from availability_engine.domain.resources import PolicyTable, ResourceProfile
from availability_engine.services.availability import AvailabilityService
from availability_engine.services.booking import BookingService

TZ = "America/New_York"


def clock(tz):
    return pendulum.datetime(2024, 11, 24, 12, tz=TZ).in_timezone(tz)


@pytest.fixture
def table():
    return PolicyTable([
        ResourceProfile(
            id="dr-jensen",
            calendar_id="jensen@clinic.example",
            policy=SchedulingPolicy(timezone=TZ),
        )
    ])


class TestAvailabilityPayload:

    def test_snake_case(self):
        request = parse_availability_payload({
            "resource_id": "dr-jensen",
            "requested_date": "2024-11-25",
            "days_to_check": 3,
            "max_slots": 2,
        })

        assert request.resource_id == "dr-jensen"
        assert request.requested_date == "2024-11-25"
        assert request.days_to_check == 3
        assert request.max_slots == 2
        assert request.caller_timezone is None

    def test_camel_case_and_legacy_names(self):
        request = parse_availability_payload({
            "providerToken": "dr-jensen",
            "date": "2024-11-25",
            "daysToCheck": "5",
            "slotDurationMinutes": 45,
            "alignmentMinutes": 15,
            "user_tz": "America/Chicago",
        })

        assert request.resource_id == "dr-jensen"
        assert request.days_to_check == 5
        assert request.required_free_minutes == 45
        assert request.alignment_minutes == 15
        assert request.caller_timezone == "America/Chicago"

    def test_args_envelope(self):
        request = parse_availability_payload({"args": {"calendarId": "jensen@clinic.example"}})

        assert request.resource_id == "jensen@clinic.example"

    def test_unknown_fields_are_ignored(self):
        request = parse_availability_payload({"resource_id": "dr-jensen", "agent_id": "abc"})

        assert request.resource_id == "dr-jensen"

    @pytest.mark.parametrize(
        "data",
        [
            {},
            {"resource_id": "   "},
            {"resource_id": "dr-jensen", "days_to_check": "many"},
        ],
    )
    def test_invalid_payload(self, data):
        with pytest.raises(InvalidRequest, match="Invalid request"):
            parse_availability_payload(data)


class TestBookingPayload:

    def test_legacy_field_names(self):
        request = parse_booking_payload({
            "calendar_id": "dr-jensen",
            "user_start_iso": "2024-11-26T11:00:00",
            "booked_minutes": 45,
            "user_timezone": "America/Los_Angeles",
            "name": "Pat Doe",
            "email": "pat@example.com",
            "send_confirmation": True,
            "confirm_booking": True,
        })

        assert request.resource_id == "dr-jensen"
        assert request.chosen_start == "2024-11-26T11:00:00"
        assert request.duration_minutes == 45
        assert request.caller_timezone == "America/Los_Angeles"
        assert request.attendee.name == "Pat Doe"
        assert request.attendee.email == "pat@example.com"
        assert request.send_notifications

    def test_defaults(self):
        request = parse_booking_payload({
            "resourceId": "dr-jensen",
            "chosenStart": "2024-11-26T14:00:00",
            "confirmBooking": True,
        })

        assert request.duration_minutes == 30
        assert request.attendee is None
        assert not request.send_notifications

    def test_confirmation_is_required(self):
        with pytest.raises(InvalidRequest, match="confirm_booking"):
            parse_booking_payload({"resource_id": "dr-jensen", "start": "2024-11-26T14:00:00"})

    def test_missing_start(self):
        with pytest.raises(InvalidRequest, match="chosen_start"):
            parse_booking_payload({"resource_id": "dr-jensen", "confirm_booking": True})


class TestHandlers:

    def test_availability_body_has_legacy_slot_fields(self, table):
        service = AvailabilityService(MockCalendarClient(), table, clock=clock)

        body = asyncio.run(handle_availability_payload(service, {
            "args": {
                "resourceId": "dr-jensen",
                "requestedDate": "2024-11-25",
                "maxSlots": 10,
                "userTimezone": "America/Los_Angeles",
            }
        }))

        assert body["status"] == "slots_returned"
        assert len(body["slots"]) == 10
        assert body["slot1_start_iso"] == "2024-11-25T08:00:00-05:00"
        assert body["slot1_end_iso"] == "2024-11-25T08:30:00-05:00"
        assert body["slot1_label"] == "Mon, Nov 25 5:00 AM - 5:30 AM PST"
        assert f"slot{LEGACY_SLOT_FIELDS}_start_iso" in body
        assert f"slot{LEGACY_SLOT_FIELDS + 1}_start_iso" not in body

    def test_availability_rejected_payload(self, table):
        service = AvailabilityService(MockCalendarClient(), table, clock=clock)

        body = asyncio.run(handle_availability_payload(service, {"maxSlots": 3}))

        assert body["status"] == "rejected_input"
        assert body["error"]["kind"] == "invalid_request"
        assert body["slots"] == []

    def test_booking_round_trip(self, table):
        calendar = MockCalendarClient()
        service = BookingService(calendar, calendar, table, clock=clock)

        body = asyncio.run(handle_booking_payload(service, {
            "args": {
                "provider_token": "dr-jensen",
                "user_start_iso": "2024-11-25T06:00:00",
                "user_timezone": "America/Los_Angeles",
                "confirm_booking": True,
            }
        }))

        assert body["outcome"] == "reserved"
        assert body["start"] == "2024-11-25T09:00:00-05:00"

    def test_unconfirmed_booking_is_rejected(self, table):
        calendar = MockCalendarClient()
        service = BookingService(calendar, calendar, table, clock=clock)

        body = asyncio.run(handle_booking_payload(service, {
            "resource_id": "dr-jensen",
            "chosen_start": "2024-11-25T09:00:00",
        }))

        assert body["outcome"] == "rejected_input"
        assert body["resource_id"] == "dr-jensen"
        assert body["error"]["kind"] == "invalid_request"
        assert calendar.reservations == []
