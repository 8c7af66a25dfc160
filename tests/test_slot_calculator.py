"""
Tests for SlotCalculator - the core business logic.
"""

import pendulum
import pytest

from availability_engine.domain.models import SchedulingPolicy, TimeRange
from availability_engine.domain.slot_calculator import (
    SlotCalculator,
    align_up,
    conflicts_with,
    is_bookable,
)

TZ = "America/New_York"
MONDAY = pendulum.date(2024, 11, 25)
EARLY = pendulum.datetime(2024, 11, 24, 20, 0, tz=TZ)


def _at(hour: int, minute: int = 0):
    return pendulum.datetime(2024, 11, 25, hour, minute, tz=TZ)


def _busy(start: str, end: str) -> TimeRange:
    return TimeRange(start=pendulum.parse(start, tz=TZ), end=pendulum.parse(end, tz=TZ))


@pytest.fixture
def morning_policy():
    """08:00-10:00 window, 30-minute grid, 30-minute slots."""
    return SchedulingPolicy(
        timezone=TZ,
        operating_start_hour=8,
        operating_end_hour=10,
        alignment_minutes=30,
        required_free_minutes=30,
    )


class TestAlignUp:

    @pytest.mark.parametrize(
        "moment, alignment, expected",
        [
            ((8, 0), 15, (8, 0)),
            ((8, 10), 15, (8, 15)),
            ((8, 15), 30, (8, 30)),
            ((8, 59), 30, (9, 0)),
            ((9, 20), 60, (10, 0)),
            ((8, 10), 45, (8, 45)),
            ((9, 31), 45, (10, 15)),
            ((9, 0), 50, (9, 40)),
        ],
    )
    def test_rounds_up_to_grid(self, moment, alignment, expected):
        assert align_up(_at(*moment), alignment, _at(8)) == _at(*expected)

    def test_seconds_push_to_next_grid_point(self):
        moment = _at(8, 0).add(seconds=30)

        assert align_up(moment, 15, _at(8)) == _at(8, 15)

    def test_moment_before_anchor_maps_to_anchor(self):
        assert align_up(_at(6, 40), 45, _at(8)) == _at(8)


class TestSlotCalculator:

    def test_single_busy_block(self, morning_policy):
        """Scenario B: busy 09:00-09:30 leaves 08:00, 08:30 and 09:30."""
        calculator = SlotCalculator(morning_policy)
        busy = [_busy("2024-11-25 09:00", "2024-11-25 09:30")]

        slots = calculator.slots_for_day(MONDAY, busy, EARLY)

        assert [slot.start for slot in slots] == [_at(8), _at(8, 30), _at(9, 30)]
        assert all(slot.date == MONDAY for slot in slots)

    def test_now_inside_window(self, morning_policy):
        """Scenario C: at 09:15 only 09:30 remains."""
        calculator = SlotCalculator(morning_policy)
        busy = [_busy("2024-11-25 09:00", "2024-11-25 09:30")]

        slots = calculator.slots_for_day(MONDAY, busy, _at(9, 15))

        assert [slot.start for slot in slots] == [_at(9, 30)]

    def test_slot_starting_now_is_not_bookable(self, morning_policy):
        calculator = SlotCalculator(morning_policy)

        slots = calculator.slots_for_day(MONDAY, [], _at(9, 30))

        assert slots == []

    def test_no_busy_periods(self, morning_policy):
        calculator = SlotCalculator(morning_policy)

        slots = calculator.slots_for_day(MONDAY, [], EARLY)

        assert len(slots) == 4
        assert slots[-1].end == _at(10)

    def test_fully_booked_day(self, morning_policy):
        calculator = SlotCalculator(morning_policy)
        busy = [_busy("2024-11-25 07:00", "2024-11-25 11:00")]

        assert calculator.slots_for_day(MONDAY, busy, EARLY) == []

    def test_excluded_weekend_day(self, morning_policy):
        calculator = SlotCalculator(morning_policy)

        assert calculator.slots_for_day(pendulum.date(2024, 11, 23), [], EARLY) == []

    def test_grid_finer_than_slot_length(self):
        policy = SchedulingPolicy(
            timezone=TZ,
            operating_start_hour=8,
            operating_end_hour=9,
            alignment_minutes=15,
            required_free_minutes=30,
        )
        calculator = SlotCalculator(policy)

        slots = calculator.slots_for_day(MONDAY, [], EARLY)

        assert [slot.start for slot in slots] == [_at(8), _at(8, 15), _at(8, 30)]
        # Consecutive candidates may overlap
        assert slots[0].time_range.overlaps(slots[1].time_range)

    def test_grid_starts_at_window_start(self):
        policy = SchedulingPolicy(timezone=TZ, alignment_minutes=15, required_free_minutes=15)
        calculator = SlotCalculator(policy)

        candidates = list(calculator.generate_candidates(TimeRange(start=_at(8, 10), end=_at(9))))

        assert [c.start for c in candidates] == [_at(8, 10), _at(8, 25), _at(8, 40)]

    def test_earliest_skips_to_next_grid_point(self):
        policy = SchedulingPolicy(timezone=TZ, alignment_minutes=45, required_free_minutes=45)
        calculator = SlotCalculator(policy)

        candidates = calculator.generate_candidates(TimeRange(start=_at(8), end=_at(12)), earliest=_at(9, 10))

        assert [c.start for c in candidates] == [_at(9, 30), _at(10, 15), _at(11)]

    def test_alignment_not_dividing_an_hour_keeps_window_start(self):
        policy = SchedulingPolicy(
            timezone=TZ,
            operating_start_hour=8,
            operating_end_hour=18,
            alignment_minutes=45,
            required_free_minutes=45,
        )
        calculator = SlotCalculator(policy)

        slots = calculator.slots_for_day(MONDAY, [], EARLY)

        assert slots[0].start == _at(8)
        assert [slot.start for slot in slots[:3]] == [_at(8), _at(8, 45), _at(9, 30)]

    @pytest.mark.parametrize("alignment", [7, 15, 45, 50, 90])
    @pytest.mark.parametrize("start_hour", [0, 7, 8, 13])
    def test_slot_starts_are_congruent_to_window_start(self, alignment, start_hour):
        policy = SchedulingPolicy(
            timezone=TZ,
            operating_start_hour=start_hour,
            operating_end_hour=20,
            alignment_minutes=alignment,
            required_free_minutes=30,
        )
        calculator = SlotCalculator(policy)
        busy = [
            _busy("2024-11-25 09:10", "2024-11-25 09:50"),
            _busy("2024-11-25 14:05", "2024-11-25 15:20"),
        ]

        slots = calculator.slots_for_day(MONDAY, busy, _at(10, 3))

        window = policy.window_for(MONDAY)
        assert slots
        for slot in slots:
            assert (slot.start - window.start).in_minutes() % alignment == 0
            assert slot.start > _at(10, 3)
            assert window.start <= slot.start and slot.end <= window.end

    def test_slot_longer_than_window(self, morning_policy):
        calculator = SlotCalculator(morning_policy.with_overrides(required_free_minutes=180))

        assert calculator.slots_for_day(MONDAY, [], EARLY) == []

    def test_slots_never_overlap_busy_time(self):
        policy = SchedulingPolicy(timezone=TZ, alignment_minutes=15, required_free_minutes=45)
        calculator = SlotCalculator(policy)
        busy = [
            _busy("2024-11-25 09:10", "2024-11-25 09:50"),
            _busy("2024-11-25 12:00", "2024-11-25 13:00"),
            _busy("2024-11-25 16:45", "2024-11-25 17:05"),
        ]

        slots = calculator.slots_for_day(MONDAY, busy, EARLY)

        assert slots
        window = policy.window_for(MONDAY)
        for slot in slots:
            assert slot.time_range.duration_minutes() == 45
            assert (slot.start.hour * 60 + slot.start.minute) % 15 == 0
            assert window.start <= slot.start and slot.end <= window.end
            assert not any(slot.time_range.overlaps(b) for b in busy)
        starts = [slot.start for slot in slots]
        assert starts == sorted(starts)


class TestConflictChecks:

    def test_busy_after_candidate_is_no_conflict(self):
        candidate = TimeRange(start=_at(9), end=_at(9, 30))

        assert not conflicts_with(candidate, [_busy("2024-11-25 09:30", "2024-11-25 10:00")])

    def test_busy_before_candidate_is_no_conflict(self):
        candidate = TimeRange(start=_at(9), end=_at(9, 30))

        assert not conflicts_with(candidate, [_busy("2024-11-25 08:00", "2024-11-25 09:00")])

    def test_partial_overlap_conflicts(self):
        candidate = TimeRange(start=_at(9), end=_at(9, 30))
        busy = [
            _busy("2024-11-25 07:00", "2024-11-25 08:00"),
            _busy("2024-11-25 09:29", "2024-11-25 10:00"),
        ]

        assert conflicts_with(candidate, busy)

    def test_is_bookable_rejects_past_start(self):
        candidate = TimeRange(start=_at(9), end=_at(9, 30))

        assert is_bookable(candidate, [], _at(8, 59))
        assert not is_bookable(candidate, [], _at(9))
