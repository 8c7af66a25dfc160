"""
Domain layer - Pure business logic without external dependencies.
"""

from .intervals import merge_busy_intervals, merge_ranges
from .models import CandidateSlot, SchedulingPolicy, TimeRange
from .slot_calculator import SlotCalculator
from .timezones import project_slot, reverse_selection

__all__ = [
    "CandidateSlot",
    "SchedulingPolicy",
    "SlotCalculator",
    "TimeRange",
    "merge_busy_intervals",
    "merge_ranges",
    "project_slot",
    "reverse_selection",
]
