"""
Service layer helpers that orchestrate adapters and domain logic.
"""

from .availability import AvailabilityService, ScanSettings
from .booking import BookingService
from .collaborators import BusySource, ReservationSink

__all__ = [
    "AvailabilityService",
    "BookingService",
    "BusySource",
    "ReservationSink",
    "ScanSettings",
]
