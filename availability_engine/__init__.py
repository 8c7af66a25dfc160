"""
Availability & booking engine for calendar-backed clinicians.
"""

__version__ = "0.3.0"
