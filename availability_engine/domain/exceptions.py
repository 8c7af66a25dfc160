"""
Domain-specific exception hierarchy for the availability engine.

Every error carries a stable ``kind`` used in responses and a ``retryable``
flag. Services convert these into ``ErrorInfo`` results at their boundary.
"""


class EngineError(Exception):
    """Base class for all engine-level errors."""

    kind = "engine_error"
    retryable = False

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.__class__.__doc__ or self.kind)
        self.message = message or (self.__class__.__doc__ or self.kind).strip()


class InvalidRequest(EngineError):
    """Raised when a request field is missing or malformed."""

    kind = "invalid_request"


class InvalidDate(EngineError):
    """Raised when a date or datetime cannot be parsed."""

    kind = "invalid_date"


class InvalidWindow(EngineError):
    """Raised when an interval ends before it starts or operating hours are misconfigured."""

    kind = "invalid_window"


class UnknownResource(EngineError):
    """Raised when no resource or policy is configured for an identifier."""

    kind = "unknown_resource"


class InvalidTimeZone(EngineError):
    """Raised when a timezone name cannot be resolved."""

    kind = "invalid_timezone"


class UpstreamUnavailable(EngineError):
    """Raised when the calendar backend cannot be reached or rejects a call."""

    kind = "upstream_unavailable"
    retryable = True


class SlotNoLongerAvailable(EngineError):
    """Raised when a chosen slot is already taken at booking time."""

    kind = "slot_no_longer_available"


class AttendeeNotificationUnsupported(EngineError):
    """Raised when the backend refuses to invite attendees under the current credentials."""

    kind = "attendee_notification_unsupported"
