"""Calendar error taxonomy."""

from typing import Iterable


class CalendarError(Exception):
    """Base class for calendar and availability errors."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFoundError(CalendarError):
    """Raised when no schedule, event, reminder or sync config exists for a key."""
    pass


class ValidationError(CalendarError):
    """Raised for malformed day tags, time formats, numeric ranges or intervals."""
    pass


class ConflictError(CalendarError):
    """Raised when a calendar event interval overlaps existing events.

    Carries the ids of the conflicting events so callers can offer
    an alternative.
    """

    def __init__(self, message: str, conflicting_ids: Iterable[str] = ()):
        super().__init__(message)
        self.conflicting_ids = list(conflicting_ids)
