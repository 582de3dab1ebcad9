"""
Calendar Module

Availability resolution for therapists: weekly templates and exceptions,
slot expansion, event conflict detection and reminder scheduling.

Usage:
    from app.core.calendar import SlotExpander, overlaps

    slots = SlotExpander().expand(template, date(2025, 1, 6), date(2025, 1, 12))

The database-backed pieces live in app.core.calendar.repository and
app.core.calendar.service and are imported from there directly.
"""

# Errors
from app.core.calendar.errors import (
    CalendarError,
    ConflictError,
    NotFoundError,
    ValidationError,
)

# Types
from app.core.calendar.types import (
    AvailableSlot,
    CalendarEvent,
    DaySchedule,
    EventType,
    ExceptionType,
    Preferences,
    Reminder,
    ReminderChannel,
    ReminderStatus,
    ScheduleException,
    SessionType,
    SlotDefinition,
    SyncConfig,
    SyncProvider,
    WeeklyTemplate,
    Weekday,
)

# Engine
from app.core.calendar.conflicts import ConflictDetector, overlaps
from app.core.calendar.expander import SlotExpander
from app.core.calendar.reminders import ReminderScheduler, can_transition

__all__ = [
    # Errors
    "CalendarError",
    "ConflictError",
    "NotFoundError",
    "ValidationError",
    # Types
    "AvailableSlot",
    "CalendarEvent",
    "DaySchedule",
    "EventType",
    "ExceptionType",
    "Preferences",
    "Reminder",
    "ReminderChannel",
    "ReminderStatus",
    "ScheduleException",
    "SessionType",
    "SlotDefinition",
    "SyncConfig",
    "SyncProvider",
    "WeeklyTemplate",
    "Weekday",
    # Engine
    "ConflictDetector",
    "overlaps",
    "SlotExpander",
    "ReminderScheduler",
    "can_transition",
]
