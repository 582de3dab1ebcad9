"""Calendar domain types.

Weekly templates, exceptions, expanded slots, calendar events, reminders
and sync configs. Each type validates on construction and raises
``ValidationError`` for malformed input.
"""

import re
from dataclasses import dataclass, field, replace
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from app.config import get_settings
from app.core.calendar.errors import ValidationError

TIME_PATTERN = re.compile(r"^([0-1]?[0-9]|2[0-3]):[0-5][0-9]$")


class Weekday(str, Enum):
    """Day tags used by weekly templates."""

    MONDAY = "monday"
    TUESDAY = "tuesday"
    WEDNESDAY = "wednesday"
    THURSDAY = "thursday"
    FRIDAY = "friday"
    SATURDAY = "saturday"
    SUNDAY = "sunday"

    @classmethod
    def from_date(cls, day: date) -> "Weekday":
        """Day tag for a calendar date (Monday=1 ... Sunday=7)."""
        return list(cls)[day.isoweekday() - 1]


class SessionType(str, Enum):
    """How a session can be held."""

    ONLINE = "online"
    IN_PERSON = "inPerson"
    BOTH = "both"


class ExceptionType(str, Enum):
    """Date exception kinds."""

    UNAVAILABLE = "unavailable"
    MODIFIED = "modified"


class EventType(str, Enum):
    APPOINTMENT = "appointment"
    BREAK = "break"
    HOLIDAY = "holiday"
    CUSTOM = "custom"


class Visibility(str, Enum):
    PUBLIC = "public"
    PRIVATE = "private"


class RecurrenceType(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"
    CUSTOM = "custom"


class LocationType(str, Enum):
    ONLINE = "online"
    PHYSICAL = "physical"
    HYBRID = "hybrid"


class ReminderChannel(str, Enum):
    """Reminder delivery channels."""

    EMAIL = "email"
    SMS = "sms"
    PUSH = "push"
    WHATSAPP = "whatsapp"


class ReminderStatus(str, Enum):
    """Reminder lifecycle: pending -> sent | failed."""

    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"


class SyncProvider(str, Enum):
    GOOGLE = "google"
    OUTLOOK = "outlook"
    APPLE = "apple"


class SyncDirection(str, Enum):
    IMPORT = "import"
    EXPORT = "export"
    BOTH = "both"


class SyncStatus(str, Enum):
    ACTIVE = "active"
    DISCONNECTED = "disconnected"
    ERROR = "error"


# === Parsing helpers ===


def coerce_enum(enum_cls: type[Enum], value: Any, name: str) -> Any:
    """Coerce a raw value into an enum member."""
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(member.value for member in enum_cls)
        raise ValidationError(f"Invalid {name} '{value}' (expected one of: {allowed})")


def normalize_time(value: Any, name: str = "time") -> str:
    """Validate an HH:MM string and return it zero-padded.

    Zero-padding makes lexicographic order equal to time order.
    """
    if not isinstance(value, str) or not TIME_PATTERN.match(value):
        raise ValidationError(f"Invalid {name} '{value}' (expected HH:MM, 24h)")
    hours, minutes = value.split(":")
    return f"{int(hours):02d}:{minutes}"


def parse_date(value: Any, name: str = "date") -> date:
    """Parse an ISO date (or take the date part of a datetime)."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            if "T" in value:
                return parse_datetime(value, name).date()
            return date.fromisoformat(value)
        except ValueError:
            pass
    raise ValidationError(f"Invalid {name} '{value}' (expected ISO 8601 date)")


def parse_datetime(value: Any, name: str = "datetime") -> datetime:
    """Parse an ISO datetime into an aware UTC datetime.

    Naive values are taken to be UTC.
    """
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            raise ValidationError(f"Invalid {name} '{value}' (expected ISO 8601 datetime)")
    if not isinstance(value, datetime):
        raise ValidationError(f"Invalid {name} '{value}' (expected ISO 8601 datetime)")
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _int_in_range(value: Any, name: str, low: int, high: Optional[int] = None) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{name} must be an integer")
    if value < low or (high is not None and value > high):
        bound = f"between {low} and {high}" if high is not None else f">= {low}"
        raise ValidationError(f"{name} must be {bound}, got {value}")
    return value


def _require_bool(value: Any, name: str) -> bool:
    if not isinstance(value, bool):
        raise ValidationError(f"{name} must be true or false")
    return value


def resolve_timezone(name: str) -> ZoneInfo:
    """Look up an IANA timezone, raising ValidationError if unknown."""
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        raise ValidationError(f"Unknown timezone '{name}'")


# === Availability ===


@dataclass
class SlotDefinition:
    """A time window inside a day schedule or a modified exception."""

    start_time: str
    end_time: str
    is_available: bool = True
    session_type: SessionType = SessionType.BOTH

    def __post_init__(self) -> None:
        self.start_time = normalize_time(self.start_time, "start_time")
        self.end_time = normalize_time(self.end_time, "end_time")
        self.is_available = _require_bool(self.is_available, "is_available")
        self.session_type = coerce_enum(SessionType, self.session_type, "session_type")
        if self.start_time >= self.end_time:
            raise ValidationError(
                f"Slot start {self.start_time} must be before end {self.end_time}"
            )

    @classmethod
    def from_dict(cls, data: dict) -> "SlotDefinition":
        """Create from a request or storage dict."""
        if not isinstance(data, dict):
            raise ValidationError("Slot must be an object")
        return cls(
            start_time=data.get("start_time"),
            end_time=data.get("end_time"),
            is_available=data.get("is_available", True),
            session_type=data.get("session_type") or SessionType.BOTH,
        )

    def to_dict(self) -> dict:
        return {
            "start_time": self.start_time,
            "end_time": self.end_time,
            "is_available": self.is_available,
            "session_type": self.session_type.value,
        }


@dataclass
class DaySchedule:
    """Slots offered on one weekday."""

    day: Weekday
    slots: list[SlotDefinition] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.day = coerce_enum(Weekday, self.day, "day")

    @classmethod
    def from_dict(cls, data: dict) -> "DaySchedule":
        if not isinstance(data, dict):
            raise ValidationError("Day schedule must be an object")
        return cls(
            day=data.get("day"),
            slots=[SlotDefinition.from_dict(s) for s in data.get("slots") or []],
        )

    def to_dict(self) -> dict:
        return {"day": self.day.value, "slots": [s.to_dict() for s in self.slots]}


@dataclass
class Preferences:
    """Therapist session preferences."""

    session_duration: int = 50
    break_duration: int = 10
    max_daily_hours: int = 8
    timezone: str = field(default_factory=lambda: get_settings().default_timezone)
    auto_confirm: bool = False

    def __post_init__(self) -> None:
        _int_in_range(self.session_duration, "session_duration", 30, 120)
        _int_in_range(self.break_duration, "break_duration", 5, 30)
        _int_in_range(self.max_daily_hours, "max_daily_hours", 1, 12)
        resolve_timezone(self.timezone)

    @property
    def zone(self) -> ZoneInfo:
        return resolve_timezone(self.timezone)

    def merged(self, updates: Optional[dict]) -> "Preferences":
        """Return a copy with the given fields replaced (field-by-field merge)."""
        if not updates:
            return self
        known = {k: v for k, v in updates.items() if k in self.to_dict() and v is not None}
        return replace(self, **known)

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "Preferences":
        return cls().merged(data)

    def to_dict(self) -> dict:
        return {
            "session_duration": self.session_duration,
            "break_duration": self.break_duration,
            "max_daily_hours": self.max_daily_hours,
            "timezone": self.timezone,
            "auto_confirm": self.auto_confirm,
        }


@dataclass
class ScheduleException:
    """Date-specific override of the weekly template."""

    date: date
    type: ExceptionType
    slots: list[SlotDefinition] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.date = parse_date(self.date)
        self.type = coerce_enum(ExceptionType, self.type, "exception type")

    def to_dict(self) -> dict:
        return {
            "date": self.date.isoformat(),
            "type": self.type.value,
            "slots": [s.to_dict() for s in self.slots],
        }


@dataclass
class WeeklyTemplate:
    """A therapist's recurring schedule plus its exceptions keyed by date."""

    therapist_id: str
    weekly_schedule: list[DaySchedule] = field(default_factory=list)
    preferences: Preferences = field(default_factory=Preferences)
    exceptions: dict[date, ScheduleException] = field(default_factory=dict)

    def day_schedule(self, day: Weekday) -> Optional[DaySchedule]:
        """Schedule for a weekday. When a day is listed twice the last entry applies."""
        found = None
        for schedule in self.weekly_schedule:
            if schedule.day == day:
                found = schedule
        return found

    def to_dict(self) -> dict:
        return {
            "therapist_id": self.therapist_id,
            "weekly_schedule": [d.to_dict() for d in self.weekly_schedule],
            "preferences": self.preferences.to_dict(),
            "exceptions": [
                self.exceptions[d].to_dict() for d in sorted(self.exceptions)
            ],
        }


def parse_weekly_schedule(raw: Any) -> list[DaySchedule]:
    """Validate a raw weekly schedule list."""
    if not isinstance(raw, list):
        raise ValidationError("weekly_schedule must be a list")
    return [DaySchedule.from_dict(day) for day in raw]


@dataclass
class AvailableSlot:
    """A concrete bookable slot produced by expansion."""

    date: date
    start_time: str
    end_time: str
    session_type: SessionType = SessionType.BOTH

    def matches(self, session_type: Optional[SessionType]) -> bool:
        """A 'both' slot serves any requested session type."""
        if session_type is None or session_type == SessionType.BOTH:
            return True
        return self.session_type in (session_type, SessionType.BOTH)

    @classmethod
    def from_dict(cls, data: dict) -> "AvailableSlot":
        return cls(
            date=date.fromisoformat(data["date"]),
            start_time=data["start_time"],
            end_time=data["end_time"],
            session_type=SessionType(data.get("session_type", SessionType.BOTH.value)),
        )

    def to_dict(self) -> dict:
        return {
            "date": self.date.isoformat(),
            "start_time": self.start_time,
            "end_time": self.end_time,
            "session_type": self.session_type.value,
        }


@dataclass
class Expansion:
    """Expanded slots for a range plus the timezone their times are in."""

    timezone: str
    slots: list[AvailableSlot] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict) -> "Expansion":
        return cls(
            timezone=data["timezone"],
            slots=[AvailableSlot.from_dict(s) for s in data.get("slots") or []],
        )

    def to_dict(self) -> dict:
        return {"timezone": self.timezone, "slots": [s.to_dict() for s in self.slots]}


# === Calendar events ===


@dataclass
class ReminderSpec:
    """Reminder request attached to an event: channel and lead time."""

    channel: ReminderChannel
    minutes_before: int

    def __post_init__(self) -> None:
        self.channel = coerce_enum(ReminderChannel, self.channel, "reminder channel")
        _int_in_range(self.minutes_before, "minutes_before", 5)

    @classmethod
    def from_dict(cls, data: dict) -> "ReminderSpec":
        if not isinstance(data, dict):
            raise ValidationError("Reminder must be an object")
        return cls(channel=data.get("channel"), minutes_before=data.get("minutes_before"))

    def to_dict(self) -> dict:
        return {"channel": self.channel.value, "minutes_before": self.minutes_before}


@dataclass
class Recurrence:
    """Recurrence descriptor. Stored with the event, not expanded."""

    type: RecurrenceType
    interval: int = 1
    end_date: Optional[date] = None
    days_of_week: list[int] = field(default_factory=list)
    exclude_dates: list[date] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.type = coerce_enum(RecurrenceType, self.type, "recurrence type")
        _int_in_range(self.interval, "interval", 1)
        if self.end_date is not None:
            self.end_date = parse_date(self.end_date, "end_date")
        for day in self.days_of_week:
            _int_in_range(day, "days_of_week entry", 0, 6)
        self.exclude_dates = [parse_date(d, "exclude_dates entry") for d in self.exclude_dates]

    @classmethod
    def from_dict(cls, data: dict) -> "Recurrence":
        if not isinstance(data, dict):
            raise ValidationError("recurrence must be an object")
        return cls(
            type=data.get("type"),
            interval=data.get("interval") or 1,
            end_date=data.get("end_date"),
            days_of_week=list(data.get("days_of_week") or []),
            exclude_dates=list(data.get("exclude_dates") or []),
        )

    def to_dict(self) -> dict:
        return {
            "type": self.type.value,
            "interval": self.interval,
            "end_date": self.end_date.isoformat() if self.end_date else None,
            "days_of_week": list(self.days_of_week),
            "exclude_dates": [d.isoformat() for d in self.exclude_dates],
        }


@dataclass
class Location:
    type: Optional[LocationType] = None
    address: Optional[str] = None
    lat: Optional[float] = None
    lng: Optional[float] = None
    meeting_link: Optional[str] = None

    def __post_init__(self) -> None:
        if self.type is not None:
            self.type = coerce_enum(LocationType, self.type, "location type")
        if self.lat is not None and not -90 <= self.lat <= 90:
            raise ValidationError(f"Latitude must be between -90 and 90, got {self.lat}")
        if self.lng is not None and not -180 <= self.lng <= 180:
            raise ValidationError(f"Longitude must be between -180 and 180, got {self.lng}")

    @classmethod
    def from_dict(cls, data: dict) -> "Location":
        if not isinstance(data, dict):
            raise ValidationError("location must be an object")
        coordinates = data.get("coordinates") or {}
        return cls(
            type=data.get("type"),
            address=data.get("address"),
            lat=coordinates.get("lat"),
            lng=coordinates.get("lng"),
            meeting_link=data.get("meeting_link"),
        )

    def to_dict(self) -> dict:
        coordinates = None
        if self.lat is not None or self.lng is not None:
            coordinates = {"lat": self.lat, "lng": self.lng}
        return {
            "type": self.type.value if self.type else None,
            "address": self.address,
            "coordinates": coordinates,
            "meeting_link": self.meeting_link,
        }


# Fields a partial update may touch
EVENT_UPDATABLE_FIELDS = frozenset({
    "type", "title", "description", "start_time", "end_time", "is_all_day",
    "recurrence", "location", "color", "visibility", "reminders", "metadata",
})


@dataclass
class CalendarEvent:
    """A user's calendar entry. Intervals are half-open [start_time, end_time)."""

    user_id: str
    type: EventType
    title: str
    start_time: datetime
    end_time: datetime
    id: Optional[str] = None
    description: Optional[str] = None
    is_all_day: bool = False
    recurrence: Optional[Recurrence] = None
    location: Optional[Location] = None
    color: Optional[str] = None
    visibility: Visibility = Visibility.PRIVATE
    reminders: list[ReminderSpec] = field(default_factory=list)
    metadata: dict = field(default_factory=dict)
    version: int = 1

    def __post_init__(self) -> None:
        self.type = coerce_enum(EventType, self.type, "event type")
        self.visibility = coerce_enum(Visibility, self.visibility, "visibility")
        if not isinstance(self.title, str) or not self.title.strip():
            raise ValidationError("title must be a non-empty string")
        self.title = self.title.strip()
        self.is_all_day = _require_bool(self.is_all_day, "is_all_day")
        self.start_time = parse_datetime(self.start_time, "start_time")
        self.end_time = parse_datetime(self.end_time, "end_time")
        if self.start_time >= self.end_time:
            raise ValidationError("Event start_time must be before end_time")

    @classmethod
    def from_fields(cls, user_id: str, fields: dict, **extra: Any) -> "CalendarEvent":
        """Build and validate an event from request fields."""
        data = dict(fields)
        recurrence = data.get("recurrence")
        location = data.get("location")
        return cls(
            user_id=str(user_id),
            type=data.get("type"),
            title=data.get("title"),
            start_time=data.get("start_time"),
            end_time=data.get("end_time"),
            description=data.get("description"),
            is_all_day=data.get("is_all_day", False),
            recurrence=Recurrence.from_dict(recurrence) if recurrence else None,
            location=Location.from_dict(location) if location else None,
            color=data.get("color"),
            visibility=data.get("visibility") or Visibility.PRIVATE,
            reminders=[ReminderSpec.from_dict(r) for r in data.get("reminders") or []],
            metadata=dict(data.get("metadata") or {}),
            **extra,
        )

    def with_updates(self, updates: dict) -> "CalendarEvent":
        """Return a validated copy with a partial update applied."""
        unknown = set(updates) - EVENT_UPDATABLE_FIELDS
        if unknown:
            raise ValidationError(f"Fields cannot be updated: {', '.join(sorted(unknown))}")
        merged = self.to_dict()
        merged.update(updates)
        return CalendarEvent.from_fields(
            self.user_id,
            merged,
            id=self.id,
            version=self.version,
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "type": self.type.value,
            "title": self.title,
            "description": self.description,
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat(),
            "is_all_day": self.is_all_day,
            "recurrence": self.recurrence.to_dict() if self.recurrence else None,
            "location": self.location.to_dict() if self.location else None,
            "color": self.color,
            "visibility": self.visibility.value,
            "reminders": [r.to_dict() for r in self.reminders],
            "metadata": self.metadata,
            "version": self.version,
        }


# === Reminders & sync ===


@dataclass
class Reminder:
    """A persisted reminder awaiting delivery by the worker."""

    appointment_id: str
    user_id: str
    channel: ReminderChannel
    scheduled_for: datetime
    id: Optional[str] = None
    status: ReminderStatus = ReminderStatus.PENDING
    sent_at: Optional[datetime] = None
    metadata: dict = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.channel = coerce_enum(ReminderChannel, self.channel, "reminder channel")
        self.status = coerce_enum(ReminderStatus, self.status, "reminder status")
        self.scheduled_for = parse_datetime(self.scheduled_for, "scheduled_for")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "appointment_id": self.appointment_id,
            "user_id": self.user_id,
            "channel": self.channel.value,
            "status": self.status.value,
            "scheduled_for": self.scheduled_for.isoformat(),
            "sent_at": self.sent_at.isoformat() if self.sent_at else None,
            "metadata": self.metadata,
        }


@dataclass
class SyncConfig:
    """External calendar link for a user and provider."""

    user_id: str
    provider: SyncProvider
    credentials: dict = field(default_factory=dict)
    settings: dict = field(default_factory=dict)
    status: SyncStatus = SyncStatus.ACTIVE
    id: Optional[str] = None

    def __post_init__(self) -> None:
        self.provider = coerce_enum(SyncProvider, self.provider, "provider")
        self.status = coerce_enum(SyncStatus, self.status, "sync status")
        self.settings = dict(self.settings or {})
        direction = self.settings.get("sync_direction")
        self.settings["sync_direction"] = coerce_enum(
            SyncDirection, direction or SyncDirection.BOTH, "sync_direction"
        ).value
        for event_type in self.settings.get("event_types") or []:
            coerce_enum(EventType, event_type, "event type")

    def to_dict(self, include_credentials: bool = False) -> dict:
        data = {
            "id": self.id,
            "user_id": self.user_id,
            "provider": self.provider.value,
            "settings": self.settings,
            "status": self.status.value,
        }
        if include_credentials:
            data["credentials"] = self.credentials
        return data
