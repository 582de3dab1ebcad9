"""Tests for calendar domain types and their validation."""

from datetime import date, datetime, timezone

import pytest

from app.core.calendar.errors import ValidationError
from app.core.calendar.types import (
    AvailableSlot,
    CalendarEvent,
    DaySchedule,
    Expansion,
    Location,
    Preferences,
    ReminderSpec,
    SessionType,
    SlotDefinition,
    SyncConfig,
    Weekday,
    normalize_time,
    parse_datetime,
    parse_weekly_schedule,
)


class TestTimes:
    """Test HH:MM handling."""

    @pytest.mark.parametrize("raw,expected", [
        ("9:00", "09:00"),
        ("09:30", "09:30"),
        ("23:59", "23:59"),
        ("0:00", "00:00"),
    ])
    def test_normalize(self, raw, expected):
        assert normalize_time(raw) == expected

    @pytest.mark.parametrize("raw", ["24:00", "12:60", "noon", "", None, "9"])
    def test_invalid(self, raw):
        with pytest.raises(ValidationError):
            normalize_time(raw)


class TestSlotDefinition:
    """Test SlotDefinition."""

    def test_defaults(self):
        slot = SlotDefinition.from_dict({"start_time": "09:00", "end_time": "10:00"})

        assert slot.is_available is True
        assert slot.session_type == SessionType.BOTH

    def test_start_must_precede_end(self):
        with pytest.raises(ValidationError):
            SlotDefinition("10:00", "10:00")

    def test_padding_makes_ordering_correct(self):
        # "9:00" < "10:00" only holds once padded
        slot = SlotDefinition("9:00", "10:00")

        assert slot.start_time == "09:00"

    def test_unknown_session_type(self):
        with pytest.raises(ValidationError):
            SlotDefinition("09:00", "10:00", session_type="phone")

    @pytest.mark.parametrize("value", ["false", "true", 0, 1, None])
    def test_is_available_must_be_boolean(self, value):
        with pytest.raises(ValidationError):
            SlotDefinition.from_dict({"start_time": "09:00", "end_time": "10:00", "is_available": value})

    def test_unavailable_slot_parsed(self):
        slot = SlotDefinition.from_dict({"start_time": "09:00", "end_time": "10:00", "is_available": False})

        assert slot.is_available is False


class TestWeeklySchedule:
    """Test weekly schedule parsing."""

    def test_parse(self):
        days = parse_weekly_schedule([
            {"day": "monday", "slots": [{"start_time": "09:00", "end_time": "12:00"}]},
            {"day": "friday", "slots": []},
        ])

        assert [d.day for d in days] == [Weekday.MONDAY, Weekday.FRIDAY]

    def test_unknown_day(self):
        with pytest.raises(ValidationError):
            parse_weekly_schedule([{"day": "funday", "slots": []}])

    def test_not_a_list(self):
        with pytest.raises(ValidationError):
            parse_weekly_schedule({"day": "monday"})

    def test_weekday_from_date(self):
        assert Weekday.from_date(date(2025, 1, 6)) == Weekday.MONDAY
        assert Weekday.from_date(date(2025, 1, 12)) == Weekday.SUNDAY

    def test_day_schedule_round_trip_dict(self):
        day = DaySchedule.from_dict({"day": "tuesday", "slots": [
            {"start_time": "13:00", "end_time": "14:00", "session_type": "inPerson"},
        ]})

        assert day.to_dict()["slots"][0]["session_type"] == "inPerson"


class TestPreferences:
    """Test Preferences defaults and ranges."""

    def test_defaults(self):
        prefs = Preferences()

        assert prefs.session_duration == 50
        assert prefs.break_duration == 10
        assert prefs.max_daily_hours == 8
        assert prefs.timezone == "Europe/Istanbul"
        assert prefs.auto_confirm is False

    @pytest.mark.parametrize("field,value", [
        ("session_duration", 29),
        ("session_duration", 121),
        ("break_duration", 4),
        ("break_duration", 31),
        ("max_daily_hours", 0),
        ("max_daily_hours", 13),
    ])
    def test_out_of_range(self, field, value):
        with pytest.raises(ValidationError):
            Preferences(**{field: value})

    def test_unknown_timezone(self):
        with pytest.raises(ValidationError):
            Preferences(timezone="Mars/Olympus")

    def test_merge_is_field_by_field(self):
        prefs = Preferences(session_duration=60, timezone="Europe/London")

        merged = prefs.merged({"break_duration": 15, "unknown": 1})

        assert merged.session_duration == 60
        assert merged.break_duration == 15
        assert merged.timezone == "Europe/London"

    def test_merge_validates(self):
        with pytest.raises(ValidationError):
            Preferences().merged({"session_duration": 500})


class TestCalendarEvent:
    """Test CalendarEvent validation."""

    @pytest.fixture
    def fields(self):
        return {
            "type": "appointment",
            "title": "Session",
            "start_time": "2025-01-06T10:00:00Z",
            "end_time": "2025-01-06T10:50:00Z",
        }

    def test_from_fields(self, fields):
        event = CalendarEvent.from_fields("user-1", fields)

        assert event.start_time == datetime(2025, 1, 6, 10, 0, tzinfo=timezone.utc)
        assert event.visibility.value == "private"
        assert event.version == 1

    def test_naive_times_are_utc(self, fields):
        fields["start_time"] = "2025-01-06T10:00:00"

        event = CalendarEvent.from_fields("user-1", fields)

        assert event.start_time.tzinfo is not None
        assert event.start_time.hour == 10

    def test_offsets_normalized_to_utc(self):
        assert parse_datetime("2025-01-06T13:00:00+03:00") == datetime(
            2025, 1, 6, 10, 0, tzinfo=timezone.utc
        )

    def test_empty_title(self, fields):
        fields["title"] = "   "

        with pytest.raises(ValidationError):
            CalendarEvent.from_fields("user-1", fields)

    def test_start_before_end(self, fields):
        fields["end_time"] = fields["start_time"]

        with pytest.raises(ValidationError):
            CalendarEvent.from_fields("user-1", fields)

    def test_unknown_type(self, fields):
        fields["type"] = "party"

        with pytest.raises(ValidationError):
            CalendarEvent.from_fields("user-1", fields)

    def test_is_all_day_must_be_boolean(self, fields):
        fields["is_all_day"] = "false"

        with pytest.raises(ValidationError):
            CalendarEvent.from_fields("user-1", fields)

    def test_with_updates_keeps_identity(self, fields):
        event = CalendarEvent.from_fields("user-1", fields, id="e1", version=3)

        updated = event.with_updates({"title": "Moved", "end_time": "2025-01-06T11:00:00Z"})

        assert updated.id == "e1"
        assert updated.version == 3
        assert updated.title == "Moved"
        assert updated.start_time == event.start_time

    def test_with_updates_rejects_unknown_fields(self, fields):
        event = CalendarEvent.from_fields("user-1", fields, id="e1")

        with pytest.raises(ValidationError, match="user_id"):
            event.with_updates({"user_id": "someone-else"})

    def test_reminder_lead_time_minimum(self):
        with pytest.raises(ValidationError):
            ReminderSpec(channel="email", minutes_before=4)

    def test_location_coordinates(self):
        location = Location.from_dict({"type": "physical", "coordinates": {"lat": 41.0, "lng": 29.0}})

        assert location.to_dict()["coordinates"] == {"lat": 41.0, "lng": 29.0}

        with pytest.raises(ValidationError):
            Location(lat=91)


class TestExpansion:
    """Test the cached expansion payload."""

    def test_from_dict(self):
        expansion = Expansion.from_dict({
            "timezone": "Europe/Istanbul",
            "slots": [{
                "date": "2025-01-06",
                "start_time": "09:00",
                "end_time": "10:00",
                "session_type": "online",
            }],
        })

        assert expansion.slots == [
            AvailableSlot(date(2025, 1, 6), "09:00", "10:00", SessionType.ONLINE)
        ]


class TestSyncConfig:
    """Test SyncConfig settings handling."""

    def test_direction_defaults_to_both(self):
        config = SyncConfig(user_id="user-1", provider="google")

        assert config.settings["sync_direction"] == "both"

    def test_credentials_hidden_by_default(self):
        config = SyncConfig(user_id="user-1", provider="outlook", credentials={"access_token": "x"})

        assert "credentials" not in config.to_dict()
        assert config.to_dict(include_credentials=True)["credentials"] == {"access_token": "x"}

    def test_invalid_event_type(self):
        with pytest.raises(ValidationError):
            SyncConfig(user_id="user-1", provider="apple", settings={"event_types": ["party"]})
