"""Shared fixtures and in-memory fakes for calendar tests."""

import copy
import uuid
from datetime import date, datetime
from typing import Any, Optional

import pytest

from app.core.calendar.conflicts import overlaps
from app.core.calendar.errors import ConflictError, NotFoundError
from app.core.calendar.reminders import ReminderScheduler
from app.core.calendar.service import CalendarService
from app.core.calendar.store import ScheduleStore
from app.core.calendar.types import (
    CalendarEvent,
    EventType,
    Expansion,
    Reminder,
    ReminderStatus,
    ScheduleException,
    SyncConfig,
    SyncProvider,
    Visibility,
    WeeklyTemplate,
)


class FakeTemplateRepository:
    """In-memory stand-in for AvailabilityRepository."""

    def __init__(self):
        self.templates: dict[str, WeeklyTemplate] = {}
        self.get_calls = 0
        self.after_commit: list = []

    async def get(self, therapist_id: str) -> Optional[WeeklyTemplate]:
        self.get_calls += 1
        template = self.templates.get(therapist_id)
        return copy.deepcopy(template) if template else None

    async def save(self, template: WeeklyTemplate) -> WeeklyTemplate:
        self.templates[template.therapist_id] = copy.deepcopy(template)
        return copy.deepcopy(template)

    async def put_exception(
        self,
        therapist_id: str,
        exception: ScheduleException,
    ) -> Optional[WeeklyTemplate]:
        template = self.templates.get(therapist_id)
        if template is None:
            return None
        template.exceptions[exception.date] = copy.deepcopy(exception)
        return copy.deepcopy(template)

    def on_commit(self, callback) -> None:
        self.after_commit.append(callback)

    async def commit(self) -> None:
        """Run and clear the registered after-commit callbacks."""
        callbacks, self.after_commit = self.after_commit, []
        for callback in callbacks:
            await callback()


class FakeEventRepository:
    """In-memory stand-in for CalendarEventRepository."""

    def __init__(self):
        self.events: dict[str, CalendarEvent] = {}
        self.locked: list[str] = []

    async def lock_user(self, user_id: str) -> None:
        self.locked.append(user_id)

    async def add(self, event: CalendarEvent) -> CalendarEvent:
        stored = copy.deepcopy(event)
        stored.id = str(uuid.uuid4())
        stored.version = 1
        self.events[stored.id] = stored
        return copy.deepcopy(stored)

    async def get(self, event_id: str, user_id: str) -> Optional[CalendarEvent]:
        event = self.events.get(event_id)
        if event is None or event.user_id != user_id:
            return None
        return copy.deepcopy(event)

    async def update(self, event: CalendarEvent) -> CalendarEvent:
        current = self.events.get(event.id)
        if current is None or current.user_id != event.user_id:
            raise NotFoundError(f"Event {event.id} not found")
        if current.version != event.version:
            raise ConflictError("Event was modified concurrently", [event.id])
        stored = copy.deepcopy(event)
        stored.version = current.version + 1
        self.events[stored.id] = stored
        return copy.deepcopy(stored)

    async def find_overlapping(
        self,
        user_id: str,
        start: datetime,
        end: datetime,
        exclude_event_id: Optional[str] = None,
    ) -> list[CalendarEvent]:
        return sorted(
            (
                copy.deepcopy(e) for e in self.events.values()
                if e.user_id == user_id
                and e.id != exclude_event_id
                and overlaps(e.start_time, e.end_time, start, end)
            ),
            key=lambda e: e.start_time,
        )

    async def find_in_range(
        self,
        user_id: str,
        start: datetime,
        end: datetime,
        event_type: Optional[EventType] = None,
        visibility: Optional[Visibility] = None,
    ) -> list[CalendarEvent]:
        return sorted(
            (
                copy.deepcopy(e) for e in self.events.values()
                if e.user_id == user_id
                and e.start_time >= start
                and e.end_time <= end
                and (event_type is None or e.type == event_type)
                and (visibility is None or e.visibility == visibility)
            ),
            key=lambda e: e.start_time,
        )


class FakeReminderStore:
    """In-memory stand-in for ReminderRepository."""

    def __init__(self):
        self.reminders: dict[str, Reminder] = {}

    async def add(self, reminder: Reminder) -> Reminder:
        stored = copy.deepcopy(reminder)
        stored.id = str(uuid.uuid4())
        self.reminders[stored.id] = stored
        return copy.deepcopy(stored)

    async def get(self, reminder_id: str) -> Optional[Reminder]:
        reminder = self.reminders.get(reminder_id)
        return copy.deepcopy(reminder) if reminder else None

    async def find_due(
        self,
        now: datetime,
        limit: Optional[int] = None,
        user_id: Optional[str] = None,
    ) -> list[Reminder]:
        due = sorted(
            (
                copy.deepcopy(r) for r in self.reminders.values()
                if r.status == ReminderStatus.PENDING and r.scheduled_for <= now
                and (user_id is None or r.user_id == user_id)
            ),
            key=lambda r: r.scheduled_for,
        )
        return due[:limit] if limit else due

    async def save(self, reminder: Reminder) -> Reminder:
        if reminder.id not in self.reminders:
            raise NotFoundError(f"Reminder {reminder.id} not found")
        self.reminders[reminder.id] = copy.deepcopy(reminder)
        return copy.deepcopy(reminder)

    async def delete_pending_for_appointment(self, appointment_id: str) -> int:
        doomed = [
            rid for rid, r in self.reminders.items()
            if r.appointment_id == appointment_id and r.status == ReminderStatus.PENDING
        ]
        for rid in doomed:
            del self.reminders[rid]
        return len(doomed)


class FakeSyncConfigStore:
    def __init__(self):
        self.configs: dict[tuple[str, SyncProvider], SyncConfig] = {}

    async def get(self, user_id: str, provider: SyncProvider) -> Optional[SyncConfig]:
        config = self.configs.get((user_id, provider))
        return copy.deepcopy(config) if config else None

    async def save(self, config: SyncConfig) -> SyncConfig:
        stored = copy.deepcopy(config)
        stored.id = stored.id or str(uuid.uuid4())
        self.configs[(stored.user_id, stored.provider)] = stored
        return copy.deepcopy(stored)


class FakeAvailabilityCache:
    """Dict-backed cache with the AvailabilityCache interface."""

    def __init__(self):
        self.entries: dict[tuple[str, date, date], Expansion] = {}
        self.hits = 0

    async def get(self, therapist_id: str, start: date, end: date) -> Optional[Expansion]:
        entry = self.entries.get((therapist_id, start, end))
        if entry is not None:
            self.hits += 1
            return copy.deepcopy(entry)
        return None

    async def set(self, therapist_id: str, start: date, end: date, expansion: Expansion) -> bool:
        self.entries[(therapist_id, start, end)] = copy.deepcopy(expansion)
        return True

    async def invalidate(self, therapist_id: str) -> int:
        doomed = [key for key in self.entries if key[0] == therapist_id]
        for key in doomed:
            del self.entries[key]
        return len(doomed)


class RecordingSink:
    """Notification sink that remembers what it was sent."""

    def __init__(self):
        self.sent: list[tuple[str, str, dict[str, Any]]] = []

    async def send_to_user(self, user_id: str, event: str, payload: dict[str, Any]) -> None:
        self.sent.append((user_id, event, payload))


@pytest.fixture
def templates():
    return FakeTemplateRepository()


@pytest.fixture
def events():
    return FakeEventRepository()


@pytest.fixture
def reminder_store():
    return FakeReminderStore()


@pytest.fixture
def cache():
    return FakeAvailabilityCache()


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def store(templates, cache):
    return ScheduleStore(templates, cache)


@pytest.fixture
def service(store, events, reminder_store, cache, sink):
    return CalendarService(
        store=store,
        events=events,
        reminders=ReminderScheduler(reminder_store),
        sync_configs=FakeSyncConfigStore(),
        cache=cache,
        sink=sink,
    )


def weekday_schedule(*days: str, start: str = "09:00", end: str = "12:00", **slot: Any) -> list[dict]:
    """Raw weekly schedule with one slot on each given day."""
    return [
        {"day": day, "slots": [{"start_time": start, "end_time": end, **slot}]}
        for day in days
    ]
