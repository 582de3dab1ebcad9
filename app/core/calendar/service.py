"""
Calendar Service

Facade over the schedule store, slot expander, conflict detector and
reminder scheduler. The HTTP layer talks only to this class.
"""

import logging
from datetime import date, datetime, time, timedelta
from typing import Any, Optional, Protocol

from app.core.calendar.conflicts import ConflictDetector
from app.core.calendar.errors import ConflictError, NotFoundError, ValidationError
from app.core.calendar.expander import SlotExpander
from app.core.calendar.reminders import ReminderScheduler
from app.core.calendar.store import ScheduleStore
from app.core.calendar.types import (
    AvailableSlot,
    CalendarEvent,
    EventType,
    ExceptionType,
    Expansion,
    Reminder,
    ReminderChannel,
    SessionType,
    SyncConfig,
    SyncProvider,
    SyncStatus,
    Visibility,
    WeeklyTemplate,
    coerce_enum,
    parse_date,
    parse_datetime,
    resolve_timezone,
)
from app.infra.notifications import NotificationSink

logger = logging.getLogger(__name__)


class ExpansionCache(Protocol):
    async def get(self, therapist_id: str, start: date, end: date) -> Optional[Expansion]: ...

    async def set(self, therapist_id: str, start: date, end: date, expansion: Expansion) -> bool: ...


class EventRepository(Protocol):
    async def lock_user(self, user_id: str) -> None: ...

    async def add(self, event: CalendarEvent) -> CalendarEvent: ...

    async def get(self, event_id: str, user_id: str) -> Optional[CalendarEvent]: ...

    async def update(self, event: CalendarEvent) -> CalendarEvent: ...

    async def find_overlapping(
        self,
        user_id: str,
        start: datetime,
        end: datetime,
        exclude_event_id: Optional[str] = None,
    ) -> list[CalendarEvent]: ...

    async def find_in_range(
        self,
        user_id: str,
        start: datetime,
        end: datetime,
        event_type: Optional[EventType] = None,
        visibility: Optional[Visibility] = None,
    ) -> list[CalendarEvent]: ...


class SyncConfigStore(Protocol):
    async def get(self, user_id: str, provider: SyncProvider) -> Optional[SyncConfig]: ...

    async def save(self, config: SyncConfig) -> SyncConfig: ...


class CalendarService:
    """
    Calendar and availability operations for one unit of work.

    Slot queries go cache -> expansion -> booked subtraction -> session
    type filter. Only the expansion is cached, so event writes show up
    in slot results immediately.
    """

    def __init__(
        self,
        store: ScheduleStore,
        events: EventRepository,
        reminders: ReminderScheduler,
        sync_configs: SyncConfigStore,
        cache: ExpansionCache,
        sink: NotificationSink,
        expander: Optional[SlotExpander] = None,
    ):
        self.store = store
        self.events = events
        self.reminders = reminders
        self.sync_configs = sync_configs
        self.cache = cache
        self.sink = sink
        self.expander = expander or SlotExpander()
        self.conflicts = ConflictDetector(events)

    # === Availability ===

    async def set_availability(
        self,
        therapist_id: str,
        weekly_schedule: Any,
        preferences: Optional[dict] = None,
    ) -> WeeklyTemplate:
        return await self.store.set_weekly_schedule(therapist_id, weekly_schedule, preferences)

    async def add_exception(
        self,
        therapist_id: str,
        exception_date: date | str,
        exception_type: ExceptionType | str,
        slots: Optional[list] = None,
    ) -> WeeklyTemplate:
        return await self.store.add_exception(therapist_id, exception_date, exception_type, slots)

    async def get_available_slots(
        self,
        therapist_id: str,
        start_date: date | str,
        end_date: date | str,
        session_type: Optional[SessionType | str] = None,
    ) -> list[AvailableSlot]:
        """
        Bookable slots for a therapist over [start_date, end_date].

        Raises:
            ValidationError: bad dates, reversed or oversized range
            NotFoundError: therapist has no availability
        """
        start = parse_date(start_date, "start_date")
        end = parse_date(end_date, "end_date")
        self.expander.validate_range(start, end)
        if session_type is not None:
            session_type = coerce_enum(SessionType, session_type, "session_type")

        expansion = await self.cache.get(therapist_id, start, end)
        if expansion is None:
            template = await self.store.get_template(therapist_id)
            expansion = Expansion(
                timezone=template.preferences.timezone,
                slots=self.expander.expand(template, start, end),
            )
            await self.cache.set(therapist_id, start, end, expansion)
        else:
            logger.debug(f"Availability cache hit for therapist {therapist_id}")

        zone = resolve_timezone(expansion.timezone)
        booked = await self.events.find_overlapping(
            therapist_id,
            datetime.combine(start, time.min, tzinfo=zone),
            datetime.combine(end + timedelta(days=1), time.min, tzinfo=zone),
        )
        slots = self.expander.subtract_booked(expansion.slots, booked, zone)
        return self.expander.filter_session_type(slots, session_type)

    # === Events ===

    async def create_event(self, user_id: str, fields: dict) -> CalendarEvent:
        """
        Validate, conflict-check and store a new event.

        Raises:
            ValidationError: malformed event
            ConflictError: interval overlaps another event of the user
        """
        event = CalendarEvent.from_fields(user_id, fields)

        await self.events.lock_user(event.user_id)
        await self.conflicts.ensure_free(event.user_id, event.start_time, event.end_time)
        saved = await self.events.add(event)

        if saved.reminders:
            await self.reminders.schedule_for_event(saved)

        logger.info(
            f"Event {saved.id} ({saved.type.value}) created for user {saved.user_id}: "
            f"{saved.start_time.isoformat()} - {saved.end_time.isoformat()}"
        )
        await self.sink.send_to_user(saved.user_id, "calendar:event_created", saved.to_dict())
        return saved

    async def update_event(
        self,
        event_id: str,
        user_id: str,
        updates: dict,
        expected_version: Optional[int] = None,
    ) -> CalendarEvent:
        """
        Apply a partial update to an event.

        A moved event is checked against the user's other events using
        its new interval.

        Raises:
            NotFoundError: no such event for this user
            ValidationError: unknown field or invalid result
            ConflictError: new interval overlaps, or the event changed since
                expected_version
        """
        current = await self.get_event(event_id, user_id)
        if expected_version is not None and expected_version != current.version:
            raise ConflictError("Event was modified concurrently", [current.id])

        updated = current.with_updates(updates)
        moved = (
            updated.start_time != current.start_time
            or updated.end_time != current.end_time
        )
        if moved:
            await self.events.lock_user(user_id)
            await self.conflicts.ensure_free(
                user_id, updated.start_time, updated.end_time, exclude_event_id=current.id
            )

        saved = await self.events.update(updated)

        if moved or "reminders" in updates:
            await self.reminders.schedule_for_event(saved)

        logger.info(f"Event {saved.id} updated for user {user_id} (version {saved.version})")
        await self.sink.send_to_user(user_id, "calendar:event_updated", saved.to_dict())
        return saved

    async def get_event(self, event_id: str, user_id: str) -> CalendarEvent:
        event = await self.events.get(event_id, user_id)
        if event is None:
            raise NotFoundError(f"Event {event_id} not found")
        return event

    async def get_events(
        self,
        user_id: str,
        start: datetime | str,
        end: datetime | str,
        event_type: Optional[EventType | str] = None,
        visibility: Optional[Visibility | str] = None,
    ) -> list[CalendarEvent]:
        """Events of the user lying entirely inside [start, end]."""
        start = parse_datetime(start, "start_date")
        end = parse_datetime(end, "end_date")
        if start > end:
            raise ValidationError("start_date must not be after end_date")

        return await self.events.find_in_range(
            user_id,
            start,
            end,
            event_type=coerce_enum(EventType, event_type, "event type") if event_type else None,
            visibility=coerce_enum(Visibility, visibility, "visibility") if visibility else None,
        )

    # === Reminders ===

    async def schedule_reminder(
        self,
        appointment_id: str,
        user_id: str,
        channel: ReminderChannel | str,
        scheduled_for: datetime | str,
        metadata: Optional[dict] = None,
    ) -> Reminder:
        return await self.reminders.schedule(
            appointment_id, user_id, channel, scheduled_for, metadata
        )

    async def due_reminders(
        self,
        now: Optional[datetime] = None,
        limit: Optional[int] = None,
        user_id: Optional[str] = None,
    ) -> list[Reminder]:
        return await self.reminders.due_now(now, limit=limit, user_id=user_id)

    # === External calendar sync ===

    async def configure_sync_provider(
        self,
        user_id: str,
        provider: SyncProvider | str,
        credentials: Optional[dict] = None,
        settings: Optional[dict] = None,
    ) -> SyncConfig:
        """
        Create or update a user's link to an external calendar.

        Settings are merged into the stored ones; the link is marked
        active again.
        """
        provider = coerce_enum(SyncProvider, provider, "provider")
        existing = await self.sync_configs.get(user_id, provider)

        merged_settings = dict(existing.settings) if existing else {}
        merged_settings.update(settings or {})
        config = SyncConfig(
            id=existing.id if existing else None,
            user_id=user_id,
            provider=provider,
            credentials=credentials if credentials is not None else (
                existing.credentials if existing else {}
            ),
            settings=merged_settings,
            status=SyncStatus.ACTIVE,
        )
        saved = await self.sync_configs.save(config)
        logger.info(f"Sync provider {provider.value} configured for user {user_id}")
        return saved
