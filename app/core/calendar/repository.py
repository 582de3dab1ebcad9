"""
Calendar Persistence

SQLAlchemy repositories translating between ORM records and calendar
domain types. Datetimes go in as naive UTC and come out as aware UTC.
"""

import hashlib
import logging
import uuid
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional

from sqlalchemy import delete, select, text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from app.core.calendar.errors import ConflictError, NotFoundError
from app.core.calendar.types import (
    CalendarEvent,
    DaySchedule,
    EventType,
    Preferences,
    Reminder,
    ReminderStatus,
    ScheduleException,
    SlotDefinition,
    SyncConfig,
    SyncProvider,
    Visibility,
    WeeklyTemplate,
)
from app.infra.database import run_after_commit
from app.models.database import (
    AvailabilityExceptionRecord,
    AvailabilityRecord,
    CalendarEventRecord,
    ReminderRecord,
    SyncConfigRecord,
)

logger = logging.getLogger(__name__)


def to_db_time(value: datetime) -> datetime:
    """Aware datetime -> naive UTC for storage."""
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def from_db_time(value: Optional[datetime]) -> Optional[datetime]:
    """Stored naive UTC -> aware UTC."""
    if value is None:
        return None
    return value.replace(tzinfo=timezone.utc)


def _parse_uuid(value: str) -> Optional[uuid.UUID]:
    try:
        return uuid.UUID(str(value))
    except ValueError:
        return None


# === Availability ===


class AvailabilityRepository:
    """Weekly templates and their date exceptions."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def _record(self, therapist_id: str) -> Optional[AvailabilityRecord]:
        result = await self.session.execute(
            select(AvailabilityRecord).where(AvailabilityRecord.therapist_id == therapist_id)
        )
        return result.scalar_one_or_none()

    async def get(self, therapist_id: str) -> Optional[WeeklyTemplate]:
        record = await self._record(therapist_id)
        return self._to_domain(record) if record else None

    async def save(self, template: WeeklyTemplate) -> WeeklyTemplate:
        """Create or overwrite the weekly schedule and preferences."""
        record = await self._record(template.therapist_id)
        if record is None:
            record = AvailabilityRecord(therapist_id=template.therapist_id, exceptions=[])
            self.session.add(record)

        record.weekly_schedule = [day.to_dict() for day in template.weekly_schedule]
        record.preferences = template.preferences.to_dict()
        await self._flush(template.therapist_id)
        return self._to_domain(record)

    async def put_exception(
        self,
        therapist_id: str,
        exception: ScheduleException,
    ) -> Optional[WeeklyTemplate]:
        """
        Store an exception, replacing any existing one for the same date.

        Returns None if the therapist has no availability yet.
        """
        record = await self._record(therapist_id)
        if record is None:
            return None

        existing = next(
            (e for e in record.exceptions if e.exception_date == exception.date),
            None,
        )
        slots = [slot.to_dict() for slot in exception.slots]
        if existing is None:
            record.exceptions.append(AvailabilityExceptionRecord(
                exception_date=exception.date,
                type=exception.type,
                slots=slots,
            ))
        else:
            existing.type = exception.type
            existing.slots = slots

        await self._flush(therapist_id)
        return self._to_domain(record)

    def on_commit(self, callback: Callable[[], Awaitable]) -> None:
        run_after_commit(self.session, callback)

    async def _flush(self, therapist_id: str) -> None:
        """Flush, reporting a lost insert race on the unique keys as a conflict."""
        try:
            await self.session.flush()
        except IntegrityError as e:
            logger.warning(f"Concurrent availability write for therapist {therapist_id}: {e.orig}")
            raise ConflictError(
                f"Availability of therapist {therapist_id} was changed concurrently, retry the request"
            )

    @staticmethod
    def _to_domain(record: AvailabilityRecord) -> WeeklyTemplate:
        exceptions = {}
        for row in record.exceptions:
            exceptions[row.exception_date] = ScheduleException(
                date=row.exception_date,
                type=row.type,
                slots=[SlotDefinition.from_dict(s) for s in row.slots or []],
            )
        return WeeklyTemplate(
            therapist_id=record.therapist_id,
            weekly_schedule=[DaySchedule.from_dict(d) for d in record.weekly_schedule or []],
            preferences=Preferences.from_dict(record.preferences),
            exceptions=exceptions,
        )


# === Calendar events ===


class CalendarEventRepository:
    """Calendar events with a per-user lock for check-then-insert."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def lock_user(self, user_id: str) -> None:
        """
        Serialize calendar writes of one user until the transaction ends.

        Takes a PostgreSQL transaction-scoped advisory lock; other
        databases rely on their own write serialization.
        """
        bind = self.session.bind
        if bind is None or bind.dialect.name != "postgresql":
            return
        digest = hashlib.sha256(f"calendar:{user_id}".encode()).digest()
        key = int.from_bytes(digest[:8], "big", signed=True)
        await self.session.execute(text("SELECT pg_advisory_xact_lock(:key)"), {"key": key})

    async def add(self, event: CalendarEvent) -> CalendarEvent:
        record = CalendarEventRecord(user_id=event.user_id)
        self._apply(record, event)
        self.session.add(record)
        await self.session.flush()
        return self._to_domain(record)

    async def get(self, event_id: str, user_id: str) -> Optional[CalendarEvent]:
        record = await self._record(event_id, user_id)
        return self._to_domain(record) if record else None

    async def update(self, event: CalendarEvent) -> CalendarEvent:
        """
        Persist changes to an existing event.

        Raises:
            NotFoundError: event missing or owned by someone else
            ConflictError: event changed since it was read
        """
        record = await self._record(event.id, event.user_id)
        if record is None:
            raise NotFoundError(f"Event {event.id} not found")
        if record.version != event.version:
            raise ConflictError("Event was modified concurrently", [event.id])

        self._apply(record, event)
        try:
            await self.session.flush()
        except StaleDataError:
            logger.warning(f"Stale write on event {event.id} (version {event.version})")
            raise ConflictError("Event was modified concurrently", [event.id])
        return self._to_domain(record)

    async def find_overlapping(
        self,
        user_id: str,
        start: datetime,
        end: datetime,
        exclude_event_id: Optional[str] = None,
    ) -> list[CalendarEvent]:
        """Events of the user with start_time < end and end_time > start."""
        query = select(CalendarEventRecord).where(
            CalendarEventRecord.user_id == user_id,
            CalendarEventRecord.start_time < to_db_time(end),
            CalendarEventRecord.end_time > to_db_time(start),
        )
        excluded = _parse_uuid(exclude_event_id) if exclude_event_id else None
        if excluded is not None:
            query = query.where(CalendarEventRecord.id != excluded)

        result = await self.session.execute(query.order_by(CalendarEventRecord.start_time))
        return [self._to_domain(r) for r in result.scalars().all()]

    async def find_in_range(
        self,
        user_id: str,
        start: datetime,
        end: datetime,
        event_type: Optional[EventType] = None,
        visibility: Optional[Visibility] = None,
    ) -> list[CalendarEvent]:
        """Events lying entirely inside [start, end], ordered by start."""
        query = select(CalendarEventRecord).where(
            CalendarEventRecord.user_id == user_id,
            CalendarEventRecord.start_time >= to_db_time(start),
            CalendarEventRecord.end_time <= to_db_time(end),
        )
        if event_type is not None:
            query = query.where(CalendarEventRecord.type == event_type)
        if visibility is not None:
            query = query.where(CalendarEventRecord.visibility == visibility)

        result = await self.session.execute(query.order_by(CalendarEventRecord.start_time))
        return [self._to_domain(r) for r in result.scalars().all()]

    async def _record(self, event_id: str, user_id: str) -> Optional[CalendarEventRecord]:
        parsed = _parse_uuid(event_id)
        if parsed is None:
            return None
        record = await self.session.get(CalendarEventRecord, parsed)
        if record is None or record.user_id != user_id:
            return None
        return record

    @staticmethod
    def _apply(record: CalendarEventRecord, event: CalendarEvent) -> None:
        record.type = event.type
        record.title = event.title
        record.description = event.description
        record.start_time = to_db_time(event.start_time)
        record.end_time = to_db_time(event.end_time)
        record.is_all_day = event.is_all_day
        record.recurrence = event.recurrence.to_dict() if event.recurrence else None
        record.location = event.location.to_dict() if event.location else None
        record.color = event.color
        record.visibility = event.visibility
        record.reminders = [r.to_dict() for r in event.reminders]
        record.event_metadata = dict(event.metadata)

    @staticmethod
    def _to_domain(record: CalendarEventRecord) -> CalendarEvent:
        return CalendarEvent.from_fields(
            record.user_id,
            {
                "type": record.type,
                "title": record.title,
                "description": record.description,
                "start_time": from_db_time(record.start_time),
                "end_time": from_db_time(record.end_time),
                "is_all_day": record.is_all_day,
                "recurrence": record.recurrence,
                "location": record.location,
                "color": record.color,
                "visibility": record.visibility,
                "reminders": record.reminders,
                "metadata": record.event_metadata,
            },
            id=str(record.id),
            version=record.version,
        )


# === Reminders ===


class ReminderRepository:
    """Reminder rows and the due-now query."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def add(self, reminder: Reminder) -> Reminder:
        record = ReminderRecord(
            appointment_id=reminder.appointment_id,
            user_id=reminder.user_id,
            channel=reminder.channel,
            status=reminder.status,
            scheduled_for=to_db_time(reminder.scheduled_for),
            reminder_metadata=dict(reminder.metadata),
        )
        self.session.add(record)
        await self.session.flush()
        return self._to_domain(record)

    async def get(self, reminder_id: str) -> Optional[Reminder]:
        parsed = _parse_uuid(reminder_id)
        if parsed is None:
            return None
        record = await self.session.get(ReminderRecord, parsed)
        return self._to_domain(record) if record else None

    async def save(self, reminder: Reminder) -> Reminder:
        """Persist status and sent_at of an existing reminder."""
        parsed = _parse_uuid(reminder.id)
        record = await self.session.get(ReminderRecord, parsed) if parsed else None
        if record is None:
            raise NotFoundError(f"Reminder {reminder.id} not found")

        record.status = reminder.status
        record.sent_at = to_db_time(reminder.sent_at) if reminder.sent_at else None
        await self.session.flush()
        return self._to_domain(record)

    async def find_due(
        self,
        now: datetime,
        limit: Optional[int] = None,
        user_id: Optional[str] = None,
    ) -> list[Reminder]:
        """Pending reminders with scheduled_for <= now, oldest first."""
        query = (
            select(ReminderRecord)
            .where(
                ReminderRecord.status == ReminderStatus.PENDING,
                ReminderRecord.scheduled_for <= to_db_time(now),
            )
            .order_by(ReminderRecord.scheduled_for)
        )
        if user_id is not None:
            query = query.where(ReminderRecord.user_id == user_id)
        if limit:
            query = query.limit(limit)

        result = await self.session.execute(query)
        return [self._to_domain(r) for r in result.scalars().all()]

    async def delete_pending_for_appointment(self, appointment_id: str) -> int:
        result = await self.session.execute(
            delete(ReminderRecord).where(
                ReminderRecord.appointment_id == appointment_id,
                ReminderRecord.status == ReminderStatus.PENDING,
            )
        )
        return result.rowcount or 0

    @staticmethod
    def _to_domain(record: ReminderRecord) -> Reminder:
        return Reminder(
            id=str(record.id),
            appointment_id=record.appointment_id,
            user_id=record.user_id,
            channel=record.channel,
            status=record.status,
            scheduled_for=from_db_time(record.scheduled_for),
            sent_at=from_db_time(record.sent_at),
            metadata=dict(record.reminder_metadata or {}),
        )


# === Sync configs ===


class SyncConfigRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, user_id: str, provider: SyncProvider) -> Optional[SyncConfig]:
        record = await self._record(user_id, provider)
        return self._to_domain(record) if record else None

    async def save(self, config: SyncConfig) -> SyncConfig:
        record = await self._record(config.user_id, config.provider)
        if record is None:
            record = SyncConfigRecord(user_id=config.user_id, provider=config.provider)
            self.session.add(record)

        record.credentials = dict(config.credentials)
        record.settings = dict(config.settings)
        record.status = config.status
        await self.session.flush()
        return self._to_domain(record)

    async def _record(self, user_id: str, provider: SyncProvider) -> Optional[SyncConfigRecord]:
        result = await self.session.execute(
            select(SyncConfigRecord).where(
                SyncConfigRecord.user_id == user_id,
                SyncConfigRecord.provider == provider,
            )
        )
        return result.scalar_one_or_none()

    @staticmethod
    def _to_domain(record: SyncConfigRecord) -> SyncConfig:
        return SyncConfig(
            id=str(record.id),
            user_id=record.user_id,
            provider=record.provider,
            credentials=dict(record.credentials or {}),
            settings=dict(record.settings or {}),
            status=record.status,
        )
