"""
Reminder Scheduling

Creates pending reminder rows and exposes the due-now query polled by the
delivery worker. Nothing is sent from here.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional, Protocol, Set

from app.core.calendar.errors import NotFoundError, ValidationError
from app.core.calendar.types import (
    CalendarEvent,
    Reminder,
    ReminderChannel,
    ReminderStatus,
    parse_datetime,
)

logger = logging.getLogger(__name__)


# Valid status transitions (sent and failed are terminal)
VALID_TRANSITIONS: dict[ReminderStatus, Set[ReminderStatus]] = {
    ReminderStatus.PENDING: {ReminderStatus.SENT, ReminderStatus.FAILED},
    ReminderStatus.SENT: set(),
    ReminderStatus.FAILED: set(),
}


def can_transition(from_status: ReminderStatus, to_status: ReminderStatus) -> bool:
    """Check if a status transition is valid."""
    return to_status in VALID_TRANSITIONS.get(from_status, set())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ReminderStore(Protocol):
    async def add(self, reminder: Reminder) -> Reminder: ...

    async def get(self, reminder_id: str) -> Optional[Reminder]: ...

    async def find_due(
        self,
        now: datetime,
        limit: Optional[int] = None,
        user_id: Optional[str] = None,
    ) -> list[Reminder]: ...

    async def save(self, reminder: Reminder) -> Reminder: ...

    async def delete_pending_for_appointment(self, appointment_id: str) -> int: ...


class ReminderScheduler:
    """
    Persists reminders and answers the worker's due-now query.

    Status machine: pending -> sent | pending -> failed. No retry
    transition exists here; retries belong to the delivery worker.
    """

    def __init__(self, store: ReminderStore):
        self.store = store

    async def schedule(
        self,
        appointment_id: str,
        user_id: str,
        channel: ReminderChannel | str,
        scheduled_for: datetime | str,
        metadata: Optional[dict] = None,
    ) -> Reminder:
        """Create a pending reminder. scheduled_for is not required to be in the future."""
        reminder = Reminder(
            appointment_id=str(appointment_id),
            user_id=str(user_id),
            channel=channel,
            scheduled_for=parse_datetime(scheduled_for, "scheduled_for"),
            metadata=dict(metadata or {}),
        )
        saved = await self.store.add(reminder)
        logger.debug(
            f"Reminder {saved.id} scheduled for {saved.scheduled_for.isoformat()} "
            f"via {saved.channel.value}"
        )
        return saved

    async def schedule_for_event(self, event: CalendarEvent) -> list[Reminder]:
        """
        Create one pending reminder per reminder spec of the event.

        Pending reminders from an earlier schedule of the same event are
        dropped first, so this is safe to call after an event moves.
        """
        dropped = await self.store.delete_pending_for_appointment(event.id)
        if dropped:
            logger.info(f"Dropped {dropped} pending reminders for event {event.id}")

        reminders = []
        for spec in event.reminders:
            reminders.append(await self.schedule(
                appointment_id=event.id,
                user_id=event.user_id,
                channel=spec.channel,
                scheduled_for=event.start_time - timedelta(minutes=spec.minutes_before),
                metadata={
                    "template": f"{event.type.value}_reminder",
                    "data": {
                        "title": event.title,
                        "start_time": event.start_time.isoformat(),
                        "minutes_before": spec.minutes_before,
                    },
                },
            ))
        return reminders

    async def due_now(
        self,
        now: Optional[datetime] = None,
        limit: Optional[int] = None,
        user_id: Optional[str] = None,
    ) -> list[Reminder]:
        """Pending reminders with scheduled_for <= now, oldest first, optionally for one user."""
        return await self.store.find_due(now or _utcnow(), limit=limit, user_id=user_id)

    async def mark_sent(self, reminder_id: str, sent_at: Optional[datetime] = None) -> Reminder:
        return await self._transition(reminder_id, ReminderStatus.SENT, sent_at or _utcnow())

    async def mark_failed(self, reminder_id: str) -> Reminder:
        return await self._transition(reminder_id, ReminderStatus.FAILED)

    async def _transition(
        self,
        reminder_id: str,
        status: ReminderStatus,
        sent_at: Optional[datetime] = None,
    ) -> Reminder:
        reminder = await self.store.get(reminder_id)
        if reminder is None:
            raise NotFoundError(f"Reminder {reminder_id} not found")

        if not can_transition(reminder.status, status):
            raise ValidationError(
                f"Reminder {reminder_id} cannot move from "
                f"{reminder.status.value} to {status.value}"
            )

        reminder.status = status
        if sent_at is not None:
            reminder.sent_at = sent_at
        return await self.store.save(reminder)
