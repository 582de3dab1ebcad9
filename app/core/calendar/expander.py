"""
Slot Expansion

Turns a weekly template plus date exceptions into concrete bookable slots
for an inclusive date range, and removes the parts of those slots already
covered by booked calendar events.
"""

import logging
from datetime import date, datetime, time, timedelta
from typing import Iterable, Iterator, Optional
from zoneinfo import ZoneInfo

from app.config import get_settings
from app.core.calendar.conflicts import overlaps
from app.core.calendar.errors import ValidationError
from app.core.calendar.types import (
    AvailableSlot,
    CalendarEvent,
    ExceptionType,
    SessionType,
    SlotDefinition,
    WeeklyTemplate,
    Weekday,
)

logger = logging.getLogger(__name__)

Interval = tuple[datetime, datetime]


def iter_dates(start: date, end: date) -> Iterator[date]:
    """Yield every calendar date in [start, end], ascending."""
    current = start
    while current <= end:
        yield current
        current += timedelta(days=1)


def subtract_interval(interval: Interval, block: Interval) -> list[Interval]:
    """
    Remove a block from an interval.

    Returns 0, 1 or 2 intervals depending on where the block falls.
    """
    start, end = interval
    block_start, block_end = block

    if not overlaps(start, end, block_start, block_end):
        return [interval]

    pieces = []
    if block_start > start:
        pieces.append((start, block_start))
    if block_end < end:
        pieces.append((block_end, end))
    return pieces


def _ceil_minute(value: datetime) -> datetime:
    if value.second or value.microsecond:
        value = value.replace(second=0, microsecond=0) + timedelta(minutes=1)
    return value


def _floor_minute(value: datetime) -> datetime:
    return value.replace(second=0, microsecond=0)


class SlotExpander:
    """
    Walks a date range and emits bookable slots.

    Per date:
        1. No day schedule for the weekday -> no slots.
        2. 'unavailable' exception -> no slots.
        3. 'modified' exception -> the exception's slots replace the day's.
        4. Only slots with is_available=True are kept.
        5. Slots are ordered by (start_time, end_time). Overlapping
           definitions are kept as-is since they may differ in session type.
    """

    def __init__(self, max_days: Optional[int] = None):
        self.max_days = max_days or get_settings().max_expansion_days

    def validate_range(self, start: date, end: date) -> None:
        if start > end:
            raise ValidationError(
                f"start_date {start.isoformat()} is after end_date {end.isoformat()}"
            )
        days = (end - start).days + 1
        if days > self.max_days:
            raise ValidationError(
                f"Date range spans {days} days (maximum {self.max_days})"
            )

    def expand(
        self,
        template: WeeklyTemplate,
        start: date,
        end: date,
    ) -> list[AvailableSlot]:
        """Expand the template over [start, end] inclusive."""
        self.validate_range(start, end)

        slots: list[AvailableSlot] = []
        for current in iter_dates(start, end):
            slots.extend(self._slots_for_date(template, current))

        logger.debug(
            f"Expanded {len(slots)} slots for therapist {template.therapist_id} "
            f"({start.isoformat()} to {end.isoformat()})"
        )
        return slots

    def _slots_for_date(
        self,
        template: WeeklyTemplate,
        current: date,
    ) -> list[AvailableSlot]:
        day_schedule = template.day_schedule(Weekday.from_date(current))
        if day_schedule is None:
            return []

        source: list[SlotDefinition] = day_schedule.slots
        exception = template.exceptions.get(current)
        if exception is not None:
            if exception.type == ExceptionType.UNAVAILABLE:
                return []
            source = exception.slots

        day_slots = [
            AvailableSlot(
                date=current,
                start_time=slot.start_time,
                end_time=slot.end_time,
                session_type=slot.session_type,
            )
            for slot in source
            if slot.is_available
        ]
        day_slots.sort(key=lambda s: (s.start_time, s.end_time))
        return day_slots

    def subtract_booked(
        self,
        slots: list[AvailableSlot],
        booked: Iterable[CalendarEvent],
        zone: ZoneInfo,
    ) -> list[AvailableSlot]:
        """
        Remove booked event intervals from slots.

        Slot times are wall-clock times in the therapist's zone; events are
        absolute. Remaining pieces keep the slot's date and session type and
        are trimmed to whole minutes.
        """
        booked = list(booked)
        if not booked:
            return list(slots)

        result: list[AvailableSlot] = []
        for slot in slots:
            pieces: list[Interval] = [(
                datetime.combine(slot.date, time.fromisoformat(slot.start_time), tzinfo=zone),
                datetime.combine(slot.date, time.fromisoformat(slot.end_time), tzinfo=zone),
            )]
            for event in booked:
                pieces = [
                    remaining
                    for piece in pieces
                    for remaining in subtract_interval(piece, (event.start_time, event.end_time))
                ]
                if not pieces:
                    break

            for piece_start, piece_end in pieces:
                local_start = _ceil_minute(piece_start.astimezone(zone))
                local_end = _floor_minute(piece_end.astimezone(zone))
                if local_start >= local_end:
                    continue
                result.append(AvailableSlot(
                    date=slot.date,
                    start_time=local_start.strftime("%H:%M"),
                    end_time=local_end.strftime("%H:%M"),
                    session_type=slot.session_type,
                ))

        return result

    @staticmethod
    def filter_session_type(
        slots: list[AvailableSlot],
        session_type: Optional[SessionType],
    ) -> list[AvailableSlot]:
        """Keep slots usable for the requested session type."""
        if session_type is None:
            return list(slots)
        return [slot for slot in slots if slot.matches(session_type)]
