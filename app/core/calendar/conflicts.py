"""
Conflict Detection

Decides whether a proposed [start, end) interval collides with a user's
existing calendar events. Intervals are half-open: an event ending at
11:00 does not collide with one starting at 11:00.
"""

import logging
from datetime import datetime
from typing import Optional, Protocol

from app.core.calendar.errors import ConflictError
from app.core.calendar.types import CalendarEvent

logger = logging.getLogger(__name__)


def overlaps(
    a_start: datetime,
    a_end: datetime,
    b_start: datetime,
    b_end: datetime,
) -> bool:
    """Half-open interval overlap: touching boundaries do not overlap."""
    return a_start < b_end and a_end > b_start


class EventFinder(Protocol):
    """Anything that can list a user's events overlapping an interval."""

    async def find_overlapping(
        self,
        user_id: str,
        start: datetime,
        end: datetime,
        exclude_event_id: Optional[str] = None,
    ) -> list[CalendarEvent]:
        ...


class ConflictDetector:
    """
    Overlap checks against committed calendar events.

    Used for event creation and for updates that move an event;
    on update the event itself is excluded by id.
    """

    def __init__(self, events: EventFinder):
        self.events = events

    async def find_overlapping(
        self,
        user_id: str,
        start: datetime,
        end: datetime,
        exclude_event_id: Optional[str] = None,
    ) -> list[CalendarEvent]:
        """Return the user's events e with e.start < end and e.end > start."""
        found = await self.events.find_overlapping(
            user_id, start, end, exclude_event_id=exclude_event_id
        )
        # Storage filters already; re-check so every backend obeys the same predicate
        return [
            event for event in found
            if event.id != exclude_event_id
            and overlaps(event.start_time, event.end_time, start, end)
        ]

    async def ensure_free(
        self,
        user_id: str,
        start: datetime,
        end: datetime,
        exclude_event_id: Optional[str] = None,
    ) -> None:
        """
        Raise ConflictError if the interval is taken.

        Raises:
            ConflictError: with the ids of every overlapping event
        """
        conflicting = await self.find_overlapping(
            user_id, start, end, exclude_event_id=exclude_event_id
        )
        if conflicting:
            ids = [event.id for event in conflicting]
            logger.info(
                f"Rejected interval {start.isoformat()} - {end.isoformat()} "
                f"for user {user_id}: overlaps {ids}"
            )
            raise ConflictError("Event overlaps with existing events", ids)
