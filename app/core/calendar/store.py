"""
Schedule Store

Validates and persists a therapist's weekly template and date exceptions,
and drops the therapist's cached expansions after every write.
"""

import logging
from datetime import date
from typing import Any, Awaitable, Callable, Optional, Protocol

from app.core.calendar.errors import NotFoundError, ValidationError
from app.core.calendar.types import (
    ExceptionType,
    Preferences,
    ScheduleException,
    SlotDefinition,
    WeeklyTemplate,
    parse_weekly_schedule,
)

logger = logging.getLogger(__name__)


class TemplateRepository(Protocol):
    async def get(self, therapist_id: str) -> Optional[WeeklyTemplate]: ...

    async def save(self, template: WeeklyTemplate) -> WeeklyTemplate: ...

    async def put_exception(
        self,
        therapist_id: str,
        exception: ScheduleException,
    ) -> Optional[WeeklyTemplate]: ...

    def on_commit(self, callback: Callable[[], Awaitable]) -> None: ...


class CacheInvalidator(Protocol):
    async def invalidate(self, therapist_id: str) -> int: ...


class ScheduleStore:
    """Loads and writes weekly templates."""

    def __init__(self, repository: TemplateRepository, cache: Optional[CacheInvalidator] = None):
        self.repository = repository
        self.cache = cache

    async def get_template(self, therapist_id: str) -> WeeklyTemplate:
        """
        Raises:
            NotFoundError: therapist has never set availability
        """
        template = await self.repository.get(therapist_id)
        if template is None:
            raise NotFoundError(f"No availability found for therapist {therapist_id}")
        return template

    async def find_template(self, therapist_id: str) -> Optional[WeeklyTemplate]:
        return await self.repository.get(therapist_id)

    async def set_weekly_schedule(
        self,
        therapist_id: str,
        weekly_schedule: Any,
        preferences: Optional[dict] = None,
    ) -> WeeklyTemplate:
        """
        Create or replace a therapist's weekly schedule.

        The schedule is replaced wholesale; preferences are merged field
        by field into whatever is stored. Exceptions are kept.

        Raises:
            ValidationError: malformed day, time or preference value
        """
        if preferences is not None and not isinstance(preferences, dict):
            raise ValidationError("preferences must be an object")

        days = parse_weekly_schedule(weekly_schedule)
        existing = await self.repository.get(therapist_id)

        if existing is None:
            template = WeeklyTemplate(
                therapist_id=therapist_id,
                weekly_schedule=days,
                preferences=Preferences.from_dict(preferences),
            )
        else:
            existing.weekly_schedule = days
            existing.preferences = existing.preferences.merged(preferences)
            template = existing

        saved = await self.repository.save(template)
        await self._invalidate(therapist_id)
        logger.info(
            f"Weekly schedule {'created' if existing is None else 'updated'} "
            f"for therapist {therapist_id} ({len(days)} days)"
        )
        return saved

    async def add_exception(
        self,
        therapist_id: str,
        exception_date: date | str,
        exception_type: ExceptionType | str,
        slots: Optional[list] = None,
    ) -> WeeklyTemplate:
        """
        Add or replace the exception for one date.

        Raises:
            ValidationError: malformed date, type or slot
            NotFoundError: therapist has no availability to attach it to
        """
        if slots is not None and not isinstance(slots, list):
            raise ValidationError("slots must be a list")

        exception = ScheduleException(
            date=exception_date,
            type=exception_type,
            slots=[SlotDefinition.from_dict(s) for s in slots or []],
        )

        template = await self.repository.put_exception(therapist_id, exception)
        if template is None:
            raise NotFoundError(f"No availability found for therapist {therapist_id}")

        await self._invalidate(therapist_id)
        logger.info(
            f"Exception '{exception.type.value}' set for therapist {therapist_id} "
            f"on {exception.date.isoformat()}"
        )
        return template

    async def _invalidate(self, therapist_id: str) -> None:
        """
        Drop cached expansions now and again once the write commits.

        A reader that loads the old template before the commit may cache
        it in between; the second pass removes that entry.
        """
        if self.cache is None:
            return
        cache = self.cache
        await cache.invalidate(therapist_id)
        self.repository.on_commit(lambda: cache.invalidate(therapist_id))
