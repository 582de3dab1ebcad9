"""
Calendar API Endpoints.

Availability, slot queries, calendar events, reminders and external
calendar sync settings. The caller's identity comes from the X-User-ID
header set by the upstream auth gateway.

Calendar errors raised by the service are mapped to responses by the
exception handlers in app.main.
"""

import logging
from datetime import date, datetime
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, Header, Query, status
from pydantic import BaseModel, Field
from redis.asyncio import Redis
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.core.calendar.reminders import ReminderScheduler
from app.core.calendar.repository import (
    AvailabilityRepository,
    CalendarEventRepository,
    ReminderRepository,
    SyncConfigRepository,
)
from app.core.calendar.service import CalendarService
from app.core.calendar.store import ScheduleStore
from app.infra.database import get_db
from app.infra.notifications import NullNotificationSink, RedisNotificationSink
from app.infra.redis import AvailabilityCache, get_redis

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/calendar", tags=["Calendar"])


# === Dependencies ===


async def get_calendar_service(
    db: AsyncSession = Depends(get_db),
    redis: Optional[Redis] = Depends(get_redis),
) -> CalendarService:
    """Build a CalendarService bound to the request's session."""
    if redis is None:
        logger.debug("Redis unavailable, serving calendar without cache or notifications")
    cache = AvailabilityCache(redis)
    return CalendarService(
        store=ScheduleStore(AvailabilityRepository(db), cache),
        events=CalendarEventRepository(db),
        reminders=ReminderScheduler(ReminderRepository(db)),
        sync_configs=SyncConfigRepository(db),
        cache=cache,
        sink=RedisNotificationSink(redis) if redis is not None else NullNotificationSink(),
    )


async def current_user_id(
    x_user_id: str = Header(
        ...,
        alias="X-User-ID",
        description="Authenticated user (therapist or client) identifier",
    ),
) -> str:
    if not x_user_id.strip():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="X-User-ID header is required",
        )
    return x_user_id.strip()


# === Request / response models ===


class SlotModel(BaseModel):
    """Time window in HH:MM (24h)."""

    start_time: str = Field(..., examples=["09:00"])
    end_time: str = Field(..., examples=["12:00"])
    is_available: bool = True
    session_type: str = Field(default="both", examples=["online", "inPerson", "both"])


class DayScheduleModel(BaseModel):
    day: str = Field(..., examples=["monday"])
    slots: list[SlotModel] = Field(default_factory=list)


class PreferencesModel(BaseModel):
    """Only the fields sent are changed."""

    session_duration: Optional[int] = None
    break_duration: Optional[int] = None
    max_daily_hours: Optional[int] = None
    timezone: Optional[str] = Field(default=None, examples=["Europe/Istanbul"])
    auto_confirm: Optional[bool] = None


class AvailabilityRequest(BaseModel):
    """Weekly template for the calling therapist."""

    weekly_schedule: list[DayScheduleModel]
    preferences: Optional[PreferencesModel] = None


class ExceptionRequest(BaseModel):
    date: str = Field(..., examples=["2025-01-06"])
    type: str = Field(..., examples=["unavailable", "modified"])
    slots: list[SlotModel] = Field(default_factory=list)


class ReminderSpecModel(BaseModel):
    channel: str = Field(..., examples=["email", "sms", "push", "whatsapp"])
    minutes_before: int = Field(..., examples=[60])


class EventRequest(BaseModel):
    """New calendar event."""

    type: str = Field(..., examples=["appointment"])
    title: str
    description: Optional[str] = None
    start_time: datetime
    end_time: datetime
    is_all_day: bool = False
    recurrence: Optional[dict[str, Any]] = None
    location: Optional[dict[str, Any]] = None
    color: Optional[str] = None
    visibility: str = "private"
    reminders: list[ReminderSpecModel] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)


class EventUpdateRequest(BaseModel):
    """Partial event update. `version` guards against lost updates."""

    type: Optional[str] = None
    title: Optional[str] = None
    description: Optional[str] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    is_all_day: Optional[bool] = None
    recurrence: Optional[dict[str, Any]] = None
    location: Optional[dict[str, Any]] = None
    color: Optional[str] = None
    visibility: Optional[str] = None
    reminders: Optional[list[ReminderSpecModel]] = None
    metadata: Optional[dict[str, Any]] = None
    version: Optional[int] = Field(
        default=None,
        description="Version the client last read; stale versions are rejected with 409",
    )


class ReminderRequest(BaseModel):
    appointment_id: str
    channel: str = Field(..., examples=["email"])
    scheduled_for: datetime
    metadata: dict[str, Any] = Field(default_factory=dict)


class SyncRequest(BaseModel):
    """Omit credentials to keep the stored ones."""

    credentials: Optional[dict[str, Any]] = None
    settings: dict[str, Any] = Field(default_factory=dict)


class SlotResponse(BaseModel):
    date: str
    start_time: str
    end_time: str
    session_type: str


class AvailableSlotsResponse(BaseModel):
    therapist_id: str
    start_date: date
    end_date: date
    slots: list[SlotResponse]


class ErrorResponse(BaseModel):
    """Error response."""

    error: str
    detail: Optional[Any] = None
    conflicting_event_ids: Optional[list[str]] = None


# === Availability ===


@router.post(
    "/availability",
    response_model=dict,
    status_code=status.HTTP_201_CREATED,
    summary="Set weekly availability",
    description="Create or replace the calling therapist's weekly template.",
    responses={422: {"model": ErrorResponse, "description": "Invalid schedule"}},
)
async def set_availability(
    request: AvailabilityRequest,
    user_id: str = Depends(current_user_id),
    service: CalendarService = Depends(get_calendar_service),
) -> dict:
    preferences = request.preferences.model_dump(exclude_none=True) if request.preferences else None
    template = await service.set_availability(
        user_id,
        [day.model_dump() for day in request.weekly_schedule],
        preferences,
    )
    return template.to_dict()


@router.get(
    "/availability/{therapist_id}",
    response_model=AvailableSlotsResponse,
    summary="Get available slots",
    description="Concrete bookable slots for a therapist over an inclusive date range.",
    responses={
        404: {"model": ErrorResponse, "description": "Therapist has no availability"},
        422: {"model": ErrorResponse, "description": "Invalid date range"},
    },
)
async def get_available_slots(
    therapist_id: str,
    start_date: date = Query(..., description="First date, inclusive"),
    end_date: date = Query(..., description="Last date, inclusive"),
    session_type: Optional[str] = Query(default=None, description="online, inPerson or both"),
    service: CalendarService = Depends(get_calendar_service),
) -> AvailableSlotsResponse:
    slots = await service.get_available_slots(therapist_id, start_date, end_date, session_type)
    return AvailableSlotsResponse(
        therapist_id=therapist_id,
        start_date=start_date,
        end_date=end_date,
        slots=[SlotResponse(**slot.to_dict()) for slot in slots],
    )


@router.post(
    "/availability/exceptions",
    response_model=dict,
    status_code=status.HTTP_201_CREATED,
    summary="Add a date exception",
    description="Block a date or replace its slots. An existing exception for the date is replaced.",
    responses={
        404: {"model": ErrorResponse, "description": "Therapist has no availability"},
        422: {"model": ErrorResponse, "description": "Invalid exception"},
    },
)
async def add_exception(
    request: ExceptionRequest,
    user_id: str = Depends(current_user_id),
    service: CalendarService = Depends(get_calendar_service),
) -> dict:
    template = await service.add_exception(
        user_id,
        request.date,
        request.type,
        [slot.model_dump() for slot in request.slots],
    )
    return template.to_dict()


# === Events ===


@router.post(
    "/events",
    response_model=dict,
    status_code=status.HTTP_201_CREATED,
    summary="Create an event",
    responses={
        409: {"model": ErrorResponse, "description": "Overlaps an existing event"},
        422: {"model": ErrorResponse, "description": "Invalid event"},
    },
)
async def create_event(
    request: EventRequest,
    user_id: str = Depends(current_user_id),
    service: CalendarService = Depends(get_calendar_service),
) -> dict:
    event = await service.create_event(user_id, request.model_dump())
    return event.to_dict()


@router.get(
    "/events",
    response_model=dict,
    summary="List events",
    description="Events of the caller lying entirely inside the given window.",
)
async def get_events(
    start_date: datetime = Query(...),
    end_date: datetime = Query(...),
    type: Optional[str] = Query(default=None),
    visibility: Optional[str] = Query(default=None),
    user_id: str = Depends(current_user_id),
    service: CalendarService = Depends(get_calendar_service),
) -> dict:
    events = await service.get_events(user_id, start_date, end_date, type, visibility)
    return {"events": [event.to_dict() for event in events]}


@router.patch(
    "/events/{event_id}",
    response_model=dict,
    summary="Update an event",
    responses={
        404: {"model": ErrorResponse, "description": "Event not found"},
        409: {"model": ErrorResponse, "description": "Overlap or stale version"},
        422: {"model": ErrorResponse, "description": "Invalid update"},
    },
)
async def update_event(
    event_id: str,
    request: EventUpdateRequest,
    user_id: str = Depends(current_user_id),
    service: CalendarService = Depends(get_calendar_service),
) -> dict:
    updates = request.model_dump(exclude_unset=True)
    version = updates.pop("version", None)
    event = await service.update_event(event_id, user_id, updates, expected_version=version)
    return event.to_dict()


# === Reminders ===


@router.post(
    "/reminders",
    response_model=dict,
    status_code=status.HTTP_201_CREATED,
    summary="Schedule a reminder",
)
async def schedule_reminder(
    request: ReminderRequest,
    user_id: str = Depends(current_user_id),
    service: CalendarService = Depends(get_calendar_service),
) -> dict:
    reminder = await service.schedule_reminder(
        request.appointment_id,
        user_id,
        request.channel,
        request.scheduled_for,
        request.metadata,
    )
    return reminder.to_dict()


@router.get(
    "/reminders/due",
    response_model=dict,
    summary="List due reminders",
    description="The caller's pending reminders scheduled at or before now, oldest first.",
)
async def due_reminders(
    limit: int = Query(default=settings.reminder_batch_size, ge=1, le=1000),
    user_id: str = Depends(current_user_id),
    service: CalendarService = Depends(get_calendar_service),
) -> dict:
    reminders = await service.due_reminders(limit=limit, user_id=user_id)
    return {"reminders": [reminder.to_dict() for reminder in reminders]}


# === External calendar sync ===


@router.post(
    "/sync/{provider}",
    response_model=dict,
    status_code=status.HTTP_201_CREATED,
    summary="Configure an external calendar",
    description="Store credentials and settings for google, outlook or apple.",
)
async def configure_sync(
    provider: str,
    request: SyncRequest,
    user_id: str = Depends(current_user_id),
    service: CalendarService = Depends(get_calendar_service),
) -> dict:
    config = await service.configure_sync_provider(
        user_id, provider, request.credentials, request.settings
    )
    return config.to_dict()
