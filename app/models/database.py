"""
Database Models

SQLAlchemy ORM models for therapist availability, calendar events,
reminders and external calendar sync configuration.

All datetimes are stored as naive UTC.
"""

import uuid
from datetime import date, datetime
from typing import List, Optional

from sqlalchemy import (
    JSON, Boolean, Date, DateTime, ForeignKey, Index, Integer, String, Text,
    UniqueConstraint, Uuid, Enum as SQLEnum, text
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from sqlalchemy.sql import func

from app.core.calendar.types import (
    EventType,
    ExceptionType,
    ReminderChannel,
    ReminderStatus,
    SyncProvider,
    SyncStatus,
    Visibility,
)


class Base(DeclarativeBase):
    """Base class for all database models."""
    pass


class TimestampMixin:
    """Mixin that adds created_at and updated_at timestamp columns."""

    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        server_default=text("CURRENT_TIMESTAMP"),
        nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime,
        server_default=text("CURRENT_TIMESTAMP"),
        onupdate=func.now(),
        nullable=False
    )


class AvailabilityRecord(Base, TimestampMixin):
    """
    Therapist availability (one row per therapist).

    Holds the recurring weekly schedule and session preferences as JSON.
    Date exceptions live in their own table, unique per date.
    """

    __tablename__ = "therapist_availability"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    therapist_id: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    weekly_schedule: Mapped[list] = mapped_column(JSON, default=list)
    preferences: Mapped[dict] = mapped_column(JSON, default=dict)

    # Relationships
    exceptions: Mapped[List["AvailabilityExceptionRecord"]] = relationship(
        "AvailabilityExceptionRecord",
        back_populates="availability",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="AvailabilityExceptionRecord.exception_date",
    )

    def __repr__(self) -> str:
        return f"<AvailabilityRecord(id={self.id}, therapist_id='{self.therapist_id}')>"


class AvailabilityExceptionRecord(Base, TimestampMixin):
    """
    Date exception for a therapist's availability.

    At most one row per (availability, date); writing a date again
    replaces the row.
    """

    __tablename__ = "availability_exceptions"
    __table_args__ = (
        UniqueConstraint("availability_id", "date", name="uq_exception_availability_date"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    availability_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("therapist_availability.id", ondelete="CASCADE"),
        nullable=False
    )
    exception_date: Mapped[date] = mapped_column("date", Date, nullable=False)
    type: Mapped[ExceptionType] = mapped_column(SQLEnum(ExceptionType), nullable=False)
    slots: Mapped[list] = mapped_column(JSON, default=list)

    # Relationships
    availability: Mapped["AvailabilityRecord"] = relationship(
        "AvailabilityRecord",
        back_populates="exceptions"
    )

    def __repr__(self) -> str:
        return f"<AvailabilityExceptionRecord(date={self.exception_date}, type={self.type.value})>"


class CalendarEventRecord(Base, TimestampMixin):
    """
    Calendar event owned by a user (therapist or client).

    Intervals [start_time, end_time) of one user never overlap; the
    version column guards concurrent updates of the same event.
    """

    __tablename__ = "calendar_events"
    __table_args__ = (
        Index("idx_event_user_interval", "user_id", "start_time", "end_time"),
        Index("idx_event_type_user", "type", "user_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    type: Mapped[EventType] = mapped_column(SQLEnum(EventType), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    start_time: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    end_time: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    is_all_day: Mapped[bool] = mapped_column(Boolean, default=False)
    recurrence: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    location: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    color: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    visibility: Mapped[Visibility] = mapped_column(
        SQLEnum(Visibility),
        default=Visibility.PRIVATE
    )
    reminders: Mapped[list] = mapped_column(JSON, default=list)
    # "metadata" is reserved on declarative classes
    event_metadata: Mapped[dict] = mapped_column("metadata", JSON, default=dict)
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return (
            f"<CalendarEventRecord(id={self.id}, user_id='{self.user_id}', "
            f"start={self.start_time}, end={self.end_time})>"
        )


class ReminderRecord(Base, TimestampMixin):
    """
    Reminder row awaiting delivery.

    Created when an event with reminder specs is saved; only the
    delivery worker moves it out of pending.
    """

    __tablename__ = "reminders"
    __table_args__ = (
        Index("idx_reminder_appointment", "appointment_id"),
        Index("idx_reminder_user", "user_id"),
        Index("idx_reminder_due", "scheduled_for", "status"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    appointment_id: Mapped[str] = mapped_column(String(64), nullable=False)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    channel: Mapped[ReminderChannel] = mapped_column(SQLEnum(ReminderChannel), nullable=False)
    status: Mapped[ReminderStatus] = mapped_column(
        SQLEnum(ReminderStatus),
        default=ReminderStatus.PENDING,
        nullable=False
    )
    scheduled_for: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    sent_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    reminder_metadata: Mapped[dict] = mapped_column("metadata", JSON, default=dict)

    def __repr__(self) -> str:
        return (
            f"<ReminderRecord(id={self.id}, channel={self.channel.value}, "
            f"status={self.status.value}, scheduled_for={self.scheduled_for})>"
        )


class SyncConfigRecord(Base, TimestampMixin):
    """External calendar link, one per (user, provider)."""

    __tablename__ = "calendar_sync_configs"
    __table_args__ = (
        UniqueConstraint("user_id", "provider", name="uq_sync_user_provider"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    provider: Mapped[SyncProvider] = mapped_column(SQLEnum(SyncProvider), nullable=False)
    credentials: Mapped[dict] = mapped_column(JSON, default=dict)
    settings: Mapped[dict] = mapped_column(JSON, default=dict)
    status: Mapped[SyncStatus] = mapped_column(
        SQLEnum(SyncStatus),
        default=SyncStatus.ACTIVE
    )

    def __repr__(self) -> str:
        return (
            f"<SyncConfigRecord(user_id='{self.user_id}', "
            f"provider={self.provider.value}, status={self.status.value})>"
        )
