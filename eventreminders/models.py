"""SQLAlchemy models for the reminder scheduler."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    String,
    Text,
    Time,
    text,
)
from sqlalchemy.orm import declarative_base, relationship

from .utils import utcnow

Base = declarative_base()

JOB_STATUS_PENDING = "pending"
JOB_STATUS_SENT = "sent"
JOB_STATUS_CANCELLED = "cancelled"
JOB_STATUSES = {JOB_STATUS_PENDING, JOB_STATUS_SENT, JOB_STATUS_CANCELLED}

# Partial index predicate shared by the model and the migration.
ACTIVE_JOB_PREDICATE = "status != 'cancelled'"


def _uuid() -> str:
    return str(uuid.uuid4())


def _now() -> datetime:
    return utcnow()


class Meta(Base):
    __tablename__ = "meta"

    key = Column(String(128), primary_key=True)
    value = Column(Text, nullable=False)
    updated_at = Column(DateTime, default=_now, onupdate=_now, nullable=False)


class Event(Base):
    __tablename__ = "events"

    id = Column(String(36), primary_key=True, default=_uuid)
    title = Column(String(255), nullable=False)
    date = Column(Date, nullable=False, index=True)
    time = Column(Time, nullable=True)
    location_name = Column(String(255), nullable=False, default="")
    is_cancelled = Column(Boolean, default=False, nullable=False)
    hidden_by_reports = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=_now, nullable=False)
    updated_at = Column(DateTime, default=_now, onupdate=_now, nullable=False)

    rsvps = relationship("RSVP", back_populates="event", cascade="all, delete-orphan")


class Favorite(Base):
    __tablename__ = "favorites"

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(String(36), nullable=False, index=True)
    item_id = Column(String(36), nullable=False)
    item_type = Column(String(32), nullable=False, default="event")
    created_at = Column(DateTime, default=_now, nullable=False)

    __table_args__ = (Index("ix_favorites_item", "item_type", "item_id"),)


class RSVP(Base):
    __tablename__ = "rsvps"

    id = Column(String(36), primary_key=True, default=_uuid)
    event_id = Column(String(36), ForeignKey("events.id"), nullable=False, index=True)
    user_id = Column(String(36), nullable=False)
    status = Column(String(16), nullable=False, default="going")
    created_at = Column(DateTime, default=_now, nullable=False)
    updated_at = Column(DateTime, default=_now, onupdate=_now, nullable=False)

    event = relationship("Event", back_populates="rsvps")


class NotificationPreference(Base):
    __tablename__ = "notification_preferences"

    user_id = Column(String(36), primary_key=True)
    enabled = Column(Boolean, nullable=True, default=True)
    event_reminders = Column(Boolean, nullable=True, default=True)
    reminder_1h_before = Column(Boolean, nullable=True, default=True)
    reminder_1d_before = Column(Boolean, nullable=True, default=True)
    reminder_1w_before = Column(Boolean, nullable=True, default=False)
    created_at = Column(DateTime, default=_now, nullable=True)
    updated_at = Column(DateTime, default=_now, onupdate=_now, nullable=True)


class ReminderJob(Base):
    __tablename__ = "reminder_jobs"

    id = Column(String(36), primary_key=True, default=_uuid)
    event_id = Column(String(36), nullable=False)
    user_id = Column(String(36), nullable=False)
    tier_id = Column(String(16), nullable=False)
    fire_at = Column(DateTime, nullable=False)
    dedup_key = Column(String(64), nullable=False, index=True)
    status = Column(String(16), nullable=False, default=JOB_STATUS_PENDING)
    notification_type = Column(String(32), nullable=False, default="event_reminder")
    title = Column(String(255), nullable=False)
    body = Column(Text, nullable=False)
    cancel_reason = Column(String(32), nullable=True)
    created_at = Column(DateTime, default=_now, nullable=False)
    status_changed_at = Column(DateTime, default=_now, nullable=False)

    __table_args__ = (
        Index(
            "uq_reminder_jobs_active",
            "event_id",
            "user_id",
            "tier_id",
            unique=True,
            sqlite_where=text(ACTIVE_JOB_PREDICATE),
            postgresql_where=text(ACTIVE_JOB_PREDICATE),
        ),
        Index("ix_reminder_jobs_status_fire_at", "status", "fire_at"),
    )
