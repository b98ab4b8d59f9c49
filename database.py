"""Database module for CareMind Notification Service.

This module defines SQLAlchemy models and database session management.
IMPORTANT: every DateTime column holds a UTC instant. SQLite drops the offset
on storage, so values read back must go through civil_time.as_utc().
"""

from sqlalchemy import (
    create_engine, Column, String, Integer, Boolean, Date, DateTime, JSON,
    ForeignKey, Index, UniqueConstraint,
)
from sqlalchemy.orm import declarative_base, sessionmaker
from datetime import datetime, timezone
import uuid

from config import settings

# SQLAlchemy Base
Base = declarative_base()


def _uuid() -> str:
    return str(uuid.uuid4())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Profile(Base):
    """Recipient identity. Owns device tokens and obligations."""

    __tablename__ = "profiles"

    id = Column(String, primary_key=True, default=_uuid)
    name = Column(String, nullable=False, default="")
    notifications_enabled = Column(Boolean, nullable=False, default=True, index=True)

    def __repr__(self):
        return f"<Profile(id={self.id}, notifications_enabled={self.notifications_enabled})>"


class DeviceToken(Base):
    """FCM registration token of one device.

    Deactivated (never deleted) when the gateway rejects it.
    """

    __tablename__ = "device_tokens"

    id = Column(Integer, primary_key=True, autoincrement=True)
    token = Column(String, nullable=False, unique=True)
    profile_id = Column(String, ForeignKey("profiles.id"), nullable=False, index=True)
    platform = Column(String, nullable=True, doc="ios, android or web")
    active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    __table_args__ = (
        Index('idx_token_profile_active', 'profile_id', 'active'),
    )


class Medication(Base):
    """Medication with daily dose times.

    Either `times` holds explicit "HH:MM" values, or `frequency` holds the
    {"type": "daily", "times_per_day": n} shorthand.
    """

    __tablename__ = "medications"

    id = Column(Integer, primary_key=True, autoincrement=True)
    profile_id = Column(String, ForeignKey("profiles.id"), nullable=False, index=True)
    name = Column(String, nullable=False)
    times = Column(JSON, nullable=True)
    frequency = Column(JSON, nullable=True)
    active = Column(Boolean, nullable=False, default=True)
    completed = Column(Boolean, nullable=False, default=False)


class Routine(Base):
    """Daily routine at a single time, optionally restricted to weekdays (0 = Sunday)."""

    __tablename__ = "routines"

    id = Column(Integer, primary_key=True, autoincrement=True)
    profile_id = Column(String, ForeignKey("profiles.id"), nullable=False, index=True)
    name = Column(String, nullable=False)
    time = Column(String, nullable=False, doc="HH:MM in civil time")
    weekdays = Column(JSON, nullable=True)
    active = Column(Boolean, nullable=False, default=True)
    completed = Column(Boolean, nullable=False, default=False)


class Appointment(Base):
    """One-off appointment at an absolute instant."""

    __tablename__ = "appointments"

    id = Column(Integer, primary_key=True, autoincrement=True)
    profile_id = Column(String, ForeignKey("profiles.id"), nullable=False, index=True)
    title = Column(String, nullable=False)
    scheduled_at = Column(DateTime(timezone=True), nullable=False, index=True)


class QueueEntry(Base):
    """Reminder waiting to be dispatched at scheduled_at.

    Processed exactly once; processed entries are terminal.
    """

    __tablename__ = "queue_entries"

    id = Column(String, primary_key=True, default=_uuid)
    profile_id = Column(String, ForeignKey("profiles.id"), nullable=False)
    type = Column(String, nullable=False, doc="medication or appointment")
    reference_id = Column(String, nullable=False)
    title = Column(String, nullable=False)
    body = Column(String, nullable=False)
    scheduled_at = Column(DateTime(timezone=True), nullable=False)
    processed = Column(Boolean, nullable=False, default=False)
    succeeded = Column(Boolean, nullable=True)
    error = Column(String, nullable=True)
    processed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    __table_args__ = (
        UniqueConstraint('profile_id', 'type', 'reference_id', 'scheduled_at', name='uq_queue_occurrence'),
        Index('idx_queue_due', 'processed', 'scheduled_at'),
    )

    def __repr__(self):
        return (
            f"<QueueEntry(id={self.id}, profile={self.profile_id}, type={self.type}, "
            f"ref={self.reference_id}, at={self.scheduled_at}, processed={self.processed})>"
        )


class AlertEvent(Base):
    """Missed medication dose or incomplete routine, at most one per obligation per civil day."""

    __tablename__ = "alert_events"

    id = Column(String, primary_key=True, default=_uuid)
    profile_id = Column(String, ForeignKey("profiles.id"), nullable=False)
    event_type = Column(String, nullable=False, doc="medication_overdue or routine_incomplete")
    occurred_at = Column(DateTime(timezone=True), nullable=False)
    calendar_day = Column(Date, nullable=False)
    description = Column(String, nullable=False, default="")
    reference_id = Column(String, nullable=False)
    reference_type = Column(String, nullable=False, doc="medication or routine")
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    __table_args__ = (
        UniqueConstraint(
            'profile_id', 'event_type', 'reference_id', 'reference_type', 'calendar_day',
            name='uq_alert_per_day',
        ),
        Index('idx_alert_lookup', 'profile_id', 'event_type', 'reference_id', 'occurred_at'),
    )


class NotificationHistory(Base):
    """Audit row for every push request that targeted profiles."""

    __tablename__ = "notification_history"

    id = Column(Integer, primary_key=True, autoincrement=True)
    profile_id = Column(String, nullable=False, index=True)
    title = Column(String, nullable=False)
    body = Column(String, nullable=False)
    type = Column(String, nullable=False, default="general")
    success = Column(Boolean, nullable=False)
    tokens_sent = Column(Integer, nullable=False, default=0)
    tokens_succeeded = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)


# Database Engine Setup
engine = create_engine(
    settings.DATABASE_URL,
    connect_args={"check_same_thread": False} if "sqlite" in settings.DATABASE_URL else {},
    echo=False  # Set to True for SQL debugging
)

# Session Factory
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db():
    """Database session dependency for FastAPI.

    Yields:
        Session: SQLAlchemy database session
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


# Create all tables
Base.metadata.create_all(bind=engine)
