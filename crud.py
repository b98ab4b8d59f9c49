"""CRUD operations for CareMind Notification Service.

This module is the only place that talks to the record store: device token
lookups and deactivation, obligation reads, the queue upsert/drain and alert
event bookkeeping.
IMPORTANT: all datetime parameters must be timezone-aware UTC instants.
"""

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from typing import Iterable, List, Optional
from datetime import date, datetime, timezone

from database import (
    AlertEvent, Appointment, DeviceToken, Medication, NotificationHistory,
    Profile, QueueEntry, Routine,
)
from logger_config import setup_logger

logger = setup_logger(__name__, 'crud.log')


# ---------------------------------------------------------------------------
# Device tokens
# ---------------------------------------------------------------------------

def get_active_tokens(db: Session, profile_id: str) -> List[str]:
    """Get the active FCM tokens of one profile.

    Args:
        db: Database session
        profile_id: Recipient profile ID

    Returns:
        List[str]: Token values, possibly empty
    """
    rows = db.query(DeviceToken.token).filter(
        DeviceToken.profile_id == profile_id,
        DeviceToken.active.is_(True)
    ).order_by(DeviceToken.id).all()
    return [row.token for row in rows]


def get_active_tokens_for_profiles(db: Session, profile_ids: Iterable[str]) -> List[str]:
    """Get the active FCM tokens of several profiles."""
    ids = list(profile_ids)
    if not ids:
        return []
    rows = db.query(DeviceToken.token).filter(
        DeviceToken.profile_id.in_(ids),
        DeviceToken.active.is_(True)
    ).order_by(DeviceToken.id).all()
    return [row.token for row in rows]


def deactivate_tokens(db: Session, tokens: Iterable[str]) -> int:
    """Mark tokens inactive.

    Args:
        db: Database session
        tokens: Token values the gateway rejected

    Returns:
        int: Number of rows updated
    """
    values = list(set(tokens))
    if not values:
        return 0
    count = db.query(DeviceToken).filter(
        DeviceToken.token.in_(values)
    ).update(
        {DeviceToken.active: False, DeviceToken.updated_at: datetime.now(timezone.utc)},
        synchronize_session=False
    )
    db.commit()
    logger.info(f"Deactivated {count} device token(s)")
    return count


# ---------------------------------------------------------------------------
# Profiles and obligations
# ---------------------------------------------------------------------------

def get_notification_profiles(db: Session) -> List[Profile]:
    """Get every profile with notifications enabled."""
    return db.query(Profile).filter(Profile.notifications_enabled.is_(True)).all()


def get_active_medications(db: Session, profile_id: str) -> List[Medication]:
    return db.query(Medication).filter(
        Medication.profile_id == profile_id,
        Medication.active.is_(True)
    ).all()


def get_pending_medications(db: Session) -> List[Medication]:
    """Get active medications not yet marked completed, across all profiles."""
    return db.query(Medication).filter(
        Medication.active.is_(True),
        Medication.completed.is_(False)
    ).all()


def get_pending_routines(db: Session) -> List[Routine]:
    """Get active routines not yet marked completed, across all profiles."""
    return db.query(Routine).filter(
        Routine.active.is_(True),
        Routine.completed.is_(False)
    ).all()


def get_appointments_between(
    db: Session,
    profile_id: str,
    start: datetime,
    end: datetime
) -> List[Appointment]:
    """Get a profile's appointments with start <= scheduled_at < end."""
    return db.query(Appointment).filter(
        Appointment.profile_id == profile_id,
        Appointment.scheduled_at >= start,
        Appointment.scheduled_at < end
    ).all()


# ---------------------------------------------------------------------------
# Notification queue
# ---------------------------------------------------------------------------

def _insert_for(db: Session):
    """Dialect-specific INSERT supporting ON CONFLICT."""
    if db.get_bind().dialect.name == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
    else:
        from sqlalchemy.dialects.sqlite import insert
    return insert


def upsert_queue_entry(
    db: Session,
    profile_id: str,
    type: str,
    reference_id: str,
    title: str,
    body: str,
    scheduled_at: datetime
) -> bool:
    """Enqueue one occurrence unless it is already queued.

    Conflict key: (profile_id, type, reference_id, scheduled_at). A conflicting
    row is left untouched, so a processed entry is never reset.

    Returns:
        bool: True if a new entry was created, False if it already existed
    """
    insert = _insert_for(db)
    stmt = insert(QueueEntry).values(
        profile_id=profile_id,
        type=type,
        reference_id=str(reference_id),
        title=title,
        body=body,
        scheduled_at=scheduled_at,
        processed=False,
    ).on_conflict_do_nothing(
        index_elements=['profile_id', 'type', 'reference_id', 'scheduled_at']
    )
    result = db.execute(stmt)
    db.commit()
    return (result.rowcount or 0) > 0


def get_due_queue_entries(db: Session, now: datetime, limit: int = 100) -> List[QueueEntry]:
    """Get unprocessed entries with scheduled_at <= now, at most `limit` of them."""
    return db.query(QueueEntry).filter(
        QueueEntry.processed.is_(False),
        QueueEntry.scheduled_at <= now
    ).limit(limit).all()


def mark_entry_processed(
    db: Session,
    entry: QueueEntry,
    succeeded: bool,
    error: Optional[str] = None
) -> QueueEntry:
    """Record the outcome of the single processing attempt of an entry."""
    entry.processed = True
    entry.succeeded = succeeded
    entry.error = error or None
    entry.processed_at = datetime.now(timezone.utc)
    db.commit()
    db.refresh(entry)
    return entry


def list_queue_entries(
    db: Session,
    profile_id: str,
    pending_only: bool = False,
    limit: int = 50
) -> List[QueueEntry]:
    query = db.query(QueueEntry).filter(QueueEntry.profile_id == profile_id)
    if pending_only:
        query = query.filter(QueueEntry.processed.is_(False))
    return query.order_by(QueueEntry.scheduled_at.desc()).limit(limit).all()


# ---------------------------------------------------------------------------
# Alert events
# ---------------------------------------------------------------------------

def alert_exists(
    db: Session,
    profile_id: str,
    event_type: str,
    reference_id: str,
    reference_type: str,
    start: datetime,
    end: datetime
) -> bool:
    """Check for an alert of this kind within [start, end)."""
    return db.query(AlertEvent.id).filter(
        AlertEvent.profile_id == profile_id,
        AlertEvent.event_type == event_type,
        AlertEvent.reference_id == reference_id,
        AlertEvent.reference_type == reference_type,
        AlertEvent.occurred_at >= start,
        AlertEvent.occurred_at < end
    ).first() is not None


def insert_alert_event(
    db: Session,
    profile_id: str,
    event_type: str,
    occurred_at: datetime,
    calendar_day: date,
    description: str,
    reference_id: str,
    reference_type: str
) -> bool:
    """Insert an alert event.

    Returns:
        bool: True if inserted, False if the per-day unique constraint showed
        that a concurrent run already emitted it
    """
    db.add(AlertEvent(
        profile_id=profile_id,
        event_type=event_type,
        occurred_at=occurred_at,
        calendar_day=calendar_day,
        description=description,
        reference_id=reference_id,
        reference_type=reference_type,
    ))
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        logger.info(f"Alert {event_type} for {reference_type} {reference_id} already emitted on {calendar_day}")
        return False
    return True


def list_alert_events(db: Session, profile_id: str, limit: int = 50) -> List[AlertEvent]:
    return db.query(AlertEvent).filter(
        AlertEvent.profile_id == profile_id
    ).order_by(AlertEvent.occurred_at.desc()).limit(limit).all()


# ---------------------------------------------------------------------------
# Notification history
# ---------------------------------------------------------------------------

def record_notification_history(
    db: Session,
    profile_id: str,
    title: str,
    body: str,
    type: str,
    success: bool,
    tokens_sent: int,
    tokens_succeeded: int
) -> NotificationHistory:
    row = NotificationHistory(
        profile_id=profile_id,
        title=title,
        body=body,
        type=type,
        success=success,
        tokens_sent=tokens_sent,
        tokens_succeeded=tokens_succeeded,
    )
    db.add(row)
    db.commit()
    db.refresh(row)
    return row
