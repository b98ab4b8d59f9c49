"""Daily schedule evaluation.

Looks one civil day ahead and enqueues a reminder for every medication dose
(5 minutes before) and every appointment (30 minutes before) on that day.
Re-running is safe: the queue's conflict key turns repeats into no-ops.
Routines are only watched by the lateness monitor, never pre-reminded.
"""

from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy.orm import Session

import crud
from civil_time import as_utc, civil_day_bounds, civil_instant, civil_today, parse_time_of_day, utc_now
from config import settings
from database import Medication
from logger_config import setup_logger
from schemas import ScheduleResult

logger = setup_logger(__name__, 'scheduler.log')

DEFAULT_DAILY_TIMES = ["08:00", "14:00", "20:00"]


def resolve_medication_times(medication: Medication) -> List[str]:
    """Time-of-day strings for a medication.

    Explicit `times` win; otherwise `frequency` is read either as
    {"times": [...]} or as the {"type": "daily", "times_per_day": n}
    shorthand over DEFAULT_DAILY_TIMES.
    """
    if medication.times:
        return [str(t) for t in medication.times]

    frequency = medication.frequency
    if not isinstance(frequency, dict):
        return []

    if isinstance(frequency.get("times"), list):
        return [str(t) for t in frequency["times"]]

    if frequency.get("type") == "daily" and frequency.get("times_per_day"):
        try:
            count = int(frequency["times_per_day"])
        except (TypeError, ValueError):
            count = 1
        return DEFAULT_DAILY_TIMES[:max(count, 1)]

    return []


def evaluate_schedule(db: Session, now: Optional[datetime] = None) -> ScheduleResult:
    """Enqueue tomorrow's medication and appointment reminders.

    Args:
        db: Database session
        now: Evaluation instant (defaults to the current time)

    Returns:
        ScheduleResult: profiles scanned and entries newly created
    """
    now = as_utc(now) if now else utc_now()
    day = civil_today(now) + timedelta(days=1)
    day_start, day_end = civil_day_bounds(day)
    medication_lead = timedelta(minutes=settings.MEDICATION_LEAD_MINUTES)
    appointment_lead = timedelta(minutes=settings.APPOINTMENT_LEAD_MINUTES)

    profiles = crud.get_notification_profiles(db)
    result = ScheduleResult(profiles_processed=len(profiles))
    logger.info(f"Evaluating schedule for {day.isoformat()} across {len(profiles)} profile(s)")

    for profile in profiles:
        for medication in crud.get_active_medications(db, profile.id):
            for raw_time in resolve_medication_times(medication):
                try:
                    time_of_day = parse_time_of_day(raw_time)
                except ValueError:
                    logger.warning(f"Skipping medication {medication.id}: invalid time {raw_time!r}")
                    continue

                notify_at = civil_instant(day, time_of_day) - medication_lead
                if notify_at <= now:
                    continue

                label = f"{time_of_day.hour:02d}:{time_of_day.minute:02d}"
                if crud.upsert_queue_entry(
                    db,
                    profile_id=profile.id,
                    type="medication",
                    reference_id=str(medication.id),
                    title="Medication time",
                    body=f"Reminder: {medication.name} at {label}",
                    scheduled_at=notify_at,
                ):
                    result.medications_scheduled += 1

        for appointment in crud.get_appointments_between(db, profile.id, day_start, day_end):
            notify_at = as_utc(appointment.scheduled_at) - appointment_lead
            if notify_at <= now:
                continue

            if crud.upsert_queue_entry(
                db,
                profile_id=profile.id,
                type="appointment",
                reference_id=str(appointment.id),
                title="Appointment reminder",
                body=f"{appointment.title} in {settings.APPOINTMENT_LEAD_MINUTES} minutes",
                scheduled_at=notify_at,
            ):
                result.appointments_scheduled += 1

    logger.info(
        f"Scheduled {result.medications_scheduled} medication and "
        f"{result.appointments_scheduled} appointment reminder(s)"
    )
    return result
