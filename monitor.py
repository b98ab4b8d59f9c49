"""Lateness monitor for medications and routines.

Both scans share one loop, parameterized by ObligationKind: an obligation is
late once civil now is past its due time plus the kind's tolerance, and a
late obligation gets at most one alert event per civil day.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, List, Optional

from sqlalchemy.orm import Session

import crud
from civil_time import (
    as_utc, civil_day_bounds, civil_instant, civil_now, civil_weekday, parse_time_of_day, utc_now,
)
from config import settings
from database import Medication, Routine
from logger_config import setup_logger
from scheduler import resolve_medication_times
from schemas import AlertDetail, MonitorResult

logger = setup_logger(__name__, 'monitor.log')


@dataclass(frozen=True)
class ObligationKind:
    reference_type: str
    event_type: str
    tolerance: Callable[[], timedelta]
    load: Callable[[Session], list]
    times: Callable[[object], List[str]]
    applies_on: Callable[[object, int], bool]
    describe: Callable[[object, str], str]
    label: str


def _routine_applies(routine: Routine, weekday: int) -> bool:
    weekdays = routine.weekdays
    if not weekdays or not isinstance(weekdays, list):
        return True
    return weekday in [int(d) for d in weekdays]


MEDICATION_MONITOR = ObligationKind(
    reference_type="medication",
    event_type="medication_overdue",
    tolerance=lambda: timedelta(minutes=settings.MEDICATION_TOLERANCE_MINUTES),
    load=crud.get_pending_medications,
    times=resolve_medication_times,
    applies_on=lambda medication, weekday: True,
    describe=lambda medication, hhmm: f'Medication "{medication.name}" was not taken at {hhmm}',
    label="medication",
)

ROUTINE_MONITOR = ObligationKind(
    reference_type="routine",
    event_type="routine_incomplete",
    tolerance=lambda: timedelta(minutes=settings.ROUTINE_TOLERANCE_MINUTES),
    load=crud.get_pending_routines,
    times=lambda routine: [routine.time] if routine.time else [],
    applies_on=_routine_applies,
    describe=lambda routine, hhmm: f'Routine "{routine.name}" was not completed at {hhmm}',
    label="routine",
)


def scan_overdue(db: Session, kind: ObligationKind, now: Optional[datetime] = None) -> MonitorResult:
    """Emit one alert event per late obligation, at most once per civil day.

    Args:
        db: Database session
        kind: MEDICATION_MONITOR or ROUTINE_MONITOR
        now: Evaluation instant (defaults to the current time)

    Returns:
        MonitorResult: number of alerts created and their details
    """
    now = as_utc(now) if now else utc_now()
    local_now = civil_now(now)
    today = local_now.date()
    weekday = civil_weekday(now)
    day_start, day_end = civil_day_bounds(today)
    tolerance = kind.tolerance()
    # Lateness is judged in whole minutes
    now_minute = now.replace(second=0, microsecond=0)

    logger.info(f"Scanning {kind.label}s at civil time {local_now.strftime('%Y-%m-%d %H:%M')} (UTC {now.isoformat()})")

    obligations = kind.load(db)
    result = MonitorResult(message=f"{kind.label.capitalize()} monitoring finished")
    if not obligations:
        result.message = f"No pending {kind.label}s found"
        return result

    for obligation in obligations:
        reference_id = str(obligation.id)
        try:
            if not kind.applies_on(obligation, weekday):
                continue

            for raw_time in kind.times(obligation):
                try:
                    time_of_day = parse_time_of_day(raw_time)
                except ValueError:
                    logger.warning(f"Skipping {kind.label} {obligation.id}: invalid time {raw_time!r}")
                    continue

                due = civil_instant(today, time_of_day)
                if now_minute <= due + tolerance:
                    continue

                if crud.alert_exists(
                    db, obligation.profile_id, kind.event_type, reference_id,
                    kind.reference_type, day_start, day_end
                ):
                    continue

                hhmm = f"{time_of_day.hour:02d}:{time_of_day.minute:02d}"
                if crud.insert_alert_event(
                    db,
                    profile_id=obligation.profile_id,
                    event_type=kind.event_type,
                    occurred_at=due,
                    calendar_day=today,
                    description=kind.describe(obligation, hhmm),
                    reference_id=reference_id,
                    reference_type=kind.reference_type,
                ):
                    result.details.append(AlertDetail(
                        reference_id=reference_id,
                        name=obligation.name,
                        time=hhmm,
                        profile_id=obligation.profile_id,
                    ))
                    logger.info(f"Alert {kind.event_type}: {kind.label} {reference_id} due {hhmm}")
        except Exception as e:
            logger.error(f"Error processing {kind.label} {reference_id}: {str(e)}", exc_info=True)
            db.rollback()

    result.alerts_generated = len(result.details)
    return result


def check_missed_medications(db: Session, now: Optional[datetime] = None) -> MonitorResult:
    return scan_overdue(db, MEDICATION_MONITOR, now)


def check_missed_routines(db: Session, now: Optional[datetime] = None) -> MonitorResult:
    return scan_overdue(db, ROUTINE_MONITOR, now)
