import logging
from datetime import date, datetime, time
from typing import Dict, Iterable, List, Optional, Tuple

from dateutil import tz
from dateutil.rrule import WEEKLY, rrule

from .dose_log import DoseLog, date_key
from .models import (
    Assignment, DoseStatus, FamilyMember, Frequency, Medication,
    MedicationSchedule, ResolvedDose,
)

# (title, hours) in display order
TIME_OF_DAY_SECTIONS = [
    ("morning", range(5, 11)),
    ("afternoon", range(11, 17)),
    ("evening", range(17, 22)),
    ("night", list(range(22, 24)) + list(range(0, 5))),
]


def occurs_on(schedule: MedicationSchedule, day: date) -> bool:
    """True if `day` lies in the schedule window and matches its frequency.

    daily/custom_times: every day from start_date through end_date.
    weekly: every 7 days from start_date (same weekday).
    """
    if day < schedule.start_date:
        return False
    if schedule.end_date is not None and day > schedule.end_date:
        return False
    if schedule.frequency != Frequency.WEEKLY:
        return True

    start = datetime.combine(schedule.start_date, time())
    until = datetime.combine(schedule.end_date, time()) if schedule.end_date else None
    target = datetime.combine(day, time())
    return rrule(WEEKLY, dtstart=start, until=until).after(target, inc=True) == target


def scheduled_datetime(day: date, hour: int, minute: int, tzinfo) -> datetime:
    """Local wall time on `day`. Times inside a DST gap are moved forward."""
    dt = datetime(day.year, day.month, day.day, hour, minute, tzinfo=tzinfo)
    return tz.resolve_imaginary(dt)


def resolve_doses(
    day: date,
    members: Iterable[FamilyMember],
    medications: Iterable[Medication],
    assignments: Iterable[Assignment],
    dose_log: DoseLog,
    tzinfo=None,
) -> List[ResolvedDose]:
    """Expand the active assignments into the concrete doses of `day`.

    Pure projection: the inputs are never modified and calling it twice with
    the same inputs gives the same list. Assignments pointing at a missing
    member or medication are skipped, as is any single time that cannot be
    turned into a datetime. The result is sorted by scheduled time; equal
    times keep assignment order.
    """
    if isinstance(day, datetime):
        day = day.date()
    tzinfo = tzinfo or tz.tzlocal()
    key = date_key(day)

    member_by_id = {m.id: m for m in members}
    medication_by_id = {m.id: m for m in medications}

    resolved: Dict[Tuple[str, str, int, int], ResolvedDose] = {}
    for assignment in assignments:
        if not assignment.is_active:
            continue
        member = member_by_id.get(assignment.member_id)
        medication = medication_by_id.get(assignment.medication_id)
        if member is None or medication is None:
            logging.debug(f"[FamilyMed] assignment {assignment.id} has a dangling reference, skipped")
            continue
        if not occurs_on(assignment.schedule, day):
            continue

        for hour, minute in assignment.schedule.times:
            try:
                at = scheduled_datetime(day, hour, minute, tzinfo)
            except (ValueError, TypeError, OverflowError) as e:
                logging.warning(f"[FamilyMed] cannot place {hour}:{minute} on {key} for assignment {assignment.id}: {e}")
                continue

            entry = dose_log.get(key, assignment.id, hour, minute)
            dose = ResolvedDose(
                date_key=key,
                assignment=assignment,
                member=member,
                medication=medication,
                hour=hour,
                minute=minute,
                scheduled_at=at,
                status=entry.status if entry else DoseStatus.PENDING,
                snooze_until=entry.snooze_until if entry else None,
            )
            resolved[dose.key] = dose

    # sorted() is stable
    return sorted(resolved.values(), key=lambda d: d.scheduled_at)


def next_dose(doses: Iterable[ResolvedDose]) -> Optional[ResolvedDose]:
    """Earliest open dose, by snooze time when set, else by scheduled time."""
    upcoming = sorted((d for d in doses if d.is_open), key=lambda d: d.due_at)
    return upcoming[0] if upcoming else None


def is_overdue(dose: ResolvedDose, now: datetime) -> bool:
    return dose.is_open and dose.due_at <= now


def group_by_time_of_day(doses: Iterable[ResolvedDose]) -> List[Tuple[str, List[ResolvedDose]]]:
    doses = list(doses)
    return [
        (title, [d for d in doses if d.hour in hours])
        for title, hours in TIME_OF_DAY_SECTIONS
    ]
