"""Notification trigger derivation and the delivery collaborator boundary.

The engine only decides *what* to announce and *when*. Presenting the alert
is up to a :class:`NotificationDelivery` implementation (see
``familymed.qt_delivery`` for the desktop one, :class:`RecordingDelivery` for
headless use and tests).
"""
import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Dict, Iterable, List, Optional

from .models import Assignment, FamilyMember, Frequency, Medication

DEFAULT_TITLE = "Medication reminder"
DEFAULT_SNOOZE_TITLE = "Snoozed medication reminder"


@dataclass(frozen=True)
class RecurringTrigger:
    """Fires every day at hour:minute (or once a week when weekday is set, 0=Monday).

    Only days between start_date and end_date (both inclusive, either may be
    None) are delivered.
    """
    identifier: str
    title: str
    body: str
    hour: int
    minute: int
    weekday: Optional[int] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    repeats: bool = True

    def active_on(self, day: date) -> bool:
        if self.start_date is not None and day < self.start_date:
            return False
        return self.end_date is None or day <= self.end_date


@dataclass(frozen=True)
class OnceTrigger:
    identifier: str
    title: str
    body: str
    fire_at: datetime
    repeats: bool = False


def recurring_identifier(assignment_id: str, hour: int, minute: int) -> str:
    return f"assignment_{assignment_id}_{hour}_{minute}"


def snooze_identifier(assignment_id: str, fire_at: datetime) -> str:
    return f"snooze_{assignment_id}_{int(fire_at.timestamp())}"


def dose_body(member: FamilyMember, medication: Medication) -> str:
    if medication.dosage:
        return f"{member.name}: {medication.name} ({medication.dosage})"
    return f"{member.name}: {medication.name}"


def derive_recurring_triggers(
    assignments: Iterable[Assignment],
    members: Iterable[FamilyMember],
    medications: Iterable[Medication],
    title: str = DEFAULT_TITLE,
    today: Optional[date] = None,
) -> List[RecurringTrigger]:
    """One trigger per active assignment and time of day.

    Identifiers only depend on (assignment, hour, minute), so deriving the
    set twice yields the same triggers and replacing the whole set is safe
    after any mutation. Schedules that already ended before `today` are left
    out; the others carry their start and end date so a schedule that only
    starts later is not delivered before its first day.
    """
    member_by_id = {m.id: m for m in members}
    medication_by_id = {m.id: m for m in medications}

    triggers: Dict[str, RecurringTrigger] = {}
    for assignment in assignments:
        if not assignment.is_active:
            continue
        member = member_by_id.get(assignment.member_id)
        medication = medication_by_id.get(assignment.medication_id)
        if member is None or medication is None:
            continue
        schedule = assignment.schedule
        if today is not None and schedule.end_date is not None and schedule.end_date < today:
            continue
        weekday = schedule.start_date.weekday() if schedule.frequency == Frequency.WEEKLY else None

        for hour, minute in schedule.times:
            ident = recurring_identifier(assignment.id, hour, minute)
            triggers[ident] = RecurringTrigger(
                identifier=ident,
                title=title,
                body=dose_body(member, medication),
                hour=hour,
                minute=minute,
                weekday=weekday,
                start_date=schedule.start_date,
                end_date=schedule.end_date,
            )
    return list(triggers.values())


def snooze_trigger(assignment_id: str, member: FamilyMember, medication: Medication,
                   fire_at: datetime, title: str = DEFAULT_SNOOZE_TITLE) -> OnceTrigger:
    return OnceTrigger(
        identifier=snooze_identifier(assignment_id, fire_at),
        title=title,
        body=dose_body(member, medication),
        fire_at=fire_at,
    )


class NotificationDelivery:
    """Interface of the platform side. Subclasses override all three methods."""

    def replace_recurring(self, triggers: List[RecurringTrigger]):
        """Drop every recurring trigger and install `triggers`. One-shot triggers stay."""
        raise NotImplementedError

    def schedule_once(self, trigger: OnceTrigger):
        raise NotImplementedError

    def cancel(self, identifier: str):
        """Cancel a pending trigger; unknown identifiers are ignored."""
        raise NotImplementedError


class RecordingDelivery(NotificationDelivery):
    """Keeps the triggers in memory instead of delivering them."""

    def __init__(self):
        self.recurring: Dict[str, RecurringTrigger] = {}
        self.once: Dict[str, OnceTrigger] = {}
        self.cancelled: List[str] = []
        self.replace_calls = 0

    def replace_recurring(self, triggers):
        self.replace_calls += 1
        self.recurring = {t.identifier: t for t in triggers}

    def schedule_once(self, trigger):
        self.once[trigger.identifier] = trigger

    def cancel(self, identifier):
        self.cancelled.append(identifier)
        self.once.pop(identifier, None)
        self.recurring.pop(identifier, None)


class NotificationScheduler:
    """Derives triggers and hands them to the delivery collaborator.

    Delivery errors are logged and never reach the caller.
    """

    def __init__(self, delivery: NotificationDelivery = None,
                 title: str = DEFAULT_TITLE, snooze_title: str = DEFAULT_SNOOZE_TITLE):
        self.delivery = delivery if delivery is not None else RecordingDelivery()
        self.title = title
        self.snooze_title = snooze_title

    def reschedule(self, assignments, members, medications, today: Optional[date] = None) -> List[RecurringTrigger]:
        triggers = derive_recurring_triggers(assignments, members, medications, self.title, today)
        try:
            self.delivery.replace_recurring(triggers)
        except Exception as e:
            logging.warning(f"[FamilyMed] replacing recurring notifications failed: {e}")
        return triggers

    def schedule_snooze(self, assignment_id: str, member: FamilyMember, medication: Medication,
                        fire_at: datetime) -> OnceTrigger:
        trigger = snooze_trigger(assignment_id, member, medication, fire_at, self.snooze_title)
        try:
            self.delivery.schedule_once(trigger)
        except Exception as e:
            logging.warning(f"[FamilyMed] scheduling snooze notification {trigger.identifier} failed: {e}")
        return trigger

    def cancel_snooze(self, assignment_id: str, fire_at: datetime):
        ident = snooze_identifier(assignment_id, fire_at)
        try:
            self.delivery.cancel(ident)
        except Exception as e:
            logging.warning(f"[FamilyMed] cancelling notification {ident} failed: {e}")
