import copy
import logging
import warnings
from dataclasses import replace
from datetime import date, datetime
from typing import Callable, List, Optional

from dateutil import tz
from dateutil.relativedelta import relativedelta

from familymed.calendar_logic import next_dose, occurs_on, resolve_doses
from familymed.data import SnapshotFile
from familymed.dose_log import DoseLog, date_key
from familymed.models import (
    Assignment, DoseLogEntry, DoseStatus, DoseTime, FamilyMember, Medication,
    MedicationSchedule, ResolvedDose, Snapshot,
)
from familymed.notifications import NotificationScheduler


MAX_SNOOZE_MINUTES = 24 * 60


class PersistenceWarning(UserWarning):
    """Snapshot could not be written; the in-memory state is still current."""


def _check_time(hour: int, minute: int):
    if not (0 <= int(hour) <= 23 and 0 <= int(minute) <= 59):
        raise ValueError(f"invalid time of day {hour}:{minute}")


def _check_changes(changes):
    if "id" in changes:
        raise ValueError("ids cannot be changed, references would dangle")


def normalize_times(times) -> List[DoseTime]:
    """Validate, deduplicate and sort the times of a schedule."""
    out = set()
    for t in times:
        hour, minute = t
        _check_time(hour, minute)
        out.add(DoseTime(int(hour), int(minute)))
    if not out:
        raise ValueError("schedule needs at least one time of day")
    return sorted(out)


class MedStore:
    """Session object owning members, medications, assignments and the dose log.

    Every mutation is flushed to the snapshot file right away. Not thread
    safe: exactly one owner per storage location.
    """

    def __init__(self, path: str = None, scheduler: NotificationScheduler = None, tzinfo=None,
                 storage: SnapshotFile = None):
        self.storage = storage or SnapshotFile(path)
        self.scheduler = scheduler or NotificationScheduler()
        self.tzinfo = tzinfo or tz.tzlocal()
        self._members: List[FamilyMember] = []
        self._medications: List[Medication] = []
        self._assignments: List[Assignment] = []
        self._log = DoseLog()
        self._subscribers: List[Callable] = []
        self.load()

    # load / save
    def load(self):
        try:
            snapshot = self.storage.load()
        except Exception as e:
            logging.warning(f"[FamilyMed] snapshot {self.storage.path} unreadable, starting empty: {e}")
            snapshot = None
        else:
            if snapshot is None:
                logging.info(f"[FamilyMed] no snapshot at {self.storage.path}, starting empty")

        if snapshot is None:
            snapshot = Snapshot()
            self._apply(snapshot)
            self.save()
        else:
            self._apply(snapshot)
            pruned = self._log.prune(a.id for a in self._assignments)
            if pruned:
                logging.info(f"[FamilyMed] pruned {pruned} dose log entries of deleted assignments")
                self.save()
        self.reschedule_notifications()

    def _apply(self, snapshot: Snapshot):
        self._members = list(snapshot.members)
        self._medications = list(snapshot.medications)
        self._assignments = list(snapshot.assignments)
        self._log = DoseLog(snapshot.dose_logs)

    def snapshot(self) -> Snapshot:
        return Snapshot(
            members=list(self._members),
            medications=list(self._medications),
            assignments=list(self._assignments),
            dose_logs=self._log.entries(),
        )

    def save(self) -> bool:
        try:
            self.storage.save(self.snapshot())
            return True
        except (OSError, TypeError, ValueError) as e:
            logging.error(f"[FamilyMed] failed to save snapshot to {self.storage.path}: {e}")
            warnings.warn(f"could not save {self.storage.path}: {e}", PersistenceWarning, stacklevel=3)
            return False

    # subscribers
    def subscribe(self, callback: Callable[["MedStore"], None]) -> Callable[[], None]:
        self._subscribers.append(callback)

        def unsubscribe():
            if callback in self._subscribers:
                self._subscribers.remove(callback)
        return unsubscribe

    def _changed(self, reschedule: bool = False):
        self.save()
        if reschedule:
            self.reschedule_notifications()
        for cb in list(self._subscribers):
            try:
                cb(self)
            except Exception as e:
                logging.error(f"[FamilyMed] subscriber {cb!r} failed: {e}")

    # read access
    @property
    def members(self) -> List[FamilyMember]:
        return copy.deepcopy(self._members)

    @property
    def medications(self) -> List[Medication]:
        return copy.deepcopy(self._medications)

    @property
    def assignments(self) -> List[Assignment]:
        return copy.deepcopy(self._assignments)

    @property
    def dose_logs(self) -> List[DoseLogEntry]:
        return copy.deepcopy(self._log.entries())

    def _find(self, items, item_id, kind):
        for item in items:
            if item.id == item_id:
                return item
        raise KeyError(f"unknown {kind} {item_id}")

    def get_member(self, member_id: str) -> FamilyMember:
        return copy.deepcopy(self._find(self._members, member_id, "member"))

    def get_medication(self, medication_id: str) -> Medication:
        return copy.deepcopy(self._find(self._medications, medication_id, "medication"))

    def get_assignment(self, assignment_id: str) -> Assignment:
        return copy.deepcopy(self._find(self._assignments, assignment_id, "assignment"))

    # members
    def add_member(self, name: str, relation: str = "") -> FamilyMember:
        member = FamilyMember(name=name, relation=relation)
        self._members.append(member)
        self._changed(reschedule=True)
        return copy.deepcopy(member)

    def update_member(self, member_id: str, **changes) -> FamilyMember:
        _check_changes(changes)
        member = self._find(self._members, member_id, "member")
        updated = replace(member, **changes)
        self._members[self._members.index(member)] = updated
        self._changed(reschedule=True)
        return copy.deepcopy(updated)

    def delete_member(self, member_id: str):
        self._members = [m for m in self._members if m.id != member_id]
        self._drop_assignments(lambda a: a.member_id == member_id)
        self._changed(reschedule=True)

    # medications
    def add_medication(self, name: str, dosage: str = "", notes: Optional[str] = None) -> Medication:
        med = Medication(name=name, dosage=dosage, notes=notes)
        self._medications.append(med)
        self._changed(reschedule=True)
        return copy.deepcopy(med)

    def update_medication(self, medication_id: str, **changes) -> Medication:
        _check_changes(changes)
        med = self._find(self._medications, medication_id, "medication")
        updated = replace(med, **changes)
        self._medications[self._medications.index(med)] = updated
        self._changed(reschedule=True)
        return copy.deepcopy(updated)

    def delete_medication(self, medication_id: str):
        self._medications = [m for m in self._medications if m.id != medication_id]
        self._drop_assignments(lambda a: a.medication_id == medication_id)
        self._changed(reschedule=True)

    # assignments
    def add_assignment(self, member_id: str, medication_id: str, schedule: MedicationSchedule,
                       is_active: bool = True) -> Assignment:
        self._find(self._members, member_id, "member")
        self._find(self._medications, medication_id, "medication")
        schedule = replace(schedule, times=normalize_times(schedule.times))
        assignment = Assignment(member_id, medication_id, schedule, is_active)
        self._assignments.append(assignment)
        self._changed(reschedule=True)
        return copy.deepcopy(assignment)

    def update_assignment(self, assignment_id: str, schedule: MedicationSchedule = None,
                          is_active: bool = None) -> Assignment:
        assignment = self._find(self._assignments, assignment_id, "assignment")
        if schedule is not None:
            assignment.schedule = replace(schedule, times=normalize_times(schedule.times))
        if is_active is not None:
            assignment.is_active = bool(is_active)
        self._changed(reschedule=True)
        return copy.deepcopy(assignment)

    def set_active(self, assignment_id: str, active: bool) -> Assignment:
        return self.update_assignment(assignment_id, is_active=active)

    def delete_assignment(self, assignment_id: str):
        self._find(self._assignments, assignment_id, "assignment")
        self._drop_assignments(lambda a: a.id == assignment_id)
        self._changed(reschedule=True)

    def _drop_assignments(self, predicate):
        """Cascade: remove matching assignments and their dose log entries."""
        keep = []
        for a in self._assignments:
            if predicate(a):
                removed = self._log.remove_for_assignment(a.id)
                logging.info(f"[FamilyMed] removed assignment {a.id} with {removed} dose log entries")
            else:
                keep.append(a)
        self._assignments = keep

    # resolution
    def _local_day(self, day) -> date:
        if isinstance(day, datetime):
            if day.tzinfo is not None:
                day = day.astimezone(self.tzinfo)
            return day.date()
        return day

    def now(self) -> datetime:
        return datetime.now(self.tzinfo)

    def resolve(self, day=None) -> List[ResolvedDose]:
        day = self._local_day(day) if day is not None else self.now().date()
        return resolve_doses(day, self._members, self._medications, self._assignments,
                             self._log, self.tzinfo)

    def next_dose(self, day=None) -> Optional[ResolvedDose]:
        return next_dose(self.resolve(day))

    # status changes
    def set_status(self, assignment_id: str, day, hour: int, minute: int,
                   status: DoseStatus, snooze_until: Optional[datetime] = None):
        """Record the status of one occurrence (last write wins).

        `snooze_until` is only kept for SNOOZED; any other status clears it.
        The slot must be one of the assignment's times on a day its schedule
        occurs, otherwise ValueError; inactive assignments are accepted.
        A failed flush is reported as PersistenceWarning and not rolled back.
        """
        status = DoseStatus(status)
        assignment = self._find(self._assignments, assignment_id, "assignment")
        _check_time(hour, minute)
        local_day = self._local_day(day)
        if DoseTime(int(hour), int(minute)) not in assignment.schedule.times:
            raise ValueError(f"{hour:02d}:{minute:02d} is not a dose time of assignment {assignment_id}")
        if not occurs_on(assignment.schedule, local_day):
            raise ValueError(f"assignment {assignment_id} has no doses on {local_day}")
        if status == DoseStatus.SNOOZED:
            if snooze_until is None:
                raise ValueError("snoozing needs snooze_until")
            if snooze_until.tzinfo is None:
                snooze_until = snooze_until.replace(tzinfo=self.tzinfo)
        elif snooze_until is not None:
            raise ValueError(f"snooze_until given for status {status.value}")

        key = date_key(local_day)
        previous = self._log.get(key, assignment_id, hour, minute)
        if previous is not None and previous.status == DoseStatus.SNOOZED and previous.snooze_until:
            self.scheduler.cancel_snooze(assignment_id, previous.snooze_until)

        self._log.upsert(key, assignment_id, hour, minute, status, snooze_until)
        logging.info(f"[FamilyMed] {key} {hour:02d}:{minute:02d} assignment {assignment_id} -> {status.value}")
        self._changed()

        if status == DoseStatus.SNOOZED:
            self._schedule_snooze(assignment, snooze_until)

    def _schedule_snooze(self, assignment: Assignment, fire_at: datetime):
        member = next((m for m in self._members if m.id == assignment.member_id), None)
        med = next((m for m in self._medications if m.id == assignment.medication_id), None)
        if member is None or med is None:
            logging.warning(f"[FamilyMed] assignment {assignment.id} has a dangling reference, no snooze notification")
            return
        self.scheduler.schedule_snooze(assignment.id, member, med, fire_at)

    def snooze(self, assignment_id: str, day, hour: int, minute: int, minutes: int,
               now: Optional[datetime] = None) -> datetime:
        if minutes <= 0:
            raise ValueError("snooze minutes must be positive")
        if minutes > MAX_SNOOZE_MINUTES:
            raise ValueError(f"snooze longer than {MAX_SNOOZE_MINUTES} minutes")
        now = now or self.now()
        until = now + relativedelta(minutes=minutes)
        self.set_status(assignment_id, day, hour, minute, DoseStatus.SNOOZED, until)
        return until

    def mark_taken(self, assignment_id: str, day, hour: int, minute: int):
        self.set_status(assignment_id, day, hour, minute, DoseStatus.TAKEN)

    def mark_skipped(self, assignment_id: str, day, hour: int, minute: int):
        self.set_status(assignment_id, day, hour, minute, DoseStatus.SKIPPED)

    # notifications
    def reschedule_notifications(self):
        return self.scheduler.reschedule(self._assignments, self._members, self._medications,
                                         today=self.now().date())
