from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import List, NamedTuple, Optional
from uuid import uuid4


def _new_id() -> str:
    return str(uuid4())


class Frequency(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    CUSTOM_TIMES = "custom_times"


class DoseStatus(str, Enum):
    PENDING = "pending"
    TAKEN = "taken"
    SNOOZED = "snoozed"
    SKIPPED = "skipped"


class DoseTime(NamedTuple):
    """Wall-clock time of day a dose is due."""
    hour: int
    minute: int

    def label(self) -> str:
        return f"{self.hour:02d}:{self.minute:02d}"


@dataclass
class FamilyMember:
    name: str
    relation: str = ""
    id: str = field(default_factory=_new_id)


@dataclass
class Medication:
    name: str
    dosage: str = ""
    notes: Optional[str] = None
    id: str = field(default_factory=_new_id)


@dataclass
class MedicationSchedule:
    """Recurrence definition: which days and at which times of day."""
    times: List[DoseTime]
    frequency: Frequency = Frequency.DAILY
    start_date: date = field(default_factory=date.today)
    end_date: Optional[date] = None   # inclusive


@dataclass
class Assignment:
    """A medication given to one family member on a schedule."""
    member_id: str
    medication_id: str
    schedule: MedicationSchedule
    is_active: bool = True
    id: str = field(default_factory=_new_id)


@dataclass
class DoseLogEntry:
    """Status override for a single occurrence. No entry means pending."""
    date_key: str
    assignment_id: str
    hour: int
    minute: int
    status: DoseStatus = DoseStatus.PENDING
    snooze_until: Optional[datetime] = None
    id: str = field(default_factory=_new_id)

    @property
    def key(self):
        return (self.date_key, self.assignment_id, self.hour, self.minute)


@dataclass(frozen=True)
class ResolvedDose:
    """One concrete dose on one day, with its status already applied."""
    date_key: str
    assignment: Assignment
    member: FamilyMember
    medication: Medication
    hour: int
    minute: int
    scheduled_at: datetime
    status: DoseStatus = DoseStatus.PENDING
    snooze_until: Optional[datetime] = None

    @property
    def key(self):
        return (self.date_key, self.assignment.id, self.hour, self.minute)

    @property
    def due_at(self) -> datetime:
        return self.snooze_until or self.scheduled_at

    @property
    def is_open(self) -> bool:
        return self.status in (DoseStatus.PENDING, DoseStatus.SNOOZED)


@dataclass
class Snapshot:
    members: List[FamilyMember] = field(default_factory=list)
    medications: List[Medication] = field(default_factory=list)
    assignments: List[Assignment] = field(default_factory=list)
    dose_logs: List[DoseLogEntry] = field(default_factory=list)
