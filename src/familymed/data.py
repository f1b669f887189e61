import json
import logging
import os
import tempfile
from datetime import date, datetime
from typing import Optional

from familymed.models import (
    Assignment, DoseLogEntry, DoseStatus, DoseTime, FamilyMember, Frequency,
    Medication, MedicationSchedule, Snapshot,
)


def default_data_path() -> str:
    return os.path.join(os.path.expanduser("~"), ".familymed", "familymed_data.json")


# serialisation
def _member_to_dict(m: FamilyMember) -> dict:
    return {"id": m.id, "name": m.name, "relation": m.relation}


def _member_from_dict(d: dict) -> FamilyMember:
    return FamilyMember(name=d["name"], relation=d.get("relation", ""), id=d["id"])


def _medication_to_dict(m: Medication) -> dict:
    return {"id": m.id, "name": m.name, "dosage": m.dosage, "notes": m.notes}


def _medication_from_dict(d: dict) -> Medication:
    return Medication(name=d["name"], dosage=d.get("dosage", ""), notes=d.get("notes"), id=d["id"])


def _schedule_to_dict(s: MedicationSchedule) -> dict:
    return {
        "frequency": Frequency(s.frequency).value,
        "times": [{"hour": t.hour, "minute": t.minute} for t in s.times],
        "start_date": s.start_date.isoformat(),
        "end_date": s.end_date.isoformat() if s.end_date else None,
    }


def _schedule_from_dict(d: dict) -> MedicationSchedule:
    return MedicationSchedule(
        times=[DoseTime(int(t["hour"]), int(t["minute"])) for t in d.get("times", [])],
        frequency=Frequency(d.get("frequency", Frequency.DAILY.value)),
        start_date=date.fromisoformat(d["start_date"]),
        end_date=date.fromisoformat(d["end_date"]) if d.get("end_date") else None,
    )


def _assignment_to_dict(a: Assignment) -> dict:
    return {
        "id": a.id,
        "member_id": a.member_id,
        "medication_id": a.medication_id,
        "schedule": _schedule_to_dict(a.schedule),
        "is_active": a.is_active,
    }


def _assignment_from_dict(d: dict) -> Assignment:
    return Assignment(
        member_id=d["member_id"],
        medication_id=d["medication_id"],
        schedule=_schedule_from_dict(d["schedule"]),
        is_active=bool(d.get("is_active", True)),
        id=d["id"],
    )


def _log_to_dict(e: DoseLogEntry) -> dict:
    return {
        "id": e.id,
        "date_key": e.date_key,
        "assignment_id": e.assignment_id,
        "hour": e.hour,
        "minute": e.minute,
        "status": DoseStatus(e.status).value,
        "snooze_until": e.snooze_until.isoformat() if e.snooze_until else None,
    }


def _log_from_dict(d: dict) -> DoseLogEntry:
    return DoseLogEntry(
        date_key=d["date_key"],
        assignment_id=d["assignment_id"],
        hour=int(d["hour"]),
        minute=int(d["minute"]),
        status=DoseStatus(d.get("status", DoseStatus.PENDING.value)),
        snooze_until=datetime.fromisoformat(d["snooze_until"]) if d.get("snooze_until") else None,
        id=d["id"],
    )


def snapshot_to_dict(snapshot: Snapshot) -> dict:
    return {
        "members": [_member_to_dict(m) for m in snapshot.members],
        "medications": [_medication_to_dict(m) for m in snapshot.medications],
        "assignments": [_assignment_to_dict(a) for a in snapshot.assignments],
        "dose_logs": [_log_to_dict(e) for e in snapshot.dose_logs],
    }


def snapshot_from_dict(data: dict) -> Snapshot:
    """Build a Snapshot from the decoded JSON object. Missing lists count as empty."""
    if not isinstance(data, dict):
        raise ValueError(f"snapshot must be a JSON object, got {type(data).__name__}")
    return Snapshot(
        members=[_member_from_dict(d) for d in data.get("members", [])],
        medications=[_medication_from_dict(d) for d in data.get("medications", [])],
        assignments=[_assignment_from_dict(d) for d in data.get("assignments", [])],
        dose_logs=[_log_from_dict(d) for d in data.get("dose_logs", [])],
    )


class SnapshotFile:
    """JSON snapshot at a fixed location, written atomically."""

    def __init__(self, path: str = None):
        self.path = path or default_data_path()

    def exists(self) -> bool:
        return os.path.exists(self.path)

    def load(self) -> Optional[Snapshot]:
        """Load the snapshot, or None when the file does not exist yet.

        A damaged file raises ValueError/KeyError/TypeError; the caller
        decides how to recover.
        """
        if not self.exists():
            return None
        with open(self.path, "r", encoding="utf-8") as f:
            data = json.load(f)
        return snapshot_from_dict(data)

    def save(self, snapshot: Snapshot):
        directory = os.path.dirname(os.path.abspath(self.path))
        os.makedirs(directory, exist_ok=True)
        payload = json.dumps(snapshot_to_dict(snapshot), ensure_ascii=False, indent=2)

        # temp file in the same directory, then an atomic rename
        fd, tmp_path = tempfile.mkstemp(prefix=".familymed_", suffix=".tmp", dir=directory)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(payload)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, self.path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise
        logging.debug(f"[FamilyMed] snapshot written to {self.path}")
