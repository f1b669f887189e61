import json
import os
from datetime import date, datetime

import pytest
from dateutil import tz

from familymed.data import SnapshotFile
from familymed.models import (
    Assignment, DoseLogEntry, DoseStatus, DoseTime, FamilyMember, Frequency,
    Medication, MedicationSchedule, Snapshot,
)


@pytest.fixture
def snapshot():
    anna = FamilyMember("Anna", "mother")
    med = Medication("Metformin", "500 mg", notes="after meals")
    a = Assignment(anna.id, med.id, MedicationSchedule(
        [DoseTime(8, 0), DoseTime(20, 0)], Frequency.WEEKLY, date(2024, 3, 1), date(2024, 6, 30)))
    log = DoseLogEntry("2024-03-01", a.id, 8, 0, DoseStatus.SNOOZED,
                       datetime(2024, 3, 1, 8, 15, tzinfo=tz.UTC))
    return Snapshot([anna], [med], [a], [log])


def test_missing_file_loads_none(tmp_path):
    assert SnapshotFile(str(tmp_path / "nope.json")).load() is None


def test_save_and_load_snapshot(tmp_path, snapshot):
    path = tmp_path / "data.json"
    SnapshotFile(str(path)).save(snapshot)
    loaded = SnapshotFile(str(path)).load()

    assert loaded.members == snapshot.members
    assert loaded.medications == snapshot.medications
    assert loaded.assignments == snapshot.assignments
    entry = loaded.dose_logs[0]
    assert entry.status == DoseStatus.SNOOZED
    assert entry.snooze_until == datetime(2024, 3, 1, 8, 15, tzinfo=tz.UTC)
    assert entry.snooze_until.tzinfo is not None


def test_file_is_field_tagged_json(tmp_path, snapshot):
    path = tmp_path / "data.json"
    SnapshotFile(str(path)).save(snapshot)
    with open(path, encoding="utf-8") as f:
        raw = json.load(f)
    assert set(raw) == {"members", "medications", "assignments", "dose_logs"}
    assert raw["assignments"][0]["schedule"]["frequency"] == "weekly"
    assert raw["assignments"][0]["schedule"]["times"][1] == {"hour": 20, "minute": 0}


def test_save_leaves_no_temp_files(tmp_path, snapshot):
    path = tmp_path / "sub" / "data.json"
    SnapshotFile(str(path)).save(snapshot)
    SnapshotFile(str(path)).save(Snapshot())
    assert os.listdir(tmp_path / "sub") == ["data.json"]
    assert SnapshotFile(str(path)).load() == Snapshot()


def test_failed_write_keeps_previous_snapshot(tmp_path, snapshot, monkeypatch):
    path = tmp_path / "data.json"
    SnapshotFile(str(path)).save(snapshot)

    def boom(src, dst):
        raise OSError("disk full")
    monkeypatch.setattr(os, "replace", boom)
    with pytest.raises(OSError):
        SnapshotFile(str(path)).save(Snapshot())
    monkeypatch.undo()

    assert SnapshotFile(str(path)).load().members == snapshot.members
    assert os.listdir(tmp_path) == ["data.json"]


def test_corrupt_file_raises(tmp_path):
    path = tmp_path / "data.json"
    path.write_text("{not json", encoding="utf-8")
    with pytest.raises(ValueError):
        SnapshotFile(str(path)).load()
