import builtins
import os
from datetime import date, datetime

import pytest
from dateutil import tz

os.environ.setdefault("QT_QPA_PLATFORM", "offscreen")

from familymed.config import DEFAULTS
from familymed.main import ConsoleApp, InputWorker, build_store, format_dose_line, handle_command
from familymed.models import DoseStatus, DoseTime, MedicationSchedule
from familymed.qt_delivery import QtNotificationCenter
from familymed.store import MedStore

UTC = tz.UTC


@pytest.fixture
def store(tmp_path):
    s = MedStore(str(tmp_path / "data.json"), tzinfo=UTC)
    anna = s.add_member("Anna", "mother")
    med = s.add_medication("Ibuprofen", "200 mg")
    s.add_assignment(anna.id, med.id, MedicationSchedule([DoseTime(8, 0), DoseTime(20, 0)], start_date=date(2024, 1, 1)))
    return s


def test_format_dose_line(store):
    dose = store.resolve(date(2024, 3, 1))[0]
    assert format_dose_line(1, dose) == " 1.    08:00  Anna: Ibuprofen 200 mg"


def test_format_snoozed_line(store):
    a = store.assignments[0]
    store.snooze(a.id, date(2024, 3, 1), 8, 0, 10, now=datetime(2024, 3, 1, 8, 0, tzinfo=UTC))
    dose = store.resolve(date(2024, 3, 1))[0]
    line = format_dose_line(1, dose, datetime(2024, 3, 1, 8, 5, tzinfo=UTC))
    assert "snoozed until 08:10" in line
    assert "snoozed" not in format_dose_line(1, dose, datetime(2024, 3, 1, 9, 0, tzinfo=UTC))


def test_commands_change_status(store, capsys):
    day = date(2024, 3, 1)
    doses = store.resolve(day)
    assert handle_command(store, doses, "t 1", 10)
    assert handle_command(store, doses, "s 2", 10)
    assert [d.status for d in store.resolve(day)] == [DoseStatus.TAKEN, DoseStatus.SKIPPED]

    assert handle_command(store, doses, "z 2 15", 10)
    assert store.resolve(day)[1].status == DoseStatus.SNOOZED


def test_bad_commands_keep_running(store, capsys):
    doses = store.resolve(date(2024, 3, 1))
    assert handle_command(store, doses, "", 10)
    assert handle_command(store, doses, "x 1", 10)
    assert handle_command(store, doses, "t 9", 10)
    assert "no dose number 9" in capsys.readouterr().out
    assert not handle_command(store, doses, "q", 10)


def test_too_long_snooze_is_reported_not_raised(store, capsys):
    doses = store.resolve(date(2024, 3, 1))
    assert handle_command(store, doses, "z 1 99999", 10)
    assert "snooze" in capsys.readouterr().out
    assert store.dose_logs == []


def test_build_store_delivers_through_qt_center(qtbot, tmp_path):
    center = QtNotificationCenter()
    cfg = dict(DEFAULTS, data_file=str(tmp_path / "data.json"))
    store = build_store(cfg, center)
    assert store.scheduler.delivery is center

    anna = store.add_member("Anna")
    med = store.add_medication("Ibuprofen")
    a = store.add_assignment(anna.id, med.id, MedicationSchedule([DoseTime(8, 0), DoseTime(20, 0)]))
    assert center.pending_identifiers() == [f"assignment_{a.id}_20_0", f"assignment_{a.id}_8_0"]


def test_input_worker_emits_lines_until_eof(qtbot, monkeypatch):
    lines = iter(["t 1", "z 2 15"])

    def fake_input(prompt=""):
        try:
            return next(lines)
        except StopIteration:
            raise EOFError
    monkeypatch.setattr(builtins, "input", fake_input)

    worker = InputWorker()
    received, closed = [], []
    worker.line.connect(received.append)
    worker.closed.connect(lambda: closed.append(True))
    worker.run()
    assert received == ["t 1", "z 2 15"]
    assert closed == [True]


def test_input_worker_stops_on_quit(qtbot, monkeypatch):
    monkeypatch.setattr(builtins, "input", lambda prompt="": "q")
    worker = InputWorker()
    received = []
    worker.line.connect(received.append)
    with qtbot.waitSignal(worker.closed, timeout=1000):
        worker.run()
    assert received == []


def test_console_prints_fired_reminder(qtbot, store, capsys):
    center = QtNotificationCenter()
    console = ConsoleApp(store, center, 10)
    center.fired.emit("assignment_x_8_0", "Medication reminder", "Anna: Ibuprofen (200 mg)")
    assert "Medication reminder: Anna: Ibuprofen (200 mg)" in capsys.readouterr().out
    assert console.doses == store.resolve()
