# src/familymed/main.py

import logging
import sys
from datetime import datetime
from typing import List, Optional

from PySide6.QtCore import QCoreApplication, QObject, QThread, Signal

from .calendar_logic import next_dose
from .config import load_config
from .models import DoseStatus, ResolvedDose
from .notifications import NotificationDelivery, NotificationScheduler
from .qt_delivery import QtNotificationCenter
from .store import MedStore

_STATUS_MARK = {
    DoseStatus.PENDING: "  ",
    DoseStatus.TAKEN: "✅",
    DoseStatus.SNOOZED: "⏰",
    DoseStatus.SKIPPED: "❌",
}


def format_dose_line(index: int, dose: ResolvedDose, now: Optional[datetime] = None) -> str:
    time_label = f"{dose.hour:02d}:{dose.minute:02d}"
    if dose.snooze_until is not None and (now is None or dose.snooze_until > now):
        time_label += f" (snoozed until {dose.snooze_until:%H:%M})"
    dosage = f" {dose.medication.dosage}" if dose.medication.dosage else ""
    return (f"{index:>2}. {_STATUS_MARK[dose.status]} {time_label}  "
            f"{dose.member.name}: {dose.medication.name}{dosage}")


def print_today(store: MedStore, doses: List[ResolvedDose]):
    now = store.now()
    print(f"\n💊 FamilyMed, {now:%a %d %b %Y}")
    if not doses:
        print("  No doses scheduled for today.")
        return
    for i, dose in enumerate(doses, 1):
        print(format_dose_line(i, dose, now))
    upcoming = next_dose(doses)
    if upcoming is not None:
        print(f"\nNext dose: {upcoming.member.name}, {upcoming.medication.name} "
              f"at {upcoming.due_at:%H:%M}")


def handle_command(store: MedStore, doses: List[ResolvedDose], line: str, default_snooze: int) -> bool:
    """Run one command ('t 1', 's 2', 'z 3 15'). Returns False on 'q'."""
    parts = line.split()
    if not parts:
        return True
    cmd = parts[0].lower()
    if cmd == "q":
        return False
    if cmd not in ("t", "s", "z") or len(parts) < 2 or not parts[1].isdigit():
        print("  commands: t <n> taken, s <n> skipped, z <n> [min] snooze, q quit")
        return True

    idx = int(parts[1]) - 1
    if not 0 <= idx < len(doses):
        print(f"  no dose number {parts[1]}")
        return True
    dose = doses[idx]
    day = dose.scheduled_at.date()
    try:
        if cmd == "t":
            store.mark_taken(dose.assignment.id, day, dose.hour, dose.minute)
        elif cmd == "s":
            store.mark_skipped(dose.assignment.id, day, dose.hour, dose.minute)
        else:
            minutes = int(parts[2]) if len(parts) > 2 and parts[2].isdigit() else default_snooze
            until = store.snooze(dose.assignment.id, day, dose.hour, dose.minute, minutes)
            print(f"  reminder at {until:%H:%M}")
    except ValueError as e:
        print(f"  {e}")
    return True


def build_store(cfg, delivery: Optional[NotificationDelivery] = None) -> MedStore:
    scheduler = NotificationScheduler(delivery, title=cfg['notification_title'], snooze_title=cfg['snooze_title'])
    return MedStore(cfg['data_file'], scheduler=scheduler)


class InputWorker(QObject):
    """Reads console lines on its own thread so timers keep firing meanwhile."""
    line = Signal(str)
    closed = Signal()

    def __init__(self, prompt="> "):
        super().__init__()
        self.prompt = prompt
        self._stopped = False

    def stop(self):
        self._stopped = True

    def run(self):
        while not self._stopped:
            try:
                text = input(self.prompt)
            except EOFError:
                break
            except Exception as e:
                logging.error(f"[FamilyMed] reading input failed: {e}")
                break
            if text.strip().lower() == "q":
                break
            self.line.emit(text)
        self.closed.emit()


class ConsoleApp(QObject):
    """Today's list on stdout, commands from InputWorker, reminders from QtNotificationCenter."""

    def __init__(self, store: MedStore, center: QtNotificationCenter, default_snooze: int):
        super().__init__()
        self.store = store
        self.default_snooze = default_snooze
        self.doses = store.resolve()
        center.fired.connect(self.on_fired)

    def show(self):
        self.doses = self.store.resolve()
        print_today(self.store, self.doses)

    def on_line(self, text: str):
        handle_command(self.store, self.doses, text, self.default_snooze)
        self.show()

    def on_fired(self, identifier: str, title: str, body: str):
        print(f"\n🔔 {title}: {body}")


def run():
    cfg = load_config()
    logging.basicConfig(level=getattr(logging, str(cfg['log_level']).upper(), logging.INFO),
                        format="%(asctime)s %(levelname)s %(message)s")
    app = QCoreApplication.instance() or QCoreApplication(sys.argv)
    center = QtNotificationCenter()
    store = build_store(cfg, center)
    console = ConsoleApp(store, center, (cfg.get('snooze_options') or [10])[0])
    console.show()

    input_thread = QThread()
    worker = InputWorker()
    worker.moveToThread(input_thread)
    input_thread.started.connect(worker.run)
    worker.line.connect(console.on_line)
    worker.closed.connect(input_thread.quit)
    worker.closed.connect(app.quit)
    input_thread.start()

    code = app.exec()
    worker.stop()
    input_thread.quit()
    input_thread.wait()
    return code


if __name__ == "__main__":
    sys.exit(run())
