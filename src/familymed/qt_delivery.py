import logging
from dataclasses import dataclass
from datetime import datetime, time, timedelta
from typing import Optional, Union

from dateutil import tz
from dateutil.relativedelta import relativedelta
from PySide6.QtCore import QObject, Qt, QTimer, Signal

from familymed.notifications import NotificationDelivery, OnceTrigger, RecurringTrigger

# QTimer takes an int of milliseconds; longer waits are split into steps of one day
MAX_TIMER_MSEC = 24 * 60 * 60 * 1000
# a timer waking up this close to its slot counts as on time
EARLY_WAKE_MSEC = 1000


def next_fire_time(trigger: RecurringTrigger, after: datetime) -> Optional[datetime]:
    """First slot strictly after `after` inside the trigger's date window.

    None once the window has ended.
    """
    if trigger.start_date is not None and after.date() < trigger.start_date:
        # last instant before the first day, so a 00:00 slot on that day still counts
        after = datetime.combine(trigger.start_date, time(), tzinfo=after.tzinfo) - timedelta(microseconds=1)
    delta = relativedelta(hour=trigger.hour, minute=trigger.minute, second=0, microsecond=0)
    if trigger.weekday is not None:
        delta += relativedelta(weekday=trigger.weekday)
    candidate = after + delta
    if candidate <= after:
        candidate += relativedelta(days=7 if trigger.weekday is not None else 1)
    if not trigger.active_on(candidate.date()):
        return None
    return candidate


@dataclass
class _Armed:
    trigger: Union[RecurringTrigger, OnceTrigger]
    timer: QTimer
    fire_at: datetime


class QtNotificationCenter(QObject, NotificationDelivery):
    """Delivers triggers with QTimers on the owning thread's event loop.

    Every firing emits `fired(identifier, title, body)`; with a tray icon the
    message is also shown as a desktop balloon.
    """
    fired = Signal(str, str, str)

    def __init__(self, tray=None, now=None, parent=None):
        super().__init__(parent)
        self.tray = tray
        self._now = now or (lambda: datetime.now(tz.tzlocal()))
        self._recurring = {}   # identifier -> _Armed
        self._once = {}        # identifier -> _Armed

    def pending_identifiers(self):
        return sorted(list(self._recurring) + list(self._once))

    def next_fire_at(self, identifier: str) -> Optional[datetime]:
        armed = self._recurring.get(identifier) or self._once.get(identifier)
        return armed.fire_at if armed else None

    def timer_interval(self, identifier: str) -> Optional[int]:
        armed = self._recurring.get(identifier) or self._once.get(identifier)
        return armed.timer.interval() if armed else None

    def _msec_until(self, fire_at: datetime) -> int:
        return max(0, int((fire_at - self._now()).total_seconds() * 1000))

    def _arm(self, table, trigger, fire_at: datetime, on_due):
        timer = QTimer(self)
        timer.setSingleShot(True)
        timer.setTimerType(Qt.PreciseTimer)
        armed = _Armed(trigger, timer, fire_at)
        timer.timeout.connect(lambda: self._on_timeout(table, trigger.identifier, armed, on_due))
        timer.start(min(self._msec_until(fire_at), MAX_TIMER_MSEC))
        table[trigger.identifier] = armed

    def _on_timeout(self, table, identifier, armed, on_due):
        if table.get(identifier) is not armed:
            return
        remaining = self._msec_until(armed.fire_at)
        if remaining > EARLY_WAKE_MSEC:
            # capped interval ran out before the slot
            armed.timer.start(min(remaining, MAX_TIMER_MSEC))
            return
        del table[identifier]
        armed.timer.deleteLater()
        on_due(armed)

    def _arm_recurring(self, trigger: RecurringTrigger, after: datetime):
        fire_at = next_fire_time(trigger, after)
        if fire_at is None:
            logging.info(f"[FamilyMed] notification {trigger.identifier} ended on {trigger.end_date}")
            return
        self._arm(self._recurring, trigger, fire_at, self._recurring_due)

    def _recurring_due(self, armed: _Armed):
        trigger = armed.trigger
        self._deliver(trigger.identifier, trigger.title, trigger.body)
        # next slot strictly after the one just delivered, even if the timer woke early
        self._arm_recurring(trigger, max(self._now(), armed.fire_at))

    def _once_due(self, armed: _Armed):
        trigger = armed.trigger
        self._deliver(trigger.identifier, trigger.title, trigger.body)

    def _deliver(self, identifier, title, body):
        logging.info(f"[FamilyMed] notification {identifier}: {title} - {body}")
        if self.tray is not None:
            try:
                self.tray.showMessage(title, body)
            except Exception as e:
                logging.error(f"[FamilyMed] tray message failed: {e}")
        self.fired.emit(identifier, title, body)

    def _drop(self, armed: _Armed):
        armed.timer.stop()
        armed.timer.deleteLater()

    def replace_recurring(self, triggers):
        for armed in self._recurring.values():
            self._drop(armed)
        self._recurring.clear()
        now = self._now()
        for trigger in triggers:
            self._arm_recurring(trigger, now)

    def schedule_once(self, trigger: OnceTrigger):
        self.cancel(trigger.identifier)
        self._arm(self._once, trigger, trigger.fire_at, self._once_due)

    def cancel(self, identifier: str):
        for table in (self._once, self._recurring):
            armed = table.pop(identifier, None)
            if armed is not None:
                self._drop(armed)
