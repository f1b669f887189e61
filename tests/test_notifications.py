from datetime import date, datetime

from dateutil import tz

from familymed.models import (
    Assignment, DoseTime, FamilyMember, Frequency, Medication, MedicationSchedule,
)
from familymed.notifications import (
    NotificationScheduler, RecordingDelivery, derive_recurring_triggers,
    snooze_identifier, snooze_trigger,
)


def _household():
    anna = FamilyMember("Anna", "mother")
    med = Medication("Ibuprofen", "200 mg")
    daily = Assignment(anna.id, med.id, MedicationSchedule([DoseTime(8, 0), DoseTime(20, 30)], start_date=date(2024, 1, 1)))
    return anna, med, daily


def test_one_trigger_per_time_with_stable_ids():
    anna, med, daily = _household()
    triggers = derive_recurring_triggers([daily], [anna], [med])
    assert [t.identifier for t in triggers] == [
        f"assignment_{daily.id}_8_0",
        f"assignment_{daily.id}_20_30",
    ]
    assert triggers[1].hour == 20 and triggers[1].minute == 30
    assert all(t.repeats and t.weekday is None for t in triggers)
    assert triggers[0].body == "Anna: Ibuprofen (200 mg)"
    assert derive_recurring_triggers([daily], [anna], [med]) == triggers


def test_inactive_dangling_and_ended_are_left_out():
    anna, med, daily = _household()
    inactive = Assignment(anna.id, med.id, MedicationSchedule([DoseTime(9, 0)]), is_active=False)
    dangling = Assignment("nobody", med.id, MedicationSchedule([DoseTime(10, 0)]))
    ended = Assignment(anna.id, med.id, MedicationSchedule(
        [DoseTime(11, 0)], start_date=date(2024, 1, 1), end_date=date(2024, 2, 1)))
    triggers = derive_recurring_triggers([daily, inactive, dangling, ended], [anna], [med],
                                         today=date(2024, 3, 1))
    assert {t.hour for t in triggers} == {8, 20}


def test_weekly_trigger_carries_weekday():
    anna, med, _ = _household()
    weekly = Assignment(anna.id, med.id, MedicationSchedule(
        [DoseTime(8, 0)], Frequency.WEEKLY, start_date=date(2024, 3, 4)))
    (trigger,) = derive_recurring_triggers([weekly], [anna], [med])
    assert trigger.weekday == 0


def test_future_schedule_carries_its_date_window():
    anna, med, _ = _household()
    later = Assignment(anna.id, med.id, MedicationSchedule(
        [DoseTime(8, 0)], start_date=date(2024, 3, 10), end_date=date(2024, 3, 20)))
    (trigger,) = derive_recurring_triggers([later], [anna], [med], today=date(2024, 3, 1))
    assert (trigger.start_date, trigger.end_date) == (date(2024, 3, 10), date(2024, 3, 20))
    assert not trigger.active_on(date(2024, 3, 1))
    assert trigger.active_on(date(2024, 3, 10))
    assert not trigger.active_on(date(2024, 3, 21))


def test_snooze_trigger_fires_once():
    anna, med, daily = _household()
    fire = datetime(2024, 3, 1, 8, 15, tzinfo=tz.UTC)
    trigger = snooze_trigger(daily.id, anna, med, fire, title="Later")
    assert trigger.identifier == snooze_identifier(daily.id, fire)
    assert trigger.identifier == f"snooze_{daily.id}_{int(fire.timestamp())}"
    assert trigger.repeats is False
    assert trigger.title == "Later"


def test_scheduler_uses_configured_titles():
    anna, med, daily = _household()
    delivery = RecordingDelivery()
    scheduler = NotificationScheduler(delivery, title="Pills", snooze_title="Pills again")
    scheduler.reschedule([daily], [anna], [med])
    scheduler.schedule_snooze(daily.id, anna, med, datetime(2024, 3, 1, 8, 15, tzinfo=tz.UTC))
    assert {t.title for t in delivery.recurring.values()} == {"Pills"}
    assert [t.title for t in delivery.once.values()] == ["Pills again"]

    scheduler.reschedule([], [anna], [med])
    assert delivery.recurring == {}
    assert len(delivery.once) == 1
    assert delivery.replace_calls == 2
