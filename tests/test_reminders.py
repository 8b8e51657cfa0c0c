"""
tests/test_reminders.py
=======================

Proximity bands and reminder scheduling.
"""

from datetime import date, datetime, timedelta

import pytest

from duewatch.models import ComplianceEvent, EventStatus, ReminderBand
from duewatch.reminders import ReminderScheduler, band_for


@pytest.mark.parametrize(
    "days, band",
    [
        (-1, ReminderBand.OVERDUE),
        (0, ReminderBand.IMMINENT),
        (1, ReminderBand.IMMINENT),
        (2, ReminderBand.URGENT),
        (7, ReminderBand.URGENT),
        (8, ReminderBand.SOON),
        (31, ReminderBand.SOON),
        (32, ReminderBand.FAR),
        (90, ReminderBand.FAR),
        (91, None),
    ],
)
def test_band_for(days, band):
    assert band_for(days) is band


def _stored_event(store, due=date(2024, 6, 1), **kw):
    return store.insert_event(ComplianceEvent("acme", "Annual Report", "2024", due, estimated_cost=30000, **kw))


def test_thirty_one_days_out_is_soon(store):
    ev = _stored_event(store)
    notice = ReminderScheduler(store).process(ev, datetime(2024, 5, 1))
    assert notice.band is ReminderBand.SOON
    assert notice.days_until_due == 31
    assert notice.sequence == 1
    assert notice.estimated_cost == 30000

    fresh = store.get_event(ev.id)
    assert fresh.reminders_sent == 1
    assert fresh.last_reminder_band is ReminderBand.SOON
    assert fresh.last_reminder_sent_at == datetime(2024, 5, 1)


def test_same_band_is_not_repeated(store):
    scheduler = ReminderScheduler(store)
    ev = _stored_event(store)
    scheduler.process(ev, datetime(2024, 5, 1))
    assert scheduler.process(store.get_event(ev.id), datetime(2024, 5, 10)) is None
    assert store.get_event(ev.id).reminders_sent == 1


def test_escalation_counts_monotonically(store):
    scheduler = ReminderScheduler(store)
    ev = _stored_event(store)
    bands = []
    for now in (datetime(2024, 4, 1), datetime(2024, 5, 1), datetime(2024, 5, 28), datetime(2024, 5, 31)):
        notice = scheduler.process(store.get_event(ev.id), now)
        bands.append(notice.band)
    assert bands == [ReminderBand.FAR, ReminderBand.SOON, ReminderBand.URGENT, ReminderBand.IMMINENT]
    assert store.get_event(ev.id).reminders_sent == 4


def test_imminent_repeats_daily(store):
    scheduler = ReminderScheduler(store)
    ev = _stored_event(store)
    first = datetime(2024, 5, 31, 8)
    scheduler.process(store.get_event(ev.id), first)
    assert scheduler.process(store.get_event(ev.id), first + timedelta(hours=6)) is None
    again = scheduler.process(store.get_event(ev.id), first + timedelta(days=1))
    assert again.band is ReminderBand.IMMINENT
    assert again.sequence == 2


def test_completed_events_get_no_reminders(store):
    ev = _stored_event(store, status=EventStatus.COMPLETED)
    assert ReminderScheduler(store).evaluate(ev, datetime(2024, 5, 31)) is None


def test_beyond_far_band_gets_nothing(store):
    ev = _stored_event(store, due=date(2025, 6, 1))
    assert ReminderScheduler(store).evaluate(ev, datetime(2024, 5, 1)) is None


def test_stale_decision_is_not_recorded_twice(store):
    """Two workers evaluating the same snapshot produce one reminder."""
    scheduler = ReminderScheduler(store)
    ev = _stored_event(store)
    now = datetime(2024, 5, 1)
    decision = scheduler.evaluate(ev, now)

    assert scheduler.apply(ev, decision, now) is not None
    assert scheduler.apply(ev, decision, now) is None

    fresh = store.get_event(ev.id)
    assert fresh.reminders_sent == 1
    assert len(store.pending_notices(10)) == 1
