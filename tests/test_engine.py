"""
tests/test_engine.py
====================

End-to-end behaviour of ComplianceEngine over the in-memory adapters.
"""

from datetime import date, datetime

import pytest

from duewatch.engine import ComplianceEngine
from duewatch.models import ComplianceEvent, EventStatus, ReminderBand
from duewatch.notify import Notifier


def _bulk(store, count, due=date(2024, 6, 1)):
    return [store.insert_event(ComplianceEvent(f"e{i}", "Annual Report", "2024", due)) for i in range(count)]


def test_first_tick_sends_soon_reminder(engine, notifier):
    ev = engine.create_event("acme", now=datetime(2024, 5, 1))
    report = engine.run_sweep_tick(datetime(2024, 5, 1))

    assert [n.band for n in report.reminders] == [ReminderBand.SOON]
    assert report.relayed == 1
    assert [n.event_id for n in notifier.notices] == [ev.id]
    assert notifier.notices[0].payload()["daysUntilDue"] == 31

    # nothing new on a repeat tick
    again = engine.run_sweep_tick(datetime(2024, 5, 1, 6))
    assert again.reminders == []
    assert again.relayed == 0


def test_overdue_transition_and_reminder_in_same_tick(engine):
    ev = engine.create_event("acme", now=datetime(2024, 5, 1))
    engine.run_sweep_tick(datetime(2024, 5, 1))

    report = engine.run_sweep_tick(datetime(2024, 6, 15))
    assert report.overdue == [ev.id]
    assert [n.band for n in report.reminders] == [ReminderBand.OVERDUE]
    stored = engine.store.get_event(ev.id)
    assert stored.status is EventStatus.OVERDUE
    assert stored.reminders_sent == 2


def test_dissolution_risk_is_reported(engine):
    ev = engine.create_event("acme", now=datetime(2024, 5, 1))
    report = engine.run_sweep_tick(datetime(2024, 9, 1))
    assert [f.event_id for f in report.dissolution_risk] == [ev.id]
    assert report.dissolution_risk[0].days_overdue == 92


def test_complete_schedules_successor(engine):
    ev = engine.create_event("acme", now=datetime(2024, 5, 1))
    engine.run_sweep_tick(datetime(2024, 6, 15))

    result = engine.complete_event(ev.id, datetime(2024, 6, 20))
    assert result.event.status is EventStatus.COMPLETED
    assert result.event.completed_at == datetime(2024, 6, 20)
    assert result.successor.period == "2025"
    assert result.successor.due_date == date(2025, 6, 1)

    repeat = engine.complete_event(ev.id, datetime(2024, 6, 21))
    assert repeat.event.completed_at == datetime(2024, 6, 20)
    assert repeat.successor.id == result.successor.id


def test_complete_unknown_event(engine):
    with pytest.raises(KeyError):
        engine.complete_event(999)


def test_tick_limit_reports_cursor(engine, store):
    events = _bulk(store, 5)
    now = datetime(2024, 5, 1)

    first = engine.run_sweep_tick(now, limit=3)
    assert first.scanned == 3
    assert first.next_cursor == events[2].id

    rest = engine.run_sweep_tick(now, limit=3, after_id=first.next_cursor)
    assert rest.scanned == 2
    assert rest.next_cursor is None
    assert {n.event_id for n in first.reminders + rest.reminders} == {e.id for e in events}


def test_shards_partition_the_work(engine, store):
    events = _bulk(store, 10)
    now = datetime(2024, 5, 1)
    seen = []
    for index in range(3):
        report = engine.run_sweep_tick(now, shard=(index, 3))
        seen.extend(n.event_id for n in report.reminders)
    assert sorted(seen) == [e.id for e in events]


def test_one_failing_event_does_not_stop_the_tick(engine, store, monkeypatch):
    events = _bulk(store, 3)
    real_process = engine.scheduler.process

    def flaky(event, now):
        if event.id == events[1].id:
            raise RuntimeError("boom")
        return real_process(event, now)

    monkeypatch.setattr(engine.scheduler, "process", flaky)
    report = engine.run_sweep_tick(datetime(2024, 5, 1))
    assert report.errors == 1
    assert {n.event_id for n in report.reminders} == {events[0].id, events[2].id}


class _BrokenNotifier(Notifier):
    def emit(self, notice):
        raise ConnectionError("delivery service down")


def test_failed_hand_off_stays_pending(catalog, directory, store):
    engine = ComplianceEngine(catalog, directory, store, _BrokenNotifier())
    engine.create_event("acme", now=datetime(2024, 5, 1))
    report = engine.run_sweep_tick(datetime(2024, 5, 1))

    assert len(report.reminders) == 1
    assert report.relay_failed == 1
    assert len(store.pending_notices(10)) == 1
    # the reminder itself is recorded exactly once
    assert store.list_events()[0].reminders_sent == 1


def test_generate_all_then_dashboard(engine):
    report = engine.generate_all(datetime(2024, 5, 1))
    assert len(report.created) == 4
    snap = engine.dashboard.snapshot(datetime(2024, 5, 1))
    assert snap["counts"]["UPCOMING"] == 4


def test_reminder_is_dropped_when_completion_wins(engine, store, notifier):
    ev = engine.create_event("acme", now=datetime(2024, 5, 1))
    snapshot = store.get_event(ev.id)
    engine.complete_event(ev.id, datetime(2024, 5, 1))

    assert engine.scheduler.process(snapshot, datetime(2024, 5, 1)) is None
    stored = store.get_event(ev.id)
    assert stored.status is EventStatus.COMPLETED
    assert stored.reminders_sent == 0
    assert store.pending_notices(10) == []


def test_backfill_cursor_resumes_across_limited_ticks(engine, store):
    for period in ("2030", "2031"):
        store.insert_event(
            ComplianceEvent("acme", "Annual Report", period, date(int(period), 6, 1), status=EventStatus.COMPLETED)
        )
    now = datetime(2024, 5, 1)

    first = engine.run_sweep_tick(now, limit=1)
    assert first.regenerated == []
    assert first.backfill_cursor is not None

    second = engine.run_sweep_tick(now, limit=1, backfill_after=first.backfill_cursor)
    assert [e.period for e in second.regenerated] == ["2032"]
    assert second.summary()["backfillCursor"] == second.backfill_cursor

    third = engine.run_sweep_tick(now, limit=1, backfill_after=second.backfill_cursor)
    assert third.regenerated == []
    assert third.backfill_cursor is None
    assert sorted(e.period for e in store.list_events(business_entity_id="acme")) == ["2030", "2031", "2032"]


def test_engine_closes_its_notifier(catalog, directory, store):
    class ClosingNotifier(Notifier):
        closed = False

        def emit(self, notice):
            pass

        def close(self):
            self.closed = True

    sink = ClosingNotifier()
    with ComplianceEngine(catalog, directory, store, sink):
        pass
    assert sink.closed
