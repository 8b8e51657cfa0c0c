"""
tests/test_store.py
===================

Unit tests for the in-memory event store and the shared store helpers.
"""

from datetime import date, datetime

import pytest

from duewatch.errors import ConfigurationError, EventNotFound, IdempotencyConflict, IllegalTransition, StaleWriteError
from duewatch.models import ComplianceEvent, EventStatus, ReminderBand, ReminderNotice
from duewatch.store import InMemoryEventStore, parse_shard, shard_of


def _event(entity="acme", period="2024", due=date(2024, 6, 1)):
    return ComplianceEvent(entity, "Annual Report", period, due)


def _notice(ev, seq=1):
    return ReminderNotice(ev.id, ev.business_entity_id, ev.due_date, 31, ReminderBand.SOON, seq)


def test_insert_assigns_id_and_copies(store):
    original = _event()
    stored = store.insert_event(original)
    assert stored.id == 1
    assert original.id is None

    stored.status = EventStatus.COMPLETED
    assert store.get_event(stored.id).status is EventStatus.UPCOMING


def test_duplicate_key_conflicts(store):
    store.insert_event(_event())
    with pytest.raises(IdempotencyConflict):
        store.insert_event(_event())


def test_insert_if_absent_returns_existing(store):
    first, created = store.insert_event_if_absent(_event())
    again, created_again = store.insert_event_if_absent(_event())
    assert created and not created_again
    assert again.id == first.id


def test_get_missing(store):
    with pytest.raises(EventNotFound):
        store.get_event(42)


def test_status_cas(store):
    ev = store.insert_event(_event())
    at = datetime(2024, 6, 2)
    updated = store.cas_update_status(ev.id, EventStatus.UPCOMING, EventStatus.OVERDUE, at)
    assert updated.status is EventStatus.OVERDUE
    assert updated.updated_at == at

    with pytest.raises(StaleWriteError):
        store.cas_update_status(ev.id, EventStatus.UPCOMING, EventStatus.COMPLETED, at)
    with pytest.raises(IllegalTransition):
        store.cas_update_status(ev.id, EventStatus.OVERDUE, EventStatus.UPCOMING, at)


def test_reminder_cas_rejects_stale_count_and_backwards_time(store):
    ev = store.insert_event(_event())
    store.cas_update_reminder_state(ev.id, 0, 1, datetime(2024, 5, 2), ReminderBand.SOON, _notice(ev))

    with pytest.raises(StaleWriteError):
        store.cas_update_reminder_state(ev.id, 0, 1, datetime(2024, 5, 3), ReminderBand.SOON, _notice(ev))
    with pytest.raises(StaleWriteError):
        store.cas_update_reminder_state(ev.id, 1, 2, datetime(2024, 5, 1), ReminderBand.URGENT, _notice(ev, 2))
    with pytest.raises(ValueError):
        store.cas_update_reminder_state(ev.id, 1, 1, datetime(2024, 5, 4), ReminderBand.URGENT, _notice(ev, 2))

    assert store.get_event(ev.id).reminders_sent == 1
    assert len(store.pending_notices(10)) == 1


def test_sweep_listing_skips_closed_and_far_events(store):
    due_soon = store.insert_event(_event("a"))
    store.insert_event(_event("b", due=date(2025, 6, 1)))
    done = store.insert_event(_event("c"))
    store.cas_update_status(done.id, EventStatus.UPCOMING, EventStatus.COMPLETED, datetime(2024, 5, 1))

    rows = store.list_events_due_for_sweep(datetime(2024, 5, 1), 10)
    assert [r.id for r in rows] == [due_soon.id]


def test_parse_shard():
    assert parse_shard("1/4") == (1, 4)
    for bad in ("4/4", "-1/2", "0/0", "x/2"):
        with pytest.raises(ValueError):
            parse_shard(bad)


def test_shard_of_is_stable():
    assert shard_of("acme", 8) == shard_of("acme", 8)
    assert 0 <= shard_of("acme", 8) < 8


def test_find_requirement_reads_bound_catalog(store, catalog):
    with pytest.raises(ConfigurationError):
        store.find_requirement("DE", "LLC")
    store.bind_catalog(catalog)
    assert store.find_requirement("de", "llc").fixed_due_date == (6, 1)
    assert store.find_requirement("ZZ", "LLC") is None


class _RacingStore(InMemoryEventStore):
    """Misses the first lookup, as if another worker inserted right after it."""

    def __init__(self):
        super().__init__()
        self.lookups = 0

    def find_event(self, business_entity_id, obligation_type, period):
        self.lookups += 1
        if self.lookups == 1:
            return None
        return super().find_event(business_entity_id, obligation_type, period)


def test_insert_if_absent_returns_winner_after_lost_race():
    racing = _RacingStore()
    winner = racing.insert_event(_event())

    stored, created = racing.insert_event_if_absent(_event())
    assert not created
    assert stored.id == winner.id
    assert len(racing.list_events()) == 1


def test_reminder_cas_refuses_completed_event(store):
    ev = store.insert_event(_event())
    store.cas_update_status(ev.id, EventStatus.UPCOMING, EventStatus.COMPLETED, datetime(2024, 5, 1))

    with pytest.raises(StaleWriteError):
        store.cas_update_reminder_state(ev.id, 0, 1, datetime(2024, 5, 1), ReminderBand.SOON, _notice(ev))
    assert store.get_event(ev.id).reminders_sent == 0
    assert store.pending_notices(10) == []


def test_list_events_filters_by_obligation(store):
    store.insert_event(_event())
    store.insert_event(ComplianceEvent("acme", "Franchise Tax", "2024", date(2024, 6, 1)))
    assert [e.obligation_type for e in store.list_events(obligation_type="Franchise Tax")] == ["Franchise Tax"]
