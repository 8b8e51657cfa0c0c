"""
duewatch.store
==============

The persistence port and its in-memory adapter.

:class:`EventStore` is the only stateful dependency the engine manages.
Every mutation it offers is a compare-and-swap: the write names the value
it expects to replace and fails with :class:`~duewatch.errors.StaleWriteError`
when another worker got there first.  Relational and in-memory adapters
satisfy the same contract, so the business logic never knows which one
it is talking to.

:class:`InMemoryEventStore` uses only the standard library so the engine
can be unit-tested without a database.
"""

from __future__ import annotations

import itertools
import threading
import zlib
from abc import ABC, abstractmethod
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Tuple

from .errors import ConfigurationError, EventNotFound, IdempotencyConflict, StaleWriteError
from .lifecycle import check_transition
from .models import (
    ComplianceEvent,
    ComplianceRequirement,
    EventStatus,
    Frequency,
    ReminderBand,
    ReminderNotice,
    as_naive_utc,
)

Shard = Tuple[int, int]
OPEN_STATUSES = (EventStatus.UPCOMING, EventStatus.OVERDUE)

# Far-band threshold; nothing further out can need a reminder or a status change.
SWEEP_HORIZON_DAYS = 90


def shard_of(business_entity_id: str, count: int) -> int:
    """Stable shard index of an entity for *count* workers."""
    return zlib.crc32(business_entity_id.encode("utf-8")) % count


def parse_shard(text: str) -> Shard:
    """``"2/4"`` → ``(2, 4)``; index is zero-based."""
    index, _, count = text.partition("/")
    shard = (int(index), int(count))
    if shard[1] < 1 or not 0 <= shard[0] < shard[1]:
        raise ValueError(f"invalid shard {text!r}; expected INDEX/COUNT with 0 <= INDEX < COUNT")
    return shard


class EventStore(ABC):
    """
    Abstract persistence port for compliance events and reminder notices.

    Adapters implement the primitive operations; the idempotent insert is
    built on top of them here so every adapter resolves insert races the
    same way.
    """

    catalog = None

    # --------------------------------------------------------- requirements
    def bind_catalog(self, catalog) -> None:
        """Attach the requirement catalog :pymeth:`find_requirement` reads from."""
        self.catalog = catalog

    def find_requirement(self, state: str, entity_type: str) -> Optional[ComplianceRequirement]:
        """Active requirement for (state, entity_type), or ``None``."""
        if self.catalog is None:
            raise ConfigurationError("no requirement catalog bound to this store")
        return self.catalog.find(state, entity_type)

    # ------------------------------------------------------------------ reads
    @abstractmethod
    def get_event(self, event_id: int) -> ComplianceEvent:
        """Return the event or raise :class:`EventNotFound`."""

    @abstractmethod
    def find_event(self, business_entity_id: str, obligation_type: str, period: str) -> Optional[ComplianceEvent]:
        """Return the event stored under the uniqueness key, if any."""

    @abstractmethod
    def list_events(
        self,
        business_entity_id: Optional[str] = None,
        status: Optional[EventStatus] = None,
        obligation_type: Optional[str] = None,
    ) -> List[ComplianceEvent]:
        """All events, optionally filtered, ordered by id."""

    @abstractmethod
    def list_events_due_for_sweep(
        self,
        now: datetime,
        limit: int,
        after_id: Optional[int] = None,
        shard: Optional[Shard] = None,
    ) -> List[ComplianceEvent]:
        """
        Open events due within the sweep horizon (or already past due),
        ordered by id, starting after *after_id*, at most *limit* rows.
        """

    @abstractmethod
    def list_completed_recurring(self, after_id: Optional[int], limit: int) -> List[ComplianceEvent]:
        """Completed events of recurring obligations, ordered by id."""

    @abstractmethod
    def pending_notices(self, limit: int) -> List[ReminderNotice]:
        """Reminder notices not yet handed to the notifier, oldest first."""

    # ----------------------------------------------------------------- writes
    @abstractmethod
    def insert_event(self, event: ComplianceEvent) -> ComplianceEvent:
        """Insert and return the stored event; raise :class:`IdempotencyConflict` on a key clash."""

    @abstractmethod
    def cas_update_status(
        self,
        event_id: int,
        expected: EventStatus,
        new: EventStatus,
        at: datetime,
    ) -> ComplianceEvent:
        """Set status to *new* only if it is still *expected*; else raise :class:`StaleWriteError`."""

    @abstractmethod
    def cas_update_reminder_state(
        self,
        event_id: int,
        expected_count: int,
        new_count: int,
        sent_at: datetime,
        band: ReminderBand,
        notice: ReminderNotice,
    ) -> ReminderNotice:
        """
        Record a sent reminder and enqueue *notice* in one atomic write,
        only if ``reminders_sent`` still equals *expected_count*.
        """

    @abstractmethod
    def mark_notice_dispatched(self, notice_id: int, at: datetime) -> bool:
        """Claim a notice for hand-off; False if another relay already did."""

    @abstractmethod
    def release_notice(self, notice_id: int) -> None:
        """Return a claimed notice to the pending queue after a failed hand-off."""

    def close(self) -> None:
        """Release adapter resources (no-op by default)."""

    # ------------------------------------------------------------- composite
    def insert_event_if_absent(self, event: ComplianceEvent) -> Tuple[ComplianceEvent, bool]:
        """
        Insert *event* unless its key is taken.

        Returns ``(stored_event, created)``.  A lost insert race is not an
        error: the winner's row is returned with ``created=False``.
        """
        existing = self.find_event(*event.key)
        if existing is not None:
            return existing, False
        try:
            return self.insert_event(event), True
        except IdempotencyConflict:
            winner = self.find_event(*event.key)
            if winner is None:
                raise
            return winner, False

    def __enter__(self) -> "EventStore":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


# ---------------------------------------------------------------------------
# Write-side validation shared by adapters
# ---------------------------------------------------------------------------
def validate_reminder_write(
    current: ComplianceEvent,
    expected_count: int,
    new_count: int,
    sent_at: datetime,
) -> None:
    """Raise :class:`StaleWriteError` unless the reminder CAS may proceed."""
    if new_count <= expected_count:
        raise ValueError("reminders_sent must increase")
    if current.status.terminal:
        raise StaleWriteError(current.id, "status")
    if current.reminders_sent != expected_count:
        raise StaleWriteError(current.id, "reminders_sent")
    if current.last_reminder_sent_at is not None and sent_at < current.last_reminder_sent_at:
        raise StaleWriteError(current.id, "last_reminder_sent_at")


def sweep_cutoff(now: datetime) -> datetime:
    return as_naive_utc(now) + timedelta(days=SWEEP_HORIZON_DAYS)


class InMemoryEventStore(EventStore):
    """
    Dictionary-backed store guarded by a lock.

    Events are copied on the way in and out, so callers never hold a
    reference to the stored row and every change goes through a CAS.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._events: Dict[int, ComplianceEvent] = {}
        self._keys: Dict[Tuple[str, str, str], int] = {}
        self._notices: Dict[int, ReminderNotice] = {}
        self._event_ids = itertools.count(1)
        self._notice_ids = itertools.count(1)

    # ------------------------------------------------------------------ reads
    def get_event(self, event_id: int) -> ComplianceEvent:
        with self._lock:
            try:
                return self._events[event_id].copy()
            except KeyError:
                raise EventNotFound(event_id) from None

    def find_event(self, business_entity_id, obligation_type, period):
        with self._lock:
            event_id = self._keys.get((business_entity_id, obligation_type, period))
            return None if event_id is None else self._events[event_id].copy()

    def list_events(self, business_entity_id=None, status=None, obligation_type=None):
        with self._lock:
            return [
                ev.copy()
                for _, ev in sorted(self._events.items())
                if (business_entity_id is None or ev.business_entity_id == business_entity_id)
                and (status is None or ev.status is status)
                and (obligation_type is None or ev.obligation_type == obligation_type)
            ]

    def list_events_due_for_sweep(self, now, limit, after_id=None, shard=None):
        cutoff = sweep_cutoff(now).date()
        out: List[ComplianceEvent] = []
        with self._lock:
            for event_id in sorted(self._events):
                if after_id is not None and event_id <= after_id:
                    continue
                ev = self._events[event_id]
                if ev.status not in OPEN_STATUSES or ev.due_date > cutoff:
                    continue
                if shard is not None and shard_of(ev.business_entity_id, shard[1]) != shard[0]:
                    continue
                out.append(ev.copy())
                if len(out) >= limit:
                    break
        return out

    def list_completed_recurring(self, after_id, limit):
        with self._lock:
            rows = [
                ev.copy()
                for event_id, ev in sorted(self._events.items())
                if (after_id is None or event_id > after_id)
                and ev.status is EventStatus.COMPLETED
                and ev.frequency is not Frequency.ONE_TIME
            ]
        return rows[:limit]

    def pending_notices(self, limit):
        with self._lock:
            pending = [n for _, n in sorted(self._notices.items()) if n.dispatched_at is None]
            return [_copy_notice(n) for n in pending[:limit]]

    # ----------------------------------------------------------------- writes
    def insert_event(self, event):
        with self._lock:
            if event.key in self._keys:
                raise IdempotencyConflict(event.key)
            stored = event.copy(id=next(self._event_ids))
            self._events[stored.id] = stored
            self._keys[stored.key] = stored.id
            return stored.copy()

    def cas_update_status(self, event_id, expected, new, at):
        with self._lock:
            current = self._stored(event_id)
            if current.status is not expected:
                raise StaleWriteError(event_id, "status")
            check_transition(expected, new)
            current.status = new
            current.updated_at = at
            if new is EventStatus.COMPLETED:
                current.completed_at = at
            return current.copy()

    def cas_update_reminder_state(self, event_id, expected_count, new_count, sent_at, band, notice):
        with self._lock:
            current = self._stored(event_id)
            validate_reminder_write(current, expected_count, new_count, sent_at)
            current.reminders_sent = new_count
            current.last_reminder_sent_at = sent_at
            current.last_reminder_band = band
            current.updated_at = sent_at
            stored = _copy_notice(notice)
            stored.id = next(self._notice_ids)
            self._notices[stored.id] = stored
            return _copy_notice(stored)

    def mark_notice_dispatched(self, notice_id, at):
        with self._lock:
            notice = self._notices.get(notice_id)
            if notice is None or notice.dispatched_at is not None:
                return False
            notice.dispatched_at = at
            return True

    def release_notice(self, notice_id):
        with self._lock:
            notice = self._notices.get(notice_id)
            if notice is not None:
                notice.dispatched_at = None

    # ------------------------------------------------------------- internals
    def _stored(self, event_id: int) -> ComplianceEvent:
        try:
            return self._events[event_id]
        except KeyError:
            raise EventNotFound(event_id) from None

    def __len__(self) -> int:
        return len(self._events)


def _copy_notice(notice: ReminderNotice) -> ReminderNotice:
    return replace(notice)
