"""
duewatch.store_db
=================

SQL-backed implementations of the persistence port and the entity
directory.

Compare-and-swap writes are conditional ``UPDATE ... WHERE`` statements;
the affected-row count tells whether this writer won.  A reminder write
updates the counters and inserts its outbox row in one transaction, so
either both land or neither does.
"""

from __future__ import annotations

import logging
from typing import Iterator, List, Optional

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlmodel import col, select

from duewatch.db import BusinessEntityDB, ComplianceEventDB, Database, ReminderNoticeDB
from duewatch.directory import EntityDirectory
from duewatch.errors import EntityNotFound, EventNotFound, IdempotencyConflict, StaleWriteError
from duewatch.lifecycle import check_transition
from duewatch.models import BusinessEntity, ComplianceEvent, EventStatus, Frequency
from duewatch.store import OPEN_STATUSES, EventStore, sweep_cutoff

logger = logging.getLogger(__name__)


class SQLEventStore(EventStore):
    """
    :class:`EventStore` over a :class:`~duewatch.db.Database` handle.

    The store does not own the handle; whoever opened the database closes
    it.
    """

    def __init__(self, db: Database) -> None:
        self.db = db

    # ------------------------------------------------------------------ reads
    def get_event(self, event_id):
        with self.db.session() as s:
            row = s.get(ComplianceEventDB, event_id)
            if row is None:
                raise EventNotFound(event_id)
            return row.to_event()

    def find_event(self, business_entity_id, obligation_type, period):
        stmt = select(ComplianceEventDB).where(
            ComplianceEventDB.business_entity_id == business_entity_id,
            ComplianceEventDB.obligation_type == obligation_type,
            ComplianceEventDB.period == period,
        )
        with self.db.session() as s:
            row = s.exec(stmt).first()
            return row.to_event() if row else None

    def list_events(self, business_entity_id=None, status=None, obligation_type=None):
        stmt = select(ComplianceEventDB)
        if business_entity_id is not None:
            stmt = stmt.where(ComplianceEventDB.business_entity_id == business_entity_id)
        if status is not None:
            stmt = stmt.where(ComplianceEventDB.status == status)
        if obligation_type is not None:
            stmt = stmt.where(ComplianceEventDB.obligation_type == obligation_type)
        with self.db.session() as s:
            return [row.to_event() for row in s.exec(stmt.order_by(col(ComplianceEventDB.id))).all()]

    def list_events_due_for_sweep(self, now, limit, after_id=None, shard=None):
        stmt = select(ComplianceEventDB).where(
            col(ComplianceEventDB.status).in_(OPEN_STATUSES),
            ComplianceEventDB.due_date <= sweep_cutoff(now).date(),
        )
        if after_id is not None:
            stmt = stmt.where(col(ComplianceEventDB.id) > after_id)
        if shard is not None:
            index, count = shard
            stmt = stmt.where(col(ComplianceEventDB.shard_key) % count == index)
        stmt = stmt.order_by(col(ComplianceEventDB.id)).limit(limit)
        with self.db.session() as s:
            return [row.to_event() for row in s.exec(stmt).all()]

    def list_completed_recurring(self, after_id, limit):
        stmt = select(ComplianceEventDB).where(
            ComplianceEventDB.status == EventStatus.COMPLETED,
            ComplianceEventDB.frequency != Frequency.ONE_TIME,
        )
        if after_id is not None:
            stmt = stmt.where(col(ComplianceEventDB.id) > after_id)
        stmt = stmt.order_by(col(ComplianceEventDB.id)).limit(limit)
        with self.db.session() as s:
            return [row.to_event() for row in s.exec(stmt).all()]

    def pending_notices(self, limit):
        stmt = (
            select(ReminderNoticeDB)
            .where(col(ReminderNoticeDB.dispatched_at).is_(None))
            .order_by(col(ReminderNoticeDB.id))
            .limit(limit)
        )
        with self.db.session() as s:
            return [row.to_notice() for row in s.exec(stmt).all()]

    # ----------------------------------------------------------------- writes
    def insert_event(self, event):
        row = ComplianceEventDB.from_event(event.copy(id=None))
        with self.db.session() as s:
            s.add(row)
            try:
                s.commit()
            except IntegrityError as exc:
                s.rollback()
                raise IdempotencyConflict(event.key) from exc
            s.refresh(row)
            return row.to_event()

    def cas_update_status(self, event_id, expected, new, at):
        check_transition(expected, new)
        values = {"status": new, "updated_at": at}
        if new is EventStatus.COMPLETED:
            values["completed_at"] = at
        stmt = (
            update(ComplianceEventDB)
            .where(col(ComplianceEventDB.id) == event_id, col(ComplianceEventDB.status) == expected)
            .values(**values)
        )
        with self.db.session() as s:
            if s.connection().execute(stmt).rowcount != 1:
                s.rollback()
                self._raise_stale(s, event_id, "status")
            s.commit()
        return self.get_event(event_id)

    def cas_update_reminder_state(self, event_id, expected_count, new_count, sent_at, band, notice):
        if new_count <= expected_count:
            raise ValueError("reminders_sent must increase")
        last_sent = col(ComplianceEventDB.last_reminder_sent_at)
        stmt = (
            update(ComplianceEventDB)
            .where(
                col(ComplianceEventDB.id) == event_id,
                col(ComplianceEventDB.reminders_sent) == expected_count,
                col(ComplianceEventDB.status).in_(OPEN_STATUSES),
                last_sent.is_(None) | (last_sent <= sent_at),
            )
            .values(
                reminders_sent=new_count,
                last_reminder_sent_at=sent_at,
                last_reminder_band=band,
                updated_at=sent_at,
            )
        )
        row = ReminderNoticeDB.from_notice(notice)
        row.id = None
        with self.db.session() as s:
            if s.connection().execute(stmt).rowcount != 1:
                s.rollback()
                self._raise_stale(s, event_id, "reminders_sent")
            s.add(row)
            try:
                s.commit()
            except IntegrityError as exc:
                s.rollback()
                raise StaleWriteError(event_id, "reminders_sent") from exc
            s.refresh(row)
            return row.to_notice()

    def mark_notice_dispatched(self, notice_id, at):
        stmt = (
            update(ReminderNoticeDB)
            .where(col(ReminderNoticeDB.id) == notice_id, col(ReminderNoticeDB.dispatched_at).is_(None))
            .values(dispatched_at=at)
        )
        with self.db.session() as s:
            claimed = s.connection().execute(stmt).rowcount == 1
            s.commit()
        return claimed

    def release_notice(self, notice_id):
        stmt = update(ReminderNoticeDB).where(col(ReminderNoticeDB.id) == notice_id).values(dispatched_at=None)
        with self.db.session() as s:
            s.connection().execute(stmt)
            s.commit()

    # ------------------------------------------------------------- internals
    @staticmethod
    def _raise_stale(s, event_id: int, field: str) -> None:
        if s.get(ComplianceEventDB, event_id) is None:
            raise EventNotFound(event_id)
        logger.debug(f"CAS on event {event_id} ({field}) lost")
        raise StaleWriteError(event_id, field)


class DBEntityDirectory(EntityDirectory):
    """
    Entity directory backed by the ``business_entities`` table.

    Methods mirror :class:`~duewatch.directory.InMemoryEntityDirectory`.
    """

    def __init__(self, db: Database) -> None:
        self.db = db

    def add(self, ent: BusinessEntity) -> None:
        """Insert or update an entity row."""
        with self.db.session() as s:
            s.merge(BusinessEntityDB.from_entity(ent))
            s.commit()

    def get_entity(self, entity_id: str) -> BusinessEntity:
        with self.db.session() as s:
            row = s.get(BusinessEntityDB, entity_id)
            if row is None:
                raise EntityNotFound(entity_id)
            return row.to_entity()

    def __iter__(self) -> Iterator[BusinessEntity]:
        with self.db.session() as s:
            rows: List[BusinessEntityDB] = list(s.exec(select(BusinessEntityDB).order_by(col(BusinessEntityDB.id))).all())
        return iter([row.to_entity() for row in rows])

    def __len__(self) -> int:
        return sum(1 for _ in self)
