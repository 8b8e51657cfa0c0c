"""
duewatch.db
===========

SQL persistence layer for duewatch.

This module exposes:

* ``Database`` – an explicit handle owning the SQLModel engine, with an
  ``open()`` / ``close()`` lifecycle (also usable as a context manager)
* ORM models mirroring :pymod:`duewatch.models` with ``from_*`` / ``to_*``
  converters
* ``create_all()`` on the handle to create tables at first run

Nothing here is a module-level singleton; the handle is passed to
whatever needs it.
"""

from __future__ import annotations

import zlib
from datetime import date, datetime
from typing import Optional

from sqlalchemy import BigInteger, Column, DateTime, UniqueConstraint
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool
from sqlmodel import Field, Session, SQLModel, create_engine

from duewatch.models import (
    BusinessEntity,
    ComplianceEvent,
    EventStatus,
    Frequency,
    Priority,
    ReminderBand,
    ReminderNotice,
    utcnow,
)

_MEMORY_URLS = {"sqlite://", "sqlite:///:memory:"}


# ---------------------------------------------------------------------------
# Database handle
# ---------------------------------------------------------------------------
class Database:
    """
    Owns one engine and hands out sessions.

    Example
    -------
    >>> with Database("sqlite://") as db:
    ...     db.create_all()
    ...     with db.session() as s:
    ...         ...
    """

    def __init__(self, url: str, echo: bool = False) -> None:
        self.url = url
        self.echo = echo
        self._engine: Optional[Engine] = None

    def open(self) -> "Database":
        if self._engine is None:
            kwargs = {"echo": self.echo}
            if self.url.startswith("sqlite"):
                kwargs["connect_args"] = {"check_same_thread": False}
                if self.url in _MEMORY_URLS:
                    # one shared connection, otherwise every session sees an empty DB
                    kwargs["poolclass"] = StaticPool
            self._engine = create_engine(self.url, **kwargs)
        return self

    @property
    def engine(self) -> Engine:
        if self._engine is None:
            raise RuntimeError("database is closed; call open() first")
        return self._engine

    @property
    def is_open(self) -> bool:
        return self._engine is not None

    def session(self) -> Session:
        """Return a new Session bound to this handle's engine."""
        return Session(self.engine)

    def create_all(self) -> None:
        """Create all tables (safe if they already exist)."""
        SQLModel.metadata.create_all(self.engine)

    def close(self) -> None:
        if self._engine is not None:
            self._engine.dispose()
            self._engine = None

    def __enter__(self) -> "Database":
        return self.open()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


def shard_hash(business_entity_id: str) -> int:
    return zlib.crc32(business_entity_id.encode("utf-8"))


# ---------------------------------------------------------------------------
# ORM models
# ---------------------------------------------------------------------------
class BusinessEntityDB(SQLModel, table=True):
    """Local mirror of the directory fields duewatch reads."""

    __tablename__ = "business_entities"

    id: str = Field(primary_key=True, index=True)
    name: Optional[str] = None
    state: str = Field(index=True)
    entity_type: str
    formation_date: date

    @classmethod
    def from_entity(cls, ent: BusinessEntity) -> "BusinessEntityDB":
        return cls(
            id=ent.id,
            name=ent.name,
            state=ent.state,
            entity_type=ent.entity_type,
            formation_date=ent.formation_date,
        )

    def to_entity(self) -> BusinessEntity:
        return BusinessEntity(
            id=self.id,
            state=self.state,
            entity_type=self.entity_type,
            formation_date=self.formation_date,
            name=self.name,
        )


class ComplianceEventDB(SQLModel, table=True):
    """
    SQL-backed representation of a :class:`duewatch.models.ComplianceEvent`.

    The unique constraint on (entity, obligation, period) is what makes
    concurrent inserts idempotent; ``shard_key`` lets workers split the
    table without coordinating.
    """

    __tablename__ = "compliance_events"
    __table_args__ = (
        UniqueConstraint("business_entity_id", "obligation_type", "period", name="uq_compliance_event_key"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    business_entity_id: str = Field(index=True)
    shard_key: int = Field(default=0, sa_column=Column(BigInteger, nullable=False, index=True))
    obligation_type: str
    period: str
    due_date: date = Field(index=True)
    frequency: Frequency = Frequency.ANNUAL
    status: EventStatus = Field(default=EventStatus.UPCOMING, index=True)
    priority: Priority = Priority.HIGH
    estimated_cost: int = 0
    filing_link: Optional[str] = None
    reminders_sent: int = 0
    last_reminder_sent_at: Optional[datetime] = Field(default=None, sa_column=Column(DateTime, nullable=True))
    last_reminder_band: Optional[ReminderBand] = None
    completed_at: Optional[datetime] = Field(default=None, sa_column=Column(DateTime, nullable=True))
    created_at: datetime = Field(default_factory=utcnow, sa_column=Column(DateTime, nullable=False))
    updated_at: datetime = Field(default_factory=utcnow, sa_column=Column(DateTime, nullable=False))

    # ---------------------------------------------------------------------
    # Converters
    # ---------------------------------------------------------------------
    @classmethod
    def from_event(cls, ev: ComplianceEvent) -> "ComplianceEventDB":
        return cls(
            id=ev.id,
            business_entity_id=ev.business_entity_id,
            shard_key=shard_hash(ev.business_entity_id),
            obligation_type=ev.obligation_type,
            period=ev.period,
            due_date=ev.due_date,
            frequency=ev.frequency,
            status=ev.status,
            priority=ev.priority,
            estimated_cost=ev.estimated_cost,
            filing_link=ev.filing_link,
            reminders_sent=ev.reminders_sent,
            last_reminder_sent_at=ev.last_reminder_sent_at,
            last_reminder_band=ev.last_reminder_band,
            completed_at=ev.completed_at,
            created_at=ev.created_at,
            updated_at=ev.updated_at,
        )

    def to_event(self) -> ComplianceEvent:
        return ComplianceEvent(
            id=self.id,
            business_entity_id=self.business_entity_id,
            obligation_type=self.obligation_type,
            period=self.period,
            due_date=self.due_date,
            frequency=self.frequency,
            status=self.status,
            priority=self.priority,
            estimated_cost=self.estimated_cost,
            filing_link=self.filing_link,
            reminders_sent=self.reminders_sent,
            last_reminder_sent_at=self.last_reminder_sent_at,
            last_reminder_band=self.last_reminder_band,
            completed_at=self.completed_at,
            created_at=self.created_at,
            updated_at=self.updated_at,
        )


class ReminderNoticeDB(SQLModel, table=True):
    """Outbox row written in the same transaction as the reminder counters."""

    __tablename__ = "reminder_notices"
    __table_args__ = (
        UniqueConstraint("event_id", "sequence", name="uq_reminder_notice_sequence"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    event_id: int = Field(foreign_key="compliance_events.id", index=True)
    business_entity_id: str
    due_date: date
    days_until_due: int
    band: ReminderBand
    sequence: int
    estimated_cost: int = 0
    filing_link: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow, sa_column=Column(DateTime, nullable=False))
    dispatched_at: Optional[datetime] = Field(default=None, sa_column=Column(DateTime, nullable=True, index=True))

    @classmethod
    def from_notice(cls, n: ReminderNotice) -> "ReminderNoticeDB":
        return cls(
            id=n.id,
            event_id=n.event_id,
            business_entity_id=n.business_entity_id,
            due_date=n.due_date,
            days_until_due=n.days_until_due,
            band=n.band,
            sequence=n.sequence,
            estimated_cost=n.estimated_cost,
            filing_link=n.filing_link,
            created_at=n.created_at,
            dispatched_at=n.dispatched_at,
        )

    def to_notice(self) -> ReminderNotice:
        return ReminderNotice(
            id=self.id,
            event_id=self.event_id,
            business_entity_id=self.business_entity_id,
            due_date=self.due_date,
            days_until_due=self.days_until_due,
            band=self.band,
            sequence=self.sequence,
            estimated_cost=self.estimated_cost,
            filing_link=self.filing_link,
            created_at=self.created_at,
            dispatched_at=self.dispatched_at,
        )


# ---------------------------------------------------------------------------
# Lightweight CLI
# ---------------------------------------------------------------------------
if __name__ == "__main__":
    """
    Quick bootstrap helper.

    Examples
    --------
    $ python -m duewatch.db --create        # first-time table creation
    """
    import argparse

    from duewatch.settings import settings

    parser = argparse.ArgumentParser(prog="python -m duewatch.db", description="duewatch DB utilities")
    parser.add_argument("--create", action="store_true", help="create tables")
    parser.add_argument("--url", default=settings.db_url, help="database URL (default from settings)")
    args = parser.parse_args()

    if args.create:
        with Database(args.url) as db:
            db.create_all()
        print(f"duewatch schema initialised at {args.url}")
