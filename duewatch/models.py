"""
duewatch.models
===============

Dataclasses and enums for filing policy, compliance events and the
reminder notices handed to the delivery collaborator.

These objects carry **no** external-library dependencies so that the
pure parts of duewatch (catalog, calculator, band logic) can be unit
tested without a database.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field, replace
from datetime import date, datetime, time, timedelta, timezone
from enum import Enum, auto
from typing import Optional


class _NamedEnum(Enum):
    """Enum whose ``str()`` is its name, parseable from loose spellings."""

    def __str__(self) -> str:        # nicer REPL display
        return self.name

    @classmethod
    def parse(cls, value):
        """Accept a member, its name, or a CamelCase / spaced spelling."""
        if isinstance(value, cls):
            return value
        key = "".join(ch for ch in str(value).upper() if ch.isalnum())
        for member in cls:
            if member.name.replace("_", "") == key:
                return member
        raise ValueError(f"unknown {cls.__name__}: {value!r}")


class DueDateType(_NamedEnum):
    """How a requirement anchors its due date."""
    FIXED_DATE = auto()
    FORMATION_BASED = auto()


class Frequency(_NamedEnum):
    """Filing cycle length of an obligation."""
    ONE_TIME = auto()
    ANNUAL = auto()
    BIENNIAL = auto()
    QUARTERLY = auto()
    MONTHLY = auto()

    @property
    def months(self) -> int:
        """Length of one cycle in months (0 for one-time obligations)."""
        return _CYCLE_MONTHS[self]

    @property
    def recurring(self) -> bool:
        return self is not Frequency.ONE_TIME


_CYCLE_MONTHS = {
    Frequency.ONE_TIME: 0,
    Frequency.ANNUAL: 12,
    Frequency.BIENNIAL: 24,
    Frequency.QUARTERLY: 3,
    Frequency.MONTHLY: 1,
}


class EventStatus(_NamedEnum):
    """Life-cycle states of a compliance event.

    ``EXEMPT`` is reserved: no code path produces it.
    """
    UPCOMING = auto()
    OVERDUE = auto()
    COMPLETED = auto()
    EXEMPT = auto()

    @property
    def terminal(self) -> bool:
        return self in (EventStatus.COMPLETED, EventStatus.EXEMPT)


class ReminderBand(_NamedEnum):
    """Proximity range between *now* and a due date, escalating downward."""
    FAR = auto()
    SOON = auto()
    URGENT = auto()
    IMMINENT = auto()
    OVERDUE = auto()


class Priority(_NamedEnum):
    HIGH = auto()
    MEDIUM = auto()
    LOW = auto()


# ---------------------------------------------------------------------------
# Time helpers
# ---------------------------------------------------------------------------
def utcnow() -> datetime:
    """Current UTC time as a naive datetime (the storage convention)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_naive_utc(moment: datetime | date) -> datetime:
    """Normalise *moment* to a naive UTC datetime.

    Plain dates are taken as midnight of that day.
    """
    if not isinstance(moment, datetime):
        return datetime.combine(moment, time.min)
    if moment.tzinfo is not None:
        moment = moment.astimezone(timezone.utc).replace(tzinfo=None)
    return moment


def days_until(due: date, now: datetime) -> int:
    """Whole days from *now* to the start of *due*, rounded up.

    Negative once the due date has fully passed.
    """
    delta = datetime.combine(due, time.min) - as_naive_utc(now)
    return math.ceil(delta / timedelta(days=1))


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class BusinessEntity:
    """
    The slice of an externally owned business entity that duewatch reads.

    Parameters
    ----------
    id : str
        Directory identifier.
    state : str
        USPS abbreviation of the state of formation (e.g. "DE").
    entity_type : str
        Legal form as used by the requirement catalog (e.g. "LLC").
    formation_date : datetime.date
        Date the entity was formed.
    name : str | None
        Display name, if the directory has one.
    """
    id: str
    state: str
    entity_type: str
    formation_date: date
    name: Optional[str] = None


@dataclass(frozen=True)
class ComplianceRequirement:
    """
    Filing policy for one (state, entity_type) pair.

    ``fixed_due_date`` is an ``(month, day)`` tuple and is required for
    FIXED_DATE policies; ``due_date_offset_days`` is required for
    FORMATION_BASED ones.  Money amounts are whole cents.
    """
    state: str
    entity_type: str
    obligation_type: str
    due_date_type: DueDateType
    frequency: Frequency
    fixed_due_date: Optional[tuple[int, int]] = None
    due_date_offset_days: Optional[int] = None
    grace_period_days: int = 0
    filing_fee_amount: int = 0
    late_fee_amount: int = 0
    dissolution_threat_days: Optional[int] = None
    is_active: bool = True
    report_name: Optional[str] = None
    filing_link: Optional[str] = None
    priority: Priority = Priority.HIGH

    @property
    def key(self) -> tuple[str, str]:
        return (self.state.upper(), self.entity_type.upper())


@dataclass
class ComplianceEvent:
    """
    One filing obligation instance for one entity and one period.

    ``id`` is ``None`` until the event store assigns one.
    """
    business_entity_id: str
    obligation_type: str
    period: str
    due_date: date
    frequency: Frequency = Frequency.ANNUAL
    status: EventStatus = EventStatus.UPCOMING
    priority: Priority = Priority.HIGH
    estimated_cost: int = 0
    filing_link: Optional[str] = None
    reminders_sent: int = 0
    last_reminder_sent_at: Optional[datetime] = None
    last_reminder_band: Optional[ReminderBand] = None
    completed_at: Optional[datetime] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    id: Optional[int] = None

    @property
    def key(self) -> tuple[str, str, str]:
        """Uniqueness key: (business_entity_id, obligation_type, period)."""
        return (self.business_entity_id, self.obligation_type, self.period)

    @property
    def is_open(self) -> bool:
        return not self.status.terminal

    def days_until_due(self, now: datetime) -> int:
        return days_until(self.due_date, now)

    def copy(self, **changes) -> "ComplianceEvent":
        """Return a detached copy, optionally with fields replaced."""
        return replace(self, **changes)


@dataclass
class ReminderNotice:
    """
    "Reminder needed" record handed to the notification collaborator.

    ``sequence`` is the ``reminders_sent`` count the notice was recorded
    with, so (event_id, sequence) identifies a notice uniquely.
    """
    event_id: int
    business_entity_id: str
    due_date: date
    days_until_due: int
    band: ReminderBand
    sequence: int
    estimated_cost: int = 0
    filing_link: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    dispatched_at: Optional[datetime] = None
    id: Optional[int] = None

    def payload(self) -> dict:
        """Wire form sent to the delivery service."""
        return {
            "eventId": self.event_id,
            "businessEntityId": self.business_entity_id,
            "dueDate": self.due_date.isoformat(),
            "daysUntilDue": self.days_until_due,
            "band": self.band.name,
            "estimatedCost": self.estimated_cost,
            "filingLink": self.filing_link,
        }
