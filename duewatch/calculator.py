"""
duewatch.calculator
===================

Pure due-date arithmetic.

:pyfunc:`compute_due_date` turns a :class:`~duewatch.models.ComplianceRequirement`,
an entity's formation date and a period key into a concrete due date.
Nothing here touches storage or the clock; *now* is always passed in.

Rules
-----
FIXED_DATE
    ``period-year`` + ``fixed_due_date``.  When that date is not after
    *now* and the period is the one currently running, the due date rolls
    forward one cycle so a freshly generated obligation is never born
    overdue.
FORMATION_BASED
    Formation anniversary in ``period-year`` (Feb 29 becomes Feb 28 in
    non-leap years) plus ``due_date_offset_days`` calendar days.

Quarterly and monthly periods shift the yearly anchor by whole months,
clamping the day to the end of shorter months.
"""

from __future__ import annotations

import calendar
from dataclasses import dataclass
from datetime import date, datetime, timedelta

from dateutil.relativedelta import relativedelta

from .errors import ConfigurationError
from .models import ComplianceRequirement, DueDateType, Frequency, as_naive_utc
from .periods import (
    advance_period,
    is_current,
    months_into_year,
    period_containing,
    period_year,
)


@dataclass(frozen=True)
class ScheduledDue:
    """Due date together with the period it actually covers."""
    period: str
    due_date: date
    rolled: bool = False


def clamp_date(year: int, month: int, day: int) -> date:
    """``date(year, month, day)`` with *day* clamped to the month's length."""
    last = calendar.monthrange(year, month)[1]
    return date(year, month, min(day, last))


def _anchor(requirement: ComplianceRequirement, formation_date: date | None, period: str) -> date:
    freq = requirement.frequency
    year = period_year(period, freq)
    shift = relativedelta(months=months_into_year(period, freq))

    if requirement.due_date_type is DueDateType.FIXED_DATE:
        if requirement.fixed_due_date is None:
            raise ConfigurationError(
                f"{requirement.state}/{requirement.entity_type}: FIXED_DATE policy has no fixed_due_date"
            )
        month, day = requirement.fixed_due_date
        return clamp_date(year, month, day) + shift

    if requirement.due_date_offset_days is None:
        raise ConfigurationError(
            f"{requirement.state}/{requirement.entity_type}: FORMATION_BASED policy has no due_date_offset_days"
        )
    if formation_date is None:
        raise ConfigurationError(
            f"{requirement.state}/{requirement.entity_type}: FORMATION_BASED policy needs a formation date"
        )
    anniversary = clamp_date(year, formation_date.month, formation_date.day) + shift
    return anniversary + timedelta(days=requirement.due_date_offset_days)


def schedule_due(
    requirement: ComplianceRequirement,
    formation_date: date | None,
    period: str,
    now: datetime | date,
) -> ScheduledDue:
    """
    Compute the due date for *period*, applying the FIXED_DATE rollover.

    When the rollover applies the returned ``period`` is the next cycle's
    key, so callers can store the event under the period its due date
    belongs to.
    """
    today = as_naive_utc(now).date()
    due = _anchor(requirement, formation_date, period)

    if (
        requirement.due_date_type is DueDateType.FIXED_DATE
        and due <= today
        and is_current(period, requirement.frequency, today)
    ):
        next_period = advance_period(period, requirement.frequency)
        return ScheduledDue(next_period, _anchor(requirement, formation_date, next_period), rolled=True)

    return ScheduledDue(period, due)


def compute_due_date(
    requirement: ComplianceRequirement,
    formation_date: date | None,
    period: str,
    now: datetime | date,
) -> date:
    """Return the concrete due date of *requirement* for *period*."""
    return schedule_due(requirement, formation_date, period, now).due_date


def due_date_for_period(
    requirement: ComplianceRequirement,
    formation_date: date | None,
    period: str,
) -> date:
    """Due date of *period* exactly as scheduled, without any rollover."""
    return _anchor(requirement, formation_date, period)


def initial_period(
    requirement: ComplianceRequirement,
    formation_date: date | None,
    now: datetime | date,
) -> str:
    """
    Pick the period a newly onboarded entity's first event should cover.

    * FIXED_DATE: the cycle running today (the rollover in
      :pyfunc:`schedule_due` moves it on if its date has passed).
    * FORMATION_BASED, one-time: the formation year.
    * FORMATION_BASED, recurring: the first cycle after formation whose due
      date is still ahead of *now*.
    """
    freq = requirement.frequency
    today = as_naive_utc(now).date()

    if requirement.due_date_type is DueDateType.FIXED_DATE:
        return period_containing(today, freq)

    if formation_date is None:
        raise ConfigurationError(
            f"{requirement.state}/{requirement.entity_type}: FORMATION_BASED policy needs a formation date"
        )
    if freq is Frequency.ONE_TIME:
        return period_containing(formation_date, freq)

    if freq in (Frequency.QUARTERLY, Frequency.MONTHLY):
        period = advance_period(period_containing(formation_date, freq), freq)
    else:
        period = str(formation_date.year + 1)

    while _anchor(requirement, formation_date, period) <= today:
        period = advance_period(period, freq)
    return period
