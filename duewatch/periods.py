"""
duewatch.periods
================

Period keys identify the filing cycle an event covers.

* annual, biennial and one-time obligations use the year: ``"2024"``
* quarterly obligations use the quarter: ``"2024-Q2"``
* monthly obligations use the month: ``"2024-05"``
"""

from __future__ import annotations

import re
from datetime import date

from .models import Frequency

_YEAR = re.compile(r"^(\d{4})$")
_QUARTER = re.compile(r"^(\d{4})-Q([1-4])$")
_MONTH = re.compile(r"^(\d{4})-(0[1-9]|1[0-2])$")


def parse_period(period: str, frequency: Frequency) -> tuple[int, int]:
    """
    Split *period* into ``(year, index)``.

    ``index`` is the quarter (1-4) or month (1-12) for sub-annual
    frequencies and ``0`` otherwise.  Raises ``ValueError`` when the key
    does not match the frequency.
    """
    period = str(period).strip()
    if frequency is Frequency.QUARTERLY:
        m = _QUARTER.match(period)
    elif frequency is Frequency.MONTHLY:
        m = _MONTH.match(period)
    else:
        m = _YEAR.match(period)
    if m is None:
        raise ValueError(f"period {period!r} does not match {frequency.name} cycles")
    year = int(m.group(1))
    index = int(m.group(2)) if m.lastindex and m.lastindex > 1 else 0
    return year, index


def format_period(year: int, index: int, frequency: Frequency) -> str:
    if frequency is Frequency.QUARTERLY:
        return f"{year:04d}-Q{index}"
    if frequency is Frequency.MONTHLY:
        return f"{year:04d}-{index:02d}"
    return f"{year:04d}"


def period_containing(moment: date, frequency: Frequency) -> str:
    """Return the period key of the cycle that contains *moment*."""
    if frequency is Frequency.QUARTERLY:
        return format_period(moment.year, (moment.month - 1) // 3 + 1, frequency)
    if frequency is Frequency.MONTHLY:
        return format_period(moment.year, moment.month, frequency)
    return format_period(moment.year, 0, frequency)


def period_year(period: str, frequency: Frequency) -> int:
    return parse_period(period, frequency)[0]


def months_into_year(period: str, frequency: Frequency) -> int:
    """Months between the yearly anchor and this period's cycle start."""
    _, index = parse_period(period, frequency)
    if frequency is Frequency.QUARTERLY:
        return (index - 1) * 3
    if frequency is Frequency.MONTHLY:
        return index - 1
    return 0


def advance_period(period: str, frequency: Frequency, cycles: int = 1) -> str:
    """
    Move *period* forward by *cycles* filing cycles.

    One-time obligations advance by calendar year so that a rolled
    one-time due date still gets a distinct key.
    """
    year, index = parse_period(period, frequency)
    if frequency is Frequency.QUARTERLY:
        total = year * 4 + (index - 1) + cycles
        return format_period(total // 4, total % 4 + 1, frequency)
    if frequency is Frequency.MONTHLY:
        total = year * 12 + (index - 1) + cycles
        return format_period(total // 12, total % 12 + 1, frequency)
    step = 2 if frequency is Frequency.BIENNIAL else 1
    return format_period(year + step * cycles, 0, frequency)


def is_current(period: str, frequency: Frequency, today: date) -> bool:
    """True when *today* falls in the cycle *period* names (by calendar year
    for annual, biennial and one-time obligations)."""
    return period == period_containing(today, frequency)
