"""
duewatch.lifecycle
==================

State-transition guard for a :class:`duewatch.models.ComplianceEvent`.

A tiny finite-state-machine describes which statuses are legal successors
of each status.  Stores consult :pyfunc:`check_transition` before a
compare-and-swap write; :pyfunc:`advance_status` mutates an in-memory
event after validating the transition.
"""

from __future__ import annotations

from .errors import IllegalTransition
from .models import ComplianceEvent, EventStatus

# ---------------------------------------------------------------------
# Allowed transitions: source status → set[valid target statuses]
# ---------------------------------------------------------------------
RULES = {
    EventStatus.UPCOMING:  {EventStatus.OVERDUE, EventStatus.COMPLETED},
    EventStatus.OVERDUE:   {EventStatus.COMPLETED},
    EventStatus.COMPLETED: set(),
    EventStatus.EXEMPT:    set(),
}


def check_transition(current: EventStatus, new_status: EventStatus) -> None:
    """Raise :class:`IllegalTransition` unless *current* → *new_status* is legal."""
    if new_status not in RULES.get(current, set()):
        raise IllegalTransition(f"illegal transition {current.name} → {new_status.name}")


def advance_status(event: ComplianceEvent, new_status: EventStatus) -> None:
    """
    Change :pyattr:`event.status` if the transition is legal,
    otherwise raise :class:`IllegalTransition`.

    Examples
    --------
    >>> ev = ComplianceEvent("ent-1", "Annual Report", "2024", date(2024, 6, 1))
    >>> advance_status(ev, EventStatus.OVERDUE)
    >>> advance_status(ev, EventStatus.UPCOMING)
    Traceback (most recent call last):
        ...
    IllegalTransition: illegal transition OVERDUE → UPCOMING
    """
    check_transition(event.status, new_status)
    event.status = new_status
