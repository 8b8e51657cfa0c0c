"""
duewatch.reminders
==================

Graduated reminders keyed on proximity *bands*.

``days_until_due`` is the ceiling of (due date - now) in whole days:

===========  =====================
Band         days_until_due
===========  =====================
FAR          <= 90
SOON         <= 31
URGENT       <= 7
IMMINENT     <= 1 (0 included)
OVERDUE      < 0
===========  =====================

A reminder fires when an event enters a band it has not been reminded
in (escalation), and once per day while it sits in IMMINENT or OVERDUE.
Recording the reminder and enqueueing the notice happen in one
compare-and-swap write on ``reminders_sent``, so a notice is never
recorded without being queued and never queued twice for one band.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional, Sequence, Tuple

from .errors import StaleWriteError
from .models import ComplianceEvent, ReminderBand, ReminderNotice, as_naive_utc
from .store import EventStore

logger = logging.getLogger(__name__)

# Checked nearest-first; the first limit that holds wins.
DEFAULT_BAND_LIMITS: Tuple[Tuple[ReminderBand, int], ...] = (
    (ReminderBand.IMMINENT, 1),
    (ReminderBand.URGENT, 7),
    (ReminderBand.SOON, 31),
    (ReminderBand.FAR, 90),
)

REPEATING_BANDS = frozenset({ReminderBand.IMMINENT, ReminderBand.OVERDUE})
REPEAT_INTERVAL = timedelta(days=1)


def band_for(days_until_due: int, limits: Sequence[Tuple[ReminderBand, int]] = DEFAULT_BAND_LIMITS) -> Optional[ReminderBand]:
    """Map a day count to its band; ``None`` when it is beyond the furthest band."""
    if days_until_due < 0:
        return ReminderBand.OVERDUE
    for band, limit in limits:
        if days_until_due <= limit:
            return band
    return None


@dataclass(frozen=True)
class ReminderDecision:
    """A reminder that should be recorded for *event_id*."""
    event_id: int
    band: ReminderBand
    days_until_due: int
    expected_count: int
    repeat: bool = False


class ReminderScheduler:
    """Decides which reminders are due and records them through the store."""

    def __init__(self, store: EventStore, band_limits: Sequence[Tuple[ReminderBand, int]] = DEFAULT_BAND_LIMITS) -> None:
        self.store = store
        self.band_limits = tuple(band_limits)

    # ------------------------------------------------------------------
    # Decision
    # ------------------------------------------------------------------
    def evaluate(self, event: ComplianceEvent, now: datetime) -> Optional[ReminderDecision]:
        """Return the reminder *event* has newly earned at *now*, if any."""
        if event.status.terminal:
            return None
        now = as_naive_utc(now)
        days = event.days_until_due(now)
        band = band_for(days, self.band_limits)
        if band is None:
            return None

        if band is not event.last_reminder_band:
            return ReminderDecision(event.id, band, days, event.reminders_sent)

        if band in REPEATING_BANDS and (
            event.last_reminder_sent_at is None
            or now - event.last_reminder_sent_at >= REPEAT_INTERVAL
        ):
            return ReminderDecision(event.id, band, days, event.reminders_sent, repeat=True)
        return None

    # ------------------------------------------------------------------
    # Recording
    # ------------------------------------------------------------------
    def apply(self, event: ComplianceEvent, decision: ReminderDecision, now: datetime) -> Optional[ReminderNotice]:
        """
        Record *decision* and enqueue its notice.

        Returns the queued notice, or ``None`` when a concurrent worker had
        already advanced the event (its reminder then either covers this
        one, or the intent is dropped and re-derived next tick).
        """
        now = as_naive_utc(now)
        notice = ReminderNotice(
            event_id=event.id,
            business_entity_id=event.business_entity_id,
            due_date=event.due_date,
            days_until_due=decision.days_until_due,
            band=decision.band,
            sequence=decision.expected_count + 1,
            estimated_cost=event.estimated_cost,
            filing_link=event.filing_link,
            created_at=now,
        )
        try:
            stored = self.store.cas_update_reminder_state(
                event.id,
                decision.expected_count,
                decision.expected_count + 1,
                now,
                decision.band,
                notice,
            )
        except StaleWriteError:
            return self._after_stale_write(event, decision, now)

        logger.info(
            f"Reminder #{stored.sequence} queued for event {event.id} "
            f"({decision.band.name}, {decision.days_until_due} days)"
        )
        return stored

    def process(self, event: ComplianceEvent, now: datetime) -> Optional[ReminderNotice]:
        """Evaluate and, when a reminder is due, record it."""
        decision = self.evaluate(event, now)
        if decision is None:
            return None
        return self.apply(event, decision, now)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _after_stale_write(self, event: ComplianceEvent, decision: ReminderDecision, now: datetime) -> None:
        fresh = self.store.get_event(event.id)
        if fresh.reminders_sent > decision.expected_count and fresh.last_reminder_band is decision.band:
            logger.debug(f"Event {event.id}: {decision.band.name} reminder already recorded by another worker")
            return None
        if self.evaluate(fresh, now) is None:
            logger.debug(f"Event {event.id}: reminder no longer needed after re-read")
            return None
        logger.info(f"Event {event.id}: dropped stale {decision.band.name} reminder; next tick re-evaluates")
        return None
