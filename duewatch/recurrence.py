"""
duewatch.recurrence
===================

Schedules the next occurrence of a recurring obligation once the current
one is completed.

The completed row is never touched; the successor is a fresh event for
the next period.  Creation goes through the same idempotent insert as
:class:`~duewatch.generator.EventGenerator`, so completing an event twice,
or completing it while a backfill runs, still leaves exactly one open
forward-looking event.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from .calculator import due_date_for_period
from .catalog import RequirementCatalog
from .directory import EntityDirectory
from .errors import ConfigurationError
from .generator import build_event, resolve_policy
from .models import ComplianceEvent, EventStatus, as_naive_utc
from .periods import advance_period
from .store import EventStore

logger = logging.getLogger(__name__)

# Upper bound on cycles skipped to reach a future due date.
MAX_CATCH_UP_CYCLES = 240


@dataclass
class BackfillReport:
    scanned: int = 0
    created: List[ComplianceEvent] = field(default_factory=list)
    errors: int = 0
    next_cursor: Optional[int] = None


class RecurrenceRegenerator:
    """Creates successor events for completed recurring obligations."""

    def __init__(self, catalog: RequirementCatalog, directory: EntityDirectory, store: EventStore) -> None:
        self.catalog = catalog
        self.directory = directory
        self.store = store

    def on_completed(self, event: ComplianceEvent, now: datetime) -> Optional[ComplianceEvent]:
        """
        Return the successor of a completed *event*, creating it if needed.

        ``None`` for one-time obligations and for events that are not
        completed.  The successor's due date is strictly after both *now*
        and the completed event's due date; cycles whose dates already
        passed are skipped.
        """
        successor, _ = self.successor_with_flag(event, now)
        return successor

    def successor_with_flag(self, event: ComplianceEvent, now: datetime) -> tuple[Optional[ComplianceEvent], bool]:
        if event.status is not EventStatus.COMPLETED or not event.frequency.recurring:
            return None, False
        later = self._later_event(event)
        if later is not None:
            return later, False

        today = as_naive_utc(now).date()
        entity, requirement = resolve_policy(
            self.catalog, self.directory, event.business_entity_id, event.obligation_type
        )
        if requirement.frequency is not event.frequency:
            raise ConfigurationError(
                f"{entity.state}/{entity.entity_type}: {event.obligation_type} is now "
                f"{requirement.frequency.name}, event {event.id} was {event.frequency.name}"
            )

        period = advance_period(event.period, event.frequency)
        due = due_date_for_period(requirement, entity.formation_date, period)
        skipped = 0
        while due <= today or due <= event.due_date:
            if skipped >= MAX_CATCH_UP_CYCLES:
                raise ConfigurationError(
                    f"event {event.id}: no future cycle within {MAX_CATCH_UP_CYCLES} periods"
                )
            period = advance_period(period, event.frequency)
            due = due_date_for_period(requirement, entity.formation_date, period)
            skipped += 1
        if skipped:
            logger.warning(f"Event {event.id}: skipped {skipped} elapsed cycle(s), next period {period}")

        existing = self.store.find_event(entity.id, event.obligation_type, period)
        if existing is not None:
            return existing, False

        successor, created = self.store.insert_event_if_absent(
            build_event(entity, requirement, period, due, as_naive_utc(now))
        )
        if created:
            logger.info(
                f"Scheduled {successor.obligation_type} {successor.period} for {entity.id}, "
                f"due {successor.due_date.isoformat()} (after event {event.id})"
            )
        return successor, created

    def backfill(
        self,
        now: datetime,
        limit: Optional[int] = None,
        after_id: Optional[int] = None,
        page_size: int = 500,
    ) -> BackfillReport:
        """
        Catch-up pass over completed recurring events.

        Repairs completions whose successor was never written (for example
        when the process died between the two writes).  Safe to run on
        every tick; existing successors are left alone.
        """
        report = BackfillReport()
        cursor = after_id
        while limit is None or report.scanned < limit:
            batch_size = page_size if limit is None else min(page_size, limit - report.scanned)
            batch = self.store.list_completed_recurring(cursor, batch_size)
            for event in batch:
                report.scanned += 1
                cursor = event.id
                try:
                    successor, created = self.successor_with_flag(event, now)
                except Exception:
                    logger.exception(f"Regeneration failed for event {event.id}")
                    report.errors += 1
                    continue
                if created:
                    report.created.append(successor)
            if len(batch) < batch_size:
                return report
        report.next_cursor = cursor
        return report

    def _later_event(self, event: ComplianceEvent) -> Optional[ComplianceEvent]:
        """Earliest event of the same obligation due after *event*, if the chain already moved on."""
        later = [
            other
            for other in self.store.list_events(
                business_entity_id=event.business_entity_id, obligation_type=event.obligation_type
            )
            if other.due_date > event.due_date
        ]
        return min(later, key=lambda e: (e.due_date, e.id)) if later else None
