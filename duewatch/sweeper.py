"""
duewatch.sweeper
================

Moves past-due events from UPCOMING to OVERDUE.

An event is past due once its due date has fully elapsed
(``now.date() > due_date``), the same instant its reminder band becomes
OVERDUE.  Each transition is a compare-and-swap on the prior status, so
concurrent sweepers and a user completing the event cannot trample each
other.

Events more than ``dissolution_threat_days`` past due are *flagged* for
escalated display; the flag is presentation only and never changes the
status.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from .catalog import RequirementCatalog
from .directory import EntityDirectory
from .errors import DuewatchError, StaleWriteError
from .generator import resolve_policy
from .models import ComplianceEvent, ComplianceRequirement, EventStatus, as_naive_utc
from .store import EventStore, Shard

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DissolutionFlag:
    """An overdue event close enough to administrative dissolution to escalate."""
    event_id: int
    business_entity_id: str
    obligation_type: str
    days_overdue: int
    threshold_days: int


@dataclass
class SweepReport:
    scanned: int = 0
    transitioned: List[int] = field(default_factory=list)
    dissolution_risk: List[DissolutionFlag] = field(default_factory=list)
    errors: int = 0
    next_cursor: Optional[int] = None


def is_past_due(event: ComplianceEvent, now: datetime) -> bool:
    return as_naive_utc(now).date() > event.due_date


def days_overdue(event: ComplianceEvent, now: datetime) -> int:
    return max((as_naive_utc(now).date() - event.due_date).days, 0)


def flag_dissolution_risk(
    event: ComplianceEvent,
    requirement: ComplianceRequirement,
    now: datetime,
) -> Optional[DissolutionFlag]:
    """``DissolutionFlag`` when *event* is overdue past the policy threshold."""
    threshold = requirement.dissolution_threat_days
    overdue = days_overdue(event, now)
    if event.status is not EventStatus.OVERDUE or threshold is None or overdue <= threshold:
        return None
    return DissolutionFlag(event.id, event.business_entity_id, event.obligation_type, overdue, threshold)


class StatusSweeper:
    """UPCOMING → OVERDUE transitions plus dissolution-risk flagging."""

    def __init__(self, store: EventStore, catalog: RequirementCatalog, directory: EntityDirectory) -> None:
        self.store = store
        self.catalog = catalog
        self.directory = directory

    def transition(self, event: ComplianceEvent, now: datetime) -> ComplianceEvent:
        """
        Mark *event* OVERDUE if it is UPCOMING and past due.

        Returns the event as it now stands.  A lost CAS re-reads the row
        once: if someone else already moved it on (OVERDUE or COMPLETED)
        that is success; otherwise the intent is dropped until the next
        sweep.
        """
        return self.transition_with_flag(event, now)[0]

    def transition_with_flag(self, event: ComplianceEvent, now: datetime) -> tuple[ComplianceEvent, bool]:
        """Like :pymeth:`transition`; the flag is True only when this call made the change."""
        if event.status is not EventStatus.UPCOMING or not is_past_due(event, now):
            return event, False
        try:
            updated = self.store.cas_update_status(
                event.id, EventStatus.UPCOMING, EventStatus.OVERDUE, as_naive_utc(now)
            )
        except StaleWriteError:
            fresh = self.store.get_event(event.id)
            if fresh.status is EventStatus.UPCOMING:
                logger.info(f"Event {event.id}: overdue transition dropped after stale write")
            else:
                logger.debug(f"Event {event.id}: already {fresh.status.name}, nothing to do")
            return fresh, False
        logger.info(f"Event {event.id} ({event.business_entity_id} {event.obligation_type} {event.period}) is OVERDUE")
        return updated, True

    def dissolution_flag(self, event: ComplianceEvent, now: datetime) -> Optional[DissolutionFlag]:
        """Flag *event* if it is overdue beyond its policy's dissolution threshold."""
        if event.status is not EventStatus.OVERDUE:
            return None
        try:
            _, requirement = resolve_policy(self.catalog, self.directory, event.business_entity_id, event.obligation_type)
        except (DuewatchError, KeyError):
            return None
        return flag_dissolution_risk(event, requirement, now)

    def sweep(
        self,
        now: datetime,
        limit: Optional[int] = None,
        after_id: Optional[int] = None,
        shard: Optional[Shard] = None,
        page_size: int = 500,
    ) -> SweepReport:
        """
        Transition every eligible event (at most *limit* scanned).

        ``report.next_cursor`` is the last event id scanned when the limit
        cut the pass short, else ``None``; pass it back as *after_id* to
        resume.
        """
        now = as_naive_utc(now)
        report = SweepReport()
        cursor = after_id
        while limit is None or report.scanned < limit:
            batch_size = page_size if limit is None else min(page_size, limit - report.scanned)
            batch = self.store.list_events_due_for_sweep(now, batch_size, after_id=cursor, shard=shard)
            for event in batch:
                report.scanned += 1
                cursor = event.id
                try:
                    updated, changed = self.transition_with_flag(event, now)
                    if changed:
                        report.transitioned.append(event.id)
                    flag = self.dissolution_flag(updated, now)
                    if flag is not None:
                        report.dissolution_risk.append(flag)
                except Exception:
                    logger.exception(f"Sweep failed for event {event.id}")
                    report.errors += 1
            if len(batch) < batch_size:
                return report
        report.next_cursor = cursor
        return report
