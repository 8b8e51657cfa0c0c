"""
duewatch.dashboard
==================

Read-only rollups for the dashboard/API layer.  Nothing here writes to
the store.

Ordering is deterministic so two renders of the same data match:

* upcoming events: due date ascending, then business entity id
* overdue events: days overdue descending, then business entity id
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from .catalog import RequirementCatalog
from .directory import EntityDirectory
from .errors import DuewatchError
from .generator import resolve_policy
from .models import ComplianceEvent, EventStatus, as_naive_utc
from .reminders import ReminderScheduler, band_for
from .store import OPEN_STATUSES, EventStore
from .sweeper import DissolutionFlag, days_overdue, flag_dissolution_risk


@dataclass(frozen=True)
class OverdueItem:
    event: ComplianceEvent
    days_overdue: int


class DashboardAggregator:
    """
    Pure-read view over an :class:`EventStore`.

    *catalog* and *directory* are only needed for dissolution-risk rollups;
    without them that section is empty.
    """

    def __init__(
        self,
        store: EventStore,
        catalog: Optional[RequirementCatalog] = None,
        directory: Optional[EntityDirectory] = None,
    ) -> None:
        self.store = store
        self.catalog = catalog
        self.directory = directory

    # ------------------------------------------------------------------
    # Rollups
    # ------------------------------------------------------------------
    def status_counts(self, business_entity_id: Optional[str] = None) -> Dict[str, int]:
        """Event count per status; every status appears, zero or not."""
        counts = {s.name: 0 for s in EventStatus}
        for ev in self.store.list_events(business_entity_id=business_entity_id):
            counts[ev.status.name] += 1
        return counts

    def upcoming(
        self,
        limit: Optional[int] = None,
        business_entity_id: Optional[str] = None,
        now: Optional[datetime] = None,
        within_days: Optional[int] = None,
    ) -> List[ComplianceEvent]:
        """
        UPCOMING events, soonest first.

        With *within_days* only events due on or before ``now + within_days``
        are returned; *now* is then required.
        """
        events = self.store.list_events(business_entity_id=business_entity_id, status=EventStatus.UPCOMING)
        if within_days is not None:
            if now is None:
                raise ValueError("within_days needs now")
            horizon = (as_naive_utc(now) + timedelta(days=within_days)).date()
            events = [e for e in events if e.due_date <= horizon]
        events.sort(key=lambda e: (e.due_date, e.business_entity_id, e.id))
        return events if limit is None else events[:limit]

    def needing_reminders(self, now: datetime, business_entity_id: Optional[str] = None) -> List[ComplianceEvent]:
        """Open events that the next tick would send a reminder for."""
        scheduler = ReminderScheduler(self.store)
        return [
            ev
            for status in OPEN_STATUSES
            for ev in self.store.list_events(business_entity_id=business_entity_id, status=status)
            if scheduler.evaluate(ev, now) is not None
        ]

    def overdue(self, now: datetime, business_entity_id: Optional[str] = None) -> List[OverdueItem]:
        items = [
            OverdueItem(ev, days_overdue(ev, now))
            for ev in self.store.list_events(business_entity_id=business_entity_id, status=EventStatus.OVERDUE)
        ]
        items.sort(key=lambda i: (-i.days_overdue, i.event.business_entity_id, i.event.id))
        return items

    def dissolution_risk(self, now: datetime, business_entity_id: Optional[str] = None) -> List[DissolutionFlag]:
        if self.catalog is None or self.directory is None:
            return []
        flags = []
        for item in self.overdue(now, business_entity_id):
            try:
                _, requirement = resolve_policy(
                    self.catalog, self.directory, item.event.business_entity_id, item.event.obligation_type
                )
            except (DuewatchError, KeyError):
                continue
            flag = flag_dissolution_risk(item.event, requirement, now)
            if flag is not None:
                flags.append(flag)
        return flags

    def snapshot(
        self,
        now: datetime,
        upcoming_limit: int = 10,
        business_entity_id: Optional[str] = None,
        within_days: Optional[int] = None,
    ) -> Dict[str, Any]:
        """
        Everything the dashboard page needs in one JSON-ready dict.

        *business_entity_id* scopes every section to one entity;
        *within_days* narrows the ``upcoming`` list to that window.
        """
        now = as_naive_utc(now)
        horizon = (now + timedelta(days=30)).date()
        upcoming = self.upcoming(business_entity_id=business_entity_id)
        overdue = self.overdue(now, business_entity_id)
        open_events = upcoming + [i.event for i in overdue]
        counts = self.status_counts(business_entity_id)
        listed = upcoming
        if within_days is not None:
            listed = self.upcoming(business_entity_id=business_entity_id, now=now, within_days=within_days)
        return {
            "asOf": now.isoformat(),
            "businessEntityId": business_entity_id,
            "counts": counts,
            "totalEvents": sum(counts.values()),
            "dueWithin30Days": sum(1 for e in upcoming if e.due_date <= horizon),
            "needingReminders": len(self.needing_reminders(now, business_entity_id)),
            "openEstimatedCost": sum(e.estimated_cost for e in open_events),
            "upcoming": [event_to_dict(e, now) for e in listed[:upcoming_limit]],
            "overdue": [dict(event_to_dict(i.event, now), daysOverdue=i.days_overdue) for i in overdue],
            "dissolutionRisk": [
                {
                    "eventId": f.event_id,
                    "businessEntityId": f.business_entity_id,
                    "obligationType": f.obligation_type,
                    "daysOverdue": f.days_overdue,
                    "thresholdDays": f.threshold_days,
                }
                for f in self.dissolution_risk(now, business_entity_id)
            ],
        }


def event_to_dict(event: ComplianceEvent, now: Optional[datetime] = None) -> Dict[str, Any]:
    """JSON-ready projection of an event (with proximity fields when *now* is given)."""
    out: Dict[str, Any] = {
        "id": event.id,
        "businessEntityId": event.business_entity_id,
        "obligationType": event.obligation_type,
        "period": event.period,
        "dueDate": event.due_date.isoformat(),
        "status": event.status.name,
        "priority": event.priority.name,
        "frequency": event.frequency.name,
        "estimatedCost": event.estimated_cost,
        "filingLink": event.filing_link,
        "remindersSent": event.reminders_sent,
        "lastReminderSentAt": event.last_reminder_sent_at.isoformat() if event.last_reminder_sent_at else None,
        "lastReminderBand": event.last_reminder_band.name if event.last_reminder_band else None,
        "completedAt": event.completed_at.isoformat() if event.completed_at else None,
    }
    if now is not None and event.is_open:
        days = event.days_until_due(now)
        band = band_for(days)
        out["daysUntilDue"] = days
        out["band"] = band.name if band else None
    return out
