"""
duewatch.engine
===============

Wires the components together and exposes the two driver entry points:

* on demand: :pymeth:`ComplianceEngine.create_event` (entity onboarding)
  and :pymeth:`ComplianceEngine.complete_event` ("mark completed")
* periodic: :pymeth:`ComplianceEngine.run_sweep_tick`, to be called by
  any external scheduler (cron, a queue consumer, an orchestrator)

A tick processes at most *limit* events and reports a cursor so the next
call resumes where this one stopped.  Several workers may tick at once
over disjoint shards; every write they make is a compare-and-swap in the
store.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from .catalog import RequirementCatalog
from .dashboard import DashboardAggregator
from .directory import EntityDirectory
from .errors import DuewatchError, IllegalTransition, StaleWriteError
from .generator import EventGenerator, GenerationReport
from .lifecycle import check_transition
from .models import ComplianceEvent, EventStatus, ReminderNotice, as_naive_utc, utcnow
from .notify import LoggingNotifier, Notifier, OutboxRelay
from .recurrence import RecurrenceRegenerator
from .reminders import ReminderScheduler
from .store import EventStore, Shard
from .sweeper import DissolutionFlag, StatusSweeper

logger = logging.getLogger(__name__)


@dataclass
class TickReport:
    """What one :pymeth:`ComplianceEngine.run_sweep_tick` call did."""
    now: datetime
    scanned: int = 0
    overdue: List[int] = field(default_factory=list)
    reminders: List[ReminderNotice] = field(default_factory=list)
    dissolution_risk: List[DissolutionFlag] = field(default_factory=list)
    regenerated: List[ComplianceEvent] = field(default_factory=list)
    relayed: int = 0
    relay_failed: int = 0
    errors: int = 0
    next_cursor: Optional[int] = None
    backfill_cursor: Optional[int] = None

    def summary(self) -> dict:
        return {
            "now": self.now.isoformat(),
            "scanned": self.scanned,
            "overdue": len(self.overdue),
            "reminders": len(self.reminders),
            "dissolutionRisk": len(self.dissolution_risk),
            "regenerated": len(self.regenerated),
            "relayed": self.relayed,
            "relayFailed": self.relay_failed,
            "errors": self.errors,
            "nextCursor": self.next_cursor,
            "backfillCursor": self.backfill_cursor,
        }


@dataclass
class CompletionResult:
    event: ComplianceEvent
    successor: Optional[ComplianceEvent] = None


class ComplianceEngine:
    """
    Facade over catalog, directory, store and notifier.

    Example
    -------
    >>> engine = ComplianceEngine(RequirementCatalog.default(), directory, InMemoryEventStore())
    >>> ev = engine.create_event("ent-1", now=datetime(2024, 5, 1))
    >>> engine.run_sweep_tick(datetime(2024, 5, 1)).reminders[0].band
    <ReminderBand.SOON: 2>
    """

    def __init__(
        self,
        catalog: RequirementCatalog,
        directory: EntityDirectory,
        store: EventStore,
        notifier: Optional[Notifier] = None,
        batch_size: int = 500,
        relay_batch_size: int = 500,
    ) -> None:
        self.catalog = catalog
        self.directory = directory
        self.store = store
        self.notifier = notifier or LoggingNotifier()
        self.batch_size = batch_size
        self.relay_batch_size = relay_batch_size
        store.bind_catalog(catalog)

        self.generator = EventGenerator(catalog, directory, store)
        self.scheduler = ReminderScheduler(store)
        self.sweeper = StatusSweeper(store, catalog, directory)
        self.regenerator = RecurrenceRegenerator(catalog, directory, store)
        self.dashboard = DashboardAggregator(store, catalog, directory)
        self.relay = OutboxRelay(store, self.notifier)

    # ------------------------------------------------------------------
    # On-demand driver
    # ------------------------------------------------------------------
    def create_event(
        self,
        business_entity_id: str,
        obligation_type: Optional[str] = None,
        period: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> ComplianceEvent:
        return self.generator.create(business_entity_id, obligation_type, period, _now(now))

    def generate_all(self, now: Optional[datetime] = None) -> GenerationReport:
        return self.generator.generate_all(_now(now))

    def complete_event(self, event_id: int, now: Optional[datetime] = None) -> CompletionResult:
        """
        Mark an event COMPLETED and schedule its successor.

        Completing an already completed event is a no-op that still makes
        sure the successor exists.  If the status changed under us (e.g.
        a sweeper made it OVERDUE) the completion is re-evaluated once
        against the fresh row.
        """
        now = _now(now)
        event = self.store.get_event(event_id)
        if event.status is not EventStatus.COMPLETED:
            event = self._complete(event, now)
        return CompletionResult(event, self._successor(event, now))

    # ------------------------------------------------------------------
    # Periodic driver
    # ------------------------------------------------------------------
    def run_sweep_tick(
        self,
        now: Optional[datetime] = None,
        limit: Optional[int] = None,
        after_id: Optional[int] = None,
        shard: Optional[Shard] = None,
        backfill_after: Optional[int] = None,
    ) -> TickReport:
        """
        One scheduler tick: overdue transitions, reminders, recurrence
        catch-up and outbox relay.

        For each event the status transition runs *before* the reminder
        evaluation, so an event that turns overdue in this tick gets its
        OVERDUE reminder in the same tick.  A failure on one event is
        logged and counted; the rest are still processed.

        The recurrence catch-up keeps its own cursor: pass the previous
        report's ``backfill_cursor`` as *backfill_after* to resume it, the
        way ``next_cursor`` resumes the sweep.  It scans at most *limit*
        completed events per tick.
        """
        now = _now(now)
        report = TickReport(now=now)
        cursor = after_id
        while limit is None or report.scanned < limit:
            batch_size = self.batch_size if limit is None else min(self.batch_size, limit - report.scanned)
            batch = self.store.list_events_due_for_sweep(now, batch_size, after_id=cursor, shard=shard)
            for event in batch:
                report.scanned += 1
                cursor = event.id
                try:
                    self._tick_event(event, now, report)
                except Exception:
                    logger.exception(f"Tick failed for event {event.id}")
                    report.errors += 1
            if len(batch) < batch_size:
                break
        else:
            report.next_cursor = cursor

        if shard is None or shard[0] == 0:
            backfill = self.regenerator.backfill(now, limit=limit, after_id=backfill_after)
            report.backfill_cursor = backfill.next_cursor
            report.regenerated.extend(backfill.created)
            report.errors += backfill.errors

        relayed = self.relay.drain(self.relay_batch_size, now)
        report.relayed, report.relay_failed = relayed.dispatched, relayed.failed

        logger.info(
            f"Tick {now.isoformat()}: scanned={report.scanned} overdue={len(report.overdue)} "
            f"reminders={len(report.reminders)} regenerated={len(report.regenerated)} errors={report.errors}"
        )
        return report

    def close(self) -> None:
        """Release the notifier (the store and its database stay with the caller)."""
        self.notifier.close()

    def __enter__(self) -> "ComplianceEngine":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _tick_event(self, event: ComplianceEvent, now: datetime, report: TickReport) -> None:
        event, changed = self.sweeper.transition_with_flag(event, now)
        if changed:
            report.overdue.append(event.id)
        flag = self.sweeper.dissolution_flag(event, now)
        if flag is not None:
            report.dissolution_risk.append(flag)
        notice = self.scheduler.process(event, now)
        if notice is not None:
            report.reminders.append(notice)

    def _complete(self, event: ComplianceEvent, now: datetime) -> ComplianceEvent:
        check_transition(event.status, EventStatus.COMPLETED)
        try:
            return self.store.cas_update_status(event.id, event.status, EventStatus.COMPLETED, now)
        except StaleWriteError:
            fresh = self.store.get_event(event.id)
            if fresh.status is EventStatus.COMPLETED:
                return fresh
            if fresh.status.terminal:
                raise IllegalTransition(f"event {event.id} is {fresh.status.name}") from None
            logger.info(f"Event {event.id} moved to {fresh.status.name} concurrently; retrying completion once")
            return self.store.cas_update_status(fresh.id, fresh.status, EventStatus.COMPLETED, now)

    def _successor(self, event: ComplianceEvent, now: datetime) -> Optional[ComplianceEvent]:
        try:
            return self.regenerator.on_completed(event, now)
        except (DuewatchError, KeyError) as exc:
            # completion is already stored; the tick backfill retries
            logger.warning(f"Could not schedule successor of event {event.id}: {exc}")
            return None


def _now(now: Optional[datetime]) -> datetime:
    return utcnow() if now is None else as_naive_utc(now)


def engine_from_settings(cfg, db) -> ComplianceEngine:
    """
    Build a SQL-backed engine from a :class:`~duewatch.settings.Settings`.

    *db* must be an opened :class:`~duewatch.db.Database`; the caller keeps
    ownership of it.
    """
    from .store_db import DBEntityDirectory, SQLEventStore
    from .notify import WebhookNotifier

    catalog = RequirementCatalog.from_file(cfg.catalog_path) if cfg.catalog_path else RequirementCatalog.default()
    notifier = WebhookNotifier(cfg.webhook_url, timeout=cfg.webhook_timeout) if cfg.webhook_url else LoggingNotifier()
    return ComplianceEngine(
        catalog,
        DBEntityDirectory(db),
        SQLEventStore(db),
        notifier,
        batch_size=cfg.sweep_batch_size,
        relay_batch_size=cfg.relay_batch_size,
    )
