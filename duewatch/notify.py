"""
duewatch.notify
===============

Boundary to the notification/delivery collaborator.

duewatch decides *that* a reminder is needed and records it in the
store's outbox together with the reminder counters.  :class:`OutboxRelay`
later hands pending notices to a :class:`Notifier`.  Handing off is
fire-and-forget: retries, channels and delivery receipts belong to the
delivery service.  A notice whose hand-off raised stays pending and is
offered again on the next tick.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

import httpx

from .models import ReminderNotice, utcnow
from .store import EventStore

logger = logging.getLogger(__name__)


class Notifier(ABC):
    """Receives "reminder needed" records."""

    @abstractmethod
    def emit(self, notice: ReminderNotice) -> None:
        """Hand *notice* to the delivery side; must not wait for delivery."""

    def close(self) -> None:
        """Release delivery resources (no-op by default)."""


class LoggingNotifier(Notifier):
    """Writes each notice to the log; the default when no service is configured."""

    def emit(self, notice: ReminderNotice) -> None:
        logger.info(
            f"Reminder needed: event {notice.event_id} for {notice.business_entity_id} "
            f"band={notice.band.name} due={notice.due_date.isoformat()} "
            f"({notice.days_until_due} days)"
        )


class CollectingNotifier(Notifier):
    """Keeps notices in a list (handy for tests and dry runs)."""

    def __init__(self) -> None:
        self.notices: List[ReminderNotice] = []

    def emit(self, notice: ReminderNotice) -> None:
        self.notices.append(notice)


class WebhookNotifier(Notifier):
    """
    POSTs the notice payload to the delivery service.

    Only the hand-off is checked (a 2xx status); the service owns what
    happens afterwards.
    """

    def __init__(self, url: str, timeout: float = 5.0, client: Optional[httpx.Client] = None) -> None:
        self.url = url
        self._client = client or httpx.Client(timeout=timeout)

    def emit(self, notice: ReminderNotice) -> None:
        response = self._client.post(self.url, json=notice.payload())
        response.raise_for_status()

    def close(self) -> None:
        self._client.close()


@dataclass
class RelayReport:
    dispatched: int = 0
    failed: int = 0


class OutboxRelay:
    """Drains pending reminder notices from an :class:`EventStore` into a notifier."""

    def __init__(self, store: EventStore, notifier: Notifier) -> None:
        self.store = store
        self.notifier = notifier

    def drain(self, limit: int, now: Optional[datetime] = None) -> RelayReport:
        """
        Offer up to *limit* pending notices to the notifier.

        Each notice is claimed with a CAS before it is emitted, so two
        relays never emit the same notice; a failed hand-off releases the
        claim.
        """
        report = RelayReport()
        for notice in self.store.pending_notices(limit):
            if not self.store.mark_notice_dispatched(notice.id, now or utcnow()):
                logger.debug(f"Notice {notice.id} was claimed by another relay")
                continue
            try:
                self.notifier.emit(notice)
            except Exception:
                logger.exception(f"Hand-off of notice {notice.id} (event {notice.event_id}) failed; left pending")
                self.store.release_notice(notice.id)
                report.failed += 1
                continue
            report.dispatched += 1
        return report
