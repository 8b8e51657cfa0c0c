"""
tests/test_notify.py
====================

Outbox relay and the webhook notifier.

The webhook is exercised through ``httpx.MockTransport`` so no network
access is needed.
"""

import json
from datetime import date, datetime

import httpx
import pytest

from duewatch.models import ComplianceEvent, ReminderBand, ReminderNotice
from duewatch.notify import CollectingNotifier, OutboxRelay, WebhookNotifier


def _queue_notice(store, band=ReminderBand.SOON):
    ev = store.insert_event(ComplianceEvent("acme", "Annual Report", "2024", date(2024, 6, 1)))
    notice = ReminderNotice(ev.id, "acme", ev.due_date, 31, band, 1)
    return store.cas_update_reminder_state(ev.id, 0, 1, datetime(2024, 5, 1), band, notice)


def test_webhook_posts_payload():
    seen = []

    def handler(request):
        seen.append(json.loads(request.content))
        return httpx.Response(202)

    client = httpx.Client(transport=httpx.MockTransport(handler))
    notifier = WebhookNotifier("https://notify.example/reminders", client=client)
    notice = ReminderNotice(5, "acme", date(2024, 6, 1), 31, ReminderBand.SOON, 1, estimated_cost=30000)
    notifier.emit(notice)
    notifier.close()

    assert seen == [notice.payload()]


def test_webhook_raises_on_error_status():
    client = httpx.Client(transport=httpx.MockTransport(lambda request: httpx.Response(503)))
    notifier = WebhookNotifier("https://notify.example/reminders", client=client)
    with pytest.raises(httpx.HTTPStatusError):
        notifier.emit(ReminderNotice(5, "acme", date(2024, 6, 1), 31, ReminderBand.SOON, 1))


def test_relay_dispatches_each_notice_once(store):
    _queue_notice(store)
    sink = CollectingNotifier()
    relay = OutboxRelay(store, sink)

    assert relay.drain(10, datetime(2024, 5, 1)).dispatched == 1
    assert relay.drain(10, datetime(2024, 5, 1)).dispatched == 0
    assert len(sink.notices) == 1
    assert store.pending_notices(10) == []


def test_relay_releases_claim_on_failure(store):
    notice = _queue_notice(store)
    client = httpx.Client(transport=httpx.MockTransport(lambda request: httpx.Response(500)))
    report = OutboxRelay(store, WebhookNotifier("https://notify.example/x", client=client)).drain(10)

    assert report.failed == 1
    assert [n.id for n in store.pending_notices(10)] == [notice.id]


def test_claim_is_exclusive(store):
    notice = _queue_notice(store)
    assert store.mark_notice_dispatched(notice.id, datetime(2024, 5, 1))
    assert not store.mark_notice_dispatched(notice.id, datetime(2024, 5, 1))
