"""
tests/test_generator.py
=======================

Idempotent event creation.
"""

from datetime import date, datetime

import pytest

from duewatch.catalog import RequirementCatalog
from duewatch.directory import InMemoryEntityDirectory
from duewatch.errors import ConfigurationError, EntityNotFound, RequirementNotFound
from duewatch.generator import EventGenerator
from duewatch.models import BusinessEntity, EventStatus


@pytest.fixture
def generator(catalog, directory, store):
    return EventGenerator(catalog, directory, store)


def test_creates_upcoming_event_with_policy_fields(generator):
    ev = generator.create("acme", now=datetime(2024, 5, 1))
    assert ev.id is not None
    assert ev.status is EventStatus.UPCOMING
    assert ev.obligation_type == "Annual Report"
    assert ev.period == "2024"
    assert ev.due_date == date(2024, 6, 1)
    assert ev.estimated_cost == 30000
    assert ev.reminders_sent == 0


def test_create_is_idempotent(generator, store):
    first = generator.create("acme", "Annual Report", "2024", now=datetime(2024, 5, 1))
    second = generator.create("acme", "Annual Report", "2024", now=datetime(2024, 5, 2))
    assert first.id == second.id
    assert len(store) == 1


def test_rolled_period_is_stored_under_its_own_key(generator, store):
    ev = generator.create("acme", now=datetime(2024, 6, 15))
    assert ev.period == "2025"
    assert ev.due_date == date(2025, 6, 1)
    again = generator.create("acme", period="2024", now=datetime(2024, 6, 20))
    assert again.id == ev.id
    assert len(store) == 1


def test_formation_based_initial_event(generator):
    ev = generator.create("techstart", now=datetime(2023, 1, 10))
    assert ev.obligation_type == "Statement of Information"
    assert ev.period == "2023"
    assert ev.due_date == date(2023, 9, 29)


def test_unknown_entity(generator):
    with pytest.raises(EntityNotFound):
        generator.create("nobody")


def test_wrong_obligation_type(generator):
    with pytest.raises(RequirementNotFound):
        generator.create("acme", "Statement of Information")


def test_misconfigured_requirement_raises(store):
    catalog = RequirementCatalog.from_records(
        [{"state": "DE", "entityType": "LLC", "dueDateType": "FixedDate", "frequency": "Annual"}]
    )
    directory = InMemoryEntityDirectory([BusinessEntity("acme", "DE", "LLC", date(2020, 3, 15))])
    with pytest.raises(ConfigurationError):
        EventGenerator(catalog, directory, store).create("acme", now=datetime(2024, 1, 1))
    assert len(store) == 0


def test_generate_all_skips_entities_without_policy(catalog, store):
    directory = InMemoryEntityDirectory(
        [
            BusinessEntity("acme", "DE", "LLC", date(2020, 3, 15)),
            BusinessEntity("nowhere", "ZZ", "LLC", date(2020, 3, 15)),
        ]
    )
    report = EventGenerator(catalog, directory, store).generate_all(datetime(2024, 5, 1))
    assert [e.business_entity_id for e in report.created] == ["acme"]
    assert report.skipped == ["nowhere"]

    again = EventGenerator(catalog, directory, store).generate_all(datetime(2024, 5, 1))
    assert again.created == []
    assert len(again.existing) == 1
