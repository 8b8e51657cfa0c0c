"""
Pytest configuration: make sure `import duewatch` works regardless of
where pytest is invoked.

It prepends the project root (one directory above *tests/*) to
``sys.path`` **before** any tests are collected, and provides the shared
fixtures used across the suite.
"""

import sys
from datetime import date
from pathlib import Path

import pytest

# /path/to/project/tests -> project root
PROJECT_ROOT = Path(__file__).resolve().parent.parent

if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from duewatch.catalog import RequirementCatalog  # noqa: E402
from duewatch.directory import InMemoryEntityDirectory  # noqa: E402
from duewatch.engine import ComplianceEngine  # noqa: E402
from duewatch.models import BusinessEntity  # noqa: E402
from duewatch.notify import CollectingNotifier  # noqa: E402
from duewatch.store import InMemoryEventStore  # noqa: E402


SAMPLE_ENTITIES = [
    BusinessEntity("acme", "DE", "LLC", date(2020, 3, 15), name="Acme LLC"),
    BusinessEntity("techstart", "CA", "LLC", date(2022, 7, 1), name="TechStart LLC"),
    BusinessEntity("widget", "NY", "LLC", date(2019, 6, 22), name="Widget LLC"),
    BusinessEntity("lonestar", "TX", "LLC", date(2018, 11, 5), name="Lone Star LLC"),
]


@pytest.fixture
def catalog():
    return RequirementCatalog.default()


@pytest.fixture
def directory():
    return InMemoryEntityDirectory(SAMPLE_ENTITIES)


@pytest.fixture
def store():
    return InMemoryEventStore()


@pytest.fixture
def notifier():
    return CollectingNotifier()


@pytest.fixture
def engine(catalog, directory, store, notifier):
    return ComplianceEngine(catalog, directory, store, notifier, batch_size=2)
