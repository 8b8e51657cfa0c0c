"""
tests/test_catalog.py
=====================

Loading and validating the requirement catalog.
"""

import json

import pytest

from duewatch.catalog import RequirementCatalog
from duewatch.errors import CatalogError, RequirementNotFound
from duewatch.models import DueDateType, Frequency


def _row(**overrides):
    row = {
        "state": "DE",
        "entityType": "LLC",
        "dueDateType": "FixedDate",
        "fixedDueDate": "06-01",
        "frequency": "Annual",
        "filingFeeAmount": 30000,
    }
    row.update(overrides)
    return row


def test_default_catalog_loads_active_rows(catalog):
    req = catalog.get("DE", "LLC")
    assert req.fixed_due_date == (6, 1)
    assert req.filing_fee_amount == 30000
    assert req.dissolution_threat_days == 90
    assert ("CA", "LLC") in catalog


def test_inactive_row_is_ignored(catalog):
    """The superseded CA LLC row must not shadow the active biennial one."""
    req = catalog.get("CA", "LLC")
    assert req.due_date_type is DueDateType.FORMATION_BASED
    assert req.frequency is Frequency.BIENNIAL


def test_lookup_is_case_insensitive(catalog):
    assert catalog.get("de", "llc") is catalog.get("DE", "LLC")


def test_missing_requirement_is_a_key_error(catalog):
    with pytest.raises(RequirementNotFound):
        catalog.get("ZZ", "LLC")
    with pytest.raises(KeyError):
        catalog.get("DE", "Partnership")


def test_duplicate_active_rows_fail_the_load():
    with pytest.raises(CatalogError):
        RequirementCatalog.from_records([_row(), _row(fixedDueDate="07-01")])


def test_duplicate_allowed_when_one_is_inactive():
    cat = RequirementCatalog.from_records([_row(), _row(fixedDueDate="07-01", isActive=False)])
    assert len(cat) == 1
    assert cat.get("DE", "LLC").fixed_due_date == (6, 1)


@pytest.mark.parametrize("bad", ["6-1", "13-01", "02-30", "June 1"])
def test_malformed_month_day_fails(bad):
    with pytest.raises(CatalogError):
        RequirementCatalog.from_records([_row(fixedDueDate=bad)])


def test_leap_day_is_accepted():
    cat = RequirementCatalog.from_records([_row(fixedDueDate="02-29")])
    assert cat.get("DE", "LLC").fixed_due_date == (2, 29)


def test_unknown_enum_fails():
    with pytest.raises(CatalogError):
        RequirementCatalog.from_records([_row(frequency="Fortnightly")])


def test_snake_case_keys_and_obligation_default():
    cat = RequirementCatalog.from_records(
        [
            {
                "state": "tx",
                "entity_type": "LLC",
                "due_date_type": "FIXED_DATE",
                "fixed_due_date": "05-15",
                "report_name": "Public Information Report",
            }
        ]
    )
    req = cat.get("TX", "LLC")
    assert req.state == "TX"
    assert req.obligation_type == "Public Information Report"


def test_missing_due_field_is_deferred_to_calculation():
    """A FIXED_DATE row without a date loads; the calculator rejects it later."""
    cat = RequirementCatalog.from_records([_row(fixedDueDate=None)])
    assert cat.get("DE", "LLC").fixed_due_date is None


def test_from_file_accepts_plain_list(tmp_path):
    path = tmp_path / "reqs.json"
    path.write_text(json.dumps([_row()]))
    assert len(RequirementCatalog.from_file(path)) == 1


def test_from_file_unreadable(tmp_path):
    with pytest.raises(CatalogError):
        RequirementCatalog.from_file(tmp_path / "missing.json")
