#!/usr/bin/env python
"""
Seed database with sample entities for testing.

This script registers sample entities in the database and generates their
first compliance events so the dashboard has meaningful data.
"""

import json
import logging
from datetime import date

from duewatch.db import Database
from duewatch.engine import engine_from_settings
from duewatch.models import BusinessEntity
from duewatch.settings import settings

# Sample entities across the catalog's states and policy kinds
SAMPLE_ENTITIES = [
    BusinessEntity("acme-llc", "DE", "LLC", date(2020, 3, 15), name="Acme LLC"),
    BusinessEntity("central-holdings", "DE", "Corporation", date(2017, 9, 8), name="Central Holdings Inc"),
    BusinessEntity("techstart-llc", "CA", "LLC", date(2022, 7, 1), name="TechStart LLC"),
    BusinessEntity("pacific-group", "CA", "Corporation", date(2023, 1, 28), name="Pacific Group Inc"),
    BusinessEntity("widget-industries", "NY", "LLC", date(2019, 6, 22), name="Widget Industries LLC"),
    BusinessEntity("global-services", "TX", "LLC", date(2018, 11, 5), name="Global Services LLC"),
    BusinessEntity("sunrise-ventures", "WY", "LLC", date(2022, 4, 12), name="Sunrise Ventures LLC"),
    BusinessEntity("legacy-systems", "FL", "LLC", date(2015, 8, 30), name="Legacy Systems LLC"),
]

# Add additional entities from sample_entities.json if available
try:
    with open("sample_entities.json", "r") as f:
        sample_data = json.load(f)

    for entity_data in sample_data:
        SAMPLE_ENTITIES.append(
            BusinessEntity(
                id=entity_data["id"],
                state=entity_data["state"],
                entity_type=entity_data["entityType"],
                formation_date=date.fromisoformat(entity_data["formationDate"]),
                name=entity_data.get("name"),
            )
        )
except (FileNotFoundError, json.JSONDecodeError):
    # Continue with default sample entities
    pass


def seed_database(db: Database):
    """Add sample entities and their initial events to the database."""
    engine = engine_from_settings(settings, db)

    for entity in SAMPLE_ENTITIES:
        engine.directory.add(entity)
        print(f"Added: {entity.name} ({entity.state} {entity.entity_type})")

    report = engine.generate_all()
    for event in report.created:
        print(f"  {event.business_entity_id}: {event.obligation_type} {event.period} due {event.due_date}")

    print(f"\nAdded {len(SAMPLE_ENTITIES)} entities and {len(report.created)} events to the database!")
    if report.skipped:
        print(f"Skipped (no requirement): {', '.join(report.skipped)}")


if __name__ == "__main__":
    logging.basicConfig(level=settings.log_level.upper())
    with Database(settings.db_url, echo=settings.db_echo) as db:
        # Initialize DB if needed
        print("Ensuring database tables exist...")
        db.create_all()

        # Seed the database
        print("Seeding database with sample entities...")
        seed_database(db)
