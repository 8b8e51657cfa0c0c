"""
duewatch
========

Compliance deadline and reminder engine for business entities.

Given a catalog of state filing requirements and a directory of entities,
duewatch computes each entity's next due date, tracks one event per
filing period through UPCOMING → OVERDUE → COMPLETED, sends escalating
reminders as the deadline approaches and schedules the next occurrence
once a recurring filing is done.

Import structure
----------------
`import duewatch` is cheap: only the stdlib/pydantic core is imported.
The SQL adapter (:pymod:`duewatch.db`, :pymod:`duewatch.store_db`) pulls
in SQLModel and is imported only when you use it.

Sub‑modules
~~~~~~~~~~~
- :pymod:`duewatch.models`      – dataclasses + enums (entity, requirement, event, notice)
- :pymod:`duewatch.catalog`     – validated requirement catalog (pydantic)
- :pymod:`duewatch.calculator`  – due-date arithmetic and period rollover
- :pymod:`duewatch.generator`   – idempotent event creation
- :pymod:`duewatch.reminders`   – proximity bands and reminder scheduling
- :pymod:`duewatch.sweeper`     – overdue transitions and dissolution-risk flags
- :pymod:`duewatch.recurrence`  – successor events for completed filings
- :pymod:`duewatch.dashboard`   – read-only rollups
- :pymod:`duewatch.engine`      – facade and periodic tick
- :pymod:`duewatch.store`       – persistence port + in-memory store

Quick start
-----------
>>> from datetime import date, datetime
>>> from duewatch.catalog import RequirementCatalog
>>> from duewatch.directory import InMemoryEntityDirectory
>>> from duewatch.engine import ComplianceEngine
>>> from duewatch.models import BusinessEntity
>>> from duewatch.store import InMemoryEventStore
>>> directory = InMemoryEntityDirectory([BusinessEntity("ent-1", "DE", "LLC", date(2020, 3, 15))])
>>> engine = ComplianceEngine(RequirementCatalog.default(), directory, InMemoryEventStore())
>>> engine.create_event("ent-1", now=datetime(2024, 5, 1)).due_date
datetime.date(2024, 6, 1)

"""

__all__ = [
    "models",
    "catalog",
    "calculator",
    "generator",
    "reminders",
    "sweeper",
    "recurrence",
    "dashboard",
    "engine",
    "store",
]

__version__ = "0.1.0"
