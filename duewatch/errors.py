"""
duewatch.errors
===============

Exception hierarchy shared by every duewatch component.

Lookup failures subclass :class:`KeyError` so code written against the
dictionary-style registries keeps working unchanged.
"""

from __future__ import annotations


class DuewatchError(Exception):
    """Base class for all duewatch errors."""


class CatalogError(DuewatchError):
    """Requirement data is malformed or violates a catalog invariant."""


class ConfigurationError(DuewatchError):
    """A requirement is missing the field its ``due_date_type`` needs."""


class RequirementNotFound(DuewatchError, KeyError):
    """No active requirement for a (state, entity_type) pair."""

    def __init__(self, state: str, entity_type: str) -> None:
        super().__init__(f"no active requirement for {entity_type} in {state}")
        self.state = state
        self.entity_type = entity_type

    def __str__(self) -> str:
        return self.args[0]


class EntityNotFound(DuewatchError, KeyError):
    """The entity directory has no record for an id."""

    def __str__(self) -> str:
        return f"entity not found: {self.args[0]}"


class EventNotFound(DuewatchError, KeyError):
    """The store has no event with the given id."""

    def __str__(self) -> str:
        return f"event not found: {self.args[0]}"


class IllegalTransition(DuewatchError, ValueError):
    """Requested status change is not allowed by the event state machine."""


class IdempotencyConflict(DuewatchError):
    """Two writers raced to insert the same (entity, obligation, period)."""

    def __init__(self, key) -> None:
        super().__init__(f"event already exists for {key}")
        self.key = key


class StaleWriteError(DuewatchError):
    """A compare-and-swap write lost to a concurrent writer."""

    def __init__(self, event_id: int, field: str) -> None:
        super().__init__(f"stale write on event {event_id} ({field})")
        self.event_id = event_id
        self.field = field
