"""
duewatch.directory
==================

Read side of the external entity directory.

duewatch never creates or edits business entities; it only needs
``{id, state, entity_type, formation_date}`` to resolve policy.  The
in-memory :class:`InMemoryEntityDirectory` mirrors the registry style
used elsewhere and is what tests and the seed script use; the SQL-backed
variant lives in :pymod:`duewatch.store_db`.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Dict, Iterable, Iterator

from .errors import EntityNotFound
from .models import BusinessEntity


class EntityDirectory(ABC):
    """Abstract lookup of business entities by id."""

    @abstractmethod
    def get_entity(self, entity_id: str) -> BusinessEntity:
        """Return the entity or raise :class:`EntityNotFound`."""

    @abstractmethod
    def __iter__(self) -> Iterator[BusinessEntity]:
        """Iterate over every entity the directory knows about."""


class InMemoryEntityDirectory(EntityDirectory):
    """
    Dictionary-backed directory.

    Example
    -------
    >>> from datetime import date
    >>> d = InMemoryEntityDirectory()
    >>> d.add(BusinessEntity("ent-1", "DE", "LLC", date(2023, 1, 10)))
    >>> d.get_entity("ent-1").state
    'DE'
    """

    def __init__(self, entities: Iterable[BusinessEntity] = ()) -> None:
        self._entities: Dict[str, BusinessEntity] = {}
        for ent in entities:
            self.add(ent)

    def add(self, ent: BusinessEntity) -> None:
        """Insert or overwrite an entity."""
        self._entities[ent.id] = ent

    def get_entity(self, entity_id: str) -> BusinessEntity:
        try:
            return self._entities[entity_id]
        except KeyError:
            raise EntityNotFound(entity_id) from None

    def __iter__(self) -> Iterator[BusinessEntity]:
        return iter(self._entities.values())

    def __len__(self) -> int:
        return len(self._entities)
