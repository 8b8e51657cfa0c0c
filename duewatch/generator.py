"""
duewatch.generator
==================

Creates compliance events.  At most one event ever exists per
``(business_entity_id, obligation_type, period)``; calling
:pymeth:`EventGenerator.create` again with the same arguments returns the
stored row untouched.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from .calculator import initial_period, schedule_due
from .catalog import RequirementCatalog
from .directory import EntityDirectory
from .errors import ConfigurationError, RequirementNotFound
from .models import BusinessEntity, ComplianceEvent, ComplianceRequirement, as_naive_utc, utcnow
from .store import EventStore

logger = logging.getLogger(__name__)


@dataclass
class GenerationReport:
    """Outcome of a batch generation run."""
    created: List[ComplianceEvent] = field(default_factory=list)
    existing: List[ComplianceEvent] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)


class EventGenerator:
    """Idempotent event factory over a catalog, a directory and a store."""

    def __init__(self, catalog: RequirementCatalog, directory: EntityDirectory, store: EventStore) -> None:
        self.catalog = catalog
        self.directory = directory
        self.store = store

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def create(
        self,
        business_entity_id: str,
        obligation_type: Optional[str] = None,
        period: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> ComplianceEvent:
        """
        Return the event for (entity, obligation, period), creating it if needed.

        Parameters
        ----------
        business_entity_id : str
            Directory id of the entity.
        obligation_type : str | None
            Must match the entity's requirement; ``None`` means "whatever the
            catalog prescribes".
        period : str | None
            Period key.  ``None`` selects the entity's initial period.
        now : datetime | None
            Evaluation time (defaults to the current UTC time).

        Raises
        ------
        EntityNotFound, RequirementNotFound, ConfigurationError
        """
        event, _ = self.create_with_flag(business_entity_id, obligation_type, period, now)
        return event

    def create_with_flag(
        self,
        business_entity_id: str,
        obligation_type: Optional[str] = None,
        period: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> tuple[ComplianceEvent, bool]:
        """Like :pymeth:`create` but also says whether a row was inserted."""
        now = utcnow() if now is None else as_naive_utc(now)
        entity = self.directory.get_entity(business_entity_id)
        requirement = self._requirement_for(entity, obligation_type)

        if period is None:
            period = initial_period(requirement, entity.formation_date, now)

        existing = self.store.find_event(entity.id, requirement.obligation_type, period)
        if existing is not None:
            return existing, False

        scheduled = schedule_due(requirement, entity.formation_date, period, now)
        if scheduled.rolled:
            logger.debug(
                f"{entity.id}: {requirement.obligation_type} {period} already past, "
                f"scheduling {scheduled.period} instead"
            )

        candidate = build_event(entity, requirement, scheduled.period, scheduled.due_date, now)
        event, created = self.store.insert_event_if_absent(candidate)
        if created:
            logger.info(
                f"Created {event.obligation_type} {event.period} for {entity.id}, due {event.due_date.isoformat()}"
            )
        return event, created

    def generate_all(self, now: Optional[datetime] = None) -> GenerationReport:
        """
        Ensure every directory entity has its initial event.

        Entities whose policy is missing or misconfigured are logged and
        skipped; they never stop the run.
        """
        now = utcnow() if now is None else as_naive_utc(now)
        report = GenerationReport()
        for entity in self.directory:
            try:
                event, created = self.create_with_flag(entity.id, now=now)
            except (ConfigurationError, RequirementNotFound) as exc:
                logger.warning(f"Skipping {entity.id}: {exc}")
                report.skipped.append(entity.id)
                continue
            (report.created if created else report.existing).append(event)
        return report

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _requirement_for(self, entity: BusinessEntity, obligation_type: Optional[str]) -> ComplianceRequirement:
        if obligation_type is None:
            return self.catalog.get(entity.state, entity.entity_type)
        return self.catalog.by_obligation(entity.state, entity.entity_type, obligation_type)


def resolve_policy(
    catalog: RequirementCatalog,
    directory: EntityDirectory,
    business_entity_id: str,
    obligation_type: str,
) -> tuple[BusinessEntity, ComplianceRequirement]:
    """Look up the entity behind an event and the requirement it was generated from."""
    entity = directory.get_entity(business_entity_id)
    return entity, catalog.by_obligation(entity.state, entity.entity_type, obligation_type)


def build_event(
    entity: BusinessEntity,
    requirement: ComplianceRequirement,
    period: str,
    due_date,
    now: datetime,
) -> ComplianceEvent:
    """Fresh UPCOMING event with zeroed reminder state."""
    return ComplianceEvent(
        business_entity_id=entity.id,
        obligation_type=requirement.obligation_type,
        period=period,
        due_date=due_date,
        frequency=requirement.frequency,
        priority=requirement.priority,
        estimated_cost=requirement.filing_fee_amount,
        filing_link=requirement.filing_link,
        created_at=now,
        updated_at=now,
    )
