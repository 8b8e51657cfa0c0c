"""
duewatch.catalog
================

Read-only registry of filing policy keyed by ``(state, entity_type)``.

Rows come from configuration (a JSON file or plain dicts) and are
validated with pydantic when the catalog is built.  Anything malformed,
or two *active* rows for the same key, fails the load with
:class:`~duewatch.errors.CatalogError` before a single event is generated.

A missing ``fixed_due_date`` / ``due_date_offset_days`` is **not** a load
error: it surfaces as :class:`~duewatch.errors.ConfigurationError` when
the calculator needs the field, so only that pair is skipped.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic.alias_generators import to_camel

from .calculator import clamp_date
from .errors import CatalogError, RequirementNotFound
from .models import ComplianceRequirement, DueDateType, Frequency, Priority

logger = logging.getLogger(__name__)

DEFAULT_CATALOG = Path(__file__).resolve().parent / "data" / "requirements.json"


class RequirementRecord(BaseModel):
    """
    Wire shape of one requirement row.

    Accepts snake_case or camelCase keys, so exports from the admin tool
    load without a mapping step.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    state: str = Field(min_length=2, max_length=2)
    entity_type: str = Field(min_length=1)
    obligation_type: Optional[str] = None
    due_date_type: DueDateType
    frequency: Frequency = Frequency.ANNUAL
    fixed_due_date: Optional[tuple[int, int]] = None
    due_date_offset_days: Optional[int] = None
    grace_period_days: int = Field(0, ge=0)
    filing_fee_amount: int = Field(0, ge=0)
    late_fee_amount: int = Field(0, ge=0)
    dissolution_threat_days: Optional[int] = Field(None, ge=0)
    is_active: bool = True
    report_name: Optional[str] = None
    filing_link: Optional[str] = None
    priority: Priority = Priority.HIGH

    @field_validator("state")
    @classmethod
    def _upper_state(cls, v: str) -> str:
        if not v.isalpha():
            raise ValueError("state must be a two-letter code")
        return v.upper()

    @field_validator("due_date_type", "frequency", "priority", mode="before")
    @classmethod
    def _parse_enum(cls, v: Any, info):
        enum_cls = cls.model_fields[info.field_name].annotation
        try:
            return enum_cls.parse(v)
        except ValueError as exc:
            raise ValueError(str(exc)) from None

    @field_validator("fixed_due_date", mode="before")
    @classmethod
    def _parse_month_day(cls, v: Any):
        """``"MM-DD"`` → ``(month, day)``; Feb 29 is allowed (clamped later)."""
        if v is None or isinstance(v, tuple):
            return v
        text = str(v).strip()
        parts = text.split("-")
        if len(parts) != 2 or not all(p.isdigit() and len(p) == 2 for p in parts):
            raise ValueError(f"fixed_due_date must be MM-DD, got {text!r}")
        month, day = int(parts[0]), int(parts[1])
        if not 1 <= month <= 12:
            raise ValueError(f"fixed_due_date month out of range: {text!r}")
        # validate against a leap year so 02-29 passes
        if day < 1 or clamp_date(2024, month, day).day != day:
            raise ValueError(f"fixed_due_date day out of range: {text!r}")
        return (month, day)

    def to_requirement(self) -> ComplianceRequirement:
        """Convert the validated row into the plain dataclass used by the core."""
        return ComplianceRequirement(
            state=self.state,
            entity_type=self.entity_type,
            obligation_type=self.obligation_type or self.report_name or "Annual Report",
            due_date_type=self.due_date_type,
            frequency=self.frequency,
            fixed_due_date=self.fixed_due_date,
            due_date_offset_days=self.due_date_offset_days,
            grace_period_days=self.grace_period_days,
            filing_fee_amount=self.filing_fee_amount,
            late_fee_amount=self.late_fee_amount,
            dissolution_threat_days=self.dissolution_threat_days,
            is_active=self.is_active,
            report_name=self.report_name,
            filing_link=self.filing_link,
            priority=self.priority,
        )


class RequirementCatalog:
    """
    Dictionary-backed lookup of *active* requirements.

    Example
    -------
    >>> cat = RequirementCatalog.default()
    >>> cat.get("DE", "LLC").fixed_due_date
    (6, 1)
    """

    def __init__(self, requirements: Iterable[ComplianceRequirement]) -> None:
        self._active: Dict[tuple[str, str], ComplianceRequirement] = {}
        self._inactive = 0
        for req in requirements:
            if not req.is_active:
                self._inactive += 1
                continue
            if req.key in self._active:
                raise CatalogError(
                    f"duplicate active requirement for {req.entity_type} in {req.state}"
                )
            self._active[req.key] = req

    # ------------------------------------------------------------------
    # Constructors
    # ------------------------------------------------------------------
    @classmethod
    def from_records(cls, rows: Iterable[Dict[str, Any]]) -> "RequirementCatalog":
        """Validate raw rows and build a catalog (fail fast on the first bad row)."""
        parsed: List[ComplianceRequirement] = []
        for i, row in enumerate(rows):
            try:
                parsed.append(RequirementRecord.model_validate(row).to_requirement())
            except ValidationError as exc:
                raise CatalogError(f"requirement row {i} is malformed: {exc}") from exc
        catalog = cls(parsed)
        logger.info(
            f"Loaded {len(catalog)} active requirements ({catalog._inactive} inactive skipped)"
        )
        return catalog

    @classmethod
    def from_file(cls, path: str | Path) -> "RequirementCatalog":
        """Load a JSON list of rows, or an object with a ``requirements`` list."""
        path = Path(path)
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            raise CatalogError(f"cannot read requirement catalog {path}: {exc}") from exc
        if isinstance(data, dict):
            data = data.get("requirements", [])
        if not isinstance(data, list):
            raise CatalogError(f"{path}: expected a list of requirement rows")
        return cls.from_records(data)

    @classmethod
    def default(cls) -> "RequirementCatalog":
        """Catalog bundled with the package."""
        return cls.from_file(DEFAULT_CATALOG)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def get(self, state: str, entity_type: str) -> ComplianceRequirement:
        """Return the active requirement or raise :class:`RequirementNotFound`."""
        req = self.find(state, entity_type)
        if req is None:
            raise RequirementNotFound(state, entity_type)
        return req

    def find(self, state: str, entity_type: str) -> Optional[ComplianceRequirement]:
        return self._active.get((state.upper(), entity_type.upper()))

    def by_obligation(self, state: str, entity_type: str, obligation_type: str) -> ComplianceRequirement:
        """Like :pymeth:`get` but also checks the obligation name matches."""
        req = self.get(state, entity_type)
        if req.obligation_type != obligation_type:
            raise RequirementNotFound(state, f"{entity_type} ({obligation_type})")
        return req

    def __iter__(self) -> Iterator[ComplianceRequirement]:
        return iter(self._active.values())

    def __len__(self) -> int:
        return len(self._active)

    def __contains__(self, key: tuple[str, str]) -> bool:
        state, entity_type = key
        return self.find(state, entity_type) is not None
