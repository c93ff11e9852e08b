"""Core record types shared by every stage of a consolidation run.

All of these are immutable snapshots: source records and cross-reference
entries are produced by the staging layer, canonical entities and
association records are produced by the engine and never mutated in place.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any

# ---------------------------------------------------------------------------
# Source systems
# ---------------------------------------------------------------------------

CRM = "CRM_VENDOR"
PORTFOLIO_MGMT = "PORTFOLIO_MGMT_VENDOR"
FUND_ADMIN = "FUND_ADMIN_VENDOR"
ACCOUNTING = "ACCOUNTING_VENDOR"

SOURCE_LABELS: dict[str, str] = {
    CRM: "CRM",
    PORTFOLIO_MGMT: "PM",
    FUND_ADMIN: "ADMIN",
    ACCOUNTING: "ACCOUNTING",
}

# ---------------------------------------------------------------------------
# Diagnostic flags, most severe first
# ---------------------------------------------------------------------------

INVALID_FORMAT = "INVALID_FORMAT"
MISSING_CROSS_REFERENCE = "MISSING_CROSS_REFERENCE"
CALCULATION_VARIANCE = "CALCULATION_VARIANCE"
FX_RATE_MISSING = "FX_RATE_MISSING"

FLAG_SEVERITY: tuple[str, ...] = (
    INVALID_FORMAT,
    MISSING_CROSS_REFERENCE,
    CALCULATION_VARIANCE,
    FX_RATE_MISSING,
)


def sort_flags(flags) -> tuple[str, ...]:
    """Deduplicate flags and order them by severity."""
    rank = {flag: i for i, flag in enumerate(FLAG_SEVERITY)}
    return tuple(sorted(set(flags), key=lambda f: (rank.get(f, len(rank)), f)))


def date_sort_key(value: date | datetime | None) -> tuple[int, str]:
    """Total ordering over optional dates and datetimes. ``None`` sorts first."""
    if value is None:
        return (0, "")
    return (1, value.isoformat())


def is_populated(value: Any) -> bool:
    """A field counts as populated when it is not null and not a blank string."""
    if value is None:
        return False
    if isinstance(value, str) and not value.strip():
        return False
    return True


# ---------------------------------------------------------------------------
# Inputs
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SourceRecord:
    """One cleaned row from one source system for one entity type.

    ``source_key`` is the source system's key for the *entity* the row
    describes (e.g. the CRM company id on a CRM company row, or the PM
    company id on a PM investment row). ``record_id`` identifies the row
    itself and is the natural key used to break ties between rows.
    """

    entity_type: str
    source_system: str
    source_key: str | None
    fields: Mapping[str, Any]
    last_modified: date | datetime | None = None
    record_kind: str = "profile"
    record_id: str | None = None

    def get(self, name: str, default: Any = None) -> Any:
        value = self.fields.get(name)
        return default if value is None else value

    @property
    def natural_key(self) -> tuple[str, str]:
        return (str(self.record_id or self.source_key or ""), self.source_system)


@dataclass(frozen=True)
class CrossReferenceEntry:
    """A row of the externally maintained cross-reference mapping."""

    entity_type: str
    canonical_id: str | None
    source_keys: Mapping[str, str | None]
    resolution_confidence: str | None = None
    last_modified: date | datetime | None = None

    def linked_keys(self) -> dict[str, str]:
        """Source system -> key for every non-blank key on the entry."""
        return {
            system: str(key).strip()
            for system, key in sorted(self.source_keys.items())
            if is_populated(key)
        }


# ---------------------------------------------------------------------------
# Outputs
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CanonicalEntity:
    """The merged record for one canonical id of one entity type."""

    entity_type: str
    canonical_id: str
    fields: dict[str, Any]
    completeness_score: float
    quality_rating: str
    resolution_confidence: str
    source_systems: tuple[str, ...]
    source_coverage: str
    is_placeholder: bool
    content_hash: str
    data_quality_flags: tuple[str, ...] = ()
    variance_fields: tuple[str, ...] = ()
    processed_at: datetime | None = None

    @property
    def data_quality_flag(self) -> str | None:
        """The most severe diagnostic flag, or ``None`` for a clean record."""
        return self.data_quality_flags[0] if self.data_quality_flags else None

    def to_row(self) -> dict[str, Any]:
        """Flatten into a single dict of output columns."""
        row = dict(self.fields)
        row.update(
            {
                "id": self.canonical_id,
                "entity_type": self.entity_type,
                "completeness_score": self.completeness_score,
                "quality_rating": self.quality_rating,
                "resolution_confidence": self.resolution_confidence,
                "source_systems": ", ".join(self.source_systems),
                "source_coverage": self.source_coverage,
                "is_placeholder": self.is_placeholder,
                "data_quality_flag": self.data_quality_flag,
                "data_quality_flags": list(self.data_quality_flags),
                "variance_fields": list(self.variance_fields),
                "content_hash": self.content_hash,
                "processed_at": self.processed_at,
            }
        )
        return row


@dataclass(frozen=True)
class AssociationRecord:
    """An edge between a canonical entity and another entity or a category value."""

    association_type: str
    entity_id: str
    target_id: str
    allocation_percentage: float
    is_primary: bool = False
    categories: dict[str, Any] = field(default_factory=dict)
    fields: dict[str, Any] = field(default_factory=dict)
    source_systems: tuple[str, ...] = ()
    source_record_count: int = 0
    data_quality_flags: tuple[str, ...] = ()
    relationship_id: str = ""
    content_hash: str = ""

    @property
    def data_quality_flag(self) -> str | None:
        return self.data_quality_flags[0] if self.data_quality_flags else None

    def to_row(self) -> dict[str, Any]:
        row = dict(self.fields)
        row.update(self.categories)
        row.update(
            {
                "relationship_id": self.relationship_id,
                "association_type": self.association_type,
                "entity_id": self.entity_id,
                "target_id": self.target_id,
                "allocation_percentage": self.allocation_percentage,
                "is_primary": self.is_primary,
                "source_systems": ", ".join(self.source_systems),
                "source_record_count": self.source_record_count,
                "data_quality_flag": self.data_quality_flag,
                "content_hash": self.content_hash,
            }
        )
        return row
