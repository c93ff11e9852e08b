"""One consolidation run: snapshot in, canonical snapshot out.

The run is a pure function of its inputs. The as-of date and processing
timestamp are explicit arguments so that re-running on the same snapshot
reproduces every field and content hash.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import date, datetime

import structlog

from canonlens.consolidation.engine import consolidate_entities
from canonlens.consolidation.fx import FxRate, FxRateTable
from canonlens.records import AssociationRecord, CanonicalEntity, CrossReferenceEntry, SourceRecord
from canonlens.registry import ENTITY_TYPES, get_entity_type
from canonlens.relationships import ASSOCIATION_TYPES, build_associations
from canonlens.resolution.xref import ResolvedReference, build_key_index, resolve_cross_references

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class Snapshot:
    """Complete, immutable inputs of one run."""

    records: Sequence[SourceRecord]
    xrefs: Sequence[CrossReferenceEntry] = ()
    fx_rates: Sequence[FxRate] = ()


@dataclass
class ConsolidationResult:
    entities: list[CanonicalEntity] = field(default_factory=list)
    associations: list[AssociationRecord] = field(default_factory=list)
    references: list[ResolvedReference] = field(default_factory=list)
    stats: dict[str, int] = field(default_factory=dict)

    def entities_of(self, entity_type: str) -> list[CanonicalEntity]:
        return [e for e in self.entities if e.entity_type == entity_type]

    def associations_of(self, association_type: str) -> list[AssociationRecord]:
        return [a for a in self.associations if a.association_type == association_type]


def run_consolidation(
    snapshot: Snapshot,
    *,
    as_of: date,
    entity_types: Sequence[str] | None = None,
    reporting_currency: str = "USD",
    processed_at: datetime | None = None,
) -> ConsolidationResult:
    """Resolve, consolidate and relate every entity in *snapshot*.

    ``entity_types`` restricts the run to the named types; association types
    are built only when the entity type whose rows feed them is included.
    Unknown names raise ``KeyError``.
    """
    specs = (
        [get_entity_type(name) for name in entity_types]
        if entity_types
        else list(ENTITY_TYPES)
    )
    selected = {s.entity_type for s in specs}

    references = resolve_cross_references(snapshot.xrefs)
    key_index = build_key_index(references)
    fx = FxRateTable(snapshot.fx_rates)

    result = ConsolidationResult(references=references)
    totals = {"entities": 0, "placeholders": 0, "dropped": 0, "flagged": 0, "associations": 0}

    for spec in specs:
        entities, stats = consolidate_entities(
            spec,
            snapshot.records,
            key_index,
            as_of=as_of,
            fx=fx,
            reporting_currency=reporting_currency,
            processed_at=processed_at,
        )
        result.entities.extend(entities)
        for key, value in stats.items():
            totals[key] += value

    for assoc in ASSOCIATION_TYPES:
        if assoc.entity_type not in selected:
            continue
        associations, stats = build_associations(
            assoc,
            snapshot.records,
            key_index,
            as_of=as_of,
            fx=fx,
            reporting_currency=reporting_currency,
        )
        result.associations.extend(associations)
        totals["associations"] += stats["associations"]

    result.stats = totals
    logger.info(
        "consolidation_run_complete",
        as_of=as_of.isoformat(),
        references=len(references),
        **totals,
    )
    return result
