"""Generic association builder.

Associations are an edge list keyed by ``(entity_id, target_id)``. Each
``AssociationSpec`` says which source rows feed the edges and how one row
turns into zero or more ``Contribution``s. The builder then, per edge:

  1. merges contribution attributes and resolves aggregate rules,
  2. sums allocations and clamps them into [0, 100],
  3. picks exactly one primary edge per entity,
  4. derives categories through rule tables,
  5. flags and fingerprints the edge.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from datetime import date
from typing import Any

import structlog

from canonlens.consolidation.fx import FxRateTable
from canonlens.consolidation.rules import DerivationContext, DerivedField, FieldRule, resolve_field
from canonlens.records import (
    INVALID_FORMAT,
    MISSING_CROSS_REFERENCE,
    AssociationRecord,
    SourceRecord,
    is_populated,
    sort_flags,
)
from canonlens.resolution.placeholders import placeholder_id
from canonlens.resolution.xref import KeyIndex
from canonlens.scoring.fingerprint import content_hash
from canonlens.scoring.thresholds import as_number
from canonlens.validation import FormatCheck, format_violations

logger = structlog.get_logger(__name__)


# ---------------------------------------------------------------------------
# Endpoints and contributions
# ---------------------------------------------------------------------------


def resolve_endpoint(
    key_index: KeyIndex,
    entity_type: str,
    source_system: str,
    source_key: Any,
) -> tuple[str | None, bool]:
    """Canonical id for a source key, falling back to a placeholder id.

    Returns ``(canonical_id, is_placeholder)``; ``(None, False)`` when the
    key is blank.
    """
    if not is_populated(source_key):
        return None, False
    key = str(source_key).strip()
    ref = key_index.get((entity_type, source_system, key))
    if ref is not None:
        return ref.canonical_id, False
    return placeholder_id(entity_type, key), True


@dataclass(frozen=True)
class Contribution:
    """One source row's claim on one edge."""

    entity_id: str
    target_id: str
    record: SourceRecord
    allocation: float | None = None
    claims_primary: bool = False
    attributes: Mapping[str, Any] = field(default_factory=dict)
    unresolved: bool = False


Extractor = Callable[[SourceRecord, KeyIndex], Iterable[Contribution]]


@dataclass(frozen=True)
class AssociationSpec:
    association_type: str
    code: str
    entity_type: str  # type of the source rows that feed the edges
    record_kinds: tuple[str, ...]
    extract: Extractor
    source_order: tuple[str, ...]
    rules: tuple[FieldRule, ...] = ()
    derived: tuple[DerivedField, ...] = ()
    # Numeric edge field whose share of the entity's total becomes the allocation.
    allocation_basis: str | None = None
    format_checks: tuple[FormatCheck, ...] = ()

    def __post_init__(self) -> None:
        names = [r.field for r in self.rules] + [d.field for d in self.derived]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            raise ValueError(f"{self.association_type}: fields declared twice: {duplicates}")

    def accepts(self, record: SourceRecord) -> bool:
        return record.entity_type == self.entity_type and record.record_kind in self.record_kinds

    def relationship_id(self, entity_id: str, target_id: str) -> str:
        return f"REL-{self.code}-{entity_id}-{target_id}"


# ---------------------------------------------------------------------------
# Building
# ---------------------------------------------------------------------------


def clamp_allocation(value: Any) -> float:
    """Allocation percentage clamped into [0, 100]; undefined becomes 0."""
    number = as_number(value)
    if number is None:
        return 0.0
    return round(min(100.0, max(0.0, number)), 4)


@dataclass
class _Edge:
    entity_id: str
    target_id: str
    contributions: list[Contribution]
    fields: dict[str, Any]
    source_systems: tuple[str, ...]
    records: tuple[SourceRecord, ...]
    best_rank: int
    claims_primary: bool
    allocation: float = 0.0
    is_primary: bool = False


def _unique(records: Iterable[SourceRecord]) -> tuple[SourceRecord, ...]:
    seen: set[int] = set()
    out = []
    for record in records:
        if id(record) not in seen:
            seen.add(id(record))
            out.append(record)
    return tuple(out)


def _collect(
    spec: AssociationSpec,
    records: Iterable[SourceRecord],
    key_index: KeyIndex,
) -> list[_Edge]:
    buckets: dict[tuple[str, str], list[Contribution]] = {}
    for record in records:
        if not spec.accepts(record):
            continue
        for contribution in spec.extract(record, key_index):
            buckets.setdefault((contribution.entity_id, contribution.target_id), []).append(
                contribution
            )

    order = {system: i for i, system in enumerate(spec.source_order)}

    def rank(system: str) -> int:
        return order.get(system, len(order))

    edges = []
    for entity_id, target_id in sorted(buckets):
        contributions = sorted(
            buckets[(entity_id, target_id)],
            key=lambda c: (rank(c.record.source_system), c.record.source_system, c.record.natural_key),
        )
        rows = _unique(c.record for c in contributions)

        fields: dict[str, Any] = {}
        for contribution in contributions:
            for name, value in contribution.attributes.items():
                if fields.get(name) is None:
                    fields[name] = value
        for rule in spec.rules:
            fields[rule.field] = resolve_field(rule, rows)

        systems = tuple(
            sorted({r.source_system for r in rows}, key=lambda s: (rank(s), s))
        )
        # Priority comes from the sources that claim this edge as primary.
        claiming = [c for c in contributions if c.claims_primary] or contributions
        edges.append(
            _Edge(
                entity_id=entity_id,
                target_id=target_id,
                contributions=contributions,
                fields=fields,
                source_systems=systems,
                records=rows,
                best_rank=min(rank(c.record.source_system) for c in claiming),
                claims_primary=any(c.claims_primary for c in contributions),
            )
        )
    return edges


def _allocate(spec: AssociationSpec, edges: list[_Edge]) -> None:
    if spec.allocation_basis is None:
        for edge in edges:
            values = [as_number(c.allocation) for c in edge.contributions]
            edge.allocation = clamp_allocation(sum(v for v in values if v is not None))
        return

    totals: dict[str, float] = {}
    for edge in edges:
        basis = as_number(edge.fields.get(spec.allocation_basis))
        if basis is not None and basis > 0:
            totals[edge.entity_id] = totals.get(edge.entity_id, 0.0) + basis
    for edge in edges:
        basis = as_number(edge.fields.get(spec.allocation_basis))
        total = totals.get(edge.entity_id)
        if basis is None or basis <= 0 or not total:
            edge.allocation = 0.0
        else:
            edge.allocation = clamp_allocation(basis / total * 100)


def _select_primary(edges: list[_Edge]) -> None:
    """Mark exactly one primary edge per entity.

    Edges with a primary-claiming contribution are preferred; among the
    candidates the best priority among the claiming sources wins, then the
    highest allocation, then the smallest target id.
    """
    by_entity: dict[str, list[_Edge]] = {}
    for edge in edges:
        by_entity.setdefault(edge.entity_id, []).append(edge)
    for group in by_entity.values():
        candidates = [e for e in group if e.claims_primary] or group
        best = min(candidates, key=lambda e: (e.best_rank, -e.allocation, e.target_id))
        best.is_primary = True


def build_associations(
    spec: AssociationSpec,
    records: Iterable[SourceRecord],
    key_index: KeyIndex,
    *,
    as_of: date,
    fx: FxRateTable | None = None,
    reporting_currency: str = "USD",
) -> tuple[list[AssociationRecord], dict[str, int]]:
    """Build every edge of one association type.

    Returns
    -------
    tuple
        ``(associations, stats)`` where stats is
        ``{"associations": int, "primary": int, "flagged": int}``
    """
    fx = fx if fx is not None else FxRateTable()
    edges = _collect(spec, records, key_index)
    _allocate(spec, edges)
    _select_primary(edges)

    associations = []
    for edge in edges:
        ctx = DerivationContext(as_of=as_of, fx=fx, reporting_currency=reporting_currency)
        view = dict(edge.fields)
        view.update(
            entity_id=edge.entity_id,
            target_id=edge.target_id,
            allocation_percentage=edge.allocation,
            is_primary=edge.is_primary,
            source_record_count=len(edge.records),
            source_systems=list(edge.source_systems),
        )
        categories: dict[str, Any] = {}
        for item in spec.derived:
            categories[item.field] = view[item.field] = item.compute(view, ctx)

        flags = set(ctx.flags)
        if any(c.unresolved for c in edge.contributions):
            flags.add(MISSING_CROSS_REFERENCE)
        if format_violations(view, spec.format_checks):
            flags.add(INVALID_FORMAT)
        flag_tuple = sort_flags(flags)

        relationship_id = spec.relationship_id(edge.entity_id, edge.target_id)
        fingerprint = content_hash(
            {
                "relationship_id": relationship_id,
                "allocation_percentage": edge.allocation,
                "is_primary": edge.is_primary,
                "fields": edge.fields,
                "categories": categories,
                "source_systems": list(edge.source_systems),
                "data_quality_flags": list(flag_tuple),
            }
        )
        associations.append(
            AssociationRecord(
                association_type=spec.association_type,
                entity_id=edge.entity_id,
                target_id=edge.target_id,
                allocation_percentage=edge.allocation,
                is_primary=edge.is_primary,
                categories=categories,
                fields=dict(edge.fields),
                source_systems=edge.source_systems,
                source_record_count=len(edge.records),
                data_quality_flags=flag_tuple,
                relationship_id=relationship_id,
                content_hash=fingerprint,
            )
        )

    stats = {
        "associations": len(associations),
        "primary": sum(1 for a in associations if a.is_primary),
        "flagged": sum(1 for a in associations if a.data_quality_flags),
    }
    logger.info("associations_built", association_type=spec.association_type, **stats)
    return associations, stats
