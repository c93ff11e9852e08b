"""Generic consolidation engine.

One implementation serves every entity type: the per-type behaviour lives
in an ``EntityTypeSpec`` (field rules, derived fields, required fields,
quality table, checks). For each canonical id the engine runs, in order:

  1. resolve declared fields from the grouped source rows,
  2. derive fields from the resolved values,
  3. score completeness and quality,
  4. run post-quality assessments,
  5. collect diagnostic flags and fingerprint the result.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import date, datetime
from typing import TYPE_CHECKING, Any

import structlog

from canonlens.consolidation.fx import FxRateTable
from canonlens.consolidation.rules import DerivationContext, resolve_field
from canonlens.records import (
    CALCULATION_VARIANCE,
    INVALID_FORMAT,
    MISSING_CROSS_REFERENCE,
    SOURCE_LABELS,
    CanonicalEntity,
    SourceRecord,
    date_sort_key,
    is_populated,
    sort_flags,
)
from canonlens.resolution.xref import UNKNOWN, KeyIndex, ResolvedReference
from canonlens.scoring.fingerprint import content_hash
from canonlens.scoring.quality import completeness_score
from canonlens.validation import format_violations, variance_violations

if TYPE_CHECKING:
    from canonlens.registry.base import EntityTypeSpec

logger = structlog.get_logger(__name__)

MULTI_SOURCE = "MULTI_SOURCE"
NO_SOURCE = "NO_SOURCE"


def source_coverage(source_systems: Sequence[str]) -> str:
    """``MULTI_SOURCE``, ``<LABEL>_ONLY`` for one system, or ``NO_SOURCE``."""
    unique = sorted(set(source_systems))
    if not unique:
        return NO_SOURCE
    if len(unique) > 1:
        return MULTI_SOURCE
    return f"{SOURCE_LABELS.get(unique[0], unique[0])}_ONLY"


# ---------------------------------------------------------------------------
# Grouping
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class EntityGroup:
    canonical_id: str
    records: tuple[SourceRecord, ...]
    reference: ResolvedReference | None = None
    is_placeholder: bool = False


def group_records(
    spec: EntityTypeSpec,
    records: Iterable[SourceRecord],
    key_index: KeyIndex,
) -> tuple[list[EntityGroup], int]:
    """Partition records of one entity type by canonical id.

    Records the cross-reference does not cover go under a placeholder id.
    Records with no derivable id at all are dropped and counted.

    Returns ``(groups, dropped)``; groups are ordered by canonical id and the
    rows inside each group by declared source priority then natural key.
    """
    buckets: dict[str, list[SourceRecord]] = {}
    references: dict[str, ResolvedReference] = {}
    placeholders: set[str] = set()
    dropped = 0

    for record in records:
        if record.entity_type != spec.entity_type:
            continue

        ref = None
        if spec.uses_cross_reference and is_populated(record.source_key):
            ref = key_index.get(
                (spec.entity_type, record.source_system, str(record.source_key).strip())
            )

        if ref is not None:
            canonical_id = ref.canonical_id
            references[canonical_id] = ref
        else:
            canonical_id = spec.derive_id(record)
            if canonical_id is None:
                dropped += 1
                logger.warning(
                    "source_record_dropped",
                    entity_type=spec.entity_type,
                    source_system=record.source_system,
                    record_id=record.record_id,
                    reason="no_canonical_id",
                )
                continue
            if spec.uses_cross_reference:
                placeholders.add(canonical_id)

        buckets.setdefault(canonical_id, []).append(record)

    order = {system: i for i, system in enumerate(spec.source_order)}

    def row_key(r: SourceRecord) -> tuple:
        return (order.get(r.source_system, len(order)), r.source_system, r.natural_key)

    groups = [
        EntityGroup(
            canonical_id=cid,
            records=tuple(sorted(buckets[cid], key=row_key)),
            reference=references.get(cid),
            is_placeholder=cid in placeholders and cid not in references,
        )
        for cid in sorted(buckets)
    ]
    return groups, dropped


# ---------------------------------------------------------------------------
# Per-entity consolidation
# ---------------------------------------------------------------------------


def _audit_dates(group: EntityGroup) -> tuple[Any, Any]:
    created = [r.fields.get("created_at") for r in group.records]
    created = [c for c in created if c is not None]
    if not created:
        created = [r.last_modified for r in group.records if r.last_modified is not None]
    created_at = min(created, key=date_sort_key) if created else None

    modified = [r.last_modified for r in group.records if r.last_modified is not None]
    if group.reference is not None and group.reference.last_modified is not None:
        modified.append(group.reference.last_modified)
    updated_at = max(modified, key=date_sort_key) if modified else None
    return created_at, updated_at


def consolidate_group(
    spec: EntityTypeSpec,
    group: EntityGroup,
    *,
    as_of: date,
    fx: FxRateTable,
    reporting_currency: str = "USD",
    processed_at: datetime | None = None,
) -> CanonicalEntity:
    """Build the canonical entity for one canonical id."""
    ctx = DerivationContext(as_of=as_of, fx=fx, reporting_currency=reporting_currency)

    # 1. Resolve
    fields: dict[str, Any] = {"id": group.canonical_id}
    for rule in spec.rules:
        fields[rule.field] = resolve_field(rule, group.records)
    fields["created_at"], fields["updated_at"] = _audit_dates(group)

    # 2. Derive
    for item in spec.derived:
        fields[item.field] = item.compute(fields, ctx)

    # 3. Quality
    confidence = group.reference.resolution_confidence if group.reference else UNKNOWN
    completeness = completeness_score(fields, spec.required_fields)
    quality = spec.quality.rate(confidence, completeness)

    # 4. Assess
    view = dict(fields)
    view.update(
        completeness_score=completeness,
        quality_rating=quality,
        resolution_confidence=confidence,
    )
    for item in spec.assessments:
        fields[item.field] = view[item.field] = item.compute(view, ctx)

    # 5. Diagnose and fingerprint
    flags = set(ctx.flags)
    if group.is_placeholder:
        flags.add(MISSING_CROSS_REFERENCE)
    if format_violations(fields, spec.format_checks):
        flags.add(INVALID_FORMAT)
    variance = tuple(variance_violations(fields, spec.variance_checks))
    if variance:
        flags.add(CALCULATION_VARIANCE)

    order = {system: i for i, system in enumerate(spec.source_order)}
    systems = tuple(
        sorted({r.source_system for r in group.records}, key=lambda s: (order.get(s, len(order)), s))
    )
    coverage = source_coverage(systems)
    flag_tuple = sort_flags(flags)

    fingerprint = content_hash(
        {
            **fields,
            "completeness_score": completeness,
            "quality_rating": quality,
            "resolution_confidence": confidence,
            "source_systems": list(systems),
            "source_coverage": coverage,
            "data_quality_flags": list(flag_tuple),
        }
    )

    return CanonicalEntity(
        entity_type=spec.entity_type,
        canonical_id=group.canonical_id,
        fields=fields,
        completeness_score=completeness,
        quality_rating=quality,
        resolution_confidence=confidence,
        source_systems=systems,
        source_coverage=coverage,
        is_placeholder=group.is_placeholder,
        content_hash=fingerprint,
        data_quality_flags=flag_tuple,
        variance_fields=variance,
        processed_at=processed_at,
    )


def consolidate_entities(
    spec: EntityTypeSpec,
    records: Iterable[SourceRecord],
    key_index: KeyIndex,
    *,
    as_of: date,
    fx: FxRateTable | None = None,
    reporting_currency: str = "USD",
    processed_at: datetime | None = None,
) -> tuple[list[CanonicalEntity], dict[str, int]]:
    """Consolidate every canonical id of one entity type.

    Returns
    -------
    tuple
        ``(entities, stats)`` where stats is
        ``{"entities": int, "placeholders": int, "dropped": int, "flagged": int}``
    """
    fx = fx if fx is not None else FxRateTable()
    groups, dropped = group_records(spec, records, key_index)

    entities = [
        consolidate_group(
            spec,
            group,
            as_of=as_of,
            fx=fx,
            reporting_currency=reporting_currency,
            processed_at=processed_at,
        )
        for group in groups
    ]

    stats = {
        "entities": len(entities),
        "placeholders": sum(1 for e in entities if e.is_placeholder),
        "dropped": dropped,
        "flagged": sum(1 for e in entities if e.data_quality_flags),
    }
    logger.info("entity_type_consolidated", entity_type=spec.entity_type, **stats)
    return entities, stats
