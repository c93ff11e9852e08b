"""Persist a consolidation run into PostgreSQL snapshot tables.

Rows are keyed by id and run date, so re-writing the same run replaces it
in place. Field payloads are stored as JSONB.
"""

from __future__ import annotations

import json
from collections.abc import Sequence
from datetime import date
from typing import Any

import psycopg
import structlog

from canonlens.db import execute_many, execute_query
from canonlens.records import AssociationRecord, CanonicalEntity
from canonlens.scoring.fingerprint import canonical_json

logger = structlog.get_logger(__name__)

ENTITY_UPSERT = """
    INSERT INTO canonical_entities_snapshot
        (canonical_id, run_date, entity_type, fields, completeness_score,
         quality_rating, resolution_confidence, source_systems, source_coverage,
         is_placeholder, data_quality_flags, content_hash, processed_at)
    VALUES (%s, %s, %s, %s::jsonb, %s, %s, %s, %s, %s, %s, %s::jsonb, %s, %s)
    ON CONFLICT (canonical_id, run_date)
    DO UPDATE SET
        entity_type = EXCLUDED.entity_type,
        fields = EXCLUDED.fields,
        completeness_score = EXCLUDED.completeness_score,
        quality_rating = EXCLUDED.quality_rating,
        resolution_confidence = EXCLUDED.resolution_confidence,
        source_systems = EXCLUDED.source_systems,
        source_coverage = EXCLUDED.source_coverage,
        is_placeholder = EXCLUDED.is_placeholder,
        data_quality_flags = EXCLUDED.data_quality_flags,
        content_hash = EXCLUDED.content_hash,
        processed_at = EXCLUDED.processed_at
"""

ASSOCIATION_UPSERT = """
    INSERT INTO canonical_associations_snapshot
        (relationship_id, run_date, association_type, entity_id, target_id,
         allocation_percentage, is_primary, categories, fields, source_systems,
         source_record_count, data_quality_flags, content_hash)
    VALUES (%s, %s, %s, %s, %s, %s, %s, %s::jsonb, %s::jsonb, %s, %s, %s::jsonb, %s)
    ON CONFLICT (relationship_id, run_date)
    DO UPDATE SET
        allocation_percentage = EXCLUDED.allocation_percentage,
        is_primary = EXCLUDED.is_primary,
        categories = EXCLUDED.categories,
        fields = EXCLUDED.fields,
        source_systems = EXCLUDED.source_systems,
        source_record_count = EXCLUDED.source_record_count,
        data_quality_flags = EXCLUDED.data_quality_flags,
        content_hash = EXCLUDED.content_hash
"""


def _jsonb(payload: Any) -> str:
    """JSON text for a JSONB column; dates and decimals as in the content hash."""
    if isinstance(payload, dict):
        return canonical_json(payload, exclude=())
    return json.dumps(payload)


def entity_params(entity: CanonicalEntity, run_date: date) -> tuple:
    return (
        entity.canonical_id,
        run_date,
        entity.entity_type,
        _jsonb(entity.fields),
        entity.completeness_score,
        entity.quality_rating,
        entity.resolution_confidence,
        ", ".join(entity.source_systems),
        entity.source_coverage,
        entity.is_placeholder,
        _jsonb(list(entity.data_quality_flags)),
        entity.content_hash,
        entity.processed_at,
    )


def association_params(association: AssociationRecord, run_date: date) -> tuple:
    return (
        association.relationship_id,
        run_date,
        association.association_type,
        association.entity_id,
        association.target_id,
        association.allocation_percentage,
        association.is_primary,
        _jsonb(association.categories),
        _jsonb(association.fields),
        ", ".join(association.source_systems),
        association.source_record_count,
        _jsonb(list(association.data_quality_flags)),
        association.content_hash,
    )


def _write_batches(
    conn: psycopg.Connection,
    sql: str,
    params: list[tuple],
    batch_size: int,
) -> int:
    written = 0
    for start in range(0, len(params), batch_size):
        written += execute_many(conn, sql, params[start : start + batch_size])
    return written


def write_entities(
    conn: psycopg.Connection,
    entities: Sequence[CanonicalEntity],
    run_date: date,
    *,
    batch_size: int = 500,
) -> int:
    """Upsert canonical entities. Returns the number of rows written."""
    params = [entity_params(e, run_date) for e in entities]
    return _write_batches(conn, ENTITY_UPSERT, params, batch_size)


def write_associations(
    conn: psycopg.Connection,
    associations: Sequence[AssociationRecord],
    run_date: date,
    *,
    batch_size: int = 500,
) -> int:
    """Upsert association records. Returns the number of rows written."""
    params = [association_params(a, run_date) for a in associations]
    return _write_batches(conn, ASSOCIATION_UPSERT, params, batch_size)


def write_snapshot(
    conn: psycopg.Connection,
    entities: Sequence[CanonicalEntity],
    associations: Sequence[AssociationRecord],
    run_date: date,
    *,
    batch_size: int = 500,
) -> dict[str, int]:
    """Write one run's entities and associations. The caller commits."""
    stats = {
        "entities_written": write_entities(conn, entities, run_date, batch_size=batch_size),
        "associations_written": write_associations(
            conn, associations, run_date, batch_size=batch_size
        ),
    }
    logger.info("snapshot_written", run_date=run_date.isoformat(), **stats)
    return stats


def previous_hashes(conn: psycopg.Connection, run_date: date) -> dict[str, str]:
    """Entity content hashes from the latest run strictly before *run_date*."""
    rows = execute_query(
        conn,
        """
        SELECT canonical_id, content_hash
        FROM canonical_entities_snapshot
        WHERE run_date = (
            SELECT max(run_date) FROM canonical_entities_snapshot WHERE run_date < %s
        )
        """,
        (run_date,),
    )
    return {row["canonical_id"]: row["content_hash"] for row in rows}


def count_unchanged(entities: Sequence[CanonicalEntity], previous: dict[str, str]) -> int:
    """Entities whose content hash matches the previous run."""
    return sum(1 for e in entities if previous.get(e.canonical_id) == e.content_hash)
