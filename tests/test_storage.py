"""Tests for snapshot persistence.

All database interactions are mocked; no real PostgreSQL needed.
"""

from __future__ import annotations

import json
from datetime import date, datetime, timezone
from unittest.mock import MagicMock

import pytest

from canonlens.db import SNAPSHOT_SCHEMA, ensure_schema, execute_many, execute_query
from canonlens.records import AssociationRecord, CanonicalEntity
from canonlens.storage import (
    ASSOCIATION_UPSERT,
    ENTITY_UPSERT,
    association_params,
    count_unchanged,
    entity_params,
    previous_hashes,
    write_snapshot,
)

RUN_DATE = date(2024, 6, 30)


def _entity(canonical_id: str, content_hash: str = "a" * 64) -> CanonicalEntity:
    return CanonicalEntity(
        entity_type="company",
        canonical_id=canonical_id,
        fields={"id": canonical_id, "name": "Acme", "founded": date(2015, 1, 1)},
        completeness_score=90.0,
        quality_rating="EXCELLENT",
        resolution_confidence="HIGH",
        source_systems=("CRM_VENDOR", "PORTFOLIO_MGMT_VENDOR"),
        source_coverage="MULTI_SOURCE",
        is_placeholder=False,
        content_hash=content_hash,
        data_quality_flags=("FX_RATE_MISSING",),
        processed_at=datetime(2024, 7, 1, tzinfo=timezone.utc),
    )


def _association() -> AssociationRecord:
    return AssociationRecord(
        association_type="COMPANY_INDUSTRY",
        entity_id="COMP-CANON-001",
        target_id="TECHNOLOGY",
        allocation_percentage=80.0,
        is_primary=True,
        categories={"industry_risk_profile": "HIGH_VOLATILITY"},
        fields={"industry_sector": "TECHNOLOGY"},
        source_systems=("CRM_VENDOR",),
        source_record_count=1,
        relationship_id="REL-CI-COMP-CANON-001-TECHNOLOGY",
        content_hash="b" * 64,
    )


def _cursor(conn: MagicMock) -> MagicMock:
    return conn.cursor.return_value.__enter__.return_value


# =========================================================================
# Row parameters
# =========================================================================


class TestParams:
    def test_entity_params(self):
        params = entity_params(_entity("COMP-CANON-001"), RUN_DATE)
        assert params[0] == "COMP-CANON-001"
        assert params[1] == RUN_DATE
        assert json.loads(params[3]) == {
            "founded": "2015-01-01",
            "id": "COMP-CANON-001",
            "name": "Acme",
        }
        assert params[7] == "CRM_VENDOR, PORTFOLIO_MGMT_VENDOR"
        assert json.loads(params[10]) == ["FX_RATE_MISSING"]
        assert len(params) == ENTITY_UPSERT.count("%s")

    def test_association_params(self):
        params = association_params(_association(), RUN_DATE)
        assert params[0] == "REL-CI-COMP-CANON-001-TECHNOLOGY"
        assert params[5] == 80.0
        assert params[6] is True
        assert json.loads(params[7]) == {"industry_risk_profile": "HIGH_VOLATILITY"}
        assert json.loads(params[11]) == []
        assert len(params) == ASSOCIATION_UPSERT.count("%s")


# =========================================================================
# Writers
# =========================================================================


class TestWriteSnapshot:
    def test_writes_both_tables(self, mock_conn):
        stats = write_snapshot(
            mock_conn, [_entity("COMP-CANON-001")], [_association()], RUN_DATE
        )
        assert stats == {"entities_written": 1, "associations_written": 1}
        calls = _cursor(mock_conn).executemany.call_args_list
        assert calls[0].args[0] == ENTITY_UPSERT
        assert calls[1].args[0] == ASSOCIATION_UPSERT

    def test_batches(self, mock_conn):
        entities = [_entity(f"COMP-CANON-{i:03d}") for i in range(5)]
        stats = write_snapshot(mock_conn, entities, [], RUN_DATE, batch_size=2)
        assert stats["entities_written"] == 5
        sizes = [len(c.args[1]) for c in _cursor(mock_conn).executemany.call_args_list]
        assert sizes == [2, 2, 1]

    def test_empty_run_writes_nothing(self, mock_conn):
        stats = write_snapshot(mock_conn, [], [], RUN_DATE)
        assert stats == {"entities_written": 0, "associations_written": 0}
        _cursor(mock_conn).executemany.assert_not_called()

    def test_does_not_commit(self, mock_conn):
        write_snapshot(mock_conn, [_entity("COMP-CANON-001")], [], RUN_DATE)
        mock_conn.commit.assert_not_called()


# =========================================================================
# Change detection
# =========================================================================


class TestChangeDetection:
    def test_previous_hashes(self, mock_conn):
        cursor = _cursor(mock_conn)
        cursor.description = [("canonical_id",), ("content_hash",)]
        cursor.fetchall.return_value = [
            {"canonical_id": "COMP-CANON-001", "content_hash": "a" * 64},
        ]
        assert previous_hashes(mock_conn, RUN_DATE) == {"COMP-CANON-001": "a" * 64}
        sql, params = cursor.execute.call_args.args
        assert "run_date < %s" in sql
        assert params == (RUN_DATE,)

    def test_count_unchanged(self):
        entities = [_entity("COMP-CANON-001", "a" * 64), _entity("COMP-CANON-002", "c" * 64)]
        previous = {"COMP-CANON-001": "a" * 64, "COMP-CANON-002": "b" * 64}
        assert count_unchanged(entities, previous) == 1
        assert count_unchanged(entities, {}) == 0


# =========================================================================
# db helpers
# =========================================================================


class TestDb:
    def test_ensure_schema(self, mock_conn):
        ensure_schema(mock_conn)
        _cursor(mock_conn).execute.assert_called_once_with(SNAPSHOT_SCHEMA)

    def test_execute_query_without_result_set(self, mock_conn):
        assert execute_query(mock_conn, "DELETE FROM x") == []

    @pytest.mark.parametrize("rows,expected", [([], 0), ([(1,), (2,)], 2)])
    def test_execute_many(self, mock_conn, rows, expected):
        assert execute_many(mock_conn, "INSERT", rows) == expected
