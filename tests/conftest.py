"""Shared fixtures for consolidation tests."""

from __future__ import annotations

from datetime import date
from unittest.mock import MagicMock, Mock

import pytest

from canonlens.records import CRM, FUND_ADMIN, PORTFOLIO_MGMT, CrossReferenceEntry, SourceRecord
from canonlens.resolution.xref import build_key_index, resolve_cross_references

AS_OF = date(2024, 6, 30)


@pytest.fixture()
def as_of() -> date:
    return AS_OF


@pytest.fixture()
def make_record():
    """Factory for SourceRecord objects with keyword fields."""

    def _make(
        entity_type: str,
        source_system: str,
        source_key: str | None,
        *,
        kind: str = "profile",
        record_id: str | None = None,
        modified: date | None = None,
        **fields,
    ) -> SourceRecord:
        return SourceRecord(
            entity_type=entity_type,
            source_system=source_system,
            source_key=source_key,
            fields=fields,
            last_modified=modified,
            record_kind=kind,
            record_id=record_id,
        )

    return _make


@pytest.fixture()
def make_xref():
    """Factory for CrossReferenceEntry objects."""

    def _make(
        entity_type: str,
        canonical_id: str | None,
        confidence: str | None = "HIGH",
        modified: date | None = None,
        **keys: str | None,
    ) -> CrossReferenceEntry:
        return CrossReferenceEntry(
            entity_type=entity_type,
            canonical_id=canonical_id,
            source_keys=keys,
            resolution_confidence=confidence,
            last_modified=modified,
        )

    return _make


@pytest.fixture()
def xrefs(make_xref) -> list[CrossReferenceEntry]:
    """One company, fund and investor mapped across systems."""
    return [
        make_xref(
            "company", "COMP-CANON-001",
            modified=date(2024, 1, 15),
            **{CRM: "C-1", PORTFOLIO_MGMT: "P-1"},
        ),
        make_xref("fund", "FUND-CANON-001", **{FUND_ADMIN: "F-1", PORTFOLIO_MGMT: "PF-1"}),
        make_xref("investor", "INV-CANON-001", confidence="MEDIUM", **{FUND_ADMIN: "I-1"}),
    ]


@pytest.fixture()
def key_index(xrefs):
    return build_key_index(resolve_cross_references(xrefs))


@pytest.fixture()
def mock_conn() -> MagicMock:
    """Mock psycopg connection whose cursor works as a context manager."""
    conn = MagicMock()
    cursor = MagicMock()
    conn.cursor.return_value.__enter__ = Mock(return_value=cursor)
    conn.cursor.return_value.__exit__ = Mock(return_value=False)
    cursor.description = None
    return conn
