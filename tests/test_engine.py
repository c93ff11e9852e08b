"""Tests for the generic consolidation engine.

Uses a small hand-built company strategy so expectations stay readable;
the registered strategies are covered in test_registry.py.
"""

from __future__ import annotations

import random
from datetime import date, datetime, timezone

import pytest

from canonlens.consolidation.engine import (
    consolidate_entities,
    group_records,
    source_coverage,
)
from canonlens.consolidation.fx import FxRate, FxRateTable
from canonlens.consolidation.rules import DerivedField, aggregate, converted_amount, priority
from canonlens.records import (
    ACCOUNTING,
    CALCULATION_VARIANCE,
    CRM,
    FUND_ADMIN,
    FX_RATE_MISSING,
    INVALID_FORMAT,
    MISSING_CROSS_REFERENCE,
    PORTFOLIO_MGMT,
)
from canonlens.registry.base import EntityTypeSpec
from canonlens.registry.counterparty import COUNTERPARTY
from canonlens.resolution.xref import build_key_index, resolve_cross_references
from canonlens.validation import FormatCheck, VarianceCheck

SPEC = EntityTypeSpec(
    entity_type="company",
    source_order=(CRM, PORTFOLIO_MGMT),
    rules=(
        priority("name", CRM, PORTFOLIO_MGMT, record_kinds=("profile", "investment")),
        priority("country_code", CRM),
        priority("reported_margin", CRM),
        aggregate(
            "investment_count", "count",
            sources=(PORTFOLIO_MGMT,), record_kinds=("investment",),
        ),
        aggregate("total_amount", "sum", source_field="amount", record_kinds=("investment",)),
        aggregate(
            "currency", "latest",
            record_kinds=("investment",), date_field="investment_date",
        ),
    ),
    required_fields=("name", "country_code"),
    derived=(
        DerivedField("margin", lambda f, ctx: 10.0 if f.get("reported_margin") is not None else None),
        *converted_amount("total_amount_reporting", "total_amount", "currency"),
    ),
    assessments=(
        DerivedField("needs_review", lambda f, ctx: f["quality_rating"] in ("FAIR", "POOR")),
    ),
    format_checks=(FormatCheck("country_code", "country"),),
    variance_checks=(VarianceCheck("margin", "reported_margin", tolerance=2.0),),
)


@pytest.fixture()
def records(make_record):
    return [
        make_record(
            "company", CRM, "C-1", record_id="crm-1",
            modified=date(2024, 3, 1), name="Acme Ltd", country_code="GB",
            created_at=date(2019, 5, 1),
        ),
        make_record(
            "company", PORTFOLIO_MGMT, "P-1", kind="investment", record_id="inv-1",
            modified=date(2024, 2, 1), name="ACME", amount=1_000_000.0, currency="GBP",
            investment_date=date(2021, 1, 1),
        ),
        make_record(
            "company", PORTFOLIO_MGMT, "P-1", kind="investment", record_id="inv-2",
            modified=date(2024, 2, 1), amount=500_000.0, currency="EUR",
            investment_date=date(2022, 1, 1),
        ),
        make_record("company", PORTFOLIO_MGMT, "P-9", record_id="orphan", name="Orphan Co"),
        make_record("fund", FUND_ADMIN, "F-1", name="Not a company"),
    ]


@pytest.fixture()
def fx() -> FxRateTable:
    return FxRateTable([FxRate("EUR", "USD", 1.1, date(2024, 1, 1))])


def _by_id(entities):
    return {e.canonical_id: e for e in entities}


# =========================================================================
# source_coverage
# =========================================================================


class TestSourceCoverage:
    def test_labels(self):
        assert source_coverage([CRM]) == "CRM_ONLY"
        assert source_coverage([PORTFOLIO_MGMT, PORTFOLIO_MGMT]) == "PM_ONLY"
        assert source_coverage([FUND_ADMIN]) == "ADMIN_ONLY"
        assert source_coverage([ACCOUNTING]) == "ACCOUNTING_ONLY"
        assert source_coverage([CRM, PORTFOLIO_MGMT]) == "MULTI_SOURCE"
        assert source_coverage([]) == "NO_SOURCE"


# =========================================================================
# group_records
# =========================================================================


class TestGroupRecords:
    def test_groups_by_canonical_id(self, records, key_index):
        groups, dropped = group_records(SPEC, records, key_index)
        assert [g.canonical_id for g in groups] == ["COMP-CANON-001", "COMP-UNKNOWN-P-9"]
        assert dropped == 0

    def test_rows_sorted_by_source_priority(self, records, key_index):
        groups, _ = group_records(SPEC, list(reversed(records)), key_index)
        merged = groups[0]
        assert [r.record_id for r in merged.records] == ["crm-1", "inv-1", "inv-2"]
        assert merged.reference.canonical_id == "COMP-CANON-001"

    def test_record_without_key_dropped(self, make_record, key_index):
        groups, dropped = group_records(
            SPEC, [make_record("company", CRM, None, name="Ghost")], key_index
        )
        assert groups == []
        assert dropped == 1


# =========================================================================
# consolidate_entities
# =========================================================================


class TestMergeScenario:
    """Rows keyed in two systems under one canonical id merge into one entity."""

    def test_single_entity_with_priority_fields(self, records, key_index, as_of, fx):
        entities, _ = consolidate_entities(SPEC, records, key_index, as_of=as_of, fx=fx)
        acme = _by_id(entities)["COMP-CANON-001"]
        assert acme.fields["name"] == "Acme Ltd"
        assert acme.fields["country_code"] == "GB"
        assert acme.source_systems == (CRM, PORTFOLIO_MGMT)
        assert acme.source_coverage == "MULTI_SOURCE"
        assert acme.is_placeholder is False
        assert acme.resolution_confidence == "HIGH"

    def test_aggregates(self, records, key_index, as_of, fx):
        entities, _ = consolidate_entities(SPEC, records, key_index, as_of=as_of, fx=fx)
        acme = _by_id(entities)["COMP-CANON-001"]
        assert acme.fields["investment_count"] == 2
        assert acme.fields["total_amount"] == 1_500_000.0
        assert acme.fields["currency"] == "EUR"
        assert acme.fields["total_amount_reporting"] == 1_650_000.0
        assert acme.fields["total_amount_reporting_currency"] == "USD"

    def test_quality(self, records, key_index, as_of, fx):
        entities, _ = consolidate_entities(SPEC, records, key_index, as_of=as_of, fx=fx)
        acme = _by_id(entities)["COMP-CANON-001"]
        assert acme.completeness_score == 100.0
        assert acme.quality_rating == "EXCELLENT"
        assert acme.fields["needs_review"] is False
        assert acme.data_quality_flags == ()
        assert acme.data_quality_flag is None

    def test_audit_dates(self, records, key_index, as_of, fx):
        entities, _ = consolidate_entities(SPEC, records, key_index, as_of=as_of, fx=fx)
        acme = _by_id(entities)["COMP-CANON-001"]
        assert acme.fields["created_at"] == date(2019, 5, 1)
        assert acme.fields["updated_at"] == date(2024, 3, 1)

    def test_xref_timestamp_counts_toward_updated_at(self, make_record, make_xref, as_of):
        index = build_key_index(
            resolve_cross_references(
                [make_xref("company", "COMP-CANON-5", modified=date(2024, 6, 1), **{CRM: "X"})]
            )
        )
        record = make_record("company", CRM, "X", modified=date(2024, 1, 1), name="X Co")
        entities, _ = consolidate_entities(SPEC, [record], index, as_of=as_of)
        assert entities[0].fields["created_at"] == date(2024, 1, 1)
        assert entities[0].fields["updated_at"] == date(2024, 6, 1)


class TestOrphanScenario:
    """Rows the cross-reference does not cover get a placeholder id."""

    def test_placeholder_entity(self, records, key_index, as_of, fx):
        entities, stats = consolidate_entities(SPEC, records, key_index, as_of=as_of, fx=fx)
        orphan = _by_id(entities)["COMP-UNKNOWN-P-9"]
        assert orphan.is_placeholder is True
        assert orphan.source_coverage == "PM_ONLY"
        assert orphan.resolution_confidence == "UNKNOWN"
        assert orphan.data_quality_flags == (MISSING_CROSS_REFERENCE,)
        assert stats == {"entities": 2, "placeholders": 1, "dropped": 0, "flagged": 1}

    def test_flags_ordered_by_severity(self, make_record, key_index, as_of):
        record = make_record("company", CRM, "C-404", name="Bad Co", country_code="GBR")
        entities, _ = consolidate_entities(SPEC, [record], key_index, as_of=as_of)
        assert entities[0].data_quality_flags == (INVALID_FORMAT, MISSING_CROSS_REFERENCE)
        assert entities[0].data_quality_flag == INVALID_FORMAT

    def test_other_entity_types_ignored(self, records, key_index, as_of):
        entities, _ = consolidate_entities(SPEC, records, key_index, as_of=as_of)
        assert all(e.entity_type == "company" for e in entities)


class TestDiagnostics:
    def test_non_recommended_mapping_falls_back_to_placeholder(
        self, make_record, make_xref, as_of
    ):
        refs = resolve_cross_references(
            [
                make_xref("company", "ACME-42", "HIGH", **{CRM: "C-1"}),
                make_xref("company", "COMP-CANON-2", "LOW", **{CRM: "C-2"}),
            ]
        )
        index = build_key_index(refs)
        records = [
            make_record("company", CRM, "C-1", name="Acme", country_code="GB"),
            make_record("company", CRM, "C-2", name="Beta", country_code="GB"),
        ]
        entities, stats = consolidate_entities(SPEC, records, index, as_of=as_of)
        assert [e.canonical_id for e in entities] == ["COMP-UNKNOWN-C-1", "COMP-UNKNOWN-C-2"]
        assert all(e.is_placeholder for e in entities)
        assert all(e.data_quality_flags == (MISSING_CROSS_REFERENCE,) for e in entities)
        assert all(e.resolution_confidence == "UNKNOWN" for e in entities)
        assert stats["placeholders"] == 2

    def test_calculation_variance(self, make_record, key_index, as_of):
        record = make_record(
            "company", CRM, "C-1", name="Acme", country_code="GB", reported_margin=25.0
        )
        entities, _ = consolidate_entities(SPEC, [record], key_index, as_of=as_of)
        assert entities[0].data_quality_flags == (CALCULATION_VARIANCE,)
        assert entities[0].variance_fields == ("margin",)
        # Value is reported as derived, not corrected.
        assert entities[0].fields["margin"] == 10.0

    def test_missing_fx_rate(self, make_record, key_index, as_of):
        record = make_record(
            "company", PORTFOLIO_MGMT, "P-1", kind="investment", name="Acme",
            amount=10.0, currency="JPY", investment_date=date(2024, 1, 1),
        )
        entities, _ = consolidate_entities(SPEC, [record], key_index, as_of=as_of)
        acme = entities[0]
        assert FX_RATE_MISSING in acme.data_quality_flags
        assert acme.fields["total_amount_reporting"] == 10.0
        assert acme.fields["total_amount_reporting_currency"] == "JPY"

    def test_low_completeness(self, make_record, key_index, as_of):
        record = make_record("company", CRM, "C-1", name="Acme")
        entities, _ = consolidate_entities(SPEC, [record], key_index, as_of=as_of)
        assert entities[0].completeness_score == 50.0
        assert entities[0].quality_rating == "FAIR"
        assert entities[0].fields["needs_review"] is True


# =========================================================================
# Determinism and change detection
# =========================================================================


class TestDeterminism:
    def test_idempotent(self, records, key_index, as_of, fx):
        first, _ = consolidate_entities(SPEC, records, key_index, as_of=as_of, fx=fx)
        second, _ = consolidate_entities(SPEC, records, key_index, as_of=as_of, fx=fx)
        assert [e.content_hash for e in first] == [e.content_hash for e in second]
        assert [e.fields for e in first] == [e.fields for e in second]

    def test_input_order_irrelevant(self, records, key_index, as_of, fx):
        shuffled = list(records)
        random.Random(7).shuffle(shuffled)
        first, _ = consolidate_entities(SPEC, records, key_index, as_of=as_of, fx=fx)
        second, _ = consolidate_entities(SPEC, shuffled, key_index, as_of=as_of, fx=fx)
        assert [e.content_hash for e in first] == [e.content_hash for e in second]

    def test_processed_at_does_not_change_hash(self, records, key_index, as_of, fx):
        first, _ = consolidate_entities(
            SPEC, records, key_index, as_of=as_of, fx=fx,
            processed_at=datetime(2024, 7, 1, tzinfo=timezone.utc),
        )
        second, _ = consolidate_entities(
            SPEC, records, key_index, as_of=as_of, fx=fx,
            processed_at=datetime(2024, 7, 2, tzinfo=timezone.utc),
        )
        assert first[0].processed_at != second[0].processed_at
        assert first[0].content_hash == second[0].content_hash

    def test_field_change_changes_hash(self, records, make_record, key_index, as_of, fx):
        changed = list(records)
        changed[0] = make_record(
            "company", CRM, "C-1", record_id="crm-1",
            modified=date(2024, 3, 1), name="Acme Limited", country_code="GB",
            created_at=date(2019, 5, 1),
        )
        before, _ = consolidate_entities(SPEC, records, key_index, as_of=as_of, fx=fx)
        after, _ = consolidate_entities(SPEC, changed, key_index, as_of=as_of, fx=fx)
        assert before[0].content_hash != after[0].content_hash
        assert before[1].content_hash == after[1].content_hash


# =========================================================================
# Name-keyed entity types
# =========================================================================


class TestNameKeyedGrouping:
    def test_counterparties_group_by_name_across_systems(self, make_record, as_of):
        records = [
            make_record("counterparty", CRM, None, record_id="c1", name="Smith & Jones LLP"),
            make_record("counterparty", ACCOUNTING, None, record_id="a1", name="SMITH JONES LLP"),
            make_record("counterparty", PORTFOLIO_MGMT, None, record_id="p1", name=None),
        ]
        entities, stats = consolidate_entities(COUNTERPARTY, records, {}, as_of=as_of)
        assert [e.canonical_id for e in entities] == ["CPTY-SMITHJONESLLP"]
        assert entities[0].is_placeholder is False
        assert entities[0].source_coverage == "MULTI_SOURCE"
        assert MISSING_CROSS_REFERENCE not in entities[0].data_quality_flags
        assert stats["dropped"] == 1
