"""Tests for a full consolidation run."""

from __future__ import annotations

from datetime import date, datetime, timezone

import pytest

from canonlens.consolidation.fx import FxRate
from canonlens.pipeline import Snapshot, run_consolidation
from canonlens.records import CRM, FUND_ADMIN, PORTFOLIO_MGMT


@pytest.fixture()
def snapshot(make_record, xrefs) -> Snapshot:
    records = [
        make_record(
            "company", CRM, "C-1", record_id="crm-1", name="Acme", country_code="GB",
            industry_primary="Software", industry_sector="TECHNOLOGY",
        ),
        make_record(
            "company", PORTFOLIO_MGMT, "P-1", kind="investment", record_id="inv-1",
            fund_id="PF-1", ownership_percentage=12.5, investment_amount=1_000_000,
            currency="GBP", investment_date=date(2022, 1, 1), sector="TECHNOLOGY",
            geography="London, UK", geography_region="EUROPE",
        ),
        make_record("company", PORTFOLIO_MGMT, "P-77", record_id="orphan", name="Orphan"),
        make_record("company", CRM, None, record_id="keyless", name="Keyless"),
        make_record("fund", FUND_ADMIN, "F-1", name="Acme Growth Fund", vintage_year=2020),
        make_record(
            "fund", FUND_ADMIN, "F-1", kind="capital_call", record_id="cc-1",
            investor_code="I-1", commitment_amount=5_000_000, commitment_currency="USD",
            call_amount=1_000_000, call_date=date(2023, 1, 1),
        ),
        make_record("investor", FUND_ADMIN, "I-1", name="Pension Plan", country_code="US"),
        make_record("counterparty", CRM, None, name="Big Four LLP", counterparty_type="AUDITOR"),
    ]
    return Snapshot(
        records=records,
        xrefs=xrefs,
        fx_rates=[FxRate("GBP", "USD", 1.25, date(2024, 1, 1))],
    )


# =========================================================================
# run_consolidation
# =========================================================================


class TestRunConsolidation:
    def test_every_entity_type(self, snapshot, as_of):
        result = run_consolidation(snapshot, as_of=as_of)
        assert [e.canonical_id for e in result.entities] == [
            "COMP-CANON-001",
            "COMP-UNKNOWN-P-77",
            "FUND-CANON-001",
            "INV-CANON-001",
            "CPTY-BIGFOURLLP",
        ]
        assert [e.canonical_id for e in result.entities_of("fund")] == ["FUND-CANON-001"]

    def test_stats(self, snapshot, as_of):
        result = run_consolidation(snapshot, as_of=as_of)
        assert result.stats["entities"] == 5
        assert result.stats["placeholders"] == 1
        assert result.stats["dropped"] == 1
        assert result.stats["associations"] == len(result.associations)

    def test_associations_built(self, snapshot, as_of):
        result = run_consolidation(snapshot, as_of=as_of)
        industry = result.associations_of("COMPANY_INDUSTRY")
        geography = result.associations_of("COMPANY_GEOGRAPHY")
        lps = result.associations_of("FUND_INVESTOR")
        positions = result.associations_of("FUND_INVESTMENT")
        assert [(a.entity_id, a.target_id) for a in industry] == [
            ("COMP-CANON-001", "TECHNOLOGY")
        ]
        assert {a.target_id for a in geography} == {"GB"}
        assert [(a.entity_id, a.target_id) for a in lps] == [("FUND-CANON-001", "INV-CANON-001")]
        assert positions[0].entity_id == "FUND-CANON-001"
        assert positions[0].allocation_percentage == 12.5
        assert positions[0].categories["investment_reporting"] == 1_250_000

    def test_references_returned(self, snapshot, as_of):
        result = run_consolidation(snapshot, as_of=as_of)
        assert len(result.references) == 3

    def test_entity_type_filter(self, snapshot, as_of):
        result = run_consolidation(snapshot, as_of=as_of, entity_types=["fund"])
        assert {e.entity_type for e in result.entities} == {"fund"}
        assert {a.association_type for a in result.associations} == {"FUND_INVESTOR"}

    def test_unknown_entity_type(self, snapshot, as_of):
        with pytest.raises(KeyError):
            run_consolidation(snapshot, as_of=as_of, entity_types=["vessel"])

    def test_reporting_currency(self, snapshot, as_of):
        result = run_consolidation(snapshot, as_of=as_of, reporting_currency="GBP")
        positions = result.associations_of("FUND_INVESTMENT")
        assert positions[0].categories["investment_reporting"] == 1_000_000
        assert positions[0].categories["investment_reporting_currency"] == "GBP"

    def test_rerun_is_reproducible(self, snapshot, as_of):
        first = run_consolidation(
            snapshot, as_of=as_of, processed_at=datetime(2024, 7, 1, tzinfo=timezone.utc)
        )
        second = run_consolidation(
            snapshot, as_of=as_of, processed_at=datetime(2024, 7, 2, tzinfo=timezone.utc)
        )
        assert [e.content_hash for e in first.entities] == [
            e.content_hash for e in second.entities
        ]
        assert [a.content_hash for a in first.associations] == [
            a.content_hash for a in second.associations
        ]
