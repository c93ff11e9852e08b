"""Tests for the CSV snapshot loader."""

from __future__ import annotations

import json
from datetime import date
from pathlib import Path

import pytest

from canonlens.records import CRM, PORTFOLIO_MGMT
from canonlens.snapshot import (
    load_cross_reference,
    load_fx_rates,
    load_snapshot,
    load_source_records,
)


@pytest.fixture()
def snapshot_dir(tmp_path: Path) -> Path:
    (tmp_path / "crm_companies.csv").write_text(
        "company_id,company_name,country_code,founded_year,last_modified_date,created_at\n"
        "007,Acme Ltd,GB,2015,2024-03-01,2019-05-01\n"
        "008,Beta Co,,2018,,\n"
    )
    (tmp_path / "pm_investments.csv").write_text(
        "investment_id,company_id,fund_id,investment_amount,currency,investment_date\n"
        "INV-1,P-1,PF-1,1000000.5,USD,2021-06-30\n"
        "INV-2,P-1,PF-1,,USD,not a date\n"
    )
    (tmp_path / "xref_companies.csv").write_text(
        "canonical_company_id,crm_company_id,pm_company_id,resolution_confidence,"
        "last_modified_date\n"
        "COMP-CANON-001,007,P-1,strong,2024-01-15\n"
        "COMP-CANON-002,,,,\n"
    )
    (tmp_path / "fx_rates.csv").write_text(
        "from_currency,to_currency,rate,as_of_date\n"
        "eur,usd,1.08,2024-01-31\n"
        "GBP,USD,,2024-01-31\n"
    )
    manifest = {
        "sources": [
            {
                "entity_type": "company",
                "source_system": CRM,
                "record_kind": "profile",
                "path": "crm_companies.csv",
                "key_column": "company_id",
                "last_modified_column": "last_modified_date",
                "date_columns": ["created_at"],
                "columns": {"company_name": "name"},
            },
            {
                "entity_type": "company",
                "source_system": PORTFOLIO_MGMT,
                "record_kind": "investment",
                "path": "pm_investments.csv",
                "key_column": "company_id",
                "record_id_column": "investment_id",
                "date_columns": ["investment_date"],
            },
        ],
        "xrefs": [
            {
                "entity_type": "company",
                "path": "xref_companies.csv",
                "id_column": "canonical_company_id",
                "key_columns": {CRM: "crm_company_id", PORTFOLIO_MGMT: "pm_company_id"},
            }
        ],
        "fx_rates": "fx_rates.csv",
    }
    (tmp_path / "manifest.json").write_text(json.dumps(manifest))
    return tmp_path


@pytest.fixture()
def manifest(snapshot_dir: Path) -> dict:
    return json.loads((snapshot_dir / "manifest.json").read_text())


# =========================================================================
# load_source_records
# =========================================================================


class TestLoadSourceRecords:
    def test_keys_stay_text(self, snapshot_dir, manifest):
        records = load_source_records(snapshot_dir, manifest["sources"][0])
        assert [r.source_key for r in records] == ["007", "008"]
        assert records[0].record_id == "007"

    def test_columns_renamed(self, snapshot_dir, manifest):
        records = load_source_records(snapshot_dir, manifest["sources"][0])
        assert records[0].fields["name"] == "Acme Ltd"
        assert "company_name" not in records[0].fields

    def test_dates_parsed(self, snapshot_dir, manifest):
        records = load_source_records(snapshot_dir, manifest["sources"][0])
        assert records[0].last_modified == date(2024, 3, 1)
        assert records[0].fields["created_at"] == date(2019, 5, 1)

    def test_empty_cells_become_none(self, snapshot_dir, manifest):
        beta = load_source_records(snapshot_dir, manifest["sources"][0])[1]
        assert beta.fields["country_code"] is None
        assert beta.last_modified is None
        assert beta.fields["created_at"] is None

    def test_record_kind_and_id(self, snapshot_dir, manifest):
        records = load_source_records(snapshot_dir, manifest["sources"][1])
        assert {r.record_kind for r in records} == {"investment"}
        assert [r.record_id for r in records] == ["INV-1", "INV-2"]
        assert records[0].fields["investment_amount"] == 1000000.5
        assert records[1].fields["investment_amount"] is None

    def test_unparseable_date_is_none(self, snapshot_dir, manifest):
        records = load_source_records(snapshot_dir, manifest["sources"][1])
        assert records[0].fields["investment_date"] == date(2021, 6, 30)
        assert records[1].fields["investment_date"] is None


# =========================================================================
# load_cross_reference
# =========================================================================


class TestLoadCrossReference:
    def test_entries(self, snapshot_dir, manifest):
        entries = load_cross_reference(snapshot_dir, manifest["xrefs"][0])
        first, second = entries
        assert first.canonical_id == "COMP-CANON-001"
        assert first.source_keys == {CRM: "007", PORTFOLIO_MGMT: "P-1"}
        assert first.resolution_confidence == "strong"
        assert first.last_modified == date(2024, 1, 15)
        assert second.linked_keys() == {}
        assert second.resolution_confidence is None


# =========================================================================
# load_fx_rates
# =========================================================================


class TestLoadFxRates:
    def test_rates(self, snapshot_dir):
        rates = load_fx_rates(snapshot_dir / "fx_rates.csv")
        assert len(rates) == 1
        assert rates[0].from_currency == "EUR"
        assert rates[0].to_currency == "USD"
        assert rates[0].rate == 1.08
        assert rates[0].as_of_date == date(2024, 1, 31)

    def test_missing_file_is_empty(self, tmp_path):
        assert load_fx_rates(tmp_path / "nope.csv") == []

    def test_missing_columns_raise(self, tmp_path):
        path = tmp_path / "fx.csv"
        path.write_text("from_currency,rate\nEUR,1.1\n")
        with pytest.raises(ValueError, match="missing columns"):
            load_fx_rates(path)


# =========================================================================
# load_snapshot
# =========================================================================


class TestLoadSnapshot:
    def test_loads_everything(self, snapshot_dir):
        snapshot = load_snapshot(snapshot_dir)
        assert len(snapshot.records) == 4
        assert len(snapshot.xrefs) == 2
        assert len(snapshot.fx_rates) == 1

    def test_accepts_str_path(self, snapshot_dir):
        assert len(load_snapshot(str(snapshot_dir)).records) == 4

    def test_missing_manifest(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_snapshot(tmp_path)
