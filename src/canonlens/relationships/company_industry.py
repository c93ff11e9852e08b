"""Company to industry-sector exposure.

The CRM states a primary industry (80%) and optionally a secondary one
(20%, sector inferred from its name). Portfolio-management investment rows
state the sector the deal was booked under (100%).
"""

from __future__ import annotations

from canonlens.consolidation.rules import derived
from canonlens.records import CRM, PORTFOLIO_MGMT, SourceRecord, is_populated
from canonlens.registry.base import classified
from canonlens.relationships.builder import AssociationSpec, Contribution, resolve_endpoint
from canonlens.resolution.xref import KeyIndex
from canonlens.scoring.thresholds import (
    all_of,
    at_least,
    contains,
    is_in,
    lookup_table,
    rule_table,
)

CRM_PRIMARY_ALLOCATION = 80.0
CRM_SECONDARY_ALLOCATION = 20.0
PM_ALLOCATION = 100.0

# Keyword -> sector for free-text secondary industries, checked in order.
SECTOR_KEYWORDS = rule_table(
    "industry_sector",
    [
        (contains("industry_name", "TECHNOLOGY", "SOFTWARE"), "TECHNOLOGY"),
        (contains("industry_name", "HEALTHCARE", "MEDICAL"), "HEALTHCARE"),
        (contains("industry_name", "FINANCIAL", "FINTECH"), "FINANCIAL_SERVICES"),
        (contains("industry_name", "CONSUMER", "RETAIL"), "CONSUMER"),
        (contains("industry_name", "INDUSTRIAL", "MANUFACTURING"), "INDUSTRIALS"),
        (contains("industry_name", "ENERGY", "RENEWABLE"), "ENERGY"),
        (contains("industry_name", "REAL ESTATE"), "REAL_ESTATE"),
    ],
    "OTHER",
)


def infer_sector(industry_name: str | None) -> str:
    return SECTOR_KEYWORDS.classify({"industry_name": industry_name})


def _sector(value) -> str | None:
    if not is_populated(value):
        return None
    return str(value).strip().upper().replace(" ", "_")


def extract(record: SourceRecord, key_index: KeyIndex) -> list[Contribution]:
    company_id, unresolved = resolve_endpoint(
        key_index, "company", record.source_system, record.source_key
    )
    if company_id is None:
        return []

    def contribution(sector, name, allocation, primary):
        return Contribution(
            entity_id=company_id,
            target_id=sector,
            record=record,
            allocation=allocation,
            claims_primary=primary,
            attributes={"industry_sector": sector, "industry_name": name},
            unresolved=unresolved,
        )

    out = []
    if record.source_system == CRM:
        primary_name = record.get("industry_primary")
        secondary_name = record.get("industry_secondary")
        sector = _sector(record.get("industry_sector"))
        if is_populated(primary_name) and sector is not None:
            out.append(contribution(sector, primary_name, CRM_PRIMARY_ALLOCATION, True))
        if is_populated(secondary_name) and secondary_name != primary_name:
            out.append(
                contribution(
                    infer_sector(secondary_name),
                    secondary_name,
                    CRM_SECONDARY_ALLOCATION,
                    False,
                )
            )
    elif record.source_system == PORTFOLIO_MGMT:
        sector = _sector(record.get("sector"))
        if sector is not None and sector != "OTHER":
            name = record.get("industry_name", record.get("sector"))
            out.append(contribution(sector, name, PM_ALLOCATION, True))
    return out


# ---------------------------------------------------------------------------
# Categories
# ---------------------------------------------------------------------------


RISK_PROFILE = lookup_table(
    "industry_risk_profile",
    "industry_sector",
    {
        "TECHNOLOGY": "HIGH_VOLATILITY",
        "HEALTHCARE": "MODERATE_VOLATILITY",
        "FINANCIAL_SERVICES": "CYCLICAL_RISK",
        "CONSUMER": "CONSUMER_DEPENDENT",
        "INDUSTRIALS": "ECONOMIC_SENSITIVE",
        "ENERGY": "COMMODITY_RISK",
        "REAL_ESTATE": "INTEREST_RATE_SENSITIVE",
    },
    "UNKNOWN_RISK",
)

GROWTH_POTENTIAL = lookup_table(
    "growth_potential",
    "industry_sector",
    {
        "TECHNOLOGY": "HIGH_GROWTH_POTENTIAL",
        ("HEALTHCARE", "REAL_ESTATE"): "STABLE_GROWTH_POTENTIAL",
        ("FINANCIAL_SERVICES", "CONSUMER"): "MODERATE_GROWTH_POTENTIAL",
        "INDUSTRIALS": "CYCLICAL_GROWTH_POTENTIAL",
        "ENERGY": "VOLATILE_GROWTH_POTENTIAL",
    },
    "UNKNOWN_GROWTH_POTENTIAL",
)

REGULATORY_ENVIRONMENT = lookup_table(
    "regulatory_environment",
    "industry_sector",
    {
        ("HEALTHCARE", "FINANCIAL_SERVICES"): "HIGHLY_REGULATED",
        ("ENERGY", "REAL_ESTATE"): "REGULATED",
        "TECHNOLOGY": "EMERGING_REGULATION",
        ("CONSUMER", "INDUSTRIALS"): "MODERATELY_REGULATED",
    },
    "UNKNOWN_REGULATION",
)

MARKET_MATURITY = lookup_table(
    "market_maturity",
    "industry_sector",
    {
        "TECHNOLOGY": "RAPIDLY_EVOLVING",
        "HEALTHCARE": "MATURE_WITH_INNOVATION",
        ("FINANCIAL_SERVICES", "CONSUMER", "INDUSTRIALS", "REAL_ESTATE"): "MATURE_MARKET",
        "ENERGY": "TRANSITIONING_MARKET",
    },
    "UNKNOWN_MATURITY",
)

_PRIMARY = is_in("is_primary", True)

SIGNIFICANCE = rule_table(
    "industry_significance",
    [
        (all_of(_PRIMARY, at_least("allocation_percentage", 80)), "PURE_PLAY"),
        (all_of(_PRIMARY, at_least("allocation_percentage", 60)), "DOMINANT_EXPOSURE"),
        (all_of(_PRIMARY, at_least("allocation_percentage", 40)), "PRIMARY_EXPOSURE"),
        (at_least("allocation_percentage", 20), "SIGNIFICANT_EXPOSURE"),
        (at_least("allocation_percentage", 5), "MINOR_EXPOSURE"),
    ],
    "MINIMAL_EXPOSURE",
)


def _from_crm(fields) -> bool:
    return CRM in (fields.get("source_systems") or ())


DATA_RELIABILITY = rule_table(
    "data_reliability",
    [
        (all_of(at_least("source_record_count", 2), _from_crm), "HIGH_RELIABILITY"),
        (_from_crm, "MEDIUM_RELIABILITY"),
        (at_least("source_record_count", 2), "MEDIUM_RELIABILITY"),
    ],
    "LOW_RELIABILITY",
)

MONITORING_PRIORITY = rule_table(
    "monitoring_priority",
    [
        (
            all_of(
                is_in("industry_risk_profile", "HIGH_VOLATILITY", "COMMODITY_RISK"),
                at_least("allocation_percentage", 25),
            ),
            "HIGH_PRIORITY",
        ),
        (
            all_of(
                is_in("regulatory_environment", "HIGHLY_REGULATED"),
                at_least("allocation_percentage", 15),
            ),
            "HIGH_PRIORITY",
        ),
        (
            all_of(
                is_in("growth_potential", "VOLATILE_GROWTH_POTENTIAL"),
                at_least("allocation_percentage", 10),
            ),
            "MEDIUM_PRIORITY",
        ),
    ],
    "LOW_PRIORITY",
)


@derived("industry_classification")
def _classification(fields, ctx):
    return "PRIMARY" if fields.get("is_primary") else "SECONDARY"


COMPANY_INDUSTRY = AssociationSpec(
    association_type="COMPANY_INDUSTRY",
    code="CI",
    entity_type="company",
    record_kinds=("profile", "investment"),
    extract=extract,
    source_order=(CRM, PORTFOLIO_MGMT),
    derived=(
        _classification,
        classified(RISK_PROFILE),
        classified(GROWTH_POTENTIAL),
        classified(REGULATORY_ENVIRONMENT),
        classified(MARKET_MATURITY),
        classified(SIGNIFICANCE),
        classified(DATA_RELIABILITY),
        classified(MONITORING_PRIORITY),
    ),
)
