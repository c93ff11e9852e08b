"""Company to geography exposure.

CRM rows give the headquarters country; portfolio-management investment
rows give a free-text operating geography that is mapped to a country code
where one can be recognised, and to its stated region otherwise.
"""

from __future__ import annotations

import re

from canonlens.consolidation.rules import derived
from canonlens.records import CRM, PORTFOLIO_MGMT, SourceRecord, is_populated
from canonlens.registry.base import classified
from canonlens.relationships.builder import AssociationSpec, Contribution, resolve_endpoint
from canonlens.resolution.xref import KeyIndex
from canonlens.scoring.thresholds import (
    all_of,
    at_least,
    composite,
    is_in,
    lookup_table,
    rule_table,
    threshold_table,
)
from canonlens.validation import FormatCheck

ALLOCATION = 100.0

# Country names are matched before short codes so "AUSTRALIA" never reads as "US".
COUNTRY_NAMES = (
    ("UNITED STATES", "US"),
    ("UNITED KINGDOM", "GB"),
    ("CANADA", "CA"),
    ("GERMANY", "DE"),
    ("FRANCE", "FR"),
    ("JAPAN", "JP"),
    ("CHINA", "CN"),
    ("SINGAPORE", "SG"),
    ("AUSTRALIA", "AU"),
)
COUNTRY_TOKENS = {"US": "US", "USA": "US", "UK": "GB"}


def country_from_text(text: str | None) -> str | None:
    """Best-effort country code for a free-text geography, or ``None``."""
    if not is_populated(text):
        return None
    upper = str(text).upper()
    for name, code in COUNTRY_NAMES:
        if name in upper:
            return code
    for token in re.findall(r"[A-Z]+", upper):
        if token in COUNTRY_TOKENS:
            return COUNTRY_TOKENS[token]
    return None


def extract(record: SourceRecord, key_index: KeyIndex) -> list[Contribution]:
    company_id, unresolved = resolve_endpoint(
        key_index, "company", record.source_system, record.source_key
    )
    if company_id is None:
        return []

    if record.source_system == CRM and record.record_kind == "profile":
        country = record.get("country_code")
        if not is_populated(country):
            return []
        country = str(country).strip().upper()
        attributes = {
            "country_code": country,
            "region_hint": None,
            "geography_type": "HEADQUARTERS",
            "state_province": record.get("state_province"),
            "city": record.get("city"),
        }
        target = country
    elif record.source_system == PORTFOLIO_MGMT and record.record_kind == "investment":
        region = record.get("geography_region")
        region = str(region).strip().upper() if is_populated(region) else None
        if region == "OTHER":
            return []
        country = country_from_text(record.get("geography"))
        target = country or region
        if target is None:
            return []
        attributes = {
            "country_code": country,
            "region_hint": region,
            "geography_type": "BUSINESS_OPERATIONS",
        }
    else:
        return []

    return [
        Contribution(
            entity_id=company_id,
            target_id=target,
            record=record,
            allocation=ALLOCATION,
            claims_primary=True,
            attributes=attributes,
            unresolved=unresolved,
        )
    ]


# ---------------------------------------------------------------------------
# Categories
# ---------------------------------------------------------------------------

REGION = lookup_table(
    "geographic_region",
    "country_code",
    {
        ("US", "CA", "MX"): "NORTH_AMERICA",
        ("GB", "DE", "FR", "IT", "ES", "NL", "CH", "SE", "NO", "DK"): "EUROPE",
        ("JP", "CN", "KR", "SG", "HK", "AU", "IN"): "ASIA_PACIFIC",
        ("BR", "AR", "CL", "CO", "PE"): "LATIN_AMERICA",
        ("AE", "SA", "IL"): "MIDDLE_EAST",
        ("ZA", "NG", "KE"): "AFRICA",
    },
    "OTHER",
)

_FRONTIER = is_in("geographic_region", "LATIN_AMERICA", "MIDDLE_EAST", "AFRICA")

RISK_LEVEL = rule_table(
    "geographic_risk_level",
    [
        (is_in("geographic_region", "NORTH_AMERICA"), "LOW_RISK"),
        (is_in("geographic_region", "EUROPE"), "LOW_MODERATE_RISK"),
        (
            all_of(is_in("geographic_region", "ASIA_PACIFIC"), is_in("country_code", "JP", "AU", "SG")),
            "MODERATE_RISK",
        ),
        (is_in("geographic_region", "ASIA_PACIFIC"), "MODERATE_HIGH_RISK"),
        (_FRONTIER, "HIGH_RISK"),
    ],
    "UNKNOWN_RISK",
)

MARKET_DEVELOPMENT = rule_table(
    "market_development_level",
    [
        (is_in("country_code", "US", "CA", "GB", "DE", "FR", "JP", "AU"), "DEVELOPED_MARKET"),
        (is_in("country_code", "CN", "IN", "BR", "MX", "KR", "SG"), "EMERGING_MARKET"),
        (_FRONTIER, "FRONTIER_MARKET"),
    ],
    "UNKNOWN_MARKET",
)

CURRENCY_RISK = rule_table(
    "currency_risk_level",
    [
        (is_in("country_code", "US"), "NO_CURRENCY_RISK"),
        (is_in("country_code", "CA", "GB", "DE", "FR", "JP", "AU", "CH"), "LOW_CURRENCY_RISK"),
        (is_in("country_code", "CN", "KR", "SG", "HK"), "MODERATE_CURRENCY_RISK"),
        (_FRONTIER, "HIGH_CURRENCY_RISK"),
    ],
    "UNKNOWN_CURRENCY_RISK",
)

REGULATORY_ENVIRONMENT = rule_table(
    "regulatory_environment",
    [
        (
            is_in(
                "country_code",
                "US", "CA", "GB", "DE", "FR", "AU", "CH", "NL", "SE", "JP", "SG", "HK",
            ),
            "STABLE_REGULATORY",
        ),
        (is_in("country_code", "CN", "IN", "BR", "MX"), "EVOLVING_REGULATORY"),
        (_FRONTIER, "UNCERTAIN_REGULATORY"),
    ],
    "UNKNOWN_REGULATORY",
)

_PRIMARY = is_in("is_primary", True)

SIGNIFICANCE = rule_table(
    "geographic_significance",
    [
        (all_of(_PRIMARY, at_least("allocation_percentage", 80)), "CONCENTRATED_GEOGRAPHY"),
        (all_of(_PRIMARY, at_least("allocation_percentage", 60)), "DOMINANT_GEOGRAPHY"),
        (all_of(_PRIMARY, at_least("allocation_percentage", 40)), "PRIMARY_GEOGRAPHY"),
        (at_least("allocation_percentage", 20), "SIGNIFICANT_GEOGRAPHY"),
        (at_least("allocation_percentage", 5), "MINOR_GEOGRAPHY"),
    ],
    "MINIMAL_GEOGRAPHY",
)

QUALITY_SCORE = composite(
    "geographic_relationship_quality_score",
    threshold_table(
        "allocation_points", "allocation_percentage",
        [(50, 25), (20, 20), (10, 15), (5, 10)], 5,
    ),
    lookup_table(
        "risk_points", "geographic_risk_level",
        {
            "LOW_RISK": 20,
            "LOW_MODERATE_RISK": 17,
            "MODERATE_RISK": 14,
            "MODERATE_HIGH_RISK": 10,
            "HIGH_RISK": 5,
        },
        0,
    ),
    lookup_table(
        "market_points", "market_development_level",
        {"DEVELOPED_MARKET": 20, "EMERGING_MARKET": 15, "FRONTIER_MARKET": 8}, 0,
    ),
    lookup_table(
        "currency_points", "currency_risk_level",
        {
            "NO_CURRENCY_RISK": 15,
            "LOW_CURRENCY_RISK": 12,
            "MODERATE_CURRENCY_RISK": 8,
            "HIGH_CURRENCY_RISK": 3,
        },
        0,
    ),
    lookup_table(
        "regulatory_points", "regulatory_environment",
        {"STABLE_REGULATORY": 15, "EVOLVING_REGULATORY": 10, "UNCERTAIN_REGULATORY": 5}, 0,
    ),
)

MONITORING_PRIORITY = rule_table(
    "monitoring_priority",
    [
        (
            all_of(
                lambda f: f["geographic_relationship_quality_score"] < 50,
                at_least("allocation_percentage", 25),
            ),
            "HIGH_PRIORITY",
        ),
        (
            all_of(is_in("geographic_risk_level", "HIGH_RISK"), at_least("allocation_percentage", 10)),
            "MEDIUM_PRIORITY",
        ),
        (
            all_of(
                is_in("currency_risk_level", "HIGH_CURRENCY_RISK"),
                at_least("allocation_percentage", 15),
            ),
            "MEDIUM_PRIORITY",
        ),
    ],
    "LOW_PRIORITY",
)


@derived("geographic_region")
def _region(fields, ctx):
    if fields.get("country_code") is None:
        return fields.get("region_hint") or "OTHER"
    return REGION.classify(fields)


@derived("geographic_relationship_quality_score")
def _quality_score(fields, ctx):
    return QUALITY_SCORE.score(fields)


COMPANY_GEOGRAPHY = AssociationSpec(
    association_type="COMPANY_GEOGRAPHY",
    code="CG",
    entity_type="company",
    record_kinds=("profile", "investment"),
    extract=extract,
    source_order=(CRM, PORTFOLIO_MGMT),
    derived=(
        _region,
        classified(RISK_LEVEL),
        classified(MARKET_DEVELOPMENT),
        classified(CURRENCY_RISK),
        classified(REGULATORY_ENVIRONMENT),
        classified(SIGNIFICANCE),
        _quality_score,
        classified(MONITORING_PRIORITY),
    ),
    format_checks=(FormatCheck("country_code", "country"),),
)
