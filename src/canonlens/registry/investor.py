"""Investor consolidation strategy.

Investor master data lives in the fund administrator; the CRM only fills
contact details the administrator lacks. Most outputs here are fundraising
segmentation tables keyed on investor type and capacity.
"""

from __future__ import annotations

from canonlens.consolidation.rules import derived, priority
from canonlens.records import CRM, FUND_ADMIN
from canonlens.registry.base import EntityTypeSpec, classified
from canonlens.scoring.thresholds import (
    all_of,
    at_least,
    composite,
    is_in,
    lookup_table,
    rule_table,
)
from canonlens.validation import FormatCheck

RULES = (
    priority("name", FUND_ADMIN, CRM, aliases={CRM: "company_name"}),
    priority("legal_name", FUND_ADMIN),
    priority("investor_type", FUND_ADMIN),
    priority("country_code", FUND_ADMIN, CRM),
    priority("investment_capacity", FUND_ADMIN),
    priority("risk_tolerance", FUND_ADMIN),
    priority("liquidity_preference", FUND_ADMIN),
    priority("compliance_status", FUND_ADMIN),
    priority("kyc_status", FUND_ADMIN),
    priority("aml_status", FUND_ADMIN),
    priority("accredited_status", FUND_ADMIN),
    priority("has_esg_requirements", FUND_ADMIN),
    priority("contact_name", FUND_ADMIN, CRM),
    priority("contact_email", FUND_ADMIN, CRM, aliases={CRM: "email"}),
    priority("contact_phone", FUND_ADMIN, CRM, aliases={CRM: "phone"}),
)

_INSTITUTIONS = ("PENSION_FUND", "ENDOWMENT", "SOVEREIGN_WEALTH_FUND")

GEOGRAPHIC_REGION = lookup_table(
    "geographic_region",
    "country_code",
    {
        ("US", "CA"): "NORTH_AMERICA",
        ("GB", "DE", "FR", "NL", "CH", "IT", "ES"): "EUROPE",
        ("JP", "SG", "HK", "AU", "KR"): "ASIA_PACIFIC",
        ("AE", "SA", "QA"): "MIDDLE_EAST",
    },
    "OTHER",
)

INVESTOR_TIER = rule_table(
    "investor_tier",
    [
        (
            all_of(
                is_in("investor_type", *_INSTITUTIONS),
                is_in("investment_capacity", "LARGE"),
                is_in("compliance_status", "FULLY_COMPLIANT"),
            ),
            "TIER_1_INSTITUTIONAL",
        ),
        (
            all_of(
                is_in("investor_type", "INSURANCE_COMPANY", "FUND_OF_FUNDS", "FAMILY_OFFICE"),
                is_in("investment_capacity", "LARGE", "MEDIUM"),
                is_in("compliance_status", "FULLY_COMPLIANT", "PARTIALLY_COMPLIANT"),
            ),
            "TIER_2_INSTITUTIONAL",
        ),
        (
            all_of(
                is_in("investor_type", "HIGH_NET_WORTH"),
                is_in("compliance_status", "FULLY_COMPLIANT"),
            ),
            "QUALIFIED_PRIVATE",
        ),
    ],
    "STANDARD_INVESTOR",
)

BEHAVIOR_PROFILE = rule_table(
    "investment_behavior_profile",
    [
        (
            all_of(is_in("risk_tolerance", "AGGRESSIVE"), is_in("liquidity_preference", "LOW")),
            "AGGRESSIVE_LONG_TERM",
        ),
        (
            all_of(is_in("risk_tolerance", "MODERATE"), is_in("liquidity_preference", "LOW")),
            "BALANCED_LONG_TERM",
        ),
        (
            all_of(is_in("risk_tolerance", "CONSERVATIVE"), is_in("liquidity_preference", "LOW")),
            "CONSERVATIVE_LONG_TERM",
        ),
        (
            all_of(is_in("risk_tolerance", "AGGRESSIVE"), is_in("liquidity_preference", "MEDIUM")),
            "AGGRESSIVE_BALANCED",
        ),
        (
            all_of(is_in("risk_tolerance", "MODERATE"), is_in("liquidity_preference", "MEDIUM")),
            "BALANCED",
        ),
        (
            all_of(
                is_in("risk_tolerance", "CONSERVATIVE"), is_in("liquidity_preference", "MEDIUM")
            ),
            "CONSERVATIVE_BALANCED",
        ),
        (is_in("liquidity_preference", "HIGH"), "LIQUIDITY_FOCUSED"),
    ],
    "UNDEFINED",
)

ESG_ALIGNMENT = rule_table(
    "esg_alignment",
    [
        (
            all_of(is_in("has_esg_requirements", True), is_in("investor_type", *_INSTITUTIONS)),
            "ESG_FOCUSED",
        ),
        (is_in("has_esg_requirements", True), "ESG_AWARE"),
    ],
    "ESG_NEUTRAL",
)

REGULATORY_COMPLEXITY = rule_table(
    "regulatory_complexity",
    [
        (
            all_of(
                is_in("country_code", "US", "GB", "DE", "FR", "JP"),
                is_in(
                    "investor_type",
                    "PENSION_FUND", "INSURANCE_COMPANY", "SOVEREIGN_WEALTH_FUND",
                ),
            ),
            "HIGH_COMPLEXITY",
        ),
        (
            all_of(
                is_in("country_code", "US", "GB", "DE", "FR", "JP", "CA", "AU", "CH", "NL"),
                is_in("investor_type", "ENDOWMENT", "FOUNDATION", "FUND_OF_FUNDS"),
            ),
            "MEDIUM_COMPLEXITY",
        ),
        (is_in("investor_type", "FAMILY_OFFICE", "HIGH_NET_WORTH"), "LOW_COMPLEXITY"),
    ],
    "UNKNOWN_COMPLEXITY",
)


def _type_and_capacity(types: tuple[str, ...], capacities: tuple[str, ...]):
    return all_of(is_in("investor_type", *types), is_in("investment_capacity", *capacities))


EXPECTED_TICKET_SIZE = rule_table(
    "expected_ticket_size",
    [
        (_type_and_capacity(("SOVEREIGN_WEALTH_FUND",), ("LARGE",)), "VERY_LARGE"),
        (_type_and_capacity(("PENSION_FUND", "INSURANCE_COMPANY"), ("LARGE",)), "LARGE"),
        (_type_and_capacity(("ENDOWMENT", "FOUNDATION"), ("LARGE",)), "MEDIUM_LARGE"),
        (_type_and_capacity(("FUND_OF_FUNDS",), ("LARGE", "MEDIUM")), "MEDIUM"),
        (_type_and_capacity(("FAMILY_OFFICE",), ("LARGE",)), "MEDIUM"),
        (_type_and_capacity(("FAMILY_OFFICE",), ("MEDIUM",)), "SMALL_MEDIUM"),
        (_type_and_capacity(("HIGH_NET_WORTH",), ("LARGE",)), "SMALL_MEDIUM"),
        (is_in("investment_capacity", "MEDIUM"), "SMALL"),
        (is_in("investment_capacity", "SMALL"), "VERY_SMALL"),
    ],
    "UNKNOWN",
)

DUE_DILIGENCE = lookup_table(
    "due_diligence_requirements",
    "investor_type",
    {
        ("SOVEREIGN_WEALTH_FUND", "PENSION_FUND", "INSURANCE_COMPANY"): "EXTENSIVE",
        ("ENDOWMENT", "FOUNDATION", "FUND_OF_FUNDS"): "COMPREHENSIVE",
        ("FAMILY_OFFICE", "BANK", "CORPORATE"): "STANDARD",
        "HIGH_NET_WORTH": "BASIC",
    },
    "UNKNOWN",
)

DECISION_TIMELINE = lookup_table(
    "expected_decision_timeline",
    "investor_type",
    {
        ("SOVEREIGN_WEALTH_FUND", "PENSION_FUND"): "VERY_LONG",
        ("INSURANCE_COMPANY", "ENDOWMENT", "FOUNDATION"): "LONG",
        ("FUND_OF_FUNDS", "FAMILY_OFFICE"): "MEDIUM",
        ("BANK", "CORPORATE", "HIGH_NET_WORTH"): "SHORT",
    },
    "UNKNOWN",
)

PRIORITY_SCORE = composite(
    "fundraising_priority_score",
    lookup_table(
        "type_points", "investor_type",
        {
            ("PENSION_FUND", "SOVEREIGN_WEALTH_FUND"): 3,
            ("ENDOWMENT", "INSURANCE_COMPANY"): 2,
        },
        1,
    ),
    lookup_table("capacity_points", "investment_capacity", {"LARGE": 3, "MEDIUM": 2}, 1),
    lookup_table(
        "compliance_points", "compliance_status",
        {"FULLY_COMPLIANT": 2, "PARTIALLY_COMPLIANT": 1}, 0,
    ),
    lookup_table("risk_points", "risk_tolerance", {("MODERATE", "AGGRESSIVE"): 2}, 1),
)

CLASSIFICATION = rule_table(
    "final_investor_classification",
    [
        (at_least("fundraising_priority_score", 7), "TARGET_INVESTOR"),
        (at_least("fundraising_priority_score", 5), "QUALIFIED_INVESTOR"),
        (at_least("fundraising_priority_score", 3), "POTENTIAL_INVESTOR"),
        (lambda f: f.get("compliance_status") != "NON_COMPLIANT", "PROSPECT_INVESTOR"),
    ],
    "EXCLUDED_INVESTOR",
)

ENGAGEMENT = lookup_table(
    "engagement_strategy",
    "final_investor_classification",
    {
        "TARGET_INVESTOR": "DIRECT_SENIOR_ENGAGEMENT",
        "QUALIFIED_INVESTOR": "STRUCTURED_ENGAGEMENT",
        "POTENTIAL_INVESTOR": "NURTURE_RELATIONSHIP",
        "PROSPECT_INVESTOR": "MONITOR_AND_QUALIFY",
    },
    "NO_ENGAGEMENT",
)


@derived("fundraising_priority_score")
def _priority_score(fields, ctx):
    return PRIORITY_SCORE.score(fields)


INVESTOR = EntityTypeSpec(
    entity_type="investor",
    source_order=(FUND_ADMIN, CRM),
    rules=RULES,
    required_fields=(
        "name",
        "investor_type",
        "country_code",
        "investment_capacity",
        "risk_tolerance",
        "compliance_status",
    ),
    derived=(
        classified(GEOGRAPHIC_REGION),
        classified(INVESTOR_TIER),
        classified(BEHAVIOR_PROFILE),
        classified(ESG_ALIGNMENT),
        classified(REGULATORY_COMPLEXITY),
        classified(EXPECTED_TICKET_SIZE),
        classified(DUE_DILIGENCE),
        classified(DECISION_TIMELINE),
        _priority_score,
        classified(CLASSIFICATION),
        classified(ENGAGEMENT),
    ),
    format_checks=(FormatCheck("country_code", "country"),),
)
