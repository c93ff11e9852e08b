"""Counterparty consolidation strategy.

Counterparties (law firms, auditors, lenders, vendors) have no
cross-reference mapping. Rows from CRM contacts, portfolio-management debt
providers and accounting payees are grouped by normalised name instead.
"""

from __future__ import annotations

from canonlens.consolidation.rules import aggregate, derived, months_between, priority
from canonlens.records import ACCOUNTING, CRM, PORTFOLIO_MGMT
from canonlens.registry.base import EntityTypeSpec, classified
from canonlens.resolution.placeholders import counterparty_id
from canonlens.scoring.quality import UNMAPPED_QUALITY
from canonlens.scoring.thresholds import (
    all_of,
    at_least,
    composite,
    is_in,
    is_null,
    lookup_table,
    rule_table,
    threshold_table,
)
from canonlens.validation import FormatCheck

SOURCES = (CRM, PORTFOLIO_MGMT, ACCOUNTING)

# Most specific type first.
TYPE_SPECIFICITY = (
    "LEGAL_COUNSEL",
    "AUDITOR",
    "SERVICE_PROVIDER",
    "LENDER",
    "CO_INVESTOR",
    "VENDOR",
)

RULES = (
    priority("name", *SOURCES),
    aggregate("counterparty_type", "ranked", rank_order=TYPE_SPECIFICITY),
    priority("primary_contact_name", *SOURCES, source_field="contact_name"),
    priority("primary_contact_title", *SOURCES, source_field="contact_title"),
    priority("primary_contact_email", *SOURCES, source_field="email"),
    priority("primary_contact_phone", *SOURCES, source_field="phone"),
    priority("industry", *SOURCES),
    priority("country_code", *SOURCES),
    aggregate("relationship_status", "latest"),
    priority("relationship_strength", *SOURCES),
    aggregate("last_interaction_date", "max"),
    priority("interaction_frequency", *SOURCES),
    aggregate("source_record_count", "count"),
)

# ---------------------------------------------------------------------------
# Threshold tables
# ---------------------------------------------------------------------------

CATEGORY = lookup_table(
    "counterparty_category",
    "counterparty_type",
    {
        ("LEGAL_COUNSEL", "AUDITOR"): "PROFESSIONAL_SERVICES",
        "SERVICE_PROVIDER": "ADVISORY_SERVICES",
        ("LENDER", "CO_INVESTOR"): "FINANCIAL_PARTNERS",
        "VENDOR": "OPERATIONAL_VENDORS",
    },
    "OTHER",
)

_STRONG = is_in("relationship_strength", "STRONG")

IMPORTANCE = rule_table(
    "relationship_importance_score",
    [
        (all_of(is_in("counterparty_type", "LEGAL_COUNSEL", "AUDITOR"), _STRONG), 5),
        (is_in("counterparty_type", "LEGAL_COUNSEL", "AUDITOR"), 4),
        (all_of(is_in("counterparty_type", "LENDER"), _STRONG), 5),
        (is_in("counterparty_type", "LENDER"), 4),
        (all_of(is_in("counterparty_type", "CO_INVESTOR"), _STRONG), 4),
        (is_in("counterparty_type", "CO_INVESTOR"), 3),
        (all_of(is_in("counterparty_type", "SERVICE_PROVIDER"), _STRONG), 3),
        (is_in("counterparty_type", "SERVICE_PROVIDER"), 2),
        (is_in("counterparty_type", "VENDOR"), 1),
    ],
    0,
)

ENGAGEMENT_FREQUENCY = lookup_table(
    "engagement_frequency",
    "interaction_frequency",
    {
        "DAILY": "HIGH_FREQUENCY",
        "WEEKLY": "MEDIUM_FREQUENCY",
        ("MONTHLY", "QUARTERLY"): "LOW_FREQUENCY",
        ("ANNUALLY", "AS_NEEDED"): "OCCASIONAL",
    },
    "UNKNOWN",
)

RECENCY = rule_table(
    "relationship_recency",
    [
        (is_null("months_since_interaction"), "NO_RECENT_ACTIVITY"),
        (lambda f: f["months_since_interaction"] <= 3, "RECENT"),
        (lambda f: f["months_since_interaction"] <= 12, "MODERATE"),
        (lambda f: f["months_since_interaction"] <= 24, "STALE"),
    ],
    "INACTIVE",
)

RELATIONSHIP_VALUE = composite(
    "overall_relationship_value",
    (IMPORTANCE, 0.4),
    (
        lookup_table(
            "recency_points", "relationship_recency",
            {"RECENT": 3, "MODERATE": 2, "STALE": 1}, 0,
        ),
        0.3,
    ),
    (
        lookup_table(
            "frequency_points", "engagement_frequency",
            {"HIGH_FREQUENCY": 3, "MEDIUM_FREQUENCY": 2, "LOW_FREQUENCY": 1}, 0,
        ),
        0.2,
    ),
    (threshold_table("completeness_points", "completeness_score", [(80, 2), (60, 1)], 0), 0.1),
)

_CORE_PARTNERS = ("PROFESSIONAL_SERVICES", "FINANCIAL_PARTNERS")

RELATIONSHIP_PRIORITY = rule_table(
    "relationship_priority",
    [
        (
            all_of(
                at_least("overall_relationship_value", 4.0),
                is_in("counterparty_category", *_CORE_PARTNERS),
            ),
            "HIGH_PRIORITY",
        ),
        (
            all_of(
                at_least("overall_relationship_value", 3.0),
                is_in("counterparty_category", *_CORE_PARTNERS, "ADVISORY_SERVICES"),
            ),
            "MEDIUM_PRIORITY",
        ),
        (at_least("overall_relationship_value", 2.0), "LOW_PRIORITY"),
    ],
    "MONITOR_ONLY",
)

ENGAGEMENT_STRATEGY = rule_table(
    "engagement_strategy",
    [
        (
            all_of(
                is_in("relationship_priority", "HIGH_PRIORITY"),
                is_in("relationship_recency", "STALE", "INACTIVE"),
            ),
            "IMMEDIATE_OUTREACH",
        ),
        (is_in("relationship_priority", "HIGH_PRIORITY"), "REGULAR_ENGAGEMENT"),
        (
            all_of(
                is_in("relationship_priority", "MEDIUM_PRIORITY"),
                is_in("relationship_recency", "RECENT"),
            ),
            "MAINTAIN_CONTACT",
        ),
        (is_in("relationship_priority", "MEDIUM_PRIORITY"), "PERIODIC_OUTREACH"),
        (is_in("relationship_priority", "LOW_PRIORITY"), "MONITOR_ACTIVITY"),
    ],
    "NO_ACTION_REQUIRED",
)


@derived("months_since_interaction")
def _months_since_interaction(fields, ctx):
    return months_between(fields.get("last_interaction_date"), ctx.as_of)


@derived("overall_relationship_value")
def _relationship_value(fields, ctx):
    return RELATIONSHIP_VALUE.score(fields)


COUNTERPARTY = EntityTypeSpec(
    entity_type="counterparty",
    source_order=SOURCES,
    rules=RULES,
    required_fields=(
        "name",
        "counterparty_type",
        "primary_contact_name",
        "primary_contact_email",
        "country_code",
        "relationship_status",
        "last_interaction_date",
    ),
    derived=(
        classified(CATEGORY),
        classified(IMPORTANCE),
        classified(ENGAGEMENT_FREQUENCY),
        _months_since_interaction,
        classified(RECENCY),
    ),
    assessments=(
        _relationship_value,
        classified(RELATIONSHIP_PRIORITY),
        classified(ENGAGEMENT_STRATEGY),
    ),
    quality=UNMAPPED_QUALITY,
    format_checks=(FormatCheck("country_code", "country"),),
    uses_cross_reference=False,
    derive_id=counterparty_id,
)
