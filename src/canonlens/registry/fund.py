"""Fund consolidation strategy.

The fund administrator is authoritative for fund terms; the CRM fills gaps
and contributes fundraising pipeline activity from its opportunities.
"""

from __future__ import annotations

from canonlens.consolidation.rules import (
    aggregate,
    converted_amount,
    days_between,
    derived,
    priority,
    years_between,
)
from canonlens.records import CRM, FUND_ADMIN
from canonlens.registry.base import EntityTypeSpec
from canonlens.scoring.thresholds import (
    above,
    all_of,
    at_least,
    composite,
    contains,
    is_in,
    is_null,
    lookup_table,
    rule_table,
    threshold_table,
)
from canonlens.validation import FormatCheck, VarianceCheck

OPPORTUNITY = ("opportunity",)
PROFILE_AND_OPPORTUNITY = ("profile", "opportunity")

RULES = (
    priority(
        "name", FUND_ADMIN, CRM,
        aliases={CRM: "fund_name"},
        record_kinds=PROFILE_AND_OPPORTUNITY,
    ),
    priority("legal_name", FUND_ADMIN),
    priority("fund_type", FUND_ADMIN),
    priority("vintage_year", FUND_ADMIN),
    priority("investment_strategy", FUND_ADMIN),
    priority(
        "geography_focus", FUND_ADMIN, CRM,
        aliases={CRM: "geography_region"},
        record_kinds=PROFILE_AND_OPPORTUNITY,
    ),
    priority(
        "sector_focus", FUND_ADMIN, CRM,
        aliases={CRM: "industry_name"},
        record_kinds=PROFILE_AND_OPPORTUNITY,
    ),
    priority("target_size", FUND_ADMIN),
    priority("final_size", FUND_ADMIN),
    priority("base_currency_code", FUND_ADMIN),
    priority("investment_period_start", FUND_ADMIN),
    priority("investment_period_end", FUND_ADMIN),
    priority("lifecycle_stage", FUND_ADMIN),
    priority("management_fee_rate", FUND_ADMIN),
    priority("carried_interest_rate", FUND_ADMIN),
    priority("hurdle_rate", FUND_ADMIN),
    priority("fund_status", FUND_ADMIN),
    priority("first_close_date", FUND_ADMIN),
    priority("final_close_date", FUND_ADMIN),
    priority("reported_fund_age_years", FUND_ADMIN, source_field="fund_age_years"),
    # CRM pipeline
    aggregate(
        "first_opportunity_date", "min",
        source_field="created_at", sources=(CRM,), record_kinds=OPPORTUNITY,
    ),
    aggregate("opportunity_count", "count", sources=(CRM,), record_kinds=OPPORTUNITY),
    aggregate(
        "active_opportunities", "count",
        sources=(CRM,), record_kinds=OPPORTUNITY, match={"opportunity_status": "ACTIVE"},
    ),
    aggregate(
        "total_pipeline_amount", "sum",
        source_field="expected_amount", sources=(CRM,), record_kinds=OPPORTUNITY,
    ),
    aggregate(
        "avg_probability", "mean",
        source_field="probability", sources=(CRM,), record_kinds=OPPORTUNITY,
    ),
)

# ---------------------------------------------------------------------------
# Threshold tables
# ---------------------------------------------------------------------------

MATURITY_STAGE = rule_table(
    "fund_maturity_stage",
    [
        (is_null("fund_age_years"), "UNKNOWN"),
        (lambda f: f["fund_age_years"] < 2, "EARLY_STAGE"),
        (lambda f: f["fund_age_years"] < 5, "GROWTH_STAGE"),
        (lambda f: f["fund_age_years"] < 8, "MATURE"),
    ],
    "HARVEST",
)

_INVESTING = is_in("lifecycle_stage", "INVESTMENT_PERIOD")

INVESTMENT_CAPACITY = rule_table(
    "investment_capacity",
    [
        (all_of(_INVESTING, above("target_size", 500)), "HIGH_CAPACITY"),
        (all_of(_INVESTING, above("target_size", 100)), "MEDIUM_CAPACITY"),
        (_INVESTING, "LOW_CAPACITY"),
    ],
    "NO_CAPACITY",
)

FUNDRAISING_SPEED = rule_table(
    "fundraising_speed",
    [
        (is_null("fundraising_duration_days"), None),
        (lambda f: f["fundraising_duration_days"] <= 365, "FAST"),
        (lambda f: f["fundraising_duration_days"] <= 730, "NORMAL"),
    ],
    "SLOW",
)

# Name keywords, checked in order.
INFERRED_STRATEGY = rule_table(
    "inferred_fund_strategy",
    [
        (contains("name", "GROWTH"), "GROWTH"),
        (contains("name", "BUYOUT"), "BUYOUT"),
        (contains("name", "VENTURE"), "VENTURE"),
        (contains("name", "CREDIT", "DEBT"), "CREDIT"),
        (contains("name", "INFRASTRUCTURE"), "INFRASTRUCTURE"),
        (contains("name", "REAL ESTATE"), "REAL_ESTATE"),
        (contains("name", "DISTRESSED"), "DISTRESSED"),
        (contains("name", "SECONDARY", "SECONDARIES"), "SECONDARY"),
    ],
    "OTHER",
)

ATTRACTIVENESS = composite(
    "fund_attractiveness_score",
    threshold_table("size_points", "target_size", [(1000, 3), (500, 2), (100, 1)], 0),
    threshold_table(
        "fee_points", "management_fee_rate", [(0.02, 2), (0.025, 1)], 0, op="<=",
    ),
    threshold_table(
        "carry_points", "carried_interest_rate", [(0.20, 2), (0.25, 1)], 0, op="<=",
    ),
    threshold_table("age_points", "fund_age_years", [(3, 2), (6, 1)], 0, op="<="),
    lookup_table(
        "capacity_points", "investment_capacity",
        {("HIGH_CAPACITY", "MEDIUM_CAPACITY"): 2}, 0,
    ),
)

RECOMMENDATION = rule_table(
    "investment_recommendation",
    [
        (
            all_of(
                at_least("fund_attractiveness_score", 8),
                is_in("quality_rating", "EXCELLENT", "GOOD"),
            ),
            "HIGHLY_RECOMMENDED",
        ),
        (
            all_of(
                at_least("fund_attractiveness_score", 6),
                is_in("quality_rating", "EXCELLENT", "GOOD", "FAIR"),
            ),
            "RECOMMENDED",
        ),
        (at_least("fund_attractiveness_score", 4), "CONSIDER"),
    ],
    "NOT_RECOMMENDED",
)

# ---------------------------------------------------------------------------
# Derived fields
# ---------------------------------------------------------------------------


@derived("fund_age_years")
def _fund_age(fields, ctx):
    return years_between(fields.get("vintage_year"), ctx.as_of)


@derived("fund_maturity_stage")
def _maturity(fields, ctx):
    return MATURITY_STAGE.classify(fields)


@derived("investment_capacity")
def _capacity(fields, ctx):
    return INVESTMENT_CAPACITY.classify(fields)


@derived("fundraising_duration_days")
def _fundraising_duration(fields, ctx):
    return days_between(fields.get("first_close_date"), fields.get("final_close_date"))


@derived("fundraising_speed")
def _fundraising_speed(fields, ctx):
    return FUNDRAISING_SPEED.classify(fields)


@derived("inferred_fund_strategy")
def _inferred_strategy(fields, ctx):
    if fields.get("name") is None:
        return None
    return INFERRED_STRATEGY.classify(fields)


@derived("strategy_alignment")
def _strategy_alignment(fields, ctx):
    strategy = fields.get("investment_strategy")
    inferred = fields.get("inferred_fund_strategy")
    if strategy is None or inferred is None:
        return "UNKNOWN"
    declared = str(strategy).upper().replace(" ", "_")
    return "ALIGNED" if inferred in declared else "MISALIGNED"


@derived("fund_attractiveness_score")
def _attractiveness(fields, ctx):
    return ATTRACTIVENESS.score(fields)


@derived("investment_recommendation")
def _recommendation(fields, ctx):
    return RECOMMENDATION.classify(fields)


FUND = EntityTypeSpec(
    entity_type="fund",
    source_order=(FUND_ADMIN, CRM),
    rules=RULES,
    required_fields=(
        "name",
        "vintage_year",
        "target_size",
        "base_currency_code",
        "investment_strategy",
        "geography_focus",
        "management_fee_rate",
        "carried_interest_rate",
        "first_close_date",
        "fund_status",
    ),
    derived=(
        _fund_age,
        _maturity,
        _capacity,
        _fundraising_duration,
        _fundraising_speed,
        _inferred_strategy,
        _strategy_alignment,
        *converted_amount("target_size_reporting", "target_size", "base_currency_code"),
        _attractiveness,
    ),
    assessments=(_recommendation,),
    format_checks=(FormatCheck("base_currency_code", "currency"),),
    variance_checks=(
        VarianceCheck("fund_age_years", "reported_fund_age_years", tolerance=1.0),
    ),
)
