"""Company consolidation strategy.

Profile fields come from the CRM first and portfolio management second.
Investment, financial and valuation history comes from the portfolio
management system and is aggregated across rows.
"""

from __future__ import annotations

from canonlens.consolidation.rules import (
    aggregate,
    converted_amount,
    derived,
    months_between,
    priority,
    years_between,
)
from canonlens.records import CRM, PORTFOLIO_MGMT
from canonlens.registry.base import EntityTypeSpec
from canonlens.scoring.quality import completeness_score
from canonlens.scoring.thresholds import (
    all_of,
    at_least,
    composite,
    is_in,
    is_null,
    lookup_table,
    rule_table,
    safe_ratio,
    threshold_table,
)
from canonlens.validation import FormatCheck, VarianceCheck

INVESTMENT = ("investment",)
FINANCIALS = ("financials",)
VALUATION = ("valuation",)
PROFILE_AND_INVESTMENT = ("profile", "investment")

# ---------------------------------------------------------------------------
# Field resolution
# ---------------------------------------------------------------------------

RULES = (
    priority(
        "name", CRM, PORTFOLIO_MGMT,
        aliases={PORTFOLIO_MGMT: "company_name"},
        record_kinds=PROFILE_AND_INVESTMENT,
    ),
    priority("legal_name", CRM),
    priority("industry_primary", CRM),
    priority("industry_secondary", CRM),
    priority(
        "industry_sector", CRM, PORTFOLIO_MGMT,
        aliases={PORTFOLIO_MGMT: "sector"},
        record_kinds=PROFILE_AND_INVESTMENT,
    ),
    priority("country_code", CRM),
    priority("state_province", CRM),
    priority("city", CRM),
    priority("founded_year", CRM),
    priority("employee_count", CRM),
    priority("company_size_category", CRM),
    priority("revenue_midpoint_millions", CRM),
    priority("website", CRM),
    priority("description", CRM),
    priority("business_model", CRM),
    priority("esg_score", CRM),
    # Investment summary
    aggregate("investment_count", "count", sources=(PORTFOLIO_MGMT,), record_kinds=INVESTMENT),
    aggregate(
        "total_investment_amount", "sum",
        source_field="investment_amount", record_kinds=INVESTMENT,
    ),
    aggregate(
        "first_investment_date", "min",
        source_field="investment_date", record_kinds=INVESTMENT,
    ),
    aggregate(
        "latest_investment_date", "max",
        source_field="investment_date", record_kinds=INVESTMENT,
    ),
    aggregate(
        "investment_types", "concat_distinct",
        source_field="investment_type", record_kinds=INVESTMENT,
    ),
    aggregate(
        "avg_ownership_percentage", "mean",
        source_field="ownership_percentage", record_kinds=INVESTMENT,
    ),
    aggregate(
        "active_investments", "count",
        record_kinds=INVESTMENT, match={"investment_status": "ACTIVE"},
    ),
    # Latest financials
    aggregate(
        "latest_revenue", "latest",
        source_field="revenue", record_kinds=FINANCIALS, date_field="reporting_date",
    ),
    aggregate(
        "latest_ebitda", "latest",
        source_field="ebitda", record_kinds=FINANCIALS, date_field="reporting_date",
    ),
    aggregate(
        "latest_net_income", "latest",
        source_field="net_income", record_kinds=FINANCIALS, date_field="reporting_date",
    ),
    aggregate(
        "latest_total_assets", "latest",
        source_field="total_assets", record_kinds=FINANCIALS, date_field="reporting_date",
    ),
    aggregate(
        "latest_total_debt", "latest",
        source_field="total_debt", record_kinds=FINANCIALS, date_field="reporting_date",
    ),
    aggregate(
        "reported_ebitda_margin", "latest",
        record_kinds=FINANCIALS, date_field="reporting_date",
    ),
    aggregate(
        "currency_code", "latest",
        source_field="currency", record_kinds=FINANCIALS, date_field="reporting_date",
    ),
    aggregate(
        "latest_financial_date", "max",
        source_field="reporting_date", record_kinds=FINANCIALS,
    ),
    # Latest valuation
    aggregate(
        "latest_enterprise_value", "latest",
        source_field="enterprise_value", record_kinds=VALUATION, date_field="valuation_date",
    ),
    aggregate(
        "latest_equity_value", "latest",
        source_field="equity_value", record_kinds=VALUATION, date_field="valuation_date",
    ),
    aggregate(
        "latest_valuation_method", "latest",
        source_field="valuation_method", record_kinds=VALUATION, date_field="valuation_date",
    ),
    aggregate(
        "latest_valuation_date", "max",
        source_field="valuation_date", record_kinds=VALUATION,
    ),
)

# ---------------------------------------------------------------------------
# Threshold tables
# ---------------------------------------------------------------------------

LIFECYCLE_STAGE = rule_table(
    "company_lifecycle_stage",
    [
        (is_null("company_age_years"), "UNKNOWN"),
        (lambda f: f["company_age_years"] < 5, "STARTUP"),
        (lambda f: f["company_age_years"] < 10, "GROWTH"),
        (lambda f: f["company_age_years"] < 20, "MATURE"),
    ],
    "ESTABLISHED",
)

INVESTMENT_STATUS = rule_table(
    "investment_status",
    [
        (lambda f: (f.get("active_investments") or 0) > 0, "PORTFOLIO_COMPANY"),
        (lambda f: (f.get("investment_count") or 0) > 0, "FORMER_PORTFOLIO"),
    ],
    "PROSPECT",
)

ATTRACTIVENESS = composite(
    "investment_attractiveness_score",
    lookup_table(
        "size_points", "company_size_category",
        {"ENTERPRISE": 3, "LARGE": 2, "MEDIUM": 1}, 0,
    ),
    threshold_table(
        "margin_points", "ebitda_margin_percentage",
        [(20, 3), (10, 2), (0, 1)], 0,
    ),
    threshold_table(
        "leverage_points", "debt_to_assets_ratio",
        [(30, 2), (50, 1)], 0, op="<=",
    ),
    lookup_table(
        "lifecycle_points", "company_lifecycle_stage",
        {("GROWTH", "MATURE"): 2, "STARTUP": 1}, 0,
    ),
    lookup_table(
        "sector_points", "industry_sector",
        {("TECHNOLOGY", "HEALTHCARE", "FINANCIAL_SERVICES"): 2}, 1,
    ),
)

RECOMMENDATION = rule_table(
    "investment_recommendation",
    [
        (
            all_of(
                at_least("investment_attractiveness_score", 10),
                is_in("quality_rating", "EXCELLENT", "GOOD"),
            ),
            "HIGHLY_RECOMMENDED",
        ),
        (
            all_of(
                at_least("investment_attractiveness_score", 7),
                is_in("quality_rating", "EXCELLENT", "GOOD", "FAIR"),
            ),
            "RECOMMENDED",
        ),
        (at_least("investment_attractiveness_score", 5), "CONSIDER"),
    ],
    "NOT_RECOMMENDED",
)

FINANCIAL_FIELDS = (
    "latest_revenue",
    "latest_ebitda",
    "latest_net_income",
    "latest_total_assets",
    "latest_enterprise_value",
)

# ---------------------------------------------------------------------------
# Derived fields
# ---------------------------------------------------------------------------


@derived("company_age_years")
def _company_age(fields, ctx):
    return years_between(fields.get("founded_year"), ctx.as_of)


@derived("company_lifecycle_stage")
def _lifecycle(fields, ctx):
    return LIFECYCLE_STAGE.classify(fields)


@derived("investment_status")
def _investment_status(fields, ctx):
    return INVESTMENT_STATUS.classify(fields)


@derived("ebitda_margin_percentage")
def _ebitda_margin(fields, ctx):
    return safe_ratio(
        fields.get("latest_ebitda"), fields.get("latest_revenue"),
        scale=100, positive_only=True,
    )


@derived("debt_to_assets_ratio")
def _debt_to_assets(fields, ctx):
    return safe_ratio(
        fields.get("latest_total_debt"), fields.get("latest_total_assets"),
        scale=100, positive_only=True,
    )


@derived("ev_revenue_multiple")
def _ev_revenue(fields, ctx):
    return safe_ratio(
        fields.get("latest_enterprise_value"), fields.get("latest_revenue"), positive_only=True
    )


@derived("ev_ebitda_multiple")
def _ev_ebitda(fields, ctx):
    return safe_ratio(
        fields.get("latest_enterprise_value"), fields.get("latest_ebitda"), positive_only=True
    )


@derived("investment_duration_years")
def _investment_duration(fields, ctx):
    return years_between(fields.get("first_investment_date"), ctx.as_of)


@derived("unrealized_return_percentage")
def _unrealized_return(fields, ctx):
    equity = fields.get("latest_equity_value")
    invested = fields.get("total_investment_amount")
    if equity is None or invested is None:
        return None
    return safe_ratio(equity - invested, invested, scale=100, positive_only=True)


@derived("financial_data_age_months")
def _financial_age(fields, ctx):
    return months_between(fields.get("latest_financial_date"), ctx.as_of)


@derived("valuation_data_age_months")
def _valuation_age(fields, ctx):
    return months_between(fields.get("latest_valuation_date"), ctx.as_of)


@derived("financial_completeness_score")
def _financial_completeness(fields, ctx):
    return completeness_score(fields, FINANCIAL_FIELDS)


@derived("investment_attractiveness_score")
def _attractiveness(fields, ctx):
    return ATTRACTIVENESS.score(fields)


@derived("investment_recommendation")
def _recommendation(fields, ctx):
    return RECOMMENDATION.classify(fields)


COMPANY = EntityTypeSpec(
    entity_type="company",
    source_order=(CRM, PORTFOLIO_MGMT),
    rules=RULES,
    required_fields=(
        "name",
        "industry_primary",
        "country_code",
        "founded_year",
        "employee_count",
        "revenue_midpoint_millions",
        "website",
        "description",
        "latest_revenue",
        "latest_enterprise_value",
    ),
    derived=(
        _company_age,
        _lifecycle,
        _investment_status,
        _ebitda_margin,
        _debt_to_assets,
        _ev_revenue,
        _ev_ebitda,
        _investment_duration,
        _unrealized_return,
        _financial_age,
        _valuation_age,
        _financial_completeness,
        *converted_amount("latest_revenue_reporting", "latest_revenue", "currency_code"),
        _attractiveness,
    ),
    assessments=(_recommendation,),
    format_checks=(
        FormatCheck("country_code", "country"),
        FormatCheck("currency_code", "currency"),
    ),
    variance_checks=(
        VarianceCheck("ebitda_margin_percentage", "reported_ebitda_margin", tolerance=2.0),
    ),
)
