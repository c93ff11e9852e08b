"""Fund to portfolio-company positions.

Portfolio-management investment rows carry both the company key and the
key of the fund that made the investment. Tranches into the same company
are summed; the allocation is the fund's total ownership of the company.
"""

from __future__ import annotations

from canonlens.consolidation.rules import aggregate, converted_amount, derived, priority
from canonlens.records import PORTFOLIO_MGMT, SourceRecord
from canonlens.registry.base import classified
from canonlens.relationships.builder import AssociationSpec, Contribution, resolve_endpoint
from canonlens.resolution.xref import KeyIndex
from canonlens.scoring.thresholds import (
    above,
    all_of,
    any_of,
    at_least,
    below,
    is_in,
    lookup_table,
    rule_table,
    safe_ratio,
)
from canonlens.validation import FormatCheck

INVESTMENT = ("investment",)


def extract(record: SourceRecord, key_index: KeyIndex) -> list[Contribution]:
    if record.source_system != PORTFOLIO_MGMT:
        return []
    fund_id, fund_unresolved = resolve_endpoint(
        key_index, "fund", PORTFOLIO_MGMT, record.get("fund_id")
    )
    company_id, company_unresolved = resolve_endpoint(
        key_index, "company", PORTFOLIO_MGMT, record.source_key
    )
    if fund_id is None or company_id is None:
        return []
    return [
        Contribution(
            entity_id=fund_id,
            target_id=company_id,
            record=record,
            allocation=record.get("ownership_percentage"),
            unresolved=fund_unresolved or company_unresolved,
        )
    ]


RULES = (
    aggregate("tranche_count", "count", sources=(PORTFOLIO_MGMT,), record_kinds=INVESTMENT),
    aggregate(
        "total_investment_amount", "sum",
        source_field="investment_amount", sources=(PORTFOLIO_MGMT,), record_kinds=INVESTMENT,
    ),
    aggregate(
        "investment_currency", "latest",
        source_field="currency", sources=(PORTFOLIO_MGMT,), record_kinds=INVESTMENT,
        date_field="investment_date",
    ),
    aggregate(
        "cost_basis", "sum",
        sources=(PORTFOLIO_MGMT,), record_kinds=INVESTMENT,
    ),
    aggregate(
        "fair_value", "sum",
        sources=(PORTFOLIO_MGMT,), record_kinds=INVESTMENT,
    ),
    aggregate(
        "first_investment_date", "min",
        source_field="investment_date", sources=(PORTFOLIO_MGMT,), record_kinds=INVESTMENT,
    ),
    aggregate(
        "investment_stage", "latest",
        sources=(PORTFOLIO_MGMT,), record_kinds=INVESTMENT, date_field="investment_date",
    ),
    aggregate(
        "control_classification", "latest",
        sources=(PORTFOLIO_MGMT,), record_kinds=INVESTMENT, date_field="investment_date",
    ),
    priority("sector", PORTFOLIO_MGMT, record_kinds=INVESTMENT),
    priority("geography_region", PORTFOLIO_MGMT, record_kinds=INVESTMENT),
)

# ---------------------------------------------------------------------------
# Categories
# ---------------------------------------------------------------------------

POSITION_SIZE = rule_table(
    "portfolio_position_size",
    [
        (at_least("investment_reporting", 100_000_000), "MEGA_POSITION"),
        (at_least("investment_reporting", 25_000_000), "LARGE_POSITION"),
        (at_least("investment_reporting", 5_000_000), "MEDIUM_POSITION"),
        (at_least("investment_reporting", 1_000_000), "SMALL_POSITION"),
        (above("investment_reporting", 0), "MICRO_POSITION"),
    ],
    "UNKNOWN_POSITION",
)


def _stage(*stages: str):
    return is_in("investment_stage", *stages)


def _multiple(bound: float):
    return at_least("current_return_multiple", bound)


PERFORMANCE = rule_table(
    "performance_vs_expectations",
    [
        (all_of(_multiple(5.0), _stage("SEED")), "EXCEPTIONAL_PERFORMANCE"),
        (all_of(_multiple(3.0), _stage("SEED", "EARLY_STAGE")), "EXCEPTIONAL_PERFORMANCE"),
        (all_of(_multiple(2.5), _stage("GROWTH", "BUYOUT")), "EXCEPTIONAL_PERFORMANCE"),
        (all_of(_multiple(2.0), _stage("SEED")), "STRONG_PERFORMANCE"),
        (all_of(_multiple(1.5), _stage("EARLY_STAGE", "GROWTH")), "STRONG_PERFORMANCE"),
        (all_of(_multiple(1.3), _stage("BUYOUT")), "STRONG_PERFORMANCE"),
        (_multiple(1.0), "MEETING_EXPECTATIONS"),
        (_multiple(0.7), "BELOW_EXPECTATIONS"),
        (below("current_return_multiple", 0.7), "UNDERPERFORMING"),
    ],
    "UNKNOWN_PERFORMANCE",
)

_CONTROL = is_in("control_classification", "FULL_CONTROL", "OPERATIONAL_CONTROL")
_OUTPERFORMING = is_in(
    "performance_vs_expectations", "EXCEPTIONAL_PERFORMANCE", "STRONG_PERFORMANCE"
)

STRATEGIC_IMPORTANCE = rule_table(
    "strategic_importance",
    [
        (
            all_of(is_in("portfolio_position_size", "MEGA_POSITION", "LARGE_POSITION"), _CONTROL),
            "FLAGSHIP_INVESTMENT",
        ),
        (
            all_of(
                is_in("portfolio_position_size", "LARGE_POSITION", "MEDIUM_POSITION"),
                _OUTPERFORMING,
            ),
            "STAR_INVESTMENT",
        ),
        (_CONTROL, "CONTROL_INVESTMENT"),
        (is_in("portfolio_position_size", "LARGE_POSITION", "MEDIUM_POSITION"), "CORE_INVESTMENT"),
        (_OUTPERFORMING, "HIGH_PERFORMER"),
    ],
    "STANDARD_INVESTMENT",
)

_EARLY = _stage("SEED", "EARLY_STAGE")

RISK_PROFILE = rule_table(
    "risk_profile",
    [
        (all_of(is_in("sector", "TECHNOLOGY"), _EARLY), "HIGH_RISK"),
        (
            all_of(
                is_in("sector", "HEALTHCARE", "ENERGY"),
                lambda f: f.get("investment_stage") != "BUYOUT",
            ),
            "HIGH_RISK",
        ),
        (
            all_of(
                lambda f: f.get("geography_region") not in (None, "NORTH_AMERICA"),
                _EARLY,
            ),
            "HIGH_RISK",
        ),
        (_stage("DISTRESSED"), "HIGH_RISK"),
        (
            all_of(_stage("BUYOUT"), is_in("control_classification", "FULL_CONTROL")),
            "MEDIUM_RISK",
        ),
        (_stage("GROWTH", "LATE_STAGE"), "MEDIUM_RISK"),
        (_stage("MEZZANINE"), "LOW_RISK"),
    ],
    "UNKNOWN_RISK",
)

MONITORING_PRIORITY = rule_table(
    "monitoring_priority",
    [
        (is_in("strategic_importance", "FLAGSHIP_INVESTMENT"), "CRITICAL_MONITORING"),
        (
            all_of(
                is_in("performance_vs_expectations", "UNDERPERFORMING"),
                is_in("portfolio_position_size", "MEGA_POSITION", "LARGE_POSITION"),
            ),
            "CRITICAL_MONITORING",
        ),
        (
            is_in("strategic_importance", "STAR_INVESTMENT", "CONTROL_INVESTMENT"),
            "HIGH_MONITORING",
        ),
        (
            any_of(
                is_in("performance_vs_expectations", "BELOW_EXPECTATIONS"),
                is_in("strategic_importance", "CORE_INVESTMENT"),
            ),
            "MEDIUM_MONITORING",
        ),
    ],
    "STANDARD_MONITORING",
)

INVESTMENT_STRATEGY = lookup_table(
    "investment_strategy_type",
    "investment_stage",
    {
        "BUYOUT": "BUYOUT_STRATEGY",
        ("GROWTH", "LATE_STAGE"): "GROWTH_EQUITY_STRATEGY",
        ("SEED", "EARLY_STAGE"): "VENTURE_STRATEGY",
        "MEZZANINE": "MEZZANINE_STRATEGY",
        "DISTRESSED": "SPECIAL_SITUATIONS_STRATEGY",
    },
    "OTHER_STRATEGY",
)


@derived("current_return_multiple")
def _return_multiple(fields, ctx):
    return safe_ratio(fields.get("fair_value"), fields.get("cost_basis"), positive_only=True)


FUND_INVESTMENT = AssociationSpec(
    association_type="FUND_INVESTMENT",
    code="FV",
    entity_type="company",
    record_kinds=INVESTMENT,
    extract=extract,
    source_order=(PORTFOLIO_MGMT,),
    rules=RULES,
    derived=(
        *converted_amount("investment_reporting", "total_investment_amount", "investment_currency"),
        _return_multiple,
        classified(POSITION_SIZE),
        classified(PERFORMANCE),
        classified(STRATEGIC_IMPORTANCE),
        classified(RISK_PROFILE),
        classified(MONITORING_PRIORITY),
        classified(INVESTMENT_STRATEGY),
    ),
    format_checks=(FormatCheck("investment_currency", "currency"),),
)
