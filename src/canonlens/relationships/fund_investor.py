"""Fund to investor (limited partner) relationships.

Built from the fund administrator's capital call and distribution rows. The
allocation of an edge is the investor's share of everything committed to
the fund.
"""

from __future__ import annotations

from canonlens.consolidation.rules import (
    aggregate,
    converted_amount,
    derived,
    months_between,
    years_between,
)
from canonlens.records import FUND_ADMIN, SourceRecord, date_sort_key
from canonlens.registry.base import classified
from canonlens.relationships.builder import AssociationSpec, Contribution, resolve_endpoint
from canonlens.resolution.xref import KeyIndex
from canonlens.scoring.thresholds import (
    above,
    at_least,
    at_most,
    is_null,
    rule_table,
    safe_ratio,
    threshold_table,
)

CALLS = ("capital_call",)
DISTRIBUTIONS = ("distribution",)


def extract(record: SourceRecord, key_index: KeyIndex) -> list[Contribution]:
    if record.source_system != FUND_ADMIN:
        return []
    fund_id, fund_unresolved = resolve_endpoint(
        key_index, "fund", FUND_ADMIN, record.source_key
    )
    investor_id, investor_unresolved = resolve_endpoint(
        key_index, "investor", FUND_ADMIN, record.get("investor_code")
    )
    if fund_id is None or investor_id is None:
        return []
    return [
        Contribution(
            entity_id=fund_id,
            target_id=investor_id,
            record=record,
            unresolved=fund_unresolved or investor_unresolved,
        )
    ]


RULES = (
    aggregate("commitment_amount", "max", sources=(FUND_ADMIN,), record_kinds=CALLS),
    aggregate(
        "commitment_currency", "latest",
        sources=(FUND_ADMIN,), record_kinds=CALLS, date_field="call_date",
    ),
    aggregate("total_capital_calls", "count", sources=(FUND_ADMIN,), record_kinds=CALLS),
    aggregate(
        "total_called_amount", "sum",
        source_field="call_amount", sources=(FUND_ADMIN,), record_kinds=CALLS,
    ),
    aggregate(
        "total_paid_amount", "sum",
        source_field="payment_amount", sources=(FUND_ADMIN,), record_kinds=CALLS,
    ),
    aggregate(
        "paid_calls_count", "count",
        sources=(FUND_ADMIN,), record_kinds=CALLS, match={"payment_status": "PAID"},
    ),
    aggregate(
        "overdue_calls_count", "count",
        sources=(FUND_ADMIN,), record_kinds=CALLS, match={"payment_status": "OVERDUE"},
    ),
    aggregate(
        "avg_payment_delay_days", "mean",
        source_field="days_late_early", sources=(FUND_ADMIN,), record_kinds=CALLS,
    ),
    aggregate(
        "first_call_date", "min",
        source_field="call_date", sources=(FUND_ADMIN,), record_kinds=CALLS,
    ),
    aggregate(
        "latest_call_date", "max",
        source_field="call_date", sources=(FUND_ADMIN,), record_kinds=CALLS,
    ),
    aggregate(
        "total_distributions", "count", sources=(FUND_ADMIN,), record_kinds=DISTRIBUTIONS,
    ),
    aggregate(
        "total_distributed_amount", "sum",
        source_field="distribution_amount", sources=(FUND_ADMIN,), record_kinds=DISTRIBUTIONS,
    ),
    aggregate(
        "capital_gain_amount", "sum",
        source_field="distribution_amount", sources=(FUND_ADMIN,), record_kinds=DISTRIBUTIONS,
        match={"distribution_type": "CAPITAL_GAIN"},
    ),
    aggregate(
        "return_of_capital_amount", "sum",
        source_field="distribution_amount", sources=(FUND_ADMIN,), record_kinds=DISTRIBUTIONS,
        match={"distribution_type": "RETURN_OF_CAPITAL"},
    ),
    aggregate(
        "dividend_income_amount", "sum",
        source_field="distribution_amount", sources=(FUND_ADMIN,), record_kinds=DISTRIBUTIONS,
        match={"distribution_type": "DIVIDEND_INCOME"},
    ),
    aggregate(
        "latest_distribution_date", "max",
        source_field="distribution_date", sources=(FUND_ADMIN,), record_kinds=DISTRIBUTIONS,
    ),
)

# ---------------------------------------------------------------------------
# Categories
# ---------------------------------------------------------------------------

COMMITMENT_SIZE = rule_table(
    "commitment_size_category",
    [
        (at_least("commitment_reporting", 100_000_000), "MEGA_COMMITMENT"),
        (at_least("commitment_reporting", 25_000_000), "LARGE_COMMITMENT"),
        (at_least("commitment_reporting", 5_000_000), "MEDIUM_COMMITMENT"),
        (at_least("commitment_reporting", 1_000_000), "SMALL_COMMITMENT"),
        (above("commitment_reporting", 0), "MICRO_COMMITMENT"),
    ],
    "UNKNOWN_COMMITMENT",
)

PAYMENT_BEHAVIOR = rule_table(
    "payment_behavior_category",
    [
        (is_null("avg_payment_delay_days"), "UNKNOWN_PAYMENT_BEHAVIOR"),
        (at_most("avg_payment_delay_days", 0), "EARLY_PAYER"),
        (at_most("avg_payment_delay_days", 5), "ON_TIME_PAYER"),
        (at_most("avg_payment_delay_days", 15), "SLIGHTLY_LATE_PAYER"),
        (at_most("avg_payment_delay_days", 30), "LATE_PAYER"),
    ],
    "CHRONIC_LATE_PAYER",
)

RELATIONSHIP_MATURITY = threshold_table(
    "relationship_maturity",
    "relationship_age_years",
    [
        (7, "MATURE_RELATIONSHIP"),
        (4, "ESTABLISHED_RELATIONSHIP"),
        (2, "DEVELOPING_RELATIONSHIP"),
        (1, "NEW_RELATIONSHIP"),
    ],
    "VERY_NEW_RELATIONSHIP",
)

ACTIVITY_STATUS = threshold_table(
    "activity_status",
    "months_since_last_activity",
    [(3, "ACTIVE"), (12, "RECENT_ACTIVITY"), (24, "DORMANT")],
    "INACTIVE",
    op="<=",
)


def _share_at_least(part: str, bound: float):
    def check(fields) -> bool:
        share = safe_ratio(fields.get(part), fields.get("total_distributed_amount"))
        return share is not None and share >= bound

    return check


_DISTRIBUTED = above("total_distributed_amount", 0)

DISTRIBUTION_PROFILE = rule_table(
    "distribution_profile",
    [
        (lambda f: not _DISTRIBUTED(f), "NO_DISTRIBUTIONS"),
        (_share_at_least("capital_gain_amount", 0.7), "CAPITAL_GAINS_FOCUSED"),
        (_share_at_least("return_of_capital_amount", 0.7), "CAPITAL_RETURN_FOCUSED"),
        (_share_at_least("dividend_income_amount", 0.5), "INCOME_FOCUSED"),
    ],
    "MIXED_DISTRIBUTIONS",
)


@derived("latest_activity_date")
def _latest_activity(fields, ctx):
    dates = [fields.get("latest_call_date"), fields.get("latest_distribution_date")]
    dates = [d for d in dates if d is not None]
    return max(dates, key=date_sort_key) if dates else None


@derived("relationship_age_years")
def _relationship_age(fields, ctx):
    return years_between(fields.get("first_call_date"), ctx.as_of)


@derived("months_since_last_activity")
def _months_since_activity(fields, ctx):
    return months_between(fields.get("latest_activity_date"), ctx.as_of)


@derived("capital_deployment_percentage")
def _deployment(fields, ctx):
    return safe_ratio(
        fields.get("total_called_amount"), fields.get("commitment_amount"),
        scale=100, positive_only=True,
    )


@derived("dpi_ratio")
def _dpi(fields, ctx):
    distributed = fields.get("total_distributed_amount") or 0
    return safe_ratio(distributed, fields.get("total_called_amount"), positive_only=True)


@derived("payment_reliability_percentage")
def _payment_reliability(fields, ctx):
    return safe_ratio(
        fields.get("paid_calls_count"), fields.get("total_capital_calls"),
        scale=100, positive_only=True,
    )


FUND_INVESTOR = AssociationSpec(
    association_type="FUND_INVESTOR",
    code="FI",
    entity_type="fund",
    record_kinds=CALLS + DISTRIBUTIONS,
    extract=extract,
    source_order=(FUND_ADMIN,),
    rules=RULES,
    derived=(
        *converted_amount("commitment_reporting", "commitment_amount", "commitment_currency"),
        _latest_activity,
        _relationship_age,
        _months_since_activity,
        _deployment,
        _dpi,
        _payment_reliability,
        classified(COMMITMENT_SIZE),
        classified(PAYMENT_BEHAVIOR),
        classified(RELATIONSHIP_MATURITY),
        classified(ACTIVITY_STATUS),
        classified(DISTRIBUTION_PROFILE),
    ),
    allocation_basis="commitment_amount",
)
