"""Field resolution rules and aggregation reducers.

A ``FieldRule`` declares how one output field is resolved from the source
records grouped under a canonical id:

- ``priority``: scan the declared source systems in order and take the first
  non-null value.
- ``aggregate``: combine every contributing row with a named reducer.

Derived fields are declared separately as ``DerivedField`` and only ever
see already-resolved fields.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import date, datetime
from numbers import Number
from typing import Any

from canonlens.consolidation.fx import FxRateTable
from canonlens.records import FX_RATE_MISSING, SourceRecord, date_sort_key

PRIORITY = "priority"
AGGREGATE = "aggregate"

# ---------------------------------------------------------------------------
# Reducers
# ---------------------------------------------------------------------------

Pair = tuple[SourceRecord, Any]


def _present(pairs: Sequence[Pair]) -> list[Any]:
    return [value for _, value in pairs if value is not None]


def _numbers(pairs: Sequence[Pair]) -> list[Any]:
    return [v for v in _present(pairs) if isinstance(v, Number) and not isinstance(v, bool)]


def _order_key(value: Any) -> Any:
    if isinstance(value, (date, datetime)):
        return date_sort_key(value)
    return value


def reduce_sum(pairs: Sequence[Pair], rule: FieldRule) -> Any:
    values = _numbers(pairs)
    return sum(values) if values else None


def reduce_count(pairs: Sequence[Pair], rule: FieldRule) -> int:
    return len(pairs)


def reduce_min(pairs: Sequence[Pair], rule: FieldRule) -> Any:
    values = _present(pairs)
    return min(values, key=_order_key) if values else None


def reduce_max(pairs: Sequence[Pair], rule: FieldRule) -> Any:
    values = _present(pairs)
    return max(values, key=_order_key) if values else None


def reduce_mean(pairs: Sequence[Pair], rule: FieldRule) -> float | None:
    values = _numbers(pairs)
    if not values:
        return None
    return round(float(sum(values)) / len(values), 4)


def reduce_concat_distinct(pairs: Sequence[Pair], rule: FieldRule) -> str | None:
    values = sorted({str(v) for v in _present(pairs)})
    return ", ".join(values) if values else None


def reduce_latest(pairs: Sequence[Pair], rule: FieldRule) -> Any:
    """Value from the most recent row; equal dates go to the greatest natural key.

    With a ``date_field`` every row takes part, undated rows sorting before
    dated ones, and the chosen row's value is returned even when it is null.
    Without one, rows are dated by ``last_modified`` and null values skipped.
    """

    def row_date(record: SourceRecord) -> Any:
        if rule.date_field:
            return record.fields.get(rule.date_field)
        return record.last_modified

    candidates = list(pairs)
    if not rule.date_field:
        candidates = [(r, v) for r, v in candidates if v is not None]
    if not candidates:
        return None
    _, value = max(candidates, key=lambda p: (date_sort_key(row_date(p[0])), p[0].natural_key))
    return value


def reduce_ranked(pairs: Sequence[Pair], rule: FieldRule) -> Any:
    """Value ranked best in ``rank_order``; unranked values come last, by string order."""
    values = _present(pairs)
    if not values:
        return None
    rank = {v: i for i, v in enumerate(rule.rank_order)}
    return min(values, key=lambda v: (rank.get(v, len(rank)), str(v)))


REDUCERS: dict[str, Callable[[Sequence[Pair], FieldRule], Any]] = {
    "sum": reduce_sum,
    "count": reduce_count,
    "min": reduce_min,
    "max": reduce_max,
    "mean": reduce_mean,
    "concat_distinct": reduce_concat_distinct,
    "latest": reduce_latest,
    "ranked": reduce_ranked,
}

# ---------------------------------------------------------------------------
# Rules
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class FieldRule:
    field: str
    strategy: str = PRIORITY
    sources: tuple[str, ...] = ()
    reducer: str | None = None
    source_field: str | None = None
    aliases: Mapping[str, str] = field(default_factory=dict)
    record_kinds: tuple[str, ...] = ("profile",)
    match: Mapping[str, Any] = field(default_factory=dict)
    date_field: str | None = None
    rank_order: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if self.strategy == PRIORITY:
            if not self.sources:
                raise ValueError(f"Priority rule for {self.field} needs a source order")
        elif self.strategy == AGGREGATE:
            if self.reducer not in REDUCERS:
                raise ValueError(f"Unknown reducer for {self.field}: {self.reducer}")
        else:
            raise ValueError(f"Unknown strategy for {self.field}: {self.strategy}")

    def source_name(self, source_system: str) -> str:
        return self.aliases.get(source_system, self.source_field or self.field)

    def applies_to(self, record: SourceRecord) -> bool:
        if self.record_kinds and record.record_kind not in self.record_kinds:
            return False
        if self.sources and record.source_system not in self.sources:
            return False
        return all(record.fields.get(k) == v for k, v in self.match.items())

    def value_of(self, record: SourceRecord) -> Any:
        return record.fields.get(self.source_name(record.source_system))


def priority(
    name: str,
    *sources: str,
    source_field: str | None = None,
    aliases: Mapping[str, str] | None = None,
    record_kinds: tuple[str, ...] = ("profile",),
) -> FieldRule:
    return FieldRule(
        name,
        PRIORITY,
        sources=tuple(sources),
        source_field=source_field,
        aliases=dict(aliases or {}),
        record_kinds=record_kinds,
    )


def aggregate(
    name: str,
    reducer: str,
    *,
    source_field: str | None = None,
    sources: tuple[str, ...] = (),
    record_kinds: tuple[str, ...] = ("profile",),
    match: Mapping[str, Any] | None = None,
    date_field: str | None = None,
    rank_order: tuple[str, ...] = (),
) -> FieldRule:
    return FieldRule(
        name,
        AGGREGATE,
        sources=sources,
        reducer=reducer,
        source_field=source_field,
        record_kinds=record_kinds,
        match=dict(match or {}),
        date_field=date_field,
        rank_order=rank_order,
    )


def _recency(record: SourceRecord) -> tuple:
    return (date_sort_key(record.last_modified), record.natural_key)


def resolve_field(rule: FieldRule, records: Sequence[SourceRecord]) -> Any:
    """Resolve one field from the rows grouped under a canonical id.

    Within a single source system the most recently modified row is read
    first, so duplicate source rows resolve the same way on every run.
    """
    contributing = [r for r in records if rule.applies_to(r)]

    if rule.strategy == PRIORITY:
        for system in rule.sources:
            rows = sorted(
                (r for r in contributing if r.source_system == system),
                key=_recency,
                reverse=True,
            )
            for row in rows:
                value = rule.value_of(row)
                if value is not None:
                    return value
        return None

    ordered = sorted(contributing, key=lambda r: (r.source_system, r.natural_key))
    pairs = [(r, rule.value_of(r)) for r in ordered]
    return REDUCERS[rule.reducer](pairs, rule)


# ---------------------------------------------------------------------------
# Derived fields
# ---------------------------------------------------------------------------


@dataclass
class DerivationContext:
    """Per-entity inputs for derived fields.

    ``flags`` collects diagnostics raised while deriving (currently only
    missing FX rates) and belongs to a single entity.
    """

    as_of: date
    fx: FxRateTable
    reporting_currency: str = "USD"
    flags: set[str] = field(default_factory=set)


@dataclass(frozen=True)
class DerivedField:
    field: str
    compute: Callable[[Mapping[str, Any], DerivationContext], Any]


def derived(name: str) -> Callable[[Callable], DerivedField]:
    """Decorator form: ``@derived("ratio")`` over ``def f(fields, ctx)``."""

    def wrap(fn: Callable[[Mapping[str, Any], DerivationContext], Any]) -> DerivedField:
        return DerivedField(name, fn)

    return wrap


def years_between(start: Any, as_of: date) -> int | None:
    """Whole calendar years from *start* (a year number or date) to *as_of*."""
    if start is None:
        return None
    if isinstance(start, (date, datetime)):
        return as_of.year - start.year
    if isinstance(start, Number) and not isinstance(start, bool):
        return as_of.year - int(start)
    return None


def months_between(start: Any, as_of: date) -> int | None:
    if not isinstance(start, (date, datetime)):
        return None
    return (as_of.year - start.year) * 12 + (as_of.month - start.month)


def days_between(start: Any, end: Any) -> int | None:
    if not isinstance(start, (date, datetime)) or not isinstance(end, (date, datetime)):
        return None
    a = start.date() if isinstance(start, datetime) else start
    b = end.date() if isinstance(end, datetime) else end
    return (b - a).days


def converted_amount(
    name: str,
    amount_field: str,
    currency_field: str,
) -> tuple[DerivedField, DerivedField]:
    """Derived ``name`` and ``name_currency`` holding *amount_field* in the reporting currency.

    When no rate is available, or the amount has no currency, the amount is
    kept unconverted and the entity is flagged ``FX_RATE_MISSING``.
    """

    def convert(fields: Mapping[str, Any], ctx: DerivationContext):
        result = ctx.fx.convert(
            fields.get(amount_field),
            fields.get(currency_field),
            ctx.reporting_currency,
            ctx.as_of,
        )
        if not result.converted and result.amount is not None:
            ctx.flags.add(FX_RATE_MISSING)
        return result

    return (
        DerivedField(name, lambda f, ctx: convert(f, ctx).amount),
        DerivedField(f"{name}_currency", lambda f, ctx: convert(f, ctx).currency),
    )
