"""Ordered rule tables and weighted composite scores.

Every categorical output is a ``RuleTable``: ``(predicate, category)`` rules
checked top to bottom, first match wins, and a mandatory default so every
input lands in exactly one bucket. Composite scores are weighted sums of
rule-table values. Tables are plain data and can be swapped per entity type.
"""

from __future__ import annotations

import math
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from numbers import Number
from typing import Any

Predicate = Callable[[Mapping[str, Any]], bool]


# ---------------------------------------------------------------------------
# Predicate builders
# ---------------------------------------------------------------------------


def as_number(value: Any) -> float | None:
    """Finite float value of a real number; ``None`` for bools, nulls and text."""
    if isinstance(value, bool) or not isinstance(value, Number):
        return None
    number = float(value)
    return number if math.isfinite(number) else None


def at_least(field: str, bound: float) -> Predicate:
    def check(fields: Mapping[str, Any]) -> bool:
        value = as_number(fields.get(field))
        return value is not None and value >= bound

    return check


def above(field: str, bound: float) -> Predicate:
    def check(fields: Mapping[str, Any]) -> bool:
        value = as_number(fields.get(field))
        return value is not None and value > bound

    return check


def at_most(field: str, bound: float) -> Predicate:
    def check(fields: Mapping[str, Any]) -> bool:
        value = as_number(fields.get(field))
        return value is not None and value <= bound

    return check


def below(field: str, bound: float) -> Predicate:
    def check(fields: Mapping[str, Any]) -> bool:
        value = as_number(fields.get(field))
        return value is not None and value < bound

    return check


def is_in(field: str, *values: Any) -> Predicate:
    allowed = frozenset(values)

    def check(fields: Mapping[str, Any]) -> bool:
        return fields.get(field) in allowed

    return check


def is_null(field: str) -> Predicate:
    def check(fields: Mapping[str, Any]) -> bool:
        return fields.get(field) is None

    return check


def contains(field: str, *needles: str) -> Predicate:
    """Case-insensitive substring match on a text field."""
    upper = tuple(n.upper() for n in needles)

    def check(fields: Mapping[str, Any]) -> bool:
        value = fields.get(field)
        if value is None:
            return False
        text = str(value).upper()
        return any(n in text for n in upper)

    return check


def all_of(*predicates: Predicate) -> Predicate:
    def check(fields: Mapping[str, Any]) -> bool:
        return all(p(fields) for p in predicates)

    return check


def any_of(*predicates: Predicate) -> Predicate:
    def check(fields: Mapping[str, Any]) -> bool:
        return any(p(fields) for p in predicates)

    return check


# ---------------------------------------------------------------------------
# Rule tables
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Rule:
    when: Predicate
    category: Any


@dataclass(frozen=True)
class RuleTable:
    name: str
    rules: tuple[Rule, ...]
    default: Any

    def classify(self, fields: Mapping[str, Any]) -> Any:
        for rule in self.rules:
            if rule.when(fields):
                return rule.category
        return self.default


def rule_table(
    name: str,
    rules: list[tuple[Predicate, Any]],
    default: Any,
) -> RuleTable:
    """Build a table from ``(predicate, category)`` pairs."""
    return RuleTable(name, tuple(Rule(p, c) for p, c in rules), default)


def threshold_table(
    name: str,
    field: str,
    cuts: list[tuple[float, Any]],
    default: Any,
    *,
    op: str = ">=",
) -> RuleTable:
    """Build a numeric step table from ``(cut_point, category)`` pairs.

    ``op`` is the comparison applied as ``value <op> cut_point``. Null or
    non-numeric values fall through to *default*.
    """
    builders = {">=": at_least, ">": above, "<=": at_most, "<": below}
    if op not in builders:
        raise ValueError(f"Unsupported threshold operator: {op}")
    build = builders[op]
    return rule_table(name, [(build(field, cut), cat) for cut, cat in cuts], default)


def lookup_table(
    name: str,
    field: str,
    mapping: Mapping[Any, Any],
    default: Any,
) -> RuleTable:
    """Build a table that maps exact field values to categories.

    Keys may be a single value or a tuple of values sharing a category.
    """
    rules = []
    for key, category in mapping.items():
        values = key if isinstance(key, tuple) else (key,)
        rules.append((is_in(field, *values), category))
    return rule_table(name, rules, default)


# ---------------------------------------------------------------------------
# Composite scores
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ScoreComponent:
    table: RuleTable
    weight: float = 1.0


@dataclass(frozen=True)
class CompositeScore:
    name: str
    components: tuple[ScoreComponent, ...]

    def score(self, fields: Mapping[str, Any]) -> float:
        total = sum(c.weight * float(c.table.classify(fields)) for c in self.components)
        return round(total, 4)


def composite(name: str, *components: RuleTable | tuple[RuleTable, float]) -> CompositeScore:
    parts = []
    for component in components:
        if isinstance(component, tuple):
            parts.append(ScoreComponent(*component))
        else:
            parts.append(ScoreComponent(component))
    return CompositeScore(name, tuple(parts))


# ---------------------------------------------------------------------------
# Arithmetic helpers
# ---------------------------------------------------------------------------


def safe_ratio(
    numerator: Any,
    denominator: Any,
    *,
    scale: float = 1.0,
    digits: int = 4,
    positive_only: bool = False,
) -> float | None:
    """``numerator / denominator * scale``, or ``None`` when undefined.

    With ``positive_only`` a negative denominator is also treated as undefined.
    """
    num = as_number(numerator)
    den = as_number(denominator)
    if num is None or den is None or den == 0:
        return None
    if positive_only and den < 0:
        return None
    return round(num / den * scale, digits)


def safe_diff(a: Any, b: Any, *, digits: int = 4) -> float | None:
    x, y = as_number(a), as_number(b)
    if x is None or y is None:
        return None
    return round(x - y, digits)
