"""Format and cross-check validation for consolidated records.

Nothing in here raises on bad data: checks return the offending field names
and the caller records them as diagnostic flags.
"""

from __future__ import annotations

import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any

from canonlens.scoring.thresholds import safe_diff

SUPPORTED_CURRENCIES = frozenset(
    {
        "USD", "EUR", "GBP", "JPY", "CHF", "CAD", "AUD", "NZD", "SEK", "NOK",
        "DKK", "SGD", "HKD", "CNY", "INR", "KRW", "BRL", "MXN", "ZAR", "RUB",
    }
)

_COUNTRY_PATTERN = re.compile(r"^[A-Z]{2}$")


def is_valid_currency(code: Any) -> bool:
    """A missing currency is not a format error; an unsupported code is."""
    if code is None:
        return True
    return str(code) in SUPPORTED_CURRENCIES


def is_valid_country(code: Any) -> bool:
    if code is None:
        return True
    return bool(_COUNTRY_PATTERN.match(str(code)))


_VALIDATORS = {
    "currency": is_valid_currency,
    "country": is_valid_country,
}


@dataclass(frozen=True)
class FormatCheck:
    field: str
    kind: str  # currency, country

    def __post_init__(self) -> None:
        if self.kind not in _VALIDATORS:
            raise ValueError(f"Unknown format check kind: {self.kind}")

    def passes(self, fields: Mapping[str, Any]) -> bool:
        return _VALIDATORS[self.kind](fields.get(self.field))


def format_violations(fields: Mapping[str, Any], checks: Sequence[FormatCheck]) -> list[str]:
    """Names of fields whose values fail their format check."""
    return [c.field for c in checks if not c.passes(fields)]


@dataclass(frozen=True)
class VarianceCheck:
    """Compare a derived metric with a value reported by a source system.

    With ``relative=True`` the tolerance is a fraction of the reported value.
    The check is skipped when either side is missing.
    """

    derived: str
    reported: str
    tolerance: float
    relative: bool = False

    def disagrees(self, fields: Mapping[str, Any]) -> bool:
        diff = safe_diff(fields.get(self.derived), fields.get(self.reported))
        if diff is None:
            return False
        limit = self.tolerance
        if self.relative:
            limit = abs(float(fields[self.reported])) * self.tolerance
        return abs(diff) > limit


def variance_violations(fields: Mapping[str, Any], checks: Sequence[VarianceCheck]) -> list[str]:
    return [c.derived for c in checks if c.disagrees(fields)]
