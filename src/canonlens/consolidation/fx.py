"""Read-only currency conversion table.

Rates come from an external reference feed. A missing rate is not an error:
the amount is returned unconverted in its original currency and the caller
flags the record. An amount with no currency is likewise returned as-is with
a ``None`` currency.
"""

from __future__ import annotations

import bisect
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date

import structlog

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class FxRate:
    from_currency: str
    to_currency: str
    rate: float
    as_of_date: date


@dataclass(frozen=True)
class Conversion:
    amount: float | None
    currency: str | None
    converted: bool
    rate: float | None = None


class FxRateTable:
    """Rates keyed by currency pair, each pair sorted by ``as_of_date``."""

    def __init__(self, rates: Iterable[FxRate] = ()) -> None:
        by_pair: dict[tuple[str, str], dict[date, float]] = {}
        skipped = 0
        for r in rates:
            if r.rate is None or r.rate <= 0:
                skipped += 1
                continue
            pair = (r.from_currency.upper(), r.to_currency.upper())
            # Last row for a (pair, date) wins; rows are expected unique.
            by_pair.setdefault(pair, {})[r.as_of_date] = float(r.rate)

        self._dates: dict[tuple[str, str], list[date]] = {}
        self._rates: dict[tuple[str, str], list[float]] = {}
        for pair, series in by_pair.items():
            ordered = sorted(series)
            self._dates[pair] = ordered
            self._rates[pair] = [series[d] for d in ordered]

        if skipped:
            logger.warning("fx_rates_skipped", count=skipped, reason="non_positive_rate")

    def __len__(self) -> int:
        return sum(len(v) for v in self._rates.values())

    def _latest(self, pair: tuple[str, str], as_of: date | None) -> float | None:
        dates = self._dates.get(pair)
        if not dates:
            return None
        if as_of is None:
            return self._rates[pair][-1]
        pos = bisect.bisect_right(dates, as_of)
        if pos == 0:
            return None
        return self._rates[pair][pos - 1]

    def rate(self, from_currency: str, to_currency: str, as_of: date | None = None) -> float | None:
        """Latest rate on or before *as_of*, falling back to the inverse pair."""
        src, dst = from_currency.upper(), to_currency.upper()
        if src == dst:
            return 1.0
        direct = self._latest((src, dst), as_of)
        if direct is not None:
            return direct
        inverse = self._latest((dst, src), as_of)
        if inverse is not None:
            return 1.0 / inverse
        return None

    def convert(
        self,
        amount: float | None,
        from_currency: str | None,
        to_currency: str,
        as_of: date | None = None,
    ) -> Conversion:
        if amount is None:
            return Conversion(None, None, converted=True)
        if from_currency is None:
            # Amount kept as reported; its currency stays unknown.
            return Conversion(float(amount), None, converted=False)
        rate = self.rate(from_currency, to_currency, as_of)
        if rate is None:
            return Conversion(float(amount), from_currency.upper(), converted=False)
        return Conversion(round(float(amount) * rate, 4), to_currency.upper(), True, rate)
