"""Tests for FX conversion and format / variance validation."""

from __future__ import annotations

from datetime import date

import pytest

from canonlens.consolidation.fx import FxRate, FxRateTable
from canonlens.validation import (
    FormatCheck,
    VarianceCheck,
    format_violations,
    is_valid_country,
    is_valid_currency,
    variance_violations,
)


@pytest.fixture()
def fx() -> FxRateTable:
    return FxRateTable(
        [
            FxRate("EUR", "USD", 1.05, date(2024, 1, 1)),
            FxRate("EUR", "USD", 1.10, date(2024, 4, 1)),
            FxRate("USD", "GBP", 0.80, date(2024, 1, 1)),
            FxRate("JPY", "USD", 0.0, date(2024, 1, 1)),
        ]
    )


# =========================================================================
# FxRateTable
# =========================================================================


class TestFxRateTable:
    def test_latest_rate_on_or_before(self, fx):
        assert fx.rate("EUR", "USD", date(2024, 3, 31)) == 1.05
        assert fx.rate("EUR", "USD", date(2024, 4, 1)) == 1.10
        assert fx.rate("EUR", "USD") == 1.10

    def test_no_rate_before_first_date(self, fx):
        assert fx.rate("EUR", "USD", date(2023, 12, 31)) is None

    def test_inverse_pair_fallback(self, fx):
        assert fx.rate("GBP", "USD", date(2024, 6, 1)) == pytest.approx(1.25)

    def test_same_currency(self, fx):
        assert fx.rate("usd", "USD") == 1.0

    def test_non_positive_rates_skipped(self, fx):
        assert fx.rate("JPY", "USD") is None
        assert len(fx) == 3

    def test_convert(self, fx):
        result = fx.convert(200, "eur", "USD", date(2024, 6, 1))
        assert result.converted
        assert result.amount == 220.0
        assert result.currency == "USD"

    def test_missing_rate_keeps_original(self, fx):
        result = fx.convert(200, "CHF", "USD", date(2024, 6, 1))
        assert not result.converted
        assert result.amount == 200.0
        assert result.currency == "CHF"

    def test_missing_currency_keeps_amount(self, fx):
        result = fx.convert(200, None, "USD")
        assert result.amount == 200.0
        assert result.currency is None
        assert not result.converted


# =========================================================================
# Format checks
# =========================================================================


class TestFormatChecks:
    def test_currency(self):
        assert is_valid_currency("USD")
        assert is_valid_currency(None)
        assert not is_valid_currency("usd")
        assert not is_valid_currency("XXX")

    def test_country(self):
        assert is_valid_country("GB")
        assert is_valid_country(None)
        assert not is_valid_country("GBR")
        assert not is_valid_country("gb")

    def test_violations_name_fields(self):
        checks = (FormatCheck("country_code", "country"), FormatCheck("currency_code", "currency"))
        fields = {"country_code": "USA", "currency_code": "EUR"}
        assert format_violations(fields, checks) == ["country_code"]

    def test_unknown_kind_rejected(self):
        with pytest.raises(ValueError):
            FormatCheck("x", "postcode")


# =========================================================================
# Variance checks
# =========================================================================


class TestVarianceChecks:
    def test_absolute_tolerance(self):
        check = VarianceCheck("margin", "reported_margin", tolerance=2.0)
        assert not check.disagrees({"margin": 20.0, "reported_margin": 21.5})
        assert check.disagrees({"margin": 20.0, "reported_margin": 23.0})

    def test_relative_tolerance(self):
        check = VarianceCheck("value", "reported", tolerance=0.1, relative=True)
        assert not check.disagrees({"value": 105, "reported": 100})
        assert check.disagrees({"value": 120, "reported": 100})

    def test_missing_side_skipped(self):
        check = VarianceCheck("margin", "reported_margin", tolerance=2.0)
        assert not check.disagrees({"margin": None, "reported_margin": 50})
        assert variance_violations({"margin": 1}, [check]) == []

    def test_violations_name_derived_fields(self):
        checks = [VarianceCheck("age", "reported_age", tolerance=1.0)]
        assert variance_violations({"age": 5, "reported_age": 8}, checks) == ["age"]
