"""
Tests for currency conversion.
"""

from decimal import Decimal

import pytest

from pricecore.errors import RateNotFoundError
from pricecore.models import Currency, RateTable
from pricecore.pricing.converter import convert, format_amount, get_exchange_rate


@pytest.fixture
def table() -> RateTable:
    return RateTable(base_currency="USD", rates={"EUR": 0.85, "GBP": 0.75, "JPY": 110}, fetched_at=0.0)


class TestGetExchangeRate:
    """Tests for get_exchange_rate."""

    def test_same_currency_is_one(self, table: RateTable) -> None:
        assert get_exchange_rate("EUR", "eur", table) == Decimal("1")

    def test_cross_rate(self, table: RateTable) -> None:
        assert get_exchange_rate("EUR", "GBP", table) == Decimal("0.75") / Decimal("0.85")

    def test_missing_currency(self, table: RateTable) -> None:
        with pytest.raises(RateNotFoundError) as exc_info:
            get_exchange_rate("USD", "CHF", table)
        assert exc_info.value.currency == "CHF"


class TestConvert:
    """Tests for convert."""

    def test_usd_to_eur(self, table: RateTable) -> None:
        assert convert(80, "USD", "EUR", table) == Decimal("68.00")

    def test_same_currency_only_rounds(self, table: RateTable) -> None:
        assert convert("10.005", "USD", "USD", table) == Decimal("10.01")

    def test_respects_decimals(self, table: RateTable) -> None:
        assert convert(1, "USD", "EUR", table, decimals=4) == Decimal("0.8500")
        assert convert(10, "USD", "JPY", table, decimals=0) == Decimal("1100")

    def test_round_trip_stays_within_rounding(self, table: RateTable) -> None:
        amount = Decimal("123.45")
        there = convert(amount, "GBP", "EUR", table)
        back = convert(there, "EUR", "GBP", table)
        assert abs(back - amount) <= Decimal("0.01")

    def test_negative_amount_rejected(self, table: RateTable) -> None:
        with pytest.raises(ValueError):
            convert(-1, "USD", "EUR", table)

    def test_unknown_currency(self, table: RateTable) -> None:
        with pytest.raises(RateNotFoundError):
            convert(10, "CHF", "EUR", table)

    def test_formatted(self, table: RateTable) -> None:
        assert convert(80, "USD", "EUR", table, format_price=True) == "€ 68.00"


class TestFormatAmount:
    """Tests for format_amount."""

    def test_known_symbol(self) -> None:
        assert format_amount(Decimal("1234.5"), "USD") == "$ 1,234.50"

    def test_unknown_symbol_uses_code(self) -> None:
        assert format_amount(5, "XYZ") == "XYZ 5.00"

    def test_currency_record_template_wins(self) -> None:
        currency = Currency(code="EUR", display_format="{amount} {code}")
        assert format_amount(Decimal("68"), "EUR", currency=currency) == "68.00 EUR"

    def test_locale_does_not_change_output(self) -> None:
        assert format_amount(10, "USD", locale="de-DE") == format_amount(10, "USD")
