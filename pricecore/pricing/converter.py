"""
Currency conversion against a rate table snapshot.

Stateless: every function takes the RateTable it should use, so a caller
converting several amounts with one snapshot gets consistent results.
"""

import logging
from decimal import Decimal
from typing import Any

from pricecore.errors import RateNotFoundError
from pricecore.models import CURRENCY_SYMBOLS, Currency, RateTable, quantize, to_decimal

logger = logging.getLogger(__name__)


def get_exchange_rate(from_currency: str, to_currency: str, table: RateTable) -> Decimal:
    """
    Exchange rate from one currency to another.

    Args:
        from_currency: Source currency code.
        to_currency: Target currency code.
        table: Rates relative to table.base_currency.

    Returns:
        Decimal: Units of to_currency per unit of from_currency.

    Raises:
        RateNotFoundError: If either currency is missing from the table.
    """
    from_currency, to_currency = from_currency.upper(), to_currency.upper()
    if from_currency == to_currency:
        return Decimal(1)

    from_rate = table.rate_for(from_currency)
    if from_rate is None:
        raise RateNotFoundError(from_currency)

    to_rate = table.rate_for(to_currency)
    if to_rate is None:
        raise RateNotFoundError(to_currency)

    return to_rate / from_rate


def convert(
    amount: Any,
    from_currency: str,
    to_currency: str,
    table: RateTable,
    decimals: int = 2,
    format_price: bool = False,
    currency: Currency | None = None,
    locale: str = "en-US",
) -> Decimal | str:
    """
    Convert an amount between currencies.

    amount × (rate[to] / rate[from]), rounded half-up to `decimals` places.

    Args:
        amount: Amount in from_currency; must not be negative.
        from_currency: Source currency code.
        to_currency: Target currency code.
        table: Rate snapshot to convert with.
        decimals: Decimal places for rounding.
        format_price: Return a display string instead of a Decimal.
        currency: Target Currency record whose display template to use.
        locale: Locale hint for formatting.

    Returns:
        Decimal, or str when format_price is True.

    Raises:
        ValueError: If amount is negative.
        RateNotFoundError: If either currency is missing from the table.
    """
    value = to_decimal(amount)
    if value < 0:
        raise ValueError(f"Amount must be non-negative, got {amount}")
    if not from_currency or not to_currency:
        raise ValueError("Currency codes are required")

    rate = get_exchange_rate(from_currency, to_currency, table)
    converted = quantize(value * rate, decimals)

    if format_price:
        return format_amount(converted, to_currency, decimals=decimals, currency=currency, locale=locale)
    return converted


def format_amount(
    amount: Any,
    currency_code: str,
    decimals: int = 2,
    currency: Currency | None = None,
    locale: str = "en-US",
) -> str:
    """
    Render an amount for display.

    Uses the Currency record's display template when one is given, otherwise
    "<symbol> <amount>". The locale is accepted for callers that pass one
    through; rendering does not vary by locale.

    Args:
        amount: Amount to render.
        currency_code: Currency the amount is in.
        decimals: Decimal places to show.
        currency: Optional Currency record for the code.
        locale: Locale hint.

    Returns:
        str: Formatted amount.
    """
    if currency is not None and currency.code == currency_code.upper():
        return currency.format_amount(amount, decimals=decimals)

    symbol = CURRENCY_SYMBOLS.get(currency_code.upper(), currency_code.upper())
    rendered = f"{quantize(to_decimal(amount), decimals):,.{decimals}f}"
    logger.debug(f"Formatted {amount} {currency_code} without a currency record (locale={locale})")
    return f"{symbol} {rendered}"
