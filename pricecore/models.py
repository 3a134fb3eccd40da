"""
Data models for the price resolution engine.

Contains the currency, price list and product price records the engine reads,
the immutable rate table snapshot, and the price result it produces.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from types import MappingProxyType
from typing import Any, Iterable, Mapping

CURRENCY_SYMBOLS: dict[str, str] = {
    "USD": "$",
    "EUR": "€",
    "GBP": "£",
    "JPY": "¥",
    "CAD": "C$",
    "AUD": "A$",
    "CHF": "Fr",
    "CNY": "¥",
    "INR": "₹",
    "BRL": "R$",
    "RUB": "₽",
}

CURRENCY_NAMES: dict[str, str] = {
    "USD": "US Dollar",
    "EUR": "Euro",
    "GBP": "British Pound",
    "JPY": "Japanese Yen",
    "CAD": "Canadian Dollar",
    "AUD": "Australian Dollar",
    "CHF": "Swiss Franc",
    "CNY": "Chinese Yuan",
    "INR": "Indian Rupee",
    "BRL": "Brazilian Real",
    "RUB": "Russian Ruble",
}


def to_decimal(value: Any) -> Decimal:
    """
    Convert a number-like value to Decimal via its string form.

    Args:
        value: int, float, str or Decimal.

    Returns:
        Decimal: The converted value.

    Raises:
        ValueError: If the value is not numeric, or is NaN or infinite.
    """
    if isinstance(value, Decimal):
        result = value
    else:
        try:
            result = Decimal(str(value).strip())
        except (InvalidOperation, AttributeError) as e:
            raise ValueError(f"Invalid numeric value: {value!r}") from e
    if not result.is_finite():
        raise ValueError(f"Non-finite numeric value: {value!r}")
    return result


def quantize(amount: Decimal, decimals: int = 2) -> Decimal:
    """Round an amount to a fixed number of decimal places (half-up)."""
    quantize_str = "0." + "0" * decimals if decimals > 0 else "1"
    return amount.quantize(Decimal(quantize_str), rounding=ROUND_HALF_UP)


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


@dataclass
class Currency:
    """
    A currency known to the pricing service.

    Attributes:
        code: 3-letter ISO code (primary key).
        name: Display name.
        symbol: Display symbol.
        exchange_rate: Rate relative to the default currency.
        is_default: True for exactly one currency.
        is_active: Whether the currency can be priced in.
        decimal_places: Decimal places used when formatting.
        display_format: Optional template with {symbol}, {code} and {amount}.
        rate_last_updated: When exchange_rate was last changed.
    """

    code: str
    name: str = ""
    symbol: str = ""
    exchange_rate: Decimal = Decimal("1")
    is_default: bool = False
    is_active: bool = True
    decimal_places: int = 2
    display_format: str | None = None
    rate_last_updated: datetime | None = None

    def __post_init__(self) -> None:
        self.code = self.code.upper()
        self.exchange_rate = to_decimal(self.exchange_rate)
        if not self.name:
            self.name = CURRENCY_NAMES.get(self.code, f"{self.code} Currency")
        if not self.symbol:
            self.symbol = CURRENCY_SYMBOLS.get(self.code, self.code)

    def format_amount(self, amount: Any, decimals: int | None = None) -> str:
        """
        Render an amount using this currency's display template.

        Args:
            amount: Amount to render.
            decimals: Decimal places; defaults to the currency's own.

        Returns:
            str: Formatted amount, e.g. "$ 1,234.50".
        """
        places = self.decimal_places if decimals is None else decimals
        rendered = f"{quantize(to_decimal(amount), places):,.{places}f}"
        if self.display_format:
            return self.display_format.format(symbol=self.symbol, code=self.code, amount=rendered)
        return f"{self.symbol} {rendered}"


@dataclass
class PriceList:
    """
    A prioritised set of product prices for one currency.

    Attributes:
        id: Price list identifier.
        name: Display name.
        currency: Currency code all prices in the list are expressed in.
        customer_group_id: Group the list is restricted to; None means everyone.
        active: Whether the list may be used at all.
        priority: Higher wins.
        start_date: Inclusive start of the validity window, or None.
        end_date: Inclusive end of the validity window, or None.
    """

    id: str
    name: str
    currency: str
    customer_group_id: str | None = None
    active: bool = True
    priority: int = 0
    start_date: datetime | None = None
    end_date: datetime | None = None
    description: str = ""

    def is_applicable(self, as_of: datetime) -> bool:
        """Check the list is active and its date window contains as_of."""
        if not self.active:
            return False
        if self.start_date is not None and self.start_date > as_of:
            return False
        if self.end_date is not None and self.end_date < as_of:
            return False
        return True

    @property
    def is_group_specific(self) -> bool:
        return self.customer_group_id is not None


@dataclass(frozen=True)
class TierPrice:
    """A quantity breakpoint at which a different unit price applies."""

    min_quantity: int
    price: Decimal
    name: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "price", to_decimal(self.price))


@dataclass
class ProductPrice:
    """
    A product's price within one price list.

    Attributes:
        id: Record identifier.
        price_list_id: Owning price list.
        product_id: Product identifier.
        variant_id: Optional variant identifier.
        base_price: Regular unit price.
        sale_price: Optional sale unit price.
        sale_start_date: Inclusive sale window start, or None.
        sale_end_date: Inclusive sale window end, or None.
        tiered_prices: Quantity breakpoints, in any order.
        active: Inactive records are never returned to the engine.
        currency: Source currency; None means the owning list's currency.
    """

    id: str
    price_list_id: str
    product_id: str
    base_price: Decimal
    variant_id: str | None = None
    sale_price: Decimal | None = None
    sale_start_date: datetime | None = None
    sale_end_date: datetime | None = None
    tiered_prices: tuple[TierPrice, ...] = ()
    active: bool = True
    currency: str | None = None

    def __post_init__(self) -> None:
        self.base_price = to_decimal(self.base_price)
        if self.sale_price is not None:
            self.sale_price = to_decimal(self.sale_price)
        self.tiered_prices = tuple(self.tiered_prices)

    @property
    def key(self) -> tuple[str, str, str | None]:
        """Uniqueness key within the repository."""
        return (self.price_list_id, self.product_id, self.variant_id)


@dataclass(frozen=True)
class RateTable:
    """
    Immutable snapshot of exchange rates relative to a base currency.

    A refresh or manual override produces a new table; existing tables are
    never mutated, so readers holding a reference never see a partial update.

    Attributes:
        base_currency: Currency all rates are expressed against (rate 1).
        rates: Read-only mapping of currency code to rate.
        fetched_at: Unix timestamp of the fetch that produced the rates.
        source: Where the rates came from.
    """

    base_currency: str
    rates: Mapping[str, Decimal]
    fetched_at: float
    source: str = "default"

    def __post_init__(self) -> None:
        base = self.base_currency.upper()
        normalized = {code.upper(): to_decimal(rate) for code, rate in self.rates.items()}
        normalized[base] = Decimal("1")
        object.__setattr__(self, "base_currency", base)
        object.__setattr__(self, "rates", MappingProxyType(normalized))

    def __contains__(self, code: str) -> bool:
        return code.upper() in self.rates

    def rate_for(self, code: str) -> Decimal | None:
        """Rate of a currency against the base, or None if unknown."""
        return self.rates.get(code.upper())

    def with_rate(self, code: str, rate: Any, source: str) -> "RateTable":
        """Return a new table with one rate added or replaced."""
        rates = dict(self.rates)
        rates[code.upper()] = to_decimal(rate)
        return replace(self, rates=rates, source=source)

    def without_rate(self, code: str, source: str) -> "RateTable":
        """Return a new table with one rate removed."""
        rates = {c: r for c, r in self.rates.items() if c != code.upper()}
        return replace(self, rates=rates, source=source)

    @property
    def fetched_at_datetime(self) -> datetime:
        return datetime.fromtimestamp(self.fetched_at, tz=timezone.utc)

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-friendly dictionary."""
        return {
            "base_currency": self.base_currency,
            "rates": {code: float(rate) for code, rate in sorted(self.rates.items())},
            "fetched_at": self.fetched_at_datetime.isoformat(),
            "source": self.source,
        }


@dataclass(frozen=True)
class AppliedTier:
    """The tier that produced a unit price."""

    quantity: int
    price: Decimal
    name: str | None = None


@dataclass
class PriceOptions:
    """
    Options for a price resolution call.

    Attributes:
        currency: Target currency; None means the system default currency.
        customer_group_ids: Groups the customer belongs to; empty if anonymous.
        format_price: Return price as a formatted string.
        locale: Locale hint passed through to formatting.
        decimals: Decimal places for rounding.
        as_of: Evaluation time; None means now.
    """

    currency: str | None = None
    customer_group_ids: Iterable[str] = field(default_factory=frozenset)
    format_price: bool = False
    locale: str = "en-US"
    decimals: int = 2
    as_of: datetime | None = None

    def __post_init__(self) -> None:
        if self.currency:
            self.currency = self.currency.upper()
        self.customer_group_ids = frozenset(self.customer_group_ids or ())
        if self.decimals < 0:
            raise ValueError(f"Invalid decimals: {self.decimals}. Must be >= 0.")


@dataclass
class PriceResult:
    """
    Result of resolving a product price.

    Attributes:
        price: Unit price, or a formatted string when formatting was requested.
        original_price: Base price before sale or tier discounts.
        currency: Currency the price is expressed in.
        on_sale: Whether a sale price was active.
        price_list_id: Price list the record came from.
        customer_group_id: Group of that price list, if any.
        applied_tier: Tier that produced the price, if any.
        discount_percentage: Sale discount as a whole percentage, if on sale.
    """

    price: Decimal | str
    original_price: Decimal
    currency: str
    on_sale: bool
    price_list_id: str | None = None
    customer_group_id: str | None = None
    applied_tier: AppliedTier | None = None
    discount_percentage: int | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-friendly dictionary."""
        tier = None
        if self.applied_tier is not None:
            tier = {
                "quantity": self.applied_tier.quantity,
                "price": float(self.applied_tier.price),
                "name": self.applied_tier.name,
            }
        return {
            "price": self.price if isinstance(self.price, str) else float(self.price),
            "original_price": float(self.original_price),
            "currency": self.currency,
            "on_sale": self.on_sale,
            "price_list_id": self.price_list_id,
            "customer_group_id": self.customer_group_id,
            "applied_tier": tier,
            "discount_percentage": self.discount_percentage,
        }


@dataclass(frozen=True)
class RateHistoryEntry:
    """One recorded exchange rate."""

    base_currency: str
    target_currency: str
    rate: Decimal
    timestamp: datetime
    source: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "base_currency": self.base_currency,
            "target_currency": self.target_currency,
            "rate": float(self.rate),
            "timestamp": self.timestamp.isoformat(),
            "source": self.source,
        }
