"""
Unit price evaluation for a single product price record.

Decides between base price, sale price and quantity tiers. Tiers replace
the sale price entirely; they are not discounted further.
"""

from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal

from pricecore.models import AppliedTier, ProductPrice, utcnow


def is_on_sale(record: ProductPrice, as_of: datetime | None = None) -> bool:
    """Check the record has a sale price whose inclusive window contains as_of."""
    if record.sale_price is None:
        return False
    as_of = as_of or utcnow()
    if record.sale_start_date is not None and record.sale_start_date > as_of:
        return False
    if record.sale_end_date is not None and record.sale_end_date < as_of:
        return False
    return True


def find_applied_tier(record: ProductPrice, quantity: int) -> AppliedTier | None:
    """
    Tier with the largest min_quantity not exceeding quantity.

    Tiers may be stored in any order. Quantities of 1 or less never use a tier.
    """
    if quantity <= 1 or not record.tiered_prices:
        return None

    qualifying = [tier for tier in record.tiered_prices if tier.min_quantity <= quantity]
    if not qualifying:
        return None

    best = max(qualifying, key=lambda tier: tier.min_quantity)
    return AppliedTier(quantity=best.min_quantity, price=best.price, name=best.name)


def effective_price(record: ProductPrice, quantity: int, as_of: datetime | None = None) -> Decimal:
    """
    Unit price for a quantity at a point in time.

    Args:
        record: Product price record.
        quantity: Number of units being priced.
        as_of: Evaluation time; defaults to now.

    Returns:
        Decimal: The tier price if a tier applies, else the sale price when
            on sale, else the base price.
    """
    base = record.sale_price if is_on_sale(record, as_of) else record.base_price

    tier = find_applied_tier(record, quantity)
    if tier is None:
        return base
    return tier.price


def discount_percentage(record: ProductPrice, as_of: datetime | None = None) -> int | None:
    """
    Sale discount as a whole percentage of the base price.

    Returns:
        round((base - sale) / base × 100), or None when not on sale or the
        base price is zero.
    """
    if not is_on_sale(record, as_of) or record.base_price == 0:
        return None
    pct = (record.base_price - record.sale_price) / record.base_price * 100
    return int(pct.quantize(Decimal("1"), rounding=ROUND_HALF_UP))
