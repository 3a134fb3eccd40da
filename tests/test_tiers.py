"""
Tests for sale and quantity tier evaluation.
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from pricecore.models import ProductPrice, TierPrice
from pricecore.pricing.tiers import discount_percentage, effective_price, find_applied_tier, is_on_sale

NOW = datetime(2026, 4, 15, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def record() -> ProductPrice:
    return ProductPrice(
        id="pp-1",
        price_list_id="retail",
        product_id="SKU-100",
        base_price="100",
        sale_price="90",
        tiered_prices=(
            TierPrice(min_quantity=50, price="70", name="Bulk 50+"),
            TierPrice(min_quantity=10, price="80", name="Bulk 10+"),
        ),
    )


class TestSaleWindow:
    """Tests for is_on_sale."""

    def test_no_sale_price(self) -> None:
        record = ProductPrice(id="1", price_list_id="l", product_id="p", base_price="10")
        assert not is_on_sale(record, NOW)

    def test_open_window(self, record: ProductPrice) -> None:
        assert is_on_sale(record, NOW)

    def test_window_bounds_are_inclusive(self, record: ProductPrice) -> None:
        record.sale_start_date = NOW
        record.sale_end_date = NOW + timedelta(days=1)

        assert is_on_sale(record, NOW)
        assert is_on_sale(record, NOW + timedelta(days=1))
        assert not is_on_sale(record, NOW - timedelta(microseconds=1))
        assert not is_on_sale(record, NOW + timedelta(days=1, microseconds=1))


class TestTiers:
    """Tests for tier selection."""

    def test_single_unit_never_tiered(self, record: ProductPrice) -> None:
        assert find_applied_tier(record, 1) is None
        assert effective_price(record, 1, NOW) == Decimal("90")

    def test_below_first_tier(self, record: ProductPrice) -> None:
        assert find_applied_tier(record, 9) is None

    def test_largest_qualifying_tier_wins_regardless_of_order(self, record: ProductPrice) -> None:
        tier = find_applied_tier(record, 60)
        assert tier.quantity == 50
        assert tier.price == Decimal("70")
        assert tier.name == "Bulk 50+"

    def test_tier_replaces_sale_price(self, record: ProductPrice) -> None:
        assert effective_price(record, 12, NOW) == Decimal("80")

    def test_base_price_when_sale_over(self, record: ProductPrice) -> None:
        record.sale_end_date = NOW - timedelta(days=1)
        assert effective_price(record, 1, NOW) == Decimal("100")

    def test_price_never_increases_with_quantity(self, record: ProductPrice) -> None:
        prices = [effective_price(record, quantity, NOW) for quantity in range(1, 80)]
        assert all(later <= earlier for earlier, later in zip(prices, prices[1:]))


class TestDiscountPercentage:
    """Tests for discount_percentage."""

    def test_whole_percentage(self, record: ProductPrice) -> None:
        assert discount_percentage(record, NOW) == 10

    def test_rounds_half_up(self) -> None:
        record = ProductPrice(id="1", price_list_id="l", product_id="p", base_price="8", sale_price="7.9")
        # 1.25% rounds to 1
        assert discount_percentage(record, NOW) == 1
        record.sale_price = Decimal("7.96")
        # 0.5% rounds to 1
        assert discount_percentage(record, NOW) == 1

    def test_none_when_not_on_sale(self) -> None:
        record = ProductPrice(id="1", price_list_id="l", product_id="p", base_price="10")
        assert discount_percentage(record, NOW) is None

    def test_none_for_zero_base(self) -> None:
        record = ProductPrice(id="1", price_list_id="l", product_id="p", base_price="0", sale_price="0")
        assert discount_percentage(record, NOW) is None
