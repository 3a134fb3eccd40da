"""
Shared fixtures: fake rate sources, sample price data and engine builders.
"""

import threading
import time
from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, Optional

import pytest

from pricecore.errors import RateSourceUnavailableError
from pricecore.models import Currency, PriceList, ProductPrice, RateTable, TierPrice
from pricecore.pricing.fx_provider import RateQuote
from pricecore.pricing.pricing_engine import PriceResolutionEngine
from pricecore.pricing.rate_cache import RateCache
from pricecore.storage.currency_registry import CurrencyRegistry
from pricecore.storage.rate_history import RateHistoryStore
from pricecore.storage.repositories import InMemoryPriceListRepository

SAMPLE_RATES = {"USD": 1.0, "EUR": 0.85, "GBP": 0.75, "JPY": 110.0}

NOW = datetime(2026, 4, 15, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    """Manually advanced unix clock."""

    def __init__(self, start: float = 1_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class CountingRateSource:
    """Rate source that counts fetches and can be made slow or failing."""

    def __init__(self, rates: Optional[Dict[str, float]] = None, delay: float = 0.0):
        self.rates = dict(rates or SAMPLE_RATES)
        self.delay = delay
        self.fail = False
        self.calls = 0
        self._lock = threading.Lock()

    def fetch(self, base_currency: str) -> RateQuote:
        with self._lock:
            self.calls += 1
        if self.delay:
            time.sleep(self.delay)
        if self.fail:
            raise RateSourceUnavailableError("Rates request timed out after 10s", source="fake")
        return RateQuote(rates={code: Decimal(str(rate)) for code, rate in self.rates.items()}, source="fake")


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def source() -> CountingRateSource:
    return CountingRateSource()


@pytest.fixture
def rate_table(clock: FakeClock) -> RateTable:
    """Fresh table matching SAMPLE_RATES."""
    return RateTable(base_currency="USD", rates=SAMPLE_RATES, fetched_at=clock(), source="fake")


@pytest.fixture
def rate_cache(source: CountingRateSource, clock: FakeClock, rate_table: RateTable) -> RateCache:
    """Cache holding a fresh table, so no fetch happens until the TTL passes."""
    return RateCache(source, base_currency="USD", ttl_seconds=3600, initial_table=rate_table, clock=clock)


@pytest.fixture
def registry() -> CurrencyRegistry:
    return CurrencyRegistry(
        [
            Currency(code="USD", is_default=True),
            Currency(code="EUR", exchange_rate="0.85", display_format="{amount} {symbol}"),
            Currency(code="GBP", exchange_rate="0.75"),
        ]
    )


@pytest.fixture
def repository() -> InMemoryPriceListRepository:
    """
    Sample price lists.

    retail-usd: default USD list, SKU-100 (base 100, sale 90, tier 10+ at 80) and SKU-200
    vip-usd:    VIP USD list, SKU-100 at 75
    retail-eur: EUR list, SKU-300
    """
    repo = InMemoryPriceListRepository()
    repo.add_price_list(PriceList(id="retail-usd", name="Retail USD", currency="USD", priority=1))
    repo.add_price_list(
        PriceList(id="vip-usd", name="VIP USD", currency="USD", customer_group_id="vip", priority=5)
    )
    repo.add_price_list(PriceList(id="retail-eur", name="Retail EUR", currency="EUR", priority=0))

    repo.add_product_price(
        ProductPrice(
            id="pp-1",
            price_list_id="retail-usd",
            product_id="SKU-100",
            base_price="100",
            sale_price="90",
            tiered_prices=(TierPrice(min_quantity=10, price="80", name="Bulk 10+"),),
        )
    )
    repo.add_product_price(ProductPrice(id="pp-2", price_list_id="vip-usd", product_id="SKU-100", base_price="75"))
    repo.add_product_price(ProductPrice(id="pp-3", price_list_id="retail-usd", product_id="SKU-200", base_price="40"))
    repo.add_product_price(ProductPrice(id="pp-4", price_list_id="retail-eur", product_id="SKU-300", base_price="20"))
    return repo


@pytest.fixture
def history() -> RateHistoryStore:
    return RateHistoryStore(max_entries=100)


@pytest.fixture
def engine(
    repository: InMemoryPriceListRepository,
    registry: CurrencyRegistry,
    rate_cache: RateCache,
    history: RateHistoryStore,
) -> PriceResolutionEngine:
    return PriceResolutionEngine(repository, registry, rate_cache, history=history, clock=lambda: NOW)


@pytest.fixture
def seed_dir(tmp_path):
    """Minimal valid seed directory."""
    (tmp_path / "currencies.csv").write_text(
        "code,name,symbol,exchange_rate,is_default,is_active,decimal_places,display_format\n"
        "USD,US Dollar,$,1,true,true,2,\n"
        "EUR,Euro,€,0.85,false,true,2,\n",
        encoding="utf-8",
    )
    (tmp_path / "price_lists.csv").write_text(
        "id,name,currency,customer_group_id,active,priority,start_date,end_date\n"
        "retail-usd,Retail USD,USD,,true,0,,\n"
        "vip-usd,VIP USD,USD,vip,true,10,2026-01-01,2026-12-31\n",
        encoding="utf-8",
    )
    (tmp_path / "product_prices.csv").write_text(
        "id,price_list_id,product_id,variant_id,base_price,sale_price,sale_start_date,sale_end_date,active,currency\n"
        "pp-1,retail-usd,SKU-100,,100.00,90.00,,,true,\n"
        "pp-2,vip-usd,SKU-100,,85.00,,,,true,\n"
        "pp-3,retail-usd,SKU-200,,25.50,,,,false,\n",
        encoding="utf-8",
    )
    (tmp_path / "tiers.csv").write_text(
        "product_price_id,min_quantity,price,name\n"
        "pp-1,50,70.00,Bulk 50+\n"
        "pp-1,10,80.00,Bulk 10+\n",
        encoding="utf-8",
    )
    return tmp_path
