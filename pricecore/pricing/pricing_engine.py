"""
Price resolution engine.

Resolves the unit price a customer pays for a product:
1. Pick the best applicable price list holding the product
2. Fall back to the default-currency list open to everyone
3. Evaluate sale and quantity tiers
4. Convert to the requested currency when the price list uses another one

Conversion failures never fail a price lookup; the price is returned in its
source currency instead.
"""

import logging
import time
from dataclasses import replace
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from pricecore.errors import PriceNotFoundError, RateNotFoundError
from pricecore.models import (
    PriceList,
    PriceOptions,
    PriceResult,
    ProductPrice,
    RateHistoryEntry,
    RateTable,
    quantize,
    to_decimal,
    utcnow,
)
from pricecore.pricing.converter import convert, format_amount
from pricecore.pricing.fx_provider import RateSource, StaticRateSource, build_rate_source
from pricecore.pricing.price_lists import PriceListResolver
from pricecore.pricing.rate_cache import FetchResult, RateCache
from pricecore.pricing.tiers import discount_percentage, effective_price, find_applied_tier, is_on_sale
from pricecore.storage.currency_registry import CurrencyRegistry
from pricecore.storage.rate_history import RateHistoryStore
from pricecore.storage.repositories import CurrencyRepository, InMemoryPriceListRepository, PriceListRepository
from pricecore.utils.config_loader import AppConfig, PricingConfig
from pricecore.utils.logging_setup import LogContext

logger = logging.getLogger(__name__)


class _RateSnapshot:
    """Reads the cache at most once, on first use, and reuses that table."""

    def __init__(self, rate_cache: RateCache):
        self._rate_cache = rate_cache
        self._table: Optional[RateTable] = None

    def get(self) -> RateTable:
        if self._table is None:
            self._table = self._rate_cache.get_rates()
        return self._table


class PriceResolutionEngine:
    """
    Engine answering "what does this customer pay for this product".

    Attributes:
        price_lists: Price list repository.
        currencies: Currency repository (provides the default currency).
        rate_cache: Exchange rate cache.
        config: Rounding and formatting defaults.
        history: Optional rate history store for admin operations.
    """

    def __init__(
        self,
        price_lists: PriceListRepository,
        currencies: CurrencyRepository,
        rate_cache: RateCache,
        config: Optional[PricingConfig] = None,
        history: Optional[RateHistoryStore] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        """
        Initialize the engine.

        Args:
            price_lists: Where price lists and product prices are read from.
            currencies: Where the default currency and display records come from.
            rate_cache: Shared exchange rate cache.
            config: Default decimals and locale for calls without options.
            history: Rate history store; admin rate changes are recorded here.
            clock: Returns the current aware datetime; defaults to UTC now.
        """
        self.price_lists = price_lists
        self.currencies = currencies
        self.rate_cache = rate_cache
        self.config = config or PricingConfig()
        self.history = history
        self.resolver = PriceListResolver(price_lists)
        self._clock = clock or utcnow

    # =========================================================================
    # Price resolution
    # =========================================================================

    def _default_options(self) -> PriceOptions:
        return PriceOptions(decimals=self.config.decimals, locale=self.config.locale)

    def _prepare(self, quantity: int, options: Optional[PriceOptions]) -> Tuple[PriceOptions, datetime, str, str]:
        if quantity < 1:
            raise ValueError(f"Invalid quantity: {quantity}. Must be at least 1.")
        options = options or self._default_options()
        as_of = options.as_of or self._clock()
        default_currency = self.currencies.get_default().code
        target = options.currency or default_currency
        return options, as_of, default_currency, target

    def resolve(self, product_id: str, quantity: int = 1, options: Optional[PriceOptions] = None) -> PriceResult:
        """
        Resolve the price of one product.

        Args:
            product_id: Product identifier.
            quantity: Units being bought; selects quantity tiers.
            options: Target currency, customer groups, formatting and rounding.

        Returns:
            PriceResult: The resolved price.

        Raises:
            ValueError: If quantity is below 1.
            PriceNotFoundError: If no price list reachable for the customer
                holds the product.
        """
        options, as_of, default_currency, target = self._prepare(quantity, options)
        if not product_id:
            raise PriceNotFoundError(str(product_id), target)

        record, price_list = None, None
        for candidate in self.resolver.find_applicable(options.customer_group_ids, target, as_of):
            record = self.price_lists.find_product_price(candidate.id, product_id)
            if record is not None:
                price_list = candidate
                break

        if record is None:
            price_list = self.resolver.find_default(default_currency)
            if price_list is not None:
                record = self.price_lists.find_product_price(price_list.id, product_id)

        if record is None:
            logger.debug(f"No price found for product {product_id} in {target}")
            raise PriceNotFoundError(product_id, target)

        return self._build_result(record, price_list, quantity, target, options, as_of, _RateSnapshot(self.rate_cache))

    def resolve_many(
        self,
        product_ids: Iterable[str],
        quantity: int = 1,
        options: Optional[PriceOptions] = None,
    ) -> Dict[str, PriceResult]:
        """
        Resolve prices for several products with the same options.

        Price lists and product prices are each fetched with a single
        repository call, and every conversion uses the same rate table.

        Args:
            product_ids: Product identifiers.
            quantity: Units per product.
            options: Shared resolution options.

        Returns:
            Dict mapping product id to its result. Products without a
            reachable price are left out.
        """
        options, as_of, default_currency, target = self._prepare(quantity, options)
        wanted = list(dict.fromkeys(pid for pid in product_ids if pid))
        if not wanted:
            return {}

        applicable = self.resolver.find_applicable(options.customer_group_ids, target, as_of)
        default_list = self.resolver.find_default(default_currency)

        lists_by_id: Dict[str, PriceList] = {pl.id: pl for pl in applicable}
        if default_list is not None:
            lists_by_id.setdefault(default_list.id, default_list)
        records = self.price_lists.find_product_prices(list(lists_by_id), wanted)

        ordered = list(applicable)
        if default_list is not None:
            ordered.append(default_list)

        rates = _RateSnapshot(self.rate_cache)
        results: Dict[str, PriceResult] = {}
        with LogContext(logger, currency=target, batch_size=len(wanted)):
            for product_id in wanted:
                for price_list in ordered:
                    record = records.get((price_list.id, product_id))
                    if record is not None:
                        results[product_id] = self._build_result(
                            record, price_list, quantity, target, options, as_of, rates
                        )
                        break
                else:
                    logger.warning(f"No price found for product {product_id} in {target}, skipping")

        logger.debug(f"Resolved {len(results)}/{len(wanted)} prices in {target}")

        return results

    def _build_result(
        self,
        record: ProductPrice,
        price_list: Optional[PriceList],
        quantity: int,
        target: str,
        options: PriceOptions,
        as_of: datetime,
        rates: _RateSnapshot,
    ) -> PriceResult:
        """Evaluate tiers and sale, convert, round and optionally format."""
        decimals = options.decimals
        unit_price = effective_price(record, quantity, as_of)
        original_price = record.base_price
        tier = find_applied_tier(record, quantity)

        if record.currency:
            source_currency = record.currency
        elif price_list is not None:
            source_currency = price_list.currency
        else:
            source_currency = self.currencies.get_default().code

        currency = source_currency
        if source_currency != target:
            try:
                table = rates.get()
                unit_price = convert(unit_price, source_currency, target, table, decimals=decimals)
                original_price = convert(original_price, source_currency, target, table, decimals=decimals)
                if tier is not None:
                    tier = replace(tier, price=convert(tier.price, source_currency, target, table, decimals=decimals))
                currency = target
            except RateNotFoundError as e:
                logger.error(
                    f"Currency conversion failed for product {record.product_id} "
                    f"({source_currency}->{target}): {e.message}. Returning price in {source_currency}"
                )

        price: Decimal | str = quantize(unit_price, decimals)
        if options.format_price:
            price = format_amount(
                price,
                currency,
                decimals=decimals,
                currency=self.currencies.get_by_code(currency),
                locale=options.locale,
            )

        return PriceResult(
            price=price,
            original_price=quantize(original_price, decimals),
            currency=currency,
            on_sale=is_on_sale(record, as_of),
            price_list_id=record.price_list_id,
            customer_group_id=price_list.customer_group_id if price_list is not None else None,
            applied_tier=tier,
            discount_percentage=discount_percentage(record, as_of),
        )

    # =========================================================================
    # Price list queries
    # =========================================================================

    def get_customer_price_lists(self, customer_group_ids: Iterable[str]) -> List[PriceList]:
        """Price lists currently restricted to the given customer groups."""
        return self.price_lists.get_customer_price_lists(customer_group_ids, self._clock())

    def get_all_price_lists(self) -> List[PriceList]:
        return self.price_lists.list_price_lists()

    # =========================================================================
    # Rate administration
    # =========================================================================

    def current_rates(self) -> Dict[str, Any]:
        """Current rate table (refreshed if stale) with cache metadata."""
        table = self.rate_cache.get_rates()
        return {"table": table.to_dict(), "metadata": self.rate_cache.metadata()}

    def force_refresh(self) -> FetchResult:
        """
        Fetch rates from the source now, ignoring the TTL.

        Raises:
            RateSourceUnavailableError: If the fetch fails.
        """
        return self.rate_cache.fetch_rates(force=True)

    def set_manual_rate(self, base: str, target: str, rate: Any, source: str = "manual") -> RateTable:
        """
        Override one exchange rate.

        The change is recorded in the rate history and pushed to the
        currency registry.

        Raises:
            InvalidRateInputError: If the currencies match or the rate is not positive.
            RateNotFoundError: If base has no rate to express the override through.
        """
        table = self.rate_cache.set_rate(base, target, rate, source=source)

        if self.history is not None:
            self.history.record(
                RateHistoryEntry(
                    base_currency=base.upper(),
                    target_currency=target.upper(),
                    rate=to_decimal(rate),
                    timestamp=self._clock(),
                    source=source,
                )
            )
        self._sync_currencies(table)
        return table

    def delete_rate(self, base: str, target: str) -> RateTable:
        """
        Remove one exchange rate from the live table.

        Raises:
            InvalidRateInputError: If base is not the cache base currency.
            RateNotFoundError: If the rate does not exist.
        """
        table = self.rate_cache.delete_rate(base, target)
        self._sync_currencies(table)
        return table

    def rate_history(self, **filters: Any) -> Tuple[List[RateHistoryEntry], int]:
        """
        Query the rate history.

        Accepts the filters of RateHistoryStore.query().

        Returns:
            Tuple of (entries, total); empty when no history store is attached.
        """
        if self.history is None:
            return [], 0
        return self.history.query(**filters)

    def _sync_currencies(self, table: RateTable) -> None:
        if isinstance(self.currencies, CurrencyRegistry):
            self.currencies.apply_rate_table(table)

    def close(self) -> None:
        """Stop background rate refresh, if running."""
        self.rate_cache.stop_periodic_refresh()


def build_engine(
    config: AppConfig,
    price_lists: Optional[PriceListRepository] = None,
    currencies: Optional[CurrencyRegistry] = None,
    rate_source: Optional[RateSource] = None,
    clock: Callable[[], float] = time.time,
) -> PriceResolutionEngine:
    """
    Wire an engine from configuration.

    The cache starts with the configured default rates marked stale, so the
    first conversion triggers a fetch but a failing source still leaves
    usable rates. Fetched tables are recorded in the history and pushed to
    the currency registry.

    Args:
        config: Application configuration.
        price_lists: Price list repository; defaults to an empty in-memory one.
        currencies: Currency registry; defaults to one holding only the
            configured default currency.
        rate_source: Rate source; defaults to build_rate_source(config).
        clock: Unix time source for the cache.

    Returns:
        PriceResolutionEngine: Ready-to-use engine.
    """
    rates_config = config.rates

    registry = currencies if currencies is not None else CurrencyRegistry()
    registry.ensure_default(config.pricing.default_currency)

    source = rate_source or build_rate_source(config)

    defaults = StaticRateSource(rates_config.default_rates, base_currency=rates_config.base_currency)
    bootstrap = defaults.fetch(rates_config.base_currency)
    initial_table = RateTable(
        base_currency=rates_config.base_currency,
        rates=bootstrap.rates,
        fetched_at=0.0,
        source=bootstrap.source,
    )

    rate_cache = RateCache(
        source,
        base_currency=rates_config.base_currency,
        ttl_seconds=rates_config.ttl_seconds,
        initial_table=initial_table,
        refresh_interval_seconds=rates_config.refresh_interval_seconds,
        clock=clock,
    )

    history = RateHistoryStore(max_entries=rates_config.history_limit)
    rate_cache.add_listener(history.record_table)
    rate_cache.add_listener(registry.apply_rate_table)
    registry.apply_rate_table(initial_table)

    engine = PriceResolutionEngine(
        price_lists if price_lists is not None else InMemoryPriceListRepository(),
        registry,
        rate_cache,
        config=config.pricing,
        history=history,
    )

    if rates_config.refresh_interval_seconds > 0:
        rate_cache.start_periodic_refresh()

    logger.info(
        f"Pricing engine ready (default currency={registry.get_default().code}, "
        f"rates base={rates_config.base_currency}, ttl={rates_config.ttl_seconds}s)"
    )
    return engine
