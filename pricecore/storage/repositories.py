"""
Repository interfaces the engine queries, and an in-memory implementation.

The engine only reads through these interfaces; persistence of price lists
and product prices belongs to whatever implements them.
"""

import logging
import threading
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Protocol

from pricecore.errors import DuplicatePriceError
from pricecore.models import Currency, PriceList, ProductPrice

logger = logging.getLogger(__name__)


class PriceListRepository(Protocol):
    """Read access to price lists and product prices."""

    def find_active(self, currency: str, customer_group_ids: Iterable[str], as_of: datetime) -> List[PriceList]:
        """Active lists for a currency whose window contains as_of."""
        ...

    def find_product_price(self, price_list_id: str, product_id: str) -> Optional[ProductPrice]:
        """Active price record for a product in one list, or None."""
        ...

    def find_product_prices(
        self, price_list_ids: Iterable[str], product_ids: Iterable[str]
    ) -> Dict[tuple[str, str], ProductPrice]:
        """Active price records keyed by (price_list_id, product_id)."""
        ...

    def find_default_list(self, currency: str) -> Optional[PriceList]:
        """Highest-priority active list for everyone in a currency, or None."""
        ...

    def get_price_list(self, price_list_id: str) -> Optional[PriceList]:
        ...

    def list_price_lists(self) -> List[PriceList]:
        """All price lists, highest priority first."""
        ...

    def get_customer_price_lists(self, customer_group_ids: Iterable[str], as_of: datetime) -> List[PriceList]:
        """Applicable lists restricted to the given customer groups."""
        ...


class CurrencyRepository(Protocol):
    """Read access to currencies."""

    def get_default(self) -> Currency:
        ...

    def get_by_code(self, code: str) -> Optional[Currency]:
        ...


class InMemoryPriceListRepository:
    """
    Dict-backed price list repository.

    Writes are serialized with a lock; reads work on the current dicts.

    Attributes:
        price_lists: Price lists by id.
        product_prices: Product prices by (price_list_id, product_id, variant_id).
    """

    def __init__(self) -> None:
        self.price_lists: Dict[str, PriceList] = {}
        self.product_prices: Dict[tuple[str, str, Optional[str]], ProductPrice] = {}
        self._lock = threading.Lock()

    # =========================================================================
    # Writes
    # =========================================================================

    def add_price_list(self, price_list: PriceList) -> PriceList:
        """Add or replace a price list."""
        with self._lock:
            self.price_lists[price_list.id] = price_list
        logger.debug(f"Stored price list {price_list.id} ({price_list.currency}, priority={price_list.priority})")
        return price_list

    def add_product_price(self, product_price: ProductPrice) -> ProductPrice:
        """
        Add a product price.

        Raises:
            ValueError: If the owning price list is unknown.
            DuplicatePriceError: If a price already exists for the same
                price list, product and variant.
        """
        with self._lock:
            if product_price.price_list_id not in self.price_lists:
                raise ValueError(f"Price list with ID {product_price.price_list_id} not found")
            if product_price.key in self.product_prices:
                raise DuplicatePriceError(
                    f"Price already exists for product {product_price.product_id} "
                    f"in price list {product_price.price_list_id}",
                    details={
                        "price_list_id": product_price.price_list_id,
                        "product_id": product_price.product_id,
                        "variant_id": product_price.variant_id,
                    },
                )
            self.product_prices[product_price.key] = product_price
        return product_price

    def _price_list_snapshot(self) -> List[PriceList]:
        with self._lock:
            return list(self.price_lists.values())

    def _product_price_snapshot(self) -> List[tuple[tuple[str, str, Optional[str]], ProductPrice]]:
        with self._lock:
            return list(self.product_prices.items())

    # =========================================================================
    # Reads used by the engine
    # =========================================================================

    def find_active(self, currency: str, customer_group_ids: Iterable[str], as_of: datetime) -> List[PriceList]:
        groups = set(customer_group_ids or ())
        return [
            pl
            for pl in self._price_list_snapshot()
            if pl.currency == currency
            and pl.is_applicable(as_of)
            and (pl.customer_group_id is None or pl.customer_group_id in groups)
        ]

    def find_product_price(self, price_list_id: str, product_id: str) -> Optional[ProductPrice]:
        # Product-level record first, then any variant record
        record = self.product_prices.get((price_list_id, product_id, None))
        if record is not None and record.active:
            return record
        for (list_id, pid, _), candidate in self._product_price_snapshot():
            if list_id == price_list_id and pid == product_id and candidate.active:
                return candidate
        return None

    def find_product_prices(
        self, price_list_ids: Iterable[str], product_ids: Iterable[str]
    ) -> Dict[tuple[str, str], ProductPrice]:
        list_ids = set(price_list_ids)
        wanted = set(product_ids)
        found: Dict[tuple[str, str], ProductPrice] = {}
        for (list_id, pid, variant_id), record in self._product_price_snapshot():
            if list_id not in list_ids or pid not in wanted or not record.active:
                continue
            key = (list_id, pid)
            if key not in found or variant_id is None:
                found[key] = record
        return found

    def find_default_list(self, currency: str) -> Optional[PriceList]:
        candidates = [
            pl
            for pl in self._price_list_snapshot()
            if pl.active and pl.currency == currency and pl.customer_group_id is None
        ]
        if not candidates:
            return None
        return max(candidates, key=lambda pl: pl.priority)

    def get_price_list(self, price_list_id: str) -> Optional[PriceList]:
        return self.price_lists.get(price_list_id)

    # =========================================================================
    # Admin-facing reads
    # =========================================================================

    def list_price_lists(self) -> List[PriceList]:
        """All price lists, highest priority first."""
        return sorted(self._price_list_snapshot(), key=lambda pl: (-pl.priority, pl.name))

    def get_customer_price_lists(self, customer_group_ids: Iterable[str], as_of: datetime) -> List[PriceList]:
        """Applicable lists restricted to the given customer groups, highest priority first."""
        groups = set(customer_group_ids or ())
        lists = [
            pl
            for pl in self._price_list_snapshot()
            if pl.customer_group_id in groups and pl.is_applicable(as_of)
        ]
        return sorted(lists, key=lambda pl: (-pl.priority, pl.name))
