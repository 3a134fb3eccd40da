"""
Price list selection.

Orders the price lists that apply to a customer so the engine can take the
first one holding a price for the product.
"""

import logging
from datetime import datetime
from typing import Iterable, List, Optional

from pricecore.models import PriceList, utcnow
from pricecore.storage.repositories import PriceListRepository

logger = logging.getLogger(__name__)


def sort_key(price_list: PriceList) -> tuple:
    """Priority descending, then group-specific before general, then id."""
    return (-price_list.priority, not price_list.is_group_specific, price_list.id)


class PriceListResolver:
    """
    Selects applicable price lists for a customer and currency.

    Attributes:
        repository: Source of price lists.
    """

    def __init__(self, repository: PriceListRepository):
        self.repository = repository

    def find_applicable(
        self,
        customer_group_ids: Iterable[str],
        currency: str,
        as_of: Optional[datetime] = None,
    ) -> List[PriceList]:
        """
        Applicable price lists, best first.

        A list applies when it is active, in the requested currency, its
        window contains as_of, and it is either open to everyone or
        restricted to one of the customer's groups. Priority decides the
        order; a group-specific list only wins ties.

        Args:
            customer_group_ids: Groups the customer belongs to.
            currency: Requested currency code.
            as_of: Evaluation time; defaults to now.

        Returns:
            List[PriceList]: Ordered, without duplicates.
        """
        as_of = as_of or utcnow()
        currency = currency.upper()
        groups = frozenset(customer_group_ids or ())

        seen = set()
        applicable = []
        for price_list in self.repository.find_active(currency, groups, as_of):
            if price_list.id in seen:
                continue
            if price_list.currency != currency or not price_list.is_applicable(as_of):
                continue
            if price_list.is_group_specific and price_list.customer_group_id not in groups:
                continue
            seen.add(price_list.id)
            applicable.append(price_list)

        applicable.sort(key=sort_key)
        logger.debug(
            f"Applicable price lists for {currency} (groups={sorted(groups)}): "
            f"{[pl.id for pl in applicable]}"
        )
        return applicable

    def find_default(self, currency: str) -> Optional[PriceList]:
        """Default price list for a currency: active, open to everyone, highest priority."""
        return self.repository.find_default_list(currency.upper())
