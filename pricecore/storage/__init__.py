"""
Storage modules for price lists, currencies and rate history.
"""

from pricecore.storage.currency_registry import CurrencyRegistry
from pricecore.storage.rate_history import RateHistoryStore
from pricecore.storage.repositories import (
    CurrencyRepository,
    InMemoryPriceListRepository,
    PriceListRepository,
)
from pricecore.storage.seed_loader import load_seed_directory

__all__ = [
    "CurrencyRegistry",
    "RateHistoryStore",
    "PriceListRepository",
    "CurrencyRepository",
    "InMemoryPriceListRepository",
    "load_seed_directory",
]
