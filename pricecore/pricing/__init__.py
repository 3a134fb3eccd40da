"""
Pricing module.

Handles exchange rate retrieval and caching, currency conversion, price list
selection and tiered price evaluation.
"""

from pricecore.pricing.converter import convert, format_amount, get_exchange_rate
from pricecore.pricing.fx_provider import HttpRateSource, RateQuote, RateSource, StaticRateSource, build_rate_source
from pricecore.pricing.price_lists import PriceListResolver
from pricecore.pricing.pricing_engine import PriceResolutionEngine, build_engine
from pricecore.pricing.rate_cache import FetchResult, RateCache

__all__ = [
    "RateSource",
    "RateQuote",
    "StaticRateSource",
    "HttpRateSource",
    "build_rate_source",
    "RateCache",
    "FetchResult",
    "convert",
    "format_amount",
    "get_exchange_rate",
    "PriceListResolver",
    "PriceResolutionEngine",
    "build_engine",
]
