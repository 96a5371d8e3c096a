"""Pricing - USD price resolution and reference-rate caching."""

from cardano_portfolio_tracker.pricing.rate_cache import (
    CachedRate,
    InMemoryRateCache,
    RateCache,
    RedisRateCache,
)
from cardano_portfolio_tracker.pricing.resolver import (
    BaseUnitSource,
    PriceQuote,
    PriceResolver,
    match_ticker_keys,
)

__all__ = [
    "BaseUnitSource",
    "CachedRate",
    "InMemoryRateCache",
    "PriceQuote",
    "PriceResolver",
    "RateCache",
    "RedisRateCache",
    "match_ticker_keys",
]
