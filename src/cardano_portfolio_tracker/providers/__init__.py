"""Providers - external balance and price data sources."""

from cardano_portfolio_tracker.providers.coingecko import CoinGeckoClient
from cardano_portfolio_tracker.providers.http import (
    JsonHttpClient,
    ProviderError,
    ProviderResponseError,
    ProviderTransientError,
    RateLimiter,
    RetryError,
    with_retry,
)
from cardano_portfolio_tracker.providers.koios import BalanceProvider, KoiosClient
from cardano_portfolio_tracker.providers.kraken import KrakenClient
from cardano_portfolio_tracker.providers.models import AccountAsset, AccountInfo

__all__ = [
    "AccountAsset",
    "AccountInfo",
    "BalanceProvider",
    "CoinGeckoClient",
    "JsonHttpClient",
    "KoiosClient",
    "KrakenClient",
    "ProviderError",
    "ProviderResponseError",
    "ProviderTransientError",
    "RateLimiter",
    "RetryError",
    "with_retry",
]
