"""Kraken public ticker client."""

from __future__ import annotations

import asyncio
import logging
import math
from collections.abc import Sequence
from typing import Any

from cardano_portfolio_tracker.providers.http import JsonHttpClient, ProviderResponseError

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.kraken.com/0/public"


def _last_trade_price(ticker: Any) -> float | None:
    # Ticker "c" is [last trade price, lot volume].
    try:
        price = float(ticker["c"][0])
    except (KeyError, IndexError, TypeError, ValueError):
        return None
    if not math.isfinite(price) or price <= 0:
        return None
    return price


class KrakenClient:
    """Batched last-trade prices from Kraken's ``Ticker`` endpoint."""

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        *,
        timeout: float = 10.0,
        max_retries: int = 2,
        http: JsonHttpClient | None = None,
    ) -> None:
        self._http = http or JsonHttpClient(base_url, timeout=timeout, max_retries=max_retries)

    def get_ticker_sync(self, pairs: Sequence[str]) -> dict[str, float]:
        """Fetch last trade prices for several pairs in one request.

        Returns:
            Mapping of Kraken result key (e.g. ``XXBTZUSD``) to price. Keys do
            not necessarily match the queried pair names.

        Raises:
            ProviderResponseError: If Kraken reports an error and no results.
        """
        unique = list(dict.fromkeys(p for p in pairs if p))
        if not unique:
            return {}
        payload = self._http.get_json("Ticker", params={"pair": ",".join(unique)})
        if not isinstance(payload, dict):
            raise ProviderResponseError("Kraken Ticker returned a non-object body")

        result = payload.get("result") or {}
        errors = payload.get("error") or []
        if errors and not result:
            raise ProviderResponseError(f"Kraken Ticker error: {', '.join(map(str, errors))}")
        if errors:
            logger.warning("Kraken Ticker partial errors for %s: %s", unique, errors)

        prices: dict[str, float] = {}
        for key, ticker in result.items():
            price = _last_trade_price(ticker)
            if price is not None:
                prices[str(key)] = price
        return prices

    async def get_ticker(self, pairs: Sequence[str]) -> dict[str, float]:
        return await asyncio.to_thread(self.get_ticker_sync, pairs)

    def close(self) -> None:
        self._http.close()
